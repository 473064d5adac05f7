"""
Persistence package for the Policy Engine Service.

The engine only reads policies. PolicyStore defines that read contract;
InMemoryPolicyStore backs tests and single-process deployments and
PostgresPolicyStore reads the security_policies table.
"""
