"""
Policy package.

Holds the policy, request and result models, the parser for the JSON
payloads stored on a policy, and the resolver that turns a request into an
ordered list of applicable, compiled policies.

Modules of interest:
- models: Policy, EvaluationRequest, EvaluationResult and Decision.
- parser: Lenient parsing of condition, rule, action and target payloads.
- resolver: Store lookup, applicability filtering, ordering and caching.
"""
