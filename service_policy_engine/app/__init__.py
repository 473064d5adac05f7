"""
Policy Engine Service package for the Governance Policy Engine.

This package decides whether a user may perform an action on a cloud
resource by evaluating the stored security policies. It provides:

- app.engine: The orchestrator (validate, cache lookup, resolve, evaluate,
  decide, cache store).
- app.policies: Policy, request and result models, payload parsing and the
  policy resolver.
- app.conditions: Condition groups (time, IP, user, resource, network,
  environment) and their evaluator.
- app.rules: Rule sets, the restricted rule-condition language and the
  rule evaluator.
- app.cache: Result cache and its in-memory and Redis backends.
- app.persistence: Policy store contract with in-memory and PostgreSQL
  implementations.
- app.main: Service facade wiring configuration to the engine.

Guidelines:
- Evaluation is stateless per call; only the caches are shared.
- A completed evaluation always carries exactly one decision.
- Keep evaluation deterministic and observable (metrics + logs).
"""
