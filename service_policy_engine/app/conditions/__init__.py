"""
Conditions package.

Models the six condition groups a policy may carry (time, IP, user,
resource, network, environment) and evaluates them against a request.

Modules of interest:
- models: Condition groups, attribute and tag conditions, ConditionSet.
- network: IPv4 and CIDR arithmetic.
- attributes: Shared operator evaluation and allow/deny precedence.
- evaluator: Group evaluation and ALL/ANY combination.
"""
