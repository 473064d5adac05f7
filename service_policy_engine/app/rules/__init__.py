"""
Rules package.

Defines the rule model, the restricted rule-condition expressions and the
rule evaluator. A rule set yields exactly one Decision per evaluation.

Modules of interest:
- models: Rule, RuleSet and RuleEvaluationMode.
- expressions: Parsed rule conditions (Always, FieldEquals, FieldNotEquals).
- evaluator: ALL, ANY and FIRST strategies.
"""
