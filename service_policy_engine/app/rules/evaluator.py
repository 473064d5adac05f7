"""
Rule evaluator for the Policy Engine Service.

Supports three strategies over the enabled rules of a rule set:

- ALL: every rule must match; the last matching rule's action wins.
- ANY: the first matching rule in list order wins.
- FIRST: rules are ordered by priority (highest first, stable on ties) and
  the first matching rule wins.
"""

from typing import List

from shared.logging import get_logger
from ..policies.models import Decision, EvaluationRequest
from .models import Rule, RuleEvaluationMode, RuleSet


class RuleEvaluator:
    """Evaluates rule sets into a Decision."""

    def __init__(self):
        self.logger = get_logger("policy_engine.rule_evaluator")

    def evaluate(self, rule_set: RuleSet, request: EvaluationRequest) -> Decision:
        if rule_set is None:
            return Decision.INCONCLUSIVE

        if rule_set.is_empty():
            return Decision.from_code(rule_set.default_action) or Decision.INCONCLUSIVE

        enabled = rule_set.enabled_rules()
        if rule_set.evaluation_mode == RuleEvaluationMode.ALL:
            return self._evaluate_all(enabled, request)
        elif rule_set.evaluation_mode == RuleEvaluationMode.ANY:
            return self._evaluate_any(enabled, request)
        return self._evaluate_first(enabled, request)

    def matches(self, rule: Rule, request: EvaluationRequest) -> bool:
        try:
            return rule.expression.matches(request)
        except Exception as e:
            self.logger.error("Error evaluating rule condition", rule_id=rule.rule_id, error=str(e))
            return False

    def _evaluate_all(self, rules: List[Rule], request: EvaluationRequest) -> Decision:
        decision = Decision.INCONCLUSIVE
        for rule in rules:
            if not self.matches(rule, request):
                self.logger.debug("Rule not matched in ALL mode", rule_id=rule.rule_id)
                return Decision.INCONCLUSIVE
            decision = rule.decision
            self.logger.debug("Rule matched", rule_id=rule.rule_id, action=rule.action)
        return decision

    def _evaluate_any(self, rules: List[Rule], request: EvaluationRequest) -> Decision:
        for rule in rules:
            if self.matches(rule, request):
                self.logger.debug("Rule matched", rule_id=rule.rule_id, action=rule.action)
                return rule.decision
        return Decision.INCONCLUSIVE

    def _evaluate_first(self, rules: List[Rule], request: EvaluationRequest) -> Decision:
        for rule in sorted(rules, key=lambda r: r.priority, reverse=True):
            if self.matches(rule, request):
                self.logger.debug("Rule matched", rule_id=rule.rule_id, action=rule.action,
                                  priority=rule.priority)
                return rule.decision
        return Decision.INCONCLUSIVE
