"""
Unit tests for rule expressions and the rule evaluator.
"""

import pytest

from service_policy_engine.app.policies.models import Decision, EvaluationRequest
from service_policy_engine.app.rules.evaluator import RuleEvaluator
from service_policy_engine.app.rules.expressions import (
    Always, FieldEquals, FieldNotEquals, Unsupported, parse_expression
)
from service_policy_engine.app.rules.models import Rule, RuleEvaluationMode, RuleSet


@pytest.fixture
def request_obj():
    return EvaluationRequest(
        resource_type="EC2",
        resource_id="i-1",
        action="CREATE",
        user_id="u1",
        context={"userRole": "ADMIN"},
    )


def rule(condition="", action="ALLOW", priority=0, rule_id=None, enabled=True) -> Rule:
    return Rule(rule_id=rule_id or f"{action}-{priority}", condition=condition,
                action=action, priority=priority, enabled=enabled)


class TestExpressions:
    """Restricted rule-condition language."""

    @pytest.mark.parametrize("source", [None, "", "   "])
    def test_empty_condition_is_always(self, source):
        assert parse_expression(source) == Always()

    @pytest.mark.parametrize("source,expected", [
        ("user.role == 'ADMIN'", FieldEquals("user.role", "ADMIN")),
        ('resource.type == "EC2"', FieldEquals("resource.type", "EC2")),
        ("action != DELETE", FieldNotEquals("action", "DELETE")),
        ("  action=='CREATE'  ", FieldEquals("action", "CREATE")),
    ])
    def test_supported_forms(self, source, expected):
        assert parse_expression(source) == expected

    @pytest.mark.parametrize("source", [
        "user.name == 'bob'",
        "user.role > 'A'",
        "user.role == 'ADMIN' && action == 'CREATE'",
        "resource.type in ('EC2')",
        "true",
    ])
    def test_other_forms_are_unsupported(self, source):
        expression = parse_expression(source)
        assert isinstance(expression, Unsupported)

    def test_matching(self, request_obj):
        assert parse_expression("user.role == 'ADMIN'").matches(request_obj) is True
        assert parse_expression("user.role != 'ADMIN'").matches(request_obj) is False
        assert parse_expression("resource.type == 'EC2'").matches(request_obj) is True
        assert parse_expression("action == 'DELETE'").matches(request_obj) is False
        assert parse_expression("user.name == 'bob'").matches(request_obj) is False

    def test_not_equals_against_missing_value(self):
        request = EvaluationRequest(resource_type="S3", action="READ", user_id="u1")
        assert parse_expression("user.role != 'ADMIN'").matches(request) is True
        assert parse_expression("user.role == 'ADMIN'").matches(request) is False

    def test_rule_parses_condition_once(self):
        parsed = Rule.model_validate({"ruleId": "r1", "condition": "action == 'CREATE'", "action": "deny"})
        assert parsed.expression == FieldEquals("action", "CREATE")
        assert parsed.decision == Decision.DENY

    def test_unknown_rule_action_is_inconclusive(self):
        assert rule(action="MAYBE").decision == Decision.INCONCLUSIVE
        assert Rule().decision == Decision.INCONCLUSIVE


class TestRuleEvaluator:
    """ALL, ANY and FIRST strategies."""

    @pytest.fixture
    def evaluator(self):
        return RuleEvaluator()

    def test_empty_rules_use_default_action(self, evaluator, request_obj):
        assert evaluator.evaluate(RuleSet(default_action="deny"), request_obj) == Decision.DENY
        assert evaluator.evaluate(RuleSet(), request_obj) == Decision.INCONCLUSIVE
        assert evaluator.evaluate(RuleSet(default_action="bogus"), request_obj) == Decision.INCONCLUSIVE

    def test_first_mode_uses_priority(self, evaluator, request_obj):
        rule_set = RuleSet(
            rules=[rule(action="ALLOW", priority=1, rule_id="A"),
                   rule(action="DENY", priority=10, rule_id="B")],
            evaluation_mode=RuleEvaluationMode.FIRST,
        )
        assert evaluator.evaluate(rule_set, request_obj) == Decision.DENY

    def test_first_mode_is_stable_on_ties(self, evaluator, request_obj):
        rule_set = RuleSet(rules=[rule(action="ALLOW", priority=5, rule_id="A"),
                                  rule(action="DENY", priority=5, rule_id="B")])
        assert rule_set.evaluation_mode == RuleEvaluationMode.FIRST
        assert evaluator.evaluate(rule_set, request_obj) == Decision.ALLOW

    def test_first_mode_skips_non_matching_and_disabled(self, evaluator, request_obj):
        rule_set = RuleSet(rules=[
            rule("action == 'DELETE'", "DENY", priority=100),
            rule("", "DENY", priority=50, enabled=False),
            rule("user.role == 'ADMIN'", "ALLOW", priority=1),
        ])
        assert evaluator.evaluate(rule_set, request_obj) == Decision.ALLOW

    def test_all_mode_returns_last_matching_action(self, evaluator, request_obj):
        rule_set = RuleSet(
            rules=[rule(action="ALLOW"), rule("resource.type == 'EC2'", "DENY")],
            evaluation_mode=RuleEvaluationMode.ALL,
        )
        assert evaluator.evaluate(rule_set, request_obj) == Decision.DENY

    def test_all_mode_non_match_is_inconclusive(self, evaluator, request_obj):
        rule_set = RuleSet(
            rules=[rule(action="ALLOW"), rule("action == 'DELETE'", "DENY"), rule(action="ALLOW")],
            evaluation_mode=RuleEvaluationMode.ALL,
        )
        assert evaluator.evaluate(rule_set, request_obj) == Decision.INCONCLUSIVE

    def test_all_mode_ignores_disabled_rules(self, evaluator, request_obj):
        rule_set = RuleSet(
            rules=[rule(action="ALLOW"), rule("action == 'DELETE'", "DENY", enabled=False)],
            evaluation_mode=RuleEvaluationMode.ALL,
        )
        assert evaluator.evaluate(rule_set, request_obj) == Decision.ALLOW

    def test_any_mode_returns_first_match_in_list_order(self, evaluator, request_obj):
        rule_set = RuleSet.model_validate({
            "evaluationMode": "any",
            "rules": [
                {"condition": "action == 'DELETE'", "action": "DENY", "priority": 100},
                {"condition": "user.role == 'ADMIN'", "action": "ALLOW", "priority": 1},
                {"condition": "", "action": "DENY", "priority": 50},
            ],
        })
        assert evaluator.evaluate(rule_set, request_obj) == Decision.ALLOW

    def test_any_mode_without_match_is_inconclusive(self, evaluator, request_obj):
        rule_set = RuleSet(
            rules=[rule("action == 'DELETE'", "DENY")],
            evaluation_mode=RuleEvaluationMode.ANY,
        )
        assert evaluator.evaluate(rule_set, request_obj) == Decision.INCONCLUSIVE
