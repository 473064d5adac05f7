"""
Unit tests for the policy evaluation engine.
"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from shared.metrics import MetricsCollector
from shared.test_helpers import FakeClock, PolicyFactory
from service_policy_engine.app.cache.backends import InMemoryCacheBackend
from service_policy_engine.app.cache.result_cache import ResultCache
from service_policy_engine.app.engine import (
    DEFAULT_ALLOW_REASON, EXPIRED_REQUEST_REASON, STORE_ERROR_REASON, PolicyEngine
)
from service_policy_engine.app.persistence.memory import InMemoryPolicyStore
from service_policy_engine.app.policies.models import (
    ActionType, Decision, EvaluationRequest, Policy
)

F = PolicyFactory


def make_request(**kwargs) -> EvaluationRequest:
    return EvaluationRequest.model_validate(F.request(**kwargs))


def make_policy(**kwargs) -> Policy:
    return Policy.model_validate(F.policy(**kwargs))


class TestPolicyEngine:
    """Evaluation pipeline."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def store(self):
        return InMemoryPolicyStore()

    @pytest.fixture
    def cache(self, clock):
        return ResultCache(InMemoryCacheBackend(clock=clock.monotonic), clock=clock)

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("policy-engine-test")

    @pytest.fixture
    def engine(self, store, cache, clock, metrics):
        return PolicyEngine(store, cache=cache, clock=clock, metrics=metrics)

    @pytest.fixture
    def cidr_policy(self):
        return make_policy(
            policy_key="office-network",
            priority=10,
            conditions=F.ip_conditions(["192.168.1.0/24"]),
            rules=F.rule_set([F.rule("", "ALLOW")]),
        )

    @pytest.mark.asyncio
    async def test_allow_inside_cidr(self, engine, store, cidr_policy):
        store.save(cidr_policy)

        result = await engine.evaluate(make_request())

        assert result.decision == Decision.ALLOW
        assert result.policy_key == "office-network"
        assert result.policy_priority == 10
        assert result.evaluated_conditions == {"ip": True}
        assert result.evaluation_time_ms is not None

    @pytest.mark.asyncio
    async def test_no_match_falls_back_to_default_allow(self, engine, store, cidr_policy):
        store.save(cidr_policy)

        result = await engine.evaluate(make_request(client_ip="10.0.0.5"))

        assert result.decision == Decision.ALLOW
        assert result.policy_key is None
        assert "no applicable policy" in result.reason
        assert result.metadata["policiesEvaluated"] == 1

    @pytest.mark.asyncio
    async def test_higher_priority_policy_overrides(self, engine, store):
        store.save(make_policy(
            policy_key="P1",
            priority=100,
            rules=F.rule_set([F.rule("resource.type == 'EC2'", "DENY")]),
            actions=[{"type": "SEND_ALERT"}, {"type": "BLOCK_IP", "priority": 9}],
        ))
        store.save(make_policy(policy_key="P2", priority=10, rules=F.allow_all_rules()))

        result = await engine.evaluate(make_request(resource_type="EC2"))

        assert result.decision == Decision.DENY
        assert result.policy_key == "P1"
        assert [action.type for action in result.actions] == [ActionType.BLOCK_IP, ActionType.SEND_ALERT]

    @pytest.mark.asyncio
    async def test_actions_only_attached_on_deny(self, engine, store):
        store.save(make_policy(actions=[{"type": "SEND_ALERT"}]))

        result = await engine.evaluate(make_request())

        assert result.decision == Decision.ALLOW
        assert result.actions == []

    @pytest.mark.asyncio
    async def test_equal_priority_newest_policy_wins(self, engine, store):
        store.save(make_policy(policy_key="old", rules=F.rule_set([F.rule("", "ALLOW")]),
                               created_at=datetime(2024, 1, 1, tzinfo=timezone.utc)))
        store.save(make_policy(policy_key="new", rules=F.rule_set([F.rule("", "DENY")]),
                               created_at=datetime(2024, 1, 10, tzinfo=timezone.utc)))

        result = await engine.evaluate(make_request())

        assert result.policy_key == "new"
        assert result.decision == Decision.DENY

    @pytest.mark.asyncio
    async def test_inconclusive_policy_passes_to_next(self, engine, store):
        store.save(make_policy(policy_key="first", priority=50,
                               rules=F.rule_set([F.rule("action == 'DELETE'", "DENY")])))
        store.save(make_policy(policy_key="second", priority=5,
                               rules=F.rule_set([F.rule("user.role == 'ADMIN'", "ALLOW")])))

        result = await engine.evaluate(make_request(context={"userRole": "ADMIN"}))

        assert result.policy_key == "second"
        assert result.metadata["policiesEvaluated"] == 2

    @pytest.mark.asyncio
    async def test_malformed_payloads_do_not_fail_evaluation(self, engine, store):
        broken = F.policy(policy_key="broken", priority=100)
        broken["rules"] = "{bad json"
        fallback = F.policy(policy_key="fallback", priority=1)
        fallback["conditions"] = "{bad"
        fallback["rules"] = '{"defaultAction": "DENY"}'
        store.save(Policy.model_validate(broken))
        store.save(Policy.model_validate(fallback))

        result = await engine.evaluate(make_request())

        assert result.decision == Decision.DENY
        assert result.policy_key == "fallback"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["resourceType", "action", "userId"])
    async def test_missing_required_field_is_denied(self, engine, store, field):
        store.save(make_policy(rules=F.allow_all_rules()))
        payload = F.request()
        payload[field] = "  "

        result = await engine.evaluate(EvaluationRequest.model_validate(payload))

        assert result.decision == Decision.DENY
        assert "missing required fields" in result.reason
        assert result.errors == ["VALIDATION_ERROR"]
        assert result.metadata["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_none_request_is_denied(self, engine):
        result = await engine.evaluate(None)
        assert result.is_denied()

    @pytest.mark.asyncio
    async def test_expired_request_is_denied(self, engine, clock):
        request = make_request(expiresAt=(clock() - timedelta(seconds=1)).isoformat())

        result = await engine.evaluate(request)

        assert result.decision == Decision.DENY
        assert result.reason == EXPIRED_REQUEST_REASON

    @pytest.mark.asyncio
    async def test_store_failure_is_denied(self, cache, clock):
        store = MagicMock()
        store.find_applicable_policies = AsyncMock(side_effect=ConnectionError("db down"))
        engine = PolicyEngine(store, cache=cache, clock=clock)

        result = await engine.evaluate(make_request())

        assert result.decision == Decision.DENY
        assert result.metadata["error"]["code"] == "POLICY_STORE_ERROR"
        assert result.reason == STORE_ERROR_REASON
        assert await cache.get_result(make_request()) is None

    @pytest.mark.asyncio
    async def test_store_timeout_is_denied(self, clock):
        async def slow(*args):
            await asyncio.sleep(1)
            return []

        store = MagicMock()
        store.find_applicable_policies = slow
        engine = PolicyEngine(store, clock=clock)

        result = await engine.evaluate(make_request(), timeout=0.01)

        assert result.decision == Decision.DENY
        assert result.reason == STORE_ERROR_REASON

    @pytest.mark.asyncio
    async def test_unexpected_error_is_denied_with_message(self, engine, store):
        store.save(make_policy())

        with patch.object(engine.resolver, "resolve", AsyncMock(side_effect=RuntimeError("boom"))):
            result = await engine.evaluate(make_request())

        assert result.decision == Decision.DENY
        assert result.reason == "boom"
        assert result.metadata["error"]["code"] == "POLICY_EVALUATION_ERROR"

    @pytest.mark.asyncio
    async def test_failing_policy_is_skipped_with_warning(self, engine, store):
        store.save(make_policy(policy_key="bad", priority=100))
        store.save(make_policy(policy_key="good", priority=1,
                               rules=F.rule_set([F.rule("", "DENY")])))
        original = engine.rule_evaluator.evaluate

        def flaky(rule_set, request):
            if rule_set.rules[0].action == "ALLOW":
                raise RuntimeError("corrupt rule set")
            return original(rule_set, request)

        with patch.object(engine.rule_evaluator, "evaluate", side_effect=flaky):
            result = await engine.evaluate(make_request())

        assert result.policy_key == "good"
        assert result.decision == Decision.DENY
        assert len(result.warnings) == 1
        assert "bad" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_result_is_cached(self, engine, store, cidr_policy):
        store.save(cidr_policy)

        first = await engine.evaluate(make_request())
        store.remove("office-network")
        second = await engine.evaluate(make_request())

        assert first.cache_hit is False
        assert second.cache_hit is True
        assert second.policy_key == "office-network"

    @pytest.mark.asyncio
    async def test_cached_result_expires_after_ttl(self, engine, store, cidr_policy, clock):
        store.save(cidr_policy)
        await engine.evaluate(make_request())
        store.remove("office-network")

        clock.advance(301)
        result = await engine.evaluate(make_request())

        assert result.cache_hit is False
        assert result.reason == DEFAULT_ALLOW_REASON

    @pytest.mark.asyncio
    async def test_eviction_forces_fresh_lookup(self, engine, store, cidr_policy):
        store.save(cidr_policy)
        await engine.evaluate(make_request())
        store.remove("office-network")

        await engine.evict_policy_cache("EC2_INSTANCE", "CREATE")
        result = await engine.evaluate(make_request())

        assert result.cache_hit is False
        assert result.policy_key is None

    @pytest.mark.asyncio
    async def test_result_expiry_is_set(self, engine, store, clock):
        store.save(make_policy())

        result = await engine.evaluate(make_request())

        assert result.evaluated_at == clock()
        assert result.expires_at == clock() + timedelta(seconds=300)

    @pytest.mark.asyncio
    async def test_deterministic_for_fixed_inputs(self, store, clock):
        store.save(make_policy(policy_key="a", priority=5, rules=F.rule_set([F.rule("", "DENY")])))
        store.save(make_policy(policy_key="b", priority=5, rules=F.rule_set([F.rule("", "ALLOW")])))
        engine = PolicyEngine(store, clock=clock)

        outcomes = {
            (result.decision, result.policy_key)
            for result in [await engine.evaluate(make_request()) for _ in range(5)]
        }

        assert len(outcomes) == 1

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, engine, store, metrics):
        store.save(make_policy(rules=F.rule_set([F.rule("", "DENY")])))

        await engine.evaluate(make_request())

        assert metrics.get_sample_value("policy_evaluations_total", {"decision": "DENY"}) == 1.0
        assert metrics.get_sample_value("policy_evaluation_duration_seconds_count") == 1.0

    @pytest.mark.asyncio
    async def test_policy_becoming_effective_within_list_ttl_applies(self, engine, store, clock):
        store.save(make_policy(
            policy_key="starts-soon",
            rules=F.rule_set([F.rule("", "DENY")]),
            effectiveFrom=(clock() + timedelta(seconds=60)).isoformat(),
        ))

        before = await engine.evaluate(make_request(user_id="a"))
        clock.advance(120)
        after = await engine.evaluate(make_request(user_id="b"))

        assert before.reason == DEFAULT_ALLOW_REASON
        assert after.decision == Decision.DENY
        assert after.policy_key == "starts-soon"

    @pytest.mark.asyncio
    async def test_non_request_input_is_denied(self, engine):
        result = await engine.evaluate({"resourceType": "EC2", "action": "CREATE", "userId": "u1"})

        assert result.decision == Decision.DENY
        assert result.errors == ["VALIDATION_ERROR"]
        assert result.request_id is None
