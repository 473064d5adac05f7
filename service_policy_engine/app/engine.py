"""
Policy evaluation engine for the Policy Engine Service.

One evaluation runs through these steps:

1. Validating: required fields present and request not expired.
2. CacheLookup: an unexpired cached result is returned as is.
3. Resolving: applicable policies in priority order.
4. Evaluating: per policy, conditions first, then rules.
5. Deciding: the first non-INCONCLUSIVE decision wins; when none is found the
   request is allowed ("no applicable policy; default allow").
6. Caching: the final result is stored once, with its expiry set.

Every failure ends in a DENY result; evaluate never raises for a request.
"""

import time
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from shared.errors import PolicyEvaluationError, PolicyStoreError, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .cache.result_cache import ResultCache
from .conditions.evaluator import ConditionEvaluator
from .persistence.base import PolicyStore
from .policies.models import Decision, EvaluationRequest, EvaluationResult, utcnow
from .policies.resolver import CompiledPolicy, PolicyResolver
from .rules.evaluator import RuleEvaluator

DEFAULT_ALLOW_REASON = "no applicable policy; default allow"
STORE_ERROR_REASON = "policy evaluation error"
EXPIRED_REQUEST_REASON = "evaluation request has expired"


class PolicyEngine:
    """Evaluates requests against stored security policies."""

    def __init__(
        self,
        store: PolicyStore,
        cache: Optional[ResultCache] = None,
        condition_evaluator: Optional[ConditionEvaluator] = None,
        rule_evaluator: Optional[RuleEvaluator] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = utcnow,
        store_timeout_seconds: Optional[float] = 2.0,
        result_ttl_seconds: float = 300,
    ):
        self.logger = get_logger("policy_engine.engine")
        self.cache = cache
        self.metrics = metrics
        self.clock = clock
        self.result_ttl_seconds = result_ttl_seconds
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()
        self.rule_evaluator = rule_evaluator or RuleEvaluator()
        self.resolver = PolicyResolver(store, cache, store_timeout_seconds, clock)

    async def evaluate(self, request: Optional[EvaluationRequest],
                       timeout: Optional[float] = None) -> EvaluationResult:
        """Evaluate a request. ``timeout`` bounds the policy store call."""
        started = time.perf_counter()

        try:
            result = await self._evaluate(request, timeout, started)

        except ValidationError as e:
            self.logger.warning("Evaluation request rejected", reason=e.message, details=e.details)
            result = EvaluationResult.deny(e.message)
            result.add_error(e.code)
            result.metadata["error"] = e.to_response().model_dump(exclude_none=True)
            self._record_error("validation")

        except PolicyStoreError as e:
            self.logger.error("Policy store unavailable", error=e.message, details=e.details)
            result = EvaluationResult.deny(STORE_ERROR_REASON)
            result.add_error(e.message)
            result.metadata["error"] = e.to_response().model_dump(exclude_none=True)
            self._record_error("policy_store")

        except Exception as e:
            self.logger.error("Unexpected error during policy evaluation",
                              error=str(e), error_type=type(e).__name__)
            error = PolicyEvaluationError(str(e) or type(e).__name__, {"error_type": type(e).__name__})
            result = EvaluationResult.deny(error.message)
            result.add_error(type(e).__name__)
            result.metadata["error"] = error.to_response().model_dump(exclude_none=True)
            self._record_error("evaluation")

        if isinstance(request, EvaluationRequest):
            result.request_id = request.request_id
        if result.evaluation_time_ms is None or result.cache_hit:
            result.evaluation_time_ms = (time.perf_counter() - started) * 1000

        if self.metrics:
            self.metrics.record_evaluation(result.decision.value, result.evaluation_time_ms / 1000)

        self.logger.info("Policy evaluation completed", decision=result.decision.value,
                         policy_key=result.policy_key, reason=result.reason,
                         cache_hit=result.cache_hit, evaluation_time_ms=result.evaluation_time_ms)
        return result

    async def _evaluate(self, request: Optional[EvaluationRequest], timeout: Optional[float],
                        started: float) -> EvaluationResult:
        now = self.clock()
        self.validate(request, now)

        if self.cache is not None:
            cached = await self.cache.get_result(request)
            if cached is not None:
                cached.cache_hit = True
                return cached

        policies = await self.resolver.resolve(
            request.resource_type, request.action, request.tenant_key, timeout
        )
        result = self.decide(policies, request, now)

        result.evaluated_at = now
        result.set_expiration(self.result_ttl_seconds, now)
        result.evaluation_time_ms = (time.perf_counter() - started) * 1000
        if self.cache is not None:
            await self.cache.set_result(request, result)
        return result

    def validate(self, request: Optional[EvaluationRequest], now: datetime):
        """Raise ValidationError for missing fields or an expired request."""
        if not isinstance(request, EvaluationRequest):
            raise ValidationError("evaluation request is required")
        missing = request.missing_fields()
        if missing:
            raise ValidationError(f"missing required fields: {', '.join(missing)}",
                                  {"missing_fields": missing})
        if request.is_expired(now):
            raise ValidationError(EXPIRED_REQUEST_REASON,
                                  {"expires_at": request.expires_at.isoformat()})

    def decide(self, policies: List[CompiledPolicy], request: EvaluationRequest,
               now: datetime) -> EvaluationResult:
        """Walk policies in order; the first conclusive decision wins."""
        warnings: List[str] = []
        evaluated = 0
        result = None

        for compiled in policies:
            evaluated += 1
            try:
                decision, groups = self.evaluate_policy(compiled, request, now)
            except Exception as e:
                self.logger.error("Error evaluating policy", policy_key=compiled.policy_key, error=str(e))
                warnings.append(f"policy {compiled.policy_key} could not be evaluated: {e}")
                continue

            if decision == Decision.INCONCLUSIVE:
                continue

            policy = compiled.policy
            result = EvaluationResult(
                decision=decision,
                policy_key=policy.policy_key,
                policy_name=policy.policy_name,
                policy_priority=policy.priority,
                policy_version=policy.version,
                reason=f"{decision.value} by policy {policy.policy_key}",
                actions=list(compiled.actions) if decision == Decision.DENY else [],
                evaluated_conditions=groups,
            )
            break

        if result is None:
            result = EvaluationResult.allow(DEFAULT_ALLOW_REASON)

        for warning in warnings:
            result.add_warning(warning)
        result.metadata["policiesEvaluated"] = evaluated
        result.metadata["applicablePolicies"] = len(policies)
        return result

    def evaluate_policy(self, compiled: CompiledPolicy, request: EvaluationRequest,
                        now: datetime) -> Tuple[Decision, dict]:
        """Decision of one policy plus its per-group condition results."""
        condition_set = compiled.condition_set
        groups = {}
        if not condition_set.is_empty():
            groups = self.condition_evaluator.evaluate_groups(condition_set, request, now)
            if not self.condition_evaluator.combine(condition_set, groups):
                self.logger.debug("Policy conditions not met", policy_key=compiled.policy_key,
                                  groups=groups)
                return Decision.INCONCLUSIVE, groups

        decision = self.rule_evaluator.evaluate(compiled.rule_set, request)
        self.logger.debug("Policy evaluated", policy_key=compiled.policy_key, decision=decision.value)
        return decision, groups

    async def evict_policy_cache(self, resource_type: str, action: str) -> int:
        if self.cache is None:
            return 0
        return await self.cache.evict(resource_type, action)

    async def evict_all_policy_cache(self) -> int:
        if self.cache is None:
            return 0
        return await self.cache.evict_all()

    def _record_error(self, error_type: str):
        if self.metrics:
            self.metrics.record_error(error_type)
