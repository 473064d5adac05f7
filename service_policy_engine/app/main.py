"""
Policy Engine service for the Governance Policy Engine.

Wires configuration to the policy store, the cache backend and the engine,
and exposes the caller-facing operations: evaluate and the two cache
eviction calls.
"""

from typing import Any, Dict, Optional, Union

from pydantic import ValidationError as PayloadValidationError

from shared.config import ServiceConfig, get_config
from shared.errors import ValidationError
from shared.logging import clear_context, configure_logging, get_logger, set_request_id, set_user_context
from shared.metrics import MetricsCollector, get_metrics_collector

from .cache.backends import CacheBackend, InMemoryCacheBackend
from .cache.redis_cache import RedisCacheBackend
from .cache.result_cache import ResultCache
from .conditions.evaluator import ConditionEvaluator
from .engine import PolicyEngine
from .persistence.base import PolicyStore
from .persistence.memory import InMemoryPolicyStore
from .persistence.postgres import PostgresPolicyStore
from .policies.models import EvaluationRequest, EvaluationResult

SERVICE_NAME = "policy-engine"


class PolicyEngineService:
    """Policy engine service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        store: Optional[PolicyStore] = None,
        cache_backend: Optional[CacheBackend] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config or get_config(SERVICE_NAME)
        configure_logging(self.config.service_name, self.config.log_level)
        self.logger = get_logger("policy_engine.service")

        self.metrics = metrics
        if self.metrics is None and self.config.enable_metrics:
            self.metrics = get_metrics_collector(self.config.service_name)

        self.store = store or self._create_store()
        self.cache_backend = cache_backend or self._create_cache_backend()
        self.cache = ResultCache(
            self.cache_backend,
            result_ttl_seconds=self.config.result_cache_ttl_seconds,
            policy_ttl_seconds=self.config.policy_cache_ttl_seconds,
            timeout_seconds=self.config.cache_timeout_seconds,
            metrics=self.metrics,
        )
        self.engine = PolicyEngine(
            self.store,
            cache=self.cache,
            condition_evaluator=ConditionEvaluator(self.config.default_time_zone),
            metrics=self.metrics,
            store_timeout_seconds=self.config.store_timeout_seconds,
            result_ttl_seconds=self.config.result_cache_ttl_seconds,
        )

    def _create_store(self) -> PolicyStore:
        if self.config.policy_store == "postgres":
            return PostgresPolicyStore(self.config.postgres_dsn)
        return InMemoryPolicyStore()

    def _create_cache_backend(self) -> CacheBackend:
        if self.config.cache_backend == "redis":
            return RedisCacheBackend(self.config.redis_url, self.config.cache_namespace)
        return InMemoryCacheBackend()

    async def start(self):
        """Start the store and cache backend."""
        await self.store.start()
        await self.cache_backend.start()
        self.logger.info("Policy engine service started", policy_store=self.config.policy_store,
                         cache_backend=self.config.cache_backend)

    async def stop(self):
        """Stop the store and cache backend."""
        await self.cache_backend.stop()
        await self.store.stop()
        self.logger.info("Policy engine service stopped")

    async def evaluate(self, request: Union[EvaluationRequest, Dict[str, Any]],
                       timeout: Optional[float] = None) -> EvaluationResult:
        """Evaluate a request; dicts are accepted in camelCase or snake_case."""
        if isinstance(request, dict):
            try:
                request = EvaluationRequest.model_validate(request)
            except PayloadValidationError as e:
                return self._reject_payload(e)

        if isinstance(request, EvaluationRequest):
            set_request_id(request.request_id)
            set_user_context(request.user_id, request.tenant_key)
        try:
            return await self.engine.evaluate(request, timeout)
        finally:
            clear_context()

    def _reject_payload(self, error: PayloadValidationError) -> EvaluationResult:
        fields = [".".join(str(part) for part in detail["loc"]) for detail in error.errors()]
        self.logger.warning("Malformed evaluation request", fields=fields)
        rejection = ValidationError("malformed evaluation request", {"fields": fields})
        result = EvaluationResult.deny(rejection.message)
        result.add_error(rejection.code)
        result.metadata["error"] = rejection.to_response().model_dump(exclude_none=True)
        if self.metrics:
            self.metrics.record_error("validation")
        return result

    async def evict_policy_cache(self, resource_type: str, action: str) -> int:
        return await self.engine.evict_policy_cache(resource_type, action)

    async def evict_all_policy_cache(self) -> int:
        return await self.engine.evict_all_policy_cache()

    async def health_check(self) -> Dict[str, Any]:
        """Health of the store and cache backend."""
        store_ok = await self.store.health_check()
        cache_ok = await self.cache_backend.health_check()
        return {
            "service": self.config.service_name,
            "status": "ok" if store_ok and cache_ok else "degraded",
            "dependencies": {
                "policy_store": "ok" if store_ok else "error",
                "cache": "ok" if cache_ok else "error",
            },
        }


def create_service(config: Optional[ServiceConfig] = None) -> PolicyEngineService:
    """Build the service from settings."""
    return PolicyEngineService(config)
