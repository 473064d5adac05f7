"""
Result cache for the Policy Engine Service.

Two independently invalidated scopes share one backend:

- evaluation results, keyed by resource type, action, user and tenant scope;
- applicable-policy lists, keyed by resource type, action and tenant scope.

Backend failures and timeouts never reach the caller: reads become misses
and writes are skipped.
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError

from shared.errors import CacheBackendError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..policies.models import EvaluationRequest, EvaluationResult, Policy, utcnow
from .backends import CacheBackend

T = TypeVar("T")

RESULT_PREFIX = "policy_evaluation:"
POLICY_PREFIX = "applicable_policies:"
GLOBAL_SCOPE = "global"

_POLICY_LIST = TypeAdapter(List[Policy])


def tenant_scope(tenant_key: Optional[str]) -> str:
    return tenant_key if tenant_key else GLOBAL_SCOPE


def fingerprint(resource_type: str, action: str, user_id: str, tenant_key: Optional[str]) -> str:
    """Cache fingerprint of a request."""
    return f"{resource_type}:{action}:{user_id}:{tenant_scope(tenant_key)}"


class ResultCache:
    """TTL cache for evaluation results and applicable-policy lists."""

    def __init__(
        self,
        backend: CacheBackend,
        result_ttl_seconds: float = 300,
        policy_ttl_seconds: float = 300,
        timeout_seconds: Optional[float] = 0.5,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.backend = backend
        self.result_ttl_seconds = result_ttl_seconds
        self.policy_ttl_seconds = policy_ttl_seconds
        self.timeout_seconds = timeout_seconds
        self.metrics = metrics
        self.clock = clock
        self.logger = get_logger("policy_engine.result_cache")

    @staticmethod
    def result_key(request: EvaluationRequest) -> str:
        return RESULT_PREFIX + fingerprint(
            request.resource_type, request.action, request.user_id, request.tenant_key
        )

    @staticmethod
    def policy_key(resource_type: str, action: str, tenant_key: Optional[str]) -> str:
        return f"{POLICY_PREFIX}{resource_type}:{action}:{tenant_scope(tenant_key)}"

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            raise CacheBackendError(f"Cache {operation} timed out",
                                    {"timeout_seconds": self.timeout_seconds})

    def _record(self, scope: str, result: str):
        if self.metrics:
            self.metrics.record_cache_lookup(scope, result)

    def _backend_failed(self, operation: str, scope: str, error: Exception):
        self.logger.warning("Cache backend unavailable, bypassing cache",
                            operation=operation, scope=scope, error=str(error))
        if self.metrics:
            self.metrics.record_error("cache_backend")

    async def get_result(self, request: EvaluationRequest) -> Optional[EvaluationResult]:
        """Return an unexpired cached result for the request, if any."""
        key = self.result_key(request)
        try:
            raw = await self._call("get", self.backend.get(key))
        except Exception as e:
            self._backend_failed("get", "result", e)
            self._record("result", "error")
            return None

        if raw is None:
            self._record("result", "miss")
            return None

        try:
            result = EvaluationResult.model_validate_json(raw)
        except ValidationError as e:
            self.logger.warning("Discarding unreadable cached result", key=key, error=str(e))
            self._record("result", "miss")
            return None

        if result.is_expired(self.clock()):
            self.logger.debug("Cached result expired", key=key)
            self._record("result", "miss")
            return None

        self._record("result", "hit")
        self.logger.debug("Cache hit for evaluation result", key=key)
        return result

    async def set_result(self, request: EvaluationRequest, result: EvaluationResult) -> bool:
        key = self.result_key(request)
        try:
            await self._call("set", self.backend.set(
                key, result.model_dump_json(by_alias=True), self.result_ttl_seconds
            ))
        except Exception as e:
            self._backend_failed("set", "result", e)
            return False
        self.logger.debug("Cached evaluation result", key=key, ttl=self.result_ttl_seconds)
        return True

    async def get_policies(self, resource_type: str, action: str,
                           tenant_key: Optional[str]) -> Optional[List[Policy]]:
        key = self.policy_key(resource_type, action, tenant_key)
        try:
            raw = await self._call("get", self.backend.get(key))
        except Exception as e:
            self._backend_failed("get", "policies", e)
            self._record("policies", "error")
            return None

        if raw is None:
            self._record("policies", "miss")
            return None

        try:
            policies = _POLICY_LIST.validate_json(raw)
        except ValidationError as e:
            self.logger.warning("Discarding unreadable cached policy list", key=key, error=str(e))
            self._record("policies", "miss")
            return None

        self._record("policies", "hit")
        return policies

    async def set_policies(self, resource_type: str, action: str,
                           tenant_key: Optional[str], policies: List[Policy]) -> bool:
        key = self.policy_key(resource_type, action, tenant_key)
        try:
            payload = _POLICY_LIST.dump_json(policies, by_alias=True).decode("utf-8")
            await self._call("set", self.backend.set(key, payload, self.policy_ttl_seconds))
        except Exception as e:
            self._backend_failed("set", "policies", e)
            return False
        return True

    async def evict(self, resource_type: str, action: str) -> int:
        """Evict the policy lists and results of one resource type and action."""
        suffix = f"{resource_type}:{action}:"
        deleted = 0
        for prefix in (POLICY_PREFIX + suffix, RESULT_PREFIX + suffix):
            try:
                deleted += await self._call("delete", self.backend.delete_by_prefix(prefix))
            except Exception as e:
                self._backend_failed("delete", prefix, e)
        self.logger.info("Evicted policy cache", resource_type=resource_type, action=action, count=deleted)
        return deleted

    async def evict_all(self) -> int:
        try:
            deleted = await self._call("delete", self.backend.delete_all())
        except Exception as e:
            self._backend_failed("delete_all", "all", e)
            return 0
        self.logger.info("Evicted all policy caches", count=deleted)
        return deleted
