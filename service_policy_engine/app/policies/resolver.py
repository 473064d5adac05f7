"""
Policy resolver for the Policy Engine Service.

Turns (resource type, action, tenant) into the ordered list of applicable
policies: fetched from the store (or the policy-list cache), deduplicated,
filtered on enabled/status/effective window/targets, then ordered by
priority (highest first) and creation time (newest first).
"""

import asyncio
import fnmatch
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable, List, Optional, Sequence, Tuple

from shared.errors import PolicyStoreError
from shared.logging import get_logger
from ..conditions.models import ConditionSet
from ..persistence.base import PolicyStore
from ..rules.models import RuleSet
from .models import Policy, PolicyAction, utcnow
from .parser import PolicyJsonParser

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)
_WILDCARDS = ("*", "ALL")

_parser = PolicyJsonParser()


@dataclass(frozen=True)
class CompiledPolicy:
    """A policy together with its parsed payloads."""
    policy: Policy
    condition_set: ConditionSet
    rule_set: RuleSet
    actions: Tuple[PolicyAction, ...]
    target_resources: Optional[Tuple[str, ...]]

    @property
    def policy_key(self) -> str:
        return self.policy.policy_key

    def targets(self, resource_type: str) -> bool:
        return matches_target(self.target_resources, resource_type)


def matches_target(targets: Optional[Sequence[str]], resource_type: str) -> bool:
    """Check a resource type against a policy's target resources.

    ``None`` (malformed targets) never matches; an empty list matches all.
    """
    if targets is None:
        return False
    if not targets:
        return True
    for target in targets:
        if target.upper() in _WILDCARDS or target == resource_type:
            return True
        if "*" in target and fnmatch.fnmatchcase(resource_type, target):
            return True
        if "." in resource_type and resource_type.startswith(target + "."):
            return True
    return False


@lru_cache(maxsize=1024)
def _compile_payloads(conditions: Optional[str], rules: Optional[str], actions: Optional[str],
                      target_resources: Optional[str]):
    targets = _parser.parse_target_resources(target_resources)
    return (
        _parser.parse_condition_set(conditions),
        _parser.parse_rule_set(rules),
        tuple(_parser.parse_actions(actions)),
        tuple(targets) if targets is not None else None,
    )


def compile_policy(policy: Policy) -> CompiledPolicy:
    """Parse the payloads of a policy; identical payloads are parsed once."""
    condition_set, rule_set, actions, targets = _compile_payloads(
        policy.conditions, policy.rules, policy.actions, policy.target_resources
    )
    return CompiledPolicy(policy, condition_set, rule_set, actions, targets)


def deduplicate(policies: List[Policy]) -> List[Policy]:
    """Keep the first record for each policy key."""
    seen = set()
    unique = []
    for policy in policies:
        if policy.policy_key not in seen:
            seen.add(policy.policy_key)
            unique.append(policy)
    return unique


def order_policies(policies: List[CompiledPolicy]) -> List[CompiledPolicy]:
    """Priority descending, then createdAt descending; stable otherwise."""
    return sorted(
        policies,
        key=lambda compiled: (compiled.policy.priority, compiled.policy.created_at or _EPOCH),
        reverse=True,
    )


class PolicyResolver:
    """Resolves the ordered applicable policies for a request."""

    def __init__(
        self,
        store: PolicyStore,
        cache=None,
        store_timeout_seconds: Optional[float] = 2.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.cache = cache
        self.store_timeout_seconds = store_timeout_seconds
        self.clock = clock
        self.logger = get_logger("policy_engine.policy_resolver")

    async def resolve(
        self,
        resource_type: str,
        action: str,
        tenant_key: Optional[str],
        timeout: Optional[float] = None,
    ) -> List[CompiledPolicy]:
        """Return applicable policies in evaluation order.

        Raises PolicyStoreError when the store fails or times out.
        """
        now = self.clock()

        cached = None
        if self.cache is not None:
            cached = await self.cache.get_policies(resource_type, action, tenant_key)
        if cached is not None:
            self.logger.debug("Applicable policies served from cache",
                              resource_type=resource_type, action=action, count=len(cached))
            return self.select(cached, resource_type, now)

        fetched = deduplicate(await self._fetch(resource_type, action, tenant_key, timeout))
        applicable = self.select(fetched, resource_type, now)

        # Cached before filtering; select() re-applies the clock on every read
        if self.cache is not None:
            await self.cache.set_policies(resource_type, action, tenant_key, fetched)

        self.logger.debug("Applicable policies resolved", resource_type=resource_type, action=action,
                          tenant_key=tenant_key, fetched=len(fetched), applicable=len(applicable))
        return applicable

    def select(self, policies: List[Policy], resource_type: str, now: datetime) -> List[CompiledPolicy]:
        """Deduplicate, filter on applicability and order."""
        applicable = []
        for policy in deduplicate(policies):
            if not policy.is_applicable_at(now):
                continue
            compiled = compile_policy(policy)
            if not compiled.targets(resource_type):
                self.logger.debug("Policy does not target resource type",
                                  policy_key=policy.policy_key, resource_type=resource_type)
                continue
            applicable.append(compiled)
        return order_policies(applicable)

    async def _fetch(self, resource_type: str, action: str, tenant_key: Optional[str],
                     timeout: Optional[float]) -> List[Policy]:
        timeout = timeout if timeout is not None else self.store_timeout_seconds
        try:
            return list(await asyncio.wait_for(
                self.store.find_applicable_policies(resource_type, action, tenant_key),
                timeout=timeout,
            ))
        except asyncio.TimeoutError:
            self.logger.error("Policy store timed out", resource_type=resource_type,
                              action=action, timeout_seconds=timeout)
            raise PolicyStoreError("Policy store timed out", {"timeout_seconds": timeout})
        except PolicyStoreError:
            raise
        except Exception as e:
            self.logger.error("Policy store failed", resource_type=resource_type,
                              action=action, error=str(e))
            raise PolicyStoreError("Policy store failed", {"error": str(e)})
