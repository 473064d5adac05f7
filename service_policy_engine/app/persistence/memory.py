"""
In-memory policy store.
"""

import threading
from typing import Dict, List, Optional

from shared.logging import get_logger
from ..policies.models import Policy
from .base import PolicyStore


class InMemoryPolicyStore(PolicyStore):
    """Thread-safe policy store keyed by policy key."""

    def __init__(self, policies: Optional[List[Policy]] = None):
        self.logger = get_logger("policy_engine.persistence.memory")
        self._lock = threading.Lock()
        self._policies: Dict[str, Policy] = {}
        for policy in policies or []:
            self._policies[policy.policy_key] = policy

    def save(self, policy: Policy):
        with self._lock:
            self._policies[policy.policy_key] = policy
        self.logger.info("Policy saved", policy_key=policy.policy_key)

    def remove(self, policy_key: str) -> bool:
        with self._lock:
            removed = self._policies.pop(policy_key, None) is not None
        if removed:
            self.logger.info("Policy removed", policy_key=policy_key)
        return removed

    def get(self, policy_key: str) -> Optional[Policy]:
        with self._lock:
            return self._policies.get(policy_key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._policies)

    async def find_applicable_policies(
        self,
        resource_type: str,
        action: str,
        tenant_key: Optional[str]
    ) -> List[Policy]:
        with self._lock:
            policies = list(self._policies.values())
        return [
            policy for policy in policies
            if policy.is_global
            or policy.tenant_key is None
            or (tenant_key is not None and policy.tenant_key == tenant_key)
        ]
