"""
Policy store contract.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..policies.models import Policy


class PolicyStore(ABC):
    """Read contract the engine needs from policy storage."""

    @abstractmethod
    async def find_applicable_policies(
        self,
        resource_type: str,
        action: str,
        tenant_key: Optional[str]
    ) -> List[Policy]:
        """Return global policies plus, when a tenant is given, that tenant's policies.

        Records are returned raw; applicability filtering and ordering are
        done by the resolver.
        """

    async def start(self):
        """Open connections, if any."""

    async def stop(self):
        """Release connections, if any."""

    async def health_check(self) -> bool:
        return True
