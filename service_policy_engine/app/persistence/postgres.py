"""
PostgreSQL policy store for the Policy Engine Service.
"""

from typing import List, Optional

import asyncpg

from shared.errors import PolicyStoreError
from shared.logging import get_logger
from ..policies.models import Policy
from .base import PolicyStore

POLICY_COLUMNS = """
    policy_key, policy_name, description, tenant_key, status, priority,
    is_enabled, is_global, is_system, effective_from, effective_until,
    conditions, rules, actions, target_resources, version,
    created_at, updated_at
"""


class PostgresPolicyStore(PolicyStore):
    """Reads policies from the security_policies table."""

    def __init__(self, dsn: str, pool: Optional[asyncpg.Pool] = None):
        self.dsn = dsn
        self.logger = get_logger("policy_engine.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = pool

    async def start(self):
        """Start the policy store."""
        try:
            if self.pool is None:
                self.pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=2,
                    max_size=10,
                    command_timeout=30
                )
            self.logger.info("PostgreSQL policy store started")

        except Exception as e:
            self.logger.error("Failed to start PostgreSQL policy store", error=str(e))
            raise PolicyStoreError("Failed to start PostgreSQL policy store", {"error": str(e)})

    async def stop(self):
        """Stop the policy store."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL policy store stopped")

    async def find_applicable_policies(
        self,
        resource_type: str,
        action: str,
        tenant_key: Optional[str]
    ) -> List[Policy]:
        if self.pool is None:
            raise PolicyStoreError("PostgreSQL policy store not started")

        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(f"""
                    SELECT {POLICY_COLUMNS}
                    FROM security_policies
                    WHERE is_global = TRUE
                       OR tenant_key IS NULL
                       OR ($1::text IS NOT NULL AND tenant_key = $1::text)
                """, tenant_key)
        except Exception as e:
            self.logger.error("Error loading policies", resource_type=resource_type,
                              action=action, tenant_key=tenant_key, error=str(e))
            raise PolicyStoreError("Failed to load policies", {"error": str(e)})

        policies = []
        for row in rows:
            try:
                policies.append(Policy.model_validate(dict(row)))
            except ValueError as e:
                self.logger.warning("Skipping unreadable policy row",
                                    policy_key=row["policy_key"], error=str(e))
        return policies

    async def health_check(self) -> bool:
        """Check PostgreSQL health."""
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception as e:
            self.logger.error("PostgreSQL health check failed", error=str(e))
            return False
