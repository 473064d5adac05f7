"""
Test helper functions and factory methods for the Governance Policy Engine.

Factories build payloads the way callers and the policy store provide them
(camelCase keys, condition and rule payloads as JSON strings), so tests
exercise the same parsing path as production.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional


class FakeClock:
    """Controllable clock.

    Call the instance for an aware UTC datetime, or ``monotonic()`` for
    seconds; both move together when ``advance`` is called.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)
        self._elapsed = 0.0

    def __call__(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._elapsed

    def advance(self, seconds: float):
        self._now += timedelta(seconds=seconds)
        self._elapsed += seconds

    def set(self, moment: datetime):
        self._elapsed += (moment - self._now).total_seconds()
        self._now = moment


class PolicyFactory:
    """Factory for policy, rule and request payloads."""

    @staticmethod
    def rule(condition: str = "", action: str = "ALLOW", priority: int = 0,
             rule_id: Optional[str] = None, enabled: bool = True) -> Dict[str, Any]:
        return {
            "ruleId": rule_id or f"rule-{action.lower()}-{priority}",
            "condition": condition,
            "action": action,
            "priority": priority,
            "enabled": enabled,
        }

    @staticmethod
    def rule_set(rules: List[Dict[str, Any]], mode: str = "FIRST",
                 default_action: Optional[str] = None) -> Dict[str, Any]:
        payload = {"rules": rules, "evaluationMode": mode}
        if default_action is not None:
            payload["defaultAction"] = default_action
        return payload

    @staticmethod
    def allow_all_rules() -> Dict[str, Any]:
        return PolicyFactory.rule_set([PolicyFactory.rule("", "ALLOW")])

    @staticmethod
    def ip_conditions(allowed_cidrs: Optional[List[str]] = None, **extra) -> Dict[str, Any]:
        ip_conditions = {"allowedCidrs": allowed_cidrs or []}
        ip_conditions.update(extra)
        return {"ipConditions": ip_conditions}

    @staticmethod
    def policy(
        policy_key: str = "policy-1",
        priority: int = 10,
        conditions: Optional[Dict[str, Any]] = None,
        rules: Optional[Dict[str, Any]] = None,
        actions: Optional[List[Dict[str, Any]]] = None,
        target_resources: Optional[List[str]] = None,
        created_at: Optional[datetime] = None,
        **overrides
    ) -> Dict[str, Any]:
        """Stored policy record with JSON payload columns."""
        payload = {
            "policyKey": policy_key,
            "policyName": f"Policy {policy_key}",
            "status": "ACTIVE",
            "priority": priority,
            "isEnabled": True,
            "isGlobal": True,
            "conditions": json.dumps(conditions) if conditions is not None else None,
            "rules": json.dumps(rules if rules is not None else PolicyFactory.allow_all_rules()),
            "actions": json.dumps(actions) if actions is not None else None,
            "targetResources": json.dumps(target_resources) if target_resources is not None else None,
            "createdAt": (created_at or datetime(2024, 1, 1, tzinfo=timezone.utc)).isoformat(),
        }
        payload.update(overrides)
        return payload

    @staticmethod
    def request(
        resource_type: str = "EC2_INSTANCE",
        action: str = "CREATE",
        user_id: str = "u1",
        client_ip: Optional[str] = "192.168.1.50",
        **overrides
    ) -> Dict[str, Any]:
        payload = {
            "resourceType": resource_type,
            "resourceId": "i-0123456789",
            "action": action,
            "userId": user_id,
            "clientIp": client_ip,
            "context": {},
        }
        payload.update(overrides)
        return payload
