"""
Policy, request and result models for the Policy Engine Service.

All models accept camelCase keys (as stored and as sent by callers) as well
as their snake_case field names. Null values in a payload fall back to the
field default.
"""

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PayloadModel(BaseModel):
    """Base for models parsed from stored JSON payloads and caller input."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class Decision(str, Enum):
    """Authorization decision."""
    ALLOW = "ALLOW"
    DENY = "DENY"
    INCONCLUSIVE = "INCONCLUSIVE"

    @classmethod
    def from_code(cls, code: Any) -> Optional["Decision"]:
        """Case-insensitive lookup; returns None for unknown codes."""
        if code is None:
            return None
        if isinstance(code, Decision):
            return code
        try:
            return cls(str(code).strip().upper())
        except ValueError:
            return None


class PolicyStatus(str, Enum):
    """Policy lifecycle status."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    PENDING = "PENDING"
    SUSPENDED = "SUSPENDED"
    DELETED = "DELETED"


class ActionType(str, Enum):
    """Follow-up actions a DENY may trigger."""
    BLOCK_USER = "BLOCK_USER"
    BLOCK_IP = "BLOCK_IP"
    REQUIRE_2FA = "REQUIRE_2FA"
    SEND_ALERT = "SEND_ALERT"
    QUARANTINE_RESOURCE = "QUARANTINE_RESOURCE"
    ESCALATE_TO_ADMIN = "ESCALATE_TO_ADMIN"
    LOG_VIOLATION = "LOG_VIOLATION"
    NOTIFY_USER = "NOTIFY_USER"
    SUSPEND_ACCOUNT = "SUSPEND_ACCOUNT"
    REVOKE_ACCESS = "REVOKE_ACCESS"


class ActionStatus(str, Enum):
    """Execution status of a policy action."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class PolicyAction(PayloadModel):
    """Action attached to a denying policy."""
    type: ActionType
    description: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    status: ActionStatus = ActionStatus.PENDING

    @field_validator("type", "status", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value


class Policy(PayloadModel):
    """Stored security policy as read by the engine.

    Condition, rule, action and target payloads are kept as the raw JSON
    strings found in storage; they are parsed when the policy is compiled.
    """
    policy_key: str
    policy_name: Optional[str] = None
    description: Optional[str] = None
    tenant_key: Optional[str] = None
    status: PolicyStatus = PolicyStatus.ACTIVE
    priority: int = 0
    is_enabled: bool = True
    is_global: bool = False
    is_system: bool = False
    effective_from: Optional[datetime] = None
    effective_until: Optional[datetime] = None
    conditions: Optional[str] = None
    rules: Optional[str] = None
    actions: Optional[str] = None
    target_resources: Optional[str] = None
    version: str = "1.0"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("policy_key")
    @classmethod
    def _policy_key_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("policy_key must not be blank")
        return value

    @field_validator("status", mode="before")
    @classmethod
    def _status_upper(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("effective_from", "effective_until", "created_at", "updated_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    def is_effective_at(self, now: datetime) -> bool:
        """Check the effective window; absent bounds are unbounded."""
        if self.effective_from is not None and now < self.effective_from:
            return False
        if self.effective_until is not None and now > self.effective_until:
            return False
        return True

    def is_applicable_at(self, now: datetime) -> bool:
        """Enabled, active and inside its effective window."""
        return (
            self.is_enabled
            and self.status == PolicyStatus.ACTIVE
            and self.is_effective_at(now)
        )


class EvaluationRequest(PayloadModel):
    """Request to act on a resource."""
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    action: Optional[str] = None
    user_id: Optional[str] = None
    tenant_key: Optional[str] = None
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None
    request_id: str = Field(default_factory=lambda: generate_request_id())

    @field_validator("timestamp", "expires_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True iff expires_at is set and now is past it."""
        if self.expires_at is None:
            return False
        return (now or utcnow()) > self.expires_at

    def get_context_value(self, key: str, default: Any = None) -> Any:
        return self.context.get(key, default)

    def get_context_map(self, key: str) -> Dict[str, Any]:
        """Nested mapping from the context, or an empty dict."""
        value = self.context.get(key)
        return value if isinstance(value, dict) else {}

    def missing_fields(self) -> List[str]:
        """Names of required fields that are absent or blank."""
        missing = []
        for name in ("resource_type", "action", "user_id"):
            value = getattr(self, name)
            if value is None or not str(value).strip():
                missing.append(name)
        return missing


def generate_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:16]}"


class EvaluationResult(PayloadModel):
    """Outcome of one evaluation.

    ``decision`` is always set; the ``is_*`` helpers derive from it alone.
    """
    decision: Decision
    policy_key: Optional[str] = None
    policy_name: Optional[str] = None
    policy_priority: Optional[int] = None
    policy_version: Optional[str] = None
    reason: Optional[str] = None
    actions: List[PolicyAction] = Field(default_factory=list)
    evaluated_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None
    evaluation_time_ms: Optional[float] = None
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    request_id: Optional[str] = None
    cache_hit: bool = False
    evaluated_conditions: Dict[str, bool] = Field(default_factory=dict)

    @field_validator("evaluated_at", "expires_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @classmethod
    def allow(cls, reason: str, **kwargs) -> "EvaluationResult":
        return cls(decision=Decision.ALLOW, reason=reason, **kwargs)

    @classmethod
    def deny(cls, reason: str, **kwargs) -> "EvaluationResult":
        return cls(decision=Decision.DENY, reason=reason, **kwargs)

    @classmethod
    def inconclusive(cls, reason: str, **kwargs) -> "EvaluationResult":
        return cls(decision=Decision.INCONCLUSIVE, reason=reason, **kwargs)

    def is_allowed(self) -> bool:
        return self.decision == Decision.ALLOW

    def is_denied(self) -> bool:
        return self.decision == Decision.DENY

    def is_inconclusive(self) -> bool:
        return self.decision == Decision.INCONCLUSIVE

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) > self.expires_at

    def set_expiration(self, ttl_seconds: float, now: Optional[datetime] = None):
        self.expires_at = (now or utcnow()) + timedelta(seconds=ttl_seconds)

    def add_warning(self, warning: str):
        self.warnings.append(warning)

    def add_error(self, error: str):
        self.errors.append(error)
