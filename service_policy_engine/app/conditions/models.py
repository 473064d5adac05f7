"""
Condition data models for the Policy Engine Service.

A ConditionSet holds up to six optional groups. Each group carries allow and
deny lists; a deny hit always wins and an allow list, when present, requires
membership.
"""

from datetime import time
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator

from ..policies.models import PayloadModel


class ConditionEvaluationMode(str, Enum):
    """How the group results of a condition set are combined."""
    ALL = "ALL"
    ANY = "ANY"


class AttributeOperator(str, Enum):
    """Operators shared by user and resource attribute conditions."""
    EQ = "EQ"
    NE = "NE"
    CONTAINS = "CONTAINS"
    NOT_CONTAINS = "NOT_CONTAINS"
    STARTS_WITH = "STARTS_WITH"
    ENDS_WITH = "ENDS_WITH"
    REGEX = "REGEX"
    IN = "IN"
    NOT_IN = "NOT_IN"
    GT = "GT"
    LT = "LT"
    GTE = "GTE"
    LTE = "LTE"
    IS_NULL = "IS_NULL"
    IS_NOT_NULL = "IS_NOT_NULL"
    IS_EMPTY = "IS_EMPTY"
    IS_NOT_EMPTY = "IS_NOT_EMPTY"


class TagOperator(str, Enum):
    """Operators for resource tag conditions."""
    EQ = "EQ"
    NE = "NE"
    CONTAINS = "CONTAINS"
    NOT_CONTAINS = "NOT_CONTAINS"
    EXISTS = "EXISTS"
    NOT_EXISTS = "NOT_EXISTS"


def _upper(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().upper()
    return value


class AttributeCondition(PayloadModel):
    """Generic (attributeName, operator, value) check.

    The operator is kept as a plain string so that an unknown operator in a
    stored payload only fails its own check.
    """
    attribute_name: Optional[str] = None
    operator: str = AttributeOperator.EQ.value
    value: Any = None
    description: Optional[str] = None

    @field_validator("operator", mode="before")
    @classmethod
    def _operator_upper(cls, value: Any) -> Any:
        return _upper(value)

    def is_valid(self) -> bool:
        return bool(self.attribute_name)


class ResourceTagCondition(PayloadModel):
    """Check against one key of the request's resource tags."""
    tag_key: Optional[str] = None
    tag_value: Optional[str] = None
    operator: str = TagOperator.EQ.value

    @field_validator("operator", mode="before")
    @classmethod
    def _operator_upper(cls, value: Any) -> Any:
        return _upper(value)

    def is_valid(self) -> bool:
        return bool(self.tag_key)


class TimeRange(PayloadModel):
    """Inclusive time-of-day range; start after end wraps past midnight."""
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    description: Optional[str] = None

    def is_valid(self) -> bool:
        return (
            self.start_time is not None
            and self.end_time is not None
            and self.start_time != self.end_time
        )

    def contains(self, moment: Optional[time]) -> bool:
        if not self.is_valid() or moment is None:
            return False
        if self.start_time > self.end_time:
            return moment >= self.start_time or moment <= self.end_time
        return self.start_time <= moment <= self.end_time


class TimeConditions(PayloadModel):
    allowed_time_ranges: List[TimeRange] = Field(default_factory=list)
    denied_time_ranges: List[TimeRange] = Field(default_factory=list)
    allowed_days_of_week: List[str] = Field(default_factory=list)
    denied_days_of_week: List[str] = Field(default_factory=list)
    allowed_months: List[int] = Field(default_factory=list)
    denied_months: List[int] = Field(default_factory=list)
    allowed_dates: List[str] = Field(default_factory=list)
    denied_dates: List[str] = Field(default_factory=list)
    time_zone: Optional[str] = None

    @field_validator("allowed_days_of_week", "denied_days_of_week", mode="before")
    @classmethod
    def _days_upper(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [_upper(day) for day in value]
        return value


class IpConditions(PayloadModel):
    allowed_ips: List[str] = Field(default_factory=list)
    denied_ips: List[str] = Field(default_factory=list)
    allowed_cidrs: List[str] = Field(default_factory=list)
    denied_cidrs: List[str] = Field(default_factory=list)
    allowed_countries: List[str] = Field(default_factory=list)
    denied_countries: List[str] = Field(default_factory=list)
    allowed_regions: List[str] = Field(default_factory=list)
    denied_regions: List[str] = Field(default_factory=list)

    @field_validator("allowed_countries", "denied_countries", mode="before")
    @classmethod
    def _countries_upper(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [_upper(code) for code in value]
        return value


class UserConditions(PayloadModel):
    allowed_user_ids: List[str] = Field(default_factory=list)
    denied_user_ids: List[str] = Field(default_factory=list)
    allowed_user_groups: List[str] = Field(default_factory=list)
    denied_user_groups: List[str] = Field(default_factory=list)
    allowed_roles: List[str] = Field(default_factory=list)
    denied_roles: List[str] = Field(default_factory=list)
    allowed_permissions: List[str] = Field(default_factory=list)
    denied_permissions: List[str] = Field(default_factory=list)
    allowed_user_attributes: List[AttributeCondition] = Field(default_factory=list)
    denied_user_attributes: List[AttributeCondition] = Field(default_factory=list)


class ResourceConditions(PayloadModel):
    allowed_resource_types: List[str] = Field(default_factory=list)
    denied_resource_types: List[str] = Field(default_factory=list)
    allowed_resource_ids: List[str] = Field(default_factory=list)
    denied_resource_ids: List[str] = Field(default_factory=list)
    allowed_resource_tags: List[ResourceTagCondition] = Field(default_factory=list)
    denied_resource_tags: List[ResourceTagCondition] = Field(default_factory=list)
    allowed_resource_attributes: List[AttributeCondition] = Field(default_factory=list)
    denied_resource_attributes: List[AttributeCondition] = Field(default_factory=list)


class NetworkConditions(PayloadModel):
    allowed_protocols: List[str] = Field(default_factory=list)
    denied_protocols: List[str] = Field(default_factory=list)
    allowed_ports: List[int] = Field(default_factory=list)
    denied_ports: List[int] = Field(default_factory=list)
    allowed_user_agents: List[str] = Field(default_factory=list)
    denied_user_agents: List[str] = Field(default_factory=list)


class EnvironmentConditions(PayloadModel):
    allowed_environments: List[str] = Field(default_factory=list)
    denied_environments: List[str] = Field(default_factory=list)
    allowed_tenants: List[str] = Field(default_factory=list)
    denied_tenants: List[str] = Field(default_factory=list)
    allowed_regions: List[str] = Field(default_factory=list)
    denied_regions: List[str] = Field(default_factory=list)


class ConditionSet(PayloadModel):
    """All condition groups of one policy."""
    time_conditions: Optional[TimeConditions] = None
    ip_conditions: Optional[IpConditions] = None
    user_conditions: Optional[UserConditions] = None
    resource_conditions: Optional[ResourceConditions] = None
    network_conditions: Optional[NetworkConditions] = None
    environment_conditions: Optional[EnvironmentConditions] = None
    evaluation_mode: ConditionEvaluationMode = ConditionEvaluationMode.ALL

    @field_validator("evaluation_mode", mode="before")
    @classmethod
    def _mode_upper(cls, value: Any) -> Any:
        return _upper(value)

    def groups(self) -> Dict[str, Any]:
        """Group name to group (None when absent), in evaluation order."""
        return {
            "time": self.time_conditions,
            "ip": self.ip_conditions,
            "user": self.user_conditions,
            "resource": self.resource_conditions,
            "network": self.network_conditions,
            "environment": self.environment_conditions,
        }

    def active_condition_count(self) -> int:
        return sum(1 for group in self.groups().values() if group is not None)

    def is_empty(self) -> bool:
        return self.active_condition_count() == 0
