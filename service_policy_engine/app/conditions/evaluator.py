"""
Condition evaluator for the Policy Engine Service.

Evaluates each condition group of a ConditionSet against a request and
combines the group results with the set's evaluation mode. A failure inside
one group (bad data, unknown time zone) makes that group False without
aborting the evaluation.
"""

from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from shared.logging import get_logger
from ..policies.models import EvaluationRequest, utcnow
from .attributes import check_attribute_conditions, check_membership, check_tag_conditions
from .models import (
    ConditionEvaluationMode, ConditionSet, EnvironmentConditions, IpConditions,
    NetworkConditions, ResourceConditions, TimeConditions, UserConditions
)
from .network import is_ip_in_cidr

DAYS_OF_WEEK = ("MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY")

# Context keys read by the condition groups
USER_ROLE = "userRole"
USER_GROUP = "userGroup"
USER_PERMISSIONS = "userPermissions"
USER_ATTRIBUTES = "userAttributes"
RESOURCE_TAGS = "resourceTags"
RESOURCE_ATTRIBUTES = "resourceAttributes"
COUNTRY_CODE = "countryCode"
GEO_REGION = "geoRegion"
PROTOCOL = "protocol"
PORT = "port"
ENVIRONMENT = "environment"
REGION = "region"


def resolve_time_zone(name: Optional[str]) -> tzinfo:
    """Map a zone name to a tzinfo; raises for unknown zones."""
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def _as_strings(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(item) for item in value]
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(value)]


def _parse_port(value: Any) -> Optional[int]:
    """Port as int in [0, 65535]; raises ValueError for anything else."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"invalid port: {value!r}")
    port = int(value)
    if port < 0 or port > 65535:
        raise ValueError(f"port out of range: {port}")
    return port


class ConditionEvaluator:
    """Evaluates condition sets against evaluation requests."""

    def __init__(self, default_time_zone: str = "UTC"):
        self.logger = get_logger("policy_engine.condition_evaluator")
        self.default_time_zone = default_time_zone

    def evaluate(self, condition_set: Optional[ConditionSet], request: EvaluationRequest,
                 now: Optional[datetime] = None) -> bool:
        """Evaluate a condition set; an empty set always matches."""
        if condition_set is None or condition_set.is_empty():
            return True
        results = self.evaluate_groups(condition_set, request, now)
        return self.combine(condition_set, results)

    def combine(self, condition_set: ConditionSet, results: Dict[str, bool]) -> bool:
        """Combine group results; absent groups count as True."""
        values = [results.get(name, True) for name in condition_set.groups()]
        if condition_set.evaluation_mode == ConditionEvaluationMode.ANY:
            return any(values)
        return all(values)

    def evaluate_groups(self, condition_set: ConditionSet, request: EvaluationRequest,
                        now: Optional[datetime] = None) -> Dict[str, bool]:
        """Evaluate every present group; returns group name to result."""
        now = now or utcnow()
        evaluators = {
            "time": lambda group: self.evaluate_time(group, now),
            "ip": lambda group: self.evaluate_ip(group, request),
            "user": lambda group: self.evaluate_user(group, request),
            "resource": lambda group: self.evaluate_resource(group, request),
            "network": lambda group: self.evaluate_network(group, request),
            "environment": lambda group: self.evaluate_environment(group, request),
        }

        results: Dict[str, bool] = {}
        for name, group in condition_set.groups().items():
            if group is None:
                continue
            try:
                results[name] = bool(evaluators[name](group))
            except Exception as e:
                self.logger.error("Error evaluating condition group", group=name, error=str(e))
                results[name] = False

        self.logger.debug("Condition groups evaluated", results=results,
                          mode=condition_set.evaluation_mode.value)
        return results

    def evaluate_time(self, conditions: TimeConditions, now: datetime) -> bool:
        try:
            zone = resolve_time_zone(conditions.time_zone or self.default_time_zone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            self.logger.warning("Unknown time zone in time conditions",
                                time_zone=conditions.time_zone, error=str(e))
            return False

        local = now.astimezone(zone)
        moment = local.time()

        time_allowed = True
        if any(r.contains(moment) for r in conditions.denied_time_ranges):
            time_allowed = False
        elif conditions.allowed_time_ranges:
            time_allowed = any(r.contains(moment) for r in conditions.allowed_time_ranges)

        day_allowed = check_membership(
            DAYS_OF_WEEK[local.weekday()],
            conditions.allowed_days_of_week,
            conditions.denied_days_of_week,
        )
        month_allowed = check_membership(local.month, conditions.allowed_months, conditions.denied_months)
        date_allowed = check_membership(
            local.date().isoformat(), conditions.allowed_dates, conditions.denied_dates
        )

        self.logger.debug("Time conditions", local_time=local.isoformat(), time_allowed=time_allowed,
                          day_allowed=day_allowed, month_allowed=month_allowed, date_allowed=date_allowed)
        return time_allowed and day_allowed and month_allowed and date_allowed

    def evaluate_ip(self, conditions: IpConditions, request: EvaluationRequest) -> bool:
        client_ip = request.client_ip.strip() if request.client_ip else None

        if client_ip:
            if client_ip in conditions.denied_ips:
                return False
            if any(is_ip_in_cidr(client_ip, cidr) for cidr in conditions.denied_cidrs):
                return False

        if conditions.allowed_ips or conditions.allowed_cidrs:
            if not client_ip:
                return False
            listed = client_ip in conditions.allowed_ips
            in_range = any(is_ip_in_cidr(client_ip, cidr) for cidr in conditions.allowed_cidrs)
            if not (listed or in_range):
                return False

        country_allowed = check_membership(
            request.get_context_value(COUNTRY_CODE),
            conditions.allowed_countries,
            conditions.denied_countries,
            case_insensitive=True,
        )
        region_allowed = check_membership(
            request.get_context_value(GEO_REGION),
            conditions.allowed_regions,
            conditions.denied_regions,
        )
        return country_allowed and region_allowed

    def evaluate_user(self, conditions: UserConditions, request: EvaluationRequest) -> bool:
        user_id_allowed = check_membership(request.user_id, conditions.allowed_user_ids,
                                           conditions.denied_user_ids)
        role_allowed = check_membership(request.get_context_value(USER_ROLE),
                                        conditions.allowed_roles, conditions.denied_roles)
        group_allowed = check_membership(request.get_context_value(USER_GROUP),
                                         conditions.allowed_user_groups, conditions.denied_user_groups)

        held = _as_strings(request.get_context_value(USER_PERMISSIONS))
        permissions_allowed = True
        if any(permission in conditions.denied_permissions for permission in held):
            permissions_allowed = False
        elif conditions.allowed_permissions:
            permissions_allowed = any(permission in conditions.allowed_permissions for permission in held)

        attributes = request.get_context_map(USER_ATTRIBUTES)
        attributes_allowed = check_attribute_conditions(
            conditions.allowed_user_attributes,
            conditions.denied_user_attributes,
            attributes.get,
        )

        self.logger.debug("User conditions", user_id=request.user_id, user_id_allowed=user_id_allowed,
                          role_allowed=role_allowed, group_allowed=group_allowed,
                          permissions_allowed=permissions_allowed, attributes_allowed=attributes_allowed)
        return user_id_allowed and role_allowed and group_allowed and permissions_allowed and attributes_allowed

    def evaluate_resource(self, conditions: ResourceConditions, request: EvaluationRequest) -> bool:
        type_allowed = check_membership(request.resource_type, conditions.allowed_resource_types,
                                        conditions.denied_resource_types)
        id_allowed = check_membership(request.resource_id, conditions.allowed_resource_ids,
                                      conditions.denied_resource_ids)
        tags_allowed = check_tag_conditions(
            conditions.allowed_resource_tags,
            conditions.denied_resource_tags,
            request.get_context_map(RESOURCE_TAGS),
        )
        attributes = request.get_context_map(RESOURCE_ATTRIBUTES)
        attributes_allowed = check_attribute_conditions(
            conditions.allowed_resource_attributes,
            conditions.denied_resource_attributes,
            attributes.get,
        )
        return type_allowed and id_allowed and tags_allowed and attributes_allowed

    def evaluate_network(self, conditions: NetworkConditions, request: EvaluationRequest) -> bool:
        protocol_allowed = check_membership(
            request.get_context_value(PROTOCOL),
            conditions.allowed_protocols,
            conditions.denied_protocols,
            case_insensitive=True,
        )

        try:
            port = _parse_port(request.get_context_value(PORT))
        except (TypeError, ValueError) as e:
            self.logger.debug("Invalid port in request context", error=str(e))
            return False
        port_allowed = check_membership(port, conditions.allowed_ports, conditions.denied_ports)

        agent = request.user_agent.lower() if request.user_agent else None
        agent_allowed = True
        if agent and any(pattern.lower() in agent for pattern in conditions.denied_user_agents):
            agent_allowed = False
        elif conditions.allowed_user_agents:
            agent_allowed = bool(agent) and any(
                pattern.lower() in agent for pattern in conditions.allowed_user_agents
            )

        return protocol_allowed and port_allowed and agent_allowed

    def evaluate_environment(self, conditions: EnvironmentConditions, request: EvaluationRequest) -> bool:
        tenant_allowed = check_membership(request.tenant_key, conditions.allowed_tenants,
                                          conditions.denied_tenants)
        environment_allowed = check_membership(request.get_context_value(ENVIRONMENT),
                                               conditions.allowed_environments,
                                               conditions.denied_environments)
        region_allowed = check_membership(request.get_context_value(REGION),
                                          conditions.allowed_regions, conditions.denied_regions)
        return tenant_allowed and environment_allowed and region_allowed
