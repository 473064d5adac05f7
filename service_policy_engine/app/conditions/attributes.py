"""
Shared operator evaluation for attribute and tag conditions.

User and resource attribute conditions use the same operator set; they only
differ in where the attribute value is looked up.
"""

import re
from typing import Any, Callable, Iterable, List, Mapping, Optional

from shared.logging import get_logger
from .models import AttributeCondition, AttributeOperator, ResourceTagCondition, TagOperator

logger = get_logger("policy_engine.conditions.attributes")

AttributeLookup = Callable[[str], Any]


def check_membership(
    value: Optional[Any],
    allowed: Iterable[Any],
    denied: Iterable[Any],
    case_insensitive: bool = False,
) -> bool:
    """Deny-then-allow precedence for exact-match lists.

    A deny hit returns False. When an allow list is configured the value must
    be present and listed. Without an allow list the check passes.
    """
    allowed = list(allowed or [])
    denied = list(denied or [])
    if value is not None and case_insensitive:
        value = str(value).upper()
        allowed = [str(item).upper() for item in allowed]
        denied = [str(item).upper() for item in denied]

    if value is not None and value in denied:
        return False
    if allowed:
        return value is not None and value in allowed
    return True


def _as_list(value: Any) -> List[str]:
    """Normalize an IN/NOT_IN operand to a list of strings."""
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(item).strip() for item in value]
    if isinstance(value, str):
        return [item.strip() for item in value.split(",")]
    return [str(value)]


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def _compare(actual: Any, expected: Any) -> int:
    """Numeric comparison when both sides parse as numbers, else string."""
    try:
        left, right = float(actual), float(expected)
    except (TypeError, ValueError):
        left, right = str(actual), str(expected)
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, (list, tuple, set, frozenset)):
        return str(expected) in [str(item) for item in actual]
    return str(expected) in str(actual)


def evaluate_operator(operator: str, actual: Any, expected: Any) -> bool:
    """Apply one attribute operator. Unknown operators never match."""
    if operator == AttributeOperator.IS_NULL:
        return actual is None
    elif operator == AttributeOperator.IS_NOT_NULL:
        return actual is not None
    elif operator == AttributeOperator.IS_EMPTY:
        return _is_empty(actual)
    elif operator == AttributeOperator.IS_NOT_EMPTY:
        return not _is_empty(actual)

    if actual is None:
        return False

    if operator == AttributeOperator.EQ:
        return str(actual) == str(expected)

    elif operator == AttributeOperator.NE:
        return str(actual) != str(expected)

    elif operator == AttributeOperator.CONTAINS:
        return _contains(actual, expected)

    elif operator == AttributeOperator.NOT_CONTAINS:
        return not _contains(actual, expected)

    elif operator == AttributeOperator.STARTS_WITH:
        return str(actual).startswith(str(expected))

    elif operator == AttributeOperator.ENDS_WITH:
        return str(actual).endswith(str(expected))

    elif operator == AttributeOperator.REGEX:
        try:
            return re.fullmatch(str(expected), str(actual)) is not None
        except re.error as e:
            logger.warning("Invalid regex in attribute condition", pattern=str(expected), error=str(e))
            return False

    elif operator == AttributeOperator.IN:
        return str(actual).strip() in _as_list(expected)

    elif operator == AttributeOperator.NOT_IN:
        return str(actual).strip() not in _as_list(expected)

    elif operator == AttributeOperator.GT:
        return _compare(actual, expected) > 0

    elif operator == AttributeOperator.LT:
        return _compare(actual, expected) < 0

    elif operator == AttributeOperator.GTE:
        return _compare(actual, expected) >= 0

    elif operator == AttributeOperator.LTE:
        return _compare(actual, expected) <= 0

    else:
        logger.warning("Unknown attribute operator", operator=operator)
        return False


def evaluate_attribute_condition(condition: AttributeCondition, lookup: AttributeLookup) -> bool:
    """Evaluate one attribute condition against the looked-up value."""
    if not condition.is_valid():
        return False
    return evaluate_operator(condition.operator, lookup(condition.attribute_name), condition.value)


def check_attribute_conditions(
    allowed: List[AttributeCondition],
    denied: List[AttributeCondition],
    lookup: AttributeLookup,
) -> bool:
    """Deny-then-allow precedence over attribute conditions.

    Any matching denied condition fails the check; when allowed conditions
    exist at least one of them must match.
    """
    for condition in denied or []:
        if evaluate_attribute_condition(condition, lookup):
            return False
    if allowed:
        return any(evaluate_attribute_condition(condition, lookup) for condition in allowed)
    return True


def evaluate_tag_condition(condition: ResourceTagCondition, tags: Mapping[str, Any]) -> bool:
    """Evaluate one tag condition against the request's resource tags."""
    if not condition.is_valid():
        return False

    present = condition.tag_key in tags
    if condition.operator == TagOperator.EXISTS:
        return present
    elif condition.operator == TagOperator.NOT_EXISTS:
        return not present

    value = tags.get(condition.tag_key)
    if value is None or condition.tag_value is None:
        return False

    if condition.operator == TagOperator.EQ:
        return str(value) == condition.tag_value
    elif condition.operator == TagOperator.NE:
        return str(value) != condition.tag_value
    elif condition.operator == TagOperator.CONTAINS:
        return condition.tag_value in str(value)
    elif condition.operator == TagOperator.NOT_CONTAINS:
        return condition.tag_value not in str(value)
    else:
        logger.warning("Unknown tag operator", operator=condition.operator)
        return False


def check_tag_conditions(
    allowed: List[ResourceTagCondition],
    denied: List[ResourceTagCondition],
    tags: Mapping[str, Any],
) -> bool:
    """Deny-then-allow precedence over resource tag conditions."""
    for condition in denied or []:
        if evaluate_tag_condition(condition, tags):
            return False
    if allowed:
        return any(evaluate_tag_condition(condition, tags) for condition in allowed)
    return True
