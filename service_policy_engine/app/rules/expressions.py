"""
Rule condition expressions.

Rule conditions use a deliberately small language: one of the fields
``user.role``, ``resource.type`` or ``action``, the operator ``==`` or
``!=``, and a literal (single-quoted, double-quoted or bare). An empty
condition always matches; anything else is kept as ``Unsupported`` and never
matches.

Expressions are parsed once, when a rule is built.
"""

import re
from dataclasses import dataclass
from typing import Optional, Union

from ..policies.models import EvaluationRequest

USER_ROLE = "user.role"
RESOURCE_TYPE = "resource.type"
ACTION = "action"

_EXPRESSION = re.compile(
    r"""^\s*(?P<field>user\.role|resource\.type|action)\s*
        (?P<op>==|!=)\s*
        (?:'(?P<single>[^']*)'|"(?P<double>[^"]*)"|(?P<bare>[^\s'"]+))\s*$""",
    re.VERBOSE,
)


def field_value(field: str, request: EvaluationRequest) -> Optional[str]:
    """Value of an expression field for the request."""
    if field == USER_ROLE:
        role = request.get_context_value("userRole")
        return str(role) if role is not None else None
    if field == RESOURCE_TYPE:
        return request.resource_type
    if field == ACTION:
        return request.action
    return None


@dataclass(frozen=True)
class Always:
    """Empty condition."""

    def matches(self, request: EvaluationRequest) -> bool:
        return True


@dataclass(frozen=True)
class FieldEquals:
    field: str
    value: str

    def matches(self, request: EvaluationRequest) -> bool:
        return field_value(self.field, request) == self.value


@dataclass(frozen=True)
class FieldNotEquals:
    field: str
    value: str

    def matches(self, request: EvaluationRequest) -> bool:
        return field_value(self.field, request) != self.value


@dataclass(frozen=True)
class Unsupported:
    """Condition outside the supported language; never matches."""
    source: str

    def matches(self, request: EvaluationRequest) -> bool:
        return False


Expression = Union[Always, FieldEquals, FieldNotEquals, Unsupported]


def parse_expression(source: Optional[str]) -> Expression:
    """Parse a rule condition string."""
    if source is None or not source.strip():
        return Always()

    match = _EXPRESSION.match(source)
    if match is None:
        return Unsupported(source)

    literal = next(
        group for group in (match.group("single"), match.group("double"), match.group("bare"))
        if group is not None
    )
    if match.group("op") == "==":
        return FieldEquals(match.group("field"), literal)
    return FieldNotEquals(match.group("field"), literal)
