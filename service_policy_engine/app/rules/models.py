"""
Rule data models for the Policy Engine Service.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field, PrivateAttr, field_validator

from ..policies.models import Decision, PayloadModel
from .expressions import Expression, parse_expression


class RuleEvaluationMode(str, Enum):
    """Rule evaluation strategies."""
    ALL = "ALL"
    ANY = "ANY"
    FIRST = "FIRST"


class Rule(PayloadModel):
    """Single rule: a condition expression and the decision it yields."""
    rule_id: Optional[str] = None
    rule_name: Optional[str] = None
    description: Optional[str] = None
    condition: Optional[str] = None
    action: Optional[str] = None
    priority: int = 0
    enabled: bool = True
    parameters: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    version: str = "1.0"

    _expression: Expression = PrivateAttr()

    def model_post_init(self, __context: Any) -> None:
        self._expression = parse_expression(self.condition)

    @property
    def expression(self) -> Expression:
        return self._expression

    @property
    def decision(self) -> Decision:
        """Decision for the rule action; unknown actions are INCONCLUSIVE."""
        return Decision.from_code(self.action) or Decision.INCONCLUSIVE


class RuleSet(PayloadModel):
    """Ordered rules of one policy."""
    default_action: Optional[str] = None
    rules: List[Rule] = Field(default_factory=list)
    evaluation_mode: RuleEvaluationMode = RuleEvaluationMode.FIRST

    @field_validator("evaluation_mode", mode="before")
    @classmethod
    def _mode_upper(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    def is_empty(self) -> bool:
        return not self.rules

    def enabled_rules(self) -> List[Rule]:
        return [rule for rule in self.rules if rule.enabled]
