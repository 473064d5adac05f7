"""
Lenient parsing of the JSON payloads stored on a policy.

Malformed payloads never raise: conditions and rules fall back to empty
sets, actions to an empty list. Target resources report malformed input as
``None`` so that the resolver can treat the policy as not applicable.
"""

import json
from typing import List, Optional

from pydantic import ValidationError

from shared.logging import get_logger
from ..conditions.models import ConditionSet
from ..rules.models import RuleSet
from .models import PolicyAction


class PolicyJsonParser:
    """Parser for condition, rule, action and target payloads."""

    def __init__(self):
        self.logger = get_logger("policy_engine.policy_parser")

    def parse_condition_set(self, payload: Optional[str]) -> ConditionSet:
        if payload is None or not payload.strip():
            return ConditionSet()
        try:
            return ConditionSet.model_validate_json(payload)
        except ValidationError as e:
            self.logger.warning("Malformed condition payload", error=str(e))
            return ConditionSet()

    def parse_rule_set(self, payload: Optional[str]) -> RuleSet:
        if payload is None or not payload.strip():
            return RuleSet()
        try:
            return RuleSet.model_validate_json(payload)
        except ValidationError as e:
            self.logger.warning("Malformed rule payload", error=str(e))
            return RuleSet()

    def parse_actions(self, payload: Optional[str]) -> List[PolicyAction]:
        """Parse actions, dropping entries without a known type.

        The result is ordered by priority, highest first.
        """
        if payload is None or not payload.strip():
            return []
        try:
            raw = json.loads(payload)
        except ValueError as e:
            self.logger.warning("Malformed action payload", error=str(e))
            return []
        if not isinstance(raw, list):
            self.logger.warning("Action payload is not a list", payload_type=type(raw).__name__)
            return []

        actions = []
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            try:
                actions.append(PolicyAction.model_validate(entry))
            except ValidationError:
                self.logger.debug("Dropping invalid policy action", action=entry)

        actions.sort(key=lambda action: action.priority, reverse=True)
        self.logger.debug("Actions parsed", total=len(raw), valid=len(actions))
        return actions

    def parse_target_resources(self, payload: Optional[str]) -> Optional[List[str]]:
        """Parse target resources; empty list when absent, None when malformed."""
        if payload is None or not payload.strip():
            return []
        try:
            raw = json.loads(payload)
        except ValueError as e:
            self.logger.warning("Malformed target resources payload", error=str(e))
            return None
        if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
            self.logger.warning("Target resources payload is not a list of strings")
            return None
        return [item.strip() for item in raw if item.strip()]
