"""Matching rule store."""

import logging
from typing import Any, Optional, Union

from rapprochement.database.base import Database
from rapprochement.domain.conditions import condition_to_payload, parse_condition
from rapprochement.domain.entities import Rule, RuleType
from rapprochement.domain.errors import NotFoundError, ValidationError, rule_not_found

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 100


def parse_rule_type(rule_type: Union[RuleType, str]) -> RuleType:
    """Return the RuleType for a member or its name (case-insensitive)."""
    if isinstance(rule_type, RuleType):
        return rule_type
    try:
        return RuleType(str(rule_type).strip().upper())
    except ValueError as e:
        choices = ", ".join(t.value for t in RuleType)
        raise ValidationError(f"Unknown rule type '{rule_type}' (expected one of: {choices})") from e


def _validate_score(score_contribution: Any) -> int:
    if isinstance(score_contribution, bool) or not isinstance(score_contribution, int):
        raise ValidationError(f"Score contribution must be an integer, got '{score_contribution}'")
    if not 0 <= score_contribution <= 100:
        raise ValidationError(
            f"Score contribution must be between 0 and 100, got {score_contribution}"
        )
    return score_contribution


def _validate_priority(priority: Any) -> int:
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise ValidationError(f"Priority must be an integer, got '{priority}'")
    return priority


def _validate_name(name: str) -> str:
    if name is None or not name.strip():
        raise ValidationError("Rule name cannot be empty")
    return name.strip()


class RuleService:
    """Service for managing matching rules.

    Payloads are validated against the rule type's schema before anything is
    written; a rejected rule leaves the store untouched.
    """

    def __init__(self, db: Database):
        """Initialize rule service.

        Args:
            db: Database instance
        """
        self.db = db

    def create_rule(
        self,
        name: str,
        rule_type: Union[RuleType, str],
        score_contribution: int,
        payload: Optional[dict[str, Any]] = None,
        priority: int = DEFAULT_PRIORITY,
        active: bool = True,
    ) -> int:
        """Create a rule.

        Args:
            name: Rule name
            rule_type: One of the RuleType members
            score_contribution: Points added when the rule fires (0-100)
            payload: Type-specific condition payload
            priority: Lower values are evaluated first and win ties
            active: Whether the rule takes part in matching

        Returns:
            Rule ID

        Raises:
            ValidationError: If any field or the payload is invalid
        """
        name = _validate_name(name)
        rule_type = parse_rule_type(rule_type)
        score_contribution = _validate_score(score_contribution)
        priority = _validate_priority(priority)
        condition = parse_condition(rule_type, payload)

        rule_id = self.db.create_rule(
            name=name,
            rule_type=rule_type,
            priority=priority,
            score_contribution=score_contribution,
            payload=condition_to_payload(condition),
            active=active,
        )
        logger.info("Created %s rule %d '%s'", rule_type.value, rule_id, name)
        return rule_id

    def get_rule(self, rule_id: int) -> Optional[Rule]:
        """Get rule by ID."""
        return self.db.get_rule(rule_id)

    def list_rules(self, include_inactive: bool = True) -> list[Rule]:
        """List rules ordered by priority, then ID."""
        return self.db.list_rules(active_only=not include_inactive)

    def active_rules(self, rule_type: Optional[Union[RuleType, str]] = None) -> list[Rule]:
        """Active rules ordered by priority, then ID.

        Args:
            rule_type: Optional type filter
        """
        if rule_type is not None:
            rule_type = parse_rule_type(rule_type)
        return self.db.list_rules(active_only=True, rule_type=rule_type)

    def update_rule(
        self,
        rule_id: int,
        name: Optional[str] = None,
        priority: Optional[int] = None,
        score_contribution: Optional[int] = None,
        payload: Optional[dict[str, Any]] = None,
        active: Optional[bool] = None,
    ) -> None:
        """Update a rule. The rule type itself cannot change.

        Raises:
            NotFoundError: If the rule does not exist
            ValidationError: If any new value is invalid
        """
        rule = self.db.get_rule(rule_id)
        if rule is None:
            raise NotFoundError(rule_not_found(rule_id))

        stored_payload = None
        if payload is not None:
            stored_payload = condition_to_payload(parse_condition(rule.rule_type, payload))

        self.db.update_rule(
            rule_id,
            name=_validate_name(name) if name is not None else None,
            priority=_validate_priority(priority) if priority is not None else None,
            score_contribution=(
                _validate_score(score_contribution) if score_contribution is not None else None
            ),
            payload=stored_payload,
            active=active,
        )
        logger.info("Updated rule %d", rule_id)

    def deactivate_rule(self, rule_id: int) -> None:
        """Disable a rule. Links it produced are kept."""
        self.update_rule(rule_id, active=False)
