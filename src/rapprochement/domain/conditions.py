"""Typed rule conditions.

Every rule type has exactly one condition class. Payloads arrive as plain
dictionaries (from the CLI or from the JSON column) and are turned into these
frozen objects once, by ``parse_condition``. Nothing downstream reads raw
payloads.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from rapprochement.domain.entities import Direction, Family, RuleType
from rapprochement.domain.errors import ValidationError
from rapprochement.utils.keywords import KeywordGroups, format_keywords, parse_keywords

DEFAULT_TOLERANCE = Decimal("0.01")
DEFAULT_WINDOW_DAYS = 5

ALL_FAMILIES = tuple(Family)


@dataclass(frozen=True)
class AmountCondition:
    tolerance: Decimal = DEFAULT_TOLERANCE


@dataclass(frozen=True)
class DateCondition:
    window_days: int = DEFAULT_WINDOW_DAYS


@dataclass(frozen=True)
class TransactionTypeCondition:
    direction: Direction = Direction.AUTO


@dataclass(frozen=True)
class KeywordCondition:
    """Keyword test on the bank label (LABEL, PARTNER, SUBSCRIPTION, CHARGE_DECLARATION).

    Empty ``keywords`` is a wildcard: every candidate of the family matches.
    ``entity_id`` restricts the rule to one record of the family.
    """

    keywords: KeywordGroups = ()
    entity_id: Optional[int] = None
    direction: Direction = Direction.ANY
    match_entity_keywords: bool = False


@dataclass(frozen=True)
class CustomCondition:
    """AND-combination of the primitive conditions.

    A primitive left to None is not part of the combination.
    """

    families: tuple[Family, ...] = ALL_FAMILIES
    keywords: Optional[KeywordGroups] = None
    tolerance: Optional[Decimal] = None
    window_days: Optional[int] = None
    direction: Optional[Direction] = None
    entity_id: Optional[int] = None
    match_entity_keywords: bool = False


Condition = Union[
    AmountCondition,
    DateCondition,
    TransactionTypeCondition,
    KeywordCondition,
    CustomCondition,
]

CONDITION_TYPES: dict[RuleType, type] = {
    RuleType.AMOUNT: AmountCondition,
    RuleType.DATE: DateCondition,
    RuleType.LABEL: KeywordCondition,
    RuleType.TRANSACTION_TYPE: TransactionTypeCondition,
    RuleType.PARTNER: KeywordCondition,
    RuleType.SUBSCRIPTION: KeywordCondition,
    RuleType.CHARGE_DECLARATION: KeywordCondition,
    RuleType.CUSTOM: CustomCondition,
}

# Families a rule type is evaluated against. CUSTOM declares its own.
RULE_FAMILIES: dict[RuleType, tuple[Family, ...]] = {
    RuleType.AMOUNT: ALL_FAMILIES,
    RuleType.DATE: ALL_FAMILIES,
    RuleType.LABEL: (Family.INVOICE,),
    RuleType.TRANSACTION_TYPE: (Family.INVOICE,),
    RuleType.PARTNER: (Family.PARTNER,),
    RuleType.SUBSCRIPTION: (Family.SUBSCRIPTION,),
    RuleType.CHARGE_DECLARATION: (Family.CHARGE_DECLARATION,),
}

_ALLOWED_KEYS: dict[RuleType, set[str]] = {
    RuleType.AMOUNT: {"tolerance"},
    RuleType.DATE: {"window_days"},
    RuleType.TRANSACTION_TYPE: {"direction"},
    RuleType.LABEL: {"keywords", "entity_id", "direction", "match_entity_keywords"},
    RuleType.PARTNER: {"keywords", "entity_id", "direction", "match_entity_keywords"},
    RuleType.SUBSCRIPTION: {"keywords", "entity_id", "direction", "match_entity_keywords"},
    RuleType.CHARGE_DECLARATION: {"keywords", "entity_id", "direction", "match_entity_keywords"},
    RuleType.CUSTOM: {
        "families",
        "keywords",
        "tolerance",
        "window_days",
        "direction",
        "entity_id",
        "match_entity_keywords",
    },
}


def families_for(rule_type: RuleType, condition: Condition) -> tuple[Family, ...]:
    """Return the families a rule is evaluated against."""
    if isinstance(condition, CustomCondition):
        return condition.families
    return RULE_FAMILIES[rule_type]


def _parse_tolerance(value: Any) -> Decimal:
    try:
        tolerance = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"Invalid tolerance '{value}'") from e
    if not tolerance.is_finite() or tolerance < 0:
        raise ValidationError(f"Tolerance must be a number >= 0, got '{value}'")
    return tolerance


def _parse_window(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Invalid window_days '{value}'")
    try:
        window = int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid window_days '{value}'") from e
    if window < 0 or str(window) != str(value).strip():
        raise ValidationError(f"window_days must be a whole number >= 0, got '{value}'")
    return window


def _parse_direction(value: Any, allow_auto: bool) -> Direction:
    try:
        direction = Direction(str(value).upper())
    except ValueError as e:
        raise ValidationError(f"Invalid direction '{value}'") from e
    if direction is Direction.AUTO and not allow_auto:
        raise ValidationError("Direction AUTO is only valid for TRANSACTION_TYPE rules")
    return direction


def _parse_entity_id(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Invalid entity_id '{value}'")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid entity_id '{value}'") from e


def _parse_keyword_list(value: Any) -> KeywordGroups:
    if isinstance(value, str):
        return parse_keywords(value)
    if not isinstance(value, (list, tuple)):
        raise ValidationError("keywords must be a list of strings")
    if not all(isinstance(item, str) for item in value):
        raise ValidationError("keywords must be a list of strings")
    return parse_keywords(value)


def _parse_families(value: Any) -> tuple[Family, ...]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)) or not value:
        raise ValidationError("families must be a non-empty list")
    families = []
    for item in value:
        try:
            family = Family(str(item).upper())
        except ValueError as e:
            raise ValidationError(f"Unknown family '{item}'") from e
        if family not in families:
            families.append(family)
    # Canonical order keeps serialized payloads stable
    return tuple(f for f in ALL_FAMILIES if f in families)


def parse_condition(rule_type: RuleType, payload: Optional[dict[str, Any]]) -> Condition:
    """Validate a raw payload and build the condition for a rule type.

    Args:
        rule_type: Rule type the payload belongs to
        payload: Raw key-value payload (None is treated as empty)

    Returns:
        Condition object of the class registered for ``rule_type``

    Raises:
        ValidationError: If the payload does not fit the rule type's schema
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError(f"Payload for {rule_type.value} rule must be an object")

    unknown = set(payload) - _ALLOWED_KEYS[rule_type]
    if unknown:
        raise ValidationError(
            f"Unknown payload field(s) for {rule_type.value} rule: {', '.join(sorted(unknown))}"
        )

    if rule_type is RuleType.AMOUNT:
        if "tolerance" not in payload:
            raise ValidationError("AMOUNT rule requires a 'tolerance' >= 0")
        return AmountCondition(tolerance=_parse_tolerance(payload["tolerance"]))

    if rule_type is RuleType.DATE:
        return DateCondition(
            window_days=_parse_window(payload.get("window_days", DEFAULT_WINDOW_DAYS))
        )

    if rule_type is RuleType.TRANSACTION_TYPE:
        return TransactionTypeCondition(
            direction=_parse_direction(payload.get("direction", Direction.AUTO.value), True)
        )

    match_entity_keywords = payload.get("match_entity_keywords", False)
    if not isinstance(match_entity_keywords, bool):
        raise ValidationError("match_entity_keywords must be true or false")

    if rule_type is RuleType.CUSTOM:
        return CustomCondition(
            families=_parse_families(payload["families"]) if "families" in payload else ALL_FAMILIES,
            keywords=_parse_keyword_list(payload["keywords"]) if "keywords" in payload else None,
            tolerance=_parse_tolerance(payload["tolerance"]) if "tolerance" in payload else None,
            window_days=_parse_window(payload["window_days"]) if "window_days" in payload else None,
            direction=_parse_direction(payload["direction"], False) if "direction" in payload else None,
            entity_id=_parse_entity_id(payload.get("entity_id")),
            match_entity_keywords=match_entity_keywords,
        )

    if rule_type in (RuleType.SUBSCRIPTION, RuleType.CHARGE_DECLARATION):
        if "keywords" not in payload:
            raise ValidationError(
                f"{rule_type.value} rule requires a 'keywords' list (may be empty)"
            )

    return KeywordCondition(
        keywords=_parse_keyword_list(payload.get("keywords", [])),
        entity_id=_parse_entity_id(payload.get("entity_id")),
        direction=_parse_direction(payload.get("direction", Direction.ANY.value), False),
        match_entity_keywords=match_entity_keywords,
    )


def condition_to_payload(condition: Condition) -> dict[str, Any]:
    """Serialize a condition back to a JSON-compatible payload."""
    if isinstance(condition, AmountCondition):
        return {"tolerance": str(condition.tolerance)}
    if isinstance(condition, DateCondition):
        return {"window_days": condition.window_days}
    if isinstance(condition, TransactionTypeCondition):
        return {"direction": condition.direction.value}
    if isinstance(condition, KeywordCondition):
        payload: dict[str, Any] = {
            "keywords": [format_keywords((group,)) for group in condition.keywords],
            "direction": condition.direction.value,
        }
        if condition.entity_id is not None:
            payload["entity_id"] = condition.entity_id
        if condition.match_entity_keywords:
            payload["match_entity_keywords"] = True
        return payload
    if isinstance(condition, CustomCondition):
        payload = {"families": [f.value for f in condition.families]}
        if condition.keywords is not None:
            payload["keywords"] = [format_keywords((group,)) for group in condition.keywords]
        if condition.tolerance is not None:
            payload["tolerance"] = str(condition.tolerance)
        if condition.window_days is not None:
            payload["window_days"] = condition.window_days
        if condition.direction is not None:
            payload["direction"] = condition.direction.value
        if condition.entity_id is not None:
            payload["entity_id"] = condition.entity_id
        if condition.match_entity_keywords:
            payload["match_entity_keywords"] = True
        return payload
    raise ValidationError(f"Unsupported condition {type(condition).__name__}")


def describe_condition(condition: Condition) -> str:
    """Short human-readable summary, used by the CLI listings."""
    parts = []
    for key, value in condition_to_payload(condition).items():
        if isinstance(value, list):
            value = "; ".join(str(v) for v in value) or "*"
        parts.append(f"{key}={value}")
    return ", ".join(parts)
