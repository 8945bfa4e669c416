"""Rule-based scoring of bank lines against candidate records.

The matcher is a pure function of its inputs: one transaction line, the
active rules and the candidate pools. It performs no I/O, so a session can
run it line by line and stop between any two lines.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping, Sequence

from rapprochement.domain.conditions import (
    CONDITION_TYPES,
    AmountCondition,
    CustomCondition,
    DateCondition,
    KeywordCondition,
    TransactionTypeCondition,
    families_for,
)
from rapprochement.domain.entities import (
    CandidateEntity,
    Direction,
    Family,
    MatchCandidate,
    MatchResult,
    Rule,
    TransactionLine,
)
from rapprochement.domain.errors import MalformedRuleError
from rapprochement.utils.keywords import matches_label, parse_keywords

logger = logging.getLogger(__name__)

MAX_SCORE = 100


@dataclass(frozen=True)
class MatcherSettings:
    """Thresholds and defaults for automatic reconciliation."""

    invoice_threshold: int = 50
    partner_threshold: int = 30
    balance_tolerance: Decimal = Decimal("0.01")

    def threshold_for(self, family: Family) -> int:
        if family is Family.INVOICE:
            return self.invoice_threshold
        return self.partner_threshold


def order_rules(rules: Iterable[Rule]) -> list[Rule]:
    """Sort rules by priority, then id."""
    return sorted(rules, key=lambda r: (r.priority, r.id))


def _amount_matches(line: TransactionLine, candidate: CandidateEntity, tolerance: Decimal) -> bool:
    if candidate.reference_amount is None:
        return False
    return abs(abs(line.amount) - abs(candidate.reference_amount)) <= tolerance


def _date_matches(line: TransactionLine, candidate: CandidateEntity, window_days: int) -> bool:
    if candidate.reference_date is None:
        return False
    return abs((line.date - candidate.reference_date).days) <= window_days


def _direction_matches(line: TransactionLine, expected: Direction) -> bool:
    if expected is Direction.ANY:
        return True
    return line.direction is expected


def _entity_keywords_match(line: TransactionLine, candidate: CandidateEntity) -> bool:
    groups = parse_keywords(candidate.keyword_corpus)
    return bool(groups) and matches_label(groups, line.label)


def _keyword_condition_fires(
    condition: KeywordCondition, line: TransactionLine, candidate: CandidateEntity
) -> bool:
    if condition.entity_id is not None and condition.entity_id != candidate.id:
        return False
    if not _direction_matches(line, condition.direction):
        return False
    if condition.keywords and not matches_label(condition.keywords, line.label):
        return False
    if condition.match_entity_keywords and not _entity_keywords_match(line, candidate):
        return False
    return True


def _custom_condition_fires(
    condition: CustomCondition, line: TransactionLine, candidate: CandidateEntity
) -> bool:
    if condition.entity_id is not None and condition.entity_id != candidate.id:
        return False
    if condition.direction is not None and not _direction_matches(line, condition.direction):
        return False
    if condition.keywords and not matches_label(condition.keywords, line.label):
        return False
    if condition.match_entity_keywords and not _entity_keywords_match(line, candidate):
        return False
    if condition.tolerance is not None and not _amount_matches(line, candidate, condition.tolerance):
        return False
    if condition.window_days is not None and not _date_matches(line, candidate, condition.window_days):
        return False
    return True


def rule_fires(rule: Rule, line: TransactionLine, candidate: CandidateEntity) -> bool:
    """Evaluate one rule for one (line, candidate) pair.

    Raises:
        MalformedRuleError: If the rule's condition does not belong to its type
    """
    condition = rule.condition
    expected = CONDITION_TYPES.get(rule.rule_type)
    if expected is None or not isinstance(condition, expected):
        raise MalformedRuleError(
            f"Rule {rule.id} ({rule.name}) has a condition that does not fit type "
            f"{getattr(rule.rule_type, 'value', rule.rule_type)}"
        )

    if candidate.family not in families_for(rule.rule_type, condition):
        return False

    if isinstance(condition, AmountCondition):
        return _amount_matches(line, candidate, condition.tolerance)
    if isinstance(condition, DateCondition):
        return _date_matches(line, candidate, condition.window_days)
    if isinstance(condition, TransactionTypeCondition):
        if condition.direction is Direction.AUTO:
            if candidate.expected_direction is None:
                return False
            return _direction_matches(line, candidate.expected_direction)
        return _direction_matches(line, condition.direction)
    if isinstance(condition, KeywordCondition):
        return _keyword_condition_fires(condition, line, candidate)
    return _custom_condition_fires(condition, line, candidate)


def _rank_key(candidate: MatchCandidate) -> tuple:
    return (-candidate.total_score, candidate.best_priority, candidate.entity_id)


def score_line(
    line: TransactionLine,
    rules: Sequence[Rule],
    candidates: Mapping[Family, Sequence[CandidateEntity]],
    settings: MatcherSettings = MatcherSettings(),
) -> MatchResult:
    """Score a transaction line against every candidate family.

    Each active rule that fires for a (family, entity) pair adds its score
    contribution to that pair; totals are capped at 100. Within a family the
    best total wins, ties going to the candidate backed by the lowest
    priority rule, then to the lowest entity id. A family only produces a
    winner when that total reaches its threshold.

    Args:
        line: Transaction line to score
        rules: Rules to evaluate; inactive ones are ignored
        candidates: Candidate pool per family
        settings: Family thresholds

    Returns:
        MatchResult with the ranked score table and per-family winners
    """
    active_rules = order_rules(r for r in rules if r.active)

    # (family, entity_id) -> [raw score, contributing rule ids, best priority]
    totals: dict[tuple[Family, int], list] = {}
    for family in Family:
        for candidate in sorted(candidates.get(family, ()), key=lambda c: c.id):
            for rule in active_rules:
                if not rule_fires(rule, line, candidate):
                    continue
                logger.debug(
                    "Rule %s fired for line %s on %s %s (+%s)",
                    rule.id,
                    line.id,
                    family.value,
                    candidate.id,
                    rule.score_contribution,
                )
                entry = totals.setdefault((family, candidate.id), [0, [], rule.priority])
                entry[0] += rule.score_contribution
                entry[1].append(rule.id)
                entry[2] = min(entry[2], rule.priority)

    scores: dict[Family, list[MatchCandidate]] = {}
    for (family, entity_id), (raw, rule_ids, best_priority) in totals.items():
        total = min(raw, MAX_SCORE)
        if total <= 0:
            continue
        scores.setdefault(family, []).append(
            MatchCandidate(
                transaction_line_id=line.id,
                family=family,
                entity_id=entity_id,
                total_score=total,
                contributing_rule_ids=tuple(rule_ids),
                best_priority=best_priority,
            )
        )

    ranked: dict[Family, tuple[MatchCandidate, ...]] = {}
    winners: dict[Family, MatchCandidate] = {}
    for family in Family:
        if family not in scores:
            continue
        family_scores = tuple(sorted(scores[family], key=_rank_key))
        ranked[family] = family_scores
        best = family_scores[0]
        if best.total_score >= settings.threshold_for(family):
            winners[family] = best

    return MatchResult(transaction_line_id=line.id, scores=ranked, winners=winners)
