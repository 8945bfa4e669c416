"""Tests for the scoring core."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from rapprochement.domain.conditions import KeywordCondition, parse_condition
from rapprochement.domain.entities import (
    CandidateEntity,
    Direction,
    Family,
    Rule,
    RuleType,
    Slot,
    TransactionLine,
)
from rapprochement.domain.errors import MalformedRuleError
from rapprochement.domain.matcher import MatcherSettings, rule_fires, score_line


def make_rule(rule_id, rule_type, score, payload=None, priority=100, active=True):
    now = datetime(2024, 1, 1)
    return Rule(
        id=rule_id,
        name=f"rule {rule_id}",
        rule_type=rule_type,
        active=active,
        priority=priority,
        score_contribution=score,
        condition=parse_condition(rule_type, payload),
        created_at=now,
        updated_at=now,
    )


def make_line(label, amount, line_date=date(2024, 3, 5), line_id=1):
    amount = Decimal(amount)
    return TransactionLine(
        id=line_id,
        statement_id=1,
        line_number=f"RL-{line_id}",
        date=line_date,
        label=label,
        debit=-amount if amount < 0 else Decimal("0"),
        credit=amount if amount > 0 else Decimal("0"),
    )


def invoice(entity_id, amount, ref_date=date(2024, 3, 1), corpus="", direction=Direction.CREDIT):
    return CandidateEntity(
        family=Family.INVOICE,
        id=entity_id,
        display_name=f"FA-{entity_id}",
        keyword_corpus=corpus,
        reference_amount=Decimal(amount),
        reference_date=ref_date,
        expected_direction=direction,
    )


def subscription(entity_id, amount=None, corpus="", ref_date=None):
    return CandidateEntity(
        family=Family.SUBSCRIPTION,
        id=entity_id,
        display_name=f"sub {entity_id}",
        keyword_corpus=corpus,
        reference_amount=Decimal(amount) if amount is not None else None,
        reference_date=ref_date,
    )


def partner(entity_id, corpus):
    return CandidateEntity(
        family=Family.PARTNER, id=entity_id, display_name=corpus, keyword_corpus=corpus
    )


def test_subscription_keyword_and_amount_capped_at_100():
    """Keyword and amount rules add up on a subscription, capped at 100."""
    line = make_line("VIR SEPA MMA IARD ASSURANCE", "-120.00")
    rules = [
        make_rule(1, RuleType.SUBSCRIPTION, 60, {"keywords": ["MMA IARD"]}),
        make_rule(2, RuleType.AMOUNT, 45, {"tolerance": "0.01"}),
    ]
    pools = {Family.SUBSCRIPTION: [subscription(7, "120.00")]}

    result = score_line(line, rules, pools)

    winner = result.winners[Family.SUBSCRIPTION]
    assert winner.entity_id == 7
    assert winner.total_score == 100
    assert winner.contributing_rule_ids == (1, 2)
    assert result.slot_winners()[Slot.PARTNER] == winner
    assert Slot.INVOICE not in result.slot_winners()


def test_keyword_or_group_fires_and_group_does_not():
    line = make_line("PRLV CPAM IDF", "-80.00")
    candidate = partner(1, "CPAM")
    or_rule = make_rule(1, RuleType.PARTNER, 40, {"keywords": "URSSAF, CPAM"})
    and_rule = make_rule(2, RuleType.PARTNER, 40, {"keywords": "URSSAF CPAM"})

    assert rule_fires(or_rule, line, candidate)
    assert not rule_fires(and_rule, line, candidate)


def test_identical_invoices_yield_exactly_one_winner():
    """Ties go to the lowest entity id; never both, never none."""
    line = make_line("VIR CLIENT", "1500.00", date(2024, 3, 3))
    rules = [
        make_rule(1, RuleType.AMOUNT, 40, {"tolerance": "0.01"}),
        make_rule(2, RuleType.DATE, 20, {"window_days": 5}),
    ]
    pools = {Family.INVOICE: [invoice(12, "1500.00"), invoice(5, "1500.00")]}

    result = score_line(line, rules, pools)

    assert result.winners[Family.INVOICE].entity_id == 5
    assert [c.entity_id for c in result.scores[Family.INVOICE]] == [5, 12]
    assert all(c.total_score == 60 for c in result.scores[Family.INVOICE])


def test_tie_broken_by_lowest_priority_rule_before_id():
    line = make_line("PRLV ORANGE SFR", "-30.00")
    rules = [
        make_rule(1, RuleType.PARTNER, 40, {"keywords": "ORANGE", "entity_id": 1}, priority=20),
        make_rule(2, RuleType.PARTNER, 40, {"keywords": "SFR", "entity_id": 2}, priority=10),
    ]
    pools = {Family.PARTNER: [partner(1, "ORANGE"), partner(2, "SFR")]}

    result = score_line(line, rules, pools)

    assert result.winners[Family.PARTNER].entity_id == 2


def test_entity_targeted_rule_only_scores_its_entity():
    line = make_line("PRLV LOYER", "-900.00")
    rules = [make_rule(1, RuleType.SUBSCRIPTION, 50, {"keywords": ["LOYER"], "entity_id": 2})]
    pools = {Family.SUBSCRIPTION: [subscription(1), subscription(2), subscription(3)]}

    result = score_line(line, rules, pools)

    assert [c.entity_id for c in result.scores[Family.SUBSCRIPTION]] == [2]


def test_empty_keyword_list_is_wildcard():
    line = make_line("ANYTHING", "-10.00")
    rules = [make_rule(1, RuleType.CHARGE_DECLARATION, 35, {"keywords": []})]
    declarations = [
        CandidateEntity(family=Family.CHARGE_DECLARATION, id=i, display_name="d", keyword_corpus="d")
        for i in (3, 1)
    ]

    result = score_line(line, rules, {Family.CHARGE_DECLARATION: declarations})

    assert [c.entity_id for c in result.scores[Family.CHARGE_DECLARATION]] == [1, 3]
    assert result.winners[Family.CHARGE_DECLARATION].entity_id == 1


def test_amount_is_exact_or_nothing():
    line = make_line("VIR", "100.02")
    rule = make_rule(1, RuleType.AMOUNT, 40, {"tolerance": "0.01"})

    assert not rule_fires(rule, line, invoice(1, "100.00"))
    assert rule_fires(rule, line, invoice(2, "100.01"))
    # Absolute values are compared, whatever the polarity
    assert rule_fires(rule, make_line("PRLV", "-100.00"), invoice(3, "100.00"))


def test_amount_rule_skips_candidates_without_reference_amount():
    line = make_line("VIR", "100.00")
    rule = make_rule(1, RuleType.AMOUNT, 40, {"tolerance": "0.01"})
    assert not rule_fires(rule, line, partner(1, "X"))


def test_date_window():
    rule = make_rule(1, RuleType.DATE, 20, {"window_days": 5})
    candidate = invoice(1, "10.00", ref_date=date(2024, 3, 1))

    assert rule_fires(rule, make_line("X", "10.00", date(2024, 3, 6)), candidate)
    assert rule_fires(rule, make_line("X", "10.00", date(2024, 2, 25)), candidate)
    assert not rule_fires(rule, make_line("X", "10.00", date(2024, 3, 7)), candidate)


def test_transaction_type_auto_uses_invoice_polarity():
    rule = make_rule(1, RuleType.TRANSACTION_TYPE, 10, {"direction": "AUTO"})
    sale = invoice(1, "10.00", direction=Direction.CREDIT)
    purchase = invoice(2, "10.00", direction=Direction.DEBIT)
    credit_line = make_line("VIR", "10.00")

    assert rule_fires(rule, credit_line, sale)
    assert not rule_fires(rule, credit_line, purchase)


def test_transaction_type_explicit_direction():
    rule = make_rule(1, RuleType.TRANSACTION_TYPE, 10, {"direction": "DEBIT"})
    assert rule_fires(rule, make_line("PRLV", "-10.00"), invoice(1, "10.00"))
    assert not rule_fires(rule, make_line("VIR", "10.00"), invoice(1, "10.00"))


def test_label_rule_only_applies_to_invoices():
    line = make_line("VIR DUPONT", "10.00")
    rule = make_rule(1, RuleType.LABEL, 30, {"keywords": "DUPONT"})

    assert rule_fires(rule, line, invoice(1, "10.00"))
    assert not rule_fires(rule, line, partner(1, "DUPONT"))


def test_label_rule_with_entity_keywords():
    line = make_line("VIR DUPONT FA 12", "10.00")
    rule = make_rule(1, RuleType.LABEL, 30, {"keywords": [], "match_entity_keywords": True})

    assert rule_fires(rule, line, invoice(1, "10.00", corpus="dupont"))
    assert not rule_fires(rule, line, invoice(2, "10.00", corpus="martin"))


def test_custom_rule_ands_its_conditions():
    rule = make_rule(
        1,
        RuleType.CUSTOM,
        70,
        {"families": ["INVOICE"], "keywords": "DUPONT", "tolerance": "0.01", "direction": "CREDIT"},
    )
    target = invoice(1, "250.00")

    assert rule_fires(rule, make_line("VIR DUPONT", "250.00"), target)
    assert not rule_fires(rule, make_line("VIR MARTIN", "250.00"), target)
    assert not rule_fires(rule, make_line("VIR DUPONT", "251.00"), target)
    assert not rule_fires(rule, make_line("PRLV DUPONT", "-250.00"), target)
    # Families outside the declared list are never scored
    assert not rule_fires(rule, make_line("VIR DUPONT", "250.00"), subscription(1, "250.00"))


def test_below_threshold_is_suggestion_only():
    line = make_line("VIR DUPONT", "10.00")
    rules = [make_rule(1, RuleType.LABEL, 30, {"keywords": "DUPONT"})]
    result = score_line(line, rules, {Family.INVOICE: [invoice(1, "99.00")]})

    assert result.winners == {}
    assert result.has_suggestions
    assert result.scores[Family.INVOICE][0].total_score == 30


def test_thresholds_come_from_settings():
    line = make_line("VIR DUPONT", "10.00")
    rules = [make_rule(1, RuleType.LABEL, 30, {"keywords": "DUPONT"})]
    settings = MatcherSettings(invoice_threshold=30)

    result = score_line(line, rules, {Family.INVOICE: [invoice(1, "99.00")]}, settings)

    assert result.winners[Family.INVOICE].entity_id == 1


def test_inactive_and_zero_rules_contribute_nothing():
    line = make_line("VIR DUPONT", "10.00")
    rules = [
        make_rule(1, RuleType.LABEL, 90, {"keywords": "DUPONT"}, active=False),
        make_rule(2, RuleType.LABEL, 0, {"keywords": "DUPONT"}),
    ]
    result = score_line(line, rules, {Family.INVOICE: [invoice(1, "10.00")]})

    assert not result.has_suggestions


def test_partner_slot_goes_to_strongest_family():
    line = make_line("PRLV URSSAF", "-300.00")
    rules = [
        make_rule(1, RuleType.PARTNER, 40, {"keywords": "URSSAF"}),
        make_rule(2, RuleType.CHARGE_DECLARATION, 60, {"keywords": ["URSSAF"]}),
    ]
    pools = {
        Family.PARTNER: [partner(4, "URSSAF")],
        Family.CHARGE_DECLARATION: [
            CandidateEntity(
                family=Family.CHARGE_DECLARATION, id=9, display_name="URSSAF T1", keyword_corpus="urssaf"
            )
        ],
    }

    result = score_line(line, rules, pools)

    assert set(result.winners) == {Family.PARTNER, Family.CHARGE_DECLARATION}
    slot_winner = result.slot_winners()[Slot.PARTNER]
    assert slot_winner.family is Family.CHARGE_DECLARATION
    assert slot_winner.entity_id == 9


def test_scoring_is_deterministic():
    line = make_line("VIR DUPONT", "1500.00", date(2024, 3, 3))
    rules = [
        make_rule(3, RuleType.DATE, 20, {"window_days": 5}),
        make_rule(1, RuleType.AMOUNT, 40, {"tolerance": "0.01"}),
        make_rule(2, RuleType.LABEL, 30, {"keywords": "DUPONT"}),
    ]
    pools = {Family.INVOICE: [invoice(i, "1500.00", corpus="dupont") for i in (4, 2, 9)]}

    first = score_line(line, rules, pools)
    second = score_line(line, list(reversed(rules)), {Family.INVOICE: list(reversed(pools[Family.INVOICE]))})

    assert first == second
    assert first.winners[Family.INVOICE].total_score == 90


def test_malformed_rule_raises():
    line = make_line("VIR", "10.00")
    now = datetime(2024, 1, 1)
    broken = Rule(
        id=1,
        name="broken",
        rule_type=RuleType.AMOUNT,
        active=True,
        priority=1,
        score_contribution=10,
        condition=KeywordCondition(),
        created_at=now,
        updated_at=now,
    )

    with pytest.raises(MalformedRuleError):
        score_line(line, [broken], {Family.INVOICE: [invoice(1, "10.00")]})
