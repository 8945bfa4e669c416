"""Domain model entities for rapprochement.

These are pure data classes representing business concepts, independent of
database schema. The matcher and the services only ever see these objects,
never the ORM rows behind them.
"""

from dataclasses import dataclass, field
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class Family(str, Enum):
    """Families of records a bank line can be reconciled against."""

    INVOICE = "INVOICE"
    SUBSCRIPTION = "SUBSCRIPTION"
    CHARGE_DECLARATION = "CHARGE_DECLARATION"
    PARTNER = "PARTNER"

    @property
    def slot(self) -> "Slot":
        """Link slot this family occupies on a transaction line."""
        if self is Family.INVOICE:
            return Slot.INVOICE
        return Slot.PARTNER


class Slot(str, Enum):
    """A transaction line holds at most one link per slot."""

    INVOICE = "INVOICE"
    PARTNER = "PARTNER"


# Order used when two partner-slot families tie on every other criterion.
PARTNER_SLOT_ORDER = (Family.SUBSCRIPTION, Family.CHARGE_DECLARATION, Family.PARTNER)


class RuleType(str, Enum):
    AMOUNT = "AMOUNT"
    DATE = "DATE"
    LABEL = "LABEL"
    TRANSACTION_TYPE = "TRANSACTION_TYPE"
    PARTNER = "PARTNER"
    SUBSCRIPTION = "SUBSCRIPTION"
    CHARGE_DECLARATION = "CHARGE_DECLARATION"
    CUSTOM = "CUSTOM"


class Direction(str, Enum):
    """Polarity of a bank line, or the polarity a rule expects."""

    DEBIT = "DEBIT"
    CREDIT = "CREDIT"
    ANY = "ANY"
    # Expected polarity derived from the candidate (transaction type rules only)
    AUTO = "AUTO"


class LinkMethod(str, Enum):
    AUTO = "AUTO"
    MANUAL = "MANUAL"


class InvoiceKind(str, Enum):
    SALE = "SALE"
    PURCHASE = "PURCHASE"


class InvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    VALIDATED = "VALIDATED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class PartnerKind(str, Enum):
    BANK = "BANK"
    SUPPLIER = "SUPPLIER"
    CLIENT = "CLIENT"
    ORGANISM = "ORGANISM"


class LineState(str, Enum):
    UNMATCHED = "UNMATCHED"
    SUGGESTED = "SUGGESTED"
    LINKED = "LINKED"


class ReconciliationLevel(str, Enum):
    """How many of the two link slots of a line are filled."""

    NONE = "NONE"
    PARTIAL = "PARTIAL"
    FULL = "FULL"


class LinkEventKind(str, Enum):
    CREATED = "CREATED"
    DELETED = "DELETED"
    OFFSET = "OFFSET"
    OFFSET_CANCELLED = "OFFSET_CANCELLED"


@dataclass(frozen=True)
class Partner:
    """Bank, supplier, client or social organism."""

    id: int
    name: str
    kind: PartnerKind
    keywords: Optional[str]
    active: bool
    created_at: datetime


@dataclass(frozen=True)
class Invoice:
    """Sales or purchase invoice. A negative total is a credit note."""

    id: int
    number: str
    kind: InvoiceKind
    partner_id: Optional[int]
    issue_date: date
    total: Decimal
    status: InvoiceStatus
    keywords: Optional[str]
    reconciliation_ref: Optional[str]
    reconciled_on: Optional[date]
    created_at: datetime

    @property
    def is_credit_note(self) -> bool:
        return self.total < 0


@dataclass(frozen=True)
class Subscription:
    """Recurring partner subscription (insurance, software, leasing...)."""

    id: int
    name: str
    partner_id: Optional[int]
    amount: Optional[Decimal]
    reference_date: Optional[date]
    keywords: Optional[str]
    active: bool
    created_at: datetime


@dataclass(frozen=True)
class ChargeDeclaration:
    """Recurring social-charge declaration (URSSAF, pension, mutual...)."""

    id: int
    name: str
    organism: Optional[str]
    amount: Optional[Decimal]
    reference_date: Optional[date]
    keywords: Optional[str]
    active: bool
    created_at: datetime


@dataclass(frozen=True)
class EntityPayment:
    """Payment bookkeeping row created when a recurring record is linked."""

    id: int
    family: Family
    entity_id: int
    link_number: str
    payment_date: date
    amount: Decimal
    created_at: datetime


@dataclass(frozen=True)
class Statement:
    """One imported bank statement file."""

    id: int
    number: str
    start_date: Optional[date]
    end_date: Optional[date]
    created_by: str
    created_at: datetime


@dataclass(frozen=True)
class TransactionLine:
    """One bank statement row.

    Exactly one of ``debit`` and ``credit`` is non-zero. The signed amount is
    always derived from them.
    """

    id: int
    statement_id: int
    line_number: str
    date: date
    label: str
    debit: Decimal
    credit: Decimal

    @property
    def amount(self) -> Decimal:
        return self.credit - self.debit

    @property
    def direction(self) -> Direction:
        return Direction.DEBIT if self.debit > 0 else Direction.CREDIT


@dataclass(frozen=True)
class Rule:
    """A configured matching rule.

    ``condition`` is the parsed, type-specific payload (see
    ``rapprochement.domain.conditions``).
    """

    id: int
    name: str
    rule_type: RuleType
    active: bool
    priority: int
    score_contribution: int
    condition: Any
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class CandidateEntity:
    """Read-only projection of a record the matcher can score."""

    family: Family
    id: int
    display_name: str
    keyword_corpus: str
    reference_amount: Optional[Decimal] = None
    reference_date: Optional[date] = None
    expected_direction: Optional[Direction] = None


@dataclass(frozen=True)
class MatchCandidate:
    """Score of one (transaction line, entity) pair after a scoring pass."""

    transaction_line_id: int
    family: Family
    entity_id: int
    total_score: int
    contributing_rule_ids: tuple[int, ...]
    best_priority: Optional[int]


@dataclass(frozen=True)
class MatchResult:
    """Outcome of scoring one transaction line against every family.

    ``scores`` holds every candidate with a non-zero score, ranked, per
    family. ``winners`` holds at most one candidate per family, only for
    families whose best score reached the family threshold.
    """

    transaction_line_id: int
    scores: dict[Family, tuple[MatchCandidate, ...]] = field(default_factory=dict)
    winners: dict[Family, MatchCandidate] = field(default_factory=dict)

    def slot_winners(self) -> dict[Slot, MatchCandidate]:
        """Pick at most one winner per link slot.

        Subscription, charge declaration and partner share the partner slot;
        the strongest of their winners takes it.
        """
        result: dict[Slot, MatchCandidate] = {}
        if Family.INVOICE in self.winners:
            result[Slot.INVOICE] = self.winners[Family.INVOICE]

        contenders = [self.winners[f] for f in PARTNER_SLOT_ORDER if f in self.winners]
        if contenders:
            contenders.sort(
                key=lambda c: (
                    -c.total_score,
                    c.best_priority if c.best_priority is not None else 0,
                    PARTNER_SLOT_ORDER.index(c.family),
                    c.entity_id,
                )
            )
            result[Slot.PARTNER] = contenders[0]
        return result

    @property
    def has_suggestions(self) -> bool:
        return any(candidates for candidates in self.scores.values())


@dataclass(frozen=True)
class Link:
    """Persisted reconciliation between a transaction line and a record."""

    id: int
    link_number: str
    transaction_line_id: int
    statement_id: int
    family: Family
    entity_id: int
    method: LinkMethod
    score: Optional[int]
    previous_status: Optional[str]
    created_by: str
    created_at: datetime

    @property
    def slot(self) -> Slot:
        return self.family.slot


@dataclass(frozen=True)
class LinkEvent:
    """Append-only audit entry for the link ledger."""

    id: int
    kind: LinkEventKind
    link_number: str
    transaction_line_id: Optional[int]
    statement_id: Optional[int]
    family: Optional[Family]
    entity_id: Optional[int]
    method: Optional[LinkMethod]
    score: Optional[int]
    actor: str
    occurred_at: datetime
    details: Optional[str]
