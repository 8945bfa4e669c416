"""Credit-note offsetting.

A credit note (an invoice with a negative total) can settle one positive
invoice of the same kind without any bank movement. The operator picks the
target and the credit notes; every selected invoice becomes PAID and
carries a shared ``AVOIR-...`` reference. An imbalance is reported, not
refused.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional

from rapprochement.database.base import Database
from rapprochement.domain.entities import (
    Family,
    Invoice,
    InvoiceStatus,
    LinkEvent,
    LinkEventKind,
)
from rapprochement.domain.errors import (
    ConflictError,
    ConsistencyError,
    NotFoundError,
    ValidationError,
    entity_not_found,
    store_errors,
)
from rapprochement.domain.matcher import MatcherSettings
from rapprochement.domain.repository import MATCHABLE_INVOICE_STATUSES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OffsetResult:
    """Outcome of an offset between one invoice and its credit notes."""

    reference: str
    target_invoice_id: int
    credit_note_ids: tuple[int, ...]
    balance: Decimal
    balanced: bool
    warning: Optional[str] = None


class CreditNoteService:
    """Offsets invoices against credit notes and reverts such offsets."""

    def __init__(
        self,
        db: Database,
        settings: Optional[MatcherSettings] = None,
        actor: str = "system",
    ):
        """Initialize credit note service.

        Args:
            db: Database instance
            settings: Provides the balance tolerance
            actor: Name recorded on audit events
        """
        self.db = db
        self.settings = settings or MatcherSettings()
        self.actor = actor

    def available_credit_notes(self, target_invoice_id: Optional[int] = None) -> list[Invoice]:
        """Unreconciled credit notes, optionally restricted to a target's kind and partner."""
        credit_notes = [
            invoice
            for invoice in self.db.list_invoices(
                statuses=[InvoiceStatus.VALIDATED], unreconciled_only=True
            )
            if invoice.is_credit_note
        ]
        if target_invoice_id is None:
            return credit_notes
        target = self._get_invoice(target_invoice_id)
        return [
            cn
            for cn in credit_notes
            if cn.kind is target.kind
            and (target.partner_id is None or cn.partner_id in (None, target.partner_id))
        ]

    def _get_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.db.get_invoice(invoice_id)
        if invoice is None:
            raise ValidationError(entity_not_found(Family.INVOICE.value, invoice_id))
        return invoice

    def _check_reconcilable(self, invoice: Invoice) -> None:
        if invoice.status not in MATCHABLE_INVOICE_STATUSES:
            raise ValidationError(
                f"Invoice {invoice.number} is {invoice.status.value.lower()} and cannot be reconciled"
            )
        if invoice.reconciliation_ref is not None:
            raise ConflictError(
                f"Invoice {invoice.number} is already reconciled ({invoice.reconciliation_ref})"
            )

    def _next_reference(self, target_id: int) -> str:
        """AVOIR-YYYYMMDD-HHMMSS-<id>, suffixed with -2, -3... if already used."""
        base = f"AVOIR-{datetime.now():%Y%m%d-%H%M%S}-{target_id}"
        reference = base
        sequence = 1
        while self.db.list_link_events(link_number=reference):
            sequence += 1
            reference = f"{base}-{sequence}"
        return reference

    def _active_offset(self, reference: str) -> Optional[LinkEvent]:
        """The OFFSET event behind a reference, unless it was cancelled since."""
        active = None
        for event in self.db.list_link_events(link_number=reference):
            if event.kind is LinkEventKind.OFFSET:
                active = event
            elif event.kind is LinkEventKind.OFFSET_CANCELLED:
                active = None
        return active

    def offset(self, target_invoice_id: int, credit_note_ids: Iterable[int]) -> OffsetResult:
        """Settle an invoice with one or more credit notes.

        Args:
            target_invoice_id: Positive invoice to settle
            credit_note_ids: Credit notes applied to it

        Returns:
            OffsetResult with the shared reference and the remaining balance

        Raises:
            ConsistencyError: If no credit note is selected
            ValidationError: If the target or a credit note is not eligible
            ConflictError: If one of the invoices is already reconciled
        """
        credit_note_ids = tuple(dict.fromkeys(credit_note_ids))
        if not credit_note_ids:
            raise ConsistencyError("Select at least one credit note to offset")

        target = self._get_invoice(target_invoice_id)
        if target.is_credit_note:
            raise ValidationError(f"Invoice {target.number} is a credit note, not an offset target")
        self._check_reconcilable(target)

        credit_notes = []
        for cn_id in credit_note_ids:
            if cn_id == target.id:
                raise ValidationError("An invoice cannot offset itself")
            credit_note = self._get_invoice(cn_id)
            if not credit_note.is_credit_note:
                raise ValidationError(f"Invoice {credit_note.number} is not a credit note")
            if credit_note.kind is not target.kind:
                raise ValidationError(
                    f"Credit note {credit_note.number} is a {credit_note.kind.value.lower()} "
                    f"document, invoice {target.number} is a {target.kind.value.lower()}"
                )
            self._check_reconcilable(credit_note)
            credit_notes.append(credit_note)

        balance = target.total + sum((cn.total for cn in credit_notes), Decimal("0"))
        balanced = abs(balance) <= self.settings.balance_tolerance
        reference = self._next_reference(target.id)
        invoices = [target] + credit_notes
        previous = {str(inv.id): inv.status.value for inv in invoices}
        today = date.today()

        with store_errors(f"offset invoice {target.id}"):
            with self.db.unit_of_work():
                for invoice in invoices:
                    self.db.update_invoice_reconciliation(
                        invoice.id,
                        status=InvoiceStatus.PAID,
                        reconciliation_ref=reference,
                        reconciled_on=today,
                    )
                self.db.record_link_event(
                    kind=LinkEventKind.OFFSET,
                    link_number=reference,
                    actor=self.actor,
                    family=Family.INVOICE,
                    entity_id=target.id,
                    details=json.dumps({"previous_status": previous, "balance": str(balance)}),
                )

        warning = None
        if not balanced:
            warning = f"Offset {reference} is not balanced: remaining {balance}"
            logger.warning(warning)
        logger.info(
            "Offset invoice %s with %d credit note(s) as %s", target.number, len(credit_notes), reference
        )
        return OffsetResult(
            reference=reference,
            target_invoice_id=target.id,
            credit_note_ids=credit_note_ids,
            balance=balance,
            balanced=balanced,
            warning=warning,
        )

    def cancel_offset(self, reference: str) -> list[int]:
        """Revert an offset: every invoice carrying the reference gets its status back.

        Returns:
            IDs of the invoices reverted

        Only offset references are accepted; a bank link is removed through
        the link ledger.

        Raises:
            NotFoundError: If the reference is not an offset still in force
        """
        event = self._active_offset(reference)
        invoices = self.db.list_invoices(reconciliation_ref=reference)
        if event is None or not invoices:
            raise NotFoundError(f"Offset '{reference}' not found")

        previous: dict[str, str] = {}
        if event.details:
            previous = json.loads(event.details).get("previous_status", {})

        with store_errors(f"cancel offset {reference}"):
            with self.db.unit_of_work():
                for invoice in invoices:
                    status = InvoiceStatus(
                        previous.get(str(invoice.id), InvoiceStatus.VALIDATED.value)
                    )
                    self.db.update_invoice_reconciliation(
                        invoice.id, status=status, reconciliation_ref=None, reconciled_on=None
                    )
                self.db.record_link_event(
                    kind=LinkEventKind.OFFSET_CANCELLED,
                    link_number=reference,
                    actor=self.actor,
                    family=Family.INVOICE,
                )

        logger.info("Cancelled offset %s (%d invoices)", reference, len(invoices))
        return [invoice.id for invoice in invoices]
