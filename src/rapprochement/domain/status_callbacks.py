"""Side effects a link or an unlink has on the linked record.

Each family's owning module reacts differently:

- invoices become PAID and carry the link number as reconciliation
  reference; unlinking restores the status they had before;
- subscriptions and charge declarations get a payment row, which is what
  their "last paid" bookkeeping reads;
- partners have nothing to update.

The ledger calls ``on_link`` / ``on_unlink`` exactly once per link, inside
the same unit of work as the link row itself.
"""

from abc import ABC, abstractmethod
from typing import Optional

from rapprochement.database.base import Database
from rapprochement.domain.entities import Family, InvoiceStatus, Link, TransactionLine
from rapprochement.domain.errors import (
    ConflictError,
    NotFoundError,
    ValidationError,
    entity_not_found,
)


class StatusCallback(ABC):
    """Hooks run by the link ledger for one family."""

    @abstractmethod
    def snapshot(self, entity_id: int) -> Optional[str]:
        """Return the status to restore when the link is removed."""
        pass

    @abstractmethod
    def on_link(self, link: Link, line: TransactionLine) -> None:
        """Apply the link's effect on the record."""
        pass

    @abstractmethod
    def on_unlink(self, link: Link) -> None:
        """Revert what on_link did."""
        pass


class InvoiceStatusCallback(StatusCallback):
    """Marks invoices paid on link and restores their status on unlink."""

    def __init__(self, db: Database):
        self.db = db

    def snapshot(self, entity_id: int) -> Optional[str]:
        invoice = self.db.get_invoice(entity_id)
        if invoice is None:
            raise NotFoundError(entity_not_found(Family.INVOICE.value, entity_id))
        if invoice.status in (InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED):
            raise ValidationError(
                f"Invoice {invoice.number} is {invoice.status.value.lower()} and cannot be reconciled"
            )
        # An invoice is settled by one bank line or one offset, never two
        if invoice.reconciliation_ref is not None:
            raise ConflictError(
                f"Invoice {invoice.number} is already reconciled ({invoice.reconciliation_ref})"
            )
        return invoice.status.value

    def on_link(self, link: Link, line: TransactionLine) -> None:
        self.db.update_invoice_reconciliation(
            link.entity_id,
            status=InvoiceStatus.PAID,
            reconciliation_ref=link.link_number,
            reconciled_on=line.date,
        )

    def on_unlink(self, link: Link) -> None:
        previous = InvoiceStatus(link.previous_status or InvoiceStatus.VALIDATED.value)
        self.db.update_invoice_reconciliation(
            link.entity_id, status=previous, reconciliation_ref=None, reconciled_on=None
        )


class PaymentBookkeepingCallback(StatusCallback):
    """Records a payment for recurring records (subscriptions, declarations)."""

    def __init__(self, db: Database, family: Family):
        self.db = db
        self.family = family

    def _exists(self, entity_id: int) -> bool:
        if self.family is Family.SUBSCRIPTION:
            return self.db.get_subscription(entity_id) is not None
        return self.db.get_charge_declaration(entity_id) is not None

    def snapshot(self, entity_id: int) -> Optional[str]:
        if not self._exists(entity_id):
            raise NotFoundError(entity_not_found(self.family.value, entity_id))
        return None

    def on_link(self, link: Link, line: TransactionLine) -> None:
        self.db.create_entity_payment(
            family=self.family,
            entity_id=link.entity_id,
            link_number=link.link_number,
            payment_date=line.date,
            amount=abs(line.amount),
        )

    def on_unlink(self, link: Link) -> None:
        self.db.delete_entity_payments(link.link_number)


class PartnerCallback(StatusCallback):
    """Partners carry no reconciliation state."""

    def __init__(self, db: Database):
        self.db = db

    def snapshot(self, entity_id: int) -> Optional[str]:
        if self.db.get_partner(entity_id) is None:
            raise NotFoundError(entity_not_found(Family.PARTNER.value, entity_id))
        return None

    def on_link(self, link: Link, line: TransactionLine) -> None:
        pass

    def on_unlink(self, link: Link) -> None:
        pass


def default_callbacks(db: Database) -> dict[Family, StatusCallback]:
    """Callbacks for every family, backed by the given database."""
    return {
        Family.INVOICE: InvoiceStatusCallback(db),
        Family.SUBSCRIPTION: PaymentBookkeepingCallback(db, Family.SUBSCRIPTION),
        Family.CHARGE_DECLARATION: PaymentBookkeepingCallback(db, Family.CHARGE_DECLARATION),
        Family.PARTNER: PartnerCallback(db),
    }
