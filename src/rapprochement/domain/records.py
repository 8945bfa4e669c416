"""Record management for the families a bank line can be reconciled against.

Partners, invoices, subscriptions and charge declarations belong to their
own back-office modules. This service is the thin write side those modules
use; the matching core only reads them through ``EntityRepository``.
"""

from typing import Optional, Union
from datetime import date
from decimal import Decimal

from rapprochement.database.base import Database
from rapprochement.domain.entities import (
    ChargeDeclaration,
    EntityPayment,
    Family,
    Invoice,
    InvoiceKind,
    InvoiceStatus,
    Partner,
    PartnerKind,
    Subscription,
)
from rapprochement.domain.errors import ConflictError, ValidationError, store_errors


def _enum(enum_cls, value, label: str):
    try:
        return enum_cls(value.upper() if isinstance(value, str) else value)
    except ValueError as e:
        choices = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {label} '{value}' (expected one of: {choices})") from e


def _required_name(name: str, label: str = "Name") -> str:
    if name is None or not name.strip():
        raise ValidationError(f"{label} cannot be empty")
    return name.strip()


def _optional_keywords(keywords: Optional[str]) -> Optional[str]:
    if keywords is None or not keywords.strip():
        return None
    return keywords.strip()


class RecordService:
    """Service for managing partners, invoices, subscriptions and declarations."""

    def __init__(self, db: Database):
        """Initialize record service.

        Args:
            db: Database instance
        """
        self.db = db

    def create_partner(
        self,
        name: str,
        kind: Union[PartnerKind, str] = PartnerKind.SUPPLIER,
        keywords: Optional[str] = None,
        active: bool = True,
    ) -> int:
        """Create a partner.

        Args:
            name: Partner name (also the default keyword corpus)
            kind: BANK, SUPPLIER, CLIENT or ORGANISM
            keywords: Optional keyword expression used instead of the name
            active: Whether the partner takes part in matching

        Returns:
            Partner ID
        """
        return self.db.create_partner(
            name=_required_name(name),
            kind=_enum(PartnerKind, kind, "partner kind"),
            keywords=_optional_keywords(keywords),
            active=active,
        )

    def get_partner(self, partner_id: int) -> Optional[Partner]:
        return self.db.get_partner(partner_id)

    def list_partners(self) -> list[Partner]:
        return self.db.list_partners()

    def create_invoice(
        self,
        number: str,
        kind: Union[InvoiceKind, str],
        issue_date: date,
        total: Decimal,
        partner_id: Optional[int] = None,
        status: Union[InvoiceStatus, str] = InvoiceStatus.VALIDATED,
        keywords: Optional[str] = None,
    ) -> int:
        """Create an invoice.

        A negative total creates a credit note. Reconciliation statuses are
        managed by the link ledger, so an invoice cannot be created as PAID.

        Args:
            number: Unique invoice number
            kind: SALE or PURCHASE
            issue_date: Issue date, used as the reference date for matching
            total: Total including taxes
            partner_id: Optional client or supplier
            status: DRAFT, VALIDATED or CANCELLED
            keywords: Optional keyword expression; defaults to the partner's

        Returns:
            Invoice ID

        Raises:
            ValidationError: If a field is invalid
            ConflictError: If the invoice number already exists
        """
        number = _required_name(number, "Invoice number")
        kind = _enum(InvoiceKind, kind, "invoice kind")
        status = _enum(InvoiceStatus, status, "invoice status")
        if status is InvoiceStatus.PAID:
            raise ValidationError("Invoices become PAID through reconciliation only")
        if total == 0:
            raise ValidationError("Invoice total cannot be zero")
        if partner_id is not None and self.db.get_partner(partner_id) is None:
            raise ValidationError(f"Partner {partner_id} not found")
        if self.db.get_invoice_by_number(number) is not None:
            raise ConflictError(f"Invoice '{number}' already exists")

        with store_errors("create invoice"):
            return self.db.create_invoice(
                number=number,
                kind=kind,
                issue_date=issue_date,
                total=Decimal(total),
                status=status,
                partner_id=partner_id,
                keywords=_optional_keywords(keywords),
            )

    def get_invoice(self, invoice_id: int) -> Optional[Invoice]:
        return self.db.get_invoice(invoice_id)

    def list_invoices(self, kind: Optional[InvoiceKind] = None) -> list[Invoice]:
        return self.db.list_invoices(kind=kind)

    def create_subscription(
        self,
        name: str,
        amount: Optional[Decimal] = None,
        reference_date: Optional[date] = None,
        partner_id: Optional[int] = None,
        keywords: Optional[str] = None,
        active: bool = True,
    ) -> int:
        """Create a subscription. Returns subscription ID."""
        if partner_id is not None and self.db.get_partner(partner_id) is None:
            raise ValidationError(f"Partner {partner_id} not found")
        return self.db.create_subscription(
            name=_required_name(name),
            partner_id=partner_id,
            amount=amount,
            reference_date=reference_date,
            keywords=_optional_keywords(keywords),
            active=active,
        )

    def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        return self.db.get_subscription(subscription_id)

    def list_subscriptions(self) -> list[Subscription]:
        return self.db.list_subscriptions()

    def create_charge_declaration(
        self,
        name: str,
        organism: Optional[str] = None,
        amount: Optional[Decimal] = None,
        reference_date: Optional[date] = None,
        keywords: Optional[str] = None,
        active: bool = True,
    ) -> int:
        """Create a charge declaration. Returns declaration ID."""
        return self.db.create_charge_declaration(
            name=_required_name(name),
            organism=organism.strip() if organism and organism.strip() else None,
            amount=amount,
            reference_date=reference_date,
            keywords=_optional_keywords(keywords),
            active=active,
        )

    def get_charge_declaration(self, declaration_id: int) -> Optional[ChargeDeclaration]:
        return self.db.get_charge_declaration(declaration_id)

    def list_charge_declarations(self) -> list[ChargeDeclaration]:
        return self.db.list_charge_declarations()

    def payments(self, family: Family, entity_id: int) -> list[EntityPayment]:
        """Payments recorded for a subscription or declaration, latest first."""
        return self.db.list_entity_payments(family=family, entity_id=entity_id)

    def last_payment(self, family: Family, entity_id: int) -> Optional[EntityPayment]:
        """Most recent payment of a subscription or declaration, if any."""
        payments = self.payments(family, entity_id)
        return payments[0] if payments else None
