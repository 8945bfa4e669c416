"""Abstract database interface."""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Optional, Any
from datetime import date
from decimal import Decimal

# Import entities directly to avoid circular import through domain/__init__.py
from rapprochement.domain.entities import (
    ChargeDeclaration,
    EntityPayment,
    Family,
    Invoice,
    InvoiceKind,
    InvoiceStatus,
    Link,
    LinkEvent,
    LinkEventKind,
    LinkMethod,
    Partner,
    PartnerKind,
    Rule,
    RuleType,
    Slot,
    Statement,
    Subscription,
    TransactionLine,
)


class Database(ABC):
    """Abstract database interface for rapprochement."""

    @abstractmethod
    def connect(self) -> None:
        """Connect to the database."""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Disconnect from the database."""
        pass

    @abstractmethod
    def initialize_schema(self) -> None:
        """Initialize database schema (create tables)."""
        pass

    @abstractmethod
    def unit_of_work(self) -> AbstractContextManager[None]:
        """Group writes so that they commit together or not at all.

        Writes made outside a unit of work commit individually. Nested units
        of work join the outermost one.
        """
        pass

    # Partner operations
    @abstractmethod
    def create_partner(
        self, name: str, kind: PartnerKind, keywords: Optional[str] = None, active: bool = True
    ) -> int:
        """Create a partner. Returns partner ID."""
        pass

    @abstractmethod
    def get_partner(self, partner_id: int) -> Optional[Partner]:
        """Get partner by ID."""
        pass

    @abstractmethod
    def list_partners(self, active_only: bool = False) -> list[Partner]:
        """List partners ordered by ID."""
        pass

    # Invoice operations
    @abstractmethod
    def create_invoice(
        self,
        number: str,
        kind: InvoiceKind,
        issue_date: date,
        total: Decimal,
        status: InvoiceStatus,
        partner_id: Optional[int] = None,
        keywords: Optional[str] = None,
    ) -> int:
        """Create an invoice. Returns invoice ID."""
        pass

    @abstractmethod
    def get_invoice(self, invoice_id: int) -> Optional[Invoice]:
        """Get invoice by ID."""
        pass

    @abstractmethod
    def get_invoice_by_number(self, number: str) -> Optional[Invoice]:
        """Get invoice by its number."""
        pass

    @abstractmethod
    def list_invoices(
        self,
        kind: Optional[InvoiceKind] = None,
        statuses: Optional[list[InvoiceStatus]] = None,
        unreconciled_only: bool = False,
        reconciliation_ref: Optional[str] = None,
    ) -> list[Invoice]:
        """List invoices ordered by ID.

        Args:
            kind: Optional invoice kind filter
            statuses: Optional list of accepted statuses
            unreconciled_only: If True, only invoices without a reconciliation reference
            reconciliation_ref: Optional exact reconciliation reference filter
        """
        pass

    @abstractmethod
    def update_invoice_reconciliation(
        self,
        invoice_id: int,
        status: InvoiceStatus,
        reconciliation_ref: Optional[str],
        reconciled_on: Optional[date],
    ) -> None:
        """Set invoice status and reconciliation bookkeeping."""
        pass

    # Subscription operations
    @abstractmethod
    def create_subscription(
        self,
        name: str,
        partner_id: Optional[int] = None,
        amount: Optional[Decimal] = None,
        reference_date: Optional[date] = None,
        keywords: Optional[str] = None,
        active: bool = True,
    ) -> int:
        """Create a subscription. Returns subscription ID."""
        pass

    @abstractmethod
    def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        """Get subscription by ID."""
        pass

    @abstractmethod
    def list_subscriptions(self, active_only: bool = False) -> list[Subscription]:
        """List subscriptions ordered by ID."""
        pass

    # Charge declaration operations
    @abstractmethod
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
        pass

    @abstractmethod
    def get_charge_declaration(self, declaration_id: int) -> Optional[ChargeDeclaration]:
        """Get charge declaration by ID."""
        pass

    @abstractmethod
    def list_charge_declarations(self, active_only: bool = False) -> list[ChargeDeclaration]:
        """List charge declarations ordered by ID."""
        pass

    # Payment bookkeeping operations
    @abstractmethod
    def create_entity_payment(
        self, family: Family, entity_id: int, link_number: str, payment_date: date, amount: Decimal
    ) -> int:
        """Record a payment for a subscription or declaration. Returns payment ID."""
        pass

    @abstractmethod
    def delete_entity_payments(self, link_number: str) -> int:
        """Delete payments created by a link. Returns number of rows deleted."""
        pass

    @abstractmethod
    def list_entity_payments(
        self, family: Optional[Family] = None, entity_id: Optional[int] = None
    ) -> list[EntityPayment]:
        """List payments, most recent payment date first."""
        pass

    # Statement operations
    @abstractmethod
    def create_statement(
        self,
        number: str,
        created_by: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> int:
        """Create a statement. Returns statement ID."""
        pass

    @abstractmethod
    def get_statement(self, statement_id: int) -> Optional[Statement]:
        """Get statement by ID."""
        pass

    @abstractmethod
    def get_statement_by_number(self, number: str) -> Optional[Statement]:
        """Get statement by number."""
        pass

    @abstractmethod
    def list_statements(self) -> list[Statement]:
        """List statements ordered by ID."""
        pass

    @abstractmethod
    def count_statements_with_prefix(self, prefix: str) -> int:
        """Count statements whose number starts with prefix."""
        pass

    # Transaction line operations
    @abstractmethod
    def create_transaction_line(
        self,
        statement_id: int,
        line_number: str,
        date: date,
        label: str,
        debit: Decimal,
        credit: Decimal,
    ) -> int:
        """Create a transaction line. Returns line ID."""
        pass

    @abstractmethod
    def get_transaction_line(self, line_id: int) -> Optional[TransactionLine]:
        """Get transaction line by ID."""
        pass

    @abstractmethod
    def get_transaction_line_by_number(
        self, statement_id: int, line_number: str
    ) -> Optional[TransactionLine]:
        """Get transaction line by its number within a statement."""
        pass

    @abstractmethod
    def list_transaction_lines(self, statement_id: int) -> list[TransactionLine]:
        """List lines of a statement ordered by date, then ID."""
        pass

    @abstractmethod
    def count_transaction_lines(self, statement_id: int) -> int:
        """Count lines of a statement."""
        pass

    # Rule operations
    @abstractmethod
    def create_rule(
        self,
        name: str,
        rule_type: RuleType,
        priority: int,
        score_contribution: int,
        payload: dict[str, Any],
        active: bool = True,
    ) -> int:
        """Create a matching rule. Returns rule ID."""
        pass

    @abstractmethod
    def get_rule(self, rule_id: int) -> Optional[Rule]:
        """Get rule by ID."""
        pass

    @abstractmethod
    def list_rules(
        self, active_only: bool = False, rule_type: Optional[RuleType] = None
    ) -> list[Rule]:
        """List rules ordered by priority, then ID."""
        pass

    @abstractmethod
    def update_rule(
        self,
        rule_id: int,
        name: Optional[str] = None,
        priority: Optional[int] = None,
        score_contribution: Optional[int] = None,
        payload: Optional[dict[str, Any]] = None,
        active: Optional[bool] = None,
    ) -> None:
        """Update rule fields. Fields left to None are unchanged."""
        pass

    # Link operations
    @abstractmethod
    def create_link(
        self,
        transaction_line_id: int,
        statement_id: int,
        family: Family,
        entity_id: int,
        method: LinkMethod,
        score: Optional[int],
        previous_status: Optional[str],
        created_by: str,
    ) -> Link:
        """Create a link and assign its link number."""
        pass

    @abstractmethod
    def get_link(self, link_id: int) -> Optional[Link]:
        """Get link by ID."""
        pass

    @abstractmethod
    def get_link_for_slot(self, transaction_line_id: int, slot: Slot) -> Optional[Link]:
        """Get the link occupying a slot of a transaction line."""
        pass

    @abstractmethod
    def list_links(
        self,
        statement_id: Optional[int] = None,
        transaction_line_id: Optional[int] = None,
        family: Optional[Family] = None,
        entity_id: Optional[int] = None,
    ) -> list[Link]:
        """List links ordered by ID with optional filters."""
        pass

    @abstractmethod
    def delete_link(self, link_id: int) -> None:
        """Delete a link."""
        pass

    # Audit operations
    @abstractmethod
    def record_link_event(
        self,
        kind: LinkEventKind,
        link_number: str,
        actor: str,
        transaction_line_id: Optional[int] = None,
        statement_id: Optional[int] = None,
        family: Optional[Family] = None,
        entity_id: Optional[int] = None,
        method: Optional[LinkMethod] = None,
        score: Optional[int] = None,
        details: Optional[str] = None,
    ) -> int:
        """Append an audit event. Returns event ID."""
        pass

    @abstractmethod
    def list_link_events(
        self, statement_id: Optional[int] = None, link_number: Optional[str] = None
    ) -> list[LinkEvent]:
        """List audit events in the order they were recorded."""
        pass
