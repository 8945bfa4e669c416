"""Read-only access to the records the matcher scores against."""

import logging
from dataclasses import dataclass
from typing import Optional

from rapprochement.database.base import Database
from rapprochement.domain.entities import (
    CandidateEntity,
    ChargeDeclaration,
    Direction,
    Family,
    Invoice,
    InvoiceKind,
    InvoiceStatus,
    Partner,
    Subscription,
)
from rapprochement.domain.errors import NotFoundError, entity_not_found, store_errors

logger = logging.getLogger(__name__)

# Statuses an invoice can be reconciled from
MATCHABLE_INVOICE_STATUSES = (InvoiceStatus.VALIDATED, InvoiceStatus.PAID)


@dataclass(frozen=True)
class CandidateFilter:
    """Narrows a candidate lookup.

    By default only active records are returned, and invoices that already
    carry a reconciliation reference are left out.
    """

    include_inactive: bool = False
    exclude_linked: bool = True
    invoice_kind: Optional[InvoiceKind] = None


def expected_invoice_direction(invoice: Invoice) -> Direction:
    """Bank polarity an invoice is settled with.

    Sales are collected (credit), purchases are paid (debit); credit notes
    move money the other way.
    """
    incoming = invoice.kind is InvoiceKind.SALE
    if invoice.is_credit_note:
        incoming = not incoming
    return Direction.CREDIT if incoming else Direction.DEBIT


def _invoice_candidate(invoice: Invoice, partners: dict[int, Partner]) -> CandidateEntity:
    partner = partners.get(invoice.partner_id) if invoice.partner_id is not None else None
    corpus = invoice.keywords
    if corpus is None and partner is not None:
        corpus = partner.keywords or partner.name
    display = invoice.number if partner is None else f"{invoice.number} ({partner.name})"
    return CandidateEntity(
        family=Family.INVOICE,
        id=invoice.id,
        display_name=display,
        keyword_corpus=corpus or "",
        reference_amount=invoice.total,
        reference_date=invoice.issue_date,
        expected_direction=expected_invoice_direction(invoice),
    )


def _subscription_candidate(subscription: Subscription) -> CandidateEntity:
    return CandidateEntity(
        family=Family.SUBSCRIPTION,
        id=subscription.id,
        display_name=subscription.name,
        keyword_corpus=subscription.keywords or subscription.name,
        reference_amount=subscription.amount,
        reference_date=subscription.reference_date,
    )


def _declaration_candidate(declaration: ChargeDeclaration) -> CandidateEntity:
    display = declaration.name
    if declaration.organism:
        display = f"{declaration.name} ({declaration.organism})"
    return CandidateEntity(
        family=Family.CHARGE_DECLARATION,
        id=declaration.id,
        display_name=display,
        keyword_corpus=declaration.keywords or declaration.name,
        reference_amount=declaration.amount,
        reference_date=declaration.reference_date,
    )


def _partner_candidate(partner: Partner) -> CandidateEntity:
    return CandidateEntity(
        family=Family.PARTNER,
        id=partner.id,
        display_name=partner.name,
        keyword_corpus=partner.keywords or partner.name,
    )


class EntityRepository:
    """Candidate projections for each matchable family.

    Every method is side-effect free. Store failures surface as
    RepositoryError, never as an empty result.
    """

    def __init__(self, db: Database):
        """Initialize entity repository.

        Args:
            db: Database instance
        """
        self.db = db

    def find_candidates(
        self, family: Family, candidate_filter: CandidateFilter = CandidateFilter()
    ) -> list[CandidateEntity]:
        """List candidates of one family, ordered by ID.

        Args:
            family: Family to look up
            candidate_filter: Lookup restrictions

        Returns:
            List of candidate projections

        Raises:
            RepositoryError: If the backing store cannot be read
        """
        active_only = not candidate_filter.include_inactive
        with store_errors(f"load {family.value.lower()} candidates"):
            if family is Family.INVOICE:
                invoices = self.db.list_invoices(
                    kind=candidate_filter.invoice_kind,
                    statuses=list(MATCHABLE_INVOICE_STATUSES),
                    unreconciled_only=candidate_filter.exclude_linked,
                )
                partners = {p.id: p for p in self.db.list_partners()}
                candidates = [_invoice_candidate(inv, partners) for inv in invoices]
            elif family is Family.SUBSCRIPTION:
                candidates = [
                    _subscription_candidate(s)
                    for s in self.db.list_subscriptions(active_only=active_only)
                ]
            elif family is Family.CHARGE_DECLARATION:
                candidates = [
                    _declaration_candidate(d)
                    for d in self.db.list_charge_declarations(active_only=active_only)
                ]
            else:
                candidates = [
                    _partner_candidate(p) for p in self.db.list_partners(active_only=active_only)
                ]

        logger.debug("Loaded %d %s candidates", len(candidates), family.value)
        return candidates

    def get_candidate(self, family: Family, entity_id: int) -> CandidateEntity:
        """Project one record, whatever its status.

        Raises:
            NotFoundError: If the record does not exist
            RepositoryError: If the backing store cannot be read
        """
        with store_errors(f"load {family.value.lower()} {entity_id}"):
            if family is Family.INVOICE:
                invoice = self.db.get_invoice(entity_id)
                if invoice is not None:
                    partners = {p.id: p for p in self.db.list_partners()}
                    return _invoice_candidate(invoice, partners)
            elif family is Family.SUBSCRIPTION:
                subscription = self.db.get_subscription(entity_id)
                if subscription is not None:
                    return _subscription_candidate(subscription)
            elif family is Family.CHARGE_DECLARATION:
                declaration = self.db.get_charge_declaration(entity_id)
                if declaration is not None:
                    return _declaration_candidate(declaration)
            else:
                partner = self.db.get_partner(entity_id)
                if partner is not None:
                    return _partner_candidate(partner)

        raise NotFoundError(entity_not_found(family.value, entity_id))

    def candidate_pools(
        self, candidate_filter: CandidateFilter = CandidateFilter()
    ) -> dict[Family, list[CandidateEntity]]:
        """Candidates of every family."""
        return {family: self.find_candidates(family, candidate_filter) for family in Family}
