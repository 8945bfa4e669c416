"""Mapper functions to convert between domain models and SQLAlchemy models.

This layer isolates the conversion logic. Rule payloads are parsed here, so a
rule never leaves the database layer with an untyped payload.
"""

from decimal import Decimal
from typing import Optional

from rapprochement.domain import entities as domain
from rapprochement.domain.conditions import parse_condition
from rapprochement.domain.errors import MalformedRuleError, ValidationError
from rapprochement.database.models import (
    Partner as ORMPartner,
    Invoice as ORMInvoice,
    Subscription as ORMSubscription,
    ChargeDeclaration as ORMChargeDeclaration,
    EntityPayment as ORMEntityPayment,
    Statement as ORMStatement,
    TransactionLine as ORMTransactionLine,
    MatchingRule as ORMMatchingRule,
    Link as ORMLink,
    LinkEvent as ORMLinkEvent,
)


def _decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value)).quantize(Decimal("0.01"))


def partner_to_domain(orm_partner: ORMPartner) -> domain.Partner:
    """Convert SQLAlchemy Partner model to domain Partner entity."""
    return domain.Partner(
        id=orm_partner.id,
        name=orm_partner.name,
        kind=domain.PartnerKind(orm_partner.kind),
        keywords=orm_partner.keywords,
        active=orm_partner.active,
        created_at=orm_partner.created_at,
    )


def invoice_to_domain(orm_invoice: ORMInvoice) -> domain.Invoice:
    """Convert SQLAlchemy Invoice model to domain Invoice entity."""
    return domain.Invoice(
        id=orm_invoice.id,
        number=orm_invoice.number,
        kind=domain.InvoiceKind(orm_invoice.kind),
        partner_id=orm_invoice.partner_id,
        issue_date=orm_invoice.issue_date,
        total=_decimal(orm_invoice.total),
        status=domain.InvoiceStatus(orm_invoice.status),
        keywords=orm_invoice.keywords,
        reconciliation_ref=orm_invoice.reconciliation_ref,
        reconciled_on=orm_invoice.reconciled_on,
        created_at=orm_invoice.created_at,
    )


def subscription_to_domain(orm_subscription: ORMSubscription) -> domain.Subscription:
    """Convert SQLAlchemy Subscription model to domain Subscription entity."""
    return domain.Subscription(
        id=orm_subscription.id,
        name=orm_subscription.name,
        partner_id=orm_subscription.partner_id,
        amount=_decimal(orm_subscription.amount),
        reference_date=orm_subscription.reference_date,
        keywords=orm_subscription.keywords,
        active=orm_subscription.active,
        created_at=orm_subscription.created_at,
    )


def charge_declaration_to_domain(orm_declaration: ORMChargeDeclaration) -> domain.ChargeDeclaration:
    """Convert SQLAlchemy ChargeDeclaration model to domain entity."""
    return domain.ChargeDeclaration(
        id=orm_declaration.id,
        name=orm_declaration.name,
        organism=orm_declaration.organism,
        amount=_decimal(orm_declaration.amount),
        reference_date=orm_declaration.reference_date,
        keywords=orm_declaration.keywords,
        active=orm_declaration.active,
        created_at=orm_declaration.created_at,
    )


def entity_payment_to_domain(orm_payment: ORMEntityPayment) -> domain.EntityPayment:
    """Convert SQLAlchemy EntityPayment model to domain entity."""
    return domain.EntityPayment(
        id=orm_payment.id,
        family=domain.Family(orm_payment.family),
        entity_id=orm_payment.entity_id,
        link_number=orm_payment.link_number,
        payment_date=orm_payment.payment_date,
        amount=_decimal(orm_payment.amount),
        created_at=orm_payment.created_at,
    )


def statement_to_domain(orm_statement: ORMStatement) -> domain.Statement:
    """Convert SQLAlchemy Statement model to domain Statement entity."""
    return domain.Statement(
        id=orm_statement.id,
        number=orm_statement.number,
        start_date=orm_statement.start_date,
        end_date=orm_statement.end_date,
        created_by=orm_statement.created_by,
        created_at=orm_statement.created_at,
    )


def transaction_line_to_domain(orm_line: ORMTransactionLine) -> domain.TransactionLine:
    """Convert SQLAlchemy TransactionLine model to domain entity."""
    return domain.TransactionLine(
        id=orm_line.id,
        statement_id=orm_line.statement_id,
        line_number=orm_line.line_number,
        date=orm_line.date,
        label=orm_line.label,
        debit=_decimal(orm_line.debit),
        credit=_decimal(orm_line.credit),
    )


def rule_to_domain(orm_rule: ORMMatchingRule) -> domain.Rule:
    """Convert SQLAlchemy MatchingRule model to domain Rule entity.

    Raises:
        MalformedRuleError: If the stored type or payload no longer validates
    """
    try:
        rule_type = domain.RuleType(orm_rule.rule_type)
        condition = parse_condition(rule_type, orm_rule.payload)
    except (ValidationError, ValueError) as e:
        raise MalformedRuleError(f"Rule {orm_rule.id} ({orm_rule.name}) is malformed: {e}") from e

    return domain.Rule(
        id=orm_rule.id,
        name=orm_rule.name,
        rule_type=rule_type,
        active=orm_rule.active,
        priority=orm_rule.priority,
        score_contribution=orm_rule.score_contribution,
        condition=condition,
        created_at=orm_rule.created_at,
        updated_at=orm_rule.updated_at,
    )


def link_to_domain(orm_link: ORMLink) -> domain.Link:
    """Convert SQLAlchemy Link model to domain Link entity."""
    return domain.Link(
        id=orm_link.id,
        link_number=orm_link.link_number,
        transaction_line_id=orm_link.transaction_line_id,
        statement_id=orm_link.statement_id,
        family=domain.Family(orm_link.family),
        entity_id=orm_link.entity_id,
        method=domain.LinkMethod(orm_link.method),
        score=orm_link.score,
        previous_status=orm_link.previous_status,
        created_by=orm_link.created_by,
        created_at=orm_link.created_at,
    )


def link_event_to_domain(orm_event: ORMLinkEvent) -> domain.LinkEvent:
    """Convert SQLAlchemy LinkEvent model to domain LinkEvent entity."""
    return domain.LinkEvent(
        id=orm_event.id,
        kind=domain.LinkEventKind(orm_event.kind),
        link_number=orm_event.link_number,
        transaction_line_id=orm_event.transaction_line_id,
        statement_id=orm_event.statement_id,
        family=domain.Family(orm_event.family) if orm_event.family else None,
        entity_id=orm_event.entity_id,
        method=domain.LinkMethod(orm_event.method) if orm_event.method else None,
        score=orm_event.score,
        actor=orm_event.actor,
        occurred_at=orm_event.occurred_at,
        details=orm_event.details,
    )
