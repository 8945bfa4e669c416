"""Tests for offsetting invoices against credit notes."""

import logging
from datetime import date, datetime
from decimal import Decimal

import pytest

from rapprochement.domain.entities import Family, InvoiceStatus, LinkEventKind
from rapprochement.domain.errors import (
    ConflictError,
    ConsistencyError,
    NotFoundError,
    ValidationError,
)


@pytest.fixture
def credit_note(record_service, sample_client):
    invoice_id = record_service.create_invoice(
        "AV-2024-001", "SALE", date(2024, 3, 10), Decimal("-1500.00"), partner_id=sample_client.id
    )
    return record_service.get_invoice(invoice_id)


def test_balanced_offset(credit_note_service, record_service, temp_db, sample_invoice, credit_note):
    result = credit_note_service.offset(sample_invoice.id, [credit_note.id])

    assert result.balanced
    assert result.balance == Decimal("0.00")
    assert result.warning is None
    assert result.reference.startswith("AVOIR-")
    assert result.reference.endswith(f"-{sample_invoice.id}")
    for invoice_id in (sample_invoice.id, credit_note.id):
        invoice = record_service.get_invoice(invoice_id)
        assert invoice.status is InvoiceStatus.PAID
        assert invoice.reconciliation_ref == result.reference
        assert invoice.reconciled_on == date.today()

    events = temp_db.list_link_events(link_number=result.reference)
    assert [e.kind for e in events] == [LinkEventKind.OFFSET]
    assert events[0].actor == "alice"


def test_unbalanced_offset_warns(credit_note_service, record_service, sample_invoice, caplog):
    partial_id = record_service.create_invoice("AV-2", "SALE", date(2024, 3, 10), Decimal("-500"))

    with caplog.at_level(logging.WARNING, logger="rapprochement.domain.credit_notes"):
        result = credit_note_service.offset(sample_invoice.id, [partial_id])

    assert not result.balanced
    assert result.balance == Decimal("1000.00")
    assert "not balanced" in result.warning
    assert "not balanced" in caplog.text
    # Still applied
    assert record_service.get_invoice(sample_invoice.id).status is InvoiceStatus.PAID


def test_duplicate_credit_note_ids_are_collapsed(credit_note_service, sample_invoice, credit_note):
    result = credit_note_service.offset(sample_invoice.id, [credit_note.id, credit_note.id])

    assert result.credit_note_ids == (credit_note.id,)
    assert result.balanced


def test_empty_selection(credit_note_service, sample_invoice):
    with pytest.raises(ConsistencyError):
        credit_note_service.offset(sample_invoice.id, [])


def test_target_must_not_be_a_credit_note(credit_note_service, sample_invoice, credit_note):
    with pytest.raises(ValidationError, match="credit note"):
        credit_note_service.offset(credit_note.id, [sample_invoice.id])


def test_selection_must_be_credit_notes(credit_note_service, record_service, sample_invoice):
    other_id = record_service.create_invoice("FA-2", "SALE", date(2024, 3, 2), Decimal("10"))

    with pytest.raises(ValidationError, match="not a credit note"):
        credit_note_service.offset(sample_invoice.id, [other_id])


def test_kinds_must_match(credit_note_service, record_service, sample_invoice):
    supplier_note = record_service.create_invoice("AVF-1", "PURCHASE", date(2024, 3, 2), Decimal("-1500"))

    with pytest.raises(ValidationError, match="purchase"):
        credit_note_service.offset(sample_invoice.id, [supplier_note])


def test_invoice_cannot_offset_itself(credit_note_service, sample_invoice):
    with pytest.raises(ValidationError):
        credit_note_service.offset(sample_invoice.id, [sample_invoice.id])


def test_draft_credit_note_is_rejected(credit_note_service, record_service, sample_invoice):
    draft_id = record_service.create_invoice("AV-D", "SALE", date(2024, 3, 2), Decimal("-10"), status="DRAFT")

    with pytest.raises(ValidationError, match="draft"):
        credit_note_service.offset(sample_invoice.id, [draft_id])


def test_reconciled_invoice_conflicts(credit_note_service, record_service, sample_invoice, credit_note):
    credit_note_service.offset(sample_invoice.id, [credit_note.id])
    other_note = record_service.create_invoice("AV-3", "SALE", date(2024, 3, 2), Decimal("-10"))

    with pytest.raises(ConflictError, match="already reconciled"):
        credit_note_service.offset(sample_invoice.id, [other_note])


def test_missing_invoice(credit_note_service, sample_invoice):
    with pytest.raises(ValidationError, match="not found"):
        credit_note_service.offset(sample_invoice.id, [404])


def test_cancel_offset_restores_statuses(credit_note_service, record_service, temp_db, sample_invoice, credit_note):
    result = credit_note_service.offset(sample_invoice.id, [credit_note.id])

    reverted = credit_note_service.cancel_offset(result.reference)

    assert sorted(reverted) == sorted([sample_invoice.id, credit_note.id])
    for invoice_id in reverted:
        invoice = record_service.get_invoice(invoice_id)
        assert invoice.status is InvoiceStatus.VALIDATED
        assert invoice.reconciliation_ref is None
        assert invoice.reconciled_on is None
    kinds = [e.kind for e in temp_db.list_link_events(link_number=result.reference)]
    assert kinds == [LinkEventKind.OFFSET, LinkEventKind.OFFSET_CANCELLED]


def test_cancel_unknown_offset(credit_note_service):
    with pytest.raises(NotFoundError):
        credit_note_service.cancel_offset("AVOIR-20240101-000000-1")


def test_available_credit_notes(credit_note_service, record_service, sample_invoice, credit_note):
    record_service.create_invoice("AVF-1", "PURCHASE", date(2024, 3, 2), Decimal("-20"))

    assert len(credit_note_service.available_credit_notes()) == 2
    assert [cn.id for cn in credit_note_service.available_credit_notes(sample_invoice.id)] == [credit_note.id]

    credit_note_service.offset(sample_invoice.id, [credit_note.id])
    assert [cn.number for cn in credit_note_service.available_credit_notes()] == ["AVF-1"]


def test_cancel_offset_rejects_bank_link_number(credit_note_service, session, record_service, add_line, sample_invoice):
    first_line = add_line("VIR DUPONT", "1500.00")
    second_line = add_line("VIR DUPONT", "1500.00")
    link = session.manual_link(first_line.id, Family.INVOICE, sample_invoice.id)

    with pytest.raises(NotFoundError):
        credit_note_service.cancel_offset(link.link_number)

    invoice = record_service.get_invoice(sample_invoice.id)
    assert invoice.status is InvoiceStatus.PAID
    assert invoice.reconciliation_ref == link.link_number
    with pytest.raises(ConflictError):
        session.manual_link(second_line.id, Family.INVOICE, sample_invoice.id)


def test_offset_cannot_be_cancelled_twice(credit_note_service, sample_invoice, credit_note):
    result = credit_note_service.offset(sample_invoice.id, [credit_note.id])
    credit_note_service.cancel_offset(result.reference)

    with pytest.raises(NotFoundError):
        credit_note_service.cancel_offset(result.reference)


class FrozenDatetime(datetime):
    @classmethod
    def now(cls, tz=None):
        return cls(2024, 3, 15, 10, 30, 0)


def test_offset_references_stay_unique(credit_note_service, monkeypatch, sample_invoice, credit_note):
    monkeypatch.setattr("rapprochement.domain.credit_notes.datetime", FrozenDatetime)

    first = credit_note_service.offset(sample_invoice.id, [credit_note.id])
    credit_note_service.cancel_offset(first.reference)
    second = credit_note_service.offset(sample_invoice.id, [credit_note.id])

    assert first.reference == f"AVOIR-20240315-103000-{sample_invoice.id}"
    assert second.reference == f"AVOIR-20240315-103000-{sample_invoice.id}-2"
    # Cancelling the new offset leaves the history of the first one untouched
    credit_note_service.cancel_offset(second.reference)
    assert credit_note_service.available_credit_notes(sample_invoice.id)[0].id == credit_note.id
