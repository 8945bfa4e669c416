"""Tests for statements and transaction lines."""

from datetime import date
from decimal import Decimal

import pytest

from rapprochement.domain.entities import Direction
from rapprochement.domain.errors import ConflictError, NotFoundError, ValidationError


def test_statement_number_is_generated(statement_service):
    first = statement_service.create_statement(start_date=date(2024, 3, 1))
    second = statement_service.create_statement(start_date=date(2024, 3, 1))

    assert statement_service.get_statement(first).number == "RAP-2403-01"
    assert statement_service.get_statement(second).number == "RAP-2403-02"
    assert statement_service.get_statement(first).created_by == "alice"


def test_duplicate_statement_number(statement_service, sample_statement):
    with pytest.raises(ConflictError):
        statement_service.create_statement(number=sample_statement.number)


def test_inverted_period(statement_service):
    with pytest.raises(ValidationError):
        statement_service.create_statement(start_date=date(2024, 3, 31), end_date=date(2024, 3, 1))


def test_resolve_statement(statement_service, sample_statement):
    assert statement_service.resolve_statement("RAP-2403-01").id == sample_statement.id
    assert statement_service.resolve_statement(str(sample_statement.id)).id == sample_statement.id
    with pytest.raises(NotFoundError):
        statement_service.resolve_statement("RAP-1999-01")


def test_add_line_from_signed_amount(add_line):
    line = add_line("PRLV EDF", "-85.40")

    assert line.debit == Decimal("85.40")
    assert line.credit == Decimal("0.00")
    assert line.amount == Decimal("-85.40")
    assert line.direction is Direction.DEBIT
    assert line.line_number == "RL-20240305-00001"


def test_add_line_from_debit_credit(statement_service, sample_statement):
    line_id = statement_service.add_line(
        sample_statement.id, date=date(2024, 3, 6), label="VIR DUPONT", credit=Decimal("1500")
    )
    line = statement_service.get_line(line_id)

    assert line.amount == Decimal("1500.00")
    assert line.direction is Direction.CREDIT


@pytest.mark.parametrize(
    "debit, credit",
    [("0", "0"), ("10", "10"), ("-10", "0")],
)
def test_debit_credit_invariant(statement_service, sample_statement, debit, credit):
    with pytest.raises(ValidationError):
        statement_service.add_line(
            sample_statement.id,
            date=date(2024, 3, 6),
            label="X",
            debit=Decimal(debit),
            credit=Decimal(credit),
        )
    assert statement_service.list_lines(sample_statement.id) == []


def test_amount_and_debit_are_exclusive(statement_service, sample_statement):
    with pytest.raises(ValidationError):
        statement_service.add_line(
            sample_statement.id, date=date(2024, 3, 6), label="X", debit=Decimal("1"), amount=Decimal("1")
        )


def test_duplicate_line_number(statement_service, sample_statement):
    statement_service.add_line(
        sample_statement.id, date=date(2024, 3, 6), label="X", amount=Decimal("1"), line_number="L1"
    )
    with pytest.raises(ConflictError):
        statement_service.add_line(
            sample_statement.id, date=date(2024, 3, 6), label="Y", amount=Decimal("2"), line_number="L1"
        )


def test_lines_ordered_by_date(add_line, statement_service, sample_statement):
    late = add_line("B", "1", date(2024, 3, 20))
    early = add_line("A", "1", date(2024, 3, 2))

    assert [l.id for l in statement_service.list_lines(sample_statement.id)] == [early.id, late.id]


def test_add_lines_skips_existing_numbers(statement_service, sample_statement):
    rows = [
        {"date": date(2024, 3, 1), "label": "PRLV EDF", "amount": Decimal("-50"), "line_number": "A"},
        {"date": date(2024, 3, 2), "label": "VIR", "credit": Decimal("20"), "line_number": "B"},
        {"date": date(2024, 3, 3), "label": "BAD", "debit": Decimal("1"), "credit": Decimal("1")},
        {"label": "NO DATE", "amount": Decimal("1")},
    ]

    first = statement_service.add_lines(sample_statement.id, rows)
    second = statement_service.add_lines(sample_statement.id, rows[:2])

    assert first["imported"] == 2
    assert len(first["errors"]) == 2
    assert first["errors"][1] == "Row 4: Missing date"
    assert second == {"imported": 0, "skipped": 2, "errors": []}


def test_add_line_to_missing_statement(statement_service):
    with pytest.raises(NotFoundError):
        statement_service.add_line(99, date=date(2024, 3, 1), label="X", amount=Decimal("1"))


def test_import_csv(statement_service, sample_statement, tmp_path):
    csv_file = tmp_path / "releve.csv"
    csv_file.write_text(
        "Date;Label;Debit;Credit;Line_Number\n"
        "05/03/2024;PRLV MMA IARD;120,00;;L-1\n"
        "06/03/2024;VIR DUPONT;;1 500,00;L-2\n"
        "pas une date;VIR;;10,00;L-3\n",
        encoding="utf-8",
    )

    result = statement_service.import_csv(sample_statement.id, str(csv_file))
    lines = statement_service.list_lines(sample_statement.id)

    assert result["imported"] == 2
    assert len(result["errors"]) == 1
    assert result["errors"][0].startswith("Row 4:")
    assert [l.amount for l in lines] == [Decimal("-120.00"), Decimal("1500.00")]
    assert lines[0].date == date(2024, 3, 5)

    again = statement_service.import_csv(sample_statement.id, str(csv_file))
    assert again["skipped"] == 2


def test_import_csv_missing_columns(statement_service, sample_statement, tmp_path):
    csv_file = tmp_path / "releve.csv"
    csv_file.write_text("date,label\n2024-03-01,X\n", encoding="utf-8")

    with pytest.raises(ValueError, match="missing required columns"):
        statement_service.import_csv(sample_statement.id, str(csv_file))
