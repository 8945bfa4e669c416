"""Shared pytest fixtures for rapprochement tests."""

import tempfile
import os
from datetime import date
from decimal import Decimal
import pytest

from rapprochement.database.factories import create_sqlite_database
from rapprochement.domain.credit_notes import CreditNoteService
from rapprochement.domain.ledger import LinkLedger
from rapprochement.domain.records import RecordService
from rapprochement.domain.rules import RuleService
from rapprochement.domain.session import ReconciliationSession
from rapprochement.domain.statement import StatementService


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    # Create a temporary file for the database
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    # Create database
    db = create_sqlite_database(database_path=db_path)
    # Store the path for tests that need it
    db.database_path = db_path
    db.connect()
    db.initialize_schema()

    yield db

    # Cleanup
    db.disconnect()
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def rule_service(temp_db):
    """Create a RuleService with a temporary database."""
    return RuleService(temp_db)


@pytest.fixture
def record_service(temp_db):
    """Create a RecordService with a temporary database."""
    return RecordService(temp_db)


@pytest.fixture
def statement_service(temp_db):
    """Create a StatementService with a temporary database."""
    return StatementService(temp_db, actor="alice")


@pytest.fixture
def ledger(temp_db):
    """Create a LinkLedger with a temporary database."""
    return LinkLedger(temp_db, actor="alice")


@pytest.fixture
def session(temp_db):
    """Create a ReconciliationSession with a temporary database."""
    return ReconciliationSession(temp_db, actor="alice")


@pytest.fixture
def credit_note_service(temp_db):
    """Create a CreditNoteService with a temporary database."""
    return CreditNoteService(temp_db, actor="alice")


@pytest.fixture
def sample_statement(statement_service):
    """Create an empty statement for March 2024."""
    statement_id = statement_service.create_statement(
        number="RAP-2403-01", start_date=date(2024, 3, 1), end_date=date(2024, 3, 31)
    )
    return statement_service.get_statement(statement_id)


@pytest.fixture
def add_line(statement_service, sample_statement):
    """Return a helper appending a line to the sample statement."""

    def _add(label: str, amount: str, line_date: date = date(2024, 3, 5)):
        line_id = statement_service.add_line(
            sample_statement.id, date=line_date, label=label, amount=Decimal(amount)
        )
        return statement_service.get_line(line_id)

    return _add


@pytest.fixture
def sample_client(record_service):
    """Create a client partner."""
    partner_id = record_service.create_partner(name="Dupont SARL", kind="CLIENT", keywords="DUPONT")
    return record_service.get_partner(partner_id)


@pytest.fixture
def sample_invoice(record_service, sample_client):
    """Create a validated sales invoice of 1 500.00."""
    invoice_id = record_service.create_invoice(
        number="FA-2024-001",
        kind="SALE",
        issue_date=date(2024, 3, 1),
        total=Decimal("1500.00"),
        partner_id=sample_client.id,
    )
    return record_service.get_invoice(invoice_id)


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()
