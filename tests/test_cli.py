"""End-to-end tests for the command line interface."""

from datetime import date
from decimal import Decimal

import pytest

from rapprochement.cli.main import cli
from rapprochement.domain.entities import Family, InvoiceStatus


@pytest.fixture
def invoke(cli_runner, temp_db):
    """Invoke the CLI against the temporary database."""

    def _invoke(*args):
        return cli_runner.invoke(cli, ["--actor", "bob", *args], obj={"db": temp_db})

    return _invoke


def test_help_does_not_need_a_database(cli_runner):
    result = cli_runner.invoke(cli, ["--help"])

    assert result.exit_code == 0
    assert "Bank reconciliation" in result.output


def test_db_path_option(cli_runner, tmp_path):
    db_path = tmp_path / "compta.db"

    result = cli_runner.invoke(cli, ["--db-path", str(db_path), "statement", "create", "--number", "RAP-1"])

    assert result.exit_code == 0
    assert "Created statement RAP-1" in result.output
    assert db_path.exists()


def test_rule_commands(invoke, rule_service):
    result = invoke("rule", "create", "Montant exact", "--type", "amount", "--tolerance", "0.01", "--score", "40")
    assert result.exit_code == 0
    assert "Created rule 'Montant exact'" in result.output

    result = invoke(
        "rule", "create", "Loyer", "--type", "SUBSCRIPTION", "--keywords", "loyer bureau, sci", "--score", "50", "--priority", "10"
    )
    assert result.exit_code == 0

    result = invoke("rule", "list")
    assert result.exit_code == 0
    assert "Montant exact" in result.output
    assert "Loyer" in result.output
    assert result.output.index("Loyer") < result.output.index("Montant exact")


def test_rule_create_rejects_bad_payload(invoke, rule_service):
    result = invoke("rule", "create", "Montant", "--type", "AMOUNT", "--score", "40")

    assert result.exit_code == 1
    assert "Error:" in result.output
    assert rule_service.list_rules() == []


def test_rule_create_rejects_invalid_json(invoke):
    result = invoke("rule", "create", "X", "--type", "CUSTOM", "--score", "10", "--payload", "{not json")

    assert result.exit_code == 1
    assert "Invalid JSON payload" in result.output


def test_rule_update_and_deactivate(invoke, rule_service):
    rule_id = rule_service.create_rule("Date", "DATE", 20, {"window_days": 5})

    result = invoke("rule", "update", str(rule_id), "--score", "25", "--window-days", "3")
    assert result.exit_code == 0
    rule = rule_service.get_rule(rule_id)
    assert rule.score_contribution == 25
    assert rule.condition.window_days == 3

    result = invoke("rule", "deactivate", str(rule_id))
    assert result.exit_code == 0
    assert not rule_service.get_rule(rule_id).active


def test_record_commands(invoke, record_service):
    result = invoke("record", "add-partner", "Dupont SARL", "--kind", "client", "--keywords", "DUPONT")
    assert result.exit_code == 0
    assert "Created partner 'Dupont SARL' (ID: 1)" in result.output

    result = invoke("record", "add-invoice", "FA-1", "--kind", "SALE", "--date", "01/03/2024", "--total", "1 500,00", "--partner", "1")
    assert result.exit_code == 0
    assert "Created invoice 'FA-1'" in result.output

    result = invoke("record", "add-invoice", "AV-1", "--kind", "SALE", "--date", "2024-03-02", "--total", "-200")
    assert "Created credit note 'AV-1'" in result.output

    result = invoke("record", "add-subscription", "Assurance MMA", "--amount", "120", "--keywords", "MMA IARD")
    assert result.exit_code == 0
    result = invoke("record", "add-declaration", "DSN mars", "--organism", "URSSAF", "--amount", "980,50")
    assert result.exit_code == 0

    invoice = record_service.list_invoices()[0]
    assert invoice.total == Decimal("1500.00")
    assert invoice.issue_date == date(2024, 3, 1)

    result = invoke("record", "list")
    assert "Partners (1)" in result.output
    assert "Invoices (2)" in result.output
    assert "Subscriptions (1)" in result.output
    assert "Charge declarations (1)" in result.output


def test_record_invalid_amount(invoke):
    result = invoke("record", "add-invoice", "FA-1", "--kind", "SALE", "--date", "2024-03-01", "--total", "beaucoup")

    assert result.exit_code == 1
    assert "Invalid total" in result.output


def test_statement_commands(invoke, tmp_path):
    result = invoke("statement", "create", "--start-date", "2024-03-01", "--end-date", "2024-03-31")
    assert result.exit_code == 0
    assert "Created statement RAP-2403-01" in result.output

    result = invoke("statement", "add-line", "RAP-2403-01", "--date", "05/03/2024", "--label", "PRLV EDF", "--amount", "-85,40")
    assert result.exit_code == 0
    assert "Added line RL-20240305-00001" in result.output

    csv_file = tmp_path / "releve.csv"
    csv_file.write_text("date,label,amount\n2024-03-06,VIR DUPONT,1500.00\n", encoding="utf-8")
    result = invoke("statement", "import", "RAP-2403-01", str(csv_file))
    assert result.exit_code == 0
    assert "Imported: 1 lines" in result.output

    result = invoke("statement", "show", "RAP-2403-01")
    assert result.exit_code == 0
    assert "PRLV EDF" in result.output
    assert "VIR DUPONT" in result.output
    assert "created by bob" in result.output

    result = invoke("statement", "list")
    assert "RAP-2403-01" in result.output


def test_add_line_rejects_both_sides(invoke, sample_statement):
    result = invoke(
        "statement", "add-line", sample_statement.number, "--date", "2024-03-05", "--label", "X", "--debit", "10", "--credit", "10"
    )

    assert result.exit_code == 1
    assert "Error:" in result.output


def test_unknown_statement(invoke):
    result = invoke("reconcile", "run", "RAP-9999-01")

    assert result.exit_code == 1
    assert "not found" in result.output


def test_reconcile_run(invoke, rule_service, add_line, sample_invoice, sample_statement, record_service):
    rule_service.create_rule("Montant exact", "AMOUNT", 40, {"tolerance": "0.01"})
    rule_service.create_rule("Date proche", "DATE", 20, {"window_days": 5})
    add_line("VIR DUPONT", "1500.00", date(2024, 3, 4))
    add_line("VIR INCONNU", "42.00", date(2024, 3, 28))

    result = invoke("reconcile", "run", sample_statement.number)

    assert result.exit_code == 0
    assert "Linked: 1 lines" in result.output
    assert "Unmatched: 1 lines" in result.output
    assert record_service.get_invoice(sample_invoice.id).status is InvoiceStatus.PAID

    result = invoke("reconcile", "run", sample_statement.number)
    assert "Already linked: 1 lines" in result.output

    result = invoke("reconcile", "links", sample_statement.number)
    assert "LNK-" in result.output
    assert "bob" in result.output


def test_reconcile_run_threshold(invoke, rule_service, add_line, sample_invoice, sample_statement):
    rule_service.create_rule("Montant exact", "AMOUNT", 40, {"tolerance": "0.01"})
    add_line("VIR DUPONT", "1500.00")

    result = invoke("reconcile", "run", sample_statement.number)
    assert "Suggested: 1 lines" in result.output

    result = invoke("reconcile", "run", sample_statement.number, "--invoice-threshold", "40")
    assert "Linked: 1 lines" in result.output


def test_manual_link_unlink_and_history(invoke, ledger, add_line, sample_invoice, sample_statement):
    line = add_line("VIR DUPONT", "1500.00")

    result = invoke("reconcile", "link", str(line.id), "invoice", str(sample_invoice.id), "--notes", "client called")
    assert result.exit_code == 0
    assert "Created link LNK-" in result.output
    link = ledger.links_for_line(line.id)[0]
    assert link.created_by == "bob"

    result = invoke("reconcile", "link", str(line.id), "INVOICE", "999")
    assert result.exit_code == 1

    result = invoke("reconcile", "unlink", str(link.id), "--reason", "wrong invoice")
    assert result.exit_code == 0
    assert f"Removed link {link.link_number}" in result.output

    result = invoke("reconcile", "history", "--statement", sample_statement.number)
    assert "CREATED" in result.output
    assert "DELETED" in result.output
    assert "(client called)" in result.output
    assert "(wrong invoice)" in result.output


def test_offset_and_cancel(invoke, record_service, sample_invoice):
    credit_note_id = record_service.create_invoice("AV-1", "SALE", date(2024, 3, 5), Decimal("-1000"))

    result = invoke("reconcile", "offset", str(sample_invoice.id), str(credit_note_id))
    assert result.exit_code == 0
    assert "balance 500.00" in result.output
    assert "Warning:" in result.output
    reference = record_service.get_invoice(sample_invoice.id).reconciliation_ref
    assert reference.startswith("AVOIR-")

    result = invoke("reconcile", "cancel-offset", reference)
    assert result.exit_code == 0
    assert "2 invoices restored" in result.output
    assert record_service.get_invoice(credit_note_id).status is InvoiceStatus.VALIDATED


def test_offset_without_credit_notes(invoke, sample_invoice):
    result = invoke("reconcile", "offset", str(sample_invoice.id))

    assert result.exit_code == 1
    assert "at least one credit note" in result.output


def test_link_family_choice(invoke, add_line):
    line = add_line("VIR", "10.00")

    result = invoke("reconcile", "link", str(line.id), "CONTRACT", "1")

    assert result.exit_code == 2
    assert Family.INVOICE.value.lower() in result.output.lower()


def test_cancel_offset_refuses_link_number(invoke, ledger, record_service, add_line, sample_invoice):
    line = add_line("VIR DUPONT", "1500.00")
    invoke("reconcile", "link", str(line.id), "INVOICE", str(sample_invoice.id))
    link = ledger.links_for_line(line.id)[0]

    result = invoke("reconcile", "cancel-offset", link.link_number)

    assert result.exit_code == 1
    assert "not found" in result.output
    assert record_service.get_invoice(sample_invoice.id).status is InvoiceStatus.PAID
