"""Bank statement commands."""

import click
from rapprochement.cli.error_handling import handle_domain_error, parse_option
from rapprochement.domain.errors import DomainError
from rapprochement.domain.session import ReconciliationSession, reconciliation_level
from rapprochement.domain.statement import StatementService
from rapprochement.utils.amount_parser import parse_amount
from rapprochement.utils.date_parser import parse_date


@click.group()
def statement_group():
    """Manage bank statements and their lines."""
    pass


@statement_group.command("create")
@click.option("--number", help="Statement number (default: next RAP-YYMM-NN)")
@click.option("--start-date", help="First day covered by the statement")
@click.option("--end-date", help="Last day covered by the statement")
@click.pass_context
def create_statement(ctx, number: str | None, start_date: str | None, end_date: str | None):
    """Create a bank statement."""
    service = StatementService(ctx.obj["db"], actor=ctx.obj["actor"])
    start = parse_option(ctx, parse_date, start_date, "start date")
    end = parse_option(ctx, parse_date, end_date, "end date")

    try:
        statement_id = service.create_statement(number=number, start_date=start, end_date=end)
        statement = service.get_statement(statement_id)
        click.echo(f"Created statement {statement.number} (ID: {statement_id})")
    except DomainError as e:
        handle_domain_error(ctx, e)


@statement_group.command("add-line")
@click.argument("statement")
@click.option("--date", "line_date", required=True, help="Operation date (YYYY-MM-DD, DD/MM/YYYY, 'today')")
@click.option("--label", required=True, help="Bank label")
@click.option("--amount", help="Signed amount: negative for a debit, positive for a credit")
@click.option("--debit", help="Debit amount")
@click.option("--credit", help="Credit amount")
@click.option("--line-number", help="Line number (default: RL-YYYYMMDD-NNNNN)")
@click.pass_context
def add_line(ctx, statement: str, line_date: str, label: str, amount: str | None, debit: str | None, credit: str | None, line_number: str | None):
    """Append a transaction line to STATEMENT (number or ID)."""
    service = StatementService(ctx.obj["db"], actor=ctx.obj["actor"])
    parsed_date = parse_option(ctx, parse_date, line_date, "date")
    parsed_amount = parse_option(ctx, parse_amount, amount, "amount")
    parsed_debit = parse_option(ctx, parse_amount, debit, "debit")
    parsed_credit = parse_option(ctx, parse_amount, credit, "credit")

    try:
        found = service.resolve_statement(statement)
        line_id = service.add_line(
            found.id,
            date=parsed_date,
            label=label,
            debit=parsed_debit or 0,
            credit=parsed_credit or 0,
            amount=parsed_amount,
            line_number=line_number,
        )
        line = service.get_line(line_id)
        click.echo(f"Added line {line.line_number} (ID: {line_id}) to statement {found.number}")
    except DomainError as e:
        handle_domain_error(ctx, e)


@statement_group.command("import")
@click.argument("statement")
@click.argument("csv_file", type=click.Path(exists=True))
@click.pass_context
def import_lines(ctx, statement: str, csv_file: str):
    """Import transaction lines from a CSV bank export."""
    service = StatementService(ctx.obj["db"], actor=ctx.obj["actor"])

    try:
        found = service.resolve_statement(statement)
        result = service.import_csv(found.id, csv_file)
        click.echo(f"\nImport complete:")
        click.echo(f"  Imported: {result['imported']} lines")
        click.echo(f"  Skipped: {result['skipped']} duplicates")
        if result["errors"]:
            click.echo(f"  Errors: {len(result['errors'])}")
            for error in result["errors"]:
                click.echo(f"    {error}", err=True)
    except (ValueError, FileNotFoundError) as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)


@statement_group.command("list")
@click.pass_context
def list_statements(ctx):
    """List bank statements with their reconciliation progress."""
    db = ctx.obj["db"]
    service = StatementService(db)
    session = ReconciliationSession(db)

    statements = service.list_statements()
    if not statements:
        click.echo("No statements found.")
        return

    click.echo(f"\n{'ID':<5} {'Number':<15} {'Period':<25} {'Lines':>6} {'Full':>6} {'Partial':>8} {'None':>6}")
    click.echo("-" * 80)
    for statement in statements:
        summary = session.statement_summary(statement.id)
        period = ""
        if statement.start_date or statement.end_date:
            period = f"{statement.start_date or '?'} - {statement.end_date or '?'}"
        click.echo(
            f"{statement.id:<5} {statement.number:<15} {period:<25} {summary['lines']:>6} "
            f"{summary['full']:>6} {summary['partial']:>8} {summary['none']:>6}"
        )


@statement_group.command("show")
@click.argument("statement")
@click.pass_context
def show_statement(ctx, statement: str):
    """Show the lines of STATEMENT and their links."""
    db = ctx.obj["db"]
    service = StatementService(db)
    session = ReconciliationSession(db)

    try:
        found = service.resolve_statement(statement)
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    lines = service.list_lines(found.id)
    click.echo(f"\nStatement {found.number} (ID: {found.id}), created by {found.created_by}")
    if not lines:
        click.echo("No lines.")
        return

    links_by_line = {}
    for link in session.ledger.links_for_statement(found.id):
        links_by_line.setdefault(link.transaction_line_id, []).append(link)

    click.echo(f"\n{'ID':<5} {'Line':<20} {'Date':<12} {'Debit':>12} {'Credit':>12} {'Status':<8} Label")
    click.echo("-" * 110)
    for line in lines:
        links = links_by_line.get(line.id, [])
        debit = f"{line.debit:,.2f}" if line.debit else ""
        credit = f"{line.credit:,.2f}" if line.credit else ""
        click.echo(
            f"{line.id:<5} {line.line_number:<20} {line.date!s:<12} {debit:>12} {credit:>12} "
            f"{reconciliation_level(links).value:<8} {line.label}"
        )
        for link in links:
            score = "manual" if link.score is None else f"score {link.score}"
            click.echo(
                f"{'':<5} -> {link.link_number} {link.family.value} {link.entity_id} "
                f"({link.method.value}, {score})"
            )

    summary = session.statement_summary(found.id)
    click.echo(
        f"\nFull: {summary['full']}  Partial: {summary['partial']}  None: {summary['none']}"
    )


def register_commands(cli):
    """Register statement commands with main CLI."""
    cli.add_command(statement_group, name="statement")
