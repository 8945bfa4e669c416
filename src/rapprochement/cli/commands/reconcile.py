"""Reconciliation commands."""

import click
from rapprochement.cli.error_handling import handle_domain_error
from rapprochement.domain.credit_notes import CreditNoteService
from rapprochement.domain.entities import Family, LineState
from rapprochement.domain.errors import DomainError
from rapprochement.domain.matcher import MatcherSettings
from rapprochement.domain.session import ReconciliationSession
from rapprochement.domain.statement import StatementService


@click.group()
def reconcile_group():
    """Reconcile bank lines with invoices, subscriptions, declarations and partners."""
    pass


@reconcile_group.command("run")
@click.argument("statement")
@click.option("--invoice-threshold", type=click.IntRange(0, 100), default=50, show_default=True, help="Minimum score to link an invoice")
@click.option("--partner-threshold", type=click.IntRange(0, 100), default=30, show_default=True, help="Minimum score to link a subscription, declaration or partner")
@click.pass_context
def run(ctx, statement: str, invoice_threshold: int, partner_threshold: int):
    """Run automatic reconciliation on STATEMENT (number or ID).

    Lines that already have a link are left untouched.
    """
    db = ctx.obj["db"]
    settings = MatcherSettings(invoice_threshold=invoice_threshold, partner_threshold=partner_threshold)
    session = ReconciliationSession(db, settings=settings, actor=ctx.obj["actor"])

    try:
        found = StatementService(db).resolve_statement(statement)
        result = session.run(found.id)
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    for outcome in result.outcomes:
        if outcome.skipped:
            continue
        if outcome.error:
            click.echo(f"  {outcome.line_number}: error: {outcome.error}", err=True)
        elif outcome.created_links:
            targets = ", ".join(
                f"{link.family.value} {link.entity_id} ({link.score})" for link in outcome.created_links
            )
            click.echo(f"  {outcome.line_number}: {outcome.level.value} -> {targets}")
        elif outcome.state is LineState.SUGGESTED:
            best = [
                f"{family.value} {candidates[0].entity_id} ({candidates[0].total_score})"
                for family, candidates in outcome.match.scores.items()
                if candidates
            ]
            click.echo(f"  {outcome.line_number}: suggested {', '.join(best)}")

    click.echo(f"\nReconciliation of {found.number} complete:")
    click.echo(f"  Linked: {result.linked} lines")
    click.echo(f"  Suggested: {result.suggested} lines")
    click.echo(f"  Unmatched: {result.unmatched} lines")
    click.echo(f"  Already linked: {result.skipped} lines")
    if result.errors:
        click.echo(f"  Errors: {len(result.errors)}")


@reconcile_group.command("link")
@click.argument("line_id", type=int)
@click.argument("family", type=click.Choice([f.value for f in Family], case_sensitive=False))
@click.argument("entity_id", type=int)
@click.option("--replace", is_flag=True, help="Replace the link currently occupying the slot")
@click.option("--notes", help="Operator notes kept in the audit trail")
@click.pass_context
def link(ctx, line_id: int, family: str, entity_id: int, replace: bool, notes: str | None):
    """Manually link LINE_ID to a record of FAMILY."""
    session = ReconciliationSession(ctx.obj["db"], actor=ctx.obj["actor"])
    try:
        created = session.manual_link(line_id, family, entity_id, replace=replace, notes=notes)
        click.echo(f"Created link {created.link_number} (ID: {created.id})")
    except DomainError as e:
        handle_domain_error(ctx, e)


@reconcile_group.command("unlink")
@click.argument("link_id", type=int)
@click.option("--reason", help="Reason kept in the audit trail")
@click.pass_context
def unlink(ctx, link_id: int, reason: str | None):
    """Remove a link and restore the linked record."""
    session = ReconciliationSession(ctx.obj["db"], actor=ctx.obj["actor"])
    try:
        removed = session.unlink(link_id, reason=reason)
        click.echo(f"Removed link {removed.link_number}")
    except DomainError as e:
        handle_domain_error(ctx, e)


@reconcile_group.command("offset")
@click.argument("invoice_id", type=int)
@click.argument("credit_note_ids", type=int, nargs=-1)
@click.pass_context
def offset(ctx, invoice_id: int, credit_note_ids: tuple[int, ...]):
    """Settle INVOICE_ID with one or more credit notes."""
    service = CreditNoteService(ctx.obj["db"], actor=ctx.obj["actor"])
    try:
        result = service.offset(invoice_id, credit_note_ids)
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    click.echo(f"Offset {result.reference}: balance {result.balance:,.2f}")
    if result.warning:
        click.echo(f"Warning: {result.warning}", err=True)


@reconcile_group.command("cancel-offset")
@click.argument("reference")
@click.pass_context
def cancel_offset(ctx, reference: str):
    """Revert a credit-note offset."""
    service = CreditNoteService(ctx.obj["db"], actor=ctx.obj["actor"])
    try:
        invoice_ids = service.cancel_offset(reference)
        click.echo(f"Cancelled offset {reference} ({len(invoice_ids)} invoices restored)")
    except DomainError as e:
        handle_domain_error(ctx, e)


@reconcile_group.command("links")
@click.argument("statement")
@click.pass_context
def list_links(ctx, statement: str):
    """List the links of STATEMENT."""
    db = ctx.obj["db"]
    session = ReconciliationSession(db)
    try:
        found = StatementService(db).resolve_statement(statement)
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    links = session.ledger.links_for_statement(found.id)
    if not links:
        click.echo("No links found.")
        return

    click.echo(f"\n{'ID':<5} {'Link':<20} {'Line':<6} {'Family':<20} {'Entity':<7} {'Method':<7} {'Score':<6} By")
    click.echo("-" * 90)
    for item in links:
        score = "" if item.score is None else str(item.score)
        click.echo(
            f"{item.id:<5} {item.link_number:<20} {item.transaction_line_id:<6} {item.family.value:<20} "
            f"{item.entity_id:<7} {item.method.value:<7} {score:<6} {item.created_by}"
        )


@reconcile_group.command("history")
@click.option("--statement", help="Statement number or ID")
@click.option("--link", "link_number", help="Link number or offset reference")
@click.pass_context
def history(ctx, statement: str | None, link_number: str | None):
    """Show the audit trail of links and offsets."""
    db = ctx.obj["db"]
    session = ReconciliationSession(db)
    statement_id = None
    if statement is not None:
        try:
            statement_id = StatementService(db).resolve_statement(statement).id
        except DomainError as e:
            handle_domain_error(ctx, e)
            return

    events = session.ledger.history(statement_id=statement_id, link_number=link_number)
    if not events:
        click.echo("No events found.")
        return

    for event in events:
        target = ""
        if event.family is not None and event.entity_id is not None:
            target = f" {event.family.value} {event.entity_id}"
        details = f" ({event.details})" if event.details else ""
        click.echo(
            f"{event.occurred_at:%Y-%m-%d %H:%M:%S} {event.kind.value:<17} {event.link_number}"
            f"{target} by {event.actor}{details}"
        )


def register_commands(cli):
    """Register reconcile commands with main CLI."""
    cli.add_command(reconcile_group, name="reconcile")
