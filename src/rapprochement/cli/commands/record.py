"""Back-office record commands (partners, invoices, subscriptions, declarations)."""

import click
from rapprochement.cli.error_handling import handle_domain_error, parse_option
from rapprochement.domain.entities import Family, InvoiceKind, InvoiceStatus, PartnerKind
from rapprochement.domain.errors import DomainError
from rapprochement.domain.records import RecordService
from rapprochement.utils.amount_parser import parse_amount
from rapprochement.utils.date_parser import parse_date


@click.group()
def record_group():
    """Manage the records bank lines are reconciled against."""
    pass


@record_group.command("add-partner")
@click.argument("name")
@click.option("--kind", type=click.Choice([k.value for k in PartnerKind], case_sensitive=False), default=PartnerKind.SUPPLIER.value, show_default=True, help="Partner kind")
@click.option("--keywords", help="Keyword expression matched against bank labels (defaults to the name)")
@click.option("--inactive", is_flag=True, help="Exclude the partner from matching")
@click.pass_context
def add_partner(ctx, name: str, kind: str, keywords: str | None, inactive: bool):
    """Create a partner (bank, supplier, client or organism)."""
    service = RecordService(ctx.obj["db"])
    try:
        partner_id = service.create_partner(name=name, kind=kind, keywords=keywords, active=not inactive)
        click.echo(f"Created partner '{name}' (ID: {partner_id})")
    except DomainError as e:
        handle_domain_error(ctx, e)


@record_group.command("add-invoice")
@click.argument("number")
@click.option("--kind", type=click.Choice([k.value for k in InvoiceKind], case_sensitive=False), required=True, help="SALE or PURCHASE")
@click.option("--date", "issue_date", required=True, help="Issue date (YYYY-MM-DD, DD/MM/YYYY, 'today')")
@click.option("--total", required=True, help="Total including taxes; negative for a credit note (e.g. 1 234,56)")
@click.option("--partner", "partner_id", type=int, help="Partner ID")
@click.option("--status", type=click.Choice(["DRAFT", "VALIDATED", "CANCELLED"], case_sensitive=False), default=InvoiceStatus.VALIDATED.value, show_default=True, help="Invoice status")
@click.option("--keywords", help="Keyword expression (defaults to the partner's)")
@click.pass_context
def add_invoice(ctx, number: str, kind: str, issue_date: str, total: str, partner_id: int | None, status: str, keywords: str | None):
    """Create an invoice or a credit note."""
    service = RecordService(ctx.obj["db"])
    parsed_date = parse_option(ctx, parse_date, issue_date, "date")
    parsed_total = parse_option(ctx, parse_amount, total, "total")

    try:
        invoice_id = service.create_invoice(
            number=number,
            kind=kind,
            issue_date=parsed_date,
            total=parsed_total,
            partner_id=partner_id,
            status=status,
            keywords=keywords,
        )
        label = "credit note" if parsed_total < 0 else "invoice"
        click.echo(f"Created {label} '{number}' (ID: {invoice_id})")
    except DomainError as e:
        handle_domain_error(ctx, e)


@record_group.command("add-subscription")
@click.argument("name")
@click.option("--amount", help="Expected amount of each debit")
@click.option("--date", "reference_date", help="Reference date of the next debit")
@click.option("--partner", "partner_id", type=int, help="Partner ID")
@click.option("--keywords", help="Keyword expression (defaults to the name)")
@click.option("--inactive", is_flag=True, help="Exclude the subscription from matching")
@click.pass_context
def add_subscription(ctx, name: str, amount: str | None, reference_date: str | None, partner_id: int | None, keywords: str | None, inactive: bool):
    """Create a recurring subscription."""
    service = RecordService(ctx.obj["db"])
    parsed_amount = parse_option(ctx, parse_amount, amount, "amount")
    parsed_date = parse_option(ctx, parse_date, reference_date, "date")

    try:
        subscription_id = service.create_subscription(
            name=name,
            amount=parsed_amount,
            reference_date=parsed_date,
            partner_id=partner_id,
            keywords=keywords,
            active=not inactive,
        )
        click.echo(f"Created subscription '{name}' (ID: {subscription_id})")
    except DomainError as e:
        handle_domain_error(ctx, e)


@record_group.command("add-declaration")
@click.argument("name")
@click.option("--organism", help="Collecting organism (URSSAF, DGFiP, ...)")
@click.option("--amount", help="Declared amount")
@click.option("--date", "reference_date", help="Due date")
@click.option("--keywords", help="Keyword expression (defaults to the name)")
@click.option("--inactive", is_flag=True, help="Exclude the declaration from matching")
@click.pass_context
def add_declaration(ctx, name: str, organism: str | None, amount: str | None, reference_date: str | None, keywords: str | None, inactive: bool):
    """Create a social or tax charge declaration."""
    service = RecordService(ctx.obj["db"])
    parsed_amount = parse_option(ctx, parse_amount, amount, "amount")
    parsed_date = parse_option(ctx, parse_date, reference_date, "date")

    try:
        declaration_id = service.create_charge_declaration(
            name=name,
            organism=organism,
            amount=parsed_amount,
            reference_date=parsed_date,
            keywords=keywords,
            active=not inactive,
        )
        click.echo(f"Created charge declaration '{name}' (ID: {declaration_id})")
    except DomainError as e:
        handle_domain_error(ctx, e)


def _format_amount(amount) -> str:
    return "" if amount is None else f"{amount:,.2f}"


@record_group.command("list")
@click.argument("family", required=False, type=click.Choice([f.value for f in Family], case_sensitive=False))
@click.pass_context
def list_records(ctx, family: str | None):
    """List records, optionally for one family only."""
    service = RecordService(ctx.obj["db"])
    families = [Family(family.upper())] if family else list(Family)

    for current in families:
        if current is Family.PARTNER:
            partners = service.list_partners()
            click.echo(f"\nPartners ({len(partners)}):")
            for partner in partners:
                flag = "" if partner.active else " [inactive]"
                keywords = f"  keywords: {partner.keywords}" if partner.keywords else ""
                click.echo(f"  {partner.id:<5} {partner.kind.value:<10} {partner.name}{flag}{keywords}")
        elif current is Family.INVOICE:
            invoices = service.list_invoices()
            click.echo(f"\nInvoices ({len(invoices)}):")
            for invoice in invoices:
                ref = f"  ref: {invoice.reconciliation_ref}" if invoice.reconciliation_ref else ""
                click.echo(
                    f"  {invoice.id:<5} {invoice.number:<15} {invoice.kind.value:<9} "
                    f"{invoice.issue_date} {_format_amount(invoice.total):>12} "
                    f"{invoice.status.value}{ref}"
                )
        elif current is Family.SUBSCRIPTION:
            subscriptions = service.list_subscriptions()
            click.echo(f"\nSubscriptions ({len(subscriptions)}):")
            for subscription in subscriptions:
                last = service.last_payment(Family.SUBSCRIPTION, subscription.id)
                paid = f"  last paid: {last.payment_date}" if last else ""
                click.echo(
                    f"  {subscription.id:<5} {subscription.name:<30} "
                    f"{_format_amount(subscription.amount):>12}{paid}"
                )
        else:
            declarations = service.list_charge_declarations()
            click.echo(f"\nCharge declarations ({len(declarations)}):")
            for declaration in declarations:
                last = service.last_payment(Family.CHARGE_DECLARATION, declaration.id)
                paid = f"  last paid: {last.payment_date}" if last else ""
                click.echo(
                    f"  {declaration.id:<5} {declaration.name:<30} {declaration.organism or '':<12} "
                    f"{_format_amount(declaration.amount):>12}{paid}"
                )


def register_commands(cli):
    """Register record commands with main CLI."""
    cli.add_command(record_group, name="record")
