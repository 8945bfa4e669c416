"""Matching rule commands."""

import json

import click
from rapprochement.cli.error_handling import handle_domain_error
from rapprochement.domain.conditions import condition_to_payload, describe_condition
from rapprochement.domain.entities import Direction, RuleType
from rapprochement.domain.errors import DomainError
from rapprochement.domain.rules import RuleService


def condition_options(func):
    """Options shared by create and update that build the rule payload."""
    options = [
        click.option("--keywords", help="Keyword expression: ',' separates alternatives, spaces join words (e.g. 'edf, engie gaz')"),
        click.option("--tolerance", help="Amount tolerance (AMOUNT, CUSTOM)"),
        click.option("--window-days", type=int, help="Date window in days (DATE, CUSTOM)"),
        click.option("--direction", type=click.Choice([d.value for d in Direction], case_sensitive=False), help="Expected bank direction"),
        click.option("--entity-id", type=int, help="Restrict the rule to one record of its family"),
        click.option("--families", help="Comma-separated families a CUSTOM rule applies to"),
        click.option("--match-entity-keywords", is_flag=True, help="Also require the record's own keywords in the label"),
        click.option("--payload", help="Raw JSON payload (merged under the options above)"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_payload(ctx, base: dict | None = None, **values) -> dict | None:
    """Merge condition options into a payload. Returns None when nothing was given."""
    payload = dict(base or {})
    changed = False

    raw = values.pop("payload", None)
    if raw is not None:
        try:
            loaded = json.loads(raw)
        except json.JSONDecodeError as e:
            click.echo(f"Error: Invalid JSON payload: {e}", err=True)
            ctx.exit(1)
        if not isinstance(loaded, dict):
            click.echo("Error: JSON payload must be an object", err=True)
            ctx.exit(1)
        payload.update(loaded)
        changed = True

    if values.pop("match_entity_keywords", False):
        payload["match_entity_keywords"] = True
        changed = True

    families = values.pop("families", None)
    if families is not None:
        payload["families"] = [f.strip().upper() for f in families.split(",") if f.strip()]
        changed = True

    for key, value in values.items():
        if value is not None:
            payload[key] = value
            changed = True

    return payload if changed else None


@click.group()
def rule_group():
    """Manage matching rules."""
    pass


@rule_group.command("create")
@click.argument("name")
@click.option("--type", "rule_type", required=True, type=click.Choice([t.value for t in RuleType], case_sensitive=False), help="Rule type")
@click.option("--score", type=int, required=True, help="Points added when the rule fires (0-100)")
@click.option("--priority", type=int, default=100, show_default=True, help="Lower values are evaluated first and win ties")
@click.option("--inactive", is_flag=True, help="Create the rule disabled")
@condition_options
@click.pass_context
def create_rule(ctx, name: str, rule_type: str, score: int, priority: int, inactive: bool, **condition):
    """Create a matching rule.

    Examples:
        rapprochement rule create "Montant exact" --type AMOUNT --tolerance 0.01 --score 40
        rapprochement rule create "Loyer" --type SUBSCRIPTION --keywords "loyer" --score 50
    """
    db = ctx.obj["db"]
    service = RuleService(db)
    payload = build_payload(ctx, **condition)

    try:
        rule_id = service.create_rule(
            name=name,
            rule_type=rule_type,
            score_contribution=score,
            payload=payload,
            priority=priority,
            active=not inactive,
        )
        click.echo(f"Created rule '{name}' (ID: {rule_id})")
    except DomainError as e:
        handle_domain_error(ctx, e)


@rule_group.command("list")
@click.option("--active-only", is_flag=True, help="Hide disabled rules")
@click.pass_context
def list_rules(ctx, active_only: bool):
    """List rules in evaluation order."""
    db = ctx.obj["db"]
    service = RuleService(db)

    rules = service.list_rules(include_inactive=not active_only)
    if not rules:
        click.echo("No rules found.")
        return

    click.echo(f"\n{'ID':<5} {'Prio':<6} {'Score':<6} {'Type':<20} {'Active':<7} {'Name':<30} Condition")
    click.echo("-" * 110)
    for rule in rules:
        active = "yes" if rule.active else "no"
        click.echo(
            f"{rule.id:<5} {rule.priority:<6} {rule.score_contribution:<6} "
            f"{rule.rule_type.value:<20} {active:<7} {rule.name[:30]:<30} "
            f"{describe_condition(rule.condition)}"
        )


@rule_group.command("update")
@click.argument("rule_id", type=int)
@click.option("--name", help="New rule name")
@click.option("--score", type=int, help="New score contribution (0-100)")
@click.option("--priority", type=int, help="New priority")
@click.option("--active/--inactive", default=None, help="Enable or disable the rule")
@condition_options
@click.pass_context
def update_rule(ctx, rule_id: int, name: str | None, score: int | None, priority: int | None, active: bool | None, **condition):
    """Update a rule. Condition options are merged into its current payload."""
    db = ctx.obj["db"]
    service = RuleService(db)

    rule = service.get_rule(rule_id)
    if rule is None:
        click.echo(f"Error: Rule {rule_id} not found", err=True)
        ctx.exit(1)
    payload = build_payload(ctx, base=condition_to_payload(rule.condition), **condition)

    try:
        service.update_rule(
            rule_id,
            name=name,
            priority=priority,
            score_contribution=score,
            payload=payload,
            active=active,
        )
        click.echo(f"Updated rule {rule_id}")
    except DomainError as e:
        handle_domain_error(ctx, e)


@rule_group.command("deactivate")
@click.argument("rule_id", type=int)
@click.pass_context
def deactivate_rule(ctx, rule_id: int):
    """Disable a rule. Existing links are kept."""
    db = ctx.obj["db"]
    service = RuleService(db)

    try:
        service.deactivate_rule(rule_id)
        click.echo(f"Deactivated rule {rule_id}")
    except DomainError as e:
        handle_domain_error(ctx, e)


def register_commands(cli):
    """Register rule commands with main CLI."""
    cli.add_command(rule_group, name="rule")
