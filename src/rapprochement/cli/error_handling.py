"""CLI error handling helpers."""

import click

from rapprochement.domain.errors import DomainError


def handle_domain_error(ctx: click.Context, error: DomainError | ValueError) -> None:
    """Render a domain error and exit with failure."""
    click.echo(f"Error: {error}", err=True)
    ctx.exit(1)


def parse_option(ctx: click.Context, parser, value: str | None, label: str):
    """Parse an optional CLI value, exiting with a readable error on failure."""
    if value is None:
        return None
    try:
        return parser(value)
    except ValueError as e:
        click.echo(f"Error: Invalid {label}: {e}", err=True)
        ctx.exit(1)
