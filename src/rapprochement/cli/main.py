"""Main CLI entry point."""

import logging

import click
from rapprochement.database.factories import create_sqlite_database

# Import and register all commands at module level
from rapprochement.cli.commands import (
    record,
    reconcile,
    rule,
    statement,
)

ACTOR_ENV = "RAPPROCHEMENT_ACTOR"


@click.group()
@click.option(
    "--db-path",
    type=click.Path(),
    help="Path to database file (overrides RAPPROCHEMENT_DB_PATH environment variable)",
    envvar="RAPPROCHEMENT_DB_PATH",
)
@click.option(
    "--actor",
    default="system",
    show_default=True,
    envvar=ACTOR_ENV,
    help="Operator name recorded on links and audit events",
)
@click.option("--verbose", "-v", count=True, help="Log progress (-v) or rule firing details (-vv)")
@click.pass_context
def cli(ctx, db_path: str | None, actor: str, verbose: int):
    """Rapprochement - Bank reconciliation.

    Match bank statement lines against invoices, subscriptions, charge
    declarations and partners using configurable scoring rules.
    """
    ctx.ensure_object(dict)

    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    ctx.obj["actor"] = actor
    # Initialize database connection only when actually running a command
    # (not when showing help)
    if ctx.invoked_subcommand is not None and "db" not in ctx.obj:
        db = create_sqlite_database(database_path=db_path)
        db.connect()
        db.initialize_schema()
        ctx.obj["db"] = db


# Register all commands
rule.register_commands(cli)
record.register_commands(cli)
statement.register_commands(cli)
reconcile.register_commands(cli)


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
