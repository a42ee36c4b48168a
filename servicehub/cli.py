import click
from flask import current_app
from flask.cli import AppGroup

from servicehub.services import payment_service

payments_cli = AppGroup("payments", help="Payment maintenance jobs.")


@payments_cli.command("sweep-expired")
def sweep_expired_command():
    """Mark in-flight payments past their expiry as expired."""
    expired = payment_service().sweep_expired()
    click.echo(f"Expired {expired} payment(s).")


@payments_cli.command("purge")
@click.option("--days", type=int, default=None, help="Retention window in days.")
def purge_command(days):
    """Delete failed, cancelled and expired payments older than the retention window."""
    if days is None:
        days = current_app.config.get("PAYMENT_RETENTION_DAYS", 30)
    if days < 1:
        raise click.BadParameter("must be at least 1", param_hint="--days")
    purged = payment_service().purge_terminal(older_than_days=days)
    click.echo(f"Purged {purged} payment(s) older than {days} day(s).")


def register_cli(app):
    app.cli.add_command(payments_cli)
