import click
from flask.cli import with_appcontext
from subscription_sync.extensions import db
from subscription_sync.models import WebhookDelivery
from subscription_sync.models.webhook_delivery import OUTCOME_RECONCILIATION_FAILED

def _fmt(entry) -> str:
    d = entry.to_dict()
    return (
        f"id={d['id']} status={d['status']} amount={d['amount']} "
        f"period={d['start_at']}..{d['end_at']} grace_until={d['end_grace_at']} "
        f"next_schedule={d['next_schedule_id']}@{d['next_schedule_at']}"
    )

@click.group()
def ledger():
    """Subscription ledger inspection."""

@ledger.command("show")
@click.argument("transaction_key")
@with_appcontext
def ledger_show(transaction_key):
    from subscription_sync.billing import get_ledger
    rows = get_ledger().entries(transaction_key)
    if not rows:
        raise click.ClickException(f"No ledger rows for {transaction_key}")
    for row in rows:
        click.echo(_fmt(row))

@ledger.command("status")
@click.option("--transaction-key", default=None, help="Scope to one payment")
@with_appcontext
def ledger_status(transaction_key):
    from subscription_sync.billing import get_ledger
    store = get_ledger()
    if transaction_key:
        current = store.current_period(transaction_key)
        active = [current] if current else []
    else:
        active = store.active_periods()

    if not active:
        click.echo("free")
        return
    for row in active:
        click.echo(f"subscribed {row.transaction_key}: {_fmt(row)}")

@ledger.command("followups")
@click.option("--limit", type=int, default=50, show_default=True)
@with_appcontext
def ledger_followups(limit):
    """Deliveries whose ledger write succeeded but schedule sync did not."""
    rows = (
        db.session.query(WebhookDelivery)
        .filter(WebhookDelivery.outcome == OUTCOME_RECONCILIATION_FAILED)
        .order_by(WebhookDelivery.created_at.desc(), WebhookDelivery.id.desc())
        .limit(limit)
        .all()
    )
    if not rows:
        click.echo("No reconciliation follow-ups")
        return
    for r in rows:
        click.echo(f"{r.created_at} {r.status} {r.payment_id}: {r.notes}")

def register_cli(app):
    app.cli.add_command(ledger)
