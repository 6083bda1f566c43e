# Overview: Flask CLI command groups for scheduled sweeps, payout backlog and ledger checks.

# backend/cookwallet/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Scheduled (cron) triggers:
# - python -m flask clearances sweep [--now 2026-10-16T12:00:00Z]
#   Promote every clearance whose hold period has elapsed.
# - python -m flask payouts process-withdrawals
#   Send every pending withdrawal to the payment gateway.
# - python -m flask payouts retry-sweep
#   Automatically retry failed payouts that still have retries left.
#
# Inspection:
# - python -m flask payouts backlog [--list]
#   Print the number of pending payout tasks (optionally list them).
# - python -m flask ledger verify [--tenant-id 1]
#   Check balance invariants and ledger conservation for every wallet.
#
# Database:
# - python -m flask system init-db
#   Create all tables (development only; use `flask db upgrade` elsewhere).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import ClientWallet, CookWallet
from .services import clearance_service, payout_service, wallet_ledger, withdrawal_service
from .time_utils import parse_iso_datetime, utcnow


def _resolve_now(value):
    if not value:
        return utcnow()
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise click.BadParameter(f"not an ISO-8601 datetime: {value}", param_hint="--now")


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """Database bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created")


# =============================================================================
# CLEARANCES
# =============================================================================

@click.group('clearances')
def clearances_group():
    """Hold-period clearance commands."""


@clearances_group.command('sweep')
@click.option('--now', 'now_value', default=None, help='Override current time (ISO-8601, UTC)')
@with_appcontext
def sweep_clearances(now_value):
    """Promote eligible clearances to withdrawable."""
    now = _resolve_now(now_value)
    cleared = clearance_service.sweep(now)
    for clearance in cleared:
        click.echo(
            f"PASS Cleared order {clearance.order_id}: {clearance.amount} XAF "
            f"(deducted {clearance.deducted_amount})"
        )
    click.echo(f"DONE {len(cleared)} clearance(s) cleared")


# =============================================================================
# PAYOUTS
# =============================================================================

@click.group('payouts')
def payouts_group():
    """Withdrawal processing and payout task commands."""


@payouts_group.command('process-withdrawals')
@with_appcontext
def process_withdrawals():
    """Send pending withdrawals to the payment gateway."""
    outcomes = withdrawal_service.process_pending_withdrawals()
    for outcome in outcomes:
        mark = "PASS" if outcome.succeeded else "FAIL"
        click.echo(f"{mark} Withdrawal {outcome.withdrawal.id}: {outcome.message}")
    click.echo(f"DONE {len(outcomes)} withdrawal(s) processed")


@payouts_group.command('retry-sweep')
@click.option('--now', 'now_value', default=None, help='Override current time (ISO-8601, UTC)')
@with_appcontext
def retry_sweep(now_value):
    """Retry failed payouts whose retry interval has elapsed."""
    outcomes = payout_service.retry_sweep(_resolve_now(now_value))
    for outcome in outcomes:
        mark = "PASS" if outcome.succeeded else "FAIL"
        click.echo(
            f"{mark} Task {outcome.task.id} retry {outcome.task.retry_count}/{payout_service.MAX_RETRIES}"
            + (f": {outcome.error}" if outcome.error else "")
        )
    click.echo(f"DONE {len(outcomes)} retry attempt(s)")


@payouts_group.command('backlog')
@click.option('--list', 'show_list', is_flag=True, help='List pending tasks')
@with_appcontext
def backlog(show_list):
    """Show pending payout task count."""
    click.echo(f"Pending payout tasks: {payout_service.pending_count()}")
    if show_list:
        for task in payout_service.list_tasks(status=payout_service.PAYOUT_STATUS_PENDING):
            click.echo(
                f"  #{task.id} cook={task.cook_id} {task.amount} {task.currency} "
                f"{task.mobile_money_number} retries={task.retry_count} reason={task.failure_reason}"
            )


# =============================================================================
# LEDGER
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Ledger consistency commands."""


@ledger_group.command('verify')
@click.option('--tenant-id', type=int, default=None, help='Only check cook wallets of this tenant')
@with_appcontext
def verify_ledger(tenant_id):
    """Check balance invariants and ledger conservation."""
    query = db.session.query(CookWallet)
    if tenant_id is not None:
        query = query.filter(CookWallet.tenant_id == tenant_id)
    wallets = query.order_by(CookWallet.id).all()
    if tenant_id is None:
        wallets += db.session.query(ClientWallet).order_by(ClientWallet.id).all()

    problems = []
    for wallet in wallets:
        problems.extend(wallet_ledger.check_wallet_invariants(wallet))

    for problem in problems:
        click.echo(f"FAIL {problem}")
    click.echo(f"DONE {len(wallets)} wallet(s) checked, {len(problems)} problem(s)")
    if problems:
        raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(clearances_group)
    app.cli.add_command(payouts_group)
    app.cli.add_command(ledger_group)
