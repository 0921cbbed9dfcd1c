# Overview: Flask CLI command groups for bootstrap, inspection, and reconciliation.

# backend/cashbook/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --username admin --name "Admin" --password "..." --admin
# - python -m flask users grant cashier "access drawer"
# - python -m flask users token cashier
#   Issue a fresh API token (printed once).
# - python -m flask users list
#
# Bank accounts:
# - python -m flask banks create --bank "Metrobank" --account-name "Store" --number 1234
#
# Registers:
# - python -m flask registers sessions --status closed --limit 20
# - python -m flask registers reconcile [SESSION_ID]
#   Compare cached session totals with the ledger (all sessions when omitted).

import click
from flask.cli import with_appcontext

from .errors import CashbookError
from .extensions import db
from .money import format_cents
from .permissions import PERMISSION_DEFINITIONS
from .services import auth_service, ledger_service, register_service


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    from . import models  # noqa: F401

    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    from . import models  # noqa: F401

    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()
    click.echo("BUILD Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset complete")


# =============================================================================
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """Operator accounts and capability grants."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Login name')
@click.option('--name', default=None, help='Display name (defaults to username)')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--admin', 'is_admin', is_flag=True, help='Grant every capability')
@click.option('--permission', 'permissions', multiple=True, help='Capability to grant (repeatable)')
@with_appcontext
def create_user_cli(username, name, password, is_admin, permissions):
    """Create an operator account."""
    try:
        user = auth_service.create_user(
            username, name or username, password, is_admin=is_admin, permissions=list(permissions)
        )
    except CashbookError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created user: {user.username} (ID: {user.id}, admin: {user.is_admin})")


@users_group.command('grant')
@click.argument('username')
@click.argument('permission', type=click.Choice([code for code, _ in PERMISSION_DEFINITIONS]))
@with_appcontext
def grant_permission_cli(username, permission):
    """Grant a capability to a user."""
    try:
        user = auth_service.get_user_by_username(username)
        auth_service.grant_permission(user.id, permission)
    except CashbookError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Granted '{permission}' to {username}")


@users_group.command('revoke')
@click.argument('username')
@click.argument('permission')
@with_appcontext
def revoke_permission_cli(username, permission):
    """Revoke a capability from a user."""
    try:
        user = auth_service.get_user_by_username(username)
        auth_service.revoke_permission(user.id, permission)
    except CashbookError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Revoked '{permission}' from {username}")


@users_group.command('token')
@click.argument('username')
@with_appcontext
def issue_token_cli(username):
    """Issue a fresh API token for a user (replaces the old one)."""
    try:
        user = auth_service.get_user_by_username(username)
    except CashbookError as e:
        raise click.ClickException(e.message)
    token = auth_service.issue_token(user)
    click.echo(token)


@users_group.command('list')
@with_appcontext
def list_users_cli():
    """List users with their capabilities."""
    users = auth_service.list_users()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Username':<20} {'Name':<25} {'Active':<8} {'Permissions'}")
    click.echo("="*100)
    for user in users:
        perms = "ALL (admin)" if user.is_admin else ", ".join(sorted(p.permission for p in user.permissions)) or "-"
        active = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.name:<25} {active:<8} {perms}")
    click.echo("="*100 + "\n")


# =============================================================================
# BANK ACCOUNTS
# =============================================================================

@click.group('banks')
def banks_group():
    """Bank account management."""


@banks_group.command('create')
@click.option('--bank', 'bank_name', required=True, help='Bank name')
@click.option('--account-name', required=True, help='Account holder name')
@click.option('--number', 'account_number', default=None, help='Account number')
@with_appcontext
def create_bank_cli(bank_name, account_name, account_number):
    """Create a bank account."""
    try:
        account = ledger_service.create_bank_account(bank_name, account_name, account_number)
    except CashbookError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created bank account: {account.bank_name} / {account.account_name} (ID: {account.id})")


@banks_group.command('list')
@with_appcontext
def list_banks_cli():
    """List bank accounts with their ledger balances."""
    accounts = ledger_service.list_bank_accounts(include_inactive=True)
    if not accounts:
        click.echo("No bank accounts found.")
        return
    for account in accounts:
        balance = ledger_service.get_bank_balance(account.id)
        status = "" if account.is_active else " (inactive)"
        click.echo(f"{account.id:<5} {account.bank_name:<20} {account.account_name:<25} {format_cents(balance):>14}{status}")


# =============================================================================
# REGISTERS
# =============================================================================

@click.group('registers')
def registers_group():
    """Register session inspection and reconciliation."""


@registers_group.command('sessions')
@click.option('--status', type=click.Choice(['open', 'pending_review', 'closed']), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max sessions to show')
@with_appcontext
def list_sessions_cli(status, limit):
    """
    List register sessions.

    Example:
        flask registers sessions
        flask registers sessions --status closed
    """
    sessions = register_service.list_sessions(status=status, limit=limit)
    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo("\n" + "="*110)
    click.echo(f"{'ID':<5} {'Opened by':<15} {'Status':<15} {'Opened':<20} {'Expected':>14} {'Actual':>14} {'Variance':>12}")
    click.echo("="*110)
    for session in sessions:
        opener = session.opener.username if session.opener else "Unknown"
        opened = session.opened_at.strftime("%Y-%m-%d %H:%M") if session.opened_at else "-"
        click.echo(
            f"{session.id:<5} {opener:<15} {session.status:<15} {opened:<20} "
            f"{format_cents(session.expected_cash_cents):>14} "
            f"{format_cents(session.actual_cash_cents) or '-':>14} "
            f"{format_cents(session.variance_cents) or '-':>12}"
        )
    click.echo("="*110 + "\n")


@registers_group.command('reconcile')
@click.argument('session_id', type=int, required=False)
@with_appcontext
def reconcile_cli(session_id):
    """
    Compare cached session totals with the ledger.

    Exits non-zero when any session drifts.
    """
    if session_id is not None:
        session_ids = [session_id]
    else:
        session_ids = [s.id for s in register_service.list_sessions(limit=10_000)]

    drifted = 0
    for sid in session_ids:
        try:
            result = ledger_service.reconcile_session(sid)
        except CashbookError as e:
            raise click.ClickException(e.message)
        if result["in_sync"]:
            click.echo(f"PASS Session {sid}: in sync")
        else:
            drifted += 1
            click.echo(
                f"FAIL Session {sid}: drift {format_cents(result['drift_cents'])} "
                f"cached={result['cached']} ledger={result['ledger']}"
            )

    if drifted:
        raise click.ClickException(f"{drifted} session(s) drift from the ledger")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(banks_group)
    app.cli.add_command(registers_group)
