# Overview: Flask CLI command groups for bootstrap, account recovery, and maintenance.

# backend/storeadmin/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP (PowerShell: $env:FLASK_APP="storeadmin:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init --email owner@example.com --password "..." [--name "Owner"]
#   Idempotent: creates the first website_admin if no admin account exists.
#
# Admin accounts:
# - python -m flask users list
# - python -m flask users create --email ... --password ... --role business_processing
# - python -m flask users reset-password --email ... --password ...
# - python -m flask users reset-mfa --email ...
#   Clears the TOTP secret and backup codes; the user enrolls again at next login.
# - python -m flask users tag-legacy-hashes
#   Prefix bare sha256 digests imported from the old console so they verify and upgrade.
#
# Crypto:
# - python -m flask crypto generate-key
#   Print a fresh 64-hex PII_ENCRYPTION_KEY.
#
# Maintenance:
# - python -m flask maintenance cleanup-rate-limits
# - python -m flask maintenance expire-gift-cards
# - python -m flask maintenance verify-audit
#   Report audit rows whose digest no longer matches their content.

import click
from flask.cli import with_appcontext
from sqlalchemy import func, select

from .extensions import db, get_runtime
from .models import AdminUser, AuditLog
from .permissions import ADMIN_ROLES, WEBSITE_ADMIN
from .services import audit_service, auth_service, gift_card_service, session_service
from .services.crypto_service import generate_key_hex
from .validation import ConflictError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--email', prompt=True, help='Owner email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Owner password')
@click.option('--name', default=None, help='Display name')
@with_appcontext
def init_system(email, password, name):
    """
    Create the first website_admin account.

    Safe to re-run: does nothing when any admin account already exists.
    """
    click.echo("START Initializing store admin...")

    db.create_all()

    existing = db.session.execute(select(func.count()).select_from(AdminUser)).scalar_one()
    if existing:
        click.echo(f"PASS {existing} admin account(s) already exist; nothing to do")
        return

    try:
        user = auth_service.create_user(email, password, name=name, role=WEBSITE_ADMIN)
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(f"PASS Created website_admin '{user.email}' (ID: {user.id})")
    click.echo("INFO Two-factor enrollment is required at first login")


@click.group('users')
def users_group():
    """Admin account inspection and recovery."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = auth_service.list_users()
    if not users:
        click.echo("No admin users found")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        mfa = "mfa" if user.mfa_enabled else "no-mfa"
        click.echo(f"{user.id:>4}  {user.email:<40} {user.role:<20} {status:<9} {mfa}")


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--name', default=None, help='Display name')
@click.option('--role', type=click.Choice(list(ADMIN_ROLES)), default='business_processing', help='Role')
@with_appcontext
def create_user_cmd(email, password, name, role):
    try:
        user = auth_service.create_user(email, password, name=name, role=role)
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Created {user.role} '{user.email}' (ID: {user.id})")


def _require_user(email):
    user = auth_service.find_by_email(email)
    if user is None:
        click.echo(f"FAIL User '{email}' not found")
        raise SystemExit(1)
    return user


@users_group.command('reset-password')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='New password')
@with_appcontext
def reset_password_cmd(email, password):
    user = _require_user(email)
    try:
        auth_service.reset_password(user, password)
    except ValidationError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    audit_service.record(
        audit_service.AuditAction.PASSWORD_CHANGED,
        user,
        resource_type="admin_user",
        resource_id=user.id,
        details={"source": "cli"},
    )
    get_runtime().audit.drain()
    click.echo(f"PASS Password reset for '{user.email}'")


@users_group.command('reset-mfa')
@click.option('--email', prompt=True, help='Email address')
@with_appcontext
def reset_mfa_cmd(email):
    user = _require_user(email)
    session_service.reset_challenge(user)
    click.echo(f"PASS Two-factor authentication reset for '{user.email}'; enrollment required at next login")


@users_group.command('tag-legacy-hashes')
@with_appcontext
def tag_legacy_hashes_cmd():
    changed = auth_service.tag_legacy_verifiers()
    click.echo(f"PASS Tagged {changed} legacy password digest(s)")


@click.group('crypto')
def crypto_group():
    """Key material helpers."""


@crypto_group.command('generate-key')
def generate_key_cmd():
    """Print a random AES-256 key as 64 hex characters."""
    click.echo(generate_key_hex())


@click.group('maintenance')
def maintenance_group():
    """Periodic cleanup and integrity checks."""


@maintenance_group.command('cleanup-rate-limits')
@with_appcontext
def cleanup_rate_limits_cmd():
    removed = get_runtime().limiter.purge_expired()
    click.echo(f"PASS Removed {removed} expired rate-limit record(s)")


@maintenance_group.command('expire-gift-cards')
@with_appcontext
def expire_gift_cards_cmd():
    expired = gift_card_service.expire_due_cards()
    click.echo(f"PASS Expired {expired} gift card(s)")


@maintenance_group.command('verify-audit')
@click.option('--batch-size', default=500, show_default=True, help='Rows per batch')
@with_appcontext
def verify_audit_cmd(batch_size):
    """Recompute each audit row's digest; exits 1 when any row was altered."""
    checked = 0
    mismatched = []
    last_id = 0
    while True:
        rows = db.session.execute(
            select(AuditLog).where(AuditLog.id > last_id).order_by(AuditLog.id).limit(batch_size)
        ).scalars().all()
        if not rows:
            break
        for log in rows:
            checked += 1
            if not audit_service.verify_record(log):
                mismatched.append(log.id)
        last_id = rows[-1].id

    if mismatched:
        click.echo(f"FAIL {len(mismatched)} of {checked} audit row(s) failed verification: {mismatched[:20]}")
        raise SystemExit(1)
    click.echo(f"PASS {checked} audit row(s) verified")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(crypto_group)
    app.cli.add_command(maintenance_group)
