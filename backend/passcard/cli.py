# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/passcard/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--company "SGV"]
#   Idempotent: creates tables, the default company and its venues.
#
# Users:
# - python -m flask users list [--role staff]
# - python -m flask users set-role <user_id> <role> [--email a@b.c] [--phone +1555...]
#   Create or update a user's primary role (e.g. the first super_admin).
#
# Memberships:
# - python -m flask memberships create <user_id> [--company-id ...] [--balance 150.75]
#   Open a membership, optionally with an opening balance (recorded as a purchase).
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions
#   Delete sessions that expired or were revoked more than 30 days ago.

import click
from flask.cli import with_appcontext

from .errors import PasscardError
from .extensions import db
from .models import Company, Venue, Membership, User
from .services import session_service, transaction_service, user_service


DEFAULT_VENUES = [
    ("KTV Palace Downtown", "ktv"),
    ("SGV Restaurant", "restaurant"),
    ("SGV Basketball Court", "basketball_court"),
    ("SGV Badminton Hall", "badminton_court"),
]


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--company', 'company_name', default='SGV', help='Default company name')
@with_appcontext
def init_system(company_name):
    """
    Create tables plus the default company and venues.

    Safe to run repeatedly: existing rows are reused.
    """
    click.echo("START Initializing Passcard system...")
    db.create_all()

    company = db.session.query(Company).filter_by(name=company_name).first()
    if not company:
        company = Company(name=company_name, description=f"{company_name} membership program")
        db.session.add(company)
        db.session.flush()
        click.echo(f"PASS Created company: {company.name} (ID: {company.id})")
    else:
        click.echo(f"PASS Using existing company: {company.name} (ID: {company.id})")

    for name, venue_type in DEFAULT_VENUES:
        venue = db.session.query(Venue).filter_by(company_id=company.id, name=name).first()
        if venue:
            click.echo(f"WARN  Venue '{name}' already exists, skipping...")
            continue
        venue = Venue(company_id=company.id, name=name, type=venue_type)
        db.session.add(venue)
        db.session.flush()
        click.echo(f"PASS Created venue: {venue.name} ({venue.type}, ID: {venue.id})")

    db.session.commit()

    click.echo("\n" + "="*60)
    click.echo("DONE Passcard System Initialized Successfully!")
    click.echo("="*60)
    click.echo("\nNext: python -m flask users set-role <subject_id> super_admin")
    click.echo("")


@click.group('users')
def users_group():
    """User inspection and role assignment."""


@users_group.command('list')
@click.option('--role', default=None, help='Filter by primary role')
@click.option('--all', 'include_inactive', is_flag=True, help='Include deactivated users')
@with_appcontext
def list_users_cli(role, include_inactive):
    users = user_service.list_users(role=role, include_inactive=include_inactive)
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<38} {'Role':<15} {'Email':<28} {'Phone':<16} {'Active'}")
    click.echo("="*100)
    for user in users:
        click.echo(
            f"{user.id:<38} {user.role or '-':<15} {user.email or '-':<28} "
            f"{user.phone or '-':<16} {'Yes' if user.is_active else 'No'}"
        )
    click.echo("="*100 + "\n")


@users_group.command('set-role')
@click.argument('user_id')
@click.argument('role')
@click.option('--email', default=None)
@click.option('--phone', default=None)
@click.option('--name', 'full_name', default=None)
@with_appcontext
def set_role_cli(user_id, role, email, phone, full_name):
    """Create or update a user with the given primary role."""
    try:
        user, created = user_service.set_user_role(
            None, user_id, role, email=email, phone=phone, full_name=full_name
        )
    except PasscardError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    action = "Created" if created else "Updated"
    click.echo(f"PASS {action} user {user.id} with role '{user.role}'")


@click.group('memberships')
def memberships_group():
    """Membership bootstrap."""


@memberships_group.command('create')
@click.argument('user_id')
@click.option('--company-id', default=None, help='Defaults to the only company when there is one')
@click.option('--balance', default=None, help='Opening balance, e.g. 150.75')
@with_appcontext
def create_membership_cli(user_id, company_id, balance):
    if not db.session.query(User).filter_by(id=user_id).first():
        click.echo(f"FAIL User {user_id} not found")
        raise SystemExit(1)

    if company_id is None:
        companies = db.session.query(Company).all()
        if len(companies) != 1:
            click.echo("FAIL --company-id is required when there is not exactly one company")
            raise SystemExit(1)
        company_id = companies[0].id

    membership = Membership(user_id=user_id, company_id=company_id, balance_cents=0)
    db.session.add(membership)
    db.session.commit()
    click.echo(f"PASS Created membership {membership.id}")

    if balance:
        try:
            entry = transaction_service.purchase_credit(user_id, membership.id, balance, "Opening balance")
        except PasscardError as e:
            click.echo(f"FAIL {e.message}")
            raise SystemExit(1)
        click.echo(f"PASS Opening balance {entry.balance_after_cents / 100:.2f}")


@click.group('maintenance')
def maintenance_group():
    """Housekeeping commands."""


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"Deleted {deleted} expired or revoked sessions.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(memberships_group)
    app.cli.add_command(maintenance_group)
