# Overview: Flask CLI command groups for bootstrap, sessions and maintenance.

# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system seed-demo
#   Insert demo branches, departments, grade limits, a member and a priced item.
# - python -m flask system open-cycle --name "2026 Q4"
#   Close the active inventory cycle and open a new one.
#
# Sessions (identity collaborator stand-in):
# - python -m flask sessions issue --role rep --actor rep1 --branch DUTSE
#   Print a Bearer token for the given role.
#
# Maintenance:
# - python -m flask maintenance resync-sequences
#   Reset id sequences of import tables to MAX(id).
# - python -m flask maintenance purge-rate-limits --older-than 3600
#   Delete throttling hits older than the given seconds.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import CoopError
from .models import Branch, BranchItemMarkup, BranchItemPrice, Department, GradeLimit, Item, Member
from .services import inventory_service, rate_limit_service, session_service
from .services.reference_service import get_branch_by_code
from .services.upsert_service import resync_sequence


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Seed demo reference data (idempotent).

    Creates:
    - Branches: DUTSE, GWARIMPA
    - Departments: Ops, Finance
    - Grade limit: "senior" -> 500000
    - Member A12345 (savings 100000) at DUTSE / Ops
    - Item RICE50KG priced 49500 at DUTSE with 100 in stock
    """
    branches = {}
    for code, name in (("DUTSE", "Dutse"), ("GWARIMPA", "Gwarimpa")):
        branch = db.session.query(Branch).filter_by(code=code).first()
        if not branch:
            branch = Branch(code=code, name=name)
            db.session.add(branch)
        branches[code] = branch

    departments = {}
    for name in ("Ops", "Finance"):
        department = db.session.query(Department).filter_by(name=name).first()
        if not department:
            department = Department(name=name)
            db.session.add(department)
        departments[name] = department

    if not db.session.query(GradeLimit).filter_by(grade="senior").first():
        db.session.add(GradeLimit(grade="senior", global_limit=500000))
    db.session.flush()

    if not db.session.query(Member).filter_by(member_id="A12345").first():
        db.session.add(Member(
            member_id="A12345",
            full_name="Demo Member",
            category="A",
            grade="senior",
            savings=100000,
            loans=0,
            global_limit=500000,
            branch_id=branches["DUTSE"].id,
            department_id=departments["Ops"].id,
        ))

    item = db.session.query(Item).filter_by(sku="RICE50KG").first()
    if not item:
        item = Item(sku="RICE50KG", name="Rice 50kg", unit="bag", category="Grains")
        db.session.add(item)
        db.session.flush()

    dutse = branches["DUTSE"]
    if not db.session.query(BranchItemPrice).filter_by(branch_id=dutse.id, item_id=item.id).first():
        db.session.add(BranchItemPrice(branch_id=dutse.id, item_id=item.id, price=49500, initial_stock=100))
    if not db.session.query(BranchItemMarkup).filter_by(branch_id=dutse.id, item_id=item.id).first():
        db.session.add(BranchItemMarkup(branch_id=dutse.id, item_id=item.id, amount=500, active=False))

    db.session.commit()
    click.echo("PASS Demo data seeded")


@system_group.command('open-cycle')
@click.option('--name', required=True, help='Cycle name')
@with_appcontext
def open_cycle_cli(name):
    """Close the active inventory cycle and open a new one."""
    try:
        cycle = inventory_service.open_cycle(name)
    except CoopError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Opened cycle {cycle.name} (ID: {cycle.id})")


@click.group('sessions')
def sessions_group():
    """Session token commands."""


@sessions_group.command('issue')
@click.option('--role', type=click.Choice(session_service.ROLES), required=True)
@click.option('--actor', required=True, help='Name recorded on audit fields')
@click.option('--branch', 'branch_code', default=None, help='Delivery branch code (reps)')
@click.option('--member-id', default=None, help='Member id (members)')
@click.option('--ttl-hours', type=int, default=None)
@with_appcontext
def issue_session(role, actor, branch_code, member_id, ttl_hours):
    """Issue a session token and print it."""
    try:
        branch_id = get_branch_by_code(branch_code).id if branch_code else None
        session, token = session_service.create_session(
            role,
            actor,
            branch_id=branch_id,
            member_id=member_id,
            ttl_hours=ttl_hours,
        )
    except CoopError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Session {session.id} for {role} '{actor}' expires {session.expires_at}")
    click.echo(token)


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('resync-sequences')
@with_appcontext
def resync_sequences_cli():
    """Reset id sequences of import tables to MAX(id)."""
    for model in (Member, Item, BranchItemPrice, BranchItemMarkup):
        max_id = resync_sequence(model.__table__)
        click.echo(f"PASS {model.__tablename__}: sequence at {max_id}")
    db.session.commit()


@maintenance_group.command('purge-rate-limits')
@click.option('--older-than', type=int, default=3600, show_default=True, help='Seconds')
@with_appcontext
def purge_rate_limits_cli(older_than):
    """Delete throttling hits older than the window."""
    deleted = rate_limit_service.purge_expired(older_than)
    click.echo(f"Deleted {deleted} rate limit hits older than {older_than} seconds.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(sessions_group)
    app.cli.add_command(maintenance_group)
