"""
CLI command tests.
"""

from coopfood.models import Branch, Cycle, Item, Member
from coopfood.services import session_service


def test_seed_demo_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    for _ in range(2):
        result = runner.invoke(args=["system", "seed-demo"])
        assert result.exit_code == 0
        assert "PASS" in result.output

    assert db_session.query(Branch).count() == 2
    assert db_session.query(Member).count() == 1
    assert db_session.query(Item).count() == 1


def test_issue_rep_session(app, dutse):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["sessions", "issue", "--role", "rep", "--actor", "rep1", "--branch", "dutse"])

    assert result.exit_code == 0
    token = result.output.strip().splitlines()[-1]
    context = session_service.validate_session(token)
    assert context.role == "rep"
    assert context.branch_id == dutse.id


def test_issue_rep_session_requires_branch(app, db_session):
    result = app.test_cli_runner().invoke(args=["sessions", "issue", "--role", "rep", "--actor", "rep1"])
    assert result.exit_code == 1
    assert "FAIL" in result.output


def test_open_cycle(app, db_session):
    result = app.test_cli_runner().invoke(args=["system", "open-cycle", "--name", "2026 Q4"])

    assert result.exit_code == 0
    assert db_session.query(Cycle).filter_by(is_active=True).one().name == "2026 Q4"


def test_maintenance_commands(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["maintenance", "resync-sequences"])
    assert result.exit_code == 0
    assert "members" in result.output

    result = runner.invoke(args=["maintenance", "purge-rate-limits", "--older-than", "60"])
    assert result.exit_code == 0
    assert "Deleted 0" in result.output
