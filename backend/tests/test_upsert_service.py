"""
Bulk upsert tests: conflict-key writes, per-row fallback, sequence repair.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from coopfood.errors import ConflictError
from coopfood.models import BranchItemPrice, Member
from coopfood.services import upsert_service
from coopfood.services.upsert_service import upsert_rows


def _members(*rows):
    return [
        {"member_id": member_id, "full_name": name, "savings": savings}
        for member_id, name, savings in rows
    ]


def _pk_violation():
    return IntegrityError(
        "INSERT INTO members ...", {}, Exception("UNIQUE constraint failed: members.id")
    )


def test_insert_then_update_by_conflict_key(db_session):
    first = upsert_rows(Member, _members(("A1", "Ada", 10), ("B2", "Bala", 20)), conflict_keys=("member_id",))
    db_session.commit()

    assert first["mode"] == "on_conflict"
    assert first["inserted"] == 2
    assert first["updated"] == 0

    second = upsert_rows(Member, _members(("A1", "Ada", 99), ("C3", "Chidi", 5)), conflict_keys=("member_id",))
    db_session.commit()
    db_session.expire_all()

    assert second["inserted"] == 1
    assert second["updated"] == 1
    assert db_session.query(Member).count() == 3
    assert db_session.query(Member).filter_by(member_id="A1").one().savings == 99


def test_duplicate_keys_last_row_wins(db_session):
    result = upsert_rows(Member, _members(("A1", "Ada", 10), ("A1", "Ada B.", 30)), conflict_keys=("member_id",))
    db_session.commit()

    assert result["upserted"] == 1
    member = db_session.query(Member).one()
    assert member.full_name == "Ada B."
    assert member.savings == 30


def test_absent_columns_are_not_overwritten(db_session, dutse):
    upsert_rows(
        Member,
        [{"member_id": "A1", "full_name": "Ada", "branch_id": dutse.id}],
        conflict_keys=("member_id",),
    )
    db_session.commit()

    upsert_rows(Member, [{"member_id": "A1", "full_name": "Ada Obi"}], conflict_keys=("member_id",))
    db_session.commit()
    db_session.expire_all()

    member = db_session.query(Member).one()
    assert member.full_name == "Ada Obi"
    assert member.branch_id == dutse.id


def test_small_chunks(db_session):
    rows = _members(*[(f"M{i}", f"Member {i}", i) for i in range(7)])
    result = upsert_rows(Member, rows, conflict_keys=("member_id",), chunk_size=2)
    db_session.commit()

    assert result["inserted"] == 7
    assert db_session.query(Member).count() == 7


def test_empty_rows_are_a_no_op(db_session):
    result = upsert_rows(Member, [], conflict_keys=("member_id",))
    assert result["upserted"] == 0
    assert result["mode"] is None


def test_unique_index_detection(db_session):
    assert upsert_service.has_unique_index(Member.__table__, ("member_id",))
    assert upsert_service.has_unique_index(BranchItemPrice.__table__, ("item_id", "branch_id"))
    assert upsert_service.has_unique_index(Member.__table__, ("id",))
    assert not upsert_service.has_unique_index(Member.__table__, ("full_name",))


def test_falls_back_to_per_row_upsert_without_index(db_session, monkeypatch):
    monkeypatch.setattr(upsert_service, "has_unique_index", lambda table, keys: False)

    first = upsert_rows(Member, _members(("A1", "Ada", 10)), conflict_keys=("member_id",))
    db_session.commit()
    second = upsert_rows(Member, _members(("A1", "Ada", 15), ("B2", "Bala", 1)), conflict_keys=("member_id",))
    db_session.commit()
    db_session.expire_all()

    assert first["mode"] == second["mode"] == "manual"
    assert second["inserted"] == 1
    assert second["updated"] == 1
    assert db_session.query(Member).filter_by(member_id="A1").one().savings == 15


def test_primary_key_drift_is_repaired_once(db_session, monkeypatch):
    real_write = upsert_service._write_on_conflict
    real_resync = upsert_service.resync_sequence
    calls = {"write": 0, "resync": 0}

    def flaky_write(*args, **kwargs):
        calls["write"] += 1
        if calls["write"] == 1:
            raise _pk_violation()
        return real_write(*args, **kwargs)

    def counting_resync(table):
        calls["resync"] += 1
        return real_resync(table)

    monkeypatch.setattr(upsert_service, "_write_on_conflict", flaky_write)
    monkeypatch.setattr(upsert_service, "resync_sequence", counting_resync)

    result = upsert_rows(Member, _members(("A1", "Ada", 10)), conflict_keys=("member_id",))
    db_session.commit()

    assert result["sequence_resynced"] is True
    assert calls == {"write": 2, "resync": 1}
    assert db_session.query(Member).count() == 1


def test_repeated_primary_key_failure_is_a_conflict(db_session, monkeypatch):
    def always_fails(*args, **kwargs):
        raise _pk_violation()

    monkeypatch.setattr(upsert_service, "_write_on_conflict", always_fails)

    with pytest.raises(ConflictError):
        upsert_rows(Member, _members(("A1", "Ada", 10)), conflict_keys=("member_id",))


def test_other_integrity_errors_are_conflicts_without_repair(db_session, monkeypatch):
    resyncs = []

    def fails(*args, **kwargs):
        raise IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed: members.full_name"))

    monkeypatch.setattr(upsert_service, "_write_on_conflict", fails)
    monkeypatch.setattr(upsert_service, "resync_sequence", lambda table: resyncs.append(table))

    with pytest.raises(ConflictError):
        upsert_rows(Member, _members(("A1", "Ada", 10)), conflict_keys=("member_id",))
    assert resyncs == []


def test_primary_key_violation_detection():
    table = Member.__table__
    assert upsert_service.is_primary_key_violation(_pk_violation(), table)
    pg = IntegrityError("INSERT", {}, Exception('duplicate key value violates unique constraint "members_pkey"'))
    assert upsert_service.is_primary_key_violation(pg, table)
    other = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: members.member_id"))
    assert not upsert_service.is_primary_key_violation(other, table)


def test_resync_sequence_returns_max_id(db_session):
    upsert_rows(Member, _members(("A1", "Ada", 1), ("B2", "Bala", 2)), conflict_keys=("member_id",))
    db_session.commit()

    max_id = max(m.id for m in db_session.query(Member).all())
    assert upsert_service.resync_sequence(Member.__table__) == max_id
