# Overview: Generic conflict-aware bulk upsert with key-sequence repair.

"""
Bulk Upsert

One routine for every import path, parameterized by table and conflict key:

1. When a unique constraint/index covers the conflict key, each chunk is
   written as INSERT ... ON CONFLICT (<key>) DO UPDATE.
2. When it does not (index dropped, legacy schema), each row is looked up
   by key and then updated or inserted.
3. A duplicate *primary key* failure means the id sequence drifted behind
   MAX(id) (rows loaded with explicit ids, restored dumps). The sequence is
   reset to MAX(id) once and the failing chunk retried once; a second
   failure surfaces as ConflictError.

Every chunk runs inside a SAVEPOINT so a failed chunk can be retried
without losing earlier chunks. The caller commits.
"""

from __future__ import annotations

from typing import Any, Iterable

import sqlalchemy as sa
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ConflictError


def _chunks(rows: list, size: int) -> Iterable[list]:
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


def _dialect_name() -> str:
    return db.session.get_bind().dialect.name


def has_unique_index(table: sa.Table, conflict_keys) -> bool:
    """True when the live schema has a PK, unique constraint or unique index on exactly conflict_keys."""
    wanted = set(conflict_keys)
    inspector = sa.inspect(db.session.connection())

    pk = inspector.get_pk_constraint(table.name) or {}
    if set(pk.get("constrained_columns") or []) == wanted:
        return True
    for constraint in inspector.get_unique_constraints(table.name):
        if set(constraint.get("column_names") or []) == wanted:
            return True
    for index in inspector.get_indexes(table.name):
        if index.get("unique") and set(index.get("column_names") or []) == wanted:
            return True
    return False


def is_primary_key_violation(exc: IntegrityError, table: sa.Table) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    name = table.name.lower()
    return f"{name}_pkey" in message or f"{name}.id" in message


def resync_sequence(table: sa.Table) -> int:
    """Move the table's id sequence to MAX(id). Idempotent."""
    max_id = db.session.execute(sa.select(sa.func.max(table.c.id))).scalar() or 0
    dialect = _dialect_name()

    if dialect == "postgresql":
        db.session.execute(
            sa.text("SELECT setval(pg_get_serial_sequence(:table, 'id'), :value, :called)"),
            {"table": table.name, "value": max(max_id, 1), "called": max_id > 0},
        )
    elif dialect == "sqlite":
        db.session.execute(
            sa.text("UPDATE sqlite_sequence SET seq = :value WHERE name = :table"),
            {"table": table.name, "value": max_id},
        )

    current_app.logger.warning("Resynced %s id sequence to %s", table.name, max_id)
    return max_id


def _conflict_insert(table: sa.Table):
    dialect = _dialect_name()
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        return None
    return insert(table)


def _write_on_conflict(table: sa.Table, chunk: list[dict], conflict_keys, update_columns) -> None:
    stmt = _conflict_insert(table).values(chunk)
    set_ = {column: stmt.excluded[column] for column in update_columns}
    if "updated_at" in table.c and "updated_at" not in set_:
        set_["updated_at"] = sa.func.now()
    if set_:
        stmt = stmt.on_conflict_do_update(index_elements=list(conflict_keys), set_=set_)
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_keys))
    db.session.execute(stmt)


def _write_manual(table: sa.Table, chunk: list[dict], conflict_keys, update_columns) -> None:
    for row in chunk:
        existing_id = db.session.execute(
            sa.select(table.c.id).where(*[table.c[key] == row[key] for key in conflict_keys])
        ).scalar()
        if existing_id is None:
            db.session.execute(sa.insert(table).values(**row))
        elif update_columns:
            values = {column: row[column] for column in update_columns}
            if "updated_at" in table.c and "updated_at" not in values:
                values["updated_at"] = sa.func.now()
            db.session.execute(sa.update(table).where(table.c.id == existing_id).values(**values))


def _write_chunk(table: sa.Table, chunk: list[dict], conflict_keys, update_columns, use_conflict: bool) -> None:
    with db.session.begin_nested():
        if use_conflict:
            _write_on_conflict(table, chunk, conflict_keys, update_columns)
        else:
            _write_manual(table, chunk, conflict_keys, update_columns)


def _dedupe(rows: list[dict], conflict_keys) -> list[dict]:
    """Last row wins per conflict key."""
    by_key: dict[tuple, dict] = {}
    for row in rows:
        by_key[tuple(row[key] for key in conflict_keys)] = row
    return list(by_key.values())


def upsert_rows(
    model,
    rows: list[dict[str, Any]],
    *,
    conflict_keys: tuple[str, ...],
    chunk_size: int | None = None,
) -> dict[str, Any]:
    """
    Insert-or-update rows of model's table keyed by conflict_keys.

    Rows may carry different column sets; each distinct column set is written
    as its own group so absent columns are never overwritten.

    Returns {"upserted", "inserted", "updated", "mode", "sequence_resynced"}.
    """
    table = model.__table__
    result = {"upserted": 0, "inserted": 0, "updated": 0, "mode": None, "sequence_resynced": False}
    rows = _dedupe([row for row in rows if row], conflict_keys)
    if not rows:
        return result

    chunk_size = max(1, int(chunk_size or current_app.config.get("IMPORT_CHUNK_SIZE", 500)))
    use_conflict = _conflict_insert(table) is not None and has_unique_index(table, conflict_keys)
    if not use_conflict:
        current_app.logger.warning(
            "No unique index on %s(%s); using per-row upsert",
            table.name,
            ", ".join(conflict_keys),
        )
    result["mode"] = "on_conflict" if use_conflict else "manual"

    groups: dict[tuple, list[dict]] = {}
    for row in rows:
        groups.setdefault(tuple(sorted(row.keys())), []).append(row)

    count_before = db.session.execute(sa.select(sa.func.count()).select_from(table)).scalar() or 0

    for columns, group_rows in groups.items():
        update_columns = [column for column in columns if column not in conflict_keys]
        for chunk in _chunks(group_rows, chunk_size):
            try:
                _write_chunk(table, chunk, conflict_keys, update_columns, use_conflict)
            except IntegrityError as exc:
                if result["sequence_resynced"] or not is_primary_key_violation(exc, table):
                    raise ConflictError(
                        f"Conflict writing {table.name}",
                        {"table": table.name, "reason": str(getattr(exc, "orig", exc))},
                    ) from exc
                current_app.logger.warning("Duplicate primary key on %s; repairing sequence", table.name)
                resync_sequence(table)
                result["sequence_resynced"] = True
                try:
                    _write_chunk(table, chunk, conflict_keys, update_columns, use_conflict)
                except IntegrityError as retry_exc:
                    raise ConflictError(
                        f"Conflict writing {table.name} after sequence repair",
                        {"table": table.name, "reason": str(getattr(retry_exc, "orig", retry_exc))},
                    ) from retry_exc

    count_after = db.session.execute(sa.select(sa.func.count()).select_from(table)).scalar() or 0
    result["upserted"] = len(rows)
    result["inserted"] = max(0, count_after - count_before)
    result["updated"] = result["upserted"] - result["inserted"]
    return result
