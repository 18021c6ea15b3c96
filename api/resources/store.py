"""
Generic CRUD over the catalog's tables (raw SQL, asyncpg).

Every function takes the connection explicitly: a pooled connection for a
plain request, or the same connection inside `conn.transaction()` when the
caller needs several statements to commit together.

Rules enforced before any SQL is sent:
- a unique-key filter must match one of the descriptor's `key_sets` exactly;
- list/delete-by keys must be declared foreign keys (or listable columns);
- written columns must be declared and not database-generated.
Violations raise `ImplementationError`; they are programmer bugs.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

import asyncpg

from core import errors

from . import expansion
from .catalog import ResourceDescriptor
from .entities import Stub

logger = logging.getLogger(__name__)

Record = dict[str, Any]


@dataclass(frozen=True)
class VersionGuard:
    """
    Write only if the stored `field` is NULL or not newer than `value`.

    The write also stores `value` into `field`, so replaying the same event
    (equal value) is accepted and converges to the same row.
    """

    field: str
    value: Any


def _q(name: str) -> str:
    return f'"{name}"'


def _fail(message: str) -> errors.ImplementationError:
    logger.error("store_misuse %s", message)
    return errors.ImplementationError(message)


def _check_filter(descriptor: ResourceDescriptor, filter: Mapping[str, Any]) -> None:
    if not descriptor.is_key_set(filter.keys()):
        names = ", ".join(sorted(filter)) or "<empty>"
        raise _fail(f"({names}) is not a key set of {descriptor.table}")


def _check_list_key(descriptor: ResourceDescriptor, key: str, *, foreign_only: bool) -> None:
    allowed = set(descriptor.foreign_keys)
    if not foreign_only:
        allowed |= descriptor.listable
    if key not in allowed:
        raise _fail(f"{key} is not a foreign key of {descriptor.table}")


def _check_columns(descriptor: ResourceDescriptor, names: Iterable[str]) -> None:
    for name in names:
        if name not in descriptor.fields or name in descriptor.generated:
            raise _fail(f"{name} is not a writable column of {descriptor.table}")


def _where(filter: Mapping[str, Any], args: list[Any]) -> str:
    clauses: list[str] = []
    for name, value in filter.items():
        args.append(value)
        clauses.append(f"{_q(name)} = ${len(args)}")
    return " AND ".join(clauses)


def _order(descriptor: ResourceDescriptor) -> str:
    if descriptor.order_by is None:
        return ""
    column, direction = descriptor.order_by
    return f" ORDER BY {_q(column)} {direction}"


@contextmanager
def _constraint_errors(descriptor: ResourceDescriptor, *, deleting: bool = False) -> Iterator[None]:
    try:
        yield
    except asyncpg.UniqueViolationError as exc:
        raise errors.Conflict(f"A conflicting {descriptor.kind.value} already exists.") from exc
    except asyncpg.ForeignKeyViolationError as exc:
        if deleting:
            raise errors.Conflict(f"The {descriptor.kind.value} is still referenced.") from exc
        raise errors.NotFound("A referenced resource does not exist.") from exc


def _with_id(descriptor: ResourceDescriptor, fields: Mapping[str, Any]) -> dict[str, Any]:
    values = dict(fields)
    if "id" in descriptor.fields and values.get("id") is None:
        values["id"] = descriptor.new_id()
    return values


# ----------------------------------------------------------------------------
# Writes
# ----------------------------------------------------------------------------


async def insert(conn: asyncpg.Connection, descriptor: ResourceDescriptor, fields: Mapping[str, Any]) -> Record:
    values = _with_id(descriptor, fields)
    _check_columns(descriptor, values)

    columns = ", ".join(_q(name) for name in values)
    params = ", ".join(f"${i}" for i in range(1, len(values) + 1))
    with _constraint_errors(descriptor):
        row = await conn.fetchrow(
            f"INSERT INTO {_q(descriptor.table)} ({columns}) VALUES ({params}) RETURNING *",
            *values.values(),
        )
    if row is None:
        raise RuntimeError(f"Failed to insert into {descriptor.table}.")
    return dict(row)


async def create(conn: asyncpg.Connection, descriptor: ResourceDescriptor, fields: Mapping[str, Any]) -> Stub:
    if "id" not in descriptor.fields:
        raise _fail(f"{descriptor.table} rows have no id; use upsert()")
    row = await insert(conn, descriptor, fields)
    return Stub(id=str(row["id"]))


async def update(
    conn: asyncpg.Connection,
    descriptor: ResourceDescriptor,
    filter: Mapping[str, Any],
    fields: Mapping[str, Any],
    *,
    expect: Mapping[str, Any] | None = None,
    version: VersionGuard | None = None,
    monotonic: Iterable[str] = (),
):
    """
    Update the single row matched by `filter` and return it as an entity.

    - `expect`: extra equality conditions (compare-and-swap on state).
    - `version`: see `VersionGuard`.
    - `monotonic`: columns assigned with GREATEST(current, new).

    Raises NotFound when no row matches `filter`; returns None when the row
    exists but `expect`/`version` rejected the write.
    """
    _check_filter(descriptor, filter)
    assignments = dict(fields)
    if version is not None:
        assignments[version.field] = version.value
    if not assignments:
        raise _fail(f"empty update on {descriptor.table}")
    conditions = dict(expect or {})
    _check_columns(descriptor, assignments)
    for name in conditions:
        if name not in descriptor.fields:
            raise _fail(f"{name} is not a column of {descriptor.table}")
    monotonic = set(monotonic)

    args: list[Any] = []
    sets: list[str] = []
    for name, value in assignments.items():
        args.append(value)
        if name in monotonic:
            sets.append(f"{_q(name)} = GREATEST({_q(name)}, ${len(args)})")
        else:
            sets.append(f"{_q(name)} = ${len(args)}")

    where = _where({**conditions, **filter}, args)
    if version is not None:
        args.append(version.value)
        column = _q(version.field)
        where += f" AND ({column} IS NULL OR {column} <= ${len(args)})"

    with _constraint_errors(descriptor):
        row = await conn.fetchrow(
            f"UPDATE {_q(descriptor.table)} SET {', '.join(sets)} WHERE {where} RETURNING *",
            *args,
        )

    if row is None:
        if not await exists(conn, descriptor, filter):
            raise errors.NotFound(f"{descriptor.kind.value} not found.")
        logger.info(
            "store_update_skipped table=%s filter=%s reason=guard",
            descriptor.table,
            dict(filter),
        )
        return None
    return await expansion.materialize(conn, descriptor, dict(row))


async def upsert(
    conn: asyncpg.Connection,
    descriptor: ResourceDescriptor,
    conflict_keys: Iterable[str],
    fields: Mapping[str, Any],
    *,
    version: VersionGuard | None = None,
    monotonic: Iterable[str] = (),
):
    """
    Insert or update the row identified by the unique key set `conflict_keys`.

    Returns None when the row exists and `version` rejected the write.
    """
    keys = tuple(sorted(conflict_keys))
    if not descriptor.is_key_set(keys):
        raise _fail(f"({', '.join(keys)}) is not a key set of {descriptor.table}")

    values = _with_id(descriptor, fields)
    if version is not None:
        values[version.field] = version.value
    missing = [key for key in keys if values.get(key) is None]
    if missing:
        raise _fail(f"upsert on {descriptor.table} without {', '.join(missing)}")
    _check_columns(descriptor, values)

    monotonic = set(monotonic)
    table = _q(descriptor.table)
    updates: list[str] = []
    for name in values:
        if name in keys or name == "id":
            continue
        if name in monotonic:
            updates.append(f"{_q(name)} = GREATEST({table}.{_q(name)}, EXCLUDED.{_q(name)})")
        else:
            updates.append(f"{_q(name)} = EXCLUDED.{_q(name)}")
    if not updates:
        raise _fail(f"upsert on {descriptor.table} has nothing to update")

    guard = ""
    if version is not None:
        column = _q(version.field)
        guard = f" WHERE ({table}.{column} IS NULL OR {table}.{column} <= EXCLUDED.{column})"

    columns = ", ".join(_q(name) for name in values)
    params = ", ".join(f"${i}" for i in range(1, len(values) + 1))
    conflict = ", ".join(_q(key) for key in keys)
    with _constraint_errors(descriptor):
        row = await conn.fetchrow(
            f"INSERT INTO {table} ({columns}) VALUES ({params}) "
            f"ON CONFLICT ({conflict}) DO UPDATE SET {', '.join(updates)}{guard} RETURNING *",
            *values.values(),
        )

    if row is None:
        logger.info(
            "store_upsert_skipped table=%s keys=%s reason=version",
            descriptor.table,
            {key: values[key] for key in keys},
        )
        return None
    return await expansion.materialize(conn, descriptor, dict(row))


async def delete(conn: asyncpg.Connection, descriptor: ResourceDescriptor, filter: Mapping[str, Any]) -> Record | None:
    """
    Delete the row matched by a unique-key filter; returns it, or None if
    there was nothing to delete.
    """
    _check_filter(descriptor, filter)
    args: list[Any] = []
    where = _where(filter, args)
    with _constraint_errors(descriptor, deleting=True):
        row = await conn.fetchrow(f"DELETE FROM {_q(descriptor.table)} WHERE {where} RETURNING *", *args)
    return dict(row) if row is not None else None


async def delete_by_foreign_key(
    conn: asyncpg.Connection,
    descriptor: ResourceDescriptor,
    key: str,
    value: Any,
) -> int:
    _check_list_key(descriptor, key, foreign_only=True)
    with _constraint_errors(descriptor, deleting=True):
        rows = await conn.fetch(f"DELETE FROM {_q(descriptor.table)} WHERE {_q(key)} = $1 RETURNING *", value)
    return len(rows)


# ----------------------------------------------------------------------------
# Reads
# ----------------------------------------------------------------------------


async def retrieve_record(
    conn: asyncpg.Connection,
    descriptor: ResourceDescriptor,
    filter: Mapping[str, Any],
) -> Record:
    _check_filter(descriptor, filter)
    args: list[Any] = []
    where = _where(filter, args)
    row = await conn.fetchrow(f"SELECT * FROM {_q(descriptor.table)} WHERE {where} LIMIT 1", *args)
    if row is None:
        raise errors.NotFound(f"{descriptor.kind.value} not found.")
    return dict(row)


async def retrieve(
    conn: asyncpg.Connection,
    descriptor: ResourceDescriptor,
    filter: Mapping[str, Any],
    expand: Iterable[str] = (),
) -> Any:
    record = await retrieve_record(conn, descriptor, filter)
    return await expansion.materialize(conn, descriptor, record, tuple(expand))


async def retrieve_many(
    conn: asyncpg.Connection,
    descriptor: ResourceDescriptor,
    ids: Iterable[str],
    expand: Iterable[str] = (),
) -> list[Any]:
    """
    Bulk retrieval by id in one query. Keeps the order of `ids`; ids with no
    row are skipped.
    """
    if not descriptor.is_key_set(("id",)):
        raise _fail(f"{descriptor.table} is not keyed by id")
    wanted = list(dict.fromkeys(ids))
    if not wanted:
        return []
    rows = await conn.fetch(f'SELECT * FROM {_q(descriptor.table)} WHERE "id" = ANY($1)', wanted)
    by_id = {row["id"]: dict(row) for row in rows}
    records = [by_id[i] for i in wanted if i in by_id]
    return await expansion.materialize_many(conn, descriptor, records, tuple(expand))


async def exists(conn: asyncpg.Connection, descriptor: ResourceDescriptor, filter: Mapping[str, Any]) -> bool:
    _check_filter(descriptor, filter)
    args: list[Any] = []
    where = _where(filter, args)
    row = await conn.fetchrow(f"SELECT 1 FROM {_q(descriptor.table)} WHERE {where} LIMIT 1", *args)
    return row is not None


async def _list_records(conn: asyncpg.Connection, descriptor: ResourceDescriptor, key: str, value: Any) -> list[Record]:
    rows = await conn.fetch(
        f"SELECT * FROM {_q(descriptor.table)} WHERE {_q(key)} = $1{_order(descriptor)}",
        value,
    )
    return [dict(row) for row in rows]


async def list_by_foreign_key(
    conn: asyncpg.Connection,
    descriptor: ResourceDescriptor,
    key: str,
    value: Any,
    expand: Iterable[str] = (),
) -> list[Any]:
    _check_list_key(descriptor, key, foreign_only=True)
    records = await _list_records(conn, descriptor, key, value)
    return await expansion.materialize_many(conn, descriptor, records, tuple(expand))


async def list_by_field(
    conn: asyncpg.Connection,
    descriptor: ResourceDescriptor,
    key: str,
    value: Any,
    expand: Iterable[str] = (),
) -> list[Any]:
    """
    Like `list_by_foreign_key`, also accepting the descriptor's `listable`
    (indexed, non-unique) columns.
    """
    _check_list_key(descriptor, key, foreign_only=False)
    records = await _list_records(conn, descriptor, key, value)
    return await expansion.materialize_many(conn, descriptor, records, tuple(expand))


async def list_all(conn: asyncpg.Connection, descriptor: ResourceDescriptor, *, limit: int) -> list[Any]:
    rows = await conn.fetch(f"SELECT * FROM {_q(descriptor.table)}{_order(descriptor)} LIMIT $1", limit)
    return await expansion.materialize_many(conn, descriptor, [dict(row) for row in rows])


async def list_below(
    conn: asyncpg.Connection,
    descriptor: ResourceDescriptor,
    key: str,
    bound: Any,
    *,
    limit: int,
) -> list[Any]:
    """
    Rows whose listable column `key` is strictly below `bound`, in the
    descriptor's order, at most `limit` of them.
    """
    _check_list_key(descriptor, key, foreign_only=False)
    rows = await conn.fetch(
        f"SELECT * FROM {_q(descriptor.table)} WHERE {_q(key)} < $1{_order(descriptor)} LIMIT $2",
        bound,
        limit,
    )
    return await expansion.materialize_many(conn, descriptor, [dict(row) for row in rows])
