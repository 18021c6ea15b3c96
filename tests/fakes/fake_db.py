"""In-memory stand-in for an asyncpg connection, scoped to the Store's SQL.

Understands exactly the statement shapes `resources.store` emits. Unique
constraints come from the catalog's key sets (NULLs never collide),
`created_at`/`updated_at` are filled like the migration's defaults and
triggers, and GREATEST ignores NULLs as PostgreSQL does. Advisory locks are
held per connection, like session-level locks.

Transactions are serialized with one lock per database, which mirrors the
row-level blocking the concurrency tests rely on: a statement outside a
transaction waits for any open transaction to finish.
"""

from __future__ import annotations

import asyncio
import copy
import re
from datetime import datetime, timedelta, timezone
from typing import Any

import asyncpg

from resources import catalog

_DEFAULTS: dict[str, dict[str, Any]] = {
    "users": {"type": "user"},
    "organizations": {"stripe_account_enabled": False},
    "publishers": {"verified": False},
    "articles": {"reading_time": 0, "is_published": True},
    "article_drafts": {"status": "editable"},
    "bundles": {"active": True},
    "prices": {"active": True},
    "subscriptions": {"cancel_at_period_end": False, "deleted": False},
    "payment_methods": {"detached": False},
    "search_outbox": {"attempts": 0},
}

_INSERT = re.compile(r'^INSERT INTO "(\w+)" \((.*?)\) VALUES \((.*?)\) RETURNING \*$')
_UPSERT = re.compile(
    r'^INSERT INTO "(\w+)" \((.*?)\) VALUES \((.*?)\) '
    r"ON CONFLICT \((.*?)\) DO UPDATE SET (.*?)(?: WHERE \((.*)\))? RETURNING \*$"
)
_UPDATE = re.compile(r'^UPDATE "(\w+)" SET (.*?) WHERE (.*) RETURNING \*$')
_DELETE = re.compile(r'^DELETE FROM "(\w+)" WHERE (.*) RETURNING \*$')
_SELECT_ANY = re.compile(r'^SELECT \* FROM "(\w+)" WHERE "id" = ANY\(\$1\)$')
_SELECT_ONE = re.compile(r'^SELECT (\*|1) FROM "(\w+)" WHERE (.*) LIMIT 1$')
_SELECT_LIST = re.compile(r'^SELECT \* FROM "(\w+)" WHERE "(\w+)" = \$1(?: ORDER BY "(\w+)" (ASC|DESC))?$')
_SELECT_ALL = re.compile(r'^SELECT \* FROM "(\w+)"(?: ORDER BY "(\w+)" (ASC|DESC))? LIMIT \$1$')
_SELECT_BELOW = re.compile(r'^SELECT \* FROM "(\w+)" WHERE "(\w+)" < \$1(?: ORDER BY "(\w+)" (ASC|DESC))? LIMIT \$2$')
_ADVISORY = re.compile(r"^SELECT pg_(try_advisory_lock|advisory_unlock)\(\$1\) AS (\w+)$")

_NAME = re.compile(r'"(\w+)"')
_EQ = re.compile(r'"(\w+)" = \$(\d+)')
_GUARD = re.compile(r'"(\w+)" IS NULL OR "\w+" <= \$(\d+)')
_SET = re.compile(r'"(\w+)" = (?:GREATEST\("\w+", \$(\d+)\)|\$(\d+))')
_UPSERT_SET = re.compile(r'"(\w+)" = (GREATEST\(.*?\)|EXCLUDED\."\w+")')
_UPSERT_GUARD = re.compile(r'"\w+"\."(\w+)" IS NULL')


def _greatest(current: Any, new: Any) -> Any:
    if current is None:
        return new
    if new is None:
        return current
    return max(current, new)


class FakeDatabase:
    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {d.table: [] for d in catalog.DESCRIPTORS.values()}
        self.lock = asyncio.Lock()
        self.queries: list[str] = []
        self._descriptors = {d.table: d for d in catalog.DESCRIPTORS.values()}
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)
        self._failures: list[tuple[str, Exception]] = []
        self.advisory_locks: dict[int, FakeConnection] = {}

    def connection(self) -> FakeConnection:
        return FakeConnection(self)

    def now(self) -> datetime:
        # Strictly increasing, so creation order is also timestamp order.
        self._clock += timedelta(milliseconds=1)
        return self._clock

    def fail_when(self, fragment: str, exc: Exception | None = None) -> None:
        """Raise `exc` once, on the next statement containing `fragment`."""
        self._failures.append((fragment, exc or RuntimeError(f"injected failure on {fragment}")))

    def rows(self, table: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self.tables[table])

    def seed(self, table: str, **values: Any) -> dict[str, Any]:
        """Insert a row directly, with defaults applied and constraints checked."""
        return copy.deepcopy(self._insert(table, values))

    # ------------------------------------------------------------------
    # Statement execution
    # ------------------------------------------------------------------

    def execute(self, query: str, args: tuple[Any, ...]) -> list[dict[str, Any]]:
        self.queries.append(query)
        for position, (fragment, exc) in enumerate(self._failures):
            if fragment in query:
                del self._failures[position]
                raise exc

        if m := _UPSERT.match(query):
            row = self._upsert(m, args)
            return [row] if row is not None else []
        if m := _INSERT.match(query):
            table, columns = m.group(1), _NAME.findall(m.group(2))
            return [self._insert(table, dict(zip(columns, args)))]
        if m := _UPDATE.match(query):
            return self._update(m.group(1), m.group(2), m.group(3), args)
        if m := _DELETE.match(query):
            table = m.group(1)
            matched = self._match(table, m.group(2), args)
            gone = {id(row) for row in matched}
            self.tables[table] = [row for row in self.tables[table] if id(row) not in gone]
            return matched
        if m := _SELECT_ANY.match(query):
            wanted = set(args[0])
            return [row for row in self.tables[m.group(1)] if row.get("id") in wanted]
        if m := _SELECT_ONE.match(query):
            matched = self._match(m.group(2), m.group(3), args)[:1]
            if m.group(1) == "1":
                return [{"?column?": 1} for _ in matched]
            return matched
        if m := _SELECT_LIST.match(query):
            table, key = m.group(1), m.group(2)
            rows = [row for row in self.tables[table] if row.get(key) == args[0]]
            return self._ordered(rows, m.group(3), m.group(4))
        if m := _SELECT_ALL.match(query):
            rows = self._ordered(list(self.tables[m.group(1)]), m.group(2), m.group(3))
            return rows[: args[0]]
        if m := _SELECT_BELOW.match(query):
            table, key = m.group(1), m.group(2)
            rows = [row for row in self.tables[table] if row[key] < args[0]]
            return self._ordered(rows, m.group(3), m.group(4))[: args[1]]
        raise AssertionError(f"FakeDatabase does not understand: {query}")

    def _ordered(self, rows: list[dict[str, Any]], column: str | None, direction: str | None) -> list[dict[str, Any]]:
        if column is None:
            return rows
        return sorted(rows, key=lambda row: row[column], reverse=direction == "DESC")

    def _match(self, table: str, where: str, args: tuple[Any, ...]) -> list[dict[str, Any]]:
        equals = [(name, args[int(n) - 1]) for name, n in _EQ.findall(where)]
        guards = [(name, args[int(n) - 1]) for name, n in _GUARD.findall(where)]

        def accepts(row: dict[str, Any]) -> bool:
            if any(row.get(name) != value for name, value in equals):
                return False
            return all(row.get(name) is None or row[name] <= value for name, value in guards)

        return [row for row in self.tables[table] if accepts(row)]

    def _check_unique(self, table: str, candidate: dict[str, Any], ignore: dict[str, Any] | None = None) -> None:
        descriptor = self._descriptors[table]
        for key_set in descriptor.key_sets:
            values = {name: candidate.get(name) for name in key_set}
            if any(value is None for value in values.values()):
                continue
            for row in self.tables[table]:
                if row is ignore:
                    continue
                if all(row.get(name) == value for name, value in values.items()):
                    raise asyncpg.UniqueViolationError(f"duplicate key value violates unique constraint on {table}")

    def _insert(self, table: str, values: dict[str, Any]) -> dict[str, Any]:
        descriptor = self._descriptors[table]
        row: dict[str, Any] = {name: None for name in descriptor.fields}
        row.update(_DEFAULTS.get(table, {}))
        now = self.now()
        for name in ("created_at", "updated_at"):
            if name in row:
                row[name] = now
        row.update(copy.deepcopy(values))
        self._check_unique(table, row)
        self.tables[table].append(row)
        return row

    def _update(self, table: str, sets: str, where: str, args: tuple[Any, ...]) -> list[dict[str, Any]]:
        updated = []
        for row in self._match(table, where, args):
            new = dict(row)
            for name, greatest_n, plain_n in _SET.findall(sets):
                if greatest_n:
                    new[name] = _greatest(row.get(name), copy.deepcopy(args[int(greatest_n) - 1]))
                else:
                    new[name] = copy.deepcopy(args[int(plain_n) - 1])
            if "updated_at" in new:
                new["updated_at"] = self.now()
            self._check_unique(table, new, ignore=row)
            row.clear()
            row.update(new)
            updated.append(row)
        return updated

    def _upsert(self, m: re.Match[str], args: tuple[Any, ...]) -> dict[str, Any] | None:
        table = m.group(1)
        values = dict(zip(_NAME.findall(m.group(2)), args))
        keys = _NAME.findall(m.group(4))

        existing = next(
            (row for row in self.tables[table] if all(row.get(key) == values[key] for key in keys)),
            None,
        )
        if existing is None:
            return self._insert(table, values)

        guard = m.group(6)
        if guard:
            (column,) = _UPSERT_GUARD.findall(guard)
            if existing.get(column) is not None and existing[column] > values[column]:
                return None

        new = dict(existing)
        for name, expression in _UPSERT_SET.findall(m.group(5)):
            value = copy.deepcopy(values[name])
            new[name] = _greatest(existing.get(name), value) if expression.startswith("GREATEST") else value
        if "updated_at" in new:
            new["updated_at"] = self.now()
        self._check_unique(table, new, ignore=existing)
        existing.clear()
        existing.update(new)
        return existing


class _Transaction:
    def __init__(self, conn: FakeConnection) -> None:
        self._conn = conn
        self._snapshot: dict[str, list[dict[str, Any]]] | None = None

    async def __aenter__(self) -> _Transaction:
        db = self._conn.db
        if self._conn.depth == 0:
            await db.lock.acquire()
        self._snapshot = copy.deepcopy(db.tables)
        self._conn.depth += 1
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        db = self._conn.db
        self._conn.depth -= 1
        if exc_type is not None:
            db.tables = self._snapshot
        if self._conn.depth == 0:
            db.lock.release()
        return False


class FakeConnection:
    def __init__(self, db: FakeDatabase) -> None:
        self.db = db
        self.depth = 0

    def transaction(self) -> _Transaction:
        return _Transaction(self)

    def _advisory(self, function: str, key: int) -> bool:
        # Session-level locks belong to the connection that took them.
        holder = self.db.advisory_locks.get(key)
        if function == "try_advisory_lock":
            if holder is not None and holder is not self:
                return False
            self.db.advisory_locks[key] = self
            return True
        if holder is not self:
            return False
        del self.db.advisory_locks[key]
        return True

    async def _run(self, query: str, args: tuple[Any, ...]) -> list[dict[str, Any]]:
        # Yield so concurrent callers interleave between statements.
        await asyncio.sleep(0)
        if m := _ADVISORY.match(query):
            self.db.queries.append(query)
            return [{m.group(2): self._advisory(m.group(1), args[0])}]
        if self.depth:
            rows = self.db.execute(query, args)
        else:
            async with self.db.lock:
                rows = self.db.execute(query, args)
        return copy.deepcopy(rows)

    async def fetchrow(self, query: str, *args: Any) -> dict[str, Any] | None:
        rows = await self._run(query, args)
        return rows[0] if rows else None

    async def fetch(self, query: str, *args: Any) -> list[dict[str, Any]]:
        return await self._run(query, args)
