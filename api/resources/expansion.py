"""
Expand-query resolution.

An expand query is a flat list of dot-delimited relation paths, e.g.
("author", "author.publisher"). A foreign key `f` is resolved when `f` is in
the query or some path starts with `f.`; the target is then materialized with
the sub-query made of those paths minus the `f.` prefix. Every other foreign
key stays a `Stub`.

Depth is bounded by the caller's paths (each level strips one segment), not
by the schema, so cyclic graphs cannot recurse forever.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from core import errors

from . import catalog, store
from .entities import Resolved, Stub

ExpandQuery = tuple[str, ...]

MAX_EXPAND_PATHS = 20

_SEGMENT = re.compile(r"^[a-z_][a-z0-9_]*$")


def parse_expand(values: Iterable[str] | None) -> ExpandQuery:
    """
    Normalize the `expand` query parameter once, at the API edge.

    Accepts repeated values and comma-separated values; drops duplicates
    while keeping order.
    """
    paths: list[str] = []
    for raw in values or ():
        for part in raw.split(","):
            path = part.strip()
            if not path:
                continue
            if not all(_SEGMENT.match(segment) for segment in path.split(".")):
                raise errors.ValidationError(
                    "Invalid expand query.",
                    errors=[errors.field_error("expand", f"Invalid relation path '{path}'")],
                )
            if path not in paths:
                paths.append(path)

    if len(paths) > MAX_EXPAND_PATHS:
        raise errors.ValidationError(
            "Invalid expand query.",
            errors=[errors.field_error("expand", f"At most {MAX_EXPAND_PATHS} paths are allowed")],
        )
    return tuple(paths)


def wants(query: ExpandQuery, field: str) -> bool:
    prefix = f"{field}."
    return any(path == field or path.startswith(prefix) for path in query)


def sub_query(query: ExpandQuery, field: str) -> ExpandQuery:
    prefix = f"{field}."
    return tuple(path[len(prefix):] for path in query if path.startswith(prefix))


async def materialize(
    conn: Any,
    descriptor: catalog.ResourceDescriptor,
    record: Mapping[str, Any],
    expand: ExpandQuery = (),
) -> Any:
    """
    Build one entity; at most one Store round trip per expanded relation.
    """
    (entity,) = await materialize_many(conn, descriptor, [record], expand)
    return entity


async def materialize_many(
    conn: Any,
    descriptor: catalog.ResourceDescriptor,
    records: Sequence[Mapping[str, Any]],
    expand: ExpandQuery = (),
) -> list[Any]:
    """
    Build entities for sibling records, resolving each expanded relation with
    a single bulk retrieval shared by all of them.
    """
    refs: list[dict[str, Any]] = [{} for _ in records]

    for field, kind in descriptor.foreign_keys.items():
        if not wants(expand, field):
            for record, ref in zip(records, refs):
                value = record.get(field)
                ref[field] = Stub(id=value) if value is not None else None
            continue

        target = catalog.descriptor(kind)
        ids = [record[field] for record in records if record.get(field) is not None]
        related = await store.retrieve_many(conn, target, ids, sub_query(expand, field))
        by_id = {entity.id: entity for entity in related}

        for record, ref in zip(records, refs):
            value = record.get(field)
            if value is None:
                ref[field] = None
            elif value in by_id:
                ref[field] = Resolved(entity=by_id[value])
            else:
                raise errors.NotFound(f"{kind.value} {value} not found.")

    return [descriptor.factory(record, ref) for record, ref in zip(records, refs)]
