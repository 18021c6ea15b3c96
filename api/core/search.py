"""
Elasticsearch HTTP client helpers.

Used endpoints:
- PUT    /{index}/_doc/{id}   -> index or replace one document
- DELETE /{index}/_doc/{id}   -> remove one document (404 means already gone)
- POST   /{index}/_search     -> {"hits": {"hits": [{"_id": "..."}, ...]}}

Writes are idempotent by document id, so the outbox may replay them.
"""

from __future__ import annotations

import os
from typing import Any

import httpx

from . import errors


# Search index failures are explicit and separable from other runtime errors.
class SearchIndexError(errors.ExternalSystemFailure):
    default_detail = "The search index is unavailable."


def search_base_url() -> str:
    return os.environ.get("ELASTICSEARCH_URL", "http://elasticsearch:9200").strip() or "http://elasticsearch:9200"


def _normalize_base_url(base_url: str | None) -> str:
    base_url = (base_url if base_url is not None else search_base_url()).strip()
    if not base_url:
        raise SearchIndexError("ELASTICSEARCH_URL is empty.")
    return base_url.rstrip("/")


def _raise_for_status(resp: httpx.Response, action: str) -> None:
    if resp.status_code >= 300:
        # Avoid dumping huge bodies; include a small snippet.
        body = resp.text[:500]
        raise SearchIndexError(f"Elasticsearch {action} request failed: {resp.status_code} {body}")


async def put_document(
    index: str,
    document_id: str,
    document: dict[str, Any],
    *,
    base_url: str | None = None,
    timeout_s: float = 10.0,
) -> None:
    """
    Create or replace `document_id` in `index`.
    """
    try:
        async with httpx.AsyncClient(base_url=_normalize_base_url(base_url), timeout=timeout_s) as client:
            resp = await client.put(f"/{index}/_doc/{document_id}", json=document)
    except httpx.HTTPError as exc:
        raise SearchIndexError(f"Elasticsearch put request failed: {exc}") from exc

    _raise_for_status(resp, "put")


async def delete_document(
    index: str,
    document_id: str,
    *,
    base_url: str | None = None,
    timeout_s: float = 10.0,
) -> None:
    try:
        async with httpx.AsyncClient(base_url=_normalize_base_url(base_url), timeout=timeout_s) as client:
            resp = await client.delete(f"/{index}/_doc/{document_id}")
    except httpx.HTTPError as exc:
        raise SearchIndexError(f"Elasticsearch delete request failed: {exc}") from exc

    if resp.status_code == 404:
        return None
    _raise_for_status(resp, "delete")


async def search_ids(
    index: str,
    query: str,
    *,
    fields: list[str],
    limit: int = 20,
    offset: int = 0,
    base_url: str | None = None,
    timeout_s: float = 10.0,
) -> list[str]:
    """
    Fuzzy full-text match over `fields`; returns matching document ids by score.
    """
    payload: dict[str, Any] = {
        "from": offset,
        "size": limit,
        "_source": False,
        "query": {
            "multi_match": {
                "query": query,
                "fields": fields,
                "fuzziness": "AUTO",
            },
        },
    }

    try:
        async with httpx.AsyncClient(base_url=_normalize_base_url(base_url), timeout=timeout_s) as client:
            resp = await client.post(f"/{index}/_search", json=payload)
    except httpx.HTTPError as exc:
        raise SearchIndexError(f"Elasticsearch search request failed: {exc}") from exc

    _raise_for_status(resp, "search")

    data: dict[str, Any] = resp.json()
    hits = (data.get("hits") or {}).get("hits")
    if not isinstance(hits, list):
        raise SearchIndexError("Elasticsearch returned no hits list.")
    return [str(hit["_id"]) for hit in hits if isinstance(hit, dict) and hit.get("_id")]
