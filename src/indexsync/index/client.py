"""
Search index client.

The sync engine talks to the search index through ``SearchIndexClient``, a
small protocol covering exactly what it needs: index administration for
the schema manager, bulk upserts for the indexer and single-document
reads and writes for the index-backed watermark.

``ElasticsearchClient`` implements it against the Elasticsearch REST API
with httpx:

    ==========================  =====================================
    Operation                   Request
    ==========================  =====================================
    index_exists                HEAD /{index}
    create_index                PUT  /{index}  {settings, mappings}
    update_mapping              PUT  /{index}/_mapping
    bulk_upsert                 POST /_bulk  (NDJSON ``index`` actions)
    get_document                GET  /{index}/_doc/{id}
    index_document              PUT  /{index}/_doc/{id}
    ==========================  =====================================

Transport failures surface as ``SearchIndexError`` (``httpx`` exceptions are
chained as the cause). Callers narrow them: the schema manager into
``IndexProvisioningError``, the watermark store into ``WatermarkError``.

Example:
    >>> client = ElasticsearchClient("http://localhost:9200")
    >>> client.bulk_upsert("executions", [("exec-1", {"success": True})]).errors
    False
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote

import httpx

from indexsync.core.errors import SearchIndexError
from indexsync.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class BulkResponse:
    """Outcome of a bulk upsert.

    Attributes:
        errors: True if any document was rejected
        failed_ids: Ids of rejected documents
        details: Per-document error bodies, keyed by id
    """

    errors: bool = False
    failed_ids: tuple[str, ...] = ()
    details: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class SearchIndexClient(Protocol):
    """What the engine needs from a search index."""

    def index_exists(self, name: str) -> bool: ...

    def create_index(
        self, name: str, settings: dict[str, Any], mapping: dict[str, Any]
    ) -> None: ...

    def update_mapping(self, name: str, mapping: dict[str, Any]) -> None: ...

    def bulk_upsert(
        self, name: str, docs: Sequence[tuple[str, dict[str, Any]]]
    ) -> BulkResponse: ...

    def get_document(self, name: str, doc_id: str) -> dict[str, Any] | None: ...

    def index_document(self, name: str, doc_id: str, body: dict[str, Any]) -> None: ...

    def close(self) -> None: ...


class ElasticsearchClient:
    """SearchIndexClient over the Elasticsearch REST API.

    One ``httpx.Client`` is shared by all partition workers.
    """

    def __init__(
        self,
        url: str = "http://localhost:9200",
        *,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._client = client or httpx.Client(base_url=url, timeout=timeout)
        self._owns_client = client is None

    # ── Administration ──────────────────────────────────────────────────

    def index_exists(self, name: str) -> bool:
        response = self._request("HEAD", f"/{_seg(name)}", index=name, allow=(404,))
        return response.status_code == 200

    def create_index(
        self, name: str, settings: dict[str, Any], mapping: dict[str, Any]
    ) -> None:
        response = self._request(
            "PUT",
            f"/{_seg(name)}",
            index=name,
            json={"settings": settings, "mappings": mapping},
        )
        _require_acknowledged(response, "PUT", f"/{name}", index=name)
        logger.info("index_created", index=name)

    def update_mapping(self, name: str, mapping: dict[str, Any]) -> None:
        response = self._request("PUT", f"/{_seg(name)}/_mapping", index=name, json=mapping)
        _require_acknowledged(response, "PUT", f"/{name}/_mapping", index=name)
        logger.debug("index_mapping_updated", index=name)

    # ── Documents ───────────────────────────────────────────────────────

    def bulk_upsert(
        self, name: str, docs: Sequence[tuple[str, dict[str, Any]]]
    ) -> BulkResponse:
        """Index (create or overwrite) each ``(id, body)`` pair."""
        if not docs:
            return BulkResponse()

        lines = []
        for doc_id, body in docs:
            lines.append(json.dumps({"index": {"_index": name, "_id": doc_id}}))
            lines.append(json.dumps(body))
        payload = "\n".join(lines) + "\n"

        response = self._request(
            "POST",
            "/_bulk",
            index=name,
            content=payload.encode("utf-8"),
            headers={"Content-Type": "application/x-ndjson"},
        )
        result = response.json()
        if not result.get("errors"):
            return BulkResponse()

        failed: list[str] = []
        details: dict[str, Any] = {}
        for item in result.get("items", []):
            action = next(iter(item.values()), {})
            if "error" in action or action.get("status", 200) >= 300:
                doc_id = str(action.get("_id"))
                failed.append(doc_id)
                details[doc_id] = action.get("error")
        return BulkResponse(errors=True, failed_ids=tuple(failed), details=details)

    def get_document(self, name: str, doc_id: str) -> dict[str, Any] | None:
        """Return the stored fields of a document, or None if it is missing.

        The built-in indexes disable ``_source``, so values are read back
        from stored fields; ``_source`` is used when present.
        """
        response = self._request(
            "GET",
            f"/{_seg(name)}/_doc/{_seg(doc_id)}",
            index=name,
            params={"stored_fields": "*", "_source": "true"},
            allow=(404,),
        )
        if response.status_code == 404:
            return None
        body = response.json()
        if not body.get("found", False):
            return None
        if body.get("_source") is not None:
            return dict(body["_source"])
        # Stored fields come back as single-element arrays.
        return {
            key: value[0] if isinstance(value, list) and len(value) == 1 else value
            for key, value in body.get("fields", {}).items()
        }

    def index_document(self, name: str, doc_id: str, body: dict[str, Any]) -> None:
        self._request(
            "PUT",
            f"/{_seg(name)}/_doc/{_seg(doc_id)}",
            index=name,
            params={"refresh": "true"},
            json=body,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    # ── Internal ────────────────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        *,
        index: str,
        allow: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise SearchIndexError(
                f"{method} {path} failed: {exc}", retryable=True, cause=exc
            ).with_context(index=index, url=path) from exc

        if response.status_code >= 400 and response.status_code not in allow:
            raise SearchIndexError(
                f"{method} {path} returned {response.status_code}: {_reason(response)}",
                retryable=response.status_code >= 500,
            ).with_context(index=index, url=path, http_status=response.status_code)
        return response


def _seg(value: str) -> str:
    return quote(value, safe="")


def _reason(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    error = body.get("error") if isinstance(body, dict) else body
    if isinstance(error, dict):
        return str(error.get("reason") or error.get("type"))
    return str(error)


def _require_acknowledged(
    response: httpx.Response, method: str, path: str, *, index: str
) -> None:
    """Admin calls succeed only when the cluster answers ``acknowledged: true``."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("acknowledged") is True:
        return
    raise SearchIndexError(
        f"{method} {path} was not acknowledged by the cluster",
        retryable=True,
    ).with_context(index=index, url=path, http_status=response.status_code)
