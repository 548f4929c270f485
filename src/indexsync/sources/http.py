"""
Workflow-execution source over HTTP.

Reads one page of executions per call from the workflow-execution service::

    GET {base}/workflows/{source_key}/executions?maxResults=N[&nextToken=T]

    200 {"executions": [{"name": ..., "status": ..., "startDate": ...,
                         "stopDate": ...}, ...],
         "nextToken": "..." | null}

Executions arrive most recent first. Items that cannot be parsed are logged
and skipped so one bad record never stalls a partition.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx

from indexsync.core.errors import ExecutionParseError, SourceUnavailableError
from indexsync.core.logging import get_logger
from indexsync.execution.models import ExecutionRecord
from indexsync.sources.protocol import Page, PageCursor

logger = get_logger(__name__)


class HttpExecutionSource:
    """PagedSource of ExecutionRecords backed by httpx.

    The ``httpx.Client`` is safe to share across the partition worker
    threads. Pass ``client`` to inject one (tests use ``httpx.MockTransport``).

    Args:
        base_url: Service root, e.g. ``http://workflows:8080/v1``
        timeout: Per-request timeout in seconds; expiry is a fetch failure
        client: Pre-built client; ``base_url`` and ``timeout`` are then ignored
        workflow_ids: Optional source key → workflow id mapping used to tag
            records; defaults to the source key itself
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
        workflow_ids: dict[str, str] | None = None,
    ) -> None:
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)
        self._owns_client = client is None
        self._workflow_ids = dict(workflow_ids or {})

    def list_page(
        self,
        partition_key: str,
        cursor: PageCursor | None,
        page_size: int,
    ) -> Page[ExecutionRecord]:
        params: dict[str, Any] = {"maxResults": page_size}
        if cursor is not None:
            params["nextToken"] = cursor
        path = f"/workflows/{quote(partition_key, safe='')}/executions"

        try:
            response = self._client.get(path, params=params)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            raise SourceUnavailableError(
                f"Execution listing returned {exc.response.status_code}", cause=exc
            ).with_context(
                partition=partition_key,
                cursor=cursor,
                url=str(exc.request.url),
                http_status=exc.response.status_code,
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise SourceUnavailableError(
                f"Execution listing failed: {exc}", cause=exc
            ).with_context(partition=partition_key, cursor=cursor) from exc

        if not isinstance(body, dict) or not isinstance(body.get("executions"), list):
            raise SourceUnavailableError(
                "Execution listing has no 'executions' array"
            ).with_context(partition=partition_key, cursor=cursor)

        workflow_id = self._workflow_ids.get(partition_key, partition_key)
        records = []
        for item in body["executions"]:
            try:
                records.append(ExecutionRecord.from_api(workflow_id, item))
            except ExecutionParseError as exc:
                logger.warning(
                    "execution_skipped",
                    reason=exc.message,
                    **exc.context.to_dict(),
                )

        next_token = body.get("nextToken")
        return Page(
            items=tuple(records),
            next_cursor=PageCursor(next_token) if next_token else None,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> HttpExecutionSource:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
