"""
HTTP client for the remote state document store.

Each operation is sent as a two-statement query to the store's ``/sql``
endpoint with basic authentication::

    USE NS <namespace> DB <database>; <statement>

The response is a JSON list with one result object per statement; the
second entry carries the result of the actual statement. Conflicts are
resolved whole-document, last-write-wins, by comparing ``lastUpdated``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from .config import RemoteEndpoint
from .errors import RemoteQueryError, RemoteSyncError, SyncConfigError
from .protocol import StatusReporterProtocol
from .types import (
    LAST_UPDATED,
    REMOTE_ID_FIELD,
    PushResult,
    StateDocument,
    SyncStatus,
    coerce_timestamp,
    is_older,
)

logger = logging.getLogger(__name__)

# Timeouts
DEFAULT_TIMEOUT = 30.0

SQL_PATH = "/sql"

T = TypeVar("T")


class RemoteSyncClient:
    """Reads and writes the shared state document in the remote store."""

    def __init__(
        self,
        endpoint: Optional[RemoteEndpoint],
        *,
        reporter: Optional[StatusReporterProtocol] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._endpoint = endpoint
        self._reporter = reporter
        self._transport = transport
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _require_endpoint(self) -> RemoteEndpoint:
        if self._endpoint is None:
            raise SyncConfigError("Remote sync is enabled but no endpoint is configured")
        self._endpoint.validate()
        return self._endpoint

    def build_query(self, statement: str) -> str:
        """Prefix statement with the namespace/database selection.

        Raises:
            SyncConfigError: if the endpoint or credentials are unusable
        """
        endpoint = self._require_endpoint()
        return f"USE NS {endpoint.namespace} DB {endpoint.database}; {statement}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            endpoint = self._require_endpoint()
            self._client = httpx.AsyncClient(
                base_url=endpoint.url.rstrip("/"),
                auth=httpx.BasicAuth(endpoint.username, endpoint.password),
                headers={"Accept": "application/json"},
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def execute(self, statement: str) -> Optional[dict]:
        """POST a statement and return the first row of its result.

        Returns None when the statement matched nothing.

        Raises:
            SyncConfigError: endpoint or credentials missing/invalid
            RemoteQueryError: transport failure, non-success status,
                malformed payload, or an error reported by the store
        """
        query = self.build_query(statement)
        client = self._get_client()
        try:
            resp = await client.post(SQL_PATH, content=query.encode("utf-8"))
        except httpx.HTTPError as e:
            raise RemoteQueryError(f"Request to remote store failed: {e}") from e

        if not resp.is_success:
            raise RemoteQueryError(
                f"Remote store returned {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
            )
        try:
            payload = resp.json()
        except ValueError as e:
            raise RemoteQueryError(f"Remote store returned invalid JSON: {e}") from e

        return _statement_result(payload)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def _reported(self, label: str, op: Callable[[], Awaitable[T]]) -> T:
        """Run op, reporting pending and then success or failure."""
        self._report(SyncStatus.PENDING, label)
        try:
            result = await op()
        except RemoteSyncError as e:
            logger.error("Remote %s failed: %s", label, e)
            self._report(SyncStatus.FAILURE, str(e))
            raise
        self._report(SyncStatus.SUCCESS, label)
        return result

    def _report(self, status: SyncStatus, detail: Optional[str]) -> None:
        if self._reporter is not None:
            self._reporter.report(status, detail)

    async def _remote_updated(self) -> Optional[str]:
        row = await self.execute(f"SELECT {LAST_UPDATED} FROM {self._record()};")
        if not row:
            return None
        return row.get(LAST_UPDATED)

    def _record(self) -> str:
        return self._require_endpoint().record

    async def get_remote_updated(self) -> Optional[str]:
        """Read the remote document's lastUpdated (None if there is none)."""
        return await self._reported("get", self._remote_updated)

    async def fetch(self) -> Optional[StateDocument]:
        """Read the whole remote document, minus its server-assigned id."""
        async def op():
            row = await self.execute(f"SELECT * FROM {self._record()};")
            return strip_remote_id(row) if row else None
        return await self._reported("fetch", op)

    async def push(
        self,
        document: StateDocument,
        since: Optional[str],
        *,
        force: bool = False,
    ) -> PushResult:
        """
        Write document to the remote store unless the remote copy is newer.

        The remote lastUpdated is re-read first. The push is skipped when
        since is absent, the remote has no timestamp, or since predates the
        remote timestamp. Skipped changes are not retried. force=True
        writes regardless, e.g. to seed an empty remote.
        """
        async def op() -> PushResult:
            remote_updated = await self._remote_updated()
            if not force and (
                coerce_timestamp(since) is None
                or coerce_timestamp(remote_updated) is None
                or is_older(since, remote_updated)
            ):
                logger.info(
                    "Not saving remote state: remote is newer (%s < %s)",
                    since, remote_updated,
                )
                return PushResult(written=False, since=since, remote_updated=remote_updated)

            logger.info("Saving remote state (lastUpdated=%s)", since)
            await self.execute(upsert_statement(self._record(), document))
            return PushResult(written=True, since=since, remote_updated=remote_updated)

        return await self._reported("push", op)

    async def pull(self, since: Optional[str]) -> Optional[StateDocument]:
        """
        Return the remote document if it is newer than since.

        Returns None when the remote is empty or the local copy is not
        older. An absent since always takes the remote copy.
        """
        async def op() -> Optional[StateDocument]:
            remote_updated = await self._remote_updated()
            if coerce_timestamp(remote_updated) is None:
                logger.info("Remote state is empty")
                return None
            if coerce_timestamp(since) is not None and not is_older(since, remote_updated):
                logger.info("Local state is newer: %s >= %s", since, remote_updated)
                return None
            logger.info("Remote state is newer: %s < %s", since, remote_updated)
            row = await self.execute(f"SELECT * FROM {self._record()};")
            return strip_remote_id(row) if row else None

        return await self._reported("pull", op)

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def _statement_result(payload: Any) -> Optional[dict]:
    """Extract the first row of the second statement's result."""
    if not isinstance(payload, list) or len(payload) < 2:
        raise RemoteQueryError(f"Unexpected response shape from remote store: {payload!r:.200}")
    entry = payload[1]
    if not isinstance(entry, dict):
        raise RemoteQueryError(f"Unexpected statement result: {entry!r:.200}")
    if entry.get("status", "OK") != "OK":
        raise RemoteQueryError(f"Remote query failed: {entry.get('result') or entry.get('detail')}")
    result = entry.get("result")
    if isinstance(result, list):
        result = result[0] if result else None
    if result is None:
        return None
    if not isinstance(result, dict):
        raise RemoteQueryError(f"Unexpected result row: {result!r:.200}")
    return result


def strip_remote_id(row: dict) -> StateDocument:
    """Copy of a remote row without the server-assigned identifier."""
    doc = dict(row)
    doc.pop(REMOTE_ID_FIELD, None)
    return doc


def upsert_statement(record: str, document: StateDocument) -> str:
    """UPSERT ... MERGE statement writing every document field."""
    body = {k: v for k, v in document.items() if k != REMOTE_ID_FIELD}
    fields = json.dumps(body, ensure_ascii=False)[1:-1]
    parts = [fields] if fields else []
    parts.append("created_at: time::now()")
    return f"UPSERT {record} MERGE {{{', '.join(parts)}}};"
