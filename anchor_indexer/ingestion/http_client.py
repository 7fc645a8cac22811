"""
Upstream RPC layer for hosting servers and the DID directory.

Provides:
- ListRecordsPage: One page of a collection listing
- XrpcClient: Async client for listRecords / getRecord / directory lookups

Every request carries a fixed timeout and is attempted exactly once. Failures
are mapped onto the error taxonomy in ``anchor_indexer.errors`` so that
callers can decide at their own boundary whether to skip, count or surface
them. Retrying is left to the next scheduled crawl pass.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from anchor_indexer.config.settings import get_settings
from anchor_indexer.errors import (
    HTTPClientError,
    RemoteClientError,
    RemoteNotFoundError,
    TransientRemoteError,
)
from anchor_indexer.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

LIST_RECORDS = "com.atproto.repo.listRecords"
GET_RECORD = "com.atproto.repo.getRecord"

# XRPC error names that mean "the thing you asked for does not exist"
NOT_FOUND_ERRORS = frozenset({"RecordNotFound", "RepoNotFound", "NotFound"})

TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})


@dataclass
class ListRecordsPage:
    """One page of records from a repo collection, most recent first."""

    records: list[dict[str, Any]] = field(default_factory=list)
    cursor: str | None = None


def _xrpc_error_name(response: httpx.Response) -> str | None:
    """Extract the XRPC ``error`` field from an error body, if any."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        error = body.get("error")
        return error if isinstance(error, str) else None
    return None


class XrpcClient:
    """
    Async client for the upstream RPC boundary.

    Features:
    - Fixed per-request timeout so one unresponsive server cannot stall a batch
    - Typed errors: transient, not-found, client error
    - Context manager for proper resource cleanup

    Example:
        async with XrpcClient() as client:
            page = await client.list_records(
                "https://pds.example.com",
                repo="did:plc:abc",
                collection="app.dropanchor.checkin",
            )
    """

    def __init__(
        self,
        timeout: float | None = None,
        user_agent: str | None = None,
    ):
        """
        Initialize XRPC client.

        Args:
            timeout: Request timeout in seconds (default from settings).
            user_agent: User-Agent header (default from settings).
        """
        settings = get_settings()
        self.timeout = timeout or settings.request_timeout_seconds
        self.user_agent = user_agent or settings.user_agent
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "XrpcClient":
        """Enter async context manager, create client."""
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            headers={"User-Agent": self.user_agent, "Accept": "application/json"},
            follow_redirects=True,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager, close client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        label: str = "get",
    ) -> dict[str, Any]:
        """
        Perform a single GET and decode a JSON object body.

        Raises:
            TransientRemoteError: Timeout, connection failure, 429 or 5xx
            RemoteNotFoundError: 404 or an XRPC not-found error
            RemoteClientError: Any other 4xx
            HTTPClientError: Body is not a JSON object
        """
        if not self._client:
            raise RuntimeError("XrpcClient must be used as async context manager")

        start = time.perf_counter()
        try:
            response = await self._client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise TransientRemoteError(f"Timed out requesting {url}: {e}") from e
        except httpx.TransportError as e:
            raise TransientRemoteError(
                f"Transport error requesting {url}: {type(e).__name__}: {e}"
            ) from e
        finally:
            get_metrics().record_upstream_latency(label, time.perf_counter() - start)

        status = response.status_code
        if status in TRANSIENT_STATUSES or status >= 500:
            raise TransientRemoteError(
                f"Request to {url} failed with status {status}",
                status_code=status,
                response_body=response.text,
            )

        if status == 404 or (400 <= status < 500 and _xrpc_error_name(response) in NOT_FOUND_ERRORS):
            raise RemoteNotFoundError(
                f"Not found: {url}",
                status_code=status,
                response_body=response.text,
            )

        if status >= 400:
            raise RemoteClientError(
                f"Request to {url} rejected with status {status}",
                status_code=status,
                response_body=response.text,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise HTTPClientError(
                f"Malformed JSON from {url}",
                status_code=status,
                response_body=response.text,
            ) from e

        if not isinstance(body, dict):
            raise HTTPClientError(
                f"Expected JSON object from {url}, got {type(body).__name__}",
                status_code=status,
            )
        return body

    async def list_records(
        self,
        server_url: str,
        repo: str,
        collection: str,
        limit: int = 100,
        cursor: str | None = None,
        reverse: bool = False,
    ) -> ListRecordsPage:
        """
        List one page of records in a repo collection.

        Hosting servers return records most-recent-first unless ``reverse``
        is set.
        """
        params: dict[str, Any] = {
            "repo": repo,
            "collection": collection,
            "limit": limit,
        }
        if cursor:
            params["cursor"] = cursor
        if reverse:
            params["reverse"] = "true"

        body = await self.get_json(
            f"{server_url.rstrip('/')}/xrpc/{LIST_RECORDS}",
            params=params,
            label=LIST_RECORDS,
        )

        records = body.get("records") or []
        if not isinstance(records, list):
            raise HTTPClientError(f"Malformed listRecords payload for {repo}/{collection}")

        next_cursor = body.get("cursor")
        return ListRecordsPage(
            records=[r for r in records if isinstance(r, dict)],
            cursor=next_cursor if isinstance(next_cursor, str) and next_cursor else None,
        )

    async def get_record(
        self,
        server_url: str,
        repo: str,
        collection: str,
        rkey: str,
    ) -> dict[str, Any]:
        """Fetch one record by repo, collection and key."""
        return await self.get_json(
            f"{server_url.rstrip('/')}/xrpc/{GET_RECORD}",
            params={"repo": repo, "collection": collection, "rkey": rkey},
            label=GET_RECORD,
        )
