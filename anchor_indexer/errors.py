"""
Error taxonomy for the indexer.

Upstream failures are modelled as an unreliable RPC boundary: any call may
be unreachable, return not-found, or reject the request. Only registry
consistency failures are ever surfaced to callers of the public operations;
everything else is folded into per-session counters.
"""


class IndexerError(Exception):
    """Base exception for indexer errors."""


class HTTPClientError(IndexerError):
    """Base exception for upstream RPC errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class TransientRemoteError(HTTPClientError):
    """Network failure, timeout, 429 or 5xx. Retried by the next scheduled pass only."""


class ResolutionFailure(TransientRemoteError):
    """A DID or address pointer could not be resolved."""


class HostingServerNotFound(ResolutionFailure):
    """No hosting server could be found for a DID."""

    def __init__(self, did: str, reason: str):
        super().__init__(f"No hosting server for {did}: {reason}")
        self.did = did
        self.reason = reason


class RemoteNotFoundError(HTTPClientError):
    """The upstream reported the repo, collection or record as absent."""


class RemoteClientError(HTTPClientError):
    """The upstream rejected the request (4xx other than not-found)."""


class RecordRejected(IndexerError):
    """A foreign record failed adapter validation or is not public."""

    def __init__(self, reason: str, source: str | None = None):
        super().__init__(reason)
        self.reason = reason
        self.source = source


class ConsistencyError(IndexerError):
    """A paired registry write failed; the unit of work was rolled back."""
