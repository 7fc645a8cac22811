"""
Endpoint resolution: DID -> current hosting-server URL.

Well-known hosts resolve from configuration without a network call. Other
DIDs are resolved by fetching their DID document (``did:plc`` from the PLC
directory, ``did:web`` from the host's well-known path) and extracting the
service entry tagged as the repo-hosting endpoint.

Any failure surfaces as ``HostingServerNotFound`` (or its parent
``ResolutionFailure`` for transport problems). Callers treat both as
"skip this repo this cycle".
"""

from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote

import structlog

from anchor_indexer.config.settings import get_settings
from anchor_indexer.errors import (
    HostingServerNotFound,
    HTTPClientError,
    RemoteClientError,
    RemoteNotFoundError,
    ResolutionFailure,
    TransientRemoteError,
)
from anchor_indexer.ingestion.http_client import XrpcClient

logger = structlog.get_logger(__name__)

PDS_SERVICE_FRAGMENT = "#atproto_pds"
PDS_SERVICE_TYPE = "AtprotoPersonalDataServer"


@dataclass(frozen=True)
class AtUri:
    """Parsed ``at://<did>/<collection>/<rkey>`` record URI."""

    did: str
    collection: str
    rkey: str

    def __str__(self) -> str:
        return f"at://{self.did}/{self.collection}/{self.rkey}"


def parse_at_uri(uri: str) -> AtUri:
    """
    Split a record URI into repo DID, collection and record key.

    Raises:
        ValueError: If the URI is not a three-segment at:// URI
    """
    if not isinstance(uri, str) or not uri.startswith("at://"):
        raise ValueError(f"Not an at:// URI: {uri!r}")

    parts = uri[len("at://"):].split("/")
    if len(parts) != 3 or not all(parts):
        raise ValueError(f"Invalid record URI: {uri!r}")

    return AtUri(did=parts[0], collection=parts[1], rkey=parts[2])


def extract_hosting_endpoint(did: str, document: Any) -> str:
    """
    Find the repo-hosting service endpoint in a DID document.

    Raises:
        HostingServerNotFound: Document malformed or entry missing
    """
    if not isinstance(document, dict):
        raise HostingServerNotFound(did, "malformed DID document")

    services = document.get("service")
    if not isinstance(services, list):
        raise HostingServerNotFound(did, "DID document has no service list")

    for service in services:
        if not isinstance(service, dict):
            continue
        service_id = service.get("id")
        if not isinstance(service_id, str) or not service_id.endswith(PDS_SERVICE_FRAGMENT):
            continue
        if service.get("type") not in (None, PDS_SERVICE_TYPE):
            continue
        endpoint = service.get("serviceEndpoint")
        if isinstance(endpoint, str) and endpoint.startswith(("https://", "http://")):
            return endpoint.rstrip("/")

    raise HostingServerNotFound(did, "no repo-hosting service entry")


class EndpointResolver:
    """
    Resolve DIDs to the hosting server currently holding their repo.

    Usage:
        async with XrpcClient() as client:
            resolver = EndpointResolver(client)
            url = await resolver.resolve_hosting_server("did:plc:abc123")
    """

    def __init__(
        self,
        client: XrpcClient,
        directory_url: str | None = None,
        well_known_hosts: dict[str, str] | None = None,
    ):
        settings = get_settings()
        self._client = client
        self._directory_url = (directory_url or settings.plc_directory_url).rstrip("/")
        self._well_known_hosts = (
            well_known_hosts if well_known_hosts is not None else settings.well_known_hosts
        )

    def _document_url(self, did: str) -> str:
        if did.startswith("did:plc:"):
            return f"{self._directory_url}/{did}"

        if did.startswith("did:web:"):
            segments = did[len("did:web:"):].split(":")
            host = unquote(segments[0])
            if not host or "/" in host:
                raise HostingServerNotFound(did, "invalid did:web host")
            if len(segments) > 1:
                path = "/".join(unquote(s) for s in segments[1:])
                return f"https://{host}/{path}/did.json"
            return f"https://{host}/.well-known/did.json"

        raise HostingServerNotFound(did, "unsupported DID method")

    async def resolve_hosting_server(self, did: str) -> str:
        """
        Resolve a DID to its hosting-server URL.

        Raises:
            HostingServerNotFound: 404, malformed document or missing entry
            ResolutionFailure: Directory unreachable
        """
        for fragment, url in self._well_known_hosts.items():
            if fragment in did:
                return url.rstrip("/")

        url = self._document_url(did)

        try:
            document = await self._client.get_json(url, label="resolve_did")
        except (RemoteNotFoundError, RemoteClientError) as e:
            raise HostingServerNotFound(did, f"directory returned {e.status_code}") from e
        except TransientRemoteError as e:
            raise ResolutionFailure(
                f"Directory lookup for {did} failed: {e}",
                status_code=e.status_code,
            ) from e
        except HTTPClientError as e:
            raise HostingServerNotFound(did, "malformed DID document") from e

        endpoint = extract_hosting_endpoint(did, document)
        logger.debug("Resolved hosting server", did=did, server=endpoint)
        return endpoint
