"""
Address cross-reference resolution.

A legacy check-in carries only a content-addressed pointer to a separate
address record. Resolving it is best-effort enrichment: every failure is
logged and reported as ``None`` so it can never fail the check-in that
holds the pointer.
"""

from typing import Any

import structlog

from anchor_indexer.config.settings import get_settings
from anchor_indexer.errors import HTTPClientError
from anchor_indexer.identity.resolver import EndpointResolver, parse_at_uri
from anchor_indexer.ingestion.http_client import XrpcClient
from anchor_indexer.ingestion.normalizer import address_from_object
from anchor_indexer.ingestion.schemas import AddressFields, AddressPointer
from anchor_indexer.observability.metrics import get_metrics

logger = structlog.get_logger(__name__)


class AddressResolver:
    """
    Resolve ``(uri, cid)`` pointers to address fields.

    Usage:
        async with XrpcClient() as client:
            resolver = AddressResolver(client, EndpointResolver(client))
            address = await resolver.resolve_address(pointer, owner_did)
    """

    def __init__(
        self,
        client: XrpcClient,
        endpoints: EndpointResolver,
        verify_content_hash: bool | None = None,
    ):
        self._client = client
        self._endpoints = endpoints
        self._verify = (
            get_settings().verify_address_content_hash
            if verify_content_hash is None
            else verify_content_hash
        )

    async def resolve_address(
        self,
        pointer: AddressPointer,
        owner_did: str,
    ) -> AddressFields | None:
        """
        Fetch the record a pointer references and extract its address.

        The record is looked up in the repo named by the pointer URI, which
        may belong to someone other than the check-in's author.

        Returns:
            AddressFields, or None when the pointer cannot be resolved
        """
        try:
            address = await self._resolve(pointer, owner_did)
        except HTTPClientError as e:
            logger.warning(
                "Address pointer unresolved",
                uri=pointer.uri,
                owner_did=owner_did,
                error_type=type(e).__name__,
                error=str(e),
            )
            address = None
        except ValueError as e:
            logger.warning("Invalid address pointer", uri=pointer.uri, error=str(e))
            address = None

        get_metrics().record_address_resolution(address is not None)
        return address

    async def _resolve(self, pointer: AddressPointer, owner_did: str) -> AddressFields | None:
        target = parse_at_uri(pointer.uri)
        repo = target.did or owner_did

        server_url = await self._endpoints.resolve_hosting_server(repo)
        body = await self._client.get_record(server_url, repo, target.collection, target.rkey)

        if self._verify and pointer.cid and body.get("cid") != pointer.cid:
            logger.warning(
                "Address record content hash mismatch",
                uri=pointer.uri,
                expected=pointer.cid,
                actual=body.get("cid"),
            )
            return None

        value: Any = body.get("value")
        if not isinstance(value, dict):
            logger.warning("Address record has no value", uri=pointer.uri)
            return None

        return address_from_object(value)
