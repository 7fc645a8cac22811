"""
Lexicon adapter registry.

Different applications define different record lexicons for the same
concept. Each supported lexicon is one ``AdapterDescriptor`` in the fixed,
ordered ``CHECKIN_ADAPTERS`` table. To add a lexicon, write a transform
that maps its fields onto ``CanonicalCheckin`` and append a descriptor.

Dispatch is keyed by the schema identifier the record carries in
``value.$type`` (or the collection it was listed from). Only records with
no usable tag fall back to trying each descriptor's ``matches`` predicate
in table order.

Rejections are expected with partial foreign data: they are logged and
counted, never surfaced to the caller.
"""

from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic import ValidationError

from anchor_indexer.errors import RecordRejected
from anchor_indexer.identity.resolver import parse_at_uri
from anchor_indexer.ingestion.normalizer import (
    address_from_object,
    clean_str,
    normalize_address,
    normalize_coordinates,
    parse_created_at,
    parse_lat_lng,
)
from anchor_indexer.ingestion.schemas import CanonicalCheckin, SourceLexicon
from anchor_indexer.observability.metrics import get_metrics

logger = structlog.get_logger(__name__)

ANCHOR_CHECKIN = "app.dropanchor.checkin"
BEACONBITS_BEACON = "app.beaconbits.beacon"

TransformFn = Callable[[dict[str, Any], str, str], CanonicalCheckin]


@dataclass(frozen=True)
class AdapterDescriptor:
    """One supported lexicon: its schema id, transform and source tag."""

    schema_id: str
    transform: TransformFn
    source_tag: SourceLexicon
    matches: Callable[[dict[str, Any]], bool] | None = None


@dataclass
class AdapterStats:
    """Accept/reject counters for one registry instance."""

    accepted: int = 0
    rejected: int = 0
    rejected_by_reason: Counter = field(default_factory=Counter)


def _record_identity(record: dict[str, Any], author_did: str) -> tuple[str, str, dict[str, Any]]:
    """Validate the listing envelope and return (uri, rkey, value)."""
    uri = record.get("uri")
    try:
        parsed = parse_at_uri(uri)
    except ValueError:
        raise RecordRejected("invalid_uri") from None

    if parsed.did != author_did:
        raise RecordRejected("author_mismatch")

    value = record.get("value")
    if not isinstance(value, dict):
        raise RecordRejected("missing_value")
    return uri, parsed.rkey, value


def _require_public(value: dict[str, Any]) -> None:
    visibility = value.get("visibility")
    if visibility is not None and visibility != "public":
        raise RecordRejected("not_public")


def transform_anchor_checkin(
    record: dict[str, Any],
    author_did: str,
    hosting_server_url: str,
) -> CanonicalCheckin:
    """
    Transform an ``app.dropanchor.checkin`` record.

    The ``image`` blob references and the ``fsq`` place id are not indexed.
    """
    uri, rkey, value = _record_identity(record, author_did)
    _require_public(value)

    latitude, longitude = normalize_coordinates(value)
    address, pointer = normalize_address(value)

    return CanonicalCheckin(
        id=rkey,
        uri=uri,
        author_did=author_did,
        text=value.get("text") if isinstance(value.get("text"), str) else "",
        created_at=parse_created_at(value.get("createdAt")),
        latitude=latitude,
        longitude=longitude,
        venue_name=address.name if address else None,
        category=clean_str(value.get("category")),
        category_group=clean_str(value.get("categoryGroup")),
        category_icon=clean_str(value.get("categoryIcon")),
        address_street=address.street if address else None,
        address_locality=address.locality if address else None,
        address_region=address.region if address else None,
        address_country=address.country if address else None,
        address_postal_code=address.postal_code if address else None,
        address_ref_uri=pointer.uri if pointer else None,
        address_ref_cid=pointer.cid if pointer else None,
        source_lexicon=SourceLexicon.ANCHOR,
    )


def transform_beaconbits_beacon(
    record: dict[str, Any],
    author_did: str,
    hosting_server_url: str,
) -> CanonicalCheckin:
    """Transform an ``app.beaconbits.beacon`` record. Private beacons are rejected."""
    uri, rkey, value = _record_identity(record, author_did)
    _require_public(value)

    latitude, longitude = parse_lat_lng(value.get("location"))
    address = address_from_object(value.get("addressDetails"), name=value.get("venueName"))

    return CanonicalCheckin(
        id=rkey,
        uri=uri,
        author_did=author_did,
        text=value.get("shout") if isinstance(value.get("shout"), str) else "",
        created_at=parse_created_at(value.get("createdAt")),
        latitude=latitude,
        longitude=longitude,
        venue_name=address.name if address else None,
        category=clean_str(value.get("venueCategory")),
        address_street=address.street if address else None,
        address_locality=address.locality if address else None,
        address_region=address.region if address else None,
        address_country=address.country if address else None,
        address_postal_code=address.postal_code if address else None,
        source_lexicon=SourceLexicon.BEACONBITS,
    )


def _looks_like_anchor(value: dict[str, Any]) -> bool:
    return isinstance(value.get("geo"), dict) or isinstance(value.get("coordinates"), dict)


def _looks_like_beacon(value: dict[str, Any]) -> bool:
    return isinstance(value.get("location"), dict) and ("shout" in value or "venueName" in value)


CHECKIN_ADAPTERS: tuple[AdapterDescriptor, ...] = (
    AdapterDescriptor(
        schema_id=ANCHOR_CHECKIN,
        transform=transform_anchor_checkin,
        source_tag=SourceLexicon.ANCHOR,
        matches=_looks_like_anchor,
    ),
    AdapterDescriptor(
        schema_id=BEACONBITS_BEACON,
        transform=transform_beaconbits_beacon,
        source_tag=SourceLexicon.BEACONBITS,
        matches=_looks_like_beacon,
    ),
)


class AdapterRegistry:
    """
    Ordered schema-id -> transform table.

    Usage:
        registry = AdapterRegistry()
        for collection in registry.schema_ids:
            ...
            checkin = registry.transform(raw, did, server_url, collection=collection)
            if checkin is not None:
                await repo.upsert(checkin)
    """

    def __init__(self, descriptors: Sequence[AdapterDescriptor] = CHECKIN_ADAPTERS):
        self._descriptors = tuple(descriptors)
        self._by_schema = {d.schema_id: d for d in self._descriptors}
        if len(self._by_schema) != len(self._descriptors):
            raise ValueError("Duplicate schema id in adapter table")
        self._stats = AdapterStats()

    @property
    def schema_ids(self) -> list[str]:
        """Schema ids in dispatch order; also the collections the crawler lists."""
        return [d.schema_id for d in self._descriptors]

    @property
    def stats(self) -> AdapterStats:
        return self._stats

    def get(self, schema_id: str) -> AdapterDescriptor | None:
        return self._by_schema.get(schema_id)

    def select(self, record: dict[str, Any], collection: str | None = None) -> AdapterDescriptor:
        """
        Pick the descriptor for a raw record.

        Raises:
            RecordRejected: Record carries an unsupported tag or matches nothing
        """
        value = record.get("value")
        if not isinstance(value, dict):
            raise RecordRejected("missing_value")

        schema_id = value.get("$type")
        if isinstance(schema_id, str) and schema_id:
            descriptor = self._by_schema.get(schema_id)
            if descriptor is None:
                raise RecordRejected("unsupported_lexicon")
            return descriptor

        if collection and collection in self._by_schema:
            return self._by_schema[collection]

        for descriptor in self._descriptors:
            if descriptor.matches is not None and descriptor.matches(value):
                return descriptor

        raise RecordRejected("unrecognized_record")

    def transform(
        self,
        record: dict[str, Any],
        author_did: str,
        hosting_server_url: str,
        collection: str | None = None,
    ) -> CanonicalCheckin | None:
        """
        Convert a raw record into a canonical check-in.

        Returns:
            CanonicalCheckin, or None when the record is rejected
        """
        source = collection or "unknown"
        try:
            descriptor = self.select(record, collection)
            source = descriptor.source_tag.value
            checkin = descriptor.transform(record, author_did, hosting_server_url)
        except RecordRejected as e:
            self._reject(record, source, e.reason)
            return None
        except ValidationError:
            self._reject(record, source, "invalid_record")
            return None

        self._stats.accepted += 1
        return checkin

    def _reject(self, record: dict[str, Any], source: str, reason: str) -> None:
        self._stats.rejected += 1
        self._stats.rejected_by_reason[reason] += 1
        get_metrics().record_rejected(source, reason)
        logger.info("Record rejected", uri=record.get("uri"), source=source, reason=reason)
