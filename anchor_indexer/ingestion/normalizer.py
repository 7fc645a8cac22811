"""
Legacy field normalization.

Already-committed remote records cannot be rewritten, so every historical
encoding of a field persists indefinitely. These helpers fold each encoding
into one canonical form:

- Coordinates: current embedded ``geo`` object vs. legacy ``coordinates``
  object. ``geo`` wins when both are present.
- Numbers: native numbers vs. numeric strings. Both parse; anything
  non-finite is rejected, never stored.
- Address: current embedded ``address`` object vs. legacy ``addressRef``
  pointer (URI + content hash) that needs a follow-up fetch.

All helpers raise ``RecordRejected`` with a short machine-readable reason.
"""

import math
from datetime import datetime, timezone
from typing import Any

from anchor_indexer.errors import RecordRejected
from anchor_indexer.ingestion.schemas import AddressFields, AddressPointer


def clean_str(value: Any) -> str | None:
    """Return a stripped non-empty string, or None."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def parse_coordinate(value: Any) -> float:
    """
    Parse a coordinate that may be a native number or a numeric string.

    Raises:
        RecordRejected: Missing, non-numeric, or non-finite value
    """
    if value is None:
        raise RecordRejected("missing_coordinate")

    # bool is an int subclass; a boolean coordinate is schema garbage
    if isinstance(value, bool):
        raise RecordRejected("non_numeric_coordinate")

    if isinstance(value, (int, float)):
        try:
            result = float(value)
        except OverflowError:
            # JSON integers are unbounded; past float range they are not finite
            raise RecordRejected("non_finite_coordinate") from None
    elif isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError:
            raise RecordRejected("non_numeric_coordinate") from None
    else:
        raise RecordRejected("non_numeric_coordinate")

    if not math.isfinite(result):
        raise RecordRejected("non_finite_coordinate")
    return result


def parse_lat_lng(container: Any) -> tuple[float, float]:
    """Parse a ``{latitude, longitude}`` object and check bounds."""
    if not isinstance(container, dict):
        raise RecordRejected("missing_geolocation")

    latitude = parse_coordinate(container.get("latitude"))
    longitude = parse_coordinate(container.get("longitude"))

    if not -90.0 <= latitude <= 90.0 or not -180.0 <= longitude <= 180.0:
        raise RecordRejected("coordinates_out_of_range")
    return latitude, longitude


def normalize_coordinates(value: dict[str, Any]) -> tuple[float, float]:
    """
    Reconcile the ``geo`` and legacy ``coordinates`` encodings.

    Returns:
        (latitude, longitude)
    """
    geo = value.get("geo")
    if isinstance(geo, dict):
        return parse_lat_lng(geo)

    legacy = value.get("coordinates")
    if isinstance(legacy, dict):
        return parse_lat_lng(legacy)

    raise RecordRejected("missing_geolocation")


def address_from_object(raw: Any, name: Any = None) -> AddressFields | None:
    """Build AddressFields from an embedded address-like object."""
    raw = raw if isinstance(raw, dict) else {}
    fields = AddressFields(
        name=clean_str(name) or clean_str(raw.get("name")),
        street=clean_str(raw.get("street")),
        locality=clean_str(raw.get("locality")),
        region=clean_str(raw.get("region")),
        country=clean_str(raw.get("country")),
        postal_code=clean_str(raw.get("postalCode")),
    )
    return None if fields.is_empty() else fields


def normalize_address(value: dict[str, Any]) -> tuple[AddressFields | None, AddressPointer | None]:
    """
    Reconcile the embedded ``address`` and legacy ``addressRef`` encodings.

    Returns:
        (embedded address or None, pointer or None). The pointer is returned
        even alongside an embedded address so the check-in keeps its
        provenance.
    """
    embedded = address_from_object(value["address"]) if isinstance(value.get("address"), dict) else None

    pointer = None
    ref = value.get("addressRef")
    if isinstance(ref, dict) and clean_str(ref.get("uri")):
        pointer = AddressPointer(uri=ref["uri"].strip(), cid=clean_str(ref.get("cid")))

    return embedded, pointer


def parse_created_at(value: Any) -> datetime:
    """
    Parse an ISO-8601 ``createdAt`` timestamp into an aware datetime.

    Raises:
        RecordRejected: Missing or unparseable timestamp
    """
    if not isinstance(value, str) or not value.strip():
        raise RecordRejected("missing_created_at")

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise RecordRejected("invalid_created_at") from None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
