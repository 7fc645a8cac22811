"""
Canonical check-in schema for the indexer.

CRITICAL: This schema is what the presentation layer reads. Every lexicon
adapter MUST output this exact structure, whatever shape the foreign record
arrived in.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator


def _utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


class SourceLexicon(str, Enum):
    """Source tags for the supported check-in lexicons."""

    ANCHOR = "anchor"
    BEACONBITS = "beaconbits"


class AddressPointer(BaseModel):
    """Content-addressed reference (URI + content hash) to an address record."""

    uri: str = Field(..., min_length=1)
    cid: str | None = Field(default=None, description="Content hash of the referenced record")


class AddressFields(BaseModel):
    """Postal address components attached to a check-in."""

    name: str | None = None
    street: str | None = None
    locality: str | None = None
    region: str | None = None
    country: str | None = None
    postal_code: str | None = None

    def is_empty(self) -> bool:
        return not any(
            (self.name, self.street, self.locality, self.region, self.country, self.postal_code)
        )


class CanonicalCheckin(BaseModel):
    """
    CANONICAL CHECK-IN SCHEMA

    Upserted idempotently keyed by ``uri``. Address columns stay empty when
    the source record only carries a pointer that could not be resolved yet;
    the pointer is kept so the backfill job can fill them in later.
    """

    # Identity
    id: str = Field(..., min_length=1, description="Record key within the author's repo")
    uri: str = Field(..., min_length=1, description="at:// URI of the source record")
    author_did: str = Field(..., min_length=1)

    # Content
    text: str = Field(default="")
    created_at: datetime
    latitude: float = Field(..., ge=-90.0, le=90.0, allow_inf_nan=False)
    longitude: float = Field(..., ge=-180.0, le=180.0, allow_inf_nan=False)

    # Venue
    venue_name: str | None = None
    category: str | None = None
    category_group: str | None = None
    category_icon: str | None = None

    # Address
    address_street: str | None = None
    address_locality: str | None = None
    address_region: str | None = None
    address_country: str | None = None
    address_postal_code: str | None = None
    address_ref_uri: str | None = None
    address_ref_cid: str | None = None
    address_resolved_at: datetime | None = None

    # Provenance
    source_lexicon: SourceLexicon
    indexed_at: datetime = Field(default_factory=_utc_now)

    @field_validator("created_at", "indexed_at", "address_resolved_at")
    @classmethod
    def ensure_timezone(cls, v: datetime | None) -> datetime | None:
        """Ensure timestamps are timezone-aware (UTC)."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def address_pointer(self) -> AddressPointer | None:
        if not self.address_ref_uri:
            return None
        return AddressPointer(uri=self.address_ref_uri, cid=self.address_ref_cid)

    @property
    def has_address(self) -> bool:
        return any(
            (
                self.address_street,
                self.address_locality,
                self.address_region,
                self.address_country,
                self.address_postal_code,
            )
        )
