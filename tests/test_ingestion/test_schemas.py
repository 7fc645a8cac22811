"""Tests for canonical check-in schema."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from anchor_indexer.ingestion.schemas import CanonicalCheckin, SourceLexicon


def _checkin(**overrides) -> CanonicalCheckin:
    fields = dict(
        id="r1",
        uri="at://did:plc:a/app.dropanchor.checkin/r1",
        author_did="did:plc:a",
        created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        latitude=1.0,
        longitude=2.0,
        source_lexicon=SourceLexicon.ANCHOR,
    )
    fields.update(overrides)
    return CanonicalCheckin(**fields)


class TestCanonicalCheckin:
    def test_naive_timestamps_become_utc(self):
        checkin = _checkin(created_at=datetime(2025, 1, 1, 8, 0))
        assert checkin.created_at.tzinfo == timezone.utc

    @pytest.mark.parametrize("latitude,longitude", [(91.0, 0.0), (0.0, -181.0)])
    def test_coordinate_bounds(self, latitude, longitude):
        with pytest.raises(ValidationError):
            _checkin(latitude=latitude, longitude=longitude)

    def test_nan_not_storable(self):
        with pytest.raises(ValidationError):
            _checkin(latitude=float("nan"))

    def test_address_pointer(self):
        assert _checkin().address_pointer is None
        pointer = _checkin(address_ref_uri="at://did:plc:v/c/r", address_ref_cid="bafy").address_pointer
        assert pointer.uri == "at://did:plc:v/c/r"
        assert pointer.cid == "bafy"

    def test_has_address(self):
        assert not _checkin(venue_name="Somewhere").has_address
        assert _checkin(address_locality="Oslo").has_address
