"""Tests for the lexicon adapter registry."""

import copy

import pytest

from anchor_indexer.errors import RecordRejected
from anchor_indexer.ingestion.adapters import (
    ANCHOR_CHECKIN,
    BEACONBITS_BEACON,
    CHECKIN_ADAPTERS,
    AdapterDescriptor,
    AdapterRegistry,
    transform_anchor_checkin,
)
from anchor_indexer.ingestion.schemas import SourceLexicon

from tests.conftest import AUTHOR_DID, SERVER_URL


@pytest.fixture
def registry():
    return AdapterRegistry()


class TestAnchorTransform:
    def test_current_encoding(self, registry, anchor_record):
        checkin = registry.transform(anchor_record, AUTHOR_DID, SERVER_URL)

        assert checkin is not None
        assert checkin.id == "3kcoffee"
        assert checkin.uri == anchor_record["uri"]
        assert checkin.author_did == AUTHOR_DID
        assert checkin.text == "Morning coffee"
        assert checkin.latitude == 40.7128
        assert checkin.longitude == -74.006
        assert checkin.venue_name == "Blue Bottle"
        assert checkin.address_street == "1 Main St"
        assert checkin.address_postal_code == "10001"
        assert checkin.category == "cafe"
        assert checkin.category_group == "food_and_drink"
        assert checkin.category_icon == "coffee"
        assert checkin.source_lexicon == SourceLexicon.ANCHOR
        assert checkin.address_ref_uri is None

    def test_legacy_encoding(self, registry, legacy_anchor_record):
        checkin = registry.transform(legacy_anchor_record, AUTHOR_DID, SERVER_URL)

        assert checkin.latitude == 51.5
        assert checkin.longitude == -0.12
        assert not checkin.has_address
        assert checkin.address_pointer.uri.endswith("/pub1")
        assert checkin.address_ref_cid == "bafyreiaddress"

    def test_numeric_string_and_number_store_same_latitude(self, registry, anchor_record):
        as_number = copy.deepcopy(anchor_record)
        as_number["value"]["geo"] = {"latitude": 40.7128, "longitude": -74.006}

        from_string = registry.transform(anchor_record, AUTHOR_DID, SERVER_URL)
        from_number = registry.transform(as_number, AUTHOR_DID, SERVER_URL)

        assert from_string.latitude == from_number.latitude
        assert from_string.longitude == from_number.longitude

    def test_non_numeric_latitude_rejected(self, registry, anchor_record):
        anchor_record["value"]["geo"]["latitude"] = "not-a-number"

        assert registry.transform(anchor_record, AUTHOR_DID, SERVER_URL) is None
        assert registry.stats.rejected_by_reason["non_numeric_coordinate"] == 1

    def test_nan_latitude_rejected(self, registry, anchor_record):
        anchor_record["value"]["geo"]["latitude"] = "NaN"

        assert registry.transform(anchor_record, AUTHOR_DID, SERVER_URL) is None
        assert registry.stats.rejected_by_reason["non_finite_coordinate"] == 1

    def test_huge_integer_latitude_rejected(self, registry, anchor_record):
        anchor_record["value"]["geo"]["latitude"] = 10**400

        assert registry.transform(anchor_record, AUTHOR_DID, SERVER_URL) is None
        assert registry.stats.rejected_by_reason["non_finite_coordinate"] == 1

    def test_image_and_place_id_ignored(self, registry, anchor_record):
        anchor_record["value"]["image"] = {
            "thumb": {"$type": "blob", "ref": {"$link": "bafkreithumb"}, "mimeType": "image/jpeg"},
            "fullsize": {"$type": "blob", "ref": {"$link": "bafkreifull"}, "mimeType": "image/jpeg"},
            "alt": "Latte art",
        }
        anchor_record["value"]["fsq"] = {"fsqPlaceId": "4b0588f1f964a520"}

        checkin = registry.transform(anchor_record, AUTHOR_DID, SERVER_URL)

        assert checkin is not None
        dumped = checkin.model_dump()
        assert "image" not in dumped
        assert "fsq" not in dumped
        assert "bafkreithumb" not in str(dumped)

    def test_missing_text_defaults_to_empty(self, registry, anchor_record):
        del anchor_record["value"]["text"]
        assert registry.transform(anchor_record, AUTHOR_DID, SERVER_URL).text == ""

    def test_private_anchor_rejected(self, registry, anchor_record):
        anchor_record["value"]["visibility"] = "followers"
        assert registry.transform(anchor_record, AUTHOR_DID, SERVER_URL) is None


class TestBeaconTransform:
    def test_public_beacon(self, registry, beacon_record):
        checkin = registry.transform(beacon_record, AUTHOR_DID, SERVER_URL)

        assert checkin.text == "Great tacos"
        assert checkin.venue_name == "Taco Stand"
        assert checkin.category == "restaurant"
        assert checkin.address_locality == "Los Angeles"
        assert checkin.latitude == 34.05
        assert checkin.source_lexicon == SourceLexicon.BEACONBITS

    def test_private_beacon_never_reaches_store(self, registry, beacon_record):
        beacon_record["value"]["visibility"] = "private"

        assert registry.transform(beacon_record, AUTHOR_DID, SERVER_URL) is None
        assert registry.stats.rejected == 1
        assert registry.stats.rejected_by_reason["not_public"] == 1

    def test_missing_location_rejected(self, registry, beacon_record):
        del beacon_record["value"]["location"]
        assert registry.transform(beacon_record, AUTHOR_DID, SERVER_URL) is None
        assert registry.stats.rejected_by_reason["missing_geolocation"] == 1


class TestEnvelopeValidation:
    def test_author_mismatch(self, registry, anchor_record):
        assert registry.transform(anchor_record, "did:plc:mallory", SERVER_URL) is None
        assert registry.stats.rejected_by_reason["author_mismatch"] == 1

    def test_invalid_uri(self, registry, anchor_record):
        anchor_record["uri"] = "https://example.com/not-a-record"
        assert registry.transform(anchor_record, AUTHOR_DID, SERVER_URL) is None
        assert registry.stats.rejected_by_reason["invalid_uri"] == 1

    def test_missing_value(self, registry):
        record = {"uri": f"at://{AUTHOR_DID}/{ANCHOR_CHECKIN}/x"}
        assert registry.transform(record, AUTHOR_DID, SERVER_URL) is None
        assert registry.stats.rejected_by_reason["missing_value"] == 1

    def test_bad_created_at(self, registry, anchor_record):
        anchor_record["value"]["createdAt"] = "last tuesday"
        assert registry.transform(anchor_record, AUTHOR_DID, SERVER_URL) is None
        assert registry.stats.rejected_by_reason["invalid_created_at"] == 1


class TestDispatch:
    def test_schema_ids_in_fixed_order(self, registry):
        assert registry.schema_ids == [ANCHOR_CHECKIN, BEACONBITS_BEACON]

    def test_tag_wins_over_shape(self, registry, anchor_record):
        # Anchor-shaped body tagged as a beacon goes to the beacon transform
        anchor_record["value"]["$type"] = BEACONBITS_BEACON
        assert registry.select(anchor_record).schema_id == BEACONBITS_BEACON

    def test_unsupported_tag_rejected(self, registry, anchor_record):
        anchor_record["value"]["$type"] = "app.example.unknown"

        with pytest.raises(RecordRejected) as exc_info:
            registry.select(anchor_record)
        assert exc_info.value.reason == "unsupported_lexicon"

    def test_collection_hint_for_tagless_record(self, registry, beacon_record):
        del beacon_record["value"]["$type"]
        descriptor = registry.select(beacon_record, collection=BEACONBITS_BEACON)
        assert descriptor.schema_id == BEACONBITS_BEACON

    def test_ordered_fallback_for_tagless_record(self, registry, legacy_anchor_record, beacon_record):
        del legacy_anchor_record["value"]["$type"]
        del beacon_record["value"]["$type"]

        assert registry.select(legacy_anchor_record).schema_id == ANCHOR_CHECKIN
        assert registry.select(beacon_record).schema_id == BEACONBITS_BEACON

    def test_unrecognized_tagless_record(self, registry):
        record = {"uri": f"at://{AUTHOR_DID}/x.y.z/1", "value": {"text": "hello"}}
        assert registry.transform(record, AUTHOR_DID, SERVER_URL) is None
        assert registry.stats.rejected_by_reason["unrecognized_record"] == 1

    def test_accepted_counter(self, registry, anchor_record, beacon_record):
        registry.transform(anchor_record, AUTHOR_DID, SERVER_URL)
        registry.transform(beacon_record, AUTHOR_DID, SERVER_URL)
        assert registry.stats.accepted == 2
        assert registry.stats.rejected == 0

    def test_new_lexicon_is_additive(self, anchor_record):
        extra = AdapterDescriptor(
            schema_id="app.example.visit",
            transform=transform_anchor_checkin,
            source_tag=SourceLexicon.ANCHOR,
        )
        registry = AdapterRegistry(CHECKIN_ADAPTERS + (extra,))

        anchor_record["value"]["$type"] = "app.example.visit"
        assert registry.schema_ids[-1] == "app.example.visit"
        assert registry.transform(anchor_record, AUTHOR_DID, SERVER_URL) is not None

    def test_duplicate_schema_id_rejected(self):
        with pytest.raises(ValueError):
            AdapterRegistry(CHECKIN_ADAPTERS + (CHECKIN_ADAPTERS[0],))
