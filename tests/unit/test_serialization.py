"""Unit tests for the specimen wire format."""

from datetime import timedelta

from specimens import serialization
from specimens.domain.model import QualityResult, SpecimenPriority, SpecimenStatus


class TestToWire:

    def test_uses_camel_case_and_enum_values(self, make_specimen):
        specimen = make_specimen(priority=SpecimenPriority.STAT, status=SpecimenStatus.IN_RECEIPT)

        data = serialization.to_wire(specimen)

        assert data["specimenId"] == specimen.specimen_id
        assert data["status"] == "in_receipt"
        assert data["priority"] == "stat"
        assert data["specimenType"] == "blood"
        assert data["testRefs"] == ["CBC"]
        assert data["receivedByRef"] == "nurse-1"

    def test_datetimes_are_iso_strings(self, make_specimen, now):
        data = serialization.to_wire(make_specimen(status=SpecimenStatus.COLLECTED))

        assert data["actualCollectionTime"] == now.isoformat()
        assert data["expiryDate"] == (now + timedelta(days=7)).isoformat()
        assert data["receivedTime"] is None

    def test_history_is_in_order(self, make_specimen):
        data = serialization.to_wire(make_specimen(status=SpecimenStatus.PROCESSING))

        assert [e["status"] for e in data["statusHistory"]] == [
            "pending", "collected", "in_receipt", "processing",
        ]
        assert data["statusHistory"][0]["notes"] == "Sample created"

    def test_derived_fields_only_with_clock(self, make_specimen, now):
        specimen = make_specimen(status=SpecimenStatus.COLLECTED)

        assert "timeSinceCollection" not in serialization.to_wire(specimen)

        data = serialization.to_wire(specimen, now=now + timedelta(hours=1))
        assert data["timeSinceCollection"] == 3600
        assert data["processingDuration"] is None
        assert data["isOverdue"] is False


class TestFromWire:

    def test_round_trip_preserves_the_specimen(self, make_specimen, now):
        specimen = make_specimen(
            status=SpecimenStatus.COLLECTED,
            storage_temperature=4.0,
            storage_location="Fridge 2",
            collection_method="venipuncture",
            scheduled_collection_time=now - timedelta(hours=1),
        )
        specimen.record_quality_check("label", QualityResult.WARNING, "lab-1", now, "Smudged")

        restored = serialization.from_wire(serialization.to_wire(specimen, now=now))

        assert serialization.to_wire(restored, now=now) == serialization.to_wire(specimen, now=now)
        assert restored.status == SpecimenStatus.COLLECTED
        assert restored.expiry_date == specimen.expiry_date
        assert restored.status_history == specimen.status_history
        assert restored.quality_checks == specimen.quality_checks
        assert restored.storage_temperature == 4.0
        assert restored.events == []


class TestToLabel:

    def test_label_fields(self, make_specimen, now):
        specimen = make_specimen(status=SpecimenStatus.COLLECTED, priority=SpecimenPriority.URGENT)

        assert serialization.to_label(specimen) == {
            "specimenId": "SPL-2024-000001",
            "barcode": "BC-SPL-2024-000001",
            "specimenType": "blood",
            "priority": "urgent",
            "collectionDate": now.isoformat(),
        }

    def test_uncollected_specimen_shows_scheduled_time(self, make_specimen, now):
        scheduled = now + timedelta(hours=2)
        specimen = make_specimen(scheduled_collection_time=scheduled)

        assert serialization.to_label(specimen)["collectionDate"] == scheduled.isoformat()
