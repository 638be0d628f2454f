"""
Unit tests for the per-record pipeline
"""

import pytest
from datetime import datetime
from ingestion.transformers.record_processor import ClinicRecordProcessor, missing_required_fields
from models.base import ClinicPackage, ClinicStatus, QualityTag

NOW = datetime(2024, 1, 15, 10, 30)


class FakeStore:
    """Slug bookkeeping only"""

    def __init__(self, taken=()):
        self.taken = set(taken)
        self.reserved = set()
        self.released = []

    async def slug_exists(self, slug):
        return slug in self.taken or slug in self.reserved

    def reserve_slug(self, slug):
        self.reserved.add(slug)

    def release_slug(self, slug):
        self.reserved.discard(slug)
        self.released.append(slug)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def processor(store, geocoder, verifier):
    return ClinicRecordProcessor(store, geocoder, verifier, clock=lambda: NOW)


class TestRequiredFields:
    """Structural validation"""

    def test_missing_required_fields(self):
        assert missing_required_fields({"name": "A", "city": " ", "state": None}) == ["city", "state"]
        assert missing_required_fields({"name": "A", "city": "B", "state": "C"}) == []

    @pytest.mark.asyncio
    async def test_missing_state_fails_without_network_calls(self, processor, geocoder, verifier, clinic_record):
        del clinic_record["state"]

        result = await processor.process(clinic_record, "csv-upload")

        assert result.success is False
        assert result.data is None
        assert result.error == "Missing required fields: state"
        assert geocoder.calls == []
        assert verifier.calls == []

    @pytest.mark.asyncio
    async def test_lists_every_missing_field(self, processor):
        result = await processor.process({"name": "", "city": "  ", "state": "TX"}, "manual")
        assert result.error == "Missing required fields: name, city"

    @pytest.mark.asyncio
    async def test_no_slug_reserved_for_failed_record(self, processor, store):
        await processor.process({"name": "A"}, "manual")
        assert store.reserved == set()


class TestProcessRecord:
    """Normalization, enrichment and tagging"""

    @pytest.mark.asyncio
    async def test_complete_record(self, processor, store, geocoder, verifier, clinic_record):
        result = await processor.process(clinic_record, "csv-upload")

        assert result.success is True
        assert result.error is None
        clinic = result.data
        assert clinic.slug == "premium-mens-health-clinic-austin-tx"
        assert clinic.phone == "(512) 555-1234"
        assert clinic.website == "https://premium-mens-health.com/"
        assert clinic.services == ["TRT", "ED Treatment", "Weight Management"]
        assert clinic.country == "USA"
        assert (clinic.lat, clinic.lng) == (geocoder.lat, geocoder.lng)
        assert clinic.tags == [QualityTag.WEBSITE_OK.value]
        assert clinic.validation_status.website_ok is True
        assert clinic.validation_status.verified is False
        assert clinic.validation_status.method == "auto"
        assert clinic.traffic_meta.total_clicks == 0
        assert clinic.tier == ClinicPackage.BASIC
        assert clinic.status == ClinicStatus.ACTIVE
        assert clinic.import_source == "csv-upload"
        assert clinic.created_at == clinic.last_updated == NOW

        assert geocoder.calls == [("123 Main St", "Austin", "TX", "78701")]
        assert verifier.calls == ["https://premium-mens-health.com/"]
        assert store.reserved == {clinic.slug}

    @pytest.mark.asyncio
    async def test_stored_validation_status_uses_website_ok_key(self, processor, clinic_record):
        result = await processor.process(clinic_record, "csv-upload")
        record = result.data.to_record()
        assert record["validation_status"] == {"verified": False, "method": "auto", "websiteOK": True}
        assert record["traffic_meta"]["totalClicks"] == 0

    @pytest.mark.asyncio
    async def test_geocode_miss_is_soft(self, processor, geocoder, clinic_record):
        geocoder.misses.add("123 Main St")

        result = await processor.process(clinic_record, "manual")

        assert result.success is True
        assert result.data.lat is None and result.data.lng is None
        assert QualityTag.GEO_MISMATCH.value in result.data.tags

    @pytest.mark.asyncio
    async def test_missing_address(self, processor, geocoder, clinic_record):
        clinic_record["address"] = ""

        result = await processor.process(clinic_record, "manual")

        assert result.success is True
        assert geocoder.calls == []
        assert QualityTag.MISSING_ADDRESS.value in result.data.tags
        assert QualityTag.GEO_MISMATCH.value not in result.data.tags
        assert QualityTag.INCOMPLETE_DATA.value in result.data.tags

    @pytest.mark.asyncio
    async def test_website_down(self, processor, verifier, clinic_record):
        verifier.down.add("https://premium-mens-health.com/")

        result = await processor.process(clinic_record, "manual")

        assert result.success is True
        assert result.data.tags == [QualityTag.WEBSITE_DOWN.value]
        assert result.data.validation_status.website_ok is False

    @pytest.mark.asyncio
    async def test_missing_website(self, processor, verifier, clinic_record):
        del clinic_record["website"]

        result = await processor.process(clinic_record, "manual")

        assert verifier.calls == []
        assert result.data.website == ""
        assert result.data.tags == [QualityTag.MISSING_WEBSITE.value]

    @pytest.mark.asyncio
    async def test_missing_services_and_phone(self, processor, clinic_record):
        clinic_record["services"] = " ; "
        clinic_record["phone"] = ""

        result = await processor.process(clinic_record, "manual")

        assert QualityTag.MISSING_SERVICES.value in result.data.tags
        assert QualityTag.INCOMPLETE_DATA.value in result.data.tags

    @pytest.mark.asyncio
    async def test_malformed_phone_preserved(self, processor, clinic_record):
        clinic_record["phone"] = "call us"
        result = await processor.process(clinic_record, "manual")
        assert result.data.phone == "call us"

    @pytest.mark.asyncio
    async def test_input_tags_reconciled_with_checks(self, processor, clinic_record):
        clinic_record["tags"] = "featured; website-down"

        result = await processor.process(clinic_record, "manual")

        assert result.data.tags == ["featured", QualityTag.WEBSITE_OK.value]

    @pytest.mark.asyncio
    async def test_tier_and_package(self, processor, clinic_record):
        clinic_record["tier"] = "Premium"
        result = await processor.process(clinic_record, "manual")
        assert result.data.tier == ClinicPackage.PREMIUM
        assert result.data.package == ClinicPackage.PREMIUM

        clinic_record["tier"] = "gold"
        result = await processor.process(clinic_record, "manual")
        assert result.data.tier == ClinicPackage.BASIC

    @pytest.mark.asyncio
    async def test_taken_slug_gets_suffix(self, geocoder, verifier, clinic_record):
        store = FakeStore(taken={"premium-mens-health-clinic-austin-tx"})
        processor = ClinicRecordProcessor(store, geocoder, verifier, clock=lambda: NOW)

        first = await processor.process(clinic_record, "manual")
        second = await processor.process(clinic_record, "manual")

        assert first.data.slug == "premium-mens-health-clinic-austin-tx-1"
        assert second.data.slug == "premium-mens-health-clinic-austin-tx-2"

    @pytest.mark.asyncio
    async def test_unsluggable_name_fails(self, processor):
        result = await processor.process({"name": "★★", "city": "★", "state": "★"}, "manual")
        assert result.success is False
        assert "slug" in result.error

    @pytest.mark.asyncio
    async def test_invalid_record_releases_slug(self, processor, store, clinic_record):
        clinic_record["state"] = "T" * 101

        result = await processor.process(clinic_record, "manual")

        assert result.success is False
        assert result.error.startswith("Invalid record:")
        assert "state" in result.error
        assert store.reserved == set()
        assert len(store.released) == 1
