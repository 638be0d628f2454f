"""
Per-record pipeline: validate -> normalize -> slug -> geocode -> verify -> tag.

Only the required-field check is a hard failure. Enrichment problems
(geocode miss, site down, missing fields) become quality tags and the
record still succeeds: partial data is preferred over dropped records.
"""

from typing import Any, Callable, Dict, List, Optional
from datetime import datetime
from pydantic import ValidationError
import logging

from ingestion.transformers.normalizer import normalize_phone, normalize_website, split_services, clean_text
from ingestion.transformers.slugs import create_slug, ensure_unique_slug
from ingestion.transformers.tagging import apply_tag
from models.base import ClinicPackage, ClinicStatus, QualityTag
from schemas.clinic import ClinicCreate, ValidationStatus, TrafficMeta
from schemas.imports import ImportResult

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "city", "state")
COMPLETENESS_FIELDS = ("name", "address", "city", "state", "zip", "phone")


def missing_required_fields(raw: Dict[str, Any]) -> List[str]:
    return [f for f in REQUIRED_FIELDS if not clean_text(raw.get(f))]


def _package(value: Any, default: ClinicPackage = ClinicPackage.BASIC) -> ClinicPackage:
    """Tier/package from input, falling back to the default paid tier"""
    text = clean_text(value).lower()
    try:
        return ClinicPackage(text) if text else default
    except ValueError:
        logger.warning(f"Unknown tier {value!r}, using {default.value}")
        return default


class ClinicRecordProcessor:
    """
    Turn one raw record into an ImportResult.

    Args:
        store: ClinicStore used for slug uniqueness (and reservations)
        geocoder: object with async geocode_address(address, city, state, zip)
        verifier: object with async verify(url) -> bool
        clock: returns the current server time
    """

    def __init__(self, store, geocoder, verifier, clock: Callable[[], datetime] = datetime.utcnow):
        self.store = store
        self.geocoder = geocoder
        self.verifier = verifier
        self.clock = clock

    async def process(self, raw: Dict[str, Any], source: str) -> ImportResult:
        # 1. Required fields; nothing else runs on failure
        missing = missing_required_fields(raw)
        if missing:
            return ImportResult.fail(f"Missing required fields: {', '.join(missing)}")

        # 2. Normalize
        name = clean_text(raw.get("name"))
        city = clean_text(raw.get("city"))
        state = clean_text(raw.get("state"))
        address = clean_text(raw.get("address"))
        zip_code = clean_text(raw.get("zip"))
        phone = normalize_phone(clean_text(raw.get("phone")))
        website = normalize_website(raw.get("website"))
        services = split_services(raw.get("services"))
        tier = _package(raw.get("tier") or raw.get("package"))
        package = _package(raw.get("package") or raw.get("tier"))

        tags: List[str] = []
        for tag in split_services(raw.get("tags")):
            tags = apply_tag(tags, tag)

        # 3. Slug
        base_slug = create_slug(name, city, state)
        if not base_slug:
            return ImportResult.fail(f"Could not generate slug for {name!r}")
        slug = await ensure_unique_slug(self.store, base_slug)
        self.store.reserve_slug(slug)

        # 4. Geocode
        lat = lng = None
        if address:
            coords = await self.geocoder.geocode_address(address, city, state, zip_code)
            if coords is not None:
                lat, lng = coords.lat, coords.lng
            else:
                logger.warning(f"Geocoding failed for {name} ({address}, {city}, {state})")
                tags = apply_tag(tags, QualityTag.GEO_MISMATCH)
        else:
            tags = apply_tag(tags, QualityTag.MISSING_ADDRESS)

        # 5. Website
        website_ok = False
        if website:
            website_ok = await self.verifier.verify(website)
            tags = apply_tag(tags, QualityTag.WEBSITE_OK if website_ok else QualityTag.WEBSITE_DOWN)
            if not website_ok:
                logger.warning(f"Website down for {name}: {website}")
        else:
            tags = apply_tag(tags, QualityTag.MISSING_WEBSITE)

        # 6. Completeness
        values = {"name": name, "address": address, "city": city, "state": state, "zip": zip_code, "phone": phone}
        if any(not values[f] for f in COMPLETENESS_FIELDS):
            tags = apply_tag(tags, QualityTag.INCOMPLETE_DATA)
        if not services:
            tags = apply_tag(tags, QualityTag.MISSING_SERVICES)

        # 7. Assemble
        now = self.clock()
        try:
            clinic = ClinicCreate(
                slug=slug,
                name=name,
                address=address,
                city=city,
                state=state,
                zip=zip_code,
                country=clean_text(raw.get("country")) or "USA",
                lat=lat,
                lng=lng,
                phone=phone,
                website=website,
                email=clean_text(raw.get("email")),
                services=services,
                tier=tier,
                package=package,
                status=ClinicStatus.ACTIVE,
                tags=tags,
                import_source=source,
                validation_status=ValidationStatus(verified=False, method="auto", website_ok=website_ok),
                traffic_meta=TrafficMeta(),
                created_at=now,
                last_updated=now,
            )
        except ValidationError as e:
            self.store.release_slug(slug)
            errors = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
            return ImportResult.fail(f"Invalid record: {errors}")

        return ImportResult.ok(clinic)
