"""
Duplicate detection against existing clinics, and field-level merging.

Strategies run in order and the first hit wins:

    1. exact name + zip                         0.90
    2. exact address + city + state             0.85
    3. exact phone (at least 10 digits)         0.80
    4. same city/state, similar name            ratio * 0.9
    5. same city/state, within proximity and
       2 of the first 3 name words equal        0.70

A match is flagged when its confidence reaches the configured threshold.
"""

from typing import Any, Collection, Dict, Iterable, Optional, Sequence
from difflib import SequenceMatcher
import math
import re
import logging

from core.config import settings
from ingestion.transformers.normalizer import split_services
from ingestion.transformers.tagging import merge_tags, without_dimension
from schemas.clinic import ClinicCreate
from schemas.imports import DuplicateMatch

logger = logging.getLogger(__name__)

NAME_SIMILARITY_MIN_RATIO = 0.85
EARTH_RADIUS_MILES = 3958.8

# Never changed by a merge
IMMUTABLE_FIELDS = ("id", "slug", "created_at", "last_updated", "last_updated_by")
DEFAULT_PRESERVE_FIELDS = ("tier", "package", "status", "traffic_meta")
# validation_status keys refreshed by an incoming website check
WEBSITE_CHECK_KEYS = ("websiteOK",)


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in miles"""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * math.asin(math.sqrt(a))


def name_similarity(a: str, b: str) -> float:
    return SequenceMatcher(None, a.casefold().strip(), b.casefold().strip()).ratio()


def leading_words_match(a: str, b: str, words: int = 3, required: int = 2) -> bool:
    """At least `required` of the first `words` words are equal, position by position"""
    a_words = a.lower().split()
    b_words = b.lower().split()
    matching = sum(1 for x, y in zip(a_words[:words], b_words[:words]) if x == y)
    return matching >= required


class DuplicateDetector:
    """
    Compare a processed clinic against the store.

    Usage:
        detector = DuplicateDetector(store)
        match = await detector.find_duplicate(clinic)
        if match and detector.is_flagged(match):
            ...
    """

    def __init__(self, store, threshold: Optional[float] = None, proximity_miles: Optional[float] = None):
        self.store = store
        self.threshold = settings.DUPLICATE_CONFIDENCE_THRESHOLD if threshold is None else threshold
        self.proximity_miles = settings.DUPLICATE_PROXIMITY_MILES if proximity_miles is None else proximity_miles

    def is_flagged(self, match: Optional[DuplicateMatch]) -> bool:
        return match is not None and match.confidence >= self.threshold

    async def find_duplicate(
        self,
        clinic: ClinicCreate,
        exclude_slugs: Collection[str] = ()
    ) -> Optional[DuplicateMatch]:
        """
        Best-effort match by the strategies above, or None.

        Clinics whose slug is in exclude_slugs (created earlier in the same
        run) are never matched.
        """
        async def query(**equals):
            rows = await self.store.find_by(**equals)
            return [r for r in rows if r.slug not in exclude_slugs]

        if clinic.zip:
            rows = await query(name=clinic.name, zip=clinic.zip)
            if rows:
                return self._match(rows[0], "Exact name and zip match", 0.9)

        if clinic.address:
            rows = await query(address=clinic.address, city=clinic.city, state=clinic.state)
            if rows:
                return self._match(rows[0], "Exact address match", 0.85)

        if len(re.sub(r"\D", "", clinic.phone)) >= 10:
            rows = await query(phone=clinic.phone)
            if rows:
                return self._match(rows[0], "Phone number match", 0.8)

        nearby = await query(city=clinic.city, state=clinic.state)
        if not nearby:
            return None

        best, best_ratio = None, 0.0
        for row in nearby:
            ratio = name_similarity(clinic.name, row.name)
            if ratio > best_ratio:
                best, best_ratio = row, ratio
        if best is not None and best_ratio >= NAME_SIMILARITY_MIN_RATIO:
            return self._match(best, f"Similar name in same city ({best_ratio:.2f})", round(best_ratio * 0.9, 4))

        if clinic.lat is not None and clinic.lng is not None:
            for row in nearby:
                if row.lat is None or row.lng is None:
                    continue
                distance = haversine_miles(clinic.lat, clinic.lng, row.lat, row.lng)
                if distance < self.proximity_miles and leading_words_match(clinic.name, row.name):
                    return self._match(
                        row,
                        f"Geo proximity match ({distance:.2f} miles) with similar name",
                        0.7
                    )

        return None

    @staticmethod
    def _match(row, reason: str, confidence: float) -> DuplicateMatch:
        logger.info(f"Possible duplicate of clinic {row.id} ({row.slug}): {reason}")
        return DuplicateMatch(clinic_id=row.id, clinic=row.to_dict(), reason=reason, confidence=confidence)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def _merge_nested(current: Any, incoming: Dict[str, Any], fresh_keys: Collection[str]) -> Dict[str, Any]:
    """Incoming keys fill empty ones; fresh_keys are always taken from incoming"""
    if not isinstance(current, dict):
        return dict(incoming)
    merged = dict(current)
    for key, value in incoming.items():
        if key in fresh_keys or _is_empty(merged.get(key)):
            merged[key] = value
    return merged


def merge_clinic_fields(
    existing: Dict[str, Any],
    incoming: Dict[str, Any],
    overwrite_fields: Sequence[str] = (),
    preserve_fields: Iterable[str] = DEFAULT_PRESERVE_FIELDS,
) -> Dict[str, Any]:
    """
    Merge an incoming clinic into an existing one.

    Rules:
    - incoming values fill gaps; populated fields are kept unless listed
      in overwrite_fields, nested dict keys included (an operator's
      verified/method survive an import)
    - services and tags are unioned (tags: incoming wins within a dimension)
    - the website check (websiteOK and the website tag) is taken from the
      incoming record only when it carries a website; otherwise the
      existing check stands
    - preserve_fields and id/slug/created_at are never changed

    Returns:
        The merged field values (a new dict)
    """
    preserve = set(preserve_fields) - set(overwrite_fields)
    merged = dict(existing)
    checked_website = not _is_empty(incoming.get("website"))
    fresh_keys = WEBSITE_CHECK_KEYS if checked_website else ()

    for key, value in incoming.items():
        if value is None or key in IMMUTABLE_FIELDS or key in preserve:
            continue

        current = merged.get(key)

        if key == "services":
            merged[key] = split_services(list(current or []) + list(value or []))
        elif key == "tags":
            tags = value or []
            if not checked_website:
                tags = without_dimension(tags, "website")
            merged[key] = merge_tags(current or [], tags)
        elif isinstance(value, dict):
            merged[key] = dict(value) if key in overwrite_fields else _merge_nested(current, value, fresh_keys)
        elif key in overwrite_fields or _is_empty(current):
            merged[key] = value

    return merged


def changed_fields(existing: Dict[str, Any], merged: Dict[str, Any]) -> Dict[str, Any]:
    """Only the fields a merge actually changed"""
    return {k: v for k, v in merged.items() if k not in IMMUTABLE_FIELDS and existing.get(k) != v}
