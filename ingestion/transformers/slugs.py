"""
Slug generation with uniqueness enforcement against the clinic store
"""

from typing import Optional
import re
import unicodedata
import logging

logger = logging.getLogger(__name__)

_STRIPPED_CHARS = re.compile(r"[*+~.()'\"!:@]")
_NON_ALNUM_RUN = re.compile(r"[^a-z0-9]+")


def create_slug(name: Optional[str], city: Optional[str], state: Optional[str]) -> str:
    """
    Deterministic base slug from name, city and state.

    Returns "" if any part is missing or blank.

    Example:
        create_slug("Men's Health Clinic", "Austin", "TX") -> "mens-health-clinic-austin-tx"
    """
    parts = [name, city, state]
    if any(p is None or not str(p).strip() for p in parts):
        return ""

    text = " ".join(str(p).strip() for p in parts)
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    text = _STRIPPED_CHARS.sub("", text.lower())
    return _NON_ALNUM_RUN.sub("-", text).strip("-")


async def ensure_unique_slug(store, base_slug: str) -> str:
    """
    First of base_slug, base_slug-1, base_slug-2, ... not taken in the store.

    "Taken" includes slugs reserved earlier in the same run but not yet
    committed (see ClinicStore.slug_exists). Check-then-set: callers reserve
    the returned slug before looking up the next one.
    """
    if not await store.slug_exists(base_slug):
        return base_slug

    suffix = 1
    while await store.slug_exists(f"{base_slug}-{suffix}"):
        suffix += 1

    candidate = f"{base_slug}-{suffix}"
    logger.debug(f"Slug {base_slug} taken, using {candidate}")
    return candidate
