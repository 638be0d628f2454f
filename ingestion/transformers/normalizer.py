"""
Normalize raw clinic fields (phone, website, services) into canonical forms
"""

from typing import Any, List
from urllib.parse import urlsplit, urlunsplit
import re
import logging

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")
_SCHEME = re.compile(r"^https?://", re.IGNORECASE)
# mailto:, ftp://, javascript: ...; "host:8080" is a port, not a scheme
_FOREIGN_SCHEME = re.compile(r"^(?!https?:)[a-z][a-z0-9+-]*:(?!\d+(?:[/?#]|$))", re.IGNORECASE)
_SERVICE_SEPARATORS = re.compile(r"[;,]")


def normalize_phone(raw: Any) -> str:
    """
    Format a US phone number as "(XXX) XXX-XXXX".

    Keeps only digits; 10 digits are formatted directly, 11 digits with a
    leading 1 drop the country code first. Anything else is returned as
    given: a malformed phone number is preserved, not rejected.

    Examples:
        "512.555.1234"    -> "(512) 555-1234"
        "+1 512 555 1234" -> "(512) 555-1234"
        "abc"             -> "abc"
    """
    if raw is None:
        return ""
    if not isinstance(raw, str):
        raw = str(raw)

    digits = _NON_DIGITS.sub("", raw)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]

    if len(digits) == 10:
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"

    return raw


def normalize_website(raw: Any) -> str:
    """
    Canonical absolute URL for a website field.

    Prepends https:// when no http(s) scheme is present, lowercases scheme
    and host, drops userinfo and gives an empty path a trailing "/".
    A value with another scheme (mailto:, ftp://) is not a website and
    normalizes to "". Never raises: input that does not parse as a URL is
    returned trimmed and unchanged.

    Examples:
        "premium-mens-health.com" -> "https://premium-mens-health.com/"
        "HTTP://Example.com/Path" -> "http://example.com/Path"
        "mailto:info@clinic.com" -> ""
    """
    if raw is None:
        return ""
    value = str(raw).strip()
    if not value:
        return ""
    if _FOREIGN_SCHEME.match(value):
        logger.debug(f"Website dropped, not http(s): {value!r}")
        return ""

    candidate = value if _SCHEME.match(value) else f"https://{value}"

    try:
        parts = urlsplit(candidate)
        # Port access validates the netloc
        parts.port
        host = parts.hostname
        if not host or any(c.isspace() for c in candidate):
            raise ValueError(f"no host in {candidate!r}")

        netloc = parts.netloc.rsplit("@", 1)[-1]
        if netloc.startswith("["):
            # IPv6 literal, keep brackets
            netloc = netloc.lower()
        else:
            name, sep, port = netloc.partition(":")
            netloc = name.lower() + sep + port

        return urlunsplit((
            parts.scheme.lower(),
            netloc,
            parts.path or "/",
            parts.query,
            parts.fragment,
        ))
    except ValueError as e:
        logger.debug(f"Website left as-is, unparseable: {value!r} ({e})")
        return value


def split_services(raw: Any) -> List[str]:
    """
    Split a services field on ";" or "," into a de-duplicated list.

    Lists (JSON input) are accepted as-is; order of first appearance is kept.
    """
    if raw is None:
        return []

    if isinstance(raw, (list, tuple, set)):
        items = [str(item) for item in raw if item is not None]
    else:
        items = _SERVICE_SEPARATORS.split(str(raw))

    services: List[str] = []
    for item in items:
        item = item.strip()
        if item and item not in services:
            services.append(item)
    return services


def clean_text(raw: Any) -> str:
    """Trimmed string; None becomes empty"""
    if raw is None:
        return ""
    return str(raw).strip()
