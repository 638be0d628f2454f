"""
Geocoding adapter with provider fallback and rate-limit compliance.

Providers:
- GoogleGeocoder: Google Maps Geocoding API, enabled by GOOGLE_MAPS_API_KEY
- NominatimGeocoder: OpenStreetMap Nominatim, free, at most one request per
  NOMINATIM_MIN_INTERVAL_SECONDS (usage policy, enforced for every call)

Geocoder.geocode_address never raises: any provider failure moves on to the
next provider, and when none succeeds the result is None.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import httpx
from aiolimiter import AsyncLimiter
import logging

from core.config import settings
from core.exceptions import (
    GeocodingError,
    NetworkError,
    RateLimitError,
    ProviderAuthenticationError,
)
from schemas.clinic import Coordinates

logger = logging.getLogger(__name__)


def build_search_text(address: str, city: str, state: str, zip_code: str = "") -> str:
    """Free-text query, e.g. "123 Main St, Austin, TX 78701" """
    locality = " ".join(p for p in [state, zip_code] if p)
    return ", ".join(p for p in [address, city, locality] if p)


class GeocodingProvider(ABC):
    """
    One external geocoding service.

    geocode() returns Coordinates, None for zero results, and raises a
    GeocodingError subclass for transport or API failures.
    """

    name: str = ""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: Optional[float] = None):
        self.client = client
        self.timeout = timeout or settings.GEOCODE_TIMEOUT_SECONDS

    async def _get(self, url: str, params: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        try:
            if self.client is not None:
                response = await self.client.get(url, params=params, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as e:
            raise NetworkError(
                f"{self.name} geocoding request timed out",
                context={"provider": self.name, "timeout": self.timeout},
                original_exception=e
            )
        except httpx.HTTPError as e:
            raise NetworkError(
                f"{self.name} geocoding request failed",
                context={"provider": self.name},
                original_exception=e
            )

        if response.status_code in (401, 403):
            raise ProviderAuthenticationError(
                f"{self.name} rejected the request",
                context={"provider": self.name, "status_code": response.status_code}
            )
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                f"{self.name} rate limit exceeded",
                context={"provider": self.name, "status_code": 429},
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None
            )
        if response.status_code != 200:
            raise GeocodingError(
                f"{self.name} returned HTTP {response.status_code}",
                context={"provider": self.name, "status_code": response.status_code}
            )
        return response

    @staticmethod
    def _coordinates(lat: Any, lng: Any, provider: str) -> Coordinates:
        try:
            return Coordinates(lat=float(lat), lng=float(lng))
        except (TypeError, ValueError) as e:
            raise GeocodingError(
                f"{provider} returned malformed coordinates",
                context={"provider": provider, "lat": lat, "lng": lng},
                original_exception=e
            )

    @abstractmethod
    async def geocode(self, search_text: str) -> Optional[Coordinates]:
        pass


class GoogleGeocoder(GeocodingProvider):
    """Google Maps Geocoding API (primary, API-key gated)"""

    name = "google"

    def __init__(self, api_key: str, client: Optional[httpx.AsyncClient] = None, url: Optional[str] = None, **kwargs):
        super().__init__(client=client, **kwargs)
        self.api_key = api_key
        self.url = url or settings.GOOGLE_GEOCODE_URL

    async def geocode(self, search_text: str) -> Optional[Coordinates]:
        response = await self._get(self.url, params={"address": search_text, "key": self.api_key})
        data = response.json()
        status = data.get("status")

        if status == "ZERO_RESULTS":
            return None
        if status == "REQUEST_DENIED":
            raise ProviderAuthenticationError(
                "Google rejected the geocoding API key",
                context={"provider": self.name, "status": status}
            )
        if status == "OVER_QUERY_LIMIT":
            raise RateLimitError(
                "Google geocoding quota exceeded",
                context={"provider": self.name, "status": status}
            )
        if status != "OK" or not data.get("results"):
            raise GeocodingError(
                f"Google geocoding failed with status {status}",
                context={"provider": self.name, "status": status}
            )

        location = data["results"][0].get("geometry", {}).get("location", {})
        return self._coordinates(location.get("lat"), location.get("lng"), self.name)


class NominatimGeocoder(GeocodingProvider):
    """
    OpenStreetMap Nominatim (free fallback).

    Requests are spaced at least min_interval seconds apart across every
    record of a run (aiolimiter leaky bucket holding one request). A
    min_interval of 0 disables the limit.
    """

    name = "nominatim"

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        url: Optional[str] = None,
        user_agent: Optional[str] = None,
        min_interval: Optional[float] = None,
        **kwargs
    ):
        super().__init__(client=client, **kwargs)
        self.url = url or settings.NOMINATIM_URL
        self.user_agent = user_agent or settings.NOMINATIM_USER_AGENT
        self.min_interval = settings.NOMINATIM_MIN_INTERVAL_SECONDS if min_interval is None else min_interval
        self._limiter = AsyncLimiter(1, self.min_interval) if self.min_interval > 0 else None

    async def geocode(self, search_text: str) -> Optional[Coordinates]:
        if self._limiter is not None:
            await self._limiter.acquire()

        response = await self._get(
            self.url,
            params={"format": "json", "q": search_text, "limit": 1},
            headers={"User-Agent": self.user_agent},
        )

        results = response.json()
        if not results:
            return None

        return self._coordinates(results[0].get("lat"), results[0].get("lon"), self.name)


class Geocoder:
    """
    Ordered provider chain.

    Usage:
        geocoder = Geocoder.from_settings()
        coords = await geocoder.geocode_address("123 Main St", "Austin", "TX", "78701")
    """

    def __init__(self, providers: List[GeocodingProvider]):
        self.providers = providers

    @classmethod
    def from_settings(cls, client: Optional[httpx.AsyncClient] = None) -> "Geocoder":
        """Google first when GOOGLE_MAPS_API_KEY is set, Nominatim always last"""
        providers: List[GeocodingProvider] = []
        if settings.GOOGLE_MAPS_API_KEY:
            providers.append(GoogleGeocoder(settings.GOOGLE_MAPS_API_KEY, client=client))
        providers.append(NominatimGeocoder(client=client))
        return cls(providers)

    async def geocode_address(
        self,
        address: str,
        city: str,
        state: str,
        zip_code: str = ""
    ) -> Optional[Coordinates]:
        """
        Coordinates for an address, or None.

        None covers zero results, HTTP errors and network failures alike;
        callers tag the record instead of failing it.
        """
        search_text = build_search_text(address, city, state, zip_code)
        if not search_text:
            return None

        for provider in self.providers:
            try:
                coords = await provider.geocode(search_text)
            except GeocodingError as e:
                logger.warning(
                    f"Geocoding via {provider.name} failed for {search_text!r}: {e.message}",
                    extra={"error_context": e.to_dict()}
                )
                continue
            except Exception as e:
                logger.warning(f"Unexpected {provider.name} geocoding error for {search_text!r}: {e}")
                continue

            if coords is not None:
                return coords
            logger.info(f"No {provider.name} geocoding results for {search_text!r}")

        return None
