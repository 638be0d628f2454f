"""
Unit tests for geocoding and website verification (HTTP mocked with httpx.MockTransport)
"""

import time
import httpx
import pytest
from core.config import settings
from core.exceptions import (
    GeocodingError,
    NetworkError,
    ProviderAuthenticationError,
    RateLimitError,
    UnsafeURLError,
)
from ingestion.enrichment.geocoder import (
    Geocoder,
    GoogleGeocoder,
    NominatimGeocoder,
    build_search_text,
)
from ingestion.enrichment.website_verifier import WebsiteVerifier, is_public_address

GOOGLE_URL = "https://maps.example.test/geocode/json"
NOMINATIM_URL = "https://osm.example.test/search"


def mock_client(handler):
    async def async_handler(request: httpx.Request) -> httpx.Response:
        return handler(request)

    return httpx.AsyncClient(transport=httpx.MockTransport(async_handler))


def google_ok(lat=30.2672, lng=-97.7431):
    return {"status": "OK", "results": [{"geometry": {"location": {"lat": lat, "lng": lng}}}]}


def test_build_search_text():
    assert build_search_text("123 Main St", "Austin", "TX", "78701") == "123 Main St, Austin, TX 78701"
    assert build_search_text("123 Main St", "Austin", "TX") == "123 Main St, Austin, TX"


class TestGoogleGeocoder:
    """Test Google Maps provider"""

    @pytest.mark.asyncio
    async def test_returns_first_result(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=google_ok(30.1, -97.1))

        async with mock_client(handler) as client:
            provider = GoogleGeocoder("test-key", client=client, url=GOOGLE_URL)
            coords = await provider.geocode("123 Main St, Austin, TX 78701")

        assert coords.lat == 30.1
        assert coords.lng == -97.1
        assert seen[0].url.params["address"] == "123 Main St, Austin, TX 78701"
        assert seen[0].url.params["key"] == "test-key"

    @pytest.mark.asyncio
    async def test_zero_results_is_none(self):
        async with mock_client(lambda r: httpx.Response(200, json={"status": "ZERO_RESULTS", "results": []})) as client:
            assert await GoogleGeocoder("k", client=client, url=GOOGLE_URL).geocode("nowhere") is None

    @pytest.mark.asyncio
    async def test_request_denied(self):
        async with mock_client(lambda r: httpx.Response(200, json={"status": "REQUEST_DENIED"})) as client:
            with pytest.raises(ProviderAuthenticationError):
                await GoogleGeocoder("bad", client=client, url=GOOGLE_URL).geocode("x")

    @pytest.mark.asyncio
    async def test_http_429_is_rate_limit(self):
        handler = lambda r: httpx.Response(429, headers={"Retry-After": "30"})
        async with mock_client(handler) as client:
            with pytest.raises(RateLimitError) as exc_info:
                await GoogleGeocoder("k", client=client, url=GOOGLE_URL).geocode("x")
        assert exc_info.value.retry_after == 30

    @pytest.mark.asyncio
    async def test_http_500_is_geocoding_error(self):
        async with mock_client(lambda r: httpx.Response(500)) as client:
            with pytest.raises(GeocodingError) as exc_info:
                await GoogleGeocoder("k", client=client, url=GOOGLE_URL).geocode("x")
        assert exc_info.value.context["status_code"] == 500

    @pytest.mark.asyncio
    async def test_connection_error_is_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with mock_client(handler) as client:
            with pytest.raises(NetworkError):
                await GoogleGeocoder("k", client=client, url=GOOGLE_URL).geocode("x")


class TestNominatimGeocoder:
    """Test OpenStreetMap provider"""

    @pytest.mark.asyncio
    async def test_returns_coordinates_and_sends_user_agent(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[{"lat": "40.7128", "lon": "-74.0060"}])

        async with mock_client(handler) as client:
            provider = NominatimGeocoder(client=client, url=NOMINATIM_URL, user_agent="TestAgent/1.0", min_interval=0)
            coords = await provider.geocode("456 Broadway Ave, New York, NY 10013")

        assert coords.lat == pytest.approx(40.7128)
        assert coords.lng == pytest.approx(-74.006)
        assert seen[0].headers["User-Agent"] == "TestAgent/1.0"
        assert seen[0].url.params["format"] == "json"
        assert seen[0].url.params["limit"] == "1"

    @pytest.mark.asyncio
    async def test_empty_result_is_none(self):
        async with mock_client(lambda r: httpx.Response(200, json=[])) as client:
            provider = NominatimGeocoder(client=client, url=NOMINATIM_URL, min_interval=0)
            assert await provider.geocode("nowhere") is None

    @pytest.mark.asyncio
    async def test_malformed_coordinates(self):
        async with mock_client(lambda r: httpx.Response(200, json=[{"lat": "north", "lon": "1"}])) as client:
            provider = NominatimGeocoder(client=client, url=NOMINATIM_URL, min_interval=0)
            with pytest.raises(GeocodingError):
                await provider.geocode("x")

    @pytest.mark.asyncio
    async def test_enforces_minimum_interval_between_calls(self):
        sent = []

        def handler(request):
            sent.append(time.monotonic())
            return httpx.Response(200, json=[])

        async with mock_client(handler) as client:
            provider = NominatimGeocoder(client=client, url=NOMINATIM_URL, min_interval=0.2)
            for query in ("first", "second", "third"):
                await provider.geocode(query)

        gaps = [b - a for a, b in zip(sent, sent[1:])]
        assert len(gaps) == 2
        assert all(gap >= 0.15 for gap in gaps)

    @pytest.mark.asyncio
    async def test_interval_applies_after_failed_call(self):
        sent = []

        def handler(request):
            sent.append(time.monotonic())
            return httpx.Response(503)

        async with mock_client(handler) as client:
            provider = NominatimGeocoder(client=client, url=NOMINATIM_URL, min_interval=0.2)
            with pytest.raises(GeocodingError):
                await provider.geocode("first")
            with pytest.raises(GeocodingError):
                await provider.geocode("second")

        assert sent[1] - sent[0] >= 0.15

    def test_zero_interval_disables_limit(self):
        assert NominatimGeocoder(url=NOMINATIM_URL, min_interval=0)._limiter is None


class TestGeocoder:
    """Test provider chain"""

    @pytest.mark.asyncio
    async def test_falls_back_to_nominatim(self):
        def handler(request):
            if request.url.host == "maps.example.test":
                return httpx.Response(500)
            return httpx.Response(200, json=[{"lat": "30.5", "lon": "-97.5"}])

        async with mock_client(handler) as client:
            geocoder = Geocoder([
                GoogleGeocoder("k", client=client, url=GOOGLE_URL),
                NominatimGeocoder(client=client, url=NOMINATIM_URL, min_interval=0),
            ])
            coords = await geocoder.geocode_address("123 Main St", "Austin", "TX", "78701")

        assert (coords.lat, coords.lng) == (30.5, -97.5)

    @pytest.mark.asyncio
    async def test_primary_result_wins(self):
        calls = []

        def handler(request):
            calls.append(request.url.host)
            return httpx.Response(200, json=google_ok())

        async with mock_client(handler) as client:
            geocoder = Geocoder([
                GoogleGeocoder("k", client=client, url=GOOGLE_URL),
                NominatimGeocoder(client=client, url=NOMINATIM_URL, min_interval=0),
            ])
            coords = await geocoder.geocode_address("123 Main St", "Austin", "TX")

        assert coords is not None
        assert calls == ["maps.example.test"]

    @pytest.mark.asyncio
    async def test_never_raises(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with mock_client(handler) as client:
            geocoder = Geocoder([NominatimGeocoder(client=client, url=NOMINATIM_URL, min_interval=0)])
            assert await geocoder.geocode_address("123 Main St", "Austin", "TX") is None

    @pytest.mark.asyncio
    async def test_zero_results_everywhere_is_none(self):
        def handler(request):
            if request.url.host == "maps.example.test":
                return httpx.Response(200, json={"status": "ZERO_RESULTS", "results": []})
            return httpx.Response(200, json=[])

        async with mock_client(handler) as client:
            geocoder = Geocoder([
                GoogleGeocoder("k", client=client, url=GOOGLE_URL),
                NominatimGeocoder(client=client, url=NOMINATIM_URL, min_interval=0),
            ])
            assert await geocoder.geocode_address("1 Nowhere Rd", "Austin", "TX") is None

    def test_from_settings_provider_order(self, monkeypatch):
        monkeypatch.setattr(settings, "GOOGLE_MAPS_API_KEY", "key")
        assert [p.name for p in Geocoder.from_settings().providers] == ["google", "nominatim"]

        monkeypatch.setattr(settings, "GOOGLE_MAPS_API_KEY", None)
        assert [p.name for p in Geocoder.from_settings().providers] == ["nominatim"]


def public_resolver(mapping=None):
    mapping = mapping or {}

    async def resolve(host):
        return mapping.get(host, ["93.184.216.34"])

    return resolve


class TestWebsiteVerifier:
    """Test website liveness probe"""

    @pytest.mark.asyncio
    async def test_2xx_is_up(self):
        async with mock_client(lambda r: httpx.Response(200)) as client:
            verifier = WebsiteVerifier(client=client, block_private=False)
            assert await verifier.verify("https://example.com/") is True

    @pytest.mark.asyncio
    async def test_4xx_and_5xx_are_down(self):
        async with mock_client(lambda r: httpx.Response(404)) as client:
            assert await WebsiteVerifier(client=client, block_private=False).verify("https://example.com/") is False
        async with mock_client(lambda r: httpx.Response(503)) as client:
            assert await WebsiteVerifier(client=client, block_private=False).verify("https://example.com/") is False

    @pytest.mark.asyncio
    async def test_head_rejected_falls_back_to_get(self):
        methods = []

        def handler(request):
            methods.append(request.method)
            return httpx.Response(405 if request.method == "HEAD" else 200)

        async with mock_client(handler) as client:
            assert await WebsiteVerifier(client=client, block_private=False).verify("https://example.com/") is True
        assert methods == ["HEAD", "GET"]

    @pytest.mark.asyncio
    async def test_follows_redirects(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            if request.url.path == "/":
                return httpx.Response(301, headers={"Location": "/home"})
            return httpx.Response(200)

        async with mock_client(handler) as client:
            assert await WebsiteVerifier(client=client, block_private=False).verify("https://example.com/") is True
        assert paths == ["/", "/home"]

    @pytest.mark.asyncio
    async def test_too_many_redirects_is_down(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(302, headers={"Location": f"/hop{len(requests)}"})

        async with mock_client(handler) as client:
            verifier = WebsiteVerifier(client=client, block_private=False, max_redirects=2)
            assert await verifier.verify("https://example.com/") is False
        assert len(requests) == 3

    @pytest.mark.asyncio
    async def test_connection_error_is_down(self):
        def handler(request):
            raise httpx.ConnectError("no route", request=request)

        async with mock_client(handler) as client:
            assert await WebsiteVerifier(client=client, block_private=False).verify("https://example.com/") is False

    @pytest.mark.asyncio
    async def test_empty_url_is_down(self):
        assert await WebsiteVerifier(block_private=False).verify("") is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["ftp://example.com/", "file:///etc/passwd", "javascript:alert(1)"])
    async def test_rejects_non_http_schemes(self, url):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200)

        async with mock_client(handler) as client:
            verifier = WebsiteVerifier(client=client, block_private=False)
            with pytest.raises(UnsafeURLError):
                await verifier.check_url_safety(url)
            assert await verifier.verify(url) is False
        assert requests == []

    @pytest.mark.asyncio
    async def test_blocks_private_addresses(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200)

        resolver = public_resolver({"intranet.example.com": ["10.0.0.5"]})
        async with mock_client(handler) as client:
            verifier = WebsiteVerifier(client=client, block_private=True, resolver=resolver)
            assert await verifier.verify("http://intranet.example.com/") is False
            assert await verifier.verify("http://127.0.0.1:8080/admin") is False
            assert await verifier.verify("http://169.254.169.254/latest/meta-data") is False
            assert await verifier.verify("https://example.com/") is True

        assert [r.url.host for r in requests] == ["example.com"]

    @pytest.mark.asyncio
    async def test_blocks_redirect_to_private_address(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(302, headers={"Location": "http://internal.example.com/"})

        resolver = public_resolver({"internal.example.com": ["192.168.1.10"]})
        async with mock_client(handler) as client:
            verifier = WebsiteVerifier(client=client, block_private=True, resolver=resolver)
            assert await verifier.verify("https://example.com/") is False

        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_unresolvable_host_is_down(self):
        async def resolver(host):
            raise OSError("Name or service not known")

        async with mock_client(lambda r: httpx.Response(200)) as client:
            verifier = WebsiteVerifier(client=client, block_private=True, resolver=resolver)
            assert await verifier.verify("https://does-not-exist.example/") is False

    @pytest.mark.parametrize("address,public", [
        ("93.184.216.34", True),
        ("10.1.2.3", False),
        ("127.0.0.1", False),
        ("169.254.169.254", False),
        ("::1", False),
        ("fe80::1%eth0", False),
    ])
    def test_is_public_address(self, address, public):
        assert is_public_address(address) is public
