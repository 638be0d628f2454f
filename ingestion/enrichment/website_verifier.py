"""
Website liveness probe for import-supplied URLs.

URLs come from untrusted input, so before each request (including every
redirect hop) the verifier:
- accepts only http and https
- refuses hosts resolving to private, loopback, link-local, multicast or
  reserved addresses (unless block_private is off, e.g. in tests)
"""

from typing import Awaitable, Callable, List, Optional
from urllib.parse import urljoin, urlsplit
import asyncio
import ipaddress
import socket
import httpx
import logging

from core.config import settings
from core.exceptions import UnsafeURLError, WebsiteVerificationError

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = {"http", "https"}
REDIRECT_STATUSES = {301, 302, 303, 307, 308}

Resolver = Callable[[str], Awaitable[List[str]]]


async def resolve_host(host: str) -> List[str]:
    """All IP addresses a host name resolves to"""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


def is_public_address(address: str) -> bool:
    ip = ipaddress.ip_address(address.split("%", 1)[0])
    return not (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    )


class WebsiteVerifier:
    """
    HEAD-style liveness check.

    A final 2xx-3xx status is "up". Timeouts, connection errors, refused
    URLs, 4xx/5xx and too many redirects are "down". verify() never raises.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        max_redirects: Optional[int] = None,
        block_private: Optional[bool] = None,
        resolver: Resolver = resolve_host,
    ):
        self.client = client
        self.timeout = timeout or settings.WEBSITE_CHECK_TIMEOUT_SECONDS
        self.max_redirects = settings.WEBSITE_CHECK_MAX_REDIRECTS if max_redirects is None else max_redirects
        self.block_private = settings.WEBSITE_CHECK_BLOCK_PRIVATE if block_private is None else block_private
        self.resolver = resolver

    async def check_url_safety(self, url: str):
        """
        Raises:
            UnsafeURLError: Scheme not http(s), no host, or a non-public address
        """
        parts = urlsplit(url)
        if parts.scheme.lower() not in ALLOWED_SCHEMES:
            raise UnsafeURLError(
                "Refusing non-http(s) URL",
                context={"url": url, "scheme": parts.scheme}
            )
        host = parts.hostname
        if not host:
            raise UnsafeURLError("URL has no host", context={"url": url})

        if not self.block_private:
            return

        try:
            addresses = [host] if _is_ip_literal(host) else await self.resolver(host)
        except OSError as e:
            raise WebsiteVerificationError(
                "Host name did not resolve",
                context={"url": url, "host": host},
                original_exception=e
            )

        blocked = [a for a in addresses if not is_public_address(a)]
        if blocked or not addresses:
            raise UnsafeURLError(
                "Refusing URL resolving to a non-public address",
                context={"url": url, "host": host, "addresses": blocked}
            )

    async def _probe(self, client: httpx.AsyncClient, url: str) -> int:
        """Final status code after following at most max_redirects hops"""
        for hop in range(self.max_redirects + 1):
            await self.check_url_safety(url)
            response = await client.head(url, follow_redirects=False, timeout=self.timeout)

            # Some servers reject HEAD outright
            if response.status_code in (405, 501):
                response = await client.get(url, follow_redirects=False, timeout=self.timeout)

            location = response.headers.get("Location")
            if response.status_code not in REDIRECT_STATUSES or not location:
                return response.status_code

            url = urljoin(url, location)
            logger.debug(f"Redirect {hop + 1} -> {url}")

        raise WebsiteVerificationError(
            "Too many redirects",
            context={"url": url, "max_redirects": self.max_redirects}
        )

    async def verify(self, url: str) -> bool:
        """True if the site answered with a 2xx-3xx status"""
        if not url:
            return False

        try:
            if self.client is not None:
                status_code = await self._probe(self.client, url)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    status_code = await self._probe(client, url)
        except (UnsafeURLError, WebsiteVerificationError) as e:
            logger.warning(f"Website check failed for {url}: {e.message}")
            return False
        except httpx.HTTPError as e:
            logger.warning(f"Website check failed for {url}: {type(e).__name__}: {e}")
            return False
        except Exception as e:
            logger.warning(f"Unexpected website check error for {url}: {e}")
            return False

        is_up = 200 <= status_code < 400
        if not is_up:
            logger.warning(f"Website {url} returned HTTP {status_code}")
        return is_up


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host.split("%", 1)[0])
        return True
    except ValueError:
        return False
