"""
Image Rehoster

Copies brief images into the funnel's own object store at intake time so
generated pages never hotlink third-party hosts.

All images are fetched concurrently. One image failing never fails the
batch: its slot falls back to the original URL (upgraded to https).
Fetches are time-bounded, and a timeout raises FetchTimeoutError rather
than the generic FetchConnectionError.
"""

import asyncio
import logging
import random
import re
import string
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

import aiohttp

from ..config import IMAGE_FETCH_TIMEOUT, OBJECT_STORE_PUBLIC_URL, OBJECT_STORE_URL
from ..errors import FetchConnectionError, FetchTimeoutError

logger = logging.getLogger(__name__)

USER_AGENT = "FunnelForge/1.0 (image-proxy)"
DEFAULT_CONTENT_TYPE = "image/jpeg"

_HTTP_SCHEME = re.compile(r"^http://", re.IGNORECASE)


def extension_for(content_type: str) -> str:
    for ext in ("png", "webp", "gif"):
        if ext in content_type:
            return ext
    return "jpg"


def force_https(url: str) -> str:
    return _HTTP_SCHEME.sub("https://", url)


def object_key(owner: str, content_type: str) -> str:
    """<owner>/<millis>-<6 random chars>.<ext>"""
    token = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{owner}/{int(time.time() * 1000)}-{token}.{extension_for(content_type)}"


@dataclass
class RehostResult:
    original_url: str
    url: str
    error: Optional[str] = None

    @property
    def rehosted(self) -> bool:
        return self.error is None


class HttpObjectStore:
    """Object store reached by plain HTTP PUT (S3-compatible presigned or open bucket)."""

    def __init__(self, base_url: str = OBJECT_STORE_URL, public_url: str = OBJECT_STORE_PUBLIC_URL):
        if not base_url:
            raise ValueError("FUNNEL_OBJECT_STORE_URL is not configured")
        self.base_url = base_url.rstrip("/")
        self.public_url = (public_url or base_url).rstrip("/")

    async def put(self, session: aiohttp.ClientSession, key: str, data: bytes, content_type: str) -> str:
        url = f"{self.base_url}/{key}"
        async with session.put(url, data=data, headers={"Content-Type": content_type}) as resp:
            if resp.status >= 400:
                raise FetchConnectionError(url, "Storage upload failed", status=resp.status)
        return f"{self.public_url}/{key}"


class ImageRehoster:
    def __init__(self, store: HttpObjectStore, timeout: float = IMAGE_FETCH_TIMEOUT):
        self.store = store
        self.timeout = timeout

    async def fetch_image(self, session: aiohttp.ClientSession, url: str) -> Tuple[bytes, str]:
        """
        Download one image.

        Raises:
            FetchTimeoutError: the fetch exceeded the timeout
            FetchConnectionError: any other transport failure or non-2xx status
        """
        try:
            async with session.get(url, headers={"User-Agent": USER_AGENT}) as resp:
                if resp.status >= 400:
                    raise FetchConnectionError(url, "Failed to fetch image", status=resp.status)
                content_type = resp.headers.get("Content-Type", DEFAULT_CONTENT_TYPE)
                return await resp.read(), content_type
        except asyncio.TimeoutError as e:
            raise FetchTimeoutError(url, self.timeout) from e
        except aiohttp.ClientError as e:
            raise FetchConnectionError(url, str(e)) from e

    async def rehost_one(self, session: aiohttp.ClientSession, url: str, owner: str) -> str:
        data, content_type = await self.fetch_image(session, url)
        return await self.store.put(session, object_key(owner, content_type), data, content_type)

    async def rehost_all(self, urls: List[str], owner: str) -> List[RehostResult]:
        """Rehost every URL concurrently. Output order matches input order."""
        if not urls:
            return []

        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            outcomes = await asyncio.gather(
                *(self.rehost_one(session, url, owner) for url in urls),
                return_exceptions=True,
            )

        results = []
        for url, outcome in zip(urls, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Image rehost failed for {url}, keeping original: {outcome}")
                results.append(RehostResult(original_url=url, url=force_https(url), error=str(outcome)))
            else:
                results.append(RehostResult(original_url=url, url=outcome))

        rehosted = sum(1 for r in results if r.rehosted)
        logger.info(f"Rehosted {rehosted}/{len(urls)} images for {owner}")
        return results
