"""Download service images for analysis."""

from __future__ import annotations

import logging

import httpx

from app.services.errors import ImageFetchError

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})


class ImageFetcher:
    """Fetch raw image bytes over HTTP with a size cap."""

    __slots__ = ("_timeout", "_max_bytes")

    def __init__(self, timeout: float = 30.0, max_bytes: int = 20 * 1024 * 1024) -> None:
        self._timeout = timeout
        self._max_bytes = max_bytes

    async def fetch(self, url: str) -> bytes:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                response = await client.get(url)
                response.raise_for_status()
                content = response.content
        except httpx.ConnectError as exc:
            raise ImageFetchError(f"Cannot connect to {url}: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise ImageFetchError(
                f"Failed to fetch image: HTTP {status}",
                retryable=status in _RETRYABLE_STATUS,
            ) from exc
        except httpx.TimeoutException as exc:
            raise ImageFetchError(f"Image download timed out after {self._timeout}s") from exc
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            raise ImageFetchError(f"Invalid image URL {url!r}: {exc}", retryable=False) from exc

        if not content:
            raise ImageFetchError(f"Empty response body for {url}", retryable=False)
        if len(content) > self._max_bytes:
            raise ImageFetchError(
                f"Image is {len(content)} bytes, limit is {self._max_bytes}",
                retryable=False,
            )
        logger.debug("Fetched %d bytes from %s", len(content), url)
        return content
