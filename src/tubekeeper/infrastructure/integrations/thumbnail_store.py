"""Thumbnail re-hosting over HTTP.

Hey future me - provider thumbnails are CDN URLs that expire or get rate limited
when the UI shows hundreds of them. We download each one once into
`<media_root>/thumbs/<category>/<identifier><ext>` and store the local media URL
instead. Any failure raises ExternalServiceError; the sync job then keeps the
remote URL and tries again next pass.
"""

import asyncio
import logging
import mimetypes
from pathlib import Path
from urllib.parse import urljoin

import httpx

from tubekeeper.domain.exceptions import ExternalServiceError
from tubekeeper.domain.ports import IThumbnailStore

logger = logging.getLogger(__name__)


class HttpThumbnailStore(IThumbnailStore):
    """Downloads thumbnails with httpx and serves them from the media root."""

    def __init__(
        self,
        media_root: Path,
        media_url: str = "/media/",
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._media_root = media_root
        self._media_url = media_url if media_url.endswith("/") else media_url + "/"
        self._timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                headers={"User-Agent": "tubekeeper/0.1"},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str, category: str, identifier: str) -> str:
        client = await self._get_client()
        try:
            response = await client.get(url)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ExternalServiceError(f"Failed to fetch thumbnail {url}: {e}") from e

        content_type = response.headers.get("Content-Type", "").split(";")[0].strip()
        extension = mimetypes.guess_extension(content_type) or ".jpg"
        file_name = f"{identifier}{extension}"
        directory = self._media_root / "thumbs" / category
        path = directory / file_name

        try:
            await asyncio.to_thread(self._write, directory, path, response.content)
        except OSError as e:
            raise ExternalServiceError(f"Failed to store thumbnail {url} at {path}: {e}") from e

        logger.debug(f"Stored thumbnail {url} as {path}")
        return urljoin(self._media_url, f"thumbs/{category}/{file_name}")

    @staticmethod
    def _write(directory: Path, path: Path, content: bytes) -> None:
        directory.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
