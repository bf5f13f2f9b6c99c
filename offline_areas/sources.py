"""
Basemap source downloads.

Sources are fetched on every call and always overwrite the previous copy;
there is no conditional request or cache validation.
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import logging
import os
import shutil
import uuid
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import unquote, urlparse

import httpx

from core.exceptions import FetchError, NoBaseMapSourceError
from core.http.retry import retry_async

if TYPE_CHECKING:
    from collections.abc import Sequence

    from db.models import OfflineBaseMapSource

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
DEFAULT_SOURCE_FILENAME = "basemap.json"


class SourceSelectionStrategy(StrEnum):
    FIRST_ONLY = "first_only"
    ALL = "all"


def local_filename(url: str) -> str:
    """Cache file name for a source URL, unique per URL."""
    name = Path(unquote(urlparse(url).path)).name or DEFAULT_SOURCE_FILENAME
    digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:10]
    return f"{digest}_{name}"


class BaseMapSourceFetcher:
    """Downloads the active project's basemap source files."""

    def __init__(
        self,
        cache_dir: str | Path,
        *,
        strategy: SourceSelectionStrategy | str = SourceSelectionStrategy.FIRST_ONLY,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
        max_retries: int = 2,
        retry_delay: float = 1.0,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.strategy = SourceSelectionStrategy(strategy)
        self._client = client
        self._timeout = timeout
        self._download = retry_async(
            max_retries=max_retries,
            retry_delay=retry_delay,
        )(self._download_once)

    def select_sources(
        self,
        sources: Sequence[OfflineBaseMapSource],
    ) -> list[OfflineBaseMapSource]:
        if not sources:
            msg = "No basemap sources specified for this project."
            raise NoBaseMapSourceError(msg)
        if self.strategy is SourceSelectionStrategy.FIRST_ONLY:
            return [sources[0]]
        return list(sources)

    async def fetch(self, sources: Sequence[OfflineBaseMapSource]) -> list[Path]:
        """Fetch every selected source, in order."""
        selected = self.select_sources(sources)
        return [await self.fetch_source(source) for source in selected]

    async def fetch_source(self, source: OfflineBaseMapSource) -> Path:
        """
        Download one source into the cache directory, replacing any old copy.

        Raises:
            FetchError: If the source cannot be retrieved or written.
        """
        output_path = self.cache_dir / local_filename(source.url)
        temp_path = output_path.with_name(
            f"{output_path.name}.{uuid.uuid4().hex}.downloading",
        )
        logger.debug("Basemap url: %s, file: %s", source.url, output_path)

        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            await self._download(source.url, temp_path)
            os.replace(temp_path, output_path)
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as exc:
            with contextlib.suppress(OSError):
                temp_path.unlink()
            msg = f"Failed to fetch basemap source {source.url}: {exc}"
            raise FetchError(msg, {"url": source.url}) from exc

        logger.info("Fetched basemap source %s -> %s", source.url, output_path)
        return output_path

    async def _download_once(self, url: str, destination: Path) -> None:
        parsed = urlparse(url)
        if parsed.scheme == "file":
            await asyncio.to_thread(
                shutil.copyfile,
                unquote(parsed.path),
                destination,
            )
            return

        if self._client is not None:
            await self._stream_to_file(self._client, url, destination)
            return
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            follow_redirects=True,
        ) as client:
            await self._stream_to_file(client, url, destination)

    @staticmethod
    async def _stream_to_file(
        client: httpx.AsyncClient,
        url: str,
        destination: Path,
    ) -> None:
        async with client.stream("GET", url) as response:
            response.raise_for_status()
            with open(destination, "wb") as fh:
                async for chunk in response.aiter_bytes(CHUNK_SIZE):
                    fh.write(chunk)
