# antique_ingest/images.py
import asyncio
import os
import uuid
from functools import partial
from typing import List, Optional, Sequence
from urllib.parse import urlparse

import httpx

from .rate_queue import RateLimitedQueue
from .schemas import ImageData
from .utils import get_logger

DEFAULT_EXTENSION = ".jpg"
DEFAULT_CONTENT_TYPE = "image/jpeg"


def file_extension(url: str) -> str:
    """Extension of the URL path including the dot, '.jpg' when there is none."""
    extension = os.path.splitext(urlparse(url).path)[1]
    return extension or DEFAULT_EXTENSION


class ImageDownloader:
    """Streams listing images to disk through the image queue.

    A failed download leaves no file behind and produces no `ImageData`.
    """

    def __init__(
        self,
        settings,
        user_agent: str,
        referer: str,
        queue: Optional[RateLimitedQueue] = None,
        client: Optional[httpx.AsyncClient] = None,
        logger=None,
    ):
        self.settings = settings
        self.image_dir = settings.directory
        self.logger = logger or get_logger("ImageDownloader")
        self.queue = queue or RateLimitedQueue(
            concurrency=settings.concurrency,
            interval_cap=settings.interval_cap,
            interval=settings.interval,
            name="images",
        )
        self._client = client or httpx.AsyncClient(
            timeout=settings.timeout,
            follow_redirects=True,
            headers={"User-Agent": user_agent, "Referer": referer},
        )

    async def close(self):
        await self._client.aclose()

    async def download_all(self, urls: Sequence[str], listing_id: str) -> List[ImageData]:
        """Download every URL; the result holds only the successful ones."""
        if not urls:
            return []
        self.logger.info("Downloading %d images for listing %s", len(urls), listing_id)
        os.makedirs(self.image_dir, exist_ok=True)

        results = await asyncio.gather(
            *(self.queue.submit(partial(self.download_image, url, listing_id)) for url in urls),
            return_exceptions=True,
        )
        downloaded = [r for r in results if isinstance(r, ImageData)]
        for url, r in zip(urls, results):
            if isinstance(r, BaseException):
                self.logger.error("Error downloading image %s: %s", url, r)

        self.logger.info("Successfully downloaded %d images for listing %s", len(downloaded), listing_id)
        return downloaded

    async def download_image(self, url: str, listing_id: str) -> Optional[ImageData]:
        image_id = str(uuid.uuid4())
        filename = f"{listing_id}_{image_id}{file_extension(url)}"
        local_path = os.path.join(self.image_dir, filename)

        try:
            async with self._client.stream("GET", url) as response:
                response.raise_for_status()
                content_type = response.headers.get("content-type") or DEFAULT_CONTENT_TYPE
                content_length = response.headers.get("content-length", "")
                content_length = int(content_length) if content_length.isdigit() else 0
                with open(local_path, "wb") as fh:
                    async for chunk in response.aiter_bytes():
                        await asyncio.to_thread(fh.write, chunk)

            size = os.path.getsize(local_path)
            return ImageData(
                id=image_id,
                listing_id=listing_id,
                filename=filename,
                original_url=url,
                local_path=local_path,
                content_type=content_type,
                size=size or content_length,
            )
        except Exception as e:
            self.logger.error("Error downloading image %s: %s", url, e)
            self._remove_partial(local_path)
            return None

    def _remove_partial(self, local_path: str):
        if os.path.exists(local_path):
            try:
                os.remove(local_path)
            except OSError as e:
                self.logger.error("Error deleting partial download %s: %s", local_path, e)
