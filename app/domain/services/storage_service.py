"""
Storage Service - best-effort removal of listing images from object storage
"""
from typing import Optional
from urllib.parse import unquote

import httpx

from app.core.config import settings
from app.core.exceptions import SideEffectError
from app.core.logging import get_logger

logger = get_logger(__name__)


def parse_storage_url(url: str) -> Optional[tuple[str, str]]:
    """
    Split a public object URL into (bucket, path).

    https://x.example.co/storage/v1/object/public/marketplace/u1/a.jpg
        -> ("marketplace", "u1/a.jpg")
    Returns None for URLs outside our storage.
    """
    marker = settings.STORAGE_PUBLIC_PATH_MARKER
    if not url or marker not in url:
        return None
    remainder = url.split(marker, 1)[1].split("?", 1)[0]
    bucket, _, path = remainder.partition("/")
    if not bucket or not path:
        return None
    return bucket, unquote(path)


class StorageService:
    """Client for the storage deletion API"""

    def __init__(self, base_url: str | None = None, service_key: str | None = None):
        self.base_url = (base_url or settings.STORAGE_API_URL).rstrip("/")
        self.service_key = service_key if service_key is not None else settings.STORAGE_SERVICE_KEY

    async def remove(self, bucket: str, path: str) -> None:
        """Delete one object. Raises SideEffectError on any failure."""
        url = f"{self.base_url}/object/{bucket}"
        headers = {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key,
        }
        try:
            async with httpx.AsyncClient() as client:
                response = await client.request(
                    "DELETE",
                    url,
                    json={"prefixes": [path]},
                    headers=headers,
                    timeout=settings.STORAGE_TIMEOUT_SECONDS,
                )
        except httpx.HTTPError as e:
            raise SideEffectError("storage", f"remove failed: {e}", details={"bucket": bucket}) from e

        if response.status_code >= 400:
            raise SideEffectError.from_response("storage", "remove", response)

    async def remove_images(self, image_urls: list[str]) -> int:
        """
        Remove every recognizable image. Each failure is logged and skipped.
        Returns the number of objects removed.
        """
        removed = 0
        for url in image_urls:
            parsed = parse_storage_url(url)
            if parsed is None:
                logger.debug("Skipping non-storage image URL", extra_data={"url": url})
                continue
            bucket, path = parsed
            try:
                await self.remove(bucket, path)
                removed += 1
            except SideEffectError as e:
                logger.error(
                    "Failed to remove listing image",
                    extra_data={"bucket": bucket, "path": path, "error": e.message, **e.details},
                    exc_info=True,
                )
        logger.info(
            "Listing images cleanup finished",
            extra_data={"requested": len(image_urls), "removed": removed},
        )
        return removed
