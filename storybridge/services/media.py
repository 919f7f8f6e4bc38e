"""Client for the media service that stores copies of remote images"""
import logging
from typing import Any, Dict, Optional

import httpx

from storybridge.config import settings

logger = logging.getLogger(__name__)


class MediaService:
    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None):
        self.url = url if url is not None else settings.media_import_url
        self.timeout = timeout or settings.media_import_timeout_seconds

    def import_image(self, source_url: Optional[str]) -> Optional[Dict[str, Any]]:
        """Ask the media service to copy ``source_url``; returns the stored image resource.

        Any failure degrades to ``None``.
        """
        if not self.url or not source_url:
            return None
        try:
            timeout = httpx.Timeout(timeout=float(self.timeout), connect=10.0)
            with httpx.Client(timeout=timeout) as client:
                response = client.post(self.url, json={"url": source_url})
                response.raise_for_status()
                image = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Could not import image {source_url}: {e}")
            return None
        if not isinstance(image, dict) or not image.get("url"):
            logger.warning(f"Media service returned no image for {source_url}")
            return None
        return {"type": "image", **image}
