"""Pexels API client for stock background photos."""

from typing import Any, List

from loguru import logger

from podcast_gen.core.configs.config import settings
from podcast_gen.core.tools.dispatcher import RateLimitedDispatcher
from podcast_gen.core.tools.http_client import JsonHttpClient
from podcast_gen.core.tools.retry import RetryPolicy
from podcast_gen.podcast_material import ImageAsset


class PexelsClient(JsonHttpClient):
    """Search landscape stock photos. Only URLs are returned; payloads are fetched by the AssetFetcher."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = "https://api.pexels.com/v1",
        session: Any = None,
        dispatcher: RateLimitedDispatcher | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        super().__init__("Stock photo search", session=session, dispatcher=dispatcher, retry_policy=retry_policy)
        self._api_key = api_key or settings.pexels_api_key
        self._endpoint = f"{base_url.rstrip('/')}/search"

    def get_images(self, prompt: str, count: int = 1) -> List[ImageAsset]:
        """Return up to ``count`` landscape photos matching ``prompt``."""
        data = self.get_json(
            self._endpoint,
            params={"query": prompt, "per_page": count, "orientation": "landscape"},
            headers={"Authorization": self._api_key or ""},
        )
        images = []
        for photo in data.get("photos", [])[:count]:
            src = photo.get("src", {})
            url = src.get("landscape") or src.get("large2x") or src.get("original")
            if not url:
                continue
            images.append(
                ImageAsset(
                    url=url,
                    mime_type="image/jpeg",
                    prompt=prompt,
                    source="stock",
                    attribution=f"Photo by {photo.get('photographer', 'unknown')} on Pexels",
                )
            )
        logger.info(f"Stock photo search '{prompt}': {len(images)} result(s)")
        return images
