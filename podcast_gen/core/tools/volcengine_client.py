"""Volcengine ARK API client for image generation.

This module provides a client for the Volcengine ARK API, used to generate the
background images of podcast chapters with models like doubao-seedream-4-0-250828.
"""

import asyncio
import base64
from typing import List, Literal

import requests
from loguru import logger
from pydantic import BaseModel

from podcast_gen.core.configs.config import settings
from podcast_gen.core.tools.dispatcher import RateLimitedDispatcher
from podcast_gen.core.tools.errors import CollaboratorError, ErrorKind
from podcast_gen.core.tools.retry import retry
from podcast_gen.podcast_material import ImageAsset


class ImageGenerationRequest(BaseModel):
    """Request model for image generation."""

    model: str = "doubao-seedream-4-0-250828"
    prompt: str
    size: str = "2560x1440"  # "1K"/"2K"/"4K" or "WIDTHxHEIGHT"
    sequential_image_generation: Literal["enabled", "disabled"] = "disabled"
    stream: bool = False
    response_format: Literal["url", "b64_json"] = "b64_json"
    watermark: bool = False


class ImageGenerationResponse(BaseModel):
    """Response model for image generation."""

    created: int
    data: list[dict]  # [{"url": "...", "b64_json": "..."}, ...]


class VolcengineImageClient:
    """Client for Volcengine ARK image generation API."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = "https://ark.cn-beijing.volces.com",
        model: str = "doubao-seedream-4-0-250828",
        size: str = "2560x1440",
        dispatcher: RateLimitedDispatcher | None = None,
    ) -> None:
        """Initialize the Volcengine image client.

        Args:
            api_key: Volcengine ARK API key. If None, uses settings.volcengine_api_key
            base_url: API base URL
            model: Image model name
            size: Requested image size, 16:9 to match the video frame
            dispatcher: Shared dispatcher for this endpoint
        """
        self._api_key = api_key or settings.volcengine_api_key
        self._endpoint = f"{base_url.rstrip('/')}/api/v3/images/generations"
        self._model = model
        self._size = size
        self._dispatcher = dispatcher or RateLimitedDispatcher.from_settings(name="volcengine")

    @retry("Image generation")
    async def async_generate_image(self, prompt: str, timeout: int = 120) -> bytes:
        """Generate one image and return its encoded bytes.

        Args:
            prompt: Text prompt for image generation
            timeout: Request timeout in seconds

        Returns:
            bytes: The generated image (PNG or JPEG)

        Raises:
            CollaboratorError: If the API request fails or returns no image
        """
        request_data = ImageGenerationRequest(model=self._model, prompt=prompt, size=self._size)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }

        logger.info(f"Generating image with Volcengine ARK API (model: {self._model}, size: {self._size})")
        logger.debug(f"Prompt: {prompt[:100]}...")

        response = await self._dispatcher.submit(
            requests.post, self._endpoint, headers=headers, json=request_data.model_dump(), timeout=timeout
        )
        response.raise_for_status()
        response_data = ImageGenerationResponse.model_validate(response.json())

        if not response_data.data or "b64_json" not in response_data.data[0]:
            raise CollaboratorError(ErrorKind.MALFORMED_RESPONSE, "Image generation", detail="no image in response")
        return base64.b64decode(response_data.data[0]["b64_json"])

    async def async_get_images(self, prompt: str, count: int = 1) -> List[ImageAsset]:
        """Generate ``count`` images for ``prompt``. Failed generations are left out."""
        results = await asyncio.gather(
            *(self.async_generate_image(prompt) for _ in range(count)), return_exceptions=True
        )
        images = []
        for result in results:
            if isinstance(result, Exception):
                logger.warning(f"Image generation failed for prompt '{prompt[:60]}': {result}")
                continue
            mime_type = "image/jpeg" if result[:3] == b"\xff\xd8\xff" else "image/png"
            images.append(ImageAsset(payload=result, mime_type=mime_type, prompt=prompt, source="generated"))
        return images

    def get_images(self, prompt: str, count: int = 1) -> List[ImageAsset]:
        """The synchronous version of async_get_images."""
        return asyncio.run(self.async_get_images(prompt, count))
