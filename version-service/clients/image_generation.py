"""Image generation API client."""

import logging
from typing import Any

from .base import APIClientError, BaseAPIClient

logger = logging.getLogger(__name__)

IMAGE_GENERATION_API_BASE = "https://api.nanobanana.io/v1"


class ImageGenerationError(APIClientError):
    """Image generation API request failed."""


class ImageGenerationClient(BaseAPIClient):
    """Client for the image generation API's version endpoint."""

    error_class = ImageGenerationError

    def __init__(self, api_key: str, base_url: str = IMAGE_GENERATION_API_BASE, **kwargs: Any):
        super().__init__(api_key, base_url, **kwargs)

    @property
    def api_name(self) -> str:
        return "Image generation"

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    async def check_version(self) -> dict[str, Any]:
        """
        Fetch version info.

        Returns:
            Dict like {"version": "1.2.0", "releaseDate": "...", "features": [...]}
        """
        data = await self.get_json("/version")
        if not isinstance(data, dict):
            raise ImageGenerationError("Unexpected version payload")
        return data
