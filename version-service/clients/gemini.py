"""Gemini API client for model listing and content generation."""

import logging
from typing import Any, Optional

from .base import APIClientError, BaseAPIClient

logger = logging.getLogger(__name__)

GEMINI_API_ROOT = "https://generativelanguage.googleapis.com"
DEFAULT_API_VERSION = "v1beta"
DEFAULT_MODEL = "gemini-2.0-flash"


class GeminiError(APIClientError):
    """Gemini API request failed."""


class GeminiClient(BaseAPIClient):
    """
    Client for the Gemini generative language API.

    The API version is part of the base URL, so one client talks to one
    version; use with_api_version() to reach another.
    """

    error_class = GeminiError

    def __init__(
        self,
        api_key: str,
        api_version: str = DEFAULT_API_VERSION,
        api_root: str = GEMINI_API_ROOT,
        **kwargs: Any,
    ):
        self.api_version = api_version
        self.api_root = api_root.rstrip("/")
        super().__init__(api_key, f"{self.api_root}/{api_version}", **kwargs)

    @property
    def api_name(self) -> str:
        return "Gemini"

    def auth_headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}

    def with_api_version(self, api_version: str) -> "GeminiClient":
        """Return a new client with the same settings bound to another API version."""
        return GeminiClient(
            self.api_key,
            api_version=api_version,
            api_root=self.api_root,
            timeout=self.timeout,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            transport=self._transport,
        )

    async def list_models(self, filter_method: Optional[str] = None) -> list[dict]:
        """
        List available models.

        Args:
            filter_method: Keep only models supporting this generation method,
                e.g. "generateContent"

        Returns:
            Raw model entries as returned by the API
        """
        data = await self.get_json("/models")
        if not isinstance(data, dict):
            raise GeminiError("Unexpected model listing payload")

        # The API omits the key entirely when there are no models
        models = data.get("models", [])
        if not isinstance(models, list):
            raise GeminiError("Unexpected model listing payload")

        if filter_method:
            models = [
                m for m in models
                if isinstance(m, dict) and filter_method in (m.get("supportedGenerationMethods") or [])
            ]
        return models

    async def generate_content(
        self,
        prompt: str,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.9,
        max_output_tokens: int = 2048,
    ) -> dict[str, Any]:
        """
        Generate text for a prompt.

        Returns:
            Dict with text, finish_reason and usage
        """
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_output_tokens,
            },
        }
        response = await self.request("POST", f"/models/{model}:generateContent", json=body)
        data = response.json()

        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise GeminiError(f"Content blocked: {block_reason}")

        candidates = data.get("candidates") or []
        if not candidates:
            raise GeminiError("No candidates returned")

        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        usage = data.get("usageMetadata") or {}

        return {
            "text": "".join(p.get("text", "") for p in parts),
            "finish_reason": candidate.get("finishReason", ""),
            "usage": {
                "prompt_tokens": usage.get("promptTokenCount", 0),
                "output_tokens": usage.get("candidatesTokenCount", 0),
                "total_tokens": usage.get("totalTokenCount", 0),
            },
        }
