"""Clients for the external APIs whose versions are tracked."""

from .base import APIClientError, BaseAPIClient
from .gemini import GeminiClient, GeminiError
from .image_generation import ImageGenerationClient, ImageGenerationError

__all__ = [
    "APIClientError",
    "BaseAPIClient",
    "GeminiClient",
    "GeminiError",
    "ImageGenerationClient",
    "ImageGenerationError",
]
