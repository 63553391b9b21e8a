"""Version drift detection and health-gated version adoption."""

from .checkers import GeminiVersionChecker, ImageGenerationVersionChecker, VersionChecker
from .errors import (
    APIVersionManagerError,
    ServiceNotConfiguredError,
    VersionCheckError,
    VersionConflictError,
    VersionValidationError,
)
from .manager import APIVersionManager

__all__ = [
    "APIVersionManager",
    "VersionChecker",
    "GeminiVersionChecker",
    "ImageGenerationVersionChecker",
    "APIVersionManagerError",
    "ServiceNotConfiguredError",
    "VersionCheckError",
    "VersionConflictError",
    "VersionValidationError",
]
