"""Pydantic models for the Version service."""

from .schemas import (
    # Enums
    Service,
    # Persisted models
    VersionRecord,
    LiveVersion,
    # Results
    VersionCheckResult,
    UpdateResult,
    AutoUpdateEntry,
    # Request / response models
    UpdateVersionRequest,
    APIStatus,
    VersionInfo,
    HealthResponse,
)

__all__ = [
    "Service",
    "VersionRecord",
    "LiveVersion",
    "VersionCheckResult",
    "UpdateResult",
    "AutoUpdateEntry",
    "UpdateVersionRequest",
    "APIStatus",
    "VersionInfo",
    "HealthResponse",
]
