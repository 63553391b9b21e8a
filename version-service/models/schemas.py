"""Pydantic schemas for version service records, requests and responses."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ============================================================================
# Enums
# ============================================================================

class Service(str, Enum):
    """External API tracked for version drift."""
    GEMINI = "gemini"
    IMAGE_GENERATION = "image-generation"


class CamelModel(BaseModel):
    """Model exposed with camelCase keys in API responses."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Persisted Models
# ============================================================================

class VersionRecord(CamelModel):
    """One row of the api_versions table."""
    id: str = Field(..., description="Record identifier")
    service: Service = Field(..., description="Tracked service")
    current_version: str = Field(..., description="Version in active use")
    last_known_good: str = Field(..., description="Most recent version that passed a health probe")
    available_versions: list[str] = Field(default_factory=list, description="Every version observed, oldest first")
    last_checked: datetime = Field(..., description="Last successful check against the live API")
    revision: int = Field(default=1, ge=1, description="Incremented on every write")

    def to_row(self) -> dict[str, Any]:
        """Serialize with snake_case column names."""
        return self.model_dump(mode="json")


class LiveVersion(BaseModel):
    """Version reported by a live API, normalized to a comparable string."""
    version: str
    raw: Any = None


# ============================================================================
# Result Models
# ============================================================================

class VersionCheckResult(CamelModel):
    service: Service
    has_update: bool
    current_version: str
    latest_version: str
    available_versions: list[str]
    last_checked: datetime


class UpdateResult(CamelModel):
    success: bool
    version: str = Field(..., description="Version in effect after the call")
    previous_version: Optional[str] = None
    rolled_back: bool = False
    error: Optional[str] = None


class AutoUpdateEntry(CamelModel):
    checked: bool
    has_update: Optional[bool] = None
    current_version: Optional[str] = None
    latest_version: Optional[str] = None
    error: Optional[str] = None


# ============================================================================
# Request / Response Models
# ============================================================================

class UpdateVersionRequest(BaseModel):
    """Request to adopt a version for a service."""
    version: str = Field(..., description="Target version, e.g. 'v2' or '1.4.0'")


class APIStatus(BaseModel):
    connected: bool
    latency_ms: Optional[int] = None
    error: Optional[str] = None


class VersionInfo(CamelModel):
    version: Optional[str] = None
    last_checked: datetime
    source: str = Field(..., description="'store' when read from the database, 'fallback' otherwise")


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    uptime_seconds: float
    version: str
    environment: str
    services: dict[str, str]
