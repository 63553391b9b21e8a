"""
Version Service - API Version Tracking with Health-Gated Updates

FastAPI service providing:
- Version drift detection for the Gemini and image generation APIs
- Health-gated version adoption that reports the last known good version on failure
- Version history stored in Supabase
- Per-client, per-route rate limiting
"""

import asyncio
import ipaddress
import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Iterable, NoReturn, Optional

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic_settings import BaseSettings
from starlette.middleware.base import BaseHTTPMiddleware

# Load environment variables
load_dotenv()

from clients.base import APIClientError, BaseAPIClient
from clients.gemini import DEFAULT_API_VERSION, GeminiClient
from clients.image_generation import IMAGE_GENERATION_API_BASE, ImageGenerationClient
from models.schemas import (
    APIStatus,
    AutoUpdateEntry,
    HealthResponse,
    Service,
    UpdateResult,
    UpdateVersionRequest,
    VersionCheckResult,
    VersionInfo,
    VersionRecord,
)
from utils.rate_limiter import RateLimitConfig, RateLimiter
from utils.version_store import SupabaseVersionStore
from versioning.checkers import GeminiVersionChecker, ImageGenerationVersionChecker, VersionChecker
from versioning.errors import (
    APIVersionManagerError,
    ServiceNotConfiguredError,
    VersionConflictError,
    VersionValidationError,
)
from versioning.manager import APIVersionManager
from versioning.ports import VersionStore

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

SERVICE_VERSION = "1.0.0"

# Reported by /status/versions when a service has no stored record.
# The image generation API has historically been on 1.0.0 with no changelog feed.
FALLBACK_VERSIONS: dict[Service, Optional[str]] = {
    Service.GEMINI: None,
    Service.IMAGE_GENERATION: "1.0.0",
}


# ============================================================================
# Configuration
# ============================================================================

class Settings(BaseSettings):
    """Application settings from environment variables."""
    gemini_api_key: str = ""
    gemini_api_version: str = DEFAULT_API_VERSION
    gemini_probe_model: str = ""
    image_generation_api_key: str = ""
    image_generation_api_base: str = IMAGE_GENERATION_API_BASE
    supabase_url: str = ""
    supabase_key: str = ""
    api_versions_table: str = "api_versions"
    request_timeout_seconds: float = 10.0
    cors_allowed_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    environment: str = "development"

    class Config:
        env_file = ".env"
        extra = "ignore"


def build_checkers(settings: Settings) -> tuple[list[VersionChecker], list[BaseAPIClient]]:
    """Create a checker for every API whose credentials are configured."""
    checkers: list[VersionChecker] = []
    clients: list[BaseAPIClient] = []

    if settings.gemini_api_key:
        gemini = GeminiClient(
            settings.gemini_api_key,
            api_version=settings.gemini_api_version,
            timeout=settings.request_timeout_seconds,
        )
        clients.append(gemini)
        checkers.append(GeminiVersionChecker(gemini, probe_model=settings.gemini_probe_model or None))
    else:
        logger.warning("GEMINI_API_KEY not set; Gemini version tracking disabled")

    if settings.image_generation_api_key:
        images = ImageGenerationClient(
            settings.image_generation_api_key,
            base_url=settings.image_generation_api_base,
            timeout=settings.request_timeout_seconds,
        )
        clients.append(images)
        checkers.append(ImageGenerationVersionChecker(images))
    else:
        logger.warning("IMAGE_GENERATION_API_KEY not set; image generation version tracking disabled")

    return checkers, clients


def build_store(settings: Settings) -> Optional[SupabaseVersionStore]:
    if not (settings.supabase_url and settings.supabase_key):
        logger.warning("SUPABASE_URL / SUPABASE_KEY not set; version storage disabled")
        return None

    from supabase import create_client

    client = create_client(settings.supabase_url, settings.supabase_key)
    return SupabaseVersionStore(client, table_name=settings.api_versions_table)


# ============================================================================
# Rate Limiting
# ============================================================================

# Longest matching path prefix wins
ROUTE_RATE_LIMITS: dict[str, RateLimitConfig] = {
    "/gemini/models": RateLimitConfig(requests_per_window=30, window_ms=60_000, route="gemini.models"),
    "/versions": RateLimitConfig(requests_per_window=10, window_ms=60_000, route="versions"),
    # Fans out to every tracked API
    "/versions/auto-update": RateLimitConfig(requests_per_window=2, window_ms=60_000, route="versions.auto-update"),
    # Lightweight polling
    "/status": RateLimitConfig(requests_per_window=60, window_ms=60_000, route="status"),
}

UNLIMITED_PATHS = {"/", "/health"}


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


def get_client_ip(request: Request) -> str:
    """Client IP from X-Forwarded-For (first hop), then the socket peer, else localhost."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    candidate = forwarded.split(",")[0].strip()
    if candidate and _is_ip(candidate):
        return candidate

    if request.client and request.client.host and _is_ip(request.client.host):
        return request.client.host

    return "127.0.0.1"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to apply per-route rate limits keyed by client IP."""

    def __init__(self, app, limiter: RateLimiter, route_limits: dict[str, RateLimitConfig]):
        super().__init__(app)
        self.limiter = limiter
        self.route_limits = route_limits

    def config_for(self, path: str) -> Optional[RateLimitConfig]:
        matches = [p for p in self.route_limits if path == p or path.startswith(p + "/")]
        if not matches:
            return None
        return self.route_limits[max(matches, key=len)]

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        config = None if path in UNLIMITED_PATHS else self.config_for(path)
        if config is None:
            return await call_next(request)

        result = self.limiter.check_limit(get_client_ip(request), config)

        if not result.allowed:
            headers = result.headers() if config.include_headers else {"Retry-After": str(result.retry_after_seconds)}
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Too many requests. Please try again later.",
                    "retry_after": result.retry_after_seconds,
                },
                headers=headers,
            )

        response = await call_next(request)
        if config.include_headers:
            response.headers.update(result.headers())
        return response


# ============================================================================
# Dependencies
# ============================================================================

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_version_manager(request: Request) -> APIVersionManager:
    manager = request.app.state.version_manager
    if manager is None:
        raise HTTPException(status_code=503, detail="Version tracking is not configured")
    return manager


def _raise_http_error(exc: APIVersionManagerError) -> NoReturn:
    """Map manager errors to stable HTTP errors."""
    if isinstance(exc, VersionValidationError):
        raise HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, ServiceNotConfiguredError):
        raise HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, VersionConflictError):
        raise HTTPException(status_code=409, detail=str(exc))
    logger.exception(f"Version operation failed: {exc}")
    raise HTTPException(status_code=500, detail=str(exc))


router = APIRouter()


# ============================================================================
# Health & Status
# ============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request, settings: Settings = Depends(get_settings)):
    """Health check endpoint."""
    store: Optional[VersionStore] = request.app.state.store

    database = "disconnected"
    if store is not None and await store.ping():
        database = "connected"
    healthy = database == "connected"

    body = HealthResponse(
        status="healthy" if healthy else "unhealthy",
        timestamp=datetime.now(timezone.utc),
        uptime_seconds=time.time() - request.app.state.start_time,
        version=SERVICE_VERSION,
        environment=settings.environment,
        services={"database": database, "api": "operational"},
    )
    return JSONResponse(
        status_code=200 if healthy else 503,
        content=body.model_dump(mode="json"),
        headers={"Cache-Control": "no-store, no-cache, must-revalidate"},
    )


async def _probe_status(checker: VersionChecker) -> APIStatus:
    started = time.perf_counter()
    try:
        await checker.fetch_live_version()
    except Exception as e:
        latency = int((time.perf_counter() - started) * 1000)
        logger.warning(f"Status check for {checker.service.value} failed: {e}")
        return APIStatus(connected=False, latency_ms=latency, error=str(e))
    return APIStatus(connected=True, latency_ms=int((time.perf_counter() - started) * 1000))


@router.get("/status", response_model=dict[str, APIStatus])
async def api_status(request: Request):
    """Connectivity and latency of each tracked API, probed in parallel."""
    checkers: dict[Service, VersionChecker] = request.app.state.checkers

    result = {s.value: APIStatus(connected=False, error="API key not configured") for s in Service}
    statuses = await asyncio.gather(*(_probe_status(c) for c in checkers.values()))
    for service, status in zip(checkers, statuses):
        result[service.value] = status
    return result


@router.get("/status/versions", response_model=dict[str, VersionInfo])
async def version_info(request: Request):
    """Current version of each service, with an explicit fallback where none is stored."""
    store: Optional[VersionStore] = request.app.state.store
    now = datetime.now(timezone.utc)

    info = {}
    for service in Service:
        record = None
        if store is not None:
            try:
                record = await store.get_by_service(service)
            except Exception:
                logger.exception(f"Failed to read stored version for {service.value}")

        if record is not None:
            info[service.value] = VersionInfo(
                version=record.current_version,
                last_checked=record.last_checked,
                source="store",
            )
        else:
            info[service.value] = VersionInfo(
                version=FALLBACK_VERSIONS.get(service),
                last_checked=now,
                source="fallback",
            )
    return info


# ============================================================================
# Version Endpoints
# ============================================================================

@router.get("/versions", response_model=list[VersionRecord])
async def version_history(manager: APIVersionManager = Depends(get_version_manager)):
    try:
        return await manager.get_version_history()
    except APIVersionManagerError as e:
        _raise_http_error(e)


@router.get("/versions/current", response_model=dict[str, Optional[str]])
async def current_versions(manager: APIVersionManager = Depends(get_version_manager)):
    try:
        return await manager.get_current_versions()
    except APIVersionManagerError as e:
        _raise_http_error(e)


@router.post("/versions/auto-update", response_model=dict[str, AutoUpdateEntry])
async def auto_update_all(manager: APIVersionManager = Depends(get_version_manager)):
    """Check every tracked API for drift. Never adopts a version."""
    return await manager.auto_update_all()


@router.post("/versions/{service}/check", response_model=VersionCheckResult)
async def check_version(service: Service, manager: APIVersionManager = Depends(get_version_manager)):
    logger.info(f"Checking {service.value} version")
    try:
        return await manager.check_version(service)
    except APIVersionManagerError as e:
        _raise_http_error(e)


@router.post("/versions/{service}/update", response_model=UpdateResult)
async def update_version(
    service: Service,
    body: UpdateVersionRequest,
    manager: APIVersionManager = Depends(get_version_manager),
):
    """Adopt a version after a live health probe. A failed probe is a 200 with success=false."""
    logger.info(f"Updating {service.value} to {body.version!r}")
    try:
        return await manager.update_version(service, body.version)
    except APIVersionManagerError as e:
        _raise_http_error(e)


# ============================================================================
# Gemini Endpoints
# ============================================================================

@router.get("/gemini/models")
async def list_gemini_models(request: Request):
    """Models that support content generation."""
    checker = request.app.state.checkers.get(Service.GEMINI)
    if checker is None:
        raise HTTPException(status_code=503, detail="Gemini API key not configured")

    try:
        models = await checker.client.list_models(filter_method="generateContent")
    except APIClientError as e:
        logger.error(f"Listing Gemini models failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to list Gemini models")

    return {
        "models": [
            {"name": m.get("name"), "displayName": m.get("displayName")}
            for m in models
        ]
    }


# ============================================================================
# Root
# ============================================================================

@router.get("/")
async def root(request: Request):
    """Root endpoint with service info."""
    return {
        "service": "Version Service",
        "version": SERVICE_VERSION,
        "status": "running",
        "tracking": [s.value for s in request.app.state.checkers],
        "endpoints": [
            "/health",
            "/status",
            "/status/versions",
            "/versions",
            "/versions/current",
            "/versions/auto-update",
            "/versions/{service}/check",
            "/versions/{service}/update",
            "/gemini/models",
        ],
    }


# ============================================================================
# FastAPI App
# ============================================================================

def create_app(
    settings: Optional[Settings] = None,
    store: Optional[VersionStore] = None,
    checkers: Optional[Iterable[VersionChecker]] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings; read from the environment when omitted
        store: Version store; built from Supabase settings when omitted
        checkers: Version checkers; built from API keys when omitted
        rate_limiter: Rate limiter shared by all routes
    """
    settings = settings or Settings()
    rate_limiter = rate_limiter or RateLimiter()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize and cleanup resources."""
        logger.info("Starting Version service...")
        clients: list[BaseAPIClient] = []

        if checkers is None:
            built, clients = build_checkers(settings)
        else:
            built = list(checkers)
        app.state.checkers = {checker.service: checker for checker in built}
        app.state.store = store if store is not None else build_store(settings)
        app.state.version_manager = (
            APIVersionManager(app.state.store, built) if app.state.store is not None else None
        )

        logger.info(f"Version service ready (tracking: {', '.join(s.value for s in app.state.checkers) or 'nothing'})")
        yield

        logger.info("Shutting down Version service...")
        for client in clients:
            await client.aclose()

    app = FastAPI(
        title="Version Service",
        description="Tracks external API versions and adopts new ones behind a health check",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.rate_limiter = rate_limiter
    app.state.start_time = time.time()

    # CORS middleware - restrict origins for security
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.cors_allowed_origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.add_middleware(RateLimitMiddleware, limiter=rate_limiter, route_limits=ROUTE_RATE_LIMITS)

    app.include_router(router)
    return app


app = create_app()
