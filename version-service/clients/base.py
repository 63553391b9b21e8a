"""Base API client with common functionality."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
INITIAL_RETRY_DELAY = 1.0  # seconds, doubled after each attempt
DEFAULT_TIMEOUT = 10.0


class APIClientError(Exception):
    """Request to an external API failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.request_id = request_id


class BaseAPIClient(ABC):
    """
    Base class for external API clients.

    Provides common functionality:
    - Async HTTP via httpx with a bounded timeout
    - Retry with exponential backoff on 429, 5xx and transport errors
    - Typed errors per API
    """

    error_class: type[APIClientError] = APIClientError

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = INITIAL_RETRY_DELAY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize API client.

        Args:
            api_key: Credential for the API; blank keys are rejected
            base_url: API root including any version segment
            timeout: Per-request timeout in seconds
            max_retries: Attempts before giving up
            retry_delay: Initial backoff delay in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        if not api_key or not api_key.strip():
            raise self.error_class("API key is required")

        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._transport = transport
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers=self.auth_headers(),
            transport=transport,
        )

    @property
    @abstractmethod
    def api_name(self) -> str:
        """Human readable API name used in errors and logs."""
        pass

    @abstractmethod
    def auth_headers(self) -> dict[str, str]:
        """Headers sent with every request."""
        pass

    def _error_message(self, response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = {}

        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            error = error.get("message")
        return error or response.reason_phrase or f"HTTP {response.status_code}"

    @staticmethod
    def _retry_after(response: httpx.Response, default: float) -> float:
        value = response.headers.get("retry-after")
        try:
            return float(int(value)) if value else default
        except ValueError:
            return default

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """
        Send a request, retrying transient failures.

        Raises:
            APIClientError (or the subclass in error_class) once retries are exhausted
        """
        delay = self.retry_delay
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            is_last = attempt == self.max_retries - 1

            try:
                response = await self._client.request(method, path, **kwargs)
            except httpx.HTTPError as e:
                # Timeouts and connection errors
                last_error = e
                logger.warning(f"{self.api_name} {method} {path} failed ({e!r}), attempt {attempt + 1}/{self.max_retries}")
                if not is_last:
                    await asyncio.sleep(delay)
                    delay *= 2
                continue

            if response.is_success:
                return response

            if (response.status_code == 429 or response.status_code >= 500) and not is_last:
                wait = self._retry_after(response, delay) if response.status_code == 429 else delay
                logger.warning(f"{self.api_name} returned {response.status_code}, retrying in {wait:.1f}s")
                await asyncio.sleep(wait)
                delay *= 2
                continue

            raise self.error_class(
                self._error_message(response),
                status_code=response.status_code,
                request_id=response.headers.get("x-request-id"),
            )

        raise self.error_class(f"{self.api_name} request failed after {self.max_retries} attempts: {last_error}")

    async def get_json(self, path: str, **kwargs: Any) -> Any:
        response = await self.request("GET", path, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise self.error_class(f"{self.api_name} returned invalid JSON") from e

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
