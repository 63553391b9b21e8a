"""Per-service adapters that read and probe live API versions."""

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Optional

from packaging.version import Version

from clients.gemini import GeminiClient
from clients.image_generation import ImageGenerationClient, ImageGenerationError
from models.schemas import LiveVersion, Service
from .errors import VersionCheckError

logger = logging.getLogger(__name__)

GEMINI_VERSION_PATTERN = re.compile(r"^v(\d+)(?:(alpha|beta)(\d*))?$", re.IGNORECASE)
GEMINI_VERSION_IN_NAME = re.compile(r"(?<![a-z0-9])v\d+(?:alpha|beta)?\d*(?![a-z0-9])", re.IGNORECASE)
GEMINI_STAGE_RANK = {"alpha": 0, "beta": 1, None: 2}


def gemini_version_key(version: str) -> tuple[int, int, int]:
    """
    Ordering key for Gemini API versions.

    Major number first, then stage with alpha < beta < stable, then the stage
    number: v1alpha < v1beta < v1beta2 < v1 < v2beta < v2.

    Raises:
        ValueError: if the string is not a Gemini API version
    """
    match = GEMINI_VERSION_PATTERN.match(version.strip())
    if not match:
        raise ValueError(f"Not a Gemini API version: {version!r}")

    major, stage, stage_number = match.groups()
    stage = stage.lower() if stage else None
    return int(major), GEMINI_STAGE_RANK[stage], int(stage_number or 0)


def semantic_version_key(version: str) -> Version:
    """Ordering key for dotted release versions (1.2.0 < 1.10.0). Raises ValueError when invalid."""
    return Version(version.strip())


class VersionChecker(ABC):
    """
    Narrow capability interface over one tracked API.

    Implementations only read from and probe the live API; they never touch
    the version store and never retry.
    """

    service: Service

    @abstractmethod
    async def fetch_live_version(self) -> LiveVersion:
        """Ask the live API which version it exposes now."""
        pass

    @abstractmethod
    async def health_probe(self, version: str) -> None:
        """Make a minimal real call against a candidate version. Raises on failure."""
        pass

    @abstractmethod
    def sort_key(self, version: str) -> Any:
        """Ordering key for this service's versions. Raises ValueError when unparseable."""
        pass

    def is_downgrade(self, current: str, target: str) -> bool:
        return self.sort_key(target) < self.sort_key(current)

    def comparable(self, version: str, raw: Any = None) -> LiveVersion:
        """Wrap a live version, rejecting strings this service's ordering cannot parse."""
        try:
            self.sort_key(version)
        except ValueError as e:
            raise VersionCheckError(f"Live {self.service.value} API reported an unparseable version: {version!r}") from e
        return LiveVersion(version=version, raw=raw)


class GeminiVersionChecker(VersionChecker):
    """Derives the Gemini API version from model names in the model listing."""

    service = Service.GEMINI

    def __init__(self, client: GeminiClient, probe_model: Optional[str] = None):
        self.client = client
        self.probe_model = probe_model

    def sort_key(self, version: str) -> tuple[int, int, int]:
        return gemini_version_key(version)

    def extract_version(self, models: list[Any]) -> str:
        """Pick the newest API version token mentioned by any model name."""
        versions = set()
        for model in models:
            if not isinstance(model, dict) or not isinstance(model.get("name"), str):
                raise VersionCheckError("Gemini model listing contains an entry without a name")
            for token in GEMINI_VERSION_IN_NAME.findall(model["name"]):
                versions.add(token.lower())

        if not versions:
            return self.client.api_version
        return max(versions, key=gemini_version_key)

    async def fetch_live_version(self) -> LiveVersion:
        models = await self.client.list_models(filter_method="generateContent")
        return self.comparable(self.extract_version(models), raw=models)

    async def health_probe(self, version: str) -> None:
        kwargs = {"model": self.probe_model} if self.probe_model else {}
        async with self.client.with_api_version(version) as probe_client:
            await probe_client.generate_content(
                "Health check",
                temperature=0.1,
                max_output_tokens=10,
                **kwargs,
            )


class ImageGenerationVersionChecker(VersionChecker):
    """Reads the literal version field of the image generation /version endpoint."""

    service = Service.IMAGE_GENERATION

    def __init__(self, client: ImageGenerationClient):
        self.client = client

    def sort_key(self, version: str) -> Version:
        return semantic_version_key(version)

    async def fetch_live_version(self) -> LiveVersion:
        info = await self.client.check_version()
        version = info.get("version")
        if not isinstance(version, str) or not version.strip():
            raise VersionCheckError("Image generation version payload has no version field")
        return self.comparable(version.strip(), raw=info)

    async def health_probe(self, version: str) -> None:
        # The API serves one version at a time; only that version can be adopted
        live = await self.fetch_live_version()
        if self.sort_key(live.version) != self.sort_key(version):
            raise ImageGenerationError(f"Live API serves {live.version}, not {version}")
