"""
API version manager.

Detects version drift for each tracked API and adopts new versions only after
a live health probe passes. Detection (check_version) and adoption
(update_version) are separate operations; auto_update_all only detects.

Per service:
    UNINITIALIZED --check_version--> TRACKED(current=V)
    TRACKED --check_version--> TRACKED (last_checked / available_versions refreshed)
    TRACKED --update_version + probe ok--> TRACKED(current=target)
    TRACKED --update_version + probe fails--> unchanged
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from models.schemas import AutoUpdateEntry, Service, UpdateResult, VersionCheckResult, VersionRecord
from .checkers import VersionChecker
from .errors import (
    APIVersionManagerError,
    ServiceNotConfiguredError,
    VersionConflictError,
    VersionValidationError,
)
from .ports import NEW_RECORD, VersionStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _append_unique(versions: list[str], version: str) -> list[str]:
    return versions if version in versions else [*versions, version]


class APIVersionManager:
    """
    Orchestrates the version store, per-service checkers and health probes.

    Writes go through the store with the revision that was read, so two
    concurrent updates of the same service cannot both commit; the loser
    gets VersionConflictError.
    """

    def __init__(
        self,
        store: VersionStore,
        checkers: Iterable[VersionChecker],
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self._checkers = {checker.service: checker for checker in checkers}
        self._clock = clock

    @property
    def services(self) -> list[Service]:
        """Tracked services, sorted by name."""
        return sorted(self._checkers, key=lambda s: s.value)

    def checker_for(self, service: Service) -> VersionChecker:
        try:
            service = Service(service)
        except ValueError as e:
            raise ServiceNotConfiguredError(f"Unknown service: {service}") from e

        checker = self._checkers.get(service)
        if checker is None:
            raise ServiceNotConfiguredError(f"Service {service.value} is not configured")
        return checker

    def _now(self, record: Optional[VersionRecord]) -> datetime:
        now = self._clock()
        # last_checked never moves backwards
        if record is not None and record.last_checked > now:
            return record.last_checked
        return now

    async def check_version(self, service: Service) -> VersionCheckResult:
        """
        Compare the live API version with the stored current version.

        Creates the record on first check. Never changes current_version.

        Raises:
            APIVersionManagerError: "Failed to check <service> version: ..." when
                the live API or the store fails; the stored record is untouched
        """
        checker = self.checker_for(service)
        name = checker.service.value

        try:
            record = await self.store.get_by_service(checker.service)
            live = await checker.fetch_live_version()
            now = self._now(record)

            if record is None:
                created = await self.store.upsert(
                    checker.service,
                    {
                        "current_version": live.version,
                        "last_known_good": live.version,
                        "available_versions": [live.version],
                        "last_checked": now,
                    },
                    expected_revision=NEW_RECORD,
                )
                logger.info(f"Tracking {name} at version {live.version}")
                return VersionCheckResult(
                    service=checker.service,
                    has_update=False,
                    current_version=live.version,
                    latest_version=live.version,
                    available_versions=created.available_versions,
                    last_checked=created.last_checked,
                )

            updated = await self.store.upsert(
                checker.service,
                {
                    "available_versions": _append_unique(record.available_versions, live.version),
                    "last_checked": now,
                },
                expected_revision=record.revision,
            )
        except VersionConflictError:
            raise
        except Exception as e:
            raise APIVersionManagerError(f"Failed to check {name} version: {e}") from e

        has_update = live.version != record.current_version
        if has_update:
            logger.info(f"Version drift for {name}: current {record.current_version}, live {live.version}")

        return VersionCheckResult(
            service=checker.service,
            has_update=has_update,
            current_version=record.current_version,
            latest_version=live.version,
            available_versions=updated.available_versions,
            last_checked=updated.last_checked,
        )

    async def update_version(self, service: Service, target_version: str) -> UpdateResult:
        """
        Adopt target_version if it passes a live health probe.

        Returns:
            UpdateResult; on probe failure success=False, rolled_back=True and
            version is the last known good version still in effect

        Raises:
            VersionValidationError: blank version, unparseable version, no record yet,
                or a downgrade; raised before any network call
            VersionConflictError: the record changed while the probe ran
            APIVersionManagerError: the store failed, or the stored version does not parse
        """
        if not target_version or not target_version.strip():
            raise VersionValidationError("Version is required")

        checker = self.checker_for(service)
        name = checker.service.value
        target = target_version.strip()

        try:
            record = await self.store.get_by_service(checker.service)
        except Exception as e:
            raise APIVersionManagerError(f"Failed to update {name} version: {e}") from e

        if record is None:
            raise VersionValidationError(f"No {name} version record found. Run a version check first.")

        try:
            checker.sort_key(target)
        except ValueError as e:
            raise VersionValidationError(f"Invalid {name} version: {target}") from e

        try:
            downgrade = checker.is_downgrade(record.current_version, target)
        except ValueError as e:
            raise APIVersionManagerError(
                f"Stored {name} version is not a valid version: {record.current_version}"
            ) from e

        if downgrade:
            raise VersionValidationError(f"Cannot downgrade from {record.current_version} to {target}")

        previous_version = record.current_version

        try:
            await checker.health_probe(target)
        except Exception as e:
            logger.warning(f"Health check for {name} {target} failed, keeping {record.last_known_good}: {e}")
            return UpdateResult(
                success=False,
                version=record.last_known_good,
                previous_version=previous_version,
                rolled_back=True,
                error=f"Health check failed: {e}",
            )

        try:
            await self.store.upsert(
                checker.service,
                {
                    "current_version": target,
                    "last_known_good": target,
                    "available_versions": _append_unique(record.available_versions, target),
                },
                expected_revision=record.revision,
            )
        except APIVersionManagerError:
            raise
        except Exception as e:
            raise APIVersionManagerError(f"Failed to update {name} version: {e}") from e

        logger.info(f"Updated {name} from {previous_version} to {target}")
        return UpdateResult(success=True, version=target, previous_version=previous_version)

    async def get_version_history(self) -> list[VersionRecord]:
        try:
            return await self.store.list_all(sort_by="service")
        except Exception as e:
            raise APIVersionManagerError(f"Failed to get version history: {e}") from e

    async def get_current_versions(self) -> dict[str, Optional[str]]:
        """Current version per tracked service; None where no record exists yet."""
        try:
            records = await self.store.list_all(sort_by="service")
        except Exception as e:
            raise APIVersionManagerError(f"Failed to get current versions: {e}") from e

        current: dict[str, Optional[str]] = {service.value: None for service in self.services}
        for record in records:
            if record.service.value in current:
                current[record.service.value] = record.current_version
        return current

    async def auto_update_all(self) -> dict[str, AutoUpdateEntry]:
        """
        Run check_version for every tracked service concurrently.

        A failure for one service is reported in its own entry and never
        affects the others. Adoption is left to the caller.
        """
        services = self.services
        outcomes = await asyncio.gather(
            *(self.check_version(service) for service in services),
            return_exceptions=True,
        )

        results: dict[str, AutoUpdateEntry] = {}
        for service, outcome in zip(services, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(f"Version check for {service.value} failed: {outcome}")
                results[service.value] = AutoUpdateEntry(checked=False, error=str(outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results[service.value] = AutoUpdateEntry(
                    checked=True,
                    has_update=outcome.has_update,
                    current_version=outcome.current_version,
                    latest_version=outcome.latest_version,
                )
        return results
