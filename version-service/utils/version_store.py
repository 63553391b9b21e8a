"""Version record persistence using Supabase."""

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from models.schemas import Service, VersionRecord
from versioning.errors import VersionConflictError
from versioning.ports import NEW_RECORD

logger = logging.getLogger(__name__)

WRITABLE_FIELDS = {"current_version", "last_known_good", "available_versions", "last_checked"}


class SupabaseVersionStore:
    """
    Store for version records in Supabase.

    Features:
    - One row per service, created on first write
    - Compare-and-swap updates on the revision column
    - Listing sorted by any column

    The store persists whatever it is given; transition rules belong to the manager.
    """

    def __init__(self, supabase_client: Any, table_name: str = "api_versions"):
        """
        Initialize version store.

        Args:
            supabase_client: Supabase client instance
            table_name: Name of the versions table in Supabase
        """
        self.client = supabase_client
        self.table_name = table_name

    def _table(self):
        return self.client.table(self.table_name)

    @staticmethod
    def _serialize(patch: dict[str, Any]) -> dict[str, Any]:
        unknown = set(patch) - WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown version record fields: {sorted(unknown)}")

        values = {}
        for key, value in patch.items():
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, Enum):
                value = value.value
            values[key] = value
        return values

    async def get_by_service(self, service: Service) -> Optional[VersionRecord]:
        response = (
            self._table()
            .select("*")
            .eq("service", Service(service).value)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        return VersionRecord.model_validate(rows[0]) if rows else None

    async def get_by_id(self, record_id: str) -> Optional[VersionRecord]:
        if not record_id:
            return None

        response = self._table().select("*").eq("id", record_id).limit(1).execute()
        rows = response.data or []
        return VersionRecord.model_validate(rows[0]) if rows else None

    async def upsert(
        self,
        service: Service,
        patch: dict[str, Any],
        expected_revision: Optional[int] = None,
    ) -> VersionRecord:
        """
        Create the record for a service or merge fields into it.

        Args:
            service: Tracked service
            patch: Fields to write; last_checked is only written when present
            expected_revision: Revision the caller read; a mismatch raises VersionConflictError.
                NEW_RECORD (0) means the caller saw no record: insert only, never merge.

        Returns:
            The record as stored
        """
        service = Service(service)
        existing = await self.get_by_service(service)

        if expected_revision == NEW_RECORD:
            if existing is not None:
                raise VersionConflictError(
                    f"Version record for {service.value} was created concurrently (revision {existing.revision}); retry"
                )
            return await self._insert(service, patch)

        if existing is None:
            if expected_revision is not None:
                raise VersionConflictError(f"Version record for {service.value} no longer exists; retry")
            return await self._insert(service, patch)

        if expected_revision is not None and existing.revision != expected_revision:
            raise VersionConflictError(
                f"Version record for {service.value} changed (revision {existing.revision}, "
                f"expected {expected_revision}); retry"
            )

        values = self._serialize(patch)
        values["revision"] = existing.revision + 1

        # Only matches if nobody wrote since we read
        response = (
            self._table()
            .update(values)
            .eq("service", service.value)
            .eq("revision", existing.revision)
            .execute()
        )
        rows = response.data or []
        if not rows:
            raise VersionConflictError(f"Version record for {service.value} changed concurrently; retry")

        logger.debug(f"Updated {service.value} version record to revision {values['revision']}")
        return VersionRecord.model_validate(rows[0])

    async def _insert(self, service: Service, patch: dict[str, Any]) -> VersionRecord:
        values = self._serialize(patch)
        if "current_version" not in values:
            raise ValueError("current_version is required to create a version record")

        current = values["current_version"]
        record = VersionRecord(
            id=str(uuid.uuid4()),
            service=service,
            current_version=current,
            last_known_good=values.get("last_known_good", current),
            available_versions=values.get("available_versions", [current]),
            last_checked=values.get("last_checked") or datetime.now(timezone.utc),
            revision=1,
        )

        try:
            response = self._table().insert(record.to_row()).execute()
        except Exception as e:
            # Unique violation on service: another writer inserted first
            if await self.get_by_service(service) is not None:
                raise VersionConflictError(f"Version record for {service.value} was created concurrently; retry") from e
            raise
        rows = response.data or []

        logger.info(f"Created version record for {service.value} at {current}")
        return VersionRecord.model_validate(rows[0]) if rows else record

    async def list_all(self, sort_by: str = "service") -> list[VersionRecord]:
        response = self._table().select("*").order(sort_by).execute()
        return [VersionRecord.model_validate(row) for row in response.data or []]

    async def delete(self, record_id: str) -> bool:
        if not record_id:
            return False

        response = self._table().delete().eq("id", record_id).execute()
        return len(response.data or []) > 0

    async def ping(self) -> bool:
        """Return True when the versions table can be queried."""
        try:
            self._table().select("id").limit(1).execute()
            return True
        except Exception as e:
            logger.error(f"Version store ping failed: {e}")
            return False
