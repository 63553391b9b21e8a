from typing import Any, Optional, Protocol

from models.schemas import Service, VersionRecord

# expected_revision for create-only writes; stored revisions start at 1
NEW_RECORD = 0


class VersionStore(Protocol):
    async def get_by_service(self, service: Service) -> Optional[VersionRecord]: ...

    async def get_by_id(self, record_id: str) -> Optional[VersionRecord]: ...

    async def upsert(
        self,
        service: Service,
        patch: dict[str, Any],
        expected_revision: Optional[int] = None,
    ) -> VersionRecord: ...

    async def list_all(self, sort_by: str = "service") -> list[VersionRecord]: ...

    async def delete(self, record_id: str) -> bool: ...

    async def ping(self) -> bool: ...
