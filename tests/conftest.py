from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from models.schemas import LiveVersion, Service
from utils.version_store import SupabaseVersionStore
from versioning.checkers import VersionChecker, gemini_version_key, semantic_version_key


# --- Fake Supabase client (chainable) -----------------------------------------

class _FakeResponse:
    def __init__(self, data: Optional[List[Dict[str, Any]]]):
        self.data = data


class _FakeQuery:
    def __init__(self, parent: "FakeSB", table_name: str):
        self._parent = parent
        self._table = table_name
        self._op = "select"
        self._values: Optional[Dict[str, Any]] = None
        self._filters: List[tuple] = []
        self._order: Optional[tuple] = None
        self._limit: Optional[int] = None

    def select(self, columns: str) -> "_FakeQuery":
        self._op = "select"
        return self

    def insert(self, row: Dict[str, Any]) -> "_FakeQuery":
        self._op, self._values = "insert", dict(row)
        return self

    def update(self, values: Dict[str, Any]) -> "_FakeQuery":
        self._op, self._values = "update", dict(values)
        return self

    def delete(self) -> "_FakeQuery":
        self._op = "delete"
        return self

    def eq(self, column: str, value: Any) -> "_FakeQuery":
        self._filters.append((column, value))
        return self

    def order(self, column: str, desc: bool = False) -> "_FakeQuery":
        self._order = (column, desc)
        return self

    def limit(self, n: int) -> "_FakeQuery":
        self._limit = n
        return self

    def _matches(self, row: Dict[str, Any]) -> bool:
        return all(row.get(col) == val for col, val in self._filters)

    def execute(self) -> _FakeResponse:
        self._parent.calls.append((self._table, self._op, list(self._filters)))
        if self._parent.fail_with is not None:
            raise self._parent.fail_with

        rows = self._parent.tables.setdefault(self._table, [])

        if self._op == "insert":
            if any(r.get("service") == self._values.get("service") for r in rows):
                raise RuntimeError("duplicate key value violates unique constraint")
            rows.append(dict(self._values))
            return _FakeResponse([dict(self._values)])

        matched = [r for r in rows if self._matches(r)]

        if self._op == "update":
            for row in matched:
                row.update(self._values)
            return _FakeResponse([dict(r) for r in matched])

        if self._op == "delete":
            self._parent.tables[self._table] = [r for r in rows if not self._matches(r)]
            return _FakeResponse([dict(r) for r in matched])

        if self._order:
            column, desc = self._order
            matched = sorted(matched, key=lambda r: r.get(column), reverse=desc)
        if self._limit is not None:
            matched = matched[: self._limit]
        return _FakeResponse([dict(r) for r in matched])


class FakeSB:
    """
    Minimal fake Supabase client.
    Seed with: FakeSB({ "table_name": [ {row}, ... ] })
    """

    def __init__(self, seed: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables = {k: [dict(r) for r in v] for k, v in (seed or {}).items()}
        self.calls: List[tuple] = []
        self.fail_with: Optional[Exception] = None

    def table(self, name: str) -> _FakeQuery:
        return _FakeQuery(self, name)

    def rows(self, name: str = "api_versions") -> List[Dict[str, Any]]:
        return self.tables.get(name, [])


# --- Fake checkers ------------------------------------------------------------

class StubChecker(VersionChecker):
    """Checker with a scripted live version and probe outcome, recording calls."""

    def __init__(
        self,
        service: Service,
        live_version: str,
        fetch_error: Optional[Exception] = None,
        probe_error: Optional[Exception] = None,
    ):
        self.service = service
        self.live_version = live_version
        self.fetch_error = fetch_error
        self.probe_error = probe_error
        self.fetch_calls = 0
        self.probe_calls: List[str] = []

    def sort_key(self, version: str):
        if self.service == Service.GEMINI:
            return gemini_version_key(version)
        return semantic_version_key(version)

    async def fetch_live_version(self) -> LiveVersion:
        self.fetch_calls += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        return LiveVersion(version=self.live_version, raw={"version": self.live_version})

    async def health_probe(self, version: str) -> None:
        self.probe_calls.append(version)
        if self.probe_error is not None:
            raise self.probe_error


class FakeClock:
    """Controllable clock returning timezone-aware datetimes."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def version_row(
    service: str = "gemini",
    current: str = "v1beta",
    last_known_good: Optional[str] = None,
    available: Optional[List[str]] = None,
    revision: int = 1,
    last_checked: str = "2025-12-01T00:00:00+00:00",
) -> Dict[str, Any]:
    return {
        "id": f"{service}-record",
        "service": service,
        "current_version": current,
        "last_known_good": last_known_good or current,
        "available_versions": available or [current],
        "last_checked": last_checked,
        "revision": revision,
    }


# --- Fixtures -----------------------------------------------------------------

@pytest.fixture
def fake_sb() -> FakeSB:
    return FakeSB()


@pytest.fixture
def store(fake_sb: FakeSB) -> SupabaseVersionStore:
    return SupabaseVersionStore(fake_sb)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
