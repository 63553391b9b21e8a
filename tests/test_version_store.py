import asyncio
from datetime import datetime, timezone

import pytest

from conftest import FakeSB, version_row
from models.schemas import Service
from utils.version_store import SupabaseVersionStore
from versioning.errors import VersionConflictError
from versioning.ports import NEW_RECORD


def test_upsert_creates_record_with_defaults(store, fake_sb):
    record = asyncio.run(store.upsert(Service.GEMINI, {"current_version": "v1beta"}))

    assert record.service == Service.GEMINI
    assert record.current_version == "v1beta"
    assert record.last_known_good == "v1beta"
    assert record.available_versions == ["v1beta"]
    assert record.revision == 1

    rows = fake_sb.rows()
    assert len(rows) == 1
    assert rows[0]["service"] == "gemini"
    assert rows[0]["id"] == record.id


def test_insert_requires_current_version(store, fake_sb):
    with pytest.raises(ValueError):
        asyncio.run(store.upsert(Service.GEMINI, {"available_versions": ["v1"]}))
    assert fake_sb.rows() == []


def test_get_by_service_and_id():
    sb = FakeSB({"api_versions": [version_row("gemini"), version_row("image-generation", current="1.0.0")]})
    store = SupabaseVersionStore(sb)

    by_service = asyncio.run(store.get_by_service(Service.IMAGE_GENERATION))
    assert by_service.current_version == "1.0.0"

    by_id = asyncio.run(store.get_by_id("gemini-record"))
    assert by_id.service == Service.GEMINI

    assert asyncio.run(store.get_by_id("missing")) is None
    assert asyncio.run(store.get_by_id("")) is None


def test_get_by_service_missing_returns_none(store):
    assert asyncio.run(store.get_by_service(Service.GEMINI)) is None


def test_update_merges_fields_and_bumps_revision():
    sb = FakeSB({"api_versions": [version_row(revision=3)]})
    store = SupabaseVersionStore(sb)
    checked = datetime(2026, 2, 1, tzinfo=timezone.utc)

    record = asyncio.run(
        store.upsert(
            Service.GEMINI,
            {"available_versions": ["v1beta", "v2"], "last_checked": checked},
            expected_revision=3,
        )
    )

    assert record.revision == 4
    assert record.current_version == "v1beta"
    assert record.available_versions == ["v1beta", "v2"]
    assert record.last_checked == checked
    assert sb.rows()[0]["last_checked"] == checked.isoformat()


def test_update_with_stale_revision_conflicts():
    sb = FakeSB({"api_versions": [version_row(revision=2)]})
    store = SupabaseVersionStore(sb)

    with pytest.raises(VersionConflictError):
        asyncio.run(store.upsert(Service.GEMINI, {"current_version": "v2"}, expected_revision=1))

    assert sb.rows()[0]["current_version"] == "v1beta"
    assert sb.rows()[0]["revision"] == 2


def test_expected_revision_on_missing_record_conflicts(store, fake_sb):
    with pytest.raises(VersionConflictError):
        asyncio.run(store.upsert(Service.GEMINI, {"current_version": "v2"}, expected_revision=1))
    assert fake_sb.rows() == []


def test_create_only_write_never_merges_into_existing_record():
    sb = FakeSB({"api_versions": [version_row(current="v1", available=["v1beta", "v1"], revision=3)]})
    store = SupabaseVersionStore(sb)
    before = dict(sb.rows()[0])

    with pytest.raises(VersionConflictError, match="created concurrently"):
        asyncio.run(store.upsert(Service.GEMINI, {"current_version": "v2"}, expected_revision=NEW_RECORD))

    assert sb.rows() == [before]


def test_create_only_write_inserts_when_absent(store, fake_sb):
    record = asyncio.run(store.upsert(Service.GEMINI, {"current_version": "v1beta"}, expected_revision=NEW_RECORD))

    assert record.revision == 1
    assert len(fake_sb.rows()) == 1


def test_losing_insert_race_is_a_conflict():
    sb = FakeSB({"api_versions": [version_row()]})

    class StaleReadStore(SupabaseVersionStore):
        reads = 0

        async def get_by_service(self, service):
            # First read misses the row another writer just inserted
            self.reads += 1
            if self.reads == 1:
                return None
            return await super().get_by_service(service)

    with pytest.raises(VersionConflictError):
        asyncio.run(StaleReadStore(sb).upsert(Service.GEMINI, {"current_version": "v2"}, expected_revision=NEW_RECORD))

    assert [r["current_version"] for r in sb.rows()] == ["v1beta"]


def test_unknown_field_rejected():
    sb = FakeSB({"api_versions": [version_row()]})
    store = SupabaseVersionStore(sb)

    with pytest.raises(ValueError, match="Unknown version record fields"):
        asyncio.run(store.upsert(Service.GEMINI, {"revision": 10}))


def test_list_all_sorted_by_service():
    sb = FakeSB({"api_versions": [version_row("image-generation", current="1.0.0"), version_row("gemini")]})
    store = SupabaseVersionStore(sb)

    records = asyncio.run(store.list_all())

    assert [r.service for r in records] == [Service.GEMINI, Service.IMAGE_GENERATION]
    assert ("api_versions", "select", []) in sb.calls


def test_delete_reports_whether_a_row_was_removed():
    sb = FakeSB({"api_versions": [version_row()]})
    store = SupabaseVersionStore(sb)

    assert asyncio.run(store.delete("gemini-record")) is True
    assert asyncio.run(store.delete("gemini-record")) is False
    assert sb.rows() == []


def test_ping_returns_false_on_client_error(store, fake_sb):
    assert asyncio.run(store.ping()) is True

    fake_sb.fail_with = RuntimeError("connection refused")
    assert asyncio.run(store.ping()) is False


def test_custom_table_name():
    sb = FakeSB()
    store = SupabaseVersionStore(sb, table_name="versions_v2")

    asyncio.run(store.upsert(Service.GEMINI, {"current_version": "v1"}))

    assert len(sb.rows("versions_v2")) == 1
    assert sb.rows() == []
