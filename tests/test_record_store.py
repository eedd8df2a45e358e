import asyncio
import json

import pytest

from conftest import make_record
from resumefind.core.errors import RecordNotFound, RecordStoreUnavailable
from resumefind.services.resumes.record_store import FileRecordStore


@pytest.fixture
def store(tmp_path):
    return FileRecordStore(tmp_path / "resumes")


def test_set_writes_metadata_and_index(store):
    asyncio.run(store.set("r1", make_record("r1", title="Backend Engineer")))

    meta = json.loads((store.root / "r1" / "metadata.json").read_text(encoding="utf-8"))
    assert meta["title"] == "Backend Engineer"
    assert meta["experienceLevel"] == "mid"
    index = json.loads((store.root / "index.json").read_text(encoding="utf-8"))
    assert [entry["id"] for entry in index] == ["r1"]


def test_get_roundtrips_and_missing_is_none(store):
    record = make_record("r1", skills=["Go", "Rust"])
    asyncio.run(store.set("r1", record))
    assert asyncio.run(store.get("r1")) == record
    assert asyncio.run(store.get("nope")) is None


def test_invalid_id_reads_as_missing(store):
    assert asyncio.run(store.get("../etc")) is None


def test_set_coerces_comma_separated_skills(store):
    doc = {"title": "Analyst", "skills": "SQL, Excel , ", "createdAt": 1, "updatedAt": 1}
    record = asyncio.run(store.set("r2", doc))
    assert record.id == "r2"
    assert record.skills == ["SQL", "Excel"]


def test_set_rejects_mismatched_id(store):
    with pytest.raises(ValueError):
        asyncio.run(store.set("r1", make_record("r2")))


def test_update_keeps_id_and_created_at_and_bumps_updated_at(store):
    asyncio.run(store.set("r1", make_record("r1")))

    updated = asyncio.run(store.update("r1", {"title": "Staff Engineer", "id": "hijack", "createdAt": 5}))

    assert updated.id == "r1"
    assert updated.title == "Staff Engineer"
    assert updated.created_at == 1_700_000_000_000
    assert updated.updated_at > 1_700_000_000_000
    assert asyncio.run(store.get("r1")).title == "Staff Engineer"


def test_update_accepts_python_field_names(store):
    asyncio.run(store.set("r1", make_record("r1")))
    updated = asyncio.run(store.update("r1", {"years_experience": "5"}))
    assert updated.years_experience == "5"


def test_update_missing_record_raises(store):
    with pytest.raises(RecordNotFound):
        asyncio.run(store.update("ghost", {"title": "x"}))


def test_delete_removes_directory_and_index_entry(store):
    asyncio.run(store.set("r1", make_record("r1")))
    (store.root / "r1" / "resume.pdf").write_bytes(b"%PDF")

    assert asyncio.run(store.delete("r1")) is True
    assert not (store.root / "r1").exists()
    assert asyncio.run(store.list_ids()) == set()
    assert asyncio.run(store.delete("r1")) is False


def test_list_is_newest_first_and_paginated(store):
    async def run():
        for i in range(5):
            await store.set(f"r{i}", make_record(f"r{i}", createdAt=1000 + i))
        return await store.list(offset=1, limit=2)

    records, total = asyncio.run(run())
    assert total == 5
    assert [r.id for r in records] == ["r3", "r2"]


def test_missing_index_is_rebuilt_from_metadata(store):
    asyncio.run(store.set("r1", make_record("r1")))
    (store.root / "index.json").unlink()
    assert asyncio.run(store.list_ids()) == {"r1"}
    assert (store.root / "index.json").exists()


def test_corrupt_record_raises_non_retryable(store):
    asyncio.run(store.set("r1", make_record("r1")))
    (store.root / "r1" / "metadata.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(RecordStoreUnavailable) as excinfo:
        asyncio.run(store.get("r1"))
    assert excinfo.value.retryable is False


def test_query_filters_records(store):
    async def run():
        await store.set("a", make_record("a", role="Designer"))
        await store.set("b", make_record("b", role="Software Engineer"))
        return await store.query(lambda r: r.role == "Designer")

    assert [r.id for r in asyncio.run(run())] == ["a"]
