import asyncio

import pytest

from conftest import TEST_DIMENSION, DictRecordStore, HashEmbedder, make_record
from resumefind.core.errors import RecordNotFound
from resumefind.core.retry import RetryPolicy
from resumefind.schemas.resume import ResumeUpdate
from resumefind.services.resumes.file_store import ResumeFileStore
from resumefind.services.resumes.indexing_service import IndexingService
from resumefind.services.resumes.service import ResumeService
from resumefind.services.resumes.vector_index import InMemoryVectorIndex

FAST = RetryPolicy(max_attempts=2, base_backoff_sec=0.0, jitter_sec=0.0)


class SlowEmbedder(HashEmbedder):
    async def embed_batch(self, texts):
        await asyncio.sleep(0.05)
        return await super().embed_batch(texts)


def _service(tmp_path, embedder=None):
    store = DictRecordStore()
    index = InMemoryVectorIndex("resumes_test", TEST_DIMENSION)
    indexing = IndexingService(
        embedder or HashEmbedder(), index, dimension=TEST_DIMENSION, embed_policy=FAST, index_policy=FAST,
    )
    return ResumeService(store, ResumeFileStore(tmp_path / "resumes"), indexing), store, index


def test_delete_racing_content_update_leaves_no_orphan_vector(tmp_path):
    service, store, index = _service(tmp_path, SlowEmbedder())

    async def run():
        await index.ensure_index_exists()
        record = make_record("r1")
        await store.set("r1", record)
        await service.indexing.index_resume(record)

        update = asyncio.create_task(service.update_resume("r1", ResumeUpdate(title="Principal Engineer")))
        await asyncio.sleep(0.005)
        await service.delete_resume("r1")
        await update
        return await index.list_ids(), await store.list_ids()

    vectors, records = asyncio.run(run())
    assert vectors == set()
    assert records == set()


def test_update_after_delete_is_not_found(tmp_path):
    service, store, index = _service(tmp_path)

    async def run():
        await index.ensure_index_exists()
        await store.set("r1", make_record("r1"))
        await service.delete_resume("r1")
        await service.update_resume("r1", ResumeUpdate(title="x"))

    with pytest.raises(RecordNotFound):
        asyncio.run(run())


def test_metadata_only_update_does_not_reindex(tmp_path):
    embedder = HashEmbedder()
    service, store, index = _service(tmp_path, embedder)

    async def run():
        await index.ensure_index_exists()
        await store.set("r1", make_record("r1"))
        return await service.update_resume("r1", ResumeUpdate(is_public=True))

    record, reindexed = asyncio.run(run())
    assert record.is_public is True
    assert reindexed is False
    assert embedder.calls == []


def test_reindex_all_indexes_every_stored_record(tmp_path):
    service, store, index = _service(tmp_path)

    async def run():
        await index.ensure_index_exists()
        for i in range(3):
            await store.set(f"r{i}", make_record(f"r{i}"))
        report = await service.reindex_all()
        return report, await index.list_ids()

    report, vectors = asyncio.run(run())
    assert sorted(report.indexed) == ["r0", "r1", "r2"]
    assert vectors == {"r0", "r1", "r2"}
