import asyncio

import pytest

from conftest import (
    TEST_DIMENSION,
    DictRecordStore,
    FailingEmbedder,
    HashEmbedder,
    StaticVectorIndex,
    UnavailableVectorIndex,
    make_record,
)
from resumefind.core.errors import EmbeddingUnavailable, IndexUnavailable, InvalidQuery
from resumefind.core.retry import RetryPolicy
from resumefind.schemas.search import HydratedHit, MetadataOnlyHit, SearchFilter, SearchStatus, VectorMatch
from resumefind.services.resumes.indexing_service import IndexingService
from resumefind.services.resumes.search_service import SearchService
from resumefind.services.resumes.vector_index import InMemoryVectorIndex

FAST = RetryPolicy(max_attempts=2, base_backoff_sec=0.0, jitter_sec=0.0)


def _service(embedder, index, store):
    return SearchService(
        embedder, index, store,
        dimension=TEST_DIMENSION,
        embed_policy=FAST, index_policy=FAST, record_policy=FAST,
    )


def _three_matches():
    return [
        VectorMatch(id="r1", score=0.9, metadata={"title": "First", "role": "Software Engineer"}),
        VectorMatch(id="r2", score=0.7, metadata={"title": "Second", "role": "Software Engineer"}),
        VectorMatch(id="r3", score=0.5, metadata={"title": "Third", "role": "Software Engineer"}),
    ]


def test_missing_record_degrades_single_hit_and_keeps_score_order():
    index = StaticVectorIndex(_three_matches())
    store = DictRecordStore({"r1": make_record("r1"), "r3": make_record("r3")})
    service = _service(HashEmbedder(), index, store)

    page = asyncio.run(service.search(
        "React and Node.js", SearchFilter(role="Software Engineer"), page=1, page_size=2,
    ))

    assert [hit.id for hit in page.results] == ["r1", "r2", "r3"]
    assert [type(hit) for hit in page.results] == [HydratedHit, MetadataOnlyHit, HydratedHit]
    assert page.results[1].metadata["title"] == "Second"
    assert page.total_results == 3
    assert page.status is SearchStatus.partial
    assert page.hydration_failures == ["r2"]
    assert index.query_calls[0]["filter"].clauses() == {"role": ["Software Engineer"]}
    assert index.query_calls[0]["top_k"] == 2


def test_record_store_outage_returns_metadata_only_results():
    index = StaticVectorIndex(_three_matches())
    store = DictRecordStore(fail_all=True)
    service = _service(HashEmbedder(), index, store)

    page = asyncio.run(service.search("python developer"))

    assert len(page.results) == 3
    assert all(isinstance(hit, MetadataOnlyHit) for hit in page.results)
    assert page.status is SearchStatus.metadata_only
    assert page.partial_failure().failed_ids == ["r1", "r2", "r3"]


@pytest.mark.parametrize("query, search_filter", [
    ("", None),
    ("   ", SearchFilter()),
    ("?!", SearchFilter(skills=[])),
])
def test_empty_query_and_filter_rejected_before_any_call(query, search_filter):
    embedder = HashEmbedder()
    index = StaticVectorIndex(_three_matches())
    store = DictRecordStore()
    service = _service(embedder, index, store)

    with pytest.raises(InvalidQuery):
        asyncio.run(service.search(query, search_filter))
    assert embedder.calls == []
    assert index.query_calls == []
    assert store.get_calls == []


def test_invalid_paging_rejected():
    service = _service(HashEmbedder(), StaticVectorIndex([]), DictRecordStore())
    with pytest.raises(InvalidQuery):
        asyncio.run(service.search("python", page=0))
    with pytest.raises(InvalidQuery):
        asyncio.run(service.search("python", page_size=0))


def test_filter_only_search_is_allowed():
    embedder = HashEmbedder()
    service = _service(embedder, StaticVectorIndex(_three_matches()), DictRecordStore())
    page = asyncio.run(service.search("", SearchFilter(role="Software Engineer")))
    assert embedder.calls == [["Role Software Engineer"]]
    assert page.total_results == 3


def test_no_matches_is_an_empty_page_not_an_error():
    service = _service(HashEmbedder(), StaticVectorIndex([]), DictRecordStore())
    page = asyncio.run(service.search("cobol mainframe"))
    assert page.results == []
    assert page.status is SearchStatus.empty
    assert page.total_pages == 0


def test_second_page_window():
    matches = [VectorMatch(id=f"r{i}", score=1.0 - i / 10, metadata={}) for i in range(4)]
    store = DictRecordStore({m.id: make_record(m.id) for m in matches})
    index = StaticVectorIndex(matches)
    service = _service(HashEmbedder(), index, store)

    page = asyncio.run(service.search("python", page=2, page_size=2))

    assert [hit.id for hit in page.results] == ["r2", "r3"]
    assert page.total_pages == 2
    assert index.query_calls[0]["top_k"] == 4
    assert page.status is SearchStatus.complete


def test_embedding_unavailable_surfaces_typed_error():
    embedder = FailingEmbedder(EmbeddingUnavailable("model offline"))
    index = StaticVectorIndex(_three_matches())
    service = _service(embedder, index, DictRecordStore())
    with pytest.raises(EmbeddingUnavailable) as excinfo:
        asyncio.run(service.search("python"))
    assert excinfo.value.stage == "embedding"
    assert index.query_calls == []


def test_index_unavailable_surfaces_typed_error():
    index = UnavailableVectorIndex()
    store = DictRecordStore()
    service = _service(HashEmbedder(), index, store)
    with pytest.raises(IndexUnavailable):
        asyncio.run(service.search("python"))
    assert index.query_calls == 2
    assert store.get_calls == []


def test_round_trip_search_after_index():
    embedder = HashEmbedder()
    index = InMemoryVectorIndex("resumes_test", TEST_DIMENSION)
    store = DictRecordStore()
    indexing = IndexingService(embedder, index, dimension=TEST_DIMENSION, embed_policy=FAST, index_policy=FAST)
    records = [
        make_record("ml", title="Machine Learning Engineer", skills=["PyTorch", "TensorFlow"],
                    content="Trained deep learning models for computer vision"),
        make_record("fe", title="Frontend Developer", skills=["React", "CSS"],
                    content="Built responsive web interfaces"),
        make_record("ops", title="DevOps Engineer", skills=["Kubernetes", "Terraform"],
                    content="Ran cloud infrastructure"),
    ]

    async def run():
        await index.ensure_index_exists()
        for r in records:
            await store.set(r.id, r)
        await indexing.index_many(records)
        return await _service(embedder, index, store).search("React frontend developer CSS web interfaces")

    page = asyncio.run(run())
    assert page.results[0].id == "fe"
    assert isinstance(page.results[0], HydratedHit)
    assert page.results[0].record.title == "Frontend Developer"
    scores = [hit.score for hit in page.results]
    assert scores == sorted(scores, reverse=True)


def test_totals_cover_only_matches_fetched_through_requested_page():
    embedder = HashEmbedder()
    index = InMemoryVectorIndex("resumes_test", TEST_DIMENSION)
    records = [make_record(f"r{i}") for i in range(5)]
    store = DictRecordStore({r.id: r for r in records})
    indexing = IndexingService(embedder, index, dimension=TEST_DIMENSION, embed_policy=FAST, index_policy=FAST)
    service = _service(embedder, index, store)

    async def run():
        await index.ensure_index_exists()
        await indexing.index_many(records)
        return [await service.search("software engineer", page=p, page_size=2) for p in (1, 2, 3, 4)]

    first, second, third, fourth = asyncio.run(run())
    assert (len(first.results), first.total_results, first.total_pages) == (2, 2, 1)
    assert (len(second.results), second.total_results, second.total_pages) == (2, 4, 2)
    assert (len(third.results), third.total_results, third.total_pages) == (1, 5, 3)
    assert fourth.results == []
    assert fourth.status is SearchStatus.empty
    assert fourth.total_results == 5
