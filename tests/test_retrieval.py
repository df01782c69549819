import pytest

from rag_cache_server.retrieval.engine import (
    ENHANCEMENT_KEYWORDS,
    FALLBACK_QUERIES,
    RetrievalEngine,
    enhance_query,
)
from rag_cache_server.stores.base import VectorHit


def doc_hit(record_id, score, text="chunk text"):
    return VectorHit(
        id=record_id,
        score=score,
        metadata={"kind": "doc", "source": "paper.pdf", "page": 1, "text": text},
    )


@pytest.fixture
def engine(vector_store):
    return RetrievalEngine(vector_store)


def test_enhance_query_matches_metadata_intent():
    assert enhance_query("Who are the AUTHORS?") == f"Who are the AUTHORS? {ENHANCEMENT_KEYWORDS}"
    assert enhance_query("What is the main result?") is None


@pytest.mark.asyncio
async def test_metadata_question_searches_enhanced_first(engine, vector_store):
    query = "Who are the authors?"
    enhanced = f"{query} {ENHANCEMENT_KEYWORDS}"
    vector_store.scripted[enhanced] = [doc_hit("doc:d1:0", 0.7, "By Alice and Bob")]

    chunks = await engine.retrieve(query)

    assert [c.id for c in chunks] == ["doc:d1:0"]
    assert [q.embed_text for q in vector_store.queries] == [enhanced]
    assert vector_store.queries[0].top_k == 8


@pytest.mark.asyncio
async def test_falls_back_to_raw_query_without_fallback_queries(engine, vector_store):
    query = "Who are the authors?"
    vector_store.scripted[f"{query} {ENHANCEMENT_KEYWORDS}"] = []
    vector_store.scripted[query] = [doc_hit("doc:d1:3", 0.6)]

    chunks = await engine.retrieve(query)

    assert [c.id for c in chunks] == ["doc:d1:3"]
    texts = [q.embed_text for q in vector_store.queries]
    assert texts == [f"{query} {ENHANCEMENT_KEYWORDS}", query]
    assert vector_store.queries[1].top_k == 10


@pytest.mark.asyncio
async def test_fallback_queries_run_in_order_until_one_returns(engine, vector_store):
    query = "What is the main result?"
    for text in (query,) + FALLBACK_QUERIES:
        vector_store.scripted[text] = []
    vector_store.scripted["paper"] = [doc_hit("doc:d1:9", 0.2)]

    chunks = await engine.retrieve(query)

    assert [c.id for c in chunks] == ["doc:d1:9"]
    assert [q.embed_text for q in vector_store.queries] == [
        query,
        query,
        "document",
        "text content",
        "paper",
    ]


@pytest.mark.asyncio
async def test_everything_empty_returns_empty(engine, vector_store):
    assert await engine.retrieve("What is the main result?") == []
    assert len(vector_store.queries) == 2 + len(FALLBACK_QUERIES)


@pytest.mark.asyncio
async def test_empty_query_makes_no_calls(engine, vector_store):
    assert await engine.retrieve("   ") == []
    assert vector_store.queries == []


@pytest.mark.asyncio
async def test_cache_records_are_never_returned(engine, vector_store):
    vector_store.scripted["anything"] = [
        VectorHit(id="cache:1", score=0.99, metadata={"kind": "cache", "pointerKey": "cache:1"}),
        doc_hit("doc:d1:0", 0.5),
    ]

    chunks = await engine.retrieve("anything")

    assert [c.id for c in chunks] == ["doc:d1:0"]
    assert not vector_store.queries[0].filter.matches({"kind": "cache"})


@pytest.mark.asyncio
async def test_failing_stage_degrades_to_next(engine, vector_store):
    query = "What is the main result?"
    vector_store.failing_queries.add(query)
    vector_store.scripted["document"] = [doc_hit("doc:d1:1", 0.4)]

    chunks = await engine.retrieve(query)

    assert [c.id for c in chunks] == ["doc:d1:1"]


@pytest.mark.asyncio
async def test_hits_without_text_are_dropped(engine, vector_store):
    vector_store.scripted["q"] = [
        VectorHit(id="doc:d1:0", score=0.9, metadata={"kind": "doc"}),
        doc_hit("doc:d1:1", 0.5, "kept"),
    ]

    chunks = await engine.retrieve("q")

    assert [c.text for c in chunks] == ["kept"]
    assert chunks[0].source == "paper.pdf"
    assert chunks[0].page == 1
