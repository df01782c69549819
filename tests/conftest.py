"""
Shared test doubles.

The fakes implement the store and model capabilities in memory so the HTTP
layer can be exercised end to end without network access.
"""

from typing import Any, Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from rag_cache_server.api.dependencies import ServiceContainer
from rag_cache_server.config import Settings
from rag_cache_server.core.errors import BackendUnavailable
from rag_cache_server.main import create_app
from rag_cache_server.stores.base import VectorHit, VectorQuery, VectorRecord


def exact_match(query_text: str, record_text: str) -> float:
    return 1.0 if query_text.strip().lower() == record_text.strip().lower() else 0.3


class FakeVectorStore:
    """
    In-memory VectorStore.

    Scores come from `similarity(query_text, record_text)` unless a query
    text has scripted hits. Every call is recorded.
    """

    def __init__(self, similarity: Callable[[str, str], float] = exact_match):
        self.similarity = similarity
        self.records: Dict[str, VectorRecord] = {}
        self.scripted: Dict[str, List[VectorHit]] = {}
        self.failing_queries: set = set()
        self.upsert_errors: List[Optional[Exception]] = []
        self.upserts: List[List[VectorRecord]] = []
        self.queries: List[VectorQuery] = []

    async def upsert(self, records):
        self.upserts.append(list(records))
        if self.upsert_errors:
            error = self.upsert_errors.pop(0)
            if error is not None:
                raise error
        for record in records:
            self.records[record.id] = record
        return len(records)

    async def query(self, query):
        self.queries.append(query)
        if query.embed_text in self.failing_queries:
            raise BackendUnavailable("vector index down")

        if query.embed_text in self.scripted:
            hits = list(self.scripted[query.embed_text])
        else:
            hits = [
                VectorHit(
                    id=r.id,
                    score=self.similarity(query.embed_text, r.embed_text),
                    metadata=dict(r.metadata),
                )
                for r in self.records.values()
            ]

        if query.filter is not None:
            hits = [h for h in hits if query.filter.matches(h.metadata)]
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[: query.top_k]

    def add_doc(self, record_id: str, text: str, source: str = "paper.pdf", page: int = 1):
        self.records[record_id] = VectorRecord(
            id=record_id,
            embed_text=text,
            metadata={"kind": "doc", "docId": "d1", "source": source, "page": page, "text": text},
        )


class FakeKeyValueStore:

    def __init__(self):
        self.data: Dict[str, Dict[str, Any]] = {}
        self.sets: List[str] = []
        self.fail = False

    async def get(self, key):
        if self.fail:
            raise BackendUnavailable("kv down")
        return self.data.get(key)

    async def set(self, key, value):
        if self.fail:
            raise BackendUnavailable("kv down")
        self.sets.append(key)
        self.data[key] = value


class FakeLLM:
    """Streams scripted deltas; raises `error` after `fail_after` deltas."""

    def __init__(self, deltas=("The answer", " is 42."), error=None, fail_after=0):
        self.deltas = list(deltas)
        self.error = error
        self.fail_after = fail_after
        self.calls: List[Dict[str, Any]] = []

    async def stream_chat(self, system_prompt, messages, temperature=0.2):
        self.calls.append({"system_prompt": system_prompt, "messages": messages})
        for i, delta in enumerate(self.deltas):
            if self.error is not None and i == self.fail_after:
                raise self.error
            yield delta
        if self.error is not None and self.fail_after >= len(self.deltas):
            raise self.error


def offline_settings(**overrides) -> Settings:
    values = dict(
        _env_file=None,
        upstash_vector_rest_url=None,
        upstash_vector_rest_token=None,
        upstash_redis_rest_url=None,
        upstash_redis_rest_token=None,
        openai_api_key=None,
        vector_backend="upstash",
        kv_backend="upstash",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def vector_store():
    return FakeVectorStore()


@pytest.fixture
def kv_store():
    return FakeKeyValueStore()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def services(vector_store, kv_store, llm):
    container = ServiceContainer(offline_settings())
    container.vector_store = vector_store
    container.kv_store = kv_store
    container.llm_client = llm
    return container


@pytest.fixture
def app(services):
    application = create_app(services.settings)
    application.state.services = services
    return application


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def unconfigured_client():
    """Client for an app with no backend credentials at all."""
    with TestClient(create_app(offline_settings())) as c:
        yield c
