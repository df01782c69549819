"""
PostgreSQL stores: the statements they build and how database failures map
to BackendUnavailable. No database is needed; a fake session factory records
every statement and the SQL is compiled for the PostgreSQL dialect.
"""

from types import SimpleNamespace

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from rag_cache_server.core.errors import BackendUnavailable
from rag_cache_server.stores.base import MetadataFilter, VectorQuery, VectorRecord
from rag_cache_server.stores.pg_kv import PostgresKeyValueStore
from rag_cache_server.stores.pg_vector import PgVectorStore


class FakeSession:

    def __init__(self, factory):
        self._factory = factory

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def execute(self, stmt):
        self._factory.statements.append(stmt)
        if self._factory.error is not None:
            raise self._factory.error
        return self._factory.result

    async def commit(self):
        self._factory.commits += 1


class FakeSessionFactory:

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.statements = []
        self.commits = 0

    def __call__(self):
        return FakeSession(self)


class FakeEmbedder:

    def __init__(self):
        self.calls = []

    async def embed(self, texts, batch_size=20):
        self.calls.append(list(texts))
        return [[0.1, 0.2, 0.3] for _ in texts]


def compile_pg(stmt):
    return stmt.compile(dialect=postgresql.dialect())


def db_down():
    return OperationalError("SELECT 1", {}, ConnectionRefusedError("refused"))


# ---------------------------------------------------------------------
# PgVectorStore
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_vector_upsert_embeds_and_replaces_by_id():
    sessions = FakeSessionFactory()
    embedder = FakeEmbedder()
    store = PgVectorStore(sessions, embedder)

    written = await store.upsert([
        VectorRecord(id="doc:d1:0", embed_text="alpha", metadata={"kind": "doc"}),
        VectorRecord(id="doc:d1:1", embed_text="beta", metadata={"kind": "doc"}),
    ])

    assert written == 2
    assert embedder.calls == [["alpha", "beta"]]
    assert sessions.commits == 1

    sql = str(compile_pg(sessions.statements[0]))
    assert "INSERT INTO vector_entry" in sql
    assert "ON CONFLICT (id) DO UPDATE" in sql
    assert "embedding = excluded.embedding" in sql


@pytest.mark.asyncio
async def test_vector_upsert_of_nothing_skips_the_database():
    sessions = FakeSessionFactory()
    embedder = FakeEmbedder()

    assert await PgVectorStore(sessions, embedder).upsert([]) == 0
    assert sessions.statements == []
    assert embedder.calls == []


@pytest.mark.asyncio
async def test_vector_query_orders_by_cosine_distance_and_limits():
    rows = [
        SimpleNamespace(id="doc:d1:0", score=0.91, meta={"kind": "doc", "text": "alpha"}),
        SimpleNamespace(id="doc:d1:1", score=0.42, meta=None),
    ]
    sessions = FakeSessionFactory(result=SimpleNamespace(all=lambda: rows))
    store = PgVectorStore(sessions, FakeEmbedder())

    hits = await store.query(VectorQuery(embed_text="alpha?", top_k=7))

    compiled = compile_pg(sessions.statements[0])
    sql = str(compiled)
    assert "<=>" in sql
    assert "ORDER BY" in sql
    assert "LIMIT" in sql
    assert "AS score" in sql
    assert "AS meta" in sql
    assert 7 in compiled.params.values()

    assert [h.id for h in hits] == ["doc:d1:0", "doc:d1:1"]
    assert hits[0].score == pytest.approx(0.91)
    assert hits[0].metadata["text"] == "alpha"
    assert hits[1].metadata == {}


@pytest.mark.asyncio
async def test_vector_query_equality_filter():
    sessions = FakeSessionFactory(result=SimpleNamespace(all=lambda: []))
    store = PgVectorStore(sessions, FakeEmbedder())

    await store.query(VectorQuery(embed_text="q", top_k=3, filter=MetadataFilter.eq("kind", "cache")))

    compiled = compile_pg(sessions.statements[0])
    sql = str(compiled)
    assert "->>" in sql
    assert "IS DISTINCT FROM" not in sql
    assert "cache" in compiled.params.values()


@pytest.mark.asyncio
async def test_vector_query_negated_filter_keeps_entries_without_the_field():
    sessions = FakeSessionFactory(result=SimpleNamespace(all=lambda: []))
    store = PgVectorStore(sessions, FakeEmbedder())

    await store.query(VectorQuery(embed_text="q", top_k=3, filter=MetadataFilter.ne("kind", "cache")))

    sql = str(compile_pg(sessions.statements[0]))
    assert "->>" in sql
    assert "IS DISTINCT FROM" in sql


@pytest.mark.asyncio
async def test_vector_store_database_errors_are_backend_unavailable():
    store = PgVectorStore(FakeSessionFactory(error=db_down()), FakeEmbedder())

    with pytest.raises(BackendUnavailable):
        await store.query(VectorQuery(embed_text="q", top_k=3))

    with pytest.raises(BackendUnavailable):
        await store.upsert([VectorRecord(id="doc:d1:0", embed_text="alpha")])


# ---------------------------------------------------------------------
# PostgresKeyValueStore
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_kv_get_returns_stored_dict():
    payload = {"query": "q", "text": "answer", "citations": []}
    sessions = FakeSessionFactory(result=SimpleNamespace(scalar_one_or_none=lambda: payload))

    assert await PostgresKeyValueStore(sessions).get("cache:1") == payload

    compiled = compile_pg(sessions.statements[0])
    assert "FROM kv_entry" in str(compiled)
    assert "cache:1" in compiled.params.values()


@pytest.mark.asyncio
@pytest.mark.parametrize("stored", [None, ["not", "a", "dict"], "text"])
async def test_kv_get_missing_or_non_dict_is_none(stored):
    sessions = FakeSessionFactory(result=SimpleNamespace(scalar_one_or_none=lambda: stored))

    assert await PostgresKeyValueStore(sessions).get("cache:1") is None


@pytest.mark.asyncio
async def test_kv_set_overwrites_by_key():
    sessions = FakeSessionFactory()

    await PostgresKeyValueStore(sessions).set("cache:1", {"text": "answer"})

    sql = str(compile_pg(sessions.statements[0]))
    assert "INSERT INTO kv_entry" in sql
    assert "ON CONFLICT (key) DO UPDATE" in sql
    assert "updated_at = now()" in sql
    assert sessions.commits == 1


@pytest.mark.asyncio
async def test_kv_database_errors_are_backend_unavailable():
    store = PostgresKeyValueStore(FakeSessionFactory(error=db_down()))

    with pytest.raises(BackendUnavailable):
        await store.get("cache:1")

    with pytest.raises(BackendUnavailable):
        await store.set("cache:1", {"text": "answer"})
