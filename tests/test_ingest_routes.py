from unittest.mock import AsyncMock

import httpx
import pytest

from rag_cache_server.api.dependencies import get_ingestion
from rag_cache_server.core.errors import BackendUnavailable, RateLimited
from rag_cache_server.ingest.chunking import TextChunk
from rag_cache_server.ingest.pipeline import IngestionPipeline, IngestResult, build_records


def chunks_body(n, doc_id="paper-1"):
    return {
        "docId": doc_id,
        "source": "paper.pdf",
        "chunks": [{"text": f"chunk {i}", "page": 1 + i // 10} for i in range(n)],
    }


def test_ingest_batches_of_fifty(client, vector_store):
    resp = client.post("/ingest", json=chunks_body(120))

    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "docId": "paper-1", "upserted": 120}
    assert [len(batch) for batch in vector_store.upserts] == [50, 50, 20]

    ids = [r.id for batch in vector_store.upserts for r in batch]
    assert ids == [f"doc:paper-1:{i}" for i in range(120)]


def test_ingest_record_metadata(client, vector_store):
    client.post("/ingest", json=chunks_body(1))

    record = vector_store.records["doc:paper-1:0"]
    assert record.embed_text == "chunk 0"
    assert record.metadata == {
        "kind": "doc",
        "docId": "paper-1",
        "source": "paper.pdf",
        "page": 1,
        "text": "chunk 0",
    }


def test_ingest_generates_doc_id_and_source(client, vector_store):
    resp = client.post("/ingest", json={"chunks": [{"text": "hello"}]})

    doc_id = resp.json()["docId"]
    assert doc_id
    record = vector_store.records[f"doc:{doc_id}:0"]
    assert record.metadata["source"] == f"doc:{doc_id}"
    assert record.metadata["page"] is None


def test_reingest_overwrites_in_place(client, vector_store):
    client.post("/ingest", json=chunks_body(3))
    client.post("/ingest", json=chunks_body(3))

    assert len(vector_store.records) == 3


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"chunks": []},
        {"chunks": [{"text": ""}]},
        {"chunks": [{"text": "x", "page": 0}]},
        {"chunks": [{"text": "x"}], "unexpected": True},
    ],
)
def test_invalid_ingest_payload_is_400(client, vector_store, body):
    resp = client.post("/ingest", json=body)

    assert resp.status_code == 400
    data = resp.json()
    assert data["ok"] is False
    assert data["error"] == "Invalid payload"
    assert data["issues"]
    assert vector_store.upserts == []


def test_rate_limit_reports_partial_progress(client, vector_store):
    vector_store.upsert_errors = [None, RateLimited()]

    resp = client.post("/ingest", json=chunks_body(120))

    assert resp.status_code == 429
    data = resp.json()
    assert data["ok"] is False
    assert data["error"] == "Rate limit exceeded"
    assert data["upserted"] == 50
    # no batch after the throttled one was attempted
    assert len(vector_store.upserts) == 2


def test_backend_failure_is_502(client, vector_store):
    vector_store.upsert_errors = [BackendUnavailable("down")]

    resp = client.post("/ingest", json=chunks_body(5))

    assert resp.status_code == 502
    assert resp.json()["error"] == "backend_unavailable"


def test_unconfigured_backend_is_500(unconfigured_client):
    resp = unconfigured_client.post("/ingest", json=chunks_body(1))

    assert resp.status_code == 500
    data = resp.json()
    assert data["error"] == "config_missing"
    assert "UPSTASH_VECTOR_REST_URL" in data["detail"]


def test_ingest_text_chunks_server_side(client, vector_store):
    body = {
        "docId": "paper-2",
        "pages": [
            {"text": "a" * 1000, "page": 1},
            {"text": "  second\n page  ", "page": 2},
        ],
    }

    resp = client.post("/ingest/text", json=body)

    assert resp.status_code == 200
    assert resp.json()["upserted"] == 3
    pages = [vector_store.records[f"doc:paper-2:{i}"].metadata["page"] for i in range(3)]
    assert pages == [1, 1, 2]
    assert vector_store.records["doc:paper-2:2"].embed_text == "second page"


def test_ingest_text_without_content_is_400(client, vector_store):
    resp = client.post("/ingest/text", json={"pages": [{"text": "   \n "}]})

    assert resp.status_code == 400
    assert resp.json()["issues"][0]["path"] == ["pages"]
    assert vector_store.upserts == []


# ---------------------------------------------------------------------
# Pipeline (no HTTP)
# ---------------------------------------------------------------------

def test_build_records_continues_index():
    records = build_records("d", "s", [TextChunk(text="x"), TextChunk(text="y")], start_index=50)

    assert [r.id for r in records] == ["doc:d:50", "doc:d:51"]


@pytest.mark.asyncio
async def test_pipeline_custom_batch_size(vector_store):
    pipeline = IngestionPipeline(vector_store, batch_size=2)

    result = await pipeline.ingest([TextChunk(text=str(i)) for i in range(5)], doc_id="d")

    assert result.upserted == 5
    assert [len(b) for b in vector_store.upserts] == [2, 2, 1]


@pytest.mark.asyncio
async def test_ingest_over_asgi_with_mocked_pipeline(app):
    pipeline = AsyncMock(spec=IngestionPipeline)
    pipeline.ingest.return_value = IngestResult(doc_id="m1", upserted=2)
    app.dependency_overrides[get_ingestion] = lambda: pipeline

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.post("/ingest", json=chunks_body(2, doc_id="m1"))

    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "docId": "m1", "upserted": 2}
    pipeline.ingest.assert_awaited_once()
    _, kwargs = pipeline.ingest.await_args
    assert kwargs == {"doc_id": "m1", "source": "paper.pdf"}
