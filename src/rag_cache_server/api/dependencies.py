"""
Service wiring.

`ServiceContainer` builds every component from `Settings` the first time it
is needed and keeps the instance for the lifetime of the app. Backend
clients are stateless, so sharing one instance across concurrent requests is
safe. Construction errors such as ConfigMissing surface at first use, not at
import or startup.

Routes receive components through FastAPI `Depends`; tests swap them with
`app.dependency_overrides` or by replacing `app.state.services`.
"""

from __future__ import annotations

from functools import cached_property
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..cache.semantic_cache import SemanticCache
from ..config import Settings
from ..db.session import create_session_factory
from ..embeddings.embedder import OpenAIEmbedder
from ..generation.orchestrator import GenerationOrchestrator
from ..ingest.pipeline import IngestionPipeline
from ..llm.client import LLMClient
from ..retrieval.engine import RetrievalEngine
from ..stores.base import KeyValueStore, VectorStore
from ..stores.pg_kv import PostgresKeyValueStore
from ..stores.pg_vector import PgVectorStore
from ..stores.upstash_redis import UpstashRedisStore
from ..stores.upstash_vector import UpstashVectorStore


class ServiceContainer:

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    # ------------------------------------------------------------------
    # Backends
    # ------------------------------------------------------------------

    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = create_session_factory(self.settings.database_url)
        return self._session_factory

    def uses_postgres(self) -> bool:
        return self.settings.vector_backend == "pgvector" or self.settings.kv_backend == "postgres"

    async def aclose(self) -> None:
        if self._session_factory is not None:
            await self._session_factory.kw["bind"].dispose()
            self._session_factory = None

    @cached_property
    def vector_store(self) -> VectorStore:
        s = self.settings
        if s.vector_backend == "pgvector":
            embedder = OpenAIEmbedder(
                api_key=s.openai_api_key,
                model=s.embedding_model,
                base_url=s.llm_base_url,
                timeout=s.http_timeout,
            )
            return PgVectorStore(self.session_factory(), embedder)

        return UpstashVectorStore(
            url=s.upstash_vector_rest_url,
            token=s.upstash_vector_rest_token,
        )

    @cached_property
    def kv_store(self) -> KeyValueStore:
        s = self.settings
        if s.kv_backend == "postgres":
            return PostgresKeyValueStore(self.session_factory())

        return UpstashRedisStore(
            url=s.upstash_redis_rest_url,
            token=s.upstash_redis_rest_token,
        )

    # ------------------------------------------------------------------
    # Pipeline components
    # ------------------------------------------------------------------

    @cached_property
    def semantic_cache(self) -> SemanticCache:
        return SemanticCache(
            self.vector_store,
            self.kv_store,
            threshold=self.settings.cache_similarity_threshold,
        )

    @cached_property
    def retrieval_engine(self) -> RetrievalEngine:
        s = self.settings
        return RetrievalEngine(
            self.vector_store,
            top_k_enhanced=s.retrieval_top_k_enhanced,
            top_k_raw=s.retrieval_top_k_raw,
            top_k_fallback=s.retrieval_top_k_fallback,
        )

    @cached_property
    def llm_client(self) -> LLMClient:
        s = self.settings
        return LLMClient(
            api_key=s.openai_api_key,
            model=s.chat_model,
            base_url=s.llm_base_url,
            timeout=s.http_timeout,
        )

    @cached_property
    def orchestrator(self) -> GenerationOrchestrator:
        return GenerationOrchestrator(
            self.retrieval_engine,
            self.llm_client,
            cache=self.semantic_cache,
        )

    @cached_property
    def ingestion(self) -> IngestionPipeline:
        return IngestionPipeline(
            self.vector_store,
            batch_size=self.settings.ingest_batch_size,
        )


# ---------------------------------------------------------------------
# FastAPI dependency providers
# ---------------------------------------------------------------------

def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_settings_dep(request: Request) -> Settings:
    return get_services(request).settings


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    return get_services(request).orchestrator


def get_ingestion(request: Request) -> IngestionPipeline:
    return get_services(request).ingestion
