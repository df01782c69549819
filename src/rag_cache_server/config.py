from functools import lru_cache
from typing import Literal, Optional

from pydantic import AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Hosted vector index (Upstash Vector REST API)
    upstash_vector_rest_url: Optional[AnyHttpUrl] = None
    upstash_vector_rest_token: Optional[SecretStr] = None

    # Hosted key-value store (Upstash Redis REST API)
    upstash_redis_rest_url: Optional[AnyHttpUrl] = None
    upstash_redis_rest_token: Optional[SecretStr] = None

    vector_backend: Literal["upstash", "pgvector"] = "upstash"
    kv_backend: Literal["upstash", "postgres"] = "upstash"

    # Only needed by the pgvector / postgres backends
    database_url: Optional[str] = None

    openai_api_key: Optional[SecretStr] = None
    embedding_model: str = "text-embedding-3-large"
    chat_model: str = "gpt-4o-mini"
    llm_base_url: str = "https://api.openai.com/v1"
    http_timeout: float = 60.0

    cache_similarity_threshold: float = Field(default=0.95, ge=0.0, le=1.0)

    chunk_size: int = 900
    chunk_overlap: int = 150

    retrieval_top_k_enhanced: int = Field(default=8, ge=1)
    retrieval_top_k_raw: int = Field(default=10, ge=1)
    retrieval_top_k_fallback: int = Field(default=10, ge=1)

    ingest_batch_size: int = Field(default=50, ge=1)

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
