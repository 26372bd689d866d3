"""
Configuration with Pydantic Settings and validation.

Every field can be overridden from the environment, e.g.
`VULNKB_RETRIEVAL__TOP_K=8` or `VULNKB_EMBEDDING__BASE_URL=http://localhost:8080/v1`.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EmbeddingConfig(BaseModel):
    """OpenAI-compatible embedding endpoint."""

    base_url: str = Field("https://api.openai.com/v1", description="Embedding API base URL")
    model: str = Field("text-embedding-3-small", description="Embedding model name")
    api_key: str | None = Field(None, description="Bearer token, if required")
    timeout: float = Field(30.0, gt=0, description="Per-request timeout in seconds")
    max_retries: int = Field(3, ge=1)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")


class ChunkingConfig(BaseModel):
    """Segmenter budgets, in approximate tokens (characters / 4)."""

    chunk_size: int = Field(512, gt=0)
    chunk_overlap: int = Field(50, ge=0)

    @field_validator("chunk_overlap")
    @classmethod
    def validate_overlap(cls, v: int, info) -> int:
        chunk_size = info.data.get("chunk_size")
        if chunk_size is not None and v >= chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return v


class RetrievalConfig(BaseModel):
    """
    Retriever defaults.

    Unset values fall back to the retriever's hard defaults
    (top_k=5, similarity_threshold=0.7, hybrid_weight=0.7).
    """

    top_k: int | None = Field(None, gt=0)
    similarity_threshold: float | None = Field(None, gt=0.0, le=1.0)
    hybrid_weight: float | None = Field(None, gt=0.0, le=1.0)
    expand_context: bool = Field(True)


class IndexingConfig(BaseModel):
    """Indexer behaviour."""

    max_concurrent: int = Field(1, gt=0, description="Documents reindexed in parallel")
    embed_timeout: float | None = Field(None, gt=0, description="Per-chunk embedding timeout")
    max_consecutive_failures: int = Field(2, gt=0)


class StorageConfig(BaseModel):
    """Where documents and chunk vectors live."""

    backend: str = Field("sqlite", description="sqlite or memory")
    database_path: Path = Field(Path("./data/knowledge.db"))
    base_path: Path = Field(Path("./knowledge_base"), description="Markdown knowledge base root")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        allowed = {"sqlite", "memory"}
        if v not in allowed:
            raise ValueError(f"backend must be one of {allowed}")
        return v


class ObservabilityConfig(BaseModel):
    log_level: str = Field("INFO")
    service_name: str = Field("vulnkb")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """Main settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="VULNKB_", env_nested_delimiter="__", case_sensitive=False, extra="ignore"
    )

    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    indexing: IndexingConfig = Field(default_factory=IndexingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
