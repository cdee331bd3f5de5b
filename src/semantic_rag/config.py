"""Centralized configuration for the RAG system."""

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChunkConfig(BaseSettings):
    """Text chunking parameters."""

    model_config = SettingsConfigDict(env_prefix="CHUNK_", frozen=True)

    size: int = Field(default=1000, gt=0)
    overlap: int = Field(default=200, ge=0)

    @model_validator(mode="after")
    def _overlap_less_than_size(self) -> "ChunkConfig":
        if self.overlap >= self.size:
            msg = f"overlap ({self.overlap}) must be less than size ({self.size})"
            raise ValueError(msg)
        return self


class EmbeddingConfig(BaseSettings):
    """Embedding provider settings."""

    model_config = SettingsConfigDict(env_prefix="EMBED_", frozen=True)

    model: str = "nomic-embed-text"
    batch_size: int = Field(default=100, gt=0)
    dimensions: int | None = Field(default=None, gt=0)


class VectorStoreConfig(BaseSettings):
    """ChromaDB vector store settings."""

    model_config = SettingsConfigDict(env_prefix="VS_", frozen=True)

    db_path: str = "./chroma_db"
    collection_name: str = "rag_documents"
    cache_collection_name: str = "rag_cache"
    batch_size: int = Field(default=100, gt=0)

    @model_validator(mode="after")
    def _distinct_collections(self) -> "VectorStoreConfig":
        if self.collection_name == self.cache_collection_name:
            msg = "collection_name and cache_collection_name must differ"
            raise ValueError(msg)
        return self


class CacheConfig(BaseSettings):
    """Semantic cache storage settings."""

    model_config = SettingsConfigDict(env_prefix="CACHE_", frozen=True)

    # 0 keeps entries until the cache is cleared.
    ttl_seconds: int = Field(default=3600, ge=0)


class LLMConfig(BaseSettings):
    """Ollama LLM defaults, used to seed the runtime generation settings."""

    model_config = SettingsConfigDict(env_prefix="LLM_", frozen=True)

    model: str = "gemma3:1b"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2048, gt=0)


class LogConfig(BaseSettings):
    """Event log retention and verbosity."""

    model_config = SettingsConfigDict(env_prefix="LOG_", frozen=True)

    max_entries: int = Field(default=500, gt=0)
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v}")
        return level


class ServerConfig(BaseSettings):
    """HTTP server bind address."""

    model_config = SettingsConfigDict(env_prefix="SERVER_", frozen=True)

    host: str = "127.0.0.1"
    port: int = Field(default=8000, gt=0, le=65535)


class GDriveConfig(BaseSettings):
    """Google Drive document source. Disabled unless a key file is given."""

    model_config = SettingsConfigDict(env_prefix="GDRIVE_", frozen=True)

    folder_id: str | None = None
    # Service-account JSON key; the account needs read access to the folder.
    credentials_file: str | None = None
    page_size: int = Field(default=100, gt=0, le=1000)


class AppConfig(BaseSettings):
    """Top-level application configuration."""

    model_config = SettingsConfigDict(frozen=True)

    documents_dir: str = "./documents"
    chunk: ChunkConfig = Field(default_factory=ChunkConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    log: LogConfig = Field(default_factory=LogConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    gdrive: GDriveConfig = Field(default_factory=GDriveConfig)
