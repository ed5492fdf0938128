"""
Environment configuration with Pydantic validation.
Every setting has a safe default so CLI and tests can import without a .env file.
"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """
    Application settings with validation.

    Values come from the environment or a local .env file.
    """

    # Application
    ENVIRONMENT: str = Field(default="production", description="Environment: development, staging, production")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    # Vector store
    REDIS_VECTOR_URL: str = Field(default="redis://localhost:6379/0", description="Redis Stack URL for vector store")
    COLLECTION_NAME: str = Field(default="sebi_regulations", description="Vector index name")

    # Embeddings
    EMBED_PROVIDER: str = Field(default="openai", description="Embedding provider: openai or local")
    EMBED_MODEL: str = Field(default="text-embedding-3-large", description="Embedding model name")
    EMBED_DIM: int = Field(default=3072, description="Embedding dimension")
    EMBED_BATCH_SIZE: int = Field(default=100, ge=1)
    EMBED_MAX_CONCURRENCY: int = Field(default=5, ge=1)
    EMBED_RATE_LIMIT_PER_MINUTE: int = Field(default=3000, ge=1)
    EMBED_CACHE_TTL_SECONDS: int = Field(default=3600, ge=1)
    EMBED_CACHE_MAX_ENTRIES: int = Field(default=1000, ge=1)
    OPENAI_API_KEY: str = Field(default="", description="OpenAI API key for embeddings")
    OPENAI_BASE_URL: Optional[str] = Field(None, description="OpenAI-compatible base URL")

    # Chunking
    CHUNK_MAX_TOKENS: int = Field(default=512, ge=1)
    CHUNK_MIN_TOKENS: int = Field(default=128, ge=0)
    CHUNK_OVERLAP_TOKENS: int = Field(default=50, ge=0)
    TOKENIZER_ENCODING: str = Field(default="cl100k_base", description="tiktoken encoding name")

    # Ingestion
    CORPUS_SOURCE_PATH: Optional[str] = Field(None, description="Base path for relative PDF paths")

    # Admin
    ADMIN_TOKEN: Optional[str] = Field(None, description="Admin API token; admin routes are disabled when unset")

    # CORS
    CORS_ORIGINS: str = Field(default="http://localhost:3000", description="Comma-separated CORS origins")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "test"]
        if v not in allowed:
            raise ValueError(f"ENVIRONMENT must be one of {allowed}")
        return v

    @field_validator("EMBED_PROVIDER")
    @classmethod
    def validate_embed_provider(cls, v: str) -> str:
        """Only the OpenAI API and local sentence-transformers are supported"""
        allowed = ["openai", "local"]
        v = v.strip().lower()
        if v not in allowed:
            raise ValueError(f"EMBED_PROVIDER must be one of {allowed}")
        return v

    @field_validator("CORS_ORIGINS")
    @classmethod
    def validate_cors_origins(cls, v: str) -> str:
        """Ensure CORS origins are properly formatted"""
        return v.strip()

    @property
    def cors_origin_list(self) -> list:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


# Global settings instance
settings = Settings()
