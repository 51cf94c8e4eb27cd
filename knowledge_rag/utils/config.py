"""Configuration management using environment variables and pydantic."""

from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Ollama Configuration
    ollama_base_url: str = "http://localhost:11434"
    ollama_model_name: str = "llama3.2:3b"
    ollama_embedding_model: str = "mxbai-embed-large"

    # Embedding Configuration
    embedding_dimension: int = 1024
    embedding_input_type: str = "passage"
    embedding_truncate: bool = True

    # Vector Database Configuration
    qdrant_host: str = "localhost"
    qdrant_port: int = 6333
    qdrant_location: str | None = None  # ":memory:" for an in-process store
    qdrant_collection_name: str = "tenant_knowledge"

    # RAG Configuration
    rag_top_k_results: int = 5
    rag_similarity_threshold: float = 0.6
    rag_max_age_days: int = 90
    rag_max_candidates: int = 20
    rag_context_token_budget: int = 30000
    rag_citation_preview_chars: int = 200

    # Ingestion Configuration
    ingest_embedding_batch_size: int = 10
    ingest_batch_delay_seconds: float = 1.0
    ingest_upsert_batch_size: int = 200

    # Cache Configuration
    cache_max_keys: int = 10000
    cache_ttl_embedding_seconds: int = 7200
    cache_ttl_search_seconds: int = 1800
    cache_ttl_ai_response_seconds: int = 900
    cache_ttl_tokens_seconds: int = 3600
    cache_ttl_context_seconds: int = 1800

    # Response Configuration
    default_system_prompt: str = "You are a helpful AI assistant."
    max_response_tokens: int = 2048
    response_temperature: float = 0.7
    request_timeout_seconds: int = 60

    # Logging Configuration
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file_path: str = "logs/knowledge_rag.log"
    log_max_size_mb: int = 100
    log_backup_count: int = 5

    # Development/Testing
    debug_mode: bool = False


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
