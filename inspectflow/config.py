"""Service configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings

from inspectflow.processing.exceptions import ConfigurationError

_BASE = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Central configuration – values are read from `.env` or the environment."""

    service_version: str = "1.0.0"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # LLM (OpenAI or any OpenAI-compatible endpoint)
    openai_api_key: str = ""
    openai_base_url: str | None = None
    llm_model: str = "gpt-4o-mini"
    llm_max_tokens: int = 1000

    # Embeddings
    embedding_provider: Literal["openai", "local"] = "openai"
    embedding_model: str = "text-embedding-3-small"
    local_embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"

    # Vector index
    vector_backend: Literal["qdrant", "chroma"] = "qdrant"
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: str = ""
    chroma_dir: Path = _BASE / "storage" / "chroma_db"

    # Job persistence
    job_store: Literal["memory", "sqlite"] = "memory"
    sqlite_path: Path = _BASE / "storage" / "sqlite" / "jobs.db"

    # Outbound calls
    request_timeout_s: float = 30.0
    max_retries: int = 2

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    def missing_required(self) -> list[str]:
        """Names of settings the selected providers need but are not set."""
        missing: list[str] = []
        if not self.openai_api_key and not self.openai_base_url:
            # The chat model is always remote; the embedder only when provider=openai.
            missing.append("OPENAI_API_KEY")
        if self.vector_backend == "qdrant" and not self.qdrant_url:
            missing.append("QDRANT_URL")
        return missing

    def validate_required(self) -> None:
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(
                "Missing required configuration: " + ", ".join(missing)
            )


def get_settings() -> Settings:
    return Settings()
