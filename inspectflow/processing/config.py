"""
Pipeline configuration.

All values can be overridden via environment variables prefixed with
``PIPELINE_`` (e.g. ``PIPELINE_MAX_CHUNK_SIZE=800``).
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings

_BASE = Path(__file__).resolve().parent.parent.parent


class PipelineSettings(BaseSettings):
    """Tuneable knobs for every pipeline stage."""

    # ── Input ────────────────────────────────────────────────────────────
    upload_dir: Path = _BASE / "uploads"

    # ── OCR ──────────────────────────────────────────────────────────────
    ocr_languages: list[str] = ["en"]
    ocr_confidence_threshold: float = 0.40  # drop OCR boxes below this
    ocr_gpu: bool = False
    simulated_stage_latency_s: float = 0.0  # artificial delay for OCR / layout

    # ── Layout ───────────────────────────────────────────────────────────
    header_line_count: int = 2
    footer_marker: str = "Document processed"

    # ── Extraction ───────────────────────────────────────────────────────
    max_salvage_scan_chars: int = 200_000

    # ── Chunking ─────────────────────────────────────────────────────────
    max_chunk_size: int = 500  # characters
    min_chunk_length: int = 20  # chars – discard noise

    # ── Embeddings / vector index ────────────────────────────────────────
    embedding_dimension: int = 1536  # text-embedding-3-small
    distance_metric: str = "Cosine"
    collection_name: str = "documents"
    embedding_preview_dims: int = 10

    model_config = {
        "env_prefix": "PIPELINE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


pipeline_settings = PipelineSettings()
