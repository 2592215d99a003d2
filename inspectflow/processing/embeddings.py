"""
Embedding generation for chunk texts.

Providers
---------
- ``OpenAIEmbedder`` – remote service, one batched request per pipeline run
  (``text-embedding-3-small`` → 1536 dims by default).
- ``SentenceTransformerEmbedder`` – local model (optional ``local`` extra),
  default ``all-MiniLM-L6-v2`` → 384 dims.

Both return one vector per input text, in input order, and raise
``EmbeddingError`` when vectors cannot be produced.
"""

from __future__ import annotations

import logging
import warnings

import openai

from inspectflow.processing.exceptions import ConfigurationError, EmbeddingError

logger = logging.getLogger(__name__)


class Embedder:
    """Interface shared by embedding providers."""

    name = "base"
    dimension: int

    def embed(self, texts: list[str]) -> list[list[float]]:
        raise NotImplementedError


class OpenAIEmbedder(Embedder):
    name = "openai"

    def __init__(self, client: openai.OpenAI, model: str, dimension: int) -> None:
        self._client = client
        self.model = model
        self.dimension = dimension

    def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            response = self._client.embeddings.create(model=self.model, input=texts)
        except openai.APIError as exc:
            raise EmbeddingError(f"Embedding service error: {exc}") from exc

        vectors = [item.embedding for item in sorted(response.data, key=lambda d: d.index)]
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding service returned {len(vectors)} vectors for {len(texts)} texts"
            )
        bad = [len(v) for v in vectors if len(v) != self.dimension]
        if bad:
            raise EmbeddingError(
                f"Expected {self.dimension}-dim vectors, got {bad[0]}"
            )
        logger.info("Embedded %d chunks (%s, dim=%d).", len(vectors), self.model, self.dimension)
        return vectors


class SentenceTransformerEmbedder(Embedder):
    name = "local"

    def __init__(self, model_name: str, batch_size: int = 64) -> None:
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as exc:
            raise ConfigurationError(
                "embedding_provider=local needs the 'local' extra (sentence-transformers)"
            ) from exc

        logger.info("Loading embedding model '%s' …", model_name)
        self._model = SentenceTransformer(model_name, device="mps" if _mps_available() else "cpu")
        self.model = model_name
        self.batch_size = batch_size
        self.dimension = self._model.get_sentence_embedding_dimension()
        logger.info("Embedding model loaded (dim=%d).", self.dimension)

    def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            with warnings.catch_warnings():
                warnings.filterwarnings("ignore", message=".*pin_memory.*")
                embs = self._model.encode(
                    texts,
                    batch_size=self.batch_size,
                    show_progress_bar=False,
                    normalize_embeddings=True,
                )
        except (RuntimeError, ValueError) as exc:
            raise EmbeddingError(f"Local embedding failed: {exc}") from exc
        return embs.tolist()


def _mps_available() -> bool:
    try:
        import torch
    except ImportError:
        return False
    return torch.backends.mps.is_available()
