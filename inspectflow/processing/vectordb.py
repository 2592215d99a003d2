"""
Vector index storage for chunk embeddings.

Backends
--------
- ``QdrantIndex`` – Qdrant REST API over httpx.  The collection is checked
  with ``GET /collections/{name}``; a 404 creates it with the vector size and
  distance metric.  Points are upserted with ``PUT …/points?wait=true``.
- ``ChromaIndex`` – persistent local ChromaDB collection (``hnsw:space`` from
  the distance metric).

Storage failures are reported as ``False`` and logged; nothing here raises
into the pipeline.
"""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from inspectflow.processing.schemas import Chunk, utc_now

os.environ.setdefault("ANONYMIZED_TELEMETRY", "False")

logger = logging.getLogger(__name__)

_CHROMA_SPACES = {"cosine": "cosine", "euclid": "l2", "dot": "ip"}


@dataclass
class VectorPoint:
    id: str
    vector: list[float]
    payload: dict[str, Any]


class VectorIndex:
    """Interface shared by vector index backends."""

    name = "base"
    collection: str

    def ensure_collection(self, dimension: int, distance: str) -> bool:
        raise NotImplementedError

    def upsert(self, points: list[VectorPoint]) -> bool:
        raise NotImplementedError

    def ping(self) -> bool:
        raise NotImplementedError


# ═══════════════════════════════════════════════════════════════════════════
# Qdrant (REST)
# ═══════════════════════════════════════════════════════════════════════════

class QdrantIndex(VectorIndex):
    name = "qdrant"

    def __init__(
        self,
        base_url: str,
        collection: str = "documents",
        api_key: str = "",
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        headers = {"api-key": api_key} if api_key else {}
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout
        )
        self.collection = collection

    def ensure_collection(self, dimension: int, distance: str) -> bool:
        """Create the collection if absent. Idempotent."""
        path = f"/collections/{self.collection}"
        try:
            check = self._client.get(path)
            if check.status_code == 404:
                logger.info(
                    "Qdrant: creating collection '%s' (size=%d, distance=%s).",
                    self.collection, dimension, distance,
                )
                created = self._client.put(
                    path, json={"vectors": {"size": dimension, "distance": distance}}
                )
                if not created.is_success:
                    logger.error("Qdrant: create collection failed (%d): %s",
                                 created.status_code, created.text[:200])
                return created.is_success
            if not check.is_success:
                logger.error("Qdrant: collection check failed (%d).", check.status_code)
            return check.is_success
        except httpx.HTTPError as exc:
            logger.error("Qdrant: collection setup error: %s", exc)
            return False

    def upsert(self, points: list[VectorPoint]) -> bool:
        body = {
            "points": [{"id": p.id, "vector": p.vector, "payload": p.payload} for p in points]
        }
        try:
            response = self._client.put(
                f"/collections/{self.collection}/points", params={"wait": "true"}, json=body
            )
        except httpx.HTTPError as exc:
            logger.error("Qdrant: upsert error: %s", exc)
            return False
        if not response.is_success:
            logger.error("Qdrant: upsert failed (%d): %s", response.status_code, response.text[:200])
        return response.is_success

    def ping(self) -> bool:
        try:
            return self._client.get("/collections").is_success
        except httpx.HTTPError:
            return False


# ═══════════════════════════════════════════════════════════════════════════
# ChromaDB (local)
# ═══════════════════════════════════════════════════════════════════════════

class ChromaIndex(VectorIndex):
    name = "chroma"

    def __init__(self, path: Path | None = None, collection: str = "documents", client=None) -> None:
        if client is None:
            if path is None:
                raise ValueError("ChromaIndex needs a path or a client")
            import chromadb
            from chromadb.config import Settings as ChromaSettings

            path.mkdir(parents=True, exist_ok=True)
            client = chromadb.PersistentClient(
                path=str(path),
                settings=ChromaSettings(anonymized_telemetry=False),
            )
        self._client = client
        self._collection = None
        self.collection = collection

    def ensure_collection(self, dimension: int, distance: str) -> bool:
        # Chroma fixes the dimension on first insert.
        try:
            self._collection = self._client.get_or_create_collection(
                name=self.collection,
                metadata={"hnsw:space": _CHROMA_SPACES.get(distance.lower(), "cosine")},
            )
        except Exception as exc:
            logger.error("ChromaDB: collection setup error: %s", exc)
            return False
        return True

    def upsert(self, points: list[VectorPoint]) -> bool:
        if self._collection is None:
            logger.error("ChromaDB: upsert before collection setup.")
            return False
        try:
            self._collection.upsert(
                ids=[p.id for p in points],
                embeddings=[p.vector for p in points],
                documents=[p.payload["text"] for p in points],
                metadatas=[{k: v for k, v in p.payload.items() if k != "text"} for p in points],
            )
        except Exception as exc:
            logger.error("ChromaDB: upsert error: %s", exc)
            return False
        logger.info("ChromaDB collection '%s': %d documents.", self.collection, self._collection.count())
        return True

    def ping(self) -> bool:
        try:
            self._client.heartbeat()
        except Exception:
            return False
        return True


# ═══════════════════════════════════════════════════════════════════════════
# Storing chunks
# ═══════════════════════════════════════════════════════════════════════════

def build_points(chunks: list[Chunk], embeddings: list[list[float]], document_id: str) -> list[VectorPoint]:
    timestamp = utc_now()
    return [
        VectorPoint(
            id=str(uuid.uuid4()),
            vector=vector,
            payload={
                "text": chunk.text,
                "document_id": document_id,
                "chunk_index": chunk.index,
                "timestamp": timestamp,
            },
        )
        for chunk, vector in zip(chunks, embeddings)
    ]


def store_chunks(
    index: VectorIndex,
    chunks: list[Chunk],
    embeddings: list[list[float]],
    document_id: str,
    dimension: int,
    distance: str,
) -> bool:
    """Ensure the collection exists, then upsert one point per chunk."""
    if not index.ensure_collection(dimension, distance):
        logger.error("Vector DB: failed to set up collection '%s'.", index.collection)
        return False
    points = build_points(chunks, embeddings, document_id)
    ok = index.upsert(points)
    if ok:
        logger.info("Vector DB: stored %d chunks in '%s'.", len(points), index.collection)
    return ok
