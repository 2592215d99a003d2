"""Shared fixtures: a pipeline wired to mocked external services."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

INSPECTION_TEXT = "\n".join([
    "Supplier: Acme Co",
    "Buyer: Globex",
    "Product: LED panel lights",
    "Container: ABCD1234567",
    "HS: 940540",
])

INSPECTION_REPLY = {
    "extracted": {
        "supplier": "Acme Co",
        "buyer": "Globex",
        "product": "LED panel lights",
        "containerNo": "ABCD1234567",
        "hsCode": "940540",
        "entities": [
            {"type": "organization", "value": "Acme Co", "confidence": 0.95},
            {"type": "organization", "value": "Globex", "confidence": 0.93},
        ],
        "confidence": 0.9,
    },
    "summary": "Inspection of LED panel lights shipped by Acme Co to Globex.",
}


def fake_vectors(texts: list[str]) -> list[list[float]]:
    return [[0.1 * (i + 1), 0.2, 0.3, 0.4] for i in range(len(texts))]


@pytest.fixture
def llm():
    client = MagicMock()
    client.chat.return_value = json.dumps(INSPECTION_REPLY)
    return client


@pytest.fixture
def embedder():
    emb = MagicMock()
    emb.name = "fake"
    emb.dimension = 4
    emb.embed.side_effect = fake_vectors
    return emb


@pytest.fixture
def index():
    idx = MagicMock()
    idx.name = "fake"
    idx.collection = "documents"
    idx.ensure_collection.return_value = True
    idx.upsert.return_value = True
    idx.ping.return_value = True
    return idx


@pytest.fixture
def job_store():
    from inspectflow.services.jobs import InMemoryJobStore

    return InMemoryJobStore()


@pytest.fixture
def pipeline_settings(tmp_path):
    from inspectflow.processing.config import PipelineSettings

    return PipelineSettings(upload_dir=tmp_path, simulated_stage_latency_s=0.0)


@pytest.fixture
def pipeline(pipeline_settings, llm, embedder, index, job_store):
    from inspectflow.processing.extraction import Extractor
    from inspectflow.processing.pipeline import DocumentPipeline

    return DocumentPipeline(pipeline_settings, Extractor(llm), embedder, index, job_store)
