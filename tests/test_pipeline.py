"""
End-to-end tests for the processing orchestrator with mocked services.
"""

from __future__ import annotations

import json
import threading
import time
from unittest.mock import patch

import httpx
import openai
import pytest

from conftest import INSPECTION_TEXT


class RecordingStore:
    """Wraps a job store and snapshots (status, progress) on every save."""

    def __init__(self, inner):
        self.inner = inner
        self.history: list[tuple[str, int]] = []

    def __getattr__(self, name):
        return getattr(self.inner, name)

    def save(self, job):
        self.history.append((job.status.value, job.progress))
        self.inner.save(job)


def _status(response, step_id):
    return next(s.status.value for s in response.steps if s.id == step_id)


# ═══════════════════════════════════════════════════════════════════════════
# Successful runs
# ═══════════════════════════════════════════════════════════════════════════

class TestSuccessfulRun:
    def test_inspection_document(self, pipeline, job_store, embedder, index):
        response = pipeline.process(INSPECTION_TEXT)

        assert response.success
        assert response.error is None
        assert response.layout_result.key_value_pairs_count == 5
        assert response.extracted_data["supplier"] == "Acme Co"
        assert response.extracted_data["buyer"] == "Globex"
        assert response.extracted_data["containerNo"] == "ABCD1234567"
        assert response.extracted_data["hsCode"] == "940540"
        assert response.validation.passed
        assert response.validation.warnings == []
        assert response.summary.startswith("Inspection of LED")

        assert all(s.status.value == "completed" for s in response.steps)
        assert all(s.duration is not None for s in response.steps)

        embedder.embed.assert_called_once()
        index.ensure_collection.assert_called_once_with(4, "Cosine")
        assert response.vector_storage.stored
        assert response.vector_storage.chunks_stored == 1
        assert response.vector_storage.embeddings_dimension == 4
        assert response.embeddings_preview == [0.1, 0.2, 0.3, 0.4]

        job = job_store.get(response.job_id)
        assert job.status.value == "completed"
        assert job.progress == 100
        assert job.result["extracted_data"]["supplier"] == "Acme Co"
        assert job.processing_time_ms == response.processing_time_ms

    def test_preview_is_truncated(self, pipeline, embedder):
        embedder.dimension = 16
        embedder.embed.side_effect = lambda texts: [[float(i) for i in range(16)] for _ in texts]

        response = pipeline.process(INSPECTION_TEXT)
        assert response.embeddings_preview == [float(i) for i in range(10)]

    def test_progress_is_monotonic_and_ends_at_100(self, pipeline, job_store):
        recording = RecordingStore(job_store)
        pipeline.jobs = recording

        pipeline.process(INSPECTION_TEXT)
        assert recording.history == [
            ("running", 10),
            ("running", 30),
            ("running", 50),
            ("running", 70),
            ("running", 90),
            ("completed", 100),
        ]

    def test_entities_are_persisted(self, pipeline, job_store):
        response = pipeline.process(INSPECTION_TEXT)
        entities = job_store.list_entities(response.job_id)
        assert [e.entity_value for e in entities] == ["Acme Co", "Globex"]

    def test_existing_pending_job(self, pipeline, job_store):
        job_store.create(job_id="job-7", document_id="doc-7")
        response = pipeline.process(INSPECTION_TEXT, job_id="job-7")

        assert response.job_id == "job-7"
        assert job_store.get("job-7").status.value == "completed"

    def test_unknown_job_runs_without_persistence(self, pipeline, job_store):
        response = pipeline.process(INSPECTION_TEXT, job_id="ghost")
        assert response.success
        assert response.job_id == "ghost"
        assert job_store.get("ghost") is None

    def test_short_text_skips_embedding(self, pipeline, embedder, index):
        response = pipeline.process("Buyer: X")

        assert response.success
        embedder.embed.assert_not_called()
        index.upsert.assert_not_called()
        assert _status(response, "vector") == "completed"
        assert not response.vector_storage.stored
        assert response.embeddings_preview == []

    def test_missing_fields_fail_validation_not_the_job(self, pipeline, llm, job_store):
        llm.chat.return_value = json.dumps({"extracted": {"supplier": "Acme"}, "summary": "Partial."})

        response = pipeline.process(INSPECTION_TEXT)
        assert response.success
        assert not response.validation.passed
        assert "Missing required field: buyer" in response.validation.errors
        assert job_store.get(response.job_id).status.value == "completed"

    def test_unparseable_model_reply_degrades(self, pipeline, llm):
        llm.chat.return_value = "I am unable to extract anything."

        response = pipeline.process(INSPECTION_TEXT)
        assert response.success
        assert response.extracted_data == {"entities": []}
        assert response.summary == "Failed to parse analysis results"
        assert not response.validation.passed

    def test_file_reference(self, pipeline, pipeline_settings):
        (pipeline_settings.upload_dir / "certificate.txt").write_text(INSPECTION_TEXT, encoding="utf-8")

        response = pipeline.process(file_path="certificate.txt")
        assert response.success
        assert response.extracted_data["supplier"] == "Acme Co"


# ═══════════════════════════════════════════════════════════════════════════
# Failing runs
# ═══════════════════════════════════════════════════════════════════════════

class TestFailingRun:
    def test_embedding_failure_fails_the_job(self, pipeline, embedder, index, job_store):
        from inspectflow.processing.exceptions import EmbeddingError

        embedder.embed.side_effect = EmbeddingError("Embedding service error: 503")
        recording = RecordingStore(job_store)
        pipeline.jobs = recording

        response = pipeline.process(INSPECTION_TEXT)

        assert not response.success
        assert response.failed_stage == "vector"
        assert "503" in response.error
        assert response.timestamp
        assert _status(response, "extraction") == "completed"
        assert _status(response, "vector") == "error"
        assert _status(response, "validation") == "pending"
        index.upsert.assert_not_called()

        job = job_store.get(response.job_id)
        assert job.status.value == "failed"
        assert job.progress == 70
        assert job.result is None
        assert "503" in job.error_message
        assert recording.history[-1] == ("failed", 70)

    def test_extraction_service_failure(self, pipeline, llm, job_store):
        llm.chat.side_effect = openai.APIConnectionError(
            request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        )

        response = pipeline.process(INSPECTION_TEXT)

        assert not response.success
        assert response.failed_stage == "extraction"
        assert _status(response, "extraction") == "error"
        assert _status(response, "vector") == "pending"
        job = job_store.get(response.job_id)
        assert job.status.value == "failed"
        assert job.progress == 50

    def test_storage_failure_is_not_fatal(self, pipeline, index, job_store):
        index.upsert.return_value = False

        response = pipeline.process(INSPECTION_TEXT)

        assert response.success
        assert _status(response, "vector") == "error"
        assert _status(response, "validation") == "completed"
        assert not response.vector_storage.stored
        assert response.vector_storage.chunks_stored == 0
        assert job_store.get(response.job_id).status.value == "completed"

    def test_unexpected_error_in_stage(self, pipeline, job_store):
        with patch("inspectflow.processing.pipeline.analyse_layout", side_effect=ValueError("bad layout")):
            response = pipeline.process(INSPECTION_TEXT)

        assert not response.success
        assert response.failed_stage == "layout"
        assert response.error == "bad layout"
        assert job_store.get(response.job_id).status.value == "failed"
        assert job_store.get(response.job_id).progress == 30

    def test_store_failure_on_completion_fails_the_job(self, pipeline, job_store):
        import sqlite3

        from inspectflow.services.jobs import InMemoryJobStore

        class CompletionFailsStore(InMemoryJobStore):
            def save(self, job):
                if job.status.value == "completed":
                    raise sqlite3.OperationalError("database is locked")
                super().save(job)

        store = CompletionFailsStore()
        pipeline.jobs = store
        response = pipeline.process(INSPECTION_TEXT)

        assert not response.success
        assert response.error == "database is locked"
        job = store.get(response.job_id)
        assert job.status.value == "failed"
        assert job.progress == 90
        assert store.list_entities(response.job_id) == []

    def test_store_failure_while_recording_failure_does_not_escape(self, pipeline, embedder):
        import sqlite3

        from inspectflow.processing.exceptions import EmbeddingError
        from inspectflow.services.jobs import InMemoryJobStore

        class FailureWriteFailsStore(InMemoryJobStore):
            def save(self, job):
                if job.status.value == "failed":
                    raise sqlite3.OperationalError("disk I/O error")
                super().save(job)

        embedder.embed.side_effect = EmbeddingError("Embedding service error: 503")
        pipeline.jobs = FailureWriteFailsStore()

        response = pipeline.process(INSPECTION_TEXT)
        assert not response.success
        assert response.failed_stage == "vector"
        assert "503" in response.error


# ═══════════════════════════════════════════════════════════════════════════
# Rejected calls
# ═══════════════════════════════════════════════════════════════════════════

class TestRejectedCalls:
    @pytest.mark.parametrize("content", [None, "", "   \n ", b""])
    def test_no_content(self, pipeline, job_store, content):
        from inspectflow.processing.exceptions import InputError

        with pytest.raises(InputError):
            pipeline.process(content)
        assert job_store._jobs == {}

    def test_file_outside_upload_dir(self, pipeline):
        from inspectflow.processing.exceptions import InputError

        with pytest.raises(InputError):
            pipeline.process(file_path="../../etc/passwd")

    def test_missing_file(self, pipeline):
        from inspectflow.processing.exceptions import InputError

        with pytest.raises(InputError):
            pipeline.process(file_path="nope.txt")

    def test_finished_job_cannot_rerun(self, pipeline):
        from inspectflow.processing.exceptions import JobStateError

        response = pipeline.process(INSPECTION_TEXT)
        with pytest.raises(JobStateError):
            pipeline.process(INSPECTION_TEXT, job_id=response.job_id)

    def test_same_job_id_runs_once_when_calls_overlap(self, pipeline, job_store):
        from inspectflow.processing.exceptions import JobStateError

        job_store.create(job_id="job-race")
        looked_up = threading.Event()
        original_get = job_store.get
        calls: list[str] = []

        def slow_first_get(job_id):
            job = original_get(job_id)
            if not calls:
                calls.append(job_id)
                looked_up.set()
                time.sleep(0.2)
            return job

        outcomes: list[str] = []

        def run():
            try:
                response = pipeline.process(INSPECTION_TEXT, job_id="job-race")
                outcomes.append("ok" if response.success else "failed")
            except JobStateError:
                outcomes.append("rejected")

        with patch.object(job_store, "get", side_effect=slow_first_get):
            first = threading.Thread(target=run)
            first.start()
            assert looked_up.wait(2)
            second = threading.Thread(target=run)
            second.start()
            first.join(5)
            second.join(5)

        assert sorted(outcomes) == ["ok", "rejected"]
        assert len(job_store.list_entities("job-race")) == 2
        assert job_store.get("job-race").status.value == "completed"

    def test_analyze_requires_text(self, pipeline):
        from inspectflow.processing.exceptions import InputError

        with pytest.raises(InputError):
            pipeline.analyze("  ")


# ═══════════════════════════════════════════════════════════════════════════
# Assembly
# ═══════════════════════════════════════════════════════════════════════════

class TestBuildPipeline:
    def _settings(self, **overrides):
        from inspectflow.config import Settings

        values = {
            "openai_api_key": "sk-test",
            "openai_base_url": None,
            "embedding_provider": "openai",
            "vector_backend": "qdrant",
            "qdrant_url": "http://localhost:6333",
            "job_store": "memory",
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    def test_default_collaborators(self, pipeline_settings):
        from inspectflow.processing.embeddings import OpenAIEmbedder
        from inspectflow.processing.pipeline import build_pipeline
        from inspectflow.processing.vectordb import QdrantIndex
        from inspectflow.services.jobs import InMemoryJobStore

        built = build_pipeline(self._settings(), pipeline_settings)
        assert isinstance(built.embedder, OpenAIEmbedder)
        assert built.embedder.dimension == 1536
        assert isinstance(built.index, QdrantIndex)
        assert isinstance(built.jobs, InMemoryJobStore)

    def test_sqlite_job_store(self, pipeline_settings, tmp_path):
        from inspectflow.processing.pipeline import build_pipeline
        from inspectflow.services.jobs import SQLiteJobStore

        built = build_pipeline(
            self._settings(job_store="sqlite", sqlite_path=tmp_path / "jobs.db"), pipeline_settings
        )
        assert isinstance(built.jobs, SQLiteJobStore)

    def test_missing_key_is_reported_at_startup(self, pipeline_settings):
        from inspectflow.processing.exceptions import ConfigurationError
        from inspectflow.processing.pipeline import build_pipeline

        with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
            build_pipeline(self._settings(openai_api_key=""), pipeline_settings)

    def test_missing_settings_are_all_named(self):
        settings = self._settings(openai_api_key="", qdrant_url="")
        assert settings.missing_required() == ["OPENAI_API_KEY", "QDRANT_URL"]

    def test_compatible_server_needs_no_key(self):
        settings = self._settings(openai_api_key="", openai_base_url="http://localhost:11434/v1")
        assert settings.missing_required() == []
