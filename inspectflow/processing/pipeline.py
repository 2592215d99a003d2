"""
End-to-end document processing orchestrator.

Wires together: OCR → layout → AI extraction → chunking + embeddings + vector
index → validation.

Each stage consumes the previous stage's output, so steps run strictly in
order.  Progress is checkpointed after every stage (10/30/50/70/90/100) and
written to the job store when a job record exists.  Any exception escaping a
stage fails the job and produces a structured failure response; a run never
returns with its job still ``running``.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from pathlib import Path
from typing import Callable, TypeVar

from inspectflow.config import Settings
from inspectflow.processing.chunker import chunk_text
from inspectflow.processing.config import PipelineSettings
from inspectflow.processing.embeddings import Embedder, OpenAIEmbedder, SentenceTransformerEmbedder
from inspectflow.processing.exceptions import (
    EmbeddingError,
    InputError,
    JobStateError,
    StageError,
)
from inspectflow.processing.extraction import Extractor
from inspectflow.processing.layout import analyse_layout
from inspectflow.processing.ocr import run_ocr
from inspectflow.processing.schemas import (
    ExtractionOutcome,
    JobStatus,
    LayoutSummary,
    OCRSummary,
    PipelineJob,
    PipelineResponse,
    StepStatus,
    VectorStageResult,
    VectorSummary,
)
from inspectflow.processing.steps import StepTracker
from inspectflow.processing.validation import validate_extracted
from inspectflow.processing.vectordb import ChromaIndex, QdrantIndex, VectorIndex, store_chunks
from inspectflow.services.jobs import JobRecorder, JobStore, make_job_store
from inspectflow.services.llm import LLMClient, make_openai_client

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROGRESS_START = 10
PROGRESS_AFTER = {"ocr": 30, "layout": 50, "extraction": 70, "vector": 90}


class DocumentPipeline:
    """Runs the processing stages for one document per ``process`` call."""

    def __init__(
        self,
        settings: PipelineSettings,
        extractor: Extractor,
        embedder: Embedder,
        index: VectorIndex,
        jobs: JobStore | None = None,
    ) -> None:
        self.settings = settings
        self.extractor = extractor
        self.embedder = embedder
        self.index = index
        self.jobs = jobs
        self._active: set[str] = set()
        self._active_lock = threading.Lock()

    # ── Entry point ───────────────────────────────────────────────────
    def process(
        self,
        content: str | bytes | None = None,
        *,
        file_path: str | None = None,
        job_id: str | None = None,
        document_id: str | None = None,
    ) -> PipelineResponse:
        """Process one document.

        Raises:
            InputError: no content (nothing is created or recorded).
            JobStateError: the job is already running or finished.

        Every other failure is returned as ``success=False``.
        """
        payload = self._load_input(content, file_path)

        # the job lookup and the claim on its id happen under one lock
        with self._active_lock:
            recorder = self._open_job(job_id, document_id)
            run_id = recorder.job.id
            if run_id in self._active:
                raise JobStateError(f"Job {run_id} is already being processed")
            self._active.add(run_id)
        try:
            return self._run(payload, recorder)
        finally:
            with self._active_lock:
                self._active.discard(run_id)

    def analyze(self, content: str) -> ExtractionOutcome:
        """Extraction only, on raw text."""
        if not content or not content.strip():
            raise InputError("No content provided")
        return self.extractor.extract_text(content)

    def health(self) -> dict[str, str]:
        """Reachability of each collaborator: ``"ok"`` or ``"unavailable"``."""
        return {
            "job_store": _status(self.jobs.ping() if self.jobs is not None else True),
            "llm": "configured",
            "vector_index": _status(self.index.ping()),
        }

    # ── Run ───────────────────────────────────────────────────────────
    def _run(self, payload: str | bytes, recorder: JobRecorder) -> PipelineResponse:
        tracker = StepTracker()
        t0 = time.perf_counter()
        job_id = recorder.job.id
        logger.info(
            "═══ Processing job %s (%s) ═══", job_id, "stored" if recorder.persisted else "not stored"
        )

        try:
            recorder.start(PROGRESS_START)

            ocr = self._run_step(tracker, "ocr", lambda: run_ocr(payload, self.settings))
            recorder.progress(PROGRESS_AFTER["ocr"])

            layout = self._run_step(tracker, "layout", lambda: analyse_layout(ocr, self.settings))
            recorder.progress(PROGRESS_AFTER["layout"])

            outcome = self._run_step(tracker, "extraction", lambda: self.extractor.extract(layout))
            recorder.progress(PROGRESS_AFTER["extraction"])

            vector = self._run_vector_step(tracker, layout.text, job_id)
            recorder.progress(PROGRESS_AFTER["vector"])

            validation = self._run_step(
                tracker, "validation", lambda: validate_extracted(outcome.data)
            )

            extracted = outcome.data.to_payload()
            elapsed_ms = _elapsed_ms(t0)
            recorder.complete(
                result={
                    "extracted_data": extracted,
                    "summary": outcome.summary,
                    "validation": validation.model_dump(),
                },
                processing_time_ms=elapsed_ms,
            )
        except Exception as exc:
            return self._fail(exc, tracker, recorder, t0)

        # entities belong to completed jobs only
        try:
            recorder.add_entities(outcome.data.entities)
        except Exception:
            logger.exception("Job %s: storing extracted entities failed.", job_id)

        logger.info("Job %s completed in %d ms.", job_id, elapsed_ms)
        return PipelineResponse(
            success=True,
            job_id=job_id,
            processing_time_ms=elapsed_ms,
            steps=tracker.steps,
            ocr_result=OCRSummary(
                text_length=len(ocr.text),
                confidence=ocr.confidence,
                blocks_count=len(ocr.blocks),
            ),
            layout_result=LayoutSummary(
                sections_count=len(layout.structure.sections),
                tables_count=len(layout.structure.tables),
                key_value_pairs_count=len(layout.structure.key_value_pairs),
            ),
            extracted_data=extracted,
            summary=outcome.summary,
            vector_storage=VectorSummary(
                chunks_stored=len(vector.chunks) if vector.stored else 0,
                embeddings_dimension=len(vector.embeddings[0]) if vector.embeddings else 0,
                stored=vector.stored,
                collection=self.index.collection,
            ),
            embeddings_preview=(
                vector.embeddings[0][: self.settings.embedding_preview_dims]
                if vector.embeddings
                else []
            ),
            validation=validation,
        )

    def _fail(
        self,
        exc: Exception,
        tracker: StepTracker,
        recorder: JobRecorder,
        t0: float,
    ) -> PipelineResponse:
        elapsed_ms = _elapsed_ms(t0)
        current = tracker.current()
        if current is not None:
            tracker.advance(current.id, StepStatus.ERROR)
            stage = current.id
        else:
            errored = [s.id for s in tracker.steps if s.status == StepStatus.ERROR]
            stage = errored[-1] if errored else None
        if isinstance(exc, StageError):
            stage = exc.stage
        message = exc.message if isinstance(exc, StageError) else str(exc) or type(exc).__name__

        logger.exception("Job %s failed at stage %s.", recorder.job.id, stage)
        recorder.fail(message, processing_time_ms=elapsed_ms)
        return PipelineResponse(
            success=False,
            job_id=recorder.job.id,
            processing_time_ms=elapsed_ms,
            steps=tracker.steps,
            error=message,
            failed_stage=stage,
        )

    def _run_step(self, tracker: StepTracker, step_id: str, fn: Callable[[], T]) -> T:
        tracker.advance(step_id, StepStatus.PROCESSING)
        t = time.perf_counter()
        try:
            value = fn()
        except Exception:
            tracker.advance(step_id, StepStatus.ERROR, time.perf_counter() - t)
            raise
        tracker.advance(step_id, StepStatus.COMPLETED, time.perf_counter() - t)
        return value

    def _run_vector_step(self, tracker: StepTracker, text: str, document_id: str) -> VectorStageResult:
        tracker.advance("vector", StepStatus.PROCESSING)
        t = time.perf_counter()
        result = self.embed_and_store(text, document_id)
        duration = time.perf_counter() - t

        if result.error is None:
            tracker.advance("vector", StepStatus.COMPLETED, duration)
            return result

        tracker.advance("vector", StepStatus.ERROR, duration)
        if result.fatal:
            raise EmbeddingError(result.error)
        logger.warning("Vector stage degraded: %s", result.error)
        return result

    # ── Embedding & storage stage ─────────────────────────────────────
    def embed_and_store(self, text: str, document_id: str) -> VectorStageResult:
        """Chunk, embed in one batch, and upsert. Never raises."""
        chunks = chunk_text(
            text,
            max_chunk_size=self.settings.max_chunk_size,
            min_chunk_length=self.settings.min_chunk_length,
        )
        if not chunks:
            logger.info("Vector stage: no chunks long enough to embed.")
            return VectorStageResult()

        try:
            embeddings = self.embedder.embed([c.text for c in chunks])
        except EmbeddingError as exc:
            logger.error("Embedding failed: %s", exc.message)
            return VectorStageResult(chunks=chunks, error=exc.message, fatal=True)

        stored = store_chunks(
            self.index,
            chunks,
            embeddings,
            document_id=document_id,
            dimension=self.embedder.dimension,
            distance=self.settings.distance_metric,
        )
        return VectorStageResult(
            chunks=chunks,
            embeddings=embeddings,
            stored=stored,
            error=None if stored else "Vector index storage failed",
        )

    # ── Helpers ───────────────────────────────────────────────────────
    def _load_input(self, content: str | bytes | None, file_path: str | None) -> str | bytes:
        if file_path:
            return read_upload(self.settings.upload_dir, file_path)
        if content is None:
            raise InputError("No content provided")
        if isinstance(content, bytes):
            if not content:
                raise InputError("No content provided")
            return content
        if not content.strip():
            raise InputError("No content provided")
        return content

    def _open_job(self, job_id: str | None, document_id: str | None) -> JobRecorder:
        if self.jobs is None:
            return JobRecorder(PipelineJob(id=job_id or str(uuid.uuid4()), document_id=document_id))
        if job_id is None:
            return JobRecorder(self.jobs.create(document_id=document_id), self.jobs)

        job = self.jobs.get(job_id)
        if job is None:
            logger.warning("Job %s not found – running without persistence.", job_id)
            return JobRecorder(PipelineJob(id=job_id, document_id=document_id))
        if job.status != JobStatus.PENDING:
            raise JobStateError(f"Job {job_id} is {job.status.value}, not pending")
        return JobRecorder(job, self.jobs)


def read_upload(upload_dir: Path, file_path: str) -> bytes:
    """Read a file reference that must resolve inside *upload_dir*."""
    root = Path(upload_dir).resolve()
    target = (root / file_path).resolve()
    if root != target and root not in target.parents:
        raise InputError(f"File reference outside upload directory: {file_path}")
    if not target.is_file():
        raise InputError(f"File not found: {file_path}")
    data = target.read_bytes()
    if not data:
        raise InputError(f"File is empty: {file_path}")
    return data


def _status(ok: bool) -> str:
    return "ok" if ok else "unavailable"


def _elapsed_ms(t0: float) -> int:
    return int((time.perf_counter() - t0) * 1000)


def build_pipeline(settings: Settings, pipeline_settings: PipelineSettings) -> DocumentPipeline:
    """Validate configuration once and assemble the pipeline's collaborators."""
    settings.validate_required()

    client = make_openai_client(settings)
    extractor = Extractor(
        LLMClient.from_settings(settings, client),
        max_scan=pipeline_settings.max_salvage_scan_chars,
    )

    if settings.embedding_provider == "local":
        embedder: Embedder = SentenceTransformerEmbedder(settings.local_embedding_model)
    else:
        embedder = OpenAIEmbedder(
            client, settings.embedding_model, pipeline_settings.embedding_dimension
        )

    if settings.vector_backend == "chroma":
        index: VectorIndex = ChromaIndex(settings.chroma_dir, pipeline_settings.collection_name)
    else:
        index = QdrantIndex(
            settings.qdrant_url,
            collection=pipeline_settings.collection_name,
            api_key=settings.qdrant_api_key,
            timeout=settings.request_timeout_s,
        )

    jobs = make_job_store(settings.job_store, settings.sqlite_path)
    logger.info(
        "Pipeline ready: llm=%s, embedder=%s (dim=%d), index=%s/%s, jobs=%s.",
        settings.llm_model, embedder.name, embedder.dimension,
        index.name, index.collection, jobs.name,
    )
    return DocumentPipeline(pipeline_settings, extractor, embedder, index, jobs)
