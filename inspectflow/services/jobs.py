"""Job persistence: a key-value record store keyed by job id.

``JobRecorder`` is what the pipeline talks to.  It enforces the job state
machine (pending → running → completed | failed) and non-decreasing progress,
and writes every change through to the store.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from inspectflow.processing.exceptions import JobStateError
from inspectflow.processing.schemas import (
    Entity,
    JobStatus,
    PipelineJob,
    StoredEntity,
    utc_now,
)

logger = logging.getLogger(__name__)


class JobStore:
    """Interface shared by job store backends."""

    name = "base"

    def create(self, job_id: str | None = None, document_id: str | None = None) -> PipelineJob:
        raise NotImplementedError

    def get(self, job_id: str) -> PipelineJob | None:
        raise NotImplementedError

    def save(self, job: PipelineJob) -> None:
        raise NotImplementedError

    def add_entities(self, job_id: str, entities: list[Entity]) -> int:
        raise NotImplementedError

    def list_entities(self, job_id: str) -> list[StoredEntity]:
        raise NotImplementedError

    def ping(self) -> bool:
        return True


# ═══════════════════════════════════════════════════════════════════════════
# In-memory
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryJobStore(JobStore):
    name = "memory"

    def __init__(self) -> None:
        self._jobs: dict[str, PipelineJob] = {}
        self._entities: dict[str, list[StoredEntity]] = {}
        self._lock = threading.Lock()

    def create(self, job_id: str | None = None, document_id: str | None = None) -> PipelineJob:
        job = PipelineJob(id=job_id or str(uuid.uuid4()), document_id=document_id)
        with self._lock:
            if job.id in self._jobs:
                raise JobStateError(f"Job {job.id} already exists")
            self._jobs[job.id] = job.model_copy()
        return job

    def get(self, job_id: str) -> PipelineJob | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy() if job else None

    def save(self, job: PipelineJob) -> None:
        with self._lock:
            self._jobs[job.id] = job.model_copy()

    def add_entities(self, job_id: str, entities: list[Entity]) -> int:
        rows = [
            StoredEntity(job_id=job_id, entity_type=e.type, entity_value=e.value, confidence=e.confidence)
            for e in entities
        ]
        with self._lock:
            self._entities.setdefault(job_id, []).extend(rows)
        return len(rows)

    def list_entities(self, job_id: str) -> list[StoredEntity]:
        with self._lock:
            return list(self._entities.get(job_id, []))


# ═══════════════════════════════════════════════════════════════════════════
# SQLite
# ═══════════════════════════════════════════════════════════════════════════

_SCHEMA = """
CREATE TABLE IF NOT EXISTS processing_jobs (
    id TEXT PRIMARY KEY,
    document_id TEXT,
    job_type TEXT NOT NULL DEFAULT 'document_processing',
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'running', 'completed', 'failed')),
    progress INTEGER NOT NULL DEFAULT 0 CHECK (progress >= 0 AND progress <= 100),
    result TEXT,
    error_message TEXT,
    processing_time_ms INTEGER,
    created_at TEXT NOT NULL,
    completed_at TEXT
);
CREATE TABLE IF NOT EXISTS extracted_entities (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id TEXT NOT NULL REFERENCES processing_jobs(id) ON DELETE CASCADE,
    entity_type TEXT NOT NULL,
    entity_value TEXT NOT NULL,
    confidence REAL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_processing_jobs_status ON processing_jobs(status);
CREATE INDEX IF NOT EXISTS idx_extracted_entities_job_id ON extracted_entities(job_id);
"""

_JOB_COLUMNS = (
    "id", "document_id", "job_type", "status", "progress", "result",
    "error_message", "processing_time_ms", "created_at", "completed_at",
)


class SQLiteJobStore(JobStore):
    name = "sqlite"

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back on error, always close."""
        conn = sqlite3.connect(str(self.path))
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def create(self, job_id: str | None = None, document_id: str | None = None) -> PipelineJob:
        job = PipelineJob(id=job_id or str(uuid.uuid4()), document_id=document_id)
        try:
            with self._connect() as conn:
                conn.execute(
                    f"INSERT INTO processing_jobs ({', '.join(_JOB_COLUMNS)}) "
                    f"VALUES ({', '.join('?' for _ in _JOB_COLUMNS)})",
                    self._row(job),
                )
        except sqlite3.IntegrityError as exc:
            raise JobStateError(f"Job {job.id} already exists") from exc
        return job

    def get(self, job_id: str) -> PipelineJob | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM processing_jobs WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            return None
        data = dict(row)
        data["result"] = json.loads(data["result"]) if data["result"] else None
        return PipelineJob.model_validate(data)

    def save(self, job: PipelineJob) -> None:
        assignments = ", ".join(f"{c} = ?" for c in _JOB_COLUMNS[1:])
        values = self._row(job)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE processing_jobs SET {assignments} WHERE id = ?",
                (*values[1:], job.id),
            )

    def add_entities(self, job_id: str, entities: list[Entity]) -> int:
        now = utc_now()
        with self._connect() as conn:
            conn.executemany(
                "INSERT INTO extracted_entities "
                "(job_id, entity_type, entity_value, confidence, created_at) VALUES (?, ?, ?, ?, ?)",
                [(job_id, e.type, e.value, e.confidence, now) for e in entities],
            )
        return len(entities)

    def list_entities(self, job_id: str) -> list[StoredEntity]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT job_id, entity_type, entity_value, confidence, created_at "
                "FROM extracted_entities WHERE job_id = ? ORDER BY id",
                (job_id,),
            ).fetchall()
        return [StoredEntity.model_validate(dict(r)) for r in rows]

    def ping(self) -> bool:
        try:
            with self._connect() as conn:
                conn.execute("SELECT 1")
        except sqlite3.Error:
            return False
        return True

    @staticmethod
    def _row(job: PipelineJob) -> tuple:
        return (
            job.id,
            job.document_id,
            job.job_type,
            job.status.value,
            job.progress,
            json.dumps(job.result) if job.result is not None else None,
            job.error_message,
            job.processing_time_ms,
            job.created_at,
            job.completed_at,
        )


# ═══════════════════════════════════════════════════════════════════════════
# Recorder
# ═══════════════════════════════════════════════════════════════════════════

class JobRecorder:
    """Drives one job through a pipeline run.

    With ``store=None`` (no job record) the recorder still tracks progress so
    the run behaves the same, it just persists nothing.
    """

    def __init__(self, job: PipelineJob, store: JobStore | None = None) -> None:
        self.job = job
        self._store = store

    @property
    def persisted(self) -> bool:
        return self._store is not None

    def start(self, progress: int) -> None:
        if self.job.status != JobStatus.PENDING:
            raise JobStateError(f"Job {self.job.id} is {self.job.status.value}, not pending")
        self.job.status = JobStatus.RUNNING
        self._set_progress(progress)
        self._flush()

    def progress(self, value: int) -> None:
        self._require_running()
        self._set_progress(value)
        self._flush()

    def complete(self, result: dict, processing_time_ms: int) -> None:
        """Applied to ``self.job`` only after the store write succeeds."""
        self._require_running()
        done = self.job.model_copy(
            update={
                "status": JobStatus.COMPLETED,
                "progress": 100,
                "result": result,
                "processing_time_ms": processing_time_ms,
                "completed_at": utc_now(),
            }
        )
        if self._store is not None:
            self._store.save(done)
        self.job = done

    def fail(self, message: str, processing_time_ms: int) -> None:
        """Progress stays at its last checkpoint; no partial result is kept."""
        if self.job.is_terminal:
            return
        self.job.status = JobStatus.FAILED
        self.job.error_message = message
        self.job.result = None
        self.job.processing_time_ms = processing_time_ms
        self.job.completed_at = utc_now()
        try:
            self._flush()
        except Exception:
            logger.exception("Could not record failure of job %s.", self.job.id)

    def add_entities(self, entities: list[Entity]) -> int:
        if self._store is None or not entities:
            return 0
        return self._store.add_entities(self.job.id, entities)

    def _require_running(self) -> None:
        if self.job.status != JobStatus.RUNNING:
            raise JobStateError(f"Job {self.job.id} is {self.job.status.value}, not running")

    def _set_progress(self, value: int) -> None:
        if value < self.job.progress:
            raise JobStateError(
                f"Progress for job {self.job.id} cannot go from {self.job.progress} to {value}"
            )
        self.job.progress = value

    def _flush(self) -> None:
        if self._store is not None:
            self._store.save(self.job)


def make_job_store(kind: str, sqlite_path: Path | None = None) -> JobStore:
    if kind == "sqlite":
        if sqlite_path is None:
            raise ValueError("sqlite job store needs a path")
        return SQLiteJobStore(sqlite_path)
    return InMemoryJobStore()
