"""REST API routes for the inspection document processor."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from inspectflow.processing.exceptions import InputError, JobStateError
from inspectflow.processing.pipeline import DocumentPipeline
from inspectflow.processing.schemas import (
    PipelineJob,
    PipelineResponse,
    StoredEntity,
    utc_now,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_pipeline(request: Request) -> DocumentPipeline:
    return request.app.state.pipeline


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------

class ProcessRequest(BaseModel):
    content: str | None = Field(None, description="Pasted document text.")
    file_path: str | None = Field(None, description="File name inside the upload directory.")
    job_id: str | None = None
    document_id: str | None = None


class AnalyzeRequest(BaseModel):
    content: str | None = None
    texts: list[str] | None = None


class AnalyzeResponse(BaseModel):
    extracted: dict[str, Any]
    summary: str


class JobCreateRequest(BaseModel):
    job_id: str | None = None
    document_id: str | None = None


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    services: dict[str, str]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/health", response_model=HealthResponse, tags=["system"])
def health_check(request: Request, pipeline: DocumentPipeline = Depends(get_pipeline)):
    """Return service health and collaborator reachability."""
    services = pipeline.health()
    degraded = any(v == "unavailable" for v in services.values())
    return HealthResponse(
        status="degraded" if degraded else "healthy",
        timestamp=utc_now(),
        version=request.app.version,
        services=services,
    )


@router.post("/process", response_model=PipelineResponse, tags=["processing"])
def process_document(body: ProcessRequest, pipeline: DocumentPipeline = Depends(get_pipeline)):
    """Run OCR → layout → extraction → vector storage → validation on one document.

    A failed run still returns the structured response, with status 502 when an
    external service failed and 500 otherwise.
    """
    try:
        result = pipeline.process(
            body.content,
            file_path=body.file_path,
            job_id=body.job_id,
            document_id=body.document_id,
        )
    except InputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except JobStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    if result.success:
        return result
    status = 502 if result.failed_stage in ("extraction", "vector") else 500
    return JSONResponse(status_code=status, content=result.model_dump(mode="json"))


@router.post("/analyze", response_model=AnalyzeResponse, tags=["processing"])
def analyze_text(body: AnalyzeRequest, pipeline: DocumentPipeline = Depends(get_pipeline)):
    """Extraction only: structured fields and a summary for raw text."""
    content = body.content or "\n\n".join(body.texts or [])
    try:
        outcome = pipeline.analyze(content)
    except InputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Error analysing text.")
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return AnalyzeResponse(extracted=outcome.data.to_payload(), summary=outcome.summary)


@router.post("/jobs", response_model=PipelineJob, status_code=201, tags=["jobs"])
def create_job(body: JobCreateRequest, pipeline: DocumentPipeline = Depends(get_pipeline)):
    if pipeline.jobs is None:
        raise HTTPException(status_code=503, detail="No job store configured")
    try:
        return pipeline.jobs.create(job_id=body.job_id, document_id=body.document_id)
    except JobStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@router.get("/jobs/{job_id}", response_model=PipelineJob, tags=["jobs"])
def get_job(job_id: str, pipeline: DocumentPipeline = Depends(get_pipeline)):
    job = pipeline.jobs.get(job_id) if pipeline.jobs is not None else None
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return job


@router.get("/jobs/{job_id}/entities", response_model=list[StoredEntity], tags=["jobs"])
def get_job_entities(job_id: str, pipeline: DocumentPipeline = Depends(get_pipeline)):
    if pipeline.jobs is None or pipeline.jobs.get(job_id) is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return pipeline.jobs.list_entities(job_id)
