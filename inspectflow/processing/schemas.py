"""
Pydantic models for every artifact that flows through the processing pipeline.

Stage outputs, in pipeline order:
  - OCRResult        – full text + positioned text blocks
  - LayoutResult     – sections, tables and key-value pairs derived from OCR
  - ExtractedData    – fields the language model read off the document
  - Chunk            – bounded text segment sent for embedding
  - ValidationResult – blocking errors and non-blocking warnings

``PipelineJob`` and ``ProcessingStep`` track a run; ``PipelineResponse`` is what
callers receive.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Enums ────────────────────────────────────────────────────────────────

class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class SectionType(str, Enum):
    HEADER = "header"
    BODY = "body"
    FOOTER = "footer"


# ── OCR ──────────────────────────────────────────────────────────────────

BBox = tuple[float, float, float, float]  # (x1, y1, x2, y2)


class TextBlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    bbox: BBox
    confidence: float = Field(..., ge=0.0, le=1.0)


class OCRResult(BaseModel):
    """Text plus positional metadata. Never mutated once produced."""

    model_config = ConfigDict(frozen=True)

    text: str = ""
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    blocks: tuple[TextBlock, ...] = ()


# ── Layout ───────────────────────────────────────────────────────────────

class Section(BaseModel):
    type: SectionType
    content: str


class Table(BaseModel):
    headers: list[str]
    rows: list[list[str]] = Field(default_factory=list)


class KeyValuePair(BaseModel):
    key: str
    value: str
    confidence: float = Field(1.0, ge=0.0, le=1.0)


class LayoutStructure(BaseModel):
    sections: list[Section] = Field(default_factory=list)
    tables: list[Table] = Field(default_factory=list)
    key_value_pairs: list[KeyValuePair] = Field(default_factory=list)


class LayoutResult(BaseModel):
    text: str
    structure: LayoutStructure = Field(default_factory=LayoutStructure)


# ── Extraction ───────────────────────────────────────────────────────────

FieldValue = Union[str, int, float]


class Entity(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    type: str
    value: str
    confidence: float | None = None


class Finding(BaseModel):
    category: str = ""
    description: str = ""
    severity: str = ""


class ExtractedData(BaseModel):
    """Structured fields read from a shipping / inspection document.

    Absent fields stay ``None`` and are left out of every serialised form; an
    empty string means the document carried the field but it was blank.
    Field names serialise in camelCase (``containerNo``, ``hsCode`` …).
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    # Parties
    supplier: FieldValue | None = None
    buyer: FieldValue | None = None
    inspection_company: FieldValue | None = None
    inspector_name: FieldValue | None = None

    # Commercial documents
    invoice_number: FieldValue | None = None
    invoice_date: FieldValue | None = None
    total_amount: FieldValue | None = None
    purchase_order_number: FieldValue | None = None

    # Shipment
    container_no: FieldValue | None = None
    bill_of_lading_no: FieldValue | None = None
    port_of_loading: FieldValue | None = None
    port_of_discharge: FieldValue | None = None
    mode_of_transport: FieldValue | None = None
    incoterms: FieldValue | None = None

    # Goods
    product: FieldValue | None = None
    hs_code: FieldValue | None = None
    quantity_declared: FieldValue | None = None
    packaging: FieldValue | None = None
    weight: FieldValue | None = None

    # Inspection
    packaging_condition: FieldValue | None = None
    labeling: FieldValue | None = None
    physical_condition: FieldValue | None = None
    sample_testing: FieldValue | None = None
    compliance: FieldValue | None = None
    findings: str | list[Finding] | None = None
    inspection_date: FieldValue | None = None

    confidence: float | None = None
    entities: list[Entity] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        """camelCase dict with absent fields omitted."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def is_empty(self) -> bool:
        return not self.to_payload().keys() - {"entities"} and not self.entities


class ExtractionOutcome(BaseModel):
    data: ExtractedData = Field(default_factory=ExtractedData)
    summary: str = ""
    parsed: bool = True  # False when the model reply could not be read as JSON


# ── Chunking / vectors ───────────────────────────────────────────────────

class Chunk(BaseModel):
    text: str
    index: int


class VectorStageResult(BaseModel):
    chunks: list[Chunk] = Field(default_factory=list)
    embeddings: list[list[float]] = Field(default_factory=list)
    stored: bool = False
    error: str | None = None
    fatal: bool = False  # embedding failure aborts the run; storage failure does not


# ── Validation ───────────────────────────────────────────────────────────

class ValidationResult(BaseModel):
    passed: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# ── Run tracking ─────────────────────────────────────────────────────────

class ProcessingStep(BaseModel):
    id: str
    name: str
    status: StepStatus = StepStatus.PENDING
    duration: float | None = None  # seconds
    description: str = ""


class PipelineJob(BaseModel):
    id: str
    document_id: str | None = None
    job_type: str = "document_processing"
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(0, ge=0, le=100)
    result: dict[str, Any] | None = None
    error_message: str | None = None
    processing_time_ms: int | None = None
    created_at: str = Field(default_factory=utc_now)
    completed_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)


class StoredEntity(BaseModel):
    job_id: str
    entity_type: str
    entity_value: str
    confidence: float | None = None
    created_at: str = Field(default_factory=utc_now)


# ── Response ─────────────────────────────────────────────────────────────

class OCRSummary(BaseModel):
    text_length: int
    confidence: float
    blocks_count: int


class LayoutSummary(BaseModel):
    sections_count: int
    tables_count: int
    key_value_pairs_count: int


class VectorSummary(BaseModel):
    chunks_stored: int
    embeddings_dimension: int
    stored: bool
    collection: str


class PipelineResponse(BaseModel):
    success: bool
    job_id: str | None = None
    processing_time_ms: int = 0
    steps: list[ProcessingStep] = Field(default_factory=list)
    ocr_result: OCRSummary | None = None
    layout_result: LayoutSummary | None = None
    extracted_data: dict[str, Any] | None = None
    summary: str | None = None
    vector_storage: VectorSummary | None = None
    embeddings_preview: list[float] = Field(default_factory=list)
    validation: ValidationResult | None = None
    error: str | None = None
    failed_stage: str | None = None
    timestamp: str = Field(default_factory=utc_now)
