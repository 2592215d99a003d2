"""
AI extraction stage – structured inspection fields + a short summary.

One chat-completion request per document.  The model is instructed to reply
with a single JSON object and to omit fields the document does not carry.
Replies are read with ``json_salvage.parse_json_object``; an unreadable reply
degrades to an empty ``ExtractedData``.  Service errors (unreachable,
non-success status, timeout) raise ``ExtractionError``.
"""

from __future__ import annotations

import logging

import openai
from pydantic import ValidationError

from inspectflow.processing.exceptions import ExtractionError
from inspectflow.processing.json_salvage import DEFAULT_MAX_SCAN, parse_json_object
from inspectflow.processing.schemas import Entity, ExtractedData, ExtractionOutcome, LayoutResult
from inspectflow.services.llm import LLMClient

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are an Intelligent Document Processing assistant for goods inspections.
Extract structured data from the document text and layout analysis you are given
(bill of lading, commercial invoice, packing list, inspection certificate …).

Reply with ONE JSON object and nothing else:
{
  "extracted": {
    "supplier": string,
    "buyer": string,
    "inspectionCompany": string,
    "inspectorName": string,
    "invoiceNumber": string,
    "invoiceDate": string,
    "totalAmount": string,
    "purchaseOrderNumber": string,
    "containerNo": string,
    "billOfLadingNo": string,
    "portOfLoading": string,
    "portOfDischarge": string,
    "modeOfTransport": string,
    "incoterms": string,
    "product": string,
    "hsCode": string,
    "quantityDeclared": string,
    "packaging": string,
    "weight": string,
    "packagingCondition": string,
    "labeling": string,
    "physicalCondition": string,
    "sampleTesting": string,
    "compliance": string,
    "findings": [{"category": string, "description": string, "severity": string}],
    "inspectionDate": string,
    "entities": [{"type": string, "value": string, "confidence": number}],
    "confidence": number (0-1)
  },
  "summary": "2-3 sentence summary of the document and inspection findings"
}

Rules:
- If a field is not present in the document, OMIT it. Never invent values.
- Keep codes and numbers exactly as written (container numbers, HS codes, dates).
- confidence reflects how clearly the fields could be read.
"""

NO_SUMMARY = "No summary available"
PARSE_FAILED_SUMMARY = "Failed to parse analysis results"


def build_context(layout: LayoutResult) -> str:
    """User prompt: structure overview, detected pairs and tables, then full text."""
    s = layout.structure
    parts = [
        "Document structure analysis:",
        f"- Found {len(s.key_value_pairs)} key-value pairs",
        f"- Found {len(s.tables)} tables",
        f"- Found {len(s.sections)} sections",
        "",
        "Key-value pairs detected:",
        *(f"{kv.key}: {kv.value}" for kv in s.key_value_pairs),
    ]
    for i, tbl in enumerate(s.tables, 1):
        parts += ["", f"Table {i}:", " | ".join(tbl.headers)]
        parts += [" | ".join(row) for row in tbl.rows]
    parts += ["", "Full document text:", layout.text]
    return "\n".join(parts)


class Extractor:
    def __init__(self, llm: LLMClient, max_scan: int = DEFAULT_MAX_SCAN) -> None:
        self._llm = llm
        self._max_scan = max_scan

    def extract(self, layout: LayoutResult) -> ExtractionOutcome:
        return self.extract_text(build_context(layout))

    def extract_text(self, context: str) -> ExtractionOutcome:
        """Run extraction over an already-built prompt context."""
        try:
            reply = self._llm.chat(SYSTEM_PROMPT, context)
        except openai.APIError as exc:  # connection, timeout and status errors
            raise ExtractionError(f"Text-generation service error: {exc}") from exc

        outcome = parse_extraction_reply(reply, max_scan=self._max_scan)
        logger.info(
            "Extraction: %d fields, confidence=%s, parsed=%s.",
            len(outcome.data.to_payload()), outcome.data.confidence, outcome.parsed,
        )
        return outcome


def parse_extraction_reply(reply: str, max_scan: int = DEFAULT_MAX_SCAN) -> ExtractionOutcome:
    """Turn a model reply into an ``ExtractionOutcome``. Never raises."""
    parsed = parse_json_object(reply, max_scan=max_scan)
    if parsed is None:
        logger.warning("Model reply is not JSON – continuing with empty extraction.")
        return ExtractionOutcome(summary=PARSE_FAILED_SUMMARY, parsed=False)

    summary = parsed.get("summary")
    fields = parsed.get("extracted")
    if not isinstance(fields, dict):
        # flat reply: the object itself carries the fields
        fields = {k: v for k, v in parsed.items() if k != "summary"}

    try:
        data = ExtractedData.model_validate(fields)
    except ValidationError as exc:
        logger.warning("Extracted fields failed validation: %s", exc.errors()[:3])
        data = _salvage_fields(fields)
    if data.is_empty():
        logger.warning("Model reply carried no extracted fields.")

    return ExtractionOutcome(
        data=data,
        summary=summary if isinstance(summary, str) and summary.strip() else NO_SUMMARY,
    )


def _salvage_fields(fields: dict) -> ExtractedData:
    """Keep every field (and entity) that validates on its own; drop the rest."""
    kept: dict = {}
    for key, value in fields.items():
        if key == "entities" and isinstance(value, list):
            kept[key] = _valid_entities(value)
            continue
        try:
            ExtractedData.model_validate({key: value})
        except ValidationError:
            logger.warning("Dropping extracted field %r with invalid value %r.", key, value)
            continue
        kept[key] = value
    return ExtractedData.model_validate(kept)


def _valid_entities(items: list) -> list[Entity]:
    entities = []
    for item in items:
        try:
            entities.append(Entity.model_validate(item))
        except ValidationError:
            logger.warning("Dropping invalid entity %r.", item)
    return entities
