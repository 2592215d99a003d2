"""
Document layout analysis – sections, tables and key-value pairs.

Strategy
--------
Line-based heuristics over the OCR text:

- a line containing ``|`` is a table row (cells split on ``|`` and trimmed);
  consecutive rows form one table whose first row is the header row;
- otherwise a line containing ``:`` is a key-value pair, split on the first
  colon;
- the table check wins when a line matches both.

Sections are positional: the first lines are the header, the whole text is the
body, and a fixed marker closes the footer.

Optional upgrade path: a LayoutParser / DocTR model producing the same
``LayoutResult`` shape.
"""

from __future__ import annotations

import logging
import re
import time

from inspectflow.processing.config import PipelineSettings, pipeline_settings
from inspectflow.processing.schemas import (
    KeyValuePair,
    LayoutResult,
    LayoutStructure,
    OCRResult,
    Section,
    SectionType,
    Table,
)

logger = logging.getLogger(__name__)

TABLE_DELIMITER = "|"
KV_SEPARATOR = ":"

_SEPARATOR_CELL = re.compile(r"^:?-{2,}:?$")  # markdown |---|:--:|


def analyse_layout(ocr: OCRResult, settings: PipelineSettings | None = None) -> LayoutResult:
    """Derive structure from an OCR result. Malformed tables are dropped, never raised."""
    settings = settings or pipeline_settings
    if settings.simulated_stage_latency_s > 0:
        time.sleep(settings.simulated_stage_latency_s)

    lines = [ln.strip() for ln in ocr.text.splitlines() if ln.strip()]
    confidences = _line_confidences(ocr)

    key_values: list[KeyValuePair] = []
    runs: list[list[list[str]]] = []
    current_run: list[list[str]] | None = None

    for line in lines:
        if TABLE_DELIMITER in line:
            cells = split_row(line)
            if is_separator_row(cells):
                continue
            if current_run is None:
                current_run = []
                runs.append(current_run)
            current_run.append(cells)
            continue

        current_run = None
        if KV_SEPARATOR in line:
            key, value = line.split(KV_SEPARATOR, 1)
            key = key.strip()
            if not key:
                continue
            key_values.append(
                KeyValuePair(
                    key=key,
                    value=value.strip(),
                    confidence=confidences.get(line, ocr.confidence or 1.0),
                )
            )

    tables = [Table(headers=run[0], rows=run[1:]) for run in runs if len(run) >= 2]
    dropped = len(runs) - len(tables)
    if dropped:
        logger.debug("Layout: dropped %d single-row table fragment(s).", dropped)

    sections: list[Section] = []
    if lines:
        sections = [
            Section(type=SectionType.HEADER, content=" ".join(lines[: settings.header_line_count])),
            Section(type=SectionType.BODY, content=ocr.text),
            Section(type=SectionType.FOOTER, content=settings.footer_marker),
        ]

    logger.info(
        "Layout: %d sections, %d tables, %d key-value pairs.",
        len(sections), len(tables), len(key_values),
    )
    return LayoutResult(
        text=ocr.text,
        structure=LayoutStructure(sections=sections, tables=tables, key_value_pairs=key_values),
    )


def split_row(line: str) -> list[str]:
    """Split a table line into trimmed cells, ignoring markdown border pipes."""
    stripped = line.strip()
    cells = [c.strip() for c in stripped.split(TABLE_DELIMITER)]
    if stripped.startswith(TABLE_DELIMITER):
        cells = cells[1:]
    if stripped.endswith(TABLE_DELIMITER) and cells:
        cells = cells[:-1]
    return cells


def is_separator_row(cells: list[str]) -> bool:
    filled = [c for c in cells if c]
    return bool(filled) and all(_SEPARATOR_CELL.match(c) for c in filled)


def _line_confidences(ocr: OCRResult) -> dict[str, float]:
    out: dict[str, float] = {}
    for b in ocr.blocks:
        out.setdefault(b.text.strip(), b.confidence)
    return out
