"""
PDF reading via PyMuPDF (fitz).

Responsibilities
- Open an in-memory PDF and yield page-level text lines with bounding boxes.
- Detect whether a page has a usable text layer or is image-only (scanned),
  and render scanned pages to PNG so the OCR stage can read them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator

import fitz  # PyMuPDF

logger = logging.getLogger(__name__)

_RENDER_DPI = 150
_MIN_TEXT_LAYER_CHARS = 20  # below this the page is treated as scanned


@dataclass
class TextLine:
    """One line of the native PDF text layer."""

    text: str
    bbox: tuple[float, float, float, float]  # (x0, y0, x1, y1)


@dataclass
class PageData:
    page_number: int  # 1-based
    width: float
    height: float
    lines: list[TextLine] = field(default_factory=list)
    has_text_layer: bool = True
    pixmap_bytes: bytes | None = None  # PNG, only for pages without text


def is_pdf(data: bytes) -> bool:
    return data[:5] == b"%PDF-"


def parse_pdf_bytes(data: bytes) -> Iterator[PageData]:
    """Yield one ``PageData`` per page of the PDF held in *data*."""
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        for idx, page in enumerate(doc):
            lines: list[TextLine] = []
            for b in page.get_text("dict")["blocks"]:
                if b["type"] != 0:  # images
                    continue
                for line in b.get("lines", []):
                    txt = "".join(s.get("text", "") for s in line.get("spans", [])).strip()
                    if txt:
                        lines.append(TextLine(text=txt, bbox=tuple(line["bbox"])))

            char_count = sum(len(ln.text) for ln in lines)
            has_text = char_count > _MIN_TEXT_LAYER_CHARS

            pixmap_bytes = None
            if not has_text:
                mat = fitz.Matrix(_RENDER_DPI / 72, _RENDER_DPI / 72)
                pixmap_bytes = page.get_pixmap(matrix=mat).tobytes("png")

            yield PageData(
                page_number=idx + 1,
                width=page.rect.width,
                height=page.rect.height,
                lines=lines,
                has_text_layer=has_text,
                pixmap_bytes=pixmap_bytes,
            )
        logger.info("Parsed %d PDF pages.", len(doc))
    finally:
        doc.close()
