"""
OCR stage – turns raw document input into text plus positioned text blocks.

Input kinds
-----------
- **Text** (pasted document content): each non-blank line becomes one block
  laid out on a synthetic three-column grid.  Confidence is derived from the
  share of alphanumeric characters so it is stable across runs.
- **PDF bytes**: PyMuPDF's native text layer, one block per line with real
  coordinates.  Pages without a text layer are rendered and OCR'd.
- **Image bytes** (PNG / JPEG / TIFF): **EasyOCR**.

EasyOCR is an optional extra; when it is not installed image input yields an
empty result.  The stage never raises – missing content is an empty
``OCRResult``, not an error.
"""

from __future__ import annotations

import logging
import time

from inspectflow.processing.config import PipelineSettings, pipeline_settings
from inspectflow.processing.pdf_parser import is_pdf, parse_pdf_bytes
from inspectflow.processing.schemas import OCRResult, TextBlock

logger = logging.getLogger(__name__)

# Suppress noisy "Using CPU" warning from EasyOCR
logging.getLogger("easyocr.easyocr").setLevel(logging.ERROR)

_IMAGE_MAGIC = (b"\x89PNG", b"\xff\xd8\xff", b"II*\x00", b"MM\x00*")

# Lazy-loaded readers keyed by (languages, gpu)
_readers: dict[tuple[tuple[str, ...], bool], object] = {}


def run_ocr(content: str | bytes, settings: PipelineSettings | None = None) -> OCRResult:
    """Convert *content* into an ``OCRResult``."""
    settings = settings or pipeline_settings
    if settings.simulated_stage_latency_s > 0:
        time.sleep(settings.simulated_stage_latency_s)

    if isinstance(content, bytes):
        if is_pdf(content):
            try:
                result = ocr_pdf(content, settings)
            except (RuntimeError, ValueError) as exc:  # fitz.FileDataError on damaged files
                logger.warning("Unreadable PDF, returning empty OCR result: %s", exc)
                result = OCRResult()
        elif content.startswith(_IMAGE_MAGIC):
            result = ocr_image(content, settings)
        else:
            result = ocr_text(content.decode("utf-8", errors="replace"))
    else:
        result = ocr_text(content or "")

    logger.info(
        "OCR: %d chars, %d blocks, confidence %.2f.",
        len(result.text), len(result.blocks), result.confidence,
    )
    return result


# ═══════════════════════════════════════════════════════════════════════════
# Text input
# ═══════════════════════════════════════════════════════════════════════════

def ocr_text(text: str) -> OCRResult:
    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
    if not lines:
        return OCRResult()

    blocks = [
        TextBlock(
            text=line,
            bbox=(
                10 + (i % 3) * 200,
                50 + (i // 3) * 30,
                200 + (i % 3) * 200,
                75 + (i // 3) * 30,
            ),
            confidence=_line_confidence(line),
        )
        for i, line in enumerate(lines)
    ]
    return OCRResult(text=text, confidence=_mean_confidence(blocks), blocks=tuple(blocks))


def _line_confidence(line: str) -> float:
    visible = [c for c in line if not c.isspace()]
    if not visible:
        return 0.85
    ratio = sum(1 for c in visible if c.isalnum()) / len(visible)
    return round(0.85 + 0.14 * ratio, 4)


def _mean_confidence(blocks: list[TextBlock]) -> float:
    if not blocks:
        return 0.0
    return round(sum(b.confidence for b in blocks) / len(blocks), 4)


# ═══════════════════════════════════════════════════════════════════════════
# PDF input
# ═══════════════════════════════════════════════════════════════════════════

def ocr_pdf(data: bytes, settings: PipelineSettings) -> OCRResult:
    """Native text layer first, EasyOCR for scanned pages.

    Bounding boxes are shifted down by the height of preceding pages so the
    whole document shares one coordinate space.
    """
    blocks: list[TextBlock] = []
    y_offset = 0.0
    for page in parse_pdf_bytes(data):
        if page.has_text_layer:
            for ln in page.lines:
                x0, y0, x1, y1 = ln.bbox
                blocks.append(
                    TextBlock(text=ln.text, bbox=(x0, y0 + y_offset, x1, y1 + y_offset), confidence=1.0)
                )
        elif page.pixmap_bytes:
            logger.debug("Page %d: no text layer → OCR fallback.", page.page_number)
            for b in ocr_image_blocks(page.pixmap_bytes, settings):
                x0, y0, x1, y1 = b.bbox
                blocks.append(
                    TextBlock(text=b.text, bbox=(x0, y0 + y_offset, x1, y1 + y_offset), confidence=b.confidence)
                )
        y_offset += page.height

    text = "\n".join(b.text for b in blocks)
    return OCRResult(text=text, confidence=_mean_confidence(blocks), blocks=tuple(blocks))


# ═══════════════════════════════════════════════════════════════════════════
# Image input (EasyOCR)
# ═══════════════════════════════════════════════════════════════════════════

def _get_reader(settings: PipelineSettings):
    """Lazy-initialise an EasyOCR reader."""
    key = (tuple(settings.ocr_languages), settings.ocr_gpu)
    if key in _readers:
        return _readers[key]
    try:
        import easyocr
    except ImportError:
        logger.warning("EasyOCR not installed – image OCR will be unavailable.")
        return None

    try:
        reader = easyocr.Reader(list(key[0]), gpu=settings.ocr_gpu)
    except Exception as exc:  # model download or device init errors
        logger.warning("EasyOCR reader could not be created: %s", exc)
        return None
    logger.info("EasyOCR reader initialised (gpu=%s).", settings.ocr_gpu)
    _readers[key] = reader
    return reader


def ocr_image_blocks(png_bytes: bytes, settings: PipelineSettings) -> list[TextBlock]:
    """Run OCR on an image and return blocks sorted top-to-bottom, left-to-right."""
    reader = _get_reader(settings)
    if reader is None:
        return []

    try:
        detections = reader.readtext(png_bytes)
    except Exception as exc:
        logger.warning("EasyOCR failed on image, returning no blocks: %s", exc)
        return []

    blocks: list[TextBlock] = []
    for bbox_pts, text, conf in detections:
        if conf < settings.ocr_confidence_threshold or not text.strip():
            continue
        # bbox_pts is [[x0,y0],[x1,y0],[x1,y1],[x0,y1]]
        xs = [p[0] for p in bbox_pts]
        ys = [p[1] for p in bbox_pts]
        blocks.append(
            TextBlock(
                text=text.strip(),
                bbox=(float(min(xs)), float(min(ys)), float(max(xs)), float(max(ys))),
                confidence=min(max(float(conf), 0.0), 1.0),
            )
        )

    blocks.sort(key=lambda b: (b.bbox[1], b.bbox[0]))
    return blocks


def ocr_image(png_bytes: bytes, settings: PipelineSettings) -> OCRResult:
    blocks = ocr_image_blocks(png_bytes, settings)
    return OCRResult(
        text=blocks_to_text(blocks),
        confidence=_mean_confidence(blocks),
        blocks=tuple(blocks),
    )


def blocks_to_text(blocks: list[TextBlock]) -> str:
    """Join blocks into lines: a block starts a new line when its vertical
    centre falls below the bottom of the line being built."""
    lines: list[list[TextBlock]] = []
    for b in blocks:
        centre = (b.bbox[1] + b.bbox[3]) / 2
        if lines and centre <= max(x.bbox[3] for x in lines[-1]):
            lines[-1].append(b)
        else:
            lines.append([b])
    return "\n".join(
        " ".join(x.text for x in sorted(line, key=lambda x: x.bbox[0])) for line in lines
    )
