"""
Validation of extracted inspection fields.

Each rule is a pure function of ``ExtractedData`` returning a message or
``None``.  Every rule runs on every call; missing required fields are errors,
format problems are warnings.  ``passed`` depends on errors only.
"""

from __future__ import annotations

import logging
import re
from typing import Callable

from inspectflow.processing.schemas import ExtractedData, ValidationResult

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("supplier", "buyer", "product")

MAX_WEIGHT = 100_000

_INVOICE = re.compile(r"^(INV|INVOICE|#)?-?\d{3,10}$", re.IGNORECASE)
_HS_CODE = re.compile(r"^\d{6,10}$")
_CONTAINER = re.compile(r"^[A-Z]{4}\d{7}$", re.IGNORECASE)
_WEIGHT = re.compile(r"(\d+(?:[.,]\d+)?)\s*(kg|lbs?|tons?|tonnes?)", re.IGNORECASE)
_DIGIT = re.compile(r"\d")
_DATE = re.compile(r"\d{1,2}[-/.]\d{1,2}[-/.]\d{2,4}|\d{4}[-/.]\d{1,2}[-/.]\d{1,2}")


def _present(data: ExtractedData, field: str) -> str | None:
    """String form of a field, or ``None`` when absent, blank or zero."""
    value = getattr(data, field)
    if not value:
        return None
    text = str(value).strip()
    return text or None


def _no_whitespace(text: str) -> str:
    return re.sub(r"\s", "", text)


# ── Rules ────────────────────────────────────────────────────────────────

def check_invoice_number(data: ExtractedData) -> str | None:
    value = _present(data, "invoice_number")
    if value is not None and not _INVOICE.match(value):
        return "Invoice number format may be invalid (expected: INV-12345 or similar)"
    return None


def check_hs_code(data: ExtractedData) -> str | None:
    value = _present(data, "hs_code")
    if value is not None and not _HS_CODE.match(_no_whitespace(value)):
        return "HS Code format invalid (expected: 6-10 digits)"
    return None


def check_container_number(data: ExtractedData) -> str | None:
    value = _present(data, "container_no")
    if value is not None and not _CONTAINER.match(_no_whitespace(value)):
        return "Container number format invalid (expected: ABCD1234567)"
    return None


def check_weight(data: ExtractedData) -> str | None:
    value = _present(data, "weight")
    if value is None:
        return None
    match = _WEIGHT.search(value)
    if not match:
        return 'Weight format unclear (expected: number + unit like "1000 kg")'
    amount = float(match.group(1).replace(",", "."))
    if amount <= 0 or amount > MAX_WEIGHT:
        return "Weight value seems unrealistic"
    return None


def check_quantity(data: ExtractedData) -> str | None:
    value = _present(data, "quantity_declared")
    if value is not None and not _DIGIT.search(value):
        return "Quantity format unclear (should contain numbers)"
    return None


def check_inspection_date(data: ExtractedData) -> str | None:
    value = _present(data, "inspection_date")
    if value is not None and not _DATE.search(value):
        return "Inspection date format unclear"
    return None


WARNING_RULES: tuple[Callable[[ExtractedData], str | None], ...] = (
    check_invoice_number,
    check_hs_code,
    check_container_number,
    check_weight,
    check_quantity,
    check_inspection_date,
)


def validate_extracted(data: ExtractedData) -> ValidationResult:
    """Apply required-field and format rules. Does not modify *data*."""
    errors = [
        f"Missing required field: {field}"
        for field in REQUIRED_FIELDS
        if _present(data, field) is None
    ]
    warnings: list[str] = []
    for rule in WARNING_RULES:
        msg = rule(data)
        if msg is not None:
            warnings.append(msg)

    result = ValidationResult(passed=not errors, errors=errors, warnings=warnings)
    logger.info(
        "Validation: passed=%s, %d errors, %d warnings.",
        result.passed, len(errors), len(warnings),
    )
    return result
