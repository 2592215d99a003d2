"""
Per-run processing steps.

The step list is fixed: ocr → layout → extraction → vector → validation.
``StepTracker.advance`` is the only way to change a step and accepts only
``pending → processing`` and ``processing → completed | error``.
"""

from __future__ import annotations

from inspectflow.processing.exceptions import IllegalStepTransition
from inspectflow.processing.schemas import ProcessingStep, StepStatus

STEP_DEFINITIONS: tuple[tuple[str, str, str], ...] = (
    ("ocr", "OCR", "Text extraction with bounding boxes"),
    ("layout", "Layout parsing", "Sections, tables and key-value pairs"),
    ("extraction", "AI extraction", "Structured field extraction and summary"),
    ("vector", "Vector storage", "Text chunking, embeddings and vector index upsert"),
    ("validation", "Validation", "Required fields and format rules"),
)

_LEGAL = {
    StepStatus.PENDING: {StepStatus.PROCESSING},
    StepStatus.PROCESSING: {StepStatus.COMPLETED, StepStatus.ERROR},
    StepStatus.COMPLETED: set(),
    StepStatus.ERROR: set(),
}


class StepTracker:
    def __init__(self) -> None:
        self._steps = [
            ProcessingStep(id=step_id, name=name, description=description)
            for step_id, name, description in STEP_DEFINITIONS
        ]
        self._index = {s.id: i for i, s in enumerate(self._steps)}

    @property
    def steps(self) -> list[ProcessingStep]:
        """Snapshot copies, safe to hand to callers."""
        return [s.model_copy() for s in self._steps]

    def get(self, step_id: str) -> ProcessingStep:
        return self._steps[self._position(step_id)].model_copy()

    def current(self) -> ProcessingStep | None:
        """The step being processed, if any."""
        for s in self._steps:
            if s.status == StepStatus.PROCESSING:
                return s.model_copy()
        return None

    def advance(self, step_id: str, new_status: StepStatus, duration: float | None = None) -> None:
        pos = self._position(step_id)
        step = self._steps[pos]
        if new_status not in _LEGAL[step.status]:
            raise IllegalStepTransition(
                f"Step '{step_id}' cannot move from {step.status.value} to {new_status.value}"
            )
        if new_status == StepStatus.PROCESSING and pos > 0:
            previous = self._steps[pos - 1]
            if previous.status not in (StepStatus.COMPLETED, StepStatus.ERROR):
                raise IllegalStepTransition(
                    f"Step '{step_id}' cannot start before '{previous.id}' has finished"
                )
        step.status = new_status
        if duration is not None:
            step.duration = round(duration, 3)

    def _position(self, step_id: str) -> int:
        try:
            return self._index[step_id]
        except KeyError:
            raise IllegalStepTransition(f"Unknown step '{step_id}'") from None
