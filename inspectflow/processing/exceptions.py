"""
Exceptions raised by the document processing pipeline.
"""

from __future__ import annotations


class ProcessingError(Exception):
    """Base exception for all document processing errors."""


class InputError(ProcessingError):
    """No usable document content was supplied."""


class ConfigurationError(ProcessingError):
    """Required settings are missing or inconsistent."""


class StageError(ProcessingError):
    """A pipeline stage failed in a way the pipeline cannot recover from."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(message)
        self.stage = stage
        self.message = message

    def __str__(self) -> str:
        return f"{self.stage}: {self.message}"


class ExtractionError(StageError):
    """The text-generation service was unreachable or returned an error."""

    def __init__(self, message: str) -> None:
        super().__init__("extraction", message)


class EmbeddingError(StageError):
    """The embedding service was unreachable or returned unusable vectors."""

    def __init__(self, message: str) -> None:
        super().__init__("vector", message)


class IllegalStepTransition(ProcessingError):
    """A processing step was moved outside pending → processing → completed/error."""


class JobStateError(ProcessingError):
    """A job cannot be started or its progress would move backwards."""
