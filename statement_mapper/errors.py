"""
Error taxonomy.

Only terminal conditions are raised to callers.  Transient failures of the
external collaborators (OCR toolchain, AI provider) are recovered inside the
pipeline by falling through to the next strategy.
"""

from __future__ import annotations


class StatementMapperError(Exception):
    """Base class for every error raised by this package."""


class DocumentRejectedError(StatementMapperError, ValueError):
    """The input can never be processed (empty file, not a PDF)."""


class InvalidInputError(StatementMapperError, ValueError):
    """A learn / auto-apply / tenant request is malformed."""


class AIExtractionError(StatementMapperError):
    """The AI provider failed in a way that retrying another model won't fix."""

    def __init__(self, message: str, status: int = 0) -> None:
        super().__init__(message)
        self.status = status
