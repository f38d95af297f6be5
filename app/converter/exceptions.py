"""
Error taxonomy for the conversion pipeline.

Every error carries a stable ``kind`` string so the HTTP layer and clients can
branch on it (e.g. ``rate_limited`` opens the upgrade prompt) without matching
on message text.
"""

from typing import ClassVar


class ConversionError(Exception):
    """Base class for all conversion pipeline failures."""

    kind: ClassVar[str] = "conversion_error"


# =============================================================================
# PDF / file errors
# =============================================================================


class PDFServiceError(ConversionError):
    """Raised when a PDF cannot be turned into an extraction payload."""

    kind = "pdf_error"


class FileReadError(PDFServiceError):
    """Raised when an uploaded file cannot be read into memory."""

    kind = "file_read_error"


class CorruptedPDFError(PDFServiceError):
    """Raised when a buffer is not a readable PDF document."""

    kind = "corrupted"


class EmptyDocumentError(PDFServiceError):
    """Raised when a PDF has no extractable text (e.g. image-only scans)."""

    kind = "empty_document"


# =============================================================================
# AI / extraction errors
# =============================================================================


class AIServiceError(ConversionError):
    """Raised when AI service operations fail."""

    kind = "ai_error"


class RateLimitedError(AIServiceError):
    """Raised when a guest has used up the conversion quota."""

    kind = "rate_limited"


class EmptyResultError(AIServiceError):
    """Raised when the extraction service found no table rows."""

    kind = "empty_result"


class InvalidShapeError(AIServiceError):
    """Raised when the extraction response cannot be read as a table."""

    kind = "invalid_shape"


class UpstreamError(AIServiceError):
    """Raised for transport, timeout or service failures of the extraction call."""

    kind = "upstream_error"


# =============================================================================
# Session errors
# =============================================================================


class InvalidTransitionError(ConversionError):
    """Raised when an action is not allowed in the session's current state."""

    kind = "invalid_transition"
