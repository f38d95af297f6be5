"""
PDF loading and decryption service using pypdf.

Parses uploaded bytes as a PDF, detects encryption and re-saves decrypted
copies so later steps always receive an unencrypted buffer.
"""

import io
import logging
from dataclasses import dataclass

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PyPdfError

from ..exceptions import CorruptedPDFError

logger = logging.getLogger(__name__)


# =============================================================================
# Load Results
# =============================================================================


@dataclass(frozen=True)
class Loaded:
    """The document parsed; ``buffer`` is guaranteed unencrypted."""

    buffer: bytes


@dataclass(frozen=True)
class PasswordRequired:
    """The document is encrypted and no password was supplied."""


@dataclass(frozen=True)
class InvalidPassword:
    """The supplied password does not open the document."""


@dataclass(frozen=True)
class Corrupted:
    """The buffer is not a readable PDF."""

    reason: str


PdfLoadResult = Loaded | PasswordRequired | InvalidPassword | Corrupted


# =============================================================================
# PDF Service
# =============================================================================


class PDFService:
    """
    Service for PDF loading operations.

    Uses pypdf to parse documents and remove encryption once the right
    password is known.
    """

    def load(self, buffer: bytes, password: str | None = None) -> PdfLoadResult:
        """
        Load a PDF buffer, decrypting it when needed.

        Encrypted documents are first tried with the empty user password so
        files that only carry an owner password open without a prompt.

        Args:
            buffer: Raw PDF file content.
            password: Password to try when the document is encrypted.

        Returns:
            Loaded with an unencrypted buffer, PasswordRequired,
            InvalidPassword or Corrupted.
        """
        if not buffer:
            return Corrupted("Empty PDF file provided")

        # Validate PDF magic bytes
        if not buffer[:4] == b"%PDF":
            return Corrupted("Invalid PDF file: does not start with PDF header")

        try:
            reader = PdfReader(io.BytesIO(buffer))
        except Exception as e:
            logger.warning("PDF parse failed: %s", e)
            return Corrupted(f"Invalid or corrupted PDF file: {e}")

        if not reader.is_encrypted:
            try:
                page_count = len(reader.pages)
            except Exception as e:
                logger.warning("PDF page tree unreadable: %s", e)
                return Corrupted(f"Invalid or corrupted PDF file: {e}")
            logger.info("Loaded unencrypted PDF (%d page(s))", page_count)
            return Loaded(buffer)

        if password is None:
            if not self._try_decrypt(reader, ""):
                logger.info("PDF is encrypted; password required")
                return PasswordRequired()
        elif not self._try_decrypt(reader, password):
            logger.info("Supplied PDF password was rejected")
            return InvalidPassword()

        try:
            decrypted = self._save_unencrypted(reader)
        except Exception as e:
            logger.warning("Could not re-save decrypted PDF: %s", e)
            return Corrupted(f"Could not decrypt PDF: {e}")

        logger.info("Decrypted PDF (%d bytes)", len(decrypted))
        return Loaded(decrypted)

    @staticmethod
    def _try_decrypt(reader: PdfReader, password: str) -> bool:
        try:
            return bool(reader.decrypt(password))
        except (PyPdfError, NotImplementedError) as e:
            logger.warning("PDF decryption raised: %s", e)
            return False

    @staticmethod
    def _save_unencrypted(reader: PdfReader) -> bytes:
        writer = PdfWriter(clone_from=reader)
        out = io.BytesIO()
        writer.write(out)
        return out.getvalue()

    def get_page_count(self, buffer: bytes) -> int:
        """
        Get the total number of pages in an unencrypted PDF.

        Returns 0 when the page count cannot be determined.
        """
        try:
            return len(PdfReader(io.BytesIO(buffer)).pages)
        except Exception as e:
            logger.error("Could not get page count: %s", e)
            return 0

    def extract_page_texts(self, buffer: bytes) -> list[str]:
        """
        Extract text from every page of an unencrypted PDF.

        Whitespace runs within a page are collapsed to single spaces.
        """
        try:
            reader = PdfReader(io.BytesIO(buffer))
            pages = [page.extract_text() or "" for page in reader.pages]
        except Exception as e:
            logger.error("Text extraction failed: %s", e)
            raise CorruptedPDFError(f"Could not extract text from PDF: {e}") from e
        return [" ".join(text.split()) for text in pages]


# Singleton instance for convenience
_pdf_service: PDFService | None = None


def get_pdf_service() -> PDFService:
    """Get or create the PDF service singleton."""
    global _pdf_service
    if _pdf_service is None:
        _pdf_service = PDFService()
    return _pdf_service
