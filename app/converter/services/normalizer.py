"""
Content normalization: turns a decrypted PDF into the payload the extraction
service consumes.

Two strategies exist and a deployment uses exactly one of them
(``NORMALIZATION_STRATEGY``):

- data_uri: the whole file as ``data:<mime>;base64,<data>``; the model reads
  the PDF itself.
- plain_text: per-page text joined with blank lines; fails on documents
  without a text layer.
"""

import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from ..exceptions import EmptyDocumentError
from .pdf_service import PDFService, get_pdf_service

logger = logging.getLogger(__name__)

PAGE_SEPARATOR = "\n\n"


@dataclass(frozen=True)
class DataUri:
    value: str


@dataclass(frozen=True)
class PlainText:
    value: str


ExtractionPayload = DataUri | PlainText


class ContentNormalizer(ABC):
    """Contract for payload builders."""

    @abstractmethod
    def normalize(self, buffer: bytes, mime_type: str) -> ExtractionPayload:
        """Build the extraction payload for a decrypted PDF buffer."""


class DataUriNormalizer(ContentNormalizer):
    """Encodes the whole file as a base64 data URI."""

    def normalize(self, buffer: bytes, mime_type: str) -> DataUri:
        encoded = base64.b64encode(buffer).decode("utf-8")
        logger.debug("Built data URI payload (%d bytes encoded)", len(encoded))
        return DataUri(f"data:{mime_type or 'application/pdf'};base64,{encoded}")


class PlainTextNormalizer(ContentNormalizer):
    """Extracts page text; text runs within a page are single-space joined."""

    def __init__(self, pdf_service: PDFService | None = None):
        self.pdf_service = pdf_service or get_pdf_service()

    def normalize(self, buffer: bytes, mime_type: str) -> PlainText:
        pages = self.pdf_service.extract_page_texts(buffer)
        text = PAGE_SEPARATOR.join(pages).strip()
        if not text:
            raise EmptyDocumentError(
                "No text could be extracted from the PDF. "
                "Scanned or image-only documents are not supported."
            )
        logger.info("Extracted %d characters of text from %d page(s)", len(text), len(pages))
        return PlainText(text)


NORMALIZERS: dict[str, type[ContentNormalizer]] = {
    "data_uri": DataUriNormalizer,
    "plain_text": PlainTextNormalizer,
}


def get_normalizer(strategy: str | None = None) -> ContentNormalizer:
    """Create the normalizer for the configured (or given) strategy."""
    if strategy is None:
        from ..config import get_settings

        strategy = get_settings().normalization_strategy
    normalizer_cls = NORMALIZERS.get(strategy.lower())
    if normalizer_cls is None:
        raise ValueError(
            f"Unknown normalization strategy '{strategy}'. Choose from: {list(NORMALIZERS)}"
        )
    return normalizer_cls()
