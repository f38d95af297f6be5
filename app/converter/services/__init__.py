"""
Services package for PDF table conversion.

Contains:
- pdf_service: PDF loading and decryption (pypdf)
- normalizer: data URI / plain text payload builders
- rate_limiter: guest sliding-window quota
- ai: OpenAI table extraction and response normalization
- session: the per-tab conversion state machine
- export_service: xlsx export
"""

from .ai import AIService
from .pdf_service import PDFService
from .session import ConversionSession, SessionStore

__all__ = ["AIService", "ConversionSession", "PDFService", "SessionStore"]
