"""
AI service package for tabular data extraction.

This package provides:
- extraction: the OpenAI request for headers/rows
- validation: response normalization into ExtractedTable

The AIService class ties them to the guest rate limiter.
"""

import logging
import os
from typing import Any

from ...exceptions import AIServiceError
from ...models import ExtractedTable
from ..normalizer import ExtractionPayload
from ..rate_limiter import FALLBACK_CLIENT_ID, RateLimiter, get_rate_limiter
from .extraction import EXTRACTION_SYSTEM_PROMPT, request_tabular_data
from .validation import (
    normalize_headers_and_rows,
    normalize_records,
    parse_tabular_response,
)

logger = logging.getLogger(__name__)

__all__ = [
    "AIService",
    "EXTRACTION_SYSTEM_PROMPT",
    "get_ai_service",
    "normalize_headers_and_rows",
    "normalize_records",
    "parse_tabular_response",
    "request_tabular_data",
]


class AIService:
    """
    Service for AI-powered table extraction.

    Guests (not logged in) are checked against the rate limiter before any
    external call, and one use is recorded only after a successful
    extraction.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        rate_limiter: RateLimiter | None = None,
        client: Any = None,
        use_mock: bool = False,
    ):
        """
        Initialize the AI service.

        Args:
            api_key: OpenAI API key. If None, reads from config/environment.
            model: OpenAI model to use (must accept PDF file input).
            timeout: Seconds to wait for one extraction call.
            rate_limiter: Guest quota backend. Defaults to the process-wide one.
            client: Pre-built AsyncOpenAI-compatible client.
            use_mock: If True, return mock data instead of calling OpenAI.
        """
        from ...config import get_settings

        settings = get_settings()
        if api_key is None:
            api_key = settings.openai_api_key or os.getenv("OPENAI_API_KEY")

        self.api_key = api_key
        self.model = model or settings.openai_model
        self.timeout = timeout if timeout is not None else settings.extraction_timeout_seconds
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self._client = client
        self.use_mock = use_mock or (client is None and not self.api_key)

        if self.use_mock:
            logger.warning(
                "AI Service running in MOCK MODE. Set OPENAI_API_KEY in .env for real extraction."
            )

    @property
    def client(self):
        """Lazy-load the OpenAI client."""
        if self._client is None:
            if not self.api_key:
                raise AIServiceError(
                    "OpenAI API key not provided. Set OPENAI_API_KEY environment variable."
                )
            from openai import AsyncOpenAI

            # No SDK retries; failures surface to the caller.
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    async def extract_table(
        self,
        payload: ExtractionPayload,
        is_authenticated: bool,
        client_id: str = FALLBACK_CLIENT_ID,
        record_usage: bool = True,
    ) -> ExtractedTable:
        """
        Extract the tables of a document.

        Args:
            payload: Normalized document content.
            is_authenticated: Logged-in callers bypass the guest quota.
            client_id: Rate-limit identity of the caller.
            record_usage: Record the guest use on success. Callers that may
                still discard the result pass False and call
                commit_usage() once they keep it.

        Returns:
            ExtractedTable with at least one row.

        Raises:
            RateLimitedError: Guest quota used up (no external call made).
            EmptyResultError: The service found no table.
            InvalidShapeError: The response is not a table.
            UpstreamError: Transport, timeout or service failure.
        """
        if not is_authenticated:
            self.rate_limiter.enforce(client_id)

        if self.use_mock:
            logger.info("Extracting tabular data (MOCK MODE)")
            raw: Any = self._get_mock_response()
        else:
            raw = await request_tabular_data(
                payload,
                client=self.client,
                model=self.model,
                timeout=self.timeout,
            )

        table = parse_tabular_response(raw)

        if record_usage:
            self.commit_usage(client_id, is_authenticated)

        return table

    def commit_usage(self, client_id: str, is_authenticated: bool) -> None:
        """Count one successful conversion against a guest's quota."""
        if not is_authenticated:
            self.rate_limiter.record(client_id)

    def _get_mock_response(self) -> dict[str, Any]:
        """Return a mock ledger table for development."""
        return {
            "headers": ["Date", "Description", "Debit", "Credit", "Balance"],
            "rows": [
                ["2024-01-02", "Opening balance", "", "", "1,000.00"],
                ["2024-01-05", "MOCK - Office supplies", "120.50", "", "879.50"],
                ["2024-01-09", "MOCK - Client payment", "", "2,400.00", "3,279.50"],
            ],
        }


# =============================================================================
# Singleton Factory
# =============================================================================

_ai_service: AIService | None = None


def get_ai_service() -> AIService:
    """Get or create the AI service singleton."""
    global _ai_service
    if _ai_service is None:
        _ai_service = AIService()
    return _ai_service
