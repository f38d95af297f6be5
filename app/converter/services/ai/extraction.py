"""
Tabular data extraction via OpenAI chat completions.

Sends either the whole PDF (as a file content part) or its extracted text,
with a strict JSON schema asking for headers and rows.
"""

import asyncio
import logging
from typing import Any

import openai

from ...exceptions import AIServiceError, UpstreamError
from ..normalizer import DataUri, ExtractionPayload, PlainText

logger = logging.getLogger(__name__)


# =============================================================================
# Extraction Prompt
# =============================================================================

EXTRACTION_SYSTEM_PROMPT = """You are an expert system for extracting accounting tables from PDF documents.

Extract ALL tabular data from the document and return it as headers and rows.

## Rules:
1. `headers` lists the column names in the order they appear.
2. `rows` lists every table row, top to bottom; each row is a list of cell
   strings in the same order as `headers`.
3. Capture every row, including rows that continue on later pages.
4. Keep numbers, dates and currency exactly as printed.
5. Use an empty string for an empty cell. DO NOT HALLUCINATE values.
6. If the document contains no table, return empty `headers` and `rows`."""

TABULAR_DATA_SCHEMA: dict[str, Any] = {
    "name": "tabular_data",
    "strict": True,
    "schema": {
        "type": "object",
        "properties": {
            "headers": {"type": "array", "items": {"type": "string"}},
            "rows": {
                "type": "array",
                "items": {"type": "array", "items": {"type": "string"}},
            },
        },
        "required": ["headers", "rows"],
        "additionalProperties": False,
    },
}


def _build_user_content(payload: ExtractionPayload) -> list[dict[str, Any]]:
    """Build the user message content for a payload."""
    if isinstance(payload, DataUri):
        return [
            {"type": "text", "text": "Extract all tabular data from this PDF document."},
            {
                "type": "file",
                "file": {"filename": "document.pdf", "file_data": payload.value},
            },
        ]
    if isinstance(payload, PlainText):
        return [
            {
                "type": "text",
                "text": (
                    "Extract all tabular data from the text of this PDF document.\n\n"
                    f"Here is the document text:\n{payload.value}"
                ),
            }
        ]
    raise TypeError(f"Unsupported payload type: {type(payload).__name__}")


# =============================================================================
# Main Extraction Function
# =============================================================================


async def request_tabular_data(
    payload: ExtractionPayload,
    client: Any,  # AsyncOpenAI client
    model: str = "gpt-4.1",
    timeout: float = 60.0,
) -> str:
    """
    Ask the model for the tables in a document.

    The call is bounded by ``timeout`` and never retried.

    Args:
        payload: DataUri or PlainText payload.
        client: AsyncOpenAI client instance.
        model: Model name to use.
        timeout: Maximum seconds to wait for the response.

    Returns:
        The raw JSON text returned by the model.

    Raises:
        UpstreamError: On timeout, transport or service failure.
    """
    logger.info("Requesting tabular data (%s payload, model=%s)", type(payload).__name__, model)

    try:
        response = await asyncio.wait_for(
            client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
                    {"role": "user", "content": _build_user_content(payload)},
                ],
                response_format={"type": "json_schema", "json_schema": TABULAR_DATA_SCHEMA},
            ),
            timeout=timeout,
        )
    except (asyncio.TimeoutError, openai.APITimeoutError) as e:
        logger.error("Extraction call timed out after %.1fs", timeout)
        raise UpstreamError(
            f"The extraction service did not respond within {timeout:g} seconds."
        ) from e
    except openai.OpenAIError as e:
        logger.error("Extraction service error: %s", e)
        raise UpstreamError(f"Extraction service error: {e}") from e
    except AIServiceError:
        raise
    except Exception as e:
        logger.exception("Data extraction failed")
        raise UpstreamError(f"Data extraction failed: {e}") from e

    try:
        message = response.choices[0].message
    except (AttributeError, IndexError) as e:
        raise UpstreamError("Malformed response from extraction service") from e

    if getattr(message, "refusal", None):
        raise UpstreamError(f"Extraction service refused the request: {message.refusal}")
    if not message.content:
        raise UpstreamError("Empty response from extraction service")
    return message.content
