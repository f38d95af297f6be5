"""
Router for the stateless extraction endpoint.

Handles:
- One extraction call for an already-normalized payload (data URI or text)
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends

from ..dependencies import get_requester
from ..models import ExtractRequest, ExtractResponse
from ..services.ai import AIService, get_ai_service
from ..services.normalizer import DataUri, ExtractionPayload, PlainText
from ..services.session import Requester

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["extract"])


@router.post("/extract", response_model=ExtractResponse)
async def extract(
    request: ExtractRequest,
    requester: Annotated[Requester, Depends(get_requester)],
    ai_service: Annotated[AIService, Depends(get_ai_service)],
) -> ExtractResponse:
    """
    Extract tabular data from a PDF data URI or its text.

    ``isLoggedIn`` is honoured only together with a bearer Authorization
    header; otherwise the guest quota applies. Errors are mapped by the
    application's ConversionError handler (429 for the quota).
    """
    payload: ExtractionPayload
    if request.pdf_data_uri is not None:
        payload = DataUri(request.pdf_data_uri)
    else:
        payload = PlainText(request.text_content or "")

    is_authenticated = request.is_logged_in and requester.is_authenticated
    logger.info(
        "Extract request (%s, authenticated=%s, client=%s)",
        type(payload).__name__,
        is_authenticated,
        requester.client_id,
    )

    table = await ai_service.extract_table(
        payload,
        is_authenticated=is_authenticated,
        client_id=requester.client_id,
    )
    return ExtractResponse(headers=table.headers, tabular_data=table.to_records())
