from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request

from contact_api.core.dependencies import get_contact_service
from contact_api.core.errors import ProblemError
from contact_api.core.request_context import CorrelationContext, generate_request_id
from contact_api.schemas.contact import ContactSuccessResponse
from contact_api.services.contact_service import ContactService
from contact_api.utils.rate_limit import get_client_ip

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/contact",
    response_model=ContactSuccessResponse,
    responses={
        400: {"description": "Validation Failed"},
        403: {"description": "Turnstile Verification Failed"},
        429: {"description": "Rate Limit Exceeded"},
        500: {"description": "Email Sending Failed / Internal Server Error"},
    },
)
async def submit_contact(request: Request, service: ContactService = Depends(get_contact_service)):
    context = CorrelationContext(
        request_id=getattr(request.state, "request_id", None) or generate_request_id(),
        source_address=get_client_ip(request) or "unknown",
    )

    raw = await request.body()
    try:
        payload = json.loads(raw) if raw else None
    except (ValueError, UnicodeDecodeError):
        logger.warning("Contact request body is not valid JSON")
        return ProblemError.validation(
            {"body": ["Request body must be valid JSON"]},
            type_base_url=service.type_base_url,
        ).to_response()

    try:
        await service.process(payload, context)
    except ProblemError as exc:
        return exc.to_response()

    return ContactSuccessResponse()
