# app/api/endpoints/paid.py
import logging

from fastapi import APIRouter, Depends

from app.api.deps import get_gateway_settings
from app.api.models.status import PaidMessageResponse
from app.core.config import Settings

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/paid", response_model=PaidMessageResponse)
@router.get("/paid/", response_model=PaidMessageResponse, include_in_schema=False)
async def paid_message(
    gateway_settings: Settings = Depends(get_gateway_settings)
) -> PaidMessageResponse:
    """
    Priced static endpoint used to exercise the payment flow.

    Only reached once the x402 middleware has verified payment.
    """
    gateway_settings.require("X402_PAY_TO_ADDRESS")
    logger.info("Paid endpoint '/paid' served.")
    return PaidMessageResponse()
