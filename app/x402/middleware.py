# app/x402/middleware.py
"""
FastAPI middleware for x402 payment verification.

This module provides HTTP middleware that:
1. Builds the access policy table for each request path
2. Lets free and unpriced paths through without contacting the facilitator
3. Fails fast when payment settings are missing for a priced path
4. Verifies the X-PAYMENT header via the facilitator
5. Settles payments after the downstream handler succeeds
6. Returns 402 Payment Required when needed, as a paywall page for browsers

Uses the official x402 Python SDK for payment handling.
"""
import asyncio
import json
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Awaitable, Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import HTMLResponse, JSONResponse

from x402.types import PaymentRequirements, PaymentPayload, SettleResponse
from x402.facilitator import FacilitatorClient
from x402.encoding import safe_base64_decode, safe_base64_encode
from x402.paywall import get_paywall_html, is_browser_request

from app.api.errors import configuration_error_response
from app.core.config import ConfigurationError, Settings, settings
from app.x402.facilitator import create_facilitator_client
from app.x402.policy import AccessPolicy, build_policies, match_policy

logger = logging.getLogger(__name__)

# x402 protocol constants
X402_VERSION = 1
X_PAYMENT_HEADER = "X-PAYMENT"
X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"
MAX_TIMEOUT_SECONDS = 60

# USDC has 6 decimals, so $1.00 = 1,000,000 smallest units
USDC_DECIMALS = 6

# USDC contract addresses and EIP-712 domains by network
USDC_ASSETS = {
    "base": {
        "address": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        "name": "USD Coin",
        "version": "2",
    },
    "base-sepolia": {
        "address": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        "name": "USDC",
        "version": "2",
    },
}


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def usd_to_atomic_units(price_usd: Decimal) -> str:
    """Convert a USD price to USDC smallest units, as the string x402 expects."""
    scaled = (price_usd * (10 ** USDC_DECIMALS)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return str(int(scaled))


def create_payment_requirements(
    request: Request,
    policy: AccessPolicy,
    pay_to: str
) -> PaymentRequirements:
    """
    Create PaymentRequirements for an x402 402 response.

    Args:
        request: The incoming request
        policy: The access policy matched for the request path
        pay_to: Receiving settlement address

    Returns:
        PaymentRequirements object for the x402 response
    """
    network = policy.settlement_network
    asset = USDC_ASSETS.get(network, USDC_ASSETS["base-sepolia"])

    output_schema = None
    if policy.input_schema is not None or policy.output_schema is not None:
        output_schema = {
            "input": {
                "type": "http",
                "method": request.method,
                **(policy.input_schema or {}),
            },
            "output": policy.output_schema,
        }

    return PaymentRequirements(
        scheme="exact",
        network=network,
        max_amount_required=usd_to_atomic_units(policy.price_amount),
        resource=str(request.url),
        description=policy.description,
        mime_type=policy.mime_type,
        output_schema=output_schema,
        pay_to=pay_to,
        max_timeout_seconds=MAX_TIMEOUT_SECONDS,
        asset=asset["address"],
        extra={"name": asset["name"], "version": asset["version"]},
    )


def create_402_response(
    payment_requirements: PaymentRequirements,
    error_message: str = "Payment required"
) -> JSONResponse:
    """
    Create an HTTP 402 Payment Required response.

    Args:
        payment_requirements: The payment requirements to include
        error_message: Error message for the response

    Returns:
        JSONResponse with 402 status and payment details
    """
    response_body = {
        "x402Version": X402_VERSION,
        "error": error_message,
        "accepts": [payment_requirements.model_dump(by_alias=True)]
    }

    return JSONResponse(status_code=402, content=response_body)


def create_paywall_response(
    payment_requirements: PaymentRequirements,
    error_message: str,
    app_name: str = ""
) -> HTMLResponse:
    """Create a 402 response carrying the x402 paywall page for browsers."""
    html_content = get_paywall_html(
        error_message,
        [payment_requirements],
        {"app_name": app_name}
    )
    return HTMLResponse(content=html_content, status_code=402)


def decode_payment_header(header_value: str) -> Optional[PaymentPayload]:
    """
    Decode the X-PAYMENT header into a PaymentPayload.

    Args:
        header_value: Base64-encoded payment payload

    Returns:
        PaymentPayload if successfully decoded, None otherwise
    """
    try:
        decoded_str = safe_base64_decode(header_value)
        if not decoded_str:
            logger.warning("Failed to decode X-PAYMENT header: invalid base64")
            return None

        payload_dict = json.loads(decoded_str)
        return PaymentPayload.model_validate(payload_dict)

    except ValueError as e:
        # Covers bad base64, bad UTF-8, bad JSON and pydantic validation errors
        logger.warning(f"Failed to decode X-PAYMENT header: {e}")
        return None


def encode_payment_response(settle_response: SettleResponse) -> str:
    """Encode a settlement response for the X-PAYMENT-RESPONSE header."""
    response_dict = settle_response.model_dump(by_alias=True)
    response_json = json.dumps(response_dict)
    return safe_base64_encode(response_json.encode("utf-8"))


class X402Middleware(BaseHTTPMiddleware):
    """
    x402 payment gate for FastAPI.

    For every request the policy table is built from the request path. Paths
    with a priced policy require a valid X-PAYMENT header, verified by the
    configured facilitator; everything else passes through untouched.

    With X402_SHORT_CIRCUIT set, every request is treated as paid. The switch
    is read once, when the middleware is constructed.
    """

    def __init__(
        self,
        app,
        gateway_settings: Optional[Settings] = None,
        facilitator_client: Optional[FacilitatorClient] = None
    ):
        super().__init__(app)
        self._settings = gateway_settings or settings
        self._short_circuit = bool(self._settings.X402_SHORT_CIRCUIT)
        self._facilitator_client = facilitator_client
        if self._short_circuit:
            logger.warning("x402: Short circuit enabled, payments are NOT enforced")

    @property
    def facilitator_client(self) -> FacilitatorClient:
        """Lazy initialization of facilitator client."""
        if self._facilitator_client is None:
            self._facilitator_client = create_facilitator_client(self._settings)
        return self._facilitator_client

    def _payment_required(
        self,
        request: Request,
        payment_requirements: PaymentRequirements,
        error_message: str
    ) -> Response:
        """Answer with the paywall page for browsers and JSON for API clients."""
        if is_browser_request(dict(request.headers)):
            return create_paywall_response(
                payment_requirements, error_message, self._settings.PROJECT_NAME
            )
        return create_402_response(payment_requirements, error_message)

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """
        Process the request through x402 payment verification.

        Flow:
        1. Pass through if short circuit is enabled
        2. Pass through if no priced policy matches the path
        3. Require facilitator and pay-to settings
        4. If no X-PAYMENT header, return 402 with payment requirements
        5. Verify X-PAYMENT with the facilitator
        6. If valid, process the request and settle on success
        """
        if self._short_circuit:
            return await call_next(request)

        path = request.url.path
        policies = build_policies(path, network=self._settings.X402_NETWORK)
        policy = match_policy(policies, path)
        if policy is None or not policy.requires_payment:
            return await call_next(request)

        try:
            self._settings.require(*self._settings.required_payment_settings)
            facilitator = self.facilitator_client
        except ConfigurationError as e:
            logger.error(f"x402: Refusing priced request {request.method} {path}: {e}")
            return configuration_error_response(e)

        client_ip = get_client_ip(request)
        logger.info(f"x402: Processing priced request from {client_ip}: {request.method} {path}")

        payment_requirements = create_payment_requirements(
            request=request,
            policy=policy,
            pay_to=self._settings.X402_PAY_TO_ADDRESS
        )

        payment_header = request.headers.get(X_PAYMENT_HEADER)
        if not payment_header:
            logger.info(f"x402: No X-PAYMENT header, returning 402 for ${policy.price_amount}")
            return self._payment_required(
                request,
                payment_requirements=payment_requirements,
                error_message="X-PAYMENT header is required"
            )

        payment_payload = decode_payment_header(payment_header)
        if payment_payload is None:
            logger.warning(f"x402: Invalid X-PAYMENT header from {client_ip}")
            return self._payment_required(
                request,
                payment_requirements=payment_requirements,
                error_message="Invalid X-PAYMENT header format"
            )

        timeout = self._settings.X402_FACILITATOR_TIMEOUT_SECONDS
        try:
            verify_response = await asyncio.wait_for(
                facilitator.verify(payment_payload, payment_requirements),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"x402: Facilitator verification timed out after {timeout}s")
            return JSONResponse(
                status_code=504,
                content={"error": "Payment verification timed out"}
            )
        except Exception as e:
            logger.error(f"x402: Facilitator verification failed: {e}")
            return JSONResponse(
                status_code=502,
                content={"error": "Payment verification failed", "detail": str(e)}
            )

        if not verify_response.is_valid:
            logger.warning(f"x402: Payment verification failed: {verify_response.invalid_reason}")
            return self._payment_required(
                request,
                payment_requirements=payment_requirements,
                error_message=f"Payment verification failed: {verify_response.invalid_reason or 'Unknown reason'}"
            )

        logger.info(f"x402: Payment verified for payer {verify_response.payer}")

        response = await call_next(request)

        # Failed requests are not charged
        if response.status_code >= 400:
            logger.info(f"x402: Downstream returned {response.status_code}, skipping settlement")
            return response

        try:
            settle_response = await asyncio.wait_for(
                facilitator.settle(payment_payload, payment_requirements),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"x402: Payment settlement timed out after {timeout}s")
            return JSONResponse(
                status_code=504,
                content={"error": "Payment settlement timed out"}
            )
        except Exception as e:
            logger.error(f"x402: Payment settlement failed: {e}")
            return self._payment_required(
                request,
                payment_requirements=payment_requirements,
                error_message=f"Payment settlement failed: {e}"
            )

        if not settle_response.success:
            logger.warning(f"x402: Payment settlement rejected: {settle_response.error_reason}")
            return self._payment_required(
                request,
                payment_requirements=payment_requirements,
                error_message=f"Payment settlement failed: {settle_response.error_reason or 'Unknown reason'}"
            )

        logger.info(f"x402: Payment settled in transaction {settle_response.transaction}")

        # Read the body and create a new response with the settlement header added
        body = b""
        async for chunk in response.body_iterator:
            body += chunk

        settled = Response(
            content=body,
            status_code=response.status_code,
            headers=response.headers
        )
        settled.headers[X_PAYMENT_RESPONSE_HEADER] = encode_payment_response(settle_response)
        return settled
