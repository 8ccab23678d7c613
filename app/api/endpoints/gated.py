# app/api/endpoints/gated.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Path, Request
from fastapi.responses import Response
from requests.exceptions import RequestException, Timeout

from app.api.deps import get_gateway_settings
from app.core.config import Settings
from app.services.origin import ProxiedResponse, forward_gated

logger = logging.getLogger(__name__)
router = APIRouter()


def to_response(proxied: ProxiedResponse) -> Response:
    """Re-wrap a buffered upstream response for the caller."""
    response = Response(content=proxied.body, status_code=proxied.status_code)
    for name, value in proxied.headers:
        response.headers.append(name, value)
    return response


@router.get("/{resource_id}")
@router.get("/{resource_id}/", include_in_schema=False)
def get_gated_resource(
    request: Request,
    resource_id: str = Path(..., description="Identifier of the gated resource on the origin"),
    gateway_settings: Settings = Depends(get_gateway_settings)
) -> Response:
    """
    Serve a gated resource from the origin's protected path.

    The x402 middleware has already accepted payment by the time this runs.
    Upstream error statuses are passed through unchanged.
    """
    try:
        proxied = forward_gated(
            resource_id=resource_id,
            method=request.method,
            inbound_headers=request.headers,
            gateway_settings=gateway_settings
        )
    except Timeout as e:
        logger.error(f"Origin timed out serving gated resource '{resource_id}': {e}")
        raise HTTPException(status_code=504, detail="Timed out fetching resource from origin")
    except RequestException as e:
        logger.error(f"Origin error serving gated resource '{resource_id}': {e}")
        raise HTTPException(status_code=502, detail=f"Failed to fetch resource from origin: {e}")

    return to_response(proxied)
