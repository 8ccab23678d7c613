# app/api/endpoints/proxy.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from requests.exceptions import RequestException, Timeout
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_gateway_settings
from app.core.config import Settings
from app.services.origin import STREAM_CHUNK_SIZE, filter_response_headers, forward_any

logger = logging.getLogger(__name__)
router = APIRouter()

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def request_path(request: Request) -> str:
    """Path as sent by the client, percent-encoding intact."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.decode("latin-1").split("?", 1)[0]
    return request.url.path


@router.api_route("/{full_path:path}", methods=PROXY_METHODS, include_in_schema=False)
async def proxy_to_origin(
    request: Request,
    full_path: str,
    gateway_settings: Settings = Depends(get_gateway_settings)
) -> StreamingResponse:
    """
    Proxy any request no other route matched, such as stylesheets and images.

    The upstream body is relayed as a raw stream, without buffering or decoding.
    """
    body = await request.body()

    try:
        upstream = await run_in_threadpool(
            forward_any,
            request.method,
            request_path(request),
            request.url.query,
            request.headers,
            body,
            gateway_settings
        )
    except Timeout as e:
        logger.error(f"Origin timed out proxying {request.method} /{full_path}: {e}")
        raise HTTPException(status_code=504, detail="Timed out proxying request to origin")
    except RequestException as e:
        logger.error(f"Origin error proxying {request.method} /{full_path}: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to proxy request to origin: {e}")

    response = StreamingResponse(
        upstream.raw.stream(STREAM_CHUNK_SIZE, decode_content=False),
        status_code=upstream.status_code,
        background=BackgroundTask(upstream.close)
    )
    for name, value in filter_response_headers(upstream, buffered=False):
        response.headers.append(name, value)
    return response
