# app/services/origin.py
import base64
import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

import requests

from app.core.config import settings, Settings, ORIGIN_AUTH_SETTINGS

logger = logging.getLogger(__name__)

# Headers that describe a single connection and must not be forwarded
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})

# Upstream paths serving protected copies of gated resources
PROTECTED_ORIGIN_PATH = "/paid/"

STREAM_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class ProxiedResponse:
    """Fully buffered upstream response, safe to inspect more than once."""
    status_code: int
    reason: str
    headers: Tuple[Tuple[str, str], ...]
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def build_upstream_headers(inbound_headers: Mapping[str, str]) -> Dict[str, str]:
    """
    Copy inbound request headers, dropping Host, Content-Length and hop-by-hop headers.

    Repeated headers are joined into one value, since requests sends a single
    line per header name.
    """
    outbound: Dict[str, str] = {}
    names: Dict[str, str] = {}
    for name, value in inbound_headers.items():
        lowered = name.lower()
        if lowered in HOP_BY_HOP_HEADERS or lowered in ("host", "content-length"):
            continue
        if lowered in names:
            separator = "; " if lowered == "cookie" else ", "
            outbound[names[lowered]] = f"{outbound[names[lowered]]}{separator}{value}"
            continue
        names[lowered] = name
        outbound[name] = value
    return outbound


def basic_auth_header(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def filter_response_headers(upstream: requests.Response, buffered: bool) -> Tuple[Tuple[str, str], ...]:
    """
    Select upstream response headers to hand back to the caller.

    Headers are read from the raw urllib3 response so repeated headers such as
    Set-Cookie stay separate. Buffered bodies have already been decoded by
    requests and get a fresh Content-Length, so encoding and length headers
    are dropped for them.
    """
    excluded = set(HOP_BY_HOP_HEADERS)
    if buffered:
        excluded.update(("content-encoding", "content-length"))

    return tuple(
        (name, value) for name, value in upstream.raw.headers.iteritems()
        if name.lower() not in excluded
    )


def forward_gated(
    resource_id: str,
    method: str,
    inbound_headers: Mapping[str, str],
    gateway_settings: Optional[Settings] = None
) -> ProxiedResponse:
    """
    Fetch the protected origin copy of a gated resource on the caller's behalf.

    Only called after the payment gate has accepted the request. Credentials
    come from configuration, never from the client.

    Args:
        resource_id: Path segment following the gated prefix
        method: HTTP method of the inbound request
        inbound_headers: Headers of the inbound request
        gateway_settings: Settings to use instead of the process-wide ones

    Returns:
        ProxiedResponse with the upstream status, headers and buffered body

    Raises:
        ConfigurationError: If the origin basic auth credentials are not set
        RequestException: If the origin could not be reached
    """
    config = gateway_settings or settings
    config.require(*ORIGIN_AUTH_SETTINGS)

    headers = build_upstream_headers(inbound_headers)
    # Replace client credentials, and let requests negotiate only the content
    # encodings it can decode for the buffered body
    for name in [name for name in headers if name.lower() in ("authorization", "accept-encoding")]:
        del headers[name]
    headers["Authorization"] = basic_auth_header(
        config.ORIGIN_BASIC_AUTH_USER, config.ORIGIN_BASIC_AUTH_PASSWORD
    )

    api_url = f"{config.origin_base}{PROTECTED_ORIGIN_PATH}{resource_id}"
    try:
        upstream = requests.request(
            method,
            api_url,
            headers=headers,
            timeout=config.ORIGIN_TIMEOUT_SECONDS
        )
    except requests.exceptions.RequestException as e:
        logger.error(f"origin: Error fetching gated resource '{resource_id}' ({api_url}): {e}")
        raise

    if not upstream.ok:
        logger.warning(
            f"origin: Upstream returned {upstream.status_code} {upstream.reason} "
            f"for gated resource '{resource_id}'"
        )

    # Reading .content buffers the whole body before the connection is released
    return ProxiedResponse(
        status_code=upstream.status_code,
        reason=upstream.reason or "",
        headers=filter_response_headers(upstream, buffered=True),
        body=upstream.content,
    )


def build_upstream_url(path: str, query: str, gateway_settings: Optional[Settings] = None) -> str:
    """Swap the gateway's own host for the origin base, keeping path and query verbatim."""
    config = gateway_settings or settings
    url = f"{config.origin_base}{path}"
    if query:
        url = f"{url}?{query}"
    return url


def forward_any(
    method: str,
    path: str,
    query: str,
    inbound_headers: Mapping[str, str],
    body: Optional[bytes] = None,
    gateway_settings: Optional[Settings] = None
) -> requests.Response:
    """
    Forward an unmatched request to the origin verbatim.

    The upstream response is opened in streaming mode and returned as is; the
    caller is responsible for closing it once the body has been relayed.

    Raises:
        RequestException: If the origin could not be reached
    """
    config = gateway_settings or settings
    api_url = build_upstream_url(path, query, config)

    try:
        upstream = requests.request(
            method,
            api_url,
            headers=build_upstream_headers(inbound_headers),
            data=body or None,
            stream=True,
            allow_redirects=False,
            timeout=config.ORIGIN_TIMEOUT_SECONDS
        )
    except requests.exceptions.RequestException as e:
        logger.error(f"origin: Error proxying {method} {api_url}: {e}")
        raise

    logger.debug(f"origin: {method} {api_url} -> {upstream.status_code}")
    return upstream

