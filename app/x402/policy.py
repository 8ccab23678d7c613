# app/x402/policy.py
"""
Access policies for x402-gated paths.

A policy table is rebuilt for every request from the request's own path:
1. Free informational endpoints (price 0)
2. The canonical priced endpoint
3. Gated resources under GATED_PREFIX, keyed by both the raw path and its
   trailing-slash-normalized form

The table is a read-only mapping. Building it does no I/O and depends only on
its arguments, so concurrent requests never share a mutable table.
"""
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

PAID_PATH = "/paid"
GATED_PREFIX = "/gated/"
FREE_PATHS = ("/health", "/ready")

DEFAULT_NETWORK = "base"

PAID_PRICE_USD = Decimal("0.001")
GATED_PRICE_USD = Decimal("10.00")

PolicyTable = Mapping[str, "AccessPolicy"]


class AccessPolicy(BaseModel):
    """Price, network and schema rule governing one path."""
    model_config = ConfigDict(frozen=True)

    path_pattern: str = Field(..., description="Path this policy is keyed by")
    price_amount: Decimal = Field(..., description="Price in USD; zero means free")
    settlement_network: str = Field(DEFAULT_NETWORK, description="Network payments settle on")
    description: str = Field("", description="Human readable description of the resource")
    mime_type: str = Field("", description="MIME type of the paid resource")
    input_schema: Optional[Dict[str, Any]] = None
    output_schema: Optional[Dict[str, Any]] = None

    @property
    def requires_payment(self) -> bool:
        return self.price_amount > 0


def normalize_path(path: str) -> str:
    """Strip a single trailing slash, leaving the root path alone."""
    if path != "/" and path.endswith("/"):
        return path[:-1]
    return path


def is_gated_path(path: str) -> bool:
    """True for every path under GATED_PREFIX, the bare prefix included."""
    return path.startswith(GATED_PREFIX)


def normalize_gated_path(path: str) -> str:
    """Normalize a gated path, keeping the bare prefix intact."""
    if path == GATED_PREFIX:
        return path
    return normalize_path(path)


def build_policies(request_path: str, network: str = DEFAULT_NETWORK) -> PolicyTable:
    """
    Build the policy table applicable to a request path.

    Args:
        request_path: Path of the incoming request
        network: Settlement network for priced entries

    Returns:
        Read-only mapping from path to AccessPolicy, free entries first
    """
    table: Dict[str, AccessPolicy] = {}

    for free_path in FREE_PATHS:
        table[free_path] = AccessPolicy(
            path_pattern=free_path,
            price_amount=Decimal("0"),
            settlement_network=network,
            description="Service status",
        )

    table[PAID_PATH] = AccessPolicy(
        path_pattern=PAID_PATH,
        price_amount=PAID_PRICE_USD,
        settlement_network=network,
        description="Static testing",
        input_schema={},
        output_schema={
            "type": "text/plain",
            "properties": {
                "message": {
                    "type": "string",
                    "example": "****",
                },
            },
        },
    )

    if is_gated_path(request_path):
        normalized = normalize_gated_path(request_path)
        gated = AccessPolicy(
            path_pattern=normalized,
            price_amount=GATED_PRICE_USD,
            settlement_network=network,
            description="Gated post",
        )
        # Same instance under both spellings so pricing never diverges
        table[request_path] = gated
        table[normalized] = gated

    return MappingProxyType(table)


def match_policy(table: PolicyTable, path: str) -> Optional[AccessPolicy]:
    """Look up a path exactly, then in its normalized form."""
    policy = table.get(path)
    if policy is None:
        policy = table.get(normalize_path(path))
    return policy
