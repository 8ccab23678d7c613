# tests/conftest.py
"""
Shared fixtures for gateway tests.

Every test gets its own Settings object so nothing depends on the
environment the suite runs in.
"""
import json
from unittest.mock import MagicMock, AsyncMock

import pytest

from x402.encoding import safe_base64_encode
from x402.types import VerifyResponse, SettleResponse

from app.core.config import Settings

ORIGIN_BASE = "https://origin.example.com"
PAY_TO = "0x1234567890abcdef1234567890abcdef12345678"
PAYER = "0xabcdefabcdefabcdefabcdefabcdefabcdefabcd"
AUTH_USER = "gateway"
AUTH_PASSWORD = "s3cret-pass"


def make_settings(**overrides) -> Settings:
    """Create fully configured settings, with optional overrides."""
    values = {
        "ORIGIN_BASE_URL": ORIGIN_BASE,
        "ORIGIN_BASIC_AUTH_USER": AUTH_USER,
        "ORIGIN_BASIC_AUTH_PASSWORD": AUTH_PASSWORD,
        "X402_FACILITATOR_URL": "https://x402.org/facilitator",
        "X402_PAY_TO_ADDRESS": PAY_TO,
        "X402_NETWORK": "base",
        "X402_SHORT_CIRCUIT": False,
        "CDP_API_KEY_ID": None,
        "CDP_API_KEY_SECRET": None,
    }
    values.update(overrides)
    return Settings(**values)


def create_payment_header(payer: str = PAYER, amount: str = "10000000", network: str = "base") -> str:
    """Create a well-formed base64-encoded X-PAYMENT header."""
    payload = {
        "x402Version": 1,
        "scheme": "exact",
        "network": network,
        "payload": {
            "signature": "0x" + "ab" * 65,
            "authorization": {
                "from": payer,
                "to": PAY_TO,
                "value": amount,
                "validAfter": "0",  # SDK expects strings
                "validBefore": "9999999999",
                "nonce": "0x" + "00" * 32,
            }
        }
    }
    return safe_base64_encode(json.dumps(payload).encode("utf-8"))


@pytest.fixture
def gateway_settings() -> Settings:
    return make_settings()


@pytest.fixture
def payment_header() -> str:
    return create_payment_header()


@pytest.fixture
def facilitator() -> MagicMock:
    """Facilitator stub that accepts and settles every payment."""
    mock_facilitator = MagicMock()
    mock_facilitator.verify = AsyncMock(return_value=VerifyResponse(
        is_valid=True,
        invalid_reason=None,
        payer=PAYER
    ))
    mock_facilitator.settle = AsyncMock(return_value=SettleResponse(
        success=True,
        transaction="0x" + "ab" * 32,
        network="base"
    ))
    return mock_facilitator
