# app/x402/facilitator.py
"""Construction of the x402 facilitator client from gateway settings."""
import logging

from x402.facilitator import FacilitatorClient, FacilitatorConfig

from app.core.config import Settings

logger = logging.getLogger(__name__)


def create_facilitator_config(gateway_settings: Settings) -> FacilitatorConfig:
    """
    Build the facilitator config for the configured deployment.

    Uses the managed CDP facilitator when both CDP API key settings are
    present, otherwise the plain X402_FACILITATOR_URL.

    Raises:
        ConfigurationError: If no facilitator location is configured
    """
    if gateway_settings.uses_managed_facilitator:
        # Only deployments using the managed facilitator need cdp-sdk loaded
        from cdp.x402 import create_facilitator_config as create_cdp_config

        logger.info("x402: Using managed CDP facilitator")
        return create_cdp_config(
            api_key_id=gateway_settings.CDP_API_KEY_ID,
            api_key_secret=gateway_settings.CDP_API_KEY_SECRET,
        )

    gateway_settings.require("X402_FACILITATOR_URL")
    return FacilitatorConfig(url=gateway_settings.X402_FACILITATOR_URL)


def create_facilitator_client(gateway_settings: Settings) -> FacilitatorClient:
    config = create_facilitator_config(gateway_settings)
    logger.info(f"x402: Facilitator client configured for {config.get('url')}")
    return FacilitatorClient(config)
