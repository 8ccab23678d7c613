# app/core/config.py
from typing import Dict, Optional, Tuple

from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl # AnyHttpUrl stays in pydantic core
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

# Settings that must be present before a given kind of request can be served
PAYMENT_SETTINGS = ("X402_FACILITATOR_URL", "X402_PAY_TO_ADDRESS")
PAY_TO_SETTINGS = ("X402_PAY_TO_ADDRESS",)
ORIGIN_AUTH_SETTINGS = ("ORIGIN_BASIC_AUTH_USER", "ORIGIN_BASIC_AUTH_PASSWORD")
MANAGED_FACILITATOR_SETTINGS = ("CDP_API_KEY_ID", "CDP_API_KEY_SECRET")


class ConfigurationError(RuntimeError):
    """A setting needed to serve the current request is not configured."""

    def __init__(self, setting: str):
        self.setting = setting
        super().__init__(f"{setting} is not set")


class Settings(BaseSettings):
    PROJECT_NAME: str = "x402 Edge Gateway"

    # Upstream content origin
    ORIGIN_BASE_URL: AnyHttpUrl = "https://artlu.xyz" # validates that it's a URL
    ORIGIN_TIMEOUT_SECONDS: float = 30.0
    ORIGIN_BASIC_AUTH_USER: Optional[str] = None
    ORIGIN_BASIC_AUTH_PASSWORD: Optional[str] = None

    # x402 payment settings
    X402_FACILITATOR_URL: Optional[str] = None
    X402_PAY_TO_ADDRESS: Optional[str] = None
    X402_NETWORK: str = "base"
    X402_FACILITATOR_TIMEOUT_SECONDS: float = 15.0
    # Local development only: treat every request as paid
    X402_SHORT_CIRCUIT: bool = False

    # Managed (CDP) facilitator credentials
    CDP_API_KEY_ID: Optional[str] = None
    CDP_API_KEY_SECRET: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

    @property
    def origin_base(self) -> str:
        """Origin base URL without the trailing slash pydantic adds."""
        return str(self.ORIGIN_BASE_URL).rstrip("/")

    @property
    def uses_managed_facilitator(self) -> bool:
        return all(getattr(self, name) for name in MANAGED_FACILITATOR_SETTINGS)

    @property
    def required_payment_settings(self) -> Tuple[str, ...]:
        """Payment settings priced requests need; the managed facilitator has no URL."""
        if self.uses_managed_facilitator:
            return PAY_TO_SETTINGS
        return PAYMENT_SETTINGS

    def require(self, *names: str) -> None:
        """
        Fail fast if any of the named settings is empty.

        Raises:
            ConfigurationError: naming the first missing setting
        """
        for name in names:
            if not getattr(self, name):
                raise ConfigurationError(name)

    def missing_groups(self) -> Dict[str, Tuple[str, ...]]:
        """Report which required setting groups are incomplete."""
        groups = {
            "payment": self.required_payment_settings,
            "origin_auth": ORIGIN_AUTH_SETTINGS,
        }
        missing = {}
        for group, names in groups.items():
            absent = tuple(name for name in names if not getattr(self, name))
            if absent:
                missing[group] = absent
        return missing


@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
