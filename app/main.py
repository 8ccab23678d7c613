# app/main.py
from fastapi import FastAPI
from app.core.config import settings, Settings, ConfigurationError
from app.api.endpoints import status, paid, gated, proxy
from app.api.errors import configuration_error_handler
from app.x402.middleware import X402Middleware
import logging

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(gateway_settings: Settings = settings) -> FastAPI:
    """
    Build the gateway application.

    Routes are matched in registration order: free status routes, the priced
    and gated routes, and finally the catch-all proxy to the origin.
    """
    for group, names in gateway_settings.missing_groups().items():
        logger.warning(
            f"Settings group '{group}' incomplete, missing {', '.join(names)}; "
            f"requests needing it will fail"
        )

    application = FastAPI(title=gateway_settings.PROJECT_NAME)
    application.state.settings = gateway_settings

    application.add_middleware(X402Middleware, gateway_settings=gateway_settings)
    application.add_exception_handler(ConfigurationError, configuration_error_handler)

    application.include_router(status.router, tags=["default"])
    application.include_router(paid.router, tags=["paid"])
    application.include_router(gated.router, prefix="/gated", tags=["gated"])
    # Must stay last: matches every path
    application.include_router(proxy.router)

    return application


app = create_app()
