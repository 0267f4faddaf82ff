"""
FastAPI application exposing the client address routes.
"""

import logging

from fastapi import FastAPI

from .api.ip_routes import router as ip_router
from .core.config import ResolverConfig
from .version import __version__

LOG_FORMAT: str = "%(asctime)s,p%(process)s,{%(filename)s:%(lineno)d},%(levelname)s,%(message)s"

logger = logging.getLogger(__name__)


def create_app(
    config: ResolverConfig | None = None,
) -> FastAPI:
    """Create the application.

    Args:
        config: Resolver configuration; the environment is read lazily
            on first request when omitted

    Returns:
        Configured FastAPI application
    """
    logging.basicConfig(
        level=logging.INFO,
        format=LOG_FORMAT,
    )

    app = FastAPI(title="Client IP Resolver", version=__version__)
    app.state.client_ip_config = config
    app.include_router(ip_router)
    logger.info(f"Client IP resolver app created (version {__version__})")
    return app
