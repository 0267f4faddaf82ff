"""
Client address API routes.

These endpoints report how the service sees the caller, which is useful
when checking a reverse proxy or load balancer setup.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from ..core.config import ResolverConfig, TrustMode, load_config_from_env
from ..utils.request_utils import get_resolver
from ..version import __version__

logger = logging.getLogger(__name__)
router = APIRouter()


class ClientIPResponse(BaseModel):
    """Resolved client address together with the inputs it came from."""

    client_ip: str = Field(description="Address to treat as the client's")
    remote_addr: str = Field(description="Address of the direct network peer")
    forwarded_ip: str | None = Field(
        default=None,
        description="First valid address found in the forwarding headers",
    )
    trust_mode: TrustMode = Field(description="How forwarding headers are trusted")


def get_resolver_config(
    request: Request,
) -> ResolverConfig:
    """Return the app's resolver config, falling back to the environment."""
    config = getattr(request.app.state, "client_ip_config", None)
    if config is None:
        config = load_config_from_env()
    return config


@router.get("/api/version")
async def get_version():
    """Get application version.

    Returns:
        Dictionary with version string
    """
    return {"version": __version__}


@router.get("/api/client-ip", response_model=ClientIPResponse)
async def get_client_ip_info(
    request: Request,
    config: ResolverConfig = Depends(get_resolver_config),
):
    """Report the resolved client address for the calling request.

    Raises:
        HTTPException: 422 if the peer address is missing or invalid
    """
    resolution = get_resolver(request, config).resolve_details()

    if resolution.client_ip is None or resolution.remote_addr is None:
        logger.warning("Unable to determine client address for request")
        raise HTTPException(
            status_code=422,
            detail="Unable to determine client address",
        )

    return ClientIPResponse(
        client_ip=resolution.client_ip,
        remote_addr=resolution.remote_addr,
        forwarded_ip=resolution.forwarded_ip,
        trust_mode=resolution.trust_mode,
    )
