import asyncio
import socket
from typing import Any
from urllib.parse import urlparse

from fastapi import APIRouter, HTTPException, status

from fluxdigest.core.exceptions import UpstreamError
from fluxdigest.core.logging import get_logger
from fluxdigest.core.security import create_access_token
from fluxdigest.dependencies import AppServices, CurrentUser, Services
from fluxdigest.ingest.miniflux import build_client
from fluxdigest.schemas.api import ChangePasswordRequest, LoginRequest, MinifluxConfigRequest
from fluxdigest.stores.miniflux_config_store import (
    AUTH_TYPE_API_KEY,
    AUTH_TYPE_BASIC,
    MinifluxConfig,
)
from fluxdigest.stores.user_store import UserNotFoundError

logger = get_logger(__name__)

router = APIRouter()

LINK_LOCAL_PREFIX = "169.254."


async def validate_miniflux_url(url: str) -> None:
    """Reject non-HTTP schemes, unresolvable hosts and link-local targets.

    Private addresses stay allowed; Miniflux is usually self-hosted.

    Raises:
        HTTPException: 400 with the reason
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Use http or https")

    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(parsed.hostname, None)
    except socket.gaierror as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot resolve hostname",
        ) from e

    if any(str(info[4][0]).startswith(LINK_LOCAL_PREFIX) for info in infos):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Access to Link-Local addresses is forbidden",
        )


async def verify_miniflux_connection(services: Services, config: MinifluxConfig) -> None:
    """Probe `/v1/me` with a throwaway client."""
    client = build_client(config, services.config.upstream, services.miniflux.transport)
    try:
        await client.me()
    finally:
        await client.aclose()


@router.post("/login")
async def login(body: LoginRequest, services: AppServices) -> dict[str, Any]:
    """Exchange local credentials for a bearer token."""
    if not body.username or not body.password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username and password are required",
        )

    user = await services.users.authenticate(body.username, body.password)
    if not user:
        logger.bind(username=body.username).warning("login_failed")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    safe_config = await services.miniflux_config.safe_config()
    token = create_access_token(
        {"id": user["username"], "username": user["username"], "type": "local"},
        services.settings.jwt_secret,
        services.settings.token_expiration,
    )
    logger.bind(username=user["username"]).info("login_succeeded")

    return {
        "user": {
            "id": user["username"],
            "username": user["username"],
            "email": "",
            "minifluxConfigured": safe_config["configured"],
        },
        "token": token,
    }


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    user: CurrentUser,
    services: AppServices,
) -> dict[str, Any]:
    if not body.new_password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="New password is required",
        )

    try:
        await services.users.change_password(user.username, body.new_password)
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    return {"success": True, "message": "Password changed"}


@router.get("/miniflux-config")
async def get_miniflux_config(user: CurrentUser, services: AppServices) -> dict[str, Any]:
    """Current upstream configuration without secrets."""
    safe_config = await services.miniflux_config.safe_config()
    return {**safe_config, "envConfigured": services.miniflux_config.env_configured}


@router.post("/miniflux-config")
async def save_miniflux_config(
    body: MinifluxConfigRequest,
    user: CurrentUser,
    services: AppServices,
) -> dict[str, Any]:
    """Validate, probe and persist a manual upstream configuration."""
    if not body.url:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Miniflux URL is required",
        )

    url = body.url.strip().rstrip("/")
    await validate_miniflux_url(url)

    auth_type = body.auth_type or AUTH_TYPE_BASIC
    if auth_type == AUTH_TYPE_API_KEY:
        if not body.api_key:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="API key is required",
            )
    elif not body.username or not body.password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username and password are required",
        )

    candidate = MinifluxConfig(
        url=url,
        auth_type=auth_type,
        source="manual",
        username=body.username,
        password=body.password,
        api_key=body.api_key if auth_type == AUTH_TYPE_API_KEY else None,
    )
    try:
        await verify_miniflux_connection(services, candidate)
    except UpstreamError as e:
        logger.bind(url=url, error=str(e)).warning("miniflux_connection_test_failed")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Connection test failed, check the URL and credentials",
        ) from e

    await services.miniflux_config.save_manual(
        url,
        username=body.username,
        password=body.password,
        api_key=candidate.api_key,
        auth_type=auth_type,
    )
    await services.miniflux.invalidate()

    return {
        "success": True,
        "message": "Configuration saved",
        "config": await services.miniflux_config.safe_config(),
    }


@router.get("/miniflux-status")
async def miniflux_status(user: CurrentUser, services: AppServices) -> dict[str, Any]:
    """Whether the effective configuration can reach Miniflux right now."""
    config = await services.miniflux_config.get_config()
    if config is None:
        return {"connected": False, "error": "Not configured"}

    try:
        await verify_miniflux_connection(services, config)
    except UpstreamError as e:
        return {"connected": False, "error": str(e)}
    return {"connected": True}
