from dataclasses import dataclass
from typing import Annotated

import httpx
import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from fluxdigest.config import AppConfig, Settings
from fluxdigest.core.encryption import SecretBox
from fluxdigest.core.logging import get_logger
from fluxdigest.core.security import decode_access_token, user_handle
from fluxdigest.ingest.miniflux import MinifluxClient, MinifluxClientProvider
from fluxdigest.jobs.digest_scheduler import DigestScheduler
from fluxdigest.services.digest_service import DigestService
from fluxdigest.services.llm_client import LLMClient
from fluxdigest.services.push_service import PushNotifier
from fluxdigest.stores import (
    DigestStore,
    MinifluxConfigStore,
    PreferenceStore,
    UserStore,
)

logger = get_logger(__name__)


@dataclass
class Services:
    """Process-wide collaborators, built once and shared by the API, CLI and scheduler."""

    settings: Settings
    config: AppConfig
    secret_box: SecretBox
    users: UserStore
    preferences: PreferenceStore
    digests: DigestStore
    miniflux_config: MinifluxConfigStore
    miniflux: MinifluxClientProvider
    llm: LLMClient
    push: PushNotifier
    digest_service: DigestService
    scheduler: DigestScheduler

    @classmethod
    def build(
        cls,
        settings: Settings,
        config: AppConfig,
        *,
        upstream_transport: httpx.AsyncBaseTransport | None = None,
        llm_transport: httpx.AsyncBaseTransport | None = None,
        push_transport: httpx.AsyncBaseTransport | None = None,
    ) -> "Services":
        """Wire every collaborator; transports are injectable for tests."""
        secret_box = SecretBox(settings.data_dir)
        preferences = PreferenceStore(settings.data_dir, secret_box)
        digests = DigestStore(settings.data_dir)
        miniflux_config = MinifluxConfigStore(settings, secret_box)
        miniflux = MinifluxClientProvider(miniflux_config, config.upstream, upstream_transport)
        llm = LLMClient(config.llm, llm_transport)
        push = PushNotifier(push_transport)
        digest_service = DigestService(digests, llm, push, config.digest)

        return cls(
            settings=settings,
            config=config,
            secret_box=secret_box,
            users=UserStore(settings.data_dir),
            preferences=preferences,
            digests=digests,
            miniflux_config=miniflux_config,
            miniflux=miniflux,
            llm=llm,
            push=push,
            digest_service=digest_service,
            scheduler=DigestScheduler(preferences, miniflux, digest_service, config.digest),
        )

    async def aclose(self) -> None:
        await self.miniflux.aclose()
        await self.llm.aclose()
        await self.push.aclose()


@dataclass(frozen=True)
class AuthUser:
    id: str
    username: str

    @property
    def handle(self) -> str:
        """Filesystem-safe key for this user's preference and digest files."""
        return user_handle(self.username)


def get_services(request: Request) -> Services:
    return request.app.state.services


AppServices = Annotated[Services, Depends(get_services)]

_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    services: AppServices,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> AuthUser:
    """Resolve the JWT bearer token; 401 when absent, 403 when invalid or expired."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    try:
        payload = decode_access_token(credentials.credentials, services.settings.jwt_secret)
    except jwt.InvalidTokenError as e:
        logger.bind(error=str(e)).warning("jwt_verify_failed")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Session expired",
        ) from e

    username = payload.get("username")
    if not username:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Session expired")
    return AuthUser(id=str(payload.get("id") or username), username=username)


CurrentUser = Annotated[AuthUser, Depends(get_current_user)]


async def get_miniflux_client(services: AppServices) -> MinifluxClient | None:
    client = await services.miniflux.get_client()
    if client is None:
        logger.warning("miniflux_not_configured")
    return client


Miniflux = Annotated[MinifluxClient | None, Depends(get_miniflux_client)]
