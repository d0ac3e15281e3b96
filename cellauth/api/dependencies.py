"""
Dependencies used by the API.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated

from fastapi import Depends, Header
from fastapi.templating import Jinja2Templates
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger
from structlog.typing import FilteringBoundLogger

from cellauth.config.managers import AsyncSessionManager
from cellauth.config.settings import Settings
from cellauth.core.auth import AuthenticatedState, AuthState
from cellauth.core.errors import ForbiddenError, NotAuthenticatedError
from cellauth.core.models import GoogleProfile
from cellauth.core.uuid import UUID
from cellauth.service import google_config as google_config_service
from cellauth.service import session as session_service
from cellauth.service.google import GoogleAuthProvider
from cellauth.service.mock import MockProvider
from cellauth.service.provider import AuthProvider

SESSION_HEADER = "X-Session-Id"


@lru_cache
def SETTINGS():
    return Settings()


DATABASE_MANAGER = SETTINGS().async_manager()


def get_session_manager() -> AsyncSessionManager:
    return DATABASE_MANAGER


async def get_async_session():
    async with DATABASE_MANAGER.session() as session:
        async with session.begin():
            yield session


def logger():
    return get_logger()


@lru_cache
def get_provider() -> AuthProvider:
    if SETTINGS().auth_provider == "mock":
        return MockProvider(
            profile=GoogleProfile(
                id="development-user",
                email="developer@localhost",
                name="Development User",
            )
        )

    return GoogleAuthProvider()


@lru_cache
def get_templates() -> Jinja2Templates:
    return Jinja2Templates(directory=Path(__file__).parent / "templates")


SettingsDependency = Annotated[Settings, Depends(SETTINGS)]
DatabaseDependency = Annotated[AsyncSession, Depends(get_async_session)]
SessionManagerDependency = Annotated[
    AsyncSessionManager, Depends(get_session_manager)
]
LoggerDependency = Annotated[FilteringBoundLogger, Depends(logger)]
AuthProviderDependency = Annotated[AuthProvider, Depends(get_provider)]
TemplateDependency = Annotated[Jinja2Templates, Depends(get_templates)]


async def google_settings(
    settings: SettingsDependency, conn: DatabaseDependency
) -> Settings:
    """
    Settings with the administrator-managed Google configuration applied.
    """
    return await google_config_service.effective_settings(settings=settings, conn=conn)


GoogleSettingsDependency = Annotated[Settings, Depends(google_settings)]


def session_id_header(
    x_session_id: Annotated[str | None, Header(alias=SESSION_HEADER)] = None,
) -> UUID | None:
    """
    The session id sent by the client. Anything that is not a UUID is
    treated the same as no session at all.
    """
    if not x_session_id:
        return None

    try:
        return UUID(x_session_id.strip())
    except ValueError:
        return None


def require_session_id(
    session_id: Annotated[UUID | None, Depends(session_id_header)],
) -> UUID:
    if session_id is None:
        raise NotAuthenticatedError("A session id is required")

    return session_id


SessionIdDependency = Annotated[UUID | None, Depends(session_id_header)]
RequiredSessionIdDependency = Annotated[UUID, Depends(require_session_id)]


async def auth_state(
    session_id: SessionIdDependency, conn: DatabaseDependency
) -> AuthState:
    return await session_service.get_state(session_id=session_id, conn=conn)


async def authenticated_state(
    state: Annotated[AuthState, Depends(auth_state)],
) -> AuthenticatedState:
    if not isinstance(state, AuthenticatedState):
        raise NotAuthenticatedError()

    return state


async def system_admin_state(
    state: Annotated[AuthenticatedState, Depends(authenticated_state)],
) -> AuthenticatedState:
    if not state.is_system_admin:
        raise ForbiddenError("This endpoint requires system administrator access")

    return state


AuthenticatedDependency = Annotated[AuthenticatedState, Depends(authenticated_state)]
SystemAdminDependency = Annotated[AuthenticatedState, Depends(system_admin_state)]
