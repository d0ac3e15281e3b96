"""
Session to user binding, and the authentication state derived from it.

The session id is generated and stored by the client. The server only ever
records which user (if any) a session id currently speaks for; binding a
session is always a full replace.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from cellauth.config.settings import Settings
from cellauth.core.auth import (
    AuthenticatedState,
    AuthState,
    UnauthenticatedState,
    is_system_admin,
)
from cellauth.core.errors import FeatureDisabledError, NotAuthenticatedError
from cellauth.core.timing import utcnow
from cellauth.core.user import AuthMethod
from cellauth.core.uuid import UUID
from cellauth.database.user import AuthSession, User
from cellauth.service import user as user_service


async def read(session_id: UUID, conn: AsyncSession) -> AuthSession | None:
    return await conn.get(AuthSession, session_id)


async def get_state(session_id: UUID | None, conn: AsyncSession) -> AuthState:
    """
    Resolve the authentication state of a session. Never raises for unknown,
    stale or missing session ids; those are simply unauthenticated.
    """
    if session_id is None:
        return UnauthenticatedState(session_id=None, reason="session_not_found")

    session = await read(session_id=session_id, conn=conn)

    if session is None:
        return UnauthenticatedState(session_id=session_id, reason="session_not_found")

    if session.user_id is None:
        return UnauthenticatedState(
            session_id=session_id, reason="session_deauthorized"
        )

    user = await conn.get(User, session.user_id)

    if user is None:
        return UnauthenticatedState(session_id=session_id, reason="user_not_found")

    user_data = user.to_core()

    return AuthenticatedState(
        session_id=session_id,
        user=user_data,
        access_level=user_data.access_level,
        is_system_admin=is_system_admin(user_data),
        auth_method=AuthMethod(session.auth_method) if session.auth_method else None,
    )


async def bind(
    session_id: UUID,
    user: User,
    auth_method: AuthMethod,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> AuthSession:
    """
    Point the session at `user`, replacing whatever it was bound to before.
    Creates the session record on first use.
    """
    session = await read(session_id=session_id, conn=conn)

    log = log.bind(
        session_id=session_id, user_id=user.user_id, auth_method=auth_method.value
    )

    if session is None:
        session = AuthSession(
            session_id=session_id,
            user_id=user.user_id,
            auth_method=auth_method.value,
            created_at=utcnow(),
        )
        log = log.bind(session_created=True)
    else:
        log = log.bind(session_created=False, previous_user_id=session.user_id)
        session.user_id = user.user_id
        session.auth_method = auth_method.value

    conn.add(session)

    await log.ainfo("session.bound")

    return session


async def current_user(session_id: UUID | None, conn: AsyncSession) -> User:
    """
    The user a session is bound to.

    Raises
    ------
    NotAuthenticatedError
        If the session is unknown, deauthorized, or its user is gone.
    """
    if session_id is None:
        raise NotAuthenticatedError()

    session = await read(session_id=session_id, conn=conn)

    if session is None or session.user_id is None:
        raise NotAuthenticatedError()

    try:
        return await user_service.read_by_id(user_id=session.user_id, conn=conn)
    except user_service.UserNotFound:
        raise NotAuthenticatedError()


async def login_anonymous(
    session_id: UUID,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> User:
    """
    Create an anonymous user and bind the session to it.

    Raises
    ------
    FeatureDisabledError
        If login is switched off.
    """
    if settings.disable_login:
        raise FeatureDisabledError()

    user = await user_service.create_anonymous(conn=conn, log=log)

    await bind(
        session_id=session_id,
        user=user,
        auth_method=AuthMethod.ANONYMOUS,
        conn=conn,
        log=log,
    )

    return user


async def logout(session_id: UUID, conn: AsyncSession, log: FilteringBoundLogger):
    """
    Forget the session entirely. Logging out an unknown session is a no-op.
    """
    session = await read(session_id=session_id, conn=conn)

    if session is None:
        await log.ainfo("session.logout.not_found", session_id=session_id)
        return

    await conn.delete(session)

    await log.ainfo("session.logout", session_id=session_id)

    return
