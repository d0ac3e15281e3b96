"""
Recovery codes: a long secret a user writes down once, which logs any
session in as that user. Unlike login codes they do not expire and are not
used up; regenerating one is the only way to retire it.
"""

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from cellauth.config.settings import Settings
from cellauth.core.models import RecoveryCodeResponse, VerifyRecoveryCodeResponse
from cellauth.core.random import RECOVERY_CODE_LENGTH, recovery_code
from cellauth.core.user import AuthMethod
from cellauth.core.uuid import UUID
from cellauth.database.user import User
from cellauth.service import session as session_service

MAXIMUM_CODE_ATTEMPTS = 16


async def _read_by_code(code: str, conn: AsyncSession) -> User | None:
    query = select(User).filter(User.recovery_code == code)
    return (await conn.execute(query)).scalar_one_or_none()


async def _session_user(
    session_id: UUID | None, conn: AsyncSession
) -> tuple[User | None, str | None]:
    """
    The session's user, or the reason there is none.
    """
    session = None

    if session_id is not None:
        session = await session_service.read(session_id=session_id, conn=conn)

    if session is None or session.user_id is None:
        return None, "not_authenticated"

    user = await conn.get(User, session.user_id)

    if user is None:
        return None, "user_not_found"

    return user, None


async def _issue(user: User, conn: AsyncSession, replace: bool) -> str:
    """
    Store a fresh code on `user` and return the code the user now has. When
    not replacing, a code stored concurrently by another request is kept
    and returned instead.
    """
    for _ in range(MAXIMUM_CODE_ATTEMPTS):
        candidate = recovery_code()

        if await _read_by_code(candidate, conn) is not None:
            continue

        query = update(User).where(User.user_id == user.user_id)

        if not replace:
            query = query.where(User.recovery_code.is_(None))

        await conn.execute(
            query.values(recovery_code=candidate).execution_options(
                synchronize_session=False
            )
        )
        await conn.refresh(user)

        return user.recovery_code

    raise RuntimeError("Could not generate a unique recovery code")


async def get_or_create_recovery_code(
    session_id: UUID | None,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> RecoveryCodeResponse:
    """
    The recovery code of the session's user, creating one on first request.
    Asking again returns the same code.

    Parameters
    ----------
    session_id
        The session asking. Must be authenticated.
    settings
        Server settings, for the login kill switch.
    conn
        Database session (async).
    log
        StructLog logger to use. The code itself is never logged.

    Returns
    -------
    RecoveryCodeResponse
        The code, or the reason there is none.
    """
    if settings.disable_login:
        return RecoveryCodeResponse(success=False, reason="feature_disabled")

    user, reason = await _session_user(session_id=session_id, conn=conn)

    if user is None:
        await log.ainfo("recovery.get.refused", session_id=session_id, reason=reason)
        return RecoveryCodeResponse(success=False, reason=reason)

    if user.recovery_code is not None:
        return RecoveryCodeResponse(success=True, recovery_code=user.recovery_code)

    code = await _issue(user=user, conn=conn, replace=False)

    await log.ainfo("recovery.created", user_id=user.user_id)

    return RecoveryCodeResponse(success=True, recovery_code=code)


async def regenerate_recovery_code(
    session_id: UUID | None,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> RecoveryCodeResponse:
    """
    Replace the user's recovery code. The previous code stops working.
    """
    if settings.disable_login:
        return RecoveryCodeResponse(success=False, reason="feature_disabled")

    user, reason = await _session_user(session_id=session_id, conn=conn)

    if user is None:
        await log.ainfo(
            "recovery.regenerate.refused", session_id=session_id, reason=reason
        )
        return RecoveryCodeResponse(success=False, reason=reason)

    code = await _issue(user=user, conn=conn, replace=True)

    await log.ainfo("recovery.regenerated", user_id=user.user_id)

    return RecoveryCodeResponse(success=True, recovery_code=code)


async def verify_recovery_code(
    code: str,
    session_id: UUID,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> VerifyRecoveryCodeResponse:
    """
    Log `session_id` in as the owner of `code`, creating the session record
    if it is new. The code stays valid afterwards.
    """
    if settings.disable_login:
        return VerifyRecoveryCodeResponse(
            success=False,
            reason="feature_disabled",
            message="Login functionality is currently disabled",
        )

    log = log.bind(session_id=session_id)
    code = code.strip()

    user = None

    if len(code) == RECOVERY_CODE_LENGTH:
        user = await _read_by_code(code, conn)

    if user is None:
        await log.ainfo("recovery.verify.invalid")
        return VerifyRecoveryCodeResponse(
            success=False, reason="invalid_code", message="Invalid recovery code"
        )

    await session_service.bind(
        session_id=session_id,
        user=user,
        auth_method=AuthMethod.RECOVERY_CODE,
        conn=conn,
        log=log,
    )

    await log.ainfo("recovery.verify.success", user_id=user.user_id)

    return VerifyRecoveryCodeResponse(
        success=True, message="Successfully logged in", user_id=user.user_id
    )
