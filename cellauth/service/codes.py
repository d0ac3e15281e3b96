"""
Temporary login codes: an authenticated device shows a short code, and a
second device types it in to be logged in as the same user.
"""

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from cellauth.config.settings import Settings
from cellauth.core.codes import format_login_code, normalize_login_code
from cellauth.core.errors import FeatureDisabledError, NotAuthenticatedError
from cellauth.core.models import (
    ActiveLoginCodeResponse,
    LoginCodeResponse,
    VerifyLoginCodeResponse,
)
from cellauth.core.random import LOGIN_CODE_LENGTH, login_code
from cellauth.core.timing import is_expired, utcnow
from cellauth.core.user import AuthMethod
from cellauth.core.uuid import UUID
from cellauth.database.login import LoginCode
from cellauth.database.user import User
from cellauth.service import session as session_service

MAXIMUM_CODE_ATTEMPTS = 16


async def _read_by_code(code: str, conn: AsyncSession) -> LoginCode | None:
    query = select(LoginCode).filter(LoginCode.code == code)
    return (await conn.execute(query)).scalar_one_or_none()


async def _consume(login_code: LoginCode, conn: AsyncSession) -> bool:
    """
    Delete the code, reporting whether this caller was the one to do so.
    """
    query = delete(LoginCode).where(
        LoginCode.login_code_id == login_code.login_code_id
    )
    result = await conn.execute(query)
    return result.rowcount == 1


async def _unique_code(conn: AsyncSession) -> str:
    for _ in range(MAXIMUM_CODE_ATTEMPTS):
        candidate = login_code()

        if await _read_by_code(candidate, conn) is None:
            return candidate

    raise RuntimeError("Could not generate a unique login code")


async def create_login_code(
    session_id: UUID,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> LoginCodeResponse:
    """
    Create a new login code for the user the session is authenticated as.
    Any codes the user had before are invalidated; a user only ever has one
    live code.

    Parameters
    ----------
    session_id
        The session asking for the code. Must be authenticated.
    settings
        Server settings, for the code lifetime and the login kill switch.
    conn
        Database session (async).
    log
        StructLog logger to use. The code itself is never logged.

    Returns
    -------
    LoginCodeResponse
        The stored code, its `XXXX-XXXX` display form, and its expiry.

    Raises
    ------
    FeatureDisabledError
        If login is switched off.
    NotAuthenticatedError
        If the session is not bound to a user.
    """
    if settings.disable_login:
        raise FeatureDisabledError()

    user = await session_service.current_user(session_id=session_id, conn=conn)
    log = log.bind(user_id=user.user_id)

    result = await conn.execute(delete(LoginCode).where(LoginCode.user_id == user.user_id))
    log = log.bind(previous_codes_deleted=result.rowcount)

    current_time = utcnow()

    record = LoginCode(
        code=await _unique_code(conn),
        user_id=user.user_id,
        created_at=current_time,
        expires_at=current_time + settings.login_code_expiry,
    )

    conn.add(record)

    log = log.bind(login_code_id=record.login_code_id, expires_at=record.expires_at)
    await log.ainfo("codes.created")

    return LoginCodeResponse(
        success=True,
        code=record.code,
        display_code=format_login_code(record.code),
        expires_at=record.expires_at,
    )


async def get_active_login_code(
    session_id: UUID | None, settings: Settings, conn: AsyncSession
) -> ActiveLoginCodeResponse:
    """
    The live code for the session's user, if there is one. Never raises for
    an unauthenticated session.
    """
    if settings.disable_login:
        return ActiveLoginCodeResponse(success=False, reason="feature_disabled")

    try:
        user = await session_service.current_user(session_id=session_id, conn=conn)
    except NotAuthenticatedError:
        return ActiveLoginCodeResponse(success=False, reason="not_authenticated")

    query = (
        select(LoginCode)
        .filter(LoginCode.user_id == user.user_id)
        .order_by(LoginCode.created_at.desc())
    )
    records = (await conn.execute(query)).scalars().all()

    for record in records:
        if not is_expired(record.expires_at):
            return ActiveLoginCodeResponse(
                success=True,
                code=record.code,
                display_code=format_login_code(record.code),
                expires_at=record.expires_at,
            )

    return ActiveLoginCodeResponse(success=False, reason="no_active_code")


async def verify_login_code(
    code: str,
    session_id: UUID,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> VerifyLoginCodeResponse:
    """
    Redeem a code typed on another device, logging `session_id` in as the
    code's owner. Each code can be redeemed once: when two devices race, the
    one that deletes the code wins and the other sees `invalid_code`.
    """
    if settings.disable_login:
        return VerifyLoginCodeResponse(
            success=False,
            reason="feature_disabled",
            message="Login functionality is currently disabled",
        )

    normalized = normalize_login_code(code)
    log = log.bind(session_id=session_id)

    record = None

    if len(normalized) == LOGIN_CODE_LENGTH:
        record = await _read_by_code(normalized, conn)

    if record is None:
        await log.ainfo("codes.verify.invalid")
        return VerifyLoginCodeResponse(
            success=False, reason="invalid_code", message="Invalid login code"
        )

    log = log.bind(login_code_id=record.login_code_id)

    if is_expired(record.expires_at):
        await _consume(record, conn)
        await log.ainfo("codes.verify.expired")
        return VerifyLoginCodeResponse(
            success=False, reason="code_expired", message="Login code has expired"
        )

    user = await conn.get(User, record.user_id)

    if user is None:
        await _consume(record, conn)
        await log.ainfo("codes.verify.user_not_found")
        return VerifyLoginCodeResponse(
            success=False, reason="user_not_found", message="User not found"
        )

    if not await _consume(record, conn):
        await log.ainfo("codes.verify.already_redeemed")
        return VerifyLoginCodeResponse(
            success=False, reason="invalid_code", message="Invalid login code"
        )

    await session_service.bind(
        session_id=session_id,
        user=user,
        auth_method=AuthMethod.LOGIN_CODE,
        conn=conn,
        log=log,
    )

    await log.ainfo("codes.verify.success", user_id=user.user_id)

    return VerifyLoginCodeResponse(
        success=True, message="Successfully logged in", user_id=user.user_id
    )


async def check_code_validity(code: str, conn: AsyncSession) -> bool:
    normalized = normalize_login_code(code)

    if len(normalized) != LOGIN_CODE_LENGTH:
        return False

    record = await _read_by_code(normalized, conn)

    return record is not None and not is_expired(record.expires_at)
