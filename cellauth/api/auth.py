"""
Session state, anonymous login, logout, display names, login codes and
recovery codes.
"""

from fastapi import APIRouter, Path

from cellauth.core.auth import AuthState
from cellauth.core.models import (
    ActiveLoginCodeResponse,
    CodeValidityResponse,
    LoginCodeResponse,
    MessageResponse,
    RecoveryCodeResponse,
    UpdateNameBody,
    VerifyLoginCodeBody,
    VerifyLoginCodeResponse,
    VerifyRecoveryCodeBody,
    VerifyRecoveryCodeResponse,
)
from cellauth.service import codes as codes_service
from cellauth.service import recovery as recovery_service
from cellauth.service import session as session_service
from cellauth.service import user as user_service

from .dependencies import (
    AuthenticatedDependency,
    DatabaseDependency,
    LoggerDependency,
    RequiredSessionIdDependency,
    SessionIdDependency,
    SettingsDependency,
)

auth_routes = APIRouter(tags=["Sessions"])


@auth_routes.get(
    "/state",
    summary="Get the authentication state of this session",
    description=(
        "Resolve the session id in the `X-Session-Id` header to an authentication "
        "state. Unknown, stale, and missing session ids are reported as "
        "`unauthenticated` with a reason; this endpoint never fails for them."
    ),
)
async def state(session_id: SessionIdDependency, conn: DatabaseDependency) -> AuthState:
    return await session_service.get_state(session_id=session_id, conn=conn)


@auth_routes.post(
    "/anonymous",
    summary="Log in as a new anonymous user",
    responses={
        200: {"description": "The session is now bound to a new anonymous user."},
        401: {"description": "No session id was supplied."},
        503: {"description": "Login is disabled."},
    },
)
async def anonymous(
    session_id: RequiredSessionIdDependency,
    settings: SettingsDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> AuthState:
    await session_service.login_anonymous(
        session_id=session_id, settings=settings, conn=conn, log=log
    )

    return await session_service.get_state(session_id=session_id, conn=conn)


@auth_routes.post(
    "/logout",
    summary="Log out this session",
    description="Forget the session. Logging out an unknown session succeeds.",
)
async def logout(
    session_id: RequiredSessionIdDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> MessageResponse:
    await session_service.logout(session_id=session_id, conn=conn, log=log)

    return MessageResponse(success=True, message="Logged out")


@auth_routes.put(
    "/name",
    summary="Change your display name",
    responses={
        200: {"description": "Outcome of the change, with a reason on failure."},
        401: {"description": "The session is not authenticated."},
    },
)
async def update_name(
    content: UpdateNameBody,
    state: AuthenticatedDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> MessageResponse:
    try:
        await user_service.update_display_name(
            user_id=state.user.user_id, name=content.name, conn=conn, log=log
        )
    except user_service.InvalidNameError as e:
        return MessageResponse(success=False, reason=e.reason, message=e.message)

    return MessageResponse(success=True, message="Name updated successfully")


@auth_routes.post(
    "/login-codes",
    summary="Create a login code for another device",
    description=(
        "Create a short-lived code that logs another device in as you. Any code "
        "you created before stops working."
    ),
    responses={
        200: {"description": "The new code."},
        401: {"description": "The session is not authenticated."},
        503: {"description": "Login is disabled."},
    },
)
async def create_login_code(
    session_id: RequiredSessionIdDependency,
    settings: SettingsDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> LoginCodeResponse:
    return await codes_service.create_login_code(
        session_id=session_id, settings=settings, conn=conn, log=log
    )


@auth_routes.get(
    "/login-codes/active",
    summary="Get your live login code, if any",
)
async def active_login_code(
    session_id: SessionIdDependency,
    settings: SettingsDependency,
    conn: DatabaseDependency,
) -> ActiveLoginCodeResponse:
    return await codes_service.get_active_login_code(
        session_id=session_id, settings=settings, conn=conn
    )


@auth_routes.post(
    "/login-codes/verify",
    summary="Log this session in with a code from another device",
    description=(
        "Codes are accepted with or without the separator and in any case. "
        "Each code can be used once."
    ),
)
async def verify_login_code(
    content: VerifyLoginCodeBody,
    session_id: RequiredSessionIdDependency,
    settings: SettingsDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> VerifyLoginCodeResponse:
    return await codes_service.verify_login_code(
        code=content.code, session_id=session_id, settings=settings, conn=conn, log=log
    )


@auth_routes.get(
    "/login-codes/{code}/valid",
    summary="Check whether a login code would currently be accepted",
)
async def login_code_valid(
    conn: DatabaseDependency,
    code: str = Path(..., description="The code, in any format."),
) -> CodeValidityResponse:
    return CodeValidityResponse(
        valid=await codes_service.check_code_validity(code=code, conn=conn)
    )


@auth_routes.get(
    "/recovery-code",
    summary="Get your recovery code",
    description=(
        "The long-lived code that logs any device in as you. Created the first "
        "time it is asked for; the same code is returned afterwards."
    ),
)
async def recovery_code(
    session_id: SessionIdDependency,
    settings: SettingsDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> RecoveryCodeResponse:
    return await recovery_service.get_or_create_recovery_code(
        session_id=session_id, settings=settings, conn=conn, log=log
    )


@auth_routes.post(
    "/recovery-code/regenerate",
    summary="Replace your recovery code",
    description="The previous code stops working immediately.",
)
async def regenerate_recovery_code(
    session_id: SessionIdDependency,
    settings: SettingsDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> RecoveryCodeResponse:
    return await recovery_service.regenerate_recovery_code(
        session_id=session_id, settings=settings, conn=conn, log=log
    )


@auth_routes.post(
    "/recovery-code/verify",
    summary="Log this session in with a recovery code",
)
async def verify_recovery_code(
    content: VerifyRecoveryCodeBody,
    session_id: RequiredSessionIdDependency,
    settings: SettingsDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> VerifyRecoveryCodeResponse:
    return await recovery_service.verify_recovery_code(
        code=content.recovery_code,
        session_id=session_id,
        settings=settings,
        conn=conn,
        log=log,
    )
