"""
The single exchange-and-bind core shared by every Google flow, and the
server-side handling of the popup callback.

Popup login and connect: the provider redirects the popup to our callback,
which resolves the request from the state token, checks the token matches
the one issued for that request, exchanges the code, binds the request's
session, and settles the request. The opener tab only ever observes.

Legacy direct-redirect login: the browser itself lands back on the app,
which checks the state client side and then calls `legacy_login`. Failures
there are raised straight back to the caller and never persisted.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from cellauth.config.settings import Settings
from cellauth.core.errors import (
    AuthFailure,
    InvalidStateError,
    NotAuthenticatedError,
    ProviderError,
    provider_error_message,
    user_message,
)
from cellauth.core.flows import hooks_for
from cellauth.core.models import (
    CallbackResult,
    ConnectResult,
    GoogleProfile,
    LoginResult,
    RequestKind,
    RequestStatus,
)
from cellauth.core.state import FlowType, OAuthState, StateDecodeError, decode_state
from cellauth.core.uuid import UUID
from cellauth.database.login import ConnectRequest, LoginRequest
from cellauth.service import account as account_service
from cellauth.service import login as login_service
from cellauth.service import session as session_service
from cellauth.service.provider import AuthProvider


async def exchange(
    code: str,
    redirect_uri: str,
    provider: AuthProvider,
    settings: Settings,
    log: FilteringBoundLogger,
) -> GoogleProfile:
    """
    Exchange an authorization code for a profile without binding anything.

    Raises
    ------
    FeatureDisabledError
        If Google login is switched off.
    RedirectInvalidError
        If the redirect URI is not registered with the provider.
    ProviderError
        If the provider refuses the code.
    """
    account_service.ensure_google_enabled(settings)
    login_service.validate_redirect_uri(redirect_uri=redirect_uri, settings=settings)

    return await provider.exchange_code(
        code=code, redirect_uri=redirect_uri, settings=settings, log=log
    )


async def exchange_and_bind(
    flow_type: FlowType,
    code: str,
    redirect_uri: str,
    session_id: UUID,
    provider: AuthProvider,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> LoginResult | ConnectResult:
    """
    Exchange the code and bind the resulting Google account, either by
    logging the session in (login flows) or by linking the account to the
    session's user (connect flow).

    Parameters
    ----------
    flow_type
        Which flow this exchange belongs to; selects the hooks.
    code
        One-time authorization code from the provider redirect.
    redirect_uri
        The redirect URI the code was issued against.
    session_id
        The session to log in, or whose user to link.
    provider
        The authentication provider.
    settings
        Server settings.
    conn
        Database session (async).
    log
        StructLog logger to use.

    Returns
    -------
    LoginResult | ConnectResult
        Depending on the flow type.

    Raises
    ------
    AuthFailure
        Any typed failure from the provider or from binding the account.
    """
    hooks = hooks_for(flow_type)
    log = log.bind(flow_type=hooks.flow_type.value, session_id=session_id)

    if hooks.requires_auth:
        # Checked before the exchange so the provider code is not spent on
        # a request that can never succeed.
        await session_service.current_user(session_id=session_id, conn=conn)

    profile = await exchange(
        code=code,
        redirect_uri=redirect_uri,
        provider=provider,
        settings=settings,
        log=log,
    )

    if hooks.flow_type == FlowType.CONNECT:
        return await account_service.connect_google(
            profile=profile, session_id=session_id, settings=settings, conn=conn, log=log
        )

    return await account_service.login_with_google(
        profile=profile, session_id=session_id, settings=settings, conn=conn, log=log
    )


def _decode_or_none(state: str | None) -> OAuthState | None:
    if not state:
        return None

    try:
        return decode_state(state)
    except StateDecodeError:
        return None


async def _resolve_request(
    state: str | None, conn: AsyncSession
) -> tuple[OAuthState | None, LoginRequest | ConnectRequest | None]:
    """
    Find the request a state token was issued for. The request is only
    returned when the token is exactly the one stored on it.
    """
    decoded = _decode_or_none(state)

    if decoded is None or decoded.request_id is None:
        return decoded, None

    if decoded.flow_type not in (FlowType.LOGIN, FlowType.CONNECT):
        return decoded, None

    try:
        request_id = UUID(decoded.request_id)
    except ValueError:
        return decoded, None

    try:
        request = await login_service.read(
            kind=RequestKind(decoded.flow_type.value),
            request_id=request_id,
            conn=conn,
        )
    except login_service.StaleRequestError:
        return decoded, None

    if request.state_token is None or request.state_token != state:
        return decoded, None

    return decoded, request


def _stored_outcome(
    flow_type: FlowType | None, request: LoginRequest | ConnectRequest
) -> CallbackResult:
    if request.status == RequestStatus.COMPLETED.value:
        return CallbackResult(
            success=True,
            flow_type=flow_type,
            message=hooks_for(flow_type).success_message,
        )

    return CallbackResult(
        success=False,
        flow_type=flow_type,
        error=request.error,
        message=request.error or user_message(None),
    )


def _failure(
    flow_type: FlowType | None, failure: AuthFailure, message: str | None = None
) -> CallbackResult:
    return CallbackResult(
        success=False,
        flow_type=flow_type,
        error=failure.message,
        error_code=failure.code,
        message=message or user_message(failure.code),
    )


async def handle_callback(
    code: str | None,
    state: str | None,
    error: str | None,
    error_description: str | None,
    provider: AuthProvider,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> CallbackResult:
    """
    Handle the provider redirect for the popup login and connect flows and
    settle the request it belongs to. Never raises for anything the provider
    or the browser sends us; the outcome is described by the result and
    stored on the request.

    A state token that is missing, malformed, unknown, or different from the
    one issued for the request leaves every request untouched. When the same
    redirect arrives more than once, only the first claims the request and
    exchanges the code; the others report the outcome it stored.
    """
    log = log.bind(has_code=code is not None, provider_error=error)

    decoded, request = await _resolve_request(state=state, conn=conn)
    flow_type = decoded.flow_type if decoded is not None else None

    if error:
        message = provider_error_message(error, error_description)

        if request is not None and request.status == RequestStatus.PENDING.value:
            try:
                await login_service.fail(
                    request=request,
                    error=message,
                    settings=settings,
                    conn=conn,
                    log=log,
                )
            except login_service.RequestTransitionError:
                await log.ainfo(
                    "flow.callback.provider_error_after_settle", status=request.status
                )

        await log.ainfo("flow.callback.provider_error")

        return _failure(flow_type, ProviderError(message), message=message)

    if request is None:
        await log.awarning("flow.callback.invalid_state")
        return _failure(flow_type, InvalidStateError())

    log = log.bind(request_id=request.request_id, kind=request.kind.value)

    if request.status != RequestStatus.PENDING.value:
        # A repeated redirect for a settled request; report what happened
        # the first time without exchanging again.
        await log.ainfo("flow.callback.already_processed", status=request.status)
        return _stored_outcome(flow_type, request)

    try:
        return await _settle_callback(
            flow_type=flow_type,
            request=request,
            code=code,
            provider=provider,
            settings=settings,
            conn=conn,
            log=log,
        )
    except login_service.RequestTransitionError:
        # Another arrival of the same callback got there first.
        await log.ainfo("flow.callback.lost_race", status=request.status)
        return _stored_outcome(flow_type, request)


async def _settle_callback(
    flow_type: FlowType,
    request: LoginRequest | ConnectRequest,
    code: str | None,
    provider: AuthProvider,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> CallbackResult:
    """
    Raises
    ------
    RequestTransitionError
        If another callback claimed or settled the request first.
    """
    hooks = hooks_for(flow_type)

    await login_service.claim(request=request, conn=conn, log=log)

    if not code:
        failure = ProviderError("No authorization code received")
        await login_service.fail(
            request=request,
            error=failure.message,
            settings=settings,
            conn=conn,
            log=log,
        )
        await log.ainfo("flow.callback.no_code")
        return _failure(flow_type, failure)

    try:
        if isinstance(request, ConnectRequest):
            user = await session_service.current_user(
                session_id=request.session_id, conn=conn
            )

            if user.user_id != request.user_id:
                raise NotAuthenticatedError(
                    "The session changed user while connecting"
                )

        await exchange_and_bind(
            flow_type=flow_type,
            code=code,
            redirect_uri=request.redirect_uri,
            session_id=request.session_id,
            provider=provider,
            settings=settings,
            conn=conn,
            log=log,
        )
    except AuthFailure as e:
        await login_service.fail(
            request=request, error=e.message, settings=settings, conn=conn, log=log
        )
        await log.ainfo("flow.callback.failed", error_code=e.code)
        return _failure(flow_type, e)
    except login_service.RedirectInvalidError:
        failure = InvalidStateError("The redirect URI is not registered")
        await login_service.fail(
            request=request,
            error=failure.message,
            settings=settings,
            conn=conn,
            log=log,
        )
        await log.ainfo("flow.callback.failed", error_code=failure.code)
        return _failure(flow_type, failure)

    await login_service.complete(request=request, conn=conn, log=log)
    await log.ainfo("flow.callback.success")

    return CallbackResult(
        success=True, flow_type=flow_type, message=hooks.success_message
    )


async def legacy_login(
    code: str,
    state: str,
    redirect_uri: str,
    session_id: UUID,
    provider: AuthProvider,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> LoginResult:
    """
    Exchange and log in for the direct-redirect flow. The browser has
    already matched the state against the copy it stored; here we only
    insist that it is a well-formed legacy login state.

    Raises
    ------
    InvalidStateError
        If the state is not a legacy login state.
    AuthFailure
        Any failure from the exchange or the login itself.
    """
    decoded = _decode_or_none(state)

    if decoded is None or decoded.flow_type != FlowType.LEGACY_LOGIN:
        await log.awarning("flow.legacy.invalid_state")
        raise InvalidStateError()

    return await exchange_and_bind(
        flow_type=FlowType.LEGACY_LOGIN,
        code=code,
        redirect_uri=redirect_uri,
        session_id=session_id,
        provider=provider,
        settings=settings,
        conn=conn,
        log=log,
    )


async def connect(
    code: str,
    state: str,
    redirect_uri: str,
    session_id: UUID,
    provider: AuthProvider,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> ConnectResult:
    """
    Exchange and link for the connect callback page.

    Raises
    ------
    InvalidStateError
        If the state is not a connect state.
    AuthFailure
        Any failure from the exchange or from linking.
    """
    decoded = _decode_or_none(state)

    if decoded is None or decoded.flow_type != FlowType.CONNECT:
        await log.awarning("flow.connect.invalid_state")
        raise InvalidStateError()

    return await exchange_and_bind(
        flow_type=FlowType.CONNECT,
        code=code,
        redirect_uri=redirect_uri,
        session_id=session_id,
        provider=provider,
        settings=settings,
        conn=conn,
        log=log,
    )
