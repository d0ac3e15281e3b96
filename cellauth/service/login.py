"""
Login and connect request tracking.

A request is created by the tab that starts a popup login, is observed by
that tab while the popup talks to the provider, and is moved exactly once
from `pending` to either `completed` or `failed` by the provider callback.
"""

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from cellauth.config.settings import Settings
from cellauth.core.models import RequestData, RequestKind, RequestStatus
from cellauth.core.timing import ensure_utc, is_expired, utcnow
from cellauth.core.uuid import UUID
from cellauth.database.login import ConnectRequest, LoginRequest, RequestBase
from cellauth.database.meta import REQUEST_TABLES
from cellauth.service import session as session_service
from cellauth.service.events import publish_on_commit
from cellauth.service.provider import AuthProvider


class StaleRequestError(Exception):
    pass


class RedirectInvalidError(Exception):
    pass


class RequestTransitionError(Exception):
    pass


def table_for(kind: RequestKind) -> type[RequestBase]:
    return REQUEST_TABLES[RequestKind(kind).value]


def validate_redirect_uri(redirect_uri: str, settings: Settings) -> str:
    """
    Raises
    ------
    RedirectInvalidError
        If the redirect URI is not one registered with the provider.
    """
    if redirect_uri not in settings.allowed_redirect_uris:
        raise RedirectInvalidError(
            f"Redirect URI {redirect_uri[:256]} is not registered with the provider"
        )

    return redirect_uri


async def create(
    kind: RequestKind,
    session_id: UUID,
    redirect_uri: str,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> LoginRequest | ConnectRequest:
    """
    Create a fresh pending request owned by `session_id`.

    Raises
    ------
    RedirectInvalidError
        If the redirect URI is not one registered with the provider.
    NotAuthenticatedError
        For connect requests, if the session is not authenticated.
    """
    kind = RequestKind(kind)
    log = log.bind(kind=kind.value, session_id=session_id, redirect_uri=redirect_uri)

    validate_redirect_uri(redirect_uri=redirect_uri, settings=settings)

    current_time = utcnow()
    arguments = dict(
        session_id=session_id,
        redirect_uri=redirect_uri,
        status=RequestStatus.PENDING.value,
        created_at=current_time,
        expires_at=current_time + settings.login_request_expiry,
    )

    if kind == RequestKind.CONNECT:
        user = await session_service.current_user(session_id=session_id, conn=conn)
        request = ConnectRequest(user_id=user.user_id, **arguments)
        log = log.bind(user_id=user.user_id)
    else:
        request = LoginRequest(**arguments)

    conn.add(request)

    log = log.bind(request_id=request.request_id, expires_at=request.expires_at)
    await log.ainfo("login.request_created")

    return request


async def read(
    kind: RequestKind, request_id: UUID, conn: AsyncSession
) -> LoginRequest | ConnectRequest:
    """
    Get a request, and return it.

    Raises
    ------
    StaleRequestError
        In the case where the request is not found, or it has expired. Expiry
        is checked here rather than left to the sweeper.
    """
    request = await conn.get(table_for(kind), request_id)

    if request is None:
        raise StaleRequestError("Request not found")

    if request.status == RequestStatus.PENDING.value and is_expired(
        request.expires_at
    ):
        raise StaleRequestError("Request has expired")

    return request


async def read_for_session(
    kind: RequestKind, request_id: UUID, session_id: UUID, conn: AsyncSession
) -> LoginRequest | ConnectRequest:
    """
    Read a request on behalf of the session that created it. Other sessions
    cannot tell it apart from a request that does not exist.

    Raises
    ------
    StaleRequestError
        If the request is not found or belongs to another session.
    """
    request = await conn.get(table_for(kind), request_id)

    if request is None or request.session_id != session_id:
        raise StaleRequestError("Request not found")

    return request


def snapshot(request: RequestBase) -> RequestData:
    """
    The observable state of a request. Pending records past their expiry
    read as failed, even before the sweeper removes them.
    """
    return request.to_core().observed()


async def authorize(
    request: LoginRequest | ConnectRequest,
    state_token: str,
    provider: AuthProvider,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> str:
    """
    Record the state token issued for this request and build the provider
    URL carrying it. Only pending, unexpired requests can be authorized.

    The first token recorded for a request is kept: when the request was
    authorized before (the popup reloaded, or two copies were opened) the
    stored token is reused and `state_token` is ignored, so every consent
    link handed out for the request stays valid.

    Raises
    ------
    StaleRequestError
        If the request is no longer pending or has expired.
    FeatureDisabledError
        If the provider is not configured.
    """
    log = log.bind(request_id=request.request_id, kind=request.kind.value)

    if request.status != RequestStatus.PENDING.value or is_expired(
        request.expires_at
    ):
        await log.ainfo("login.authorize.stale")
        raise StaleRequestError("Request is no longer pending")

    if request.state_token is None:
        table = type(request)
        recorded = await _update_pending(
            request,
            dict(state_token=state_token),
            conn,
            table.state_token.is_(None),
        )

        if request.status != RequestStatus.PENDING.value:
            await log.ainfo("login.authorize.stale")
            raise StaleRequestError("Request is no longer pending")

        log = log.bind(reused=not recorded)
    else:
        log = log.bind(reused=True)

    auth_url = provider.authorization_url(
        redirect_uri=request.redirect_uri,
        state=request.state_token,
        settings=settings,
    )

    await log.ainfo("login.authorize.success")

    return auth_url


async def _update_pending(
    request: RequestBase, values: dict, conn: AsyncSession, *conditions
) -> bool:
    """
    Write `values` only if the stored request is still pending (and meets any
    extra `conditions`), then reload it. Reports whether this caller made the
    change; the database decides, not the copy read earlier.
    """
    table = type(request)
    query = (
        update(table)
        .where(
            table.request_id == request.request_id,
            table.status == RequestStatus.PENDING.value,
            *conditions,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await conn.execute(query)
    await conn.refresh(request)

    return result.rowcount == 1


async def claim(
    request: LoginRequest | ConnectRequest,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> LoginRequest | ConnectRequest:
    """
    Reserve a pending request for the callback about to exchange its code.
    Only one callback can hold the claim; a concurrent one waits for the
    holder's transaction and then finds the request claimed or settled.

    Raises
    ------
    RequestTransitionError
        If the request was already claimed or settled. `request` is
        reloaded, so its stored outcome can be reported.
    """
    log = log.bind(request_id=request.request_id, kind=request.kind.value)
    table = type(request)

    if not await _update_pending(
        request, dict(claimed_at=utcnow()), conn, table.claimed_at.is_(None)
    ):
        await log.ainfo("login.request_already_claimed", status=request.status)
        raise RequestTransitionError(
            f"Request {request.request_id} is already {request.status}"
        )

    await log.ainfo("login.request_claimed")

    return request


async def _settle(
    request: LoginRequest | ConnectRequest,
    status: RequestStatus,
    conn: AsyncSession,
    error: str | None = None,
):
    values = dict(status=status.value, completed_at=utcnow())

    if error is not None:
        values["error"] = error

    if not await _update_pending(request, values, conn):
        raise RequestTransitionError(
            f"Request {request.request_id} is already {request.status}"
        )

    publish_on_commit(snapshot(request), conn)


async def complete(
    request: LoginRequest | ConnectRequest,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> LoginRequest | ConnectRequest:
    """
    Raises
    ------
    RequestTransitionError
        If the request already reached a terminal state.
    """
    await _settle(request, RequestStatus.COMPLETED, conn)

    log = log.bind(
        request_id=request.request_id,
        kind=request.kind.value,
        completed_at=request.completed_at,
        duration=(
            ensure_utc(request.completed_at) - ensure_utc(request.created_at)
        ).total_seconds(),
    )
    await log.ainfo("login.request_complete")

    return request


async def fail(
    request: LoginRequest | ConnectRequest,
    error: str,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> LoginRequest | ConnectRequest:
    """
    Mark the request failed, keeping a bounded, user-presentable error.

    Raises
    ------
    RequestTransitionError
        If the request already reached a terminal state.
    """
    await _settle(
        request,
        RequestStatus.FAILED,
        conn,
        error=error[: settings.error_message_length],
    )

    log = log.bind(
        request_id=request.request_id, kind=request.kind.value, error=request.error
    )
    await log.ainfo("login.request_failed")

    return request
