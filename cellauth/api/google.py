"""
Google login and account linking: popup login/connect requests, the
provider callback, and the direct exchange endpoints.
"""

from fastapi import APIRouter, Path, Query, Request
from fastapi.responses import HTMLResponse, StreamingResponse

from cellauth.core.errors import InvalidStateError
from cellauth.core.models import (
    AuthorizeBody,
    AuthorizeResponse,
    ConnectResult,
    CreateRequestBody,
    CreateRequestResponse,
    ExchangeRequest,
    ExchangeResponse,
    GoogleConfigResponse,
    GoogleProfileResponse,
    LoginResult,
    MessageResponse,
    RequestData,
    RequestKind,
)
from cellauth.core.state import StateDecodeError, decode_state
from cellauth.core.uuid import UUID
from cellauth.service import account as account_service
from cellauth.service import flow as flow_service
from cellauth.service import login as login_service
from cellauth.service.events import REQUEST_EVENTS

from .dependencies import (
    AuthProviderDependency,
    DatabaseDependency,
    LoggerDependency,
    RequiredSessionIdDependency,
    SessionIdDependency,
    SessionManagerDependency,
    GoogleSettingsDependency,
    SettingsDependency,
    TemplateDependency,
)

google_routes = APIRouter(tags=["Google"])


@google_routes.get(
    "/config",
    summary="Public Google sign-in configuration",
)
async def config(settings: GoogleSettingsDependency) -> GoogleConfigResponse:
    return GoogleConfigResponse(
        enabled=settings.google_configured,
        client_id=settings.google_client_id if settings.google_configured else None,
    )


@google_routes.post(
    "/{kind}-requests",
    summary="Start a popup login or connect request",
    description=(
        "Create a pending request owned by this session. The tab that created it "
        "observes it through `GET /{kind}-requests/{id}` while the popup visits "
        "Google. Connect requests require an authenticated session."
    ),
    responses={
        200: {"description": "The new request."},
        400: {"description": "The redirect URI is not registered."},
        401: {"description": "No session, or not authenticated (connect)."},
        503: {"description": "Google sign-in is disabled."},
    },
)
async def create_request(
    content: CreateRequestBody,
    session_id: RequiredSessionIdDependency,
    settings: GoogleSettingsDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
    kind: RequestKind = Path(..., description="Either `login` or `connect`."),
) -> CreateRequestResponse:
    account_service.ensure_google_enabled(settings)

    request = await login_service.create(
        kind=kind,
        session_id=session_id,
        redirect_uri=content.redirect_uri,
        settings=settings,
        conn=conn,
        log=log,
    )

    return CreateRequestResponse(id=request.request_id, expires_at=request.expires_at)


@google_routes.get(
    "/{kind}-requests/{request_id}",
    summary="Observe a login or connect request",
    description=(
        "The current status of a request. Pending requests past their expiry "
        "are reported as failed. Only the session that created a request can "
        "see it."
    ),
)
async def read_request(
    session_id: RequiredSessionIdDependency,
    conn: DatabaseDependency,
    kind: RequestKind = Path(...),
    request_id: UUID = Path(...),
) -> RequestData:
    request = await login_service.read_for_session(
        kind=kind, request_id=request_id, session_id=session_id, conn=conn
    )

    return login_service.snapshot(request)


@google_routes.get(
    "/{kind}-requests/{request_id}/events",
    response_class=StreamingResponse,
    summary="Stream a login or connect request",
    description=(
        "Server-sent events for a request: a `snapshot` event with the current "
        "state, then one for every change. The stream ends once the request "
        "is completed or failed, including when it expires unsettled. Clients "
        "that cannot hold a stream open poll `GET /{kind}-requests/{id}` "
        "instead."
    ),
    responses={
        200: {"description": "The event stream.", "content": {"text/event-stream": {}}},
        404: {"description": "The request is unknown to this session."},
    },
)
async def request_events(
    session_id: RequiredSessionIdDependency,
    settings: SettingsDependency,
    manager: SessionManagerDependency,
    log: LoggerDependency,
    kind: RequestKind = Path(...),
    request_id: UUID = Path(...),
) -> StreamingResponse:
    # Subscribe before reading, so a change committed in between is not lost.
    queue = REQUEST_EVENTS.subscribe(kind=kind, request_id=request_id)

    try:
        async with manager.session() as conn:
            async with conn.begin():
                request = await login_service.read_for_session(
                    kind=kind, request_id=request_id, session_id=session_id, conn=conn
                )
                initial = login_service.snapshot(request)
    except Exception:
        REQUEST_EVENTS.unsubscribe(kind=kind, request_id=request_id, queue=queue)
        raise

    await log.ainfo(
        "api.google.request_events.open",
        request_id=request_id,
        kind=kind.value,
        status=initial.status.value,
    )

    return StreamingResponse(
        REQUEST_EVENTS.stream(
            initial=initial,
            queue=queue,
            keepalive=settings.request_stream_keepalive,
        ),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@google_routes.post(
    "/{kind}-requests/{request_id}/authorize",
    summary="Record the state token and get the Google consent URL",
    responses={
        200: {
            "description": (
                "The URL to open in the popup. A request authorized before "
                "keeps its first state token."
            )
        },
        400: {"description": "The state does not belong to this request."},
        404: {"description": "The request is unknown, expired or settled."},
    },
)
async def authorize_request(
    content: AuthorizeBody,
    session_id: RequiredSessionIdDependency,
    settings: GoogleSettingsDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
    provider: AuthProviderDependency,
    kind: RequestKind = Path(...),
    request_id: UUID = Path(...),
) -> AuthorizeResponse:
    try:
        decoded = decode_state(content.state)
    except StateDecodeError:
        raise InvalidStateError()

    if decoded.flow_type.value != kind.value or decoded.request_id != str(request_id):
        raise InvalidStateError()

    request = await login_service.read_for_session(
        kind=kind, request_id=request_id, session_id=session_id, conn=conn
    )

    auth_url = await login_service.authorize(
        request=request,
        state_token=content.state,
        provider=provider,
        settings=settings,
        conn=conn,
        log=log,
    )

    return AuthorizeResponse(auth_url=auth_url)


@google_routes.get(
    "/callback",
    response_class=HTMLResponse,
    summary="Google redirect target for popup logins",
    description=(
        "Called by Google at the end of the consent screen. Completes or fails "
        "the request the state token belongs to and shows the outcome in the "
        "popup. Not meant to be called directly."
    ),
)
async def callback(
    request: Request,
    settings: GoogleSettingsDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
    provider: AuthProviderDependency,
    templates: TemplateDependency,
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    error_description: str | None = Query(None),
):
    result = await flow_service.handle_callback(
        code=code,
        state=state,
        error=error,
        error_description=error_description,
        provider=provider,
        settings=settings,
        conn=conn,
        log=log,
    )

    return templates.TemplateResponse(
        request=request,
        name="callback_success.html" if result.success else "callback_error.html",
        context={"result": result, "show_details": not settings.production},
    )


@google_routes.post(
    "/exchange",
    summary="Exchange an authorization code for a Google profile",
    responses={
        200: {"description": "The profile."},
        502: {"description": "Google refused the code."},
        503: {"description": "Google sign-in is disabled."},
    },
)
async def exchange(
    content: ExchangeRequest,
    settings: GoogleSettingsDependency,
    log: LoggerDependency,
    provider: AuthProviderDependency,
) -> ExchangeResponse:
    profile = await flow_service.exchange(
        code=content.code,
        redirect_uri=content.redirect_uri,
        provider=provider,
        settings=settings,
        log=log,
    )

    return ExchangeResponse(success=True, profile=profile)


@google_routes.post(
    "/login",
    summary="Log in with an authorization code (direct redirect)",
    description=(
        "Exchange and log in in one call, for the page Google redirects the "
        "whole browser back to. The state must already have been checked "
        "against the copy the browser kept."
    ),
)
async def login(
    content: ExchangeRequest,
    session_id: RequiredSessionIdDependency,
    settings: GoogleSettingsDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
    provider: AuthProviderDependency,
) -> LoginResult:
    return await flow_service.legacy_login(
        code=content.code,
        state=content.state,
        redirect_uri=content.redirect_uri,
        session_id=session_id,
        provider=provider,
        settings=settings,
        conn=conn,
        log=log,
    )


@google_routes.post(
    "/connect",
    summary="Link a Google account with an authorization code",
    responses={
        200: {"description": "The account was linked (or already was)."},
        401: {"description": "The session is not authenticated."},
        409: {"description": "The account or email is already in use."},
    },
)
async def connect(
    content: ExchangeRequest,
    session_id: RequiredSessionIdDependency,
    settings: GoogleSettingsDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
    provider: AuthProviderDependency,
) -> ConnectResult:
    return await flow_service.connect(
        code=content.code,
        state=content.state,
        redirect_uri=content.redirect_uri,
        session_id=session_id,
        provider=provider,
        settings=settings,
        conn=conn,
        log=log,
    )


@google_routes.post(
    "/disconnect",
    summary="Unlink your Google account",
)
async def disconnect(
    session_id: RequiredSessionIdDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> MessageResponse:
    await account_service.disconnect_google(session_id=session_id, conn=conn, log=log)

    return MessageResponse(
        success=True, message="Google account disconnected successfully"
    )


@google_routes.get(
    "/profile",
    summary="The Google account linked to you, if any",
)
async def profile(
    session_id: SessionIdDependency, conn: DatabaseDependency
) -> GoogleProfileResponse | None:
    return await account_service.get_google_profile(session_id=session_id, conn=conn)
