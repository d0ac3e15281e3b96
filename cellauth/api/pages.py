"""
HTML pages that take part in the popup flow: the request viewer that the
popup opens first, and the development-only stand-in for Google's consent
screen.
"""

from urllib.parse import urlencode

from fastapi import APIRouter, Path, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from cellauth.core.errors import AuthFailure, user_message
from cellauth.core.models import RequestKind
from cellauth.core.state import new_state
from cellauth.core.uuid import UUID, uuid4
from cellauth.service import login as login_service

from .dependencies import (
    AuthProviderDependency,
    DatabaseDependency,
    LoggerDependency,
    GoogleSettingsDependency,
    TemplateDependency,
)

page_routes = APIRouter(tags=["Pages"])


@page_routes.get(
    "/login/{request_id}",
    response_class=HTMLResponse,
    summary="Popup entry point for a login or connect request",
    description=(
        "Issues a state token for the request the first time it is opened and "
        "shows a link to Google's consent screen carrying it. Reloading the "
        "page shows the same link."
    ),
)
async def login_request_viewer(
    request: Request,
    settings: GoogleSettingsDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
    provider: AuthProviderDependency,
    templates: TemplateDependency,
    request_id: UUID = Path(...),
    kind: RequestKind = Query(RequestKind.LOGIN),
):
    log = log.bind(request_id=request_id, kind=kind.value)

    try:
        login_request = await login_service.read(
            kind=kind, request_id=request_id, conn=conn
        )
        auth_url = await login_service.authorize(
            request=login_request,
            state_token=new_state(flow_type=kind.value, request_id=request_id).encode(),
            provider=provider,
            settings=settings,
            conn=conn,
            log=log,
        )
    except login_service.StaleRequestError as e:
        await log.ainfo("api.pages.viewer.stale")
        return templates.TemplateResponse(
            request=request,
            name="login_request.html",
            context={
                "auth_url": None,
                "message": "This sign-in request has expired. Close this window and try again.",
                "details": str(e),
                "show_details": not settings.production,
            },
        )
    except AuthFailure as e:
        await log.ainfo("api.pages.viewer.failed", error_code=e.code)
        return templates.TemplateResponse(
            request=request,
            name="login_request.html",
            context={
                "auth_url": None,
                "message": user_message(e.code),
                "details": e.message,
                "show_details": not settings.production,
            },
        )

    await log.ainfo("api.pages.viewer.ready")

    return templates.TemplateResponse(
        request=request,
        name="login_request.html",
        context={
            "auth_url": auth_url,
            "kind": kind.value,
            "message": None,
            "details": None,
            "show_details": False,
        },
    )


mock_routes = APIRouter(tags=["Development"])


@mock_routes.get(
    "/mock/authorize",
    response_class=RedirectResponse,
    summary="Stand-in for Google's consent screen",
    description="Only mounted when the mock provider is configured.",
)
async def mock_authorize(
    log: LoggerDependency,
    redirect_uri: str = Query(...),
    state: str = Query(...),
) -> RedirectResponse:
    code = uuid4().hex

    await log.ainfo("api.mock.authorize", redirect_uri=redirect_uri)

    return RedirectResponse(
        f"{redirect_uri}?{urlencode({'code': code, 'state': state})}",
        status_code=302,
    )
