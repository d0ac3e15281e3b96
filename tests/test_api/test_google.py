"""
Tests the Google endpoints end to end against the mock provider: the popup
login and connect flows, the callback page, and the direct endpoints.
"""

import asyncio
import html
import json
import re
from urllib.parse import parse_qs, urlparse

import pytest

from cellauth.api import dependencies
from cellauth.core.state import FlowType, new_state
from cellauth.core.models import RequestKind
from cellauth.core.uuid import UUID, uuid4
from cellauth.service.events import REQUEST_EVENTS


def _headers(session_id) -> dict[str, str]:
    return {"X-Session-Id": str(session_id)}


def _state_from_url(auth_url: str) -> str:
    return parse_qs(urlparse(auth_url).query)["state"][0]


async def _create(client, kind, session_id, server_settings) -> str:
    response = await client.post(
        f"/api/auth/google/{kind}-requests",
        json={"redirect_uri": server_settings.popup_redirect_uri},
        headers=_headers(session_id),
    )
    assert response.status_code == 200

    return response.json()["id"]


@pytest.mark.asyncio(loop_scope="session")
async def test_config(client, server_settings):
    response = await client.get("/api/auth/google/config")

    assert response.status_code == 200
    assert response.json() == {
        "enabled": True,
        "client_id": server_settings.google_client_id,
    }


@pytest.mark.asyncio(loop_scope="session")
async def test_popup_login(client, server_settings, provider, profile_factory):
    session_id = uuid4()
    request_id = await _create(client, "login", session_id, server_settings)

    response = await client.get(
        f"/api/auth/google/login-requests/{request_id}", headers=_headers(session_id)
    )
    assert response.status_code == 200
    assert response.json()["status"] == "pending"

    # The popup opens the viewer, which issues the state.
    response = await client.get(f"/login/{request_id}")
    assert response.status_code == 200

    href = re.search(r'href="([^"]+)"', response.text).group(1)
    state = _state_from_url(html.unescape(href))

    code = uuid4().hex
    profile = profile_factory(name="Popup User")
    provider.register(code, profile)

    response = await client.get(
        "/api/auth/google/callback", params={"code": code, "state": state}
    )
    assert response.status_code == 200
    assert "Successfully logged in with Google" in response.text
    assert "window.close" in response.text

    response = await client.get(
        f"/api/auth/google/login-requests/{request_id}", headers=_headers(session_id)
    )
    assert response.json()["status"] == "completed"

    response = await client.get("/api/auth/state", headers=_headers(session_id))
    assert response.json()["state"] == "authenticated"
    assert response.json()["user"]["display_name"] == "Popup User"

    response = await client.get("/api/auth/google/profile", headers=_headers(session_id))
    assert response.json()["provider_account_id"] == profile.id

    # Other sessions cannot observe it.
    response = await client.get(
        f"/api/auth/google/login-requests/{request_id}", headers=_headers(uuid4())
    )
    assert response.status_code == 404


@pytest.mark.asyncio(loop_scope="session")
async def test_callback_with_forged_state(client, server_settings, provider):
    session_id = uuid4()
    request_id = await _create(client, "login", session_id, server_settings)

    state = new_state(FlowType.LOGIN, request_id).encode()

    response = await client.post(
        f"/api/auth/google/login-requests/{request_id}/authorize",
        json={"state": state},
        headers=_headers(session_id),
    )
    assert response.status_code == 200
    assert _state_from_url(response.json()["auth_url"]) == state

    forged = new_state(FlowType.LOGIN, request_id).encode()

    response = await client.get(
        "/api/auth/google/callback", params={"code": uuid4().hex, "state": forged}
    )
    assert response.status_code == 200
    assert "Sign-in failed" in response.text
    assert "INVALID_STATE" in response.text

    response = await client.get(
        f"/api/auth/google/login-requests/{request_id}", headers=_headers(session_id)
    )
    assert response.json()["status"] == "pending"


@pytest.mark.asyncio(loop_scope="session")
async def test_authorize_with_foreign_state(client, server_settings):
    session_id = uuid4()
    request_id = await _create(client, "login", session_id, server_settings)

    for state in [
        "garbage",
        new_state(FlowType.LOGIN, uuid4()).encode(),
        new_state(FlowType.CONNECT, request_id).encode(),
    ]:
        response = await client.post(
            f"/api/auth/google/login-requests/{request_id}/authorize",
            json={"state": state},
            headers=_headers(session_id),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_STATE"

    response = await client.post(
        f"/api/auth/google/login-requests/{uuid4()}/authorize",
        json={"state": new_state(FlowType.LOGIN, request_id).encode()},
        headers=_headers(session_id),
    )
    assert response.status_code == 400


@pytest.mark.asyncio(loop_scope="session")
async def test_callback_details_hidden_in_production(
    app, client, server_settings, provider
):
    session_id = uuid4()
    request_id = await _create(client, "login", session_id, server_settings)
    state = new_state(FlowType.LOGIN, request_id).encode()

    await client.post(
        f"/api/auth/google/login-requests/{request_id}/authorize",
        json={"state": state},
        headers=_headers(session_id),
    )

    production = server_settings.model_copy(update={"production": True})
    app.dependency_overrides[dependencies.SETTINGS] = lambda: production

    try:
        response = await client.get(
            "/api/auth/google/callback",
            params={
                "state": state,
                "error": "access_denied",
                "error_description": "The user denied access",
            },
        )
    finally:
        app.dependency_overrides[dependencies.SETTINGS] = lambda: server_settings

    assert response.status_code == 200
    assert "You cancelled the authentication process." in response.text
    assert "Technical details" not in response.text

    response = await client.get(
        f"/api/auth/google/login-requests/{request_id}", headers=_headers(session_id)
    )
    assert response.json()["status"] == "failed"
    assert response.json()["error"] == "You cancelled the authentication process."


@pytest.mark.asyncio(loop_scope="session")
async def test_popup_connect(client, server_settings, provider, profile_factory):
    session_id = uuid4()

    response = await client.post(
        "/api/auth/google/connect-requests",
        json={"redirect_uri": server_settings.popup_redirect_uri},
        headers=_headers(session_id),
    )
    assert response.status_code == 401

    response = await client.post("/api/auth/anonymous", headers=_headers(session_id))
    USER_ID = response.json()["user"]["user_id"]

    request_id = await _create(client, "connect", session_id, server_settings)

    response = await client.get(f"/login/{request_id}", params={"kind": "connect"})
    assert "Connect your Google account" in response.text

    href = re.search(r'href="([^"]+)"', response.text).group(1)
    state = _state_from_url(html.unescape(href))

    code = uuid4().hex
    provider.register(code, profile_factory())

    response = await client.get(
        "/api/auth/google/callback", params={"code": code, "state": state}
    )
    assert "Google account connected successfully" in response.text

    response = await client.get("/api/auth/state", headers=_headers(session_id))
    assert response.json()["user"]["user_id"] == USER_ID
    assert response.json()["user"]["kind"] == "registered"

    response = await client.post(
        "/api/auth/google/disconnect", headers=_headers(session_id)
    )
    assert response.status_code == 200

    response = await client.post(
        "/api/auth/google/disconnect", headers=_headers(session_id)
    )
    assert response.status_code == 409
    assert response.json()["code"] == "NO_GOOGLE_ACCOUNT"


@pytest.mark.asyncio(loop_scope="session")
async def test_viewer_for_unknown_request(client):
    response = await client.get(f"/login/{uuid4()}")

    assert response.status_code == 200
    assert "This sign-in request has expired" in response.text


@pytest.mark.asyncio(loop_scope="session")
async def test_unknown_request(client):
    response = await client.get(
        f"/api/auth/google/login-requests/{uuid4()}", headers=_headers(uuid4())
    )

    assert response.status_code == 404
    assert response.json()["code"] == "REQUEST_NOT_FOUND"


@pytest.mark.asyncio(loop_scope="session")
async def test_bad_redirect(client):
    response = await client.post(
        "/api/auth/google/login-requests",
        json={"redirect_uri": "https://evil.example.com/callback"},
        headers=_headers(uuid4()),
    )

    assert response.status_code == 400
    assert response.json()["code"] == "REDIRECT_INVALID"


@pytest.mark.asyncio(loop_scope="session")
async def test_direct_login_and_connect(
    client, server_settings, provider, profile_factory
):
    session_id = uuid4()
    code = uuid4().hex
    provider.register(code, profile_factory())

    response = await client.post(
        "/api/auth/google/login",
        json={
            "code": code,
            "state": new_state(FlowType.LEGACY_LOGIN).encode(),
            "redirect_uri": server_settings.legacy_redirect_uri,
        },
        headers=_headers(session_id),
    )
    assert response.status_code == 200
    assert response.json()["success"]
    assert response.json()["created"]

    # Codes are single use.
    response = await client.post(
        "/api/auth/google/login",
        json={
            "code": code,
            "state": new_state(FlowType.LEGACY_LOGIN).encode(),
            "redirect_uri": server_settings.legacy_redirect_uri,
        },
        headers=_headers(uuid4()),
    )
    assert response.status_code == 502
    assert response.json()["code"] == "OAUTH_ERROR"

    # A different Google account cannot be connected on top.
    code = uuid4().hex
    provider.register(code, profile_factory())

    response = await client.post(
        "/api/auth/google/connect",
        json={
            "code": code,
            "state": new_state(FlowType.CONNECT).encode(),
            "redirect_uri": server_settings.connect_redirect_uri,
        },
        headers=_headers(session_id),
    )
    assert response.status_code == 409
    assert response.json()["code"] == "ALREADY_CONNECTED"


@pytest.mark.asyncio(loop_scope="session")
async def test_exchange(client, server_settings, provider, profile_factory):
    code = uuid4().hex
    profile = profile_factory()
    provider.register(code, profile)

    response = await client.post(
        "/api/auth/google/exchange",
        json={
            "code": code,
            "state": new_state(FlowType.LEGACY_LOGIN).encode(),
            "redirect_uri": server_settings.legacy_redirect_uri,
        },
    )

    assert response.status_code == 200
    assert response.json()["profile"]["id"] == profile.id


@pytest.mark.asyncio(loop_scope="session")
async def test_google_disabled(app, client, server_settings):
    disabled = server_settings.model_copy(update={"google_enabled": False})
    app.dependency_overrides[dependencies.SETTINGS] = lambda: disabled

    try:
        config = await client.get("/api/auth/google/config")
        create = await client.post(
            "/api/auth/google/login-requests",
            json={"redirect_uri": server_settings.popup_redirect_uri},
            headers=_headers(uuid4()),
        )
    finally:
        app.dependency_overrides[dependencies.SETTINGS] = lambda: server_settings

    assert config.json() == {"enabled": False, "client_id": None}
    assert create.status_code == 503
    assert create.json()["code"] == "FEATURE_DISABLED"


@pytest.mark.asyncio(loop_scope="session")
async def test_viewer_reload_keeps_state(
    client, server_settings, provider, profile_factory
):
    session_id = uuid4()
    request_id = await _create(client, "login", session_id, server_settings)

    states = []

    for _ in range(2):
        response = await client.get(f"/login/{request_id}")
        href = re.search(r'href="([^"]+)"', response.text).group(1)
        states.append(_state_from_url(html.unescape(href)))

    assert states[0] == states[1]

    # A later authorize call cannot replace it either.
    response = await client.post(
        f"/api/auth/google/login-requests/{request_id}/authorize",
        json={"state": new_state(FlowType.LOGIN, request_id).encode()},
        headers=_headers(session_id),
    )
    assert response.status_code == 200
    assert _state_from_url(response.json()["auth_url"]) == states[0]

    # The link from the first load still completes the login.
    code = uuid4().hex
    provider.register(code, profile_factory())

    response = await client.get(
        "/api/auth/google/callback", params={"code": code, "state": states[0]}
    )
    assert "Successfully logged in with Google" in response.text

    response = await client.get(
        f"/api/auth/google/login-requests/{request_id}", headers=_headers(session_id)
    )
    assert response.json()["status"] == "completed"


def _statuses(stream: str) -> list[str]:
    return [
        json.loads(line.removeprefix("data: "))["status"]
        for line in stream.splitlines()
        if line.startswith("data: ")
    ]


@pytest.mark.asyncio(loop_scope="session")
async def test_request_events(client, server_settings, provider, profile_factory):
    session_id = uuid4()
    request_id = await _create(client, "login", session_id, server_settings)

    response = await client.get(f"/login/{request_id}")
    href = re.search(r'href="([^"]+)"', response.text).group(1)
    state = _state_from_url(html.unescape(href))

    events = asyncio.create_task(
        client.get(
            f"/api/auth/google/login-requests/{request_id}/events",
            headers=_headers(session_id),
        )
    )

    for _ in range(200):
        if REQUEST_EVENTS.subscribers(
            kind=RequestKind.LOGIN, request_id=UUID(request_id)
        ):
            break

        await asyncio.sleep(0.01)

    # Let the stream send its opening snapshot.
    await asyncio.sleep(0.1)

    code = uuid4().hex
    provider.register(code, profile_factory())

    await client.get("/api/auth/google/callback", params={"code": code, "state": state})

    response = await asyncio.wait_for(events, timeout=10)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert _statuses(response.text) == ["pending", "completed"]

    assert not REQUEST_EVENTS.subscribers(
        kind=RequestKind.LOGIN, request_id=UUID(request_id)
    )

    # A settled request streams its outcome and closes.
    response = await client.get(
        f"/api/auth/google/login-requests/{request_id}/events",
        headers=_headers(session_id),
    )
    assert _statuses(response.text) == ["completed"]


@pytest.mark.asyncio(loop_scope="session")
async def test_request_events_for_other_session(client, server_settings):
    request_id = await _create(client, "login", uuid4(), server_settings)

    response = await client.get(
        f"/api/auth/google/login-requests/{request_id}/events",
        headers=_headers(uuid4()),
    )

    assert response.status_code == 404
    assert response.json()["code"] == "REQUEST_NOT_FOUND"
    assert not REQUEST_EVENTS.subscribers(
        kind=RequestKind.LOGIN, request_id=UUID(request_id)
    )
