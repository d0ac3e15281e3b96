"""
Tests the session, name, login code and recovery code endpoints.
"""

import pytest

from cellauth.core.uuid import uuid4


def _headers(session_id) -> dict[str, str]:
    return {"X-Session-Id": str(session_id)}


@pytest.mark.asyncio(loop_scope="session")
async def test_state_without_session(client):
    response = await client.get("/api/auth/state")
    assert response.status_code == 200
    assert response.json()["state"] == "unauthenticated"
    assert response.json()["reason"] == "session_not_found"

    # Garbage is treated like no session at all.
    response = await client.get(
        "/api/auth/state", headers={"X-Session-Id": "not-a-uuid"}
    )
    assert response.status_code == 200
    assert response.json()["session_id"] is None

    session_id = uuid4()
    response = await client.get("/api/auth/state", headers=_headers(session_id))
    assert response.json()["state"] == "unauthenticated"
    assert response.json()["session_id"] == str(session_id)


@pytest.mark.asyncio(loop_scope="session")
async def test_anonymous_and_logout(client):
    response = await client.post("/api/auth/anonymous")
    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHORIZED"

    session_id = uuid4()

    response = await client.post("/api/auth/anonymous", headers=_headers(session_id))
    assert response.status_code == 200

    state = response.json()
    assert state["state"] == "authenticated"
    assert state["user"]["kind"] == "anonymous"
    assert state["auth_method"] == "anonymous"
    assert not state["is_system_admin"]

    response = await client.get("/api/auth/state", headers=_headers(session_id))
    assert response.json()["user"]["user_id"] == state["user"]["user_id"]

    response = await client.post("/api/auth/logout", headers=_headers(session_id))
    assert response.status_code == 200
    assert response.json()["success"]

    response = await client.get("/api/auth/state", headers=_headers(session_id))
    assert response.json()["state"] == "unauthenticated"

    response = await client.post("/api/auth/logout", headers=_headers(session_id))
    assert response.status_code == 200


@pytest.mark.asyncio(loop_scope="session")
async def test_update_name(client):
    session_id = uuid4()

    response = await client.put(
        "/api/auth/name", json={"name": "Somebody"}, headers=_headers(session_id)
    )
    assert response.status_code == 401

    await client.post("/api/auth/anonymous", headers=_headers(session_id))

    response = await client.put(
        "/api/auth/name", json={"name": "ab"}, headers=_headers(session_id)
    )
    assert response.status_code == 200
    assert not response.json()["success"]
    assert response.json()["reason"] == "name_too_short"

    response = await client.put(
        "/api/auth/name", json={"name": "  Katherine  "}, headers=_headers(session_id)
    )
    assert response.json()["success"]

    response = await client.get("/api/auth/state", headers=_headers(session_id))
    assert response.json()["user"]["display_name"] == "Katherine"


@pytest.mark.asyncio(loop_scope="session")
async def test_login_code_across_devices(client):
    laptop = uuid4()
    phone = uuid4()

    response = await client.post("/api/auth/login-codes", headers=_headers(laptop))
    assert response.status_code == 401

    response = await client.get("/api/auth/login-codes/active", headers=_headers(laptop))
    assert response.status_code == 200
    assert response.json()["reason"] == "not_authenticated"

    response = await client.post("/api/auth/anonymous", headers=_headers(laptop))
    USER_ID = response.json()["user"]["user_id"]

    response = await client.post("/api/auth/login-codes", headers=_headers(laptop))
    assert response.status_code == 200
    created = response.json()
    assert created["success"]

    response = await client.get("/api/auth/login-codes/active", headers=_headers(laptop))
    assert response.json()["code"] == created["code"]

    response = await client.get(f"/api/auth/login-codes/{created['display_code']}/valid")
    assert response.json() == {"valid": True}

    response = await client.post(
        "/api/auth/login-codes/verify",
        json={"code": created["display_code"].lower()},
        headers=_headers(phone),
    )
    assert response.status_code == 200
    assert response.json()["success"]
    assert response.json()["user_id"] == USER_ID

    response = await client.get("/api/auth/state", headers=_headers(phone))
    assert response.json()["user"]["user_id"] == USER_ID
    assert response.json()["auth_method"] == "login_code"

    # Used up.
    response = await client.get(f"/api/auth/login-codes/{created['code']}/valid")
    assert response.json() == {"valid": False}

    response = await client.post(
        "/api/auth/login-codes/verify",
        json={"code": created["code"]},
        headers=_headers(uuid4()),
    )
    assert not response.json()["success"]
    assert response.json()["reason"] == "invalid_code"


@pytest.mark.asyncio(loop_scope="session")
async def test_recovery_code(client):
    session_id = uuid4()

    response = await client.get("/api/auth/recovery-code", headers=_headers(session_id))
    assert response.json() == {
        "success": False,
        "recovery_code": None,
        "reason": "not_authenticated",
    }

    response = await client.post("/api/auth/anonymous", headers=_headers(session_id))
    USER_ID = response.json()["user"]["user_id"]

    response = await client.get("/api/auth/recovery-code", headers=_headers(session_id))
    code = response.json()["recovery_code"]
    assert len(code) == 128

    other_device = uuid4()

    response = await client.post(
        "/api/auth/recovery-code/verify",
        json={"recovery_code": code},
        headers=_headers(other_device),
    )
    assert response.json()["success"]
    assert response.json()["user_id"] == USER_ID

    response = await client.get("/api/auth/state", headers=_headers(other_device))
    assert response.json()["auth_method"] == "recovery_code"

    response = await client.post(
        "/api/auth/recovery-code/regenerate", headers=_headers(session_id)
    )
    assert response.json()["recovery_code"] != code

    response = await client.post(
        "/api/auth/recovery-code/verify",
        json={"recovery_code": code},
        headers=_headers(uuid4()),
    )
    assert response.json()["reason"] == "invalid_code"
