"""
An API client for cellauth, wraps around httpx.
"""

from collections.abc import AsyncIterator
from typing import Any

import httpx
from pydantic import TypeAdapter

from cellauth.core.auth import AuthState
from cellauth.core.errors import AuthFailure, failure_from_code
from cellauth.core.models import (
    ActiveLoginCodeResponse,
    AuthorizeResponse,
    CodeValidityResponse,
    ConnectResult,
    CreateRequestResponse,
    ExchangeResponse,
    GoogleConfigResponse,
    GoogleProfile,
    LoginCodeResponse,
    LoginResult,
    MessageResponse,
    RequestData,
    RecoveryCodeResponse,
    RequestKind,
    VerifyLoginCodeResponse,
    VerifyRecoveryCodeResponse,
)
from cellauth.core.uuid import UUID

from .session import ensure_session
from .storage import Storage

SESSION_HEADER = "X-Session-Id"

_AUTH_STATE = TypeAdapter(AuthState)


class SessionAuth(httpx.Auth):
    """
    An authentication provider for httpx that sends the stored session id
    with every request, creating one on first use.
    """

    storage: Storage

    def __init__(self, storage: Storage):
        self.storage = storage

    @property
    def session_id(self) -> UUID:
        return ensure_session(self.storage)

    def auth_flow(self, request):
        request.headers[SESSION_HEADER] = str(self.session_id)
        yield request


def raise_for_failure(response: httpx.Response):
    """
    Turn an error response into the typed failure the server raised.

    Raises
    ------
    AuthFailure
        For any non-success response.
    """
    if response.is_success:
        return

    try:
        content = response.json()
    except ValueError:
        content = None

    if not isinstance(content, dict):
        content = {}

    code = content.get("code")
    message = content.get("message") or f"{response.status_code}: {response.text[:256]}"

    failure = failure_from_code(code or "", message)

    if code is not None and failure.code != code:
        failure.code = code

    raise failure


class CellAuthClient:
    """
    Async client for the session, Google and login code endpoints. The
    session id lives in `storage` and is attached to every request.
    """

    def __init__(
        self,
        base_url: str,
        storage: Storage,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 20.0,
    ):
        """
        Parameters
        ----------
        base_url: str
            Origin of the cellauth server, e.g. `https://cells.example.org`.
        storage: Storage
            Durable storage holding the session id.
        transport: httpx.AsyncBaseTransport | None, optional
            Custom transport, for example `httpx.ASGITransport` to talk to an
            in-process app.
        timeout: float, optional
            Request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/")
        self.storage = storage
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=SessionAuth(storage),
            transport=transport,
            timeout=timeout,
        )

    @property
    def session_id(self) -> UUID:
        return ensure_session(self.storage)

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self) -> "CellAuthClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        response = await self._client.request(method, url, **kwargs)
        raise_for_failure(response)
        return response.json()

    async def state(self) -> AuthState:
        return _AUTH_STATE.validate_python(await self._request("GET", "/api/auth/state"))

    async def login_anonymous(self) -> AuthState:
        return _AUTH_STATE.validate_python(
            await self._request("POST", "/api/auth/anonymous")
        )

    async def logout(self) -> MessageResponse:
        return MessageResponse.model_validate(
            await self._request("POST", "/api/auth/logout")
        )

    async def update_name(self, name: str) -> MessageResponse:
        return MessageResponse.model_validate(
            await self._request("PUT", "/api/auth/name", json={"name": name})
        )

    async def google_config(self) -> GoogleConfigResponse:
        return GoogleConfigResponse.model_validate(
            await self._request("GET", "/api/auth/google/config")
        )

    async def create_request(
        self, kind: RequestKind, redirect_uri: str
    ) -> CreateRequestResponse:
        kind = RequestKind(kind)
        return CreateRequestResponse.model_validate(
            await self._request(
                "POST",
                f"/api/auth/google/{kind.value}-requests",
                json={"redirect_uri": redirect_uri},
            )
        )

    async def read_request(self, kind: RequestKind, request_id: UUID) -> RequestData:
        kind = RequestKind(kind)
        return RequestData.model_validate(
            await self._request(
                "GET", f"/api/auth/google/{kind.value}-requests/{request_id}"
            )
        )

    async def watch_request(
        self, kind: RequestKind, request_id: UUID
    ) -> AsyncIterator[RequestData]:
        """
        Follow a request over its event stream, yielding every snapshot the
        server sends. Iteration ends when the server closes the stream,
        which it does once the request is completed or failed.

        Raises
        ------
        AuthFailure
            If the stream cannot be opened, for example because the request
            belongs to another session.
        """
        kind = RequestKind(kind)
        url = f"/api/auth/google/{kind.value}-requests/{request_id}/events"
        # Idle streams only carry keepalive comments; never time out reading.
        timeout = httpx.Timeout(self.timeout, read=None)

        async with self._client.stream("GET", url, timeout=timeout) as response:
            if not response.is_success:
                await response.aread()
                raise_for_failure(response)

            event_type, data = None, []

            async for line in response.aiter_lines():
                if not line:
                    if event_type == "snapshot" and data:
                        yield RequestData.model_validate_json("\n".join(data))

                    event_type, data = None, []
                    continue

                if line.startswith(":"):
                    continue

                field, _, value = line.partition(":")
                value = value.removeprefix(" ")

                if field == "event":
                    event_type = value
                elif field == "data":
                    data.append(value)

    async def authorize_request(
        self, kind: RequestKind, request_id: UUID, state: str
    ) -> str:
        kind = RequestKind(kind)
        response = AuthorizeResponse.model_validate(
            await self._request(
                "POST",
                f"/api/auth/google/{kind.value}-requests/{request_id}/authorize",
                json={"state": state},
            )
        )
        return response.auth_url

    async def exchange(self, code: str, state: str, redirect_uri: str) -> GoogleProfile:
        response = ExchangeResponse.model_validate(
            await self._request(
                "POST",
                "/api/auth/google/exchange",
                json={"code": code, "state": state, "redirect_uri": redirect_uri},
            )
        )

        if not response.success or response.profile is None:
            raise AuthFailure("Failed to exchange code for profile")

        return response.profile

    async def login_with_google(
        self, code: str, state: str, redirect_uri: str
    ) -> LoginResult:
        return LoginResult.model_validate(
            await self._request(
                "POST",
                "/api/auth/google/login",
                json={"code": code, "state": state, "redirect_uri": redirect_uri},
            )
        )

    async def connect_google(
        self, code: str, state: str, redirect_uri: str
    ) -> ConnectResult:
        return ConnectResult.model_validate(
            await self._request(
                "POST",
                "/api/auth/google/connect",
                json={"code": code, "state": state, "redirect_uri": redirect_uri},
            )
        )

    async def disconnect_google(self) -> MessageResponse:
        return MessageResponse.model_validate(
            await self._request("POST", "/api/auth/google/disconnect")
        )

    async def create_login_code(self) -> LoginCodeResponse:
        return LoginCodeResponse.model_validate(
            await self._request("POST", "/api/auth/login-codes")
        )

    async def active_login_code(self) -> ActiveLoginCodeResponse:
        return ActiveLoginCodeResponse.model_validate(
            await self._request("GET", "/api/auth/login-codes/active")
        )

    async def verify_login_code(self, code: str) -> VerifyLoginCodeResponse:
        return VerifyLoginCodeResponse.model_validate(
            await self._request(
                "POST", "/api/auth/login-codes/verify", json={"code": code}
            )
        )

    async def check_login_code(self, code: str) -> bool:
        response = CodeValidityResponse.model_validate(
            await self._request("GET", f"/api/auth/login-codes/{code}/valid")
        )
        return response.valid

    async def recovery_code(self) -> RecoveryCodeResponse:
        return RecoveryCodeResponse.model_validate(
            await self._request("GET", "/api/auth/recovery-code")
        )

    async def regenerate_recovery_code(self) -> RecoveryCodeResponse:
        return RecoveryCodeResponse.model_validate(
            await self._request("POST", "/api/auth/recovery-code/regenerate")
        )

    async def verify_recovery_code(self, code: str) -> VerifyRecoveryCodeResponse:
        return VerifyRecoveryCodeResponse.model_validate(
            await self._request(
                "POST", "/api/auth/recovery-code/verify", json={"recovery_code": code}
            )
        )
