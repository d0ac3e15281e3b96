"""
Client halves of the Google flows.

`PopupLoginFlow` starts a login or connect request, opens the consent
screen in a popup and watches the request until the server settles it.

`CallbackFlow` runs on the page Google redirects the whole browser back to
(direct-redirect login, and account connection): it short-circuits provider
errors, validates the state against the tab's copy, makes sure only one
arrival of the callback reaches the server, and then exchanges.
"""

import webbrowser
from collections.abc import Callable
from datetime import timedelta
from typing import Literal

import httpx
from pydantic import BaseModel

from cellauth.core.errors import AuthFailure, provider_error_message, user_message
from cellauth.core.flows import FlowHooks, hooks_for
from cellauth.core.models import ConnectResult, LoginResult, RequestKind
from cellauth.core.state import FlowType, StateDecodeError, decode_state

from .client import CellAuthClient
from .guard import CSRFGuard, ValidationResult
from .observer import (
    ObservationResult,
    PollingSubscription,
    Popup,
    RequestObserver,
    StreamSubscription,
    Subscription,
)

NEUTRAL_ENTRY_POINT = "/login"


class BrowserPopup(Popup):
    """
    Opens the consent screen in the system browser. A browser tab we did
    not create cannot be watched, so it never reports itself closed.
    """

    def __init__(self, url: str):
        self.url = url
        webbrowser.open(url)

    @property
    def closed(self) -> bool:
        return False


class PopupLoginFlow:
    """
    create request -> issue state -> authorize -> open popup -> observe.

    The request is observed over its event stream. Passing `poll_interval`
    polls instead, for environments where the stream cannot be held open.
    """

    def __init__(
        self,
        client: CellAuthClient,
        guard: CSRFGuard,
        redirect_uri: str,
        open_popup: Callable[[str], Popup] = BrowserPopup,
        poll_interval: timedelta | None = None,
    ):
        self.client = client
        self.guard = guard
        self.redirect_uri = redirect_uri
        self.open_popup = open_popup
        self.poll_interval = poll_interval
        self.observer: RequestObserver | None = None

    def _subscribe(self, kind: RequestKind, request_id) -> Subscription:
        if self.poll_interval is None:
            return StreamSubscription(
                client=self.client, kind=kind, request_id=request_id
            )

        return PollingSubscription(
            client=self.client,
            kind=kind,
            request_id=request_id,
            interval=self.poll_interval,
        )

    async def start(
        self,
        kind: RequestKind = RequestKind.LOGIN,
        on_popup_closed: Callable[[], None] | None = None,
    ) -> ObservationResult:
        kind = RequestKind(kind)

        created = await self.client.create_request(
            kind=kind, redirect_uri=self.redirect_uri
        )
        state = self.guard.issue(
            flow_type=FlowType(kind.value), request_id=str(created.id)
        )
        auth_url = await self.client.authorize_request(
            kind=kind, request_id=created.id, state=state
        )

        popup = self.open_popup(auth_url)

        self.observer = RequestObserver(
            subscription=self._subscribe(kind=kind, request_id=created.id),
            popup=popup,
            on_popup_closed=on_popup_closed,
        )

        return await self.observer.run()

    async def cancel(self):
        if self.observer is not None:
            await self.observer.close()


class CallbackOutcome(BaseModel):
    status: Literal["success", "failed", "ignored"]
    redirect_to: str | None = None
    message: str | None = None
    error_code: str | None = None
    result: LoginResult | ConnectResult | None = None


class CallbackFlow:
    """
    One state machine for every callback page that is handled in the
    browser, parameterized by the flow's hooks.
    """

    hooks: FlowHooks

    def __init__(
        self,
        flow_type: FlowType,
        client: CellAuthClient,
        guard: CSRFGuard,
        redirect_uri: str,
    ):
        flow_type = FlowType(flow_type)

        if flow_type == FlowType.LOGIN:
            raise ValueError("Popup logins are completed by the server callback")

        self.hooks = hooks_for(flow_type)
        self.client = client
        self.guard = guard
        self.redirect_uri = redirect_uri

    def _failed(
        self,
        redirect_to: str,
        message: str | None = None,
        error_code: str | None = None,
    ) -> CallbackOutcome:
        return CallbackOutcome(
            status="failed",
            redirect_to=redirect_to,
            message=message,
            error_code=error_code,
        )

    async def _server_call(self, code: str, state: str) -> LoginResult | ConnectResult:
        if self.hooks.flow_type == FlowType.CONNECT:
            return await self.client.connect_google(
                code=code, state=state, redirect_uri=self.redirect_uri
            )

        return await self.client.login_with_google(
            code=code, state=state, redirect_uri=self.redirect_uri
        )

    async def handle(
        self,
        code: str | None,
        state: str | None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> CallbackOutcome:
        if error:
            return self._failed(
                redirect_to=self.hooks.failure_target,
                message=provider_error_message(error, error_description),
                error_code="OAUTH_ERROR",
            )

        # A state for another flow is as untrustworthy as a forged one.
        try:
            if state is None or decode_state(state).flow_type != self.hooks.flow_type:
                return self._failed(redirect_to=NEUTRAL_ENTRY_POINT)
        except StateDecodeError:
            return self._failed(redirect_to=NEUTRAL_ENTRY_POINT)

        validation = self.guard.validate(state)

        if validation.benign:
            return CallbackOutcome(status="ignored")

        if validation != ValidationResult.OK:
            return self._failed(redirect_to=NEUTRAL_ENTRY_POINT)

        gate = self.guard.gate(self.hooks.flow_type)

        if not code:
            gate.finish()
            return self._failed(
                redirect_to=self.hooks.failure_target,
                message=user_message("OAUTH_ERROR"),
                error_code="OAUTH_ERROR",
            )

        if self.hooks.requires_auth:
            try:
                auth_state = await self.client.state()
            except httpx.HTTPError:
                # Nothing was exchanged yet; the same callback may be retried.
                self.guard.abort(state)
                raise

            if auth_state.state != "authenticated":
                gate.finish()
                return self._failed(
                    redirect_to=NEUTRAL_ENTRY_POINT,
                    message=user_message("UNAUTHORIZED"),
                    error_code="UNAUTHORIZED",
                )

        gate.mark_exchange_attempted()

        try:
            result = await self._server_call(code=code, state=state)
        except AuthFailure as e:
            gate.finish()
            return self._failed(
                redirect_to=self.hooks.failure_target,
                message=user_message(e.code),
                error_code=e.code,
            )
        except httpx.HTTPError:
            gate.finish()
            return self._failed(
                redirect_to=self.hooks.failure_target,
                message=provider_error_message("network"),
            )

        gate.finish()

        return CallbackOutcome(
            status="success",
            redirect_to=self.hooks.redirect_target,
            message=self.hooks.success_message,
            result=result,
        )
