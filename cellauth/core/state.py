"""
The OAuth `state` parameter. It correlates a provider redirect with the
request that started it: a compact JSON document carrying the flow type,
the request id, and a format version.
"""

import json
import secrets
from enum import Enum
from urllib.parse import unquote

from pydantic import BaseModel, ValidationError

STATE_VERSION = 1


class FlowType(str, Enum):
    LOGIN = "login"
    CONNECT = "connect"
    LEGACY_LOGIN = "legacy_login"


class StateDecodeError(Exception):
    pass


class OAuthState(BaseModel):
    flow_type: FlowType
    request_id: str | None = None
    nonce: str | None = None
    version: int = STATE_VERSION

    def encode(self) -> str:
        return json.dumps(
            self.model_dump(mode="json"), separators=(",", ":"), sort_keys=True
        )


def new_state(flow_type: FlowType, request_id: str | None = None) -> OAuthState:
    """
    A fresh state for one outgoing redirect. The nonce keeps two redirects
    for the same flow and request from ever sharing a token.
    """
    return OAuthState(
        flow_type=FlowType(flow_type),
        request_id=None if request_id is None else str(request_id),
        nonce=secrets.token_urlsafe(16),
    )


def decode_state(token: str) -> OAuthState:
    """
    Parse a state token as received on the callback. Accepts either the raw
    JSON or its URL-encoded form.

    Raises
    ------
    StateDecodeError
        If the token is not a state document of the current version.
    """
    if not token.lstrip().startswith("{"):
        token = unquote(token)

    try:
        state = OAuthState.model_validate_json(token)
    except ValidationError:
        raise StateDecodeError("State token could not be parsed")

    if state.version != STATE_VERSION:
        raise StateDecodeError(f"Unsupported state version {state.version}")

    return state
