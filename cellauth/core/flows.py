"""
The three ways a Google redirect can come back to us. They share one
exchange-then-bind core and differ only in these hooks.
"""

from pydantic import BaseModel

from cellauth.core.state import FlowType


class FlowHooks(BaseModel):
    flow_type: FlowType
    # The session must already be bound to a user before the exchange.
    requires_auth: bool
    # Where the browser goes once the flow succeeds.
    redirect_target: str
    # Where it goes when the flow fails.
    failure_target: str
    success_message: str


FLOW_HOOKS: dict[FlowType, FlowHooks] = {
    FlowType.LOGIN: FlowHooks(
        flow_type=FlowType.LOGIN,
        requires_auth=False,
        redirect_target="/app",
        failure_target="/login",
        success_message="Successfully logged in with Google",
    ),
    FlowType.CONNECT: FlowHooks(
        flow_type=FlowType.CONNECT,
        requires_auth=True,
        redirect_target="/app/profile",
        failure_target="/app/profile",
        success_message="Google account connected successfully",
    ),
    FlowType.LEGACY_LOGIN: FlowHooks(
        flow_type=FlowType.LEGACY_LOGIN,
        requires_auth=False,
        redirect_target="/app",
        failure_target="/login",
        success_message="Successfully logged in with Google",
    ),
}


def hooks_for(flow_type: FlowType) -> FlowHooks:
    return FLOW_HOOKS[FlowType(flow_type)]
