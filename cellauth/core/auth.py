"""
The authentication view of a session, and access-level checks.
"""

from typing import Annotated, Literal

from pydantic import BaseModel, Field

from cellauth.core.user import AccessLevel, AuthMethod, UserData
from cellauth.core.uuid import UUID

UnauthenticatedReason = Literal[
    "session_not_found", "session_deauthorized", "user_not_found"
]


class UnauthenticatedState(BaseModel):
    state: Literal["unauthenticated"] = "unauthenticated"
    session_id: UUID | None
    reason: UnauthenticatedReason


class AuthenticatedState(BaseModel):
    state: Literal["authenticated"] = "authenticated"
    session_id: UUID
    user: UserData
    access_level: AccessLevel
    is_system_admin: bool
    auth_method: AuthMethod | None = None


AuthState = Annotated[
    UnauthenticatedState | AuthenticatedState, Field(discriminator="state")
]


def get_access_level(user: UserData) -> AccessLevel:
    return user.access_level or AccessLevel.USER


def is_system_admin(user: UserData) -> bool:
    return get_access_level(user) == AccessLevel.SYSTEM_ADMIN

