"""
A shared user object that is serialized.
"""

from enum import Enum

from pydantic import BaseModel

from cellauth.core.uuid import UUID


class UserKind(str, Enum):
    ANONYMOUS = "anonymous"
    REGISTERED = "registered"


class AccessLevel(str, Enum):
    USER = "user"
    SYSTEM_ADMIN = "system_admin"


class AuthMethod(str, Enum):
    ANONYMOUS = "anonymous"
    GOOGLE = "google"
    LOGIN_CODE = "login_code"
    RECOVERY_CODE = "recovery_code"


class LinkedAccountData(BaseModel):
    provider: str = "google"
    provider_account_id: str
    email: str | None
    picture: str | None = None


class UserData(BaseModel):
    user_id: UUID
    kind: UserKind
    display_name: str
    user_name: str | None
    email: str | None
    access_level: AccessLevel
    linked_account: LinkedAccountData | None = None
