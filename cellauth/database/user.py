"""
ORM for users and the sessions bound to them.
"""

from datetime import datetime

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel

from cellauth.core.user import (
    AccessLevel,
    LinkedAccountData,
    UserData,
    UserKind,
)
from cellauth.core.uuid import UUID, uuid7


class User(SQLModel, table=True):
    user_id: UUID = Field(primary_key=True, default_factory=uuid7)

    # "anonymous" or "registered"; anonymous users are upgraded in place.
    kind: str = UserKind.ANONYMOUS.value
    display_name: str
    user_name: str | None = Field(default=None, unique=True)
    email: str | None = Field(default=None, index=True)

    access_level: str = AccessLevel.USER.value

    # Long-lived secret that logs any session in as this user.
    recovery_code: str | None = Field(default=None, unique=True, index=True)

    google_account_id: str | None = Field(default=None, unique=True, index=True)
    google_email: str | None = None
    google_picture: str | None = None
    google_last_logged_in: datetime | None = Field(
        sa_column=Column(DateTime(timezone=True)), default=None
    )

    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True)))

    @property
    def is_anonymous(self) -> bool:
        return self.kind == UserKind.ANONYMOUS.value

    @property
    def is_system_admin(self) -> bool:
        return self.access_level == AccessLevel.SYSTEM_ADMIN.value

    def to_core(self) -> UserData:
        linked = None

        if self.google_account_id is not None:
            linked = LinkedAccountData(
                provider_account_id=self.google_account_id,
                email=self.google_email,
                picture=self.google_picture,
            )

        return UserData(
            user_id=self.user_id,
            kind=UserKind(self.kind),
            display_name=self.display_name,
            user_name=self.user_name,
            email=self.email,
            access_level=AccessLevel(self.access_level or AccessLevel.USER.value),
            linked_account=linked,
        )


class AuthSession(SQLModel, table=True):
    # Supplied by the client; the server never mints these.
    session_id: UUID = Field(primary_key=True)

    user_id: UUID | None = Field(
        default=None, foreign_key="user.user_id", ondelete="SET NULL", index=True
    )
    auth_method: str | None = None

    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True)))
