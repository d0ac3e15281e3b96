"""
Ephemeral login records: popup login requests, account-linking (connect)
requests, and cross-device login codes.
"""

from datetime import datetime
from typing import ClassVar

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel

from cellauth.core.models import RequestData, RequestKind, RequestStatus
from cellauth.core.uuid import UUID, uuid7


class RequestBase(SQLModel):
    request_id: UUID = Field(primary_key=True, default_factory=uuid7)

    session_id: UUID = Field(index=True)
    redirect_uri: str

    status: str = RequestStatus.PENDING.value
    error: str | None = None

    # The state token issued for this request when the provider URL was built.
    state_token: str | None = None

    created_at: datetime = Field(sa_type=DateTime(timezone=True))
    expires_at: datetime = Field(sa_type=DateTime(timezone=True), index=True)
    # Set by the one callback allowed to exchange a code for this request.
    claimed_at: datetime | None = Field(sa_type=DateTime(timezone=True), default=None)
    completed_at: datetime | None = Field(
        sa_type=DateTime(timezone=True), default=None
    )

    kind: ClassVar[RequestKind] = RequestKind.LOGIN

    def to_core(self) -> RequestData:
        return RequestData(
            id=self.request_id,
            kind=self.kind,
            status=RequestStatus(self.status),
            error=self.error,
            redirect_uri=self.redirect_uri,
            created_at=self.created_at,
            expires_at=self.expires_at,
            completed_at=self.completed_at,
        )


class LoginRequest(RequestBase, table=True):
    kind: ClassVar[RequestKind] = RequestKind.LOGIN


class ConnectRequest(RequestBase, table=True):
    kind: ClassVar[RequestKind] = RequestKind.CONNECT

    # The user that owned the session when linking started.
    user_id: UUID = Field(foreign_key="user.user_id", ondelete="CASCADE")


class LoginCode(SQLModel, table=True):
    login_code_id: UUID = Field(primary_key=True, default_factory=uuid7)

    # Stored normalized: eight upper-case characters, no separator.
    code: str = Field(unique=True, index=True)
    user_id: UUID = Field(foreign_key="user.user_id", ondelete="CASCADE", index=True)

    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True)))
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True)))
