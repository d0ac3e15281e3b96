"""
Provider configuration managed by system administrators at runtime. A
stored row takes precedence over the Google settings from the environment.
"""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from cellauth.core.models import GoogleAuthConfigData
from cellauth.core.uuid import UUID, uuid7


class ThirdPartyAuthConfig(SQLModel, table=True):
    config_id: UUID = Field(primary_key=True, default_factory=uuid7)

    # One row per provider; only "google" exists.
    type: str = Field(default="google", unique=True)
    enabled: bool = False

    project_id: str | None = None
    client_id: str = ""
    client_secret: str = ""
    redirect_uris: list[str] = Field(default_factory=list, sa_column=Column(JSON))

    configured_by: UUID | None = Field(
        default=None, foreign_key="user.user_id", ondelete="SET NULL"
    )
    configured_at: datetime = Field(sa_column=Column(DateTime(timezone=True)))

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def to_core(self) -> GoogleAuthConfigData:
        # The secret never leaves the server.
        return GoogleAuthConfigData(
            enabled=self.enabled,
            project_id=self.project_id,
            client_id=self.client_id or None,
            has_client_secret=bool(self.client_secret),
            is_configured=self.is_configured,
            redirect_uris=list(self.redirect_uris or []),
            configured_by=self.configured_by,
            configured_at=self.configured_at,
        )
