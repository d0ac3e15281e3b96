"""
Main settings object.
"""

from datetime import timedelta
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import URL

from .managers import AsyncSessionManager, SyncSessionManager


class Settings(BaseSettings):
    database_type: Literal["sqlite", "postgres"] = "sqlite"
    database_user: str | None = None
    database_password: str | None = None
    database_port: int | None = None
    database_host: str | None = None
    database_db: str = "cellauth.db"

    database_echo: bool = False

    # Create the tables on startup (development and tests); production
    # deployments run `cellauth setup` once instead.
    create_tables: bool = False

    # Public origin of the web application, used to build redirect URIs.
    hostname: str = "http://localhost:8000"

    # Production builds never show raw error text to users.
    production: bool = False

    # Global kill switch for every login path (anonymous, Google, codes).
    disable_login: bool = False

    google_enabled: bool = False
    google_client_id: str | None = None
    google_client_secret: str | None = None

    # "mock" swaps Google for a local provider that logs everyone in as a
    # fixed development user. Never use it in production.
    auth_provider: Literal["google", "mock"] = "google"

    login_request_expiry: timedelta = timedelta(minutes=15)
    login_code_expiry: timedelta = timedelta(seconds=60)

    # Idle request event streams send a comment line this often.
    request_stream_keepalive: timedelta = timedelta(seconds=15)

    sweep_interval: timedelta = timedelta(minutes=10)
    run_sweeper: bool = True
    # None keeps completed login/connect requests until deleted by hand.
    completed_request_retention: timedelta | None = None

    error_message_length: int = 256

    model_config = SettingsConfigDict(env_prefix="CELLAUTH_", env_file=".env")

    @property
    def google_configured(self) -> bool:
        return bool(
            self.google_enabled
            and self.google_client_id
            and self.google_client_secret
            and not self.disable_login
        )

    @property
    def popup_redirect_uri(self) -> str:
        return f"{self.hostname}/api/auth/google/callback"

    @property
    def legacy_redirect_uri(self) -> str:
        return f"{self.hostname}/login/google/callback"

    @property
    def connect_redirect_uri(self) -> str:
        return f"{self.hostname}/app/profile/connect/google/callback"

    @property
    def allowed_redirect_uris(self) -> set[str]:
        return {
            self.popup_redirect_uri,
            self.legacy_redirect_uri,
            self.connect_redirect_uri,
        }

    @property
    def sync_driver(self) -> str:
        match self.database_type:
            case "sqlite":
                return "sqlite"
            case "postgres":
                return "postgresql+psycopg"
            case _:
                raise ValueError

    @property
    def async_driver(self) -> str:
        match self.database_type:
            case "sqlite":
                return "sqlite+aiosqlite"
            case "postgres":
                return "postgresql+asyncpg"
            case _:
                raise ValueError

    def _uri(self, drivername: str) -> URL:
        return URL.create(
            drivername=drivername,
            username=self.database_user,
            password=self.database_password,
            host=self.database_host,
            port=self.database_port,
            database=self.database_db,
        )

    @property
    def sync_uri(self) -> URL:
        return self._uri(self.sync_driver)

    @property
    def async_uri(self) -> URL:
        return self._uri(self.async_driver)

    def sync_manager(self) -> SyncSessionManager:
        return SyncSessionManager(connection_url=self.sync_uri, echo=self.database_echo)

    def async_manager(self) -> AsyncSessionManager:
        return AsyncSessionManager(
            connection_url=self.async_uri, echo=self.database_echo
        )
