"""
Runtime Google configuration, managed by system administrators.

Without a stored configuration the Google settings from the environment
apply unchanged. Once an administrator saves one, its enabled flag, client
id and client secret replace the environment's; resetting removes it
again. The global login kill switch applies either way.
"""

from urllib.parse import urlparse

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from cellauth.config.settings import Settings
from cellauth.core.errors import ConfigValidationError
from cellauth.core.models import (
    CredentialCheckResponse,
    GoogleAuthConfigData,
    MessageResponse,
    UpdateGoogleAuthConfigBody,
)
from cellauth.core.timing import utcnow
from cellauth.core.uuid import UUID
from cellauth.database.config import ThirdPartyAuthConfig
from cellauth.service.provider import AuthProvider

GOOGLE = "google"


async def read(conn: AsyncSession) -> ThirdPartyAuthConfig | None:
    query = select(ThirdPartyAuthConfig).filter(ThirdPartyAuthConfig.type == GOOGLE)
    return (await conn.execute(query)).scalar_one_or_none()


async def get_config(conn: AsyncSession) -> GoogleAuthConfigData | None:
    config = await read(conn=conn)
    return config.to_core() if config is not None else None


async def effective_settings(settings: Settings, conn: AsyncSession) -> Settings:
    """
    `settings` with the stored Google configuration applied, if there is one.
    """
    config = await read(conn=conn)

    if config is None:
        return settings

    return settings.model_copy(
        update={
            "google_enabled": config.enabled,
            "google_client_id": config.client_id or None,
            "google_client_secret": config.client_secret or None,
        }
    )


def _validate_redirect_uri(uri: str) -> str:
    parsed = urlparse(uri)

    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigValidationError(f"Invalid redirect URI: {uri}")

    return uri


async def update(
    content: UpdateGoogleAuthConfigBody,
    admin_user_id: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> MessageResponse:
    """
    Create or replace the stored configuration.

    An empty client secret keeps the one already stored, so administrators
    can change other values without re-entering it. The redirect URIs are
    kept as a record of what was registered with Google; the redirect URIs
    accepted for sign-in are always derived from `hostname`.

    Raises
    ------
    ConfigValidationError
        If the client id is empty, a new configuration has no secret, or a
        redirect URI is not an absolute http(s) URL.
    """
    client_id = content.client_id.strip()
    client_secret = content.client_secret.strip()

    if not client_id:
        raise ConfigValidationError("Client ID is required")

    config = await read(conn=conn)

    if not client_secret and (config is None or not config.client_secret):
        raise ConfigValidationError("Client Secret is required for new configuration")

    redirect_uris = [_validate_redirect_uri(uri) for uri in content.redirect_uris]

    if config is None:
        config = ThirdPartyAuthConfig(type=GOOGLE, configured_at=utcnow())

    config.enabled = content.enabled
    config.project_id = (content.project_id or "").strip() or None
    config.client_id = client_id
    config.client_secret = client_secret or config.client_secret
    config.redirect_uris = redirect_uris
    config.configured_by = admin_user_id
    config.configured_at = utcnow()

    conn.add(config)

    await log.ainfo(
        "google_config.updated",
        admin_user_id=admin_user_id,
        enabled=config.enabled,
        client_id=client_id,
        secret_replaced=bool(client_secret),
    )

    return MessageResponse(
        success=True, message="Google Auth configuration updated successfully"
    )


async def toggle(
    enabled: bool,
    admin_user_id: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> MessageResponse:
    """
    Switch Google sign-in on or off without touching the credentials. With
    nothing stored yet, an empty configuration is created; enabling it has
    no effect until credentials are saved.
    """
    config = await read(conn=conn)

    if config is None:
        config = ThirdPartyAuthConfig(type=GOOGLE, configured_at=utcnow())

    config.enabled = enabled
    config.configured_by = admin_user_id
    config.configured_at = utcnow()

    conn.add(config)

    await log.ainfo(
        "google_config.toggled", admin_user_id=admin_user_id, enabled=enabled
    )

    return MessageResponse(
        success=True,
        message=f"Google Auth {'enabled' if enabled else 'disabled'} successfully",
    )


async def reset(conn: AsyncSession, log: FilteringBoundLogger) -> MessageResponse:
    config = await read(conn=conn)

    if config is not None:
        await conn.delete(config)

    await log.ainfo("google_config.reset", existed=config is not None)

    return MessageResponse(
        success=True, message="Google Auth configuration has been reset"
    )


async def check_credentials(
    client_id: str,
    client_secret: str | None,
    provider: AuthProvider,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> CredentialCheckResponse:
    """
    Check a client id and secret with the provider. Without a secret, the
    stored one is checked.
    """
    if not client_secret:
        config = await read(conn=conn)
        client_secret = config.client_secret if config is not None else ""

        if not client_secret:
            return CredentialCheckResponse(
                success=False,
                message="No client secret provided and no saved client secret found",
                issues=["Missing Client Secret"],
            )

    issues = []

    if not client_id.strip():
        issues.append("Missing Client ID")

    if not client_secret.strip():
        issues.append("Missing Client Secret")

    if issues:
        return CredentialCheckResponse(
            success=False,
            message=f"New credentials are incomplete: {', '.join(issues)}",
            issues=issues,
        )

    return await provider.check_credentials(
        client_id=client_id.strip(),
        client_secret=client_secret.strip(),
        redirect_uri=settings.popup_redirect_uri,
        log=log,
    )
