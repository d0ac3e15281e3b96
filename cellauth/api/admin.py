"""
Administration endpoints.
"""

from fastapi import APIRouter

from cellauth.core.models import (
    AccessLevelBody,
    CheckGoogleCredentialsBody,
    CredentialCheckResponse,
    GoogleAuthConfigData,
    MessageResponse,
    ToggleGoogleAuthBody,
    UpdateGoogleAuthConfigBody,
)
from cellauth.core.user import AccessLevel, UserData
from cellauth.core.uuid import UUID
from cellauth.service import google_config as google_config_service
from cellauth.service import user as user_service

from .dependencies import (
    AuthProviderDependency,
    DatabaseDependency,
    LoggerDependency,
    SettingsDependency,
    SystemAdminDependency,
)

admin_routes = APIRouter(tags=["Administration"])


@admin_routes.get(
    "/users",
    summary="Get the list of users",
    description="Retrieve a list of all users. Requires system administrator access.",
    responses={
        200: {"description": "A list of users is returned."},
        401: {"description": "The session is not authenticated."},
        403: {"description": "The user is not a system administrator."},
    },
)
async def users(
    admin: SystemAdminDependency, conn: DatabaseDependency, log: LoggerDependency
) -> list[UserData]:
    log = log.bind(admin_user_id=admin.user.user_id)
    result = await user_service.get_user_list(conn=conn)
    log = log.bind(number_of_users=len(result))
    await log.ainfo("api.admin.users")
    return result


@admin_routes.put(
    "/users/{user_id}/access-level",
    summary="Change a user's access level",
    responses={
        200: {"description": "The updated user."},
        401: {"description": "The session is not authenticated."},
        403: {"description": "The user is not a system administrator."},
        404: {"description": "User not found."},
    },
)
async def access_level(
    user_id: UUID,
    content: AccessLevelBody,
    admin: SystemAdminDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> UserData:
    log = log.bind(admin_user_id=admin.user.user_id)

    user = await user_service.set_access_level(
        user_id=user_id,
        access_level=AccessLevel(content.access_level),
        conn=conn,
        log=log,
    )

    return user.to_core()


ADMIN_RESPONSES = {
    401: {"description": "The session is not authenticated."},
    403: {"description": "The user is not a system administrator."},
}


@admin_routes.get(
    "/google-auth",
    summary="Get the stored Google configuration",
    description=(
        "The configuration saved by administrators, or null when the "
        "environment settings apply. The client secret is never returned."
    ),
    responses=ADMIN_RESPONSES,
)
async def google_auth_config(
    admin: SystemAdminDependency, conn: DatabaseDependency
) -> GoogleAuthConfigData | None:
    return await google_config_service.get_config(conn=conn)


@admin_routes.put(
    "/google-auth",
    summary="Save the Google configuration",
    description="Leave `client_secret` empty to keep the stored secret.",
    responses={
        **ADMIN_RESPONSES,
        400: {"description": "A value is missing or invalid."},
    },
)
async def update_google_auth_config(
    content: UpdateGoogleAuthConfigBody,
    admin: SystemAdminDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> MessageResponse:
    return await google_config_service.update(
        content=content, admin_user_id=admin.user.user_id, conn=conn, log=log
    )


@admin_routes.put(
    "/google-auth/enabled",
    summary="Switch Google sign-in on or off",
    responses=ADMIN_RESPONSES,
)
async def toggle_google_auth(
    content: ToggleGoogleAuthBody,
    admin: SystemAdminDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> MessageResponse:
    return await google_config_service.toggle(
        enabled=content.enabled,
        admin_user_id=admin.user.user_id,
        conn=conn,
        log=log,
    )


@admin_routes.post(
    "/google-auth/test",
    summary="Check Google client credentials",
    description=(
        "Asks Google whether it accepts the client id and secret. Omit the "
        "secret to check the stored one. Nothing is saved."
    ),
    responses=ADMIN_RESPONSES,
)
async def check_google_credentials(
    content: CheckGoogleCredentialsBody,
    admin: SystemAdminDependency,
    settings: SettingsDependency,
    provider: AuthProviderDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> CredentialCheckResponse:
    return await google_config_service.check_credentials(
        client_id=content.client_id,
        client_secret=content.client_secret,
        provider=provider,
        settings=settings,
        conn=conn,
        log=log.bind(admin_user_id=admin.user.user_id),
    )


@admin_routes.delete(
    "/google-auth",
    summary="Remove the stored Google configuration",
    description="The environment settings apply again afterwards.",
    responses=ADMIN_RESPONSES,
)
async def reset_google_auth_config(
    admin: SystemAdminDependency, conn: DatabaseDependency, log: LoggerDependency
) -> MessageResponse:
    return await google_config_service.reset(
        conn=conn, log=log.bind(admin_user_id=admin.user.user_id)
    )
