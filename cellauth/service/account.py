"""
Binding Google profiles to users: logging in with Google, and linking a
Google account to the user a session is already authenticated as.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from cellauth.config.settings import Settings
from cellauth.core.errors import (
    AlreadyConnectedError,
    EmailAlreadyExistsError,
    FeatureDisabledError,
    GoogleAccountInUseError,
    InvalidConversionError,
    NoGoogleAccountError,
    NotAuthenticatedError,
)
from cellauth.core.models import (
    ConnectResult,
    GoogleProfile,
    GoogleProfileResponse,
    LoginResult,
    NormalizedProfile,
)
from cellauth.core.timing import utcnow
from cellauth.core.user import AuthMethod, UserKind
from cellauth.core.uuid import UUID
from cellauth.database.user import User
from cellauth.service import session as session_service
from cellauth.service import user as user_service


def ensure_google_enabled(settings: Settings):
    if not settings.google_configured:
        raise FeatureDisabledError(
            "Google authentication is currently disabled or not configured"
        )


async def _email_owner(
    email: str, conn: AsyncSession, exclude: UUID | None = None
) -> User | None:
    try:
        owner = await user_service.read_by_email(email=email, conn=conn)
    except user_service.UserNotFound:
        return None

    if exclude is not None and owner.user_id == exclude:
        return None

    return owner


async def _google_owner(provider_account_id: str, conn: AsyncSession) -> User | None:
    try:
        return await user_service.read_by_google_id(
            provider_account_id=provider_account_id, conn=conn
        )
    except user_service.UserNotFound:
        return None


def _apply_google_profile(user: User, profile: GoogleProfile):
    normalized = profile.normalized()
    user.google_account_id = normalized.provider_account_id
    user.google_email = normalized.email
    user.google_picture = profile.picture
    user.google_last_logged_in = utcnow()


async def login_with_google(
    profile: GoogleProfile,
    session_id: UUID,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> LoginResult:
    """
    Find the user holding this Google account (or create one) and bind the
    session to them.

    Raises
    ------
    FeatureDisabledError
        If Google login is switched off.
    EmailAlreadyExistsError
        If the Google account is new to us but its email already belongs to
        another account. Accounts are never merged automatically.
    """
    ensure_google_enabled(settings)

    normalized = profile.normalized()
    log = log.bind(provider_account_id=normalized.provider_account_id)

    user = await _google_owner(normalized.provider_account_id, conn)
    created = False

    if user is not None:
        _apply_google_profile(user, profile)
        user.email = normalized.email
        user.kind = UserKind.REGISTERED.value
        conn.add(user)
        log = log.bind(user_id=user.user_id, user_created=False)
    else:
        if await _email_owner(normalized.email, conn) is not None:
            await log.ainfo("account.login.email_exists")
            raise EmailAlreadyExistsError(
                "An account with this email already exists with a different "
                "authentication method"
            )

        user = await user_service.create_registered(
            profile=normalized, conn=conn, log=log
        )
        _apply_google_profile(user, profile)
        conn.add(user)
        created = True
        log = log.bind(user_id=user.user_id, user_created=True)

    await session_service.bind(
        session_id=session_id,
        user=user,
        auth_method=AuthMethod.GOOGLE,
        conn=conn,
        log=log,
    )

    await log.ainfo("account.login.success")

    return LoginResult(success=True, user_id=user.user_id, created=created)


async def _check_link_conflicts(
    normalized: NormalizedProfile, user: User, conn: AsyncSession
):
    google_owner = await _google_owner(normalized.provider_account_id, conn)

    if google_owner is not None and google_owner.user_id != user.user_id:
        raise GoogleAccountInUseError()

    if await _email_owner(normalized.email, conn, exclude=user.user_id) is not None:
        raise EmailAlreadyExistsError()


async def convert_anonymous(
    user: User,
    profile: GoogleProfile,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> User:
    """
    Upgrade an anonymous user in place to a registered one carrying the
    Google profile. The user keeps its id, access level, and every session
    bound to it.

    Raises
    ------
    InvalidConversionError
        If the user is not anonymous.
    GoogleAccountInUseError
        If the Google account already belongs to someone.
    EmailAlreadyExistsError
        If another user already has the profile's email.
    """
    if not user.is_anonymous:
        raise InvalidConversionError()

    normalized = profile.normalized()

    await _check_link_conflicts(normalized, user, conn)

    user.kind = UserKind.REGISTERED.value
    user.user_name = await user_service.unique_user_name(
        user_service.user_name_from_email(normalized.email), conn
    )
    user.email = normalized.email
    user.display_name = normalized.display_name
    _apply_google_profile(user, profile)

    conn.add(user)

    await log.ainfo(
        "account.converted", user_id=user.user_id, user_name=user.user_name
    )

    return user


async def connect_google(
    profile: GoogleProfile,
    session_id: UUID,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> ConnectResult:
    """
    Link a Google account to the user the session is authenticated as.
    Anonymous users are converted to registered users as a side effect.
    Nothing is written when linking is refused.

    Raises
    ------
    FeatureDisabledError
        If Google login is switched off.
    NotAuthenticatedError
        If the session is not bound to a user.
    AlreadyConnectedError
        If the user already has a different Google account linked.
    GoogleAccountInUseError
        If the Google account is linked to another user.
    EmailAlreadyExistsError
        If the profile's email belongs to another user.
    """
    ensure_google_enabled(settings)

    user = await session_service.current_user(session_id=session_id, conn=conn)
    normalized = profile.normalized()

    log = log.bind(
        user_id=user.user_id, provider_account_id=normalized.provider_account_id
    )

    if user.is_anonymous:
        await convert_anonymous(user=user, profile=profile, conn=conn, log=log)
        await session_service.bind(
            session_id=session_id,
            user=user,
            auth_method=AuthMethod.GOOGLE,
            conn=conn,
            log=log,
        )
        await log.ainfo("account.connect.converted")

        return ConnectResult(
            success=True,
            message="Anonymous account converted and Google account connected successfully",
            connected_email=normalized.email,
            converted=True,
        )

    if user.google_account_id is not None:
        if user.google_account_id == normalized.provider_account_id:
            await log.ainfo("account.connect.already_connected")
            return ConnectResult(
                success=True,
                message="Google account is already connected to this user",
                connected_email=normalized.email,
                already_connected=True,
            )

        await log.ainfo("account.connect.different_account")
        raise AlreadyConnectedError()

    await _check_link_conflicts(normalized, user, conn)

    _apply_google_profile(user, profile)
    user.email = user.email or normalized.email
    conn.add(user)

    await log.ainfo("account.connect.success")

    return ConnectResult(
        success=True,
        message="Google account connected successfully",
        connected_email=normalized.email,
    )


async def disconnect_google(
    session_id: UUID, conn: AsyncSession, log: FilteringBoundLogger
) -> User:
    """
    Remove the linked Google account while keeping the user.

    Raises
    ------
    NotAuthenticatedError
        If the session is not bound to a user.
    NoGoogleAccountError
        If nothing is linked.
    """
    user = await session_service.current_user(session_id=session_id, conn=conn)

    if user.google_account_id is None:
        raise NoGoogleAccountError()

    log = log.bind(user_id=user.user_id, provider_account_id=user.google_account_id)

    user.google_account_id = None
    user.google_email = None
    user.google_picture = None
    conn.add(user)

    session = await session_service.read(session_id=session_id, conn=conn)

    if session is not None and session.auth_method == AuthMethod.GOOGLE.value:
        session.auth_method = None
        conn.add(session)

    await log.ainfo("account.disconnected")

    return user


async def get_google_profile(
    session_id: UUID, conn: AsyncSession
) -> GoogleProfileResponse | None:
    try:
        user = await session_service.current_user(session_id=session_id, conn=conn)
    except NotAuthenticatedError:
        return None

    if user.google_account_id is None:
        return None

    return GoogleProfileResponse(
        name=user.display_name,
        email=user.google_email,
        picture=user.google_picture,
        provider_account_id=user.google_account_id,
    )
