"""
Service layer for users
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from cellauth.core.errors import UserNotFoundError
from cellauth.core.models import NormalizedProfile
from cellauth.core.random import anonymous_name, name_suffix
from cellauth.core.timing import utcnow
from cellauth.core.user import AccessLevel, UserData, UserKind
from cellauth.core.uuid import UUID
from cellauth.database.user import User

MINIMUM_NAME_LENGTH = 3
MAXIMUM_NAME_LENGTH = 30


class UserNotFound(UserNotFoundError):
    pass


class InvalidNameError(Exception):
    def __init__(self, reason: str, message: str):
        self.reason = reason
        self.message = message
        super().__init__(message)


def user_name_from_email(email: str) -> str:
    return email.replace("@", "_").replace(".", "_").lower()


async def create_anonymous(conn: AsyncSession, log: FilteringBoundLogger) -> User:
    """
    Create a fresh anonymous user with a generated display name.
    """
    user = User(
        kind=UserKind.ANONYMOUS.value,
        display_name=anonymous_name(),
        access_level=AccessLevel.USER.value,
        created_at=utcnow(),
    )

    conn.add(user)
    await conn.flush()

    log = log.bind(user_id=user.user_id, display_name=user.display_name)
    await log.ainfo("user.anonymous_created")

    return user


async def unique_user_name(base: str, conn: AsyncSession) -> str:
    """
    Return `base` if no user holds it, otherwise `base` with a random numeric
    suffix.
    """
    while True:
        candidate = base
        existing = (
            await conn.execute(select(User).filter(User.user_name == candidate))
        ).scalar_one_or_none()

        if existing is None:
            return candidate

        base = f"{base}_{name_suffix()}"


async def create_registered(
    profile: NormalizedProfile, conn: AsyncSession, log: FilteringBoundLogger
) -> User:
    """
    Create a registered user from a provider profile.
    """
    current_time = utcnow()

    user = User(
        kind=UserKind.REGISTERED.value,
        display_name=profile.display_name,
        user_name=await unique_user_name(user_name_from_email(profile.email), conn),
        email=profile.email,
        access_level=AccessLevel.USER.value,
        google_account_id=profile.provider_account_id,
        google_email=profile.email,
        google_last_logged_in=current_time,
        created_at=current_time,
    )

    conn.add(user)
    await conn.flush()

    log = log.bind(user_id=user.user_id, user_name=user.user_name)
    await log.ainfo("user.registered_created")

    return user


async def read_by_id(user_id: UUID, conn: AsyncSession) -> User:
    res = await conn.get(User, user_id)

    if res is None:
        raise UserNotFound(f"User with ID {user_id} not found in the database")

    return res


async def read_by_google_id(provider_account_id: str, conn: AsyncSession) -> User:
    query = select(User).filter(User.google_account_id == provider_account_id)
    res = (await conn.execute(query)).scalar_one_or_none()

    if res is None:
        raise UserNotFound(
            f"User with Google account {provider_account_id} not found in the database"
        )

    return res


async def read_by_email(email: str, conn: AsyncSession) -> User:
    query = select(User).filter(func.lower(User.email) == email.strip().lower())
    res = (await conn.execute(query)).scalars().first()

    if res is None:
        raise UserNotFound("User with that email not found in the database")

    return res


async def get_user_list(conn: AsyncSession) -> list[UserData]:
    """
    Get a list of all users registered to the system.
    """
    query = select(User).order_by(User.created_at)
    res = (await conn.execute(query)).scalars().all()
    return [u.to_core() for u in res]


async def update_display_name(
    user_id: UUID, name: str, conn: AsyncSession, log: FilteringBoundLogger
) -> User:
    """
    Raises
    ------
    InvalidNameError
        When the trimmed name is shorter than 3 or longer than 30 characters.
    UserNotFound
        When the user no longer exists.
    """
    name = name.strip()

    if len(name) < MINIMUM_NAME_LENGTH:
        raise InvalidNameError(
            "name_too_short",
            f"Name must be at least {MINIMUM_NAME_LENGTH} characters long",
        )

    if len(name) > MAXIMUM_NAME_LENGTH:
        raise InvalidNameError(
            "name_too_long",
            f"Name must be at most {MAXIMUM_NAME_LENGTH} characters long",
        )

    user = await read_by_id(user_id=user_id, conn=conn)
    user.display_name = name
    conn.add(user)

    await log.ainfo("user.name_updated", user_id=user_id)

    return user


async def set_access_level(
    user_id: UUID,
    access_level: AccessLevel,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> User:
    user = await read_by_id(user_id=user_id, conn=conn)
    user.access_level = AccessLevel(access_level).value
    conn.add(user)

    log = log.bind(user_id=user_id, access_level=user.access_level)
    await log.ainfo("user.access_level_set")

    return user


async def delete(user_id: UUID, conn: AsyncSession, log: FilteringBoundLogger):
    """
    Deletes the user. Sessions bound to them stop authenticating; their
    codes and connect requests go with them.
    """
    user = await read_by_id(user_id=user_id, conn=conn)

    await conn.delete(user)

    await log.ainfo("user.deleted", user_id=user_id)

    return
