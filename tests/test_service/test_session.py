"""
Tests the session service and the auth state it resolves.
"""

import pytest

from cellauth.core.auth import AuthenticatedState, UnauthenticatedState
from cellauth.core.errors import FeatureDisabledError, NotAuthenticatedError
from cellauth.core.user import AuthMethod, UserKind
from cellauth.core.uuid import uuid4
from cellauth.service import session as session_service
from cellauth.service import user as user_service


@pytest.mark.asyncio(loop_scope="session")
async def test_unknown_session_is_unauthenticated(session_manager):
    session_id = uuid4()

    async with session_manager.session() as conn:
        async with conn.begin():
            state = await session_service.get_state(session_id=session_id, conn=conn)
            missing = await session_service.get_state(session_id=None, conn=conn)

    assert isinstance(state, UnauthenticatedState)
    assert state.reason == "session_not_found"
    assert state.session_id == session_id

    assert isinstance(missing, UnauthenticatedState)
    assert missing.reason == "session_not_found"


@pytest.mark.asyncio(loop_scope="session")
async def test_anonymous_login_then_logout(server_settings, session_manager, logger):
    session_id = uuid4()

    async with session_manager.session() as conn:
        async with conn.begin():
            user = await session_service.login_anonymous(
                session_id=session_id, settings=server_settings, conn=conn, log=logger
            )
            USER_ID = user.user_id

    async with session_manager.session() as conn:
        async with conn.begin():
            state = await session_service.get_state(session_id=session_id, conn=conn)

    assert isinstance(state, AuthenticatedState)
    assert state.user.user_id == USER_ID
    assert state.user.kind == UserKind.ANONYMOUS
    assert state.auth_method == AuthMethod.ANONYMOUS
    assert not state.is_system_admin

    async with session_manager.session() as conn:
        async with conn.begin():
            await session_service.logout(session_id=session_id, conn=conn, log=logger)

    async with session_manager.session() as conn:
        async with conn.begin():
            state = await session_service.get_state(session_id=session_id, conn=conn)

    assert isinstance(state, UnauthenticatedState)
    assert state.reason == "session_not_found"

    # Logging out twice is fine.
    async with session_manager.session() as conn:
        async with conn.begin():
            await session_service.logout(session_id=session_id, conn=conn, log=logger)


@pytest.mark.asyncio(loop_scope="session")
async def test_bind_replaces_previous_user(server_settings, session_manager, logger):
    session_id = uuid4()

    async with session_manager.session() as conn:
        async with conn.begin():
            first = await user_service.create_anonymous(conn=conn, log=logger)
            second = await user_service.create_anonymous(conn=conn, log=logger)

            await session_service.bind(
                session_id=session_id,
                user=first,
                auth_method=AuthMethod.ANONYMOUS,
                conn=conn,
                log=logger,
            )

            SECOND_ID = second.user_id

    async with session_manager.session() as conn:
        async with conn.begin():
            second = await user_service.read_by_id(user_id=SECOND_ID, conn=conn)
            await session_service.bind(
                session_id=session_id,
                user=second,
                auth_method=AuthMethod.LOGIN_CODE,
                conn=conn,
                log=logger,
            )

    async with session_manager.session() as conn:
        async with conn.begin():
            state = await session_service.get_state(session_id=session_id, conn=conn)

    assert isinstance(state, AuthenticatedState)
    assert state.user.user_id == SECOND_ID
    assert state.auth_method == AuthMethod.LOGIN_CODE


@pytest.mark.asyncio(loop_scope="session")
async def test_deleted_user_deauthorizes_session(
    server_settings, session_manager, logger
):
    session_id = uuid4()

    async with session_manager.session() as conn:
        async with conn.begin():
            user = await session_service.login_anonymous(
                session_id=session_id, settings=server_settings, conn=conn, log=logger
            )
            USER_ID = user.user_id

    async with session_manager.session() as conn:
        async with conn.begin():
            await user_service.delete(user_id=USER_ID, conn=conn, log=logger)

    async with session_manager.session() as conn:
        async with conn.begin():
            state = await session_service.get_state(session_id=session_id, conn=conn)

            with pytest.raises(NotAuthenticatedError):
                await session_service.current_user(session_id=session_id, conn=conn)

    assert isinstance(state, UnauthenticatedState)
    assert state.reason == "session_deauthorized"


@pytest.mark.asyncio(loop_scope="session")
async def test_anonymous_login_disabled(server_settings, session_manager, logger):
    settings = server_settings.model_copy(update={"disable_login": True})

    with pytest.raises(FeatureDisabledError):
        async with session_manager.session() as conn:
            async with conn.begin():
                await session_service.login_anonymous(
                    session_id=uuid4(), settings=settings, conn=conn, log=logger
                )


@pytest.mark.asyncio(loop_scope="session")
async def test_update_display_name(server_settings, session_manager, logger):
    async with session_manager.session() as conn:
        async with conn.begin():
            user = await user_service.create_anonymous(conn=conn, log=logger)
            USER_ID = user.user_id

    async with session_manager.session() as conn:
        async with conn.begin():
            with pytest.raises(user_service.InvalidNameError) as e:
                await user_service.update_display_name(
                    user_id=USER_ID, name="  ab  ", conn=conn, log=logger
                )

            assert e.value.reason == "name_too_short"

            with pytest.raises(user_service.InvalidNameError) as e:
                await user_service.update_display_name(
                    user_id=USER_ID, name="x" * 31, conn=conn, log=logger
                )

            assert e.value.reason == "name_too_long"

            await user_service.update_display_name(
                user_id=USER_ID, name="  Grace Hopper ", conn=conn, log=logger
            )

    async with session_manager.session() as conn:
        async with conn.begin():
            user = await user_service.read_by_id(user_id=USER_ID, conn=conn)
            assert user.display_name == "Grace Hopper"
