"""
Tests the provider callback for popup logins and connects, and the direct
legacy login.
"""

import asyncio
from datetime import timedelta

import pytest

from cellauth.core.auth import AuthenticatedState
from cellauth.core.errors import InvalidStateError
from cellauth.core.models import RequestKind, RequestStatus
from cellauth.core.state import FlowType, new_state
from cellauth.core.user import UserKind
from cellauth.core.uuid import uuid4
from cellauth.service import flow as flow_service
from cellauth.service import login as login_service
from cellauth.service import session as session_service
from cellauth.service.mock import MockProvider


async def _start(
    kind, session_id, session_manager, settings, provider, logger
) -> tuple:
    """
    Create a request and authorize it, as the login page does.
    """
    async with session_manager.session() as conn:
        async with conn.begin():
            request = await login_service.create(
                kind=kind,
                session_id=session_id,
                redirect_uri=settings.popup_redirect_uri,
                settings=settings,
                conn=conn,
                log=logger,
            )
            state = new_state(FlowType(kind.value), request.request_id).encode()
            await login_service.authorize(
                request=request,
                state_token=state,
                provider=provider,
                settings=settings,
                conn=conn,
                log=logger,
            )

    return request.request_id, state


async def _callback(session_manager, settings, provider, logger, **kwargs):
    arguments = dict(code=None, state=None, error=None, error_description=None)
    arguments.update(kwargs)

    async with session_manager.session() as conn:
        async with conn.begin():
            return await flow_service.handle_callback(
                **arguments,
                provider=provider,
                settings=settings,
                conn=conn,
                log=logger,
            )


async def _status(kind, request_id, session_manager):
    async with session_manager.session() as conn:
        async with conn.begin():
            request = await conn.get(login_service.table_for(kind), request_id)
            return login_service.snapshot(request)


@pytest.mark.asyncio(loop_scope="session")
async def test_popup_login(
    server_settings, session_manager, logger, provider, profile_factory
):
    session_id = uuid4()
    request_id, state = await _start(
        RequestKind.LOGIN, session_id, session_manager, server_settings, provider, logger
    )

    code = uuid4().hex
    profile = profile_factory()
    provider.register(code, profile)

    result = await _callback(
        session_manager, server_settings, provider, logger, code=code, state=state
    )

    assert result.success
    assert result.flow_type == FlowType.LOGIN

    data = await _status(RequestKind.LOGIN, request_id, session_manager)
    assert data.status == RequestStatus.COMPLETED
    assert data.completed_at is not None

    async with session_manager.session() as conn:
        async with conn.begin():
            auth = await session_service.get_state(session_id=session_id, conn=conn)

    assert isinstance(auth, AuthenticatedState)
    assert auth.user.linked_account.provider_account_id == profile.id

    # The popup reloading the callback does not exchange again.
    exchanges = provider.exchanges

    result = await _callback(
        session_manager, server_settings, provider, logger, code=code, state=state
    )

    assert result.success
    assert provider.exchanges == exchanges


@pytest.mark.asyncio(loop_scope="session")
async def test_tampered_state_leaves_request_pending(
    server_settings, session_manager, logger, provider
):
    request_id, state = await _start(
        RequestKind.LOGIN, uuid4(), session_manager, server_settings, provider, logger
    )

    # Flip one character of the nonce.
    nonce_at = state.index('"nonce":"') + len('"nonce":"')
    flipped = "A" if state[nonce_at] != "A" else "B"
    tampered = state[:nonce_at] + flipped + state[nonce_at + 1 :]

    exchanges = provider.exchanges

    result = await _callback(
        session_manager,
        server_settings,
        provider,
        logger,
        code=uuid4().hex,
        state=tampered,
    )

    assert not result.success
    assert result.error_code == InvalidStateError.code
    assert provider.exchanges == exchanges

    data = await _status(RequestKind.LOGIN, request_id, session_manager)
    assert data.status == RequestStatus.PENDING

    for garbage in [None, "", "not json", '{"flow_type":"login"}']:
        result = await _callback(
            session_manager,
            server_settings,
            provider,
            logger,
            code=uuid4().hex,
            state=garbage,
        )

        assert result.error_code == InvalidStateError.code


@pytest.mark.asyncio(loop_scope="session")
async def test_cancelled_at_provider(
    server_settings, session_manager, logger, provider
):
    request_id, state = await _start(
        RequestKind.LOGIN, uuid4(), session_manager, server_settings, provider, logger
    )

    result = await _callback(
        session_manager,
        server_settings,
        provider,
        logger,
        state=state,
        error="access_denied",
    )

    assert not result.success
    assert result.error_code == "OAUTH_ERROR"
    assert result.message == "You cancelled the authentication process."

    data = await _status(RequestKind.LOGIN, request_id, session_manager)
    assert data.status == RequestStatus.FAILED
    assert data.error == "You cancelled the authentication process."


@pytest.mark.asyncio(loop_scope="session")
async def test_missing_code_fails_request(
    server_settings, session_manager, logger, provider
):
    request_id, state = await _start(
        RequestKind.LOGIN, uuid4(), session_manager, server_settings, provider, logger
    )

    result = await _callback(
        session_manager, server_settings, provider, logger, state=state
    )

    assert result.error_code == "OAUTH_ERROR"

    data = await _status(RequestKind.LOGIN, request_id, session_manager)
    assert data.status == RequestStatus.FAILED

    # A late retry sees the stored failure, and nothing is exchanged.
    exchanges = provider.exchanges

    result = await _callback(
        session_manager,
        server_settings,
        provider,
        logger,
        code=uuid4().hex,
        state=state,
    )

    assert not result.success
    assert result.error == data.error
    assert provider.exchanges == exchanges


@pytest.mark.asyncio(loop_scope="session")
async def test_reused_code(server_settings, session_manager, logger, provider):
    code = uuid4().hex
    provider.used_codes.add(code)

    request_id, state = await _start(
        RequestKind.LOGIN, uuid4(), session_manager, server_settings, provider, logger
    )

    result = await _callback(
        session_manager, server_settings, provider, logger, code=code, state=state
    )

    assert not result.success
    assert result.error_code == "OAUTH_ERROR"

    data = await _status(RequestKind.LOGIN, request_id, session_manager)
    assert data.status == RequestStatus.FAILED


@pytest.mark.asyncio(loop_scope="session")
async def test_expired_request_is_not_settled(
    server_settings, session_manager, logger, provider
):
    request_id, state = await _start(
        RequestKind.LOGIN, uuid4(), session_manager, server_settings, provider, logger
    )

    async with session_manager.session() as conn:
        async with conn.begin():
            request = await login_service.read(
                kind=RequestKind.LOGIN, request_id=request_id, conn=conn
            )
            request.expires_at = request.created_at - timedelta(seconds=1)
            conn.add(request)

    result = await _callback(
        session_manager,
        server_settings,
        provider,
        logger,
        code=uuid4().hex,
        state=state,
    )

    assert result.error_code == InvalidStateError.code

    data = await _status(RequestKind.LOGIN, request_id, session_manager)
    assert data.status == RequestStatus.FAILED
    assert "expired" in data.error


@pytest.mark.asyncio(loop_scope="session")
async def test_popup_connect_converts_anonymous(
    server_settings, session_manager, logger, provider, profile_factory
):
    session_id = uuid4()

    async with session_manager.session() as conn:
        async with conn.begin():
            user = await session_service.login_anonymous(
                session_id=session_id, settings=server_settings, conn=conn, log=logger
            )
            USER_ID = user.user_id

    request_id, state = await _start(
        RequestKind.CONNECT, session_id, session_manager, server_settings, provider, logger
    )

    code = uuid4().hex
    provider.register(code, profile_factory())

    result = await _callback(
        session_manager, server_settings, provider, logger, code=code, state=state
    )

    assert result.success
    assert result.flow_type == FlowType.CONNECT

    async with session_manager.session() as conn:
        async with conn.begin():
            auth = await session_service.get_state(session_id=session_id, conn=conn)

    assert auth.user.user_id == USER_ID
    assert auth.user.kind == UserKind.REGISTERED

    data = await _status(RequestKind.CONNECT, request_id, session_manager)
    assert data.status == RequestStatus.COMPLETED


@pytest.mark.asyncio(loop_scope="session")
async def test_connect_after_logout(
    server_settings, session_manager, logger, provider
):
    session_id = uuid4()

    async with session_manager.session() as conn:
        async with conn.begin():
            await session_service.login_anonymous(
                session_id=session_id, settings=server_settings, conn=conn, log=logger
            )

    request_id, state = await _start(
        RequestKind.CONNECT, session_id, session_manager, server_settings, provider, logger
    )

    async with session_manager.session() as conn:
        async with conn.begin():
            await session_service.logout(session_id=session_id, conn=conn, log=logger)

    exchanges = provider.exchanges

    result = await _callback(
        session_manager,
        server_settings,
        provider,
        logger,
        code=uuid4().hex,
        state=state,
    )

    assert not result.success
    assert result.error_code == "UNAUTHORIZED"
    assert provider.exchanges == exchanges

    data = await _status(RequestKind.CONNECT, request_id, session_manager)
    assert data.status == RequestStatus.FAILED


@pytest.mark.asyncio(loop_scope="session")
async def test_legacy_login(
    server_settings, session_manager, logger, provider, profile_factory
):
    session_id = uuid4()
    code = uuid4().hex
    profile = profile_factory()
    provider.register(code, profile)

    async with session_manager.session() as conn:
        async with conn.begin():
            result = await flow_service.legacy_login(
                code=code,
                state=new_state(FlowType.LEGACY_LOGIN).encode(),
                redirect_uri=server_settings.legacy_redirect_uri,
                session_id=session_id,
                provider=provider,
                settings=server_settings,
                conn=conn,
                log=logger,
            )

    assert result.success
    assert result.created

    # A popup state cannot be replayed through the legacy endpoint.
    with pytest.raises(InvalidStateError):
        async with session_manager.session() as conn:
            async with conn.begin():
                await flow_service.legacy_login(
                    code=uuid4().hex,
                    state=new_state(FlowType.LOGIN, uuid4()).encode(),
                    redirect_uri=server_settings.legacy_redirect_uri,
                    session_id=session_id,
                    provider=provider,
                    settings=server_settings,
                    conn=conn,
                    log=logger,
                )

    with pytest.raises(login_service.RedirectInvalidError):
        async with session_manager.session() as conn:
            async with conn.begin():
                await flow_service.legacy_login(
                    code=uuid4().hex,
                    state=new_state(FlowType.LEGACY_LOGIN).encode(),
                    redirect_uri="https://evil.example.com/",
                    session_id=session_id,
                    provider=provider,
                    settings=server_settings,
                    conn=conn,
                    log=logger,
                )


class HeldProvider(MockProvider):
    """
    Holds every exchange until `release` is set, so that a second callback
    can arrive while the first is still talking to the provider.
    """

    def __init__(self, profile):
        super().__init__(profile)
        self.holding = asyncio.Event()
        self.release = asyncio.Event()

    async def exchange_code(self, code, redirect_uri, settings, log):
        self.holding.set()
        await self.release.wait()
        return await super().exchange_code(
            code=code, redirect_uri=redirect_uri, settings=settings, log=log
        )


@pytest.mark.asyncio(loop_scope="session")
async def test_concurrent_duplicate_callbacks(
    server_settings, session_manager, logger, profile_factory
):
    provider = HeldProvider(profile=profile_factory())
    session_id = uuid4()

    request_id, state = await _start(
        RequestKind.LOGIN, session_id, session_manager, server_settings, provider, logger
    )

    code = uuid4().hex

    first = asyncio.create_task(
        _callback(
            session_manager, server_settings, provider, logger, code=code, state=state
        )
    )
    await asyncio.wait_for(provider.holding.wait(), timeout=5)

    # The same redirect again while the first is mid-exchange.
    second = asyncio.create_task(
        _callback(
            session_manager, server_settings, provider, logger, code=code, state=state
        )
    )
    await asyncio.sleep(0.1)

    provider.release.set()
    results = await asyncio.wait_for(asyncio.gather(first, second), timeout=10)

    assert [result.success for result in results] == [True, True]
    assert provider.exchanges == 1

    data = await _status(RequestKind.LOGIN, request_id, session_manager)
    assert data.status == RequestStatus.COMPLETED
    assert data.error is None

    async with session_manager.session() as conn:
        async with conn.begin():
            auth = await session_service.get_state(session_id=session_id, conn=conn)

    assert isinstance(auth, AuthenticatedState)
