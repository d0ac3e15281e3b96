"""
Tests following a request until it settles.
"""

import asyncio
from datetime import timedelta

import pytest

from cellauth.core.models import RequestData, RequestKind, RequestStatus
from cellauth.core.timing import utcnow
from cellauth.core.uuid import uuid4
from cellauth.toolkit.observer import (
    ObservationOutcome,
    Popup,
    QueueSubscription,
    RequestObserver,
    observe_request,
)


class FakePopup(Popup):
    def __init__(self):
        self.is_closed = False

    @property
    def closed(self) -> bool:
        return self.is_closed


def snapshot(status: RequestStatus, error: str | None = None) -> RequestData:
    now = utcnow()

    return RequestData(
        id=uuid4(),
        kind=RequestKind.LOGIN,
        status=status,
        error=error,
        redirect_uri="http://localhost:8000/api/auth/google/callback",
        created_at=now,
        expires_at=now + timedelta(minutes=15),
    )


@pytest.mark.asyncio(loop_scope="session")
async def test_completed():
    subscription = QueueSubscription()
    subscription.push(snapshot(RequestStatus.PENDING))
    subscription.push(snapshot(RequestStatus.COMPLETED))

    result = await observe_request(subscription)

    assert result.outcome == ObservationOutcome.COMPLETED
    assert result.request.status == RequestStatus.COMPLETED
    assert result.error is None
    assert not result.popup_closed


@pytest.mark.asyncio(loop_scope="session")
async def test_failed():
    subscription = QueueSubscription()
    subscription.push(
        snapshot(RequestStatus.FAILED, error="You cancelled the authentication process.")
    )

    result = await observe_request(subscription)

    assert result.outcome == ObservationOutcome.FAILED
    assert result.error == "You cancelled the authentication process."


@pytest.mark.asyncio(loop_scope="session")
async def test_closing_the_popup_does_not_end_observation():
    subscription = QueueSubscription()
    popup = FakePopup()
    noticed = asyncio.Event()

    observer = RequestObserver(
        subscription=subscription,
        popup=popup,
        on_popup_closed=noticed.set,
        popup_check_interval=timedelta(milliseconds=10),
    )
    task = asyncio.create_task(observer.run())

    subscription.push(snapshot(RequestStatus.PENDING))
    popup.is_closed = True

    await asyncio.wait_for(noticed.wait(), timeout=5)

    assert observer.popup_closed
    assert not task.done()

    # The callback may still settle the request after the popup closed.
    subscription.push(snapshot(RequestStatus.COMPLETED))
    result = await asyncio.wait_for(task, timeout=5)

    assert result.outcome == ObservationOutcome.COMPLETED
    assert result.popup_closed


@pytest.mark.asyncio(loop_scope="session")
async def test_cancelled():
    subscription = QueueSubscription()
    observer = RequestObserver(subscription=subscription)
    task = asyncio.create_task(observer.run())

    subscription.push(snapshot(RequestStatus.PENDING))
    await asyncio.sleep(0.01)

    await observer.close()
    result = await asyncio.wait_for(task, timeout=5)

    assert result.outcome == ObservationOutcome.CANCELLED
    assert result.request.status == RequestStatus.PENDING

    # Late updates are dropped.
    subscription.push(snapshot(RequestStatus.COMPLETED))
