"""
Watching a login or connect request from the tab that started it.

The tab consumes snapshots of the request from a `Subscription` until the
request settles. `StreamSubscription` is pushed every change over the
request's event stream; `PollingSubscription` re-reads the request on an
interval and is only for clients that cannot hold a stream open.

Alongside, a short local timer notices when the popup is closed so the tab
can re-enable its controls. A request that never settles is ended by its
own expiry, which the server reports as `failed`.
"""

import abc
import asyncio
import contextlib
from collections.abc import Callable
from datetime import timedelta
from enum import Enum

import httpx
from pydantic import BaseModel

from cellauth.core.errors import AuthFailure
from cellauth.core.models import RequestData, RequestKind, RequestStatus
from cellauth.core.uuid import UUID


class Subscription(abc.ABC):
    """
    A live view of one request: an async iterator of snapshots that ends
    once `close` is called.
    """

    def __aiter__(self):
        return self

    @abc.abstractmethod
    async def __anext__(self) -> RequestData:
        raise NotImplementedError

    @abc.abstractmethod
    async def close(self):
        raise NotImplementedError


class QueueSubscription(Subscription):
    """
    Push-based subscription: whatever delivers updates calls `push`.
    """

    def __init__(self):
        self._queue: asyncio.Queue[RequestData | None] = asyncio.Queue()
        self._closed = False

    def push(self, snapshot: RequestData):
        if not self._closed:
            self._queue.put_nowait(snapshot)

    async def __anext__(self) -> RequestData:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration

        snapshot = await self._queue.get()

        if snapshot is None:
            raise StopAsyncIteration

        return snapshot

    async def close(self):
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)


class StreamSubscription(QueueSubscription):
    """
    Relays the request's server-sent event stream into the queue. The
    stream is opened on first iteration and ends by itself once the request
    settles. If it cannot be opened or breaks off, iteration raises that
    error after any snapshots already received.
    """

    def __init__(self, client, kind: RequestKind, request_id: UUID):
        super().__init__()
        self.client = client
        self.kind = RequestKind(kind)
        self.request_id = request_id
        self._relay: asyncio.Task | None = None
        self._error: Exception | None = None

    async def _run(self):
        try:
            async for snapshot in self.client.watch_request(
                kind=self.kind, request_id=self.request_id
            ):
                self.push(snapshot)
        except (AuthFailure, httpx.HTTPError) as e:
            self._error = e
        finally:
            await super().close()

    async def __anext__(self) -> RequestData:
        if self._relay is None:
            self._relay = asyncio.create_task(self._run())

        try:
            return await super().__anext__()
        except StopAsyncIteration:
            if self._error is not None:
                raise self._error

            raise

    async def close(self):
        await super().close()

        if self._relay is not None and not self._relay.done():
            self._relay.cancel()

            with contextlib.suppress(asyncio.CancelledError):
                await self._relay


class PollingSubscription(Subscription):
    """
    Re-reads the request over HTTP, yielding only when it changed.
    """

    def __init__(
        self,
        client,
        kind: RequestKind,
        request_id: UUID,
        interval: timedelta = timedelta(seconds=1),
    ):
        self.client = client
        self.kind = RequestKind(kind)
        self.request_id = request_id
        self.interval = interval
        self._last: RequestData | None = None
        self._closed = asyncio.Event()

    async def __anext__(self) -> RequestData:
        while not self._closed.is_set():
            snapshot = await self.client.read_request(
                kind=self.kind, request_id=self.request_id
            )

            if snapshot != self._last:
                self._last = snapshot
                return snapshot

            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(
                    self._closed.wait(), timeout=self.interval.total_seconds()
                )

        raise StopAsyncIteration

    async def close(self):
        self._closed.set()


class Popup(abc.ABC):
    """
    The secondary window showing the provider's consent screen.
    """

    @property
    @abc.abstractmethod
    def closed(self) -> bool:
        raise NotImplementedError


class ObservationOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ObservationResult(BaseModel):
    outcome: ObservationOutcome
    request: RequestData | None = None
    error: str | None = None
    popup_closed: bool = False


class RequestObserver:
    """
    Follows one request until it settles or the observer is closed.
    """

    def __init__(
        self,
        subscription: Subscription,
        popup: Popup | None = None,
        on_popup_closed: Callable[[], None] | None = None,
        popup_check_interval: timedelta = timedelta(seconds=1),
    ):
        self.subscription = subscription
        self.popup = popup
        self.on_popup_closed = on_popup_closed
        self.popup_check_interval = popup_check_interval
        self.popup_closed = False
        self.latest: RequestData | None = None
        self._closed = False

    async def _watch_popup(self):
        while not self._closed:
            await asyncio.sleep(self.popup_check_interval.total_seconds())

            if self.popup.closed:
                self.popup_closed = True

                if self.on_popup_closed is not None:
                    self.on_popup_closed()

                return

    def _result(self, outcome: ObservationOutcome) -> ObservationResult:
        return ObservationResult(
            outcome=outcome,
            request=self.latest,
            error=self.latest.error if self.latest is not None else None,
            popup_closed=self.popup_closed,
        )

    async def run(self) -> ObservationResult:
        timer = None

        if self.popup is not None:
            timer = asyncio.create_task(self._watch_popup())

        try:
            async for snapshot in self.subscription:
                self.latest = snapshot

                if snapshot.status == RequestStatus.COMPLETED:
                    return self._result(ObservationOutcome.COMPLETED)

                if snapshot.status == RequestStatus.FAILED:
                    return self._result(ObservationOutcome.FAILED)

                if self._closed:
                    break

            return self._result(ObservationOutcome.CANCELLED)
        finally:
            self._closed = True

            if timer is not None:
                timer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await timer

            await self.subscription.close()

    async def close(self):
        """
        Stop observing, for example when the user navigates away.
        """
        self._closed = True
        await self.subscription.close()


async def observe_request(
    subscription: Subscription,
    popup: Popup | None = None,
    on_popup_closed: Callable[[], None] | None = None,
    popup_check_interval: timedelta = timedelta(seconds=1),
) -> ObservationResult:
    observer = RequestObserver(
        subscription=subscription,
        popup=popup,
        on_popup_closed=on_popup_closed,
        popup_check_interval=popup_check_interval,
    )

    return await observer.run()
