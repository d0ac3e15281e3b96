"""
Live updates for login and connect requests.

When a transaction that settles a request commits, the new snapshot is
handed to every open stream watching that request. Streams are held in
process; a deployment with several workers has to pin a request's callback
and its watchers to the same worker, or fall back to polling.
"""

import asyncio
import json
from collections import defaultdict
from collections.abc import AsyncIterator
from datetime import timedelta

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from cellauth.core.models import RequestData, RequestKind
from cellauth.core.timing import ensure_utc, utcnow
from cellauth.core.uuid import UUID

PENDING_SNAPSHOTS = "cellauth.pending_snapshots"


def format_event(event_type: str, data: dict) -> str:
    return f"event: {event_type}\ndata: {json.dumps(data)}\n\n"


class RequestEvents:
    """
    Fan-out of request snapshots to the streams subscribed to them.
    """

    def __init__(self):
        self._queues: dict[tuple[str, UUID], set[asyncio.Queue]] = defaultdict(set)

    def subscribe(self, kind: RequestKind, request_id: UUID) -> asyncio.Queue:
        queue = asyncio.Queue()
        self._queues[(RequestKind(kind).value, request_id)].add(queue)
        return queue

    def unsubscribe(self, kind: RequestKind, request_id: UUID, queue: asyncio.Queue):
        key = (RequestKind(kind).value, request_id)
        queues = self._queues.get(key)

        if queues is None:
            return

        queues.discard(queue)

        if not queues:
            del self._queues[key]

    def subscribers(self, kind: RequestKind, request_id: UUID) -> int:
        return len(self._queues.get((RequestKind(kind).value, request_id), ()))

    def publish(self, snapshot: RequestData):
        for queue in self._queues.get((snapshot.kind.value, snapshot.id), ()):
            queue.put_nowait(snapshot)

    async def stream(
        self,
        initial: RequestData,
        queue: asyncio.Queue,
        keepalive: timedelta,
    ) -> AsyncIterator[str]:
        """
        Server-sent events for one request: the current snapshot, then every
        change until the request settles. A request nobody settles is
        reported failed when it expires. Comment lines are sent while idle so
        that proxies keep the connection open.
        """
        snapshot = initial.observed()

        try:
            yield format_event("snapshot", snapshot.model_dump(mode="json"))

            while not snapshot.status.terminal:
                remaining = (ensure_utc(snapshot.expires_at) - utcnow()).total_seconds()
                wait = min(max(remaining, 0.0) + 0.01, keepalive.total_seconds())

                try:
                    update = await asyncio.wait_for(queue.get(), timeout=wait)
                except asyncio.TimeoutError:
                    expired = snapshot.observed()

                    if expired is snapshot:
                        yield ": keepalive\n\n"
                        continue

                    update = expired

                snapshot = update.observed()
                yield format_event("snapshot", snapshot.model_dump(mode="json"))
        finally:
            self.unsubscribe(kind=initial.kind, request_id=initial.id, queue=queue)


REQUEST_EVENTS = RequestEvents()


def publish_on_commit(snapshot: RequestData, conn: AsyncSession):
    """
    Queue a snapshot for publication once `conn`'s transaction commits. A
    rollback discards it.
    """
    conn.info.setdefault(PENDING_SNAPSHOTS, []).append(snapshot)


@event.listens_for(Session, "after_commit")
def _publish_committed(session: Session):
    for snapshot in session.info.pop(PENDING_SNAPSHOTS, []):
        REQUEST_EVENTS.publish(snapshot)


@event.listens_for(Session, "after_rollback")
def _discard_rolled_back(session: Session):
    session.info.pop(PENDING_SNAPSHOTS, None)
