"""
Removal of expired login requests, connect requests and login codes.

Readers never rely on the sweeper: anything past its expiry is already
treated as expired when read. The sweep only keeps the tables small.
"""

import asyncio
from datetime import datetime

from sqlalchemy import and_, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from cellauth.config.managers import AsyncSessionManager
from cellauth.config.settings import Settings
from cellauth.core.models import RequestStatus, SweepPassResult, SweepResult
from cellauth.core.timing import utcnow
from cellauth.database.login import ConnectRequest, LoginCode, LoginRequest


async def _sweep_requests(
    table: type[LoginRequest] | type[ConnectRequest],
    settings: Settings,
    now: datetime,
    conn: AsyncSession,
) -> SweepPassResult:
    condition = and_(
        table.expires_at < now, table.status != RequestStatus.COMPLETED.value
    )

    if settings.completed_request_retention is not None:
        retain_after = now - settings.completed_request_retention
        condition = or_(
            condition,
            and_(
                table.status == RequestStatus.COMPLETED.value,
                or_(
                    table.completed_at < retain_after,
                    and_(
                        table.completed_at.is_(None), table.created_at < retain_after
                    ),
                ),
            ),
        )

    result = await conn.execute(delete(table).where(condition))

    return SweepPassResult(deleted_count=result.rowcount)


async def _sweep_codes(now: datetime, conn: AsyncSession) -> SweepPassResult:
    result = await conn.execute(delete(LoginCode).where(LoginCode.expires_at < now))

    return SweepPassResult(deleted_count=result.rowcount)


async def sweep(
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    now: datetime | None = None,
) -> SweepResult:
    """
    Run the three cleanup passes. They are independent: a record kept by one
    pass has no bearing on the others.

    Completed login and connect requests are kept unless
    `completed_request_retention` is set, in which case they are removed
    once they have been settled for longer than that.
    """
    now = now or utcnow()

    result = SweepResult(
        success=True,
        login_requests=await _sweep_requests(LoginRequest, settings, now, conn),
        connect_requests=await _sweep_requests(ConnectRequest, settings, now, conn),
        login_codes=await _sweep_codes(now, conn),
    )

    await log.ainfo(
        "sweeper.completed",
        login_requests=result.login_requests.deleted_count,
        connect_requests=result.connect_requests.deleted_count,
        login_codes=result.login_codes.deleted_count,
        deleted_count=result.deleted_count,
    )

    return result


async def run_periodically(
    manager: AsyncSessionManager, settings: Settings, log: FilteringBoundLogger
):
    """
    Sweep every `settings.sweep_interval` until cancelled. Each sweep runs in
    its own transaction; a failed sweep is logged and retried on the next
    tick.
    """
    interval = settings.sweep_interval.total_seconds()
    log = log.bind(sweep_interval=interval)

    await log.ainfo("sweeper.started")

    while True:
        await asyncio.sleep(interval)

        try:
            async with manager.session() as conn:
                async with conn.begin():
                    await sweep(settings=settings, conn=conn, log=log)
        except Exception as e:
            await log.aexception("sweeper.failed", error=str(e))
