"""
FastAPI app
"""

import asyncio
import contextlib
from importlib.metadata import version

from fastapi import FastAPI

from cellauth.service import sweeper as sweeper_service

from .admin import admin_routes
from .auth import auth_routes
from .dependencies import DATABASE_MANAGER, SETTINGS, logger
from .errors import add_exception_handlers
from .google import google_routes
from .pages import mock_routes, page_routes

settings = SETTINGS()


async def lifespan(app: FastAPI):
    app.settings = settings
    log = logger().bind(production=settings.production)

    if settings.create_tables:
        await DATABASE_MANAGER.create_all()
        await log.ainfo("api.lifespan.tables_created")

    sweeper = None

    if settings.run_sweeper:
        sweeper = asyncio.create_task(
            sweeper_service.run_periodically(
                manager=DATABASE_MANAGER, settings=settings, log=log
            )
        )

    yield

    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper

    await DATABASE_MANAGER.dispose()


app = FastAPI(
    lifespan=lifespan,
    title="cellauth API",
    summary=(
        "Sessions, Google sign-in, account linking and cross-device login codes "
        "for the cell group web application."
    ),
    version=version("cellauth"),
)

app = add_exception_handlers(app)

app.include_router(auth_routes, prefix="/api/auth")
app.include_router(google_routes, prefix="/api/auth/google")
app.include_router(admin_routes, prefix="/admin")
app.include_router(page_routes)

if settings.auth_provider == "mock":
    app.include_router(mock_routes)
