"""
A simple CLI for running the server and for one-off maintenance.
"""

import asyncio
import os
import sys

import uvicorn

USAGE = (
    "Supported commands are cellauth run dev [postgres], cellauth run prod, "
    "cellauth setup, cellauth sweep, or cellauth admin {user_id}"
)


def run_server(**kwargs):
    for k, v in kwargs.items():
        os.environ[k] = v

    uvicorn.run("cellauth.api.app:app", host="0.0.0.0")


def setup():
    from cellauth.config.settings import Settings

    settings = Settings()
    settings.sync_manager().create_all()


async def sweep_once():
    from structlog import get_logger

    from cellauth.config.settings import Settings
    from cellauth.service.sweeper import sweep

    settings = Settings()
    manager = settings.async_manager()

    async with manager.session() as conn:
        async with conn.begin():
            result = await sweep(settings=settings, conn=conn, log=get_logger())

    await manager.dispose()

    return result


async def make_admin(user_id: str):
    from structlog import get_logger

    from cellauth.config.settings import Settings
    from cellauth.core.user import AccessLevel
    from cellauth.core.uuid import UUID
    from cellauth.service import user as user_service

    settings = Settings()
    manager = settings.async_manager()

    async with manager.session() as conn:
        async with conn.begin():
            user = await user_service.set_access_level(
                user_id=UUID(user_id),
                access_level=AccessLevel.SYSTEM_ADMIN,
                conn=conn,
                log=get_logger(),
            )
            display_name = user.display_name

    await manager.dispose()

    return display_name


def main():
    try:
        command = sys.argv[1]
    except IndexError:
        print(USAGE)
        exit(1)

    if command == "run":
        try:
            mode = sys.argv[2]
        except IndexError:
            print(USAGE)
            exit(1)

        if mode == "dev":
            environment = {
                "CELLAUTH_DATABASE_TYPE": "sqlite",
                "CELLAUTH_DATABASE_DB": "cellauth-dev.db",
                "CELLAUTH_CREATE_TABLES": "True",
                "CELLAUTH_AUTH_PROVIDER": "mock",
                "CELLAUTH_GOOGLE_ENABLED": "True",
                "CELLAUTH_GOOGLE_CLIENT_ID": "development",
                "CELLAUTH_GOOGLE_CLIENT_SECRET": "development",
            }

            if sys.argv[3:4] == ["postgres"]:
                from testcontainers.postgres import PostgresContainer

                with PostgresContainer() as container:
                    print(
                        f"Container details: username={container.username}, password={container.password}, port={container.get_exposed_port(container.port)}"
                    )

                    environment.update(
                        {
                            "CELLAUTH_DATABASE_TYPE": "postgres",
                            "CELLAUTH_DATABASE_USER": container.username,
                            "CELLAUTH_DATABASE_PASSWORD": container.password,
                            "CELLAUTH_DATABASE_PORT": str(
                                container.get_exposed_port(container.port)
                            ),
                            "CELLAUTH_DATABASE_HOST": "localhost",
                            "CELLAUTH_DATABASE_DB": container.dbname,
                        }
                    )

                    run_server(**environment)
            else:
                run_server(**environment)

            exit(0)

        if mode == "prod":
            setup()
            run_server()
            exit(0)

        print(USAGE)
        exit(1)

    if command == "setup":
        setup()
        print("Setup complete, please restart the container or application")
        exit(0)

    if command == "sweep":
        result = asyncio.run(sweep_once())
        print(
            f"Deleted {result.login_requests.deleted_count} login requests, "
            f"{result.connect_requests.deleted_count} connect requests and "
            f"{result.login_codes.deleted_count} login codes"
        )
        exit(0)

    if command == "admin":
        try:
            user_id = sys.argv[2]
        except IndexError:
            print(USAGE)
            exit(1)

        display_name = asyncio.run(make_admin(user_id))
        print(f"{display_name} ({user_id}) is now a system administrator")
        exit(0)

    print(USAGE)
    exit(1)
