"""Trivedia CLI: database setup and user seeding.

Usage:
    trivedia init-db                                   # Create tables
    trivedia create-user --email a@x.com --username a \
        --first-name Ada --last-name Admin --role admin   # Seed a user

Both commands go through the same ConnectionManager and UserStore as
the API, so a seeded user is indistinguishable from a registered one.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
from typing import Optional

import click

from trivedia import __version__
from trivedia.auth.jwt import TokenService
from trivedia.auth.roles import Role
from trivedia.auth.store import UserStore
from trivedia.db.engine import ConnectionManager
from trivedia.db.models import Base
from trivedia.errors import DatabaseUnavailable, ValidationError
from trivedia.schemas.user import UserCreate
from trivedia.services.auth_service import AuthService

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _manager(database_url: Optional[str]) -> ConnectionManager:
    if database_url:
        return ConnectionManager.from_settings(database_url=database_url)
    return ConnectionManager.from_settings()


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="trivedia")
def main():
    """Trivedia: auth core administration."""


@main.command("init-db")
@click.option("--database-url", help="Override TRIVEDIA_DATABASE_URL")
def init_db(database_url: Optional[str]):
    """Create all tables that don't exist yet."""
    _run(_init_db(_manager(database_url)))
    click.secho("Database initialised", fg="green")


async def _init_db(manager: ConnectionManager):
    try:
        engine = await manager.ensure_connected()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except DatabaseUnavailable as e:
        raise click.ClickException(e.message) from e
    finally:
        await manager.reset()


@main.command("create-user")
@click.option("--email", required=True)
@click.option("--username", required=True)
@click.option("--first-name", required=True)
@click.option("--last-name", required=True)
@click.option(
    "--role",
    type=click.Choice([r.value for r in Role]),
    default=Role.VIEWER.value,
    show_default=True,
)
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--database-url", help="Override TRIVEDIA_DATABASE_URL")
def create_user(
    email: str,
    username: str,
    first_name: str,
    last_name: str,
    role: str,
    password: str,
    database_url: Optional[str],
):
    """Seed a user account with the given role."""
    try:
        body = UserCreate(
            email=email,
            username=username,
            first_name=first_name,
            last_name=last_name,
            password=password,
            role=role,
        )
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    user_id = _run(_create_user(_manager(database_url), body))
    click.secho(f"Created {body.role.value} {body.email} ({user_id})", fg="green")


async def _create_user(manager: ConnectionManager, body: UserCreate) -> str:
    try:
        async with manager.session() as db:
            service = AuthService(UserStore(db), TokenService.from_settings())
            user, _ = await service.register(body, role=body.role)
            return str(user.id)
    except (DatabaseUnavailable, ValidationError) as e:
        raise click.ClickException(e.message) from e
    finally:
        await manager.reset()
