"""Taskroom CLI — administrative commands that have no HTTP surface.

Usage:
    taskroom init-db                          # Create tables (dev; prod uses alembic)
    taskroom set-role alice@example.com ADMIN # Change an account's global role
    taskroom mint-token user-123 --email a@b  # Development credential (jwt mode)
    taskroom serve --reload                   # Run the API server
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import sys
from typing import Optional

import click

from taskroom import __version__

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

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


def _fail(message: str) -> None:
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="taskroom")
def main():
    """Taskroom — collaborative projects with live room updates."""


@main.command("init-db")
def init_db():
    """Create all tables directly from the ORM models."""

    async def _impl():
        from taskroom.db.engine import engine
        from taskroom.db.models import Base

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()

    _run(_impl())
    click.secho("Tables created.", fg="green")


@main.command("set-role")
@click.argument("email")
@click.argument("role")
def set_role(email: str, role: str):
    """Change the global role of the account registered with EMAIL."""
    from taskroom.errors import TaskroomError

    async def _impl():
        from taskroom.db.engine import async_session_factory, engine
        from taskroom.services.account_service import AccountService

        try:
            async with async_session_factory() as db:
                return await AccountService(db).set_role(email, role)
        finally:
            await engine.dispose()

    try:
        account = _run(_impl())
    except TaskroomError as e:
        _fail(e.message)
    click.secho(f"{account.email} is now {account.role}", fg="green")


@main.command("mint-token")
@click.argument("subject")
@click.option("--email", default=None, help="Email claim to embed")
@click.option("--minutes", type=int, default=None, help="Lifetime (default from settings)")
def mint_token(subject: str, email: Optional[str], minutes: Optional[int]):
    """Print a development credential for SUBJECT (jwt identity mode only)."""
    from taskroom.auth.jwt import create_access_token
    from taskroom.config import settings

    if settings.identity_mode != "jwt":
        _fail("mint-token only works with TASKROOM_IDENTITY_MODE=jwt")
    if settings.environment != "development":
        click.secho("Warning: minting a token outside development", fg="yellow", err=True)
    click.echo(create_access_token(subject, email=email, expires_minutes=minutes))


@main.command()
@click.option("--host", default=None, help="Bind address (default from settings)")
@click.option("--port", type=int, default=None, help="Port (default from settings)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API and WebSocket server."""
    import uvicorn

    from taskroom.config import settings

    uvicorn.run(
        "taskroom.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


if __name__ == "__main__":
    main()
