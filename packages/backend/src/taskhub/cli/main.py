"""TaskHub CLI — user-service maintenance and a terminal session client.

Usage:
    taskhub seed-roles                          # Create ADMIN / MEMBER if missing
    taskhub purge-tokens                        # Delete expired refresh tokens
    taskhub set-active bob@example.com --disable
    taskhub login alice@example.com             # Prompts for the password
    taskhub whoami                              # Current account (renews if needed)
    taskhub logout

Maintenance commands talk to the database directly (TASKHUB_DATABASE_URL).
Session commands talk to the gateway (TASKHUB_API_URL) and keep the token
pair in ~/.taskhub/session.json (TASKHUB_SESSION_FILE).
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys

import click
import httpx

from taskhub import __version__
from taskhub.client.session import RenewalFailed, SessionClient
from taskhub.client.storage import FileTokenStorage

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:3000"


def _api_url() -> str:
    return os.environ.get("TASKHUB_API_URL", DEFAULT_API_URL).rstrip("/")


def _session_client() -> SessionClient:
    """Session client pointed at the gateway, persisting to the session file."""
    return SessionClient(_api_url(), storage=FileTokenStorage())


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


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _fail(message: str) -> None:
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)


def _error_detail(response: httpx.Response) -> str:
    try:
        return response.json().get("detail", response.text)
    except ValueError:
        return response.text


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="taskhub")
def main():
    """TaskHub — account maintenance and session management."""


# ---------------------------------------------------------------------------
# taskhub seed-roles
# ---------------------------------------------------------------------------


@main.command("seed-roles")
def seed_roles():
    """Create the ADMIN and MEMBER roles if they don't exist."""
    _run(_seed_roles_impl())


async def _seed_roles_impl():
    from taskhub.auth.accounts import RoleService
    from taskhub.db.engine import async_session_factory

    async with async_session_factory() as db:
        created = await RoleService(db).seed_defaults()

    if created:
        click.secho(f"Created roles: {', '.join(created)}", fg="green")
    else:
        click.echo("Roles already present.")


# ---------------------------------------------------------------------------
# taskhub purge-tokens
# ---------------------------------------------------------------------------


@main.command("purge-tokens")
def purge_tokens():
    """Delete refresh tokens past their expiry (revoked or not)."""
    _run(_purge_tokens_impl())


async def _purge_tokens_impl():
    from taskhub.auth.refresh_store import RefreshTokenStore
    from taskhub.db.engine import async_session_factory

    async with async_session_factory() as db:
        deleted = await RefreshTokenStore(db).delete_expired()
        await db.commit()

    click.echo(f"Deleted {deleted} expired refresh token(s).")


# ---------------------------------------------------------------------------
# taskhub set-active
# ---------------------------------------------------------------------------


@main.command("set-active")
@click.argument("email")
@click.option("--enable/--disable", default=True, help="Enable (default) or disable")
def set_active(email: str, enable: bool):
    """Enable or disable an account. Disabling signs it out everywhere."""
    _run(_set_active_impl(email, enable))


async def _set_active_impl(email: str, enable: bool):
    from taskhub.auth.accounts import AccountRepository, AccountService
    from taskhub.db.engine import async_session_factory

    async with async_session_factory() as db:
        account = await AccountRepository(db).get_by_email(email)
        if account is None:
            _fail(f"No account with email {email}")
        await AccountService(db).set_active(account.id, enable)

    state = "enabled" if enable else "disabled"
    click.secho(f"{email} {state}.", fg="green" if enable else "yellow")


# ---------------------------------------------------------------------------
# taskhub login / whoami / logout
# ---------------------------------------------------------------------------


@main.command()
@click.argument("email")
@click.option("--password", prompt=True, hide_input=True)
def login(email: str, password: str):
    """Sign in through the gateway and store the session."""
    _run(_login_impl(email, password))


async def _login_impl(email: str, password: str):
    async with _session_client() as client:
        try:
            account = await client.login(email, password)
        except httpx.HTTPStatusError as e:
            _fail(_error_detail(e.response))
        except httpx.TransportError as e:
            _fail(f"Cannot reach {_api_url()}: {e}")

    name = account.get("profile", {}).get("displayName", email)
    click.secho(f"Signed in as {name} ({', '.join(account.get('roles', []))})", fg="green")


@main.command()
def whoami():
    """Show the signed-in account."""
    _run(_whoami_impl())


async def _whoami_impl():
    async with _session_client() as client:
        if not client.is_authenticated:
            _fail("Not signed in. Run `taskhub login EMAIL`.")
        try:
            account = await client.me()
        except RenewalFailed:
            _fail("Session expired. Run `taskhub login EMAIL`.")
        except httpx.HTTPStatusError as e:
            _fail(_error_detail(e.response))
        except httpx.TransportError as e:
            _fail(f"Cannot reach {_api_url()}: {e}")

    click.echo(_pretty_json(account))


@main.command()
def logout():
    """Revoke the stored session and forget it."""
    _run(_logout_impl())


async def _logout_impl():
    async with _session_client() as client:
        if not client.is_authenticated:
            click.echo("Not signed in.")
            return
        try:
            await client.logout()
        except (httpx.HTTPError, RenewalFailed) as e:
            # Local session is gone either way
            click.secho(f"Server logout failed: {e}", fg="yellow", err=True)

    click.echo("Signed out.")


if __name__ == "__main__":
    main()
