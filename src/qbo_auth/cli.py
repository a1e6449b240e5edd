"""
qbo-auth CLI: connect this machine to a QuickBooks Online company.

Usage:
    qbo-auth connect --env-file .env
    qbo-auth status
    qbo-auth disconnect
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer

from qbo_auth.models.config import Settings
from qbo_auth.models.errors import OAuth2Error, format_error
from qbo_auth.oauth_client import QuickbooksAuthClient

app = typer.Typer(
    name="qbo-auth",
    help="Manage the QuickBooks Online OAuth connection.",
    no_args_is_help=True,
)

EnvFileOption = typer.Option(
    Path(".env"),
    "--env-file",
    "-e",
    help="KEY=VALUE file holding client credentials and the stored grant",
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Manage the QuickBooks Online OAuth connection."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def connect(env_file: Path = EnvFileOption) -> None:
    """Authenticate, opening a browser if no valid grant is stored."""

    async def _connect() -> None:
        settings = Settings.load(env_file)
        async with QuickbooksAuthClient.from_settings(settings) as auth:
            handle = await auth.authenticate()
        typer.echo(
            f"Successfully authenticated with QuickBooks! "
            f"(realm {handle.realm_id}, {handle.environment.value})"
        )

    _run(_connect())


@app.command()
def disconnect(env_file: Path = EnvFileOption) -> None:
    """Revoke the stored grant and remove it from the env file."""

    async def _disconnect() -> None:
        settings = Settings.load(env_file)
        async with QuickbooksAuthClient.from_settings(settings) as auth:
            await auth.disconnect()
        typer.echo("Successfully disconnected from QuickBooks Online.")

    _run(_disconnect())


@app.command()
def status(env_file: Path = EnvFileOption) -> None:
    """Show whether a grant is stored, without contacting Intuit."""
    try:
        settings = Settings.load(env_file)
    except OAuth2Error as e:
        typer.echo(format_error(e), err=True)
        raise typer.Exit(code=1)

    connected = bool(settings.refresh_token and settings.realm_id)
    typer.echo(f"Environment: {settings.credentials.environment.value}")
    typer.echo(f"Realm: {settings.realm_id or '-'}")
    typer.echo(f"Stored grant: {'yes' if connected else 'no'}")


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except OAuth2Error as e:
        typer.echo(f"Authentication failed: {format_error(e)}", err=True)
        raise typer.Exit(code=1)
