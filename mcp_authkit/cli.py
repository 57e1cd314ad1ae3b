"""Command-line interface: ``mcpauth``."""

from __future__ import annotations

import asyncio
import json
import logging
import webbrowser
from dataclasses import dataclass
from pathlib import Path

import click

from . import __version__
from .config import Config, ServerConfig, load_callback_settings, load_config
from .oauth import (
    AuthManager,
    AuthorizationDeniedError,
    CallbackCancelledError,
    CallbackServer,
    CallbackTimeoutError,
    CredentialStore,
    authorize,
)
from .output import OutputHandler

logger = logging.getLogger("mcpauth")


@dataclass
class CliContext:
    """Options shared by every subcommand."""

    output: OutputHandler
    config_path: Path | None = None
    env_path: Path | None = None

    def config(self) -> Config:
        """Load the MCP config, exiting with a readable error on failure."""
        try:
            return load_config(self.config_path, self.env_path)
        except FileNotFoundError as e:
            self.output.error(e, error_type="ConfigNotFound", help_text="Pass --config PATH to use a specific file.")
        except json.JSONDecodeError as e:
            self.output.error(
                e,
                error_type="ConfigParseError",
                help_text="The config file contains invalid JSON. Check for syntax errors.",
            )

    def server(self, name: str) -> ServerConfig:
        """Look up a remote server by name, exiting if it is not configured."""
        config = self.config()
        server = config.servers.get(name)
        if server is None:
            available = ", ".join(sorted(config.servers)) or "none"
            self.output.error(
                click.ClickException(f"Server '{name}' not found in config"),
                error_type="ServerNotFound",
                help_text=f"Configured remote servers: {available}",
            )
        return server


pass_cli = click.make_pass_decorator(CliContext)


def open_browser(url: str) -> None:
    """Open the authorization URL, printing it when no browser is available."""
    click.echo("Opening browser for authorization...", err=True)
    if not webbrowser.open(url):
        click.echo(f"Could not open a browser. Open this URL to continue:\n{url}", err=True)


def build_manager() -> AuthManager:
    """Create the manager used by CLI commands."""
    settings = load_callback_settings()
    return AuthManager(
        store=CredentialStore(),
        callback_server=CallbackServer(port=settings.port, port_range_end=settings.port_range_end),
        on_redirect=open_browser,
    )


def _root_cause(error: BaseException) -> BaseException:
    """Unwrap single-member exception groups raised by task groups."""
    while isinstance(error, BaseExceptionGroup) and len(error.exceptions) == 1:
        error = error.exceptions[0]
    return error


@click.group()
@click.option("--json", "json_mode", is_flag=True, help="Print results as JSON")
@click.option("--config", "config_path", type=click.Path(exists=True, path_type=Path), help="MCP config file to read")
@click.option("--env-file", "env_path", type=click.Path(exists=True, path_type=Path), help=".env file to load")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr")
@click.version_option(version=__version__, prog_name="mcpauth")
@click.pass_context
def main(
    ctx: click.Context,
    json_mode: bool,
    config_path: Path | None,
    env_path: Path | None,
    verbose: bool,
) -> None:
    """Authorize against remote MCP servers and manage stored credentials."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = CliContext(output=OutputHandler(json_mode), config_path=config_path, env_path=env_path)


@main.command("list")
@pass_cli
def list_cmd(cli: CliContext) -> None:
    """List configured remote servers and their authorization state."""
    config = cli.config()
    manager = build_manager()
    cli.output.statuses([manager.get_auth_status(s.name, s.url) for s in config.servers.values()])


@main.command()
@click.argument("server")
@pass_cli
def status(cli: CliContext, server: str) -> None:
    """Show authorization details for SERVER."""
    server_config = cli.server(server)
    cli.output.status(build_manager().get_auth_status(server_config.name, server_config.url))


@main.command()
@click.argument("server")
@pass_cli
def login(cli: CliContext, server: str) -> None:
    """Authorize against SERVER through the browser."""
    server_config = cli.server(server)
    manager = build_manager()
    provider = manager.get_provider(server_config.name, server_config.url, server_config.oauth)
    logger.debug(f"Authorizing {server_config.name} at {server_config.url}")

    async def run() -> None:
        try:
            await authorize(provider)
        finally:
            await manager.shutdown()

    try:
        asyncio.run(run())
    except Exception as e:
        error = _root_cause(e)
        if isinstance(error, CallbackTimeoutError):
            cli.output.error(error, help_text="No browser callback was received. Run the command again to retry.")
        if isinstance(error, CallbackCancelledError):
            cli.output.error(error, help_text="Authorization was cancelled.")
        if isinstance(error, AuthorizationDeniedError):
            cli.output.error(error, help_text="The authorization server rejected the request.")
        cli.output.error(error, help_text=f"Failed to authorize against {server_config.url}.")

    auth_status = manager.get_auth_status(server_config.name, server_config.url)
    cli.output.success(auth_status.to_dict(), message=f"Authorized {server_config.name}.")


@main.command()
@click.argument("server", required=False)
@click.option("--all", "logout_all", is_flag=True, help="Remove credentials for every server")
@pass_cli
def logout(cli: CliContext, server: str | None, logout_all: bool) -> None:
    """Remove stored credentials for SERVER (tokens are not revoked)."""
    manager = build_manager()

    if logout_all:
        count = manager.logout_all()
        cli.output.success({"removed": count}, message=f"Removed credentials for {count} server(s).")
        return

    if not server:
        cli.output.error(
            click.UsageError("Specify a server name or --all"),
            error_type="UsageError",
            help_text="Usage: mcpauth logout SERVER | --all",
        )

    removed = manager.logout(server)
    message = f"Logged out from {server}." if removed else f"No stored credentials for {server}."
    cli.output.success({"server": server, "removed": removed}, message=message)


if __name__ == "__main__":
    main()
