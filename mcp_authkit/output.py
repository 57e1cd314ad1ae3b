"""Rendering of command results for people and for scripts."""

import json
import sys
from typing import Any, NoReturn

import click

from .oauth import AuthStatus


def to_json(payload: Any) -> str:
    """Serialize a payload the way every JSON response is printed."""
    return json.dumps(payload, indent=2, default=str)


def status_label(status: AuthStatus) -> str:
    """Short authorization state shown in the server table."""
    if status.authenticated:
        return "expired" if status.expired else "authorized"
    if status.url_mismatch:
        return "stale (URL changed)"
    return "not authorized"


class OutputHandler:
    """Writes results as JSON envelopes or as plain text.

    In JSON mode every response is one object on stdout,
    ``{"success": true, "data": ...}`` or ``{"success": false, "error": ...}``.
    In human mode messages go to stdout and errors to stderr.
    """

    def __init__(self, json_mode: bool = False):
        self.json_mode = json_mode

    def success(self, data: Any, message: str | None = None) -> None:
        if self.json_mode:
            click.echo(to_json({"success": True, "data": data}))
        elif message is not None:
            click.echo(message)
        else:
            click.echo(to_json(data))

    def error(
        self,
        error: BaseException,
        error_type: str | None = None,
        help_text: str | None = None,
    ) -> NoReturn:
        """Report a failure and exit with status 1."""
        if self.json_mode:
            details = {"type": error_type or type(error).__name__, "message": str(error)}
            if help_text:
                details["help"] = help_text
            click.echo(to_json({"success": False, "error": details}))
        else:
            click.secho(f"Error: {error}", fg="red", err=True)
            if help_text:
                click.echo(f"\n{help_text}", err=True)
        sys.exit(1)

    def table(self, headers: list[str], rows: list[list[str]]) -> None:
        """Print left-aligned columns sized to their widest cell."""
        widths = [
            max([len(header)] + [len(str(row[i])) for row in rows])
            for i, header in enumerate(headers)
        ]

        def line(cells: list[Any]) -> str:
            return "  ".join(str(cell).ljust(width) for cell, width in zip(cells, widths)).rstrip()

        click.secho(line(headers), bold=True)
        click.echo("-" * (sum(widths) + 2 * (len(widths) - 1)))
        for row in rows:
            click.echo(line(row))

    def statuses(self, statuses: list[AuthStatus]) -> None:
        """Print the authorization state of every configured server."""
        if self.json_mode:
            self.success([status.to_dict() for status in statuses])
            return
        if not statuses:
            click.echo("No remote servers configured.")
            return
        self.table(
            ["SERVER", "URL", "STATUS", "EXPIRES IN"],
            [
                [s.server_name, s.server_url, status_label(s), s.expires_in_human or "-"]
                for s in statuses
            ],
        )

    def status(self, status: AuthStatus) -> None:
        """Print the details of one server."""
        if self.json_mode:
            self.success(status.to_dict())
            return

        click.secho(f"[{status.server_name}] ", fg="cyan", nl=False)
        click.echo(status.server_url)
        if not status.authenticated:
            if status.url_mismatch:
                click.secho("  Stored credentials belong to a different URL", fg="yellow")
            click.secho("  Not authorized", fg="red")
            click.echo(f"  Run: mcpauth login {status.server_name}")
            return

        click.secho("  Expired" if status.expired else "  Authorized", fg="red" if status.expired else "green")
        if status.expires_in_human:
            click.echo(f"  Expires in: {status.expires_in_human}")
        click.echo(f"  Refresh token: {'yes' if status.has_refresh_token else 'no'}")
        if status.scope:
            click.echo(f"  Scope: {status.scope}")
