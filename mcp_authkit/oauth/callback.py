"""Loopback callback server for OAuth redirects.

One long-lived HTTP listener on 127.0.0.1 serves every in-flight
authorization in the process. Each flow registers a pending wait keyed
by its own one-time ``state`` value; the browser redirect carrying that
state settles exactly that wait and nothing else.

The server:
- Binds a fixed, pre-registered port (optionally scanning a small range)
- Treats "port already in use" as another instance owning the listener
- Expires each pending wait after a deadline (5 minutes by default)
- Returns a user-friendly HTML page for every callback outcome

All methods must be called from the event loop the server runs on.
"""

import asyncio
import contextlib
import errno
import html
import logging
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any
from urllib.parse import parse_qs, urlparse

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 19876
DEFAULT_PORT_RANGE_END = 19886
CALLBACK_PATH = "/mcp/oauth/callback"

# Deadline for a single pending authorization
DEFAULT_TIMEOUT = 5 * 60  # seconds

# Bound on reading one request from the browser
REQUEST_READ_TIMEOUT = 10  # seconds

_ADDRESS_IN_USE = {errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", errno.EADDRINUSE)}


class CallbackError(Exception):
    """Error during OAuth callback handling."""

    pass


class CallbackTimeoutError(CallbackError):
    """No callback arrived before the deadline."""

    pass


class CallbackCancelledError(CallbackError):
    """The wait was cancelled explicitly or by server shutdown."""

    pass


class AuthorizationDeniedError(CallbackError):
    """The authorization server redirected back with an error.

    Attributes:
        error: OAuth error code (e.g. "access_denied")
        error_description: Human-readable description, if provided
    """

    def __init__(self, error: str, error_description: str | None = None):
        self.error = error
        self.error_description = error_description
        super().__init__(error_description or error)


@dataclass
class CallbackResult:
    """Query parameters of one redirect to the callback path."""

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    def is_success(self) -> bool:
        return self.code is not None and self.error is None


@dataclass
class PendingAuthorization:
    """An authorization waiting for its browser redirect."""

    state: str
    future: "asyncio.Future[str]"
    timer: asyncio.TimerHandle


_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
  html, body {{ height: 100%; margin: 0; }}
  body {{
    display: grid;
    place-items: center;
    font: 15px/1.5 system-ui, sans-serif;
    background: #f6f7f9;
    color: #1f2328;
  }}
  main {{
    max-width: 28rem;
    padding: 2rem 2.5rem;
    background: #fff;
    border-radius: 12px;
    box-shadow: 0 1px 3px rgba(0, 0, 0, 0.12);
    text-align: center;
  }}
  h1 {{ font-size: 1.25rem; margin: 0 0 0.75rem; color: {accent}; }}
  pre {{ white-space: pre-wrap; text-align: left; background: #fff5f5; padding: 0.75rem; border-radius: 6px; }}
</style>
</head>
<body>
<main>
<h1>{title}</h1>
{content}
</main>
{script}
</body>
</html>"""

SUCCESS_HTML = _PAGE.format(
    title="Authorization complete",
    accent="#1a7f37",
    content="<p>You can close this tab and return to the application.</p>",
    script="<script>setTimeout(function () { window.close(); }, 2000);</script>",
)


def render_error_page(message: str) -> str:
    """Render the failure page; the message is HTML-escaped."""
    return _PAGE.format(
        title="Authorization failed",
        accent="#cf222e",
        content=f"<p>The authorization could not be completed.</p>\n<pre>{html.escape(message)}</pre>",
        script="",
    )


def parse_callback_url(url: str) -> CallbackResult:
    """Extract the OAuth parameters from a callback URL or request target.

    Repeated parameters keep their first value.
    """
    params = {key: values[0] for key, values in parse_qs(urlparse(url).query).items()}
    return CallbackResult(
        code=params.get("code"),
        state=params.get("state"),
        error=params.get("error"),
        error_description=params.get("error_description"),
    )


class CallbackServer:
    """Shared loopback HTTP listener for OAuth callbacks.

    Construct one per process, start it before redirecting any browser,
    and stop it on shutdown.

    Usage:
        async with CallbackServer() as server:
            future = server.wait_for_callback(state)
            # Open browser with an authorization URL using server.redirect_uri
            code = await future
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        path: str = CALLBACK_PATH,
        timeout: float = DEFAULT_TIMEOUT,
        port_range_end: int | None = None,
    ):
        """Initialize callback server.

        Args:
            host: Loopback address to bind
            port: Preferred port (0 lets the OS choose, for tests)
            path: URL path to listen on
            timeout: Seconds each pending authorization may wait
            port_range_end: If set, try ports up to this one when the
                preferred port is taken
        """
        self.host = host
        self.preferred_port = port
        self.port = port
        self.path = path
        self.timeout = timeout
        self.port_range_end = port_range_end

        self._server: asyncio.Server | None = None
        self._pending: dict[str, PendingAuthorization] = {}
        self._start_lock = asyncio.Lock()

    @property
    def redirect_uri(self) -> str:
        """Redirect URI to register with authorization servers."""
        return f"http://{self.host}:{self.port}{self.path}"

    @property
    def is_running(self) -> bool:
        """Whether this process owns a bound listener."""
        return self._server is not None

    @property
    def pending_states(self) -> list[str]:
        """States of authorizations still waiting for a callback."""
        return list(self._pending)

    def _candidate_ports(self) -> list[int]:
        if self.preferred_port == 0 or self.port_range_end is None:
            return [self.preferred_port]
        return list(range(self.preferred_port, max(self.port_range_end, self.preferred_port) + 1))

    async def start(self) -> int:
        """Start the listener if it is not already running.

        A port held by someone else is not fatal: another instance of the
        application is assumed to own the listener, and start succeeds
        without binding anything locally.

        Returns:
            The port used in the redirect URI

        Raises:
            CallbackError: If binding fails for any reason other than
                the port being in use
        """
        async with self._start_lock:
            if self._server is not None:
                return self.port

            for candidate in self._candidate_ports():
                try:
                    server = await asyncio.start_server(
                        self._handle_connection,
                        self.host,
                        candidate,
                    )
                except OSError as e:
                    if e.errno in _ADDRESS_IN_USE:
                        logger.info(f"Callback port {candidate} already in use")
                        continue
                    raise CallbackError(
                        f"Failed to start callback server on {self.host}:{candidate}: {e}"
                    ) from e

                sockets = server.sockets
                if not sockets:
                    server.close()
                    raise CallbackError("Failed to start callback server: no sockets created")

                self._server = server
                self.port = sockets[0].getsockname()[1]
                logger.info(f"Callback server started on {self.redirect_uri}")
                return self.port

            self.port = self.preferred_port
            logger.warning(
                f"Callback port {self.preferred_port} is in use; assuming another "
                f"instance owns the OAuth callback listener"
            )
            return self.port

    async def stop(self) -> None:
        """Stop the listener and reject every pending authorization.

        Safe to call when never started; the server can be started again.
        """
        if self._server is not None:
            server = self._server
            self._server = None
            server.close()
            await server.wait_closed()
            logger.info("Callback server stopped")

        pending = list(self._pending.values())
        self._pending.clear()
        for entry in pending:
            entry.timer.cancel()
            self._reject(entry, CallbackCancelledError("OAuth callback server stopped"))

        self.port = self.preferred_port

    def wait_for_callback(self, state: str) -> "asyncio.Future[str]":
        """Register a pending authorization for a state value.

        Register before redirecting the browser so an immediate callback
        cannot race past the registration.

        Args:
            state: Unguessable per-attempt state sent in the authorization URL

        Returns:
            Future resolving to the authorization code, or failing with
            CallbackTimeoutError, CallbackCancelledError or
            AuthorizationDeniedError

        Raises:
            CallbackError: If state is empty or already pending
        """
        if not state:
            raise CallbackError("A non-empty state is required to wait for a callback")
        if state in self._pending:
            raise CallbackError("An authorization is already pending for this state")

        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()
        timer = loop.call_later(self.timeout, self._expire, state, future)
        self._pending[state] = PendingAuthorization(state=state, future=future, timer=timer)
        future.add_done_callback(lambda f: self._on_future_done(state, f))

        logger.debug(f"Waiting for OAuth callback ({len(self._pending)} pending)")
        return future

    def cancel_pending(self, state: str) -> bool:
        """Cancel a pending authorization, e.g. when the user aborts.

        Returns:
            True if a pending authorization was cancelled
        """
        entry = self._take(state)
        if entry is None:
            return False
        self._reject(entry, CallbackCancelledError("Authorization cancelled"))
        logger.info("Pending OAuth authorization cancelled")
        return True

    def handle_callback(self, result: CallbackResult) -> tuple[HTTPStatus, str]:
        """Settle the pending authorization matching a callback.

        Args:
            result: Parsed callback parameters

        Returns:
            HTTP status and HTML body for the browser
        """
        logger.info(
            f"OAuth callback received (has_code={result.code is not None}, "
            f"error={result.error})"
        )

        # State identifies the in-flight wait before anything else is trusted
        if not result.state:
            return HTTPStatus.BAD_REQUEST, render_error_page("Missing required state parameter")

        if result.error:
            entry = self._take(result.state)
            if entry is not None:
                self._reject(entry, AuthorizationDeniedError(result.error, result.error_description))
            # Same response whether or not a wait matched
            return HTTPStatus.OK, render_error_page(result.error_description or result.error)

        if not result.code:
            return HTTPStatus.BAD_REQUEST, render_error_page("No authorization code provided")

        # A wait whose future is already done has been abandoned by its caller
        entry = self._take(result.state)
        if entry is None or entry.future.done():
            logger.warning("OAuth callback with unknown or expired state")
            return HTTPStatus.BAD_REQUEST, render_error_page("Invalid or expired state parameter")

        entry.future.set_result(result.code)
        return HTTPStatus.OK, SUCCESS_HTML

    def _take(self, state: str) -> PendingAuthorization | None:
        """Remove a pending authorization and cancel its deadline."""
        entry = self._pending.pop(state, None)
        if entry is not None:
            entry.timer.cancel()
        return entry

    def _reject(self, entry: PendingAuthorization, error: CallbackError) -> None:
        if not entry.future.done():
            entry.future.set_exception(error)

    def _expire(self, state: str, future: "asyncio.Future[str]") -> None:
        """Deadline callback; acts only if the same wait is still pending."""
        entry = self._pending.get(state)
        if entry is None or entry.future is not future:
            return
        del self._pending[state]
        logger.warning(f"OAuth callback timed out after {self.timeout} seconds")
        self._reject(
            entry,
            CallbackTimeoutError(f"Timeout waiting for OAuth callback after {self.timeout} seconds"),
        )

    def _on_future_done(self, state: str, future: "asyncio.Future[str]") -> None:
        """Drop the table entry when the waiting side cancels its future."""
        if not future.cancelled():
            return
        entry = self._pending.get(state)
        if entry is not None and entry.future is future:
            self._take(state)

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Serve one request and close the connection."""
        try:
            request = await asyncio.wait_for(self._read_request(reader), REQUEST_READ_TIMEOUT)
            if request is None:
                await self._respond(writer, HTTPStatus.BAD_REQUEST, "Malformed request")
            else:
                await self._respond(writer, *self._route(*request))
        except Exception as e:
            logger.warning(f"Callback request failed: {e}")
            with contextlib.suppress(Exception):
                await self._respond(writer, HTTPStatus.INTERNAL_SERVER_ERROR, "Internal error")
        finally:
            with contextlib.suppress(Exception):
                writer.close()
                await writer.wait_closed()

    @staticmethod
    async def _read_request(reader: asyncio.StreamReader) -> tuple[str, str] | None:
        """Read the request line, then drain the headers.

        Returns:
            (method, target), or None if the request line is malformed
        """
        request_line = (await reader.readline()).decode("latin-1").split()
        while await reader.readline() not in (b"", b"\n", b"\r\n"):
            pass
        if len(request_line) < 2:
            return None
        return request_line[0], request_line[1]

    def _route(self, method: str, target: str) -> tuple[HTTPStatus, str, str]:
        # Anything off the callback path, favicon included, is a 404
        if urlparse(target).path != self.path:
            return HTTPStatus.NOT_FOUND, "Not found", "text/plain"
        if method != "GET":
            return HTTPStatus.METHOD_NOT_ALLOWED, "Method not allowed", "text/plain"
        status, page = self.handle_callback(parse_callback_url(target))
        return status, page, "text/html"

    async def _respond(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        body: str,
        content_type: str = "text/plain",
    ) -> None:
        payload = body.encode("utf-8")
        headers = [
            f"HTTP/1.1 {status.value} {status.phrase}",
            f"Content-Type: {content_type}; charset=utf-8",
            f"Content-Length: {len(payload)}",
            "Cache-Control: no-store",
            "Connection: close",
        ]
        if content_type == "text/html":
            headers += [
                "X-Content-Type-Options: nosniff",
                "X-Frame-Options: DENY",
                "Content-Security-Policy: default-src 'none'; style-src 'unsafe-inline'; script-src 'unsafe-inline'",
            ]
        writer.write(("\r\n".join(headers) + "\r\n\r\n").encode("latin-1") + payload)
        await writer.drain()

    async def __aenter__(self) -> "CallbackServer":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()
