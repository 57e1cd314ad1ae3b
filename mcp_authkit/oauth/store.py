"""Persistent credential storage for MCP server authentication.

All entries live in a single JSON file mapping server name to AuthEntry.
Storage is best-effort:
- A missing, unreadable or corrupt file reads as empty
- Failed writes are logged and the update is dropped
- File permissions restrict access to the owning user (0600)

Every mutation is a read-modify-write of the whole file. Cycles are
serialized with an in-process lock and an advisory file lock, so
concurrent updates to different server names never lose each other.
"""

import json
import logging
import os
import stat
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator

from ..platform import IS_WINDOWS, get_credentials_path
from .tokens import AuthEntry, ExpiryStatus, StoredClientInfo, StoredTokens

logger = logging.getLogger(__name__)

if IS_WINDOWS:
    import msvcrt
else:
    import fcntl


@contextmanager
def _locked(path: Path, exclusive: bool = True) -> Iterator[None]:
    """Hold an advisory lock on a ``<path>.lock`` sidecar file.

    Shared locks are only available through flock; on Windows every
    holder takes the single msvcrt byte lock.
    """
    sidecar = path.with_name(path.name + ".lock")
    with open(sidecar, "a+") as handle:
        fd = handle.fileno()
        if IS_WINDOWS:
            handle.seek(0)
            msvcrt.locking(fd, msvcrt.LK_LOCK, 1)
        else:
            fcntl.flock(fd, fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
        try:
            yield
        finally:
            if IS_WINDOWS:
                handle.seek(0)
                msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
            else:
                fcntl.flock(fd, fcntl.LOCK_UN)


class CredentialStore:
    """JSON-file storage of one AuthEntry per server name.

    The file lives in the per-user data directory (see
    mcp_authkit.platform) unless an explicit path is given.
    """

    def __init__(self, path: Path | None = None):
        """Initialize credential store.

        Args:
            path: Optional custom location of the JSON file
        """
        self.path = path or get_credentials_path()
        self._lock = threading.RLock()

    def _ensure_dir(self) -> None:
        """Create the storage directory with owner-only permissions."""
        directory = self.path.parent
        if directory.exists():
            return
        directory.mkdir(parents=True, exist_ok=True)
        try:
            directory.chmod(stat.S_IRWXU)
        except OSError as e:
            logger.warning(f"Could not restrict permissions of {directory}: {e}")

    def _load(self) -> dict[str, AuthEntry]:
        """Read and parse the whole file without locking.

        Malformed data degrades to empty instead of raising.
        """
        if not self.path.exists():
            return {}

        try:
            raw: Any = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read credential file {self.path}: {e}")
            return {}
        except json.JSONDecodeError as e:
            logger.warning(f"Credential file {self.path} is corrupted, treating as empty: {e}")
            return {}

        if not isinstance(raw, dict):
            logger.warning(f"Credential file {self.path} does not contain an object, treating as empty")
            return {}

        entries: dict[str, AuthEntry] = {}
        for name, data in raw.items():
            if not isinstance(data, dict):
                logger.warning(f"Skipping invalid credential entry for {name}")
                continue
            try:
                entries[name] = AuthEntry.from_dict(data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping invalid credential entry for {name}: {e}")
        return entries

    def _write(self, entries: dict[str, AuthEntry]) -> None:
        """Write the whole map with secure permissions.

        Writes to a sibling temp file created 0600 and swaps it in, so a
        crash mid-write never leaves a truncated file behind.

        Raises:
            OSError: If the file cannot be written
        """
        payload = json.dumps(
            {name: entry.to_dict() for name, entry in entries.items()},
            indent=2,
        )
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, stat.S_IRUSR | stat.S_IWUSR)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
        os.replace(tmp_path, self.path)
        try:
            self.path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0600
        except OSError as e:
            logger.warning(f"Could not restrict permissions of {self.path}: {e}")

    def _update(self, mutate: Callable[[dict[str, AuthEntry]], bool]) -> None:
        """Run one serialized read-modify-write cycle.

        Args:
            mutate: Applies the change in place; returns False to skip the write
        """
        with self._lock:
            try:
                self._ensure_dir()
                with _locked(self.path, exclusive=True):
                    entries = self._load()
                    if not mutate(entries):
                        return
                    self._write(entries)
            except OSError as e:
                logger.error(f"Failed to save credentials to {self.path}: {e}")

    # Read operations

    def all(self) -> dict[str, AuthEntry]:
        """Get every stored entry keyed by server name."""
        with self._lock:
            if not self.path.exists():
                return {}
            try:
                with _locked(self.path, exclusive=False):
                    return self._load()
            except OSError as e:
                logger.warning(f"Could not lock credential file {self.path}: {e}")
                return {}

    def get(self, name: str) -> AuthEntry | None:
        """Get the entry for a server name, regardless of its URL."""
        return self.all().get(name)

    def get_for_url(self, name: str, server_url: str) -> AuthEntry | None:
        """Get the entry for a server name only if it is pinned to server_url.

        Entries without a recorded URL, or recorded for a different one,
        are treated as absent so credentials never leak across endpoints.
        """
        entry = self.get(name)
        if entry is None or entry.server_url is None:
            return None
        if entry.server_url != server_url:
            logger.debug(f"Stored credentials for {name} belong to a different URL, ignoring")
            return None
        return entry

    def get_oauth_state(self, name: str) -> str | None:
        """Get the saved OAuth state for a server name."""
        entry = self.get(name)
        return entry.oauth_state if entry else None

    def is_token_expired(self, name: str) -> ExpiryStatus:
        """Check the stored tokens of a server name against the clock.

        Returns:
            UNKNOWN when no tokens are stored, otherwise EXPIRED or VALID
        """
        entry = self.get(name)
        if entry is None or entry.tokens is None:
            return ExpiryStatus.UNKNOWN
        return ExpiryStatus.EXPIRED if entry.tokens.is_expired() else ExpiryStatus.VALID

    # Write operations

    def set(self, name: str, entry: AuthEntry, server_url: str | None = None) -> None:
        """Replace the entry for a server name.

        Args:
            name: Server name
            entry: Entry to store
            server_url: If given, stamps entry.server_url
        """
        if server_url:
            entry.server_url = server_url

        def mutate(entries: dict[str, AuthEntry]) -> bool:
            entries[name] = entry
            return True

        self._update(mutate)

    def remove(self, name: str) -> bool:
        """Delete the entry for a server name.

        Returns:
            True if an entry was deleted, False if not found
        """
        removed = False

        def mutate(entries: dict[str, AuthEntry]) -> bool:
            nonlocal removed
            if name not in entries:
                return False
            del entries[name]
            removed = True
            return True

        self._update(mutate)
        if removed:
            logger.debug(f"Removed credentials for {name}")
        return removed

    def _update_entry(
        self,
        name: str,
        change: Callable[[AuthEntry], None],
        server_url: str | None = None,
        create: bool = True,
    ) -> None:
        """Apply a field-level change to one entry inside a write cycle.

        Stamping a server_url other than the recorded one drops the
        credentials saved for the previous URL; only a pending OAuth
        state survives.
        """

        def mutate(entries: dict[str, AuthEntry]) -> bool:
            entry = entries.get(name)
            if entry is None:
                if not create:
                    return False
                entry = AuthEntry()
            elif server_url and entry.server_url != server_url:
                logger.debug(f"URL of {name} changed, discarding its previous credentials")
                entry = AuthEntry(oauth_state=entry.oauth_state)
            change(entry)
            if server_url:
                entry.server_url = server_url
            entries[name] = entry
            return True

        self._update(mutate)

    def update_tokens(self, name: str, tokens: StoredTokens, server_url: str | None = None) -> None:
        """Store tokens for a server name."""

        def change(entry: AuthEntry) -> None:
            entry.tokens = tokens

        self._update_entry(name, change, server_url)
        logger.debug(f"Stored tokens for {name}")

    def update_client_info(
        self, name: str, client_info: StoredClientInfo, server_url: str | None = None
    ) -> None:
        """Store dynamically registered client credentials for a server name."""

        def change(entry: AuthEntry) -> None:
            entry.client_info = client_info

        self._update_entry(name, change, server_url)
        logger.debug(f"Stored client credentials for {name}")

    def update_code_verifier(self, name: str, code_verifier: str) -> None:
        """Store the PKCE code verifier for a server name."""

        def change(entry: AuthEntry) -> None:
            entry.code_verifier = code_verifier

        self._update_entry(name, change)

    def clear_code_verifier(self, name: str) -> None:
        """Forget the PKCE code verifier; no-op without an entry."""

        def change(entry: AuthEntry) -> None:
            entry.code_verifier = None

        self._update_entry(name, change, create=False)

    def update_oauth_state(self, name: str, oauth_state: str) -> None:
        """Store the OAuth state parameter for a server name."""

        def change(entry: AuthEntry) -> None:
            entry.oauth_state = oauth_state

        self._update_entry(name, change)

    def clear_oauth_state(self, name: str) -> None:
        """Forget the OAuth state parameter; no-op without an entry."""

        def change(entry: AuthEntry) -> None:
            entry.oauth_state = None

        self._update_entry(name, change, create=False)

    def clear_all(self) -> bool:
        """Delete the credential file and every entry in it.

        Returns:
            False if the file could not be deleted
        """
        with self._lock:
            try:
                if self.path.parent.exists():
                    with _locked(self.path, exclusive=True):
                        self.path.unlink(missing_ok=True)
            except OSError as e:
                logger.error(f"Failed to delete credential file {self.path}: {e}")
                return False
        logger.info(f"Deleted credential file {self.path}")
        return True
