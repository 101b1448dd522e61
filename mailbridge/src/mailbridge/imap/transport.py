"""Mailbox transport backed by ``imapclient``.

What:
  Expose the mailbox operations the tree manager and the connector need
  (listing, selecting, fetching, appending, deleting, folder maintenance) over a
  single authenticated IMAP connection.

Why:
  IMAP is stateful: the selected folder is connection state that any command
  may change. Wrapping the library in one class lets us enforce the two rules
  the rest of the package relies on. Every folder-scoped operation re-opens its
  folder first, and every failure surfaces as :class:`TransportError` carrying
  the provider's diagnostic strings.

How:
  :class:`ImapTransport` is a context manager that logs in on enter and logs
  out on exit. Mutating commands pass through a per-minute throttle. Library
  and socket errors are converted into :class:`TransportError` by
  :meth:`ImapTransport._call`.

Interfaces:
  :class:`MailboxTransport` (protocol), :class:`ImapTransport`,
  :class:`FolderListing`, :class:`MessageOverview`, :class:`TransportError`.

Invariants & Safety:
  - All message operations use UIDs; sequence numbers are never exposed.
  - Message bodies are fetched with ``BODY.PEEK`` so reading never sets
    ``\\Seen``.
"""
from __future__ import annotations

import re
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Iterable, List, Optional, Protocol, Sequence, Tuple

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientError

from ..config.schema import ImapSettings
from ..utils.logging import JsonLogger, get_logger


_APPENDUID = re.compile(rb"APPENDUID\s+\d+\s+(\d+)", re.IGNORECASE)


class TransportError(Exception):
    """A mailbox operation failed.

    Attributes:
      diagnostics: Provider-level messages describing the failure, in the
        order they were reported.
    """

    def __init__(self, diagnostics: Sequence[str]):
        self.diagnostics = [str(item) for item in diagnostics] or ["unknown transport failure"]
        super().__init__("; ".join(self.diagnostics))


@dataclass(frozen=True)
class FolderListing:
    """One ``LIST``/``LSUB`` response line."""

    flags: Tuple[str, ...]
    delimiter: str
    name: str


@dataclass(frozen=True)
class MessageOverview:
    """UID and system flags of one message."""

    uid: int
    flags: Tuple[str, ...]


class MailboxTransport(Protocol):
    """Mailbox operations consumed by the tree manager and the connector."""

    def list_folders(self, pattern: str = "*") -> List[FolderListing]:
        ...

    def list_subscribed(self, pattern: str = "*") -> List[FolderListing]:
        ...

    def open_folder(self, path: str, readonly: bool = False) -> None:
        ...

    def list_message_overviews(self) -> List[MessageOverview]:
        ...

    def fetch_body(self, uid: int, part: str = "") -> bytes:
        ...

    def fetch_structure(self, uid: int) -> Any:
        ...

    def append(self, path: str, raw: bytes, flags: Iterable[str] = ()) -> Optional[int]:
        ...

    def delete_message(self, uid: int) -> None:
        ...

    def expunge(self) -> None:
        ...

    def create_folder(self, path: str) -> None:
        ...

    def rename_folder(self, old: str, new: str) -> None:
        ...

    def subscribe(self, path: str) -> None:
        ...

    def delete_folder(self, path: str) -> None:
        ...


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return "" if value is None else str(value)


class ImapTransport:
    """Context manager owning one authenticated ``IMAPClient`` connection.

    What:
      Implements :class:`MailboxTransport` on top of ``imapclient``.

    Why:
      Keeps connection lifetime explicit (``with`` block), applies the
      configured timeout and rate limit, and hides library response shapes
      (bytes flags, fetch dictionaries) from the rest of the package.

    How:
      Connects in :meth:`__enter__`, re-selects the target folder at the start
      of every folder-scoped method, throttles mutating commands and wraps every
      library call with :meth:`_call`.
    """

    def __init__(
        self,
        settings: ImapSettings,
        username: str,
        password: str,
        logger: Optional[JsonLogger] = None,
    ) -> None:
        self._settings = settings
        self._username = username
        self._password = password
        self._logger = logger or get_logger("mailbridge.imap")
        self._client: Optional[IMAPClient] = None
        self._actions: Deque[float] = deque()

    def __enter__(self) -> "ImapTransport":
        """Open the connection and authenticate.

        Raises:
          TransportError: If the server is unreachable or rejects the login.
        """

        settings = self._settings
        try:
            self._client = IMAPClient(
                settings.host,
                port=settings.port,
                ssl=settings.ssl,
                timeout=settings.timeout,
            )
            self._client.login(self._username, self._password)
        except (IMAPClientError, OSError) as exc:
            self._client = None
            raise TransportError([f"connect {settings.host}:{settings.port}: {exc}"]) from exc
        self._logger.info("imap_connected", host=settings.host, port=settings.port)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._client is None:
            return
        try:
            self._client.logout()
        except (IMAPClientError, OSError) as error:
            self._logger.warning("imap_logout_failed", error=str(error))
        finally:
            self._client = None

    @property
    def client(self) -> IMAPClient:
        if self._client is None:
            raise TransportError(["IMAP transport not connected"])
        return self._client

    def _throttle(self) -> None:
        """Enforce the configured actions-per-minute limit on mutations."""

        now = time.monotonic()
        while self._actions and now - self._actions[0] > 60:
            self._actions.popleft()
        if len(self._actions) >= self._settings.actions_per_minute:
            raise TransportError(["IMAP action rate limit exceeded"])
        self._actions.append(now)

    def _call(self, description: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (IMAPClientError, OSError) as exc:
            raise TransportError([f"{description}: {exc}"]) from exc

    @staticmethod
    def _listing(raw: Iterable[Tuple[Any, Any, Any]]) -> List[FolderListing]:
        result = []
        for flags, delimiter, name in raw:
            result.append(
                FolderListing(
                    flags=tuple(_text(flag) for flag in flags or ()),
                    delimiter=_text(delimiter),
                    name=_text(name),
                )
            )
        return result

    # Folder listing ------------------------------------------------------
    def list_folders(self, pattern: str = "*") -> List[FolderListing]:
        return self._listing(self._call("list", self.client.list_folders, "", pattern))

    def list_subscribed(self, pattern: str = "*") -> List[FolderListing]:
        return self._listing(self._call("lsub", self.client.list_sub_folders, "", pattern))

    # Folder-scoped operations --------------------------------------------
    def open_folder(self, path: str, readonly: bool = False) -> None:
        """Select ``path``; called before every folder-scoped command."""

        self._call(f"select {path}", self.client.select_folder, path, readonly=readonly)

    def list_message_overviews(self) -> List[MessageOverview]:
        """Return UID and flags of every message in the selected folder."""

        uids = self._call("search", self.client.search, ["ALL"])
        if not uids:
            return []
        response = self._call("fetch flags", self.client.fetch, list(uids), ["FLAGS"])
        overviews = []
        for uid in sorted(response):
            flags = response[uid].get(b"FLAGS", ())
            overviews.append(MessageOverview(uid=int(uid), flags=tuple(_text(flag) for flag in flags)))
        return overviews

    def fetch_body(self, uid: int, part: str = "") -> bytes:
        """Return section ``part`` of message ``uid`` (the whole message by default)."""

        response = self._call(
            f"fetch {uid}", self.client.fetch, [uid], [f"BODY.PEEK[{part}]"]
        )
        entry = response.get(uid)
        key = f"BODY[{part}]".encode("ascii")
        if entry is None or key not in entry:
            raise TransportError([f"fetch {uid}: message not found"])
        return bytes(entry[key] or b"")

    def fetch_structure(self, uid: int) -> Any:
        response = self._call(f"fetch structure {uid}", self.client.fetch, [uid], ["BODYSTRUCTURE"])
        entry = response.get(uid)
        if entry is None or b"BODYSTRUCTURE" not in entry:
            raise TransportError([f"fetch structure {uid}: message not found"])
        return entry[b"BODYSTRUCTURE"]

    def append(self, path: str, raw: bytes, flags: Iterable[str] = ()) -> Optional[int]:
        """Append ``raw`` to ``path`` and return the new UID when it can be found.

        How:
          Re-opens the folder, appends, then reads the UID from the
          ``APPENDUID`` response code (RFC 4315) or, failing that, takes the
          highest UID in the folder.
        """

        self._throttle()
        self.open_folder(path)
        response = self._call(f"append {path}", self.client.append, path, raw, flags=tuple(flags))
        match = _APPENDUID.search(response if isinstance(response, bytes) else _text(response).encode())
        if match:
            return int(match.group(1))
        self.open_folder(path)
        uids = self._call("search", self.client.search, ["ALL"])
        return max(uids) if uids else None

    def delete_message(self, uid: int) -> None:
        """Flag ``uid`` in the selected folder as ``\\Deleted``."""

        self._throttle()
        self._call(f"delete {uid}", self.client.add_flags, [uid], [b"\\Deleted"])

    def expunge(self) -> None:
        self._throttle()
        self._call("expunge", self.client.expunge)

    # Folder maintenance ----------------------------------------------------
    def create_folder(self, path: str) -> None:
        self._throttle()
        self._call(f"create {path}", self.client.create_folder, path)

    def rename_folder(self, old: str, new: str) -> None:
        self._throttle()
        self._call(f"rename {old}", self.client.rename_folder, old, new)

    def subscribe(self, path: str) -> None:
        self._throttle()
        self._call(f"subscribe {path}", self.client.subscribe_folder, path)

    def delete_folder(self, path: str) -> None:
        self._throttle()
        self._call(f"delete folder {path}", self.client.delete_folder, path)
