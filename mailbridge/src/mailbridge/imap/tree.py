"""Folder hierarchy and message listing of the remote mailbox.

What:
  Turn the server's folder listing into :class:`FolderRecord` entries (key,
  parent, display name, role, capability bits) and a folder's message overview
  into :class:`MessageRecord` entries.

Why:
  The synchronization engine only sees opaque keys and capability bits. The
  server's view (paths, delimiters, ``\\Noinferiors``, special-use flags,
  subscriptions) has to be folded into that model consistently on every
  rebuild, otherwise keys and permissions drift between sessions.

How:
  :meth:`MailboxTree.build_folders` issues one listing, drops duplicate names,
  filters unsubscribed folders and assigns roles from the configured special
  folder paths, falling back to RFC 6154 special-use flags for roles without a
  configured path. When the inbox cannot hold children, the hierarchy is
  flattened: every other top-level folder is presented under the inbox.

Interfaces:
  :class:`MailboxTree`, :class:`FolderRecord`, :class:`MessageRecord`,
  :class:`FolderAttr`, :class:`RemoteFlag`, :func:`convert_flags`,
  :func:`is_inbox`.

Invariants & Safety:
  - Keys depend on the remote path only; rebuilding yields the same keys.
  - The inbox is always subscribed and never carries ``EDIT`` or ``DEL``.
  - ``\\Noselect`` folders are listed but never opened.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import IntFlag
from typing import Dict, Iterable, List, Optional, Set

from ..config.schema import SpecialFolders
from ..core.mapping import FLAG_NAMES
from ..utils.ids import ROOT_KEY, folder_key, message_key
from ..utils.logging import JsonLogger, get_logger
from .transport import FolderListing, MailboxTransport


INBOX = "INBOX"


class FolderAttr(IntFlag):
    """Capability and role bits of a record."""

    READ = 0x0001
    WRITE = 0x0002
    EDIT = 0x0004
    DEL = 0x0008
    MBOX_IN = 0x0010
    SENT = 0x0020
    DRAFT = 0x0040
    TRASH = 0x0080
    SPAM = 0x0100
    USER = 0x0200


ROLE_BITS = (
    FolderAttr.MBOX_IN
    | FolderAttr.SENT
    | FolderAttr.DRAFT
    | FolderAttr.TRASH
    | FolderAttr.SPAM
    | FolderAttr.USER
)
MESSAGE_ATTRS = FolderAttr.READ | FolderAttr.WRITE | FolderAttr.EDIT | FolderAttr.DEL


class RemoteFlag(IntFlag):
    """Server-side listing attributes we act on."""

    NONE = 0
    NOINFERIORS = 0x01
    NOSELECT = 0x02
    MARKED = 0x04
    UNMARKED = 0x08
    HAS_CHILDREN = 0x10
    HAS_NO_CHILDREN = 0x20

    @classmethod
    def from_listing(cls, flags: Iterable[str]) -> "RemoteFlag":
        result = cls.NONE
        for flag in flags:
            bit = _REMOTE_FLAGS.get(flag.lower())
            if bit is not None:
                result |= bit
        return result


_REMOTE_FLAGS = {
    "\\noinferiors": RemoteFlag.NOINFERIORS,
    "\\noselect": RemoteFlag.NOSELECT,
    "\\nonexistent": RemoteFlag.NOSELECT,
    "\\marked": RemoteFlag.MARKED,
    "\\unmarked": RemoteFlag.UNMARKED,
    "\\haschildren": RemoteFlag.HAS_CHILDREN,
    "\\hasnochildren": RemoteFlag.HAS_NO_CHILDREN,
}

_SPECIAL_USE = {
    FolderAttr.TRASH: "\\trash",
    FolderAttr.DRAFT: "\\drafts",
    FolderAttr.SENT: "\\sent",
    FolderAttr.SPAM: "\\junk",
}


@dataclass
class FolderRecord:
    """One remote folder as presented to the synchronization engine."""

    key: str
    parent: str
    name: str
    path: str
    delimiter: str
    remote: RemoteFlag
    attrs: FolderAttr
    loaded: bool = False

    @property
    def selectable(self) -> bool:
        return not self.remote & RemoteFlag.NOSELECT

    @property
    def role(self) -> FolderAttr:
        return self.attrs & ROLE_BITS


@dataclass
class MessageRecord:
    """One message inside a folder."""

    key: str
    parent: str
    uid: int
    flags: str
    attrs: FolderAttr = MESSAGE_ATTRS


def is_inbox(path: str) -> bool:
    return path.upper() == INBOX


def convert_flags(flags: Iterable[str]) -> str:
    """Return the ``Seen,Answered,...`` string for a set of IMAP system flags."""

    present = {flag.lstrip("\\").lower() for flag in flags}
    return ",".join(name for name in FLAG_NAMES if name.lower() in present)


class MailboxTree:
    """Build folder and message records from a :class:`MailboxTransport`.

    Args:
      transport: Connected mailbox transport.
      special_folders: Configured special folder paths.
      subscribed_only: Skip folders the account is not subscribed to.
      pattern: Listing pattern passed to the server.
      logger: Structured logger.
    """

    def __init__(
        self,
        transport: MailboxTransport,
        special_folders: Optional[SpecialFolders] = None,
        subscribed_only: bool = True,
        pattern: str = "*",
        logger: Optional[JsonLogger] = None,
    ) -> None:
        self.transport = transport
        self.special_folders = special_folders or SpecialFolders()
        self.subscribed_only = subscribed_only
        self.pattern = pattern
        self.flattened = False
        self._logger = logger or get_logger("mailbridge.tree")

    def _subscribed(self) -> Set[str]:
        return {entry.name for entry in self.transport.list_subscribed(self.pattern)}

    @staticmethod
    def _is_subscribed(path: str, subscribed: Set[str]) -> bool:
        if is_inbox(path):
            return True
        return path in subscribed

    def _role(self, path: str, flags: Iterable[str]) -> FolderAttr:
        if is_inbox(path):
            return FolderAttr.MBOX_IN
        configured = {
            FolderAttr.TRASH: self.special_folders.trash,
            FolderAttr.DRAFT: self.special_folders.drafts,
            FolderAttr.SENT: self.special_folders.sent,
            FolderAttr.SPAM: self.special_folders.spam,
        }
        for role, configured_path in configured.items():
            if configured_path and configured_path == path:
                return role
        lowered = {flag.lower() for flag in flags}
        for role, configured_path in configured.items():
            if not configured_path and _SPECIAL_USE[role] in lowered:
                return role
        return FolderAttr.USER

    def attrs_for(self, path: str, flags: Iterable[str] = ()) -> FolderAttr:
        """Return the capability bits of the folder at ``path``.

        Every folder is readable and writable; only user folders may be renamed
        or deleted.
        """

        role = self._role(path, flags)
        attrs = FolderAttr.READ | FolderAttr.WRITE | role
        if role == FolderAttr.USER:
            attrs |= FolderAttr.EDIT | FolderAttr.DEL
        return attrs

    def _record(self, entry: FolderListing, inbox_key: Optional[str]) -> FolderRecord:
        path = entry.name
        delimiter = entry.delimiter
        attrs = self.attrs_for(path, entry.flags)
        role = attrs & ROLE_BITS

        name = path
        parent = ROOT_KEY
        if delimiter and path.rfind(delimiter) > 0:
            cut = path.rfind(delimiter)
            name = path[cut + len(delimiter):]
            if role != FolderAttr.MBOX_IN:
                parent = folder_key(path[:cut])
        elif inbox_key is not None and role != FolderAttr.MBOX_IN:
            parent = inbox_key

        return FolderRecord(
            key=folder_key(path),
            parent=parent,
            name=name,
            path=path,
            delimiter=delimiter,
            remote=RemoteFlag.from_listing(entry.flags),
            attrs=attrs,
        )

    def build_folders(self) -> Dict[str, FolderRecord]:
        """List the remote folders and return them keyed by folder key.

        Raises:
          TransportError: If the listing fails.
        """

        listing: List[FolderListing] = []
        seen: Set[str] = set()
        for entry in self.transport.list_folders(self.pattern):
            # some servers report the same folder twice
            if entry.name in seen:
                continue
            seen.add(entry.name)
            listing.append(entry)

        subscribed = self._subscribed() if self.subscribed_only else None

        inbox_entry = next((entry for entry in listing if is_inbox(entry.name)), None)
        self.flattened = bool(
            inbox_entry is not None
            and RemoteFlag.from_listing(inbox_entry.flags) & RemoteFlag.NOINFERIORS
        )
        inbox_key = folder_key(inbox_entry.name) if self.flattened and inbox_entry else None

        folders: Dict[str, FolderRecord] = {}
        for entry in listing:
            if subscribed is not None and not self._is_subscribed(entry.name, subscribed):
                continue
            record = self._record(entry, inbox_key)
            folders[record.key] = record

        fallback = inbox_key or ROOT_KEY
        for record in folders.values():
            if record.parent and record.parent not in folders:
                record.parent = fallback if record.key != fallback else ROOT_KEY

        self._logger.debug(
            "folders_listed",
            folders=len(folders),
            skipped=len(listing) - len(folders),
            flattened=self.flattened,
        )
        return folders

    def load_messages(self, folder: FolderRecord) -> List[MessageRecord]:
        """Return the message records of ``folder``.

        Raises:
          TransportError: If the folder cannot be opened or listed.
        """

        if not folder.selectable:
            return []
        self.transport.open_folder(folder.path, readonly=True)
        records = [
            MessageRecord(
                key=message_key(overview.uid, folder.key),
                parent=folder.key,
                uid=overview.uid,
                flags=convert_flags(overview.flags),
            )
            for overview in self.transport.list_message_overviews()
        ]
        self._logger.debug("messages_listed", folder=folder.key, messages=len(records))
        return records
