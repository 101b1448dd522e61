"""Lazy identity cache of folder and message records.

What:
  Hold the folder records of one connector session and the message records of
  every folder that has been opened so far, keyed by their opaque keys.

Why:
  Listing every message of every folder up front is expensive on large
  accounts. The synchronization engine only needs the messages of folders it
  actually walks, but it may ask for any key it saw in a previous session.

How:
  The folder table is built on first access. Messages are loaded per folder on
  first use; a message key carries its folder key, so an unknown message key
  is resolved by loading only that folder. A load that fails leaves the cache
  exactly as it was.

Interfaces:
  :class:`RecordCache`.

Invariants & Safety:
  - Not thread-safe; each connector owns exactly one cache.
  - A folder's messages are either fully loaded or absent.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Union

from ..utils.ids import ROOT_KEY, folder_key, is_folder_key, message_key, parse_message_key
from .tree import FolderAttr, FolderRecord, MailboxTree, MessageRecord


Record = Union[FolderRecord, MessageRecord]


class RecordCache:
    """Folder and message records of one session."""

    def __init__(self, tree: MailboxTree) -> None:
        self.tree = tree
        self._folders: Optional[Dict[str, FolderRecord]] = None
        self._messages: Dict[str, MessageRecord] = {}

    @property
    def flattened(self) -> bool:
        self._folder_table()
        return self.tree.flattened

    def _folder_table(self) -> Dict[str, FolderRecord]:
        if self._folders is None:
            self._folders = self.tree.build_folders()
        return self._folders

    def invalidate(self) -> None:
        """Forget every record; the next access lists the server again."""

        self._folders = None
        self._messages = {}

    def folders(self) -> List[FolderRecord]:
        return list(self._folder_table().values())

    def folder(self, key: str) -> Optional[FolderRecord]:
        return self._folder_table().get(key)

    def inbox(self) -> Optional[FolderRecord]:
        for record in self._folder_table().values():
            if record.attrs & FolderAttr.MBOX_IN:
                return record
        return None

    def resolve(self, key: str) -> Optional[Record]:
        """Return the record for ``key`` without loading anything."""

        folders = self._folder_table()
        if key in folders:
            return folders[key]
        return self._messages.get(key)

    def load_folder(self, record: FolderRecord) -> None:
        """Load the messages of ``record`` unless already loaded.

        Raises:
          TransportError: If listing fails; the cache is left unchanged.
        """

        if record.loaded:
            return
        loaded = self.tree.load_messages(record)
        for key in [key for key, msg in self._messages.items() if msg.parent == record.key]:
            del self._messages[key]
        for message in loaded:
            self._messages[message.key] = message
        record.loaded = True

    def ensure_loaded(self, key: str) -> bool:
        """Make ``key`` resolvable, loading its folder if necessary.

        A folder key only needs the folder index; its messages stay unloaded
        until :meth:`children` or :meth:`load_folder` asks for them. A message
        key loads the messages of its owning folder.

        Returns:
          ``True`` when the record exists after loading.

        Raises:
          TransportError: If the owning folder cannot be listed.
        """

        if self.resolve(key) is not None:
            return True
        parsed = parse_message_key(key)
        if parsed is None:
            return False
        owner = self.folder(parsed[1])
        if owner is None or owner.loaded:
            return False
        self.load_folder(owner)
        return key in self._messages

    def children(self, parent: str = ROOT_KEY) -> List[Record]:
        """Return folders then messages whose parent is ``parent``.

        Raises:
          TransportError: If ``parent`` is a folder whose messages cannot be
            listed.
        """

        folders = self._folder_table()
        found: List[Record] = [record for record in folders.values() if record.parent == parent]
        owner = folders.get(parent)
        if owner is not None:
            self.load_folder(owner)
            found.extend(msg for msg in self._messages.values() if msg.parent == parent)
        return found

    def descendants(self, key: str) -> List[FolderRecord]:
        """Return every folder below ``key``, deepest first."""

        result: List[FolderRecord] = []
        for record in self._folder_table().values():
            if record.parent == key:
                result.extend(self.descendants(record.key))
                result.append(record)
        return result

    def put(self, record: Record) -> None:
        if isinstance(record, FolderRecord):
            self._folder_table()[record.key] = record
        else:
            self._messages[record.key] = record

    def drop(self, key: str) -> None:
        """Remove ``key``; dropping a folder also drops its loaded messages."""

        if is_folder_key(key):
            self._folder_table().pop(key, None)
            for msg_key in [k for k, msg in self._messages.items() if msg.parent == key]:
                del self._messages[msg_key]
        else:
            self._messages.pop(key, None)

    def add_message(self, owner: FolderRecord, uid: int, flags: str = "") -> MessageRecord:
        record = MessageRecord(key=message_key(uid, owner.key), parent=owner.key, uid=uid, flags=flags)
        self._messages[record.key] = record
        return record

    def rename(self, record: FolderRecord, new_path: str, new_name: str) -> FolderRecord:
        """Re-key ``record`` and its descendants after a rename to ``new_path``.

        Messages of the re-keyed folders are dropped and reloaded on next use
        because their keys embed the folder key.
        """

        old_path = record.path
        moved = [record] + self.descendants(record.key)
        renamed: Dict[str, str] = {}
        for folder in moved:
            self.drop(folder.key)
            path = new_path + folder.path[len(old_path):]
            renamed[folder.key] = folder_key(path)
            folder.path = path
            folder.loaded = False
        for folder in moved:
            folder.key = renamed[folder.key]
            folder.parent = renamed.get(folder.parent, folder.parent)
            self.put(folder)
        record.name = new_name
        return record
