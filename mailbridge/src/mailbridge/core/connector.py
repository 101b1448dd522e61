"""Connector session between the synchronization engine and a mailbox.

What:
  Expose the record-level operations the synchronization engine drives
  (list folders, list records, read, add, update, delete, refresh, send) over
  one IMAP transport, one mail sender and one attachment store.

Why:
  The engine speaks documents and opaque keys; the server speaks paths, UIDs
  and MIME. The session is the single place that translates between the two,
  enforces the capability bits before anything reaches the server and turns
  provider failures into logged, boolean outcomes the engine can act on.

How:
  Records come from a :class:`~mailbridge.imap.cache.RecordCache` built on a
  :class:`~mailbridge.imap.tree.MailboxTree`. Reads fetch the full message and
  run header mapping, flag conversion, MIME decomposition and field derivation
  in that order. Writes compose a MIME message and append it. Folder renames
  re-key the folder and its descendants; message updates are an append of the
  new version followed by a delete of the old one, since messages are
  immutable on the server.

Interfaces:
  :class:`MailConnector`, :func:`translate_message`.

Invariants & Safety:
  - Capability checks run before any mutating transport call.
  - Public operations never raise transport, send or attachment errors; they
    log them and return ``False`` or ``None``.
  - The session owns its cache; nothing is shared between sessions.
"""
from __future__ import annotations

from contextlib import ExitStack
from typing import Dict, List, Optional, Union

from ..config.schema import SpecialFolders
from ..imap.cache import Record, RecordCache
from ..imap.transport import MailboxTransport, TransportError
from ..imap.tree import (
    FolderAttr,
    FolderRecord,
    MailboxTree,
    MessageRecord,
    RemoteFlag,
    convert_flags,
    is_inbox,
)
from ..smtp.sender import MailSender, SendError
from ..utils.ids import FOLDER_PREFIX, MESSAGE_PREFIX, ROOT_KEY, folder_key
from ..utils.logging import JsonLogger, get_logger
from ..utils.mime import collect_headers, parse_message
from .attachments import AttachmentError, AttachmentStore
from .compose import compose, to_wire
from .decompose import decompose
from .document import Document, RecordKind, Tag
from .mapping import apply_flags, derive_fields, headers_to_document, supported_fields


ROOT_ATTRS = FolderAttr.READ | FolderAttr.WRITE


def translate_message(
    raw: bytes,
    store: AttachmentStore,
    logger: JsonLogger,
    *,
    record_id: str = "",
    group_id: str = "",
    flags: str = "",
) -> Optional[Document]:
    """Translate raw message bytes into a message document.

    What:
      Maps headers, applies the flag string, decomposes the MIME tree and
      derives the threading fields, in that order.

    Why:
      Reads and the raw-send path share this translation; the CLI also uses it
      to preview local ``.eml`` files without a mailbox.

    How:
      Field derivation runs last because the decomposer may already have set
      the code page. Unused headers and anomalies are logged as warnings.

    Returns:
      The document, or ``None`` when an attachment cannot be stored.
    """

    message = parse_message(raw)
    document = Document(kind=RecordKind.MESSAGE, record_id=record_id, group_id=group_id)
    report = headers_to_document(collect_headers(message), document)
    apply_flags(document, flags)
    try:
        parts = decompose(message, document, store)
    except AttachmentError as exc:
        logger.error("attachment_store_failed", record=record_id, error=str(exc))
        return None
    anomalies = report.anomalies + parts.anomalies + derive_fields(document)
    if report.unused:
        logger.warning("unused_headers", record=record_id, headers=report.unused)
    for anomaly in anomalies:
        logger.warning("message_anomaly", record=record_id, detail=anomaly)
    logger.debug("message_document", record=record_id, fields=len(document.nodes))
    return document


class MailConnector:
    """One connector session.

    Args:
      transport: Mailbox transport; entered and exited with the session when it
        is a context manager.
      sender: Outbound mail sender.
      store: Attachment store shared by reads and writes.
      special_folders: Configured special folder paths.
      subscribed_only: Hide folders the account is not subscribed to.
      pattern: Folder listing pattern.
      logger: Structured logger.
    """

    def __init__(
        self,
        transport: MailboxTransport,
        sender: MailSender,
        store: AttachmentStore,
        special_folders: Optional[SpecialFolders] = None,
        *,
        subscribed_only: bool = True,
        pattern: str = "*",
        logger: Optional[JsonLogger] = None,
    ) -> None:
        self.transport = transport
        self.sender = sender
        self.store = store
        self._logger = logger or get_logger("mailbridge.connector")
        self.tree = MailboxTree(
            transport,
            special_folders,
            subscribed_only=subscribed_only,
            pattern=pattern,
            logger=self._logger,
        )
        self.cache = RecordCache(self.tree)
        self._stack: Optional[ExitStack] = None

    def __enter__(self) -> "MailConnector":
        stack = ExitStack()
        if hasattr(self.transport, "__enter__"):
            stack.enter_context(self.transport)  # type: ignore[arg-type]
        self._stack = stack
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cache.invalidate()
        if self._stack is not None:
            stack, self._stack = self._stack, None
            stack.close()

    # Helpers -------------------------------------------------------------
    def _transport_failed(self, operation: str, exc: TransportError, **context: object) -> None:
        self._logger.error(
            "transport_failed", operation=operation, diagnostics=exc.diagnostics, **context
        )

    def _lookup(self, key: str) -> Optional[Record]:
        """Resolve ``key``, loading its folder when the record is not cached yet."""

        if not key:
            return None
        try:
            found = self.cache.ensure_loaded(key)
        except TransportError as exc:
            self._transport_failed("load", exc, record=key)
            return None
        if not found:
            self._logger.warning("record_not_found", record=key)
            return None
        return self.cache.resolve(key)

    def _parent_attrs(self, record: Record) -> FolderAttr:
        if record.parent == ROOT_KEY:
            return ROOT_ATTRS
        parent = self.cache.folder(record.parent)
        return parent.attrs if parent is not None else FolderAttr(0)

    def _rejected(self, operation: str, key: str) -> bool:
        self._logger.warning("operation_not_permitted", operation=operation, record=key)
        return False

    def _default_folder(self) -> Optional[FolderRecord]:
        if self.cache.flattened:
            return self.cache.inbox()
        return None

    def _folder_with_role(self, role: FolderAttr) -> Optional[FolderRecord]:
        for record in self.cache.folders():
            if record.attrs & role:
                return record
        return None

    # Listing -------------------------------------------------------------
    def folders(self) -> Dict[str, str]:
        """Return every folder key mapped to the folder type marker."""

        try:
            return {record.key: FOLDER_PREFIX for record in self.cache.folders()}
        except TransportError as exc:
            self._transport_failed("list folders", exc)
            return {}

    def records(self, folder_id: Optional[str] = None) -> Optional[Dict[str, str]]:
        """Return the direct children of ``folder_id`` mapped to their type marker.

        ``None`` lists the root, which in flattened mode is the inbox. Messages
        of the folder are loaded on first use.
        """

        try:
            if folder_id is None:
                inbox = self._default_folder()
                folder_id = inbox.key if inbox is not None else ROOT_KEY
            if folder_id != ROOT_KEY and self.cache.folder(folder_id) is None:
                self._logger.warning("folder_not_found", folder=folder_id)
                return None
            children = self.cache.children(folder_id)
        except TransportError as exc:
            self._transport_failed("list records", exc, folder=folder_id)
            return None
        return {
            child.key: FOLDER_PREFIX if isinstance(child, FolderRecord) else MESSAGE_PREFIX
            for child in children
        }

    def supported_fields(self) -> List[str]:
        return supported_fields()

    def refresh(self) -> bool:
        """Drop every cached record and list the server again."""

        self.cache.invalidate()
        try:
            self.cache.folders()
        except TransportError as exc:
            self._transport_failed("refresh", exc)
            return False
        return True

    # Read ----------------------------------------------------------------
    def read(self, key: str) -> Optional[Document]:
        """Return the document for ``key`` or ``None`` when it cannot be read."""

        record = self._lookup(key)
        if record is None:
            return None
        if isinstance(record, FolderRecord):
            document = Document(kind=RecordKind.FOLDER, record_id=record.key, group_id=record.parent)
            document.add(Tag.GROUP_NAME, record.name)
            document.add(Tag.ATTRIBUTE, int(record.attrs))
            return document
        return self._read_message(record)

    def _read_message(self, record: MessageRecord) -> Optional[Document]:
        folder = self.cache.folder(record.parent)
        if folder is None:
            self._logger.warning("folder_not_found", folder=record.parent, record=record.key)
            return None
        try:
            self.transport.open_folder(folder.path, readonly=True)
            raw = self.transport.fetch_body(record.uid)
        except TransportError as exc:
            self._transport_failed("read", exc, record=record.key)
            return None
        return self.message_document(raw, record, folder)

    def message_document(
        self,
        raw: bytes,
        record: Optional[MessageRecord] = None,
        folder: Optional[FolderRecord] = None,
    ) -> Optional[Document]:
        return translate_message(
            raw,
            self.store,
            self._logger,
            record_id=record.key if record else "",
            group_id=folder.key if folder else "",
            flags=record.flags if record else "",
        )

    # Add -----------------------------------------------------------------
    def add(self, document: Document) -> Optional[str]:
        """Create the remote counterpart of ``document`` and return its key.

        The new key is also written to ``document.record_id`` and the owning
        folder key to ``document.group_id``.
        """

        try:
            if document.kind is RecordKind.FOLDER:
                return self._add_folder(document)
            return self._add_message(document)
        except TransportError as exc:
            self._transport_failed("add", exc, kind=document.kind.value)
            return None

    def _add_folder(self, document: Document) -> Optional[str]:
        name = (document.value(Tag.GROUP_NAME) or "").strip()
        if not name or is_inbox(name):
            self._logger.warning("folder_name_rejected", name=name)
            return None

        parent = self.cache.folder(document.group_id) if document.group_id else None
        if parent is None:
            parent = self._default_folder()

        if parent is None:
            path = name
            delimiter = next((record.delimiter for record in self.cache.folders() if record.delimiter), "")
        elif parent.remote & RemoteFlag.NOINFERIORS:
            path = name
            delimiter = parent.delimiter
        else:
            path = f"{parent.path}{parent.delimiter}{name}"
            delimiter = parent.delimiter

        self.transport.create_folder(path)
        self.transport.subscribe(path)

        listing = self.transport.list_folders(path)
        flags = listing[0].flags if listing else ()
        if listing and listing[0].delimiter:
            delimiter = listing[0].delimiter
        record = FolderRecord(
            key=folder_key(path),
            parent=parent.key if parent is not None else ROOT_KEY,
            name=name,
            path=path,
            delimiter=delimiter,
            remote=RemoteFlag.from_listing(flags),
            attrs=self.tree.attrs_for(path, flags),
        )
        self.cache.put(record)
        document.record_id = record.key
        document.group_id = record.parent
        self._logger.info("folder_added", folder=record.key)
        return record.key

    def _add_message(self, document: Document) -> Optional[str]:
        folder = self.cache.folder(document.group_id) if document.group_id else None
        if folder is None:
            folder = self._default_folder()
        if folder is None:
            self._logger.warning("folder_not_found", folder=document.group_id)
            return None

        message = compose(document, self.store, self._logger)
        if message is None:
            return None
        status = document.value(Tag.STATUS, default="") or ""
        flags = ["\\" + flag for flag in status.split(",") if flag]
        uid = self.transport.append(folder.path, to_wire(message), flags)
        if uid is None:
            self._logger.error("append_uid_unknown", folder=folder.key)
            return None
        record = self.cache.add_message(folder, uid, convert_flags(flags))
        document.record_id = record.key
        document.group_id = folder.key
        self._logger.info("message_added", record=record.key)
        return record.key

    # Update --------------------------------------------------------------
    def update(self, document: Document) -> bool:
        """Apply ``document`` to its existing remote record."""

        key = document.record_id
        record = self._lookup(key)
        if record is None:
            return False
        if not record.attrs & FolderAttr.EDIT or not self._parent_attrs(record) & FolderAttr.WRITE:
            return self._rejected("update", key)
        if isinstance(record, FolderRecord):
            return self._rename_folder(record, document)
        return self._replace_message(record, document)

    def _rename_folder(self, record: FolderRecord, document: Document) -> bool:
        name = (document.value(Tag.GROUP_NAME) or "").strip()
        if record.role != FolderAttr.USER or not name or is_inbox(name):
            return self._rejected("rename", record.key)

        cut = record.path.rfind(record.delimiter) if record.delimiter else -1
        prefix = record.path[: cut + len(record.delimiter)] if cut > 0 else ""
        new_path = prefix + name
        try:
            self.transport.rename_folder(record.path, new_path)
            self.transport.subscribe(new_path)
        except TransportError as exc:
            self._transport_failed("rename", exc, record=record.key)
            return False

        old_key = record.key
        self.cache.rename(record, new_path, name)
        # edit and delete come back with the next refresh
        record.attrs = FolderAttr.READ | FolderAttr.WRITE | record.role
        document.record_id = record.key
        self._logger.info("folder_renamed", old=old_key, new=record.key)
        return True

    def _replace_message(self, record: MessageRecord, document: Document) -> bool:
        old_key = record.key
        if not document.group_id:
            document.group_id = record.parent
        new_key = self.add(document)
        if new_key is None:
            return False
        if not self.delete(old_key):
            self._logger.warning("stale_message_left", record=old_key)
        document.record_id = new_key
        return True

    # Delete --------------------------------------------------------------
    def delete(self, key: str) -> bool:
        """Delete the remote record ``key`` (folders recursively)."""

        record = self._lookup(key)
        if record is None:
            return False
        if isinstance(record, FolderRecord):
            if not record.attrs & FolderAttr.DEL or record.attrs & FolderAttr.MBOX_IN:
                return self._rejected("delete", key)
            return self._delete_folder(record)
        if not self._parent_attrs(record) & FolderAttr.WRITE:
            return self._rejected("delete", key)
        return self._delete_message(record)

    def _delete_folder(self, record: FolderRecord) -> bool:
        try:
            children = self.cache.children(record.key)
        except TransportError as exc:
            self._transport_failed("delete", exc, record=record.key)
            return False
        messages = [child for child in children if isinstance(child, MessageRecord)]
        folders = [child for child in children if isinstance(child, FolderRecord)]
        for child in messages + folders:
            if not self.delete(child.key):
                return False

        inbox = self.cache.inbox()
        try:
            if inbox is not None:
                self.transport.open_folder(inbox.path)
            self.transport.delete_folder(record.path)
        except TransportError as exc:
            self._transport_failed("delete", exc, record=record.key)
            return False
        self.cache.drop(record.key)
        self._logger.info("folder_deleted", folder=record.key)
        return True

    def _delete_message(self, record: MessageRecord) -> bool:
        folder = self.cache.folder(record.parent)
        if folder is None:
            self._logger.warning("folder_not_found", folder=record.parent, record=record.key)
            return False
        try:
            self.transport.open_folder(folder.path)
            self.transport.delete_message(record.uid)
            self.transport.expunge()
        except TransportError as exc:
            self._transport_failed("delete", exc, record=record.key)
            return False
        self.cache.drop(record.key)
        self._logger.info("message_deleted", record=record.key)
        return True

    # Send ----------------------------------------------------------------
    def _save_sent(self, document: Document, raw: bytes) -> None:
        """Append an already sent message to Sent; failures are only logged."""

        try:
            sent = self._folder_with_role(FolderAttr.SENT)
            if sent is None:
                self._logger.warning("special_folder_missing", role=FolderAttr.SENT.name)
                return
            uid = self.transport.append(sent.path, raw, ["\\Seen"])
        except TransportError as exc:
            self._transport_failed("save sent", exc)
            return
        if uid is not None:
            record = self.cache.add_message(sent, uid, "Seen")
            document.record_id = record.key
            document.group_id = sent.key

    def send_mail(self, save: bool, item: Union[Document, bytes, str]) -> Optional[Document]:
        """Send a document or a raw RFC 5322 message.

        What:
          A raw message is first stored in Sent (``save``) or Trash so it can be
          read back as a document, then composed and sent. The Trash copy is
          deleted afterwards, and any staged copy is deleted when the send
          fails. A document is composed and sent directly and,
          with ``save``, appended to Sent.

        Returns:
          The sent document (with its Sent record key when saved), or ``None``
          on failure or when nothing was kept.
        """

        staged: Optional[MessageRecord] = None
        sent = False
        try:
            if isinstance(item, Document):
                document = item
            else:
                raw = item.encode("utf-8") if isinstance(item, str) else item
                role = FolderAttr.SENT if save else FolderAttr.TRASH
                folder = self._folder_with_role(role)
                if folder is None:
                    self._logger.warning("special_folder_missing", role=role.name)
                    return None
                uid = self.transport.append(folder.path, raw)
                if uid is None:
                    self._logger.error("append_uid_unknown", folder=folder.key)
                    return None
                staged = self.cache.add_message(folder, uid)
                document = self.message_document(raw, staged, folder)
                if document is None:
                    return None

            message = compose(document, self.store, self._logger)
            if message is None:
                return None
            self.sender.send(message)
            sent = True
        except TransportError as exc:
            self._transport_failed("send", exc)
            return None
        except SendError as exc:
            self._logger.error("send_failed", error=str(exc))
            return None
        finally:
            # the staged copy only survives a successful send with save
            if staged is not None and not (sent and save):
                self.delete(staged.key)

        if staged is None:
            if save:
                self._save_sent(document, self.sender.serialize(message))
            return document
        return document if save else None
