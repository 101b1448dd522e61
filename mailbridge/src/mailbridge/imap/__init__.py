"""Facade for the IMAP integration layer.

What:
  Surface the mailbox transport, the folder tree manager and the record cache
  used by the connector session.

Why:
  Call sites depend on these names only, so the transport can evolve without
  touching the connector.

Interfaces:
  ``ImapTransport``, ``MailboxTransport``, ``TransportError``, ``MailboxTree``,
  ``RecordCache``, ``FolderRecord``, ``MessageRecord``, ``FolderAttr``.

Invariants & Safety:
  - All message access is UID based.
  - Every IMAP operation goes through :class:`ImapTransport` to inherit rate
    limiting and error conversion.
"""

from .cache import RecordCache
from .transport import ImapTransport, MailboxTransport, TransportError
from .tree import FolderAttr, FolderRecord, MailboxTree, MessageRecord

__all__ = [
    "FolderAttr",
    "FolderRecord",
    "ImapTransport",
    "MailboxTransport",
    "MailboxTree",
    "MessageRecord",
    "RecordCache",
    "TransportError",
]
