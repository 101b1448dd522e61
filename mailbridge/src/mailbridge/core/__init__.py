"""Aggregated exports for the mailbridge translation core.

What:
  Provide a package facade over the document model, the header mapping, the
  MIME decomposer and composer, the thread-index codec and the connector
  session.

Why:
  The connector pulls in the IMAP layer, which in turn imports the mapping
  tables from this package. Resolving names lazily keeps ``import
  mailbridge.core`` free of that cycle and keeps the CLI's ``decode-index``
  command from loading the IMAP stack at all.

How:
  Defines ``__all__`` explicitly and implements ``__getattr__`` to import the
  owning submodule on demand.

Interfaces:
  ``Document``, ``Tag``, ``RecordKind``, ``ConversationIndex``, ``to_wire``,
  ``headers_to_document``, ``document_to_headers``, ``derive_fields``,
  ``MailConnector``. The composer and decomposer are imported from their
  modules, whose names they share.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "Document",
    "Tag",
    "RecordKind",
    "ConversationIndex",
    "to_wire",
    "headers_to_document",
    "document_to_headers",
    "derive_fields",
    "MailConnector",
]


def __getattr__(name: str) -> Any:
    """Resolve public names lazily.

    Raises:
      AttributeError: If ``name`` is not part of the public surface.
    """

    if name in {"Document", "Tag", "RecordKind"}:
        from . import document

        return getattr(document, name)
    if name == "ConversationIndex":
        from . import cvindex

        return cvindex.ConversationIndex
    if name == "to_wire":
        from .compose import to_wire

        return to_wire
    if name in {"headers_to_document", "document_to_headers", "derive_fields"}:
        from . import mapping

        return getattr(mapping, name)
    if name == "MailConnector":
        from . import connector

        return connector.MailConnector
    raise AttributeError(name)
