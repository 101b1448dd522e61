"""
Module: mailbridge.__init__

What:
  Aggregate package exports for the mailbridge connector, which reconciles a
  remote IMAP account with the hierarchical document model of a
  synchronization engine.

Why:
  Entry points and the CLI import these subpackages by name; an explicit
  ``__all__`` keeps the supported surface obvious while the internal layout
  evolves.

Interfaces:
  - config: Runtime configuration loader and schema.
  - core: Thread-index codec, document model, header mapping, MIME
    decomposition/composition and the connector session.
  - imap: Mailbox transport, folder tree manager and record cache.
  - smtp: Outbound mail sender.
  - utils: Logging, identity keys and MIME helpers.
"""

__all__ = [
    "config",
    "core",
    "imap",
    "smtp",
    "utils",
]
