"""Pytest fixtures for unit tests requiring IMAP fakes.

What:
  Make ``tests/unit`` importable and expose a seeded :class:`FakeImapBackend`,
  an :class:`ImapTransport` wired to it, and a ready :class:`MailConnector`.

Why:
  Connector tests assert on backend state (folders, UIDs, command order) while
  driving the public session API; exposing both ends keeps assertions explicit.

How:
  Monkeypatches ``mailbridge.imap.transport.IMAPClient`` to return the fake
  backend, so the transport's login, throttling and error conversion run
  exactly as in production.

Interfaces:
  :func:`backend`, :func:`log_stream`, :func:`logger`, :func:`transport`,
  :func:`store`, :func:`sender`, :func:`connector`.

Invariants & Safety:
  - Each test receives a fresh backend instance.
"""

import io
import sys
from pathlib import Path

import pytest

from mailbridge.config.schema import ImapSettings, SpecialFolders
from mailbridge.core.attachments import MemoryAttachmentStore
from mailbridge.core.connector import MailConnector
from mailbridge.imap.transport import ImapTransport
from mailbridge.utils.logging import JsonLogger

UNIT_DIR = Path(__file__).resolve().parent
if str(UNIT_DIR) not in sys.path:
    sys.path.insert(0, str(UNIT_DIR))

from fakes import SIMPLE_MESSAGE, FakeImapBackend, RecordingSender


@pytest.fixture
def backend() -> FakeImapBackend:
    """Backend with an inbox, special folders and one nested user folder."""

    fake = FakeImapBackend()
    fake.add_folder("INBOX", [b"\\HasChildren"])
    fake.add_folder("INBOX.Work", [b"\\HasNoChildren"])
    fake.add_folder("Sent", [b"\\Sent", b"\\HasNoChildren"])
    fake.add_folder("Trash", [b"\\HasNoChildren"])
    fake.add_folder("Drafts", [b"\\Drafts"])
    fake.add_folder("Archive", subscribed=False)
    fake.add_message("INBOX", SIMPLE_MESSAGE, [b"\\Seen"])
    return fake


@pytest.fixture
def log_stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def logger(log_stream: io.StringIO) -> JsonLogger:
    return JsonLogger(stream=log_stream, component="test", level="DEBUG")


@pytest.fixture
def transport(monkeypatch: pytest.MonkeyPatch, backend: FakeImapBackend, logger: JsonLogger):
    monkeypatch.setattr("mailbridge.imap.transport.IMAPClient", lambda host, **kwargs: backend)
    return ImapTransport(ImapSettings(host="imap.test"), "user", "secret", logger=logger)


@pytest.fixture
def store() -> MemoryAttachmentStore:
    return MemoryAttachmentStore()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def connector(transport, sender, store, logger):
    """Open a connector session over the fake backend."""

    session = MailConnector(
        transport,
        sender,
        store,
        SpecialFolders(trash="Trash", drafts="Drafts"),
        logger=logger,
    )
    with session:
        yield session
