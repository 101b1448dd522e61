"""Tests for the IMAP transport wrapper.

What:
  Drive :class:`ImapTransport` against the in-memory backend and check the
  conversions it performs: listings to :class:`FolderListing`, library errors
  to :class:`TransportError`, APPENDUID parsing and the action throttle.

Why:
  Everything above the transport assumes plain ``str`` flags and a single
  exception type carrying the server diagnostics.
"""

import pytest
from imapclient.exceptions import IMAPClientError

from mailbridge.config.schema import ImapSettings
from mailbridge.imap.transport import FolderListing, ImapTransport, MessageOverview, TransportError

from fakes import SIMPLE_MESSAGE


def test_session_logs_in_and_out(transport, backend):
    with transport:
        assert backend.logged_in
    assert not backend.logged_in
    assert backend.command_names() == ["login", "logout"]


def test_connect_failure_is_a_transport_error(monkeypatch, logger):
    def refuse(host, **kwargs):
        raise OSError("connection refused")

    monkeypatch.setattr("mailbridge.imap.transport.IMAPClient", refuse)
    transport = ImapTransport(ImapSettings(host="imap.test"), "user", "secret", logger=logger)
    with pytest.raises(TransportError) as info:
        with transport:
            pass
    assert info.value.diagnostics == ["connect imap.test:993: connection refused"]


def test_listing_converts_bytes(transport):
    with transport:
        listing = transport.list_folders()
        subscribed = transport.list_subscribed()
    assert listing[0] == FolderListing(flags=("\\HasChildren",), delimiter=".", name="INBOX")
    assert "Archive" in [entry.name for entry in listing]
    assert "Archive" not in [entry.name for entry in subscribed]


def test_overviews_and_body(transport):
    with transport:
        transport.open_folder("INBOX", readonly=True)
        assert transport.list_message_overviews() == [MessageOverview(uid=1, flags=("\\Seen",))]
        assert transport.fetch_body(1) == SIMPLE_MESSAGE
        assert transport.fetch_structure(1)[0] == b"text"
        with pytest.raises(TransportError):
            transport.fetch_body(99)


def test_server_refusal_keeps_diagnostics(transport, backend):
    with transport:
        with pytest.raises(TransportError) as info:
            transport.open_folder("Missing")
    assert info.value.diagnostics[0].startswith("select Missing: ")
    assert isinstance(info.value.__cause__, IMAPClientError)


def test_append_reads_appenduid(transport, backend):
    with transport:
        uid = transport.append("INBOX.Work", SIMPLE_MESSAGE, ["\\Seen"])
    assert uid == 2
    assert backend.folders["INBOX.Work"][2].flags == {b"\\Seen"}


def test_append_without_appenduid_uses_highest_uid(transport, backend):
    backend.appenduid = False
    with transport:
        uid = transport.append("INBOX", SIMPLE_MESSAGE)
    assert uid == 2
    assert backend.command_names()[-2:] == ["select", "search"]


def test_delete_flags_then_expunge(transport, backend):
    with transport:
        transport.open_folder("INBOX")
        transport.delete_message(1)
        assert b"\\Deleted" in backend.folders["INBOX"][1].flags
        transport.expunge()
    assert backend.folders["INBOX"] == {}


def test_mutations_are_throttled(monkeypatch, backend, logger):
    monkeypatch.setattr("mailbridge.imap.transport.IMAPClient", lambda host, **kwargs: backend)
    settings = ImapSettings(host="imap.test", actions_per_minute=2)
    with ImapTransport(settings, "user", "secret", logger=logger) as transport:
        transport.create_folder("One")
        transport.create_folder("Two")
        with pytest.raises(TransportError) as info:
            transport.create_folder("Three")
        # reads are not counted
        transport.list_folders()
    assert info.value.diagnostics == ["IMAP action rate limit exceeded"]
    assert "Three" not in backend.folders


def test_client_requires_connection(transport):
    with pytest.raises(TransportError):
        transport.list_folders()
