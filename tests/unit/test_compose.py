"""Tests for outbound message composition.

What:
  Check that documents render to complete MIME messages: bodies, charsets,
  inline and regular attachments, and the placeholder sender rule.

Why:
  The same composer feeds IMAP appends and SMTP sends, so a message read from
  the mailbox must come back unchanged after a compose round trip.
"""

from mailbridge.core.compose import compose, to_wire
from mailbridge.core.connector import translate_message
from mailbridge.core.document import Document, Tag
from mailbridge.utils.mime import parse_message

from fakes import SIMPLE_MESSAGE


def _html_document():
    document = Document()
    document.add(Tag.SUMMARY, "Newsletter")
    document.add(Tag.FROM, "Alice <alice@example.org>")
    document.add(Tag.BODY, "<p>Hi</p>", attrs={"X-TYP": "2"})
    return document


def test_round_trip_keeps_headers_and_body(store, logger):
    document = translate_message(SIMPLE_MESSAGE, store, logger)
    message = compose(document, store, logger)
    parsed = parse_message(to_wire(message))
    assert parsed["Subject"] == "Hi"
    assert parsed["From"] == "Alice <alice@example.org>"
    assert parsed["To"] == "Bob <bob@example.org>"
    assert parsed["Message-ID"] == "<hi-1@example.org>"
    assert parsed.get_content_charset() == "us-ascii"
    assert parsed.get_content().strip() == "hello"


def test_wire_format_uses_crlf(store, logger):
    document = translate_message(SIMPLE_MESSAGE, store, logger)
    wire = to_wire(compose(document, store, logger))
    assert wire.startswith(b"Subject: Hi\r\n")
    assert b"\n" not in wire.replace(b"\r\n", b"")


def test_html_body_gets_plain_alternative(store):
    message = compose(_html_document(), store)
    assert message.get_content_type() == "multipart/alternative"
    assert message.get_body(preferencelist=("plain",)).get_content().strip() == "Hi"
    assert "<p>Hi</p>" in message.get_body(preferencelist=("html",)).get_content()


def test_inline_attachment_is_related_to_html(store):
    document = _html_document()
    node = document.add(Tag.ATTACHMENT)
    document.add(Tag.DISPLAY_NAME, "logo.png", node)
    document.add(Tag.FILE_REFERENCE, store.create(b"\x89PNG fake", "image/png", "base64"), node)
    document.add(Tag.CONTENT_ID, "logo@x", node)
    message = compose(document, store)
    related = [part for part in message.walk() if part.get_content_type() == "multipart/related"]
    assert len(related) == 1
    images = [part for part in message.walk() if part["Content-ID"] == "<logo@x>"]
    assert images[0].get_content() == b"\x89PNG fake"


def test_regular_attachment(store):
    document = Document()
    document.add(Tag.BODY, "see attached", attrs={"X-TYP": "1"})
    node = document.add(Tag.ATTACHMENT)
    document.add(Tag.DISPLAY_NAME, "report.pdf", node)
    document.add(Tag.FILE_REFERENCE, store.create(b"%PDF", "application/pdf", "base64"), node)
    message = compose(document, store)
    (attachment,) = list(message.iter_attachments())
    assert attachment.get_filename() == "report.pdf"
    assert attachment.get_content_type() == "application/pdf"
    assert attachment.get_content() == b"%PDF"


def test_missing_attachment_aborts(store, logger, log_stream):
    document = Document()
    node = document.add(Tag.ATTACHMENT)
    document.add(Tag.DISPLAY_NAME, "gone.bin", node)
    document.add(Tag.FILE_REFERENCE, "sha256:" + "0" * 64, node)
    assert compose(document, store, logger) is None
    assert "attachment_unavailable" in log_stream.getvalue()


def test_placeholder_sender_is_dropped(store):
    document = Document()
    document.add(Tag.FROM, "root@localhost")
    document.add(Tag.TO, "bob@example.org")
    message = compose(document, store)
    assert message["From"] is None
    assert message["To"] == "bob@example.org"


def test_latin1_document_is_recoded(store):
    document = Document()
    document.add(Tag.INTERNET_CPID, "28591")
    document.add(Tag.BODY, "café €", attrs={"X-TYP": "1"})
    message = compose(document, store)
    assert message.get_content_charset() == "iso-8859-1"
    assert message.get_content().startswith("café ?")


def test_mixed_charset_message_keeps_characters(store, logger):
    raw = (
        b"MIME-Version: 1.0\r\n"
        b'Content-Type: multipart/mixed; boundary="b"\r\n'
        b"\r\n"
        b"--b\r\nContent-Type: text/plain; charset=us-ascii\r\n\r\nfirst part\r\n"
        b"--b\r\nContent-Type: text/plain; charset=utf-8\r\n"
        b"Content-Transfer-Encoding: 8bit\r\n\r\ncaf\xc3\xa9\r\n"
        b"--b--\r\n"
    )
    document = translate_message(raw, store, logger)
    message = compose(document, store, logger)
    parsed = parse_message(to_wire(message))
    assert parsed.get_content_charset() == "utf-8"
    assert parsed.get_content().replace("\r\n", "\n").strip() == "first part\n\ncafé"
