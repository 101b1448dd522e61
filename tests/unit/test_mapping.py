"""Tests for the header mapping engine.

What:
  Validate inbound header mapping, flag conversion, derived fields and the
  outbound header writer.

Why:
  The mapping table decides which fields a reading client sees; regressions
  here show up as missing senders, wrong dates or broken threads.

How:
  Parse small RFC 5322 messages with :func:`parse_message`, map them onto empty
  documents and assert field values and report contents.
"""

import hashlib

from email.message import EmailMessage

from mailbridge.core import cvindex
from mailbridge.core.document import Document, Tag
from mailbridge.core.mapping import (
    apply_flags,
    derive_fields,
    document_to_headers,
    format_address,
    format_date,
    headers_to_document,
    importance_to_priority,
    parse_date,
    priority_to_importance,
    select_charset,
    supported_fields,
)
from mailbridge.utils.ids import thread_guid
from mailbridge.utils.mime import collect_headers, parse_message

JAN_FIRST = 1704103200


def _map(raw: bytes):
    document = Document()
    report = headers_to_document(collect_headers(parse_message(raw)), document)
    return document, report


def test_headers_map_to_fields():
    raw = (
        b"From: Alice <alice@example.org>\r\n"
        b"To: Bob <bob@example.org>, carol@example.org\r\n"
        b"Subject: Hi\r\n"
        b"Date: Mon, 1 Jan 2024 10:00:00 +0000\r\n"
        b"Message-ID: <hi-1@example.org>\r\n"
        b"MIME-Version: 1.0\r\n"
        b"Content-Type: text/plain\r\n"
        b"\r\nhello\r\n"
    )
    document, report = _map(raw)
    assert document.value(Tag.SUMMARY) == "Hi"
    assert document.values(Tag.FROM) == ["Alice <alice@example.org>"]
    assert document.values(Tag.TO) == ["Bob <bob@example.org>", "carol@example.org"]
    assert document.value(Tag.CREATED) == str(JAN_FIRST)
    assert document.value(Tag.MESSAGE_ID) == "<hi-1@example.org>"
    assert document.value(Tag.CONTENT_CLASS) == "urn:content-classes:message"
    assert report.unused == []
    assert "subject" in report.mapped


def test_field_order_follows_table_not_wire():
    document, _ = _map(b"Date: Mon, 1 Jan 2024 10:00:00 +0000\r\nSubject: Hi\r\nTo: a@example.org\r\n\r\n")
    tags = [document.node(index).tag for index in document.walk()]
    assert tags[:3] == ["Summary", "To", "Created"]


def test_unused_headers_skip_extensions_and_ignored_names():
    document, report = _map(
        b"Subject: Hi\r\nX-Custom: 1\r\nReceived: from relay\r\nFoo-Bar: baz\r\n\r\n"
    )
    assert report.unused == ["foo-bar"]


def test_encoded_words_are_decoded():
    document, _ = _map(b"Subject: =?utf-8?q?caf=C3=A9?=\r\n\r\n")
    assert document.value(Tag.SUMMARY) == "café"


def test_priority_header_maps_to_importance():
    assert _map(b"X-Priority: 1 (Highest)\r\n\r\n")[0].value(Tag.IMPORTANCE) == "2"
    assert _map(b"X-Priority: 3\r\n\r\n")[0].value(Tag.IMPORTANCE) == "1"
    assert _map(b"X-Priority: 5 (Lowest)\r\n\r\n")[0].value(Tag.IMPORTANCE) == "0"
    document, report = _map(b"X-Priority: urgent\r\n\r\n")
    assert not document.has(Tag.IMPORTANCE)
    assert report.anomalies == ["unknown x-priority value"]


def test_unparsable_date_is_reported():
    document, report = _map(b"Date: sometime next week\r\n\r\n")
    assert not document.has(Tag.CREATED)
    assert report.anomalies == ["unparsable date header"]


def test_parse_date_ignores_trailing_text():
    assert parse_date("Mon, 1 Jan 2024 18:00:00 +0800 (UTC+8)") == JAN_FIRST
    assert parse_date("Mon, 1 Jan 2024 12:00:00 +0200; ;") == JAN_FIRST


def test_format_date_uses_unpadded_day():
    assert format_date(JAN_FIRST) == "Mon, 1 Jan 2024 10:00:00 +0000"


def test_priority_tables():
    assert priority_to_importance("2") == "2"
    assert priority_to_importance("4") == "0"
    assert importance_to_priority("0") == "5 (Lowest)"
    assert importance_to_priority("1") == "3 (Normal)"
    assert importance_to_priority("2") == "1 (Highest)"
    assert importance_to_priority("9") is None


def test_apply_flags():
    document = Document()
    apply_flags(document, "Seen,Draft")
    assert document.value(Tag.STATUS) == "Seen,Draft"
    assert document.value(Tag.IS_DRAFT) == "1"
    assert document.value(Tag.READ) == "1"

    unread = Document()
    apply_flags(unread, "")
    assert not unread.has(Tag.STATUS)
    assert unread.value(Tag.READ) == "0"


def test_derive_fields_synthesizes_threading():
    """
    What:
      A message without ``Thread-Index`` gets a subject-hash conversation id
      and a header-only index built from its creation time.
    """

    document = Document()
    document.add(Tag.SUMMARY, "Hi")
    document.add(Tag.CREATED, JAN_FIRST)
    assert derive_fields(document) == []
    conv_id = hashlib.md5(b"Hi").hexdigest()[:16]
    assert document.value(Tag.CONVERSATION_ID) == conv_id
    assert document.value(Tag.INTERNET_CPID) == "65001"
    assert document.value(Tag.MESSAGE_CLASS) == "IPM.Note"
    assert document.value(Tag.IMPORTANCE) == "1"
    decoded = cvindex.decode(document.value(Tag.CONVERSATION_INDEX))
    assert decoded.guid == thread_guid(conv_id)
    assert decoded.timestamp == cvindex.filetime_from_unix(JAN_FIRST) & ~0xFFFF


def test_derive_fields_reuses_valid_thread_index():
    token = cvindex.encode_header(cvindex.filetime_from_unix(JAN_FIRST), bytes(range(16)))
    document, _ = _map(b"Subject: Hi\r\nThread-Index: " + token.encode() + b"\r\n\r\n")
    assert derive_fields(document) == []
    assert document.value(Tag.CONVERSATION_INDEX) == token


def test_derive_fields_reports_malformed_thread_index():
    document, _ = _map(b"Subject: Hi\r\nThread-Index: ###\r\n\r\n")
    assert derive_fields(document) == ["malformed thread-index header"]
    decoded = cvindex.decode(document.value(Tag.CONVERSATION_INDEX))
    assert decoded.guid == hashlib.md5(b"###").digest()


def test_derive_fields_keeps_decoded_code_page():
    document = Document()
    document.add(Tag.INTERNET_CPID, "28591")
    document.add(Tag.IMPORTANCE, "2")
    derive_fields(document)
    assert document.values(Tag.INTERNET_CPID) == ["28591"]
    assert document.values(Tag.IMPORTANCE) == ["2"]


def test_document_to_headers():
    document = Document()
    document.add(Tag.SUMMARY, "Hi")
    document.add(Tag.FROM, "Old <old@example.org>")
    document.add(Tag.FROM, "Alice <alice@example.org>")
    document.add(Tag.TO, "Bob <bob@example.org>")
    document.add(Tag.TO, "carol@example.org")
    document.add(Tag.CREATED, JAN_FIRST)
    document.add(Tag.IMPORTANCE, "2")
    document.add(Tag.THREAD_TOPIC, "not written back")
    message = EmailMessage()
    document_to_headers(document, message)
    assert message["Subject"] == "Hi"
    assert message["From"] == "Alice <alice@example.org>"
    assert message["To"] == "Bob <bob@example.org>, carol@example.org"
    assert message["Date"].datetime.timestamp() == JAN_FIRST
    assert message["X-Priority"] == "1 (Highest)"
    assert message["Thread-Topic"] is None


def test_document_to_headers_skips_out_of_range_dates():
    document = Document()
    document.add(Tag.SUMMARY, "Hi")
    document.add(Tag.CREATED, 10**20)
    message = EmailMessage()
    document_to_headers(document, message)
    assert message["Subject"] == "Hi"
    assert message["Date"] is None


def test_format_address_quotes_specials():
    assert format_address("", "a@example.org") == "a@example.org"
    assert format_address("Doe, Jane", "jane@example.org") == '"Doe, Jane" <jane@example.org>'


def test_select_charset():
    def charset(code_page):
        document = Document()
        if code_page is not None:
            document.add(Tag.INTERNET_CPID, code_page)
        return select_charset(document)

    assert charset("20127") == "us-ascii"
    assert charset("28591") == "iso-8859-1"
    assert charset("iso-8859-1x") == "iso-8859-1"
    assert charset("65001") == "utf-8"
    assert charset(None) == "utf-8"


def test_supported_fields_are_unique():
    fields = supported_fields()
    assert "Summary" in fields and "To" in fields
    assert "Body" not in fields
    assert len(fields) == len(set(fields))
