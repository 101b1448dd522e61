"""Recursive MIME decomposition into document bodies and attachments.

What:
  Walk the MIME tree of an inbound message and split it into at most one plain
  body, at most one HTML body and a list of attachment descriptors whose bytes
  live in the attachment store.

Why:
  Messages split their text across parts (signatures, inline images between
  paragraphs, forwarded messages), declare charsets that do not match their
  bytes and mark text files as ``text/plain``. The document model wants exactly
  one body per kind and a clean list of attachments, so the walk has to
  reassemble and classify consistently.

How:
  :func:`decompose` recurses through ``multipart/*`` containers. Each leaf is
  decoded from its transfer encoding by the ``email`` package. A leaf with a
  file name is always an attachment; text leaves are decoded to ``str`` and
  appended to the plain or HTML buffer; a ``multipart/*`` part without a
  boundary is read as one text leaf; an embedded ``message/rfc822`` part is
  appended verbatim to the plain buffer. Once the walk ends the buffers are
  trimmed and written as ``Body`` fields.

Interfaces:
  :func:`decompose`, :class:`DecomposeReport`.

Invariants & Safety:
  - Part order is preserved inside each buffer and in the attachment list.
  - Undecodable text never aborts the walk; it is replaced and reported.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from email.message import EmailMessage, Message
from typing import List, Optional

from ..utils.mime import UTF8_CODE_PAGE, charset_for, code_page_for, decode_text, has_8bit, strip_tags
from .attachments import AttachmentStore
from .document import BODY_HTML, BODY_PLAIN, BODY_TYPE_ATTR, Document, Tag


PLAIN_SEPARATOR = "\n\n"
HTML_SEPARATOR = "<br>"
ATTACH_METHOD = "1"


@dataclass
class DecomposeReport:
    """What the walk found.

    Attributes:
      attachments: Number of attachment descriptors added.
      plain_parts: Number of parts appended to the plain buffer.
      html_parts: Number of parts appended to the HTML buffer.
      anomalies: Unknown charsets and dropped parts.
    """

    attachments: int = 0
    plain_parts: int = 0
    html_parts: int = 0
    anomalies: List[str] = field(default_factory=list)


@dataclass
class _Buffers:
    plain: List[str] = field(default_factory=list)
    html: List[str] = field(default_factory=list)
    code_page: Optional[int] = None


def _strip_cid(value: Optional[str]) -> str:
    return (value or "").strip().replace("<", "").replace(">", "")


def _payload(part: Message) -> bytes:
    if part.get_content_type() == "message/rfc822":
        inner = part.get_payload()
        if isinstance(inner, list) and inner:
            return inner[0].as_bytes()
        return str(inner or "").encode("utf-8", errors="replace")
    data = part.get_payload(decode=True)
    return data if isinstance(data, bytes) else b""


def _add_attachment(
    document: Document,
    store: AttachmentStore,
    name: str,
    data: bytes,
    part: Message,
) -> None:
    encoding = str(part.get("Content-Transfer-Encoding", "7bit")).strip().lower()
    reference = store.create(data, part.get_content_type(), encoding)
    node = document.add(Tag.ATTACHMENT)
    document.add(Tag.DISPLAY_NAME, name, node)
    document.add(Tag.FILE_REFERENCE, reference, node)
    document.add(Tag.METHOD, ATTACH_METHOD, node)
    document.add(Tag.ESTIMATED_DATA_SIZE, store.size_of(reference), node)
    content_id = _strip_cid(part.get("Content-ID"))
    if content_id:
        document.add(Tag.CONTENT_ID, content_id, node)


def _walk(
    part: Message,
    document: Document,
    store: AttachmentStore,
    buffers: _Buffers,
    report: DecomposeReport,
    path: str,
) -> None:
    ctype = part.get_content_type()
    if part.get_content_maintype() == "multipart":
        if part.is_multipart():
            for number, sub in enumerate(part.get_payload(), start=1):
                _walk(sub, document, store, buffers, report, f"{path}.{number}" if path else str(number))
            return
        # no boundary: the email package keeps the body as one string
        report.anomalies.append(f"{ctype} part {path or '0'} has no boundary")

    data = _payload(part)
    name = part.get_filename()

    # a named part is an attachment even when it is text
    if name:
        _add_attachment(document, store, name, data, part)
        report.attachments += 1
        return

    if ctype == "message/rfc822":
        text, _ = decode_text(data, "utf-8")
        text = text.replace("\r\n", "\n")
        buffers.plain.append(text.strip())
        report.plain_parts += 1
        return

    if part.get_content_maintype() not in ("text", "multipart"):
        content_id = _strip_cid(part.get("Content-ID"))
        if content_id:
            _add_attachment(document, store, content_id, data, part)
            report.attachments += 1
        else:
            report.anomalies.append(f"dropped unnamed {ctype} part {path or '0'}")
        return

    charset = part.get_content_charset() or "utf-8"
    if not has_8bit(data):
        charset = "us-ascii"
    text, recognised = decode_text(data, charset)
    text = text.replace("\r\n", "\n")
    if not recognised:
        report.anomalies.append(f"unknown charset {charset!r} in part {path or '0'}")
    else:
        code_page = code_page_for(charset)
        if code_page is not None and buffers.code_page is None:
            buffers.code_page = code_page

    if part.get_content_subtype() == "html":
        buffers.html.append(text.strip())
        report.html_parts += 1
    else:
        buffers.plain.append(text.strip())
        report.plain_parts += 1


def _widen(code_page: Optional[int], text: str) -> Optional[int]:
    """Return ``code_page``, or UTF-8 when a later part needs characters it lacks."""

    if code_page is None:
        return None
    try:
        text.encode(charset_for(code_page) or "utf-8")
    except (UnicodeEncodeError, LookupError):
        return UTF8_CODE_PAGE
    return code_page


def _trim_html(html: str) -> str:
    html = html.strip()
    while html.lower().endswith(HTML_SEPARATOR):
        html = html[: -len(HTML_SEPARATOR)].rstrip()
    return html


def decompose(message: EmailMessage, document: Document, store: AttachmentStore) -> DecomposeReport:
    """Split ``message`` into bodies and attachments on ``document``.

    What:
      Adds ``Attachment`` fields while walking, then ``Body`` fields (``X-TYP``
      ``1`` plain, ``2`` HTML), ``NativeBodyType`` and, for HTML-only messages,
      a tag-stripped plain fallback. The first recognised text charset sets
      ``InternetCPID``, widened to UTF-8 when the joined bodies hold characters
      that code page cannot carry.

    Why:
      Reading clients expect a plain body for previews even when the sender
      only produced HTML.

    Args:
      message: Parsed inbound message.
      document: Target document; header fields are usually mapped already.
      store: Attachment store receiving every attachment payload.

    Returns:
      A :class:`DecomposeReport`; the caller logs its anomalies.

    Raises:
      AttachmentError: If the store cannot keep an attachment.
    """

    report = DecomposeReport()
    buffers = _Buffers()
    _walk(message, document, store, buffers, report, "")

    plain = PLAIN_SEPARATOR.join(chunk for chunk in buffers.plain if chunk).strip()
    html = _trim_html(HTML_SEPARATOR.join(chunk for chunk in buffers.html if chunk))

    code_page = _widen(buffers.code_page, plain + html)
    if code_page is not None and not document.has(Tag.INTERNET_CPID):
        document.add(Tag.INTERNET_CPID, code_page)

    if plain:
        document.add(Tag.BODY, plain, attrs={BODY_TYPE_ATTR: BODY_PLAIN})
    if html:
        document.add(Tag.BODY, html, attrs={BODY_TYPE_ATTR: BODY_HTML})
        document.add(Tag.NATIVE_BODY_TYPE, BODY_HTML)
        if not plain:
            document.add(Tag.BODY, strip_tags(html), attrs={BODY_TYPE_ATTR: BODY_PLAIN})
    elif plain:
        document.add(Tag.NATIVE_BODY_TYPE, BODY_PLAIN)
    return report
