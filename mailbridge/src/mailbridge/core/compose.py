"""Assemble outbound MIME messages from documents.

What:
  Build an :class:`email.message.EmailMessage` from a message document: the
  mapped headers, the body (HTML with a plain alternative, or plain alone) and
  every attachment re-read from the attachment store.

Why:
  Adding a message to a folder and sending mail both start from a document
  produced by the synchronization engine. The result has to be a standalone
  RFC 5322 message in the charset the document declares.

How:
  Starts from a fresh message each time, applies the outbound header mapping,
  then uses the ``email`` content manager: ``set_content`` for the first body,
  ``add_alternative`` for HTML, ``add_related`` for inline images referenced
  from HTML and ``add_attachment`` for everything else. Binary parts are always
  base64 encoded.

Interfaces:
  :func:`compose`, :func:`to_wire`, :data:`PLACEHOLDER_SENDERS`.

Invariants & Safety:
  - Attachment store failures are logged and turn into ``None``; a partially
    assembled message is never returned.
  - A placeholder sender is removed instead of being sent.
"""
from __future__ import annotations

from email import policy
from email.message import EmailMessage
from email.utils import getaddresses
from typing import List, Optional, Tuple

from ..utils.logging import JsonLogger, get_logger
from ..utils.mime import strip_tags
from .attachments import AttachmentError, AttachmentStore
from .document import BODY_HTML, BODY_TYPE_ATTR, Document, Tag
from .mapping import document_to_headers, select_charset


PLACEHOLDER_SENDERS = frozenset({"root@localhost", "x@x.invalid"})
DUMMY_BODY = " "


def _recode(text: str, charset: str) -> str:
    """Return ``text`` restricted to the characters ``charset`` can carry."""

    return text.encode(charset, errors="replace").decode(charset)


def _fits(text: str, charset: str) -> bool:
    try:
        text.encode(charset)
    except UnicodeEncodeError:
        return False
    return True


def _bodies(document: Document) -> Tuple[Optional[str], Optional[str]]:
    plain: Optional[str] = None
    html: Optional[str] = None
    cursor = document.cursor()
    while cursor.find(Tag.BODY) is not None:
        if cursor.attr(BODY_TYPE_ATTR) == BODY_HTML:
            html = cursor.value or ""
        else:
            plain = cursor.value or ""
    return plain, html


def _attachments(document: Document) -> List[Tuple[str, str, str]]:
    """Return ``(display name, reference, content id)`` per attachment field."""

    found = []
    for node in document.children(tag=Tag.ATTACHMENT):
        reference = document.value(Tag.FILE_REFERENCE, node)
        if not reference:
            continue
        name = document.value(Tag.DISPLAY_NAME, node, default="") or ""
        found.append((name, reference, document.value(Tag.CONTENT_ID, node, default="") or ""))
    return found


def _drop_placeholder_sender(message: EmailMessage) -> None:
    sender = message.get("From")
    if sender is None:
        return
    addresses = [addr.lower() for _, addr in getaddresses([str(sender)])]
    if addresses and all(addr in PLACEHOLDER_SENDERS for addr in addresses):
        del message["From"]


def compose(
    document: Document,
    store: AttachmentStore,
    logger: Optional[JsonLogger] = None,
) -> Optional[EmailMessage]:
    """Build the outbound message for ``document``.

    What:
      Returns a complete :class:`EmailMessage` ready for :func:`to_wire`.

    Why:
      Both the append path and the send path need the same rendering of a
      document so a message saved to Sent matches what was transmitted.

    How:
      The plain body is re-encoded to the document's charset with replacement.
      An HTML body becomes the preferred alternative; its plain alternative is
      the plain body or, lacking one, the HTML with tags stripped. Attachments
      with a content id become related parts of the HTML body (inline parts of
      the message when there is no HTML).

    Args:
      document: Message document.
      store: Attachment store holding the referenced payloads.
      logger: Structured logger for store failures.

    Returns:
      The composed message, or ``None`` when an attachment cannot be read.
    """

    log = logger or get_logger("mailbridge.compose")
    message = EmailMessage()
    document_to_headers(document, message)
    charset = select_charset(document)
    plain, html = _bodies(document)

    html_part: Optional[EmailMessage] = None
    if html:
        alternative = plain if plain else strip_tags(html)
        message.set_content(_recode(alternative, charset) or DUMMY_BODY, charset=charset)
        html_charset = charset if _fits(html, charset) else "utf-8"
        message.add_alternative(html, subtype="html", charset=html_charset)
        html_part = message.get_payload()[-1]
    elif plain:
        message.set_content(_recode(plain, charset), charset=charset)
    else:
        message.set_content(DUMMY_BODY, charset=charset)

    for name, reference, content_id in _attachments(document):
        try:
            data = store.read(reference)
            mime_type = store.mime_type(reference)
        except AttachmentError as exc:
            log.warning("attachment_unavailable", attachment=name, reference=reference, error=str(exc))
            return None
        maintype, _, subtype = mime_type.partition("/")
        if not subtype or maintype == "multipart":
            maintype, subtype = "application", "octet-stream"
        filename = name or content_id or None
        if content_id and html_part is not None:
            html_part.add_related(
                data, maintype, subtype, cid=f"<{content_id}>", filename=filename
            )
        elif content_id:
            message.add_attachment(
                data,
                maintype,
                subtype,
                cid=f"<{content_id}>",
                filename=filename,
                disposition="inline",
            )
        else:
            message.add_attachment(data, maintype, subtype, filename=filename)

    _drop_placeholder_sender(message)
    return message


def to_wire(message: EmailMessage) -> bytes:
    """Serialise ``message`` with CRLF line endings for IMAP and SMTP."""

    return message.as_bytes(policy=policy.SMTP)
