"""Table-driven translation between mail headers and document fields.

What:
  Map the headers of a parsed message onto typed document fields (inbound) and
  document fields back onto the headers of an outbound message, plus the
  derived fields every message document carries.

Why:
  The synchronization engine only understands tagged document fields while the
  wire format is RFC 5322 headers. The correspondence between both is static
  data; keeping it in one table means both directions agree on every field and
  the list of supported fields falls out of the same table.

How:
  :data:`HEADER_MAP` binds each lower-cased header name to a
  :class:`HeaderRule`. The engine branches on the rule's :class:`ValueKind`
  (address list, string, date, priority, status, internal) with plain
  ``if``/``elif`` blocks. Headers that are not mapped are either known noise
  (:data:`IGNORED_HEADERS`, ``x-*``) or reported as unused.

Interfaces:
  :class:`ValueKind`, :class:`HeaderRule`, :data:`HEADER_MAP`,
  :data:`IGNORED_HEADERS`, :class:`MappingReport`,
  :func:`headers_to_document`, :func:`apply_flags`, :func:`derive_fields`,
  :func:`document_to_headers`, :func:`select_charset`,
  :func:`supported_fields`, :func:`parse_date`.

Invariants & Safety:
  - Mapping never raises on malformed header data; anomalies are recorded in
    the :class:`MappingReport` and the field is skipped.
  - Outbound, ``From`` and ``Sender`` carry a single address (the last value
    wins); the other address fields fan out over every repeated value.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.header import decode_header, make_header
from email.message import EmailMessage
from email.utils import getaddresses, parsedate_to_datetime
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence

from ..utils.ids import conversation_id, thread_guid
from ..utils.mime import UTF8_CODE_PAGE
from . import cvindex
from .document import Document, Tag


class ValueKind(Enum):
    """How a header value is interpreted."""

    ADDRESS_LIST = "address-list"
    STRING = "string"
    DATE = "date"
    PRIORITY = "priority"
    STATUS = "status"
    IGNORED = "ignored"
    INTERNAL = "internal"


@dataclass(frozen=True)
class HeaderRule:
    """One row of the mapping table.

    Attributes:
      kind: Interpretation of the header value.
      tag: Document field the value is stored in.
      setter: Outbound header name, or ``None`` when the field is never
        written back (aliases and inbound-only headers).
      single: Outbound address fields that take one address only.
    """

    kind: ValueKind
    tag: Tag
    setter: Optional[str] = None
    single: bool = False


HEADER_MAP: Dict[str, HeaderRule] = {
    "subject": HeaderRule(ValueKind.STRING, Tag.SUMMARY, "Subject"),
    "to": HeaderRule(ValueKind.ADDRESS_LIST, Tag.TO, "To"),
    "date": HeaderRule(ValueKind.DATE, Tag.CREATED, "Date"),
    "message-id": HeaderRule(ValueKind.STRING, Tag.MESSAGE_ID, "Message-ID"),
    "cc": HeaderRule(ValueKind.ADDRESS_LIST, Tag.CC, "Cc"),
    "from": HeaderRule(ValueKind.ADDRESS_LIST, Tag.FROM, "From", single=True),
    "from-address": HeaderRule(ValueKind.ADDRESS_LIST, Tag.FROM),
    "reply-to": HeaderRule(ValueKind.ADDRESS_LIST, Tag.REPLY_TO, "Reply-To"),
    "replyto": HeaderRule(ValueKind.ADDRESS_LIST, Tag.REPLY_TO),
    "thread-topic": HeaderRule(ValueKind.STRING, Tag.THREAD_TOPIC),
    "x-priority": HeaderRule(ValueKind.PRIORITY, Tag.IMPORTANCE, "X-Priority"),
    "thread-index": HeaderRule(ValueKind.STRING, Tag.CONVERSATION_ID),
    "x-sender": HeaderRule(ValueKind.ADDRESS_LIST, Tag.SENDER),
    "sender": HeaderRule(ValueKind.ADDRESS_LIST, Tag.SENDER, "Sender", single=True),
    "bcc": HeaderRule(ValueKind.ADDRESS_LIST, Tag.BCC, "Bcc"),
    "flags": HeaderRule(ValueKind.STATUS, Tag.STATUS),
    # filled by the decomposer, the flag conversion or derive_fields()
    "#body": HeaderRule(ValueKind.INTERNAL, Tag.BODY),
    "#attachments": HeaderRule(ValueKind.INTERNAL, Tag.ATTACHMENT),
    "#read": HeaderRule(ValueKind.INTERNAL, Tag.READ),
    "#isdraft": HeaderRule(ValueKind.INTERNAL, Tag.IS_DRAFT),
    "#internetcpid": HeaderRule(ValueKind.INTERNAL, Tag.INTERNET_CPID),
    "#contentclass": HeaderRule(ValueKind.INTERNAL, Tag.CONTENT_CLASS),
    "#messageclass": HeaderRule(ValueKind.INTERNAL, Tag.MESSAGE_CLASS),
    "#cvindex": HeaderRule(ValueKind.INTERNAL, Tag.CONVERSATION_INDEX),
    "#nativebodytype": HeaderRule(ValueKind.INTERNAL, Tag.NATIVE_BODY_TYPE),
    "#grp_name": HeaderRule(ValueKind.INTERNAL, Tag.GROUP_NAME),
    "#grp_attr": HeaderRule(ValueKind.INTERNAL, Tag.ATTRIBUTE),
}

IGNORED_HEADERS = frozenset(
    {
        # trace, routing and envelope
        "return-path", "received", "path", "dl-expansion-history-indication",
        "delivered-to", "received-spf", "authentication-results",
        "arc-seal", "arc-message-signature", "arc-authentication-results",
        "dkim-signature", "dkim-filter", "domainkey-signature",
        "ironport-sdr", "ironport-hdrordr", "sdm-mailfrom", "tenantheader",
        # MIME structure, handled by the decomposer
        "mime-version", "content-type", "content-transfer-encoding",
        "content-disposition", "content-id", "content-base", "content-location",
        "content-description", "content-md5", "content-length",
        "content-language", "content-identifier", "content-return",
        "x400-content-return", "content-sgml-entity", "content-conversion",
        "conversion", "encoding", "message-type", "lines",
        # usenet
        "control", "also-control", "approved", "newsgroups", "distribution",
        "followup-to", "see-also", "article-updates", "article-names",
        "xref", "summary", "obsoletes", "supersedes",
        # threading and references
        "in-reply-to", "references",
        # resent block
        "resent-reply-to", "resent-from", "resent-sender", "resent-date",
        "resent-to", "resent-cc", "resent-bcc", "resent-message-id",
        # delivery and notification requests
        "errors-to", "return-receipt-to", "disposition-notification-to",
        "prevent-nondelivery-report", "generate-delivery-report",
        "deferred-delivery", "delivery-date", "expires", "expiry-date",
        "reply-by", "auto-forwarded", "auto-submitted", "bounces-to",
        "original-encoded-information-types", "alternate-recipient",
        "disclose-recipients", "discarded-x400-ipms-extensions",
        "discarded-x400-mts-extensions", "incomplete-copy", "status",
        # originator and client details
        "fax", "telefax", "phone", "mail-system-version", "mailer",
        "originating-client", "user-agent", "organization", "organisation",
        "from-name", "fcc", "savedfromemail", "apparently-to",
        "for-handling", "for-comment",
        # classification
        "keywords", "comments", "priority", "precedence", "precendence",
        "importance", "sensitivity", "language", "accept-language",
        "acceptlanguage", "msip_labels",
        # mailing lists and bulk senders
        "list-id", "list-help", "list-help-link", "llist-help-link",
        "list-unsubscribe", "list-unsubscribe-post", "list-subscribe",
        "list-post", "list-owner", "list-archive", "mail-followup-to",
        "feedback-id", "require-recipient-valid-since",
        # provider specific
        "affinity", "mail id", "amq-delivery-message-id", "pp-correlation-id",
        "origin-messageid", "mkatechnicalid", "messagemaxretry",
        "messageretryperiod", "messagewebvalidityduration",
        "messagevalidityduration", "spamdiagnosticoutput",
        "spamdiagnosticmetadata",
    }
)

CONTENT_CLASS = "urn:content-classes:message"
MESSAGE_CLASS = "IPM.Note"
DEFAULT_IMPORTANCE = "1"

PRIORITY_LABELS = {
    1: "1 (Highest)",
    2: "2 (High)",
    3: "3 (Normal)",
    4: "4 (Low)",
    5: "5 (Lowest)",
}
_PRIORITY_TO_IMPORTANCE = {1: "2", 2: "2", 3: "1", 4: "0", 5: "0"}
_IMPORTANCE_TO_PRIORITY = {"0": 5, "1": 3, "2": 1}

FLAG_NAMES = ("Seen", "Answered", "Flagged", "Deleted", "Draft")

_DAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
_DATE_HEAD = re.compile(r"^(.*?\d{1,2}:\d{2}(?::\d{2})?\s*[+-])(\d*)")
_LEADING_DIGIT = re.compile(r"^\s*([1-5])")
_SPECIALS = re.compile(r"[][\\()<>@,:;\".]")


@dataclass
class MappingReport:
    """Outcome of an inbound mapping run.

    Attributes:
      mapped: Header names consumed by the table.
      unused: Header names that were neither mapped nor ignorable.
      anomalies: Human-readable descriptions of skipped or malformed values.
    """

    mapped: List[str] = field(default_factory=list)
    unused: List[str] = field(default_factory=list)
    anomalies: List[str] = field(default_factory=list)


def _text(value: object) -> str:
    """Return ``value`` as text with RFC 2047 encoded words decoded.

    Header objects from the ``email`` default policy are already decoded; raw
    strings may still carry encoded words.
    """

    text = str(value)
    if "=?" not in text:
        return text
    try:
        return str(make_header(decode_header(text)))
    except (LookupError, ValueError):
        return text


def format_address(name: str, addr: str) -> str:
    """Return ``Name <addr>`` (quoted when needed) or the bare address.

    Unlike :func:`email.utils.formataddr` the display name stays unencoded;
    RFC 2047 encoding happens when an outbound message is serialised.
    """

    if not name:
        return addr
    if _SPECIALS.search(name):
        name = '"{}"'.format(name.replace("\\", "\\\\").replace('"', '\\"'))
    return f"{name} <{addr}>"


def _addresses(values: Sequence[object]) -> List[str]:
    """Parse address header values into ``Name <addr>`` / ``addr`` strings."""

    result: List[str] = []
    for value in values:
        parsed = getattr(value, "addresses", None)
        if parsed is not None:
            pairs = [(address.display_name, address.addr_spec) for address in parsed]
        else:
            pairs = getaddresses([_text(value)])
        for name, addr in pairs:
            if not addr:
                continue
            result.append(format_address(name, addr))
    return result


def parse_date(value: str) -> Optional[int]:
    """Parse a ``Date`` header value into Unix seconds.

    What:
      Accepts RFC 5322 dates followed by free text, such as
      ``Thu, 9 Apr 2020 10:50:30 +0800 (UTC+8)`` or
      ``Mon, 19 Jul 2021 19:13:48 +0200; ;``.

    How:
      Cuts the value at the first non-digit after the timezone sign, then
      delegates to :func:`email.utils.parsedate_to_datetime`. Naive results are
      taken as UTC.

    Returns:
      Unix seconds or ``None`` when the value cannot be parsed.
    """

    text = _text(value).strip()
    match = _DATE_HEAD.match(text)
    if match:
        text = match.group(1) + match.group(2)
    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def format_date(seconds: int) -> str:
    """Render Unix seconds as ``Mon, 1 Jan 2024 10:00:00 +0000`` (UTC)."""

    moment = datetime.fromtimestamp(int(seconds), tz=timezone.utc)
    return (
        f"{_DAYS[moment.weekday()]}, {moment.day} {_MONTHS[moment.month - 1]} "
        f"{moment.year} {moment:%H:%M:%S} +0000"
    )


def priority_to_importance(value: str) -> Optional[str]:
    match = _LEADING_DIGIT.match(_text(value))
    if not match:
        return None
    return _PRIORITY_TO_IMPORTANCE[int(match.group(1))]


def importance_to_priority(value: str) -> Optional[str]:
    level = _IMPORTANCE_TO_PRIORITY.get(str(value).strip())
    return PRIORITY_LABELS[level] if level is not None else None


def headers_to_document(
    headers: Mapping[str, Sequence[object]],
    document: Document,
) -> MappingReport:
    """Map message headers onto ``document``.

    What:
      Walks :data:`HEADER_MAP` in table order and adds one field per value of
      every present header, then sets ``ContentClass`` and sorts out the
      headers nobody consumed.

    Why:
      Table order fixes the field order of the resulting document regardless of
      the order headers appear on the wire.

    How:
      Branches on :class:`ValueKind`. Consumed headers are removed from a
      working copy; what remains is filtered against ``x-*`` and
      :data:`IGNORED_HEADERS` and the rest lands in ``report.unused``.

    Args:
      headers: Lower-cased header name to list of values, as produced by
        :func:`mailbridge.utils.mime.collect_headers`.
      document: Target document, usually empty.

    Returns:
      The :class:`MappingReport` describing consumed, unused and malformed
      headers.
    """

    report = MappingReport()
    remaining = {name.lower(): list(values) for name, values in headers.items()}

    for name, rule in HEADER_MAP.items():
        values = remaining.get(name)
        if values is None or rule.kind in (ValueKind.INTERNAL, ValueKind.IGNORED):
            continue
        if rule.kind is ValueKind.ADDRESS_LIST:
            for address in _addresses(values):
                document.add(rule.tag, address)
        elif rule.kind is ValueKind.STRING:
            for value in values:
                document.add(rule.tag, _text(value).strip())
        elif rule.kind is ValueKind.DATE:
            seconds = parse_date(str(values[-1]))
            if seconds is None:
                report.anomalies.append(f"unparsable {name} header")
            else:
                document.add(rule.tag, seconds)
        elif rule.kind is ValueKind.PRIORITY:
            importance = priority_to_importance(str(values[-1]))
            if importance is None:
                report.anomalies.append(f"unknown {name} value")
            else:
                document.add(rule.tag, importance)
        elif rule.kind is ValueKind.STATUS:
            apply_flags(document, str(values[-1]))
        del remaining[name]
        report.mapped.append(name)

    document.add(Tag.CONTENT_CLASS, CONTENT_CLASS)

    for name in remaining:
        if name.startswith("x-") or name in IGNORED_HEADERS:
            continue
        report.unused.append(name)
    return report


def apply_flags(document: Document, flags: str) -> None:
    """Record a message's flag string (``Seen,Answered,...``) on ``document``.

    ``Status`` is only written when at least one flag is set; ``Read`` is always
    written, ``IsDraft`` only alongside ``Status``.
    """

    names = [flag for flag in flags.split(",") if flag]
    if names:
        document.set(Tag.STATUS, ",".join(names))
        document.set(Tag.IS_DRAFT, "1" if "Draft" in names else "0")
    document.set(Tag.READ, "1" if "Seen" in names else "0")


def derive_fields(document: Document) -> List[str]:
    """Synthesize the derived fields of a message document.

    What:
      Adds ``InternetCPID`` (UTF-8 when unset), ``MessageClass``,
      ``Importance`` (normal when unset), ``ConversationId`` (subject hash
      when unset) and ``ConversationIndex``.

    Why:
      Reading clients group and order messages by these fields; every message
      document must carry them even when the source message has no threading
      metadata.

    How:
      Runs after the decomposer, which may already have set the code page. The
      conversation index reuses a decodable ``Thread-Index`` (stored verbatim as
      the conversation id) and otherwise encodes a header-only token from the
      creation time and the GUID of the conversation id.

    Returns:
      Anomaly descriptions (a ``Thread-Index`` that failed to decode).
    """

    anomalies: List[str] = []
    if not document.has(Tag.INTERNET_CPID):
        document.add(Tag.INTERNET_CPID, UTF8_CODE_PAGE)
    document.add(Tag.MESSAGE_CLASS, MESSAGE_CLASS)
    if not document.has(Tag.IMPORTANCE):
        document.add(Tag.IMPORTANCE, DEFAULT_IMPORTANCE)

    conv_id = document.value(Tag.CONVERSATION_ID)
    thread_index = None
    if conv_id:
        thread_index = cvindex.decode(conv_id)
        if thread_index is None:
            anomalies.append("malformed thread-index header")
    else:
        conv_id = conversation_id(document.value(Tag.SUMMARY, default="") or "")
        document.add(Tag.CONVERSATION_ID, conv_id)

    if not document.has(Tag.CONVERSATION_INDEX):
        if thread_index is not None:
            token = conv_id.strip()
        else:
            created = int(document.value(Tag.CREATED, default="0") or 0)
            token = cvindex.encode_header(cvindex.filetime_from_unix(created), thread_guid(conv_id))
        document.add(Tag.CONVERSATION_INDEX, token)
    return anomalies


def _set_header(message: EmailMessage, name: str, value: str) -> None:
    del message[name]
    message[name] = value


def document_to_headers(document: Document, message: EmailMessage) -> None:
    """Write the mapped fields of ``document`` as headers of ``message``.

    What:
      For every rule with a setter, reads the tagged fields through a cursor and
      assigns the corresponding header, replacing any previous value.

    How:
      Address fields are re-parsed so display names survive quoting; multi
      address headers are joined with ``", "``. ``Date`` is rendered in UTC and
      ``X-Priority`` uses the five-level label table.
    """

    for rule in HEADER_MAP.values():
        if not rule.setter:
            continue
        cursor = document.cursor()
        values: List[str] = []
        while cursor.find(rule.tag) is not None:
            if cursor.value:
                values.append(cursor.value)
        if not values:
            continue

        if rule.kind is ValueKind.ADDRESS_LIST:
            addresses = [
                format_address(name, addr)
                for name, addr in getaddresses(values)
                if addr
            ]
            if not addresses:
                continue
            if rule.single:
                _set_header(message, rule.setter, addresses[-1])
            else:
                _set_header(message, rule.setter, ", ".join(addresses))
        elif rule.kind is ValueKind.STRING:
            _set_header(message, rule.setter, values[-1])
        elif rule.kind is ValueKind.DATE:
            try:
                _set_header(message, rule.setter, format_date(int(values[-1])))
            except (ValueError, OverflowError, OSError):
                continue
        elif rule.kind is ValueKind.PRIORITY:
            label = importance_to_priority(values[-1])
            if label is not None:
                _set_header(message, rule.setter, label)


def select_charset(document: Document) -> str:
    """Return the outbound charset declared by the document's code page.

    ``20127`` selects US-ASCII, ``28591`` (or a malformed value starting with
    ``iso-8859-1``) selects Latin-1; everything else is sent as UTF-8.
    """

    code_page = (document.value(Tag.INTERNET_CPID, default="") or "").strip().lower()
    if code_page == "20127":
        return "us-ascii"
    if code_page == "28591" or code_page.startswith("iso-8859-1"):
        return "iso-8859-1"
    return "utf-8"


def supported_fields() -> List[str]:
    """Return the tags of every header-backed rule, in table order."""

    tags: List[str] = []
    for rule in HEADER_MAP.values():
        if rule.kind in (ValueKind.INTERNAL, ValueKind.IGNORED):
            continue
        if rule.tag.value not in tags:
            tags.append(rule.tag.value)
    return tags
