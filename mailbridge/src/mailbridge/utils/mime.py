"""MIME parsing and charset helpers shared by the decomposer and composer.

What:
  Turn raw RFC 822 payloads into :class:`email.message.EmailMessage` objects,
  collect their headers into a case-insensitive multimap, translate between
  charset labels and numeric code page ids, and derive plain text from HTML.

Why:
  The document model records the message charset as a numeric code page id
  (``InternetCPID``) while the wire format uses IANA labels. Both directions
  need one table, and both the decomposer and the composer need the same
  charset normalisation and HTML stripping so a round trip stays stable.

How:
  Uses the ``email`` package's :class:`~email.parser.BytesParser` with the
  default policy, resolves charset aliases through :func:`codecs.lookup`, and
  strips markup with BeautifulSoup.

Interfaces:
  :func:`parse_message`, :func:`collect_headers`, :func:`code_page_for`,
  :func:`charset_for`, :func:`has_8bit`, :func:`decode_text`,
  :func:`strip_tags`.

Invariants & Safety:
  - Text decoding never raises; undecodable bytes are replaced.
  - Code page lookups are alias-insensitive (``latin1`` == ``ISO-8859-1``).
"""
from __future__ import annotations

import codecs
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from typing import Dict, List, Optional, Tuple

from bs4 import BeautifulSoup


UTF8_CODE_PAGE = 65001
ASCII_CODE_PAGE = 20127
LATIN1_CODE_PAGE = 28591

_CODE_PAGE_LABELS = (
    ("us-ascii", ASCII_CODE_PAGE),
    ("iso-8859-1", LATIN1_CODE_PAGE),
    ("iso-8859-2", 28592),
    ("iso-8859-3", 28593),
    ("iso-8859-4", 28594),
    ("iso-8859-5", 28595),
    ("iso-8859-6", 28596),
    ("iso-8859-7", 28597),
    ("iso-8859-8", 28598),
    ("iso-8859-9", 28599),
    ("iso-8859-13", 28603),
    ("iso-8859-15", 28605),
    ("windows-1250", 1250),
    ("windows-1251", 1251),
    ("windows-1252", 1252),
    ("windows-1253", 1253),
    ("windows-1254", 1254),
    ("windows-1255", 1255),
    ("windows-1256", 1256),
    ("windows-1257", 1257),
    ("windows-1258", 1258),
    ("koi8-r", 20866),
    ("koi8-u", 21866),
    ("shift_jis", 932),
    ("gb2312", 936),
    ("big5", 950),
    ("euc-jp", 51932),
    ("euc-kr", 51949),
    ("iso-2022-jp", 50220),
    ("utf-16", 1200),
    ("utf-8", UTF8_CODE_PAGE),
)


def _canonical(label: str) -> Optional[str]:
    try:
        return codecs.lookup(label.strip().strip('"')).name
    except (LookupError, ValueError):
        return None


_BY_CODEC: Dict[str, int] = {}
_BY_CODE_PAGE: Dict[int, str] = {}
for _label, _code_page in _CODE_PAGE_LABELS:
    _codec = _canonical(_label)
    if _codec is not None:
        _BY_CODEC.setdefault(_codec, _code_page)
    _BY_CODE_PAGE.setdefault(_code_page, _label)


def parse_message(raw: bytes) -> EmailMessage:
    """Parse raw RFC 822 bytes with the default ``email`` policy."""

    return BytesParser(policy=policy.default).parsebytes(raw)


def collect_headers(message: EmailMessage) -> Dict[str, List[object]]:
    """Collect top-level headers into a lower-cased multimap.

    What:
      Maps each lower-cased header name to the list of its values in message
      order. Values are the policy header objects, so address headers keep
      their parsed ``addresses`` and encoded words are already decoded.

    Why:
      The mapping engine consumes headers by name and needs to know which ones
      remain unconsumed afterwards; repeated headers (``Received``, ``To``) must
      not overwrite each other.
    """

    headers: Dict[str, List[object]] = {}
    for name, value in message.items():
        headers.setdefault(name.lower(), []).append(value)
    return headers


def code_page_for(charset: Optional[str]) -> Optional[int]:
    """Return the numeric code page id of ``charset`` or ``None`` if unknown."""

    if not charset:
        return None
    codec = _canonical(charset)
    if codec is None:
        return None
    return _BY_CODEC.get(codec)


def charset_for(code_page: int) -> Optional[str]:
    """Return the IANA label registered for ``code_page``."""

    return _BY_CODE_PAGE.get(code_page)


def has_8bit(data: bytes) -> bool:
    """Return ``True`` when any byte of ``data`` has its high bit set."""

    return any(byte > 0x7F for byte in data)


def decode_text(data: bytes, charset: Optional[str]) -> Tuple[str, bool]:
    """Decode ``data`` using ``charset``.

    What:
      Converts a text part to ``str``.

    Why:
      Declared charsets are routinely wrong or unknown to Python; the caller
      needs the text regardless, plus a signal to record a diagnostic.

    How:
      Looks the charset up through :mod:`codecs`; unknown labels fall back to
      UTF-8. Undecodable bytes are replaced in both cases.

    Returns:
      Tuple of the decoded text and ``True`` when the charset was recognised.
    """

    codec = _canonical(charset) if charset else "ascii"
    if codec is None:
        return data.decode("utf-8", errors="replace"), False
    return data.decode(codec, errors="replace"), True


def strip_tags(html: str) -> str:
    """Return the visible text of ``html`` with tags removed and edges trimmed."""

    return BeautifulSoup(html, "html.parser").get_text().strip()
