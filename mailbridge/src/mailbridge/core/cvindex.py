"""Thread-Index (conversation index) codec.

What:
  Encode and decode the base64 ``Thread-Index`` token that reading clients use
  to order replies inside a conversation without a server-side thread index.

Why:
  The token is parsed independently by legacy clients, so its byte layout must
  match theirs exactly. Keeping the codec pure (no I/O, no logging) lets the
  mapping engine call it on both the inbound and the outbound path.

How:
  The token is ``base64(header || child*)``:

  - bytes 0-5: the high 48 bits of a 64-bit FILETIME (100 ns ticks since
    1601-01-01). Byte 0 is the reserved byte and equals ``0x01`` for dates
    between 1829 and 2057. The low 16 bits are not stored.
  - bytes 6-21: the 16-byte thread GUID.
  - 5-byte child blocks, one per reply, packed MSB first as a code bit, a
    31-bit time difference, a 4-bit random nibble and a 4-bit sequence nibble.
    Code bit 0 means the difference lost its high 15 and low 18 bits; code bit
    1 means it lost its high 10 and low 23 bits.

Interfaces:
  :class:`ConversationIndex`, :class:`ChildBlock`, :func:`decode`,
  :func:`encode`, :func:`encode_header`, :func:`filetime_from_unix`,
  :func:`unix_from_filetime`, :func:`child_for_reply`.

Invariants & Safety:
  - :func:`decode` never raises; malformed input yields ``None``.
  - ``decode(encode(v)) == v`` for values whose header timestamp has its low
    16 bits clear and whose child offsets obey the 31-bit truncation rule.
"""
from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from typing import List, Optional


EPOCH_DELTA = 116444736000000000
"""FILETIME ticks between 1601-01-01 and 1970-01-01."""

TICKS_PER_SECOND = 10_000_000
HEADER_SIZE = 22
CHILD_SIZE = 5
GUID_SIZE = 16

_FIELD_MASK = 0x7FFFFFFF
_NARROW_SHIFT = 18
_WIDE_SHIFT = 23
_NARROW_LIMIT = 1 << (31 + _NARROW_SHIFT)


@dataclass(frozen=True)
class ChildBlock:
    """One reply step: time offset from the header plus two nibbles."""

    offset: int
    random: int = 0
    sequence: int = 0


@dataclass(frozen=True)
class ConversationIndex:
    """Decoded conversation index.

    Attributes:
      timestamp: Header FILETIME in 100 ns ticks (low 16 bits always zero after
        a decode).
      guid: 16-byte thread GUID.
      children: Reply blocks in thread order.
    """

    timestamp: int
    guid: bytes
    children: List[ChildBlock] = field(default_factory=list)

    def message_time(self) -> int:
        """Return the FILETIME of the newest message in the chain."""

        return self.timestamp + sum(child.offset for child in self.children)


def filetime_from_unix(seconds: float) -> int:
    """Convert Unix seconds to FILETIME ticks."""

    return int(round(seconds * TICKS_PER_SECOND)) + EPOCH_DELTA


def unix_from_filetime(filetime: int) -> float:
    """Convert FILETIME ticks to Unix seconds."""

    return (filetime - EPOCH_DELTA) / TICKS_PER_SECOND


def decode(token: str) -> Optional[ConversationIndex]:
    """Decode a base64 Thread-Index token.

    What:
      Recovers the header timestamp, the thread GUID and every complete child
      block.

    Why:
      A broken token in one message must not break the whole mapping run;
      callers treat ``None`` as "no conversation metadata available".

    How:
      Strict base64 decoding, then fixed offsets for the header. The FILETIME is
      rebuilt by appending two zero bytes to the six stored ones. Child blocks
      are read as 40-bit big-endian integers; a trailing fragment shorter than a
      block is ignored.

    Args:
      token: Base64 text, surrounding whitespace tolerated.

    Returns:
      The decoded value or ``None`` when the token is not valid base64 or is
      shorter than the 22-byte header.
    """

    if not token:
        return None
    try:
        raw = base64.b64decode(token.strip(), validate=True)
    except (binascii.Error, ValueError):
        return None
    if len(raw) < HEADER_SIZE:
        return None

    timestamp = int.from_bytes(raw[0:6] + b"\x00\x00", "big")
    guid = bytes(raw[6:HEADER_SIZE])
    children: List[ChildBlock] = []
    for start in range(HEADER_SIZE, len(raw) - CHILD_SIZE + 1, CHILD_SIZE):
        block = int.from_bytes(raw[start:start + CHILD_SIZE], "big")
        code = block >> 39
        delta = (block >> 8) & _FIELD_MASK
        shift = _WIDE_SHIFT if code else _NARROW_SHIFT
        children.append(
            ChildBlock(
                offset=delta << shift,
                random=(block >> 4) & 0x0F,
                sequence=block & 0x0F,
            )
        )
    return ConversationIndex(timestamp=timestamp, guid=guid, children=children)


def _pack_child(child: ChildBlock) -> bytes:
    offset = max(child.offset, 0)
    if offset < _NARROW_LIMIT:
        code, delta = 0, (offset >> _NARROW_SHIFT) & _FIELD_MASK
    else:
        code, delta = 1, (offset >> _WIDE_SHIFT) & _FIELD_MASK
    block = (code << 39) | (delta << 8) | ((child.random & 0x0F) << 4) | (child.sequence & 0x0F)
    return block.to_bytes(CHILD_SIZE, "big")


def encode(value: ConversationIndex) -> str:
    """Encode ``value`` into a base64 Thread-Index token.

    The header keeps bits 16-63 of the timestamp. Each child offset is packed
    with code bit 0 while it fits the narrow form (below ``2**49`` ticks, about
    650 days) and with code bit 1 otherwise.

    Raises:
      ValueError: If the GUID is not exactly 16 bytes.
    """

    if len(value.guid) != GUID_SIZE:
        raise ValueError(f"thread GUID must be {GUID_SIZE} bytes, got {len(value.guid)}")
    header = (value.timestamp & 0xFFFFFFFFFFFFFFFF).to_bytes(8, "big")[:6]
    payload = header + value.guid + b"".join(_pack_child(child) for child in value.children)
    return base64.b64encode(payload).decode("ascii")


def encode_header(timestamp: int, guid: bytes) -> str:
    """Encode a header-only token for the first message of a thread."""

    return encode(ConversationIndex(timestamp=timestamp, guid=guid))


def child_for_reply(parent: ConversationIndex, when: int, tick: int) -> ConversationIndex:
    """Return ``parent`` extended by one child block for a reply.

    Args:
      parent: Index of the message being replied to.
      when: FILETIME of the reply.
      tick: Millisecond tick counter; its low byte provides the random and
        sequence nibbles.
    """

    offset = max(when - parent.message_time(), 0)
    child = ChildBlock(offset=offset, random=(tick >> 4) & 0x0F, sequence=tick & 0x0F)
    return ConversationIndex(
        timestamp=parent.timestamp,
        guid=parent.guid,
        children=[*parent.children, child],
    )
