"""Opaque identity keys for folders, messages and conversations.

What:
  Derive the short, stable strings that identify remote folders and messages
  to the synchronization engine, plus the conversation identifiers used by the
  thread-index codec.

Why:
  Remote folders are addressed by path and messages by a folder-scoped UID.
  Neither is safe to hand to the synchronization engine directly: paths change
  on rename and UIDs repeat across folders. Hashing keeps keys short, opaque
  and deterministic so that a rebuilt cache hands out exactly the same keys.

How:
  Folder keys are ``"G"`` followed by the first 32 hex characters (128 bits) of
  the SHA-256 digest of the remote path. Message keys are ``"D"`` + UID + ``#``
  + the owning folder key, which lets the cache find the folder to load from a
  message key alone. Conversation ids follow the legacy 16-hex-character MD5
  prefix of the subject.

Interfaces:
  :data:`ROOT_KEY`, :func:`folder_key`, :func:`message_key`,
  :func:`parse_message_key`, :func:`is_folder_key`, :func:`is_message_key`,
  :func:`conversation_id`, :func:`thread_guid`, :func:`checksum`.

Invariants & Safety:
  - ``folder_key`` is a pure function of the path; no salt, no state.
  - A message key always embeds a valid folder key after the separator.
  - ``thread_guid`` always returns exactly 16 bytes.
"""
from __future__ import annotations

import hashlib
import re
from typing import Optional, Tuple


FOLDER_PREFIX = "G"
MESSAGE_PREFIX = "D"
SEPARATOR = "#"
ROOT_KEY = ""
"""Parent key of top-level folders."""

_HEX32 = re.compile(r"^[0-9a-fA-F]{32}$")


def folder_key(remote_path: str) -> str:
    """Return the opaque key of the folder stored at ``remote_path``.

    What:
      Hashes the remote path into a 128-bit hex key with the folder prefix.

    Why:
      Keys must survive cache rebuilds and process restarts without a lookup
      table, and two distinct paths must never alias.

    How:
      SHA-256 over the UTF-8 path, truncated to 32 hex characters.

    Args:
      remote_path: Full remote path, delimiter included (e.g. ``INBOX.Work``).

    Returns:
      Folder key such as ``G3f0c…``.
    """

    digest = hashlib.sha256(remote_path.encode("utf-8")).hexdigest()[:32]
    return f"{FOLDER_PREFIX}{digest}"


def message_key(uid: int, owner_key: str) -> str:
    """Return the key of message ``uid`` inside the folder ``owner_key``."""

    return f"{MESSAGE_PREFIX}{uid}{SEPARATOR}{owner_key}"


def parse_message_key(key: str) -> Optional[Tuple[int, str]]:
    """Split a message key into ``(uid, folder_key)``.

    Returns ``None`` when ``key`` is not a well-formed message key.
    """

    if not key.startswith(MESSAGE_PREFIX) or SEPARATOR not in key:
        return None
    uid_text, owner = key[len(MESSAGE_PREFIX):].split(SEPARATOR, 1)
    if not uid_text.isdigit() or not is_folder_key(owner):
        return None
    return int(uid_text), owner


def is_folder_key(key: str) -> bool:
    return key.startswith(FOLDER_PREFIX) and len(key) == 33


def is_message_key(key: str) -> bool:
    return parse_message_key(key) is not None


def conversation_id(subject: str) -> str:
    """Return the short conversation id derived from ``subject``.

    What:
      First 16 hex characters of the MD5 digest of the subject text.

    Why:
      Legacy clients group messages by this value when the message carries no
      explicit thread metadata, so the derivation cannot change.
    """

    return hashlib.md5(subject.encode("utf-8")).hexdigest()[:16]


def thread_guid(conv_id: str) -> bytes:
    """Map a conversation id onto the 16-byte thread GUID.

    A 32-hex-character id already is a GUID and is used verbatim; anything
    shorter (the default subject-derived id included) is hashed with MD5.
    """

    if _HEX32.match(conv_id):
        return bytes.fromhex(conv_id)
    return hashlib.md5(conv_id.encode("utf-8")).digest()


def checksum(data: bytes) -> str:
    """Compute a namespaced SHA-256 digest for ``data``.

    What:
      Wraps :func:`hashlib.sha256` and adds a ``sha256:`` prefix.

    Why:
      The attachment store uses checksums as content-addressed references; the
      prefix keeps the algorithm visible in stored references.

    Args:
      data: Bytes to hash.

    Returns:
      Hex-encoded digest string prefixed with ``sha256:``.
    """

    return f"sha256:{hashlib.sha256(data).hexdigest()}"
