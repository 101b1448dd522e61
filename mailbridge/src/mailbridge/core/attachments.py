"""Blob store for message attachments.

What:
  Keep attachment payloads outside the document model. The decomposer stores
  each attachment and records only its reference; the composer reads the bytes
  back by reference when an outbound message is assembled.

Why:
  Documents travel through the synchronization engine and are logged in debug
  runs; carrying megabytes of attachment data in them would be wasteful and
  would leak content into logs.

How:
  :class:`FileAttachmentStore` is content addressed: the reference is the
  ``sha256:`` checksum of the payload, the bytes live in ``<digest>.bin`` and
  the MIME type and transfer encoding in a JSON sidecar next to it.

Interfaces:
  :class:`AttachmentStore` (protocol), :class:`FileAttachmentStore`,
  :class:`MemoryAttachmentStore`, :class:`AttachmentError`.

Invariants & Safety:
  - Storing identical bytes twice yields the same reference.
  - Unknown references raise :class:`AttachmentError`, never ``KeyError`` or
    :class:`OSError`.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Protocol, Tuple

from ..utils.ids import checksum


class AttachmentError(Exception):
    """Raised when an attachment cannot be stored or read back."""


class AttachmentStore(Protocol):
    """Operations the decomposer and composer need from a blob store."""

    def create(self, data: bytes, mime_type: str, encoding: str) -> str:
        ...

    def read(self, reference: str) -> bytes:
        ...

    def size_of(self, reference: str) -> int:
        ...

    def mime_type(self, reference: str) -> str:
        ...


def _digest(reference: str) -> str:
    prefix, _, digest = reference.partition(":")
    if prefix != "sha256" or len(digest) != 64 or not all(c in "0123456789abcdef" for c in digest):
        raise AttachmentError(f"malformed attachment reference {reference!r}")
    return digest


class FileAttachmentStore:
    """Content-addressed attachment store on the local filesystem.

    Args:
      directory: Root directory; created on first write.
    """

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory).expanduser()

    def _paths(self, reference: str) -> Tuple[Path, Path]:
        digest = _digest(reference)
        return self.directory / f"{digest}.bin", self.directory / f"{digest}.json"

    def create(self, data: bytes, mime_type: str, encoding: str) -> str:
        """Store ``data`` and return its reference."""

        reference = checksum(data)
        blob, meta = self._paths(reference)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            if not blob.exists():
                blob.write_bytes(data)
            meta.write_text(
                json.dumps({"mime": mime_type, "encoding": encoding, "size": len(data)}),
                encoding="utf-8",
            )
        except OSError as exc:
            raise AttachmentError(f"unable to store attachment in {self.directory}: {exc}") from exc
        return reference

    def read(self, reference: str) -> bytes:
        blob, _ = self._paths(reference)
        try:
            return blob.read_bytes()
        except FileNotFoundError as exc:
            raise AttachmentError(f"unknown attachment {reference}") from exc
        except OSError as exc:
            raise AttachmentError(f"unable to read attachment {reference}: {exc}") from exc

    def _metadata(self, reference: str) -> Dict[str, object]:
        _, meta = self._paths(reference)
        try:
            return json.loads(meta.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise AttachmentError(f"unknown attachment {reference}") from exc
        except (OSError, ValueError) as exc:
            raise AttachmentError(f"unreadable metadata for {reference}: {exc}") from exc

    def size_of(self, reference: str) -> int:
        return int(self._metadata(reference).get("size", 0))

    def mime_type(self, reference: str) -> str:
        return str(self._metadata(reference).get("mime") or "application/octet-stream")


@dataclass
class MemoryAttachmentStore:
    """In-process store used by the CLI preview commands and the tests."""

    blobs: Dict[str, Tuple[bytes, str, str]] = field(default_factory=dict)

    def create(self, data: bytes, mime_type: str, encoding: str) -> str:
        reference = checksum(data)
        self.blobs[reference] = (data, mime_type, encoding)
        return reference

    def _entry(self, reference: str) -> Tuple[bytes, str, str]:
        try:
            return self.blobs[reference]
        except KeyError as exc:
            raise AttachmentError(f"unknown attachment {reference}") from exc

    def read(self, reference: str) -> bytes:
        return self._entry(reference)[0]

    def size_of(self, reference: str) -> int:
        return len(self._entry(reference)[0])

    def mime_type(self, reference: str) -> str:
        return self._entry(reference)[1] or "application/octet-stream"
