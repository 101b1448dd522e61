"""Tests for the attachment stores."""

import pytest

from mailbridge.core.attachments import AttachmentError, FileAttachmentStore, MemoryAttachmentStore
from mailbridge.utils.ids import checksum


def test_file_store_round_trip(tmp_path):
    store = FileAttachmentStore(tmp_path / "blobs")
    reference = store.create(b"%PDF-1.4", "application/pdf", "base64")
    assert reference == checksum(b"%PDF-1.4")
    assert store.read(reference) == b"%PDF-1.4"
    assert store.size_of(reference) == 8
    assert store.mime_type(reference) == "application/pdf"


def test_file_store_deduplicates_content(tmp_path):
    store = FileAttachmentStore(tmp_path)
    first = store.create(b"same", "text/plain", "7bit")
    second = store.create(b"same", "text/csv", "7bit")
    assert first == second
    assert len(list(tmp_path.glob("*.bin"))) == 1


def test_file_store_rejects_unknown_and_malformed_references(tmp_path):
    store = FileAttachmentStore(tmp_path)
    with pytest.raises(AttachmentError):
        store.read(checksum(b"never stored"))
    with pytest.raises(AttachmentError):
        store.read("../../etc/passwd")


def test_memory_store():
    store = MemoryAttachmentStore()
    reference = store.create(b"abc", "", "7bit")
    assert store.read(reference) == b"abc"
    assert store.mime_type(reference) == "application/octet-stream"
    with pytest.raises(AttachmentError):
        store.size_of(checksum(b"other"))
