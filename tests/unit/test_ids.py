"""Tests for record key and conversation id helpers."""

import hashlib

from mailbridge.utils import ids


def test_folder_key_is_stable_digest():
    key = ids.folder_key("INBOX")
    assert key == "G" + hashlib.sha256(b"INBOX").hexdigest()[:32]
    assert ids.is_folder_key(key)
    assert key != ids.folder_key("INBOX.Work")


def test_message_key_round_trip():
    owner = ids.folder_key("INBOX")
    key = ids.message_key(42, owner)
    assert key == f"D42#{owner}"
    assert ids.parse_message_key(key) == (42, owner)
    assert ids.is_message_key(key)
    assert not ids.is_folder_key(key)


def test_parse_message_key_rejects_malformed():
    owner = ids.folder_key("INBOX")
    assert ids.parse_message_key("D42") is None
    assert ids.parse_message_key(f"Dx#{owner}") is None
    assert ids.parse_message_key("D1#Gshort") is None
    assert ids.parse_message_key(owner) is None


def test_conversation_id_from_subject():
    assert ids.conversation_id("Hi") == hashlib.md5(b"Hi").hexdigest()[:16]


def test_thread_guid_accepts_hex_and_hashes_anything_else():
    hex_id = "0123456789abcdef0123456789abcdef"
    assert ids.thread_guid(hex_id) == bytes.fromhex(hex_id)
    assert ids.thread_guid("abc") == hashlib.md5(b"abc").digest()
    assert len(ids.thread_guid(ids.conversation_id("Hi"))) == 16


def test_checksum_prefix():
    assert ids.checksum(b"x") == "sha256:" + hashlib.sha256(b"x").hexdigest()
