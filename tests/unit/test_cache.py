"""Tests for the session record cache.

What:
  Verify lazy folder listing, per-folder message loading, all-or-nothing
  loads and re-keying after a rename.

Why:
  Message keys embed their folder key; a stale cache after a rename or a
  half-loaded folder after a network error would hand out keys that no longer
  resolve.
"""

import pytest

from mailbridge.config.schema import SpecialFolders
from mailbridge.imap.cache import RecordCache
from mailbridge.imap.transport import TransportError
from mailbridge.imap.tree import FolderRecord, MailboxTree, MessageRecord
from mailbridge.utils.ids import folder_key, message_key

from fakes import SIMPLE_MESSAGE

INBOX = folder_key("INBOX")
WORK = folder_key("INBOX.Work")


@pytest.fixture
def cache(transport):
    with transport:
        yield RecordCache(MailboxTree(transport, SpecialFolders(trash="Trash")))


def test_folders_are_listed_on_first_use(cache, backend):
    assert "list" not in backend.command_names()
    assert cache.folder(INBOX) is not None
    assert backend.command_names().count("list") == 1
    cache.folders()
    assert backend.command_names().count("list") == 1


def test_message_keys_load_only_their_folder(cache, backend):
    key = message_key(1, INBOX)
    assert cache.resolve(key) is None
    assert cache.ensure_loaded(key)
    assert isinstance(cache.resolve(key), MessageRecord)
    assert [arg for name, arg in backend.calls if name == "select"] == ["INBOX"]
    assert not cache.ensure_loaded(message_key(7, INBOX))
    assert not cache.ensure_loaded("not-a-key")


def test_folder_keys_resolve_without_loading_messages(cache, backend):
    assert cache.ensure_loaded(INBOX)
    assert not cache.folder(INBOX).loaded
    assert "select" not in backend.command_names()
    cache.children(INBOX)
    assert cache.folder(INBOX).loaded


def test_failed_load_leaves_folder_unloaded(cache, backend):
    backend.fail_on.add("search")
    with pytest.raises(TransportError):
        cache.ensure_loaded(message_key(1, INBOX))
    assert not cache.folder(INBOX).loaded
    backend.fail_on.clear()
    assert cache.ensure_loaded(message_key(1, INBOX))


def test_children_lists_folders_before_messages(cache):
    children = cache.children(INBOX)
    assert isinstance(children[0], FolderRecord) and children[0].key == WORK
    assert [child.key for child in children[1:]] == [message_key(1, INBOX)]
    roots = {child.path for child in cache.children()}
    assert roots == {"INBOX", "Sent", "Trash", "Drafts"}


def test_rename_rekeys_descendants(backend, transport):
    backend.add_folder("INBOX.Work.Old")
    backend.add_message("INBOX.Work", SIMPLE_MESSAGE)
    with transport:
        cache = RecordCache(MailboxTree(transport))
        work = cache.folder(WORK)
        cache.load_folder(work)
        cache.rename(work, "INBOX.Projects", "Projects")

        projects = folder_key("INBOX.Projects")
        assert cache.folder(WORK) is None
        assert cache.folder(projects) is work
        assert work.name == "Projects" and not work.loaded
        child = cache.folder(folder_key("INBOX.Projects.Old"))
        assert child is not None and child.parent == projects
        assert cache.resolve(message_key(2, WORK)) is None


def test_drop_folder_drops_its_messages(cache):
    cache.ensure_loaded(message_key(1, INBOX))
    cache.drop(INBOX)
    assert cache.resolve(message_key(1, INBOX)) is None
    assert cache.inbox() is None


def test_invalidate_lists_again(cache, backend):
    cache.folders()
    cache.invalidate()
    cache.folders()
    assert backend.command_names().count("list") == 2
