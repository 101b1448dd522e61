"""Hierarchical document model exchanged with the synchronization engine.

What:
  Represent one record (a folder or a message) as an ordered tree of tagged
  fields. Repeated fields are sibling nodes with the same tag; fields may carry
  string attributes (``X-TYP`` on bodies) and children (attachment
  descriptors).

Why:
  The mapping engine, the decomposer and the composer all walk the same tree.
  Storing nodes in a flat arena and addressing them by index lets several
  readers hold independent positions, and a saved position stays valid while
  other code appends fields.

How:
  :class:`Document` owns a list of :class:`Node` objects; index ``0`` is the
  ``Data`` root. :class:`Cursor` is a small value object holding an index and a
  scope, walking the arena in depth-first pre-order.

Interfaces:
  :class:`Tag`, :class:`RecordKind`, :class:`Node`, :class:`Document`,
  :class:`Cursor`, plus the body type constants.

Invariants & Safety:
  - Node indexes never change once assigned; removing a field detaches it from
    its parent without compacting the arena.
  - A cursor never leaves the subtree it was created for.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional


class Tag(str, Enum):
    """Field tags understood by the synchronization engine."""

    DATA = "Data"
    SUMMARY = "Summary"
    TO = "To"
    CC = "Cc"
    BCC = "Bcc"
    FROM = "From"
    REPLY_TO = "ReplyTo"
    SENDER = "Sender"
    CREATED = "Created"
    MESSAGE_ID = "MessageId"
    THREAD_TOPIC = "ThreadTopic"
    IMPORTANCE = "Importance"
    CONVERSATION_ID = "ConversationId"
    CONVERSATION_INDEX = "ConversationIndex"
    STATUS = "Status"
    READ = "Read"
    IS_DRAFT = "IsDraft"
    INTERNET_CPID = "InternetCPID"
    CONTENT_CLASS = "ContentClass"
    MESSAGE_CLASS = "MessageClass"
    NATIVE_BODY_TYPE = "NativeBodyType"
    BODY = "Body"
    ATTACHMENT = "Attachment"
    DISPLAY_NAME = "DisplayName"
    FILE_REFERENCE = "FileReference"
    METHOD = "Method"
    ESTIMATED_DATA_SIZE = "EstimatedDataSize"
    CONTENT_ID = "ContentId"
    GROUP_NAME = "GroupName"
    ATTRIBUTE = "Attribute"


class RecordKind(str, Enum):
    FOLDER = "folder"
    MESSAGE = "message"


BODY_TYPE_ATTR = "X-TYP"
BODY_PLAIN = "1"
BODY_HTML = "2"

ROOT = 0


def _tag_name(tag: "Tag | str") -> str:
    return tag.value if isinstance(tag, Tag) else str(tag)


@dataclass
class Node:
    """One field of a document."""

    tag: str
    value: Optional[str] = None
    attrs: Dict[str, str] = field(default_factory=dict)
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)


@dataclass
class Document:
    """Record exchanged with the synchronization engine.

    Attributes:
      kind: Whether the record describes a folder or a message.
      record_id: Opaque key of the remote record (empty until stored).
      group_id: Opaque key of the parent folder.
      nodes: Arena of fields; ``nodes[0]`` is the ``Data`` root.
    """

    kind: RecordKind = RecordKind.MESSAGE
    record_id: str = ""
    group_id: str = ""
    nodes: List[Node] = field(default_factory=lambda: [Node(Tag.DATA.value)])

    def node(self, index: int) -> Node:
        return self.nodes[index]

    def add(
        self,
        tag: "Tag | str",
        value: Optional[object] = None,
        parent: int = ROOT,
        attrs: Optional[Dict[str, str]] = None,
    ) -> int:
        """Append a field under ``parent`` and return its index.

        Values are stored as strings; ``None`` creates a container field such as
        ``Attachment``.
        """

        text = None if value is None else str(value)
        self.nodes.append(Node(_tag_name(tag), text, dict(attrs or {}), parent))
        index = len(self.nodes) - 1
        self.nodes[parent].children.append(index)
        return index

    def set(self, tag: "Tag | str", value: Optional[object], parent: int = ROOT) -> int:
        """Update the first ``tag`` field under ``parent`` or add it."""

        index = self.first(tag, parent)
        if index is None:
            return self.add(tag, value, parent)
        self.nodes[index].value = None if value is None else str(value)
        return index

    def children(self, parent: int = ROOT, tag: "Tag | str | None" = None) -> List[int]:
        """Return the direct children of ``parent``, optionally filtered by tag."""

        kids = self.nodes[parent].children
        if tag is None:
            return list(kids)
        name = _tag_name(tag)
        return [index for index in kids if self.nodes[index].tag == name]

    def first(self, tag: "Tag | str", parent: int = ROOT) -> Optional[int]:
        name = _tag_name(tag)
        for index in self.nodes[parent].children:
            if self.nodes[index].tag == name:
                return index
        return None

    def value(self, tag: "Tag | str", parent: int = ROOT, default: Optional[str] = None) -> Optional[str]:
        """Return the value of the first ``tag`` field under ``parent``."""

        index = self.first(tag, parent)
        if index is None:
            return default
        value = self.nodes[index].value
        return default if value is None else value

    def values(self, tag: "Tag | str", parent: int = ROOT) -> List[str]:
        """Return the values of every ``tag`` field under ``parent`` in order."""

        return [
            self.nodes[index].value or ""
            for index in self.children(parent, tag)
        ]

    def has(self, tag: "Tag | str", parent: int = ROOT) -> bool:
        return self.first(tag, parent) is not None

    def remove(self, index: int) -> None:
        """Detach field ``index`` (and its subtree) from its parent."""

        if index == ROOT:
            raise ValueError("the Data root cannot be removed")
        node = self.nodes[index]
        if node.parent is None:
            return
        siblings = self.nodes[node.parent].children
        if index in siblings:
            siblings.remove(index)
        node.parent = None

    def cursor(self, scope: int = ROOT) -> "Cursor":
        return Cursor(self, scope)

    def walk(self, scope: int = ROOT) -> Iterator[int]:
        """Yield every field index below ``scope`` in depth-first pre-order."""

        cursor = self.cursor(scope)
        index = cursor.next_item()
        while index is not None:
            yield index
            index = cursor.next_item()

    def dump(self) -> List[str]:
        """Render the document as indented ``Tag [attrs]: value`` lines."""

        lines = [f"{self.kind.value} {self.record_id or '-'} in {self.group_id or '-'}"]

        def _render(index: int, depth: int) -> None:
            node = self.nodes[index]
            attrs = "".join(f" {key}={value}" for key, value in sorted(node.attrs.items()))
            text = "" if node.value is None else f": {node.value}"
            label = f"{node.tag} [{attrs.strip()}]" if attrs else node.tag
            lines.append(f"{'  ' * depth}{label}{text}")
            for child in node.children:
                _render(child, depth + 1)

        for child in self.nodes[ROOT].children:
            _render(child, 1)
        return lines


class Cursor:
    """Explicit position into a :class:`Document`.

    What:
      Walks the fields below ``scope`` in depth-first pre-order, one field per
      :meth:`next_item` call.

    Why:
      The mapping engine needs to read repeated fields while other readers walk
      the same document; a cursor owns nothing but two integers, so positions
      can be saved, restored and shared freely.

    How:
      ``position`` starts at ``scope``. Moving forward descends into the first
      child when there is one, otherwise climbs towards ``scope`` looking for
      the next sibling.
    """

    def __init__(self, document: Document, scope: int = ROOT) -> None:
        self.document = document
        self.scope = scope
        self.position = scope

    def save(self) -> int:
        return self.position

    def restore(self, position: int) -> None:
        self.position = position

    def reset(self) -> None:
        self.position = self.scope

    @property
    def node(self) -> Node:
        return self.document.nodes[self.position]

    @property
    def value(self) -> Optional[str]:
        return self.node.value

    def attr(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.node.attrs.get(name, default)

    def next_item(self) -> Optional[int]:
        """Advance to the next field and return its index, ``None`` at the end."""

        nodes = self.document.nodes
        current = self.position
        if nodes[current].children:
            self.position = nodes[current].children[0]
            return self.position
        while current != self.scope:
            parent = nodes[current].parent
            if parent is None:
                return None
            siblings = nodes[parent].children
            at = siblings.index(current)
            if at + 1 < len(siblings):
                self.position = siblings[at + 1]
                return self.position
            current = parent
        return None

    def find(self, tag: "Tag | str") -> Optional[int]:
        """Advance to the next field tagged ``tag``.

        The position is left unchanged when no further field matches.
        """

        name = _tag_name(tag)
        start = self.position
        index = self.next_item()
        while index is not None:
            if self.document.nodes[index].tag == name:
                return index
            index = self.next_item()
        self.position = start
        return None
