"""Expose the public utility surface for mailbridge.

What:
  Re-export logging, identity and MIME helpers that other packages import
  without knowing the underlying module layout.

Why:
  A stable facade lets ``from mailbridge import utils`` keep working while the
  helper modules are reorganised.

Interfaces:
  ``get_logger``, ``JsonLogger``, ``folder_key``, ``message_key``,
  ``parse_message_key``, ``checksum`` and ``parse_message``.
"""

from .ids import checksum, folder_key, message_key, parse_message_key
from .logging import JsonLogger, get_logger
from .mime import parse_message

__all__ = [
    "checksum",
    "folder_key",
    "get_logger",
    "JsonLogger",
    "message_key",
    "parse_message",
    "parse_message_key",
]
