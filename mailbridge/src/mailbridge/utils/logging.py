"""Structured JSON logging for the mailbridge connector.

What:
  Offer a small facade over Python streams so every mailbridge component can
  emit single-line JSON log records with a fixed schema and automatic removal
  of message content and credentials.

Why:
  Every public connector operation reports only success or failure to its
  caller; the detailed cause (provider diagnostics, unused headers, charset
  anomalies) lives exclusively in the log. A structured layout keeps those
  diagnostics greppable while ensuring subjects, bodies and passwords never
  leak into shared log collectors.

How:
  :class:`JsonLogger` stores a target stream, a component label and a minimum
  level. ``extra`` mappings are scrubbed by a recursive redaction helper before
  being serialised with :mod:`json`. Records below the configured level are
  dropped before serialisation.

Interfaces:
  :class:`JsonLogger`, :func:`get_logger`.

Invariants & Safety:
  - Each record carries ``ts``, ``lvl``, ``msg`` and ``component``.
  - Keys named ``subject``, ``body``, ``password`` or ``snippet`` are replaced
    with ``[redacted]`` at any nesting depth.
  - Streams are flushed after every write.
"""
from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


REDACTED = "[redacted]"

_LEVELS = {"DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40}


@dataclass
class JsonLogger:
    """Structured JSON logger with automatic redaction.

    What:
      Emits single-line JSON entries that include a timestamp, severity, a
      component tag and optional supplemental fields.

    Why:
      Centralising structured logging keeps the redaction rules in one place
      and gives tests a stable schema to assert against.

    How:
      Exposes :meth:`debug`, :meth:`info`, :meth:`warning` and :meth:`error`,
      all funnelling into :meth:`log`, which filters by ``level``, merges the
      redacted extras and writes the payload.
    """

    stream: Any = field(default_factory=lambda: sys.stdout)
    component: str = "mailbridge"
    level: str = "INFO"

    def enabled(self, level: str) -> bool:
        """Return ``True`` when ``level`` passes the configured threshold."""

        threshold = _LEVELS.get(self.level.upper(), 20)
        return _LEVELS.get(level.upper(), 20) >= threshold

    def log(self, level: str, message: str, *, extra: Optional[Dict[str, Any]] = None) -> None:
        """Emit a structured JSON log entry.

        What:
          Serialises ``message`` and ``extra`` metadata to the configured stream
          using the ``ts``/``lvl``/``msg``/``component`` schema.

        Why:
          Diagnostics are the only channel through which failure causes reach
          operators, so every record must follow the same contract.

        How:
          Skips records below :attr:`level`, builds the core payload, merges a
          redacted copy of ``extra`` and flushes the stream after writing.

        Args:
          level: Severity name (``DEBUG``, ``INFO``, ``WARN`` or ``ERROR``).
          message: Core log message.
          extra: Optional context dictionary, redacted recursively.
        """

        if not self.enabled(level):
            return
        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "lvl": level.upper(),
            "msg": message,
            "component": self.component,
        }
        if extra:
            payload.update(self._redact(extra))
        json.dump(payload, self.stream, separators=(",", ":"), default=str)
        self.stream.write("\n")
        self.stream.flush()

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log a ``DEBUG`` record (record dumps, part-by-part decoding traces)."""

        self.log("DEBUG", message, extra=kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        """Log an ``INFO`` record with structured context."""

        self.log("INFO", message, extra=kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log a ``WARN`` record.

        What:
          Used for non-fatal anomalies: unused headers, malformed conversation
          indexes, unknown charsets, provider diagnostics.

        Args:
          message: Description of the warning condition.
          **kwargs: Structured metadata describing the context.
        """

        self.log("WARN", message, extra=kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        """Log an ``ERROR`` record for failed operations."""

        self.log("ERROR", message, extra=kwargs)

    @staticmethod
    def _redact(data: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of ``data`` with sensitive keys masked.

        What:
          Replaces the values of well-known sensitive keys with ``[redacted]``.

        Why:
          Mail headers and bodies are personal data; credentials obviously so.

        How:
          Walks the mapping, masking matching keys and recursing into nested
          dictionaries so structure is preserved for downstream parsing.

        Args:
          data: Arbitrary metadata to sanitise.

        Returns:
          A sanitised copy of ``data``.
        """

        sensitive_keys = {"subject", "body", "password", "snippet"}
        result: Dict[str, Any] = {}
        for key, value in data.items():
            if key in sensitive_keys:
                result[key] = REDACTED
            elif isinstance(value, dict):
                result[key] = JsonLogger._redact(value)
            else:
                result[key] = value
        return result


def get_logger(component: str, level: str = "INFO") -> JsonLogger:
    """Construct a :class:`JsonLogger` for ``component``.

    What:
      Returns a logger bound to ``component`` writing to ``stdout``.

    Why:
      Call sites should not instantiate :class:`JsonLogger` directly so the
      default stream and redaction keys can evolve centrally.

    Args:
      component: Logical subsystem name included in every record.
      level: Minimum severity to emit.

    Returns:
      Configured :class:`JsonLogger` instance.
    """

    return JsonLogger(component=component, level=level)
