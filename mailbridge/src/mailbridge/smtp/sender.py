"""Outbound mail delivery over SMTP.

What:
  Send composed messages through the configured submission server and
  serialise them for storage in the Sent folder.

Why:
  The connector needs one call that either delivers a message or fails with a
  single readable reason; ``smtplib`` raises a family of exceptions with
  server codes that callers should not have to know.

How:
  :class:`SmtpSender` opens a fresh connection per message (implicit TLS or
  optional STARTTLS), authenticates when configured and delegates to
  :meth:`smtplib.SMTP.send_message`. Failures become :class:`SendError`.

Interfaces:
  :class:`MailSender` (protocol), :class:`SmtpSender`, :class:`SendError`.
"""
from __future__ import annotations

import smtplib
from email.message import EmailMessage
from typing import Optional, Protocol

from ..config.schema import SmtpSettings
from ..core.compose import to_wire
from ..utils.logging import JsonLogger, get_logger


class SendError(Exception):
    """Delivery failed; the message is human readable."""


class MailSender(Protocol):
    def send(self, message: EmailMessage) -> None:
        ...

    def serialize(self, message: EmailMessage) -> bytes:
        ...


class SmtpSender:
    """Deliver messages through ``smtplib``.

    Args:
      settings: SMTP section of the runtime configuration.
      username: Login name, used when ``settings.auth`` is enabled.
      password: Login secret.
      logger: Structured logger.
    """

    def __init__(
        self,
        settings: SmtpSettings,
        username: str = "",
        password: str = "",
        logger: Optional[JsonLogger] = None,
    ) -> None:
        self.settings = settings
        self._username = username
        self._password = password
        self._logger = logger or get_logger("mailbridge.smtp")

    def _connect(self) -> smtplib.SMTP:
        settings = self.settings
        if settings.ssl:
            return smtplib.SMTP_SSL(settings.host, settings.port, timeout=settings.timeout)
        return smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout)

    def check(self) -> None:
        """Open and authenticate a connection without sending anything.

        Raises:
          SendError: If the server is unreachable or rejects the login.
        """

        try:
            with self._connect() as server:
                self._prepare(server)
                server.noop()
        except (smtplib.SMTPException, OSError) as exc:
            raise SendError(f"smtp {self.settings.host}:{self.settings.port}: {exc}") from exc

    def _prepare(self, server: smtplib.SMTP) -> None:
        if self.settings.starttls and not self.settings.ssl:
            server.starttls()
        if self.settings.auth:
            server.login(self._username, self._password)

    def send(self, message: EmailMessage) -> None:
        """Deliver ``message`` to every recipient in its To, Cc and Bcc headers.

        Raises:
          SendError: On connection, authentication or delivery failure.
        """

        try:
            with self._connect() as server:
                self._prepare(server)
                refused = server.send_message(message)
        except smtplib.SMTPRecipientsRefused as exc:
            raise SendError(f"all recipients refused: {', '.join(sorted(exc.recipients))}") from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise SendError(f"smtp delivery failed: {exc}") from exc
        if refused:
            self._logger.warning("smtp_recipients_refused", recipients=sorted(refused))
        self._logger.info("smtp_sent", host=self.settings.host)

    def serialize(self, message: EmailMessage) -> bytes:
        return to_wire(message)
