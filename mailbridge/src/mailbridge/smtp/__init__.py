"""Outbound mail delivery."""

from .sender import MailSender, SendError, SmtpSender

__all__ = ["MailSender", "SendError", "SmtpSender"]
