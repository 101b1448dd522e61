"""Tests for SMTP delivery.

What:
  Check the connection sequence (TLS, login, send) and the conversion of
  :mod:`smtplib` failures into :class:`SendError`.

How:
  ``smtplib.SMTP`` is replaced by a recording fake; no socket is opened.
"""

import smtplib
from email.message import EmailMessage

import pytest

from mailbridge.config.schema import SmtpSettings
from mailbridge.smtp.sender import SendError, SmtpSender


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.calls = []
        self.refused = {}
        self.error = None
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.calls.append("quit")

    def starttls(self):
        self.calls.append("starttls")

    def login(self, username, password):
        self.calls.append(("login", username))

    def noop(self):
        self.calls.append("noop")

    def send_message(self, message):
        self.calls.append(("send", message["To"]))
        if self.error is not None:
            raise self.error
        return self.refused


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def _message():
    message = EmailMessage()
    message["From"] = "alice@example.org"
    message["To"] = "bob@example.org"
    message["Subject"] = "Hi"
    message.set_content("hello")
    return message


def test_send_uses_starttls_and_login(fake_smtp, logger, log_stream):
    sender = SmtpSender(SmtpSettings(host="smtp.test", timeout=5), "alice", "secret", logger=logger)
    sender.send(_message())
    (server,) = fake_smtp.instances
    assert (server.host, server.port, server.timeout) == ("smtp.test", 587, 5)
    assert server.calls == ["starttls", ("login", "alice"), ("send", "bob@example.org"), "quit"]
    assert "smtp_sent" in log_stream.getvalue()


def test_plain_connection_without_auth(fake_smtp):
    SmtpSender(SmtpSettings(starttls=False, auth=False)).send(_message())
    assert fake_smtp.instances[0].calls == [("send", "bob@example.org"), "quit"]


def test_check_authenticates_without_sending(fake_smtp):
    SmtpSender(SmtpSettings(), "alice", "secret").check()
    assert fake_smtp.instances[0].calls == ["starttls", ("login", "alice"), "noop", "quit"]


def test_partial_refusal_is_logged(fake_smtp, monkeypatch, logger, log_stream):
    original = FakeSMTP.__init__

    def refusing_init(self, *args, **kwargs):
        original(self, *args, **kwargs)
        self.refused = {"carol@example.org": (550, b"no such user")}

    monkeypatch.setattr(FakeSMTP, "__init__", refusing_init)
    SmtpSender(SmtpSettings(), logger=logger).send(_message())
    assert "smtp_recipients_refused" in log_stream.getvalue()


@pytest.mark.parametrize(
    "error, expected",
    [
        (smtplib.SMTPRecipientsRefused({"bob@example.org": (550, b"no")}), "all recipients refused: bob@example.org"),
        (smtplib.SMTPDataError(554, b"rejected"), "smtp delivery failed"),
        (ConnectionRefusedError("refused"), "smtp delivery failed"),
    ],
)
def test_failures_become_send_errors(fake_smtp, monkeypatch, error, expected):
    original = FakeSMTP.__init__

    def failing_init(self, *args, **kwargs):
        original(self, *args, **kwargs)
        self.error = error

    monkeypatch.setattr(FakeSMTP, "__init__", failing_init)
    with pytest.raises(SendError, match=expected):
        SmtpSender(SmtpSettings()).send(_message())


def test_ssl_uses_smtp_ssl(monkeypatch):
    opened = []

    class FakeSSL(FakeSMTP):
        def __init__(self, host, port, timeout=None):
            super().__init__(host, port, timeout)
            opened.append(self)

    monkeypatch.setattr(smtplib, "SMTP_SSL", FakeSSL)
    SmtpSender(SmtpSettings(ssl=True, starttls=False, port=465)).send(_message())
    assert opened[0].port == 465
    assert "starttls" not in opened[0].calls
