"""mailbridge command-line interface.

What:
  Provide a Typer entry point for inspecting a mailbox the way the
  synchronization engine sees it: folder keys, record listings, translated
  documents, connection checks and thread-index decoding.

Why:
  Operators debugging a sync problem need to see exactly which keys, fields and
  anomalies the connector produces without running the engine itself.

How:
  Each command loads the runtime configuration, builds the transport, sender
  and attachment store from it, opens a :class:`MailConnector` session and
  prints plain text. Credentials come from the ``MAILBRIDGE_USERNAME`` and
  ``MAILBRIDGE_PASSWORD`` environment variables or a password file.

Interfaces:
  ``app`` (Typer application), ``folders``, ``records``, ``show``,
  ``preview``, ``check``, ``decode_index``.

Invariants & Safety:
  - Exit codes follow shell expectations (``0`` success, ``1`` failure).
  - Passwords are never printed or logged.
"""
from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

import typer

from .config.loader import ConfigLoadError, load_runtime_config
from .config.schema import RuntimeConfig
from .core import cvindex
from .core.attachments import FileAttachmentStore, MemoryAttachmentStore
from .core.connector import MailConnector, translate_message
from .imap.transport import ImapTransport, TransportError
from .smtp.sender import SendError, SmtpSender
from .utils.logging import get_logger


app = typer.Typer(help="mailbridge IMAP connector")

LOGGER = logging.getLogger("mailbridge.cli")

_USER_ENV = "MAILBRIDGE_USERNAME"
_PASSWORD_ENV = "MAILBRIDGE_PASSWORD"


def _runtime(config_path: Optional[Path]) -> RuntimeConfig:
    try:
        return load_runtime_config(config_path)
    except ConfigLoadError as exc:
        LOGGER.error("runtime_load_failed: %s", exc)
        raise typer.Exit(code=1) from exc


def _credentials(runtime: RuntimeConfig, password_file: Optional[Path]) -> Tuple[str, str]:
    username = os.environ.get(_USER_ENV) or runtime.username or ""
    if password_file is not None:
        try:
            password = password_file.read_text(encoding="utf-8").strip()
        except OSError as exc:
            LOGGER.error("password_file_unreadable: %s", exc)
            raise typer.Exit(code=1) from exc
    else:
        password = os.environ.get(_PASSWORD_ENV, "")
    if not username:
        LOGGER.error("username_missing: set %s or username in config.yaml", _USER_ENV)
        raise typer.Exit(code=1)
    return username, password


def _connector(runtime: RuntimeConfig, password_file: Optional[Path]) -> MailConnector:
    username, password = _credentials(runtime, password_file)
    logger = get_logger(runtime.logging.component, runtime.logging.level)
    return MailConnector(
        ImapTransport(runtime.imap, username, password, logger=logger),
        SmtpSender(runtime.smtp, username, password, logger=logger),
        FileAttachmentStore(runtime.attachments.store_dir),
        runtime.special_folders,
        subscribed_only=runtime.imap.subscribed_only,
        pattern=runtime.imap.folder_pattern,
        logger=logger,
    )


_CONFIG_OPTION = typer.Option(None, "--config", help="Path to config.yaml")
_PASSWORD_OPTION = typer.Option(None, "--password-file", help="File containing the account password")


@app.command("folders")
def folders(
    config_path: Optional[Path] = _CONFIG_OPTION,
    password_file: Optional[Path] = _PASSWORD_OPTION,
) -> None:
    """List every folder key with its parent, name and capability bits."""

    runtime = _runtime(config_path)
    try:
        with _connector(runtime, password_file) as connector:
            keys = connector.folders()
            if not keys:
                raise typer.Exit(code=1)
            for key in keys:
                record = connector.cache.folder(key)
                if record is None:
                    continue
                typer.echo(f"{key}\t{record.parent or '-'}\t{record.path}\t{record.attrs!r}")
    except TransportError as exc:
        LOGGER.error("connect_failed: %s", exc)
        raise typer.Exit(code=1) from exc


@app.command("records")
def records(
    folder_id: Optional[str] = typer.Argument(None, help="Folder key; defaults to the root"),
    config_path: Optional[Path] = _CONFIG_OPTION,
    password_file: Optional[Path] = _PASSWORD_OPTION,
) -> None:
    """List the folders and messages directly below ``folder_id``."""

    runtime = _runtime(config_path)
    try:
        with _connector(runtime, password_file) as connector:
            found = connector.records(folder_id)
    except TransportError as exc:
        LOGGER.error("connect_failed: %s", exc)
        raise typer.Exit(code=1) from exc
    if found is None:
        raise typer.Exit(code=1)
    for key, marker in found.items():
        typer.echo(f"{marker}\t{key}")


@app.command("show")
def show(
    record_id: str = typer.Argument(..., help="Folder or message key"),
    config_path: Optional[Path] = _CONFIG_OPTION,
    password_file: Optional[Path] = _PASSWORD_OPTION,
) -> None:
    """Print the document the connector produces for ``record_id``."""

    runtime = _runtime(config_path)
    try:
        with _connector(runtime, password_file) as connector:
            document = connector.read(record_id)
    except TransportError as exc:
        LOGGER.error("connect_failed: %s", exc)
        raise typer.Exit(code=1) from exc
    if document is None:
        raise typer.Exit(code=1)
    for line in document.dump():
        typer.echo(line)


@app.command("preview")
def preview(
    message_file: Path = typer.Argument(..., help="RFC 5322 message file (.eml)"),
) -> None:
    """Translate a local message file into a document without a mailbox."""

    try:
        raw = message_file.read_bytes()
    except OSError as exc:
        LOGGER.error("message_file_unreadable: %s", exc)
        raise typer.Exit(code=1) from exc
    document = translate_message(raw, MemoryAttachmentStore(), get_logger("mailbridge.preview", "ERROR"))
    if document is None:
        raise typer.Exit(code=1)
    for line in document.dump():
        typer.echo(line)


@app.command("check")
def check(
    config_path: Optional[Path] = _CONFIG_OPTION,
    password_file: Optional[Path] = _PASSWORD_OPTION,
) -> None:
    """Verify that the IMAP and SMTP servers accept the configured account."""

    runtime = _runtime(config_path)
    username, password = _credentials(runtime, password_file)
    failed = False
    try:
        with ImapTransport(runtime.imap, username, password) as transport:
            count = len(transport.list_folders(runtime.imap.folder_pattern))
        typer.echo(f"imap ok ({count} folders)")
    except TransportError as exc:
        typer.echo(f"imap failed: {exc}")
        failed = True
    try:
        SmtpSender(runtime.smtp, username, password).check()
        typer.echo("smtp ok")
    except SendError as exc:
        typer.echo(f"smtp failed: {exc}")
        failed = True
    if failed:
        raise typer.Exit(code=1)


@app.command("decode-index")
def decode_index(token: str = typer.Argument(..., help="Base64 Thread-Index value")) -> None:
    """Decode a Thread-Index header into its timestamp, GUID and reply blocks."""

    decoded = cvindex.decode(token)
    if decoded is None:
        typer.echo("invalid thread index")
        raise typer.Exit(code=1)

    def _stamp(filetime: int) -> str:
        seconds = cvindex.unix_from_filetime(filetime)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()
        except (ValueError, OverflowError, OSError) as exc:
            raise typer.BadParameter(
                f"time 0x{filetime:016x} is outside the supported range", param_hint="TOKEN"
            ) from exc

    typer.echo(f"timestamp\t{_stamp(decoded.timestamp)}")
    typer.echo(f"guid\t{decoded.guid.hex()}")
    elapsed = decoded.timestamp
    for number, child in enumerate(decoded.children, start=1):
        elapsed += child.offset
        typer.echo(
            f"child {number}\t{_stamp(elapsed)}\trandom={child.random}\tsequence={child.sequence}"
        )
    typer.echo(f"message time\t{_stamp(decoded.message_time())}")


def main() -> None:
    """Execute the Typer application entry point."""

    app()


if __name__ == "__main__":  # pragma: no cover
    main()
