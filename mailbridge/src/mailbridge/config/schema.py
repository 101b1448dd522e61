"""Pydantic models describing the mailbridge runtime configuration."""
from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ValidationError(ValueError):
    """Raised when configuration data does not satisfy the schema."""


class ImapSettings(BaseModel):
    """Connection parameters for the mailbox access server."""

    model_config = ConfigDict(extra="forbid")

    host: str = "localhost"
    port: int = Field(default=993, gt=0, lt=65536)
    ssl: bool = True
    timeout: float = Field(default=30.0, gt=0)
    folder_pattern: str = "*"
    subscribed_only: bool = True
    actions_per_minute: int = Field(default=500, gt=0)


class SmtpSettings(BaseModel):
    """Connection parameters for the outbound mail server."""

    model_config = ConfigDict(extra="forbid")

    host: str = "localhost"
    port: int = Field(default=587, gt=0, lt=65536)
    ssl: bool = False
    starttls: bool = True
    auth: bool = True
    timeout: float = Field(default=30.0, gt=0)

    @model_validator(mode="after")
    def _validate_transport(self) -> "SmtpSettings":
        if self.ssl and self.starttls:
            raise ValidationError("smtp.ssl and smtp.starttls are mutually exclusive")
        return self


class SpecialFolders(BaseModel):
    """Remote paths of the account's special folders.

    Empty values mean "not configured"; the tree manager then falls back to the
    server's special-use flags.
    """

    model_config = ConfigDict(extra="forbid")

    trash: str = ""
    drafts: str = ""
    sent: str = ""
    spam: str = ""


class AttachmentSettings(BaseModel):
    """Location of the filesystem attachment store."""

    model_config = ConfigDict(extra="forbid")

    store_dir: str = "/var/lib/mailbridge/attachments"


class LoggingSettings(BaseModel):
    """Structured logging defaults."""

    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARN", "ERROR"] = "INFO"
    component: str = "mailbridge"


class RuntimeConfig(BaseModel):
    """Root configuration loaded from ``config.yaml``."""

    model_config = ConfigDict(extra="forbid")

    version: int = 1
    imap: ImapSettings = Field(default_factory=ImapSettings)
    smtp: SmtpSettings = Field(default_factory=SmtpSettings)
    special_folders: SpecialFolders = Field(default_factory=SpecialFolders)
    attachments: AttachmentSettings = Field(default_factory=AttachmentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    username: Optional[str] = None

    @model_validator(mode="after")
    def _validate_version(self) -> "RuntimeConfig":
        if self.version != 1:
            raise ValidationError("config.yaml version must be 1")
        return self
