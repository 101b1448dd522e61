"""Configuration loading for mailbridge.

What:
  Provide the import surface for ``config.yaml`` discovery, validation and
  caching.

Why:
  Callers (the CLI, the connector factory, the tests) should not depend on the
  loader/schema split.

Interfaces:
  - get_runtime_config / load_runtime_config / reset_runtime_config: Resolve
    ``config.yaml`` and expose a cached :class:`RuntimeConfig`.
  - RuntimeConfig and its section models, ValidationError, ConfigLoadError,
    RuntimeConfigError.
"""

from .loader import (
    ConfigLoadError,
    RuntimeConfigError,
    get_runtime_config,
    load_runtime_config,
    reset_runtime_config,
)
from .schema import (
    AttachmentSettings,
    ImapSettings,
    LoggingSettings,
    RuntimeConfig,
    SmtpSettings,
    SpecialFolders,
    ValidationError,
)

__all__ = [
    "AttachmentSettings",
    "ConfigLoadError",
    "ImapSettings",
    "LoggingSettings",
    "RuntimeConfig",
    "RuntimeConfigError",
    "SmtpSettings",
    "SpecialFolders",
    "ValidationError",
    "get_runtime_config",
    "load_runtime_config",
    "reset_runtime_config",
]
