"""Strict loader for the mailbridge runtime configuration.

What:
  Locate, parse and validate ``config.yaml`` and keep the validated model in a
  process-wide cache.

Why:
  Configuration lives outside the package and can be malformed. Centralising
  discovery and validation means the connector, the CLI and the tests all see
  the same typed settings and the same error messages.

How:
  Resolve candidate file locations from an explicit argument, the
  ``MAILBRIDGE_CONFIG_PATH`` environment variable and well-known defaults.
  Parse the first existing file with :func:`yaml.safe_load` and validate it
  through :class:`~mailbridge.config.schema.RuntimeConfig`.

Interfaces:
  :func:`load_runtime_config`, :func:`get_runtime_config`,
  :func:`reset_runtime_config`, :class:`ConfigLoadError`,
  :class:`RuntimeConfigError`.

Invariants:
  - Candidate paths are consulted in precedence order and deduplicated.
  - The cache is bypassed when ``reload`` is requested or a different explicit
    path is given.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Iterable, Optional, Tuple

import yaml
from pydantic import ValidationError as _PydanticValidationError

from .schema import RuntimeConfig, ValidationError


class ConfigLoadError(Exception):
    """Base error for configuration parsing or validation failures."""


class RuntimeConfigError(ConfigLoadError):
    """Error raised when ``config.yaml`` cannot be located, read or validated.

    The message always names the offending path so operators can tell which of
    the candidate locations was picked up.
    """


_CONFIG_ENV = "MAILBRIDGE_CONFIG_PATH"
_DEFAULT_LOCATIONS: Tuple[Path, ...] = (
    Path("config.yaml"),
    Path("/etc/mailbridge/config.yaml"),
)
_RUNTIME_CACHE: Optional[Tuple[Path, RuntimeConfig]] = None


def _candidate_paths(path: Optional[Path]) -> Iterable[Path]:
    """Yield configuration file locations in priority order.

    Args:
      path: Explicit path requested by the caller, or ``None`` to rely on the
        environment and the defaults.

    Yields:
      Deduplicated candidate paths ordered from most to least specific.
    """

    seen: set[Path] = set()
    explicit = [path] if path is not None else []
    env_path = os.environ.get(_CONFIG_ENV)
    if env_path:
        explicit.append(Path(env_path))
    for raw in (*explicit, *_DEFAULT_LOCATIONS):
        candidate = raw.expanduser()
        if candidate not in seen:
            seen.add(candidate)
            yield candidate


def _parse_config_payload(text: str, source: Path) -> dict[str, Any]:
    """Parse ``config.yaml`` text into a mapping ready for validation.

    Raises:
      RuntimeConfigError: If the YAML is invalid or the top level is not a
      mapping.
    """

    try:
        payload = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise RuntimeConfigError(f"Invalid YAML in {source}: {exc}") from exc
    if not isinstance(payload, dict):
        raise RuntimeConfigError(f"{source} must contain a mapping at the top-level")
    return payload


def _load_runtime_from_path(path: Path) -> RuntimeConfig:
    """Read ``path`` and validate it into a :class:`RuntimeConfig`.

    Raises:
      RuntimeConfigError: If the file cannot be read or fails validation.
    """

    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise RuntimeConfigError(f"Configuration file missing: {path}") from exc
    except OSError as exc:  # pragma: no cover - filesystem surface
        raise RuntimeConfigError(f"Unable to read configuration file {path}: {exc}") from exc
    payload = _parse_config_payload(text, path)
    try:
        return RuntimeConfig.model_validate(payload)
    except (_PydanticValidationError, ValidationError) as exc:
        raise RuntimeConfigError(f"Invalid {path}: {exc}") from exc


def load_runtime_config(
    path: Optional[Path | str] = None,
    *,
    reload: bool = False,
) -> RuntimeConfig:
    """Resolve, parse and cache the runtime configuration.

    What:
      Return the validated :class:`RuntimeConfig` from the first existing
      candidate path.

    Why:
      Every connector session needs the same settings; caching avoids re-reading
      the file while ``reload`` gives tests a deterministic refresh.

    Args:
      path: Optional explicit location of ``config.yaml``.
      reload: When ``True`` forces a fresh load bypassing the cache.

    Returns:
      The validated runtime configuration.

    Raises:
      RuntimeConfigError: If no candidate exists or the chosen file is invalid.
    """

    global _RUNTIME_CACHE

    requested_path = Path(path).expanduser() if isinstance(path, (str, Path)) else None
    if not reload and _RUNTIME_CACHE is not None:
        cached_path, cached_config = _RUNTIME_CACHE
        if requested_path is None or cached_path == requested_path:
            return cached_config

    searched: list[str] = []
    for candidate in _candidate_paths(requested_path):
        if not candidate.exists():
            searched.append(str(candidate))
            continue
        config = _load_runtime_from_path(candidate)
        _RUNTIME_CACHE = (candidate, config)
        return config

    raise RuntimeConfigError(
        f"Unable to locate config.yaml (searched: {', '.join(searched) or '<none>'})"
    )


def get_runtime_config() -> RuntimeConfig:
    """Return the cached runtime configuration, loading it on demand."""

    return load_runtime_config()


def reset_runtime_config() -> None:
    """Forget the cached configuration so the next access reloads it."""

    global _RUNTIME_CACHE
    _RUNTIME_CACHE = None
