"""Pytest configuration shared by the unit and end-to-end suites.

What:
  Establish project import paths and apply a canned runtime configuration to
  every test.

Why:
  Tests must import the in-repo ``mailbridge`` package rather than an installed
  wheel, and the runtime configuration is cached process-wide, so every test
  starts from the same fixture file with an empty cache.

How:
  Prepend ``mailbridge/src`` to ``sys.path`` at import time and define the
  autouse :func:`runtime_config` fixture, which points
  ``MAILBRIDGE_CONFIG_PATH`` at ``tests/data/config.yaml`` and resets the cache
  around each test.

Interfaces:
  :func:`runtime_config` (pytest fixture), :data:`CONFIG_PATH`,
  :data:`SRC_DIR`.
"""

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "mailbridge" / "src"
if SRC_DIR.exists():
    sys.path.insert(0, str(SRC_DIR))

import pytest

from mailbridge.config.loader import reset_runtime_config

CONFIG_PATH = Path(__file__).resolve().parent / "data" / "config.yaml"


@pytest.fixture(autouse=True)
def runtime_config(monkeypatch: pytest.MonkeyPatch):
    """Apply the canned configuration file for every test.

    Args:
      monkeypatch: Pytest helper injected automatically for environment control.
    """

    monkeypatch.setenv("MAILBRIDGE_CONFIG_PATH", str(CONFIG_PATH))
    reset_runtime_config()
    try:
        yield
    finally:
        reset_runtime_config()
