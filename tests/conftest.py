"""Test configuration for importing the engine package."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402

from notify_engine.config import get_database_settings, get_settings  # noqa: E402

NOW_MS = 1_700_000_000_000


@pytest.fixture
def anyio_backend():
  # The engine schedules its loops with asyncio directly.
  return "asyncio"


@pytest.fixture
def now_ms() -> int:
  return NOW_MS


@pytest.fixture(autouse=True)
def _reset_settings_cache():
  get_settings.cache_clear()
  get_database_settings.cache_clear()
  yield
  get_settings.cache_clear()
  get_database_settings.cache_clear()
