"""Read NOTIFY_* settings from a local .env file."""

from __future__ import annotations

import os
from pathlib import Path

_QUOTES = {'"', "'"}


def default_env_path() -> Path:
  """NOTIFY_ENV_FILE when set, else .env at the project root."""
  explicit = os.getenv("NOTIFY_ENV_FILE")
  if explicit:
    return Path(explicit).expanduser()
  return Path(__file__).resolve().parents[2] / ".env"


def _parse_line(raw_line: str) -> tuple[str, str] | None:
  line = raw_line.strip()
  if line.startswith("export "):
    line = line.removeprefix("export ").lstrip()
  if not line or line.startswith("#"):
    return None

  key, sep, value = line.partition("=")
  key = key.strip()
  if not sep or not key:
    return None

  value = value.strip()
  if len(value) >= 2 and value[0] in _QUOTES and value[-1] == value[0]:
    return key, value[1:-1]
  # Unquoted values may carry a trailing comment.
  return key, value.split(" #", 1)[0].rstrip()


def load_env_file(path: Path, *, override: bool = False) -> list[str]:
  """Export key=value pairs from ``path``; return the keys that were applied."""
  if not path.is_file():
    return []

  applied: list[str] = []
  for raw_line in path.read_text(encoding="utf-8").splitlines():
    parsed = _parse_line(raw_line)
    if parsed is None:
      continue
    key, value = parsed
    if key in os.environ and not override:
      continue
    os.environ[key] = value
    applied.append(key)
  return applied
