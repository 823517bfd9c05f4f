"""Data directory and store file resolution.

Resolution order for the character store:
  1. ``SKETCHFRIENDS_STORE`` environment variable
  2. ``store.path`` in ``<home>/config.json``
  3. ``<home>/characters.json``

where ``<home>`` is ``SKETCHFRIENDS_HOME`` or ``~/.sketchfriends``.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_HOME_DIRNAME = ".sketchfriends"
_CONFIG_FILENAME = "config.json"
STORE_FILENAME = "characters.json"
VOICE_DIRNAME = "voice"

__all__ = [
    "STORE_FILENAME",
    "VOICE_DIRNAME",
    "resolve_home",
    "resolve_store_path",
    "resolve_voice_dir",
]


def _expand_path(raw: str) -> Path:
    """Expand ~ prefix and resolve to absolute path.

    Raises ValueError for empty/whitespace-only input.
    """
    trimmed = raw.strip()
    if not trimmed:
        raise ValueError("empty path")
    p = Path(trimmed)
    if trimmed.startswith("~"):
        p = p.expanduser()
    return p.resolve()


def resolve_home() -> Path:
    """Return the sketchfriends data directory (may not exist yet)."""
    explicit = os.environ.get("SKETCHFRIENDS_HOME", "").strip()
    if explicit:
        return _expand_path(explicit)
    return Path.home() / _HOME_DIRNAME


def _read_config() -> dict[str, Any]:
    """Read ``<home>/config.json``; missing or malformed files yield {}."""
    config_path = resolve_home() / _CONFIG_FILENAME
    if not config_path.is_file():
        return {}
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError):
        logger.warning("Ignoring unreadable %s", config_path, exc_info=True)
        return {}
    return data if isinstance(data, dict) else {}


def resolve_store_path() -> Path:
    """Return the JSON file that holds every character record."""
    override = os.environ.get("SKETCHFRIENDS_STORE", "").strip()
    if override:
        return _expand_path(override)

    store_cfg = _read_config().get("store", {})
    raw = store_cfg.get("path", "") if isinstance(store_cfg, dict) else ""
    if isinstance(raw, str) and raw.strip():
        return _expand_path(raw)

    return resolve_home() / STORE_FILENAME


def resolve_voice_dir() -> Path:
    """Return the directory synthesized speech files are written to."""
    override = os.environ.get("SKETCHFRIENDS_VOICE_DIR", "").strip()
    if override:
        return _expand_path(override)
    return resolve_home() / VOICE_DIRNAME
