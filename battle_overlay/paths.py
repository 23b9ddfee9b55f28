"""Filesystem locations for the stats snapshot, settings and logs."""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Mapping, Optional

from battle_overlay.settings_store import SETTINGS_FILE

APP_DIR_NAME = "BattleTrackerOverlay"
STATS_FILE_ENV_VAR = "BATTLE_OVERLAY_STATS_FILE"
SETTINGS_FILE_ENV_VAR = "BATTLE_OVERLAY_SETTINGS_FILE"
STATS_RELATIVE_PATH = Path("Larian Studios", "Baldur's Gate 3", "Script Extender", "BattleTracker", "views", "current.json")


def local_app_data(env: Optional[Mapping[str, str]] = None, *, platform: Optional[str] = None) -> Path:
    """Per-user application data root (``%LOCALAPPDATA%`` on Windows, XDG data home elsewhere)."""

    environ = os.environ if env is None else env
    platform = platform or sys.platform
    if platform.startswith("win"):
        value = environ.get("LOCALAPPDATA")
        if value:
            return Path(value).expanduser()
        return Path.home() / "AppData" / "Local"
    value = environ.get("XDG_DATA_HOME")
    if value:
        return Path(value).expanduser()
    return Path.home() / ".local" / "share"


def _from_override(cli_value: Optional[str], env_value: Optional[str]) -> Optional[Path]:
    for candidate in (cli_value, env_value):
        if candidate and candidate.strip():
            return Path(candidate.strip()).expanduser().resolve()
    return None


def resolve_stats_path(cli_value: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Path:
    environ = os.environ if env is None else env
    override = _from_override(cli_value, environ.get(STATS_FILE_ENV_VAR))
    if override is not None:
        return override
    return local_app_data(environ) / STATS_RELATIVE_PATH


def resolve_settings_path(cli_value: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Path:
    environ = os.environ if env is None else env
    override = _from_override(cli_value, environ.get(SETTINGS_FILE_ENV_VAR))
    if override is not None:
        return override
    return local_app_data(environ) / APP_DIR_NAME / SETTINGS_FILE
