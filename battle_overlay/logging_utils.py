from __future__ import annotations

import logging
import os
import sys
import tempfile
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Mapping, Optional

from battle_overlay.paths import APP_DIR_NAME, local_app_data

ROOT_LOGGER_NAME = "BattleOverlay"
LOG_DIR_ENV_VAR = "BATTLE_OVERLAY_LOG_DIR"
LOG_FILE_NAME = "overlay.log"
LOG_FORMAT = "%(asctime)s.%(msecs)03d [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def resolve_logs_dir(env: Optional[Mapping[str, str]] = None, log_dir_name: str = APP_DIR_NAME) -> Path:
    """
    Resolve the directory to store overlay logs.

    Strategy:
    - Use BATTLE_OVERLAY_LOG_DIR if set.
    - Prefer the per-user application data folder that also holds the settings file.
    - Fall back to XDG state/cache locations, then `cwd/logs/<log_dir_name>`.
    - Final fallback: tempdir/<log_dir_name>.
    """
    environ = os.environ if env is None else env
    candidates = []

    env_override = environ.get(LOG_DIR_ENV_VAR)
    if env_override:
        candidates.append(Path(env_override).expanduser())

    candidates.append(local_app_data(environ) / log_dir_name)
    state_home = Path(environ.get("XDG_STATE_HOME", Path.home() / ".local" / "state"))
    cache_home = Path(environ.get("XDG_CACHE_HOME", Path.home() / ".cache"))
    candidates.append(state_home / log_dir_name)
    candidates.append(cache_home / log_dir_name)
    candidates.append(Path.cwd() / "logs" / log_dir_name)

    for target in candidates:
        try:
            target.mkdir(parents=True, exist_ok=True)
            return target
        except OSError:
            continue

    temp_fallback = Path(tempfile.gettempdir()) / log_dir_name
    temp_fallback.mkdir(parents=True, exist_ok=True)
    return temp_fallback


def build_rotating_file_handler(
    log_dir: Path,
    filename: str,
    *,
    retention: int = 5,
    max_bytes: int = 512 * 1024,
    formatter: Optional[logging.Formatter] = None,
) -> logging.Handler:
    """Construct a rotating file handler with sane defaults."""
    retention = max(1, retention)
    backup_count = max(0, retention - 1)
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_dir / filename,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    if formatter is not None:
        handler.setFormatter(formatter)
    return handler


def resolve_log_level(debug_enabled: bool) -> int:
    """Return DEBUG when dev mode or --debug asks for it, INFO otherwise."""
    return logging.DEBUG if debug_enabled else logging.INFO


def configure_logging(
    *,
    debug_enabled: bool,
    log_dir: Optional[Path] = None,
    retention: int = 5,
    console: bool = True,
) -> logging.Logger:
    """Attach file (and optionally console) handlers to the ``BattleOverlay`` logger tree.

    Calling this again replaces the handlers installed by the previous call.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(resolve_log_level(debug_enabled))
    logger.propagate = False
    for handler in list(logger.handlers):
        if getattr(handler, "_battle_overlay_handler", False):
            logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)
    handlers = []
    try:
        target_dir = log_dir if log_dir is not None else resolve_logs_dir()
        handlers.append(build_rotating_file_handler(target_dir, LOG_FILE_NAME, retention=retention, formatter=formatter))
    except OSError as exc:
        sys.stderr.write(f"[battle-overlay] file logging disabled: {exc}\n")
    if console:
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        handlers.append(stream)
    for handler in handlers:
        setattr(handler, "_battle_overlay_handler", True)
        logger.addHandler(handler)
    return logger
