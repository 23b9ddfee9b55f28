"""Debounced file watcher for the stats snapshot."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Tuple

from PyQt6.QtCore import QFileSystemWatcher, QObject, QTimer, pyqtSignal

_LOGGER = logging.getLogger("BattleOverlay.ChangeWatcher")

DEFAULT_DEBOUNCE_MS = 150

FileSignature = Tuple[int, int, int]


def file_signature(path: Path) -> Optional[FileSignature]:
    try:
        stat = os.stat(path)
    except OSError:
        return None
    return (stat.st_mtime_ns, stat.st_size, stat.st_ino)


class ChangeWatcher(QObject):
    """Watches one file through its directory and coalesces bursts into one ``refresh_requested``.

    Writers that replace the file via temp-file-then-rename or flush it in
    several chunks generate a handful of notifications per update; each one
    restarts the single-shot debounce timer, and only the timer firing emits.
    """

    refresh_requested = pyqtSignal()

    def __init__(self, target: Path, *, debounce_ms: int = DEFAULT_DEBOUNCE_MS, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self._target = Path(target)
        self._signature: Optional[FileSignature] = None
        self._active = False
        self._watcher = QFileSystemWatcher(self)
        self._watcher.directoryChanged.connect(self._on_directory_changed)
        self._watcher.fileChanged.connect(self._on_file_changed)
        self._debounce_timer = QTimer(self)
        self._debounce_timer.setSingleShot(True)
        self._debounce_timer.setInterval(max(1, int(debounce_ms)))
        self._debounce_timer.timeout.connect(self._on_debounce_elapsed)

    @property
    def target(self) -> Path:
        return self._target

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> bool:
        if self._active:
            return True
        directory = self._target.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            _LOGGER.warning("Cannot create stats directory %s: %s", directory, exc)
            return False
        self._signature = file_signature(self._target)
        if not self._watcher.addPath(str(directory)):
            _LOGGER.warning("File watcher could not watch %s", directory)
            return False
        self._arm_file_watch()
        self._active = True
        _LOGGER.info("File watcher active on '%s'", self._target)
        return True

    def stop(self) -> None:
        self._debounce_timer.stop()
        paths = list(self._watcher.files()) + list(self._watcher.directories())
        if paths:
            self._watcher.removePaths(paths)
        if self._active:
            _LOGGER.debug("File watcher stopped for '%s'", self._target)
        self._active = False

    def notify_touched(self, reason: str) -> None:
        """Restart the debounce window; safe to call for any qualifying event."""

        _LOGGER.debug("Stats file watcher event: %s", reason)
        self._debounce_timer.stop()
        self._debounce_timer.start()

    def _arm_file_watch(self) -> None:
        # A replace-via-rename drops the old inode's watch, so re-add whenever the file is back.
        target = str(self._target)
        if self._signature is not None and target not in self._watcher.files():
            self._watcher.addPath(target)

    def _on_directory_changed(self, _path: str) -> None:
        previous = self._signature
        current = file_signature(self._target)
        self._signature = current
        if current is None:
            return
        self._arm_file_watch()
        if current == previous:
            return
        self.notify_touched("created" if previous is None else "replaced")

    def _on_file_changed(self, _path: str) -> None:
        self._signature = file_signature(self._target)
        if self._signature is None:
            return
        self._arm_file_watch()
        self.notify_touched("modified")

    def _on_debounce_elapsed(self) -> None:
        _LOGGER.debug("Debounce window elapsed; requesting stats refresh")
        self.refresh_requested.emit()
