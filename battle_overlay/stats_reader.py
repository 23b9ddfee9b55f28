"""Retrying reader for the live stats snapshot file."""
from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from battle_overlay.snapshot_model import Snapshot, SnapshotDecodeError, decode_snapshot

_LOGGER = logging.getLogger("BattleOverlay.StatsReader")

DEFAULT_RETRIES = 5
DEFAULT_RETRY_DELAY = 0.06


class ReadErrorKind(enum.Enum):
    NOT_FOUND = "not_found"
    PARSE_FAILED = "parse_failed"
    IO_FAILED = "io_failed"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class ReadError:
    kind: ReadErrorKind
    message: str

    @property
    def transient(self) -> bool:
        return self.kind in {ReadErrorKind.PARSE_FAILED, ReadErrorKind.IO_FAILED}

    def banner_text(self) -> str:
        reason = self.message.strip() or "unknown error"
        if self.kind is ReadErrorKind.NOT_FOUND:
            return "Stats file not found. Showing last good data."
        if self.kind is ReadErrorKind.UNEXPECTED:
            return f"Read error: {reason}. Showing last good data."
        return f"Parse failed: {reason}. Showing last good data."


@dataclass(frozen=True)
class ReadResult:
    snapshot: Optional[Snapshot] = None
    raw: Optional[str] = None
    error: Optional[ReadError] = None
    attempts: int = 0
    modified_at: Optional[float] = None

    @property
    def ok(self) -> bool:
        return self.snapshot is not None and self.error is None


def _read_file_text(path: Path) -> str:
    return path.read_bytes().decode("utf-8-sig", errors="strict")


class StatsReader:
    """Reads and decodes the snapshot with a short retry window.

    The producer rewrites the file in place, so a read can hit a locked file or
    a half-written document. Those failures are retried; a missing file or an
    unexpected exception is returned straight away.
    """

    def __init__(
        self,
        *,
        retries: int = DEFAULT_RETRIES,
        delay_seconds: float = DEFAULT_RETRY_DELAY,
        read_text: Callable[[Path], str] = _read_file_text,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._retries = max(1, int(retries))
        self._delay = max(0.0, float(delay_seconds))
        self._read_text = read_text
        self._sleep = sleep

    @property
    def retries(self) -> int:
        return self._retries

    def read(self, path: Path) -> ReadResult:
        path = Path(path)
        last: Optional[ReadError] = None
        _LOGGER.debug("Reading stats file from '%s'", path)
        for attempt in range(1, self._retries + 1):
            try:
                if not path.exists():
                    _LOGGER.warning("Stats file not found at '%s'", path)
                    return ReadResult(error=ReadError(ReadErrorKind.NOT_FOUND, "file not found"), attempts=attempt)
                raw = self._read_text(path)
                snapshot = decode_snapshot(raw)
            except SnapshotDecodeError as exc:
                last = ReadError(ReadErrorKind.PARSE_FAILED, str(exc))
                _LOGGER.warning("JSON parse error while reading stats (attempt %d/%d): %s", attempt, self._retries, exc)
            except UnicodeDecodeError as exc:
                last = ReadError(ReadErrorKind.PARSE_FAILED, f"invalid UTF-8: {exc}")
                _LOGGER.warning("Decode error while reading stats (attempt %d/%d): %s", attempt, self._retries, exc)
            except OSError as exc:
                last = ReadError(ReadErrorKind.IO_FAILED, str(exc))
                _LOGGER.warning("IO error while reading stats (attempt %d/%d): %s", attempt, self._retries, exc)
            except Exception as exc:
                _LOGGER.error("Unhandled exception while reading stats", exc_info=exc)
                return ReadResult(error=ReadError(ReadErrorKind.UNEXPECTED, str(exc)), attempts=attempt)
            else:
                _LOGGER.debug("Stats parsed successfully (party members: %d)", len(snapshot.members))
                return ReadResult(
                    snapshot=snapshot,
                    raw=raw,
                    attempts=attempt,
                    modified_at=self._modified_at(path),
                )
            if attempt < self._retries:
                self._sleep(self._delay)
        _LOGGER.error("Failed to read stats after %d attempts: %s", self._retries, last.message if last else "unknown")
        return ReadResult(error=last, attempts=self._retries)

    @staticmethod
    def _modified_at(path: Path) -> float:
        try:
            return path.stat().st_mtime
        except OSError:
            return time.time()
