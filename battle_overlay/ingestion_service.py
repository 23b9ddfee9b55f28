"""Long-lived service that keeps the stats view in sync with the snapshot file."""
from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from PyQt6.QtCore import QObject, QTimer, pyqtSignal, pyqtSlot

from battle_overlay.change_watcher import DEFAULT_DEBOUNCE_MS, ChangeWatcher
from battle_overlay.lifecycle import LifecycleTracker
from battle_overlay.metric_catalog import SCOPE_TITLES, MetricCatalog, StatField, StatScope, default_header
from battle_overlay.row_builder import DisplayRow, build_rows
from battle_overlay.settings_exchange import GlobalHeaderSnapshot, SettingsSnapshot
from battle_overlay.settings_store import DisplayPreferences, PersistedSettings, SettingsStore
from battle_overlay.snapshot_model import Snapshot
from battle_overlay.stats_reader import ReadError, ReadErrorKind, ReadResult, StatsReader

_LOGGER = logging.getLogger("BattleOverlay.Ingestion")

TICK_INTERVAL_MS = 1000
WAITING_LABEL = "Waiting for data…"
READ_ERROR_BANNER = "Read error; showing last good data."


class StatsIngestionService(QObject):
    """Owns the watcher, reader, metric catalog and preferences for one overlay.

    All state changes happen on the thread that owns this object. File reads run
    on a short-lived worker thread and hand their result back through a queued
    signal, so the retry sleeps never block watcher or timer delivery.
    """

    rows_changed = pyqtSignal()
    status_changed = pyqtSignal(str)
    updated_ago_changed = pyqtSignal(str)
    preferences_changed = pyqtSignal(object)
    _read_completed = pyqtSignal(object)

    def __init__(
        self,
        stats_path: Path,
        settings_store: SettingsStore,
        *,
        reader: Optional[StatsReader] = None,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        tick_interval_ms: int = TICK_INTERVAL_MS,
        background_reads: bool = True,
        clock: Callable[[], float] = time.time,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._stats_path = Path(stats_path)
        self._settings_store = settings_store
        self._reader = reader or StatsReader()
        self._background_reads = background_reads
        self._clock = clock
        self._lifecycle = LifecycleTracker(_LOGGER)

        self._catalog = MetricCatalog()
        self._preferences = DisplayPreferences()
        self._global_order: List[str] = []
        self._column_orders: Dict[StatScope, List[str]] = {}

        self._snapshot: Optional[Snapshot] = None
        self._raw = ""
        self._last_write_time: Optional[float] = None
        self._error_banner = ""
        self._updated_ago = WAITING_LABEL
        self._refresh_in_flight = False
        self._publishing = False
        self._started = False

        self._watcher = ChangeWatcher(self._stats_path, debounce_ms=debounce_ms, parent=self)
        self._watcher.refresh_requested.connect(self.refresh_from_file)
        self._tick_timer = QTimer(self)
        self._tick_timer.setInterval(max(1, int(tick_interval_ms)))
        self._tick_timer.timeout.connect(self.update_updated_ago)
        self._read_completed.connect(self._apply_read_result)

        self._load_settings()

    # Lifecycle -------------------------------------------------------------

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        if not self._watcher.start():
            _LOGGER.warning("Stats watcher unavailable for %s; only manual refreshes will run", self._stats_path)
        self._tick_timer.start()
        self.request_refresh()
        _LOGGER.info("Ingestion service started for '%s'", self._stats_path)

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self._watcher.stop()
        self._tick_timer.stop()
        self._lifecycle.join_all(timeout=2.0)
        self._lifecycle.log_state("after stop")
        _LOGGER.info("Ingestion service stopped")

    # Query surface ---------------------------------------------------------

    @property
    def stats_path(self) -> Path:
        return self._stats_path

    @property
    def snapshot(self) -> Optional[Snapshot]:
        return self._snapshot

    @property
    def raw(self) -> str:
        return self._raw

    @property
    def error_banner(self) -> str:
        return self._error_banner

    @property
    def updated_ago(self) -> str:
        return self._updated_ago

    @property
    def preferences(self) -> DisplayPreferences:
        return self._preferences.copy()

    @property
    def global_order(self) -> List[str]:
        return list(self._global_order)

    @property
    def catalog(self) -> MetricCatalog:
        return self._catalog

    @property
    def refresh_in_flight(self) -> bool:
        return self._refresh_in_flight

    def scope_label(self, scope: StatScope) -> str:
        if scope is StatScope.CUSTOM1:
            return self._preferences.custom1_name
        if scope is StatScope.CUSTOM2:
            return self._preferences.custom2_name
        return SCOPE_TITLES[scope]

    def get_layout(self, scope: StatScope) -> List[StatField]:
        return self._catalog.active_fields(scope, self._global_order)

    def build_rows(self, scope: StatScope) -> List[DisplayRow]:
        return build_rows(self._snapshot, scope, self.get_layout(scope), self._preferences.party_name_overrides)

    def column_order(self, scope: StatScope) -> List[str]:
        return list(self._column_orders.get(scope, []))

    def set_column_order(self, scope: StatScope, keys: Sequence[str], *, persist: bool = True) -> None:
        self._column_orders[scope] = [key for key in keys if isinstance(key, str) and key]
        if persist:
            self.persist_settings()

    # Refresh pipeline ------------------------------------------------------

    def request_refresh(self) -> None:
        self._watcher.notify_touched("refresh requested")

    @pyqtSlot()
    def refresh_from_file(self) -> bool:
        """Start a read unless one is already running; overlapping triggers are dropped."""

        if self._refresh_in_flight:
            _LOGGER.debug("Stats refresh already in flight; dropping trigger")
            return False
        self._refresh_in_flight = True
        if not self._background_reads:
            self._run_read()
            return True
        worker = threading.Thread(target=self._run_worker_read, name="BattleOverlay-Reader", daemon=True)
        self._lifecycle.track_thread(worker)
        worker.start()
        return True

    def _run_worker_read(self) -> None:
        try:
            self._run_read()
        finally:
            self._lifecycle.untrack_thread(threading.current_thread())

    def _run_read(self) -> None:
        try:
            result = self._reader.read(self._stats_path)
        except Exception as exc:
            _LOGGER.error("Stats reader raised unexpectedly", exc_info=exc)
            result = ReadResult(error=ReadError(ReadErrorKind.UNEXPECTED, str(exc)))
        self._read_completed.emit(result)

    @pyqtSlot(object)
    def _apply_read_result(self, result: ReadResult) -> None:
        try:
            if not result.ok:
                error = result.error or ReadError(ReadErrorKind.UNEXPECTED, "unknown error")
                self._set_error_banner(error.banner_text())
                _LOGGER.warning("Stats refresh failed (%s): %s", error.kind.value, error.message)
                self.update_updated_ago()
                return
            # The snapshot is committed only after catalog registration succeeds.
            self.refresh_metric_catalog(result.snapshot)
            self._snapshot = result.snapshot
            self._raw = result.raw or ""
            self._last_write_time = result.modified_at if result.modified_at is not None else self._clock()
            self._set_error_banner("")
            _LOGGER.info("Stats refresh succeeded (party members: %d)", len(result.snapshot.members))
            self._publish_rows()
            self.update_updated_ago()
        except Exception as exc:
            self._set_error_banner(READ_ERROR_BANNER)
            _LOGGER.error("Exception during stats refresh", exc_info=exc)
        finally:
            self._refresh_in_flight = False

    def refresh_metric_catalog(self, snapshot: Optional[Snapshot] = None) -> bool:
        changed = self._catalog.register_snapshot(snapshot if snapshot is not None else self._snapshot)
        if changed:
            _LOGGER.info("New metrics discovered; persisting catalog")
            self.persist_settings()
        return changed

    @pyqtSlot()
    def update_updated_ago(self) -> None:
        if self._last_write_time is None:
            label = WAITING_LABEL
        else:
            seconds = int(max(0.0, self._clock() - self._last_write_time))
            label = f"Updated {seconds}s ago"
        if label != self._updated_ago:
            self._updated_ago = label
            self.updated_ago_changed.emit(label)

    def _set_error_banner(self, text: str) -> None:
        if text == self._error_banner:
            return
        self._error_banner = text
        self.status_changed.emit(text)

    def _publish_rows(self) -> None:
        if self._publishing:
            _LOGGER.debug("Row publish re-entered; skipping")
            return
        self._publishing = True
        try:
            self.rows_changed.emit()
        finally:
            self._publishing = False

    # Settings exchange -----------------------------------------------------

    def create_snapshot(self) -> SettingsSnapshot:
        self.refresh_metric_catalog()
        scope_metrics = {scope: self._catalog.to_snapshot(scope) for scope in self._catalog.scopes()}
        ordered: List[str] = []
        seen = set()
        for key in list(self._global_order) + self._catalog.all_keys():
            folded = key.casefold()
            if folded in seen:
                continue
            seen.add(folded)
            ordered.append(key)
        headers = [GlobalHeaderSnapshot(key, self._catalog.header_for(key)) for key in ordered]
        return SettingsSnapshot(scope_metrics=scope_metrics, global_headers=headers, preferences=self._preferences.copy())

    def apply_settings(self, edited: SettingsSnapshot, persist: bool = True) -> None:
        previous_headers = {key.casefold(): self._catalog.header_for(key) for key in self._catalog.all_keys()}
        for scope, items in edited.scope_metrics.items():
            self._catalog.apply(scope, items)
        for entry in edited.global_headers:
            before = previous_headers.get(entry.key.casefold())
            if before is None:
                continue
            header = (entry.header or "").strip() or default_header(entry.key)
            if header != before:
                touched = self._catalog.propagate_header(entry.key, header)
                _LOGGER.debug("Header for %s relabelled to %r in %s", entry.key, header, [s.value for s in touched])
        if edited.global_headers:
            self._global_order = _dedupe_keys(edited.global_order)
        preferences = edited.preferences.copy()
        prefs_changed = preferences != self._preferences
        self._preferences = preferences
        if prefs_changed:
            self.preferences_changed.emit(self._preferences.copy())
        if persist:
            self.persist_settings()
        self._publish_rows()

    # Persistence -----------------------------------------------------------

    def build_persisted_settings(self) -> PersistedSettings:
        return PersistedSettings(
            scopes={scope: self._catalog.to_snapshot(scope) for scope in self._catalog.scopes()},
            global_order=list(self._global_order),
            preferences=self._preferences.copy(),
            column_orders={scope: list(keys) for scope, keys in self._column_orders.items()},
        )

    def persist_settings(self) -> bool:
        return self._settings_store.save(self.build_persisted_settings())

    def _load_settings(self) -> None:
        settings = self._settings_store.load()
        if settings is None:
            return
        for scope, items in settings.scopes.items():
            self._catalog.load_scope(scope, items)
        self._global_order = _dedupe_keys(settings.global_order)
        self._preferences = settings.preferences.copy()
        self._column_orders = {scope: list(keys) for scope, keys in settings.column_orders.items()}
        _LOGGER.debug("Loaded settings from %s", self._settings_store.path)


def _dedupe_keys(keys: Sequence[str]) -> List[str]:
    result: List[str] = []
    seen = set()
    for key in keys:
        if not isinstance(key, str) or not key.strip():
            continue
        folded = key.casefold()
        if folded in seen:
            continue
        seen.add(folded)
        result.append(key)
    return result
