from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from PyQt6.QtCore import QCoreApplication, QTimer

from battle_overlay.ingestion_service import StatsIngestionService
from battle_overlay.logging_utils import configure_logging
from battle_overlay.metric_catalog import StatField, StatScope
from battle_overlay.paths import resolve_settings_path, resolve_stats_path
from battle_overlay.row_builder import DisplayRow
from battle_overlay.settings_store import SettingsStore
from battle_overlay.version import __version__, is_dev_build

_LOGGER = logging.getLogger("BattleOverlay.Launcher")

NAME_COLUMN_HEADER = "Character"


def format_table(layout: Sequence[StatField], rows: Sequence[DisplayRow]) -> str:
    """Render rows as a fixed-width text table: names left-aligned, values right-aligned."""

    headers = [NAME_COLUMN_HEADER] + [field.header for field in layout]
    body: List[List[str]] = [[row.name] + [row.metrics.get(field.key, "-") for field in layout] for row in rows]
    widths = [len(header) for header in headers]
    for line in body:
        for index, cell in enumerate(line):
            widths[index] = max(widths[index], len(cell))

    def _render(cells: Sequence[str]) -> str:
        parts = [cells[0].ljust(widths[0])]
        parts.extend(cell.rjust(widths[index]) for index, cell in enumerate(cells) if index > 0)
        return "  ".join(parts).rstrip()

    lines = [_render(headers), "  ".join("-" * width for width in widths)]
    lines.extend(_render(line) for line in body)
    return "\n".join(lines)


def _parse_scope(value: str) -> StatScope:
    scope = StatScope.parse(value)
    if scope is None:
        choices = ", ".join(item.value for item in StatScope)
        raise argparse.ArgumentTypeError(f"unknown scope {value!r} (choose from {choices})")
    return scope


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Battle tracker stats overlay (headless)")
    parser.add_argument("--stats-file", help="Path to the tracker's current.json snapshot")
    parser.add_argument("--settings-file", help="Path to overlay-settings.json")
    parser.add_argument("--scope", type=_parse_scope, default=StatScope.CUMULATIVE, help="Scope to print")
    parser.add_argument("--once", action="store_true", help="Read the snapshot once, print the table and exit")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-dir", help="Directory for overlay.log")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _print_scope(service: StatsIngestionService, scope: StatScope) -> None:
    layout = service.get_layout(scope)
    rows = service.build_rows(scope)
    header = f"== {service.scope_label(scope)} ({service.updated_ago})"
    if service.error_banner:
        header = f"{header} ! {service.error_banner}"
    print(header)
    print(format_table(layout, rows))
    sys.stdout.flush()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(
        debug_enabled=args.debug or is_dev_build(),
        log_dir=Path(args.log_dir).expanduser() if args.log_dir else None,
    )
    stats_path = resolve_stats_path(args.stats_file)
    settings_path = resolve_settings_path(args.settings_file)
    _LOGGER.info("Battle overlay %s: stats=%s settings=%s", __version__, stats_path, settings_path)

    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    store = SettingsStore(settings_path)

    if args.once:
        service = StatsIngestionService(stats_path, store, background_reads=False)
        service.refresh_from_file()
        _print_scope(service, args.scope)
        return 0 if service.snapshot is not None else 1

    service = StatsIngestionService(stats_path, store)
    service.rows_changed.connect(lambda: _print_scope(service, args.scope))
    service.status_changed.connect(lambda text: _LOGGER.warning("Status: %s", text) if text else None)
    app.aboutToQuit.connect(service.stop)

    signal.signal(signal.SIGINT, lambda *_: app.quit())
    # Python only runs signal handlers between bytecodes; wake the interpreter periodically.
    wake_timer = QTimer()
    wake_timer.timeout.connect(lambda: None)
    wake_timer.start(250)

    service.start()
    return app.exec()
