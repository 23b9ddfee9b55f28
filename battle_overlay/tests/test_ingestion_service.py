from __future__ import annotations

import json
import time

import pytest

from PyQt6.QtCore import QCoreApplication

from battle_overlay.ingestion_service import READ_ERROR_BANNER, WAITING_LABEL, StatsIngestionService
from battle_overlay.metric_catalog import MetricSettingSnapshot, StatScope
from battle_overlay.settings_exchange import SettingsDialogModel
from battle_overlay.settings_store import SettingsStore
from battle_overlay.snapshot_model import Snapshot
from battle_overlay.stats_reader import ReadError, ReadErrorKind, ReadResult, StatsReader


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class StubReader:
    def __init__(self, results) -> None:
        self.results = list(results)
        self.calls = 0

    def read(self, path):
        self.calls += 1
        return self.results.pop(0)


class SignalLog:
    def __init__(self, service: StatsIngestionService) -> None:
        self.rows = 0
        self.status = []
        self.updated = []
        self.preferences = []
        service.rows_changed.connect(self._on_rows)
        service.status_changed.connect(self.status.append)
        service.updated_ago_changed.connect(self.updated.append)
        service.preferences_changed.connect(self.preferences.append)

    def _on_rows(self) -> None:
        self.rows += 1


@pytest.fixture
def settings_path(tmp_path):
    return tmp_path / "settings" / "overlay-settings.json"


@pytest.fixture
def make_service(qt_app, tmp_path, settings_path):
    created = []

    def _make(reader=None, *, stats_path=None, clock=None, background_reads=False):
        service = StatsIngestionService(
            stats_path or tmp_path / "views" / "current.json",
            SettingsStore(settings_path),
            reader=reader or StatsReader(sleep=lambda _seconds: None),
            background_reads=background_reads,
            clock=clock or FakeClock(),
        )
        created.append(service)
        return service

    yield _make
    for service in created:
        service.stop()


def test_initial_state_waits_for_data(make_service):
    service = make_service()
    assert service.snapshot is None
    assert service.updated_ago == WAITING_LABEL
    assert service.error_banner == ""
    assert service.build_rows(StatScope.CUMULATIVE) == []


def test_successful_refresh_publishes_rows(make_service, write_document, sample_document, settings_path):
    path = write_document(sample_document)
    service = make_service(stats_path=path)
    log = SignalLog(service)

    assert service.refresh_from_file() is True

    assert service.snapshot is not None
    assert json.loads(service.raw) == sample_document
    assert service.refresh_in_flight is False
    assert log.rows == 1
    rows = service.build_rows(StatScope.CUMULATIVE)
    assert [row.name for row in rows] == ["Lae'zel", "Tav", "ShadowHeart"]
    assert "KillingBlows" in service.catalog.scope(StatScope.CUMULATIVE)
    assert "KillingBlows" not in [field.key for field in service.get_layout(StatScope.CUMULATIVE)]
    assert settings_path.exists()


def test_failed_refresh_keeps_last_good_snapshot(make_service, write_document, sample_document):
    path = write_document(sample_document)
    service = make_service(stats_path=path)
    log = SignalLog(service)
    service.refresh_from_file()
    good = service.snapshot

    path.write_text('{"partyMembers": {', encoding="utf-8")
    service.refresh_from_file()

    assert service.snapshot is good
    assert service.error_banner.startswith("Parse failed:")
    assert service.error_banner.endswith("Showing last good data.")
    assert log.status == [service.error_banner]
    assert log.rows == 1
    assert len(service.build_rows(StatScope.CUMULATIVE)) == 3

    path.write_text(json.dumps(sample_document), encoding="utf-8")
    service.refresh_from_file()
    assert service.error_banner == ""
    assert log.status[-1] == ""


def test_missing_file_sets_not_found_banner(make_service, tmp_path):
    service = make_service(stats_path=tmp_path / "views" / "missing.json")
    service.refresh_from_file()
    assert service.error_banner == "Stats file not found. Showing last good data."
    assert service.snapshot is None


def test_refresh_is_single_flight(make_service):
    reader = StubReader([ReadResult(snapshot=Snapshot(), raw="{}", attempts=1, modified_at=990.0)])
    service = make_service(reader)
    service._refresh_in_flight = True

    assert service.refresh_from_file() is False
    assert reader.calls == 0

    service._refresh_in_flight = False
    assert service.refresh_from_file() is True
    assert reader.calls == 1


def test_updated_ago_uses_file_timestamp(make_service):
    clock = FakeClock(1000.0)
    reader = StubReader([ReadResult(snapshot=Snapshot(), raw="{}", attempts=1, modified_at=990.4)])
    service = make_service(reader, clock=clock)
    log = SignalLog(service)

    service.refresh_from_file()
    assert service.updated_ago == "Updated 9s ago"

    clock.now = 1030.0
    service.update_updated_ago()
    service.update_updated_ago()
    assert service.updated_ago == "Updated 39s ago"
    assert log.updated == ["Updated 9s ago", "Updated 39s ago"]


def test_reader_exception_sets_read_error_banner(make_service):
    class ExplodingReader:
        def read(self, path):
            raise RuntimeError("disk on fire")

    service = make_service(ExplodingReader())
    service.refresh_from_file()

    assert service.error_banner == ReadError(ReadErrorKind.UNEXPECTED, "disk on fire").banner_text()
    assert service.refresh_in_flight is False


def test_apply_failure_keeps_last_good_snapshot(make_service, monkeypatch):
    good = Snapshot()
    reader = StubReader(
        [
            ReadResult(snapshot=good, raw="{}", attempts=1, modified_at=990.0),
            ReadResult(snapshot=Snapshot(roster_ids=("x",)), raw="{\"x\": 1}", attempts=1, modified_at=995.0),
        ]
    )
    service = make_service(reader)
    service.refresh_from_file()

    def _boom(_snapshot):
        raise RuntimeError("catalog broke")

    monkeypatch.setattr(service.catalog, "register_snapshot", _boom)
    service.refresh_from_file()

    assert service.error_banner == READ_ERROR_BANNER
    assert service.refresh_in_flight is False
    assert service.snapshot is good
    assert service.raw == "{}"
    assert service.updated_ago == "Updated 10s ago"


def test_oversized_integer_in_snapshot_keeps_rows_buildable(make_service, write_document, sample_document, roster):
    path = write_document(sample_document)
    text = path.read_text(encoding="utf-8")
    path.write_text(text.replace('"KillingBlows": 3', '"KillingBlows": 1' + "0" * 400), encoding="utf-8")
    service = make_service(stats_path=path)

    service.refresh_from_file()

    assert service.error_banner == ""
    assert service.snapshot is not None
    assert "KillingBlows" not in service.snapshot.members[roster.tav].cumulative.metrics
    assert [row.name for row in service.build_rows(StatScope.CUMULATIVE)] == ["Lae'zel", "Tav", "ShadowHeart"]


def test_synchronous_read_leaves_thread_tracking_alone(make_service, monkeypatch, write_document, sample_document):
    service = make_service(stats_path=write_document(sample_document))
    untracked = []
    monkeypatch.setattr(service._lifecycle, "untrack_thread", untracked.append)

    service.refresh_from_file()

    assert service.snapshot is not None
    assert untracked == []


def test_background_read_is_delivered_on_owner_thread(make_service, write_document, sample_document):
    path = write_document(sample_document)
    service = make_service(stats_path=path, background_reads=True)

    assert service.refresh_from_file() is True
    deadline = time.monotonic() + 5.0
    while service.refresh_in_flight and time.monotonic() < deadline:
        QCoreApplication.processEvents()
        time.sleep(0.01)

    assert service.refresh_in_flight is False
    assert service.snapshot is not None
    assert len(service.snapshot.members) == 3


def test_settings_are_loaded_on_construction(make_service, settings_path):
    settings_path.parent.mkdir(parents=True, exist_ok=True)
    settings_path.write_text(
        json.dumps(
            {
                "scopes": {"Cumulative": [{"key": "DamageTaken", "enabled": False, "header": "Taken"}]},
                "global_header_order": ["RoundsTotal", "DamageDealt"],
                "custom_scope_names": {"Custom1": "Bosses"},
                "column_orders": {"CurrentCombat": ["RoundsTotal"]},
            }
        ),
        encoding="utf-8",
    )

    service = make_service()

    layout = [field.key for field in service.get_layout(StatScope.CUMULATIVE)]
    assert layout == ["RoundsTotal", "DamageDealt", "HealingSelf", "HealingOthers"]
    assert "DamageTaken" in [field.key for field in service.get_layout(StatScope.CURRENT_COMBAT)]
    assert service.scope_label(StatScope.CUSTOM1) == "Bosses"
    assert service.scope_label(StatScope.CUSTOM2) == "Custom 2"
    assert service.scope_label(StatScope.CURRENT_LEVEL) == "Current Level"
    assert service.column_order(StatScope.CURRENT_COMBAT) == ["RoundsTotal"]


def test_create_snapshot_lists_every_known_header(make_service, write_document, sample_document):
    service = make_service(stats_path=write_document(sample_document))
    service.refresh_from_file()

    snapshot = service.create_snapshot()

    keys = snapshot.global_order
    assert keys[:5] == ["DamageDealt", "DamageTaken", "HealingSelf", "HealingOthers", "RoundsTotal"]
    assert set(keys[5:]) == {"KillingBlows", "DamageOverkill"}
    assert set(snapshot.scope_metrics) == set(StatScope)


def test_apply_settings_relabels_reorders_and_persists(make_service, write_document, sample_document, settings_path):
    service = make_service(stats_path=write_document(sample_document))
    service.refresh_from_file()
    log = SignalLog(service)

    model = SettingsDialogModel(service.create_snapshot())
    model.move_global_header(4, 0)
    model.global_headers[1].header = "Damage"
    model.scope(StatScope.CUMULATIVE).option("KillingBlows").enabled = True
    model.preferences.compact_layout = True
    service.apply_settings(model.build_result())

    cumulative = service.get_layout(StatScope.CUMULATIVE)
    assert [field.key for field in cumulative][:2] == ["RoundsTotal", "DamageDealt"]
    assert cumulative[1].header == "Damage"
    assert "KillingBlows" in [field.key for field in cumulative]
    assert service.get_layout(StatScope.CURRENT_COMBAT)[1].header == "Damage"
    assert "KillingBlows" not in [field.key for field in service.get_layout(StatScope.CUSTOM1)]
    assert service.preferences.compact_layout is True
    assert len(log.preferences) == 1
    assert log.rows == 1

    persisted = json.loads(settings_path.read_text(encoding="utf-8"))
    assert persisted["global_header_order"][:2] == ["RoundsTotal", "DamageDealt"]
    assert persisted["compact_layout"] is True
    assert {"key": "DamageDealt", "enabled": True, "header": "Damage"} in persisted["scopes"]["CurrentLevel"]


def test_apply_settings_without_changes_keeps_preferences_quiet(make_service):
    service = make_service()
    log = SignalLog(service)

    service.apply_settings(service.create_snapshot(), persist=False)

    assert log.preferences == []
    assert log.rows == 1


def test_set_column_order_persists(make_service, settings_path):
    service = make_service()
    service.set_column_order(StatScope.CUMULATIVE, ["HealingSelf", "", "DamageDealt"])

    assert service.column_order(StatScope.CUMULATIVE) == ["HealingSelf", "DamageDealt"]
    persisted = json.loads(settings_path.read_text(encoding="utf-8"))
    assert persisted["column_orders"] == {"Cumulative": ["HealingSelf", "DamageDealt"]}


def test_edited_scope_settings_apply_only_to_their_scope(make_service):
    service = make_service()
    snapshot = service.create_snapshot()
    snapshot.scope_metrics = {StatScope.CUSTOM2: [MetricSettingSnapshot("DamageDealt", False, "DMG")]}
    snapshot.global_headers = []

    service.apply_settings(snapshot, persist=False)

    assert "DamageDealt" not in [field.key for field in service.get_layout(StatScope.CUSTOM2)]
    assert "DamageDealt" in [field.key for field in service.get_layout(StatScope.CUSTOM1)]


def test_blank_global_header_restores_default(make_service):
    service = make_service()

    model = SettingsDialogModel(service.create_snapshot())
    model.global_headers[0].header = "Custom"
    service.apply_settings(model.build_result(), persist=False)
    assert service.get_layout(StatScope.CUMULATIVE)[0].header == "Custom"

    model = SettingsDialogModel(service.create_snapshot())
    assert model.global_headers[0].key == "DamageDealt"
    model.global_headers[0].header = "  "
    service.apply_settings(model.build_result(), persist=False)

    for scope in StatScope:
        assert service.get_layout(scope)[0].header == "DMG"
