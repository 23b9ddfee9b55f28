"""Data contract between the ingestion service and the settings dialog."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from battle_overlay.metric_catalog import SCOPE_TITLES, MetricSettingSnapshot, StatScope
from battle_overlay.settings_store import DisplayPreferences


@dataclass(frozen=True)
class GlobalHeaderSnapshot:
    key: str
    header: str


@dataclass
class SettingsSnapshot:
    """Everything the settings dialog edits, detached from live service state."""

    scope_metrics: Dict[StatScope, List[MetricSettingSnapshot]] = field(default_factory=dict)
    global_headers: List[GlobalHeaderSnapshot] = field(default_factory=list)
    preferences: DisplayPreferences = field(default_factory=DisplayPreferences)

    @property
    def global_order(self) -> List[str]:
        return [entry.key for entry in self.global_headers]


@dataclass
class MetricOption:
    key: str
    enabled: bool
    header: str


class ScopeSettingsModel:
    def __init__(self, scope: StatScope, metrics: List[MetricSettingSnapshot], display_name: Optional[str] = None) -> None:
        self.scope = scope
        self.display_name = display_name or SCOPE_TITLES.get(scope, scope.value)
        self.metrics: List[MetricOption] = [MetricOption(m.key, m.enabled, m.header) for m in metrics]

    def select_all(self) -> None:
        for option in self.metrics:
            option.enabled = True

    def deselect_all(self) -> None:
        for option in self.metrics:
            option.enabled = False

    def option(self, key: str) -> Optional[MetricOption]:
        folded = key.casefold()
        for option in self.metrics:
            if option.key.casefold() == folded:
                return option
        return None

    def build_snapshot(self) -> List[MetricSettingSnapshot]:
        return [MetricSettingSnapshot(option.key, option.enabled, option.header) for option in self.metrics]


@dataclass
class GlobalHeaderOption:
    key: str
    header: str


class SettingsDialogModel:
    """Editable view of a SettingsSnapshot; ``build_result`` hands the edits back."""

    def __init__(self, snapshot: SettingsSnapshot) -> None:
        prefs = snapshot.preferences.copy()
        custom_names = {StatScope.CUSTOM1: prefs.custom1_name, StatScope.CUSTOM2: prefs.custom2_name}
        self.scopes: List[ScopeSettingsModel] = [
            ScopeSettingsModel(scope, list(snapshot.scope_metrics[scope]), custom_names.get(scope))
            for scope in StatScope
            if scope in snapshot.scope_metrics
        ]
        self.global_headers: List[GlobalHeaderOption] = [
            GlobalHeaderOption(entry.key, entry.header) for entry in snapshot.global_headers
        ]
        self.preferences = prefs
        self.selected_scope: Optional[ScopeSettingsModel] = self.scopes[0] if self.scopes else None

    def scope(self, scope: StatScope) -> Optional[ScopeSettingsModel]:
        for model in self.scopes:
            if model.scope is scope:
                return model
        return None

    def move_global_header(self, old_index: int, new_index: int) -> bool:
        count = len(self.global_headers)
        if not (0 <= old_index < count and 0 <= new_index < count) or old_index == new_index:
            return False
        item = self.global_headers.pop(old_index)
        self.global_headers.insert(new_index, item)
        return True

    def build_result(self) -> SettingsSnapshot:
        return SettingsSnapshot(
            scope_metrics={model.scope: model.build_snapshot() for model in self.scopes},
            global_headers=[GlobalHeaderSnapshot(item.key, item.header) for item in self.global_headers],
            preferences=self.preferences.copy(),
        )
