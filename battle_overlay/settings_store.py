"""JSON-backed persistence for metric catalogs and display preferences."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from battle_overlay.metric_catalog import MetricSettingSnapshot, StatScope

_LOGGER = logging.getLogger("BattleOverlay.Settings")

SETTINGS_FILE = "overlay-settings.json"
SETTINGS_VERSION = 2

OPACITY_MIN = 0.2
OPACITY_MAX = 1.0
OPACITY_DEFAULT = 0.9
COMPACT_COLUMNS_MIN = 1
COMPACT_COLUMNS_MAX = 6
COMPACT_COLUMNS_DEFAULT = 2
FONT_SIZE_MIN = 8.0
FONT_SIZE_MAX = 32.0
FONT_SIZE_DEFAULT = 12.0
CUSTOM1_DEFAULT_NAME = "Custom 1"
CUSTOM2_DEFAULT_NAME = "Custom 2"


def _coerce_float(value: Any, default: float) -> float:
    if isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError, OverflowError):
        return default


def _coerce_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def _coerce_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        token = value.strip().lower()
        if token in {"1", "true", "yes", "on"}:
            return True
        if token in {"0", "false", "no", "off"}:
            return False
        return default
    if isinstance(value, (int, float)):
        return bool(value)
    return default


def _coerce_name(value: Any, default: str) -> str:
    if not isinstance(value, str):
        return default
    cleaned = value.strip()
    return cleaned if cleaned else default


def _clamp(value: float, low: float, high: float) -> float:
    if value != value:  # NaN
        return low
    return max(low, min(value, high))


def _first_present(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


@dataclass
class DisplayPreferences:
    """Scalar display preferences persisted alongside the catalogs."""

    overlay_opacity: float = OPACITY_DEFAULT
    compact_layout: bool = False
    compact_columns: int = COMPACT_COLUMNS_DEFAULT
    font_size: float = FONT_SIZE_DEFAULT
    custom1_name: str = CUSTOM1_DEFAULT_NAME
    custom2_name: str = CUSTOM2_DEFAULT_NAME
    party_name_overrides: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.overlay_opacity = _clamp(_coerce_float(self.overlay_opacity, OPACITY_DEFAULT), OPACITY_MIN, OPACITY_MAX)
        columns = _coerce_int(self.compact_columns, COMPACT_COLUMNS_DEFAULT)
        self.compact_columns = int(_clamp(columns, COMPACT_COLUMNS_MIN, COMPACT_COLUMNS_MAX))
        self.font_size = _clamp(_coerce_float(self.font_size, FONT_SIZE_DEFAULT), FONT_SIZE_MIN, FONT_SIZE_MAX)
        self.custom1_name = _coerce_name(self.custom1_name, CUSTOM1_DEFAULT_NAME)
        self.custom2_name = _coerce_name(self.custom2_name, CUSTOM2_DEFAULT_NAME)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DisplayPreferences":
        custom_names = data.get("custom_scope_names")
        if not isinstance(custom_names, dict):
            custom_names = {}
        overrides_raw = data.get("party_name_overrides")
        overrides: Dict[str, str] = {}
        if isinstance(overrides_raw, dict):
            for member_id, name in overrides_raw.items():
                if isinstance(member_id, str) and isinstance(name, str) and name.strip():
                    overrides[member_id] = name.strip()
        return cls(
            overlay_opacity=_coerce_float(_first_present(data, "overlay_opacity", "OverlayOpacity"), OPACITY_DEFAULT),
            compact_layout=_coerce_bool(data.get("compact_layout"), False),
            compact_columns=_coerce_int(data.get("compact_columns"), COMPACT_COLUMNS_DEFAULT),
            font_size=_coerce_float(data.get("font_size"), FONT_SIZE_DEFAULT),
            custom1_name=_coerce_name(custom_names.get(StatScope.CUSTOM1.value), CUSTOM1_DEFAULT_NAME),
            custom2_name=_coerce_name(custom_names.get(StatScope.CUSTOM2.value), CUSTOM2_DEFAULT_NAME),
            party_name_overrides=overrides,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overlay_opacity": float(self.overlay_opacity),
            "compact_layout": bool(self.compact_layout),
            "compact_columns": int(self.compact_columns),
            "font_size": float(self.font_size),
            "custom_scope_names": {
                StatScope.CUSTOM1.value: self.custom1_name,
                StatScope.CUSTOM2.value: self.custom2_name,
            },
            "party_name_overrides": dict(self.party_name_overrides),
        }

    def copy(self) -> "DisplayPreferences":
        return replace(self, party_name_overrides=dict(self.party_name_overrides))


@dataclass
class PersistedSettings:
    scopes: Dict[StatScope, List[MetricSettingSnapshot]] = field(default_factory=dict)
    global_order: List[str] = field(default_factory=list)
    preferences: DisplayPreferences = field(default_factory=DisplayPreferences)
    column_orders: Dict[StatScope, List[str]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PersistedSettings":
        return cls(
            scopes=_parse_scopes(_first_present(data, "scopes", "Scopes")),
            global_order=_parse_key_list(_first_present(data, "global_header_order", "GlobalHeaderOrder")),
            preferences=DisplayPreferences.from_dict(data),
            column_orders=_parse_column_orders(data.get("column_orders")),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"version": SETTINGS_VERSION}
        payload["scopes"] = {
            scope.value: [
                {"key": item.key, "enabled": bool(item.enabled), "header": item.header} for item in items
            ]
            for scope, items in self.scopes.items()
        }
        payload["global_header_order"] = list(self.global_order)
        payload.update(self.preferences.to_dict())
        payload["column_orders"] = {scope.value: list(keys) for scope, keys in self.column_orders.items()}
        return payload


def _parse_metric_setting(entry: Any) -> Optional[MetricSettingSnapshot]:
    if not isinstance(entry, dict):
        return None
    key = _first_present(entry, "key", "Key")
    if not isinstance(key, str) or not key.strip():
        return None
    enabled = _coerce_bool(_first_present(entry, "enabled", "IsEnabled"), False)
    header = _first_present(entry, "header", "Header")
    return MetricSettingSnapshot(key=key.strip(), enabled=enabled, header=header if isinstance(header, str) else "")


def _parse_scopes(raw: Any) -> Dict[StatScope, List[MetricSettingSnapshot]]:
    scopes: Dict[StatScope, List[MetricSettingSnapshot]] = {}
    if not isinstance(raw, dict):
        return scopes
    for name, entries in raw.items():
        scope = StatScope.parse(name)
        if scope is None:
            _LOGGER.debug("Ignoring settings for unknown scope %r", name)
            continue
        items: List[MetricSettingSnapshot] = []
        if isinstance(entries, list):
            for entry in entries:
                parsed = _parse_metric_setting(entry)
                if parsed is not None:
                    items.append(parsed)
        scopes[scope] = items
    return scopes


def _parse_key_list(raw: Any) -> List[str]:
    if not isinstance(raw, list):
        return []
    keys: List[str] = []
    seen = set()
    for item in raw:
        if not isinstance(item, str) or not item.strip():
            continue
        folded = item.casefold()
        if folded in seen:
            continue
        seen.add(folded)
        keys.append(item)
    return keys


def _parse_column_orders(raw: Any) -> Dict[StatScope, List[str]]:
    orders: Dict[StatScope, List[str]] = {}
    if not isinstance(raw, dict):
        return orders
    for name, keys in raw.items():
        scope = StatScope.parse(name)
        if scope is not None:
            orders[scope] = _parse_key_list(keys)
    return orders


class SettingsStore:
    """Best-effort load/save of PersistedSettings; never raises."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[PersistedSettings]:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            _LOGGER.debug("No settings file at %s; using defaults", self._path)
            return None
        except (OSError, ValueError, RecursionError) as exc:
            _LOGGER.warning("Failed to load settings from %s: %s", self._path, exc)
            return None
        if not isinstance(raw, dict):
            _LOGGER.warning("Settings file %s is not a JSON object; ignoring", self._path)
            return None
        try:
            return PersistedSettings.from_dict(raw)
        except Exception as exc:
            _LOGGER.warning("Failed to interpret settings from %s: %s", self._path, exc)
            return None

    def save(self, settings: PersistedSettings) -> bool:
        try:
            payload = json.dumps(settings.to_dict(), indent=2)
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp_path.write_text(payload, encoding="utf-8")
            tmp_path.replace(self._path)
        except Exception as exc:
            _LOGGER.warning("Failed to persist settings to %s: %s", self._path, exc)
            return False
        _LOGGER.debug("Settings persisted to %s", self._path)
        return True
