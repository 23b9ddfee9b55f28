"""Per-scope metric registry: which metrics exist, which are shown, and how they are labelled."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from battle_overlay.snapshot_model import MemberRecord, Snapshot, StatTotals

_LOGGER = logging.getLogger("BattleOverlay.MetricCatalog")


class StatScope(enum.Enum):
    CURRENT_COMBAT = "CurrentCombat"
    CURRENT_LEVEL = "CurrentLevel"
    CUMULATIVE = "Cumulative"
    CUSTOM1 = "Custom1"
    CUSTOM2 = "Custom2"

    @classmethod
    def parse(cls, value: object) -> Optional["StatScope"]:
        if isinstance(value, StatScope):
            return value
        if not isinstance(value, str):
            return None
        token = value.strip().replace("_", "").replace(" ", "").lower()
        for scope in cls:
            if scope.value.lower() == token:
                return scope
        return None

    @property
    def is_custom(self) -> bool:
        return self in (StatScope.CUSTOM1, StatScope.CUSTOM2)

    def totals_for(self, member: Optional[MemberRecord]) -> Optional[StatTotals]:
        """Select the totals block this scope reads; custom scopes reuse cumulative data."""

        if member is None:
            return None
        if self is StatScope.CURRENT_COMBAT:
            return member.current_combat
        if self is StatScope.CURRENT_LEVEL:
            return member.current_level
        return member.cumulative


SCOPE_TITLES: Dict[StatScope, str] = {
    StatScope.CURRENT_COMBAT: "Current Combat",
    StatScope.CURRENT_LEVEL: "Current Level",
    StatScope.CUMULATIVE: "Cumulative",
    StatScope.CUSTOM1: "Custom 1",
    StatScope.CUSTOM2: "Custom 2",
}

DEFAULT_ENABLED_KEYS = ("DamageDealt", "DamageTaken", "HealingSelf", "HealingOthers", "RoundsTotal")

HEADER_SHORT_NAMES: Dict[str, str] = {
    "damagedealt": "DMG",
    "damageeffective": "DMG Eff",
    "damageoverkill": "Overkill",
    "damageperturneffective": "DPR Eff",
    "damageperturnparticipated": "DPR Part",
    "damagetaken": "DMG Taken",
    "healingself": "Heal Self",
    "healingothers": "Heal Others",
    "healingperformedtotal": "Heal Done",
    "healingreceivedself": "Heal Self Recv",
    "healingreceivedothers": "Heal Others Recv",
    "healingreceivedtotal": "Heal Recv",
    "hostilesopposed": "Hostiles",
    "killingblows": "Kills",
    "roundseffective": "Rounds Eff",
    "roundstotal": "Rounds",
}

HeaderFactory = Callable[[str], str]


def default_header(key: str) -> str:
    return HEADER_SHORT_NAMES.get(key.casefold(), key)


@dataclass
class MetricSetting:
    key: str
    enabled: bool
    header: str


@dataclass(frozen=True)
class StatField:
    key: str
    header: str


@dataclass(frozen=True)
class MetricSettingSnapshot:
    """Immutable (key, enabled, header) record exchanged with the settings UI and the settings file."""

    key: str
    enabled: bool
    header: str


class ScopeCatalog:
    """Ordered metric settings for one scope; a key appears at most once (case-insensitive)."""

    def __init__(self, header_factory: HeaderFactory = default_header) -> None:
        self._ordered: List[MetricSetting] = []
        self._lookup: Dict[str, MetricSetting] = {}
        self._header_factory = header_factory

    @classmethod
    def create_default(
        cls,
        enabled_keys: Iterable[str] = DEFAULT_ENABLED_KEYS,
        header_factory: HeaderFactory = default_header,
    ) -> "ScopeCatalog":
        catalog = cls(header_factory)
        for key in enabled_keys:
            if not key or not key.strip():
                continue
            catalog._get_or_add(key).enabled = True
        return catalog

    def __len__(self) -> int:
        return len(self._ordered)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.casefold() in self._lookup

    def get(self, key: str) -> Optional[MetricSetting]:
        return self._lookup.get(key.casefold())

    def keys(self) -> List[str]:
        return [setting.key for setting in self._ordered]

    def ensure_keys(self, keys: Iterable[str]) -> bool:
        """Append every unseen key as a disabled entry; existing entries are never touched."""

        missing: List[str] = []
        pending = set()
        for key in keys:
            if not isinstance(key, str) or not key.strip():
                continue
            folded = key.casefold()
            if folded in self._lookup or folded in pending:
                continue
            pending.add(folded)
            missing.append(key)
        for key in missing:
            self._append(MetricSetting(key=key, enabled=False, header=self._header_factory(key)))
        return bool(missing)

    def active_fields(self, global_order: Optional[Sequence[str]] = None) -> List[StatField]:
        enabled = [setting for setting in self._ordered if setting.enabled]
        if not global_order:
            return [StatField(setting.key, setting.header) for setting in enabled]
        rank: Dict[str, int] = {}
        for index, key in enumerate(global_order):
            if isinstance(key, str):
                rank.setdefault(key.casefold(), index)
        ranked = sorted(
            (setting for setting in enabled if setting.key.casefold() in rank),
            key=lambda setting: rank[setting.key.casefold()],
        )
        unranked = [setting for setting in enabled if setting.key.casefold() not in rank]
        return [StatField(setting.key, setting.header) for setting in ranked + unranked]

    def apply(self, snapshots: Iterable[MetricSettingSnapshot]) -> None:
        """Merge edited settings; the edited order becomes the order of the keys it names."""

        edited_order: List[MetricSetting] = []
        seen = set()
        for snap in snapshots:
            if not snap.key or not snap.key.strip():
                continue
            setting = self._get_or_add(snap.key)
            setting.enabled = bool(snap.enabled)
            header = (snap.header or "").strip()
            setting.header = header if header else self._header_factory(setting.key)
            folded = setting.key.casefold()
            if folded not in seen:
                seen.add(folded)
                edited_order.append(setting)
        if not edited_order:
            return
        remainder = [setting for setting in self._ordered if setting.key.casefold() not in seen]
        self._ordered = edited_order + remainder

    def set_header(self, key: str, header: str) -> bool:
        setting = self.get(key)
        if setting is None:
            return False
        cleaned = (header or "").strip()
        setting.header = cleaned if cleaned else self._header_factory(setting.key)
        return True

    def to_snapshot(self) -> List[MetricSettingSnapshot]:
        return [MetricSettingSnapshot(setting.key, setting.enabled, setting.header) for setting in self._ordered]

    def _get_or_add(self, key: str) -> MetricSetting:
        existing = self._lookup.get(key.casefold())
        if existing is not None:
            return existing
        setting = MetricSetting(key=key, enabled=False, header=self._header_factory(key))
        self._append(setting)
        return setting

    def _append(self, setting: MetricSetting) -> None:
        self._lookup[setting.key.casefold()] = setting
        self._ordered.append(setting)


class MetricCatalog:
    """Holds one ScopeCatalog per StatScope."""

    def __init__(self, header_factory: HeaderFactory = default_header) -> None:
        self._header_factory = header_factory
        self._scopes: Dict[StatScope, ScopeCatalog] = {
            scope: ScopeCatalog.create_default(header_factory=header_factory) for scope in StatScope
        }

    def scope(self, scope: StatScope) -> ScopeCatalog:
        return self._scopes[scope]

    def scopes(self) -> List[StatScope]:
        return list(self._scopes)

    def ensure_keys(self, scope: StatScope, observed_keys: Iterable[str]) -> bool:
        changed = self._scopes[scope].ensure_keys(observed_keys)
        if changed:
            _LOGGER.debug("Metric catalog for %s grew to %d keys", scope.value, len(self._scopes[scope]))
        return changed

    def register_snapshot(self, snapshot: Optional[Snapshot]) -> bool:
        """Discover metric keys from every member for every scope; returns True if any scope grew."""

        if snapshot is None:
            return False
        changed = False
        for member in snapshot.members.values():
            for scope in self._scopes:
                totals = scope.totals_for(member)
                if totals is None:
                    continue
                if self.ensure_keys(scope, totals.metrics.keys()):
                    changed = True
        return changed

    def active_fields(self, scope: StatScope, global_order: Optional[Sequence[str]] = None) -> List[StatField]:
        return self._scopes[scope].active_fields(global_order)

    def apply(self, scope: StatScope, edited_settings: Iterable[MetricSettingSnapshot]) -> None:
        self._scopes[scope].apply(edited_settings)

    def load_scope(self, scope: StatScope, settings: Iterable[MetricSettingSnapshot]) -> None:
        self._scopes[scope].apply(settings)

    def to_snapshot(self, scope: StatScope) -> List[MetricSettingSnapshot]:
        return self._scopes[scope].to_snapshot()

    def header_for(self, key: str) -> str:
        """Label shown for a key in the cross-scope header list: the first scope that knows it wins."""

        for catalog in self._scopes.values():
            setting = catalog.get(key)
            if setting is not None:
                return setting.header
        return self._header_factory(key)

    def propagate_header(self, key: str, header: str) -> List[StatScope]:
        """Relabel ``key`` in every scope that already contains it; other scopes are left alone."""

        touched: List[StatScope] = []
        for scope, catalog in self._scopes.items():
            if catalog.set_header(key, header):
                touched.append(scope)
        return touched

    def all_keys(self) -> List[str]:
        keys: List[str] = []
        seen = set()
        for catalog in self._scopes.values():
            for key in catalog.keys():
                folded = key.casefold()
                if folded in seen:
                    continue
                seen.add(folded)
                keys.append(key)
        return keys
