"""Typed view of the battle tracker's ``current.json`` snapshot."""
from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

KNOWN_STAT_FIELDS: Tuple[str, ...] = (
    "DamageDealt",
    "DamageTaken",
    "HealingOthers",
    "HealingSelf",
    "RoundsTotal",
)

Number = Union[int, float]


class SnapshotDecodeError(ValueError):
    """Raised when the snapshot bytes are not a usable JSON document."""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_finite_float(value: Any) -> Optional[float]:
    """Float form of a JSON number, or None when it overflows or is not finite."""
    try:
        numeric = float(value)
    except (OverflowError, TypeError, ValueError):
        return None
    return numeric if math.isfinite(numeric) else None


class MetricsView(Mapping):
    """Read-only, case-insensitive mapping of metric key to value.

    Iteration yields keys with their original spelling, in insertion order.
    """

    def __init__(self) -> None:
        self._values: Dict[str, float] = {}
        self._keys: Dict[str, str] = {}

    def _add(self, key: str, value: float, *, replace: bool = False) -> bool:
        folded = key.casefold()
        if folded in self._keys and not replace:
            return False
        self._keys.setdefault(folded, key)
        self._values[folded] = value
        return True

    def __getitem__(self, key: str) -> float:
        if not isinstance(key, str):
            raise KeyError(key)
        return self._values[key.casefold()]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.casefold() in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._keys.values())

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"MetricsView({dict(self.items())!r})"


@dataclass(frozen=True)
class StatTotals:
    """Known stat fields plus any extra numeric fields the producer added."""

    damage_dealt: Optional[float] = None
    damage_taken: Optional[float] = None
    healing_others: Optional[float] = None
    healing_self: Optional[float] = None
    rounds_total: Optional[float] = None
    extensions: Dict[str, Number] = field(default_factory=dict)

    def known_fields(self) -> Dict[str, float]:
        values = (
            self.damage_dealt,
            self.damage_taken,
            self.healing_others,
            self.healing_self,
            self.rounds_total,
        )
        return {key: value for key, value in zip(KNOWN_STAT_FIELDS, values) if value is not None}

    @cached_property
    def metrics(self) -> MetricsView:
        # Known fields go in first so a colliding extension key never replaces them.
        view = MetricsView()
        known_values = self.known_fields()
        for key, value in known_values.items():
            numeric = _as_finite_float(value)
            if numeric is not None:
                view._add(key, numeric)
        known = {key.casefold() for key in known_values}
        for key, value in self.extensions.items():
            if key.casefold() in known:
                continue
            numeric = _as_finite_float(value)
            if numeric is not None:
                view._add(key, numeric)
        return view

    def get_value_or_default(self, key: str, default: float = 0.0) -> float:
        return self.metrics.get(key, default)


@dataclass(frozen=True)
class MemberRecord:
    cumulative: Optional[StatTotals] = None
    current_combat: Optional[StatTotals] = None
    current_level: Optional[StatTotals] = None
    in_combat_active: bool = False
    level: int = 0
    side: str = ""


@dataclass(frozen=True)
class CurrentBattle:
    party_ids: Tuple[str, ...] = ()
    hostile_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SnapshotMetadata:
    schema_version: str = ""
    generated_at: str = ""
    current_save_snapshot_id: str = ""


@dataclass(frozen=True)
class Snapshot:
    members: Dict[str, MemberRecord] = field(default_factory=dict)
    roster_ids: Tuple[str, ...] = ()
    current_battle: Optional[CurrentBattle] = None
    metadata: Optional[SnapshotMetadata] = None


# Decoding -----------------------------------------------------------------


def _coerce_float(value: Any) -> Optional[float]:
    if _is_number(value):
        try:
            return float(value)
        except OverflowError:
            return None
    return None


def _coerce_int(value: Any, default: int = 0) -> int:
    if _is_number(value):
        try:
            return int(value)
        except (OverflowError, ValueError):
            return default
    return default


def _coerce_str(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _coerce_id_list(value: Any) -> Tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(item for item in value if isinstance(item, str))


def _member_ids(block: Any) -> Tuple[str, ...]:
    if not isinstance(block, dict):
        return ()
    return _coerce_id_list(block.get("memberIds"))


def decode_stat_totals(data: Any) -> Optional[StatTotals]:
    if not isinstance(data, dict):
        return None
    extensions: Dict[str, Number] = {}
    for key, value in data.items():
        if key in KNOWN_STAT_FIELDS:
            continue
        if isinstance(key, str) and _is_number(value) and _as_finite_float(value) is not None:
            extensions[key] = value
    return StatTotals(
        damage_dealt=_coerce_float(data.get("DamageDealt")),
        damage_taken=_coerce_float(data.get("DamageTaken")),
        healing_others=_coerce_float(data.get("HealingOthers")),
        healing_self=_coerce_float(data.get("HealingSelf")),
        rounds_total=_coerce_float(data.get("RoundsTotal")),
        extensions=extensions,
    )


def decode_member(data: Any) -> MemberRecord:
    if not isinstance(data, dict):
        return MemberRecord()
    return MemberRecord(
        cumulative=decode_stat_totals(data.get("cumulative")),
        current_combat=decode_stat_totals(data.get("currentCombatTotals")),
        current_level=decode_stat_totals(data.get("currentLevelTotals")),
        in_combat_active=data.get("inCombatActive") is True,
        level=_coerce_int(data.get("level")),
        side=_coerce_str(data.get("side")),
    )


def _decode_battle(data: Any) -> Optional[CurrentBattle]:
    if not isinstance(data, dict):
        return None
    return CurrentBattle(party_ids=_member_ids(data.get("party")), hostile_ids=_member_ids(data.get("hostiles")))


def _decode_metadata(data: Any) -> Optional[SnapshotMetadata]:
    if not isinstance(data, dict):
        return None
    return SnapshotMetadata(
        schema_version=_coerce_str(data.get("schemaVersion")),
        generated_at=_coerce_str(data.get("generatedAt")),
        current_save_snapshot_id=_coerce_str(data.get("currentSaveSnapshotId")),
    )


def snapshot_from_dict(data: Mapping) -> Snapshot:
    members_raw = data.get("partyMembers")
    members: Dict[str, MemberRecord] = {}
    if isinstance(members_raw, dict):
        for member_id, member_data in members_raw.items():
            members[str(member_id)] = decode_member(member_data)
    return Snapshot(
        members=members,
        roster_ids=_member_ids(data.get("party")),
        current_battle=_decode_battle(data.get("currentBattle")),
        metadata=_decode_metadata(data.get("metadata")),
    )


def decode_snapshot(raw: Union[str, bytes]) -> Snapshot:
    """Parse snapshot text or bytes; unknown fields are ignored.

    Raises SnapshotDecodeError for anything that is not a JSON object, which
    includes documents truncated by a writer that has not finished yet.
    """

    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise SnapshotDecodeError(f"invalid UTF-8: {exc}") from exc
    if raw.startswith("\ufeff"):
        raw = raw[1:]
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise SnapshotDecodeError(f"invalid JSON: {exc}") from exc
    except RecursionError as exc:
        raise SnapshotDecodeError("JSON nested too deeply") from exc
    if not isinstance(data, dict):
        raise SnapshotDecodeError(f"expected a JSON object, got {type(data).__name__}")
    return snapshot_from_dict(data)


# Encoding -----------------------------------------------------------------


def stat_totals_to_dict(totals: StatTotals) -> Dict[str, Any]:
    payload: Dict[str, Any] = dict(totals.known_fields())
    for key, value in totals.extensions.items():
        payload.setdefault(key, value)
    return payload


def _ids_block(ids: Tuple[str, ...]) -> Dict[str, List[str]]:
    return {"memberIds": list(ids)}


def snapshot_to_dict(snapshot: Snapshot) -> Dict[str, Any]:
    members: Dict[str, Any] = {}
    for member_id, member in snapshot.members.items():
        entry: Dict[str, Any] = {
            "inCombatActive": member.in_combat_active,
            "level": member.level,
            "side": member.side,
        }
        if member.cumulative is not None:
            entry["cumulative"] = stat_totals_to_dict(member.cumulative)
        if member.current_combat is not None:
            entry["currentCombatTotals"] = stat_totals_to_dict(member.current_combat)
        if member.current_level is not None:
            entry["currentLevelTotals"] = stat_totals_to_dict(member.current_level)
        members[member_id] = entry
    payload: Dict[str, Any] = {"partyMembers": members, "party": _ids_block(snapshot.roster_ids)}
    if snapshot.current_battle is not None:
        payload["currentBattle"] = {
            "party": _ids_block(snapshot.current_battle.party_ids),
            "hostiles": _ids_block(snapshot.current_battle.hostile_ids),
        }
    if snapshot.metadata is not None:
        payload["metadata"] = {
            "schemaVersion": snapshot.metadata.schema_version,
            "generatedAt": snapshot.metadata.generated_at,
            "currentSaveSnapshotId": snapshot.metadata.current_save_snapshot_id,
        }
    return payload


def encode_snapshot(snapshot: Snapshot) -> str:
    return json.dumps(snapshot_to_dict(snapshot), indent=2)
