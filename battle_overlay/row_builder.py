"""Roster slot resolution, display names and formatted table rows."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from battle_overlay.metric_catalog import StatField, StatScope
from battle_overlay.snapshot_model import Snapshot

MAX_SLOTS = 4
RANKING_METRIC = "DamageDealt"
UNUSED_SLOT_LABEL = "(unused slot)"
MISSING_VALUE = "-"
MULTIPLAYER_TAG = "S_Player_"
RAW_ID_MAX_CHARS = 12
_INTEGER_TOLERANCE = 0.0005

# Roster keys must match the entries under "partyMembers" in current.json.
PARTY_NAME_OVERRIDES: Dict[str, str] = {
    "Elves_Female_High_Player_a3b3ad94-c0cb-41de-75f1-31a0365cbe24": "Tav",
    "S_Player_Laezel_58a69333-40bf-8358-1d17-fff240d7fb12": "Lae'zel",
}

LEGACY_NAME_MAP: Dict[str, str] = {
    "Elves_Female_Wood_Player_097e6584-f066-ea2f-f34a-af9cbf42df37": "Anodika",
}


@dataclass(frozen=True)
class RosterSlot:
    key: str
    display_override: Optional[str] = None


@dataclass
class DisplayRow:
    name: str
    metrics: Dict[str, str] = field(default_factory=dict)
    sort_value: float = 0.0


def friendly_name(member_id: str) -> str:
    """Best-effort short name: the segment after ``S_Player_``, else the truncated id."""

    if not member_id or not member_id.strip():
        return ""
    index = member_id.lower().find(MULTIPLAYER_TAG.lower())
    if index >= 0:
        remainder = member_id[index + len(MULTIPLAYER_TAG):]
        underscore = remainder.find("_")
        if underscore > 0:
            return remainder[:underscore]
    return member_id[:RAW_ID_MAX_CHARS] if len(member_id) > RAW_ID_MAX_CHARS else member_id


def resolve_display_name(key: str, override: Optional[str] = None) -> str:
    if override and override.strip():
        return override
    if not key or not key.strip():
        return UNUSED_SLOT_LABEL
    if key in PARTY_NAME_OVERRIDES:
        return PARTY_NAME_OVERRIDES[key]
    if key in LEGACY_NAME_MAP:
        return LEGACY_NAME_MAP[key]
    return friendly_name(key)


def resolve_active_slots(
    snapshot: Optional[Snapshot],
    name_overrides: Optional[Mapping[str, str]] = None,
    *,
    limit: int = MAX_SLOTS,
) -> List[RosterSlot]:
    """Active roster ids first; when the roster is empty, the first known members instead."""

    if snapshot is None:
        return []
    overrides = name_overrides or {}
    slots: List[RosterSlot] = []
    for member_id in snapshot.roster_ids:
        if not member_id or not member_id.strip():
            continue
        slots.append(RosterSlot(member_id, overrides.get(member_id)))
        if len(slots) == limit:
            return slots
    if not slots:
        for member_id in snapshot.members:
            if not member_id or not member_id.strip():
                continue
            slots.append(RosterSlot(member_id, overrides.get(member_id)))
            if len(slots) == limit:
                break
    return slots


def format_metric(metrics: Optional[Mapping[str, float]], key: str) -> str:
    if metrics is None or key not in metrics:
        return MISSING_VALUE
    value = metrics[key]
    if value is None or not math.isfinite(value):
        return MISSING_VALUE
    rounded = round(value)
    if abs(value - rounded) < _INTEGER_TOLERANCE:
        return str(int(rounded))
    text = f"{round(value, 2):.2f}".rstrip("0").rstrip(".")
    return "0" if text in {"-0", ""} else text


def ranking_value(metrics: Optional[Mapping[str, float]], layout: Sequence[StatField]) -> float:
    if metrics is None:
        return 0.0
    if RANKING_METRIC in metrics:
        return metrics[RANKING_METRIC]
    for stat_field in layout:
        if stat_field.key in metrics:
            return metrics[stat_field.key]
    return 0.0


def build_row(
    snapshot: Optional[Snapshot],
    slot: RosterSlot,
    scope: StatScope,
    layout: Sequence[StatField],
) -> DisplayRow:
    member = None
    if snapshot is not None and slot.key and slot.key.strip():
        member = snapshot.members.get(slot.key)
    totals = scope.totals_for(member)
    metrics = totals.metrics if totals is not None else None
    row = DisplayRow(
        name=resolve_display_name(slot.key, slot.display_override),
        sort_value=ranking_value(metrics, layout),
    )
    for stat_field in layout:
        row.metrics[stat_field.key] = format_metric(metrics, stat_field.key)
    return row


def build_rows(
    snapshot: Optional[Snapshot],
    scope: StatScope,
    layout: Sequence[StatField],
    name_overrides: Optional[Mapping[str, str]] = None,
) -> List[DisplayRow]:
    rows = [build_row(snapshot, slot, scope, layout) for slot in resolve_active_slots(snapshot, name_overrides)]
    # sorted() is stable, so tied rows keep slot order.
    return sorted(rows, key=lambda row: row.sort_value, reverse=True)
