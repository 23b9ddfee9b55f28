from __future__ import annotations

import json
import os
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict

import pytest

from PyQt6.QtCore import QCoreApplication

TAV = "Elves_Female_High_Player_a3b3ad94-c0cb-41de-75f1-31a0365cbe24"
LAEZEL = "S_Player_Laezel_58a69333-40bf-8358-1d17-fff240d7fb12"
SHADOWHEART = "S_Player_ShadowHeart_3ed74f06-3c60-42dc-83f6-f034cb47c679"
ASTARION = "S_Player_Astarion_c7c13742-bacd-460a-8f65-f864fe41f255"
GALE = "S_Player_Gale_ad9af97d-75da-406a-ae13-7071c563f604"


@pytest.fixture
def qt_app(monkeypatch):
    monkeypatch.setenv("QT_QPA_PLATFORM", os.getenv("QT_QPA_PLATFORM", "offscreen"))
    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication([])
    yield app


def _totals(**values: Any) -> Dict[str, Any]:
    return dict(values)


def _member(cumulative=None, combat=None, level=None, **extra: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"inCombatActive": False, "level": 5, "side": "party"}
    if cumulative is not None:
        payload["cumulative"] = cumulative
    if combat is not None:
        payload["currentCombatTotals"] = combat
    if level is not None:
        payload["currentLevelTotals"] = level
    payload.update(extra)
    return payload


@pytest.fixture
def roster() -> SimpleNamespace:
    return SimpleNamespace(tav=TAV, laezel=LAEZEL, shadowheart=SHADOWHEART, astarion=ASTARION, gale=GALE)


@pytest.fixture
def sample_document() -> Dict[str, Any]:
    return {
        "partyMembers": {
            TAV: _member(
                cumulative=_totals(DamageDealt=120, DamageTaken=40.5, HealingSelf=0, HealingOthers=12, RoundsTotal=9, KillingBlows=3),
                combat=_totals(DamageDealt=30, DamageTaken=4, RoundsTotal=2),
                level=_totals(DamageDealt=80, RoundsTotal=6),
                inCombatActive=True,
            ),
            LAEZEL: _member(
                cumulative=_totals(DamageDealt=210.25, DamageTaken=88, HealingSelf=5, HealingOthers=0, RoundsTotal=9, DamageOverkill=14),
                combat=_totals(DamageDealt=55, DamageTaken=10, RoundsTotal=2),
                level=_totals(DamageDealt=150, RoundsTotal=6),
            ),
            SHADOWHEART: _member(
                cumulative=_totals(DamageDealt=60, DamageTaken=20, HealingSelf=8, HealingOthers=70, RoundsTotal=9),
                combat=_totals(DamageDealt=5, RoundsTotal=2),
            ),
        },
        "party": {"memberIds": [TAV, LAEZEL, SHADOWHEART]},
        "currentBattle": {"party": {"memberIds": [TAV, LAEZEL]}, "hostiles": {"memberIds": ["Goblin_1"]}},
        "metadata": {"schemaVersion": "3", "generatedAt": "2024-05-01T12:00:00Z", "currentSaveSnapshotId": "save-7"},
        "unknownTopLevel": {"ignored": True},
    }


@pytest.fixture
def write_document(tmp_path):
    def _write(document: Dict[str, Any], name: str = "current.json") -> Path:
        path = tmp_path / "views" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(document), encoding="utf-8")
        return path

    return _write
