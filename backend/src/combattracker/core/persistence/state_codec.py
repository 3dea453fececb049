from __future__ import annotations

import math
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from combattracker.core.engine.events import CombatLogEntry
from combattracker.core.engine.rules.death_saves import sanitize_death_saves
from combattracker.core.engine.state import (
    DEFAULT_ICON,
    CombatantState,
    DeathSaveState,
    EncounterState,
    StatusEffectInstance,
    clamp,
    finite_int,
)

# Формат хранения/рассылки: camelCase JSON (как у фронта).
# Python-атрибуты snake_case, маппинг только здесь.

_COMBATANT_TYPES = ("player", "ally", "enemy", "boss")
_DEATH_SAVE_STATUSES = ("pending", "stable", "dead")
_LOG_TYPES = (
    "info",
    "attack",
    "damage",
    "heal",
    "turn",
    "status-add",
    "status-remove",
    "combatant-add",
    "combatant-remove",
    "death",
)


# ---------- универсальные helpers ----------


def _finite_number(v: Any) -> Optional[float]:
    if v is None or isinstance(v, bool):
        return None
    if not isinstance(v, (int, float)):
        return None
    f = float(v)
    return f if math.isfinite(f) else None


def _opt_str(v: Any) -> Optional[str]:
    return v if isinstance(v, str) else None


def _drop_none(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


# ---------- death saves ----------


def death_saves_to_dict(ds: Optional[DeathSaveState]) -> Optional[Dict[str, Any]]:
    if ds is None:
        return None
    return {
        "status": ds.status,
        "successes": ds.successes,
        "failures": ds.failures,
        "startedAtRound": ds.started_at_round,
        "lastRollRound": ds.last_roll_round,
    }


def death_saves_from_dict(raw: Any) -> Optional[DeathSaveState]:
    """
    Не объект или неизвестный status -> None.
    Отсутствующие/битые счётчики и раунды добивает sanitize_death_saves.
    """
    if not isinstance(raw, dict):
        return None
    if raw.get("status") not in _DEATH_SAVE_STATUSES:
        return None

    return sanitize_death_saves(
        {
            "status": raw["status"],
            "successes": _finite_number(raw.get("successes")),
            "failures": _finite_number(raw.get("failures")),
            "started_at_round": _finite_number(raw.get("startedAtRound")),
            "last_roll_round": _finite_number(raw.get("lastRollRound")),
        }
    )


# ---------- statuses ----------


def status_to_dict(st: StatusEffectInstance) -> Dict[str, Any]:
    out = _drop_none(
        {
            "id": st.id,
            "label": st.label,
            "icon": st.icon,
            "color": st.color,
            "description": st.description,
            "instanceId": st.instance_id,
            "note": st.note,
            "level": st.level,
        }
    )
    # null = бессрочно, ключ пишем всегда
    out["remainingRounds"] = st.remaining_rounds
    return out


def status_from_dict(raw: Any) -> Optional[StatusEffectInstance]:
    if not isinstance(raw, dict):
        return None
    for key in ("id", "label", "icon", "color", "instanceId"):
        if not isinstance(raw.get(key), str):
            return None

    remaining = raw.get("remainingRounds")
    if remaining is not None:
        if _finite_number(remaining) is None:
            return None
        remaining = finite_int(remaining)

    level = _finite_number(raw.get("level"))

    try:
        return StatusEffectInstance(
            id=raw["id"],
            label=raw["label"],
            icon=raw["icon"],
            color=raw["color"],
            description=_opt_str(raw.get("description")),
            instance_id=raw["instanceId"],
            remaining_rounds=remaining,
            note=_opt_str(raw.get("note")),
            level=max(1, finite_int(level)) if level is not None else None,
        )
    except ValidationError:
        # например remainingRounds <= 0
        return None


# ---------- log ----------


def log_entry_to_dict(entry: CombatLogEntry) -> Dict[str, Any]:
    return _drop_none(
        {
            "id": entry.id,
            "type": entry.type,
            "message": entry.message,
            "timestamp": entry.timestamp,
            "round": entry.round,
            "combatantId": entry.combatant_id,
            "amount": entry.amount,
        }
    )


def log_entry_from_dict(raw: Any) -> Optional[CombatLogEntry]:
    if not isinstance(raw, dict):
        return None
    if raw.get("type") not in _LOG_TYPES:
        return None
    for key in ("id", "message", "timestamp"):
        if not isinstance(raw.get(key), str):
            return None
    round_ = _finite_number(raw.get("round"))
    if round_ is None:
        return None

    amount = _finite_number(raw.get("amount"))
    return CombatLogEntry(
        id=raw["id"],
        type=raw["type"],
        message=raw["message"],
        timestamp=raw["timestamp"],
        round=finite_int(round_),
        combatant_id=_opt_str(raw.get("combatantId")),
        amount=finite_int(amount) if amount is not None else None,
    )


# ---------- Combatant codec ----------


def combatant_to_dict(c: CombatantState) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "id": c.id,
        "name": c.name,
        "type": c.type,
        "initiative": c.initiative,
        "hp": {"current": c.hp_current, "max": c.hp_max},
        "icon": c.icon,
        "statuses": [status_to_dict(s) for s in c.statuses],
        "deathSaves": death_saves_to_dict(c.death_saves),
    }
    out.update(_drop_none({"ac": c.ac, "note": c.note, "isHidden": c.is_hidden}))
    return out


def combatant_from_dict(raw: Any) -> Optional[CombatantState]:
    """
    Без id/name участник выбрасывается целиком.
    Остальные поля дефолтятся по одному.
    """
    if not isinstance(raw, dict):
        return None
    if not isinstance(raw.get("id"), str) or not isinstance(raw.get("name"), str):
        return None

    ctype = raw.get("type")
    if ctype not in _COMBATANT_TYPES:
        ctype = "enemy"

    hp = raw.get("hp")
    if not isinstance(hp, dict):
        hp = {}
    hp_max = max(0, finite_int(hp.get("max"), 0))
    hp_current = clamp(finite_int(hp.get("current"), 0), 0, hp_max)

    statuses_raw = raw.get("statuses")
    statuses: List[StatusEffectInstance] = []
    if isinstance(statuses_raw, list):
        for s in statuses_raw:
            parsed = status_from_dict(s)
            if parsed is not None:
                statuses.append(parsed)

    ac = _finite_number(raw.get("ac"))
    is_hidden = raw.get("isHidden")

    return CombatantState(
        id=raw["id"],
        name=raw["name"],
        type=ctype,
        initiative=finite_int(raw.get("initiative"), 0),
        hp_current=hp_current,
        hp_max=hp_max,
        ac=finite_int(ac) if ac is not None else None,
        icon=raw["icon"] if isinstance(raw.get("icon"), str) else DEFAULT_ICON,
        statuses=statuses,
        note=_opt_str(raw.get("note")),
        is_hidden=is_hidden if isinstance(is_hidden, bool) else None,
        death_saves=death_saves_from_dict(raw.get("deathSaves")),
    )


# ---------- EncounterState codec ----------


def encounter_state_to_dict(state: EncounterState) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "combatants": [combatant_to_dict(c) for c in state.combatants],
        "activeCombatantId": state.active_combatant_id,
        "round": state.round,
        "log": [log_entry_to_dict(e) for e in state.log],
    }
    if state.started_at is not None:
        out["startedAt"] = state.started_at
    return out


def encounter_state_from_dict(d: Any) -> EncounterState:
    """
    Восстанавливаем EncounterState из JSON (хранилище / другая вкладка).
    Никогда не падает: мусор -> пустой бой, битые элементы отбрасываются.
    """
    if not isinstance(d, dict):
        return EncounterState()

    combatants: List[CombatantState] = []
    raw_combatants = d.get("combatants")
    if isinstance(raw_combatants, list):
        for raw in raw_combatants:
            c = combatant_from_dict(raw)
            if c is not None:
                combatants.append(c)

    log: List[CombatLogEntry] = []
    raw_log = d.get("log")
    if isinstance(raw_log, list):
        for raw in raw_log:
            entry = log_entry_from_dict(raw)
            if entry is not None:
                log.append(entry)

    return EncounterState(
        combatants=combatants,
        active_combatant_id=_opt_str(d.get("activeCombatantId")),
        round=max(1, finite_int(d.get("round"), 1)),
        started_at=_opt_str(d.get("startedAt")),
        log=log,
    )
