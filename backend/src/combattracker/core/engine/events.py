from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

CombatLogEventType = Literal[
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
]

# кольцевой буфер: старые записи вытесняются
MAX_LOG_ENTRIES = 1000


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_log_id() -> str:
    return uuid4().hex[:10]


class CombatLogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_log_id)
    type: CombatLogEventType
    message: str
    timestamp: str = Field(default_factory=utc_now_iso)
    round: int

    combatant_id: Optional[str] = None
    amount: Optional[int] = None


def append_log(
    log: List[CombatLogEntry], entries: Iterable[Optional[CombatLogEntry]]
) -> List[CombatLogEntry]:
    added = [e for e in entries if e is not None]
    if not added:
        return log
    out = [*log, *added]
    if len(out) <= MAX_LOG_ENTRIES:
        return out
    return out[len(out) - MAX_LOG_ENTRIES :]


def _hp(current: int, maximum: int) -> str:
    return f"({current}/{maximum})"


# ---------- combatants ----------


def ev_combatant_joined(*, round_: int, combatant_id: str, name: str) -> CombatLogEntry:
    return CombatLogEntry(
        type="combatant-add",
        message=f"{name} joined the encounter.",
        round=round_,
        combatant_id=combatant_id,
    )


def ev_combatant_left(*, round_: int, combatant_id: str, name: str) -> CombatLogEntry:
    return CombatLogEntry(
        type="combatant-remove",
        message=f"{name} left the encounter.",
        round=round_,
        combatant_id=combatant_id,
    )


def ev_details_updated(*, round_: int, combatant_id: str, name: str) -> CombatLogEntry:
    return CombatLogEntry(
        type="info",
        message=f"{name}'s details were updated.",
        round=round_,
        combatant_id=combatant_id,
    )


def ev_hp_capped(
    *, round_: int, combatant_id: str, name: str, hp_max: int
) -> CombatLogEntry:
    return CombatLogEntry(
        type="info",
        message=f"{name}'s HP capped at new maximum ({hp_max}).",
        round=round_,
        combatant_id=combatant_id,
    )


# ---------- hp ----------


def ev_damage_taken(
    *,
    round_: int,
    combatant_id: str,
    name: str,
    amount: int,
    hp_current: int,
    hp_max: int,
) -> CombatLogEntry:
    return CombatLogEntry(
        type="damage",
        message=f"{name} took {amount} damage {_hp(hp_current, hp_max)}.",
        round=round_,
        combatant_id=combatant_id,
        amount=amount,
    )


def ev_hp_regained(
    *,
    round_: int,
    combatant_id: str,
    name: str,
    amount: int,
    hp_current: int,
    hp_max: int,
    source: str = "",
) -> CombatLogEntry:
    via = f" via {source}" if source else ""
    return CombatLogEntry(
        type="heal",
        message=f"{name} regained {amount} HP{via} {_hp(hp_current, hp_max)}.",
        round=round_,
        combatant_id=combatant_id,
        amount=amount,
    )


def ev_attack_dealt(
    *,
    round_: int,
    target_id: str,
    attacker_name: str,
    target_name: str,
    amount: int,
    damage_label: str,
    hp_current: int,
    hp_max: int,
) -> CombatLogEntry:
    return CombatLogEntry(
        type="attack",
        message=(
            f"{attacker_name} dealt {amount} {damage_label} to {target_name} "
            f"{_hp(hp_current, hp_max)}."
        ),
        round=round_,
        combatant_id=target_id,
        amount=amount,
    )


def ev_dropped_to_zero(
    *, round_: int, combatant_id: str, name: str, is_party: bool
) -> CombatLogEntry:
    # союзник теряет сознание, враг считается побеждённым
    message = f"{name} fell unconscious." if is_party else f"{name} was defeated."
    return CombatLogEntry(
        type="death", message=message, round=round_, combatant_id=combatant_id
    )


# ---------- turns ----------


def ev_encounter_started(*, round_: int, combatant_id: str, name: str) -> CombatLogEntry:
    return CombatLogEntry(
        type="turn",
        message=f"Encounter started. {name} is up first.",
        round=round_,
        combatant_id=combatant_id,
    )


def ev_turn_advanced(
    *, round_: int, combatant_id: str, name: str, wrapped: bool
) -> CombatLogEntry:
    suffix = f" — Round {round_}" if wrapped else ""
    return CombatLogEntry(
        type="turn",
        message=f"Turn advanced to {name}{suffix}.",
        round=round_,
        combatant_id=combatant_id,
    )


def ev_turn_rewound(
    *, round_: int, combatant_id: str, name: str, wrapped: bool
) -> CombatLogEntry:
    suffix = f" — Round {round_}" if wrapped else ""
    return CombatLogEntry(
        type="turn",
        message=f"Rewound turn to {name}{suffix}.",
        round=round_,
        combatant_id=combatant_id,
    )


# ---------- statuses ----------


def ev_status_gained(
    *,
    round_: int,
    combatant_id: str,
    owner_name: str,
    icon: str,
    label: str,
    remaining_rounds: Optional[int],
) -> CombatLogEntry:
    duration = f" ({remaining_rounds} rounds)" if remaining_rounds is not None else ""
    return CombatLogEntry(
        type="status-add",
        message=f"{owner_name} gained {icon} {label}{duration}.",
        round=round_,
        combatant_id=combatant_id,
    )


def ev_exhaustion_gained(
    *, round_: int, combatant_id: str, owner_name: str, icon: str, label: str
) -> CombatLogEntry:
    return CombatLogEntry(
        type="status-add",
        message=f"{owner_name} gained {icon} {label} (Level 1).",
        round=round_,
        combatant_id=combatant_id,
    )


def ev_exhaustion_increased(
    *,
    round_: int,
    combatant_id: str,
    owner_name: str,
    icon: str,
    label: str,
    level: int,
) -> CombatLogEntry:
    return CombatLogEntry(
        type="status-add",
        message=f"{owner_name}'s {icon} {label} increased to Level {level}.",
        round=round_,
        combatant_id=combatant_id,
    )


def ev_status_removed(
    *, round_: int, combatant_id: str, owner_name: str, icon: str, label: str
) -> CombatLogEntry:
    return CombatLogEntry(
        type="status-remove",
        message=f"{icon} {label} was removed from {owner_name}.",
        round=round_,
        combatant_id=combatant_id,
    )


def ev_status_expired(
    *, round_: int, combatant_id: str, owner_name: str, icon: str, label: str
) -> CombatLogEntry:
    return CombatLogEntry(
        type="status-remove",
        message=f"{icon} {label} expired from {owner_name}.",
        round=round_,
        combatant_id=combatant_id,
    )


# ---------- death saves ----------


def ev_death_saves_started(*, round_: int, combatant_id: str, name: str) -> CombatLogEntry:
    return CombatLogEntry(
        type="info",
        message=f"{name} is making death saving throws.",
        round=round_,
        combatant_id=combatant_id,
    )


def ev_death_save_rolled(
    *, round_: int, combatant_id: str, name: str, success: bool, count: int
) -> CombatLogEntry:
    if success:
        message = f"{name} succeeded on a death saving throw ({count}/3)."
    else:
        message = f"{name} failed a death saving throw ({count}/3)."
    return CombatLogEntry(
        type="info", message=message, round=round_, combatant_id=combatant_id
    )


def ev_stabilized(*, round_: int, combatant_id: str, name: str) -> CombatLogEntry:
    return CombatLogEntry(
        type="info",
        message=f"{name} stabilized and regained consciousness (1 HP).",
        round=round_,
        combatant_id=combatant_id,
    )


def ev_succumbed(*, round_: int, combatant_id: str, name: str) -> CombatLogEntry:
    return CombatLogEntry(
        type="death",
        message=f"{name} succumbed to their wounds.",
        round=round_,
        combatant_id=combatant_id,
    )


def ev_died(*, round_: int, combatant_id: str, name: str) -> CombatLogEntry:
    return CombatLogEntry(
        type="death",
        message=f"{name} has died.",
        round=round_,
        combatant_id=combatant_id,
    )
