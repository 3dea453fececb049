from __future__ import annotations

from typing import Any, Literal, Mapping, Optional, Union

from combattracker.core.engine.state import (
    DEATH_SAVE_LIMIT,
    DeathSaveState,
    DeathSaveStatus,
    clamp,
    finite_int,
    optional_finite_int,
)

DeathSaveResult = Literal["success", "failure"]

# Машина состояний death saves:
#   pending -> stable (3 успеха, запись сбрасывается в None, hp >= 1)
#   pending -> dead   (3 провала, запись остаётся как терминальная)


def derive_status(successes: int, failures: int) -> DeathSaveStatus:
    if failures >= DEATH_SAVE_LIMIT:
        return "dead"
    if successes >= DEATH_SAVE_LIMIT:
        return "stable"
    return "pending"


def clamp_count(value: Any) -> int:
    return clamp(finite_int(value, 0), 0, DEATH_SAVE_LIMIT)


def start_death_saves(round_: int) -> DeathSaveState:
    return DeathSaveState(
        status="pending",
        successes=0,
        failures=0,
        started_at_round=max(1, round_),
        last_roll_round=None,
    )


def sanitize_death_saves(
    value: Union[DeathSaveState, Mapping[str, Any], None],
) -> Optional[DeathSaveState]:
    """
    Нормализуем запись (hydrate и живые изменения идут через одну функцию).
    stable/dead сохраняем как есть, pending пересчитываем по счётчикам.
    """
    if value is None:
        return None
    if isinstance(value, DeathSaveState):
        raw: Mapping[str, Any] = value.model_dump()
    elif isinstance(value, Mapping):
        raw = value
    else:
        return None

    status = raw.get("status")
    successes = clamp_count(raw.get("successes"))
    failures = clamp_count(raw.get("failures"))
    started = max(1, finite_int(raw.get("started_at_round"), 1))

    last_roll = optional_finite_int(raw.get("last_roll_round"))
    if last_roll is not None:
        last_roll = max(1, last_roll)

    if status not in ("stable", "dead"):
        status = derive_status(successes, failures)

    return DeathSaveState(
        status=status,
        successes=successes,
        failures=failures,
        started_at_round=started,
        last_roll_round=last_roll,
    )


def record_result(
    current: DeathSaveState, result: DeathSaveResult, round_: int
) -> DeathSaveState:
    successes = current.successes
    failures = current.failures
    if result == "success":
        successes = clamp(successes + 1, 0, DEATH_SAVE_LIMIT)
    else:
        failures = clamp(failures + 1, 0, DEATH_SAVE_LIMIT)

    return DeathSaveState(
        status=derive_status(successes, failures),
        successes=successes,
        failures=failures,
        started_at_round=current.started_at_round,
        last_roll_round=round_,
    )


def set_counts(
    current: Optional[DeathSaveState],
    successes: Any,
    failures: Any,
    round_: int,
) -> DeathSaveState:
    s = clamp_count(successes)
    f = clamp_count(failures)
    started = current.started_at_round if current is not None else max(1, round_)
    # обнулили счётчики -> бросков как будто и не было
    if s == 0 and f == 0:
        last_roll = None
    else:
        last_roll = current.last_roll_round if current is not None else None

    return DeathSaveState(
        status=derive_status(s, f),
        successes=s,
        failures=f,
        started_at_round=started,
        last_roll_round=last_roll,
    )


def mark_dead(current: Optional[DeathSaveState], round_: int) -> DeathSaveState:
    started = current.started_at_round if current is not None else max(1, round_)
    return DeathSaveState(
        status="dead",
        successes=0,
        failures=DEATH_SAVE_LIMIT,
        started_at_round=started,
        last_roll_round=round_,
    )


def revived_hp(hp_current: int, hp_max: int) -> int:
    # стабилизация: минимум 1 hp, но не выше max
    return min(hp_max, max(1, hp_current))
