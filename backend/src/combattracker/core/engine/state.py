from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from combattracker.core.engine.events import CombatLogEntry

CombatantType = Literal["player", "ally", "enemy", "boss"]
DeathSaveStatus = Literal["pending", "stable", "dead"]

# кто продолжает ходить на 0 hp (death saves)
PARTY_TYPES = frozenset({"player", "ally"})

EXHAUSTION_ID = "exhaustion"
DEATH_SAVE_LIMIT = 3
DEFAULT_ICON = "❓"


def new_combatant_id() -> str:
    return uuid4().hex[:8]


def new_status_instance_id() -> str:
    return uuid4().hex[:10]


class StatusEffectTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    icon: str
    color: str
    description: Optional[str] = None


class StatusEffectInstance(StatusEffectTemplate):
    # уникален на каждое наложение, а не на шаблон
    instance_id: str = Field(default_factory=new_status_instance_id)
    remaining_rounds: Optional[int] = Field(default=None, ge=1)  # None = бессрочно
    note: Optional[str] = None
    level: Optional[int] = Field(default=None, ge=1)  # только exhaustion


class DeathSaveState(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: DeathSaveStatus = "pending"
    successes: int = 0
    failures: int = 0
    started_at_round: int = 1
    last_roll_round: Optional[int] = None


@dataclass
class CombatantState:
    id: str
    name: str
    type: CombatantType
    initiative: int
    hp_current: int
    hp_max: int
    ac: Optional[int] = None
    icon: str = DEFAULT_ICON

    statuses: List[StatusEffectInstance] = field(default_factory=list)
    note: Optional[str] = None
    is_hidden: Optional[bool] = None

    # есть только пока PC/союзник лежит на 0 hp
    death_saves: Optional[DeathSaveState] = None


@dataclass
class EncounterState:
    """
    Единица хранения и рассылки между вкладками.
    Меняется только через reducer (rules.apply), объекты не мутируются.
    """

    combatants: List[CombatantState] = field(default_factory=list)
    active_combatant_id: Optional[str] = None
    round: int = 1
    started_at: Optional[str] = None
    log: List[CombatLogEntry] = field(default_factory=list)


def new_encounter() -> EncounterState:
    return EncounterState()


def is_party_member(c: CombatantState) -> bool:
    return c.type in PARTY_TYPES


def find_combatant(
    state: EncounterState, combatant_id: Optional[str]
) -> Optional[CombatantState]:
    if combatant_id is None:
        return None
    for c in state.combatants:
        if c.id == combatant_id:
            return c
    return None


def clamp(value: int, low: int, high: int) -> int:
    return min(high, max(low, value))


def optional_finite_int(value: object) -> Optional[int]:
    """Число -> int с округлением half-up; None/nan/inf/мусор -> None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if not math.isfinite(f):
        return None
    return math.floor(f + 0.5)


def finite_int(value: object, default: int = 0) -> int:
    parsed = optional_finite_int(value)
    return default if parsed is None else parsed
