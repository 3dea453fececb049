from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from combattracker.core.engine.state import CombatantState, is_party_member


@dataclass(frozen=True)
class CursorMove:
    index: int
    wrapped: bool


def turn_order_key(c: CombatantState) -> tuple:
    # initiative desc, tie-breaker по имени (без учёта регистра)
    return (-c.initiative, c.name.casefold(), c.name)


def sort_combatants(combatants: Iterable[CombatantState]) -> List[CombatantState]:
    return sorted(combatants, key=turn_order_key)


def is_turn_eligible(c: CombatantState) -> bool:
    """
    Ходит, если hp > 0.
    PC/союзник на 0 hp тоже ходит (бросает death saves), пока не мёртв.
    """
    if c.hp_current > 0:
        return True
    if not is_party_member(c):
        return False
    status = c.death_saves.status if c.death_saves is not None else "pending"
    return status != "dead"


def eligible_indices(order: Sequence[CombatantState]) -> List[int]:
    return [i for i, c in enumerate(order) if is_turn_eligible(c)]


def index_of(order: Sequence[CombatantState], combatant_id: Optional[str]) -> int:
    for i, c in enumerate(order):
        if c.id == combatant_id:
            return i
    return -1


def next_turn(
    order: Sequence[CombatantState], active_id: Optional[str]
) -> Optional[CursorMove]:
    if not order:
        return None

    current = index_of(order, active_id)
    alive = eligible_indices(order)

    if alive:
        if current == -1:
            nxt = alive[0]
        else:
            nxt = next((i for i in alive if i > current), alive[0])
    else:
        # все лежат: идём по кругу без фильтра
        nxt = 0 if current == -1 else (current + 1) % len(order)

    return CursorMove(index=nxt, wrapped=current != -1 and nxt <= current)


def previous_turn(
    order: Sequence[CombatantState], active_id: Optional[str]
) -> Optional[CursorMove]:
    if not order:
        return None

    current = index_of(order, active_id)
    alive = eligible_indices(order)

    if alive:
        if current == -1:
            return CursorMove(index=alive[-1], wrapped=False)
        before = [i for i in alive if i < current]
        if not before:
            return CursorMove(index=alive[-1], wrapped=True)
        return CursorMove(index=before[-1], wrapped=False)

    if current == -1:
        return CursorMove(index=len(order) - 1, wrapped=False)
    return CursorMove(index=(current - 1) % len(order), wrapped=current == 0)
