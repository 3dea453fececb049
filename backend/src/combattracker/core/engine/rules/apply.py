from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable, List, Optional, Tuple

from combattracker.core.engine.commands import (
    AddCombatant,
    AddStatus,
    AdvanceTurn,
    ApplyDelta,
    Attack,
    ClearDeathSaves,
    ClearLog,
    Command,
    Heal,
    Hydrate,
    MarkDead,
    RecordDeathSave,
    RemoveCombatant,
    RemoveStatus,
    RewindTurn,
    SetActive,
    SetDeathSaveCounts,
    StartDeathSaves,
    StartEncounter,
    UpdateCombatant,
)
from combattracker.core.engine.events import (
    MAX_LOG_ENTRIES,
    CombatLogEntry,
    append_log,
    ev_attack_dealt,
    ev_combatant_joined,
    ev_combatant_left,
    ev_damage_taken,
    ev_death_save_rolled,
    ev_death_saves_started,
    ev_details_updated,
    ev_died,
    ev_dropped_to_zero,
    ev_encounter_started,
    ev_exhaustion_gained,
    ev_exhaustion_increased,
    ev_hp_capped,
    ev_hp_regained,
    ev_stabilized,
    ev_status_expired,
    ev_status_gained,
    ev_status_removed,
    ev_succumbed,
    ev_turn_advanced,
    ev_turn_rewound,
    utc_now_iso,
)
from combattracker.core.engine.rules import death_saves as ds
from combattracker.core.engine.rules.turn_order import (
    next_turn,
    previous_turn,
    sort_combatants,
)
from combattracker.core.engine.state import (
    DEFAULT_ICON,
    EXHAUSTION_ID,
    CombatantState,
    DeathSaveState,
    EncounterState,
    StatusEffectInstance,
    clamp,
    find_combatant,
    finite_int,
    is_party_member,
)

_UNSET: Any = object()

Result = Tuple[EncounterState, List[CombatLogEntry]]


def _commit(
    state: EncounterState, entries: List[Optional[CombatLogEntry]], **changes: Any
) -> Result:
    added = [e for e in entries if e is not None]
    return replace(state, log=append_log(state.log, added), **changes), added


def _replace_combatant(
    combatants: List[CombatantState], updated: CombatantState
) -> List[CombatantState]:
    return [updated if c.id == updated.id else c for c in combatants]


def _non_negative_amount(value: float) -> int:
    # отрицательный/nan/inf урон или лечение -> 0
    return max(0, finite_int(value, 0))


# ---------- единая точка изменения HP ----------


@dataclass
class _HpUpdate:
    combatants: List[CombatantState]
    before: CombatantState
    after: CombatantState
    delta: int
    zero_hp_entry: Optional[CombatLogEntry]


def _apply_hp_update(
    state: EncounterState,
    target: CombatantState,
    *,
    next_hp: int,
    next_max: Optional[int] = None,
    death_saves_override: Any = _UNSET,
    extra: Optional[Callable[[CombatantState], CombatantState]] = None,
) -> _HpUpdate:
    """
    Все изменения HP идут сюда:
      - clamp hp в [0, max], max в [0, inf)
      - переход >0 -> <=0 даёт запись 'death'; death saves при этом не создаются
      - hp > 0 без явного override -> death saves сбрасываются
    """
    resolved_max = max(0, next_max if next_max is not None else target.hp_max)
    clamped = clamp(next_hp, 0, resolved_max)

    if death_saves_override is not _UNSET:
        death_saves = ds.sanitize_death_saves(death_saves_override)
    else:
        death_saves = None if clamped > 0 else target.death_saves

    base = extra(target) if extra is not None else target
    after = replace(
        base, hp_current=clamped, hp_max=resolved_max, death_saves=death_saves
    )

    zero_entry = None
    if target.hp_current > 0 and after.hp_current <= 0:
        zero_entry = ev_dropped_to_zero(
            round_=state.round,
            combatant_id=after.id,
            name=after.name,
            is_party=is_party_member(after),
        )

    return _HpUpdate(
        combatants=_replace_combatant(state.combatants, after),
        before=target,
        after=after,
        delta=clamped - target.hp_current,
        zero_hp_entry=zero_entry,
    )


def _damage_label(damage_type: str) -> str:
    dt = damage_type.strip()
    if not dt:
        return "damage"
    if dt.lower().endswith("damage"):
        return dt
    return f"{dt} damage"


# ---------- статусы ----------


def _decrement_status_durations(
    combatants: List[CombatantState], round_: int
) -> Tuple[List[CombatantState], List[CombatLogEntry]]:
    expired: List[CombatLogEntry] = []
    out: List[CombatantState] = []
    for c in combatants:
        kept: List[StatusEffectInstance] = []
        for st in c.statuses:
            if st.remaining_rounds is None:
                kept.append(st)
                continue
            left = st.remaining_rounds - 1
            if left > 0:
                kept.append(st.model_copy(update={"remaining_rounds": left}))
            else:
                expired.append(
                    ev_status_expired(
                        round_=round_,
                        combatant_id=c.id,
                        owner_name=c.name,
                        icon=st.icon,
                        label=st.label,
                    )
                )
        out.append(replace(c, statuses=kept))
    return out, expired


def _add_status(state: EncounterState, cmd: AddStatus) -> Result:
    owner = find_combatant(state, cmd.combatant_id)
    if owner is None:
        return state, []

    incoming = cmd.status

    if incoming.id == EXHAUSTION_ID:
        existing = next((s for s in owner.statuses if s.id == EXHAUSTION_ID), None)
        if existing is not None:
            level = (existing.level or 1) + 1
            merged = existing.model_copy(
                update={
                    "level": level,
                    "remaining_rounds": (
                        incoming.remaining_rounds
                        if incoming.remaining_rounds is not None
                        else existing.remaining_rounds
                    ),
                    "note": incoming.note if incoming.note is not None else existing.note,
                }
            )
            statuses = [
                merged if s.instance_id == existing.instance_id else s
                for s in owner.statuses
            ]
            entry = ev_exhaustion_increased(
                round_=state.round,
                combatant_id=owner.id,
                owner_name=owner.name,
                icon=incoming.icon,
                label=incoming.label,
                level=level,
            )
        else:
            statuses = [*owner.statuses, incoming.model_copy(update={"level": 1})]
            entry = ev_exhaustion_gained(
                round_=state.round,
                combatant_id=owner.id,
                owner_name=owner.name,
                icon=incoming.icon,
                label=incoming.label,
            )
    else:
        # без merge/dedupe: один шаблон можно наложить несколько раз
        statuses = [*owner.statuses, incoming]
        entry = ev_status_gained(
            round_=state.round,
            combatant_id=owner.id,
            owner_name=owner.name,
            icon=incoming.icon,
            label=incoming.label,
            remaining_rounds=incoming.remaining_rounds,
        )

    combatants = _replace_combatant(state.combatants, replace(owner, statuses=statuses))
    return _commit(state, [entry], combatants=combatants)


def _remove_status(state: EncounterState, cmd: RemoveStatus) -> Result:
    owner = find_combatant(state, cmd.combatant_id)
    if owner is None:
        return state, []
    removed = next(
        (s for s in owner.statuses if s.instance_id == cmd.status_instance_id), None
    )
    if removed is None:
        return state, []

    statuses = [s for s in owner.statuses if s.instance_id != cmd.status_instance_id]
    entry = ev_status_removed(
        round_=state.round,
        combatant_id=owner.id,
        owner_name=owner.name,
        icon=removed.icon,
        label=removed.label,
    )
    combatants = _replace_combatant(state.combatants, replace(owner, statuses=statuses))
    return _commit(state, [entry], combatants=combatants)


# ---------- ходы ----------


def _advance(state: EncounterState) -> Result:
    order = sort_combatants(state.combatants)
    move = next_turn(order, state.active_combatant_id)
    if move is None:
        return state, []

    next_round = state.round + 1 if move.wrapped else state.round
    expired: List[CombatLogEntry] = []
    if move.wrapped:
        # длительности тикают только на прямом переходе через круг
        order, expired = _decrement_status_durations(order, next_round)

    nxt = order[move.index]
    turn_entry = ev_turn_advanced(
        round_=next_round, combatant_id=nxt.id, name=nxt.name, wrapped=move.wrapped
    )
    return _commit(
        state,
        [*expired, turn_entry],
        combatants=order,
        active_combatant_id=nxt.id,
        round=next_round,
        started_at=state.started_at or utc_now_iso(),
    )


def _rewind(state: EncounterState) -> Result:
    order = sort_combatants(state.combatants)
    move = previous_turn(order, state.active_combatant_id)
    if move is None:
        return state, []

    next_round = state.round - 1 if move.wrapped and state.round > 1 else state.round
    prev = order[move.index]
    entry = ev_turn_rewound(
        round_=next_round, combatant_id=prev.id, name=prev.name, wrapped=move.wrapped
    )
    return _commit(
        state,
        [entry],
        combatants=order,
        active_combatant_id=prev.id,
        round=next_round,
    )


# ---------- update-combatant ----------


def _update_combatant(state: EncounterState, cmd: UpdateCombatant) -> Result:
    before = find_combatant(state, cmd.combatant_id)
    if before is None:
        return state, []

    ch = cmd.changes
    explicit = ch.model_fields_set

    explicit_current = ch.hp_current is not None
    max_updated = ch.hp_max is not None

    next_max = max(0, finite_int(ch.hp_max, before.hp_max))
    requested = finite_int(ch.hp_current, before.hp_current)
    next_current = clamp(requested, 0, next_max)

    def _extra(c: CombatantState) -> CombatantState:
        other: dict = {}
        if ch.name is not None:
            other["name"] = ch.name
        if ch.initiative is not None:
            other["initiative"] = ch.initiative
        if ch.icon is not None:
            other["icon"] = ch.icon
        if "ac" in explicit:
            other["ac"] = ch.ac
        if "note" in explicit:
            other["note"] = ch.note
        return replace(c, **other) if other else c

    upd = _apply_hp_update(
        state,
        before,
        next_hp=next_current,
        next_max=next_max,
        death_saves_override=ch.death_saves if "death_saves" in explicit else _UNSET,
        extra=_extra,
    )
    after = upd.after
    combatants = sort_combatants(upd.combatants)

    hp_change = upd.delta if (explicit_current or max_updated) else 0
    entry: Optional[CombatLogEntry] = None
    if hp_change > 0:
        entry = ev_hp_regained(
            round_=state.round,
            combatant_id=after.id,
            name=after.name,
            amount=hp_change,
            hp_current=after.hp_current,
            hp_max=after.hp_max,
        )
    elif hp_change < 0:
        capped = (
            max_updated
            and not explicit_current
            and after.hp_current == after.hp_max
            and after.hp_max < before.hp_max
        )
        if capped:
            entry = ev_hp_capped(
                round_=state.round,
                combatant_id=after.id,
                name=after.name,
                hp_max=after.hp_max,
            )
        else:
            entry = ev_damage_taken(
                round_=state.round,
                combatant_id=after.id,
                name=after.name,
                amount=abs(hp_change),
                hp_current=after.hp_current,
                hp_max=after.hp_max,
            )
    elif max_updated or explicit & {"name", "initiative", "ac", "note", "icon"}:
        entry = ev_details_updated(
            round_=state.round, combatant_id=after.id, name=after.name
        )

    return _commit(state, [entry, upd.zero_hp_entry], combatants=combatants)


# ---------- death saves ----------


def _with_death_saves(
    state: EncounterState,
    c: CombatantState,
    entry: Optional[CombatLogEntry],
    death_saves: Optional[DeathSaveState],
    hp_current: Optional[int] = None,
) -> Result:
    updated = replace(
        c,
        death_saves=death_saves,
        hp_current=c.hp_current if hp_current is None else hp_current,
    )
    combatants = _replace_combatant(state.combatants, updated)
    return _commit(state, [entry], combatants=combatants)


def _start_death_saves(state: EncounterState, cmd: StartDeathSaves) -> Result:
    c = find_combatant(state, cmd.combatant_id)
    if c is None:
        return state, []
    if c.death_saves is not None and c.death_saves.status in ("pending", "dead"):
        return state, []
    entry = ev_death_saves_started(round_=state.round, combatant_id=c.id, name=c.name)
    return _with_death_saves(state, c, entry, ds.start_death_saves(cmd.round))


def _record_death_save(state: EncounterState, cmd: RecordDeathSave) -> Result:
    c = find_combatant(state, cmd.combatant_id)
    if c is None or c.death_saves is None:
        return state, []
    if c.death_saves.status != "pending":
        return state, []

    updated = ds.record_result(c.death_saves, cmd.result, cmd.round)

    if updated.status == "dead":
        entry = ev_succumbed(round_=state.round, combatant_id=c.id, name=c.name)
        return _with_death_saves(state, c, entry, updated)

    if updated.status == "stable":
        entry = ev_stabilized(round_=state.round, combatant_id=c.id, name=c.name)
        return _with_death_saves(
            state, c, entry, None, hp_current=ds.revived_hp(c.hp_current, c.hp_max)
        )

    success = cmd.result == "success"
    entry = ev_death_save_rolled(
        round_=state.round,
        combatant_id=c.id,
        name=c.name,
        success=success,
        count=updated.successes if success else updated.failures,
    )
    return _with_death_saves(state, c, entry, updated)


def _set_death_save_counts(state: EncounterState, cmd: SetDeathSaveCounts) -> Result:
    c = find_combatant(state, cmd.combatant_id)
    if c is None:
        return state, []

    previous = c.death_saves.status if c.death_saves is not None else None
    updated = ds.set_counts(c.death_saves, cmd.successes, cmd.failures, state.round)

    entry: Optional[CombatLogEntry] = None
    if updated.status == "dead" and previous != "dead":
        entry = ev_died(round_=state.round, combatant_id=c.id, name=c.name)
    elif updated.status == "stable" and previous != "stable":
        entry = ev_stabilized(round_=state.round, combatant_id=c.id, name=c.name)
        return _with_death_saves(
            state, c, entry, None, hp_current=ds.revived_hp(c.hp_current, c.hp_max)
        )
    elif updated.status == "pending" and previous != "pending":
        entry = ev_death_saves_started(
            round_=state.round, combatant_id=c.id, name=c.name
        )

    return _with_death_saves(state, c, entry, updated)


def _mark_dead(state: EncounterState, cmd: MarkDead) -> Result:
    c = find_combatant(state, cmd.combatant_id)
    if c is None:
        return state, []
    if c.death_saves is not None and c.death_saves.status == "dead":
        return state, []
    entry = ev_died(round_=state.round, combatant_id=c.id, name=c.name)
    return _with_death_saves(state, c, entry, ds.mark_dead(c.death_saves, cmd.round))


# ---------- hydrate ----------


def _hydrate(payload: EncounterState) -> EncounterState:
    combatants = [
        replace(
            c,
            statuses=list(c.statuses or []),
            death_saves=ds.sanitize_death_saves(c.death_saves),
        )
        for c in (payload.combatants or [])
    ]
    log = list(payload.log) if isinstance(payload.log, list) else []
    return EncounterState(
        combatants=sort_combatants(combatants),
        active_combatant_id=payload.active_combatant_id,
        round=max(1, finite_int(payload.round, 1)),
        started_at=payload.started_at,
        log=log[-MAX_LOG_ENTRIES:],
    )


def apply_command(state: EncounterState, cmd: Command) -> Result:
    """
    Чистый reducer: возвращаем (новый state, добавленные записи лога).
    Входной state не мутируется. Неизвестная команда/цель -> тот же объект state.
    Записи лога берут round ДО перехода (кроме turn-записей advance/rewind).
    """
    if isinstance(cmd, Hydrate):
        return _hydrate(cmd.payload), []

    if isinstance(cmd, AddCombatant):
        max_hp = max(0, finite_int(cmd.max_hp, 0))
        newcomer = CombatantState(
            id=cmd.combatant_id,
            name=cmd.name,
            type=cmd.combatant_type,
            initiative=cmd.initiative,
            hp_current=max_hp,
            hp_max=max_hp,
            ac=cmd.ac,
            icon=cmd.icon or DEFAULT_ICON,
            note=cmd.note,
        )
        combatants = sort_combatants([*state.combatants, newcomer])
        first_id = combatants[0].id
        if state.started_at:
            active_id = state.active_combatant_id or first_id
        else:
            active_id = first_id
        entry = ev_combatant_joined(
            round_=state.round, combatant_id=newcomer.id, name=newcomer.name
        )
        return _commit(
            state, [entry], combatants=combatants, active_combatant_id=active_id
        )

    if isinstance(cmd, RemoveCombatant):
        removed = find_combatant(state, cmd.combatant_id)
        if removed is None:
            return state, []
        combatants = [c for c in state.combatants if c.id != removed.id]
        active_id = state.active_combatant_id
        if active_id == removed.id:
            active_id = combatants[0].id if combatants else None
        entry = ev_combatant_left(
            round_=state.round, combatant_id=removed.id, name=removed.name
        )
        return _commit(
            state, [entry], combatants=combatants, active_combatant_id=active_id
        )

    if isinstance(cmd, UpdateCombatant):
        return _update_combatant(state, cmd)

    if isinstance(cmd, ApplyDelta):
        target = find_combatant(state, cmd.combatant_id)
        if target is None:
            return state, []
        delta = finite_int(cmd.delta, 0)
        upd = _apply_hp_update(state, target, next_hp=target.hp_current - delta)

        entry: Optional[CombatLogEntry] = None
        changed = abs(upd.delta)
        if changed > 0:
            after = upd.after
            factory = ev_damage_taken if delta > 0 else ev_hp_regained
            entry = factory(
                round_=state.round,
                combatant_id=after.id,
                name=after.name,
                amount=changed,
                hp_current=after.hp_current,
                hp_max=after.hp_max,
            )
        return _commit(state, [entry, upd.zero_hp_entry], combatants=upd.combatants)

    if isinstance(cmd, Attack):
        target = find_combatant(state, cmd.target_id)
        if target is None:
            return state, []
        attacker = find_combatant(state, cmd.attacker_id)

        applied = min(target.hp_current, _non_negative_amount(cmd.amount))
        upd = _apply_hp_update(state, target, next_hp=target.hp_current - applied)

        entry = None
        if applied > 0:
            entry = ev_attack_dealt(
                round_=state.round,
                target_id=upd.after.id,
                attacker_name=attacker.name if attacker else "Unknown attacker",
                target_name=upd.after.name,
                amount=applied,
                damage_label=_damage_label(cmd.damage_type),
                hp_current=upd.after.hp_current,
                hp_max=upd.after.hp_max,
            )
        return _commit(state, [entry, upd.zero_hp_entry], combatants=upd.combatants)

    if isinstance(cmd, Heal):
        target = find_combatant(state, cmd.target_id)
        if target is None:
            return state, []

        missing = max(0, target.hp_max - target.hp_current)
        applied = min(missing, _non_negative_amount(cmd.amount))
        upd = _apply_hp_update(state, target, next_hp=target.hp_current + applied)

        entry = None
        if applied > 0:
            entry = ev_hp_regained(
                round_=state.round,
                combatant_id=upd.after.id,
                name=upd.after.name,
                amount=applied,
                hp_current=upd.after.hp_current,
                hp_max=upd.after.hp_max,
                source=cmd.healing_type.strip(),
            )
        return _commit(state, [entry], combatants=upd.combatants)

    if isinstance(cmd, SetActive):
        return replace(state, active_combatant_id=cmd.combatant_id), []

    if isinstance(cmd, StartEncounter):
        if not state.combatants:
            return state, []
        combatants = sort_combatants(state.combatants)
        first = combatants[0]
        entry = ev_encounter_started(
            round_=state.round, combatant_id=first.id, name=first.name
        )
        return _commit(
            state,
            [entry],
            combatants=combatants,
            active_combatant_id=first.id,
            started_at=state.started_at or utc_now_iso(),
        )

    if isinstance(cmd, AdvanceTurn):
        return _advance(state)

    if isinstance(cmd, RewindTurn):
        return _rewind(state)

    if isinstance(cmd, AddStatus):
        return _add_status(state, cmd)

    if isinstance(cmd, RemoveStatus):
        return _remove_status(state, cmd)

    if isinstance(cmd, StartDeathSaves):
        return _start_death_saves(state, cmd)

    if isinstance(cmd, RecordDeathSave):
        return _record_death_save(state, cmd)

    if isinstance(cmd, SetDeathSaveCounts):
        return _set_death_save_counts(state, cmd)

    if isinstance(cmd, MarkDead):
        return _mark_dead(state, cmd)

    if isinstance(cmd, ClearDeathSaves):
        c = find_combatant(state, cmd.combatant_id)
        if c is None:
            return state, []
        combatants = _replace_combatant(state.combatants, replace(c, death_saves=None))
        return replace(state, combatants=combatants), []

    if isinstance(cmd, ClearLog):
        if not state.log:
            return state, []
        return replace(state, log=[]), []

    # неизвестная команда -> no-op
    return state, []


def reduce(state: EncounterState, cmd: Command) -> EncounterState:
    new_state, _ = apply_command(state, cmd)
    return new_state
