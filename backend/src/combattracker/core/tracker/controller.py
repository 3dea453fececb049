from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union
from uuid import uuid4

from pydantic import ValidationError

from combattracker.config import Settings, settings as default_settings
from combattracker.core.engine.commands import (
    AddCombatant,
    AddStatus,
    AdvanceTurn,
    ApplyDelta,
    Attack,
    ClearDeathSaves,
    ClearLog,
    CombatantChanges,
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
from combattracker.core.engine.events import CombatLogEntry
from combattracker.core.engine.presets.library import (
    STATUS_EFFECT_LIBRARY,
    random_icon,
)
from combattracker.core.engine.rules.apply import apply_command
from combattracker.core.engine.rules.death_saves import DeathSaveResult
from combattracker.core.engine.rules.turn_order import index_of, sort_combatants
from combattracker.core.engine.state import (
    EXHAUSTION_ID,
    CombatantState,
    CombatantType,
    EncounterState,
    StatusEffectInstance,
    StatusEffectTemplate,
    find_combatant,
    new_encounter,
)
from combattracker.core.engine.templates import CombatantTemplateData
from combattracker.core.persistence.encounter_store import EncounterStore
from combattracker.core.persistence.state_codec import encounter_state_to_dict
from combattracker.core.tracker.broadcast import (
    BroadcastMessage,
    BroadcastPort,
    Unsubscribe,
    encounter_topic,
)

logger = logging.getLogger(__name__)

StateListener = Callable[[EncounterState], None]


class OneShotFlag:
    """Флаг, который сбрасывается при первом чтении."""

    def __init__(self) -> None:
        self._armed = False

    def arm(self) -> None:
        self._armed = True

    def consume(self) -> bool:
        armed, self._armed = self._armed, False
        return armed

    @property
    def is_armed(self) -> bool:
        return self._armed


@dataclass(frozen=True)
class TrackerView:
    combatants: Tuple[CombatantState, ...]
    active_index: int  # -1, если активного нет в списке
    active_combatant_id: Optional[str]
    round: int
    started_at: Optional[str]
    log: Tuple[CombatLogEntry, ...]


def build_view(state: EncounterState) -> TrackerView:
    ordered = sort_combatants(state.combatants)
    return TrackerView(
        combatants=tuple(ordered),
        active_index=index_of(ordered, state.active_combatant_id),
        active_combatant_id=state.active_combatant_id,
        round=state.round,
        started_at=state.started_at,
        log=tuple(state.log),
    )


class CombatTrackerController:
    """
    Один экземпляр на открытый encounter (вкладку).

    Все команды синхронные: reducer -> новый state -> listeners.
    Сохранение (debounce) и рассылка другим вкладкам идут поверх,
    и только после первичной гидрации.
    """

    def __init__(
        self,
        store: EncounterStore,
        broadcast: Optional[BroadcastPort] = None,
        *,
        settings: Optional[Settings] = None,
        instance_id: Optional[str] = None,
        rng: Optional[random.Random] = None,
    ):
        self._store = store
        self._broadcast = broadcast
        self._settings = settings or default_settings
        self.instance_id = instance_id or uuid4().hex
        self._rng = rng

        self._state: EncounterState = new_encounter()
        self._encounter_id: Optional[str] = None
        self._hydrated = False
        self._loading = False

        self._generation = 0
        self._load_task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Unsubscribe] = None

        self._skip_save = OneShotFlag()
        self._skip_broadcast = OneShotFlag()
        self._listeners: List[StateListener] = []

        self._pending_saves: Dict[str, EncounterState] = {}
        self._save_task: Optional[asyncio.Task] = None

    # ---------- read model ----------

    @property
    def state(self) -> EncounterState:
        return self._state

    @property
    def encounter_id(self) -> Optional[str]:
        return self._encounter_id

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def is_hydrated(self) -> bool:
        return self._hydrated

    @property
    def view(self) -> TrackerView:
        return build_view(self._state)

    @property
    def presets(self) -> Mapping[str, StatusEffectTemplate]:
        return STATUS_EFFECT_LIBRARY

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    # ---------- lifecycle ----------

    async def open(self, encounter_id: Optional[str]) -> EncounterState:
        """
        Переключиться на encounter: незавершённая загрузка предыдущего
        отменяется, её результат выбрасывается.
        """
        self._generation += 1
        generation = self._generation

        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()

        self._resubscribe(encounter_id)
        self._encounter_id = encounter_id
        self._hydrated = False
        self._loading = True

        task = asyncio.ensure_future(self._load(encounter_id))
        self._load_task = task
        try:
            loaded = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                return self._state
            raise

        if generation != self._generation:
            return self._state

        # первичная гидрация не сохраняется и не рассылается
        self.dispatch(Hydrate(payload=loaded if loaded is not None else new_encounter()))
        self._hydrated = True
        self._loading = False
        logger.info(
            "Hydrated encounter %s (%s)",
            encounter_id,
            "stored" if loaded is not None else "fresh",
        )
        return self._state

    async def _load(self, encounter_id: Optional[str]) -> Optional[EncounterState]:
        if encounter_id is None:
            return None
        try:
            return await self._store.load(encounter_id)
        except Exception:
            logger.warning("Failed to load encounter %s", encounter_id, exc_info=True)
            return None

    async def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._load_task is not None and not self._load_task.done():
            self._generation += 1
            self._load_task.cancel()
        await self.flush()

    def _resubscribe(self, encounter_id: Optional[str]) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._broadcast is None or encounter_id is None:
            return
        topic = encounter_topic(encounter_id, self._settings.broadcast_topic_prefix)
        self._unsubscribe = self._broadcast.subscribe(topic, self._on_broadcast)

    # ---------- dispatch / side effects ----------

    def dispatch(self, cmd: Command) -> EncounterState:
        new_state, _entries = apply_command(self._state, cmd)
        if new_state is self._state:
            return self._state
        self._state = new_state
        self._on_state_change(new_state)
        return new_state

    def _on_state_change(self, state: EncounterState) -> None:
        skip_save = self._skip_save.consume()
        skip_broadcast = self._skip_broadcast.consume()

        for listener in list(self._listeners):
            listener(state)

        if not self._hydrated or self._encounter_id is None:
            return
        if not skip_save:
            self._schedule_save(self._encounter_id, state)
        if not skip_broadcast:
            self._publish(self._encounter_id, state)

    def _publish(self, encounter_id: str, state: EncounterState) -> None:
        if self._broadcast is None:
            return
        message = BroadcastMessage(
            type="hydrate",
            payload=encounter_state_to_dict(state),
            source=self.instance_id,
        )
        topic = encounter_topic(encounter_id, self._settings.broadcast_topic_prefix)
        self._broadcast.publish(topic, message.model_dump())

    def _on_broadcast(self, raw: Dict[str, Any]) -> None:
        try:
            message = BroadcastMessage.model_validate(raw)
        except ValidationError:
            logger.debug("Ignoring broadcast message %r", raw)
            return
        if message.source == self.instance_id:
            return

        # чужое состояние уже сохранено отправителем, эхо не нужно
        self._skip_save.arm()
        self._skip_broadcast.arm()
        self.dispatch(Hydrate(payload=message.payload))

    def _schedule_save(self, encounter_id: str, state: EncounterState) -> None:
        self._pending_saves[encounter_id] = state
        if self._save_task is not None and not self._save_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # нет loop: сохранится на flush()
            return
        self._save_task = loop.create_task(self._drain_saves())

    async def _drain_saves(self) -> None:
        while self._pending_saves:
            await asyncio.sleep(self._settings.save_debounce_seconds)
            batch, self._pending_saves = self._pending_saves, {}
            for encounter_id, state in batch.items():
                await self._save(encounter_id, state)

    async def _save(self, encounter_id: str, state: EncounterState) -> None:
        # fire-and-forget: без retry, in-memory state не откатываем
        try:
            await self._store.save(encounter_id, state)
        except Exception:
            logger.warning("Failed to persist encounter %s", encounter_id, exc_info=True)

    async def flush(self) -> None:
        task = self._save_task
        if task is not None and not task.done():
            await task
        if self._pending_saves:
            await self._drain_saves()

    # ---------- commands ----------

    def add_combatant(
        self,
        name: str,
        *,
        combatant_type: CombatantType = "enemy",
        initiative: int = 0,
        max_hp: float = 0,
        ac: Optional[int] = None,
        icon: Optional[str] = None,
        note: Optional[str] = None,
    ) -> str:
        cmd = AddCombatant(
            name=name,
            combatant_type=combatant_type,
            initiative=initiative,
            max_hp=max_hp,
            ac=ac,
            icon=icon or random_icon(self._rng),
            note=note,
        )
        self.dispatch(cmd)
        return cmd.combatant_id

    def add_combatant_from_template(
        self,
        name: str,
        template: CombatantTemplateData,
        *,
        initiative: Optional[int] = None,
    ) -> str:
        """Новый участник по заготовке из библиотеки; initiative можно переопределить."""
        return self.add_combatant(
            name,
            combatant_type=template.type,
            initiative=template.default_initiative if initiative is None else initiative,
            max_hp=template.max_hp,
            ac=template.ac,
            icon=template.icon,
            note=template.note,
        )

    def remove_combatant(self, combatant_id: str) -> EncounterState:
        return self.dispatch(RemoveCombatant(combatant_id=combatant_id))

    def update_combatant(self, combatant_id: str, **changes: Any) -> EncounterState:
        return self.dispatch(
            UpdateCombatant(
                combatant_id=combatant_id, changes=CombatantChanges(**changes)
            )
        )

    def apply_delta(self, combatant_id: str, delta: float) -> EncounterState:
        return self.dispatch(ApplyDelta(combatant_id=combatant_id, delta=delta))

    def record_attack(
        self, attacker_id: str, target_id: str, amount: float, damage_type: str = ""
    ) -> EncounterState:
        return self.dispatch(
            Attack(
                attacker_id=attacker_id,
                target_id=target_id,
                amount=amount,
                damage_type=damage_type,
            )
        )

    def record_heal(
        self, target_id: str, amount: float, healing_type: str = ""
    ) -> EncounterState:
        return self.dispatch(
            Heal(target_id=target_id, amount=amount, healing_type=healing_type)
        )

    def add_status(
        self,
        combatant_id: str,
        template: Union[StatusEffectTemplate, str],
        *,
        remaining_rounds: Optional[int] = None,
        note: Optional[str] = None,
    ) -> Optional[str]:
        """instance_id наложенного статуса; None для неизвестного шаблона/участника."""
        if isinstance(template, str):
            template = STATUS_EFFECT_LIBRARY.get(template)  # type: ignore[assignment]
            if template is None:
                return None

        owner = find_combatant(self._state, combatant_id)
        if owner is None:
            return None

        if remaining_rounds is not None and remaining_rounds < 1:
            remaining_rounds = None

        instance = StatusEffectInstance(
            **template.model_dump(), remaining_rounds=remaining_rounds, note=note
        )
        self.dispatch(AddStatus(combatant_id=combatant_id, status=instance))

        if instance.id == EXHAUSTION_ID:
            existing = next((s for s in owner.statuses if s.id == EXHAUSTION_ID), None)
            if existing is not None:
                return existing.instance_id
        return instance.instance_id

    def remove_status(self, combatant_id: str, status_instance_id: str) -> EncounterState:
        return self.dispatch(
            RemoveStatus(combatant_id=combatant_id, status_instance_id=status_instance_id)
        )

    def start_death_saves(
        self, combatant_id: str, round_: Optional[int] = None
    ) -> EncounterState:
        return self.dispatch(
            StartDeathSaves(combatant_id=combatant_id, round=round_ or self._state.round)
        )

    def record_death_save(
        self, combatant_id: str, result: DeathSaveResult, round_: Optional[int] = None
    ) -> EncounterState:
        return self.dispatch(
            RecordDeathSave(
                combatant_id=combatant_id,
                result=result,
                round=round_ or self._state.round,
            )
        )

    def set_death_save_counts(
        self, combatant_id: str, successes: float, failures: float
    ) -> EncounterState:
        return self.dispatch(
            SetDeathSaveCounts(
                combatant_id=combatant_id, successes=successes, failures=failures
            )
        )

    def clear_death_saves(self, combatant_id: str) -> EncounterState:
        return self.dispatch(ClearDeathSaves(combatant_id=combatant_id))

    def mark_dead(
        self, combatant_id: str, round_: Optional[int] = None
    ) -> EncounterState:
        return self.dispatch(
            MarkDead(combatant_id=combatant_id, round=round_ or self._state.round)
        )

    def set_active(self, combatant_id: Optional[str]) -> EncounterState:
        return self.dispatch(SetActive(combatant_id=combatant_id))

    def start_encounter(self) -> EncounterState:
        return self.dispatch(StartEncounter())

    def advance_turn(self) -> EncounterState:
        return self.dispatch(AdvanceTurn())

    def rewind_turn(self) -> EncounterState:
        return self.dispatch(RewindTurn())

    def reset_encounter(self) -> EncounterState:
        return self.dispatch(Hydrate(payload=new_encounter()))

    def clear_log(self) -> EncounterState:
        return self.dispatch(ClearLog())

    def hydrate(self, payload: Union[EncounterState, Dict[str, Any]]) -> EncounterState:
        return self.dispatch(Hydrate(payload=payload))
