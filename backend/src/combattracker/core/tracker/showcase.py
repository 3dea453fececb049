from __future__ import annotations

import json
import logging
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Deque, Dict, Iterable, List, Optional, Protocol, Set

from combattracker.config import Settings, settings as default_settings
from combattracker.core.engine.events import CombatLogEntry
from combattracker.core.engine.state import (
    CombatantState,
    EncounterState,
    is_party_member,
)

logger = logging.getLogger(__name__)

SEEN_KEY_PREFIX = "combat-tracker:death-showcase:"
DEFAULT_DURATION_SECONDS = 4.2


def seen_key(encounter_id: str) -> str:
    return f"{SEEN_KEY_PREFIX}{encounter_id}"


# ---------- хранилище просмотренных death-записей ----------


class SeenStore(Protocol):
    def load(self, key: str) -> Set[str]: ...

    def save(self, key: str, ids: Set[str]) -> None: ...


class MemorySeenStore:
    def __init__(self) -> None:
        self._data: Dict[str, Set[str]] = {}

    def load(self, key: str) -> Set[str]:
        return set(self._data.get(key, ()))

    def save(self, key: str, ids: Set[str]) -> None:
        self._data[key] = set(ids)


class JsonFileSeenStore:
    """Один JSON-файл (список id) на ключ. Ошибки I/O только логируем."""

    def __init__(self, directory: str | Path):
        self._dir = Path(directory)

    def _path(self, key: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in key)
        return self._dir / f"{safe}.json"

    def load(self, key: str) -> Set[str]:
        path = self._path(key)
        if not path.exists():
            return set()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Failed to load death showcase history %s", key, exc_info=True)
            return set()
        if not isinstance(data, list):
            return set()
        return {v for v in data if isinstance(v, str)}

    def save(self, key: str, ids: Set[str]) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            self._path(key).write_text(json.dumps(sorted(ids)), encoding="utf-8")
        except OSError:
            logger.warning(
                "Failed to persist death showcase history %s", key, exc_info=True
            )


# ---------- очередь ----------


@dataclass(frozen=True)
class ShowcaseItem:
    combatant: CombatantState
    log_entry: CombatLogEntry


def should_showcase(c: CombatantState) -> bool:
    # союзник без сознания не показывается, только мёртвый
    if c.hp_current > 0:
        return False
    if not is_party_member(c):
        return True
    return c.death_saves is not None and c.death_saves.status == "dead"


class DeathShowcaseQueue:
    """
    Следит за death-записями лога и показывает их по одной (FIFO)
    в течение duration_seconds.

    Первое наблюдение для encounter только помечает всю историю как увиденную.
    Время берётся из clock (монотонное), таймеров нет: смена активного
    элемента происходит лениво при чтении.
    """

    def __init__(
        self,
        seen_store: Optional[SeenStore] = None,
        *,
        duration_seconds: float = DEFAULT_DURATION_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = seen_store
        self._duration = duration_seconds
        self._clock = clock

        self._encounter_id: Optional[str] = None
        self._seen: Set[str] = set()
        self._initial_captured = False

        self._queue: Deque[ShowcaseItem] = deque()
        self._active: Optional[ShowcaseItem] = None
        self._active_since = 0.0
        self._combatants: List[CombatantState] = []

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> "DeathShowcaseQueue":
        settings = settings or default_settings
        return cls(
            JsonFileSeenStore(settings.showcase_dir),
            duration_seconds=settings.death_showcase_seconds,
            clock=clock,
        )

    @property
    def encounter_id(self) -> Optional[str]:
        return self._encounter_id

    def set_encounter(self, encounter_id: Optional[str]) -> None:
        if encounter_id == self._encounter_id:
            return
        self._encounter_id = encounter_id
        self._initial_captured = False
        self._queue.clear()
        self._active = None
        if encounter_id is None or self._store is None:
            self._seen = set()
            return
        self._seen = self._store.load(seen_key(encounter_id))

    def _persist_seen(self) -> None:
        if self._encounter_id is None or self._store is None:
            return
        self._store.save(seen_key(self._encounter_id), self._seen)

    def observe(
        self, combatants: Iterable[CombatantState], log: Iterable[CombatLogEntry]
    ) -> int:
        """Возвращает количество новых элементов в очереди."""
        self._combatants = list(combatants)
        deaths = [e for e in log if e.type == "death"]

        if not self._initial_captured:
            self._initial_captured = True
            fresh = [e.id for e in deaths if e.id not in self._seen]
            if fresh:
                self._seen.update(fresh)
                self._persist_seen()
            return 0

        by_id = {c.id: c for c in self._combatants}
        additions: List[ShowcaseItem] = []
        for entry in deaths:
            if entry.id in self._seen or entry.combatant_id is None:
                continue
            combatant = by_id.get(entry.combatant_id)
            if combatant is None or not should_showcase(combatant):
                continue
            additions.append(ShowcaseItem(combatant=combatant, log_entry=entry))

        if not additions:
            return 0

        self._seen.update(item.log_entry.id for item in additions)
        self._persist_seen()
        self._queue.extend(additions)
        self._promote()
        return len(additions)

    def observe_state(self, state: EncounterState) -> int:
        return self.observe(state.combatants, state.log)

    def _promote(self) -> None:
        now = self._clock()
        if self._active is not None and now - self._active_since >= self._duration:
            self._active = None
        if self._active is None and self._queue:
            self._active = self._queue.popleft()
            self._active_since = now

    @property
    def active(self) -> Optional[ShowcaseItem]:
        self._promote()
        if self._active is None:
            return None
        # живой снимок участника, если он ещё в бою
        live = next(
            (c for c in self._combatants if c.id == self._active.combatant.id), None
        )
        if live is None:
            return self._active
        return ShowcaseItem(combatant=live, log_entry=self._active.log_entry)

    @property
    def is_active(self) -> bool:
        return self.active is not None

    @property
    def pending_count(self) -> int:
        active = self.active
        return len(self._queue) + (1 if active is not None else 0)

    def dismiss(self) -> None:
        self._active = None
