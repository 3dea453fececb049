from __future__ import annotations

import asyncio
import json
import logging
from typing import Callable, Optional, Protocol

from sqlalchemy.orm import Session

from combattracker.core.engine.state import EncounterState
from combattracker.core.persistence.state_codec import (
    encounter_state_from_dict,
    encounter_state_to_dict,
)
from combattracker.db.models import Encounter

logger = logging.getLogger(__name__)


class EncounterStore(Protocol):
    """Коллаборатор хранения для контроллера."""

    async def load(self, encounter_id: str) -> Optional[EncounterState]: ...

    async def save(self, encounter_id: str, state: EncounterState) -> None: ...


# ---------- sync helpers (API роутеры работают через них же) ----------


def dump_state_json(state: EncounterState) -> str:
    return json.dumps(encounter_state_to_dict(state), ensure_ascii=False)


def parse_state_json(raw: str) -> Optional[EncounterState]:
    """None, если в базе мусор (не JSON / не объект)."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    return encounter_state_from_dict(data)


def load_encounter_state(db: Session, encounter_id: str) -> Optional[EncounterState]:
    row = db.get(Encounter, encounter_id)
    if row is None:
        return None
    return parse_state_json(row.state_json)


def save_encounter_state(db: Session, encounter_id: str, state: EncounterState) -> bool:
    """False, если encounter не существует (строку не создаём)."""
    row = db.get(Encounter, encounter_id)
    if row is None:
        return False
    row.state_json = dump_state_json(state)
    db.commit()
    return True


# ---------- async store для контроллера ----------


class SqlEncounterStore:
    """
    Best-effort хранилище: load -> None при ошибке, save ошибки логирует и глотает.
    Синхронная сессия SQLAlchemy уезжает в thread, чтобы не блокировать loop.
    """

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory

    def _session(self) -> Session:
        if self._session_factory is not None:
            return self._session_factory()
        from combattracker.db import session as db_session

        return db_session.SessionLocal()

    def _load_sync(self, encounter_id: str) -> Optional[EncounterState]:
        with self._session() as db:
            return load_encounter_state(db, encounter_id)

    def _save_sync(self, encounter_id: str, state: EncounterState) -> None:
        with self._session() as db:
            if not save_encounter_state(db, encounter_id, state):
                logger.warning("Encounter %s not found, state not saved", encounter_id)

    async def load(self, encounter_id: str) -> Optional[EncounterState]:
        try:
            return await asyncio.to_thread(self._load_sync, encounter_id)
        except Exception:
            logger.warning("Failed to load encounter %s", encounter_id, exc_info=True)
            return None

    async def save(self, encounter_id: str, state: EncounterState) -> None:
        try:
            await asyncio.to_thread(self._save_sync, encounter_id, state)
        except Exception:
            logger.warning("Failed to persist encounter %s", encounter_id, exc_info=True)
