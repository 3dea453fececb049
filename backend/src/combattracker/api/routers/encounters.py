from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from combattracker.api.schemas import (
    EncounterCreate,
    EncounterOut,
    EncounterRename,
    EncounterWithStateOut,
)
from combattracker.core.engine.state import EncounterState, new_encounter
from combattracker.core.persistence.encounter_store import (
    dump_state_json,
    parse_state_json,
)
from combattracker.core.persistence.state_codec import (
    encounter_state_from_dict,
    encounter_state_to_dict,
)
from combattracker.db.deps import get_db
from combattracker.db.models import Encounter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/encounters", tags=["encounters"])


def _default_name() -> str:
    return f"Encounter {date.today().isoformat()}"


def _out(obj: Encounter) -> EncounterOut:
    return EncounterOut(
        id=obj.id,
        name=obj.name,
        created_at=obj.created_at,
        updated_at=obj.updated_at,
    )


def get_encounter_or_404(db: Session, encounter_id: str) -> Encounter:
    obj = db.get(Encounter, encounter_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Encounter not found")
    return obj


def load_state_or_404(db: Session, obj: Encounter) -> EncounterState:
    """Битый JSON в базе: запись удаляем, клиенту 404."""
    state = parse_state_json(obj.state_json)
    if state is None:
        logger.warning("Encounter %s has corrupted state, removing", obj.id)
        db.delete(obj)
        db.commit()
        raise HTTPException(
            status_code=404, detail="Encounter data corrupted. Entry removed."
        )
    return state


@router.get("", response_model=list[EncounterOut])
def list_encounters(db: Session = Depends(get_db)):
    items = db.query(Encounter).order_by(Encounter.updated_at.desc()).all()
    return [_out(e) for e in items]


@router.post("", response_model=EncounterWithStateOut, status_code=201)
def create_encounter(payload: EncounterCreate, db: Session = Depends(get_db)):
    name = (payload.name or "").strip() or _default_name()
    state = (
        encounter_state_from_dict(payload.state)
        if payload.state is not None
        else new_encounter()
    )

    obj = Encounter(name=name, state_json=dump_state_json(state))
    db.add(obj)
    db.commit()
    db.refresh(obj)
    logger.info("Created encounter %s", obj.id)

    return EncounterWithStateOut(
        **_out(obj).model_dump(), state=encounter_state_to_dict(state)
    )


@router.get("/{encounter_id}", response_model=EncounterWithStateOut)
def get_encounter(encounter_id: str, db: Session = Depends(get_db)):
    obj = get_encounter_or_404(db, encounter_id)
    state = load_state_or_404(db, obj)
    return EncounterWithStateOut(
        **_out(obj).model_dump(), state=encounter_state_to_dict(state)
    )


@router.patch("/{encounter_id}", response_model=EncounterOut)
def rename_encounter(
    encounter_id: str, payload: EncounterRename, db: Session = Depends(get_db)
):
    obj = get_encounter_or_404(db, encounter_id)
    obj.name = payload.name
    db.commit()
    db.refresh(obj)
    return _out(obj)


@router.delete("/{encounter_id}", status_code=204)
def delete_encounter(encounter_id: str, db: Session = Depends(get_db)):
    obj = get_encounter_or_404(db, encounter_id)
    db.delete(obj)
    db.commit()
    return Response(status_code=204)


@router.get("/{encounter_id}/state")
def get_state(encounter_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    obj = get_encounter_or_404(db, encounter_id)
    return encounter_state_to_dict(load_state_or_404(db, obj))


@router.put("/{encounter_id}/state", status_code=204)
def put_state(
    encounter_id: str, payload: Dict[str, Any], db: Session = Depends(get_db)
):
    obj = get_encounter_or_404(db, encounter_id)
    # тот же декодер, что и для hydrate: мусорные поля отбрасываются
    obj.state_json = dump_state_json(encounter_state_from_dict(payload))
    db.commit()
    return Response(status_code=204)
