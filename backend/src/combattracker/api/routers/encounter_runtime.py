from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import TypeAdapter, ValidationError
from sqlalchemy.orm import Session

from combattracker.api.routers.encounters import (
    get_encounter_or_404,
    load_state_or_404,
)
from combattracker.api.schemas import ApplyCommandRequest, EncounterRuntimeResponse
from combattracker.core.engine.commands import Command
from combattracker.core.engine.rules.apply import apply_command as engine_apply
from combattracker.core.persistence.encounter_store import save_encounter_state
from combattracker.core.persistence.state_codec import (
    encounter_state_to_dict,
    log_entry_to_dict,
)
from combattracker.db.deps import get_db

router = APIRouter(prefix="/encounters", tags=["encounter-runtime"])

_command_adapter: TypeAdapter[Command] = TypeAdapter(Command)


@router.post("/{encounter_id}/commands:apply", response_model=EncounterRuntimeResponse)
def apply_command(
    encounter_id: str, req: ApplyCommandRequest, db: Session = Depends(get_db)
):
    obj = get_encounter_or_404(db, encounter_id)
    state = load_state_or_404(db, obj)

    try:
        cmd = _command_adapter.validate_python(req.command)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=f"Invalid command: {e}")

    new_state, log_delta = engine_apply(state, cmd)
    if new_state is not state:
        save_encounter_state(db, encounter_id, new_state)

    return EncounterRuntimeResponse(
        encounter_id=encounter_id,
        state=encounter_state_to_dict(new_state),
        log_delta=[log_entry_to_dict(e) for e in log_delta],
    )
