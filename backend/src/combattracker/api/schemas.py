from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from combattracker.core.engine.templates import CombatantTemplateData


class EncounterCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # пусто -> "Encounter YYYY-MM-DD"
    name: Optional[str] = None
    # camelCase EncounterState; пусто -> новый бой
    state: Optional[Dict[str, Any]] = None


class EncounterRename(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=200)

    @field_validator("name", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class EncounterOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    created_at: datetime
    updated_at: datetime


class EncounterWithStateOut(EncounterOut):
    state: Dict[str, Any]


class ApplyCommandRequest(BaseModel):
    # валидируется как Command (TypeAdapter) уже в роутере
    command: Dict[str, Any]


class EncounterRuntimeResponse(BaseModel):
    encounter_id: str
    state: Dict[str, Any]
    log_delta: List[Dict[str, Any]] = Field(default_factory=list)


class CombatantTemplateCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=200)
    data: CombatantTemplateData

    @field_validator("name", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class CombatantTemplateUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    data: Optional[CombatantTemplateData] = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class CombatantTemplateOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    data: CombatantTemplateData
    created_at: datetime
    updated_at: datetime
