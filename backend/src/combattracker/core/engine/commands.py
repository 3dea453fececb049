# backend/src/combattracker/core/engine/commands.py

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from combattracker.core.engine.state import (
    CombatantType,
    DeathSaveState,
    EncounterState,
    StatusEffectInstance,
    new_combatant_id,
)


class CommandBase(BaseModel):
    model_config = ConfigDict(extra="forbid")
    type: str


class AddCombatant(CommandBase):
    type: Literal["add-combatant"] = "add-combatant"
    combatant_id: str = Field(default_factory=new_combatant_id)
    name: str
    combatant_type: CombatantType = "enemy"
    initiative: int = 0
    max_hp: float = 0
    ac: Optional[int] = None
    icon: Optional[str] = None
    note: Optional[str] = None


class RemoveCombatant(CommandBase):
    type: Literal["remove-combatant"] = "remove-combatant"
    combatant_id: str


class CombatantChanges(BaseModel):
    """
    Частичное обновление. Явность поля смотрим по model_fields_set:
    death_saves=None (явно) != death_saves не передан.
    """

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    initiative: Optional[int] = None
    hp_current: Optional[float] = None
    hp_max: Optional[float] = None
    ac: Optional[int] = None
    icon: Optional[str] = None
    note: Optional[str] = None
    death_saves: Optional[DeathSaveState] = None


class UpdateCombatant(CommandBase):
    type: Literal["update-combatant"] = "update-combatant"
    combatant_id: str
    changes: CombatantChanges


class ApplyDelta(CommandBase):
    type: Literal["apply-delta"] = "apply-delta"
    combatant_id: str
    delta: float  # >0 урон, <0 лечение


class Attack(CommandBase):
    type: Literal["attack"] = "attack"
    attacker_id: str
    target_id: str
    amount: float
    damage_type: str = ""


class Heal(CommandBase):
    type: Literal["heal"] = "heal"
    target_id: str
    amount: float
    healing_type: str = ""


class SetActive(CommandBase):
    type: Literal["set-active"] = "set-active"
    combatant_id: Optional[str] = None


class StartEncounter(CommandBase):
    type: Literal["start-encounter"] = "start-encounter"


class AdvanceTurn(CommandBase):
    type: Literal["advance"] = "advance"


class RewindTurn(CommandBase):
    type: Literal["rewind"] = "rewind"


class AddStatus(CommandBase):
    type: Literal["add-status"] = "add-status"
    combatant_id: str
    status: StatusEffectInstance


class RemoveStatus(CommandBase):
    type: Literal["remove-status"] = "remove-status"
    combatant_id: str
    status_instance_id: str


class ClearLog(CommandBase):
    type: Literal["clear-log"] = "clear-log"


class StartDeathSaves(CommandBase):
    type: Literal["start-death-saves"] = "start-death-saves"
    combatant_id: str
    round: int = Field(default=1, ge=1)


class RecordDeathSave(CommandBase):
    type: Literal["record-death-save"] = "record-death-save"
    combatant_id: str
    result: Literal["success", "failure"]
    round: int = Field(default=1, ge=1)


class SetDeathSaveCounts(CommandBase):
    type: Literal["set-death-save-counts"] = "set-death-save-counts"
    combatant_id: str
    successes: float
    failures: float


class MarkDead(CommandBase):
    type: Literal["mark-dead"] = "mark-dead"
    combatant_id: str
    round: int = Field(default=1, ge=1)


class ClearDeathSaves(CommandBase):
    type: Literal["clear-death-saves"] = "clear-death-saves"
    combatant_id: str


class Hydrate(CommandBase):
    type: Literal["hydrate"] = "hydrate"
    # EncounterState целиком; dict (JSON из хранилища/вкладки) декодируем здесь
    payload: Any

    @field_validator("payload", mode="before")
    @classmethod
    def _decode_payload(cls, v: Any) -> EncounterState:
        if isinstance(v, EncounterState):
            return v
        if isinstance(v, dict):
            from combattracker.core.persistence.state_codec import (
                encounter_state_from_dict,
            )

            return encounter_state_from_dict(v)
        raise ValueError("hydrate payload must be an EncounterState or a dict")


Command = Union[
    AddCombatant,
    RemoveCombatant,
    UpdateCombatant,
    ApplyDelta,
    Attack,
    Heal,
    SetActive,
    StartEncounter,
    AdvanceTurn,
    RewindTurn,
    AddStatus,
    RemoveStatus,
    ClearLog,
    StartDeathSaves,
    RecordDeathSave,
    SetDeathSaveCounts,
    MarkDead,
    ClearDeathSaves,
    Hydrate,
]
