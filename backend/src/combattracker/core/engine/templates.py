from __future__ import annotations

import math
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from combattracker.core.engine.state import (
    DEFAULT_ICON,
    CombatantState,
    CombatantType,
)

_TEMPLATE_TYPES = ("player", "ally", "enemy", "boss")


class CombatantTemplateData(BaseModel):
    """Сохранённая заготовка участника (библиотека), без имени: имя хранится отдельно."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: CombatantType = "enemy"
    default_initiative: int = 0
    max_hp: int = Field(default=1, ge=1)
    ac: Optional[int] = None
    icon: str = DEFAULT_ICON
    note: Optional[str] = None


def _number(v: Any) -> Optional[float]:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    return float(v) if math.isfinite(v) else None


def parse_template_data(raw: Any) -> Optional[CombatantTemplateData]:
    """
    Разбор того, что лежит в базе. Обязательные поля неверного типа -> None,
    ac/note неверного типа просто сбрасываются.
    """
    if not isinstance(raw, dict):
        return None
    if raw.get("type") not in _TEMPLATE_TYPES:
        return None
    initiative = _number(raw.get("default_initiative"))
    max_hp = _number(raw.get("max_hp"))
    if initiative is None or max_hp is None:
        return None
    if not isinstance(raw.get("icon"), str):
        return None

    ac = _number(raw.get("ac"))
    note = raw.get("note")
    try:
        return CombatantTemplateData(
            type=raw["type"],
            default_initiative=int(initiative),
            max_hp=int(max_hp),
            ac=int(ac) if ac is not None else None,
            icon=raw["icon"],
            note=note if isinstance(note, str) else None,
        )
    except ValidationError:
        return None


def template_from_combatant(c: CombatantState) -> CombatantTemplateData:
    # "сохранить в библиотеку" из карточки участника
    return CombatantTemplateData(
        type=c.type,
        default_initiative=c.initiative,
        max_hp=max(1, c.hp_max),
        ac=c.ac,
        icon=c.icon or DEFAULT_ICON,
        note=c.note,
    )
