from __future__ import annotations

import random
from types import MappingProxyType
from typing import List, Mapping

from pydantic import BaseModel, ConfigDict

from combattracker.core.engine.state import StatusEffectTemplate


class CombatantIconPreset(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    icon: str


def _status(
    id: str, label: str, icon: str, color: str, description: str
) -> StatusEffectTemplate:
    return StatusEffectTemplate(
        id=id, label=label, icon=icon, color=color, description=description
    )


_STATUS_EFFECTS = [
    _status(
        "blinded",
        "Blinded",
        "👁️‍🗨️",
        "#2563eb",
        "Creature can't see, fails sight checks, and attackers have advantage.",
    ),
    _status(
        "charmed",
        "Charmed",
        "💘",
        "#fbbf24",
        "Charmed creature can't attack the charmer and the charmer has advantage "
        "on social checks.",
    ),
    _status(
        "deafened",
        "Deafened",
        "🔕",
        "#f87171",
        "Creature can't hear and automatically fails hearing-based checks.",
    ),
    # единственный стакающийся статус (level вместо дублей)
    _status(
        "exhaustion",
        "Exhaustion",
        "😩",
        "#6b7280",
        "Apply level-based penalties to ability checks, speed, and more.",
    ),
    _status(
        "frightened",
        "Frightened",
        "😱",
        "#f59e0b",
        "Disadvantage while the source is in sight and can't willingly move closer.",
    ),
    _status(
        "grappled",
        "Grappled",
        "🪢",
        "#34d399",
        "Speed becomes 0 and ends if grappler is incapacitated or moved away.",
    ),
    _status(
        "incapacitated",
        "Incapacitated",
        "🚫",
        "#a855f7",
        "Creature can't take actions or reactions.",
    ),
    _status(
        "invisible",
        "Invisible",
        "👻",
        "#93c5fd",
        "Invisible creature can't be seen, has advantage to attack, and attackers "
        "have disadvantage.",
    ),
    _status(
        "paralyzed",
        "Paralyzed",
        "🧊",
        "#14b8a6",
        "Incapacitated, fails Str/Dex saves, attackers have advantage and crit "
        "within 5 feet.",
    ),
    _status(
        "petrified",
        "Petrified",
        "🗿",
        "#7c3aed",
        "Transformed to stone, incapacitated, and resistant to all damage.",
    ),
    _status(
        "poisoned",
        "Poisoned",
        "☠️",
        "#22c55e",
        "Disadvantage on attack rolls and ability checks.",
    ),
    _status(
        "prone",
        "Prone",
        "🛌",
        "#f97316",
        "Speed 0 to stand; attackers within 5 feet have advantage, others have "
        "disadvantage.",
    ),
    _status(
        "restrained",
        "Restrained",
        "⛓️",
        "#ef4444",
        "Speed 0, disadvantage on attacks and Dex saves, attackers have advantage.",
    ),
    _status(
        "stunned",
        "Stunned",
        "💫",
        "#fb7185",
        "Incapacitated, fails Str/Dex saves, attackers have advantage.",
    ),
    _status(
        "unconscious",
        "Unconscious",
        "💤",
        "#6366f1",
        "Unaware, drops prone, and attackers have advantage and crit within 5 feet.",
    ),
]

_ICONS = [
    CombatantIconPreset(id="sword", label="Bladebound", icon="⚔️"),
    CombatantIconPreset(id="shield", label="Stalwart", icon="🛡️"),
    CombatantIconPreset(id="bow", label="Marksman", icon="🏹"),
    CombatantIconPreset(id="staff", label="Archmage", icon="🪄"),
    CombatantIconPreset(id="dragon", label="Dragon", icon="🐉"),
    CombatantIconPreset(id="skull", label="Undead", icon="💀"),
    CombatantIconPreset(id="beast", label="Beast", icon="🐺"),
    CombatantIconPreset(id="elemental", label="Elemental", icon="🔥"),
    CombatantIconPreset(id="eye", label="Watcher", icon="👁️"),
    CombatantIconPreset(id="mask", label="Trickster", icon="🎭"),
]

# read-only справочники, собираются один раз при импорте
STATUS_EFFECT_LIBRARY: Mapping[str, StatusEffectTemplate] = MappingProxyType(
    {t.id: t for t in _STATUS_EFFECTS}
)
COMBATANT_ICON_LIBRARY: Mapping[str, CombatantIconPreset] = MappingProxyType(
    {p.id: p for p in _ICONS}
)


def get_status_template(template_id: str) -> StatusEffectTemplate:
    return STATUS_EFFECT_LIBRARY[template_id]


def list_status_templates() -> List[StatusEffectTemplate]:
    return list(STATUS_EFFECT_LIBRARY.values())


def list_icon_presets() -> List[CombatantIconPreset]:
    return list(COMBATANT_ICON_LIBRARY.values())


def random_icon(rng: random.Random | None = None) -> str:
    chooser = rng or random
    return chooser.choice(_ICONS).icon
