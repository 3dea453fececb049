from combattracker.core.engine.rules.turn_order import is_turn_eligible
from combattracker.core.engine.state import (
    CombatantState,
    DeathSaveState,
    EncounterState,
    StatusEffectInstance,
)
from combattracker.core.persistence.state_codec import (
    combatant_from_dict,
    encounter_state_from_dict,
    encounter_state_to_dict,
    log_entry_from_dict,
    status_from_dict,
)


def _status_dict(**overrides):
    d = {
        "id": "prone",
        "label": "Prone",
        "icon": "🛌",
        "color": "#f97316",
        "instanceId": "abc123",
        "remainingRounds": None,
    }
    d.update(overrides)
    return d


def test_encode_uses_camel_case_wire_format():
    state = EncounterState(
        combatants=[
            CombatantState(
                id="r",
                name="Rook",
                type="boss",
                initiative=7,
                hp_current=40,
                hp_max=60,
                ac=17,
                is_hidden=True,
                statuses=[
                    StatusEffectInstance(
                        id="prone", label="Prone", icon="🛌", color="#f97316", instance_id="i1"
                    )
                ],
            )
        ],
        active_combatant_id="r",
        round=4,
    )

    data = encounter_state_to_dict(state)

    assert data["activeCombatantId"] == "r"
    assert data["round"] == 4
    assert "startedAt" not in data
    c = data["combatants"][0]
    assert c["hp"] == {"current": 40, "max": 60}
    assert c["isHidden"] is True
    assert c["deathSaves"] is None
    assert "note" not in c
    assert c["statuses"][0]["instanceId"] == "i1"
    assert c["statuses"][0]["remainingRounds"] is None


def test_combatant_without_id_or_name_is_dropped():
    assert combatant_from_dict({"name": "Nameless"}) is None
    assert combatant_from_dict({"id": "x"}) is None
    assert combatant_from_dict("nope") is None


def test_combatant_fields_are_defaulted_one_by_one():
    c = combatant_from_dict(
        {
            "id": "x",
            "name": "Xeno",
            "type": "dragon",
            "initiative": "fast",
            "hp": {"current": 50, "max": 30},
            "ac": float("nan"),
            "statuses": [_status_dict(), {"id": "broken"}],
            "isHidden": "yes",
            "deathSaves": {"status": "pending", "successes": "two", "failures": 0},
        }
    )

    assert c.type == "enemy"
    assert c.initiative == 0
    assert (c.hp_current, c.hp_max) == (30, 30)
    assert c.ac is None
    assert c.icon == "❓"
    assert [s.instance_id for s in c.statuses] == ["abc123"]
    assert c.is_hidden is None
    assert c.death_saves == DeathSaveState(
        status="pending", successes=0, failures=0, started_at_round=1, last_roll_round=None
    )


def test_death_saves_are_decoded_and_normalised():
    c = combatant_from_dict(
        {
            "id": "p",
            "name": "Pell",
            "type": "player",
            "initiative": 1,
            "hp": {"current": 0, "max": 8},
            "deathSaves": {
                "status": "pending",
                "successes": 4,
                "failures": 1,
                "startedAtRound": 2,
                "lastRollRound": 3,
            },
        }
    )

    assert c.death_saves == DeathSaveState(
        status="stable", successes=3, failures=1, started_at_round=2, last_roll_round=3
    )


def test_partial_death_saves_are_defaulted_not_dropped():
    state = encounter_state_from_dict(
        {
            "combatants": [
                {
                    "id": "p",
                    "name": "Pell",
                    "type": "player",
                    "hp": {"current": 0, "max": 8},
                    "deathSaves": {"status": "dead", "successes": 0, "failures": 3},
                },
                {
                    "id": "q",
                    "name": "Quill",
                    "type": "ally",
                    "hp": {"current": 0, "max": 6},
                    "deathSaves": {"status": "pending", "successes": 2, "failures": "x"},
                },
            ]
        }
    )

    pell, quill = sorted(state.combatants, key=lambda c: c.id)
    assert pell.death_saves == DeathSaveState(
        status="dead", successes=0, failures=3, started_at_round=1, last_roll_round=None
    )
    assert not is_turn_eligible(pell)
    assert quill.death_saves == DeathSaveState(
        status="pending", successes=2, failures=0, started_at_round=1, last_roll_round=None
    )


def test_death_saves_with_unknown_status_are_dropped():
    c = combatant_from_dict(
        {
            "id": "p",
            "name": "Pell",
            "type": "player",
            "hp": {"current": 0, "max": 8},
            "deathSaves": {"status": "unconscious", "successes": 1, "failures": 1},
        }
    )

    assert c.death_saves is None


def test_status_decoding_rules():
    assert status_from_dict(_status_dict(remainingRounds=0)) is None
    assert status_from_dict(_status_dict(remainingRounds="soon")) is None
    assert status_from_dict(_status_dict(instanceId=None)) is None

    st = status_from_dict(_status_dict(id="exhaustion", level=2.6, remainingRounds=3))
    assert st.level == 3
    assert st.remaining_rounds == 3


def test_log_entries_validated_by_type():
    base = {"id": "l1", "message": "m", "timestamp": "2024-01-01T00:00:00Z", "round": 2}

    assert log_entry_from_dict({**base, "type": "death"}).type == "death"
    assert log_entry_from_dict({**base, "type": "shout"}) is None
    assert log_entry_from_dict({**base, "type": "info", "round": None}) is None

    entry = log_entry_from_dict({**base, "type": "damage", "amount": 4, "combatantId": "x"})
    assert (entry.amount, entry.combatant_id) == (4, "x")


def test_garbage_input_decodes_to_empty_encounter():
    assert encounter_state_from_dict(None) == EncounterState()
    assert encounter_state_from_dict({"combatants": "lots", "round": -5}) == EncounterState()


def test_decode_keeps_valid_entries_next_to_broken_ones():
    state = encounter_state_from_dict(
        {
            "combatants": [{"id": "a", "name": "Ash"}, 42],
            "activeCombatantId": 7,
            "startedAt": "2024-01-01T00:00:00Z",
            "log": [
                {"id": "l1", "type": "turn", "message": "m", "timestamp": "t", "round": 1},
                {"bad": True},
            ],
        }
    )

    assert [c.id for c in state.combatants] == ["a"]
    assert state.active_combatant_id is None
    assert state.started_at == "2024-01-01T00:00:00Z"
    assert [e.id for e in state.log] == ["l1"]
