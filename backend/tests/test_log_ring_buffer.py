from combattracker.core.engine.commands import AddCombatant
from combattracker.core.engine.events import (
    MAX_LOG_ENTRIES,
    CombatLogEntry,
    append_log,
)
from combattracker.core.engine.rules.apply import apply_command
from combattracker.core.engine.state import EncounterState


def _entries(n, prefix="old"):
    return [
        CombatLogEntry(id=f"{prefix}{i}", type="info", message=f"{prefix} {i}", round=1)
        for i in range(n)
    ]


def test_log_evicts_oldest_entries_first():
    state = EncounterState(log=_entries(MAX_LOG_ENTRIES))

    state, entries = apply_command(state, AddCombatant(name="Imp", max_hp=10))

    assert len(state.log) == MAX_LOG_ENTRIES
    assert state.log[0].id == "old1"
    assert state.log[-1] == entries[0]
    assert state.log[-1].type == "combatant-add"


def test_append_log_skips_none_and_keeps_reference_when_empty():
    log = _entries(3)

    assert append_log(log, [None, None]) is log

    out = append_log(log, [None, *_entries(2, prefix="new")])
    assert [e.id for e in out] == ["old0", "old1", "old2", "new0", "new1"]
    assert len(log) == 3


def test_entries_carry_ids_and_timestamps():
    a, b = _entries(2)
    fresh = CombatLogEntry(type="info", message="x", round=1)

    assert a.id != b.id
    assert len(fresh.id) == 10
    assert fresh.timestamp
