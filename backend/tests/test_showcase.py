import json

from combattracker.config import Settings
from combattracker.core.engine.commands import (
    AddCombatant,
    ApplyDelta,
    CombatantChanges,
    MarkDead,
    RemoveCombatant,
    UpdateCombatant,
)
from combattracker.core.engine.rules.apply import reduce
from combattracker.core.engine.state import EncounterState
from combattracker.core.tracker.showcase import (
    DeathShowcaseQueue,
    JsonFileSeenStore,
    MemorySeenStore,
    seen_key,
)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def _roster():
    state = EncounterState()
    state = reduce(state, AddCombatant(combatant_id="g", name="Goblin", max_hp=7))
    state = reduce(state, AddCombatant(combatant_id="h", name="Hobgoblin", max_hp=11))
    state = reduce(
        state,
        AddCombatant(combatant_id="p", name="Pell", combatant_type="player", max_hp=10),
    )
    return state


def _queue(store=None, encounter_id="enc-1"):
    clock = FakeClock()
    queue = DeathShowcaseQueue(store or MemorySeenStore(), clock=clock)
    queue.set_encounter(encounter_id)
    return queue, clock


def test_history_is_marked_seen_on_first_observation():
    store = MemorySeenStore()
    queue, _ = _queue(store)
    state = reduce(_roster(), ApplyDelta(combatant_id="g", delta=20))

    assert queue.observe_state(state) == 0
    assert queue.active is None
    assert store.load(seen_key("enc-1")) == {state.log[-1].id}


def test_defeated_enemy_is_showcased_for_fixed_duration():
    queue, clock = _queue()
    state = _roster()
    queue.observe_state(state)

    state = reduce(state, ApplyDelta(combatant_id="g", delta=20))
    assert queue.observe_state(state) == 1

    active = queue.active
    assert active.combatant.id == "g"
    assert active.log_entry.message == "Goblin was defeated."
    assert queue.pending_count == 1

    clock.now += 4.1
    assert queue.is_active

    clock.now += 0.2
    assert queue.active is None
    assert queue.pending_count == 0


def test_queue_is_fifo():
    queue, clock = _queue()
    state = _roster()
    queue.observe_state(state)

    state = reduce(state, ApplyDelta(combatant_id="g", delta=20))
    state = reduce(state, ApplyDelta(combatant_id="h", delta=20))
    assert queue.observe_state(state) == 2
    assert queue.pending_count == 2
    assert queue.active.combatant.id == "g"

    clock.now += 5
    assert queue.active.combatant.id == "h"
    assert queue.pending_count == 1


def test_unconscious_ally_is_not_showcased_until_dead():
    queue, _ = _queue()
    state = _roster()
    queue.observe_state(state)

    state = reduce(state, ApplyDelta(combatant_id="p", delta=20))
    assert queue.observe_state(state) == 0

    state = reduce(state, MarkDead(combatant_id="p"))
    # "fell unconscious" и "has died" теперь оба подходят
    assert queue.observe_state(state) == 2
    assert queue.active.combatant.death_saves.status == "dead"


def test_entries_are_not_replayed():
    queue, clock = _queue()
    state = _roster()
    queue.observe_state(state)

    state = reduce(state, ApplyDelta(combatant_id="g", delta=20))
    queue.observe_state(state)
    clock.now += 10

    assert queue.observe_state(state) == 0
    assert queue.active is None


def test_seen_set_survives_new_queue_instance():
    store = MemorySeenStore()
    queue, _ = _queue(store)
    state = _roster()
    queue.observe_state(state)
    state = reduce(state, ApplyDelta(combatant_id="g", delta=20))
    queue.observe_state(state)

    again, _ = _queue(store)
    again.observe_state(state)
    state = reduce(state, ApplyDelta(combatant_id="h", delta=20))

    assert again.observe_state(state) == 1
    assert again.active.combatant.id == "h"


def test_dismiss_advances_to_next_item():
    queue, _ = _queue()
    state = _roster()
    queue.observe_state(state)
    state = reduce(state, ApplyDelta(combatant_id="g", delta=20))
    state = reduce(state, ApplyDelta(combatant_id="h", delta=20))
    queue.observe_state(state)

    queue.dismiss()

    assert queue.active.combatant.id == "h"


def test_active_item_uses_live_snapshot():
    queue, _ = _queue()
    state = _roster()
    queue.observe_state(state)
    state = reduce(state, ApplyDelta(combatant_id="g", delta=20))
    queue.observe_state(state)

    state = reduce(
        state,
        UpdateCombatant(combatant_id="g", changes=CombatantChanges(note="looted")),
    )
    queue.observe_state(state)
    assert queue.active.combatant.note == "looted"

    state = reduce(state, RemoveCombatant(combatant_id="g"))
    queue.observe_state(state)
    assert queue.active.combatant.name == "Goblin"


def test_switching_encounter_clears_queue():
    queue, _ = _queue()
    state = _roster()
    queue.observe_state(state)
    state = reduce(state, ApplyDelta(combatant_id="g", delta=20))
    queue.observe_state(state)

    queue.set_encounter("enc-2")

    assert queue.active is None
    assert queue.pending_count == 0
    # новое encounter снова начинается с "истории"
    assert queue.observe_state(reduce(state, ApplyDelta(combatant_id="h", delta=20))) == 0


def test_json_file_seen_store(tmp_path):
    store = JsonFileSeenStore(tmp_path / "seen")
    key = seen_key("enc-1")

    assert store.load(key) == set()
    store.save(key, {"b", "a"})
    assert JsonFileSeenStore(tmp_path / "seen").load(key) == {"a", "b"}

    files = list((tmp_path / "seen").iterdir())
    assert len(files) == 1
    assert json.loads(files[0].read_text(encoding="utf-8")) == ["a", "b"]


def test_json_file_seen_store_ignores_corrupt_file(tmp_path, caplog):
    store = JsonFileSeenStore(tmp_path)
    key = seen_key("enc-1")
    store.save(key, {"a"})
    next(tmp_path.iterdir()).write_text("{not json", encoding="utf-8")

    assert store.load(key) == set()
    assert "Failed to load death showcase history" in caplog.text


def test_queue_from_settings_persists_to_showcase_dir(tmp_path):
    clock = FakeClock()
    settings = Settings(showcase_dir=str(tmp_path), death_showcase_seconds=1.0)
    queue = DeathShowcaseQueue.from_settings(settings, clock=clock)
    queue.set_encounter("enc-1")

    state = _roster()
    queue.observe_state(state)
    queue.observe_state(reduce(state, ApplyDelta(combatant_id="g", delta=7)))

    assert queue.is_active
    clock.now += 1.0
    assert queue.active is None
    assert len(list(tmp_path.iterdir())) == 1
