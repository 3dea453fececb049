from combattracker.core.engine.rules.turn_order import (
    is_turn_eligible,
    next_turn,
    previous_turn,
    sort_combatants,
)
from combattracker.core.engine.state import CombatantState, DeathSaveState


def _c(cid, name, initiative, hp=10, type_="enemy", death_saves=None):
    return CombatantState(
        id=cid,
        name=name,
        type=type_,
        initiative=initiative,
        hp_current=hp,
        hp_max=10,
        death_saves=death_saves,
    )


def test_equal_initiative_breaks_tie_by_name():
    order = sort_combatants(
        [_c("b", "Bram", 10), _c("a", "Aldo", 10), _c("z", "Zed", 15)]
    )
    assert [c.name for c in order] == ["Zed", "Aldo", "Bram"]


def test_name_tiebreak_ignores_case():
    order = sort_combatants([_c("b", "Bram", 10), _c("a", "aldo", 10)])
    assert [c.id for c in order] == ["a", "b"]


def test_negative_initiative_goes_last():
    order = sort_combatants([_c("s", "Slow", -2), _c("f", "Fast", 3)])
    assert [c.id for c in order] == ["f", "s"]


def test_eligibility_rules():
    assert is_turn_eligible(_c("e", "Orc", 1, hp=4))
    # враг на 0 hp не ходит
    assert not is_turn_eligible(_c("e", "Orc", 1, hp=0))
    assert not is_turn_eligible(_c("b", "Lich", 1, hp=0, type_="boss"))
    # PC на 0 hp ходит, пока не мёртв
    assert is_turn_eligible(_c("p", "Pell", 1, hp=0, type_="player"))
    assert is_turn_eligible(
        _c("p", "Pell", 1, hp=0, type_="ally", death_saves=DeathSaveState(failures=2))
    )
    assert not is_turn_eligible(
        _c(
            "p",
            "Pell",
            1,
            hp=0,
            type_="player",
            death_saves=DeathSaveState(status="dead", failures=3),
        )
    )


def test_next_turn_skips_defeated_and_wraps():
    order = sort_combatants(
        [_c("a", "A", 20), _c("b", "B", 15, hp=0), _c("c", "C", 10)]
    )

    move = next_turn(order, "a")
    assert (move.index, move.wrapped) == (2, False)

    move = next_turn(order, "c")
    assert (move.index, move.wrapped) == (0, True)

    move = next_turn(order, None)
    assert (move.index, move.wrapped) == (0, False)


def test_previous_turn_wraps_to_last_eligible():
    order = sort_combatants(
        [_c("a", "A", 20), _c("b", "B", 15), _c("c", "C", 10, hp=0)]
    )

    move = previous_turn(order, "a")
    assert (move.index, move.wrapped) == (1, True)

    move = previous_turn(order, "b")
    assert (move.index, move.wrapped) == (0, False)


def test_everyone_down_cycles_without_filter():
    order = sort_combatants(
        [_c("a", "A", 20, hp=0), _c("b", "B", 15, hp=0), _c("c", "C", 10, hp=0)]
    )

    move = next_turn(order, "b")
    assert (move.index, move.wrapped) == (2, False)

    move = next_turn(order, "c")
    assert (move.index, move.wrapped) == (0, True)

    move = previous_turn(order, "a")
    assert (move.index, move.wrapped) == (2, True)


def test_empty_order_has_no_move():
    assert next_turn([], None) is None
    assert previous_turn([], "a") is None
