from datetime import date

from combattracker.db.models import Encounter


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_encounters_create_list_get_rename_delete(client):
    r = client.post("/encounters", json={"name": "Goblin Ambush"})
    assert r.status_code == 201, r.text
    enc = r.json()
    eid = enc["id"]
    assert enc["name"] == "Goblin Ambush"
    assert enc["state"] == {"combatants": [], "activeCombatantId": None, "round": 1, "log": []}

    r = client.get("/encounters")
    assert r.status_code == 200
    assert any(x["id"] == eid for x in r.json())

    r = client.get(f"/encounters/{eid}")
    assert r.status_code == 200
    assert r.json()["state"]["round"] == 1

    r = client.patch(f"/encounters/{eid}", json={"name": "  Bridge Toll  "})
    assert r.status_code == 200
    assert r.json()["name"] == "Bridge Toll"

    r = client.delete(f"/encounters/{eid}")
    assert r.status_code == 204

    r = client.get(f"/encounters/{eid}")
    assert r.status_code == 404
    assert r.json()["detail"] == "Encounter not found"


def test_create_without_name_uses_date(client):
    r = client.post("/encounters", json={})
    assert r.status_code == 201
    assert r.json()["name"] == f"Encounter {date.today().isoformat()}"


def test_rename_requires_name(client, encounter_row):
    r = client.patch(f"/encounters/{encounter_row.id}", json={"name": "   "})
    assert r.status_code == 422

    r = client.patch(f"/encounters/{encounter_row.id}", json={})
    assert r.status_code == 422


def test_unknown_encounter_is_404(client):
    assert client.get("/encounters/missing").status_code == 404
    assert client.delete("/encounters/missing").status_code == 404
    assert client.put("/encounters/missing/state", json={}).status_code == 404


def test_put_and_get_state_sanitizes_payload(client, encounter_row):
    payload = {
        "combatants": [
            {"id": "a", "name": "Ash", "type": "ally", "initiative": 4, "hp": {"current": 3, "max": 9}},
            {"name": "no id"},
        ],
        "activeCombatantId": "a",
        "round": 3,
        "log": [{"id": "x", "type": "weird"}],
    }

    r = client.put(f"/encounters/{encounter_row.id}/state", json=payload)
    assert r.status_code == 204

    r = client.get(f"/encounters/{encounter_row.id}/state")
    assert r.status_code == 200
    state = r.json()
    assert [c["id"] for c in state["combatants"]] == ["a"]
    assert state["combatants"][0]["statuses"] == []
    assert state["round"] == 3
    assert state["log"] == []


def test_corrupted_state_removes_entry(client, db, encounter_row):
    row = db.get(Encounter, encounter_row.id)
    row.state_json = "{not json"
    db.commit()

    r = client.get(f"/encounters/{encounter_row.id}")
    assert r.status_code == 404
    assert r.json()["detail"] == "Encounter data corrupted. Entry removed."

    r = client.get(f"/encounters/{encounter_row.id}")
    assert r.json()["detail"] == "Encounter not found"


def test_apply_command_runs_reducer_and_persists(client, encounter_row):
    eid = encounter_row.id

    r = client.post(
        f"/encounters/{eid}/commands:apply",
        json={
            "command": {
                "type": "add-combatant",
                "combatant_id": "g",
                "name": "Goblin",
                "max_hp": 7,
            }
        },
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["encounter_id"] == eid
    assert body["state"]["combatants"][0]["hp"] == {"current": 7, "max": 7}
    assert [e["type"] for e in body["log_delta"]] == ["combatant-add"]

    r = client.post(
        f"/encounters/{eid}/commands:apply",
        json={"command": {"type": "attack", "attacker_id": "g", "target_id": "g", "amount": 9}},
    )
    assert [e["type"] for e in r.json()["log_delta"]] == ["attack", "death"]

    r = client.get(f"/encounters/{eid}/state")
    assert r.json()["combatants"][0]["hp"]["current"] == 0
    assert len(r.json()["log"]) == 3


def test_apply_noop_command_returns_empty_delta(client, encounter_row):
    r = client.post(
        f"/encounters/{encounter_row.id}/commands:apply",
        json={"command": {"type": "advance"}},
    )
    assert r.status_code == 200
    assert r.json()["log_delta"] == []


def test_apply_invalid_command_is_422(client, encounter_row):
    url = f"/encounters/{encounter_row.id}/commands:apply"

    assert client.post(url, json={"command": {"type": "fireball"}}).status_code == 422
    assert client.post(
        url, json={"command": {"type": "advance", "extra": 1}}
    ).status_code == 422
    assert client.post(
        url, json={"command": {"type": "record-death-save", "combatant_id": "p", "result": "maybe"}}
    ).status_code == 422
