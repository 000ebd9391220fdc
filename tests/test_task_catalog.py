"""
Task catalog API tests: /api/v1/tasks.
"""

import pytest

from customer_registry.models.task import TaskDefinition, join_commands
from customer_registry.services.events import event_bus

BASE = "/api/v1/tasks"


def _task(identifier="T1", **overrides):
    body = {
        "identifier": identifier,
        "type": "CUSTOM",
        "name": "Verify employer",
        "description": "Call the employer and confirm the contract",
        "commands": ["ACTIVATE"],
        "mandatory": True,
        "predefined": False,
    }
    body.update(overrides)
    return body


class TestCreateTaskDefinition:

    def test_create_and_get(self, client):
        res = client.post(BASE, json=_task())

        assert res.status_code == 202
        assert res.get_json() == {"identifier": "T1"}
        assert client.get(f"{BASE}/T1").get_json() == {
            "identifier": "T1",
            "type": "CUSTOM",
            "name": "Verify employer",
            "description": "Call the employer and confirm the contract",
            "commands": ["ACTIVATE"],
            "mandatory": True,
            "predefined": False,
        }

    def test_commands_sorted_and_deduplicated(self, client):
        client.post(BASE, json=_task(commands=["REOPEN", "ACTIVATE", "REOPEN"]))

        assert client.get(f"{BASE}/T1").get_json()["commands"] == ["ACTIVATE", "REOPEN"]
        assert TaskDefinition.query.one().assigned_commands == "ACTIVATE;REOPEN"

    def test_no_commands(self, client):
        client.post(BASE, json=_task(commands=[]))
        assert client.get(f"{BASE}/T1").get_json()["commands"] == []

    def test_type_is_case_insensitive(self, client):
        client.post(BASE, json=_task(type="id_card"))
        assert client.get(f"{BASE}/T1").get_json()["type"] == "ID_CARD"

    def test_publishes_post_task(self, client):
        client.post(BASE, json=_task())
        assert [e["selector"] for e in event_bus.recent()] == ["post-task"]

    def test_duplicate(self, client):
        client.post(BASE, json=_task())

        res = client.post(BASE, json=_task(name="Other"))

        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    @pytest.mark.parametrize("commands", [["LOCK"], ["CLOSE"], ["ACTIVATE", "SUSPEND"], "ACTIVATE"])
    def test_non_gated_commands_rejected(self, client, commands):
        res = client.post(BASE, json=_task(commands=commands))

        assert res.status_code == 400
        assert TaskDefinition.query.count() == 0

    @pytest.mark.parametrize("overrides", [
        {"identifier": ""},
        {"identifier": "X" * 33},
        {"type": "PHONE_CALL"},
        {"name": ""},
        {"mandatory": "sometimes"},
        {"description": {"a": 1}},
        {"description": ["a", "b"]},
    ])
    def test_invalid_fields(self, client, overrides):
        assert client.post(BASE, json=_task(**overrides)).status_code == 400

    def test_non_string_description_not_stored(self, client):
        res = client.post(BASE, json=_task(description={"a": 1}))

        assert res.status_code == 400
        assert res.get_json()["details"] == {"description": "dict"}
        assert TaskDefinition.query.count() == 0


class TestListTaskDefinitions:

    def test_list(self, client):
        client.post(BASE, json=_task("T2"))
        client.post(BASE, json=_task("T1"))

        assert [t["identifier"] for t in client.get(BASE).get_json()] == ["T1", "T2"]

    def test_get_unknown(self, client):
        assert client.get(f"{BASE}/NOPE").status_code == 404


class TestUpdateTaskDefinition:

    def test_update(self, client):
        client.post(BASE, json=_task())

        res = client.put(f"{BASE}/T1", json=_task(
            name="Verify employer (2nd call)", commands=["UNLOCK"], mandatory=False, predefined=True,
        ))

        assert res.status_code == 202
        body = client.get(f"{BASE}/T1").get_json()
        assert body["name"] == "Verify employer (2nd call)"
        assert body["commands"] == ["UNLOCK"]
        assert body["mandatory"] is False
        assert body["predefined"] is True
        assert [e["selector"] for e in event_bus.recent()][-1] == "put-task"

    def test_update_without_body_identifier(self, client):
        client.post(BASE, json=_task())
        body = _task(name="Renamed")
        body.pop("identifier")

        assert client.put(f"{BASE}/T1", json=body).status_code == 202
        assert client.get(f"{BASE}/T1").get_json()["name"] == "Renamed"

    def test_identifier_mismatch(self, client):
        client.post(BASE, json=_task())
        assert client.put(f"{BASE}/T1", json=_task("T2")).status_code == 400

    def test_update_unknown(self, client):
        assert client.put(f"{BASE}/NOPE", json=_task("NOPE")).status_code == 404

    def test_update_rejects_non_gated_commands(self, client):
        client.post(BASE, json=_task())

        assert client.put(f"{BASE}/T1", json=_task(commands=["LOCK"])).status_code == 400
        assert client.get(f"{BASE}/T1").get_json()["commands"] == ["ACTIVATE"]

    def test_update_rejects_non_string_description(self, client):
        client.post(BASE, json=_task())

        assert client.put(f"{BASE}/T1", json=_task(description=["x"])).status_code == 400
        assert client.get(f"{BASE}/T1").get_json()["description"] == "Call the employer and confirm the contract"


class TestDeleteTaskDefinition:

    def test_delete(self, client):
        client.post(BASE, json=_task())

        res = client.delete(f"{BASE}/T1")

        assert res.status_code == 202
        assert res.get_json() == {"identifier": "T1", "deleted": True}
        assert client.get(f"{BASE}/T1").status_code == 404

    def test_delete_absent_is_silent(self, client):
        res = client.delete(f"{BASE}/NOPE")

        assert res.status_code == 202
        assert res.get_json()["deleted"] is False
        assert [e["selector"] for e in event_bus.recent()] == ["delete-task"]

    def test_delete_referenced_definition(self, client, customer):
        client.post(BASE, json=_task())
        client.post("/api/v1/customers/C-001/tasks/T1")

        res = client.delete(f"{BASE}/T1")

        assert res.status_code == 409
        assert res.get_json()["details"]["instances"] == 1
        assert client.get(f"{BASE}/T1").status_code == 200


class TestJoinCommands:

    @pytest.mark.parametrize("commands,expected", [
        (None, ""),
        ([], ""),
        (["UNLOCK"], "UNLOCK"),
        ({"REOPEN", "ACTIVATE"}, "ACTIVATE;REOPEN"),
        (["ACTIVATE", "", "ACTIVATE"], "ACTIVATE"),
    ])
    def test_join(self, commands, expected):
        assert join_commands(commands) == expected
