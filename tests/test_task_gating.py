"""
Task gating engine tests.

Covers:
    - predefined task attachment on create (ACTIVATE), LOCK (UNLOCK), CLOSE (REOPEN)
    - stacking of duplicate instances and the TASK_INSTANCE_DEDUP switch
    - the gate: only open + mandatory + relevant instances block a command
    - task execution preconditions (ID_CARD, FOUR_EYES)
    - manual attach, listing, process steps (/actions)
"""

import logging

import pytest

from customer_registry.models import db
from customer_registry.models.audit import CustomerCommand
from customer_registry.models.customer import Customer
from customer_registry.models.task import TaskDefinition, TaskInstance
from customer_registry.services import task_service
from customer_registry.services.events import event_bus

BASE = "/api/v1/customers"


# ═════════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════════


def _definition(identifier="T1", *, type="CUSTOM", commands=("ACTIVATE",),
                mandatory=True, predefined=False) -> TaskDefinition:
    """Create and commit a TaskDefinition directly in the catalog."""
    d = TaskDefinition(
        identifier=identifier,
        type=type,
        name=f"Task {identifier}",
        mandatory=mandatory,
        predefined=predefined,
    )
    d.commands = commands
    db.session.add(d)
    db.session.commit()
    return d


def _command(client, identifier, action, user="officer"):
    return client.post(f"{BASE}/{identifier}/commands", json={"action": action}, headers={"User": user})


def _tasks(client, identifier, include_executed=True):
    flag = "true" if include_executed else "false"
    return client.get(f"{BASE}/{identifier}/tasks?includeExecuted={flag}").get_json()


def _execute(client, identifier, task_id, user="officer"):
    return client.put(f"{BASE}/{identifier}/tasks/{task_id}", headers={"User": user})


def _attach(client, identifier, task_id):
    return client.post(f"{BASE}/{identifier}/tasks/{task_id}")


def _add_card(client, identifier, number="ID-1"):
    return client.post(
        f"{BASE}/{identifier}/identifications",
        json={"number": number, "type": "NATIONAL_ID", "issuer": "KE",
              "expiration_date": {"year": 2031, "month": 6, "day": 30}},
    )


# ═════════════════════════════════════════════════════════════════════════════
# 1. PREDEFINED ATTACHMENT
# ═════════════════════════════════════════════════════════════════════════════


class TestPredefinedAttachment:

    def test_create_attaches_activate_tasks(self, client, make_customer):
        _definition("T-ACT", commands=("ACTIVATE",), predefined=True)
        _definition("T-UNL", commands=("UNLOCK",), predefined=True)
        _definition("T-MAN", commands=("ACTIVATE",), predefined=False)

        make_customer()

        tasks = _tasks(client, "C-001")
        assert [t["task_definition"]["identifier"] for t in tasks] == ["T-ACT"]
        assert tasks[0]["executed_by"] is None
        assert set(tasks[0]) == {"id", "executed_by", "executed_on", "task_definition"}

    def test_lock_attaches_unlock_tasks(self, client, customer):
        _definition("T-UNL", commands=("UNLOCK",), mandatory=False, predefined=True)
        _command(client, "C-001", "ACTIVATE")
        assert _tasks(client, "C-001") == []

        _command(client, "C-001", "LOCK")

        tasks = _tasks(client, "C-001")
        assert [t["task_definition"]["identifier"] for t in tasks] == ["T-UNL"]

    def test_close_attaches_reopen_tasks(self, client, customer):
        _definition("T-REO", commands=("REOPEN",), mandatory=False, predefined=True)

        _command(client, "C-001", "CLOSE")

        tasks = _tasks(client, "C-001")
        assert [t["task_definition"]["identifier"] for t in tasks] == ["T-REO"]

    def test_definition_with_several_commands(self, client, customer):
        _definition("T-MULTI", commands=("UNLOCK", "REOPEN"), mandatory=False, predefined=True)
        _command(client, "C-001", "ACTIVATE")

        _command(client, "C-001", "LOCK")
        _command(client, "C-001", "CLOSE")

        assert len(_tasks(client, "C-001")) == 2


class TestDuplicateInstances:

    def _lock_twice(self, client):
        _command(client, "C-001", "ACTIVATE")
        _command(client, "C-001", "LOCK")
        _command(client, "C-001", "UNLOCK")
        _command(client, "C-001", "LOCK")

    def test_duplicates_stack_by_default(self, client, customer):
        _definition("T-UNL", commands=("UNLOCK",), mandatory=False, predefined=True)

        self._lock_twice(client)

        tasks = _tasks(client, "C-001", include_executed=False)
        assert [t["task_definition"]["identifier"] for t in tasks] == ["T-UNL", "T-UNL"]

    def test_duplicate_logged_as_warning(self, client, customer, caplog):
        _definition("T-UNL", commands=("UNLOCK",), mandatory=False, predefined=True)

        with caplog.at_level(logging.WARNING, logger="customer_registry.services.task_service"):
            self._lock_twice(client)

        assert any("duplicate open task T-UNL" in r.getMessage() for r in caplog.records)

    def test_dedup_switch_skips_open_duplicates(self, app, client, customer, monkeypatch):
        monkeypatch.setitem(app.config, "TASK_INSTANCE_DEDUP", True)
        _definition("T-UNL", commands=("UNLOCK",), mandatory=False, predefined=True)

        self._lock_twice(client)

        assert len(_tasks(client, "C-001", include_executed=False)) == 1

    def test_dedup_still_attaches_after_execution(self, app, client, customer, monkeypatch):
        monkeypatch.setitem(app.config, "TASK_INSTANCE_DEDUP", True)
        _definition("T-UNL", commands=("UNLOCK",), mandatory=True, predefined=True)
        _command(client, "C-001", "ACTIVATE")
        _command(client, "C-001", "LOCK")
        assert _execute(client, "C-001", "T-UNL").status_code == 202
        assert _command(client, "C-001", "UNLOCK").status_code == 202

        _command(client, "C-001", "LOCK")

        assert len(_tasks(client, "C-001")) == 2
        assert len(_tasks(client, "C-001", include_executed=False)) == 1


# ═════════════════════════════════════════════════════════════════════════════
# 2. GATE
# ═════════════════════════════════════════════════════════════════════════════


class TestGate:

    def test_open_mandatory_task_blocks_activate(self, client, customer):
        _definition("T1", commands=("ACTIVATE",), mandatory=True)
        _attach(client, "C-001", "T1")
        event_bus.reset()

        res = _command(client, "C-001", "ACTIVATE")

        assert res.status_code == 409
        body = res.get_json()
        assert body["error"] == "Open Tasks for customer C-001 exists."
        assert body["code"] == "ERR_CONFLICT_STATE"
        assert body["details"]["tasks"] == ["T1"]

        c = Customer.query.filter_by(identifier="C-001").first()
        assert c.current_state == "PENDING"
        assert CustomerCommand.query.filter_by(customer_id=c.id).count() == 0
        assert event_bus.recent() == []

    def test_optional_task_does_not_block(self, client, customer):
        _definition("T1", commands=("ACTIVATE",), mandatory=False)
        _attach(client, "C-001", "T1")

        assert _command(client, "C-001", "ACTIVATE").status_code == 202

    def test_irrelevant_mandatory_task_does_not_block(self, client, customer):
        _definition("T1", commands=("UNLOCK",), mandatory=True)
        _attach(client, "C-001", "T1")

        assert _command(client, "C-001", "ACTIVATE").status_code == 202

    def test_executed_task_no_longer_blocks(self, client, customer):
        _definition("T1", commands=("ACTIVATE",), mandatory=True)
        _attach(client, "C-001", "T1")
        assert _command(client, "C-001", "ACTIVATE").status_code == 409

        assert _execute(client, "C-001", "T1").status_code == 202

        assert _command(client, "C-001", "ACTIVATE").status_code == 202

    def test_predefined_mandatory_unlock_task_gates_unlock(self, client, customer):
        _definition("T-UNL", commands=("UNLOCK",), mandatory=True, predefined=True)
        _command(client, "C-001", "ACTIVATE")
        _command(client, "C-001", "LOCK")

        assert _command(client, "C-001", "UNLOCK").status_code == 409
        _execute(client, "C-001", "T-UNL")
        assert _command(client, "C-001", "UNLOCK").status_code == 202

    def test_stacked_duplicate_keeps_blocking(self, client, customer):
        _definition("T1", commands=("ACTIVATE",), mandatory=True)
        _attach(client, "C-001", "T1")
        _attach(client, "C-001", "T1")

        _execute(client, "C-001", "T1")
        assert _command(client, "C-001", "ACTIVATE").status_code == 409

        _execute(client, "C-001", "T1")
        assert _command(client, "C-001", "ACTIVATE").status_code == 202

    def test_wrong_state_checked_before_gate(self, client, customer):
        _definition("T-REO", commands=("REOPEN",), mandatory=True)
        _attach(client, "C-001", "T-REO")

        # PENDING customer cannot REOPEN: 400 even though a gate task is open
        assert _command(client, "C-001", "REOPEN").status_code == 400

    def test_has_open_mandatory_tasks(self, client, customer):
        _definition("T1", commands=("ACTIVATE",), mandatory=True)
        _attach(client, "C-001", "T1")
        c = Customer.query.filter_by(identifier="C-001").first()

        assert task_service.has_open_mandatory_tasks(c, "ACTIVATE") is True
        assert task_service.has_open_mandatory_tasks(c, "UNLOCK") is False


# ═════════════════════════════════════════════════════════════════════════════
# 3. EXECUTION PRECONDITIONS
# ═════════════════════════════════════════════════════════════════════════════


class TestIdCardTask:

    def test_activation_scenario(self, client, customer):
        _definition("T1", type="ID_CARD", commands=("ACTIVATE",), mandatory=True)
        assert _attach(client, "C-001", "T1").status_code == 202

        assert _command(client, "C-001", "ACTIVATE").status_code == 409

        res = _execute(client, "C-001", "T1")
        assert res.status_code == 409
        assert res.get_json()["error"] == "No identification cards for customer found."

        assert _add_card(client, "C-001").status_code == 202
        assert _execute(client, "C-001", "T1").status_code == 202
        assert _command(client, "C-001", "ACTIVATE").status_code == 202

        assert client.get(f"{BASE}/C-001").get_json()["current_state"] == "ACTIVE"

    def test_card_of_other_customer_does_not_count(self, client, make_customer):
        make_customer("C-001")
        make_customer("C-002")
        _definition("T1", type="ID_CARD")
        _attach(client, "C-001", "T1")
        _add_card(client, "C-002")

        assert _execute(client, "C-001", "T1").status_code == 409


class TestFourEyesTask:

    @pytest.fixture()
    def four_eyes(self, client, make_customer):
        make_customer("C-001", user="creator", assigned_employee="employee")
        _definition("T4", type="FOUR_EYES")
        _attach(client, "C-001", "T4")

    @pytest.mark.parametrize("user", ["creator", "employee"])
    def test_same_person_rejected(self, client, four_eyes, user):
        res = _execute(client, "C-001", "T4", user=user)

        assert res.status_code == 409
        assert res.get_json()["error"] == "Signing user must be different than creator."

    def test_second_person_accepted(self, client, four_eyes):
        res = _execute(client, "C-001", "T4", user="supervisor")
        assert res.status_code == 202

        tasks = _tasks(client, "C-001")
        assert tasks[0]["executed_by"] == "supervisor"
        assert tasks[0]["executed_on"] is not None


class TestExecuteTask:

    def test_custom_task_has_no_precondition(self, client, customer):
        _definition("T1")
        _attach(client, "C-001", "T1")

        assert _execute(client, "C-001", "T1", user="creator").status_code == 202

    def test_no_open_instance(self, client, customer):
        _definition("T1")
        assert _execute(client, "C-001", "T1").status_code == 404

    def test_already_executed(self, client, customer):
        _definition("T1")
        _attach(client, "C-001", "T1")
        _execute(client, "C-001", "T1")

        assert _execute(client, "C-001", "T1").status_code == 404

    def test_unknown_task(self, client, customer):
        assert _execute(client, "C-001", "NOPE").status_code == 404

    def test_unknown_customer(self, client):
        _definition("T1")
        assert _execute(client, "NOPE", "T1").status_code == 404

    def test_executes_oldest_open_instance(self, client, customer):
        _definition("T1")
        _attach(client, "C-001", "T1")
        _attach(client, "C-001", "T1")

        _execute(client, "C-001", "T1")

        instances = TaskInstance.query.order_by(TaskInstance.id).all()
        assert instances[0].executed_by == "officer"
        assert instances[1].executed_by is None

    def test_execute_publishes_put_customer(self, client, customer):
        _definition("T1")
        _attach(client, "C-001", "T1")
        event_bus.reset()

        _execute(client, "C-001", "T1")

        events = event_bus.recent()
        assert [e["selector"] for e in events] == ["put-customer"]
        assert events[0]["payload"] == {"identifier": "C-001", "task": "T1"}


# ═════════════════════════════════════════════════════════════════════════════
# 4. MANUAL ATTACH & LISTING
# ═════════════════════════════════════════════════════════════════════════════


class TestCustomerTasks:

    def test_manual_attach_ignores_flags(self, client, customer):
        _definition("T1", commands=(), mandatory=False, predefined=False)

        assert _attach(client, "C-001", "T1").status_code == 202
        assert len(_tasks(client, "C-001")) == 1

    def test_attach_unknown_task(self, client, customer):
        assert _attach(client, "C-001", "NOPE").status_code == 404

    def test_attach_unknown_customer(self, client):
        _definition("T1")
        assert _attach(client, "NOPE", "T1").status_code == 404

    def test_list_filters_executed(self, client, customer):
        _definition("T1")
        _definition("T2")
        _attach(client, "C-001", "T1")
        _attach(client, "C-001", "T2")
        _execute(client, "C-001", "T1")

        assert len(_tasks(client, "C-001", include_executed=True)) == 2
        open_tasks = _tasks(client, "C-001", include_executed=False)
        assert [t["task_definition"]["identifier"] for t in open_tasks] == ["T2"]

    def test_list_defaults_to_all(self, client, customer):
        _definition("T1")
        _attach(client, "C-001", "T1")
        _execute(client, "C-001", "T1")

        assert len(client.get(f"{BASE}/C-001/tasks").get_json()) == 1

    def test_list_unknown_customer(self, client):
        assert client.get(f"{BASE}/NOPE/tasks").status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# 5. PROCESS STEPS
# ═════════════════════════════════════════════════════════════════════════════


class TestProcessSteps:

    def test_pending_customer(self, client, customer):
        steps = client.get(f"{BASE}/C-001/actions").get_json()

        assert [s["action"] for s in steps] == ["ACTIVATE", "CLOSE"]
        assert all(s["task_definitions"] == [] for s in steps)
        assert not any(s["blocked"] for s in steps)

    def test_blocking_task_listed_once(self, client, customer):
        _definition("T1", commands=("ACTIVATE",), mandatory=True)
        _definition("T2", commands=("ACTIVATE",), mandatory=False)
        _attach(client, "C-001", "T1")
        _attach(client, "C-001", "T1")
        _attach(client, "C-001", "T2")

        steps = {s["action"]: s for s in client.get(f"{BASE}/C-001/actions").get_json()}

        assert [d["identifier"] for d in steps["ACTIVATE"]["task_definitions"]] == ["T1", "T2"]
        assert steps["ACTIVATE"]["blocked"] is True
        assert steps["CLOSE"]["blocked"] is False

    def test_optional_tasks_do_not_block(self, client, customer):
        _definition("T2", commands=("ACTIVATE",), mandatory=False)
        _attach(client, "C-001", "T2")

        steps = {s["action"]: s for s in client.get(f"{BASE}/C-001/actions").get_json()}
        assert steps["ACTIVATE"]["blocked"] is False

    @pytest.mark.parametrize("actions,expected", [
        (["ACTIVATE"], ["LOCK", "CLOSE"]),
        (["ACTIVATE", "LOCK"], ["UNLOCK", "CLOSE"]),
        (["CLOSE"], ["REOPEN"]),
    ])
    def test_steps_follow_state(self, client, customer, actions, expected):
        for action in actions:
            _command(client, "C-001", action)

        steps = client.get(f"{BASE}/C-001/actions").get_json()
        assert [s["action"] for s in steps] == expected

    def test_unknown_customer(self, client):
        assert client.get(f"{BASE}/NOPE/actions").status_code == 404
