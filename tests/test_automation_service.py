import asyncio
import datetime
import threading
import time

import pytest

from autoscore.core.errors import RuleValidationError
from autoscore.services.automation import AutoScoreService
from autoscore.services.rule_store import RULES_FILE_NAME, RuleStore
from autoscore.services.scheduler import RuleState
from autoscore.services.triggers import TimingResult, TriggerLogic, TriggerRegistry, ValidationResult

NOW = datetime.datetime(2024, 5, 1, 9, 0, tzinfo=datetime.timezone.utc)


class _DummyFiles:
    def __init__(self) -> None:
        self.data = {}

    def read_json_file(self, name: str, namespace: str = "automatic"):
        return self.data.get((namespace, name))

    def write_json_file(self, name: str, data, namespace: str = "automatic") -> bool:
        self.data[(namespace, name)] = data
        return True


class _DummySettings:
    def __init__(self) -> None:
        self.raw = {}

    def get_all_raw(self) -> dict:
        return dict(self.raw)

    def set_raw(self, key: str, value: str) -> None:
        self.raw[key] = value


class _DummyStudents:
    def find_all(self):
        return [{"id": 1, "name": "Alice", "tags": []}]

    def update(self, student_id: int, partial: dict) -> None:
        pass


class _DummyLedger:
    def create(self, event: dict) -> int:
        return 1


def _service(files=None) -> AutoScoreService:
    store = RuleStore(files or _DummyFiles(), _DummySettings())
    return AutoScoreService(store, _DummyStudents(), _DummyLedger(), clock=lambda: NOW)


def _payload(name: str = "Hourly", **overrides) -> dict:
    data = {
        "name": name,
        "studentNames": ["Alice"],
        "triggers": [{"kind": "interval_time_passed", "value": "60"}],
        "actions": [{"kind": "add_score", "value": "1"}],
    }
    data.update(overrides)
    return data


def _run(service: AutoScoreService, scenario):
    async def _main():
        await service.start()
        try:
            return await scenario(service)
        finally:
            await service.dispose()

    return asyncio.run(_main())


def test_add_rule_assigns_increasing_ids_and_persists():
    files = _DummyFiles()

    async def scenario(service):
        first = await service.add_rule(_payload("First"))
        second = await service.add_rule(_payload("Second"))
        return first, second, service.scheduler.armed_rule_ids

    first, second, armed = _run(_service(files), scenario)

    assert (first, second) == (1, 2)
    assert armed == [1, 2]
    stored = files.data[("automatic", RULES_FILE_NAME)]
    assert [r["name"] for r in stored["rules"]] == ["First", "Second"]
    assert stored["rules"][0]["studentNames"] == ["Alice"]


def test_deleted_rule_ids_are_not_reused():
    async def scenario(service):
        await service.add_rule(_payload("One"))
        second = await service.add_rule(_payload("Two"))
        assert await service.delete_rule(second) is True
        return await service.add_rule(_payload("Three"))

    assert _run(_service(), scenario) == 3


def test_ids_continue_after_restart():
    files = _DummyFiles()

    async def seed(service):
        await service.add_rule(_payload("One"))
        await service.add_rule(_payload("Two"))

    _run(_service(files), seed)

    async def scenario(service):
        return await service.add_rule(_payload("Three"))

    assert _run(_service(files), scenario) == 3


def test_invalid_rules_are_rejected():
    async def scenario(service):
        errors = []
        bad_payloads = [
            _payload(triggers=[{"kind": "moon_phase", "value": "full"}]),
            _payload(triggers=[{"kind": "interval_time_passed", "value": "0"}]),
            _payload(actions=[{"kind": "add_score", "value": "lots"}]),
            _payload(name="   "),
        ]
        for payload in bad_payloads:
            with pytest.raises(RuleValidationError) as exc:
                await service.add_rule(payload)
            errors.append(exc.value.field)
        return errors, service.get_rules()

    fields, rules = _run(_service(), scenario)

    assert fields == ["triggers[0]", "triggers[0]", "actions[0]", "name"]
    assert rules == []


def test_missing_rule_operations_return_false():
    async def scenario(service):
        return (
            await service.update_rule({"id": 42, "name": "Nobody"}),
            await service.delete_rule(42),
            await service.toggle_rule(42, False),
        )

    assert _run(_service(), scenario) == (False, False, False)


def test_update_rule_keeps_last_executed_and_rearms():
    async def scenario(service):
        rule_id = await service.add_rule(_payload())
        rule = service._find_rule(rule_id)
        rule.last_executed = NOW - datetime.timedelta(minutes=45)
        ok = await service.update_rule({"id": rule_id, "name": "Renamed"})
        return ok, service.get_rules()[0], service.scheduler.next_run(rule_id)

    ok, rule, run = _run(_service(), scenario)

    assert ok is True
    assert rule.name == "Renamed"
    assert rule.last_executed == NOW - datetime.timedelta(minutes=45)
    assert run.delay_ms == 15 * 60_000


def test_toggle_rule_controls_scheduling_and_status():
    async def scenario(service):
        rule_id = await service.add_rule(_payload())
        await service.toggle_rule(rule_id, False)
        disabled = (service.scheduler.state(rule_id), service.get_status())
        await service.toggle_rule(rule_id, True)
        enabled = (service.scheduler.state(rule_id), service.get_status())
        return disabled, enabled

    disabled, enabled = _run(_service(), scenario)

    assert disabled == (RuleState.UNSCHEDULED, {"enabled": False})
    assert enabled == (RuleState.PENDING, {"enabled": True})


def test_get_rules_returns_copies():
    async def scenario(service):
        await service.add_rule(_payload())
        copy = service.get_rules()[0]
        copy.name = "Mutated"
        return service.get_rules()[0].name

    assert _run(_service(), scenario) == "Hourly"


def test_schedule_reports_each_rule():
    async def scenario(service):
        armed = await service.add_rule(_payload("Armed"))
        await service.add_rule(_payload("Tag only", triggers=[{"kind": "student_tag_matched", "value": "vip"}]))
        return armed, service.get_schedule()

    armed, schedule = _run(_service(), scenario)

    by_name = {item["name"]: item for item in schedule}
    assert by_name["Armed"]["ruleId"] == armed
    assert by_name["Armed"]["state"] == "pending"
    assert by_name["Armed"]["primaryTrigger"] == "interval_time_passed"
    assert by_name["Tag only"]["state"] == "unscheduled"
    assert by_name["Tag only"]["nextExecuteTime"] is None


def test_start_arms_enabled_rules_from_store():
    files = _DummyFiles()
    files.data[("automatic", RULES_FILE_NAME)] = {
        "version": 1,
        "rules": [
            {"id": 4, "name": "On", "enabled": True, "triggers": [{"kind": "interval_time_passed", "value": "5"}], "actions": []},
            {"id": 9, "name": "Off", "enabled": False, "triggers": [{"kind": "interval_time_passed", "value": "5"}], "actions": []},
        ],
    }

    async def scenario(service):
        return service.scheduler.armed_rule_ids, service.is_enabled()

    assert _run(_service(files), scenario) == ([4], True)


class _SlowLedger:
    def __init__(self) -> None:
        self.calls = []
        self.entered = threading.Event()

    def create(self, event: dict) -> int:
        self.entered.set()
        time.sleep(0.05)
        self.calls.append(event)
        return len(self.calls)


def _tick_registry() -> TriggerRegistry:
    tick = TriggerLogic(
        kind="tick",
        label="Tick",
        description="Fires every few milliseconds.",
        validate=lambda value: ValidationResult(True),
        calculate_next_time=lambda value, last, now: TimingResult(
            delay_ms=int(value), next_execute_time=now + datetime.timedelta(milliseconds=int(value))
        ),
    )
    return TriggerRegistry([tick])


def test_dispose_during_firing_stops_all_timers():
    ledger = _SlowLedger()
    store = RuleStore(_DummyFiles(), _DummySettings())
    service = AutoScoreService(store, _DummyStudents(), ledger, triggers=_tick_registry(), clock=lambda: NOW)

    async def _main():
        await service.start()
        await service.add_rule(_payload("Fast", triggers=[{"kind": "tick", "value": "10"}]))
        while not ledger.entered.is_set():
            await asyncio.sleep(0.005)
        await service.dispose()
        armed = service.scheduler.armed_rule_ids
        count = len(ledger.calls)
        await asyncio.sleep(0.3)
        return armed, count, len(ledger.calls)

    armed, count, later = asyncio.run(_main())

    assert armed == []
    assert later == count
    assert service.started is False


def test_start_after_dispose_schedules_again():
    store = RuleStore(_DummyFiles(), _DummySettings())
    service = AutoScoreService(store, _DummyStudents(), _DummyLedger(), clock=lambda: NOW)

    async def _main():
        await service.start()
        rule_id = await service.add_rule(_payload())
        await service.dispose()
        after_dispose = service.scheduler.armed_rule_ids
        await service.start()
        rearmed = service.scheduler.armed_rule_ids
        await service.dispose()
        return rule_id, after_dispose, rearmed

    rule_id, after_dispose, rearmed = asyncio.run(_main())

    assert after_dispose == []
    assert rearmed == [rule_id]
