import asyncio
import datetime
import json
from zoneinfo import ZoneInfo

from autoscore.schemas.automation import AutomationRule
from autoscore.services.scheduler import RuleScheduler, RuleState, compute_next_run
from autoscore.services.triggers import (
    TimingResult,
    TriggerLogic,
    TriggerRegistry,
    ValidationResult,
    default_trigger_registry,
)

TZ = ZoneInfo("Asia/Shanghai")
NOW = datetime.datetime(2024, 5, 1, 20, 0, tzinfo=TZ)


def _rule(triggers, *, rule_id: int = 1, enabled: bool = True) -> AutomationRule:
    return AutomationRule(
        id=rule_id,
        name=f"Rule {rule_id}",
        enabled=enabled,
        triggers=triggers,
        actions=[{"kind": "add_score", "value": "1"}],
    )


def _tick_registry(seen_last: list | None = None) -> TriggerRegistry:
    def _next(value, last_executed, now):
        if seen_last is not None:
            seen_last.append(last_executed)
        delay = int(value)
        return TimingResult(delay_ms=delay, next_execute_time=now + datetime.timedelta(milliseconds=delay))

    tick = TriggerLogic(
        kind="tick",
        label="Tick",
        description="Fires after a few milliseconds.",
        validate=lambda value: ValidationResult(True),
        calculate_next_time=_next,
    )
    return TriggerRegistry([tick])


def test_earliest_timing_trigger_becomes_primary():
    registry = default_trigger_registry()
    rule = _rule(
        [
            {"kind": "random_time_reached", "value": json.dumps({"minHour": 9, "maxHour": 18})},
            {"kind": "interval_time_passed", "value": "10"},
        ]
    )

    run = compute_next_run(rule, registry, NOW)

    assert run.primary_trigger == "interval_time_passed"
    assert run.delay_ms == 10 * 60_000


def test_random_time_wins_over_long_interval():
    registry = default_trigger_registry()
    rule = _rule(
        [
            {"kind": "interval_time_passed", "value": str(3 * 24 * 60)},
            {"kind": "random_time", "value": json.dumps({"minHour": 9, "maxHour": 18})},
        ]
    )

    run = compute_next_run(rule, registry, NOW)

    assert run.primary_trigger == "random_time_reached"
    assert run.next_execute_time.date() == datetime.date(2024, 5, 2)


def test_rule_without_timing_trigger_stays_unscheduled():
    registry = default_trigger_registry()
    rule = _rule([{"kind": "student_tag_matched", "value": "vip"}, {"kind": "weather", "value": "rain"}])

    async def _run():
        scheduler = RuleScheduler(registry, _never, lambda _id: rule, clock=lambda: NOW)
        run = scheduler.arm(rule)
        return run, scheduler.state(rule.id), scheduler.armed_rule_ids

    run, state, armed = asyncio.run(_run())

    assert run is None
    assert state is RuleState.UNSCHEDULED
    assert armed == []


async def _never(_rule_id):
    raise AssertionError("should not fire")


def test_fired_rule_is_rearmed_until_disabled():
    rule = _rule([{"kind": "tick", "value": "5"}])
    fired = []

    async def _on_fire(rule_id):
        fired.append(rule_id)
        return True

    async def _run():
        scheduler = RuleScheduler(_tick_registry(), _on_fire, lambda _id: rule, clock=lambda: NOW)
        scheduler.arm(rule)
        await asyncio.sleep(0.2)
        assert len(fired) >= 2

        rule.enabled = False
        scheduler.clear(rule.id)
        await asyncio.sleep(0.05)
        count = len(fired)
        await asyncio.sleep(0.1)
        assert len(fired) == count
        assert scheduler.state(rule.id) is RuleState.UNSCHEDULED
        await scheduler.shutdown()

    asyncio.run(_run())

    assert set(fired) == {1}


def test_failed_firing_rearms_from_fire_time():
    rule = _rule([{"kind": "tick", "value": "5"}])
    seen_last = []
    calls = []

    async def _on_fire(rule_id):
        calls.append(rule_id)
        return False

    async def _run():
        scheduler = RuleScheduler(_tick_registry(seen_last), _on_fire, lambda _id: rule, clock=lambda: NOW)
        scheduler.arm(rule)
        await asyncio.sleep(0.05)
        await scheduler.shutdown()

    asyncio.run(_run())

    assert calls
    assert seen_last[0] is None
    assert seen_last[1] == NOW
    assert rule.last_executed is None


def test_state_reports_executing_during_firing():
    rule = _rule([{"kind": "tick", "value": "1"}])
    started = None
    release = None

    async def _on_fire(_rule_id):
        started.set()
        await release.wait()
        return True

    async def _run():
        nonlocal started, release
        started = asyncio.Event()
        release = asyncio.Event()
        scheduler = RuleScheduler(_tick_registry(), _on_fire, lambda _id: rule, clock=lambda: NOW)
        scheduler.arm(rule)
        assert scheduler.state(rule.id) is RuleState.PENDING
        await started.wait()
        state = scheduler.state(rule.id)
        rule.enabled = False
        release.set()
        await scheduler.shutdown(wait=True)
        return state

    assert asyncio.run(_run()) is RuleState.EXECUTING


def test_schedule_lists_next_runs_in_time_order():
    registry = default_trigger_registry()
    slow = _rule([{"kind": "interval_time_passed", "value": "60"}], rule_id=1)
    fast = _rule([{"kind": "interval_time_passed", "value": "5"}], rule_id=2)
    rules = {1: slow, 2: fast}

    async def _run():
        scheduler = RuleScheduler(registry, _never, rules.get, clock=lambda: NOW)
        scheduler.arm(slow)
        scheduler.arm(fast)
        schedule = scheduler.schedule()
        await scheduler.shutdown()
        return schedule

    schedule = asyncio.run(_run())

    assert [run.rule_id for run in schedule] == [2, 1]
    assert schedule[0].primary_trigger == "interval_time_passed"
