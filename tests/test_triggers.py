import datetime
import json
import random
from zoneinfo import ZoneInfo

from autoscore.services import triggers
from autoscore.services.triggers import TriggerContext

TZ = ZoneInfo("Asia/Shanghai")


def _now(hour: int = 10, minute: int = 30) -> datetime.datetime:
    return datetime.datetime(2024, 5, 1, hour, minute, 0, tzinfo=TZ)


def test_interval_without_history_waits_full_interval():
    now = _now()
    result = triggers.interval_time_trigger.calculate_next_time("15", None, now)

    assert result.delay_ms == 15 * 60_000
    assert result.next_execute_time == now + datetime.timedelta(minutes=15)


def test_interval_counts_from_last_execution():
    now = _now()
    last = now - datetime.timedelta(minutes=4, seconds=30)
    result = triggers.interval_time_trigger.calculate_next_time("5", last, now)

    assert result.delay_ms == 30_000
    assert result.next_execute_time == now + datetime.timedelta(seconds=30)


def test_interval_overdue_fires_immediately_once():
    now = _now()
    last = now - datetime.timedelta(hours=3)
    result = triggers.interval_time_trigger.calculate_next_time("10", last, now)

    assert result.delay_ms == 0
    assert result.next_execute_time == now


def test_interval_last_executed_in_future_treated_as_now():
    now = _now()
    last = now + datetime.timedelta(minutes=20)
    result = triggers.interval_time_trigger.calculate_next_time("10", last, now)

    assert result.delay_ms == 10 * 60_000


def test_interval_validation():
    validate = triggers.interval_time_trigger.validate
    assert validate("30").valid is True
    assert validate("0").valid is False
    assert validate("-5").valid is False
    assert validate("abc").valid is False
    assert validate("").valid is False


def test_random_time_stays_within_configured_hours():
    now = _now(hour=7, minute=0)
    value = json.dumps({"minHour": 9, "maxHour": 11})
    for seed in range(50):
        result = triggers._random_next_time(value, None, now, rng=random.Random(seed))
        assert result.next_execute_time > now
        assert 9 <= result.next_execute_time.hour <= 11
        assert result.next_execute_time.second == 0
        assert result.delay_ms == (result.next_execute_time - now) // datetime.timedelta(milliseconds=1)


def test_random_time_rolls_to_next_day_when_window_passed():
    now = _now(hour=20, minute=0)
    value = json.dumps({"minHour": 9, "maxHour": 18})
    for seed in range(20):
        result = triggers._random_next_time(value, None, now, rng=random.Random(seed))
        assert result.next_execute_time.date() == datetime.date(2024, 5, 2)
        assert 9 <= result.next_execute_time.hour <= 18
        assert 0 < result.delay_ms <= 24 * 3600 * 1000


def test_random_time_single_hour_window_is_always_in_future():
    now = _now(hour=10, minute=30)
    value = json.dumps({"minHour": 10, "maxHour": 10})
    for seed in range(30):
        result = triggers._random_next_time(value, None, now, rng=random.Random(seed))
        assert result.next_execute_time > now
        assert result.next_execute_time.hour == 10


def test_random_time_defaults_when_keys_missing():
    assert triggers._hour_range("") == (9, 18)
    assert triggers._hour_range("{}") == (9, 18)
    assert triggers._hour_range(json.dumps({"maxHour": 12})) == (9, 12)


def test_random_time_validation():
    validate = triggers.random_time_trigger.validate
    assert validate(json.dumps({"minHour": 8, "maxHour": 17})).valid is True
    assert validate("").valid is True
    assert validate(json.dumps({"minHour": 18, "maxHour": 9})).valid is False
    assert validate(json.dumps({"minHour": 9, "maxHour": 24})).valid is False
    assert validate(json.dumps({"minHour": 19})).valid is False
    assert validate("not json").valid is False


def test_tag_check_matches_case_insensitively():
    students = [
        {"id": 1, "name": "Alice", "tags": ["VIP"]},
        {"id": 2, "name": "Bob", "tags": []},
        {"id": 3, "name": "Cara", "tags": ["vip", "late"]},
    ]
    ctx = TriggerContext(students=students, rule=None, now=_now())
    result = triggers.student_tag_trigger.check(ctx, "vip")

    assert result.should_execute is True
    assert [s["name"] for s in result.matched_students] == ["Alice", "Cara"]


def test_tag_check_without_match_does_not_execute():
    students = [{"id": 1, "name": "Alice", "tags": ["late"]}]
    ctx = TriggerContext(students=students, rule=None, now=_now())
    result = triggers.student_tag_trigger.check(ctx, "vip")

    assert result.should_execute is False
    assert result.matched_students == []


def test_registry_resolves_aliases_and_unknown_kinds():
    registry = triggers.default_trigger_registry()

    assert registry.get("interval_time_passed") is triggers.interval_time_trigger
    assert registry.get("random_time") is triggers.random_time_trigger
    assert registry.get("student_tag_added") is triggers.student_tag_trigger
    assert registry.get("weather_changed") is None


def test_registry_options_describe_each_kind():
    options = {item["value"]: item for item in triggers.default_trigger_registry().options()}

    assert set(options) == {"interval_time_passed", "random_time_reached", "student_tag_matched"}
    assert options["interval_time_passed"]["timing"] is True
    assert options["student_tag_matched"]["condition"] is True
    assert options["student_tag_matched"]["timing"] is False
