"""
Trigger logic registry for automation rules.

Each trigger kind is a ``TriggerLogic`` record of plain functions. Timing
kinds implement ``calculate_next_time`` and drive the scheduler; condition
kinds implement ``check`` and narrow the set of students a firing applies
to. A kind may implement both.
"""

from __future__ import annotations

import datetime
import json
import random
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

DEFAULT_MIN_HOUR = 9
DEFAULT_MAX_HOUR = 18

INTERVAL_TIME_PASSED = "interval_time_passed"
RANDOM_TIME_REACHED = "random_time_reached"
STUDENT_TAG_MATCHED = "student_tag_matched"


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    message: Optional[str] = None


@dataclass(frozen=True)
class TimingResult:
    delay_ms: int
    next_execute_time: datetime.datetime


@dataclass
class TriggerContext:
    students: List[Any]
    rule: Any
    now: datetime.datetime


@dataclass
class TriggerResult:
    should_execute: bool
    matched_students: Optional[List[Any]] = None


@dataclass(frozen=True)
class TriggerLogic:
    kind: str
    label: str
    description: str
    validate: Callable[[str], ValidationResult]
    calculate_next_time: Optional[
        Callable[[str, Optional[datetime.datetime], datetime.datetime], TimingResult]
    ] = None
    check: Optional[Callable[[TriggerContext, str], TriggerResult]] = None

    @property
    def is_timing(self) -> bool:
        return self.calculate_next_time is not None

    @property
    def is_condition(self) -> bool:
        return self.check is not None


def _parse_positive_int(value: str) -> Optional[int]:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    if parsed <= 0:
        return None
    return parsed


# interval_time_passed


def _validate_interval(value: str) -> ValidationResult:
    if _parse_positive_int(value) is None:
        return ValidationResult(False, "Interval must be a positive number of minutes")
    return ValidationResult(True)


def _interval_next_time(
    value: str, last_executed: Optional[datetime.datetime], now: datetime.datetime
) -> TimingResult:
    minutes = _parse_positive_int(value)
    if minutes is None:
        return TimingResult(delay_ms=0, next_execute_time=now)
    interval_ms = minutes * 60_000
    delay_ms = interval_ms
    if last_executed is not None:
        elapsed_ms = max(0, (now - last_executed) // datetime.timedelta(milliseconds=1))
        if elapsed_ms >= interval_ms:
            # Overdue: fire once now, missed intervals are not replayed.
            delay_ms = 0
        else:
            delay_ms = interval_ms - (elapsed_ms % interval_ms)
    return TimingResult(
        delay_ms=delay_ms,
        next_execute_time=now + datetime.timedelta(milliseconds=delay_ms),
    )


# random_time_reached


def _hour_range(value: str) -> tuple[int, int]:
    """Return ``(min_hour, max_hour)``. Raises ValueError on a bad config."""
    if not value or not str(value).strip():
        return DEFAULT_MIN_HOUR, DEFAULT_MAX_HOUR
    config = json.loads(value)
    if not isinstance(config, dict):
        raise ValueError("config must be an object")
    min_hour = config.get("minHour", DEFAULT_MIN_HOUR)
    max_hour = config.get("maxHour", DEFAULT_MAX_HOUR)
    if isinstance(min_hour, bool) or isinstance(max_hour, bool):
        raise ValueError("hours must be integers")
    min_hour, max_hour = int(min_hour), int(max_hour)
    if not (0 <= min_hour <= 23 and 0 <= max_hour <= 23):
        raise ValueError("Hours must be between 0 and 23")
    if min_hour > max_hour:
        raise ValueError("minHour cannot be greater than maxHour")
    return min_hour, max_hour


def _validate_random_time(value: str) -> ValidationResult:
    try:
        _hour_range(value)
    except json.JSONDecodeError:
        return ValidationResult(False, "Random time config must be JSON like {\"minHour\": 9, \"maxHour\": 18}")
    except (TypeError, ValueError) as exc:
        return ValidationResult(False, str(exc))
    return ValidationResult(True)


def _random_next_time(
    value: str,
    last_executed: Optional[datetime.datetime],
    now: datetime.datetime,
    rng: random.Random | None = None,
) -> TimingResult:
    rng = rng or random
    try:
        min_hour, max_hour = _hour_range(value)
    except (TypeError, ValueError):
        min_hour, max_hour = DEFAULT_MIN_HOUR, DEFAULT_MAX_HOUR
    hour = rng.randint(min_hour, max_hour)
    minute = rng.randrange(60)
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target = target + datetime.timedelta(days=1)
    delay_ms = max(0, (target - now) // datetime.timedelta(milliseconds=1))
    return TimingResult(delay_ms=delay_ms, next_execute_time=target)


# student_tag_matched


def _student_tags(student: Any) -> List[str]:
    tags = student.get("tags") if isinstance(student, dict) else getattr(student, "tags", None)
    if not tags or not isinstance(tags, (list, tuple, set)):
        return []
    return [str(tag) for tag in tags]


def _validate_tag(value: str) -> ValidationResult:
    if not value or not str(value).strip():
        return ValidationResult(False, "Tag name is required")
    return ValidationResult(True)


def _check_tag(context: TriggerContext, value: str) -> TriggerResult:
    tag_name = str(value or "").strip().lower()
    matched = [
        student
        for student in context.students
        if any(tag.lower() == tag_name for tag in _student_tags(student))
    ]
    return TriggerResult(should_execute=bool(matched), matched_students=matched)


interval_time_trigger = TriggerLogic(
    kind=INTERVAL_TIME_PASSED,
    label="Interval elapsed",
    description="Fires every N minutes, counted from the last execution.",
    validate=_validate_interval,
    calculate_next_time=_interval_next_time,
)

random_time_trigger = TriggerLogic(
    kind=RANDOM_TIME_REACHED,
    label="Random time of day",
    description="Fires once at a random local time between minHour and maxHour.",
    validate=_validate_random_time,
    calculate_next_time=_random_next_time,
)

student_tag_trigger = TriggerLogic(
    kind=STUDENT_TAG_MATCHED,
    label="Student tag matched",
    description="Limits a firing to students carrying the given tag.",
    validate=_validate_tag,
    check=_check_tag,
)

TRIGGER_ALIASES: Dict[str, str] = {
    "random_time": RANDOM_TIME_REACHED,
    "student_tag_added": STUDENT_TAG_MATCHED,
}


class TriggerRegistry:
    """Lookup table from trigger kind to its logic."""

    def __init__(self, logics: Optional[List[TriggerLogic]] = None, aliases: Optional[Dict[str, str]] = None) -> None:
        self._logics: Dict[str, TriggerLogic] = {}
        self._aliases: Dict[str, str] = dict(aliases or {})
        for logic in logics or []:
            self.register(logic)

    def register(self, logic: TriggerLogic) -> None:
        self._logics[logic.kind] = logic

    def get(self, kind: str) -> Optional[TriggerLogic]:
        logic = self._logics.get(kind)
        if logic is not None:
            return logic
        mapped = self._aliases.get(kind)
        return self._logics.get(mapped) if mapped else None

    def options(self) -> List[dict]:
        return [
            {
                "label": logic.label,
                "value": logic.kind,
                "description": logic.description,
                "timing": logic.is_timing,
                "condition": logic.is_condition,
            }
            for logic in self._logics.values()
        ]


def default_trigger_registry() -> TriggerRegistry:
    return TriggerRegistry(
        [interval_time_trigger, student_tag_trigger, random_time_trigger],
        aliases=TRIGGER_ALIASES,
    )


trigger_registry = default_trigger_registry()
