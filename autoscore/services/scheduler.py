"""
Timer scheduling for automation rules.

``RuleScheduler`` keeps one asyncio timer handle per enabled rule. Arming a
rule asks every timing-capable trigger for its next fire time and uses the
earliest one (the primary trigger for that cycle). After a firing the rule
is re-armed with the same computation against its current state, so
interval rules correct drift and random-time rules draw a new time.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from ..core.errors import log_exception
from ..schemas.automation import AutomationRule
from .triggers import TriggerRegistry


class RuleState(str, Enum):
    UNSCHEDULED = "unscheduled"
    PENDING = "pending"
    EXECUTING = "executing"


@dataclass(frozen=True)
class ScheduledRun:
    rule_id: int
    primary_trigger: str
    delay_ms: int
    next_execute_time: datetime.datetime


def compute_next_run(
    rule: AutomationRule,
    triggers: TriggerRegistry,
    now: datetime.datetime,
    *,
    last_executed: Optional[datetime.datetime] = None,
    logger: Optional[logging.Logger] = None,
) -> Optional[ScheduledRun]:
    """Return the earliest run across the rule's timing triggers, if any."""
    logger = logger or logging.getLogger("RuleScheduler")
    reference = last_executed if last_executed is not None else rule.last_executed
    best: Optional[ScheduledRun] = None
    for trigger in rule.triggers:
        logic = triggers.get(trigger.kind)
        if logic is None or not logic.is_timing:
            continue
        try:
            result = logic.calculate_next_time(trigger.value, reference, now)
        except Exception as exc:
            log_exception(
                logger,
                "Trigger timing failed",
                extra={"rule_id": rule.id, "kind": trigger.kind},
                exc=exc,
            )
            continue
        delay_ms = max(0, int(result.delay_ms))
        if best is None or delay_ms < best.delay_ms:
            best = ScheduledRun(
                rule_id=rule.id,
                primary_trigger=logic.kind,
                delay_ms=delay_ms,
                next_execute_time=result.next_execute_time,
            )
    return best


class RuleScheduler:
    """Owns the timer handles of one engine instance."""

    def __init__(
        self,
        triggers: TriggerRegistry,
        on_fire: Callable[[int], Awaitable[Any]],
        get_rule: Callable[[int], Optional[AutomationRule]],
        *,
        clock: Callable[[], datetime.datetime],
    ) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)
        self.triggers = triggers
        self.on_fire = on_fire
        self.get_rule = get_rule
        self.clock = clock
        self._timers: Dict[int, asyncio.TimerHandle] = {}
        self._next_runs: Dict[int, ScheduledRun] = {}
        self._executing: Set[int] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    def arm(
        self, rule: AutomationRule, *, last_executed: Optional[datetime.datetime] = None
    ) -> Optional[ScheduledRun]:
        """(Re)arm ``rule``. Returns the scheduled run or None when left unscheduled."""
        self.clear(rule.id)
        if self._closed or not rule.enabled:
            return None
        run = compute_next_run(
            rule, self.triggers, self.clock(), last_executed=last_executed, logger=self.logger
        )
        if run is None:
            self.logger.warning("Rule has no timing trigger; not scheduled rule_id=%s name=%s", rule.id, rule.name)
            return None
        loop = asyncio.get_running_loop()
        self._timers[rule.id] = loop.call_later(run.delay_ms / 1000.0, self._fire, rule.id)
        self._next_runs[rule.id] = run
        self.logger.info(
            "Rule armed rule_id=%s trigger=%s delay_ms=%s next=%s",
            rule.id,
            run.primary_trigger,
            run.delay_ms,
            run.next_execute_time.isoformat(),
        )
        return run

    def clear(self, rule_id: int) -> bool:
        handle = self._timers.pop(rule_id, None)
        self._next_runs.pop(rule_id, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def clear_all(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._next_runs.clear()

    def _fire(self, rule_id: int) -> None:
        self._timers.pop(rule_id, None)
        self._next_runs.pop(rule_id, None)
        task = asyncio.get_running_loop().create_task(self._run(rule_id), name=f"auto-score-rule-{rule_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, rule_id: int) -> None:
        fired_at = self.clock()
        self._executing.add(rule_id)
        ok = False
        try:
            ok = bool(await self.on_fire(rule_id))
        except Exception as exc:
            log_exception(self.logger, "Rule firing failed", extra={"rule_id": rule_id}, exc=exc)
        finally:
            self._executing.discard(rule_id)
        self._rearm(rule_id, fired_at if not ok else None)

    def _rearm(self, rule_id: int, failed_at: Optional[datetime.datetime]) -> None:
        if self._closed:
            return
        if rule_id in self._timers:
            # Updated while executing; already armed from scratch.
            return
        rule = self.get_rule(rule_id)
        if rule is None or not rule.enabled:
            return
        # A failed firing keeps lastExecuted; schedule from the fire time so
        # an overdue interval rule does not spin.
        self.arm(rule, last_executed=failed_at)

    def state(self, rule_id: int) -> RuleState:
        if rule_id in self._executing:
            return RuleState.EXECUTING
        if rule_id in self._timers:
            return RuleState.PENDING
        return RuleState.UNSCHEDULED

    def next_run(self, rule_id: int) -> Optional[ScheduledRun]:
        return self._next_runs.get(rule_id)

    def schedule(self) -> List[ScheduledRun]:
        return sorted(self._next_runs.values(), key=lambda run: run.next_execute_time)

    def reopen(self) -> None:
        self._closed = False

    @property
    def armed_rule_ids(self) -> List[int]:
        return sorted(self._timers)

    async def shutdown(self, *, wait: bool = True) -> None:
        """Cancel all timers; optionally wait for in-flight firings to finish."""
        # Firings still in flight must not re-arm once closed.
        self._closed = True
        self.clear_all()
        if wait and self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
