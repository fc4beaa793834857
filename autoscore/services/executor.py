"""
Runs one firing of an automation rule.

A firing resolves the target students at fire time, lets condition
triggers narrow that set, applies each action to every target student in
rule order, then records ``lastExecuted`` and persists the rule set. Any
failure is contained to the rule being fired.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from ..core.errors import ExecutionError, log_exception
from ..schemas.automation import AutomationRule
from .actions import ActionContext, ActionRegistry
from .triggers import TriggerContext, TriggerRegistry


@dataclass
class ExecutionReport:
    rule_id: int
    executed_at: datetime.datetime
    target_count: int = 0
    skipped: bool = False
    actions_applied: int = 0
    student_failures: List[str] = field(default_factory=list)
    persisted: bool = False


def _student_name(student: Any) -> str:
    return student["name"] if isinstance(student, dict) else student.name


class RuleExecutor:
    def __init__(
        self,
        students: Any,
        ledger: Any,
        triggers: TriggerRegistry,
        actions: ActionRegistry,
        persist: Callable[[], Awaitable[bool]],
        *,
        clock: Callable[[], datetime.datetime],
    ) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)
        self.students = students
        self.ledger = ledger
        self.triggers = triggers
        self.actions = actions
        self.persist = persist
        self.clock = clock

    async def run(self, rule: AutomationRule) -> Optional[ExecutionReport]:
        """Execute ``rule`` once. Returns None when the firing failed."""
        self.logger.info("Executing auto score rule rule_id=%s name=%s", rule.id, rule.name)
        try:
            report = await self._execute(rule)
        except Exception as exc:
            log_exception(self.logger, "Failed to execute auto score rule", extra={"rule_id": rule.id, "name": rule.name}, exc=exc)
            return None
        self.logger.info(
            "Auto score rule executed rule_id=%s students=%s actions=%s skipped=%s",
            rule.id,
            report.target_count,
            report.actions_applied,
            report.skipped,
        )
        return report

    async def resolve_scope(self, rule: AutomationRule) -> List[Any]:
        all_students = await asyncio.to_thread(self.students.find_all)
        if not rule.student_names:
            return list(all_students)
        by_name = {}
        for student in all_students:
            by_name.setdefault(_student_name(student), student)
        return [by_name[name] for name in rule.student_names if name in by_name]

    async def _execute(self, rule: AutomationRule) -> ExecutionReport:
        now = self.clock()
        report = ExecutionReport(rule_id=rule.id, executed_at=now)
        target = await self.resolve_scope(rule)

        for trigger in rule.triggers:
            logic = self.triggers.get(trigger.kind)
            if logic is None or logic.check is None:
                continue
            context = TriggerContext(students=target, rule=rule, now=now)
            try:
                result = logic.check(context, trigger.value)
            except Exception as exc:
                raise ExecutionError(rule.id, f"trigger check {trigger.kind} failed: {exc}") from exc
            if not result.should_execute:
                report.skipped = True
                target = []
                break
            if result.matched_students:
                target = list(result.matched_students)
        report.target_count = len(target)

        action_ctx = ActionContext(
            rule=rule,
            now=now,
            students=self.students,
            ledger=self.ledger,
            logger=self.logger,
        )
        for action in rule.actions:
            logic = self.actions.get(action.kind)
            if logic is None:
                self.logger.debug("Skipping unknown action kind=%s rule_id=%s", action.kind, rule.id)
                continue
            for student in target:
                if not logic.isolate_students:
                    try:
                        await logic.apply(action_ctx, student, action)
                    except Exception as exc:
                        raise ExecutionError(
                            rule.id, f"action {action.kind} failed for {_student_name(student)}: {exc}"
                        ) from exc
                    continue
                try:
                    await logic.apply(action_ctx, student, action)
                except Exception as exc:
                    name = _student_name(student)
                    report.student_failures.append(name)
                    log_exception(
                        self.logger,
                        "Action failed for student",
                        extra={"rule_id": rule.id, "kind": action.kind, "student": name},
                        exc=exc,
                    )
            report.actions_applied += 1

        rule.last_executed = now
        report.persisted = await self.persist()
        return report
