"""
Action logic registry for automation rules.

Actions run once per targeted student. ``apply`` functions are coroutines;
collaborator calls that touch the database run in a worker thread so the
event loop hosting the rule timers never blocks.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..schemas.automation import ActionItem
from .triggers import ValidationResult

ADD_SCORE = "add_score"
ADD_TAG = "add_tag"
SEND_NOTIFICATION = "send_notification"
SET_STUDENT_STATUS = "set_student_status"

STUDENT_STATUSES = ("active", "inactive", "leave")

DEFAULT_REASON_TEMPLATE = "自动化加分 - {name}"


@dataclass
class ActionContext:
    rule: Any
    now: datetime.datetime
    students: Any  # student registry: find_all(), update(id, partial)
    ledger: Any  # score ledger: create({student_name, reason_content, delta})
    logger: logging.Logger


@dataclass(frozen=True)
class ActionLogic:
    kind: str
    label: str
    description: str
    validate: Callable[[str], ValidationResult]
    apply: Callable[[ActionContext, Any, ActionItem], Awaitable[None]]
    has_reason: bool = False
    # When set, a failure for one student is logged and the loop moves on.
    isolate_students: bool = False


def _student_name(student: Any) -> str:
    return student["name"] if isinstance(student, dict) else student.name


def _parse_delta(value: str) -> int:
    return int(str(value).strip())


def _validate_score(value: str) -> ValidationResult:
    try:
        _parse_delta(value)
    except (TypeError, ValueError):
        return ValidationResult(False, "Score must be an integer")
    return ValidationResult(True)


async def _apply_add_score(ctx: ActionContext, student: Any, action: ActionItem) -> None:
    delta = _parse_delta(action.value)
    reason = action.reason or DEFAULT_REASON_TEMPLATE.format(name=ctx.rule.name)
    await asyncio.to_thread(
        ctx.ledger.create,
        {
            "student_name": _student_name(student),
            "reason_content": reason,
            "delta": delta,
        },
    )


def _validate_tag(value: str) -> ValidationResult:
    if not value or not str(value).strip():
        return ValidationResult(False, "Tag name is required")
    return ValidationResult(True)


async def _apply_add_tag(ctx: ActionContext, student: Any, action: ActionItem) -> None:
    tag = action.value.strip()
    current = student.get("tags") if isinstance(student, dict) else getattr(student, "tags", None)
    tags = list(current or [])
    if tag in tags:
        return
    tags.append(tag)
    student_id = student["id"] if isinstance(student, dict) else student.id
    await asyncio.to_thread(ctx.students.update, student_id, {"tags": tags})
    # Keep the in-memory copy current for later actions in the same firing.
    if isinstance(student, dict):
        student["tags"] = tags
    else:
        student.tags = tags


def _validate_notification(value: str) -> ValidationResult:
    if not value or not str(value).strip():
        return ValidationResult(False, "Notification text is required")
    return ValidationResult(True)


async def _apply_send_notification(ctx: ActionContext, student: Any, action: ActionItem) -> None:
    # No delivery channel exists yet; the notification is only logged.
    ctx.logger.info(
        "Notification rule_id=%s student=%s message=%s",
        ctx.rule.id,
        _student_name(student),
        action.value,
    )


def _validate_status(value: str) -> ValidationResult:
    if str(value or "").strip() not in STUDENT_STATUSES:
        return ValidationResult(False, f"Status must be one of {', '.join(STUDENT_STATUSES)}")
    return ValidationResult(True)


async def _apply_set_student_status(ctx: ActionContext, student: Any, action: ActionItem) -> None:
    # Students have no status column; the request is logged and dropped.
    ctx.logger.info(
        "Status change requested rule_id=%s student=%s status=%s (not stored)",
        ctx.rule.id,
        _student_name(student),
        action.value,
    )


add_score_action = ActionLogic(
    kind=ADD_SCORE,
    label="Add score",
    description="Adds the given number of points to each student.",
    validate=_validate_score,
    apply=_apply_add_score,
    has_reason=True,
    isolate_students=True,
)

add_tag_action = ActionLogic(
    kind=ADD_TAG,
    label="Add tag",
    description="Adds a tag to each student that does not have it yet.",
    validate=_validate_tag,
    apply=_apply_add_tag,
)

send_notification_action = ActionLogic(
    kind=SEND_NOTIFICATION,
    label="Send notification",
    description="Sends a notification to each student.",
    validate=_validate_notification,
    apply=_apply_send_notification,
)

set_student_status_action = ActionLogic(
    kind=SET_STUDENT_STATUS,
    label="Set student status",
    description="Sets each student's status (active, inactive, leave).",
    validate=_validate_status,
    apply=_apply_set_student_status,
)


class ActionRegistry:
    """Lookup table from action kind to its logic."""

    def __init__(self, logics: Optional[List[ActionLogic]] = None) -> None:
        self._logics: Dict[str, ActionLogic] = {}
        for logic in logics or []:
            self.register(logic)

    def register(self, logic: ActionLogic) -> None:
        self._logics[logic.kind] = logic

    def get(self, kind: str) -> Optional[ActionLogic]:
        return self._logics.get(kind)

    def options(self) -> List[dict]:
        return [
            {
                "label": logic.label,
                "value": logic.kind,
                "description": logic.description,
                "has_reason": logic.has_reason,
            }
            for logic in self._logics.values()
        ]


def default_action_registry() -> ActionRegistry:
    return ActionRegistry(
        [add_score_action, add_tag_action, send_notification_action, set_student_status_action]
    )


action_registry = default_action_registry()
