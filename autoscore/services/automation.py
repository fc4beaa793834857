"""
Auto-score service: the management facade of the automation engine.

The service owns the in-memory rule list, which is authoritative for the
running process. It wires the rule store, the scheduler and the executor
together and exposes the operations used by the management API.
"""

from __future__ import annotations

import datetime
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union
from zoneinfo import ZoneInfo

from sqlalchemy.orm import sessionmaker

from ..core.errors import RuleValidationError, log_exception
from ..schemas.automation import ActionItem, AutomationRule, RuleCreate, RuleUpdate, TriggerItem
from .actions import ActionRegistry, action_registry as default_actions
from .executor import RuleExecutor
from .file_system import FileSystemService
from .rule_store import RuleStore
from .scheduler import RuleScheduler
from .score_ledger import ScoreLedger
from .settings_store import SettingsStore
from .students import StudentRepository
from .triggers import TriggerRegistry, trigger_registry as default_triggers

logger = logging.getLogger("AutoScore")


def local_clock(tz_name: Optional[str] = None) -> Callable[[], datetime.datetime]:
    """Clock returning aware local time, in ``tz_name`` when given."""
    tz = ZoneInfo(tz_name) if tz_name else None

    def _now() -> datetime.datetime:
        if tz is not None:
            return datetime.datetime.now(tz)
        return datetime.datetime.now().astimezone()

    return _now


def validate_rule_content(
    name: Optional[str],
    triggers: List[TriggerItem],
    actions: List[ActionItem],
    trigger_registry: TriggerRegistry,
    action_registry: ActionRegistry,
) -> None:
    if name is not None and not name.strip():
        raise RuleValidationError("Rule name is required", field="name")
    for index, trigger in enumerate(triggers):
        logic = trigger_registry.get(trigger.kind)
        if logic is None:
            raise RuleValidationError(f"Unknown trigger kind: {trigger.kind}", field=f"triggers[{index}]")
        result = logic.validate(trigger.value)
        if not result.valid:
            raise RuleValidationError(
                f"Invalid {trigger.kind} trigger: {result.message}", field=f"triggers[{index}]"
            )
    for index, action in enumerate(actions):
        logic = action_registry.get(action.kind)
        if logic is None:
            raise RuleValidationError(f"Unknown action kind: {action.kind}", field=f"actions[{index}]")
        result = logic.validate(action.value)
        if not result.valid:
            raise RuleValidationError(
                f"Invalid {action.kind} action: {result.message}", field=f"actions[{index}]"
            )


class AutoScoreService:
    def __init__(
        self,
        store: RuleStore,
        students: Any,
        ledger: Any,
        *,
        triggers: Optional[TriggerRegistry] = None,
        actions: Optional[ActionRegistry] = None,
        clock: Optional[Callable[[], datetime.datetime]] = None,
    ) -> None:
        self.store = store
        self.triggers = triggers or default_triggers
        self.actions = actions or default_actions
        self.clock = clock or local_clock()
        self.rules: List[AutomationRule] = []
        self._highest_id = 0
        self.started = False
        self.scheduler = RuleScheduler(self.triggers, self._fire_rule, self._find_rule, clock=self.clock)
        self.executor = RuleExecutor(
            students,
            ledger,
            self.triggers,
            self.actions,
            self._persist,
            clock=self.clock,
        )

    # lifecycle

    async def start(self) -> None:
        if self.started:
            self.scheduler.clear_all()
        self.scheduler.reopen()
        self.rules = await self.store.load()
        self._highest_id = max([self._highest_id] + [rule.id for rule in self.rules])
        for rule in self.rules:
            if rule.enabled:
                self.scheduler.arm(rule)
        self.started = True
        logger.info(
            "Auto score engine started rules=%s armed=%s",
            len(self.rules),
            len(self.scheduler.armed_rule_ids),
        )

    async def restart(self) -> None:
        self.scheduler.clear_all()
        await self.start()

    async def dispose(self) -> None:
        await self.scheduler.shutdown(wait=True)
        await self.store.close()
        self.started = False
        logger.info("Auto score engine stopped")

    # management operations

    def get_rules(self) -> List[AutomationRule]:
        return [rule.model_copy(deep=True) for rule in self.rules]

    async def add_rule(self, payload: Union[RuleCreate, dict]) -> int:
        if isinstance(payload, dict):
            payload = RuleCreate.model_validate(payload)
        validate_rule_content(payload.name, payload.triggers, payload.actions, self.triggers, self.actions)
        new_id = max([self._highest_id] + [rule.id for rule in self.rules]) + 1
        self._highest_id = new_id
        rule = AutomationRule(id=new_id, last_executed=None, **payload.model_dump())
        self.rules.append(rule)
        await self._persist()
        if rule.enabled:
            self.scheduler.arm(rule)
        logger.info("Rule added rule_id=%s name=%s enabled=%s", rule.id, rule.name, rule.enabled)
        return new_id

    async def update_rule(self, payload: Union[RuleUpdate, dict]) -> bool:
        if isinstance(payload, dict):
            payload = RuleUpdate.model_validate(payload)
        rule = self._find_rule(payload.id)
        if rule is None:
            return False
        changes = {
            key: getattr(payload, key)
            for key in payload.model_dump(exclude_unset=True, exclude={"id"})
            if getattr(payload, key) is not None
        }
        validate_rule_content(
            changes.get("name"),
            changes.get("triggers", rule.triggers),
            changes.get("actions", rule.actions),
            self.triggers,
            self.actions,
        )
        self.scheduler.clear(rule.id)
        # In place, so a firing already holding this rule records onto it.
        for key, value in changes.items():
            setattr(rule, key, value)
        await self._persist()
        if rule.enabled:
            self.scheduler.arm(rule)
        logger.info("Rule updated rule_id=%s fields=%s", rule.id, sorted(changes))
        return True

    async def delete_rule(self, rule_id: int) -> bool:
        rule = self._find_rule(rule_id)
        if rule is None:
            return False
        self.scheduler.clear(rule_id)
        self.rules = [r for r in self.rules if r.id != rule_id]
        await self._persist()
        logger.info("Rule deleted rule_id=%s", rule_id)
        return True

    async def toggle_rule(self, rule_id: int, enabled: bool) -> bool:
        rule = self._find_rule(rule_id)
        if rule is None:
            return False
        rule.enabled = bool(enabled)
        self.scheduler.clear(rule_id)
        if rule.enabled:
            self.scheduler.arm(rule)
        await self._persist()
        logger.info("Rule toggled rule_id=%s enabled=%s", rule_id, rule.enabled)
        return True

    def is_enabled(self) -> bool:
        return any(rule.enabled for rule in self.rules)

    def get_status(self) -> Dict[str, bool]:
        return {"enabled": self.is_enabled()}

    def get_schedule(self) -> List[dict]:
        items = []
        for rule in self.rules:
            run = self.scheduler.next_run(rule.id)
            items.append(
                {
                    "ruleId": rule.id,
                    "name": rule.name,
                    "enabled": rule.enabled,
                    "state": self.scheduler.state(rule.id).value,
                    "primaryTrigger": run.primary_trigger if run else None,
                    "nextExecuteTime": run.next_execute_time.isoformat() if run else None,
                    "lastExecuted": rule.last_executed.isoformat() if rule.last_executed else None,
                }
            )
        return items

    def trigger_options(self) -> List[dict]:
        return self.triggers.options()

    def action_options(self) -> List[dict]:
        return self.actions.options()

    # internals

    def _find_rule(self, rule_id: int) -> Optional[AutomationRule]:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None

    async def _fire_rule(self, rule_id: int) -> bool:
        rule = self._find_rule(rule_id)
        if rule is None or not rule.enabled:
            return True
        report = await self.executor.run(rule)
        return report is not None

    async def _persist(self) -> bool:
        ok = await self.store.save(self.rules)
        if not ok:
            logger.warning("Rules not persisted; in-memory rules remain authoritative")
        return ok


def build_auto_score_service(
    data_dir: Path,
    session_factory: sessionmaker,
    *,
    tz_name: Optional[str] = None,
) -> AutoScoreService:
    """Wire the engine to the database-backed collaborators."""
    files: Optional[FileSystemService] = FileSystemService(data_dir)
    try:
        files.ensure_dirs()
    except OSError as exc:
        log_exception(logger, "Config root unavailable; rules fall back to settings store", extra={"path": str(data_dir)}, exc=exc)
        files = None
    store = RuleStore(files, SettingsStore(session_factory))
    return AutoScoreService(
        store,
        StudentRepository(session_factory),
        ScoreLedger(session_factory),
        clock=local_clock(tz_name),
    )
