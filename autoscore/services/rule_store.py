"""
Versioned JSON persistence for automation rules.

The rule document is ``{"version": 1, "rules": [...], "updatedAt": ISO}``
stored as ``auto_score_rules.json`` in the ``automatic`` namespace of the
file-access service. The settings key-value store is both the previous
storage location (read once and migrated) and the fallback when the file
cannot be written. When no file-access service is available the store runs
in degraded mode against the settings key only.

All writes pass through one writer task, so saves land in the order they
were requested and each write carries a complete snapshot of the rule set.
"""

from __future__ import annotations

import asyncio
import datetime
import json
import logging
from typing import Any, List, Optional, Tuple

from pydantic import ValidationError

from ..core.errors import PersistenceError, log_exception
from ..schemas.automation import RULE_DOCUMENT_VERSION, AutomationRule, coerce_value
from .actions import ADD_SCORE
from .triggers import INTERVAL_TIME_PASSED

RULES_FILE_NAME = "auto_score_rules.json"
RULES_NAMESPACE = "automatic"
SETTINGS_KEY = "auto_score_rules"

LEGACY_FIELDS = ("intervalMinutes", "scoreValue", "reason")

logger = logging.getLogger("RuleStore")


def is_legacy_rule(raw: dict) -> bool:
    if "triggers" in raw or "actions" in raw:
        return False
    return "intervalMinutes" in raw or "scoreValue" in raw


def migrate_rule(raw: dict) -> dict:
    """Convert a flat interval/score rule into the triggers/actions shape."""
    migrated = {key: value for key, value in raw.items() if key not in LEGACY_FIELDS}
    triggers: list[dict] = []
    if raw.get("intervalMinutes") is not None:
        triggers.append({"kind": INTERVAL_TIME_PASSED, "value": coerce_value(raw["intervalMinutes"])})
    actions: list[dict] = []
    if raw.get("scoreValue") is not None:
        action = {"kind": ADD_SCORE, "value": coerce_value(raw["scoreValue"])}
        if raw.get("reason"):
            action["reason"] = raw["reason"]
        actions.append(action)
    migrated["triggers"] = triggers
    migrated["actions"] = actions
    return migrated


def migrate_document(payload: Any) -> Tuple[dict, bool]:
    """
    Normalize a stored payload into a rule document.

    Returns ``(document, changed)``; ``changed`` means the stored form was
    outdated and should be written back.
    """
    changed = False
    if isinstance(payload, list):
        # Oldest shape: a bare list of rules.
        payload = {"version": RULE_DOCUMENT_VERSION, "rules": payload}
        changed = True
    if not isinstance(payload, dict):
        return {"version": RULE_DOCUMENT_VERSION, "rules": []}, False
    raw_rules = payload.get("rules")
    if not isinstance(raw_rules, list):
        raw_rules = []
    rules: list = []
    for raw in raw_rules:
        if isinstance(raw, dict) and is_legacy_rule(raw):
            rules.append(migrate_rule(raw))
            changed = True
        else:
            rules.append(raw)
    document = dict(payload)
    document["rules"] = rules
    if document.get("version") != RULE_DOCUMENT_VERSION:
        document["version"] = RULE_DOCUMENT_VERSION
        changed = True
    return document, changed


def parse_rules(document: dict) -> List[AutomationRule]:
    rules: List[AutomationRule] = []
    for raw in document.get("rules") or []:
        if not isinstance(raw, dict):
            logger.warning("Skipping malformed rule entry: %r", raw)
            continue
        try:
            rules.append(AutomationRule.model_validate(raw))
        except ValidationError as exc:
            logger.warning("Skipping invalid rule id=%s err=%s", raw.get("id"), exc)
    return rules


def _updated_at(payload: Any) -> Optional[datetime.datetime]:
    if not isinstance(payload, dict) or not payload.get("updatedAt"):
        return None
    raw = str(payload["updatedAt"]).replace("Z", "+00:00")
    try:
        value = datetime.datetime.fromisoformat(raw)
    except ValueError:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value


class RuleStore:
    def __init__(
        self,
        files: Any,
        settings_store: Any,
        *,
        file_name: str = RULES_FILE_NAME,
        namespace: str = RULES_NAMESPACE,
        settings_key: str = SETTINGS_KEY,
    ) -> None:
        self.files = files
        self.settings_store = settings_store
        self.file_name = file_name
        self.namespace = namespace
        self.settings_key = settings_key
        self._queue: Optional[asyncio.Queue] = None
        self._writer: Optional[asyncio.Task] = None

    @property
    def degraded(self) -> bool:
        return self.files is None

    async def load(self) -> List[AutomationRule]:
        settings_payload = await asyncio.to_thread(self._read_settings)
        if self.degraded:
            document, changed = migrate_document(settings_payload)
            if changed:
                logger.info("Migrated rule document in degraded mode; not re-saved")
            return parse_rules(document)

        file_payload = await asyncio.to_thread(self._read_file)
        payload, source = self._pick_source(file_payload, settings_payload)
        document, changed = migrate_document(payload)
        rules = parse_rules(document)
        if changed or (source == "settings" and rules):
            logger.info("Re-saving rule document source=%s migrated=%s rules=%s", source, changed, len(rules))
            await self.save(rules)
        return rules

    def _pick_source(self, file_payload: Any, settings_payload: Any) -> Tuple[Any, str]:
        if file_payload is None:
            return settings_payload, "settings"
        settings_time = _updated_at(settings_payload)
        file_time = _updated_at(file_payload)
        # A newer settings copy means the last file write failed.
        if settings_time and (file_time is None or settings_time > file_time):
            return settings_payload, "settings"
        return file_payload, "file"

    def _read_file(self) -> Any:
        try:
            return self.files.read_json_file(self.file_name, self.namespace)
        except Exception as exc:
            log_exception(logger, "Rule file read failed", extra={"name": self.file_name}, exc=exc)
            return None

    def _read_settings(self) -> Any:
        try:
            raw = self.settings_store.get_all_raw().get(self.settings_key)
        except Exception as exc:
            log_exception(logger, "Settings read failed", extra={"key": self.settings_key}, exc=exc)
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            logger.warning("Invalid JSON under settings key=%s err=%s", self.settings_key, exc)
            return None

    def build_document(self, rules: List[AutomationRule]) -> dict:
        return {
            "version": RULE_DOCUMENT_VERSION,
            "rules": [rule.to_document() for rule in rules],
            "updatedAt": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        }

    async def save(self, rules: List[AutomationRule]) -> bool:
        """Queue a snapshot of ``rules`` and wait until it is written."""
        document = self.build_document(rules)
        self._ensure_writer()
        done: asyncio.Future = asyncio.get_running_loop().create_future()
        await self._queue.put((document, done))
        return await done

    def _ensure_writer(self) -> None:
        if self._writer is not None and not self._writer.done():
            return
        self._queue = asyncio.Queue()
        self._writer = asyncio.create_task(self._drain(self._queue), name="rule-store-writer")

    async def _drain(self, queue: asyncio.Queue) -> None:
        while True:
            item = await queue.get()
            try:
                if item is None:
                    return
                document, done = item
                try:
                    ok = await asyncio.to_thread(self._write_document, document)
                except Exception as exc:
                    log_exception(logger, "Rule document not persisted; keeping in-memory rules", exc=exc)
                    ok = False
                if not done.done():
                    done.set_result(ok)
            finally:
                queue.task_done()

    def _write_document(self, document: dict) -> bool:
        if not self.degraded:
            if self.files.write_json_file(self.file_name, document, self.namespace):
                return True
            logger.warning("Rule file write failed; falling back to settings key=%s", self.settings_key)
        try:
            self.settings_store.set_raw(self.settings_key, json.dumps(document, ensure_ascii=False))
        except Exception as exc:
            raise PersistenceError(f"settings write failed for key={self.settings_key}") from exc
        return True

    async def close(self) -> None:
        if self._writer is None or self._writer.done():
            return
        await self._queue.put(None)
        await self._writer
