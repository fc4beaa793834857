"""
Error types and logging helpers shared by the automation engine.
"""

from __future__ import annotations

import logging


class AutomationError(Exception):
    """Base class for automation engine failures."""


class RuleValidationError(AutomationError):
    """A rule, trigger or action value was rejected before saving."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class PersistenceError(AutomationError):
    """Every persistence path for the rule document failed."""


class ExecutionError(AutomationError):
    """An action or trigger check failed while a rule was firing."""

    def __init__(self, rule_id: int, message: str) -> None:
        super().__init__(f"rule_id={rule_id}: {message}")
        self.rule_id = rule_id


def _format_extra(extra: dict | None) -> str:
    if not extra:
        return ""
    parts: list[str] = []
    for key, value in extra.items():
        if value is None:
            continue
        parts.append(f"{key}={value}")
    return f" {' '.join(parts)}" if parts else ""


def log_exception(logger: logging.Logger, msg: str, *, extra: dict | None = None, exc: Exception | None = None) -> None:
    """
    Log an exception with context. Uses logger.exception for stack traces.
    """
    suffix = _format_extra(extra)
    if exc is not None:
        logger.error(f"{msg}{suffix}: {exc}", exc_info=exc)
        return
    logger.exception(f"{msg}{suffix}")
