"""
Service layer for the auto-score backend.

This package contains the automation engine (trigger and action
registries, rule store, scheduler, executor) and the collaborator services
it drives: the student registry, the score ledger, the settings store and
file access.
"""

from .automation import AutoScoreService, local_clock
from .rule_store import RuleStore

__all__ = ["AutoScoreService", "RuleStore", "local_clock"]
