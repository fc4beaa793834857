"""
Pydantic schemas for automation rules and the persisted rule document.

Rules are serialized with camelCase keys (``studentNames``,
``lastExecuted``) so the JSON document stays readable by the desktop
client that authors them.
"""

from __future__ import annotations

import datetime
import json
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

RULE_DOCUMENT_VERSION = 1


def coerce_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def ensure_utc(dt: datetime.datetime) -> datetime.datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=datetime.timezone.utc)
    return dt


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TriggerItem(BaseModel):
    # ``event`` is the key older clients wrote.
    kind: str = Field(validation_alias=AliasChoices("kind", "event"))
    value: str = ""

    @field_validator("value", mode="before")
    @classmethod
    def _value_to_str(cls, value: Any) -> str:
        return coerce_value(value)


class ActionItem(BaseModel):
    kind: str = Field(validation_alias=AliasChoices("kind", "event"))
    value: str = ""
    reason: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def _value_to_str(cls, value: Any) -> str:
        return coerce_value(value)


class RuleCreate(_CamelModel):
    enabled: bool = True
    name: str
    student_names: List[str] = Field(default_factory=list)
    triggers: List[TriggerItem] = Field(default_factory=list)
    actions: List[ActionItem] = Field(default_factory=list)


class RuleUpdate(_CamelModel):
    id: int
    enabled: Optional[bool] = None
    name: Optional[str] = None
    student_names: Optional[List[str]] = None
    triggers: Optional[List[TriggerItem]] = None
    actions: Optional[List[ActionItem]] = None


class AutomationRule(RuleCreate):
    id: int
    last_executed: Optional[datetime.datetime] = None

    @field_validator("last_executed")
    @classmethod
    def _aware(cls, value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
        if value is None:
            return None
        return ensure_utc(value)

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ToggleRequest(BaseModel):
    enabled: bool


class ApiResponse(BaseModel):
    success: bool
    data: Any = None
    message: Optional[str] = None
