"""
Pydantic schemas for students as seen by the automation engine.
"""

from __future__ import annotations

from typing import Any, List

from pydantic import BaseModel, ConfigDict, field_validator


class StudentOut(BaseModel):
    id: int
    name: str
    score: int = 0
    tags: List[str] = []

    model_config = ConfigDict(from_attributes=True)

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_list(cls, value: Any) -> list:
        if not value:
            return []
        if isinstance(value, str):
            return [value]
        return [str(tag) for tag in value]
