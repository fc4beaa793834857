"""
Student registry used by the automation engine.
"""

from __future__ import annotations

import datetime
from typing import List

from sqlalchemy.orm import Session, sessionmaker

from ..models.student import Student
from ..schemas.student import StudentOut

UPDATABLE_FIELDS = {"name", "score", "tags"}


class StudentRepository:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def find_all(self) -> List[StudentOut]:
        with self._session_factory() as db:
            rows = db.query(Student).order_by(Student.score.desc(), Student.name.asc()).all()
            return [StudentOut.model_validate(row) for row in rows]

    def create(self, name: str, tags: list[str] | None = None) -> int:
        with self._session_factory() as db:
            row = Student(name=name.strip(), score=0, tags=list(tags or []))
            db.add(row)
            db.commit()
            db.refresh(row)
            return row.id

    def update(self, student_id: int, partial: dict) -> None:
        with self._session_factory() as db:
            row = db.get(Student, student_id)
            if row is None:
                raise LookupError(f"Student not found id={student_id}")
            _apply_partial(db, row, partial)
            db.commit()


def _apply_partial(db: Session, row: Student, partial: dict) -> None:
    for key, value in partial.items():
        if key not in UPDATABLE_FIELDS:
            continue
        if key == "tags":
            value = list(value or [])
        setattr(row, key, value)
    row.updated_at = datetime.datetime.now(datetime.timezone.utc)
    db.add(row)
