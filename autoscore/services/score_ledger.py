"""
Score ledger: appends score events and keeps the student's running total.
"""

from __future__ import annotations

import datetime
import logging
from typing import List

from sqlalchemy.orm import sessionmaker

from ..models.score_event import ScoreEvent
from ..models.student import Student

logger = logging.getLogger("ScoreLedger")


class ScoreLedger:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def create(self, event: dict) -> int:
        """
        Record a score change in one transaction.

        ``event`` carries ``student_name``, ``reason_content`` and ``delta``.
        Raises LookupError when the student does not exist.
        """
        name = str(event.get("student_name") or "")
        delta = int(event.get("delta") or 0)
        with self._session_factory() as db:
            student = db.query(Student).filter(Student.name == name).first()
            if student is None:
                raise LookupError(f"Student not found name={name}")
            val_prev = int(student.score or 0)
            val_curr = val_prev + delta
            now = datetime.datetime.now(datetime.timezone.utc)
            row = ScoreEvent(
                student_name=name,
                reason_content=str(event.get("reason_content") or ""),
                delta=delta,
                val_prev=val_prev,
                val_curr=val_curr,
                event_time=now,
            )
            db.add(row)
            student.score = val_curr
            student.updated_at = now
            db.add(student)
            db.commit()
            db.refresh(row)
            logger.debug("Score event id=%s student=%s delta=%s", row.id, name, delta)
            return row.id

    def find_recent(self, limit: int = 100) -> List[ScoreEvent]:
        with self._session_factory() as db:
            return (
                db.query(ScoreEvent)
                .order_by(ScoreEvent.event_time.desc(), ScoreEvent.id.desc())
                .limit(limit)
                .all()
            )
