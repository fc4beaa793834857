"""
Score ledger entries. Each row records one score change for a student.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class ScoreEvent(Base):
    __tablename__ = "score_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[str] = mapped_column(String(36), unique=True, default=lambda: str(uuid.uuid4()))
    student_name: Mapped[str] = mapped_column(String(64), index=True)
    reason_content: Mapped[str] = mapped_column(String(256))
    delta: Mapped[int] = mapped_column(Integer)
    val_prev: Mapped[int] = mapped_column(Integer)
    val_curr: Mapped[int] = mapped_column(Integer)
    event_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
