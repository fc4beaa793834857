"""
SQLAlchemy model base class for the auto-score backend.

The engine only reads and writes these tables through its collaborator
services; the tables themselves belong to the wider point-tracking app.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


from .student import Student  # noqa: E402,F401
from .score_event import ScoreEvent  # noqa: E402,F401
from .setting import Setting  # noqa: E402,F401
