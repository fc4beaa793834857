"""
Database session management for the auto-score backend.

Uses SQLAlchemy 2.x style `Session` and declarative models. The engine
collaborators receive `SessionLocal` and open short sessions per call.
"""

from __future__ import annotations

import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .config import settings


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        if ":memory:" not in url and "///" in url:
            db_path = url.split("///", 1)[1]
            if db_path:
                os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        return create_engine(
            url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        url,
        echo=False,
        future=True,
        pool_pre_ping=True,
        pool_size=_env_int("DB_POOL_SIZE", 5),
        max_overflow=_env_int("DB_MAX_OVERFLOW", 10),
        pool_recycle=_env_int("DB_POOL_RECYCLE_SEC", 1800),
    )


engine = build_engine(settings.resolved_database_url)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
