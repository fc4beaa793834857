"""
Generic key-value settings store backed by the ``settings`` table.
"""

from __future__ import annotations

from typing import Dict

from sqlalchemy.orm import sessionmaker

from ..models.setting import Setting


class SettingsStore:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def get_all_raw(self) -> Dict[str, str]:
        with self._session_factory() as db:
            return {row.key: row.value for row in db.query(Setting).all()}

    def set_raw(self, key: str, value: str) -> None:
        with self._session_factory() as db:
            row = db.get(Setting, key)
            if row is None:
                row = Setting(key=key, value=value)
            else:
                row.value = value
            db.add(row)
            db.commit()
