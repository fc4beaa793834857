"""
Logging configuration utilities.

The API process and the headless worker share one plain format; named
loggers (``AutoScore``, ``RuleScheduler``, ``RuleExecutor``, ``RuleStore``)
identify the component.
"""

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: int | str = logging.INFO, log_file: Optional[str] = None) -> None:
    """Configure the root logger.

    Parameters
    ----------
    level: int | str
        Level number or name (``"DEBUG"``, ``"INFO"``...). Unknown names fall
        back to INFO.
    log_file: Optional[str]
        Also append to this file; its directory is created when missing.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))
    logging.basicConfig(level=_resolve_level(level), format=LOG_FORMAT, handlers=handlers)
