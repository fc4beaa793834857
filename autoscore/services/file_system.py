"""
File access for JSON documents under the config root.

Documents live in named namespaces (``automatic`` for automation rules,
``script`` for user scripts), one sub-directory each. Writes serialize the
payload first, then swap a fully written temp file into place, so a failed
write leaves the previous document intact.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from ..core.errors import log_exception

NAMESPACES = ("automatic", "script")

logger = logging.getLogger("FileSystemService")


def _fsync_dir(directory: Path) -> None:
    # Not every platform can open a directory for fsync.
    try:
        fd = os.open(str(directory), os.O_DIRECTORY)
    except (AttributeError, OSError):
        return
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def replace_atomic(path: Path, text: str) -> None:
    """Write ``text`` to ``path`` through a temp file in the same directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f"{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, str(path))
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise
    _fsync_dir(path.parent)


class FileSystemService:
    def __init__(self, config_root: Path) -> None:
        self.config_root = Path(config_root)
        self._dirs = {name: self.config_root / name for name in NAMESPACES}

    def ensure_dirs(self) -> None:
        for path in self._dirs.values():
            path.mkdir(parents=True, exist_ok=True)

    def _path(self, name: str, namespace: str) -> Path:
        base = self._dirs.get(namespace)
        if base is None:
            raise ValueError(f"Unknown namespace: {namespace}")
        # Bare file names only.
        if Path(name).name != name or name in {"", ".", ".."}:
            raise ValueError(f"Invalid file name: {name}")
        return base / name

    def read_json_file(self, name: str, namespace: str = "automatic") -> Optional[Any]:
        """Return the parsed document, or None when missing or unreadable."""
        path = self._path(name, namespace)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("JSON read failed path=%s err=%s", path, exc)
            return None
        try:
            return json.loads(text)
        except ValueError as exc:
            logger.warning("Invalid JSON path=%s err=%s", path, exc)
            return None

    def write_json_file(self, name: str, data: Any, namespace: str = "automatic") -> bool:
        path = self._path(name, namespace)
        try:
            text = json.dumps(data, indent=2, ensure_ascii=False, default=str)
            replace_atomic(path, text)
        except Exception as exc:
            log_exception(logger, "JSON write failed", extra={"path": str(path)}, exc=exc)
            return False
        return True
