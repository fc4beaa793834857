"""
Configuration for the classroom auto-score backend.

Settings are loaded from environment variables or a `.env` file at the
repository root. Defaults are suitable for a single-machine classroom
install; everything lives under the data directory unless overridden.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(ENV_PATH, override=False)

DEFAULT_DATA_DIR = Path(__file__).resolve().parents[2] / "data"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # Config root; the rule document lives in <data_dir>/automatic.
    autoscore_data_dir: str = Field(default=str(DEFAULT_DATA_DIR))
    # Defaults to a sqlite file inside the data dir when unset.
    database_url: str | None = Field(default=None)
    auto_create_db: bool = Field(default=True)
    enable_auto_score: bool = Field(default=True)
    # IANA zone used by local-time triggers; system local time when unset.
    autoscore_timezone: str | None = Field(default=None)
    autoscore_env: str = Field(default="dev")
    autoscore_auth_disabled: bool = Field(default=True)
    autoscore_admin_token: str | None = Field(default=None)
    log_level: str = Field(default="INFO")
    log_file: str | None = Field(default=None)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def data_dir(self) -> Path:
        return Path(self.autoscore_data_dir).expanduser()

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite+pysqlite:///{self.data_dir / 'classpoint.db'}"


settings = Settings()


def get_app_env() -> str:
    raw = os.getenv("AUTOSCORE_ENV") or settings.autoscore_env or "dev"
    env = raw.strip().lower()
    if env not in {"dev", "prod"}:
        logging.getLogger("config").warning("Unknown AUTOSCORE_ENV=%s; defaulting to dev", raw)
        env = "dev"
    return env


def _is_weak_token(token: str | None) -> bool:
    if not token:
        return True
    token = token.strip()
    if len(token) < 20:
        return True
    weak = {"demo-token", "change-me", "changeme", "password", "admin"}
    return token.lower() in weak


def validate_runtime_settings(current: Settings | None = None) -> None:
    current = current or settings
    env = get_app_env()
    logger = logging.getLogger("config")

    if env == "prod":
        if current.autoscore_auth_disabled:
            raise RuntimeError("AUTOSCORE_AUTH_DISABLED must be false in prod.")
        if _is_weak_token(current.autoscore_admin_token):
            raise RuntimeError("AUTOSCORE_ADMIN_TOKEN must be set to a strong value in prod.")
        if current.auto_create_db:
            logger.warning("AUTO_CREATE_DB is enabled in prod. Consider setting it to false.")
    elif not current.autoscore_auth_disabled and _is_weak_token(current.autoscore_admin_token):
        logger.warning("AUTOSCORE_ADMIN_TOKEN is weak or missing; dev fallback will be used.")

    if current.autoscore_timezone:
        try:
            from zoneinfo import ZoneInfo

            ZoneInfo(current.autoscore_timezone)
        except Exception:
            logger.error("Unknown AUTOSCORE_TIMEZONE=%s; using system local time.", current.autoscore_timezone)
            current.autoscore_timezone = None


validate_runtime_settings()
