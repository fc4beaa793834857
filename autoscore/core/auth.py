"""
Permission gate for the auto-score management API.

``ADMIN`` is held by whoever presents the configured admin token; any
other bearer token is a ``GUEST``, which the management routes refuse.
With auth disabled (the classroom default) every caller is ADMIN.
"""

from __future__ import annotations

import os
import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import get_app_env, settings

ADMIN_ROLE = "ADMIN"
GUEST_ROLE = "GUEST"
DEV_FALLBACK_TOKEN = "demo-token"

_bearer = HTTPBearer(auto_error=False)


@dataclass
class UserContext:
    role: str
    username: Optional[str] = None


def _auth_disabled() -> bool:
    raw = os.getenv("AUTOSCORE_AUTH_DISABLED")
    if raw is None:
        return settings.autoscore_auth_disabled
    return raw.strip().lower() in {"1", "true", "yes"}


def _admin_token() -> Optional[str]:
    configured = os.getenv("AUTOSCORE_ADMIN_TOKEN") or settings.autoscore_admin_token
    if configured:
        return configured
    # prod never accepts the fallback
    return None if get_app_env() == "prod" else DEV_FALLBACK_TOKEN


def _role_for_token(token: str) -> str:
    admin_token = _admin_token()
    if admin_token and secrets.compare_digest(token.encode(), admin_token.encode()):
        return ADMIN_ROLE
    return GUEST_ROLE


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    x_user_name: Optional[str] = Header(None, alias="X-User-Name"),
) -> UserContext:
    if _auth_disabled():
        return UserContext(role=ADMIN_ROLE, username=x_user_name)
    if credentials is None or not credentials.credentials.strip():
        raise HTTPException(status_code=401, detail="Missing bearer token")
    role = _role_for_token(credentials.credentials.strip())
    # Non-admin callers get through here; require_roles answers 403.
    return UserContext(role=role, username=x_user_name or role.lower())


def require_roles(*roles: str):
    """Dependency factory: 403 unless the caller holds one of ``roles``."""
    allowed = {r.strip().upper() for r in roles if r and r.strip()}

    def _dep(user: UserContext = Depends(get_current_user)) -> UserContext:
        if allowed and user.role.upper() not in allowed:
            raise HTTPException(status_code=403, detail="Permission denied")
        return user

    return _dep
