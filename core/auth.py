"""
AUTH.PY - API Authentication Utilities

Single source of truth for caller identity across all routers.

- verify_api_key: optional service key (X-API-Key)
- get_current_user: the signed-in user, forwarded by the auth proxy
  as X-User-Id / X-User-Email. Session mechanics live upstream.
- AllowListAuthorizer: privileged-identity check backed by configuration

Usage:
    from core.auth import verify_api_key, get_current_user, get_authorizer

    @router.post("/protected")
    async def protected_endpoint(
        auth: bool = Depends(verify_api_key),
        user: Optional[CurrentUser] = Depends(get_current_user),
        authorizer: AllowListAuthorizer = Depends(get_authorizer),
    ):
        ...
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from fastapi import Depends, Header, HTTPException

from env_config import Config, get_env, get_env_bool, get_env_list

logger = logging.getLogger(__name__)


def _auth_settings():
    """(enabled, key) read at call time so tests can toggle via env."""
    key = get_env("API_AUTH_KEY", default="")
    enabled = get_env_bool("API_AUTH_ENABLED", Config.API_AUTH_ENABLED)
    if enabled and not key:
        logger.warning("API_AUTH_ENABLED is true but API_AUTH_KEY not set - auth disabled")
        enabled = False
    return enabled, key


async def verify_api_key(x_api_key: Optional[str] = Header(None, alias="X-API-Key")):
    """
    Verify API key if authentication is enabled.
    Pass X-API-Key header to authenticate.

    Returns:
        True if authentication passes

    Raises:
        HTTPException: 401 if missing key, 403 if invalid key
    """
    enabled, key = _auth_settings()
    if not enabled:
        return True

    if not x_api_key:
        raise HTTPException(status_code=401, detail="Missing X-API-Key header")

    if x_api_key != key:
        raise HTTPException(status_code=403, detail="Invalid API key")

    return True


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: Optional[str] = None


async def get_current_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_user_email: Optional[str] = Header(None, alias="X-User-Email"),
) -> Optional[CurrentUser]:
    """Resolve the signed-in user, or None for anonymous callers."""
    if not x_user_id or not x_user_id.strip():
        return None
    email = x_user_email.strip().lower() if x_user_email else None
    return CurrentUser(id=x_user_id.strip(), email=email or None)


async def require_user(user: Optional[CurrentUser] = Depends(get_current_user)) -> CurrentUser:
    if user is None:
        raise HTTPException(status_code=401, detail="Login required")
    return user


class AllowListAuthorizer:
    """
    Privileged-identity check.

    Admins bypass free quota, point deduction and voucher checks, and
    always receive unblinded results. The allow-list holds emails and/or
    user ids and comes from configuration (ADMIN_EMAILS).
    """

    def __init__(self, identities: Iterable[str] = ()):
        self._identities = frozenset(i.strip().lower() for i in identities if i and i.strip())

    def is_privileged(self, user_id: Optional[str], email: Optional[str] = None) -> bool:
        if user_id and user_id.lower() in self._identities:
            return True
        if email and email.lower() in self._identities:
            return True
        return False

    def is_user_privileged(self, user: Optional[CurrentUser]) -> bool:
        if user is None:
            return False
        return self.is_privileged(user.id, user.email)


def get_authorizer() -> AllowListAuthorizer:
    """FastAPI dependency: authorizer built from current configuration."""
    return AllowListAuthorizer(get_env_list("ADMIN_EMAILS") or Config.ADMIN_EMAILS)


__all__ = [
    'verify_api_key',
    'CurrentUser',
    'get_current_user',
    'require_user',
    'AllowListAuthorizer',
    'get_authorizer',
]
