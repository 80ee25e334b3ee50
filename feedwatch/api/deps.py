"""
Shared API dependencies - bearer-token guards for worker and cron endpoints.
"""
import hmac
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from feedwatch.config import get_settings

bearer_scheme = HTTPBearer(auto_error=False)


def _check_bearer(credentials: Optional[HTTPAuthorizationCredentials], secret: str) -> None:
    # An unset secret leaves the endpoint open (local development)
    if not secret:
        return
    if credentials is None or not hmac.compare_digest(credentials.credentials, secret):
        raise HTTPException(status_code=401, detail="Unauthorized")


async def require_worker_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> None:
    """Guard for worker-facing queue endpoints (next, result)."""
    _check_bearer(credentials, get_settings().worker_auth_token)


async def require_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> None:
    """Guard for scheduler-triggered endpoints."""
    _check_bearer(credentials, get_settings().cron_secret)
