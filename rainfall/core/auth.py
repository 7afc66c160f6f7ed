"""HTTP Basic authentication for the admin panel.

A single operator account configured via ``ADMIN_USERNAME`` and
``ADMIN_PASSWORD``. The public ``/api`` routes are unauthenticated.
"""

from __future__ import annotations

import logging
import secrets

from fastapi import HTTPException, Security
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from rainfall.core.config import settings

logger = logging.getLogger(__name__)

REALM = "Admin Panel"

basic_scheme = HTTPBasic(
    realm=REALM,
    description="Admin credentials configured via ADMIN_USERNAME / ADMIN_PASSWORD.",
    auto_error=False,
)


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": "UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": f'Basic realm="{REALM}"'},
    )


async def require_admin(
    credentials: HTTPBasicCredentials | None = Security(basic_scheme),
) -> str:
    """Validate the admin username and password. Returns the username."""
    if credentials is None:
        raise _unauthorized("Authentication required.")

    user_ok = secrets.compare_digest(
        credentials.username.encode(), settings.admin_username.encode()
    )
    password_ok = secrets.compare_digest(
        credentials.password.encode(), settings.admin_password.encode()
    )
    if not (user_ok and password_ok):
        logger.warning("Rejected admin login for user %r", credentials.username)
        raise _unauthorized("Invalid credentials.")
    return credentials.username
