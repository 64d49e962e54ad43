"""Shared-secret checks for machine callers (cron jobs and operator tooling)."""

import secrets

from fastapi import Header, HTTPException, Request, status

from app.config import settings
from app.core.exceptions import ForbiddenError


def _compare(provided: str | None, expected: str, name: str) -> None:
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not configured",
        )
    if not provided or not secrets.compare_digest(provided, expected):
        raise ForbiddenError(f"Invalid {name.lower()}")


def verify_cron_secret(x_cron_secret: str = Header(...)) -> None:
    """Validate the X-Cron-Secret header against the configured secret."""
    _compare(x_cron_secret, settings.cron_secret, "Cron secret")


def verify_admin_secret(x_admin_secret: str = Header(...)) -> None:
    """Validate the X-Admin-Secret header against the configured secret."""
    _compare(x_admin_secret, settings.admin_secret, "Admin secret")


def client_ip(request: Request) -> str:
    """Caller IP as seen behind the proxy (ProxyHeadersMiddleware rewrites client)."""
    if request.client and request.client.host:
        return request.client.host
    return "unknown"
