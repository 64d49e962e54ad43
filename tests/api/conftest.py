"""API test fixtures: an ASGI client with every pipeline component overridden.

Handlers run against MagicMock components and an AsyncMock session, so
these tests cover routing, auth, request validation and the error mapping
without a database.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from app.api.deps import (
    get_admin_operations,
    get_audio_poller,
    get_callback_handler,
    get_notification_queue,
    get_rate_limiter,
    get_release_scheduler,
    get_workflow,
)
from app.core.database import get_db
from app.main import app

from tests.helpers.mock_factories import make_mock_db

CRON_SECRET = "cron-test-secret"
ADMIN_SECRET = "admin-test-secret"


# ─────────────────────────────────────────────────────────────────────────────
# Component Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def db() -> AsyncMock:
    return make_mock_db()


@pytest.fixture
def workflow() -> MagicMock:
    mock = MagicMock()
    for name in ("view", "approve", "reject", "intake", "admin_reject", "admin_unapprove", "retry_job"):
        setattr(mock, name, AsyncMock())
    return mock


@pytest.fixture
def limiter() -> MagicMock:
    mock = MagicMock()
    mock.enforce = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def components() -> dict[str, MagicMock]:
    release = MagicMock()
    release.sweep = AsyncMock()
    queue = MagicMock()
    queue.drain = AsyncMock()
    admin = MagicMock()
    for name in ("approve_song", "unapprove_song", "delete_song", "retry_failed_jobs"):
        setattr(admin, name, AsyncMock())
    callback = MagicMock()
    callback.handle = AsyncMock()
    poller = MagicMock()
    poller.poll = AsyncMock()
    return {"release": release, "queue": queue, "admin": admin, "callback": callback, "poller": poller}


@pytest.fixture
async def api_client(db, workflow, limiter, components) -> AsyncIterator[AsyncClient]:
    """HTTP client for the app with dependencies overridden and secrets configured."""

    async def override_db():
        yield db

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_workflow] = lambda: workflow
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_release_scheduler] = lambda: components["release"]
    app.dependency_overrides[get_notification_queue] = lambda: components["queue"]
    app.dependency_overrides[get_admin_operations] = lambda: components["admin"]
    app.dependency_overrides[get_callback_handler] = lambda: components["callback"]
    app.dependency_overrides[get_audio_poller] = lambda: components["poller"]

    with patch("app.api.deps.shared_secret.settings") as config:
        config.cron_secret = CRON_SECRET
        config.admin_secret = ADMIN_SECRET
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client

    app.dependency_overrides.clear()


@pytest.fixture
def cron_headers() -> dict[str, str]:
    return {"X-Cron-Secret": CRON_SECRET}


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Secret": ADMIN_SECRET}
