"""Root conftest — test infrastructure for all backend tests.

Provides:
- Markers for the test layers
- Autouse mock for external services (Postmark, audio provider, Claude)
- A fresh PipelineEvents recorder per test
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from app.services.fulfillment.events import PipelineEvents

# ─────────────────────────────────────────────────────────────────────────────
# Markers
# ─────────────────────────────────────────────────────────────────────────────


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: pure unit tests (database fully mocked)")
    config.addinivalue_line("markers", "api: HTTP tests against the ASGI app")


# ─────────────────────────────────────────────────────────────────────────────
# External Service Mocks (autouse)
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def mock_external_services():
    """SAFETY: Always mock the shared provider clients.

    Prevents accidental email sends, audio renders or Claude calls through
    the module singletons. Tests that exercise a client build their own
    instance, which these patches do not touch.
    """
    from app.services.audio.client import audio_client
    from app.services.email.postmark import postmark_service
    from app.services.lyrics.writer import lyrics_writer

    with (
        patch.object(postmark_service, "send", new_callable=AsyncMock) as mock_send,
        patch.object(audio_client, "submit", new_callable=AsyncMock) as mock_submit,
        patch.object(audio_client, "query", new_callable=AsyncMock) as mock_query,
        patch.object(lyrics_writer, "write", new_callable=AsyncMock) as mock_write,
    ):
        mock_send.return_value = "test-message-id"
        mock_submit.return_value = "test-task-id"
        yield {
            "postmark": mock_send,
            "audio_submit": mock_submit,
            "audio_query": mock_query,
            "lyrics": mock_write,
        }


@pytest.fixture
def events() -> PipelineEvents:
    """Isolated transition recorder."""
    return PipelineEvents()
