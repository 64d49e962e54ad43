"""API dependencies - re-exports from submodules."""

from .components import (
    DbSession,
    Limiter,
    Workflow,
    get_admin_operations,
    get_audio_poller,
    get_callback_handler,
    get_notification_queue,
    get_rate_limiter,
    get_release_scheduler,
    get_workflow,
)
from .shared_secret import client_ip, verify_admin_secret, verify_cron_secret

__all__ = [
    # Shared secrets
    "client_ip",
    "verify_admin_secret",
    "verify_cron_secret",
    # Components
    "DbSession",
    "Limiter",
    "Workflow",
    "get_admin_operations",
    "get_audio_poller",
    "get_callback_handler",
    "get_notification_queue",
    "get_rate_limiter",
    "get_release_scheduler",
    "get_workflow",
]
