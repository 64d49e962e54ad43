from app.api.v1 import admin, approvals, internal, webhooks

__all__ = [
    "approvals",
    "webhooks",
    "internal",
    "admin",
]
