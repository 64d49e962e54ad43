"""Configuration package."""

from app.config.policies import (
    ApprovalPolicy,
    ReleasePolicy,
    RetryPolicy,
    approval_policy_from,
    release_policy_from,
    retry_policy_from,
)
from app.config.settings import Settings, settings

__all__ = [
    "ApprovalPolicy",
    "ReleasePolicy",
    "RetryPolicy",
    "approval_policy_from",
    "release_policy_from",
    "retry_policy_from",
    "Settings",
    "settings",
]
