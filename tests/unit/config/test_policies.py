"""Unit tests for pipeline policies and their settings mapping."""

from datetime import timedelta

from app.config import (
    ApprovalPolicy,
    RetryPolicy,
    Settings,
    approval_policy_from,
    release_policy_from,
    retry_policy_from,
)


class TestRetryPolicy:
    def test_delay_doubles_per_attempt(self):
        policy = RetryPolicy(base_delay=timedelta(minutes=5))

        assert [policy.next_delay(k) for k in range(4)] == [
            timedelta(minutes=5),
            timedelta(minutes=10),
            timedelta(minutes=20),
            timedelta(minutes=40),
        ]

    def test_exhaustion_uses_entry_cap_when_given(self):
        policy = RetryPolicy(max_retries=5)

        assert not policy.is_exhausted(4)
        assert policy.is_exhausted(5)
        assert policy.is_exhausted(2, max_retries=2)


class TestPoliciesFromSettings:
    def test_settings_map_onto_policies(self):
        config = Settings(
            approval_ttl_hours=24,
            regeneration_cap=2,
            release_delay_hours=0,
            auto_approve_songs=False,
            notification_max_retries=3,
            notification_base_delay_seconds=60,
        )

        approval = approval_policy_from(config)
        release = release_policy_from(config)
        retry = retry_policy_from(config)

        assert approval == ApprovalPolicy(approval_ttl=timedelta(hours=24), regeneration_cap=2)
        assert release.release_delay == timedelta(0)
        assert release.auto_approve_songs is False
        assert retry.max_retries == 3
        assert retry.base_delay == timedelta(seconds=60)
