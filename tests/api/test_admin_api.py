"""API tests for the admin-secret operator endpoints."""

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from app.services.fulfillment.admin import RetryReport
from app.services.fulfillment.exceptions import AlreadyProcessed, InvalidJobState, NotFound
from app.services.fulfillment.lyrics_workflow import RejectionResult, UnapproveResult

from tests.helpers.mock_factories import make_queue_entry, make_song


class TestAdminAuth:
    @pytest.mark.asyncio
    async def test_wrong_secret_is_403(self, api_client):
        response = await api_client.delete(
            f"/api/v1/admin/songs/{uuid.uuid4()}", headers={"X-Admin-Secret": "nope"}
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unconfigured_secret_is_503(self, api_client, admin_headers):
        with patch("app.api.deps.shared_secret.settings") as config:
            config.admin_secret = ""
            response = await api_client.post(
                f"/api/v1/admin/jobs/{uuid.uuid4()}/retry", headers=admin_headers
            )
        assert response.status_code == 503


class TestLyricsOverrides:
    @pytest.mark.asyncio
    async def test_admin_reject_without_regeneration(self, api_client, workflow, admin_headers):
        approval_id = uuid.uuid4()
        workflow.admin_reject.return_value = RejectionResult(
            approval_id=approval_id, job_id=uuid.uuid4(), status="rejected", regeneration_count=0
        )

        response = await api_client.post(
            f"/api/v1/admin/approvals/{approval_id}/reject",
            json={"reason": "Wrong name", "regenerate": False},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["status"] == "rejected"
        assert workflow.admin_reject.await_args.args[1:] == (approval_id, "Wrong name", False)

    @pytest.mark.asyncio
    async def test_unapprove(self, api_client, workflow, admin_headers):
        approval_id = uuid.uuid4()
        workflow.admin_unapprove.return_value = UnapproveResult(
            approval_id=approval_id,
            job_id=uuid.uuid4(),
            expires_at=datetime.now(UTC) + timedelta(hours=72),
            songs_deleted=2,
            notifications_dropped=1,
        )

        response = await api_client.post(
            f"/api/v1/admin/approvals/{approval_id}/unapprove", headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json()["songs_deleted"] == 2

    @pytest.mark.asyncio
    async def test_retry_completed_job_is_409(self, api_client, workflow, admin_headers):
        job_id = uuid.uuid4()
        workflow.retry_job.side_effect = InvalidJobState(job_id, "completed", ("failed", "processing"))

        response = await api_client.post(f"/api/v1/admin/jobs/{job_id}/retry", headers=admin_headers)

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_retry_job(self, api_client, workflow, admin_headers):
        job_id = uuid.uuid4()
        workflow.retry_job.return_value = "audio_submitted"

        response = await api_client.post(f"/api/v1/admin/jobs/{job_id}/retry", headers=admin_headers)

        assert response.json() == {"job_id": str(job_id), "outcome": "audio_submitted"}


class TestSongActions:
    @pytest.mark.asyncio
    async def test_approve_song(self, api_client, components, admin_headers):
        song = make_song(status="approved")
        components["admin"].approve_song.return_value = song

        response = await api_client.post(
            f"/api/v1/admin/songs/{song.id}/approve",
            json={"release_at": "2026-03-02T09:00:00Z"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["status"] == "approved"
        release_at = components["admin"].approve_song.await_args.args[2]
        assert release_at == datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_unapprove_song_conflict(self, api_client, components, admin_headers):
        components["admin"].unapprove_song.side_effect = AlreadyProcessed("Song is pending", "pending")

        response = await api_client.post(
            f"/api/v1/admin/songs/{uuid.uuid4()}/unapprove", headers=admin_headers
        )

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_delete_missing_song_is_404(self, api_client, components, admin_headers):
        components["admin"].delete_song.side_effect = NotFound("Song not found")

        response = await api_client.delete(f"/api/v1/admin/songs/{uuid.uuid4()}", headers=admin_headers)

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_retry_failed_jobs(self, api_client, components, admin_headers):
        components["admin"].retry_failed_jobs.return_value = RetryReport(jobs_found=2, regenerated=2)

        response = await api_client.post(
            "/api/v1/admin/jobs/retry-failed", params={"limit": 10}, headers=admin_headers
        )

        assert response.json()["regenerated"] == 2
        assert components["admin"].retry_failed_jobs.await_args.kwargs["limit"] == 10


class TestNotificationList:
    @pytest.mark.asyncio
    async def test_lists_failed_entries(self, api_client, admin_headers):
        entry = make_queue_entry(status="failed", retry_count=5, last_error="Postmark returned HTTP 422")

        with patch(
            "app.api.v1.admin.notification_queue_ops.list_by_status",
            new_callable=AsyncMock,
            return_value=[entry],
        ) as list_by_status:
            response = await api_client.get("/api/v1/admin/notifications", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()[0]["retry_count"] == 5
        assert list_by_status.await_args.args[1] == "failed"
