"""Unit tests for song-level admin operations and asset storage."""

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.config import ReleasePolicy
from app.models.job import JobStatus
from app.services.fulfillment.admin import AdminOperations
from app.services.fulfillment.exceptions import AlreadyProcessed, InvalidJobState, NotFound
from app.services.supabase import AssetDeletion, SongAssetStorage, parse_public_object_url

from tests.helpers.mock_factories import make_job, make_mock_db, make_song

PUBLIC = "https://proj.supabase.co/storage/v1/object/public"


class TestParsePublicObjectUrl:
    def test_splits_bucket_and_path(self):
        assert parse_public_object_url(f"{PUBLIC}/songs/order-1/a.mp3?t=1") == ("songs", "order-1/a.mp3")

    def test_external_url_is_ignored(self):
        assert parse_public_object_url("https://cdn.provider.com/a.mp3") is None
        assert parse_public_object_url(None) is None


class TestSongAssetStorage:
    @pytest.mark.asyncio
    async def test_deletes_grouped_by_bucket(self):
        client = MagicMock()
        storage = SongAssetStorage(client=client)

        result = await storage.delete_assets(
            f"{PUBLIC}/songs/o/a.mp3", f"{PUBLIC}/covers/o/a.jpg", "https://cdn.provider.com/x.mp3"
        )

        assert sorted(result.deleted) == ["covers/o/a.jpg", "songs/o/a.mp3"]
        assert result.errors == []
        client.storage.from_.assert_any_call("songs")
        client.storage.from_.assert_any_call("covers")

    @pytest.mark.asyncio
    async def test_storage_errors_are_collected(self):
        client = MagicMock()
        client.storage.from_.return_value.remove.side_effect = RuntimeError("403 forbidden")

        result = await SongAssetStorage(client=client).delete_assets(f"{PUBLIC}/songs/o/a.mp3")

        assert result.deleted == []
        assert "403 forbidden" in result.errors[0]


class AdminTestBase:
    def setup_method(self):
        self.db = make_mock_db()
        self.workflow = MagicMock()
        self.workflow.retry_job = AsyncMock()
        self.workflow.jobs.list_failed = AsyncMock(return_value=[])
        self.storage = MagicMock()
        self.storage.delete_assets = AsyncMock(return_value=AssetDeletion(deleted=["songs/o/a.mp3"]))
        self.admin = AdminOperations(
            workflow=self.workflow,
            storage=self.storage,
            policy=ReleasePolicy(),
            events=MagicMock(),
        )

        self.song_ops = MagicMock()
        self.song_ops.get = AsyncMock()
        self.song_ops.approve = AsyncMock(return_value=True)
        self.song_ops.unapprove = AsyncMock(return_value=True)
        self.song_ops.delete = AsyncMock()
        self.admin_log = MagicMock()
        self.admin_log.record = AsyncMock()
        self.queue_ops = MagicMock()
        self.queue_ops.drop_undelivered_for_order = AsyncMock(return_value=1)

        self.patches = [
            patch("app.services.fulfillment.admin.song_ops", self.song_ops),
            patch("app.services.fulfillment.admin.admin_log_ops", self.admin_log),
            patch("app.services.fulfillment.admin.notification_queue_ops", self.queue_ops),
        ]
        for p in self.patches:
            p.start()

    def teardown_method(self):
        for p in self.patches:
            p.stop()


class TestSongActions(AdminTestBase):
    @pytest.mark.asyncio
    async def test_approve_ready_song(self):
        song = make_song(status="ready", release_at=None)
        self.song_ops.get.return_value = song

        await self.admin.approve_song(self.db, song.id)

        release_at = self.song_ops.approve.await_args.args[2]
        assert release_at is not None
        assert self.admin_log.record.await_args.args[1] == "song_approved"
        self.db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_approve_non_ready_song_conflicts(self):
        self.song_ops.get.return_value = make_song(status="released")
        self.song_ops.approve.return_value = False

        with pytest.raises(AlreadyProcessed):
            await self.admin.approve_song(self.db, uuid.uuid4())

        self.db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unapprove_drops_queued_notification(self):
        song = make_song(status="released")
        self.song_ops.get.return_value = song

        await self.admin.unapprove_song(self.db, song.id)

        self.queue_ops.drop_undelivered_for_order.assert_awaited_once_with(self.db, song.order_id)
        details = self.admin_log.record.await_args.args[4]
        assert details == {"from_status": "released", "notifications_dropped": 1}

    @pytest.mark.asyncio
    async def test_delete_song_removes_assets_and_logs(self):
        song = make_song()
        self.song_ops.get.return_value = song

        result = await self.admin.delete_song(self.db, song.id)

        self.storage.delete_assets.assert_awaited_once_with(song.audio_url, song.cover_url)
        self.song_ops.delete.assert_awaited_once_with(self.db, song.id)
        assert result["assets_deleted"] == ["songs/o/a.mp3"]
        assert self.admin_log.record.await_args.args[1] == "song_deleted"

    @pytest.mark.asyncio
    async def test_missing_song(self):
        self.song_ops.get.return_value = None

        with pytest.raises(NotFound):
            await self.admin.delete_song(self.db, uuid.uuid4())


class TestRetryFailedJobs(AdminTestBase):
    @pytest.mark.asyncio
    async def test_counts_outcomes_and_isolates_errors(self):
        jobs = [make_job(status=JobStatus.FAILED.value) for _ in range(3)]
        self.workflow.jobs.list_failed.return_value = jobs
        self.workflow.retry_job.side_effect = [
            "regenerated",
            InvalidJobState(jobs[1].id, "completed", ("failed",)),
            "audio_submitted",
        ]

        report = await self.admin.retry_failed_jobs(self.db)

        assert report.jobs_found == 3
        assert report.regenerated == 1
        assert report.audio_submitted == 1
        assert len(report.errors) == 1
        self.db.rollback.assert_awaited_once()
        assert self.admin_log.record.await_count == 2
