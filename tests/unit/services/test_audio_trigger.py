"""Unit tests for AudioGenerationTrigger and its completion observers."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from app.config import ReleasePolicy
from app.models.job import JobStatus
from app.models.song import SongStatus
from app.services.audio import AudioTaskResult, AudioTaskState, AudioTrack
from app.services.fulfillment.audio_trigger import (
    AudioCallbackHandler,
    AudioGenerationTrigger,
    AudioTaskPoller,
)
from app.services.fulfillment.exceptions import NotFound, UpstreamGenerationError

from tests.helpers.fakes import FakeJobStore
from tests.helpers.mock_factories import (
    make_approval,
    make_mock_db,
    make_quiz,
    make_session_maker,
)

LYRICS = {
    "title": "Para Maria",
    "verses": [{"type": "verse", "text": "Maria"}, {"type": "chorus", "text": "Obrigado"}],
    "style": "sertanejo",
}


def _complete(task_id: str, tracks: int = 2) -> AudioTaskResult:
    return AudioTaskResult(
        task_id=task_id,
        state=AudioTaskState.COMPLETE,
        tracks=[
            AudioTrack(audio_url=f"https://cdn.example.com/{task_id}/{i}.mp3",
                       cover_url=f"https://cdn.example.com/{task_id}/{i}.jpg")
            for i in range(tracks)
        ],
    )


class TriggerTestBase:
    def setup_method(self):
        self.db = make_mock_db()
        self.jobs = FakeJobStore()
        self.client = MagicMock()
        self.client.submit = AsyncMock(return_value="task-1")
        self.client.query = AsyncMock()
        self.trigger = AudioGenerationTrigger(
            jobs=self.jobs,
            client=self.client,
            policy=ReleasePolicy(auto_approve_songs=True),
            events=MagicMock(),
        )

        self.approval_ops = MagicMock()
        self.approval_ops.get_latest_for_job = AsyncMock(
            return_value=make_approval(status="approved", voice="M")
        )
        self.order_ops = MagicMock()
        self.order_ops.get_quiz = AsyncMock(return_value=make_quiz())
        self.song_ops = MagicMock()
        self.song_ops.next_variant_number = AsyncMock(return_value=1)

        self.patches = [
            patch("app.services.fulfillment.audio_trigger.lyrics_approval_ops", self.approval_ops),
            patch("app.services.fulfillment.audio_trigger.order_ops", self.order_ops),
            patch("app.services.fulfillment.audio_trigger.song_ops", self.song_ops),
        ]
        for p in self.patches:
            p.start()

    def teardown_method(self):
        for p in self.patches:
            p.stop()

    def processing_job(self, **overrides):
        fields = {"status": JobStatus.PROCESSING.value, "generated_lyrics": LYRICS}
        fields.update(overrides)
        return self.jobs.add(**fields)


class TestTrigger(TriggerTestBase):
    """Tests for audio submission."""

    @pytest.mark.asyncio
    async def test_submits_once_and_stores_reference(self):
        job = self.processing_job()

        reference = await self.trigger.trigger(self.db, job.id)

        assert reference == "task-1"
        assert job.audio_task_reference == "task-1"
        request = self.client.submit.await_args.args[0]
        assert request.title == "Para Maria"
        assert request.voice == "M"
        assert request.style == "sertanejo"
        assert "[Chorus]" in request.prompt

    @pytest.mark.asyncio
    async def test_second_trigger_returns_existing_reference(self):
        job = self.processing_job()

        first = await self.trigger.trigger(self.db, job.id)
        second = await self.trigger.trigger(self.db, job.id)

        assert first == second == "task-1"
        self.client.submit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_concurrent_triggers_submit_once(self):
        job = self.processing_job()

        results = await asyncio.gather(
            self.trigger.trigger(self.db, job.id),
            self.trigger.trigger(self.db, job.id),
        )

        self.client.submit.assert_awaited_once()
        assert "task-1" in results
        assert self.jobs.claims == 1

    @pytest.mark.asyncio
    async def test_outstanding_claim_skips_submission(self):
        job = self.processing_job()
        await self.jobs.claim_audio_submission(self.db, job.id)

        assert await self.trigger.trigger(self.db, job.id) is None
        self.client.submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_provider_error_releases_claim(self):
        job = self.processing_job()
        self.client.submit.side_effect = UpstreamGenerationError("audio", "HTTP 500")

        with pytest.raises(UpstreamGenerationError):
            await self.trigger.trigger(self.db, job.id)

        assert job.audio_requested_at is None
        assert job.audio_task_reference is None
        assert "HTTP 500" in job.error

    @pytest.mark.asyncio
    async def test_unexpected_error_releases_claim(self):
        job = self.processing_job()
        self.approval_ops.get_latest_for_job.side_effect = OperationalError(
            "SELECT", {}, Exception("connection reset")
        )

        with pytest.raises(UpstreamGenerationError):
            await self.trigger.trigger(self.db, job.id)

        assert job.audio_requested_at is None
        assert "connection reset" in job.error
        self.db.rollback.assert_awaited()
        self.client.submit.assert_not_awaited()

        self.approval_ops.get_latest_for_job.side_effect = None
        assert await self.trigger.trigger(self.db, job.id) == "task-1"

    @pytest.mark.asyncio
    async def test_failure_storing_reference_releases_claim(self):
        job = self.processing_job()
        self.jobs.set_task_reference = AsyncMock(side_effect=RuntimeError("commit lost"))

        with pytest.raises(UpstreamGenerationError):
            await self.trigger.trigger(self.db, job.id)

        assert job.audio_requested_at is None
        assert job.audio_task_reference is None

    @pytest.mark.asyncio
    async def test_unapproved_voice_falls_back_to_no_preference(self):
        self.approval_ops.get_latest_for_job.return_value = make_approval(status="pending", voice="F")
        job = self.processing_job()

        await self.trigger.trigger(self.db, job.id)

        assert self.client.submit.await_args.args[0].voice == "S"

    @pytest.mark.asyncio
    async def test_missing_job_raises_not_found(self):
        import uuid

        with pytest.raises(NotFound):
            await self.trigger.trigger(self.db, uuid.uuid4())


class TestCompleteTask(TriggerTestBase):
    """Tests for applying provider results."""

    @pytest.mark.asyncio
    async def test_completion_creates_songs_once(self):
        job = self.processing_job(audio_task_reference="task-1")

        outcome = await self.trigger.complete_task(self.db, "task-1", _complete("task-1"))
        repeat = await self.trigger.complete_task(self.db, "task-1", _complete("task-1"))

        assert outcome.status == "completed"
        assert len(outcome.song_ids) == 2
        assert repeat.status == "ignored"
        assert job.status == JobStatus.COMPLETED.value
        songs = [c.args[0] for c in self.db.add.call_args_list]
        assert len(songs) == 2
        assert [s.variant_number for s in songs] == [1, 2]
        assert all(s.status == SongStatus.APPROVED.value for s in songs)
        assert all(s.release_at is not None and s.released_at is None for s in songs)
        assert songs[0].title == "Para Maria"
        assert songs[0].lyrics == LYRICS

    @pytest.mark.asyncio
    async def test_songs_wait_for_review_without_auto_approve(self):
        self.trigger.policy = ReleasePolicy(auto_approve_songs=False)
        self.processing_job(audio_task_reference="task-1")

        await self.trigger.complete_task(self.db, "task-1", _complete("task-1", tracks=1))

        song = self.db.add.call_args.args[0]
        assert song.status == SongStatus.READY.value

    @pytest.mark.asyncio
    async def test_failure_marks_job_failed(self):
        job = self.processing_job(audio_task_reference="task-1")
        result = AudioTaskResult(task_id="task-1", state=AudioTaskState.FAILED, error="sensitive words")

        outcome = await self.trigger.complete_task(self.db, "task-1", result)

        assert outcome.status == "failed"
        assert job.status == JobStatus.FAILED.value
        assert "sensitive words" in job.error
        self.db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_pending_result_changes_nothing(self):
        job = self.processing_job(audio_task_reference="task-1")
        result = AudioTaskResult(task_id="task-1", state=AudioTaskState.PENDING)

        outcome = await self.trigger.complete_task(self.db, "task-1", result)

        assert outcome.status == "pending"
        assert job.status == JobStatus.PROCESSING.value

    @pytest.mark.asyncio
    async def test_unknown_task(self):
        outcome = await self.trigger.complete_task(self.db, "nope", _complete("nope"))
        assert outcome.status == "unknown_task"


class TestObservers(TriggerTestBase):
    """Tests for the callback handler and the poller."""

    @pytest.mark.asyncio
    async def test_callback_payload_completes_job(self):
        job = self.processing_job(audio_task_reference="abc123")
        handler = AudioCallbackHandler(self.trigger)
        payload = {
            "code": 200,
            "msg": "All generated successfully.",
            "data": {
                "callbackType": "complete",
                "task_id": "abc123",
                "data": [
                    {"id": "clip-1", "audio_url": "https://cdn.example.com/1.mp3",
                     "image_url": "https://cdn.example.com/1.jpg", "title": "Para Maria"},
                    {"id": "clip-2", "audio_url": ""},
                ],
            },
        }

        outcome = await handler.handle(self.db, payload)

        assert outcome.status == "completed"
        assert len(outcome.song_ids) == 1
        assert job.status == JobStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_callback_without_task_id_is_invalid(self):
        handler = AudioCallbackHandler(self.trigger)
        outcome = await handler.handle(self.db, {"data": {"callbackType": "complete"}})
        assert outcome.status == "invalid"

    @pytest.mark.asyncio
    async def test_poller_applies_results_and_isolates_errors(self):
        done = self.processing_job(audio_task_reference="task-done")
        self.processing_job(audio_task_reference="task-broken")
        waiting = self.processing_job(audio_task_reference="task-waiting")

        async def query(task_id):
            if task_id == "task-broken":
                raise UpstreamGenerationError("audio", "HTTP 502")
            if task_id == "task-waiting":
                return AudioTaskResult(task_id=task_id, state=AudioTaskState.PENDING)
            return _complete(task_id, tracks=2)

        self.client.query.side_effect = query
        poller = AudioTaskPoller(self.trigger, session_maker=make_session_maker(self.db))

        report = await poller.poll()

        assert report.jobs_checked == 3
        assert report.completed == 1
        assert report.songs_created == 2
        assert report.still_processing == 1
        assert len(report.errors) == 1
        assert done.status == JobStatus.COMPLETED.value
        assert waiting.status == JobStatus.PROCESSING.value
