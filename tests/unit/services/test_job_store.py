"""Unit tests for JobStore (all DB calls mocked)."""

import uuid
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from app.models.base import utcnow
from app.models.job import JobStatus
from app.services.fulfillment.events import PipelineEvents
from app.services.fulfillment.job_store import JobStore

from tests.helpers.mock_factories import (
    make_job,
    make_mock_db,
    mock_rowcount_result,
    mock_scalar_result,
    mock_scalars_result,
)


def _sql(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


class TestTransition:
    """Tests for the compare-and-set transition."""

    def setup_method(self):
        self.events = PipelineEvents()
        self.store = JobStore(events=self.events)
        self.db = make_mock_db()

    @pytest.mark.asyncio
    async def test_winner_emits_event(self):
        self.db.execute.return_value = mock_rowcount_result(1)
        job_id = uuid.uuid4()

        won = await self.store.transition(
            self.db, job_id, JobStatus.PROCESSING.value, JobStatus.COMPLETED
        )

        assert won is True
        [event] = self.events.of("job.completed")
        assert event.entity_id == str(job_id)
        assert event.from_status == "processing"
        sql = _sql(self.db.execute.await_args.args[0])
        assert "UPDATE jobs" in sql
        assert "jobs.status IN" in sql

    @pytest.mark.asyncio
    async def test_loser_emits_nothing(self):
        self.db.execute.return_value = mock_rowcount_result(0)

        won = await self.store.transition(
            self.db, uuid.uuid4(), JobStatus.PROCESSING.value, JobStatus.COMPLETED
        )

        assert won is False
        assert self.events.recent == []

    @pytest.mark.asyncio
    async def test_start_processing_accepts_active_statuses(self):
        self.db.execute.return_value = mock_rowcount_result(1)

        assert await self.store.start_processing(self.db, uuid.uuid4()) is True
        [event] = self.events.of("job.processing")
        assert set(event.from_status.split("|")) == {"pending", "processing"}

    @pytest.mark.asyncio
    async def test_mark_failed_truncates_error(self):
        self.db.execute.return_value = mock_rowcount_result(1)

        await self.store.mark_failed(self.db, uuid.uuid4(), "x" * 5000)

        params = self.db.execute.await_args.args[0].compile().params
        assert len(params["error"]) == 2000


class TestCreateForOrder:
    """Tests for idempotent job creation."""

    def setup_method(self):
        self.events = PipelineEvents()
        self.store = JobStore(events=self.events)
        self.db = make_mock_db()

    @pytest.mark.asyncio
    async def test_creates_new_job(self):
        job = make_job()
        self.db.execute.side_effect = [mock_scalar_result(job.id), mock_scalar_result(job)]

        result, created = await self.store.create_for_order(self.db, job.order_id, job.quiz_id)

        assert created is True
        assert result is job
        assert len(self.events.of("job.created")) == 1
        assert "ON CONFLICT" in _sql(self.db.execute.await_args_list[0].args[0])

    @pytest.mark.asyncio
    async def test_returns_existing_active_job(self):
        existing = make_job(status=JobStatus.PROCESSING.value)
        self.db.execute.side_effect = [mock_scalar_result(None), mock_scalars_result([existing])]

        result, created = await self.store.create_for_order(
            self.db, existing.order_id, existing.quiz_id
        )

        assert created is False
        assert result is existing
        assert self.events.recent == []

    @pytest.mark.asyncio
    async def test_inserted_row_missing_on_read_raises(self):
        self.db.execute.side_effect = [mock_scalar_result(uuid.uuid4()), mock_scalar_result(None)]

        with pytest.raises(RuntimeError):
            await self.store.create_for_order(self.db, uuid.uuid4(), uuid.uuid4())
        assert self.events.recent == []


class TestAudioClaim:
    def setup_method(self):
        self.store = JobStore(events=MagicMock())
        self.db = make_mock_db()

    @pytest.mark.asyncio
    async def test_claim_requires_no_reference_and_no_claim(self):
        self.db.execute.return_value = mock_rowcount_result(1)

        assert await self.store.claim_audio_submission(self.db, uuid.uuid4()) is True
        sql = _sql(self.db.execute.await_args.args[0])
        assert "jobs.audio_task_reference IS NULL" in sql
        assert "jobs.audio_requested_at IS NULL" in sql

    @pytest.mark.asyncio
    async def test_second_claim_loses(self):
        self.db.execute.return_value = mock_rowcount_result(0)
        assert await self.store.claim_audio_submission(self.db, uuid.uuid4()) is False

    @pytest.mark.asyncio
    async def test_stale_claim_release_requires_old_or_missing_claim(self):
        self.db.execute.return_value = mock_rowcount_result(1)

        assert await self.store.release_stale_audio_claim(self.db, uuid.uuid4(), utcnow()) is True
        sql = _sql(self.db.execute.await_args.args[0])
        assert "jobs.audio_task_reference IS NULL" in sql
        assert "jobs.audio_requested_at IS NULL OR jobs.audio_requested_at <" in sql

    @pytest.mark.asyncio
    async def test_fresh_claim_is_not_released(self):
        self.db.execute.return_value = mock_rowcount_result(0)
        assert await self.store.release_stale_audio_claim(self.db, uuid.uuid4(), utcnow()) is False
