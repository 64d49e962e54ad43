"""Unit tests for NotificationQueueOperations and the order/admin-log helpers."""

import uuid
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from app.domain.admin_log_operations import AdminLogOperations
from app.domain.notification_queue_operations import NotificationQueueOperations
from app.domain.order_operations import OrderOperations

from tests.helpers.mock_factories import (
    make_mock_db,
    make_order,
    make_queue_entry,
    make_quiz,
    mock_rowcount_result,
    mock_scalars_result,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _sql(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


class TestQueueWrites:
    def setup_method(self):
        self.ops = NotificationQueueOperations()
        self.db = make_mock_db()

    @pytest.mark.asyncio
    async def test_enqueue_is_idempotent_per_order(self):
        self.db.execute.return_value = mock_rowcount_result(0)

        created = await self.ops.enqueue(
            self.db, recipient="a@b.com", order_id=uuid.uuid4(), song_id=uuid.uuid4(),
            max_retries=5, now=NOW,
        )

        assert created is False
        assert "ON CONFLICT ON CONSTRAINT uq_notification_queue_order_template DO NOTHING" in _sql(
            self.db.execute.await_args.args[0]
        )

    @pytest.mark.asyncio
    async def test_claim_due_skips_locked_rows_and_marks_processing(self):
        entries = [make_queue_entry(status="pending"), make_queue_entry(status="pending")]
        self.db.execute.side_effect = [mock_scalars_result(entries), MagicMock()]

        claimed = await self.ops.claim_due(self.db, NOW, limit=10)

        assert claimed == entries
        assert all(e.status == "processing" for e in entries)
        assert "FOR UPDATE SKIP LOCKED" in _sql(self.db.execute.await_args_list[0].args[0])

    @pytest.mark.asyncio
    async def test_claim_due_with_nothing_due(self):
        self.db.execute.return_value = mock_scalars_result([])

        assert await self.ops.claim_due(self.db, NOW, limit=10) == []
        assert self.db.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_retry_truncates_error(self):
        self.db.execute.return_value = mock_rowcount_result(1)

        await self.ops.schedule_retry(self.db, uuid.uuid4(), 1, NOW, "e" * 3000, NOW)

        params = self.db.execute.await_args.args[0].compile().params
        assert len(params["last_error"]) == 2000
        assert params["status"] == "pending"

    @pytest.mark.asyncio
    async def test_recover_stale_returns_count(self):
        self.db.execute.return_value = mock_rowcount_result(3)
        assert await self.ops.recover_stale(self.db, NOW, NOW) == 3

    @pytest.mark.asyncio
    async def test_recover_stale_counts_the_interrupted_attempt(self):
        self.db.execute.return_value = mock_rowcount_result(1)

        await self.ops.recover_stale(self.db, NOW, NOW)

        sql = _sql(self.db.execute.await_args.args[0])
        assert "notification_queue.retry_count +" in sql
        assert "CASE WHEN" in sql
        assert "notification_queue.max_retries" in sql


class TestOrderOperations:
    @pytest.mark.asyncio
    async def test_get_with_quiz(self):
        quiz = make_quiz()
        order = make_order(quiz)
        db = make_mock_db()
        result = MagicMock()
        result.first.return_value = (order, quiz)
        db.execute.return_value = result

        assert await OrderOperations().get_with_quiz(db, order.id) == (order, quiz)

    @pytest.mark.asyncio
    async def test_get_with_quiz_missing(self):
        db = make_mock_db()
        result = MagicMock()
        result.first.return_value = None
        db.execute.return_value = result

        assert await OrderOperations().get_with_quiz(db, uuid.uuid4()) is None


class TestAdminLog:
    @pytest.mark.asyncio
    async def test_record_adds_row_in_current_transaction(self):
        db = make_mock_db()
        target = uuid.uuid4()

        entry = await AdminLogOperations().record(
            db, "lyrics_rejected", "lyrics_approvals", target, {"reason": "x"}, actor="admin"
        )

        db.add.assert_called_once_with(entry)
        db.commit.assert_not_awaited()
        assert entry.target_id == str(target)
        assert entry.actor == "admin"
