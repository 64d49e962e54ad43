"""Unit tests for the release sweep."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.models.song import SongStatus
from app.services.fulfillment.release_scheduler import ReleaseScheduler

from tests.helpers.mock_factories import make_mock_db, make_order, make_song

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FakeSongs:
    """Song store whose release honors the `released_at IS NULL` guard."""

    def __init__(self, songs):
        self.songs = songs
        self.release_writes: list = []

    async def list_due_for_release(self, db, now, limit=500):
        return [
            s for s in self.songs
            if s.status == SongStatus.APPROVED.value and s.released_at is None and s.release_at <= now
        ][:limit]

    async def release_order(self, db, order_id, now):
        released = []
        for song in self.songs:
            if (
                song.order_id == order_id
                and song.status == SongStatus.APPROVED.value
                and song.released_at is None
                and song.release_at <= now
                and song.audio_url is not None
            ):
                song.status = SongStatus.RELEASED.value
                song.released_at = now
                self.release_writes.append(song.id)
                released.append(song.id)
        return released


class SharedSnapshotSongs(FakeSongs):
    """Every sweep reads the due list before any of them releases."""

    def __init__(self, songs, readers):
        super().__init__(songs)
        self.readers = readers
        self.listed = 0
        self.all_listed = asyncio.Event()

    async def list_due_for_release(self, db, now, limit=500):
        snapshot = await super().list_due_for_release(db, now, limit)
        self.listed += 1
        if self.listed == self.readers:
            self.all_listed.set()
        await self.all_listed.wait()
        return snapshot


class TestReleaseScheduler:
    """Tests for ReleaseScheduler.sweep."""

    def setup_method(self):
        self.db = make_mock_db()
        self.queue = MagicMock()
        self.queue.enqueue = AsyncMock(return_value=True)
        self.scheduler = ReleaseScheduler(queue=self.queue, events=MagicMock())

    def _patch(self, songs, orders, song_ops=None):
        song_ops = song_ops or FakeSongs(songs)
        order_ops = MagicMock()
        order_ops.get = AsyncMock(side_effect=lambda db, order_id: orders.get(order_id))
        return (
            patch("app.services.fulfillment.release_scheduler.song_ops", song_ops),
            patch("app.services.fulfillment.release_scheduler.order_ops", order_ops),
        )

    @pytest.mark.asyncio
    async def test_releases_due_songs_and_enqueues_once(self):
        order = make_order()
        due = [
            make_song(order_id=order.id, release_at=NOW - timedelta(hours=1), variant_number=1),
            make_song(order_id=order.id, release_at=NOW - timedelta(minutes=5), variant_number=2),
        ]
        later = make_song(order_id=order.id, release_at=NOW + timedelta(hours=2), variant_number=3)
        songs_patch, orders_patch = self._patch([*due, later], {order.id: order})

        with songs_patch, orders_patch:
            report = await self.scheduler.sweep(self.db, now=NOW)
            second = await self.scheduler.sweep(self.db, now=NOW)

        assert report.songs_due == 2
        assert report.processed_orders == 1
        assert report.songs_released == 2
        assert report.notifications_enqueued == 1
        assert all(s.status == SongStatus.RELEASED.value and s.released_at == NOW for s in due)
        assert later.released_at is None

        self.queue.enqueue.assert_awaited_once()
        kwargs = self.queue.enqueue.await_args.kwargs
        assert kwargs["recipient"] == order.customer_email
        assert kwargs["song_id"] == min((s.id for s in due), key=str)

        assert second.songs_due == 0
        assert second.songs_released == 0

    @pytest.mark.asyncio
    async def test_concurrent_sweeps_over_same_snapshot_release_once(self):
        order = make_order()
        due = [
            make_song(order_id=order.id, release_at=NOW - timedelta(hours=1), variant_number=1),
            make_song(order_id=order.id, release_at=NOW - timedelta(hours=1), variant_number=2),
        ]
        songs = SharedSnapshotSongs(due, readers=2)
        songs_patch, orders_patch = self._patch(due, {order.id: order}, song_ops=songs)
        other = ReleaseScheduler(queue=self.queue, events=MagicMock())

        with songs_patch, orders_patch:
            first, second = await asyncio.gather(
                self.scheduler.sweep(self.db, now=NOW),
                other.sweep(self.db, now=NOW),
            )

        assert first.songs_due == second.songs_due == 2
        assert sorted(songs.release_writes, key=str) == sorted((s.id for s in due), key=str)
        assert first.songs_released + second.songs_released == 2
        assert first.notifications_enqueued + second.notifications_enqueued == 1
        self.queue.enqueue.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_song_without_audio_stays_unreleased(self):
        order = make_order()
        ready = make_song(order_id=order.id, release_at=NOW - timedelta(hours=1))
        silent = make_song(order_id=order.id, release_at=NOW - timedelta(hours=1), audio_url=None)
        songs_patch, orders_patch = self._patch([ready, silent], {order.id: order})

        with songs_patch, orders_patch:
            report = await self.scheduler.sweep(self.db, now=NOW)

        assert report.songs_released == 1
        assert silent.released_at is None
        assert self.queue.enqueue.await_args.kwargs["song_id"] == ready.id

    @pytest.mark.asyncio
    async def test_unapproved_songs_are_not_released(self):
        order = make_order()
        ready = make_song(order_id=order.id, status=SongStatus.READY.value)
        songs_patch, orders_patch = self._patch([ready], {order.id: order})

        with songs_patch, orders_patch:
            report = await self.scheduler.sweep(self.db, now=NOW)

        assert report.songs_released == 0
        assert ready.status == SongStatus.READY.value
        self.queue.enqueue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failing_order_does_not_block_others(self):
        broken = make_order()
        healthy = make_order()
        songs = [
            make_song(order_id=broken.id, release_at=NOW - timedelta(hours=1)),
            make_song(order_id=healthy.id, release_at=NOW - timedelta(hours=1)),
        ]

        async def enqueue(db, *, recipient, order_id, song_id, now):
            if order_id == broken.id:
                raise RuntimeError("queue insert failed")
            return True

        self.queue.enqueue.side_effect = enqueue
        songs_patch, orders_patch = self._patch(songs, {broken.id: broken, healthy.id: healthy})

        with songs_patch, orders_patch:
            report = await self.scheduler.sweep(self.db, now=NOW)

        assert report.processed_orders == 1
        assert report.notifications_enqueued == 1
        assert len(report.errors) == 1
        assert str(broken.id) in report.errors[0]
        self.db.rollback.assert_awaited()
        self.db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_duplicate_notification_is_not_counted(self):
        order = make_order()
        songs_patch, orders_patch = self._patch(
            [make_song(order_id=order.id, release_at=NOW - timedelta(hours=1))], {order.id: order}
        )
        self.queue.enqueue.return_value = False

        with songs_patch, orders_patch:
            report = await self.scheduler.sweep(self.db, now=NOW)

        assert report.songs_released == 1
        assert report.notifications_enqueued == 0

    @pytest.mark.asyncio
    async def test_no_due_songs(self):
        songs_patch, orders_patch = self._patch([], {})

        with songs_patch, orders_patch:
            report = await self.scheduler.sweep(self.db, now=NOW)

        assert report.songs_due == 0
        self.db.commit.assert_not_awaited()
