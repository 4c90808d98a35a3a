"""Unit tests for ProgressTracker and ProgressEmitter."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from knowledge_rag.pipeline.progress_tracker import TERMINAL_STAGES, ProgressTracker
from knowledge_rag.services.ingestion.indexing_service import ProgressEmitter


# ======================================================================
# ProgressTracker
# ======================================================================


class TestProgressTracker:
    @pytest.mark.asyncio
    async def test_update_stores_snapshot(self, progress_tracker: ProgressTracker) -> None:
        await progress_tracker.update("doc-1", "chunking", 10.0, "splitting")

        status = progress_tracker.get_status("doc-1")

        assert status is not None
        assert status["stage"] == "chunking"
        assert status["percent"] == 10.0
        assert status["message"] == "splitting"
        assert "updated_at" in status

    def test_untracked_document_has_no_status(self, progress_tracker: ProgressTracker) -> None:
        assert progress_tracker.get_status("nope") is None

    @pytest.mark.asyncio
    async def test_percent_is_clamped(self, progress_tracker: ProgressTracker) -> None:
        await progress_tracker.update("doc-1", "x", 150)
        assert progress_tracker.get_status("doc-1")["percent"] == 100.0
        await progress_tracker.update("doc-1", "x", -5)
        assert progress_tracker.get_status("doc-1")["percent"] == 0.0

    @pytest.mark.asyncio
    async def test_listeners_are_scoped_per_document(
        self, progress_tracker: ProgressTracker
    ) -> None:
        seen_a = MagicMock()
        seen_b = AsyncMock()
        progress_tracker.register_listener("a", seen_a)
        progress_tracker.register_listener("b", seen_b)

        await progress_tracker.update("a", "chunking", 10.0)

        seen_a.assert_called_once_with("a", "chunking", 10.0)
        seen_b.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_async_listener_is_awaited(self, progress_tracker: ProgressTracker) -> None:
        listener = AsyncMock()
        progress_tracker.register_listener("a", listener)

        await progress_tracker.update("a", "completed", 100.0)

        listener.assert_awaited_once_with("a", "completed", 100.0)

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(
        self, progress_tracker: ProgressTracker
    ) -> None:
        broken = MagicMock(side_effect=RuntimeError("socket closed"))
        healthy = MagicMock()
        progress_tracker.register_listener("a", broken)
        progress_tracker.register_listener("a", healthy)

        await progress_tracker.update("a", "chunking", 10.0)

        healthy.assert_called_once()

    @pytest.mark.asyncio
    async def test_registering_twice_notifies_once(
        self, progress_tracker: ProgressTracker
    ) -> None:
        listener = MagicMock()
        progress_tracker.register_listener("a", listener)
        progress_tracker.register_listener("a", listener)

        await progress_tracker.update("a", "chunking", 10.0)

        assert listener.call_count == 1

    @pytest.mark.asyncio
    async def test_unregister_stops_notifications(
        self, progress_tracker: ProgressTracker
    ) -> None:
        listener = MagicMock()
        progress_tracker.register_listener("a", listener)
        progress_tracker.unregister_listener("a", listener)
        progress_tracker.unregister_listener("a", listener)

        await progress_tracker.update("a", "chunking", 10.0)

        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_callback_for_binds_document(self, progress_tracker: ProgressTracker) -> None:
        callback = progress_tracker.callback_for("doc-9")
        await callback("saving_chunks", 20.0)
        assert progress_tracker.get_status("doc-9")["stage"] == "saving_chunks"

    @pytest.mark.asyncio
    async def test_clear_forgets_everything(self, progress_tracker: ProgressTracker) -> None:
        listener = MagicMock()
        progress_tracker.register_listener("a", listener)
        await progress_tracker.update("a", "chunking", 10.0)

        progress_tracker.clear("a")
        await progress_tracker.update("b", "chunking", 10.0)

        assert progress_tracker.get_status("a") is None
        assert listener.call_count == 1

    def test_terminal_stages(self) -> None:
        assert TERMINAL_STAGES == {"completed", "failed", "canceled"}

    def test_max_snapshots_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            ProgressTracker(max_snapshots=0)


# ======================================================================
# Snapshot cap
# ======================================================================


class TestSnapshotCap:
    @pytest.mark.asyncio
    async def test_oldest_finished_snapshots_are_evicted(self) -> None:
        tracker = ProgressTracker(max_snapshots=3)
        for index in range(5):
            await tracker.update(f"doc-{index}", "completed", 100.0)

        assert tracker.get_status("doc-0") is None
        assert tracker.get_status("doc-1") is None
        assert [tracker.get_status(f"doc-{i}")["stage"] for i in (2, 3, 4)] == ["completed"] * 3

    @pytest.mark.asyncio
    async def test_in_flight_documents_are_kept(self) -> None:
        tracker = ProgressTracker(max_snapshots=2)
        await tracker.update("running", "generating_embeddings", 40.0)
        await tracker.update("done-1", "completed", 100.0)
        await tracker.update("done-2", "failed", 100.0, "boom")

        assert tracker.get_status("running")["stage"] == "generating_embeddings"
        assert tracker.get_status("done-1") is None
        assert tracker.get_status("done-2")["message"] == "boom"

    @pytest.mark.asyncio
    async def test_watched_documents_are_kept(self) -> None:
        tracker = ProgressTracker(max_snapshots=1)
        tracker.register_listener("watched", MagicMock())
        await tracker.update("watched", "completed", 100.0)
        await tracker.update("other", "completed", 100.0)

        assert tracker.get_status("watched")["stage"] == "completed"
        assert tracker.get_status("other")["stage"] == "completed"

    @pytest.mark.asyncio
    async def test_recent_update_refreshes_position(self) -> None:
        tracker = ProgressTracker(max_snapshots=2)
        await tracker.update("a", "completed", 100.0)
        await tracker.update("b", "completed", 100.0)
        await tracker.update("a", "completed", 100.0)
        await tracker.update("c", "completed", 100.0)

        assert tracker.get_status("b") is None
        assert tracker.get_status("a") is not None


# ======================================================================
# ProgressEmitter
# ======================================================================


class TestProgressEmitter:
    @pytest.mark.asyncio
    async def test_percent_never_decreases(self) -> None:
        seen: list[tuple[str, float]] = []
        emitter = ProgressEmitter(lambda stage, pct: seen.append((stage, pct)))

        await emitter.emit("generating_embeddings", 55.0)
        await emitter.emit("failed", 20.0)

        assert seen == [("generating_embeddings", 55.0), ("failed", 55.0)]
        assert emitter.percent == 55.0
        assert emitter.stage == "failed"

    @pytest.mark.asyncio
    async def test_percent_is_capped_at_100(self) -> None:
        emitter = ProgressEmitter(None)
        await emitter.emit("completed", 120.0)
        assert emitter.percent == 100.0

    @pytest.mark.asyncio
    async def test_callback_errors_are_swallowed(self) -> None:
        emitter = ProgressEmitter(AsyncMock(side_effect=RuntimeError("boom")), "doc-1")
        await emitter.emit("chunking", 10.0)
        assert emitter.percent == 10.0
