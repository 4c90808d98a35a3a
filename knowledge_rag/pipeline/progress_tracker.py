"""Indexing progress tracking with callback-based listener notification.

Stores the latest ``(stage, percent)`` snapshot for each document being
indexed and broadcasts updates to listeners registered for that document.
Listeners are keyed by document id so concurrent indexing runs never see
each other's events.

    IndexingService --emit(stage, pct)--> ProgressTracker --callback--> WebSocket handler
                                                          --callback--> CLI printer

Listener errors are logged and skipped; a broken WebSocket must not stall
the indexing run that is reporting to it.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

import structlog

from knowledge_rag.models.knowledge import utc_now
from knowledge_rag.utils.logging import get_logger

ProgressListener = Callable[[str, str, float], Awaitable[None] | None]

# Terminal stage names; their snapshots are evictable once the cap is hit.
TERMINAL_STAGES = frozenset({"completed", "failed", "canceled"})

_DEFAULT_MAX_SNAPSHOTS = 1000


@dataclass
class _DocumentProgress:
    """Mutable, internal-only snapshot of one document's progress."""

    stage: str = "pending"
    percent: float = 0.0
    message: str = ""
    updated_at: datetime = field(default_factory=utc_now)


class ProgressTracker:
    """Tracks and broadcasts per-document indexing progress.

    At most *max_snapshots* snapshots are kept.  When an update pushes the
    count over the cap, the least recently updated snapshots in a terminal
    stage with no registered listeners are dropped.  Documents still in
    flight or still watched, and the document just updated, are never
    evicted, so the count can briefly exceed the cap.
    """

    def __init__(self, max_snapshots: int = _DEFAULT_MAX_SNAPSHOTS) -> None:
        if max_snapshots < 1:
            raise ValueError("max_snapshots must be at least 1")
        self._max_snapshots = max_snapshots
        self._statuses: dict[str, _DocumentProgress] = {}
        self._listeners: dict[str, list[ProgressListener]] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def update(
        self,
        document_id: str,
        stage: str,
        percent: float,
        message: str = "",
    ) -> None:
        """Record a progress update and notify the document's listeners.

        Parameters
        ----------
        document_id:
            The document being indexed.
        stage:
            Stage name (``chunking``, ``generating_embeddings`` ...).
        percent:
            Completion percentage, clamped to 0..100.
        message:
            Optional human-readable detail (error text for ``failed``).
        """
        percent = max(0.0, min(100.0, float(percent)))
        # Re-insert so dict order tracks recency.
        self._statuses.pop(document_id, None)
        self._statuses[document_id] = _DocumentProgress(
            stage=stage,
            percent=percent,
            message=message,
        )
        self._logger.debug(
            "progress_update",
            document_id=document_id,
            stage=stage,
            percent=round(percent, 1),
        )
        self._evict_finished(keep=document_id)
        await self._notify_listeners(document_id, stage, percent)

    def callback_for(self, document_id: str) -> Callable[[str, float], Awaitable[None]]:
        """Return an ``on_progress(stage, percent)`` callable bound to *document_id*."""

        async def _on_progress(stage: str, percent: float) -> None:
            await self.update(document_id, stage, percent)

        return _on_progress

    def register_listener(self, document_id: str, callback: ProgressListener) -> None:
        """Register ``callback(document_id, stage, percent)`` for a document."""
        listeners = self._listeners.setdefault(document_id, [])
        if callback not in listeners:
            listeners.append(callback)
            self._logger.debug(
                "listener_registered",
                document_id=document_id,
                total_listeners=len(listeners),
            )

    def unregister_listener(self, document_id: str, callback: ProgressListener) -> None:
        listeners = self._listeners.get(document_id, [])
        if callback in listeners:
            listeners.remove(callback)
        if not listeners:
            self._listeners.pop(document_id, None)

    def get_status(self, document_id: str) -> dict | None:
        """Return ``{stage, percent, message, updated_at}`` or ``None`` if untracked."""
        status = self._statuses.get(document_id)
        if status is None:
            return None
        return {
            "stage": status.stage,
            "percent": status.percent,
            "message": status.message,
            "updated_at": status.updated_at.isoformat(),
        }

    def clear(self, document_id: str) -> None:
        """Forget a document's snapshot and listeners (after deletion)."""
        self._statuses.pop(document_id, None)
        self._listeners.pop(document_id, None)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _evict_finished(self, keep: str) -> None:
        excess = len(self._statuses) - self._max_snapshots
        if excess <= 0:
            return
        stale = [
            document_id
            for document_id, status in self._statuses.items()
            if document_id != keep
            and status.stage in TERMINAL_STAGES
            and document_id not in self._listeners
        ][:excess]
        for document_id in stale:
            del self._statuses[document_id]
        if stale:
            self._logger.debug("progress_snapshots_evicted", count=len(stale))

    async def _notify_listeners(self, document_id: str, stage: str, percent: float) -> None:
        for callback in list(self._listeners.get(document_id, [])):
            try:
                result = callback(document_id, stage, percent)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                self._logger.warning(
                    "listener_callback_error",
                    document_id=document_id,
                    error=str(exc),
                    callback=getattr(callback, "__name__", repr(callback)),
                )
