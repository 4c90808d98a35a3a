"""WebSocket endpoint for real-time indexing progress.

A client connects to ``/ws/progress/{document_id}`` and receives JSON
messages of the form::

    {"document_id": "...", "stage": "generating_embeddings", "percent": 55.0}

The first message is the current snapshot (``stage`` is ``"unknown"`` when
nothing has been reported yet).  The server closes the socket once a
terminal stage (``completed``, ``failed`` or ``canceled``) has been sent.
"""

from __future__ import annotations

import asyncio
import contextlib

import structlog
from fastapi import WebSocket, WebSocketDisconnect

from knowledge_rag.pipeline.progress_tracker import TERMINAL_STAGES, ProgressTracker
from knowledge_rag.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)


async def websocket_progress(websocket: WebSocket, document_id: str) -> None:
    """Stream one document's indexing progress to the client.

    Parameters
    ----------
    websocket:
        The WebSocket connection managed by FastAPI / Starlette.
    document_id:
        The document to subscribe to.
    """
    progress_tracker: ProgressTracker = websocket.app.state.progress_tracker

    await websocket.accept()
    _logger.info("websocket_connected", document_id=document_id)

    finished = asyncio.Event()

    async def _on_progress(doc_id: str, stage: str, percent: float) -> None:
        # The client may disconnect between updates; cleanup is in ``finally``.
        with contextlib.suppress(Exception):
            await websocket.send_json(
                {"document_id": doc_id, "stage": stage, "percent": round(percent, 1)}
            )
        if stage in TERMINAL_STAGES:
            finished.set()

    progress_tracker.register_listener(document_id, _on_progress)

    try:
        status = progress_tracker.get_status(document_id) or {"stage": "unknown", "percent": 0.0}
        await websocket.send_json({"document_id": document_id, **status})
        if status["stage"] in TERMINAL_STAGES:
            finished.set()

        receiver = asyncio.create_task(_drain(websocket))
        waiter = asyncio.create_task(finished.wait())
        try:
            await asyncio.wait({receiver, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (receiver, waiter):
                task.cancel()
            await asyncio.gather(receiver, waiter, return_exceptions=True)

        if finished.is_set():
            await websocket.close()

    except WebSocketDisconnect:
        _logger.info("websocket_disconnected", document_id=document_id)

    finally:
        progress_tracker.unregister_listener(document_id, _on_progress)
        _logger.debug("websocket_listener_cleaned_up", document_id=document_id)


async def _drain(websocket: WebSocket) -> None:
    """Consume client messages (keep-alives) until the client disconnects."""
    with contextlib.suppress(WebSocketDisconnect):
        while True:
            await websocket.receive_text()
