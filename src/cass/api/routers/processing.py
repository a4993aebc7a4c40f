from __future__ import annotations

import asyncio
import json
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import StreamingResponse

from ...domain.processing_models import (
    BatchRequest,
    EnqueueRequest,
    ProcessingStatus,
    QueueSnapshot,
    ViewUpdate,
)
from ...infrastructure.capture_queue import InMemoryCaptureQueue, get_capture_queue
from ...infrastructure.events import BroadcastNotificationSink, get_notification_sink
from ...infrastructure.view_state import InMemoryViewState, get_view_state
from ...services.processing import ProcessingOrchestrator, get_orchestrator

router = APIRouter(tags=["processing"])

_KEEPALIVE_SECONDS = 15.0


def _status(orchestrator: ProcessingOrchestrator, view_state: InMemoryViewState) -> ProcessingStatus:
    return ProcessingStatus(
        busy=orchestrator.is_busy(),
        phase=orchestrator.state.phase,
        view=view_state.get_view(),
        has_followed_up=view_state.has_followed_up(),
    )


@router.post("/processing/batch", status_code=status.HTTP_202_ACCEPTED)
async def process_batch(
    payload: BatchRequest | None = None,
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
) -> dict:
    # Duplicate triggers are dropped silently; the caller follows the event stream
    orchestrator.process_batch(payload.audio if payload else None)
    return {"status": "accepted"}


@router.post("/processing/reset", response_model=ProcessingStatus)
def reset_processing(
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
    view_state: InMemoryViewState = Depends(get_view_state),
) -> ProcessingStatus:
    orchestrator.reset_processing()
    return _status(orchestrator, view_state)


@router.get("/processing/status", response_model=ProcessingStatus)
def processing_status(
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
    view_state: InMemoryViewState = Depends(get_view_state),
) -> ProcessingStatus:
    return _status(orchestrator, view_state)


@router.get("/processing/events")
async def processing_events(
    request: Request,
    sink: BroadcastNotificationSink = Depends(get_notification_sink),
) -> StreamingResponse:
    queue = sink.subscribe()

    async def stream() -> AsyncIterator[str]:
        try:
            while not await request.is_disconnected():
                try:
                    notification = await asyncio.wait_for(queue.get(), timeout=_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield f"event: {notification.event}\ndata: {json.dumps(notification.payload)}\n\n"
        finally:
            sink.unsubscribe(queue)

    return StreamingResponse(stream(), media_type="text/event-stream")


@router.get("/queue", response_model=QueueSnapshot)
def list_queue(queue: InMemoryCaptureQueue = Depends(get_capture_queue)) -> QueueSnapshot:
    return QueueSnapshot(main=queue.main_queue(), extra=queue.extra_queue())


@router.post("/queue", response_model=QueueSnapshot, status_code=status.HTTP_201_CREATED)
def enqueue_capture(
    payload: EnqueueRequest,
    queue: InMemoryCaptureQueue = Depends(get_capture_queue),
) -> QueueSnapshot:
    queue.enqueue(payload.path, extra=payload.extra)
    return QueueSnapshot(main=queue.main_queue(), extra=queue.extra_queue())


@router.put("/view", response_model=ProcessingStatus)
def update_view(
    payload: ViewUpdate,
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
    view_state: InMemoryViewState = Depends(get_view_state),
) -> ProcessingStatus:
    view_state.set_view(payload.view)
    return _status(orchestrator, view_state)
