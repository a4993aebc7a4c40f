"""Processing orchestrator: turns queued captures into one streamed answer.

Only one request may be in flight at a time. A trigger that arrives while a
request is running is dropped without any notification. The view decides the
workflow: the ``initial`` view answers from the main queue, any other view
runs a follow-up over the main and extra queues together.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Optional

from ..core.state_machine import ProcessingState, workflow_for_view
from ..domain.errors import ErrorKind
from ..domain.processing_models import (
    EVENT_CHANNELS,
    START_EVENTS,
    AudioSnapshot,
    ProcessingEvents,
    ProcessingResult,
    RequestContext,
)
from ..infrastructure.capture_queue import CaptureQueueProvider
from ..infrastructure.config_store import ConfigurationProvider
from ..infrastructure.events import NotificationSink
from ..infrastructure.view_state import ViewStateProvider
from ..observability.metrics import DROPPED_TRIGGERS, PROCESSING_BUSY, observe_processing
from .artifact_loader import load_artifacts
from .content_assembler import build_content_parts, build_prompt, truncate_user_context
from .error_classifier import (
    CANCEL_MESSAGES,
    DEFAULT_TIMEOUT_MESSAGE,
    INITIAL_TIMEOUT_MESSAGE,
    ErrorHandler,
    ErrorHandlingOptions,
)
from .model_router import ModelRouter
from .streaming import StreamingRequestEngine
from .telemetry_sink import TelemetryEvent, record_event

_logger = logging.getLogger("cass.processing")


class ProcessingOrchestrator:
    def __init__(
        self,
        queue: CaptureQueueProvider,
        view_state: ViewStateProvider,
        config: ConfigurationProvider,
        sink: NotificationSink,
        router: Optional[ModelRouter] = None,
        engine: Optional[StreamingRequestEngine] = None,
        state: Optional[ProcessingState] = None,
    ) -> None:
        self._queue = queue
        self._view = view_state
        self._config = config
        self._sink = sink
        self._router = router or ModelRouter()
        self._engine = engine or StreamingRequestEngine(sink)
        self._errors = ErrorHandler(sink)
        self._state = state or ProcessingState()
        self._task: Optional[asyncio.Task] = None
        self._task_workflow: Optional[str] = None

    @property
    def state(self) -> ProcessingState:
        return self._state

    def is_busy(self) -> bool:
        return self._state.busy

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def process_batch(self, audio: Optional[AudioSnapshot] = None) -> Optional[asyncio.Task]:
        """Start processing the queued captures. Must be called on the event loop.

        Returns the pipeline task, or ``None`` when the trigger was dropped
        because another request is in flight.
        """

        if self._state.busy:
            _logger.info("Processing already in progress. Skipping duplicate call.")
            DROPPED_TRIGGERS.inc()
            return None

        view = self._view.get_view()
        workflow = workflow_for_view(view)
        request_id = uuid.uuid4().hex
        self._state.acquire(workflow, request_id)
        PROCESSING_BUSY.set(1)
        _logger.info("Processing screenshots in view: %s", view)

        try:
            self._sink.send(START_EVENTS[workflow])
            task = asyncio.get_running_loop().create_task(self._run(workflow, request_id, audio))
        except BaseException:
            self._release(request_id)
            raise
        task.add_done_callback(lambda t: self._on_task_done(t, workflow, request_id))
        self._task = task
        self._task_workflow = workflow
        return task

    def reset_processing(self) -> None:
        """Abort any in-flight request and return every piece of state to its start.

        The aborted request reports its cancellation here, before the guard is
        released. Once a new request can start, the old task no longer owns
        the guard and stays silent while it unwinds.
        """

        task, self._task = self._task, None
        workflow, self._task_workflow = self._task_workflow, None
        if task is not None and not task.done():
            task.cancel()
            self._errors.handle(asyncio.CancelledError(), self._error_options(workflow or "initial"))
        self._release()
        self._view.set_has_followed_up(False)
        self._queue.clear_all()
        self._view.set_view("initial")
        self._sink.send(ProcessingEvents.RESET_VIEW)
        record_event(TelemetryEvent(name="processing_reset"))

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------
    async def _run(self, workflow: str, request_id: str, audio: Optional[AudioSnapshot]) -> ProcessingResult:
        started = time.perf_counter()
        options = self._error_options(workflow)
        result = ProcessingResult(success=False)
        try:
            try:
                result = await self._execute(workflow, audio)
            except (Exception, asyncio.CancelledError) as exc:
                if self._owns(request_id):
                    result = self._errors.handle(exc, options)
                else:
                    result = self._abandoned_result(workflow)
                _logger.warning("[Processing:%s] Processing failed: %s", workflow, result.error)
            return result
        finally:
            self._release(request_id)
            outcome = "success" if result.success else (result.kind.value if result.kind else "unknown")
            observe_processing(workflow, outcome, time.perf_counter() - started)
            record_event(
                TelemetryEvent(
                    name="processing_finished",
                    workflow=workflow,
                    properties={"outcome": outcome, "chars": len(result.data or "")},
                )
            )
            _logger.info("Processing finished. Resetting busy flag.")

    async def _execute(self, workflow: str, audio: Optional[AudioSnapshot]) -> ProcessingResult:
        if workflow == "initial":
            paths = self._queue.main_queue()
        else:
            paths = [*self._queue.main_queue(), *self._queue.extra_queue()]
        _logger.info("[Processing:%s] Screenshots for processing: %s", workflow, paths)

        artifacts = await load_artifacts(paths)
        configuration = await self._router.resolve(self._config)
        _logger.info(
            "[Processing:%s] Using provider: %s, model: %s",
            workflow,
            configuration.provider,
            configuration.model,
        )

        parts, has_audio = build_content_parts(artifacts, audio, workflow)
        user_context = truncate_user_context(await self._config.get_user_profile())
        request = RequestContext(
            workflow=workflow,
            artifacts=artifacts,
            audio=audio,
            provider=configuration.provider,
            api_key=configuration.api_key,
            model=configuration.model,
            base_url=configuration.base_url,
            user_context=user_context,
            prompt=build_prompt(has_audio, user_context),
            parts=parts,
        )
        text = await self._engine.run(request, EVENT_CHANNELS[workflow])

        if workflow == "initial":
            self._queue.clear_extra()
            _logger.info("Setting view to response after successful processing")
            self._view.set_view("response")
        else:
            self._view.set_has_followed_up(True)
        return ProcessingResult(success=True, data=text)

    # ------------------------------------------------------------------
    # Workflow hooks
    # ------------------------------------------------------------------
    def _error_options(self, workflow: str) -> ErrorHandlingOptions:
        if workflow == "initial":
            return ErrorHandlingOptions(
                channels=EVENT_CHANNELS["initial"],
                workflow="initial",
                timeout_message=INITIAL_TIMEOUT_MESSAGE,
                on_timeout=self._on_initial_timeout,
                on_error=lambda _exc: self._view.set_view("initial"),
            )
        return ErrorHandlingOptions(
            channels=EVENT_CHANNELS["follow-up"],
            workflow="follow-up",
            timeout_message=DEFAULT_TIMEOUT_MESSAGE,
            on_timeout=self._on_follow_up_timeout,
            on_error=lambda _exc: self._view.set_has_followed_up(False),
        )

    def _on_initial_timeout(self) -> None:
        self._view.set_has_followed_up(False)
        self._queue.clear_all()
        self._view.set_view("initial")
        self._sink.send(ProcessingEvents.RESET_VIEW)

    def _on_follow_up_timeout(self) -> None:
        self._view.set_has_followed_up(False)
        self._queue.clear_all()

    def _on_task_done(self, task: asyncio.Task, workflow: str, request_id: str) -> None:
        # A task cancelled before its first step never enters _run
        if task.cancelled() and self._owns(request_id):
            self._errors.handle(asyncio.CancelledError(), self._error_options(workflow))
        self._release(request_id)
        if self._task is task:
            self._task = None
            self._task_workflow = None

    def _owns(self, request_id: str) -> bool:
        return self._state.busy and self._state.request_id == request_id

    @staticmethod
    def _abandoned_result(workflow: str) -> ProcessingResult:
        message = CANCEL_MESSAGES.get(workflow, CANCEL_MESSAGES["initial"])
        return ProcessingResult(success=False, error=message, kind=ErrorKind.CANCELED)

    def _release(self, request_id: Optional[str] = None) -> None:
        if self._state.release(request_id):
            PROCESSING_BUSY.set(0)


_orchestrator: Optional[ProcessingOrchestrator] = None


def get_orchestrator() -> ProcessingOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        from ..infrastructure.capture_queue import get_capture_queue
        from ..infrastructure.config_store import get_config_store
        from ..infrastructure.events import get_notification_sink
        from ..infrastructure.view_state import get_view_state

        _orchestrator = ProcessingOrchestrator(
            queue=get_capture_queue(),
            view_state=get_view_state(),
            config=get_config_store(),
            sink=get_notification_sink(),
        )
    return _orchestrator
