"""Map raw failures onto the processing error taxonomy and roll state back.

Classification is ordered: Timeout, then Canceled, then InvalidCredentials,
then Unknown. Every handled failure produces exactly one error notification
on the workflow's error channel.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

import requests

from ..domain.errors import ErrorKind
from ..domain.processing_models import EventChannelSet, ProcessingEvents, ProcessingResult
from ..infrastructure.events import NotificationSink

_logger = logging.getLogger("cass.processing")

TIMEOUT_CODES = frozenset({"ETIMEDOUT", "DEADLINE_EXCEEDED", 504, "504"})
ABORT_ERROR_NAMES = frozenset({"AbortError", "GoogleGenerativeAIAbortError"})
ABORT_MARKER = "Request aborted"
API_KEY_INDICATORS = (
    "Please close this window and re-enter a valid Open AI API key.",
    "API key not found",
    "API key not valid",
)

DEFAULT_TIMEOUT_MESSAGE = "Request timed out. Please try again."
INITIAL_TIMEOUT_MESSAGE = "Request timed out. The server took too long to respond. Please try again."
CANCEL_MESSAGES = {
    "initial": "Processing canceled.",
    "follow-up": "Follow-up processing canceled.",
}
UNKNOWN_MESSAGES = {
    "initial": "Unknown error during response generation",
    "follow-up": "Unknown error during follow-up processing",
}


def error_message(error: BaseException) -> str:
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(error) if str(error) else ""


def _status_codes(error: BaseException) -> Iterator[Any]:
    for attr in ("status_code", "status", "code"):
        value = getattr(error, attr, None)
        if value is not None:
            yield value
    response = getattr(error, "response", None)
    if response is not None:
        yield getattr(response, "status_code", None)
        yield getattr(response, "status", None)


def is_timeout(error: BaseException) -> bool:
    if isinstance(error, (TimeoutError, requests.exceptions.Timeout)):
        return True
    return any(value in TIMEOUT_CODES for value in _status_codes(error) if value is not None)


def is_abort(error: BaseException) -> bool:
    if isinstance(error, asyncio.CancelledError):
        return True
    name = getattr(error, "name", None) or type(error).__name__
    return name in ABORT_ERROR_NAMES or ABORT_MARKER in error_message(error)


def credentials_message(error: BaseException) -> str:
    response = getattr(error, "response", None)
    data = getattr(response, "data", None)
    if isinstance(data, dict) and isinstance(data.get("error"), str) and data["error"]:
        return data["error"]
    return error_message(error)


def is_invalid_credentials(error: BaseException) -> bool:
    message = credentials_message(error)
    return any(indicator in message for indicator in API_KEY_INDICATORS)


def classify_error(error: BaseException) -> ErrorKind:
    if is_timeout(error):
        return ErrorKind.TIMEOUT
    if is_abort(error):
        return ErrorKind.CANCELED
    if is_invalid_credentials(error):
        return ErrorKind.INVALID_CREDENTIALS
    return ErrorKind.UNKNOWN


@dataclass
class ErrorHandlingOptions:
    channels: EventChannelSet
    workflow: str
    timeout_message: str = DEFAULT_TIMEOUT_MESSAGE
    on_timeout: Optional[Callable[[], None]] = None
    on_error: Optional[Callable[[BaseException], None]] = None


class ErrorHandler:
    def __init__(self, sink: NotificationSink) -> None:
        self._sink = sink

    def handle(self, error: BaseException, options: ErrorHandlingOptions) -> ProcessingResult:
        workflow = options.workflow
        _logger.error(
            "[Processing:%s] Response generation error: %s",
            workflow,
            error_message(error) or type(error).__name__,
            extra={"error_type": type(error).__name__, "error_code": getattr(error, "code", None)},
        )
        kind = classify_error(error)

        if kind is ErrorKind.TIMEOUT:
            if options.on_timeout:
                options.on_timeout()
            return self._fail(options.channels, options.timeout_message, kind)

        if options.on_error:
            options.on_error(error)

        if kind is ErrorKind.CANCELED:
            return self._fail(options.channels, CANCEL_MESSAGES.get(workflow, CANCEL_MESSAGES["initial"]), kind)

        if kind is ErrorKind.INVALID_CREDENTIALS:
            self._sink.send(ProcessingEvents.API_KEY_INVALID)
            return self._fail(options.channels, credentials_message(error), kind)

        fallback = UNKNOWN_MESSAGES.get(workflow, UNKNOWN_MESSAGES["initial"])
        return self._fail(options.channels, error_message(error) or fallback, kind)

    def _fail(self, channels: EventChannelSet, message: str, kind: ErrorKind) -> ProcessingResult:
        self._sink.send(channels.error, message)
        return ProcessingResult(success=False, error=message, kind=kind)
