from __future__ import annotations

from dataclasses import dataclass
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .errors import ErrorKind


View = Literal["initial", "response", "followup"]
WorkflowLabel = Literal["initial", "follow-up"]
PartKind = Literal["image", "audio"]

IMAGE_MIME_TYPE = "image/png"
DEFAULT_AUDIO_MIME_TYPE = "audio/webm"
USER_CONTEXT_LIMIT = 3000


class CaptureArtifact(BaseModel):
    path: str
    data: str
    mime_type: str = IMAGE_MIME_TYPE


class AudioSnapshot(BaseModel):
    data: str
    mime_type: Optional[str] = Field(default=None, description="Defaults to audio/webm when omitted")


class ContentPart(BaseModel):
    kind: PartKind
    mime_type: str
    data: str


class ModelConfiguration(BaseModel):
    provider: str
    api_key: Optional[str] = None
    model: str
    base_url: Optional[str] = None


class RequestContext(BaseModel):
    """Everything one outbound request needs. Built per invocation, never reused."""

    workflow: WorkflowLabel
    artifacts: List[CaptureArtifact] = Field(default_factory=list)
    audio: Optional[AudioSnapshot] = None
    provider: str
    api_key: Optional[str] = None
    model: str
    base_url: Optional[str] = None
    user_context: str = ""
    prompt: str = ""
    parts: List[ContentPart] = Field(default_factory=list)


class ProcessingResult(BaseModel):
    success: bool
    data: Optional[str] = None
    error: Optional[str] = None
    kind: Optional[ErrorKind] = None


@dataclass(frozen=True)
class EventChannelSet:
    chunk: str
    success: str
    error: str


class ProcessingEvents:
    INITIAL_START = "initial-start"
    FOLLOW_UP_START = "follow-up-start"
    RESPONSE_CHUNK = "response-chunk"
    RESPONSE_SUCCESS = "response-success"
    INITIAL_RESPONSE_ERROR = "initial-response-error"
    FOLLOW_UP_CHUNK = "follow-up-chunk"
    FOLLOW_UP_SUCCESS = "follow-up-success"
    FOLLOW_UP_ERROR = "follow-up-error"
    API_KEY_INVALID = "api-key-invalid"
    RESET_VIEW = "reset-view"


EVENT_CHANNELS = {
    "initial": EventChannelSet(
        chunk=ProcessingEvents.RESPONSE_CHUNK,
        success=ProcessingEvents.RESPONSE_SUCCESS,
        error=ProcessingEvents.INITIAL_RESPONSE_ERROR,
    ),
    "follow-up": EventChannelSet(
        chunk=ProcessingEvents.FOLLOW_UP_CHUNK,
        success=ProcessingEvents.FOLLOW_UP_SUCCESS,
        error=ProcessingEvents.FOLLOW_UP_ERROR,
    ),
}

START_EVENTS = {
    "initial": ProcessingEvents.INITIAL_START,
    "follow-up": ProcessingEvents.FOLLOW_UP_START,
}


# HTTP payloads


class BatchRequest(BaseModel):
    audio: Optional[AudioSnapshot] = None


class EnqueueRequest(BaseModel):
    path: str = Field(min_length=1)
    extra: bool = False


class ViewUpdate(BaseModel):
    view: View


class ProcessingStatus(BaseModel):
    busy: bool
    phase: str
    view: View
    has_followed_up: bool


class QueueSnapshot(BaseModel):
    main: List[str]
    extra: List[str]
