from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
from typing import Any, AsyncIterator, Callable, Dict, Iterable, Iterator, List, Optional, Protocol, Sequence, TypeVar

import requests
from google import genai
from google.genai import types
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..domain.processing_models import ContentPart, EventChannelSet, RequestContext
from ..infrastructure.events import NotificationSink

LOG = logging.getLogger("cass.llm")

GEMINI_PREFIX = "gemini-"
# Lightweight model that answers with thinking disabled
NO_THINKING_MODELS = frozenset({"gemini-2.5-flash"})

_STREAM_TIMEOUT = (int(os.getenv("CASS_LLM_CONNECT_TIMEOUT", "3")), int(os.getenv("CASS_LLM_READ_TIMEOUT", "60")))

T = TypeVar("T")
_DONE = object()


async def iter_as_async(it: Iterable[T]) -> AsyncIterator[T]:
    """Drive a blocking iterator from worker threads, one item per hop."""

    iterator = iter(it)
    while True:
        item = await asyncio.to_thread(next, iterator, _DONE)
        if item is _DONE:
            return
        yield item  # type: ignore[misc]


def normalize_model_id(model: str) -> str:
    model = (model or "").strip()
    return model if model.startswith(GEMINI_PREFIX) else f"{GEMINI_PREFIX}{model}"


def thinking_budget_for(model_id: str) -> Optional[int]:
    return 0 if model_id in NO_THINKING_MODELS else None


class StreamClient(Protocol):
    def stream_text(self, *, model: str, prompt: str, parts: Sequence[ContentPart]) -> AsyncIterator[str]: ...


class GeminiStreamClient:
    def __init__(self, api_key: str, client: Any = None) -> None:
        self._client = client or genai.Client(api_key=api_key)

    @staticmethod
    def build_contents(prompt: str, parts: Sequence[ContentPart]) -> List[Any]:
        contents: List[Any] = [prompt]
        for part in parts:
            contents.append(types.Part.from_bytes(data=base64.b64decode(part.data), mime_type=part.mime_type))
        return contents

    @staticmethod
    def build_config(model_id: str) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            temperature=0,
            thinking_config=types.ThinkingConfig(thinking_budget=thinking_budget_for(model_id)),
        )

    async def stream_text(self, *, model: str, prompt: str, parts: Sequence[ContentPart]) -> AsyncIterator[str]:
        model_id = normalize_model_id(model)
        LOG.debug("gemini_stream model=%s parts=%d", model_id, len(parts))
        stream = await self._client.aio.models.generate_content_stream(
            model=model_id,
            contents=self.build_contents(prompt, parts),
            config=self.build_config(model_id),
        )
        async for chunk in stream:
            yield chunk.text or ""


def _build_session() -> requests.Session:
    session = requests.Session()
    # A completion POST is sent once; failures surface through the error channel
    retry = Retry(total=0, allowed_methods=frozenset(["GET"]), raise_on_status=False)
    adapter = HTTPAdapter(max_retries=retry, pool_connections=4, pool_maxsize=4)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class LocalStreamClient:
    """OpenAI-compatible chat completions endpoint, either a local server or the hosted OpenAI API."""

    def __init__(self, base_url: str, api_key: Optional[str] = None, session: Optional[requests.Session] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._session = session or _build_session()

    @staticmethod
    def build_messages(prompt: str, parts: Sequence[ContentPart]) -> List[Dict[str, Any]]:
        content: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
        for part in parts:
            if part.kind == "image":
                content.append({"type": "image_url", "image_url": {"url": f"data:{part.mime_type};base64,{part.data}"}})
            else:
                audio_format = part.mime_type.split("/", 1)[-1].split(";", 1)[0]
                content.append({"type": "input_audio", "input_audio": {"data": part.data, "format": audio_format}})
        return [{"role": "user", "content": content}]

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}

    def iter_tokens(self, model: str, messages: List[Dict[str, Any]]) -> Iterator[str]:
        LOG.debug("local_llm_stream model=%s base_url=%s", model, self.base_url)
        with self._session.post(
            f"{self.base_url}/v1/chat/completions",
            json={"model": model, "messages": messages, "stream": True, "temperature": 0},
            headers=self._headers(),
            timeout=_STREAM_TIMEOUT,
            stream=True,
        ) as resp:
            resp.raise_for_status()
            for raw_line in resp.iter_lines():
                if not raw_line:
                    continue
                line = raw_line.decode("utf-8") if isinstance(raw_line, bytes) else raw_line
                if not line.startswith("data: "):
                    continue
                data = line[6:].strip()
                if data == "[DONE]":
                    break
                try:
                    parsed = json.loads(data)
                except json.JSONDecodeError:
                    continue
                delta = (parsed.get("choices") or [{}])[0].get("delta") or {}
                yield delta.get("content") or ""

    async def stream_text(self, *, model: str, prompt: str, parts: Sequence[ContentPart]) -> AsyncIterator[str]:
        tokens = self.iter_tokens(model, self.build_messages(prompt, parts))
        async for token in iter_as_async(tokens):
            yield token


def default_client_factory(request: RequestContext) -> StreamClient:
    if request.provider in ("local", "openai"):
        return LocalStreamClient(base_url=request.base_url or "http://127.0.0.1:11434", api_key=request.api_key)
    return GeminiStreamClient(api_key=request.api_key or "")


async def stream_response(
    deltas: AsyncIterator[str],
    channels: EventChannelSet,
    sink: NotificationSink,
) -> str:
    """Accumulate text deltas, publishing the cumulative text after each one.

    Empty deltas extend nothing and emit nothing. ``channels.success`` fires
    once, after the stream ends normally; an exception from ``deltas``
    propagates before it.
    """

    accumulated = ""
    async for delta in deltas:
        if not delta:
            continue
        accumulated += delta
        sink.send(channels.chunk, {"response": accumulated})
    sink.send(channels.success, {"response": accumulated})
    return accumulated


class StreamingRequestEngine:
    def __init__(
        self,
        sink: NotificationSink,
        client_factory: Callable[[RequestContext], StreamClient] = default_client_factory,
    ) -> None:
        self._sink = sink
        self._client_factory = client_factory

    async def run(self, request: RequestContext, channels: EventChannelSet) -> str:
        client = self._client_factory(request)
        LOG.info(
            "[Processing:%s] Streaming provider=%s model=%s parts=%d",
            request.workflow,
            request.provider,
            request.model,
            len(request.parts),
        )
        deltas = client.stream_text(model=request.model, prompt=request.prompt, parts=request.parts)
        try:
            text = await stream_response(deltas, channels, self._sink)
        finally:
            aclose = getattr(deltas, "aclose", None)
            if aclose is not None:
                await aclose()
        LOG.info("[Processing:%s] Stream complete chars=%d", request.workflow, len(text))
        return text
