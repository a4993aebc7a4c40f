from __future__ import annotations

import base64
import json

import pytest

from src.cass.domain.processing_models import EVENT_CHANNELS, ContentPart, RequestContext
from src.cass.infrastructure.events import BroadcastNotificationSink
from src.cass.services import streaming

from .utils import ScriptedStreamClient


def _request(**overrides):
    values = dict(workflow="initial", provider="gemini", api_key="k", model="2.5-flash", prompt="p")
    values.update(overrides)
    return RequestContext(**values)


async def _deltas(*items):
    for item in items:
        yield item


def test_normalize_model_id_adds_prefix_once():
    assert streaming.normalize_model_id("2.5-flash") == "gemini-2.5-flash"
    assert streaming.normalize_model_id("gemini-2.5-pro") == "gemini-2.5-pro"


def test_thinking_disabled_only_for_lightweight_model():
    assert streaming.thinking_budget_for("gemini-2.5-flash") == 0
    assert streaming.thinking_budget_for("gemini-2.5-pro") is None
    assert streaming.thinking_budget_for("gemini-2.5-flash-lite") is None


@pytest.mark.asyncio
async def test_stream_response_emits_cumulative_chunks_then_success():
    sink = BroadcastNotificationSink(mirror=False)
    channels = EVENT_CHANNELS["initial"]

    text = await streaming.stream_response(_deltas("Hel", "", "lo", " world"), channels, sink)

    assert text == "Hello world"
    history = sink.history()
    assert [n.event for n in history] == ["response-chunk"] * 3 + ["response-success"]
    payloads = [n.payload["response"] for n in history]
    assert payloads == ["Hel", "Hello", "Hello world", "Hello world"]
    assert all(len(a) <= len(b) for a, b in zip(payloads, payloads[1:]))


@pytest.mark.asyncio
async def test_stream_response_with_only_empty_chunks_still_succeeds():
    sink = BroadcastNotificationSink(mirror=False)
    text = await streaming.stream_response(_deltas("", ""), EVENT_CHANNELS["follow-up"], sink)
    assert text == ""
    assert sink.events() == ["follow-up-success"]


@pytest.mark.asyncio
async def test_stream_error_emits_no_success():
    sink = BroadcastNotificationSink(mirror=False)

    async def failing():
        yield "partial"
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await streaming.stream_response(failing(), EVENT_CHANNELS["initial"], sink)
    assert sink.events() == ["response-chunk"]


@pytest.mark.asyncio
async def test_engine_uses_factory_client_and_routes_channels():
    sink = BroadcastNotificationSink(mirror=False)
    client = ScriptedStreamClient(["a", "b"])
    engine = streaming.StreamingRequestEngine(sink, client_factory=lambda _r: client)
    parts = [ContentPart(kind="image", mime_type="image/png", data="eA==")]

    text = await engine.run(_request(workflow="follow-up", parts=parts), EVENT_CHANNELS["follow-up"])

    assert text == "ab"
    assert client.calls[0]["model"] == "2.5-flash"
    assert client.calls[0]["parts"] == parts
    assert sink.events() == ["follow-up-chunk", "follow-up-chunk", "follow-up-success"]


def test_default_factory_picks_client_by_provider():
    local = streaming.default_client_factory(_request(provider="local", base_url="http://h:1", api_key=None))
    assert isinstance(local, streaming.LocalStreamClient)
    assert local.base_url == "http://h:1"


class _FakeModels:
    def __init__(self, chunks):
        self.chunks = chunks
        self.kwargs = None

    async def generate_content_stream(self, **kwargs):
        self.kwargs = kwargs

        async def gen():
            for c in self.chunks:
                yield type("Chunk", (), {"text": c})()

        return gen()


@pytest.mark.asyncio
async def test_gemini_client_normalizes_model_and_builds_contents():
    models = _FakeModels(["x", None, "y"])
    fake_client = type("Client", (), {"aio": type("Aio", (), {"models": models})()})()
    client = streaming.GeminiStreamClient(api_key="k", client=fake_client)
    parts = [ContentPart(kind="image", mime_type="image/png", data=base64.b64encode(b"img").decode())]

    out = [d async for d in client.stream_text(model="2.5-flash", prompt="prompt", parts=parts)]

    assert out == ["x", "", "y"]
    assert models.kwargs["model"] == "gemini-2.5-flash"
    contents = models.kwargs["contents"]
    assert contents[0] == "prompt"
    assert contents[1].inline_data.data == b"img"
    assert contents[1].inline_data.mime_type == "image/png"
    config = models.kwargs["config"]
    assert config.temperature == 0
    assert config.thinking_config.thinking_budget == 0


def test_local_client_builds_openai_style_messages():
    parts = [
        ContentPart(kind="image", mime_type="image/png", data="SU1H"),
        ContentPart(kind="audio", mime_type="audio/webm;codecs=opus", data="QVVE"),
    ]
    messages = streaming.LocalStreamClient.build_messages("prompt", parts)
    content = messages[0]["content"]
    assert content[0] == {"type": "text", "text": "prompt"}
    assert content[1]["image_url"]["url"] == "data:image/png;base64,SU1H"
    assert content[2]["input_audio"] == {"data": "QVVE", "format": "webm"}


class _FakeResponse:
    def __init__(self, lines):
        self._lines = lines

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        return None

    def iter_lines(self):
        return iter(self._lines)


class _FakeSession:
    def __init__(self, lines):
        self.lines = lines
        self.posted = None

    def post(self, url, **kwargs):
        self.posted = (url, kwargs)
        return _FakeResponse(self.lines)


@pytest.mark.asyncio
async def test_local_client_streams_sse_deltas_off_the_loop():
    lines = [
        b"data: " + json.dumps({"choices": [{"delta": {"content": "Hi"}}]}).encode(),
        b"",
        b": comment",
        b"data: not-json",
        b"data: " + json.dumps({"choices": [{"delta": {"content": " there"}}]}).encode(),
        b"data: [DONE]",
        b"data: " + json.dumps({"choices": [{"delta": {"content": "ignored"}}]}).encode(),
    ]
    session = _FakeSession(lines)
    client = streaming.LocalStreamClient("http://local/", api_key="tok", session=session)

    out = [d async for d in client.stream_text(model="llava", prompt="p", parts=[])]

    assert out == ["Hi", " there"]
    url, kwargs = session.posted
    assert url == "http://local/v1/chat/completions"
    assert kwargs["json"]["stream"] is True
    assert kwargs["headers"] == {"Authorization": "Bearer tok"}


@pytest.mark.asyncio
async def test_iter_as_async_preserves_order():
    out = [x async for x in streaming.iter_as_async(iter([1, 2, 3]))]
    assert out == [1, 2, 3]


def test_openai_provider_streams_through_the_compatible_client():
    client = streaming.default_client_factory(
        _request(provider="openai", base_url="https://api.openai.com/", api_key="sk")
    )
    assert isinstance(client, streaming.LocalStreamClient)
    assert client.base_url == "https://api.openai.com"
    assert client._headers() == {"Authorization": "Bearer sk"}


def test_completion_post_is_never_retried():
    retry = streaming._build_session().get_adapter("http://local").max_retries
    assert retry.total == 0
    assert "POST" not in retry.allowed_methods
    assert retry.is_retry("POST", 503) is False
