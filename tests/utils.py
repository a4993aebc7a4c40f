from __future__ import annotations

import asyncio
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Sequence

from src.cass.infrastructure.capture_queue import InMemoryCaptureQueue
from src.cass.infrastructure.events import BroadcastNotificationSink
from src.cass.infrastructure.view_state import InMemoryViewState
from src.cass.services.model_router import ModelRouter
from src.cass.services.processing import ProcessingOrchestrator
from src.cass.services.streaming import StreamingRequestEngine


class FakeConfig:
    def __init__(self, model: str = "2.5-flash", profile: Optional[str] = None, error: Exception | None = None) -> None:
        self.model = model
        self.profile = profile
        self.error = error

    async def resolve_model(self) -> str:
        if self.error:
            raise self.error
        return self.model

    async def get_user_profile(self) -> Optional[str]:
        return self.profile


class ScriptedStreamClient:
    """Yields the scripted deltas, optionally pausing on a gate before each one."""

    def __init__(
        self,
        deltas: Sequence[str] = (),
        error: BaseException | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.deltas = list(deltas)
        self.error = error
        self.gate = gate
        self.calls: List[Dict[str, Any]] = []
        self.started = asyncio.Event()

    async def stream_text(self, *, model, prompt, parts):
        self.calls.append({"model": model, "prompt": prompt, "parts": list(parts)})
        self.started.set()
        for delta in self.deltas:
            if self.gate is not None:
                await self.gate.wait()
            yield delta
        if self.error is not None:
            raise self.error


def build_orchestrator(
    client: ScriptedStreamClient,
    config: FakeConfig | None = None,
    env: Dict[str, str] | None = None,
) -> SimpleNamespace:
    queue = InMemoryCaptureQueue()
    view = InMemoryViewState()
    sink = BroadcastNotificationSink(mirror=False)
    router = ModelRouter(env={"API_KEY": "test-key"} if env is None else env)
    engine = StreamingRequestEngine(sink, client_factory=lambda _request: client)
    orchestrator = ProcessingOrchestrator(
        queue=queue,
        view_state=view,
        config=config or FakeConfig(),
        sink=sink,
        router=router,
        engine=engine,
    )
    return SimpleNamespace(orchestrator=orchestrator, queue=queue, view=view, sink=sink, client=client)


def write_capture(directory: Path, name: str, content: bytes = b"\x89PNG fake") -> str:
    path = directory / name
    path.write_bytes(content)
    return str(path)
