from __future__ import annotations

import asyncio
import base64
import logging
from pathlib import Path
from typing import Iterable, List

from ..domain.errors import IOFailure
from ..domain.processing_models import CaptureArtifact

_logger = logging.getLogger("cass.processing")


def _read_base64(path: str) -> str:
    return base64.b64encode(Path(path).read_bytes()).decode("ascii")


def load_artifacts_sync(paths: Iterable[str]) -> List[CaptureArtifact]:
    """Read every queued capture, failing the whole batch on the first bad path."""

    artifacts: List[CaptureArtifact] = []
    for path in paths:
        try:
            data = _read_base64(path)
        except OSError as exc:
            raise IOFailure(f"Failed to read screenshot {path}: {exc.strerror or exc}", path=path) from exc
        artifacts.append(CaptureArtifact(path=path, data=data))
    return artifacts


async def load_artifacts(paths: Iterable[str]) -> List[CaptureArtifact]:
    paths = list(paths)
    artifacts = await asyncio.to_thread(load_artifacts_sync, paths)
    _logger.debug("artifacts_loaded count=%d", len(artifacts))
    return artifacts
