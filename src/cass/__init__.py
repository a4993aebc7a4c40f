"""Cass processing service.

Importing the package wires the ``cass`` logger tree. ``CASS_LOG_LEVEL`` sets
the base level; the model transport and the orchestrator can be tuned on their
own through ``CASS_LLM_LOG_LEVEL`` and ``CASS_PROCESSING_LOG_LEVEL``.
"""

import logging
import os

LOG_FORMAT = "%(asctime)s [CASS][%(levelname)s] %(name)s: %(message)s"

CHILD_LEVEL_ENV = {
    "cass.llm": "CASS_LLM_LOG_LEVEL",
    "cass.processing": "CASS_PROCESSING_LOG_LEVEL",
}


def _level_from_env(var: str, default: int) -> int:
    value = getattr(logging, (os.getenv(var) or "").strip().upper(), None)
    return value if isinstance(value, int) else default


def configure_logging() -> logging.Logger:
    root = logging.getLogger("cass")
    # Re-imports and reloads must not stack handlers
    if not any(getattr(h, "_cass_handler", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._cass_handler = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    base = _level_from_env("CASS_LOG_LEVEL", logging.INFO)
    root.setLevel(base)
    for name, var in CHILD_LEVEL_ENV.items():
        logging.getLogger(name).setLevel(_level_from_env(var, base))
    return root


configure_logging()
