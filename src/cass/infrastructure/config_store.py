from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Optional, Protocol

_logger = logging.getLogger("cass.config")

MODEL_KEY = "model"
USER_PROFILE_KEY = "userProfile"


class ConfigurationProvider(Protocol):
    async def resolve_model(self) -> str: ...

    async def get_user_profile(self) -> Optional[str]: ...


def default_config_path() -> Path:
    base = os.getenv("APPDATA")
    if not base:
        if sys.platform == "darwin":
            base = str(Path.home() / "Library" / "Application Support")
        else:
            base = os.getenv("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "cass" / "config.json"


class JsonConfigStore:
    """JSON file-backed key/value settings.

    A missing file is created empty on first read; a corrupted file is reset
    to ``{}`` and reads as empty.
    """

    def __init__(self, file_path: Optional[str] = None) -> None:
        self._lock = RLock()
        self._path = Path(file_path or os.getenv("CASS_CONFIG_PATH") or default_config_path())

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, Any]:
        if not self._path.exists():
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text("{}", encoding="utf-8")
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as exc:
            _logger.error("config_read_failed path=%s err=%s", self._path, exc)
            try:
                self._path.write_text("{}", encoding="utf-8")
            except OSError as write_exc:
                _logger.error("config_reset_failed path=%s err=%s", self._path, write_exc)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> Any:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: Any) -> bool:
        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                config = self._load()
                config[key] = value
                self._path.write_text(json.dumps(config, indent=2), encoding="utf-8")
                return True
            except OSError as exc:
                _logger.error("config_write_failed key=%s err=%s", key, exc)
                return False

    async def resolve_model(self) -> str:
        value = await asyncio.to_thread(self.get, MODEL_KEY)
        return str(value or "").strip()

    async def get_user_profile(self) -> Optional[str]:
        value = await asyncio.to_thread(self.get, USER_PROFILE_KEY)
        return str(value) if value else None


_store: Optional[JsonConfigStore] = None


def get_config_store() -> JsonConfigStore:
    global _store
    if _store is None:
        _store = JsonConfigStore()
    return _store
