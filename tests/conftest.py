import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch, tmp_path):
    """Keep credentials, provider overrides and the config file out of every test."""
    for key in (
        "API_KEY",
        "API_PROVIDER",
        "GEMINI_API_KEY",
        "LOCAL_API_KEY",
        "LOCAL_BASE_URL",
        "OPENAI_API_KEY",
        "OPENAI_BASE_URL",
        "REDIS_URL",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("CASS_CONFIG_PATH", str(tmp_path / "cass" / "config.json"))
