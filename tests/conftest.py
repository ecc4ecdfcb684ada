"""Pytest configuration -- bootstraps sys.path and isolates HOME for hook tests."""
import io
import sys
from pathlib import Path

import pytest

# Ensure tests/ directory is on sys.path so _bootstrap can be imported
sys.path.insert(0, str(Path(__file__).resolve().parent))
import _bootstrap  # noqa: F401, E402

from _policy_utils import DRY_RUN_ENV, HookLogger, default_config  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep config and log writes out of the real home directory."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv(DRY_RUN_ENV, raising=False)
    return home


@pytest.fixture
def log_stream():
    return io.StringIO()


@pytest.fixture
def logger(log_stream):
    """Debug-level logger writing to an in-memory stream."""
    return HookLogger(level="debug", stream=log_stream)


@pytest.fixture
def config():
    """Default configuration with side-effecting tools switched off."""
    cfg = default_config()
    cfg.tools["notifier"].sound = False
    cfg.tools["notifier"].desktop = False
    cfg.logger.output = "stderr"
    return cfg
