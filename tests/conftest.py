"""Pytest configuration and shared fixtures."""

import os
import sys
from pathlib import Path

import httpx
import pytest

# Ensure source tree is importable without editable install
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from brain.config.settings import Settings, reset_settings_cache  # noqa: E402
from brain.notes import InMemoryNoteStore, NoteStoreClient  # noqa: E402
from brain.workflows.retry import RetryConfig  # noqa: E402

_PINNED_ENV = {
    "NOTE_STORE_PROVIDER": "fake",
    "LOG_LEVEL": "error",
    "MARKDOWN_LINT_COMMAND": "",
    "WORKFLOW_RETRY_BASE_DELAY": "0",
}

_CLEARED_ENV = ("BRAIN_PROJECT", "BM_PROJECT", "BM_ACTIVE_PROJECT", "BRAIN_DISABLE_WORKTREE_DETECTION")


def pytest_configure(config):
    """Configure pytest markers and environment for tests."""
    config.addinivalue_line("markers", "unit: fast tests with no external services")

    # These MUST override any developer shell/.env values to keep the run deterministic.
    os.environ.update(_PINNED_ENV)
    for name in _CLEARED_ENV:
        os.environ.pop(name, None)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point HOME and XDG_CONFIG_HOME at a per-test directory."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    for name in _CLEARED_ENV:
        monkeypatch.delenv(name, raising=False)
    reset_settings_cache()
    yield home
    reset_settings_cache()


@pytest.fixture(autouse=True)
def block_external_http(monkeypatch):
    """Fail the fast lane if code tries to hit anything but loopback."""

    allowed_hosts = {"test", "testserver", "localhost", "127.0.0.1"}

    async def _async_guard(self, method, url, *args, **kwargs):  # type: ignore[no-untyped-def]
        u = httpx.URL(url) if not isinstance(url, httpx.URL) else url
        if u.scheme in {"http", "https"} and (u.host or "") not in allowed_hosts:
            raise RuntimeError(f"External HTTP blocked in tests: {u!s}")
        return await _orig_async_request(self, method, url, *args, **kwargs)

    _orig_async_request = httpx.AsyncClient.request
    monkeypatch.setattr(httpx.AsyncClient, "request", _async_guard, raising=True)
    yield


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings(isolated_home) -> Settings:
    return Settings(
        note_store_provider="fake",
        xdg_config_home=str(isolated_home / ".config"),
        basic_memory_config_path=str(isolated_home / ".basic-memory" / "config.json"),
        legacy_config_path=str(isolated_home / ".basic-memory" / "brain-config.json"),
        markdown_lint_command="",
        workflow_retry_base_delay=0,
    )


@pytest.fixture
def fast_retry() -> RetryConfig:
    return RetryConfig(max_attempts=3, base_delay=0)


@pytest.fixture
def note_store() -> InMemoryNoteStore:
    return InMemoryNoteStore()


@pytest.fixture
def notes(note_store) -> NoteStoreClient:
    return NoteStoreClient(note_store, project="demo")
