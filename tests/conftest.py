"""Shared test fixtures for devoverlay."""

import json
import shutil
import subprocess
from pathlib import Path

import pytest

from devoverlay.backends.scripted import ScriptedAdapter
from devoverlay.gate import DevServerGate
from devoverlay.history import HistoryLog
from devoverlay.interactions import Interactions
from devoverlay.orchestrator import AgentOrchestrator
from devoverlay.provider import CancellationToken, ProviderConfig
from devoverlay.undo import UndoCoordinator
from devoverlay.vcs import VcsPort


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", "-c", "commit.gpgsign=false", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep the developer's DEVOVERLAY_* settings out of the tests."""
    for name in (
        "DEVOVERLAY_PORT",
        "DEVOVERLAY_TARGET_PORT",
        "DEVOVERLAY_STATE_DIR",
        "DEVOVERLAY_MAX_OUTPUT_TOKENS",
        "DEVOVERLAY_CONFIRM_TIMEOUT",
        "DEVOVERLAY_MODEL",
        "DEVOVERLAY_SCRIPT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def git_repo(tmp_path):
    """A committed repository with two tracked files.

    Layout:
    - app.js: "line1\\nline2\\nline3\\n"
    - README.md: "# Demo\\n"
    """
    if shutil.which("git") is None:
        pytest.skip("git is not installed")

    repo = tmp_path / "project"
    repo.mkdir()
    git(repo, "init", "-q")
    (repo / "app.js").write_text("line1\nline2\nline3\n", encoding="utf-8")
    (repo / "README.md").write_text("# Demo\n", encoding="utf-8")
    git(repo, "add", ".")
    git(repo, "commit", "-q", "-m", "initial")
    return repo


class NotARepoVcs(VcsPort):
    """VCS port for a project that is not under version control."""

    async def is_repository(self, cwd):
        return False

    async def snapshot_baseline(self, cwd):
        raise AssertionError("not a repository")

    async def list_untracked(self, cwd):
        return set()

    async def diff_names(self, cwd, ref):
        return []

    async def read_file_at_ref(self, cwd, ref, rel_path):
        return None


class RecordingSink:
    """Event sink that keeps every event it receives, decoded."""

    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    async def send(self, event: str, data: str) -> None:
        self.events.append((event, json.loads(data)))

    @property
    def types(self) -> list[str]:
        return [event for event, _ in self.events]

    def of_type(self, event_type: str) -> list[dict]:
        return [data for event, data in self.events if event == event_type]


class FakeConnection:
    """Gate connection that counts pause/resume calls."""

    def __init__(self):
        self.pauses = 0
        self.resumes = 0
        self._on_close = []

    def pause(self):
        self.pauses += 1

    def resume(self):
        self.resumes += 1

    def on_close(self, callback):
        self._on_close.append(callback)

    def close(self):
        for callback in self._on_close:
            callback()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def services():
    """Fresh shared services with version control disabled."""
    return {
        "undo": UndoCoordinator(vcs=NotARepoVcs()),
        "gate": DevServerGate(),
        "history": HistoryLog(),
        "interactions": Interactions(),
    }


@pytest.fixture
def make_orchestrator(services):
    """Build an orchestrator that replays ``entries``."""

    def _make(entries, self_contained=False, adapter=None, confirm_timeout=None, **overrides):
        adapter = adapter or ScriptedAdapter(entries=entries, self_contained=self_contained)
        kwargs = {**services, **overrides}
        return AgentOrchestrator(adapter, confirm_timeout=confirm_timeout, **kwargs)

    return _make


@pytest.fixture
def run_config(tmp_path):
    """Provider config for a plain (non-repository) project directory."""
    return ProviderConfig(project_dir=tmp_path, target_port=3000, cancel_token=CancellationToken())
