"""
Shared pytest fixtures for vaultguard tests.

Provides a manual scheduler (fake clock, no real sleeping), a recording
notifier, and helpers to lay out a vault on disk.
"""

import asyncio
import heapq
import itertools
import json
from pathlib import Path

import pytest

from vaultguard.vault import Vault


class ManualScheduler:
    """
    Deterministic Scheduler: time only moves when a test (or sleep) advances it.

    sleep(delay) advances the clock, firing every timer that falls due,
    which models "time passes while the caller waits".
    """

    def __init__(self):
        self.now = 0.0
        self._timers = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self.now

    def call_later(self, delay, callback, *args):
        heapq.heappush(self._timers, (self.now + delay, next(self._seq), callback, args))

    @property
    def pending(self) -> int:
        return len(self._timers)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while self._timers and self._timers[0][0] <= target:
            due, _, callback, args = heapq.heappop(self._timers)
            self.now = max(self.now, due)
            callback(*args)
        self.now = target

    def run_all(self) -> None:
        while self._timers:
            self.advance(max(0.0, self._timers[0][0] - self.now))

    async def sleep(self, delay: float) -> None:
        self.advance(delay)
        await asyncio.sleep(0)


class RecordingNotifier:
    """Collects notices instead of printing them."""

    def __init__(self):
        self.notices = []

    def notify(self, message, kind="info", timeout=8.0):
        self.notices.append((kind, message))

    @property
    def warnings(self):
        return [m for k, m in self.notices if k == "warning"]


def note(key=None, body="Body text.\n", **fields) -> str:
    """Markdown with a flat frontmatter block (granola_id=key when given)."""
    lines = ["---"]
    if key is not None:
        lines.append(f"granola_id: {key}")
    lines.extend(f"{k}: {v}" for k, v in fields.items())
    lines.append("---")
    return "\n".join(lines) + "\n" + body


def write_files(root: Path, files: dict) -> None:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


def write_upstream_config(root: Path, data, plugin_id="granola-sync") -> Path:
    path = root / ".obsidian" / "plugins" / plugin_id / "data.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(data if isinstance(data, str) else json.dumps(data))
    return path


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def vault_root(tmp_path):
    root = tmp_path / "vault"
    root.mkdir()
    return root


@pytest.fixture
def make_vault(vault_root, scheduler):
    """Write files, then load a Vault over them."""

    def _make(files=None, **kwargs):
        write_files(vault_root, files or {})
        vault = Vault(vault_root, scheduler, **kwargs)
        vault.load()
        return vault

    return _make


def run(coro):
    return asyncio.run(coro)
