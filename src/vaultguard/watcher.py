"""inotify watcher: turns filesystem changes into vault events.

Designed to run as a long-lived process next to the vault:
    python -m vaultguard.watcher VAULT_ROOT

On IN_CLOSE_WRITE / IN_MOVED_TO for a file:
    - create (new path) or modify (known path) vault event
On IN_DELETE:
    - delete vault event
On IN_MOVED_FROM + IN_MOVED_TO with the same cookie:
    - rename vault event (an unmatched MOVED_FROM is a delete)

The vault's metadata cache and the sync-key index react to those events.
The index is also verified against a full scan every `_VERIFY_INTERVAL`
seconds, and immediately on SIGUSR1, as a safety net for missed events.

Falls back to mtime polling if inotify is unavailable (macOS, Docker).
SIGHUP re-reads vaultguard.toml and re-initializes the guard.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from vaultguard.config import load_config
from vaultguard.guard import IntegrationService
from vaultguard.index import IndexState
from vaultguard.notices import ConsoleNotifier
from vaultguard.scheduler import LoopScheduler
from vaultguard.vault import Vault

if TYPE_CHECKING:
    from vaultguard.config import GuardConfig
    from vaultguard.notices import Notifier
    from vaultguard.vault import Document

logger = logging.getLogger("vaultguard.watcher")

_TICK = 0.5                 # seconds between reload/verify checks
_VERIFY_INTERVAL = 300.0    # seconds between index verify passes
_MOVE_PAIR_WINDOW = 0.5     # seconds to wait for MOVED_TO after MOVED_FROM

# ---------------------------------------------------------------------------
# SIGHUP config reload
# ---------------------------------------------------------------------------

# Mutable containers so signal handlers and loop can share state without globals.
_reload_state: list[bool] = [False]     # [0] = SIGHUP reload requested
_verify_now: list[bool] = [False]       # [0] = SIGUSR1 verify requested


class _ReloadRequestedError(Exception):
    """Raised from within the watch loop to trigger a config reload."""


def _handle_sighup() -> None:
    _reload_state[0] = True
    logger.info("SIGHUP received: config reload requested")


def _handle_sigusr1() -> None:
    _verify_now[0] = True
    logger.info("SIGUSR1 received: immediate index verify requested")


# ---------------------------------------------------------------------------
# inotify source
# ---------------------------------------------------------------------------

class InotifySource:
    """inotify_simple (Linux) registered as a reader on the event loop."""

    def __init__(self, vault: Vault) -> None:
        import inotify_simple  # type: ignore[import]

        self.vault = vault
        self._inotify = inotify_simple.INotify()
        self._flags = inotify_simple.flags  # type: ignore[attr-defined]
        self._mask = (
            self._flags.CLOSE_WRITE | self._flags.CREATE | self._flags.DELETE
            | self._flags.MOVED_FROM | self._flags.MOVED_TO
        )
        self._watched: dict[int, Path] = {}
        self._pending_moves: dict[int, str] = {}
        self._loop: asyncio.AbstractEventLoop | None = None

    def _add_tree(self, directory: Path) -> None:
        dirs = [directory, *(p for p in directory.rglob("*") if p.is_dir())]
        for d in dirs:
            rel = d.relative_to(self.vault.root).as_posix()
            if rel != "." and any(part.startswith(".") for part in rel.split("/")):
                continue
            try:
                wd = self._inotify.add_watch(str(d), self._mask)
                self._watched[wd] = d
            except OSError:
                logger.debug("cannot watch %s", d)

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._add_tree(self.vault.root)
        loop.add_reader(self._inotify.fileno(), self._drain)
        logger.info("inotify watching %s (%d dirs)", self.vault.root, len(self._watched))

    def stop(self) -> None:
        if self._loop is not None:
            self._loop.remove_reader(self._inotify.fileno())
        self._inotify.close()

    def _rel(self, path: Path) -> str:
        return path.relative_to(self.vault.root).as_posix()

    def _drain(self) -> None:
        for event in self._inotify.read(timeout=0):
            try:
                self._handle(event)
            except Exception:
                logger.exception("failed to handle inotify event: %s", event)

    def _handle(self, event: object) -> None:
        flags = self._flags
        mask, wd, cookie, name = event.mask, event.wd, event.cookie, event.name  # type: ignore[attr-defined]

        if mask & flags.IGNORED:
            self._watched.pop(wd, None)
            return
        directory = self._watched.get(wd)
        if directory is None or not name:
            return
        path = directory / name

        if mask & flags.ISDIR:
            if mask & (flags.CREATE | flags.MOVED_TO) and path.is_dir():
                self._add_tree(path)
                for f in path.rglob("*"):
                    if f.is_file():
                        self.vault.apply_external_write(self._rel(f))
            return

        rel = self._rel(path)
        if mask & flags.CLOSE_WRITE:
            self.vault.apply_external_write(rel)
        elif mask & flags.DELETE:
            self.vault.apply_external_delete(rel)
        elif mask & flags.MOVED_FROM:
            self._pending_moves[cookie] = rel
            if self._loop is not None:
                self._loop.call_later(_MOVE_PAIR_WINDOW, self._expire_move, cookie)
        elif mask & flags.MOVED_TO:
            old_rel = self._pending_moves.pop(cookie, None)
            if old_rel is None:
                self.vault.apply_external_write(rel)
            else:
                self.vault.apply_external_rename(old_rel, rel)

    def _expire_move(self, cookie: int) -> None:
        # Moved out of the vault: nothing arrived with the same cookie.
        old_rel = self._pending_moves.pop(cookie, None)
        if old_rel is not None:
            self.vault.apply_external_delete(old_rel)


# ---------------------------------------------------------------------------
# Polling fallback
# ---------------------------------------------------------------------------

def snapshot(root: Path) -> dict[str, float]:
    """rel path -> mtime for every non-hidden file under root."""
    seen: dict[str, float] = {}
    if not root.exists():
        return seen
    for f in root.rglob("*"):
        rel = f.relative_to(root).as_posix()
        if any(part.startswith(".") for part in rel.split("/")):
            continue
        try:
            if f.is_file():
                seen[rel] = f.stat().st_mtime
        except OSError:
            continue
    return seen


def diff_snapshots(old: dict[str, float], new: dict[str, float]) -> list[tuple[str, str]]:
    """(kind, path) changes between two snapshots; kind is write or delete.

    Polling cannot see renames: they show up as a delete plus a write.
    """
    changes: list[tuple[str, str]] = [("delete", p) for p in sorted(old.keys() - new.keys())]
    for path in sorted(new):
        if old.get(path, -1.0) < new[path]:
            changes.append(("write", path))
    return changes


class PollSource:
    """Polling fallback for macOS/Docker. Diffs mtimes every interval seconds."""

    def __init__(self, vault: Vault, interval: float = 1.0) -> None:
        self.vault = vault
        self.interval = interval
        self._seen: dict[str, float] = {}
        self._task: asyncio.Task[None] | None = None

    def poll_once(self) -> int:
        current = snapshot(self.vault.root)
        changes = diff_snapshots(self._seen, current)
        for kind, path in changes:
            if kind == "delete":
                self.vault.apply_external_delete(path)
            else:
                self.vault.apply_external_write(path)
        self._seen = current
        return len(changes)

    async def _run(self) -> None:
        while True:
            try:
                self.poll_once()
            except Exception:
                logger.exception("poll failed: %s", self.vault.root)
            await asyncio.sleep(self.interval)

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        self._seen = snapshot(self.vault.root)
        self._task = loop.create_task(self._run())
        logger.info("polling %s interval=%.1fs", self.vault.root, self.interval)

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()


# ---------------------------------------------------------------------------
# Duplicate detection for writes the guard never saw
# ---------------------------------------------------------------------------

def _report_duplicates(service: IntegrationService, notifier: Notifier) -> None:
    """Warn when an indexed key gains a second document of the same class."""

    def on_indexed(doc: Document, key: str) -> None:
        if service.index.state is IndexState.BUILDING:
            return  # re-seeding after a reload, not a new write
        for other in service.index.find_all_by_key(key):
            if other is not doc and service.classifier.same_class(other.path, doc.path):
                notifier.notify(
                    f"Duplicate detected for {key}\nNew: {doc.path}\nExisting: {other.path}",
                    "warning",
                )
                return

    service.index.on("indexed", on_indexed)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def _configure_logging(debug: bool) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(message)s")
    logging.getLogger("vaultguard").setLevel(logging.DEBUG if debug else logging.INFO)


def _start_source(vault: Vault, cfg: GuardConfig, loop: asyncio.AbstractEventLoop) -> InotifySource | PollSource:
    try:
        source: InotifySource | PollSource = InotifySource(vault)
    except (ImportError, OSError):
        logger.warning("inotify_simple not available, falling back to polling")
        source = PollSource(vault, interval=cfg.watcher.poll_interval)
    source.start(loop)
    return source


async def _watch(service: IntegrationService) -> None:
    """Block until a reload is requested, verifying the index periodically."""
    loop = asyncio.get_running_loop()
    last_verify = loop.time()
    while True:
        await asyncio.sleep(_TICK)
        now = loop.time()
        if _verify_now[0] or now - last_verify >= _VERIFY_INTERVAL:
            _verify_now[0] = False
            try:
                service.index.verify()
            except Exception:
                logger.exception("index verify failed")
            last_verify = now
        if _reload_state[0]:
            raise _ReloadRequestedError


async def run(cfg: GuardConfig, notifier: Notifier | None = None) -> None:
    _configure_logging(cfg.guard.debug_mode)
    loop = asyncio.get_running_loop()
    notifier = notifier or ConsoleNotifier()

    if hasattr(signal, "SIGHUP"):
        loop.add_signal_handler(signal.SIGHUP, _handle_sighup)
    if hasattr(signal, "SIGUSR1"):
        loop.add_signal_handler(signal.SIGUSR1, _handle_sigusr1)

    vault = Vault(cfg.root, LoopScheduler(loop), config_dir=cfg.upstream.config_dir, parse_delay=cfg.timing.parse_delay)
    vault.load()
    service = IntegrationService.from_config(vault, notifier, LoopScheduler(loop), cfg)
    service.initialize(cfg.guard)
    _report_duplicates(service, notifier)

    source = _start_source(vault, cfg, loop)
    try:
        while True:
            _reload_state[0] = False
            try:
                await _watch(service)
            except _ReloadRequestedError:
                logger.info("Reloading config from %s", cfg.root)
                cfg = load_config(cfg.root)
                _configure_logging(cfg.guard.debug_mode)
                service.initialize(cfg.guard)
    finally:
        source.stop()
        service.stop()


def run_from_config(config_root: Path | None = None) -> None:
    """Load vaultguard.toml and watch the vault until interrupted."""
    cfg = load_config(config_root)
    try:
        asyncio.run(run(cfg))
    except KeyboardInterrupt:
        logger.info("watcher stopped (pid %d)", os.getpid())


if __name__ == "__main__":
    # Accept optional vault root as argument
    root = Path(sys.argv[1]) if len(sys.argv) > 1 else None
    run_from_config(root)
