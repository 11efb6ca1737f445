"""Tests for the filesystem watcher: polling diff, inotify event mapping, reload loop."""

import asyncio
import logging
import os

import pytest
from conftest import note, run

from vaultguard import watcher
from vaultguard.config import GuardSettings
from vaultguard.guard import IntegrationService
from vaultguard.watcher import PollSource, diff_snapshots, snapshot


class TestSnapshots:

    def test_snapshot_skips_hidden_and_dirs(self, vault_root):
        (vault_root / "sub").mkdir()
        (vault_root / "sub" / "a.md").write_text("x")
        (vault_root / ".obsidian").mkdir()
        (vault_root / ".obsidian" / "data.json").write_text("{}")
        assert list(snapshot(vault_root)) == ["sub/a.md"]

    def test_snapshot_missing_root(self, tmp_path):
        assert snapshot(tmp_path / "gone") == {}

    def test_diff(self):
        old = {"a.md": 1.0, "b.md": 1.0, "c.md": 1.0}
        new = {"a.md": 1.0, "b.md": 2.0, "d.md": 1.0}
        assert diff_snapshots(old, new) == [
            ("delete", "c.md"),
            ("write", "b.md"),
            ("write", "d.md"),
        ]

    def test_diff_no_change(self):
        assert diff_snapshots({"a.md": 1.0}, {"a.md": 1.0}) == []


class TestPollSource:

    def test_poll_maps_changes_to_vault(self, make_vault, vault_root):
        vault = make_vault({"a.md": note("k1")})
        source = PollSource(vault)
        source.poll_once()                     # seed

        created, deleted = [], []
        vault.on("create", lambda d: created.append(d.path))
        vault.on("delete", lambda d: deleted.append(d.path))

        (vault_root / "b.md").write_text(note("k2"))
        assert source.poll_once() == 1
        assert created == ["b.md"]

        (vault_root / "a.md").unlink()
        assert source.poll_once() == 1
        assert deleted == ["a.md"]
        assert vault.get_file("a.md") is None

    def test_poll_sees_modification(self, make_vault, vault_root):
        vault = make_vault({"a.md": note("k1")})
        source = PollSource(vault)
        source.poll_once()
        modified = []
        vault.on("modify", lambda d: modified.append(d.path))

        target = vault_root / "a.md"
        target.write_text(note("k2"))
        st = target.stat()
        os.utime(target, (st.st_atime, st.st_mtime + 10))
        assert source.poll_once() == 1
        assert modified == ["a.md"]


class TestInotifyMapping:

    @pytest.fixture
    def source(self, make_vault):
        inotify_simple = pytest.importorskip("inotify_simple")
        vault = make_vault({"a.md": "x"})
        src = watcher.InotifySource(vault)
        src._add_tree(vault.root)
        yield src, inotify_simple
        src.stop()

    def _event(self, src, inotify_simple, mask, name, cookie=0):
        wd = next(iter(src._watched))
        return inotify_simple.Event(wd=wd, mask=mask, cookie=cookie, name=name)

    def test_close_write_creates(self, source, vault_root):
        src, ino = source
        (vault_root / "b.md").write_text("y")
        src._handle(self._event(src, ino, ino.flags.CLOSE_WRITE, "b.md"))
        assert src.vault.get_file("b.md") is not None

    def test_delete(self, source):
        src, ino = source
        src._handle(self._event(src, ino, ino.flags.DELETE, "a.md"))
        assert src.vault.get_file("a.md") is None

    def test_move_pair_is_rename(self, source):
        src, ino = source
        doc = src.vault.get_file("a.md")
        src._handle(self._event(src, ino, ino.flags.MOVED_FROM, "a.md", cookie=7))
        src._handle(self._event(src, ino, ino.flags.MOVED_TO, "c.md", cookie=7))
        assert doc.path == "c.md"
        assert src.vault.get_file("c.md") is doc

    def test_unwatchable_directory_is_logged(self, source, monkeypatch, caplog):
        src, _ = source
        caplog.set_level(logging.DEBUG, logger="vaultguard.watcher")

        def refuse(path, mask):
            raise OSError("no space left for watches")

        monkeypatch.setattr(src._inotify, "add_watch", refuse)
        src._add_tree(src.vault.root)
        assert f"cannot watch {src.vault.root}" in caplog.text

    def test_unpaired_move_from_expires_to_delete(self, source):
        src, ino = source
        src._handle(self._event(src, ino, ino.flags.MOVED_FROM, "a.md", cookie=9))
        src._expire_move(9)
        assert src.vault.get_file("a.md") is None


class TestDuplicateReport:

    def test_external_duplicate_is_reported(self, make_vault, notifier, scheduler, vault_root):
        vault = make_vault({"Standup.md": note("k1"), "Standup - transcript.md": note("k1")})
        service = IntegrationService(vault, notifier, scheduler)
        service.initialize(GuardSettings())
        watcher._report_duplicates(service, notifier)

        (vault_root / "Notes.md").write_text(note("k2"))
        vault.apply_external_write("Notes.md")
        scheduler.advance(1)
        assert notifier.warnings == []

        (vault_root / "Standup 1.md").write_text(note("k1"))
        vault.apply_external_write("Standup 1.md")
        scheduler.advance(1)
        assert len(notifier.warnings) == 1
        assert "Duplicate detected for k1" in notifier.warnings[0]
        assert "New: Standup 1.md" in notifier.warnings[0]

    def test_reinitialize_does_not_report_existing(self, make_vault, notifier, scheduler):
        vault = make_vault({"A.md": note("k1"), "B.md": note("k1")})
        service = IntegrationService(vault, notifier, scheduler)
        service.initialize(GuardSettings())
        watcher._report_duplicates(service, notifier)

        service.initialize(GuardSettings(duplicate_prevention_enabled=True))
        assert notifier.warnings == []


class TestWatchLoop:

    @pytest.fixture(autouse=True)
    def _reset_flags(self):
        yield
        watcher._reload_state[0] = False
        watcher._verify_now[0] = False

    def test_signal_handlers_set_flags(self):
        watcher._handle_sighup()
        watcher._handle_sigusr1()
        assert watcher._reload_state[0] is True
        assert watcher._verify_now[0] is True

    def test_verify_then_reload(self, make_vault, notifier, scheduler, monkeypatch):
        monkeypatch.setattr(watcher, "_TICK", 0.01)
        vault = make_vault({"a.md": note("k1")})
        service = IntegrationService(vault, notifier, scheduler)
        service.initialize(GuardSettings())
        service.index.unindex_path("a.md")

        watcher._handle_sigusr1()
        watcher._handle_sighup()
        with pytest.raises(watcher._ReloadRequestedError):
            run(watcher._watch(service))

        assert service.index.get_key_by_path("a.md") == "k1"
        assert watcher._verify_now[0] is False

    def test_run_reloads_config(self, make_vault, notifier, vault_root, monkeypatch):
        monkeypatch.setattr(watcher, "_TICK", 0.01)
        make_vault({"a.md": note("k1")})
        (vault_root / "vaultguard.toml").write_text("[guard]\nduplicate_prevention = false\n")
        cfg = watcher.load_config(vault_root)

        loaded = []
        real_load = watcher.load_config

        def load_and_stop(root):
            loaded.append(root)
            (vault_root / "vaultguard.toml").write_text("[guard]\nduplicate_prevention = true\n")
            return real_load(root)

        monkeypatch.setattr(watcher, "load_config", load_and_stop)
        monkeypatch.setattr(watcher, "_start_source", lambda vault, cfg, loop: PollSource(vault))

        async def scenario():
            task = asyncio.ensure_future(watcher.run(cfg, notifier))
            await asyncio.sleep(0.02)          # let run() enter its watch loop
            watcher._handle_sighup()
            while not loaded:
                await asyncio.sleep(0.01)
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        run(scenario())
        assert loaded == [vault_root]
