"""Tests for the filesystem vault, its metadata cache, and event plumbing."""

import pytest
from conftest import note, run

from vaultguard.events import Events
from vaultguard.vault import Document, normalize_path


class TestNormalizePath:

    @pytest.mark.parametrize(("raw", "expected"), [
        ("a/b.md", "a/b.md"),
        ("/a/b.md", "a/b.md"),
        ("./a//b.md", "a/b.md"),
        ("a\\b.md", "a/b.md"),
    ])
    def test_forms(self, raw, expected):
        assert normalize_path(raw) == expected

    def test_escape_rejected(self):
        with pytest.raises(ValueError, match="escapes"):
            normalize_path("../outside.md")


class TestDocument:

    def test_parts(self):
        doc = Document("Meetings/Standup - 2025-01-01.MD")
        assert doc.name == "Standup - 2025-01-01.MD"
        assert doc.basename == "Standup - 2025-01-01"
        assert doc.extension == "md"
        assert doc.parent == "Meetings"

    def test_root_and_dotfiles(self):
        assert Document("README").extension == ""
        assert Document(".hidden").extension == ""
        assert Document("a.md").parent == ""

    def test_identity_equality(self):
        assert Document("a.md") != Document("a.md")


class TestLoad:

    def test_skips_hidden(self, make_vault, vault_root):
        (vault_root / ".obsidian").mkdir()
        (vault_root / ".obsidian" / "app.json").write_text("{}")
        vault = make_vault({"a.md": note("k1"), "sub/b.txt": "x"})
        assert sorted(d.path for d in vault.get_files()) == ["a.md", "sub/b.txt"]
        assert [d.path for d in vault.get_markdown_files()] == ["a.md"]

    def test_metadata_resolved_on_load(self, make_vault):
        vault = make_vault({"a.md": note("k1", type="note")})
        fm = vault.metadata_cache.get_file_cache(vault.get_file("a.md"))
        assert fm == {"granola_id": "k1", "type": "note"}

    def test_missing_root(self, tmp_path, scheduler):
        from vaultguard.vault import Vault
        vault = Vault(tmp_path / "nope", scheduler)
        assert vault.load() == 0


class TestMutations:

    def test_create_emits_and_parses_later(self, make_vault, scheduler):
        vault = make_vault()
        created, changed = [], []
        vault.on("create", created.append)
        vault.metadata_cache.on("changed", changed.append)

        doc = run(vault.create("a.md", note("k1")))
        assert created == [doc]
        assert vault.metadata_cache.get_file_cache(doc) is None
        scheduler.advance(0)
        assert changed == [doc]
        assert vault.metadata_cache.get_file_cache(doc)["granola_id"] == "k1"

    def test_create_existing_raises(self, make_vault):
        vault = make_vault({"a.md": "x"})
        with pytest.raises(FileExistsError):
            run(vault.create("a.md", "y"))

    def test_create_uses_installed_primitive(self, make_vault):
        vault = make_vault({"a.md": "x"})
        existing = vault.get_file("a.md")

        async def redirect(path, content):
            return existing

        vault.create_primitive = redirect
        assert run(vault.create("b.md", "y")) is existing
        assert not (vault.root / "b.md").exists()

    def test_modify(self, make_vault, scheduler):
        vault = make_vault({"a.md": note("k1")})
        doc = vault.get_file("a.md")
        vault.modify(doc, note("k2"))
        scheduler.advance(0)
        assert vault.metadata_cache.get_file_cache(doc)["granola_id"] == "k2"

    def test_delete(self, make_vault):
        vault = make_vault({"a.md": note("k1")})
        doc = vault.get_file("a.md")
        deleted = []
        vault.on("delete", deleted.append)
        vault.delete(doc)
        assert deleted == [doc]
        assert vault.get_file("a.md") is None
        assert vault.metadata_cache.get_file_cache(doc) is None

    def test_delete_missing_raises(self, make_vault, vault_root):
        vault = make_vault({"a.md": "x"})
        (vault_root / "a.md").unlink()
        with pytest.raises(FileNotFoundError):
            vault.delete(vault.get_file("a.md"))

    def test_rename_moves_metadata(self, make_vault):
        vault = make_vault({"a.md": note("k1"), "b.md": "x"})
        doc = vault.get_file("a.md")
        renames = []
        vault.on("rename", lambda d, old: renames.append((d.path, old)))

        vault.rename(doc, "sub/c.md")
        assert renames == [("sub/c.md", "a.md")]
        assert vault.get_file("sub/c.md") is doc
        assert vault.metadata_cache.get_file_cache(doc)["granola_id"] == "k1"
        assert (vault.root / "sub" / "c.md").exists()

        with pytest.raises(FileExistsError):
            vault.rename(doc, "b.md")

    def test_recompute_skips_stale_doc(self, make_vault, scheduler):
        vault = make_vault()
        changed = []
        vault.metadata_cache.on("changed", changed.append)
        doc = run(vault.create("a.md", note("k1")))
        vault.delete(doc)
        scheduler.advance(1)
        assert changed == []


class TestExternalChanges:

    def test_write_new_then_known(self, make_vault, vault_root):
        vault = make_vault()
        events = []
        vault.on("create", lambda d: events.append(("create", d.path)))
        vault.on("modify", lambda d: events.append(("modify", d.path)))

        (vault_root / "a.md").write_text("x")
        doc = vault.apply_external_write("a.md")
        assert vault.apply_external_write("a.md") is doc
        assert events == [("create", "a.md"), ("modify", "a.md")]

    def test_write_ignores_hidden_and_missing(self, make_vault):
        vault = make_vault()
        assert vault.apply_external_write(".obsidian/x.json") is None
        assert vault.apply_external_write("gone.md") is None

    def test_delete_unknown(self, make_vault):
        assert make_vault().apply_external_delete("nope.md") is None

    def test_rename(self, make_vault):
        vault = make_vault({"a.md": "x"})
        doc = vault.get_file("a.md")
        assert vault.apply_external_rename("a.md", "b.md") is doc
        assert doc.path == "b.md"

    def test_rename_into_hidden_is_delete(self, make_vault):
        vault = make_vault({"a.md": "x"})
        deleted = []
        vault.on("delete", deleted.append)
        vault.apply_external_rename("a.md", ".trash/a.md")
        assert [d.path for d in deleted] == ["a.md"]


class TestEvents:

    def test_offref_and_counts(self):
        events = Events()
        calls = []
        ref = events.on("x", calls.append)
        events.trigger("x", 1)
        events.offref(ref)
        events.offref(ref)
        events.trigger("x", 2)
        assert calls == [1]
        assert events.listener_count("x") == 0

    def test_failing_handler_is_isolated(self, caplog):
        events = Events()
        calls = []

        def boom(value):
            raise RuntimeError("boom")

        events.on("x", boom)
        events.on("x", calls.append)
        events.trigger("x", 1)
        assert calls == [1]
        assert "handler for 'x' failed" in caplog.text

    def test_off_all(self):
        events = Events()
        events.on("a", print)
        events.on("b", print)
        events.off_all()
        assert events.listener_count("a") == events.listener_count("b") == 0
