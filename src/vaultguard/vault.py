"""Filesystem-backed vault: the host the guard plugs into.

A vault is a directory of documents addressed by vault-relative,
``/``-separated paths. It owns the Document handles, emits lifecycle
events, and keeps a MetadataCache whose frontmatter is recomputed
asynchronously after every write:

    vault events:     create(doc)  modify(doc)  delete(doc)  rename(doc, old_path)
    metadata events:  changed(doc)   -- fires once the new frontmatter is readable

Writes made through the vault emit events directly. Changes made by other
processes reach the vault through the watcher, which calls the
``apply_external_*`` methods.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from vaultguard.events import Events
from vaultguard.frontmatter import extract_frontmatter

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator

    from vaultguard.scheduler import Scheduler

    CreatePrimitive = Callable[[str, str], Awaitable["Document"]]

logger = logging.getLogger("vaultguard.vault")

DEFAULT_CONFIG_DIR = ".obsidian"


def normalize_path(path: str) -> str:
    """Vault-relative POSIX form: no leading slash, no ``.`` segments."""
    parts = [p for p in PurePosixPath(path.replace("\\", "/")).parts if p not in ("/", ".", "")]
    if ".." in parts:
        msg = f"path escapes the vault: {path}"
        raise ValueError(msg)
    return "/".join(parts)


@dataclass(eq=False)
class Document:
    """Handle to a stored document. ``path`` changes on rename."""

    path: str

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def basename(self) -> str:
        stem, _, _ = self.name.rpartition(".")
        return stem or self.name

    @property
    def extension(self) -> str:
        stem, dot, ext = self.name.rpartition(".")
        return ext.lower() if dot and stem else ""

    @property
    def parent(self) -> str:
        return self.path.rsplit("/", 1)[0] if "/" in self.path else ""

    def __repr__(self) -> str:
        return f"Document({self.path!r})"


class VaultAdapter:
    """Raw storage access relative to the vault root (config files, etc.)."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def full_path(self, path: str) -> Path:
        return self.root / normalize_path(path)

    def exists(self, path: str) -> bool:
        return self.full_path(path).exists()

    def read(self, path: str) -> str:
        return self.full_path(path).read_text(encoding="utf-8")

    def write(self, path: str, content: str) -> None:
        target = self.full_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")


class MetadataCache(Events):
    """Per-document frontmatter, recomputed off the write path."""

    def __init__(self, vault: Vault, scheduler: Scheduler, parse_delay: float = 0.0) -> None:
        super().__init__()
        self.vault = vault
        self.scheduler = scheduler
        self.parse_delay = parse_delay
        self._frontmatter: dict[str, dict[str, str]] = {}

        vault.on("create", self._schedule)
        vault.on("modify", self._schedule)
        vault.on("delete", self._on_delete)
        vault.on("rename", self._on_rename)

    def get_file_cache(self, doc: Document) -> dict[str, str] | None:
        """Frontmatter as last computed, or None if not computed yet."""
        return self._frontmatter.get(doc.path)

    def resolve_all(self) -> int:
        """Parse every Markdown document synchronously (vault load)."""
        n = 0
        for doc in self.vault.get_markdown_files():
            self._compute(doc)
            n += 1
        return n

    def _compute(self, doc: Document) -> bool:
        try:
            content = self.vault.read(doc)
        except OSError:
            logger.debug("metadata: cannot read %s", doc.path)
            return False
        frontmatter, _ = extract_frontmatter(content)
        self._frontmatter[doc.path] = frontmatter
        return True

    def _schedule(self, doc: Document) -> None:
        if doc.extension == "md":
            self.scheduler.call_later(self.parse_delay, self._recompute, doc)

    def _recompute(self, doc: Document) -> None:
        if self.vault.get_file(doc.path) is not doc:
            return  # deleted or renamed away since scheduling
        if self._compute(doc):
            self.trigger("changed", doc)

    def _on_delete(self, doc: Document) -> None:
        self._frontmatter.pop(doc.path, None)

    def _on_rename(self, doc: Document, old_path: str) -> None:
        entry = self._frontmatter.pop(old_path, None)
        if entry is not None:
            self._frontmatter[doc.path] = entry


class Vault(Events):
    """Document store rooted at a directory."""

    def __init__(
        self,
        root: Path | str,
        scheduler: Scheduler,
        *,
        config_dir: str = DEFAULT_CONFIG_DIR,
        parse_delay: float = 0.0,
    ) -> None:
        super().__init__()
        self.root = Path(root)
        self.config_dir = normalize_path(config_dir)
        self.adapter = VaultAdapter(self.root)
        self._files: dict[str, Document] = {}
        self.metadata_cache = MetadataCache(self, scheduler, parse_delay=parse_delay)
        # Extension point: whatever is installed here serves vault.create().
        self.create_primitive: CreatePrimitive = self.create_file

    # ------------------------------------------------------------------
    # Loading / lookup
    # ------------------------------------------------------------------

    def _is_hidden(self, rel: str) -> bool:
        return any(part.startswith(".") for part in rel.split("/"))

    def _walk(self) -> Iterator[str]:
        if not self.root.exists():
            return
        for p in sorted(self.root.rglob("*")):
            if not p.is_file():
                continue
            rel = p.relative_to(self.root).as_posix()
            if not self._is_hidden(rel):
                yield rel

    def load(self) -> int:
        """Register every document on disk and compute its metadata."""
        self._files = {rel: Document(rel) for rel in self._walk()}
        self.metadata_cache.resolve_all()
        logger.info("vault loaded: %s (%d files)", self.root, len(self._files))
        return len(self._files)

    def get_files(self) -> list[Document]:
        return list(self._files.values())

    def get_markdown_files(self) -> list[Document]:
        return [d for d in self._files.values() if d.extension == "md"]

    def get_file(self, path: str) -> Document | None:
        try:
            return self._files.get(normalize_path(path))
        except ValueError:
            return None

    def read(self, doc: Document) -> str:
        return self.adapter.read(doc.path)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(self, path: str, content: str = "") -> Document:
        """Create a document through the installed create primitive."""
        return await self.create_primitive(path, content)

    async def create_file(self, path: str, content: str = "") -> Document:
        """The unguarded create primitive."""
        rel = normalize_path(path)
        if rel in self._files or self.adapter.exists(rel):
            msg = f"File already exists: {rel}"
            raise FileExistsError(msg)
        self.adapter.write(rel, content)
        doc = Document(rel)
        self._files[rel] = doc
        self.trigger("create", doc)
        return doc

    def modify(self, doc: Document, content: str) -> None:
        self.adapter.write(doc.path, content)
        self.trigger("modify", doc)

    def delete(self, doc: Document) -> None:
        """Remove a document. Raises OSError if the file cannot be removed."""
        self.adapter.full_path(doc.path).unlink()
        if self._files.get(doc.path) is doc:
            del self._files[doc.path]
        self.trigger("delete", doc)

    def rename(self, doc: Document, new_path: str) -> None:
        new_rel = normalize_path(new_path)
        if new_rel in self._files:
            msg = f"File already exists: {new_rel}"
            raise FileExistsError(msg)
        target = self.adapter.full_path(new_rel)
        target.parent.mkdir(parents=True, exist_ok=True)
        self.adapter.full_path(doc.path).rename(target)
        self._move(doc, new_rel)

    def _move(self, doc: Document, new_rel: str) -> None:
        old_path = doc.path
        self._files.pop(old_path, None)
        doc.path = new_rel
        self._files[new_rel] = doc
        self.trigger("rename", doc, old_path)

    # ------------------------------------------------------------------
    # Changes observed on disk (watcher)
    # ------------------------------------------------------------------

    def apply_external_write(self, path: str) -> Document | None:
        """A file was written by someone else: create or modify event."""
        rel = normalize_path(path)
        if self._is_hidden(rel):
            return None
        doc = self._files.get(rel)
        if doc is not None:
            self.trigger("modify", doc)
            return doc
        if not self.adapter.full_path(rel).is_file():
            return None
        doc = Document(rel)
        self._files[rel] = doc
        self.trigger("create", doc)
        return doc

    def apply_external_delete(self, path: str) -> Document | None:
        doc = self._files.pop(normalize_path(path), None)
        if doc is not None:
            self.trigger("delete", doc)
        return doc

    def apply_external_rename(self, old_path: str, new_path: str) -> Document | None:
        old_rel, new_rel = normalize_path(old_path), normalize_path(new_path)
        doc = self._files.get(old_rel)
        if doc is None:
            return self.apply_external_write(new_rel)
        if self._is_hidden(new_rel):
            return self.apply_external_delete(old_rel)
        self._move(doc, new_rel)
        return doc
