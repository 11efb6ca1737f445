"""Event-driven sync-key index.

Maps sync key -> documents carrying it, kept current from vault events
instead of rescanning. The one full pass happens in initialize(); after
that every update is O(1) via the reverse map (path -> key) plus O(k) in a
single key's bucket.

The index is a cache, not the truth. The live frontmatter in the vault's
metadata cache is authoritative; the index lags it by at most the event
propagation delay. scan() and verify() read the truth directly for callers
that need it.

Event handling:
    create   -> index after ``index_delay`` (metadata not parsed yet)
    delete   -> unindex now (nothing to read)
    rename   -> unindex old path now, index new path after ``index_delay``
    changed  -> index now (fires once metadata is ready)

Entry points:
    idx = SyncKeyIndex(vault, scheduler)
    idx.initialize()
    idx.find_all_by_key("abc")   # -> [Document, ...]
    idx.get_duplicate_groups()  # fresh full scan
"""

from __future__ import annotations

import enum
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from vaultguard.classifier import looks_like_transcript
from vaultguard.events import Events
from vaultguard.frontmatter import KEY_FIELD, sync_key

if TYPE_CHECKING:
    from vaultguard.classifier import DocumentClassifier
    from vaultguard.events import EventRef
    from vaultguard.scheduler import Scheduler
    from vaultguard.vault import Document, Vault

logger = logging.getLogger("vaultguard.index")

INDEX_DELAY = 0.1   # seconds to let the metadata cache catch up after create/rename


class IndexState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    BUILDING = "building"
    READY = "ready"


@dataclass
class IndexStats:
    count: int          # indexed documents
    keys: int           # distinct sync keys
    ready: bool


@dataclass
class DuplicateGroup:
    sync_key: str
    files: list[Document] = field(default_factory=list)

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.files]


class SyncKeyIndex(Events):
    """In-memory sync_key -> [Document] cache fed by vault events.

    Emits ``indexed(doc, key)`` and ``unindexed(path, key)``.
    """

    def __init__(
        self,
        vault: Vault,
        scheduler: Scheduler,
        *,
        key_field: str = KEY_FIELD,
        index_delay: float = INDEX_DELAY,
        classifier: DocumentClassifier | None = None,
    ) -> None:
        super().__init__()
        self.vault = vault
        self.scheduler = scheduler
        self.key_field = key_field
        self.index_delay = index_delay
        self.classifier = classifier

        self._by_key: dict[str, list[Document]] = {}
        self._key_by_path: dict[str, str] = {}
        self._refs: list[EventRef] = []
        self.state = IndexState.UNINITIALIZED

    @property
    def ready(self) -> bool:
        return self.state is IndexState.READY

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Seed from one full pass, then follow vault events."""
        self.cleanup()
        self.state = IndexState.BUILDING

        for doc in self.vault.get_markdown_files():
            self._index(doc)

        self._subscribe()
        self.state = IndexState.READY
        logger.info("index ready: %d files, %d keys", len(self._key_by_path), len(self._by_key))

    def cleanup(self) -> None:
        """Unsubscribe and forget everything. Safe to call repeatedly.

        Timers already scheduled still fire; they are ignored once the
        index is no longer ready.
        """
        for ref in self._refs:
            ref.source.offref(ref)
        self._refs = []
        self._by_key.clear()
        self._key_by_path.clear()
        if self.state is not IndexState.UNINITIALIZED:
            logger.debug("index cleaned up")
        self.state = IndexState.UNINITIALIZED

    def _subscribe(self) -> None:
        self._refs = [
            self.vault.on("create", self._on_create),
            self.vault.on("delete", self._on_delete),
            self.vault.on("rename", self._on_rename),
            self.vault.metadata_cache.on("changed", self._on_changed),
        ]

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _on_create(self, doc: Document) -> None:
        if doc.extension != "md":
            return
        logger.debug("file created: %s", doc.path)
        self.scheduler.call_later(self.index_delay, self._deferred_index, doc)

    def _on_delete(self, doc: Document) -> None:
        logger.debug("file deleted: %s", doc.path)
        self.unindex_path(doc.path)

    def _on_rename(self, doc: Document, old_path: str) -> None:
        logger.debug("file renamed: %s -> %s", old_path, doc.path)
        self.unindex_path(old_path, doc)
        if doc.extension == "md":
            self.scheduler.call_later(self.index_delay, self._deferred_index, doc)

    def _on_changed(self, doc: Document) -> None:
        if doc.extension != "md":
            return
        logger.debug("metadata changed: %s", doc.path)
        self.index_file(doc)

    def _deferred_index(self, doc: Document) -> None:
        if not self.ready:
            return
        if self.vault.get_file(doc.path) is not doc:
            return  # deleted or moved again while we waited
        self.index_file(doc)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def _live_key(self, doc: Document) -> str | None:
        return sync_key(self.vault.metadata_cache.get_file_cache(doc), self.key_field)

    def index_file(self, doc: Document) -> str | None:
        """Idempotent upsert of one document. Returns its current key."""
        if doc.extension != "md":
            return None
        return self._index(doc)

    def _index(self, doc: Document) -> str | None:
        key = self._live_key(doc)
        old_key = self._key_by_path.get(doc.path)

        if old_key is not None and old_key != key:
            self._remove(doc.path, old_key)

        if key is None:
            return None

        bucket = self._by_key.setdefault(key, [])
        if not any(d is doc or d.path == doc.path for d in bucket):
            bucket.append(doc)
            self._key_by_path[doc.path] = key
            self.trigger("indexed", doc, key)
        else:
            self._key_by_path[doc.path] = key
        return key

    def unindex_path(self, path: str, doc: Document | None = None) -> str | None:
        """Drop whatever is indexed under path. Returns the key it had.

        Pass the handle when it has already moved away from path (rename).
        """
        key = self._key_by_path.get(path)
        if key is None:
            return None
        self._remove(path, key, doc)
        return key

    def _remove(self, path: str, key: str, doc: Document | None = None) -> None:
        bucket = self._by_key.get(key)
        if bucket is not None:
            bucket[:] = [d for d in bucket if d is not doc and d.path != path]
            if not bucket:
                del self._by_key[key]
        self._key_by_path.pop(path, None)
        self.trigger("unindexed", path, key)

    # ------------------------------------------------------------------
    # Queries (never O(total documents))
    # ------------------------------------------------------------------

    def find_by_key(self, key: str) -> Document | None:
        bucket = self._by_key.get(key)
        return bucket[0] if bucket else None

    def find_all_by_key(self, key: str) -> list[Document]:
        return list(self._by_key.get(key, ()))

    def has_key(self, key: str) -> bool:
        return key in self._by_key

    def get_key_by_path(self, path: str) -> str | None:
        return self._key_by_path.get(path)

    def get_all_indexed(self) -> list[Document]:
        return [doc for bucket in self._by_key.values() for doc in bucket]

    def get_stats(self) -> IndexStats:
        return IndexStats(count=len(self._key_by_path), keys=len(self._by_key), ready=self.ready)

    # ------------------------------------------------------------------
    # Full scans (strongly consistent, O(n))
    # ------------------------------------------------------------------

    def scan(self) -> dict[str, list[Document]]:
        """Group every Markdown document by its live sync key."""
        groups: dict[str, list[Document]] = defaultdict(list)
        for doc in self.vault.get_markdown_files():
            key = self._live_key(doc)
            if key:
                groups[key].append(doc)
        return dict(groups)

    def scan_key(self, key: str, exclude_path: str | None = None) -> list[Document]:
        return [
            doc for doc in self.vault.get_markdown_files()
            if doc.path != exclude_path and self._live_key(doc) == key
        ]

    def verify(self) -> int:
        """Reconcile the cache with a fresh scan. Returns the number of repairs."""
        truth = {doc.path: (doc, key) for key, docs in self.scan().items() for doc in docs}
        repaired: set[str] = set()

        # handles left in a bucket without a matching reverse-map entry
        for key, bucket in list(self._by_key.items()):
            live = [d for d in bucket if self._key_by_path.get(d.path) == key and truth.get(d.path, (None,))[0] is d]
            if len(live) != len(bucket):
                repaired.update(d.path for d in bucket if d not in live)
                if live:
                    bucket[:] = live
                else:
                    del self._by_key[key]

        for path, key in list(self._key_by_path.items()):
            live = truth.get(path)
            if live is None or live[1] != key:
                self._remove(path, key)
                repaired.add(path)

        for path, (doc, key) in truth.items():
            if self._key_by_path.get(path) != key:
                self._index(doc)
                repaired.add(path)

        if repaired:
            logger.warning("index verify: repaired %d stale entries", len(repaired))
        return len(repaired)

    def _is_transcript(self, doc: Document) -> bool:
        if self.classifier is not None:
            return self.classifier.is_transcript(doc.path)
        return looks_like_transcript(doc.name)

    def get_duplicate_groups(self) -> list[DuplicateGroup]:
        """Keys held by more than one non-transcript document.

        Reads live metadata instead of the cache: this runs rarely and must
        also see documents the incremental index has not caught yet.
        """
        duplicates: list[DuplicateGroup] = []
        for key, docs in self.scan().items():
            notes = [d for d in docs if not self._is_transcript(d)]
            if len(notes) > 1:
                duplicates.append(DuplicateGroup(sync_key=key, files=notes))
        return duplicates
