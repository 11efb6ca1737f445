"""Decide whether a proposed document duplicates an existing one.

A note and its transcript legitimately share a sync key; only a collision
within the same class (note/note, transcript/transcript) is a duplicate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from vaultguard.classifier import DocumentClassifier
from vaultguard.config import GuardSettings
from vaultguard.frontmatter import sync_key_of

if TYPE_CHECKING:
    from vaultguard.index import SyncKeyIndex
    from vaultguard.scheduler import Scheduler
    from vaultguard.sync_config import SyncConfigReader
    from vaultguard.vault import Document

logger = logging.getLogger("vaultguard.resolver")

CHECK_DELAY = 0.05   # seconds; lets in-flight index updates land first


@dataclass(frozen=True)
class CreationDecision:
    should_create: bool
    alternative_path: str | None = None


ALLOW = CreationDecision(should_create=True)


class DuplicateResolver:
    """Index + classifier -> allow/deny for a create request."""

    def __init__(
        self,
        index: SyncKeyIndex,
        config_reader: SyncConfigReader | None,
        scheduler: Scheduler,
        settings: GuardSettings | None = None,
        *,
        check_delay: float = CHECK_DELAY,
        classifier: DocumentClassifier | None = None,
    ) -> None:
        self.index = index
        self.classifier = classifier or DocumentClassifier(config_reader)
        self.scheduler = scheduler
        self.settings = settings or GuardSettings()
        self.check_delay = check_delay

    def set_settings(self, settings: GuardSettings) -> None:
        self.settings = settings

    def _existing(self, key: str, path: str) -> list[Document]:
        existing = self.index.find_all_by_key(key)
        if existing:
            return existing

        # The index can lag (key added after create, missed event). One
        # direct scan keeps the miss from becoming a duplicate.
        existing = self.index.scan_key(key, exclude_path=path)
        if existing:
            logger.warning(
                "index missed %d file(s) for key %s: %s",
                len(existing), key, ", ".join(d.path for d in existing),
            )
        return existing

    async def intercept_file_creation(self, path: str, content: str) -> CreationDecision:
        if not self.settings.duplicate_prevention_enabled:
            return ALLOW

        key = sync_key_of(content, self.settings.key_field)
        if not key:
            return ALLOW

        await self.scheduler.sleep(self.check_delay)

        existing = self._existing(key, path)
        if self.settings.debug_mode:
            logger.debug(
                "checking %s (key %s): %d existing [%s]",
                path, key, len(existing), ", ".join(d.path for d in existing),
            )
        if not existing:
            return ALLOW

        new_class = self.classifier.classify(path)
        for doc in existing:
            if self.classifier.classify(doc.path) == new_class:
                logger.info("duplicate %s of %s (key %s, %s)", path, doc.path, key, new_class)
                return CreationDecision(should_create=False, alternative_path=doc.path)

        if self.settings.debug_mode:
            logger.debug(
                "allowing %s (%s): existing files are a different class: %s",
                path, new_class,
                ", ".join(f"{d.path} ({self.classifier.classify(d.path)})" for d in existing),
            )
        return ALLOW
