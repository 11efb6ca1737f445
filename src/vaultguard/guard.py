"""Create-call interception and the service that wires the core together.

CreateInterceptor turns the vault's create primitive into a guarded one:

    wrapped = interceptor.install(vault.create_primitive)
    vault.create_primitive = wrapped
    ...
    vault.create_primitive = interceptor.uninstall()

A denied create is a redirect, not an error: the caller gets the existing
document back. If that document vanished in the meantime the original
primitive runs (fail open).

IntegrationService owns index, config reader, resolver and interceptor and
is re-initialized whenever the guard settings change.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from vaultguard.classifier import DocumentClassifier
from vaultguard.config import GuardSettings
from vaultguard.frontmatter import KEY_FIELD
from vaultguard.index import SyncKeyIndex
from vaultguard.notices import duplicate_prevented_message, duplicate_stats_message
from vaultguard.resolver import DuplicateResolver
from vaultguard.sync_config import SyncConfigReader

if TYPE_CHECKING:
    from vaultguard.config import GuardConfig
    from vaultguard.index import DuplicateGroup
    from vaultguard.notices import Notifier
    from vaultguard.scheduler import Scheduler
    from vaultguard.vault import CreatePrimitive, Document, Vault

logger = logging.getLogger("vaultguard.guard")

NOTICE_TIMEOUT = 10.0

_SYNC_FILENAME_RE = re.compile(r"- \d{4}-\d{2}-\d{2}")


class CreateInterceptor:
    """install(original) -> wrapped, uninstall() -> original."""

    def __init__(
        self,
        resolver: DuplicateResolver,
        vault: Vault,
        notifier: Notifier,
        *,
        notice_timeout: float = NOTICE_TIMEOUT,
    ) -> None:
        self.resolver = resolver
        self.vault = vault
        self.notifier = notifier
        self.notice_timeout = notice_timeout
        self._original: CreatePrimitive | None = None
        self._wrapped: CreatePrimitive | None = None

    @property
    def installed(self) -> bool:
        return self._original is not None

    def install(self, original: CreatePrimitive) -> CreatePrimitive:
        """Wrap original. Installing twice returns the existing wrapper."""
        if self._wrapped is not None:
            return self._wrapped

        async def guarded_create(path: str, content: str = "") -> Document:
            if not content:
                return await original(path, content)

            decision = await self.resolver.intercept_file_creation(path, content)
            if decision.should_create or decision.alternative_path is None:
                return await original(path, content)

            self.notifier.notify(
                duplicate_prevented_message(path, decision.alternative_path),
                "warning",
                self.notice_timeout,
            )
            existing = self.vault.get_file(decision.alternative_path)
            if existing is not None:
                return existing

            logger.warning("redirect target %s vanished; creating %s", decision.alternative_path, path)
            return await original(path, content)

        self._original = original
        self._wrapped = guarded_create
        return guarded_create

    def uninstall(self) -> CreatePrimitive | None:
        """Forget the wrapper and hand back the exact original primitive."""
        original = self._original
        self._original = None
        self._wrapped = None
        return original


@dataclass
class GroupStats:
    sync_key: str
    count: int
    files: list[str]


@dataclass
class DuplicateStats:
    duplicate_groups: int
    total_duplicate_files: int
    groups: list[GroupStats] = field(default_factory=list)


@dataclass
class DeleteReport:
    deleted: int = 0
    kept: list[str] = field(default_factory=list)
    errors: list[tuple[str, str]] = field(default_factory=list)


def canonical_file(files: list[Document]) -> Document:
    """The copy to keep: shortest path, then lexical (``Note.md`` over ``Note 1.md``)."""
    return min(files, key=lambda d: (len(d.path), d.path))


class IntegrationService:
    """Index + resolver + interceptor bound to one vault."""

    def __init__(
        self,
        vault: Vault,
        notifier: Notifier,
        scheduler: Scheduler,
        *,
        plugin_id: str = "granola-sync",
        index_delay: float = 0.1,
        check_delay: float = 0.05,
        config_ttl: float = 5.0,
        notice_timeout: float = NOTICE_TIMEOUT,
    ) -> None:
        self.vault = vault
        self.notifier = notifier
        self.settings = GuardSettings()
        self.config_reader = SyncConfigReader(vault, plugin_id, ttl=config_ttl)
        self.classifier = DocumentClassifier(self.config_reader)
        self.index = SyncKeyIndex(vault, scheduler, index_delay=index_delay, classifier=self.classifier)
        self.resolver = DuplicateResolver(
            self.index,
            self.config_reader,
            scheduler,
            self.settings,
            check_delay=check_delay,
            classifier=self.classifier,
        )
        self.interceptor = CreateInterceptor(self.resolver, vault, notifier, notice_timeout=notice_timeout)

    @classmethod
    def from_config(cls, vault: Vault, notifier: Notifier, scheduler: Scheduler, cfg: GuardConfig) -> IntegrationService:
        return cls(
            vault,
            notifier,
            scheduler,
            plugin_id=cfg.upstream.plugin_id,
            index_delay=cfg.timing.index_delay,
            check_delay=cfg.timing.check_delay,
            config_ttl=cfg.timing.config_ttl,
            notice_timeout=cfg.watcher.notice_timeout,
        )

    @property
    def intercepting(self) -> bool:
        return self.interceptor.installed

    def initialize(self, settings: GuardSettings) -> None:
        """(Re)build everything for new settings."""
        self.settings = settings
        self.resolver.set_settings(settings)
        self.index.key_field = settings.key_field or KEY_FIELD
        self.config_reader.clear_cache()
        self.index.initialize()

        if settings.duplicate_prevention_enabled:
            self._start_interception()
        else:
            self._stop_interception()

        stats = self.index.get_stats()
        logger.info(
            "guard initialized: prevention=%s, %d files indexed",
            "on" if self.intercepting else "off", stats.count,
        )

    def _start_interception(self) -> None:
        if self.intercepting:
            return
        self.vault.create_primitive = self.interceptor.install(self.vault.create_primitive)
        logger.debug("create interception enabled")

    def _stop_interception(self) -> None:
        if not self.intercepting:
            return
        original = self.interceptor.uninstall()
        if original is not None:
            self.vault.create_primitive = original
        logger.debug("create interception disabled")

    def stop(self) -> None:
        self._stop_interception()
        self.index.cleanup()

    # ------------------------------------------------------------------
    # Duplicate reporting / cleanup
    # ------------------------------------------------------------------

    def get_duplicate_stats(self) -> DuplicateStats:
        groups = self.index.get_duplicate_groups()
        return DuplicateStats(
            duplicate_groups=len(groups),
            total_duplicate_files=sum(len(g.files) - 1 for g in groups),
            groups=[GroupStats(g.sync_key, len(g.files), g.paths) for g in groups],
        )

    def show_duplicate_stats(self) -> DuplicateStats:
        stats = self.get_duplicate_stats()
        kind = "info" if stats.duplicate_groups else "success"
        self.notifier.notify(duplicate_stats_message(stats), kind)
        return stats

    def delete_duplicates(self, groups: list[DuplicateGroup] | None = None, *, dry_run: bool = False) -> DeleteReport:
        """Delete every non-canonical copy. Failures are collected, not raised."""
        if groups is None:
            groups = self.index.get_duplicate_groups()
        report = DeleteReport()
        for group in groups:
            keep = canonical_file(group.files)
            report.kept.append(keep.path)
            for doc in group.files:
                if doc is keep:
                    continue
                if dry_run:
                    report.deleted += 1
                    continue
                try:
                    self.vault.delete(doc)
                    report.deleted += 1
                except OSError as exc:
                    logger.warning("cannot delete %s: %s", doc.path, exc)
                    report.errors.append((doc.path, str(exc)))
        return report

    def is_sync_file(self, path: str, content: str | None = None) -> bool:
        """Whether a file looks like it came from the upstream sync."""
        if _SYNC_FILENAME_RE.search(path):
            return True
        if content:
            field_re = rf"{re.escape(self.settings.key_field)}:\s*([a-f0-9-]+)"
            return re.search(field_re, content, re.IGNORECASE) is not None
        return False
