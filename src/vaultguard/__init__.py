"""Duplicate guard for Markdown vaults whose notes carry an external sync key.

An upstream sync process writes a key (``granola_id``) into each note's
frontmatter. Notes and their transcripts may share a key; two notes (or two
transcripts) may not.

Layout:
    <vault>/
        vaultguard.toml                          # guard config
        .obsidian/plugins/granola-sync/data.json # upstream settings (read-only)
        **/*.md                                  # notes and transcripts

Flow:
    vault event -> SyncKeyIndex update (deferred) <- DuplicateResolver query
                -> CreateInterceptor: create, or redirect to the existing note
"""

from vaultguard.config import GuardConfig, GuardSettings, load_config
from vaultguard.guard import CreateInterceptor, IntegrationService
from vaultguard.index import SyncKeyIndex
from vaultguard.resolver import CreationDecision, DuplicateResolver
from vaultguard.vault import Document, Vault

__all__ = [
    "CreateInterceptor",
    "CreationDecision",
    "Document",
    "DuplicateResolver",
    "GuardConfig",
    "GuardSettings",
    "IntegrationService",
    "SyncKeyIndex",
    "Vault",
    "load_config",
]
