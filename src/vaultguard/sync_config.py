"""Read-only view of the upstream sync plugin's settings.

The upstream plugin persists its settings as JSON at

    <vault>/<config_dir>/plugins/<plugin_id>/data.json

We only need enough of it to tell transcripts from notes. Reads are cached
for ``ttl`` seconds because classification runs once per candidate in a
tight loop.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

    from vaultguard.vault import Vault

logger = logging.getLogger("vaultguard.sync_config")

DEFAULT_PLUGIN_ID = "granola-sync"
CACHE_TTL = 5.0

SAME_LOCATION = "same-location"
CUSTOM_LOCATION = "custom-location"

# Fields the upstream plugin may omit; read values are merged over these.
_DEFAULTS: dict[str, Any] = {
    "syncTranscripts": False,
    "transcriptHandling": SAME_LOCATION,
    "customTranscriptBaseFolder": "",
    "transcriptFilenamePattern": "{title} - {date} - transcript",
    "filenamePattern": "{title} - {date}",
}


@dataclass
class SyncSettings:
    """The upstream settings this package cares about, plus everything read."""

    sync_transcripts: bool = False
    transcript_handling: str = SAME_LOCATION           # same-location | custom-location
    custom_transcript_base_folder: str = ""
    transcript_subfolder_pattern: str = "none"        # none | month | year
    transcript_filename_pattern: str = "{title} - {date} - transcript"
    base_folder_type: str = "root"                    # root | custom
    custom_base_folder: str = ""
    subfolder_pattern: str = "none"
    filename_pattern: str = "{title} - {date}"
    sync_notes: bool = True
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncSettings:
        merged = {**_DEFAULTS, **data}
        return cls(
            sync_transcripts=bool(merged.get("syncTranscripts")),
            transcript_handling=str(merged.get("transcriptHandling") or SAME_LOCATION),
            custom_transcript_base_folder=str(merged.get("customTranscriptBaseFolder") or ""),
            transcript_subfolder_pattern=str(merged.get("transcriptSubfolderPattern") or "none"),
            transcript_filename_pattern=str(merged.get("transcriptFilenamePattern") or _DEFAULTS["transcriptFilenamePattern"]),
            base_folder_type=str(merged.get("baseFolderType") or "root"),
            custom_base_folder=str(merged.get("customBaseFolder") or ""),
            subfolder_pattern=str(merged.get("subfolderPattern") or "none"),
            filename_pattern=str(merged.get("filenamePattern") or _DEFAULTS["filenamePattern"]),
            sync_notes=bool(merged.get("syncNotes", True)),
            raw=merged,
        )


def _folder_prefix(folder: str) -> str:
    return folder.strip().strip("/").lower()


class SyncConfigReader:
    """Time-cached reader for the upstream plugin's data.json."""

    def __init__(
        self,
        vault: Vault,
        plugin_id: str = DEFAULT_PLUGIN_ID,
        *,
        ttl: float = CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.vault = vault
        self.plugin_id = plugin_id
        self.ttl = ttl
        self._clock = clock
        self._cached: SyncSettings | None = None
        self._read_at = 0.0

    @property
    def config_path(self) -> str:
        return f"{self.vault.config_dir}/plugins/{self.plugin_id}/data.json"

    def get_settings(self) -> SyncSettings | None:
        """Upstream settings, or None if missing or unreadable. Never raises."""
        now = self._clock()
        if self._cached is not None and (now - self._read_at) < self.ttl:
            return self._cached

        path = self.config_path
        try:
            if not self.vault.adapter.exists(path):
                logger.warning("upstream sync config not found at %s", path)
                return None
            data = json.loads(self.vault.adapter.read(path))
        except (OSError, ValueError) as exc:
            logger.warning("cannot read upstream sync config %s: %s", path, exc)
            return None
        if not isinstance(data, dict):
            logger.warning("upstream sync config %s is not a JSON object", path)
            return None

        self._cached = SyncSettings.from_dict(data)
        self._read_at = now
        return self._cached

    def clear_cache(self) -> None:
        self._cached = None
        self._read_at = 0.0

    def is_transcript_sync_enabled(self) -> bool:
        settings = self.get_settings()
        return settings.sync_transcripts if settings else False

    def get_notes_folder(self) -> str:
        settings = self.get_settings()
        if settings and settings.base_folder_type == "custom":
            return settings.custom_base_folder or "/"
        return "/"

    def get_transcript_folder(self) -> str | None:
        """Where transcripts land, or None when transcript sync is off."""
        settings = self.get_settings()
        if not settings or not settings.sync_transcripts:
            return None
        if settings.transcript_handling == CUSTOM_LOCATION:
            return settings.custom_transcript_base_folder or None
        return self.get_notes_folder()

    def is_transcript(self, path: str) -> bool:
        """Folder test when transcripts are relocated, filename test otherwise.

        Old or hand-placed transcripts outside the configured folder are
        still caught by the filename test.
        """
        normalized = path.lower()
        settings = self.get_settings()
        if not settings or not settings.sync_transcripts:
            return "transcript" in normalized

        if settings.transcript_handling == CUSTOM_LOCATION and settings.custom_transcript_base_folder:
            prefix = _folder_prefix(settings.custom_transcript_base_folder)
            if prefix and normalized.lstrip("/").startswith(prefix + "/"):
                return True

        return "transcript" in normalized

    def is_note(self, path: str) -> bool:
        return not self.is_transcript(path)
