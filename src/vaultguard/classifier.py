"""Note vs transcript classification."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from vaultguard.sync_config import SyncConfigReader

DocClass = Literal["note", "transcript"]

NOTE: DocClass = "note"
TRANSCRIPT: DocClass = "transcript"


def looks_like_transcript(path: str) -> bool:
    """Filename heuristic used when no upstream config is available."""
    return "transcript" in path.lower()


class DocumentClassifier:
    """Classifies paths, deferring to the upstream config when there is one."""

    def __init__(self, config_reader: SyncConfigReader | None = None) -> None:
        self.config_reader = config_reader

    def is_transcript(self, path: str) -> bool:
        if self.config_reader is None:
            return looks_like_transcript(path)
        return self.config_reader.is_transcript(path)

    def classify(self, path: str) -> DocClass:
        return TRANSCRIPT if self.is_transcript(path) else NOTE

    def same_class(self, a: str, b: str) -> bool:
        return self.classify(a) == self.classify(b)
