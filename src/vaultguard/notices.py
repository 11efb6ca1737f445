"""User-visible notices: short-lived, styled messages.

A terminal has no toasts, so ConsoleNotifier renders a coloured panel and
ignores ``timeout``. Other front ends implement the Notifier protocol.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Protocol

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

if TYPE_CHECKING:
    from vaultguard.guard import DuplicateStats

NoticeKind = Literal["info", "success", "warning"]

TITLE = "vaultguard"
DEFAULT_TIMEOUT = 8.0

_STYLES: dict[str, str] = {
    "info": "blue",
    "success": "green",
    "warning": "yellow",
}


class Notifier(Protocol):
    def notify(self, message: str, kind: NoticeKind = "info", timeout: float = DEFAULT_TIMEOUT) -> None: ...


class ConsoleNotifier:
    """Render notices as rich panels on stderr."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console(stderr=True)

    def notify(self, message: str, kind: NoticeKind = "info", timeout: float = DEFAULT_TIMEOUT) -> None:  # noqa: ARG002
        style = _STYLES.get(kind, "blue")
        self.console.print(Panel(escape(message), title=f"[bold]{TITLE}[/bold]", border_style=style, expand=False))


def duplicate_prevented_message(attempted: str, existing: str) -> str:
    return f"Duplicate file prevented\nAttempted: {attempted}\nExisting: {existing}"


def duplicate_stats_message(stats: DuplicateStats, limit: int = 5) -> str:
    if not stats.duplicate_groups:
        return "No duplicate files found!"
    lines = [
        "Duplicate statistics:",
        f"  Groups: {stats.duplicate_groups}",
        f"  Duplicate files: {stats.total_duplicate_files}",
        "",
        "Recent duplicates:",
        *(f"  {g.sync_key}: {g.count} files" for g in stats.groups[:limit]),
    ]
    return "\n".join(lines)
