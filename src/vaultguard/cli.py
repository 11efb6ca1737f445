"""vaultguard CLI: duplicate guard for sync-keyed Markdown vaults.

Commands:
    vaultguard init              create vaultguard.toml in the vault root
    vaultguard status            guard, index, and upstream plugin status
    vaultguard stats             duplicate statistics (fresh full scan)
    vaultguard dedupe            delete duplicate copies, keeping one per key
    vaultguard check PATH        would creating PATH be redirected?
    vaultguard create PATH       create a note through the guard
    vaultguard classify PATH...  note or transcript?
    vaultguard verify            reconcile the index with a full scan
    vaultguard watch             follow the vault and keep the index live
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.table import Table

from vaultguard.config import GuardConfig, init_config, load_config
from vaultguard.guard import IntegrationService
from vaultguard.notices import ConsoleNotifier
from vaultguard.plugins import detect_sync_plugin
from vaultguard.scheduler import LoopScheduler
from vaultguard.vault import Vault, normalize_path
from vaultguard.watcher import run_from_config

if TYPE_CHECKING:
    from vaultguard.resolver import CreationDecision
    from vaultguard.vault import Document

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_cfg(root: str | None) -> GuardConfig:
    try:
        return load_config(root)
    except (OSError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc


def _open(cfg: GuardConfig, *, enabled: bool | None = None) -> IntegrationService:
    """Load the vault and initialize the guard for a one-shot command."""
    if not cfg.root.is_dir():
        raise click.ClickException(f"vault not found: {cfg.root}")
    scheduler = LoopScheduler()
    vault = Vault(cfg.root, scheduler, config_dir=cfg.upstream.config_dir, parse_delay=cfg.timing.parse_delay)
    vault.load()
    service = IntegrationService.from_config(vault, ConsoleNotifier(), scheduler, cfg)
    settings = cfg.guard
    if enabled is not None:
        settings.duplicate_prevention_enabled = enabled
    service.initialize(settings)
    return service


def _read_content(content_file: str | None) -> str:
    if content_file is None:
        return ""
    if content_file == "-":
        return sys.stdin.read()
    try:
        return Path(content_file).read_text(encoding="utf-8")
    except OSError as exc:
        raise click.ClickException(str(exc)) from exc


_vault_option = click.option("--vault", "root", default=None, help="Vault root (default: search upward for vaultguard.toml)")


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="vaultguard")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def cli(verbose: bool) -> None:
    """vaultguard: keep sync-keyed notes from being duplicated."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(message)s",
    )


# ---------------------------------------------------------------------------
# vaultguard init
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--dir", "root", default=".", show_default=True, help="Vault root")
@click.option("--disabled", is_flag=True, help="Write config with duplicate prevention off")
def init(root: str, disabled: bool) -> None:
    """Create vaultguard.toml in the vault root."""
    root_path = Path(root).resolve()
    try:
        config_path = init_config(root_path, enabled=not disabled)
        click.echo(f"Created {config_path}")
    except FileExistsError:
        click.echo("vaultguard.toml already exists, skipping init")

    cfg = load_config(root_path)
    info = detect_sync_plugin(Vault(cfg.root, LoopScheduler(), config_dir=cfg.upstream.config_dir), cfg.upstream.plugin_id)
    if not info.available:
        click.echo(f"Warning: {cfg.upstream.plugin_id} is {info.status}; transcripts are detected by filename only")


# ---------------------------------------------------------------------------
# vaultguard status
# ---------------------------------------------------------------------------


@cli.command()
@_vault_option
def status(root: str | None) -> None:
    """Show guard, index, and upstream plugin status."""
    cfg = _load_cfg(root)
    service = _open(cfg)
    console = Console()

    table = Table(title=f"vaultguard: {cfg.root.name}", show_header=True, header_style="bold")
    table.add_column("Metric", style="dim", no_wrap=True)
    table.add_column("Value", justify="right")

    from importlib.metadata import PackageNotFoundError
    from importlib.metadata import version as _pkg_version
    try:
        _ver = _pkg_version("vaultguard")
    except PackageNotFoundError:
        _ver = "unknown"
    table.add_row("Version", _ver)
    table.add_row("Config", str(cfg.config_path) if cfg.config_path.exists() else "[yellow]defaults[/yellow]")
    table.add_row("", "")

    prevention = "[green]on[/green]" if service.intercepting else "[yellow]off[/yellow]"
    table.add_row("Duplicate prevention", prevention)
    table.add_row("Debug", "on" if cfg.guard.debug_mode else "off")
    table.add_row("Key field", cfg.guard.key_field)
    table.add_row("", "")

    stats = service.index.get_stats()
    table.add_row("Markdown files", str(len(service.vault.get_markdown_files())))
    table.add_row("Indexed files", str(stats.count))
    table.add_row("Sync keys", str(stats.keys))
    table.add_row("", "")

    info = detect_sync_plugin(service.vault, cfg.upstream.plugin_id)
    colour = "green" if info.available else "yellow"
    table.add_row(f"Upstream ({cfg.upstream.plugin_id})", f"[{colour}]{info.status}[/{colour}]")
    settings = service.config_reader.get_settings()
    if settings is None:
        table.add_row("Upstream config", "[yellow]missing[/yellow]")
    else:
        table.add_row("Transcript sync", "on" if service.config_reader.is_transcript_sync_enabled() else "off")
        table.add_row("Transcript handling", settings.transcript_handling)
        folder = service.config_reader.get_transcript_folder()
        if folder:
            table.add_row("Transcript folder", folder)

    console.print(table)
    service.stop()


# ---------------------------------------------------------------------------
# vaultguard stats / dedupe
# ---------------------------------------------------------------------------


@cli.command()
@_vault_option
@click.option("--limit", default=20, show_default=True, help="Groups to list")
def stats(root: str | None, limit: int) -> None:
    """Show duplicate statistics (fresh full scan)."""
    cfg = _load_cfg(root)
    service = _open(cfg)
    result = service.show_duplicate_stats()

    if result.groups:
        table = Table(show_header=True, header_style="bold")
        table.add_column("Sync key", no_wrap=True)
        table.add_column("Files", justify="right")
        table.add_column("Paths")
        for group in result.groups[:limit]:
            table.add_row(group.sync_key, str(group.count), "\n".join(group.files))
        Console().print(table)
        if len(result.groups) > limit:
            click.echo(f"… and {len(result.groups) - limit} more group(s)")
    service.stop()


@cli.command()
@_vault_option
@click.option("--dry-run", is_flag=True, help="Show what would be deleted")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def dedupe(root: str | None, dry_run: bool, yes: bool) -> None:
    """Delete duplicate copies, keeping the canonical file of each group."""
    from vaultguard.guard import canonical_file

    cfg = _load_cfg(root)
    service = _open(cfg)
    groups = service.index.get_duplicate_groups()
    if not groups:
        click.echo("No duplicate files found.")
        service.stop()
        return

    for group in groups:
        keep = canonical_file(group.files)
        click.echo(f"{group.sync_key}")
        for doc in group.files:
            marker = "keep  " if doc is keep else "delete"
            click.echo(f"  {marker} {doc.path}")

    n = sum(len(g.files) - 1 for g in groups)
    if not dry_run and not yes and not click.confirm(f"Delete {n} file(s)?", default=False):
        click.echo("Aborted.")
        service.stop()
        return

    report = service.delete_duplicates(groups, dry_run=dry_run)
    verb = "Would delete" if dry_run else "Deleted"
    click.echo(f"{verb} {report.deleted} file(s), {len(report.errors)} error(s)")
    for path, message in report.errors:
        click.echo(f"  error: {path}: {message}", err=True)
    service.stop()
    if report.errors:
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# vaultguard check / create / classify
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("path")
@click.option("--content-file", "-f", default=None, help="File with the new note's content ('-' for stdin)")
@_vault_option
def check(path: str, content_file: str | None, root: str | None) -> None:
    """Report whether creating PATH would be redirected to an existing note."""
    cfg = _load_cfg(root)
    content = _read_content(content_file)

    async def _run() -> CreationDecision:
        service = _open(cfg, enabled=True)
        try:
            return await service.resolver.intercept_file_creation(path, content)
        finally:
            service.stop()

    decision = asyncio.run(_run())
    if decision.should_create:
        click.echo(f"allow: {path}")
    else:
        click.echo(f"duplicate: {path} -> {decision.alternative_path}")
        raise SystemExit(1)


@cli.command()
@click.argument("path")
@click.option("--content-file", "-f", default=None, help="File with the note's content ('-' for stdin)")
@_vault_option
def create(path: str, content_file: str | None, root: str | None) -> None:
    """Create a note through the guard; duplicates resolve to the existing note."""
    cfg = _load_cfg(root)
    content = _read_content(content_file)

    async def _run() -> Document:
        service = _open(cfg)
        try:
            return await service.vault.create(path, content)
        finally:
            service.stop()

    try:
        doc = asyncio.run(_run())
    except (FileExistsError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc
    if doc.path == normalize_path(path):
        click.echo(f"created: {doc.path}")
    else:
        click.echo(f"existing: {doc.path}")


@cli.command()
@click.argument("paths", nargs=-1, required=True)
@_vault_option
def classify(paths: tuple[str, ...], root: str | None) -> None:
    """Print note/transcript for each PATH."""
    cfg = _load_cfg(root)
    service = _open(cfg)
    for p in paths:
        click.echo(f"{service.classifier.classify(p):<10} {p}")
    service.stop()


# ---------------------------------------------------------------------------
# vaultguard verify / watch
# ---------------------------------------------------------------------------


@cli.command()
@_vault_option
def verify(root: str | None) -> None:
    """Reconcile the incremental index with a full scan."""
    cfg = _load_cfg(root)
    service = _open(cfg)
    repairs = service.index.verify()
    stats = service.index.get_stats()
    click.echo(f"Indexed {stats.count} file(s) under {stats.keys} key(s); {repairs} repair(s)")
    service.stop()


@cli.command()
@_vault_option
def watch(root: str | None) -> None:
    """Follow the vault, keep the index live, and report new duplicates."""
    run_from_config(Path(root) if root else None)


if __name__ == "__main__":
    cli()
