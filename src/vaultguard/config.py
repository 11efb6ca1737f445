"""GuardConfig: vault-local config for the duplicate guard.

Default layout (all relative to the vault root):

    vaultguard.toml       # guard config
    .obsidian/
        plugins/
            granola-sync/
                data.json # upstream sync plugin settings (read-only to us)

vaultguard.toml example:

    [guard]
    duplicate_prevention = true
    debug = false
    key_field = "granola_id"

    [timing]
    index_delay = 0.1       # wait after create/rename before indexing
    check_delay = 0.05      # wait before asking the index on create
    config_ttl = 5.0        # upstream config cache lifetime
    parse_delay = 0.0       # metadata recomputation delay after a write

    [upstream]
    plugin_id = "granola-sync"
    config_dir = ".obsidian"

    [watcher]
    poll_interval = 1.0
    notice_timeout = 10.0
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

_CONFIG_FILENAME = "vaultguard.toml"
_DEFAULT_KEY_FIELD = "granola_id"
_DEFAULT_PLUGIN_ID = "granola-sync"
_DEFAULT_CONFIG_DIR = ".obsidian"


@dataclass
class GuardSettings:
    """Settings the core re-reads on every (re)initialization."""

    duplicate_prevention_enabled: bool = False
    debug_mode: bool = False
    key_field: str = _DEFAULT_KEY_FIELD


@dataclass
class TimingConfig:
    index_delay: float = 0.1
    check_delay: float = 0.05
    config_ttl: float = 5.0
    parse_delay: float = 0.0


@dataclass
class UpstreamConfig:
    plugin_id: str = _DEFAULT_PLUGIN_ID
    config_dir: str = _DEFAULT_CONFIG_DIR


@dataclass
class WatcherConfig:
    poll_interval: float = 1.0
    notice_timeout: float = 10.0


@dataclass
class GuardConfig:
    """Resolved configuration for one vault."""

    root: Path                      # vault root (directory holding vaultguard.toml)
    guard: GuardSettings = field(default_factory=GuardSettings)
    timing: TimingConfig = field(default_factory=TimingConfig)
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)

    @property
    def config_path(self) -> Path:
        return self.root / _CONFIG_FILENAME

    @property
    def upstream_config_path(self) -> Path:
        return self.root / self.upstream.config_dir / "plugins" / self.upstream.plugin_id / "data.json"


def load_config(root: Path | str | None = None) -> GuardConfig:
    """Load vaultguard.toml from root (or search upward from cwd if root is None)."""
    root_path = _find_root(Path(root) if root else Path.cwd())
    config_path = root_path / _CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.exists():
        with config_path.open("rb") as f:
            raw = tomllib.load(f)

    guard_section = raw.get("guard", {})
    timing_section = raw.get("timing", {})
    upstream_section = raw.get("upstream", {})
    watcher_section = raw.get("watcher", {})

    return GuardConfig(
        root=root_path,
        guard=GuardSettings(
            duplicate_prevention_enabled=bool(guard_section.get("duplicate_prevention", False)),
            debug_mode=bool(guard_section.get("debug", False)),
            key_field=str(guard_section.get("key_field", _DEFAULT_KEY_FIELD)),
        ),
        timing=TimingConfig(
            index_delay=float(timing_section.get("index_delay", 0.1)),
            check_delay=float(timing_section.get("check_delay", 0.05)),
            config_ttl=float(timing_section.get("config_ttl", 5.0)),
            parse_delay=float(timing_section.get("parse_delay", 0.0)),
        ),
        upstream=UpstreamConfig(
            plugin_id=str(upstream_section.get("plugin_id", _DEFAULT_PLUGIN_ID)),
            config_dir=str(upstream_section.get("config_dir", _DEFAULT_CONFIG_DIR)),
        ),
        watcher=WatcherConfig(
            poll_interval=float(watcher_section.get("poll_interval", 1.0)),
            notice_timeout=float(watcher_section.get("notice_timeout", 10.0)),
        ),
    )


def _find_root(start: Path) -> Path:
    """Walk upward from start looking for vaultguard.toml."""
    for directory in (start, *start.parents):
        if (directory / _CONFIG_FILENAME).exists():
            return directory
    return start


def init_config(root: Path, *, enabled: bool = True) -> Path:
    """Write a default vaultguard.toml at root. Raises if already exists."""
    config_path = root / _CONFIG_FILENAME
    if config_path.exists():
        msg = f"vaultguard.toml already exists at {config_path}"
        raise FileExistsError(msg)

    content = f"""\
[guard]
duplicate_prevention = {"true" if enabled else "false"}
debug = false
# key_field = "granola_id"   # frontmatter field holding the sync key

# [timing]
# index_delay = 0.1    # seconds to wait after create/rename before indexing
# check_delay = 0.05   # seconds to wait before checking the index on create
# config_ttl = 5.0     # upstream config cache lifetime
# parse_delay = 0.0

# [upstream]
# plugin_id = "granola-sync"
# config_dir = ".obsidian"

# [watcher]
# poll_interval = 1.0    # polling fallback interval (no inotify)
# notice_timeout = 10.0
"""
    config_path.write_text(content)
    return config_path
