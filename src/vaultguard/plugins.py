"""Is the upstream sync plugin installed and enabled in this vault?

Installed: ``<config_dir>/plugins/<id>/manifest.json`` exists.
Enabled:   ``<id>`` is listed in ``<config_dir>/community-plugins.json``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from vaultguard.vault import Vault

logger = logging.getLogger("vaultguard.plugins")


@dataclass
class SyncPluginInfo:
    installed: bool = False
    enabled: bool = False
    manifest: dict[str, Any] = field(default_factory=dict)

    @property
    def available(self) -> bool:
        return self.installed and self.enabled

    @property
    def status(self) -> str:
        if self.available:
            return "available"
        if self.installed:
            return "installed but disabled"
        return "not installed"


def _read_json(vault: Vault, path: str) -> Any:
    if not vault.adapter.exists(path):
        return None
    try:
        return json.loads(vault.adapter.read(path))
    except (OSError, ValueError) as exc:
        logger.warning("cannot read %s: %s", path, exc)
        return None


def detect_sync_plugin(vault: Vault, plugin_id: str = "granola-sync") -> SyncPluginInfo:
    manifest = _read_json(vault, f"{vault.config_dir}/plugins/{plugin_id}/manifest.json")
    enabled_ids = _read_json(vault, f"{vault.config_dir}/community-plugins.json")
    return SyncPluginInfo(
        installed=isinstance(manifest, dict),
        enabled=isinstance(enabled_ids, list) and plugin_id in enabled_ids,
        manifest=manifest if isinstance(manifest, dict) else {},
    )
