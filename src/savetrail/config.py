"""
Project configuration: loads .savetrail.yaml and provides defaults.

Supports:
- enabled flag for the watcher
- retention (days and record cap) applied by `savetrail prune`
- watcher timing (debounce, batch window, suppression token lifetime)
- ignore patterns (augment .gitignore)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_NAMES = (".savetrail.yaml", ".savetrail.yml")


@dataclass
class ProjectConfig:
    """Project configuration from .savetrail.yaml."""
    enabled: bool = True
    retention_days: int = 15
    max_history_size: int = 1000
    debounce_delay: float = 2.0  # seconds of quiet before a save is recorded
    batch_timeout: float = 10.0  # saves closer together than this share a batch
    suppression_ttl: float = 5.0
    ignore: list[str] = field(default_factory=list)  # gitwildmatch patterns

    @classmethod
    def load(cls, project_root: Path) -> "ProjectConfig":
        """Load config from the project root, or return defaults."""
        for name in CONFIG_NAMES:
            config_path = Path(project_root) / name
            if config_path.exists():
                break
        else:
            return cls()

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Ignoring unreadable config %s: %s", config_path, e)
            return cls()

        if not isinstance(data, dict):
            logger.warning("Ignoring config %s: expected a mapping", config_path)
            return cls()
        try:
            return cls._from_dict(data)
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning("Ignoring invalid config %s: %s", config_path, e)
            return cls()

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "ProjectConfig":
        history = data.get("history", {}) or {}
        watcher = data.get("watcher", {}) or {}
        defaults = cls()
        return cls(
            enabled=bool(data.get("enabled", defaults.enabled)),
            retention_days=int(history.get("retention_days", defaults.retention_days)),
            max_history_size=int(history.get("max_history_size", defaults.max_history_size)),
            debounce_delay=float(watcher.get("debounce_delay", defaults.debounce_delay)),
            batch_timeout=float(watcher.get("batch_timeout", defaults.batch_timeout)),
            suppression_ttl=float(watcher.get("suppression_ttl", defaults.suppression_ttl)),
            ignore=list(data.get("ignore", []) or []),
        )

    def to_dict(self) -> dict[str, Any]:
        defaults = {f.name: getattr(ProjectConfig(), f.name) for f in fields(self)}

        def changed(name: str) -> bool:
            return getattr(self, name) != defaults[name]

        result: dict[str, Any] = {}
        if changed("enabled"):
            result["enabled"] = self.enabled
        history = {k: getattr(self, k) for k in ("retention_days", "max_history_size") if changed(k)}
        if history:
            result["history"] = history
        watcher = {
            k: getattr(self, k)
            for k in ("debounce_delay", "batch_timeout", "suppression_ttl")
            if changed(k)
        }
        if watcher:
            result["watcher"] = watcher
        if self.ignore:
            result["ignore"] = self.ignore
        return result
