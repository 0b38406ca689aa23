"""
Configuration for the conversation tree engine.

Loaded from YAML files or constructed programmatically.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import yaml

from chat_tree_engine.providers.base import ProviderSettings

StorageBackend = Literal["directory", "sqlite"]

# Environment variable that overrides ``install_dir``
HOME_ENV = "CHAT_TREE_HOME"

DEFAULT_INSTALL_DIR = Path.home() / ".chat-tree"

# Searched in order by :func:`find_config_file`
CONFIG_SEARCH_PATHS = [
    Path("chat-tree.yaml"),
    Path.home() / ".config" / "chat-tree" / "config.yaml",
]


def get_install_dir(default: Path | None = None) -> Path:
    """Install directory from ``CHAT_TREE_HOME``, else *default*."""
    value = os.environ.get(HOME_ENV)
    if value:
        return Path(value).expanduser()
    return default if default is not None else DEFAULT_INSTALL_DIR


def find_config_file() -> Path | None:
    for path in CONFIG_SEARCH_PATHS:
        if path.is_file():
            return path
    return None


@dataclass
class EngineConfig:
    """
    Main configuration for the engine.

    Example YAML:
        install_dir: ~/.chat-tree
        storage: directory
        default_provider: anthropic
        log_level: WARNING
        providers:
          anthropic:
            model: claude-3-5-sonnet-20241022
            max_tokens: 4000
            temperature: 0.7
          openai:
            base_url: http://localhost:11434/v1
            model: llama3
    """

    install_dir: Path = field(default_factory=get_install_dir)
    storage: StorageBackend = "directory"  # "directory" or "sqlite"
    default_provider: str = "anthropic"

    # Host -> base provider settings
    providers: dict[str, ProviderSettings] = field(default_factory=dict)

    # Logging
    log_level: str = "WARNING"
    log_file: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        """Create config from a dictionary."""
        storage = data.get("storage", "directory")
        if storage not in ("directory", "sqlite"):
            raise ValueError(f"Unknown storage backend: {storage!r}")

        providers = {}
        for host, settings_data in (data.get("providers") or {}).items():
            settings = ProviderSettings.from_dict(settings_data or {})
            settings.host = settings.host or host
            settings.name = settings.name or host
            providers[host] = settings

        install_dir = Path(data["install_dir"]).expanduser() if data.get("install_dir") else None

        return cls(
            install_dir=get_install_dir(install_dir),
            storage=storage,
            default_provider=data.get("default_provider", "anthropic"),
            providers=providers,
            log_level=data.get("log_level", "WARNING"),
            log_file=data.get("log_file"),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> EngineConfig:
        """Load config from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    @classmethod
    def from_yaml_string(cls, content: str) -> EngineConfig:
        """Load config from a YAML string."""
        data = yaml.safe_load(content)
        return cls.from_dict(data or {})

    @classmethod
    def load(cls, path: Path | None = None) -> EngineConfig:
        """Load *path*, else the first config on the search path, else defaults."""
        path = path or find_config_file()
        if path is None:
            return cls()
        return cls.from_yaml(path)

    def to_dict(self) -> dict[str, Any]:
        """Convert config to a dictionary."""
        return {
            "install_dir": str(self.install_dir),
            "storage": self.storage,
            "default_provider": self.default_provider,
            "providers": {host: s.to_dict() for host, s in self.providers.items()},
            "log_level": self.log_level,
            "log_file": self.log_file,
        }

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False)
