"""Configuration loading for pocketsync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .types import FetchOptions


@dataclass
class RemoteConfig:
    url: str = "http://127.0.0.1:8090"
    token: str | None = None
    timeout_seconds: float = 30.0
    page_size: int = 500
    max_reconnects: int = 3
    reconnect_delay_seconds: float = 1.0


@dataclass
class CollectionConfig:
    """Sync settings for one remote collection."""

    name: str
    mutation_timeout_seconds: float = 120.0
    poll_interval_seconds: float = 0.1
    id_retention_seconds: float = 300.0  # 5 minutes
    sweep_interval_seconds: float = 60.0
    realtime: bool = True  # Host supports a realtime subscription
    initial_fetch: FetchOptions = field(default_factory=FetchOptions)


@dataclass
class Config:
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    collections: dict[str, CollectionConfig] = field(default_factory=dict)

    def collection(self, name: str) -> CollectionConfig:
        """Get a collection's config, falling back to defaults."""
        return self.collections.get(name) or CollectionConfig(name=name)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with POCKETSYNC_ prefix."""
    return os.environ.get(f"POCKETSYNC_{key}", default)


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if url := _get_env("URL"):
        config.remote.url = url
    if token := _get_env("TOKEN"):
        config.remote.token = token
    if timeout := _get_env("TIMEOUT"):
        config.remote.timeout_seconds = float(timeout)

    # Collection-wide overrides
    if mutation_timeout := _get_env("MUTATION_TIMEOUT"):
        for collection in config.collections.values():
            collection.mutation_timeout_seconds = float(mutation_timeout)
    if realtime := _get_env("REALTIME"):
        for collection in config.collections.values():
            collection.realtime = realtime.lower() in ("true", "1", "yes")

    return config


def _parse_fetch_options(data: dict) -> FetchOptions:
    """Parse initial fetch options."""
    return FetchOptions(
        sort=data.get("sort"),
        filter=data.get("filter"),
        expand=data.get("expand"),
    )


def _parse_collection(name: str, data: dict) -> CollectionConfig:
    """Parse one collection's configuration."""
    defaults = CollectionConfig(name=name)
    initial_fetch = FetchOptions()
    if "initial_fetch" in data:
        initial_fetch = _parse_fetch_options(data["initial_fetch"] or {})

    return CollectionConfig(
        name=name,
        mutation_timeout_seconds=data.get(
            "mutation_timeout_seconds", defaults.mutation_timeout_seconds
        ),
        poll_interval_seconds=data.get(
            "poll_interval_seconds", defaults.poll_interval_seconds
        ),
        id_retention_seconds=data.get(
            "id_retention_seconds", defaults.id_retention_seconds
        ),
        sweep_interval_seconds=data.get(
            "sweep_interval_seconds", defaults.sweep_interval_seconds
        ),
        realtime=data.get("realtime", defaults.realtime),
        initial_fetch=initial_fetch,
    )


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse remote config
            if "remote" in data:
                remote_data = data["remote"]
                config.remote = RemoteConfig(
                    url=remote_data.get("url", config.remote.url),
                    token=remote_data.get("token"),
                    timeout_seconds=remote_data.get(
                        "timeout_seconds", config.remote.timeout_seconds
                    ),
                    page_size=remote_data.get("page_size", config.remote.page_size),
                    max_reconnects=remote_data.get(
                        "max_reconnects", config.remote.max_reconnects
                    ),
                    reconnect_delay_seconds=remote_data.get(
                        "reconnect_delay_seconds", config.remote.reconnect_delay_seconds
                    ),
                )

            # Parse collections, keyed by collection name
            for name, collection_data in (data.get("collections") or {}).items():
                config.collections[name] = _parse_collection(name, collection_data or {})

    return _apply_env_overrides(config)
