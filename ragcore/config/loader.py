"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY ───────────────────────────────────────────
#
# Configuration is loaded in layers (later layers override earlier):
#
#   1. config/config.yaml  : Static defaults checked into the repo
#   2. .env file           : Local developer overrides (not committed)
#   3. Environment vars    : Set at deploy time
#
# load_config() reads the YAML file first, then deep-merges the
# Settings-derived values on top.
# ──────────────────────────────────────────────────────────────────────
"""

from pathlib import Path

import yaml

from ragcore.config.settings import Settings


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Environment variables (via Settings) override YAML values where keys overlap.

    Args:
        path: Path to the YAML configuration file.
        settings: Pre-built settings; a fresh ``Settings()`` is read when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    config_path = Path(path)
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    settings = settings or Settings()
    env_overrides = {
        "app": {
            "host": settings.app_host,
            "port": settings.app_port,
            "env": settings.app_env,
        },
        "storage": {
            "database_path": settings.database_path,
        },
        "embedding": {
            "provider": settings.embedding_provider,
            "dimension": settings.embedding_dimension,
            "concurrency": settings.embedding_concurrency,
            "available_providers": settings.get_available_embedding_providers(),
        },
        "chunking": {
            "chunk_size": settings.chunk_size,
            "overlap": settings.chunk_overlap,
            "preserve_paragraphs": settings.chunk_preserve_paragraphs,
            "strategy": settings.chunk_strategy,
        },
        "retry": {
            "max_attempts": settings.retry_max_attempts,
            "backoff_seconds": settings.retry_backoff_seconds,
            "backoff_max_seconds": settings.retry_backoff_max_seconds,
        },
        "search": {
            "default_limit": settings.search_default_limit,
            "default_threshold": settings.search_default_threshold,
            "keyword_bonus_cap": settings.keyword_bonus_cap,
            "recency_bonus_cap": settings.recency_bonus_cap,
            "recency_half_life_days": settings.recency_half_life_days,
        },
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
