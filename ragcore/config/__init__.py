"""Configuration: pydantic-settings ``Settings`` plus the YAML ``load_config`` merger."""

from ragcore.config.loader import load_config
from ragcore.config.settings import Settings

__all__ = ["Settings", "load_config"]
