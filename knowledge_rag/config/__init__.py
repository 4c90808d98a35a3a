"""Configuration module: Settings and the YAML loader.

Settings are built explicitly by the entry points (``main`` and the CLI);
nothing is read from the environment at import time.
"""

from knowledge_rag.config.loader import load_config, settings_from_config
from knowledge_rag.config.settings import Settings

__all__ = ["Settings", "load_config", "settings_from_config"]
