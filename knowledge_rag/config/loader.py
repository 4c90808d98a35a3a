"""YAML configuration loader with environment variable overrides.

Configuration is layered (later layers win):

  1. ``config/config.yaml`` -- static defaults checked into the repo
  2. ``.env`` file          -- local overrides, not committed
  3. environment variables  -- set at deploy time

``load_config`` reads the YAML first and deep-merges the values resolved by
:class:`Settings` on top.  ``settings_from_config`` goes the other way and
builds a :class:`Settings` whose unset fields fall back to the YAML.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from knowledge_rag.config.settings import Settings
from knowledge_rag.utils.errors import ConfigurationError

# YAML section/key -> Settings field, for keys that the YAML may define.
_YAML_TO_SETTINGS: dict[tuple[str, str], str] = {
    ("storage", "db_path"): "knowledge_db_path",
    ("storage", "chromadb_persist_dir"): "chromadb_persist_dir",
    ("storage", "files_dir"): "knowledge_files_dir",
    ("chunking", "chunk_size"): "chunk_size",
    ("chunking", "chunk_overlap"): "chunk_overlap",
    ("chunking", "min_chunk_size"): "min_chunk_size",
    ("embedding", "batch_size"): "embedding_batch_size",
    ("embedding", "max_retries"): "embedding_max_retries",
    ("embedding", "retry_delay"): "embedding_retry_delay",
    ("embedding", "rate_limit_delay"): "embedding_rate_limit_delay",
    ("embedding", "model"): "openai_embedding_model",
    ("search", "top_k"): "search_top_k",
    ("search", "min_score"): "search_min_score",
    ("web", "timeout"): "web_fetch_timeout",
    ("logging", "level"): "log_level",
}


def _read_yaml(path: str) -> dict[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        return {}
    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Top level of {config_path} must be a mapping")
    return data


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Environment variables (via Settings) override YAML values where keys overlap.

    Args:
        path: Path to the YAML configuration file.
        settings: Pre-built settings; a fresh ``Settings()`` when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    yaml_config = _read_yaml(path)
    settings = settings or Settings()

    env_overrides: dict[str, Any] = {}
    for (section, key), field in _YAML_TO_SETTINGS.items():
        if field in settings.model_fields_set:
            env_overrides.setdefault(section, {})[key] = getattr(settings, field)
    env_overrides["app"] = {
        "host": settings.app_host,
        "port": settings.app_port,
        "env": settings.app_env,
    }
    env_overrides["providers"] = {
        "available_embedding": settings.get_available_embedding_providers(),
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def settings_from_config(path: str = "config/config.yaml") -> Settings:
    """Build Settings where the YAML fills every field the environment left unset."""
    yaml_config = _read_yaml(path)
    base = Settings()
    values: dict[str, Any] = {}
    for (section, key), field in _YAML_TO_SETTINGS.items():
        section_values = yaml_config.get(section) or {}
        if key in section_values and field not in base.model_fields_set:
            values[field] = section_values[key]
    if not values:
        return base
    return Settings(**values)


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
