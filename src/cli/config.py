"""Configuration loading and management."""

import os
from pathlib import Path
from typing import Optional

import yaml

from .config_models import EngineConfig

# env var -> (section, field)
ENV_OVERRIDES = {
    "MAX_CONTEXT_MESSAGES": ("context", "max_context_messages"),
    "MAX_RELEVANT_MESSAGES": ("context", "max_relevant_messages"),
    "MAX_CROSS_CHAT_MESSAGES": ("context", "max_cross_chat_messages"),
    "MAX_TOPIC_SPECIFIC_MESSAGES": ("context", "max_topic_specific_messages"),
    "FACT_CONFIDENCE_THRESHOLD": ("context", "fact_confidence_threshold"),
    "THREAD_TOP_K": ("context", "thread_top_k"),
    "BOT_ID": ("agent", "id"),
    "BOT_NAME": ("agent", "name"),
}


def find_config() -> Optional[Path]:
    """Find config file in standard locations."""
    locations = [
        Path.cwd() / "context.yaml",
        Path.home() / ".chatctx" / "config.yaml",
    ]
    for loc in locations:
        if loc.exists():
            return loc
    return None


def load_config(config_path: Optional[Path] = None) -> dict:
    """Load configuration as a plain dict. Use load_config_model() for typed access."""
    return load_config_model(config_path).to_dict()


def load_config_model(config_path: Optional[Path] = None, env: Optional[dict] = None) -> EngineConfig:
    """Load configuration as Pydantic model with validation.

    Values from the environment override the file.
    """
    base_config = {}

    path = config_path or find_config()
    if path and path.exists():
        try:
            with open(path) as f:
                base_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file: {e}")
    if not isinstance(base_config, dict):
        raise ValueError(f"Config file must contain a mapping, got {type(base_config).__name__}")

    merged = _deep_merge(base_config, env_overrides(os.environ if env is None else env))
    try:
        return EngineConfig.from_dict(merged)
    except Exception as e:
        raise ValueError(f"Config validation failed: {e}")


def env_overrides(env) -> dict:
    """Nested config dict built from the recognised environment variables."""
    out: dict = {}
    for var, (section, field) in ENV_OVERRIDES.items():
        value = env.get(var)
        if value is None or value == "":
            continue
        out.setdefault(section, {})[field] = value
    return out


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result
