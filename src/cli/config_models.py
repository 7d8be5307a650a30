"""Pydantic configuration models for the context engine."""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from context.settings import ContextSettings


def _expand_env(value: Optional[str]) -> Optional[str]:
    """Resolve a ``${VAR}`` placeholder; unset variables become None."""
    if value and value.startswith("${") and value.endswith("}"):
        return os.getenv(value[2:-1]) or None
    return value


class AgentConfig(BaseModel):
    """Identity of the bot inside the chats it reads."""

    id: Optional[str] = "${BOT_ID}"
    name: str = "Qi"

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("agent name cannot be empty")
        return v


class PathsConfig(BaseModel):
    """File paths configuration."""

    conversations_db: Path = Path("~/.chatctx/conversations.db")
    facts_db: Path = Path("~/.chatctx/facts.db")

    @model_validator(mode="after")
    def expand_paths(self):
        """Expand ~ in all paths."""
        self.conversations_db = self.conversations_db.expanduser()
        self.facts_db = self.facts_db.expanduser()
        return self


VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    json_mode: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v_upper = v.upper()
        if v_upper not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v}. Must be one of {VALID_LOG_LEVELS}")
        return v_upper


class EngineConfig(BaseModel):
    """Main configuration model."""

    agent: AgentConfig = Field(default_factory=AgentConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    context: ContextSettings = Field(default_factory=ContextSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def expand_env_vars(self):
        """Expand ${VAR} patterns in the agent identity."""
        self.agent.id = _expand_env(self.agent.id)
        return self

    @classmethod
    def from_dict(cls, data: dict) -> "EngineConfig":
        """Create config from dict, accepting string paths."""
        if "paths" in data:
            for key in ["conversations_db", "facts_db"]:
                if key in data["paths"] and isinstance(data["paths"][key], str):
                    data["paths"][key] = Path(data["paths"][key])
        return cls.model_validate(data)

    def to_dict(self) -> dict:
        return self.model_dump(mode="python")
