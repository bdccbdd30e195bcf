"""Configuration management for the Tool Assistant.

Supports YAML configuration files and environment variable overrides.
Model configurations are addressed by named pointers ("main", "task") so
the task decomposition tool can run on a cheaper model than the primary
conversation.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.logging import get_logger
from shared.models import ToolDefinition

logger = get_logger(__name__)


class ModelConfig(BaseModel):
    """Connection details for one model."""
    model_config = ConfigDict(protected_namespaces=())

    provider: str = Field(default="openai", description="LLM provider: openai, anthropic")
    model_name: str = Field(default="gpt-3.5-turbo", description="Model name")
    api_key: Optional[str] = Field(default=None, description="API key")
    base_url: str = Field(default="https://api.openai.com/v1", description="API base URL")
    max_tokens: int = Field(default=4000, gt=0)

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key and self.api_key.strip())


class GlobalOptions(BaseModel):
    """Generation options passed to every gateway call."""
    temperature: float = Field(default=0.7, ge=0, le=2)
    stream: bool = Field(default=False, description="Responses are always delivered whole")
    safe_mode: bool = Field(default=False)
    tools: list[ToolDefinition] = Field(default_factory=list, exclude=True)

    def with_tools(self, tools: list[ToolDefinition]) -> "GlobalOptions":
        """Return a copy offering the given tool definitions."""
        return self.model_copy(update={"tools": list(tools)})


def _default_models() -> dict[str, ModelConfig]:
    return {
        "main": ModelConfig(max_tokens=4000),
        "task": ModelConfig(max_tokens=2000),
    }


class Settings(BaseSettings):
    """Main application settings."""
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Models
    models: dict[str, ModelConfig] = Field(default_factory=_default_models)
    current_model_pointer: str = Field(default="main")
    task_model_pointer: str = Field(default="task")
    global_options: GlobalOptions = Field(default_factory=GlobalOptions)

    # Orchestration
    max_tool_iterations: int = Field(default=10, gt=0)
    strict_tool_arguments: bool = Field(default=False)
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    tool_timeout_seconds: float = Field(default=8.0, gt=0)

    # Search backend
    search_api_key: Optional[str] = Field(default=None)
    search_endpoint: str = Field(default="https://google.serper.dev/search")

    # HTTP surface
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    model_config = SettingsConfigDict(
        env_prefix="ASSISTANT_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore"
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        data = load_yaml_config(path)
        return cls(**data)

    def model_for(self, pointer: str) -> ModelConfig:
        """
        Resolve a model pointer to its configuration.

        Raises:
            ValueError: If no model is configured under the pointer
        """
        config = self.models.get(pointer)
        if config is None:
            raise ValueError(
                f"Unknown model pointer: {pointer}. "
                f"Available: {sorted(self.models)}"
            )
        return config

    @property
    def current_model(self) -> ModelConfig:
        return self.model_for(self.current_model_pointer)


def load_yaml_config(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file."""
    path = Path(path)
    if not path.exists():
        return {}

    with open(path) as f:
        return yaml.safe_load(f) or {}


def save_yaml_config(data: dict[str, Any], path: str | Path) -> None:
    """Save configuration to a YAML file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)


class ConfigStore:
    """
    Persisted key-value configuration.

    Holds one Settings instance and writes the persistable part of it
    (model configs per pointer, current pointer, global options) back to
    YAML after every change. Callers that keep a reference to
    ``store.settings`` observe changes in place.
    """

    PERSISTED_FIELDS = {"models", "current_model_pointer", "task_model_pointer", "global_options"}

    def __init__(self, path: str | Path, settings: Optional[Settings] = None) -> None:
        self.path = Path(path)
        self.settings = settings or Settings.from_yaml(self.path)

    def load(self) -> Settings:
        """Reload persisted values into the current settings object."""
        data = load_yaml_config(self.path)
        if data:
            loaded = Settings(**data)
            for field_name in self.PERSISTED_FIELDS:
                setattr(self.settings, field_name, getattr(loaded, field_name))
        return self.settings

    def save(self) -> None:
        data = load_yaml_config(self.path)
        data.update(self.settings.model_dump(mode="json", include=self.PERSISTED_FIELDS))
        save_yaml_config(data, self.path)
        logger.debug("Configuration saved", path=str(self.path))

    def save_model_config(self, pointer: str, **updates: Any) -> ModelConfig:
        """Merge updates into the model config stored under a pointer."""
        current = self.settings.models.get(pointer, ModelConfig())
        updated = ModelConfig(**{**current.model_dump(), **updates})
        self.settings.models[pointer] = updated
        self.save()
        logger.info(
            "Model config updated",
            pointer=pointer,
            provider=updated.provider,
            model=updated.model_name
        )
        return updated

    def switch_model(self, pointer: str) -> ModelConfig:
        """Select the model pointer used by the main conversation."""
        config = self.settings.model_for(pointer)
        self.settings.current_model_pointer = pointer
        self.save()
        logger.info("Switched model pointer", pointer=pointer)
        return config

    def update_global_options(self, **updates: Any) -> GlobalOptions:
        merged = {**self.settings.global_options.model_dump(), **updates}
        self.settings.global_options = GlobalOptions(**merged)
        self.save()
        return self.settings.global_options

    def current_model(self) -> ModelConfig:
        return self.settings.current_model

    def available_models(self) -> list[str]:
        return list(self.settings.models)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings.from_yaml(get_config_path())


def get_config_path() -> str:
    return os.environ.get("ASSISTANT_CONFIG_PATH", "config/settings.yaml")
