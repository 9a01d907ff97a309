"""Configuration management for the embedding platform services.

This module centralizes environment-driven configuration. It builds on
``pydantic_settings.BaseSettings`` so configuration can be provided via
environment variables, ``.env`` files, or defaults.

Highlights
- Strongly-typed settings with sensible defaults
- One place to discover commonly used environment variables
- Small service-specific subclasses to keep concerns clear

Usage
- Inject the appropriate config in your service entrypoint:
  ``config = EmbeddingConfig()``
- Or select dynamically: ``config = get_config("embedding")``
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class for all services.

    Field names map to environment variables case-insensitively, so
    ``ml_log_level`` is read from ``ML_LOG_LEVEL``.

    Notes
    - Add new shared settings here so downstream services inherit them.
    - Prefer a typed field over reading ``os.environ`` directly.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    ml_env: str = Field(default="local")

    # Logging
    ml_log_level: str = Field(default="INFO")
    ml_log_format: str = Field(default="json")

    # Performance
    ml_max_batch_size: int = Field(default=256, gt=0)


class EmbeddingConfig(BaseConfig):
    """Configuration for the embedding service.

    ``ml_embedding_models`` is a comma-separated list of model kinds
    (e.g. ``all-minilm-l12-v2,all-minilm-l6-v2``), all of which are loaded on
    ``ml_embedding_device`` when the service starts.
    """

    ml_embedding_port: int = Field(default=9006)
    ml_embedding_models: str = Field(default="all-minilm-l12-v2")
    ml_embedding_default_model: Optional[str] = Field(default=None)
    ml_embedding_device: str = Field(default="cpu")
    ml_embedding_queue_capacity: int = Field(default=100, gt=0)
    ml_embedding_ready_timeout: float = Field(default=600.0, gt=0)

    def model_names(self) -> List[str]:
        """Split ``ml_embedding_models`` into trimmed, non-empty names."""
        return [name.strip() for name in self.ml_embedding_models.split(",") if name.strip()]

    def default_model_name(self) -> str:
        """Model used when a request does not name one.

        Falls back to the first configured model.
        """
        if self.ml_embedding_default_model:
            return self.ml_embedding_default_model
        names = self.model_names()
        return names[0] if names else "all-minilm-l12-v2"


def get_config(service_name: str) -> BaseConfig:
    """Get configuration for a specific service.

    Parameters
    - service_name: Literal name, currently only ``embedding``.

    Returns
    - A concrete ``BaseConfig`` subclass pre-wired to read the right env vars.
    """
    config_map = {
        "embedding": EmbeddingConfig,
    }

    # Default to ``BaseConfig`` to avoid surprising crashes for unknown names.
    config_class = config_map.get(service_name, BaseConfig)
    return config_class()
