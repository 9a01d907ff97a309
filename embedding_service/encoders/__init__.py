"""Embedding generator: model registry, worker loop and caller handle.

Exports the ``EmbeddingGenerator`` handle, its configuration types and the
error taxonomy. Heavy ML imports stay in ``loaders`` and ``runtime.devices``.
"""

from .errors import (
    EmbeddingGeneratorError,
    InternalError,
    ModelError,
    ModelLoadingError,
    ModelNotFoundError,
    QueueFullError,
)
from .generator import EmbeddingGenerator
from .models import DeviceKind, EmbeddingModelKind, ModelConfig, ModelInfo

__all__ = [
    "DeviceKind",
    "EmbeddingGenerator",
    "EmbeddingGeneratorError",
    "EmbeddingModelKind",
    "InternalError",
    "ModelConfig",
    "ModelError",
    "ModelInfo",
    "ModelLoadingError",
    "ModelNotFoundError",
    "QueueFullError",
]
