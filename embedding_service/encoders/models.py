"""Model configuration and metadata types for the embedding generator."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, List, Optional


class EmbeddingModelKind(str, Enum):
    """Embedding architectures that can be requested in configuration.

    The value doubles as the canonical model name requests refer to.
    """
    ALL_MINILM_L12_V2 = "all-minilm-l12-v2"
    ALL_MINILM_L6_V2 = "all-minilm-l6-v2"
    # Hosted API model; there is no local loader for it.
    OPENAI_ADA_02 = "openai-ada-02"


class DeviceKind(str, Enum):
    """Compute target label for a loaded model."""
    CPU = "cpu"
    GPU = "gpu"
    AUTO = "auto"


@dataclass(frozen=True)
class ModelConfig:
    """One model to load at startup."""
    model_kind: EmbeddingModelKind
    device_kind: DeviceKind = DeviceKind.CPU

    @property
    def model_name(self) -> str:
        """Name the loaded model is registered under."""
        return self.model_kind.value


@dataclass(frozen=True)
class ModelInfo:
    """Read-only description of a loaded model.

    Published by the worker after loading; holds no reference to the model.
    """
    name: str
    kind: EmbeddingModelKind
    device: str
    dimension: Optional[int]


@dataclass
class LoadedModel:
    """A model instance plus the metadata captured while loading it.

    Only the worker thread may touch ``encoder``.
    """
    name: str
    kind: EmbeddingModelKind
    device: str
    encoder: Any
    dimension: Optional[int] = None
    loaded_at: float = field(default_factory=time.time)

    def info(self) -> ModelInfo:
        return ModelInfo(name=self.name, kind=self.kind, device=self.device, dimension=self.dimension)


def parse_model_configs(model_names: Iterable[str], device: str = "cpu") -> List[ModelConfig]:
    """Turn configured kind names into ``ModelConfig`` values.

    Raises ``ValueError`` for an unknown kind or device so a typo in the
    environment fails at startup rather than on the first request.
    """
    try:
        device_kind = DeviceKind(device.strip().lower())
    except ValueError:
        known = ", ".join(kind.value for kind in DeviceKind)
        raise ValueError(f"Unknown device kind {device!r} (known: {known})")

    configs = []
    for name in model_names:
        try:
            kind = EmbeddingModelKind(name)
        except ValueError:
            known = ", ".join(kind.value for kind in EmbeddingModelKind)
            raise ValueError(f"Unknown embedding model kind {name!r} (known: {known})")
        configs.append(ModelConfig(model_kind=kind, device_kind=device_kind))
    return configs
