"""In-memory registry of loaded embedding models."""

from types import MappingProxyType
from typing import Callable, Dict, Iterator, List, Optional, Sequence

import structlog

from .errors import EmbeddingGeneratorError, ModelLoadingError
from .loaders import ModelLoader
from .models import DeviceKind, LoadedModel, ModelConfig, ModelInfo

logger = structlog.get_logger("embedding_service.registry")


class ModelRegistry:
    """Read-only mapping from model name to ``LoadedModel``.

    Built once by ``build`` and handed to the worker loop, which is its only
    user. Names are case-sensitive.
    """

    def __init__(self, models: Dict[str, LoadedModel]):
        self._models = MappingProxyType(dict(models))

    @classmethod
    def build(
        cls,
        models_to_load: Sequence[ModelConfig],
        loader: ModelLoader,
        device_resolver: Callable[[DeviceKind], str],
    ) -> "ModelRegistry":
        """Load every configured model, failing fast on the first problem.

        Raises ``ModelLoadingError`` for an empty configuration, duplicate
        model names, an unsupported kind, or any loader failure.
        """
        if not models_to_load:
            raise ModelLoadingError("no models configured")

        seen = set()
        for config in models_to_load:
            if config.model_name in seen:
                raise ModelLoadingError(f"model `{config.model_name}` configured more than once")
            seen.add(config.model_name)

        models: Dict[str, LoadedModel] = {}
        for config in models_to_load:
            name = config.model_name
            try:
                device = device_resolver(config.device_kind)
                encoder = loader.load(config.model_kind, device)
            except EmbeddingGeneratorError:
                raise
            except Exception as e:
                logger.error("Failed to load model", model_name=name, error=str(e))
                raise ModelLoadingError(f"{name}: {e}") from e

            models[name] = LoadedModel(
                name=name,
                kind=config.model_kind,
                device=device,
                encoder=encoder,
                dimension=getattr(encoder, "dimension", None),
            )
            logger.info(
                "Loaded embedding model",
                model_name=name,
                device=device,
                dimension=models[name].dimension
            )

        return cls(models)

    def get(self, model_name: str) -> Optional[LoadedModel]:
        return self._models.get(model_name)

    def names(self) -> List[str]:
        return list(self._models)

    def infos(self) -> List[ModelInfo]:
        return [model.info() for model in self._models.values()]

    def __contains__(self, model_name: object) -> bool:
        return model_name in self._models

    def __iter__(self) -> Iterator[str]:
        return iter(self._models)

    def __len__(self) -> int:
        return len(self._models)
