"""Model loaders for the embedding generator.

A loader turns an ``EmbeddingModelKind`` and a torch device string into an
object exposing ``encode(list[str])``. The generator treats both operations
as opaque and potentially slow; it calls them from its worker thread only.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import numpy as np
import structlog
from sentence_transformers import SentenceTransformer

from .errors import ModelLoadingError
from .models import EmbeddingModelKind

logger = structlog.get_logger("embedding_service.loaders")

# Hugging Face model ids for kinds that can be loaded locally.
SENTENCE_TRANSFORMER_MODELS: Dict[EmbeddingModelKind, str] = {
    EmbeddingModelKind.ALL_MINILM_L12_V2: "sentence-transformers/all-MiniLM-L12-v2",
    EmbeddingModelKind.ALL_MINILM_L6_V2: "sentence-transformers/all-MiniLM-L6-v2",
}


class ModelLoader(ABC):
    """Abstract loader for embedding models."""

    @abstractmethod
    def load(self, kind: EmbeddingModelKind, device: str) -> Any:
        """Load the model for ``kind`` on ``device``.

        The returned object must provide ``encode(texts)`` returning one
        vector per text. It may expose ``dimension``.
        """
        pass


class SentenceTransformerEncoder:
    """Adapter giving a ``SentenceTransformer`` the generator's encode shape."""

    def __init__(self, model: SentenceTransformer, batch_size: int):
        self.model = model
        self.batch_size = batch_size

    @property
    def dimension(self) -> Optional[int]:
        return self.model.get_sentence_embedding_dimension()

    def encode(self, texts: List[str]) -> np.ndarray:
        return self.model.encode(
            texts,
            batch_size=self.batch_size,
            convert_to_numpy=True,
            show_progress_bar=False,
        )


class SentenceTransformerLoader(ModelLoader):
    """Loads ``sentence-transformers`` models by kind.

    Parameters
    - batch_size: Forwarded to ``SentenceTransformer.encode``
    - cache_folder: Optional model cache directory
    """

    def __init__(self, batch_size: int = 256, cache_folder: Optional[str] = None):
        self.batch_size = batch_size
        self.cache_folder = cache_folder

    def load(self, kind: EmbeddingModelKind, device: str) -> SentenceTransformerEncoder:
        model_id = SENTENCE_TRANSFORMER_MODELS.get(kind)
        if model_id is None:
            raise ModelLoadingError(f"unsupported model kind `{kind.value}`")

        logger.info("Loading sentence transformer", model_id=model_id, device=device)
        model = SentenceTransformer(model_id, device=device, cache_folder=self.cache_folder)
        return SentenceTransformerEncoder(model, self.batch_size)
