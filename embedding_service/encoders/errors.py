"""Exceptions raised by the embedding generator."""


class EmbeddingGeneratorError(Exception):
    """Base exception for embedding generator operations."""
    pass


class ModelNotFoundError(EmbeddingGeneratorError):
    """Requested model name is not in the registry."""

    def __init__(self, model_name: str):
        super().__init__(f"model `{model_name}` not found")
        self.model_name = model_name


class ModelError(EmbeddingGeneratorError):
    """Inference failed on a loaded model."""

    def __init__(self, detail: str):
        super().__init__(f"model inference error: `{detail}`")
        self.detail = detail


class ModelLoadingError(EmbeddingGeneratorError):
    """A configured model could not be loaded; the generator cannot serve."""

    def __init__(self, detail: str):
        super().__init__(f"model loading error: `{detail}`")
        self.detail = detail


class InternalError(EmbeddingGeneratorError):
    """Request or reply channel closed; the generator has shut down."""

    def __init__(self, detail: str):
        super().__init__(f"internal error: `{detail}`")
        self.detail = detail


class QueueFullError(EmbeddingGeneratorError):
    """Request queue is at capacity."""

    def __init__(self, capacity: int):
        super().__init__(f"request queue is full (capacity {capacity})")
        self.capacity = capacity
