"""Embedding service package.

Layout:
- ``encoders``: ``EmbeddingGenerator`` handle, worker loop, and model registry.
- ``api``: FastAPI route handlers and request/response models.
- ``runtime``: service-local metrics and device helpers.

Import convenience:
- from embedding_service.encoders import EmbeddingGenerator, ModelConfig
"""

__version__ = "0.1.0"
