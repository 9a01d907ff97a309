"""API routes for embedding service."""

import time
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
import structlog

from libs.common.config import EmbeddingConfig

from ..encoders import (
    EmbeddingGenerator,
    EmbeddingGeneratorError,
    InternalError,
    ModelError,
    ModelNotFoundError,
    QueueFullError,
)

logger = structlog.get_logger("embedding_service.api")

router = APIRouter()

# Checked in order; first matching class wins.
ERROR_STATUS_CODES = (
    (ModelNotFoundError, 404),
    (ModelError, 422),
    (QueueFullError, 429),
    (InternalError, 503),
)


class EmbedRequest(BaseModel):
    """Request model for embedding endpoint."""
    texts: List[str] = Field(..., description="Texts to embed, in order")
    model: Optional[str] = Field(None, description="Model name; defaults to the service default")


class EmbedResponse(BaseModel):
    """Response model for embedding endpoint."""
    model: str = Field(..., description="Model used")
    vectors: List[List[float]] = Field(..., description="One embedding per input text")
    count: int = Field(..., description="Number of embeddings generated")
    dimension: Optional[int] = Field(None, description="Embedding dimension")
    latency_ms: float = Field(..., description="Processing latency in milliseconds")


class ModelInfoResponse(BaseModel):
    """Loaded model description."""
    name: str = Field(..., description="Model name")
    kind: str = Field(..., description="Model kind")
    device: str = Field(..., description="Device the model runs on")
    dimension: Optional[int] = Field(None, description="Embedding dimension")


def status_code_for(error: EmbeddingGeneratorError) -> int:
    """HTTP status for a generator error."""
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_class):
            return status_code
    return 500


def get_generator(request: Request) -> EmbeddingGenerator:
    """Get embedding generator from application state."""
    return request.app.state.generator


def get_service_config(request: Request) -> EmbeddingConfig:
    """Get service configuration from application state."""
    return request.app.state.config


@router.post("/embed", response_model=EmbedResponse)
async def embed(
    request: EmbedRequest,
    generator: EmbeddingGenerator = Depends(get_generator),
    config: EmbeddingConfig = Depends(get_service_config)
):
    """Generate embeddings for input texts."""
    start_time = time.time()
    model_name = request.model or config.default_model_name()

    try:
        vectors = await generator.generate_embeddings(request.texts, model_name)
    except EmbeddingGeneratorError as e:
        status_code = status_code_for(e)
        log = logger.warning if status_code < 500 else logger.error
        log(
            "Embedding generation failed",
            model_name=model_name,
            count=len(request.texts),
            status_code=status_code,
            error=str(e)
        )
        raise HTTPException(status_code=status_code, detail=str(e))

    latency_ms = (time.time() - start_time) * 1000
    info = generator.get_model_info(model_name)

    logger.info(
        "Embeddings generated",
        model_name=model_name,
        count=len(vectors),
        latency_ms=latency_ms
    )

    return EmbedResponse(
        model=model_name,
        vectors=vectors,
        count=len(vectors),
        dimension=info.dimension if info else None,
        latency_ms=latency_ms
    )


@router.get("/models", response_model=List[ModelInfoResponse])
async def list_models(generator: EmbeddingGenerator = Depends(get_generator)):
    """List loaded embedding models."""
    return [
        ModelInfoResponse(name=info.name, kind=info.kind.value, device=info.device, dimension=info.dimension)
        for info in generator.models
    ]


@router.get("/models/{model_name}", response_model=ModelInfoResponse)
async def get_model_info(model_name: str, generator: EmbeddingGenerator = Depends(get_generator)):
    """Get information about a specific model."""
    info = generator.get_model_info(model_name)
    if info is None:
        raise HTTPException(status_code=404, detail=str(ModelNotFoundError(model_name)))
    return ModelInfoResponse(name=info.name, kind=info.kind.value, device=info.device, dimension=info.dimension)
