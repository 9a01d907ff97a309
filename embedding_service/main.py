"""Embedding service main application."""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from . import __version__
from .api.routes import router as api_router
from .encoders import EmbeddingGenerator
from .encoders.loaders import ModelLoader, SentenceTransformerLoader
from .encoders.models import parse_model_configs
from .runtime.metrics import MetricsCollector, get_metrics_collector
from libs.common.config import EmbeddingConfig
from libs.common.logging import configure_logging

logger = structlog.get_logger("embedding_service")

SERVICE_NAME = "embedding-service"
WORKER_STOP_TIMEOUT = 30.0


def create_app(
    config: Optional[EmbeddingConfig] = None,
    loader: Optional[ModelLoader] = None,
    metrics_collector: Optional[MetricsCollector] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Parameters
    - config: Service configuration (read from the environment by default)
    - loader: Model loader handed to the generator; ``SentenceTransformerLoader``
      by default
    - metrics_collector: Collector to record into (process-wide by default)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        # Startup
        config = app.state.config
        configure_logging(SERVICE_NAME, config.ml_log_level, config.ml_log_format, env=config.ml_env)
        app.state.startup_time = time.time()

        logger.info("Starting embedding service", env=config.ml_env)

        app.state.metrics_collector = metrics_collector or get_metrics_collector(SERVICE_NAME)
        model_configs = parse_model_configs(config.model_names(), config.ml_embedding_device)

        app.state.generator = await EmbeddingGenerator.create(
            model_configs,
            loader=loader or SentenceTransformerLoader(batch_size=config.ml_max_batch_size),
            queue_capacity=config.ml_embedding_queue_capacity,
            metrics=app.state.metrics_collector,
            ready_timeout=config.ml_embedding_ready_timeout
        )

        logger.info("Embedding service started successfully", models=app.state.generator.model_names)

        yield

        # Shutdown
        logger.info("Shutting down embedding service")
        generator: EmbeddingGenerator = app.state.generator
        generator.close()
        stopped = await asyncio.get_running_loop().run_in_executor(
            None, generator.join, WORKER_STOP_TIMEOUT
        )
        if not stopped:
            logger.warning("Embedding worker still running at shutdown", timeout=WORKER_STOP_TIMEOUT)
        logger.info("Embedding service shutdown complete")

    app = FastAPI(
        title="Embedding Service",
        description="Serialized embedding generation over pre-loaded models",
        version=__version__,
        lifespan=lifespan
    )
    app.state.config = config or EmbeddingConfig()

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API routes
    app.include_router(api_router, prefix="/api/v1")

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Collect metrics and add the processing time header."""
        start_time = time.time()

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            logger.error("Unhandled request error", path=request.url.path, error=str(e))
            status_code = 500
            response = JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "detail": str(e)}
            )

        duration = time.time() - start_time
        response.headers["X-Process-Time"] = str(duration)

        collector = getattr(request.app.state, "metrics_collector", None)
        if collector is not None:
            collector.record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status=status_code,
                duration=duration
            )

        return response

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        generator = getattr(request.app.state, "generator", None)
        if generator is not None and generator.is_running:
            return {"status": "healthy", "service": SERVICE_NAME}
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "service": SERVICE_NAME}
        )

    @app.get("/metrics")
    async def metrics(request: Request):
        """Prometheus metrics endpoint."""
        collector = getattr(request.app.state, "metrics_collector", None)
        if collector is None:
            return Response(content="# No metrics available\n", media_type="text/plain")
        return Response(content=collector.get_metrics(), media_type="text/plain")

    @app.get("/live")
    async def liveness(request: Request):
        """Liveness probe. Returns quickly if process is responsive."""
        return {
            "status": "alive",
            "service": SERVICE_NAME,
            "uptime_seconds": time.time() - getattr(request.app.state, "startup_time", time.time())
        }

    @app.get("/ready")
    async def readiness(request: Request):
        """Readiness probe. Ready once models are loaded and the worker runs."""
        generator = getattr(request.app.state, "generator", None)
        if generator is None or not generator.is_running:
            return JSONResponse(
                status_code=503,
                content={"status": "not_ready", "service": SERVICE_NAME}
            )
        return {
            "status": "ready",
            "service": SERVICE_NAME,
            "models_loaded": len(generator.models),
            "queue_depth": generator.queue_depth,
            "queue_capacity": generator.queue_capacity
        }

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": SERVICE_NAME,
            "version": __version__,
            "status": "running",
            "endpoints": {
                "embed": "/api/v1/embed",
                "models": "/api/v1/models",
                "metrics": "/metrics"
            },
            "probes": {
                "health": "/health",
                "live": "/live",
                "ready": "/ready"
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "embedding_service.main:app",
        host="0.0.0.0",
        port=app.state.config.ml_embedding_port,
        log_level="info"
    )
