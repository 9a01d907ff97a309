"""Front door of the embedding generator.

``EmbeddingGenerator`` is the handle callers share. It owns no model state:
each ``generate_embeddings`` call enqueues a request for the worker thread
and awaits that request's reply without blocking the event loop.

Construction waits for the worker to finish loading, so a loading failure
surfaces as ``ModelLoadingError`` from ``start``/``create`` rather than on a
later request.

Usage
>>> generator = await EmbeddingGenerator.create([ModelConfig(EmbeddingModelKind.ALL_MINILM_L12_V2)])
>>> vectors = await generator.generate_embeddings(["Hello, world!"], "all-minilm-l12-v2")
>>> generator.close()
"""

import asyncio
import weakref
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Callable, List, Optional, Sequence, Tuple

import structlog

from libs.common.metrics import MetricsCollector

from .errors import InternalError, ModelLoadingError
from .loaders import ModelLoader, SentenceTransformerLoader
from .models import DeviceKind, ModelConfig, ModelInfo
from .worker import EmbeddingRequest, EmbeddingWorker, RequestChannel

logger = structlog.get_logger("embedding_service.generator")

DEFAULT_QUEUE_CAPACITY = 100


class EmbeddingGenerator:
    """Cloneable, thread-safe handle to the embedding worker.

    Use ``start`` (blocking) or ``create`` (awaitable) to build one; every
    ``clone`` shares the same worker. The worker stops after the last handle
    is closed, either explicitly, by leaving a ``with``/``async with`` block,
    or when the handle is garbage collected.
    """

    def __init__(self, channel: RequestChannel, worker: EmbeddingWorker, models: Tuple[ModelInfo, ...]):
        channel.acquire()
        self._channel = channel
        self._worker = worker
        self._models = models
        self._closed = False
        self._finalizer = weakref.finalize(self, channel.release)

    @staticmethod
    def _launch(
        models_to_load: Sequence[ModelConfig],
        loader: Optional[ModelLoader],
        queue_capacity: int,
        metrics: Optional[MetricsCollector],
        device_resolver: Optional[Callable[[DeviceKind], str]],
    ) -> Tuple[RequestChannel, EmbeddingWorker]:
        if loader is None:
            loader = SentenceTransformerLoader()
        if device_resolver is None:
            from ..runtime.devices import resolve_device
            device_resolver = resolve_device

        channel = RequestChannel(queue_capacity, metrics=metrics)
        worker = EmbeddingWorker(channel, models_to_load, loader, device_resolver, metrics=metrics)
        logger.info(
            "Starting embedding generator",
            models=[config.model_name for config in models_to_load],
            queue_capacity=queue_capacity
        )
        worker.start()
        return channel, worker

    @classmethod
    def start(
        cls,
        models_to_load: Sequence[ModelConfig],
        *,
        loader: Optional[ModelLoader] = None,
        queue_capacity: int = DEFAULT_QUEUE_CAPACITY,
        metrics: Optional[MetricsCollector] = None,
        device_resolver: Optional[Callable[[DeviceKind], str]] = None,
        ready_timeout: Optional[float] = None,
    ) -> "EmbeddingGenerator":
        """Start the worker and block until its models are loaded.

        Raises ``ModelLoadingError`` if loading fails or does not finish
        within ``ready_timeout`` seconds.
        """
        channel, worker = cls._launch(models_to_load, loader, queue_capacity, metrics, device_resolver)
        try:
            models = worker.ready.result(timeout=ready_timeout)
        except FuturesTimeoutError:
            channel.close()
            raise ModelLoadingError(f"models not loaded within {ready_timeout}s")
        except BaseException:
            channel.close()
            raise
        return cls._ready(channel, worker, models)

    @classmethod
    async def create(
        cls,
        models_to_load: Sequence[ModelConfig],
        *,
        loader: Optional[ModelLoader] = None,
        queue_capacity: int = DEFAULT_QUEUE_CAPACITY,
        metrics: Optional[MetricsCollector] = None,
        device_resolver: Optional[Callable[[DeviceKind], str]] = None,
        ready_timeout: Optional[float] = None,
    ) -> "EmbeddingGenerator":
        """Async counterpart of ``start``; loading does not block the loop."""
        channel, worker = cls._launch(models_to_load, loader, queue_capacity, metrics, device_resolver)
        try:
            models = await asyncio.wait_for(
                asyncio.shield(asyncio.wrap_future(worker.ready)),
                timeout=ready_timeout
            )
        except asyncio.TimeoutError:
            channel.close()
            raise ModelLoadingError(f"models not loaded within {ready_timeout}s")
        except BaseException:
            # Includes cancellation; the worker exits once loading finishes.
            channel.close()
            raise
        return cls._ready(channel, worker, models)

    @classmethod
    def _ready(cls, channel: RequestChannel, worker: EmbeddingWorker, models: Tuple[ModelInfo, ...]) -> "EmbeddingGenerator":
        generator = cls(channel, worker, models)
        logger.info("Embedding generator ready", models=generator.model_names)
        return generator

    @property
    def models(self) -> Tuple[ModelInfo, ...]:
        """Models the worker loaded, in configuration order."""
        return self._models

    @property
    def model_names(self) -> List[str]:
        return [info.name for info in self._models]

    @property
    def queue_capacity(self) -> int:
        return self._channel.capacity

    @property
    def queue_depth(self) -> int:
        return self._channel.depth

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_running(self) -> bool:
        """Whether the worker is alive and still accepting requests."""
        return self._worker.is_alive() and not self._channel.closed

    def get_model_info(self, model_name: str) -> Optional[ModelInfo]:
        for info in self._models:
            if info.name == model_name:
                return info
        return None

    async def generate_embeddings(self, inputs: Sequence[str], model_name: str) -> List[List[float]]:
        """Embed ``inputs`` with ``model_name``.

        Returns one vector per input, in input order.

        Raises
        - ``ModelNotFoundError``: no model registered under ``model_name``
        - ``ModelError``: the model failed on these inputs
        - ``QueueFullError``: the request queue is at capacity
        - ``InternalError``: the handle is closed or the worker has stopped

        Cancelling the awaiting task does not withdraw the request; the
        worker still computes it and drops the reply.
        """
        if isinstance(inputs, str):
            raise TypeError("inputs must be a sequence of strings, not a single string")
        if not isinstance(model_name, str):
            raise TypeError(f"model_name must be a string, got {type(model_name).__name__}")
        if self._closed:
            raise InternalError("generator handle is closed")

        reply: Future = Future()
        self._channel.send(EmbeddingRequest(model_name=model_name, inputs=list(inputs), reply=reply))
        return await asyncio.wrap_future(reply)

    def clone(self) -> "EmbeddingGenerator":
        """Another handle on the same worker."""
        if self._closed:
            raise InternalError("generator handle is closed")
        return type(self)(self._channel, self._worker, self._models)

    def close(self) -> None:
        """Release this handle. Idempotent."""
        if not self._closed:
            self._closed = True
            self._finalizer()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker thread to exit; ``True`` if it has."""
        return self._worker.join(timeout)

    def __enter__(self) -> "EmbeddingGenerator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    async def __aenter__(self) -> "EmbeddingGenerator":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<EmbeddingGenerator models={self.model_names} {state}>"
