"""Request channel and worker loop for the embedding generator.

One dedicated thread owns every loaded model. Callers hand it work through a
bounded ``RequestChannel`` and each request carries its own write-once reply
future, so exactly one inference call runs at any time and requests are
served in arrival order.

Lifecycle of the worker thread
- Loading: build the ``ModelRegistry``; the outcome resolves ``ready``
- Serving: take requests one by one and reply to each
- Terminated: the close marker arrives after the last sender releases the
  channel; anything still queued when the loop stops is failed with
  ``InternalError``
"""

import queue
import threading
import time
from concurrent.futures import Future, InvalidStateError
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Tuple

import numpy as np
import structlog

from libs.common.metrics import MetricsCollector

from .errors import EmbeddingGeneratorError, InternalError, ModelError, ModelLoadingError, ModelNotFoundError, QueueFullError
from .loaders import ModelLoader
from .models import DeviceKind, LoadedModel, ModelConfig, ModelInfo
from .registry import ModelRegistry

logger = structlog.get_logger("embedding_service.worker")

CHANNEL_CLOSED = "channel closed unexpectedly"

# Queued after the last sender goes away; always the final item.
_CLOSE = object()


@dataclass
class EmbeddingRequest:
    """One unit of work for the worker, consumed exactly once."""
    model_name: str
    inputs: List[str]
    reply: Future = field(default_factory=Future)
    enqueued_at: float = field(default_factory=time.perf_counter)


class RequestChannel:
    """Bounded multi-producer, single-consumer queue of ``EmbeddingRequest``.

    Capacity is checked under the producer lock so a full queue rejects the
    request instead of blocking the caller. The channel counts its senders;
    when the last one releases it, a close marker is queued behind all
    pending requests.
    """

    def __init__(self, capacity: int, metrics: Optional[MetricsCollector] = None):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.metrics = metrics
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._lock = threading.Lock()
        self._senders = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def depth(self) -> int:
        """Number of requests waiting to be served."""
        with self._lock:
            return self._pending()

    def acquire(self) -> None:
        """Register one more sender."""
        with self._lock:
            if self._closed:
                raise InternalError(CHANNEL_CLOSED)
            self._senders += 1

    def release(self) -> None:
        """Drop one sender; the last one closes the channel."""
        with self._lock:
            self._senders = max(self._senders - 1, 0)
            if self._senders == 0:
                self._close()

    def close(self) -> None:
        """Close regardless of remaining senders."""
        with self._lock:
            self._close()

    def send(self, request: EmbeddingRequest) -> None:
        """Enqueue without blocking.

        Raises ``QueueFullError`` at capacity and ``InternalError`` once the
        channel is closed.
        """
        with self._lock:
            if self._closed:
                raise InternalError(CHANNEL_CLOSED)
            if self._pending() >= self.capacity:
                if self.metrics:
                    self.metrics.record_queue_rejection()
                raise QueueFullError(self.capacity)
            self._queue.put_nowait(request)
            self._report_depth()

    def receive(self) -> Any:
        """Block until the next request or the close marker is available."""
        item = self._queue.get()
        with self._lock:
            self._report_depth()
        return item

    def shutdown(self, error: EmbeddingGeneratorError) -> int:
        """Close the channel and fail every request still queued.

        Returns the number of requests that were failed.
        """
        pending = []
        with self._lock:
            self._closed = True
            while True:
                try:
                    item = self._queue.get_nowait()
                except queue.Empty:
                    break
                if item is not _CLOSE:
                    pending.append(item)
            self._report_depth()

        # Outside the lock: reply callbacks may call back into the channel.
        for request in pending:
            deliver(request, error=error)
        return len(pending)

    def _close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSE)

    def _pending(self) -> int:
        size = self._queue.qsize()
        return size - 1 if self._closed and size else size

    def _report_depth(self) -> None:
        if self.metrics:
            self.metrics.set_queue_depth(self._pending())


def deliver(request: EmbeddingRequest, result: Any = None, error: Optional[BaseException] = None) -> bool:
    """Write the reply for ``request`` once.

    Returns ``False`` when the caller had already stopped waiting; that reply
    is dropped.
    """
    reply = request.reply
    try:
        if error is not None:
            reply.set_exception(error)
        else:
            reply.set_result(result)
    except InvalidStateError:
        logger.debug("Reply dropped, caller no longer waiting", model_name=request.model_name)
        return False
    return True


class EmbeddingWorker:
    """The single thread that loads models and serves embedding requests.

    Parameters
    - channel: Shared ``RequestChannel`` the handles write to
    - models_to_load: Model configurations loaded before serving starts
    - loader: Collaborator that materializes models
    - device_resolver: Maps a ``DeviceKind`` label to a torch device string
    - metrics: Optional ``MetricsCollector``

    ``ready`` resolves to the loaded ``ModelInfo`` tuple, or to the
    ``ModelLoadingError`` that aborted startup.
    """

    def __init__(
        self,
        channel: RequestChannel,
        models_to_load: Sequence[ModelConfig],
        loader: ModelLoader,
        device_resolver: Callable[[DeviceKind], str],
        metrics: Optional[MetricsCollector] = None,
    ):
        self.channel = channel
        self.models_to_load = list(models_to_load)
        self.loader = loader
        self.device_resolver = device_resolver
        self.metrics = metrics
        self.ready: "Future[Tuple[ModelInfo, ...]]" = Future()
        self._thread = threading.Thread(target=self.run, name="embedding-worker", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the thread to exit; ``True`` if it has."""
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def run(self) -> None:
        """Thread entry point: load, then serve until the channel closes."""
        try:
            registry = self._load()
        except ModelLoadingError as e:
            logger.error("Embedding generator failed to load models", error=str(e))
            self.channel.shutdown(InternalError(CHANNEL_CLOSED))
            self.ready.set_exception(e)
            return

        if self.metrics:
            self.metrics.set_models_loaded(len(registry))
        self.ready.set_result(tuple(registry.infos()))
        logger.info("Embedding worker serving", models=registry.names())

        try:
            self._serve(registry)
        except BaseException as e:
            logger.exception("Embedding worker crashed", error=str(e))
            raise
        finally:
            failed = self.channel.shutdown(InternalError(CHANNEL_CLOSED))
            if failed:
                logger.warning("Failed requests left in queue", count=failed)
            if self.metrics:
                self.metrics.set_models_loaded(0)

    def _load(self) -> ModelRegistry:
        try:
            return ModelRegistry.build(self.models_to_load, self.loader, self.device_resolver)
        except ModelLoadingError:
            raise
        except Exception as e:
            raise ModelLoadingError(str(e)) from e

    def _serve(self, registry: ModelRegistry) -> None:
        served = 0
        while True:
            item = self.channel.receive()
            if item is _CLOSE:
                logger.info("Embedding worker stopped", requests_served=served)
                return
            try:
                self.handle(registry, item)
            except Exception as e:
                logger.exception("Embedding request failed", model_name=str(item.model_name), error=str(e))
                deliver(item, error=InternalError(str(e)))
            except BaseException:
                deliver(item, error=InternalError(CHANNEL_CLOSED))
                raise
            served += 1

    def handle(self, registry: ModelRegistry, request: EmbeddingRequest) -> None:
        """Serve one request; model failures are replied as ``ModelError``."""
        model = registry.get(request.model_name)
        if model is None:
            logger.warning("Embedding model not found", model_name=request.model_name)
            self._record(request.model_name, "model_not_found")
            deliver(request, error=ModelNotFoundError(request.model_name))
            return

        if not request.inputs:
            self._record(model.name, "ok")
            deliver(request, result=[])
            return

        start_time = time.perf_counter()
        try:
            vectors = self._encode(model, request.inputs)
        except Exception as e:
            logger.error(
                "Embedding inference failed",
                model_name=model.name,
                count=len(request.inputs),
                error=str(e)
            )
            self._record(model.name, "model_error", time.perf_counter() - start_time)
            deliver(request, error=ModelError(str(e)))
            return

        duration = time.perf_counter() - start_time
        self._record(model.name, "ok", duration, len(request.inputs))
        logger.debug(
            "Embeddings generated",
            model_name=model.name,
            count=len(vectors),
            duration_ms=duration * 1000,
            wait_ms=(start_time - request.enqueued_at) * 1000
        )
        deliver(request, result=vectors)

    def _encode(self, model: LoadedModel, inputs: List[str]) -> List[List[float]]:
        encoded = np.asarray(model.encoder.encode(inputs))
        if encoded.ndim != 2 or encoded.shape[0] != len(inputs):
            raise ValueError(
                f"expected {len(inputs)} vectors, model returned shape {encoded.shape}"
            )
        return encoded.tolist()

    def _record(self, model_name: str, status: str, duration: Optional[float] = None, count: int = 0) -> None:
        if self.metrics:
            self.metrics.record_embedding(model_name, status, duration, count)
