"""Tests for the embedding generator handle and its worker."""

import asyncio
import gc
import threading

import numpy as np
import pytest

from embedding_service.encoders import (
    DeviceKind,
    EmbeddingGenerator,
    EmbeddingModelKind,
    InternalError,
    ModelConfig,
    ModelError,
    ModelLoadingError,
    ModelNotFoundError,
    QueueFullError,
)
from embedding_service.encoders.loaders import SentenceTransformerLoader

from .fakes import DIMENSION, L6, L12, FakeLoader, cpu_resolver, start_generator


@pytest.mark.asyncio
async def test_generate_embeddings_all_minilm_l12_v2(generator):
    """Three inputs give three vectors of the model dimension."""
    inputs = ["Hello, world!", "Hello, NBA!", "Hello, NFL!"]

    embeddings = await generator.generate_embeddings(inputs, "all-minilm-l12-v2")

    assert len(embeddings) == 3
    assert all(len(vector) == DIMENSION for vector in embeddings)
    assert all(isinstance(value, float) for value in embeddings[0])


@pytest.mark.asyncio
async def test_vectors_follow_input_order(generator):
    """Each vector matches the one computed for its text alone."""
    inputs = ["first", "second", "third", "fourth"]

    batch = await generator.generate_embeddings(inputs, "all-minilm-l12-v2")
    singles = [
        (await generator.generate_embeddings([text], "all-minilm-l12-v2"))[0]
        for text in inputs
    ]

    np.testing.assert_allclose(batch, singles)


@pytest.mark.asyncio
async def test_repeated_calls_are_deterministic(generator):
    inputs = ["Hello, world!", "Hello, NBA!"]

    first = await generator.generate_embeddings(inputs, "all-minilm-l12-v2")
    second = await generator.generate_embeddings(inputs, "all-minilm-l12-v2")

    assert first == second


@pytest.mark.asyncio
async def test_models_are_independent(generator):
    l12 = await generator.generate_embeddings(["same text"], "all-minilm-l12-v2")
    l6 = await generator.generate_embeddings(["same text"], "all-minilm-l6-v2")

    assert l12 != l6


@pytest.mark.asyncio
async def test_unknown_model_raises_model_not_found(generator, loader):
    with pytest.raises(ModelNotFoundError) as exc_info:
        await generator.generate_embeddings(["Hello"], "that-name")

    assert exc_info.value.model_name == "that-name"
    assert str(exc_info.value) == "model `that-name` not found"
    assert all(not encoder.calls for encoder in loader.encoders.values())
    assert generator.model_names == ["all-minilm-l12-v2", "all-minilm-l6-v2"]


@pytest.mark.asyncio
async def test_model_names_are_case_sensitive(generator):
    with pytest.raises(ModelNotFoundError):
        await generator.generate_embeddings(["Hello"], "ALL-MINILM-L12-V2")


@pytest.mark.asyncio
async def test_model_error_does_not_stop_worker():
    loader = FakeLoader(fail_on="boom")
    with start_generator(loader) as gen:
        with pytest.raises(ModelError) as exc_info:
            await gen.generate_embeddings(["fine", "boom"], "all-minilm-l12-v2")

        assert "cannot encode 'boom'" in str(exc_info.value)

        vectors = await gen.generate_embeddings(["fine"], "all-minilm-l12-v2")
        assert len(vectors) == 1
        assert gen.is_running


@pytest.mark.asyncio
async def test_empty_inputs_skip_inference(generator, loader):
    assert await generator.generate_embeddings([], "all-minilm-l12-v2") == []
    assert loader.encoders["all-minilm-l12-v2"].calls == []


@pytest.mark.asyncio
async def test_empty_inputs_still_check_model_name(generator):
    with pytest.raises(ModelNotFoundError):
        await generator.generate_embeddings([], "missing")


@pytest.mark.asyncio
async def test_single_string_is_rejected(generator):
    with pytest.raises(TypeError):
        await generator.generate_embeddings("Hello, world!", "all-minilm-l12-v2")


@pytest.mark.asyncio
async def test_non_string_model_name_is_rejected(generator):
    with pytest.raises(TypeError):
        await generator.generate_embeddings(["x"], ["not", "hashable"])

    vectors = await generator.generate_embeddings(["ok"], "all-minilm-l12-v2")
    assert len(vectors) == 1


@pytest.mark.asyncio
async def test_concurrent_calls_never_overlap():
    """Many callers across two models: inference stays serial."""
    loader = FakeLoader(delay=0.002)
    with start_generator(loader, kinds=(L12, L6)) as gen:
        calls = [
            gen.generate_embeddings([f"text {i}-{j}" for j in range(i % 4 + 1)], model)
            for i in range(30)
            for model in ("all-minilm-l12-v2", "all-minilm-l6-v2")
        ]
        results = await asyncio.gather(*calls)

    assert loader.tracker.max_active == 1
    assert [len(result) for result in results] == [
        i % 4 + 1 for i in range(30) for _ in range(2)
    ]


@pytest.mark.asyncio
async def test_requests_are_served_in_arrival_order():
    gate = threading.Event()
    loader = FakeLoader(gate=gate)
    with start_generator(loader) as gen:
        tasks = [
            asyncio.create_task(gen.generate_embeddings([f"request {i}"], "all-minilm-l12-v2"))
            for i in range(5)
        ]
        await asyncio.sleep(0)
        gate.set()
        await asyncio.gather(*tasks)

    encoder = loader.encoders["all-minilm-l12-v2"]
    assert encoder.calls == [[f"request {i}"] for i in range(5)]


@pytest.mark.asyncio
async def test_full_queue_rejects_immediately(metrics):
    gate = threading.Event()
    loader = FakeLoader(gate=gate)
    with start_generator(loader, queue_capacity=2, metrics=metrics) as gen:
        first = asyncio.create_task(gen.generate_embeddings(["busy"], "all-minilm-l12-v2"))
        encoder = loader.encoders["all-minilm-l12-v2"]
        entered = await asyncio.get_running_loop().run_in_executor(None, encoder.entered.wait, 5)
        assert entered

        queued = [
            asyncio.create_task(gen.generate_embeddings([f"queued {i}"], "all-minilm-l12-v2"))
            for i in range(2)
        ]
        await asyncio.sleep(0)
        assert gen.queue_depth == 2

        with pytest.raises(QueueFullError) as exc_info:
            await gen.generate_embeddings(["overflow"], "all-minilm-l12-v2")
        assert exc_info.value.capacity == 2

        gate.set()
        results = await asyncio.gather(first, *queued)

    assert [len(result) for result in results] == [1, 1, 1]
    assert metrics.registry.get_sample_value("ml_embedding_queue_rejections_total") == 1


@pytest.mark.asyncio
async def test_abandoned_wait_is_still_computed():
    gate = threading.Event()
    loader = FakeLoader(gate=gate)
    with start_generator(loader) as gen:
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                gen.generate_embeddings(["abandoned"], "all-minilm-l12-v2"),
                timeout=0.05
            )
        gate.set()

        vectors = await gen.generate_embeddings(["after"], "all-minilm-l12-v2")

    assert len(vectors) == 1
    assert loader.encoders["all-minilm-l12-v2"].calls == [["abandoned"], ["after"]]


@pytest.mark.asyncio
async def test_callers_on_other_event_loops_are_served(generator):
    """Handles are thread-safe: a second loop in another thread can use one."""
    results = {}

    def run_in_thread():
        results["vectors"] = asyncio.run(
            generator.generate_embeddings(["from a thread"], "all-minilm-l6-v2")
        )

    thread = threading.Thread(target=run_in_thread)
    thread.start()
    await asyncio.get_running_loop().run_in_executor(None, thread.join, 5)

    assert len(results["vectors"]) == 1


def test_unsupported_model_kind_fails_construction():
    loader = FakeLoader()

    with pytest.raises(ModelLoadingError) as exc_info:
        start_generator(loader, kinds=(L12, EmbeddingModelKind.OPENAI_ADA_02))

    assert "openai-ada-02" in str(exc_info.value)


def test_sentence_transformer_loader_rejects_unsupported_kind():
    with pytest.raises(ModelLoadingError):
        SentenceTransformerLoader().load(EmbeddingModelKind.OPENAI_ADA_02, "cpu")


def test_loader_failure_fails_construction():
    loader = FakeLoader(fail_kinds={L6})

    with pytest.raises(ModelLoadingError) as exc_info:
        start_generator(loader, kinds=(L12, L6))

    assert "weights unavailable" in str(exc_info.value)


def test_duplicate_model_configs_are_rejected():
    loader = FakeLoader()

    with pytest.raises(ModelLoadingError) as exc_info:
        start_generator(loader, kinds=(L12, L12))

    assert "configured more than once" in str(exc_info.value)
    assert loader.loads == []


def test_start_requires_at_least_one_model():
    with pytest.raises(ModelLoadingError):
        start_generator(FakeLoader(), kinds=())


def test_start_reports_loaded_models(generator, loader):
    assert generator.model_names == ["all-minilm-l12-v2", "all-minilm-l6-v2"]
    assert generator.get_model_info("all-minilm-l6-v2").dimension == DIMENSION
    assert generator.get_model_info("missing") is None
    assert loader.loads == [(L12, "cpu"), (L6, "cpu")]
    assert generator.is_running


@pytest.mark.asyncio
async def test_create_waits_for_loading_without_blocking_loop():
    configs = [ModelConfig(model_kind=L12, device_kind=DeviceKind.CPU)]

    async with await EmbeddingGenerator.create(
        configs, loader=FakeLoader(), device_resolver=cpu_resolver, ready_timeout=10
    ) as gen:
        vectors = await gen.generate_embeddings(["Hello"], "all-minilm-l12-v2")

    assert len(vectors[0]) == DIMENSION
    assert gen.closed
    assert gen.join(timeout=5)


@pytest.mark.asyncio
async def test_create_propagates_loading_error():
    configs = [ModelConfig(model_kind=EmbeddingModelKind.OPENAI_ADA_02)]

    with pytest.raises(ModelLoadingError):
        await EmbeddingGenerator.create(configs, loader=FakeLoader(), device_resolver=cpu_resolver)


@pytest.mark.asyncio
async def test_worker_stops_after_last_clone_is_closed(loader):
    gen = start_generator(loader)
    other = gen.clone()

    gen.close()
    assert not gen.join(timeout=0.1)
    assert other.is_running

    vectors = await other.generate_embeddings(["still served"], "all-minilm-l12-v2")
    assert len(vectors) == 1

    other.close()
    assert other.join(timeout=5)
    assert not other.is_running


@pytest.mark.asyncio
async def test_closed_handle_raises_internal_error(loader):
    gen = start_generator(loader)
    gen.close()
    gen.close()

    with pytest.raises(InternalError):
        await gen.generate_embeddings(["Hello"], "all-minilm-l12-v2")
    with pytest.raises(InternalError):
        gen.clone()


def test_dropping_last_handle_stops_worker(loader):
    gen = start_generator(loader)
    worker = gen._worker

    del gen
    gc.collect()

    assert worker.join(timeout=5)


def _new_worker_threads(before):
    return [
        thread for thread in threading.enumerate()
        if thread.name == "embedding-worker" and thread not in before
    ]


def test_start_times_out_while_loading():
    gate = threading.Event()
    loader = FakeLoader(load_gate=gate)
    before = set(threading.enumerate())

    with pytest.raises(ModelLoadingError) as exc_info:
        start_generator(loader, ready_timeout=0.1)
    assert "not loaded within" in str(exc_info.value)

    threads = _new_worker_threads(before)
    assert len(threads) == 1
    assert threads[0].is_alive()

    gate.set()
    threads[0].join(timeout=5)
    assert not threads[0].is_alive()


@pytest.mark.asyncio
async def test_create_times_out_while_loading():
    gate = threading.Event()
    loader = FakeLoader(load_gate=gate)
    configs = [ModelConfig(model_kind=L12, device_kind=DeviceKind.CPU)]
    before = set(threading.enumerate())

    with pytest.raises(ModelLoadingError):
        await EmbeddingGenerator.create(configs, loader=loader, device_resolver=cpu_resolver, ready_timeout=0.1)

    gate.set()
    threads = _new_worker_threads(before)
    assert len(threads) == 1
    threads[0].join(timeout=5)
    assert not threads[0].is_alive()


@pytest.mark.asyncio
async def test_cancelled_create_stops_worker():
    gate = threading.Event()
    loader = FakeLoader(load_gate=gate)
    configs = [ModelConfig(model_kind=L12, device_kind=DeviceKind.CPU)]
    before = set(threading.enumerate())

    task = asyncio.create_task(
        EmbeddingGenerator.create(configs, loader=loader, device_resolver=cpu_resolver)
    )
    assert await asyncio.get_running_loop().run_in_executor(None, loader.loading.wait, 5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    gate.set()
    threads = _new_worker_threads(before)
    assert len(threads) == 1
    threads[0].join(timeout=5)
    assert not threads[0].is_alive()
