"""Shared fixtures for the embedding service tests."""

import pytest
from prometheus_client import CollectorRegistry

from libs.common.metrics import MetricsCollector

from .fakes import L6, L12, FakeLoader, start_generator


@pytest.fixture
def loader():
    return FakeLoader()


@pytest.fixture
def metrics():
    return MetricsCollector("test-service", registry=CollectorRegistry())


@pytest.fixture
def generator(loader, metrics):
    gen = start_generator(loader, kinds=(L12, L6), metrics=metrics)
    yield gen
    gen.close()
    gen.join(timeout=5)
