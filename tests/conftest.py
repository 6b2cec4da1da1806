"""Pytest configuration and fixtures for dfconnect tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pyarrow as pa
import pytest
from prometheus_client import CollectorRegistry

from dfconnect.adapters.outbound.in_memory_transport import InMemoryTransport, result_bodies
from dfconnect.application.client import ConnectClient
from dfconnect.application.retry import RetryPolicy
from dfconnect.application.session import Session, UserContext
from dfconnect.domain.services.plan_builder import PlanBuilder
from dfconnect.domain.value_objects.identifiers import PlanIdGenerator
from dfconnect.infrastructure.config import Config, ExecutionConfig, RetryConfig
from dfconnect.infrastructure.metrics import MetricsRegistry


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def metrics_registry() -> MetricsRegistry:
    """Provide a fresh metrics registry for each test."""
    # Use a separate registry to avoid conflicts between tests
    registry = CollectorRegistry(auto_describe=True)
    return MetricsRegistry(registry=registry)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def retry_policy(sleep: RecordingSleep) -> RetryPolicy:
    """Retry policy with the default budget and no real waiting."""
    return RetryPolicy(max_attempts=3, sleep=sleep)


@pytest.fixture
def test_config() -> Config:
    """Provide a test configuration."""
    return Config(
        retry=RetryConfig(max_attempts=3, initial_backoff_seconds=0.0),
        execution=ExecutionConfig(client_type="dfconnect-tests"),
    )


@pytest.fixture
def session() -> Session:
    return Session(user_context=UserContext(user_id="tester", user_name="Tester"))


@pytest.fixture
def builder() -> PlanBuilder:
    """Builder with its own id counter, so plan ids start at 1."""
    return PlanBuilder(Session(plan_ids=PlanIdGenerator(start=1)))


@pytest.fixture
def people() -> pa.Table:
    """Five rows used by most execution tests."""
    return pa.table(
        {
            "id": pa.array([1, 2, 3, 4, 5], type=pa.int64()),
            "name": ["ann", "bob", "cid", "dee", "eve"],
            "age": pa.array([31, 17, 45, 22, 68], type=pa.int32()),
        }
    )


@pytest.fixture
def transport(people: pa.Table) -> InMemoryTransport:
    """In-memory service answering every query with ``people`` in batches of 3."""
    return InMemoryTransport(lambda request: result_bodies(people, max_rows_per_batch=3))


@pytest.fixture
def client(
    test_config: Config,
    transport: InMemoryTransport,
    session: Session,
    retry_policy: RetryPolicy,
    metrics_registry: MetricsRegistry,
) -> ConnectClient:
    return ConnectClient(
        config=test_config,
        transport=transport,
        session=session,
        retry_policy=retry_policy,
        metrics=metrics_registry,
    )


@pytest.fixture
def sample_value(metrics_registry: MetricsRegistry) -> Callable[..., float]:
    """Read a metric sample from the test registry (0.0 if never touched)."""

    def read(name: str, labels: dict[str, Any] | None = None) -> float:
        value = metrics_registry._registry.get_sample_value(name, labels or {})
        return 0.0 if value is None else value

    return read


# Markers for test categories
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
