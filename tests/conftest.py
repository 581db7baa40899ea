"""
Pytest fixtures for Flow Ops tests.
"""
import asyncio
import os
import pytest
from typing import AsyncGenerator, Generator

# Every DatabaseService built from settings must stay in memory
os.environ.setdefault("DATABASE_URL", "sqlite://")

from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport

from flowops.main import app
from flowops.api import deps
from flowops.core.environments import Environment
from flowops.services.database import DatabaseService
from flowops.services.deployment_coordinator import DeploymentCoordinator
from flowops.services.deployment_targets import InMemoryDeploymentTarget, TargetRegistry
from flowops.services.lock_service import KeyedLockService
from flowops.services.promotion_service import PromotionService
from flowops.services.sse_pubsub_service import SSEPubSubService
from flowops.services.version_store import VersionStore
from tests.testkit import WorkflowFactory


WORKFLOW_ID = "wf-orders"
AUTHOR = "dev@example.com"


class GatedDeploymentTarget(InMemoryDeploymentTarget):
    """In-memory target whose deploy step blocks until released."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def deploy(self, environment, package):
        self.entered.set()
        await self.release.wait()
        await super().deploy(environment, package)


class FailingDeploymentTarget(InMemoryDeploymentTarget):
    """Target that rejects every package."""

    async def deploy(self, environment, package):
        raise RuntimeError("runtime rejected package")


# ============ Service Fixtures ============


@pytest.fixture
def db() -> Generator[DatabaseService, None, None]:
    """Fresh in-memory database per test."""
    service = DatabaseService("sqlite://")
    service.create_tables()
    yield service
    service.drop_tables()


@pytest.fixture
def locks() -> KeyedLockService:
    return KeyedLockService(default_timeout=5.0)


@pytest.fixture
def pubsub() -> SSEPubSubService:
    return SSEPubSubService()


@pytest.fixture
def target() -> InMemoryDeploymentTarget:
    return InMemoryDeploymentTarget()


@pytest.fixture
def targets(target: InMemoryDeploymentTarget) -> TargetRegistry:
    return TargetRegistry(target_urls={}, fallback=target)


@pytest.fixture
def gated_target() -> GatedDeploymentTarget:
    return GatedDeploymentTarget()


@pytest.fixture
def store(db, locks) -> VersionStore:
    return VersionStore(db=db, locks=locks)


@pytest.fixture
async def coordinator(db, store, locks, targets, pubsub) -> AsyncGenerator[DeploymentCoordinator, None]:
    service = DeploymentCoordinator(db=db, store=store, locks=locks, targets=targets, pubsub=pubsub)
    yield service
    await service.shutdown()


@pytest.fixture
def promotions(db, store, coordinator) -> PromotionService:
    return PromotionService(db=db, store=store, coordinator=coordinator)


@pytest.fixture
async def dev_version(store, coordinator):
    """A committed version (1.0.0) that is live in DEV."""
    version = await store.commit(WORKFLOW_ID, WorkflowFactory.snapshot(), AUTHOR, "initial")
    deployment = await coordinator.deploy(Environment.DEVELOPMENT, version.id)
    await coordinator.wait(deployment.id, timeout=5)
    return version


# ============ App Fixtures ============


@pytest.fixture
def test_app(db, store, coordinator, promotions, pubsub) -> Generator[FastAPI, None, None]:
    """Create a test FastAPI app with dependency overrides."""
    app.dependency_overrides[deps.get_db_service] = lambda: db
    app.dependency_overrides[deps.get_version_store] = lambda: store
    app.dependency_overrides[deps.get_deployment_coordinator] = lambda: coordinator
    app.dependency_overrides[deps.get_promotion_service] = lambda: promotions
    app.dependency_overrides[deps.get_pubsub] = lambda: pubsub

    yield app

    # Clean up overrides after test
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client for async tests."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ============ Time Control Fixtures ============


@pytest.fixture
def frozen_time():
    """
    Fixture for time-based tests using freezegun.
    Usage:
        def test_something(frozen_time):
            with frozen_time.freeze_time("2024-01-15 10:00:00"):
                # Test time-dependent code
    """
    import freezegun
    return freezegun


# ============ Testkit Fixtures ============


@pytest.fixture
def target_http_mock():
    """
    Deployment target HTTP mock fixture.

    Usage:
        def test_something(target_http_mock):
            with target_http_mock("https://qa.runtime.example.com") as mock:
                mock.mock_accepting_runtime("wf-1")
    """
    from tests.testkit import DeploymentTargetHttpMock
    return DeploymentTargetHttpMock
