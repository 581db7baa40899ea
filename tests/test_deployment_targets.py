"""
Tests for deployment targets: in-memory and HTTP runtimes, and target resolution.
"""
import httpx
import pytest

from flowops.core.environments import Environment
from flowops.services.deployment_targets import (
    DeploymentPackage,
    HttpDeploymentTarget,
    InMemoryDeploymentTarget,
    TargetRegistry,
)

RUNTIME_URL = "https://qa.runtime.example.com"


def _package(checksum: str = "abc123") -> DeploymentPackage:
    return DeploymentPackage(
        deployment_id="dep-1",
        workflow_id="wf-1",
        version_id="v-1",
        version_number="1.1.0",
        checksum=checksum,
        payload='{"config":{},"edges":[],"nodes":[]}',
    )


class TestInMemoryDeploymentTarget:

    @pytest.mark.asyncio
    async def test_deploy_then_verify(self):
        target = InMemoryDeploymentTarget()
        package = _package()

        await target.deploy(Environment.QA, package)

        assert await target.verify(Environment.QA, package)
        assert not await target.verify(Environment.PRODUCTION, package)
        assert not await target.verify(Environment.QA, _package("other"))
        assert target.deployed_package(Environment.QA, "wf-1") is package

    @pytest.mark.asyncio
    async def test_keeps_only_latest_package_per_slot(self):
        target = InMemoryDeploymentTarget()
        for checksum in ("c1", "c2", "c3", "c4", "c5"):
            await target.deploy(Environment.QA, _package(checksum))

        assert len(target.packages) == 1
        assert target.deployed_package(Environment.QA, "wf-1").checksum == "c5"


class TestHttpDeploymentTarget:

    @pytest.mark.asyncio
    async def test_ships_package_and_verifies(self, target_http_mock):
        target = HttpDeploymentTarget(RUNTIME_URL, timeout=1.0)
        package = _package()

        with target_http_mock(RUNTIME_URL) as mock:
            mock.mock_accepting_runtime("wf-1")
            await target.deploy(Environment.QA, package)
            verified = await target.verify(Environment.QA, package)

        assert verified
        assert mock.received[0]["environment"] == "qa"
        assert mock.received[0]["checksum"] == "abc123"
        assert mock.received[0]["snapshot"] == {"config": {}, "edges": [], "nodes": []}

    @pytest.mark.asyncio
    async def test_checksum_mismatch_fails_verification(self, target_http_mock):
        target = HttpDeploymentTarget(RUNTIME_URL, timeout=1.0)

        with target_http_mock(RUNTIME_URL) as mock:
            mock.mock_accepting_runtime("wf-1", reported_checksum="stale")
            await target.deploy(Environment.QA, _package())
            assert not await target.verify(Environment.QA, _package())

    @pytest.mark.asyncio
    async def test_server_error_raises(self, target_http_mock):
        target = HttpDeploymentTarget(RUNTIME_URL, timeout=1.0)

        with target_http_mock(RUNTIME_URL) as mock:
            mock.mock_server_error("wf-1")
            with pytest.raises(httpx.HTTPStatusError):
                await target.deploy(Environment.QA, _package())

    @pytest.mark.asyncio
    async def test_connection_error_raises(self, target_http_mock):
        target = HttpDeploymentTarget(RUNTIME_URL, timeout=1.0)

        with target_http_mock(RUNTIME_URL) as mock:
            mock.mock_connection_error("wf-1")
            with pytest.raises(httpx.ConnectError):
                await target.deploy(Environment.QA, _package())


class TestTargetRegistry:

    @pytest.mark.unit
    def test_fallback_when_unconfigured(self):
        fallback = InMemoryDeploymentTarget()
        registry = TargetRegistry(target_urls={}, fallback=fallback)
        assert registry.get_target(Environment.DEVELOPMENT) is fallback

    @pytest.mark.unit
    def test_configured_url_builds_http_target(self):
        registry = TargetRegistry(target_urls={"qa": RUNTIME_URL + "/"})
        target = registry.get_target("qa")
        assert isinstance(target, HttpDeploymentTarget)
        assert target.base_url == RUNTIME_URL
        assert registry.get_target(Environment.QA) is target

    @pytest.mark.unit
    def test_registered_target_wins(self):
        registry = TargetRegistry(target_urls={"qa": RUNTIME_URL})
        explicit = InMemoryDeploymentTarget()
        registry.register(Environment.QA, explicit)
        assert registry.get_target(Environment.QA) is explicit
