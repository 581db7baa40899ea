"""
Tests for the promotion service: pipeline gating, version bump policy and
handing off to the deployment coordinator.
"""
import asyncio
from contextlib import asynccontextmanager
from unittest.mock import patch

import pytest

from flowops.core.environments import Environment
from flowops.core.errors import (
    DeploymentInProgressError,
    NoActiveDeploymentError,
    TerminalEnvironmentError,
)
from flowops.schemas.deployment import DeploymentStatus
from flowops.schemas.workflow import VersionOrigin
from flowops.services.deployment_coordinator import DeploymentCoordinator
from flowops.services.lock_service import KeyedLockService
from tests.conftest import AUTHOR, WORKFLOW_ID, FailingDeploymentTarget
from tests.testkit import WorkflowFactory


async def _promote_and_wait(promotions, coordinator, from_environment, **kwargs):
    result = await promotions.promote(WORKFLOW_ID, from_environment, **kwargs)
    finished = await coordinator.wait(result.deployment.id, timeout=5)
    return result, finished


class TestPromote:

    @pytest.mark.asyncio
    async def test_dev_to_ete_scenario(self, promotions, coordinator, dev_version):
        """Commit 1.0.0 live in DEV, promote to ETE: new version 1.0.1 goes live in ETE."""
        assert dev_version.number == "1.0.0"

        result, finished = await _promote_and_wait(promotions, coordinator, Environment.DEVELOPMENT)

        assert result.new_version.number == "1.0.1"
        assert result.new_version.parent_version_id == dev_version.id
        assert result.new_version.origin == VersionOrigin.PROMOTION
        assert result.new_version.snapshot == dev_version.snapshot
        assert result.deployment.environment == Environment.ETE
        assert result.deployment.status in (DeploymentStatus.PENDING, DeploymentStatus.RUNNING)
        assert finished.status == DeploymentStatus.SUCCEEDED
        assert await coordinator.get_active_version_id(WORKFLOW_ID, Environment.ETE) == result.new_version.id
        # Source environment untouched
        assert await coordinator.get_active_version_id(WORKFLOW_ID, Environment.DEVELOPMENT) == dev_version.id

    @pytest.mark.asyncio
    async def test_full_pipeline_numbering(self, promotions, coordinator, dev_version):
        ete, _ = await _promote_and_wait(promotions, coordinator, Environment.DEVELOPMENT)
        qa, _ = await _promote_and_wait(promotions, coordinator, Environment.ETE)
        prod, _ = await _promote_and_wait(promotions, coordinator, Environment.QA)

        assert [ete.new_version.number, qa.new_version.number, prod.new_version.number] == [
            "1.0.1", "1.1.0", "2.0.0"
        ]
        assert prod.new_version.parent_version_id == qa.new_version.id

        states = await coordinator.environment_states(WORKFLOW_ID)
        assert [s.active_version_number for s in states] == ["1.0.0", "1.0.1", "1.1.0", "2.0.0"]

    @pytest.mark.asyncio
    async def test_promoted_version_becomes_head(self, promotions, coordinator, store, dev_version):
        result, _ = await _promote_and_wait(promotions, coordinator, Environment.DEVELOPMENT)
        assert (await store.head(WORKFLOW_ID)).id == result.new_version.id

        next_commit = await store.commit(WORKFLOW_ID, WorkflowFactory.snapshot(), AUTHOR)
        assert next_commit.number == "1.0.2"

    @pytest.mark.asyncio
    async def test_notes_and_author_recorded(self, promotions, coordinator, dev_version):
        result, _ = await _promote_and_wait(
            promotions, coordinator, Environment.DEVELOPMENT, notes="ready for e2e", author="lead@example.com"
        )

        records = await promotions.list_promotions(WORKFLOW_ID)
        assert len(records) == 1
        record = records[0]
        assert record.id == result.promotion_id
        assert record.from_environment == Environment.DEVELOPMENT
        assert record.to_environment == Environment.ETE
        assert record.source_version_id == dev_version.id
        assert record.new_version_id == result.new_version.id
        assert record.deployment_id == result.deployment.id
        assert record.notes == "ready for e2e"
        assert record.created_by == "lead@example.com"
        assert result.new_version.commit_message == "ready for e2e"

    @pytest.mark.asyncio
    async def test_default_message_names_environments(self, promotions, coordinator, dev_version):
        result, _ = await _promote_and_wait(promotions, coordinator, Environment.DEVELOPMENT)
        assert result.new_version.commit_message == "Promoted 1.0.0 from DEV to ETE"
        assert result.new_version.author == AUTHOR


class TestPromotionGates:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("from_environment", [Environment.PRODUCTION, "production"])
    async def test_production_is_terminal(self, promotions, store, from_environment):
        with pytest.raises(TerminalEnvironmentError) as exc_info:
            await promotions.promote(WORKFLOW_ID, from_environment)
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_terminal_even_when_prod_is_live(self, promotions, coordinator, dev_version):
        for source in (Environment.DEVELOPMENT, Environment.ETE, Environment.QA):
            await _promote_and_wait(promotions, coordinator, source)
        with pytest.raises(TerminalEnvironmentError):
            await promotions.promote(WORKFLOW_ID, Environment.PRODUCTION)

    @pytest.mark.asyncio
    async def test_source_needs_active_deployment(self, promotions, store):
        await store.commit(WORKFLOW_ID, WorkflowFactory.snapshot(), AUTHOR)

        with pytest.raises(NoActiveDeploymentError) as exc_info:
            await promotions.promote(WORKFLOW_ID, Environment.DEVELOPMENT)

        assert exc_info.value.status_code == 422
        assert (await store.history(WORKFLOW_ID)).data[0].number == "1.0.0"

    @pytest.mark.asyncio
    async def test_busy_target_rejected_without_side_effects(
        self, promotions, coordinator, store, targets, gated_target, dev_version
    ):
        targets.register(Environment.ETE, gated_target)
        first = await promotions.promote(WORKFLOW_ID, Environment.DEVELOPMENT)
        await asyncio.wait_for(gated_target.entered.wait(), timeout=5)
        history_before = await store.history(WORKFLOW_ID)

        with pytest.raises(DeploymentInProgressError) as exc_info:
            await promotions.promote(WORKFLOW_ID, Environment.DEVELOPMENT)

        assert exc_info.value.deployment_id == first.deployment.id
        assert (await store.history(WORKFLOW_ID)).data == history_before.data
        assert len(await promotions.list_promotions(WORKFLOW_ID)) == 1

        gated_target.release.set()
        await coordinator.wait(first.deployment.id, timeout=5)

    @pytest.mark.asyncio
    async def test_failed_promotion_deployment_keeps_target_pointer(
        self, promotions, coordinator, targets, dev_version
    ):
        targets.register(Environment.ETE, FailingDeploymentTarget())
        result, finished = await _promote_and_wait(promotions, coordinator, Environment.DEVELOPMENT)

        assert finished.status == DeploymentStatus.FAILED
        assert finished.error_detail.startswith("Deploying failed")
        assert await coordinator.get_active_version_id(WORKFLOW_ID, Environment.ETE) is None


async def _assert_nothing_promoted(promotions, coordinator, store, dev_version):
    history = await store.history(WORKFLOW_ID)
    assert [v.number for v in history.data] == ["1.0.0"]
    assert (await store.head(WORKFLOW_ID)).id == dev_version.id
    assert await promotions.list_promotions(WORKFLOW_ID) == []
    assert await coordinator.get_active_version_id(WORKFLOW_ID, Environment.ETE) is None


class TestPromotionAtomicity:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failing_write", ["_insert_deployment", "_insert_promotion"])
    async def test_failed_write_rolls_back_version_and_head(
        self, promotions, coordinator, store, dev_version, failing_write
    ):
        with patch(f"flowops.services.database.{failing_write}", side_effect=RuntimeError("disk I/O error")):
            with pytest.raises(RuntimeError):
                await promotions.promote(WORKFLOW_ID, Environment.DEVELOPMENT)

        await _assert_nothing_promoted(promotions, coordinator, store, dev_version)
        assert await coordinator.list_deployments(workflow_id=WORKFLOW_ID, environment=Environment.ETE) == []

        # The next attempt takes the number the failed one would have used
        result, finished = await _promote_and_wait(promotions, coordinator, Environment.DEVELOPMENT)
        assert result.new_version.number == "1.0.1"
        assert finished.status == DeploymentStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_slot_taken_by_another_process_writes_nothing(
        self, db, promotions, coordinator, store, targets, pubsub, gated_target, dev_version
    ):
        targets.register(Environment.ETE, gated_target)
        other = DeploymentCoordinator(
            db=db, store=store, locks=KeyedLockService(default_timeout=5.0), targets=targets, pubsub=pubsub
        )
        occupant = await other.deploy(Environment.ETE, dev_version.id)
        await asyncio.wait_for(gated_target.entered.wait(), timeout=5)

        # This process checked the slot before the other one wrote its deployment
        @asynccontextmanager
        async def stale_slot_check(workflow_id, environment):
            yield

        with patch.object(coordinator, "reserve_slot", stale_slot_check):
            with pytest.raises(DeploymentInProgressError) as exc_info:
                await promotions.promote(WORKFLOW_ID, Environment.DEVELOPMENT)

        assert exc_info.value.deployment_id == occupant.id
        await _assert_nothing_promoted(promotions, coordinator, store, dev_version)
        ete = await coordinator.list_deployments(workflow_id=WORKFLOW_ID, environment=Environment.ETE)
        assert [d.id for d in ete] == [occupant.id]

        gated_target.release.set()
        await other.wait(occupant.id, timeout=5)
        await other.shutdown()
