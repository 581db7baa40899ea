"""
Deployment Coordinator - drives staged, cancellable deployments of a version
into an environment and owns every status/progress transition.

Lifecycle: pending -> running -> (succeeded | failed). Terminal states are
final; every status write is guarded on the record still being non-terminal.
"""
import asyncio
import hashlib
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional
from uuid import uuid4

from flowops.core.config import settings
from flowops.core.environments import Environment, PIPELINE, get_label, get_short_label
from flowops.core.errors import DeploymentInProgressError, NotFoundError
from flowops.schemas.deployment import (
    Deployment,
    DeploymentStage,
    DeploymentStatus,
    EnvironmentState,
    NON_TERMINAL_STATUSES,
)
from flowops.schemas.workflow import Version
from flowops.services.database import as_utc, db_service, utcnow
from flowops.services.deployment_targets import DeploymentPackage, target_registry
from flowops.services.lock_service import lock_service
from flowops.services.snapshot_validation import find_config_problems, find_structural_problems
from flowops.services.sse_pubsub_service import SSEEvent, sse_pubsub
from flowops.services.version_store import version_store

logger = logging.getLogger(__name__)

SLOT_LOCK = "environment_slot"

# (stage, progress when the stage starts, progress when it ends)
STAGE_PLAN = (
    (DeploymentStage.VALIDATING, 0, 25),
    (DeploymentStage.PACKAGING, 25, 50),
    (DeploymentStage.DEPLOYING, 50, 75),
    (DeploymentStage.TESTING, 75, 95),
    (DeploymentStage.FINALIZING, 95, 100),
)

CANCELLED_DETAIL = "cancelled"
INTERRUPTED_DETAIL = "interrupted: service restarted"

_DATETIME_FIELDS = ("started_at", "completed_at", "created_at", "updated_at")


class DeploymentCancelled(Exception):
    """Raised between stages once a cancel has been requested."""


class StageFailure(Exception):
    """A stage rejected the deployment."""


@dataclass
class _DeploymentRun:
    """In-process handle on a running stage pipeline"""
    deployment_id: str
    cancel_requested: asyncio.Event = field(default_factory=asyncio.Event)
    done: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None


@dataclass
class _PipelineContext:
    deployment: Deployment
    version: Version
    package: Optional[DeploymentPackage] = None


def _to_deployment(row: Dict[str, Any]) -> Deployment:
    data = dict(row)
    for name in _DATETIME_FIELDS:
        data[name] = as_utc(data.get(name))
    return Deployment.model_validate(data)


def package_version(deployment_id: str, version: Version) -> DeploymentPackage:
    """Canonical JSON (sorted keys, compact) plus its SHA-256"""
    payload = json.dumps(version.snapshot.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
    checksum = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return DeploymentPackage(
        deployment_id=deployment_id,
        workflow_id=version.workflow_id,
        version_id=version.id,
        version_number=version.number,
        checksum=checksum,
        payload=payload,
    )


class DeploymentCoordinator:
    """Service for running deployments through the stage pipeline"""

    def __init__(self, db=None, store=None, locks=None, targets=None, pubsub=None):
        self.db = db or db_service
        self.store = store or version_store
        self.locks = locks or lock_service
        self.targets = targets or target_registry
        self.pubsub = pubsub or sse_pubsub
        self._runs: Dict[str, _DeploymentRun] = {}

    # Slot reservation

    @asynccontextmanager
    async def reserve_slot(self, workflow_id: str, environment: Environment) -> AsyncIterator[None]:
        """
        Hold a workflow's environment slot while checking it is free.

        The lock only serializes callers in this process. Across processes the
        database's active-slot unique index rejects a second pending/running
        row, and that row keeps the slot occupied after this block exits.
        `launch` must be called inside the block.

        Raises:
            DeploymentInProgressError: a pending/running deployment holds the slot
        """
        environment = Environment(environment)
        async with self.locks.acquire(f"{workflow_id}:{environment.value}", lock_type=SLOT_LOCK):
            active = await self.db.get_active_deployment(workflow_id, environment.value)
            if active:
                raise DeploymentInProgressError(
                    f"Deployment {active['id']} is still {active['status']} in "
                    f"{get_short_label(environment)} for workflow {workflow_id}",
                    deployment_id=active["id"],
                )
            yield

    async def deploy(self, environment: Environment, version_id: str) -> Deployment:
        """
        Start deploying a version into an environment. Returns immediately with
        the running deployment; progress is observed via `get` or SSE.
        """
        version = await self.store.get(version_id)
        async with self.reserve_slot(version.workflow_id, environment):
            return await self.launch(environment, version)

    def new_deployment_record(
        self,
        environment: Environment,
        workflow_id: str,
        version_id: str,
        version_number: str
    ) -> Dict[str, Any]:
        """Row for a Pending deployment, for callers that persist it themselves."""
        now = utcnow()
        return {
            "id": str(uuid4()),
            "workflow_id": workflow_id,
            "environment": Environment(environment).value,
            "version_id": version_id,
            "version_number": version_number,
            "status": DeploymentStatus.PENDING.value,
            "stage": None,
            "progress_percent": 0,
            "created_at": now,
            "updated_at": now,
        }

    async def launch(self, environment: Environment, version: Version) -> Deployment:
        """
        Create the deployment and start its pipeline. Caller holds `reserve_slot`.

        Raises:
            DeploymentInProgressError: another process took the slot first
        """
        record = self.new_deployment_record(environment, version.workflow_id, version.id, version.number)
        await self.db.create_deployment(record)
        return await self.start(record["id"], version)

    async def start(self, deployment_id: str, version: Version) -> Deployment:
        """Move a persisted Pending deployment to Running and start its pipeline task."""
        row = await self.db.update_deployment(deployment_id, {
            "status": DeploymentStatus.RUNNING.value,
            "stage": DeploymentStage.VALIDATING.value,
            "started_at": utcnow(),
        })
        if row is None:
            # Failed or cancelled before it could start
            return await self.get(deployment_id)
        deployment = _to_deployment(row)
        logger.info(
            f"Deployment {deployment_id} started: workflow {version.workflow_id} "
            f"version {version.number} -> {deployment.environment.value}"
        )
        await self._publish("deployment.upsert", deployment)

        run = _DeploymentRun(deployment_id=deployment_id)
        self._runs[deployment_id] = run
        run.task = asyncio.create_task(self._run_pipeline(_PipelineContext(deployment, version), run))
        return deployment

    # Pipeline

    async def _run_pipeline(self, context: _PipelineContext, run: _DeploymentRun) -> None:
        deployment_id = context.deployment.id
        try:
            for stage, start_percent, end_percent in STAGE_PLAN:
                if run.cancel_requested.is_set():
                    raise DeploymentCancelled()
                await self._advance(deployment_id, stage, start_percent)

                handler = getattr(self, f"_stage_{stage.value}")
                try:
                    await handler(context)
                except DeploymentCancelled:
                    raise
                except Exception as e:
                    raise StageFailure(f"{stage.value.capitalize()} failed: {e}") from e

                if stage is not DeploymentStage.FINALIZING:
                    await self._advance(deployment_id, stage, end_percent)
        except DeploymentCancelled:
            logger.info(f"Deployment {deployment_id} cancelled")
            await self._fail(deployment_id, CANCELLED_DETAIL)
        except StageFailure as e:
            logger.warning(f"Deployment {deployment_id} failed: {str(e)}")
            await self._fail(deployment_id, str(e))
        except Exception as e:
            logger.error(f"Deployment {deployment_id} pipeline error: {str(e)}", exc_info=True)
            await self._fail(deployment_id, f"internal error: {str(e)}")
        finally:
            self._runs.pop(deployment_id, None)
            run.done.set()

    async def _advance(self, deployment_id: str, stage: DeploymentStage, percent: int) -> None:
        row = await self.db.update_deployment(deployment_id, {
            "stage": stage.value,
            "progress_percent": percent,
        })
        if row is None:
            # Record went terminal underneath us
            raise DeploymentCancelled()
        await self._publish("deployment.progress", _to_deployment(row))

    async def _stage_validating(self, context: _PipelineContext) -> None:
        snapshot = context.version.snapshot
        problems = find_structural_problems(snapshot) + find_config_problems(snapshot.config)
        if problems:
            raise StageFailure("; ".join(problems))

    async def _stage_packaging(self, context: _PipelineContext) -> None:
        context.package = package_version(context.deployment.id, context.version)
        await self.db.update_deployment(context.deployment.id, {
            "artifact_checksum": context.package.checksum,
        })

    async def _stage_deploying(self, context: _PipelineContext) -> None:
        target = self.targets.get_target(context.deployment.environment)
        await target.deploy(context.deployment.environment, context.package)

    async def _stage_testing(self, context: _PipelineContext) -> None:
        target = self.targets.get_target(context.deployment.environment)
        if not await target.verify(context.deployment.environment, context.package):
            raise StageFailure("deployed artifact does not match package checksum")

    async def _stage_finalizing(self, context: _PipelineContext) -> None:
        row = await self.db.complete_deployment(context.deployment.id, {
            "status": DeploymentStatus.SUCCEEDED.value,
            "stage": DeploymentStage.FINALIZING.value,
            "progress_percent": 100,
            "completed_at": utcnow(),
        })
        if row is None:
            raise DeploymentCancelled()
        deployment = _to_deployment(row)
        logger.info(
            f"Deployment {deployment.id} succeeded: {deployment.environment.value} now serves "
            f"workflow {deployment.workflow_id} version {deployment.version_number}"
        )
        await self._publish("deployment.upsert", deployment)

    async def _fail(self, deployment_id: str, error_detail: str) -> Optional[Deployment]:
        row = await self.db.update_deployment(deployment_id, {
            "status": DeploymentStatus.FAILED.value,
            "error_detail": error_detail,
            "completed_at": utcnow(),
        })
        if row is None:
            return None
        deployment = _to_deployment(row)
        await self._publish("deployment.upsert", deployment)
        return deployment

    async def _publish(self, event_type: str, deployment: Deployment) -> None:
        try:
            await self.pubsub.publish(SSEEvent(
                type=event_type,
                payload=deployment.model_dump(mode="json"),
                workflow_id=deployment.workflow_id,
                deployment_id=deployment.id,
            ))
        except Exception as sse_error:
            logger.error(f"Failed to publish {event_type} for deployment {deployment.id}: {str(sse_error)}")

    # Control

    async def cancel(self, deployment_id: str) -> Deployment:
        """
        Request cancellation. Observed between stages; terminal deployments are
        returned unchanged.
        """
        deployment = await self.get(deployment_id)
        if deployment.is_terminal:
            return deployment

        run = self._runs.get(deployment_id)
        if run is None:
            # No pipeline in this process owns it
            await self._fail(deployment_id, CANCELLED_DETAIL)
            return await self.get(deployment_id)

        run.cancel_requested.set()
        logger.info(f"Cancellation requested for deployment {deployment_id}")
        try:
            await asyncio.wait_for(run.done.wait(), timeout=settings.DEPLOYMENT_CANCEL_WAIT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning(
                f"Deployment {deployment_id} did not reach a stage boundary within "
                f"{settings.DEPLOYMENT_CANCEL_WAIT_SECONDS}s of cancel request"
            )
        return await self.get(deployment_id)

    async def wait(self, deployment_id: str, timeout: Optional[float] = None) -> Deployment:
        """Wait for a deployment running in this process to reach a terminal state."""
        run = self._runs.get(deployment_id)
        if run is not None:
            await asyncio.wait_for(run.done.wait(), timeout=timeout)
        return await self.get(deployment_id)

    async def recover_interrupted(self) -> int:
        """
        Fail every pending/running deployment that no pipeline in this process owns.
        Run on startup, when any such record was left behind by a crash or restart.
        """
        rows = await self.db.get_deployments(statuses=[s.value for s in NON_TERMINAL_STATUSES])
        recovered = 0
        for row in rows:
            if row["id"] in self._runs:
                continue
            if await self._fail(row["id"], INTERRUPTED_DETAIL):
                recovered += 1
                logger.warning(f"Marked interrupted deployment {row['id']} as failed")
        return recovered

    async def shutdown(self) -> None:
        """Stop in-flight pipelines; their records are recovered on next startup."""
        runs = list(self._runs.values())
        for run in runs:
            if run.task and not run.task.done():
                run.task.cancel()
        for run in runs:
            if run.task:
                try:
                    await run.task
                except asyncio.CancelledError:
                    pass

    # Queries

    async def get(self, deployment_id: str) -> Deployment:
        row = await self.db.get_deployment(deployment_id)
        if not row:
            raise NotFoundError(f"Deployment {deployment_id} not found")
        return _to_deployment(row)

    async def list_deployments(
        self,
        workflow_id: Optional[str] = None,
        environment: Optional[Environment] = None,
        status: Optional[DeploymentStatus] = None
    ) -> List[Deployment]:
        rows = await self.db.get_deployments(
            workflow_id=workflow_id,
            environment=Environment(environment).value if environment else None,
            statuses=[DeploymentStatus(status).value] if status else None,
        )
        return [_to_deployment(row) for row in rows]

    async def get_active_version_id(self, workflow_id: str, environment: Environment) -> Optional[str]:
        """Version currently served by an environment (last succeeded deployment)"""
        pointer = await self.db.get_environment_pointer(workflow_id, Environment(environment).value)
        return pointer["version_id"] if pointer else None

    async def environment_states(self, workflow_id: str) -> List[EnvironmentState]:
        pointers = {p["environment"]: p for p in await self.db.get_environment_pointers(workflow_id)}
        in_progress = {
            row["environment"]: row["id"]
            for row in await self.db.get_deployments(
                workflow_id=workflow_id,
                statuses=[s.value for s in NON_TERMINAL_STATUSES],
            )
        }

        states: List[EnvironmentState] = []
        for environment in PIPELINE:
            pointer = pointers.get(environment.value) or {}
            states.append(EnvironmentState(
                workflow_id=workflow_id,
                environment=environment,
                label=get_label(environment),
                short_label=get_short_label(environment),
                active_version_id=pointer.get("version_id"),
                active_version_number=pointer.get("version_number"),
                active_deployment_id=pointer.get("deployment_id"),
                last_deployed_at=as_utc(pointer.get("deployed_at")),
                in_progress_deployment_id=in_progress.get(environment.value),
            ))
        return states


deployment_coordinator = DeploymentCoordinator()
