"""
Promotion Service - moves a workflow's live version one step along the
environment pipeline (development -> ete -> qa -> production).
"""
from typing import List, Optional
import logging
from uuid import uuid4

from flowops.core.environments import Environment, get_short_label, next_environment
from flowops.core.errors import NoActiveDeploymentError, TerminalEnvironmentError
from flowops.core.versioning import SemVer, bump_for_environment
from flowops.schemas.promotion import PromotionRecord, PromotionResult
from flowops.services.database import as_utc, db_service, utcnow
from flowops.services.deployment_coordinator import deployment_coordinator
from flowops.services.version_store import version_store

logger = logging.getLogger(__name__)


class PromotionService:
    """Service for gated promotions between pipeline environments"""

    def __init__(self, db=None, store=None, coordinator=None):
        self.db = db or db_service
        self.store = store or version_store
        self.coordinator = coordinator or deployment_coordinator

    async def promote(
        self,
        workflow_id: str,
        from_environment: Environment,
        notes: Optional[str] = None,
        author: Optional[str] = None
    ) -> PromotionResult:
        """
        Promote the version live in `from_environment` into the next environment.

        The promoted copy gets a bumped number and is parented on the source
        version; its deployment runs in the background and is returned as a handle.

        Raises:
            TerminalEnvironmentError: `from_environment` is the last environment
            NoActiveDeploymentError: nothing has been deployed to `from_environment`
            DeploymentInProgressError: the target environment is busy
        """
        from_environment = Environment(from_environment)
        to_environment = next_environment(from_environment)
        if to_environment is None:
            raise TerminalEnvironmentError(
                f"Cannot promote from {get_short_label(from_environment)}: it is the final environment"
            )

        source_version_id = await self.coordinator.get_active_version_id(workflow_id, from_environment)
        if not source_version_id:
            raise NoActiveDeploymentError(
                f"Workflow {workflow_id} has no active deployment in {get_short_label(from_environment)}"
            )
        source = await self.store.get(source_version_id)
        new_number = bump_for_environment(SemVer.parse(source.number), to_environment)
        created_by = author or source.author

        # Version, head move, pending deployment and promotion record commit
        # together; nothing is written unless the target slot is free
        async with self.coordinator.reserve_slot(workflow_id, to_environment):
            new_version_id = str(uuid4())
            deployment_record = self.coordinator.new_deployment_record(
                to_environment, workflow_id, new_version_id, str(new_number)
            )
            promotion_id = str(uuid4())
            new_version = await self.store.record_promotion(
                source,
                new_number,
                author=created_by,
                message=notes or (
                    f"Promoted {source.number} from {get_short_label(from_environment)} "
                    f"to {get_short_label(to_environment)}"
                ),
                version_id=new_version_id,
                deployment_data=deployment_record,
                promotion_data={
                    "id": promotion_id,
                    "workflow_id": workflow_id,
                    "from_environment": from_environment.value,
                    "to_environment": to_environment.value,
                    "source_version_id": source.id,
                    "new_version_id": new_version_id,
                    "deployment_id": deployment_record["id"],
                    "notes": notes,
                    "created_by": created_by,
                    "created_at": utcnow(),
                },
            )

        deployment = await self.coordinator.start(deployment_record["id"], new_version)

        logger.info(
            f"Promotion {promotion_id}: workflow {workflow_id} {source.number} "
            f"{from_environment.value} -> {to_environment.value} as {new_version.number}, "
            f"deployment {deployment.id}"
        )
        return PromotionResult(promotion_id=promotion_id, new_version=new_version, deployment=deployment)

    async def list_promotions(self, workflow_id: str) -> List[PromotionRecord]:
        rows = await self.db.get_promotions(workflow_id)
        records = []
        for row in rows:
            row = dict(row)
            row["created_at"] = as_utc(row["created_at"])
            records.append(PromotionRecord.model_validate(row))
        return records


promotion_service = PromotionService()
