import logging
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from flowops.core.config import settings
from flowops.core.errors import DeploymentInProgressError

logger = logging.getLogger(__name__)

metadata = sa.MetaData()

workflow_heads = sa.Table(
    "workflow_heads",
    metadata,
    sa.Column("workflow_id", sa.String(255), primary_key=True),
    sa.Column("head_version_id", sa.String(36), nullable=False),
    sa.Column("head_sequence", sa.Integer, nullable=False),
    sa.Column("head_number", sa.String(64), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
)

workflow_versions = sa.Table(
    "workflow_versions",
    metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("workflow_id", sa.String(255), nullable=False, index=True),
    sa.Column("sequence", sa.Integer, nullable=False),
    sa.Column("number", sa.String(64), nullable=False),
    sa.Column("snapshot", sa.JSON, nullable=False),
    sa.Column("author", sa.String(255), nullable=False),
    sa.Column("commit_message", sa.Text, nullable=False, server_default=""),
    sa.Column("parent_version_id", sa.String(36), nullable=True),
    sa.Column("origin", sa.String(20), nullable=False, server_default="commit"),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.UniqueConstraint("workflow_id", "sequence", name="uq_workflow_versions_sequence"),
)

deployments = sa.Table(
    "deployments",
    metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("workflow_id", sa.String(255), nullable=False),
    sa.Column("environment", sa.String(32), nullable=False),
    sa.Column("version_id", sa.String(36), nullable=False),
    sa.Column("version_number", sa.String(64), nullable=False),
    sa.Column("status", sa.String(20), nullable=False),
    sa.Column("stage", sa.String(20), nullable=True),
    sa.Column("progress_percent", sa.Integer, nullable=False, server_default="0"),
    sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("error_detail", sa.Text, nullable=True),
    sa.Column("artifact_checksum", sa.String(64), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    sa.Index("ix_deployments_slot_status", "workflow_id", "environment", "status"),
)

ACTIVE_SLOT_CONDITION = "status IN ('pending', 'running')"

# At most one pending/running deployment per (workflow, environment) slot
sa.Index(
    "uq_deployments_active_slot",
    deployments.c.workflow_id,
    deployments.c.environment,
    unique=True,
    sqlite_where=sa.text(ACTIVE_SLOT_CONDITION),
    postgresql_where=sa.text(ACTIVE_SLOT_CONDITION),
)

environment_pointers = sa.Table(
    "environment_pointers",
    metadata,
    sa.Column("workflow_id", sa.String(255), primary_key=True),
    sa.Column("environment", sa.String(32), primary_key=True),
    sa.Column("version_id", sa.String(36), nullable=False),
    sa.Column("version_number", sa.String(64), nullable=False),
    sa.Column("deployment_id", sa.String(36), nullable=False),
    sa.Column("deployed_at", sa.DateTime(timezone=True), nullable=False),
)

promotions = sa.Table(
    "promotions",
    metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("workflow_id", sa.String(255), nullable=False, index=True),
    sa.Column("from_environment", sa.String(32), nullable=False),
    sa.Column("to_environment", sa.String(32), nullable=False),
    sa.Column("source_version_id", sa.String(36), nullable=False),
    sa.Column("new_version_id", sa.String(36), nullable=False),
    sa.Column("deployment_id", sa.String(36), nullable=False),
    sa.Column("notes", sa.Text, nullable=True),
    sa.Column("created_by", sa.String(255), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
)

NON_TERMINAL_STATUS_VALUES = ("pending", "running")


class HeadMovedError(Exception):
    """Raised inside a commit transaction when the stored head no longer matches."""


class SlotOccupiedError(Exception):
    """Raised inside a transaction when the active-slot index rejects a deployment."""


def _insert_deployment(conn, deployment_data: Dict[str, Any]) -> None:
    try:
        conn.execute(sa.insert(deployments).values(**deployment_data))
    except IntegrityError as e:
        raise SlotOccupiedError(f"{deployment_data['workflow_id']}:{deployment_data['environment']}") from e


def _insert_promotion(conn, promotion_data: Dict[str, Any]) -> None:
    conn.execute(sa.insert(promotions).values(**promotion_data))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _build_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection so every session sees the same in-memory database
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


def _row_to_dict(row) -> Dict[str, Any]:
    return dict(row._mapping) if row is not None else None


class DatabaseService:
    """Service for interacting with the release engine database"""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or settings.DATABASE_URL
        self.engine: Engine = _build_engine(self.database_url)

    def create_tables(self) -> None:
        metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        metadata.drop_all(self.engine)

    async def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(sa.text("SELECT 1"))
        return True

    # Workflow head operations
    async def get_head(self, workflow_id: str) -> Optional[Dict[str, Any]]:
        """Get the head pointer row for a workflow"""
        with self.engine.connect() as conn:
            row = conn.execute(
                sa.select(workflow_heads).where(workflow_heads.c.workflow_id == workflow_id)
            ).first()
        return _row_to_dict(row)

    async def append_version(
        self,
        version_data: Dict[str, Any],
        expected_head_id: Optional[str],
        deployment_data: Optional[Dict[str, Any]] = None,
        promotion_data: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Insert a version and move the workflow head onto it in one transaction.

        The head only moves if it still points at `expected_head_id`
        (compare-and-swap). Returns False when another writer got there first,
        in which case nothing was written.

        A promotion passes its pending deployment and promotion record along so
        that all four writes land together or not at all.

        Raises:
            DeploymentInProgressError: `deployment_data` targets an occupied slot
        """
        now = utcnow()
        head_values = {
            "head_version_id": version_data["id"],
            "head_sequence": version_data["sequence"],
            "head_number": version_data["number"],
            "updated_at": now,
        }
        try:
            with self.engine.begin() as conn:
                if expected_head_id is None:
                    conn.execute(
                        sa.insert(workflow_heads).values(workflow_id=version_data["workflow_id"], **head_values)
                    )
                else:
                    result = conn.execute(
                        sa.update(workflow_heads)
                        .where(workflow_heads.c.workflow_id == version_data["workflow_id"])
                        .where(workflow_heads.c.head_version_id == expected_head_id)
                        .values(**head_values)
                    )
                    if result.rowcount != 1:
                        raise HeadMovedError(version_data["workflow_id"])
                conn.execute(sa.insert(workflow_versions).values(**version_data))
                if deployment_data is not None:
                    _insert_deployment(conn, deployment_data)
                if promotion_data is not None:
                    _insert_promotion(conn, promotion_data)
        except (HeadMovedError, IntegrityError) as e:
            logger.warning(
                f"Head for workflow {version_data['workflow_id']} moved during commit "
                f"(expected {expected_head_id}): {type(e).__name__}"
            )
            return False
        except SlotOccupiedError as e:
            raise await self._slot_occupied(deployment_data) from e
        return True

    # Version operations
    async def get_version(self, version_id: str) -> Optional[Dict[str, Any]]:
        with self.engine.connect() as conn:
            row = conn.execute(
                sa.select(workflow_versions).where(workflow_versions.c.id == version_id)
            ).first()
        return _row_to_dict(row)

    async def get_versions(
        self,
        workflow_id: str,
        limit: int,
        before_sequence: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Get versions for a workflow, newest first"""
        query = sa.select(workflow_versions).where(workflow_versions.c.workflow_id == workflow_id)
        if before_sequence is not None:
            query = query.where(workflow_versions.c.sequence < before_sequence)
        query = query.order_by(workflow_versions.c.sequence.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_dict(row) for row in rows]

    # Deployment operations
    async def create_deployment(self, deployment_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a deployment record.

        Raises:
            DeploymentInProgressError: a pending/running deployment already holds the slot
        """
        try:
            with self.engine.begin() as conn:
                _insert_deployment(conn, deployment_data)
        except SlotOccupiedError as e:
            raise await self._slot_occupied(deployment_data) from e
        return await self.get_deployment(deployment_data["id"])

    async def _slot_occupied(self, deployment_data: Dict[str, Any]) -> DeploymentInProgressError:
        active = await self.get_active_deployment(deployment_data["workflow_id"], deployment_data["environment"])
        active_id = active["id"] if active else None
        logger.warning(
            f"Rejected deployment {deployment_data['id']}: slot "
            f"{deployment_data['workflow_id']}:{deployment_data['environment']} held by {active_id}"
        )
        return DeploymentInProgressError(
            f"Deployment {active_id} is still in progress in {deployment_data['environment']} "
            f"for workflow {deployment_data['workflow_id']}",
            deployment_id=active_id,
        )

    async def get_deployment(self, deployment_id: str) -> Optional[Dict[str, Any]]:
        with self.engine.connect() as conn:
            row = conn.execute(sa.select(deployments).where(deployments.c.id == deployment_id)).first()
        return _row_to_dict(row)

    async def update_deployment(self, deployment_id: str, deployment_data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Update a non-terminal deployment - always updates updated_at timestamp.

        Returns None if the deployment is already terminal; terminal records are never rewritten.
        """
        deployment_data["updated_at"] = utcnow()
        with self.engine.begin() as conn:
            result = conn.execute(
                sa.update(deployments)
                .where(deployments.c.id == deployment_id)
                .where(deployments.c.status.in_(NON_TERMINAL_STATUS_VALUES))
                .values(**deployment_data)
            )
            if result.rowcount != 1:
                return None
        return await self.get_deployment(deployment_id)

    async def complete_deployment(self, deployment_id: str, deployment_data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Mark a deployment succeeded and move its environment pointer in one transaction.
        """
        now = utcnow()
        deployment_data["updated_at"] = now
        with self.engine.begin() as conn:
            row = conn.execute(
                sa.select(deployments)
                .where(deployments.c.id == deployment_id)
                .where(deployments.c.status.in_(NON_TERMINAL_STATUS_VALUES))
            ).first()
            if row is None:
                return None
            deployment = _row_to_dict(row)
            conn.execute(
                sa.update(deployments).where(deployments.c.id == deployment_id).values(**deployment_data)
            )
            pointer_key = (
                (environment_pointers.c.workflow_id == deployment["workflow_id"])
                & (environment_pointers.c.environment == deployment["environment"])
            )
            pointer_values = {
                "version_id": deployment["version_id"],
                "version_number": deployment["version_number"],
                "deployment_id": deployment_id,
                "deployed_at": deployment_data.get("completed_at") or now,
            }
            existing = conn.execute(sa.select(environment_pointers).where(pointer_key)).first()
            if existing is None:
                conn.execute(
                    sa.insert(environment_pointers).values(
                        workflow_id=deployment["workflow_id"],
                        environment=deployment["environment"],
                        **pointer_values
                    )
                )
            else:
                conn.execute(sa.update(environment_pointers).where(pointer_key).values(**pointer_values))
        return await self.get_deployment(deployment_id)

    async def get_deployments(
        self,
        workflow_id: Optional[str] = None,
        environment: Optional[str] = None,
        statuses: Optional[Sequence[str]] = None
    ) -> List[Dict[str, Any]]:
        """Get deployments with optional filtering, newest first"""
        query = sa.select(deployments)
        if workflow_id:
            query = query.where(deployments.c.workflow_id == workflow_id)
        if environment:
            query = query.where(deployments.c.environment == environment)
        if statuses:
            query = query.where(deployments.c.status.in_(list(statuses)))
        query = query.order_by(deployments.c.created_at.desc())
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_dict(row) for row in rows]

    async def get_active_deployment(self, workflow_id: str, environment: str) -> Optional[Dict[str, Any]]:
        """Get the non-terminal deployment holding a workflow's environment slot, if any"""
        rows = await self.get_deployments(
            workflow_id=workflow_id,
            environment=environment,
            statuses=NON_TERMINAL_STATUS_VALUES
        )
        return rows[0] if rows else None

    # Environment pointer operations
    async def get_environment_pointer(self, workflow_id: str, environment: str) -> Optional[Dict[str, Any]]:
        with self.engine.connect() as conn:
            row = conn.execute(
                sa.select(environment_pointers)
                .where(environment_pointers.c.workflow_id == workflow_id)
                .where(environment_pointers.c.environment == environment)
            ).first()
        return _row_to_dict(row)

    async def get_environment_pointers(self, workflow_id: str) -> List[Dict[str, Any]]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                sa.select(environment_pointers).where(environment_pointers.c.workflow_id == workflow_id)
            ).fetchall()
        return [_row_to_dict(row) for row in rows]

    # Promotion operations
    async def get_promotions(self, workflow_id: str) -> List[Dict[str, Any]]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                sa.select(promotions)
                .where(promotions.c.workflow_id == workflow_id)
                .order_by(promotions.c.created_at.desc())
            ).fetchall()
        return [_row_to_dict(row) for row in rows]


db_service = DatabaseService()
