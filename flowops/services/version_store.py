"""
Version Store - append-only history of workflow snapshots
"""
from typing import Dict, Any, Optional
import logging
from uuid import uuid4

from flowops.core.config import settings
from flowops.core.errors import ConcurrentModificationError, NotFoundError, ValidationError
from flowops.core.versioning import next_commit_number, SemVer
from flowops.services.database import as_utc, db_service, utcnow
from flowops.services.lock_service import lock_service
from flowops.services.snapshot_validation import validate_snapshot
from flowops.schemas.workflow import Version, VersionOrigin, VersionPage, WorkflowDefinition

logger = logging.getLogger(__name__)

HEAD_LOCK = "workflow_head"


def _to_version(row: Dict[str, Any]) -> Version:
    # Rebuilt from the stored row on every read so callers never share state
    return Version(
        id=row["id"],
        workflow_id=row["workflow_id"],
        number=row["number"],
        sequence=row["sequence"],
        snapshot=WorkflowDefinition.model_validate(row["snapshot"]),
        author=row["author"],
        created_at=as_utc(row["created_at"]),
        parent_version_id=row.get("parent_version_id"),
        commit_message=row.get("commit_message") or "",
        origin=VersionOrigin(row.get("origin") or VersionOrigin.COMMIT.value),
    )


def _encode_cursor(sequence: int) -> str:
    return str(sequence)


def _decode_cursor(cursor: Optional[str]) -> Optional[int]:
    if cursor is None or cursor == "":
        return None
    try:
        value = int(cursor)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid history cursor '{cursor}'")
    if value < 1:
        raise ValidationError(f"Invalid history cursor '{cursor}'")
    return value


class VersionStore:
    """Sole writer of Version records and workflow head pointers"""

    def __init__(self, db=None, locks=None):
        self.db = db or db_service
        self.locks = locks or lock_service

    async def commit(
        self,
        workflow_id: str,
        snapshot: WorkflowDefinition,
        author: str,
        message: str = ""
    ) -> Version:
        """
        Create a new version from `snapshot` on top of the workflow's head.

        Raises:
            ValidationError: snapshot is structurally invalid (nothing is written)
            ConcurrentModificationError: head kept moving across all retries
        """
        validate_snapshot(snapshot)
        if not author:
            raise ValidationError("author is required")

        version = await self._append(
            workflow_id=workflow_id,
            snapshot=snapshot,
            author=author,
            message=message,
            origin=VersionOrigin.COMMIT,
        )
        logger.info(f"Committed version {version.number} ({version.id}) for workflow {workflow_id} by {author}")
        return version

    async def get(self, version_id: str) -> Version:
        row = await self.db.get_version(version_id)
        if not row:
            raise NotFoundError(f"Version {version_id} not found")
        return _to_version(row)

    async def head(self, workflow_id: str) -> Optional[Version]:
        head = await self.db.get_head(workflow_id)
        if not head:
            return None
        return await self.get(head["head_version_id"])

    async def history(
        self,
        workflow_id: str,
        limit: Optional[int] = None,
        cursor: Optional[str] = None
    ) -> VersionPage:
        """
        Page through a workflow's versions, newest first.

        `cursor` is the `next_cursor` of the previous page; the last page has
        no `next_cursor`.
        """
        limit = limit or settings.HISTORY_DEFAULT_LIMIT
        limit = max(1, min(limit, settings.HISTORY_MAX_LIMIT))
        before_sequence = _decode_cursor(cursor)

        # Fetch one extra row to know whether another page exists
        rows = await self.db.get_versions(workflow_id, limit + 1, before_sequence)
        has_more = len(rows) > limit
        rows = rows[:limit]
        next_cursor = _encode_cursor(rows[-1]["sequence"]) if has_more and rows else None
        return VersionPage(data=[_to_version(row) for row in rows], next_cursor=next_cursor)

    async def restore(self, workflow_id: str, version_id: str, author: Optional[str] = None) -> Version:
        """
        Restore is itself a commit: a new head version carrying the target's snapshot.
        """
        target = await self.get(version_id)
        if target.workflow_id != workflow_id:
            raise ValidationError(
                f"Version {version_id} belongs to workflow {target.workflow_id}, not {workflow_id}"
            )

        version = await self._append(
            workflow_id=workflow_id,
            snapshot=target.snapshot,
            author=author or target.author,
            message=f"Restored from version {target.number}",
            origin=VersionOrigin.RESTORE,
        )
        logger.info(f"Restored workflow {workflow_id} to {target.number} as new version {version.number} ({version.id})")
        return version

    async def record_promotion(
        self,
        source: Version,
        number: SemVer,
        author: str,
        message: str,
        version_id: Optional[str] = None,
        deployment_data: Optional[Dict[str, Any]] = None,
        promotion_data: Optional[Dict[str, Any]] = None
    ) -> Version:
        """
        Append a promoted copy of `source` with an explicit number, parented on `source`.

        `deployment_data` and `promotion_data` are written in the same
        transaction as the version; if any write fails none of them persist.
        Callers that pass them must also pass the `version_id` they reference.
        """
        version = await self._append(
            workflow_id=source.workflow_id,
            snapshot=source.snapshot,
            author=author,
            message=message,
            origin=VersionOrigin.PROMOTION,
            number=str(number),
            parent_version_id=source.id,
            version_id=version_id,
            deployment_data=deployment_data,
            promotion_data=promotion_data,
        )
        logger.info(
            f"Recorded promoted version {version.number} ({version.id}) "
            f"for workflow {source.workflow_id} from {source.number}"
        )
        return version

    async def _append(
        self,
        workflow_id: str,
        snapshot: WorkflowDefinition,
        author: str,
        message: str,
        origin: VersionOrigin,
        number: Optional[str] = None,
        parent_version_id: Optional[str] = None,
        version_id: Optional[str] = None,
        deployment_data: Optional[Dict[str, Any]] = None,
        promotion_data: Optional[Dict[str, Any]] = None
    ) -> Version:
        snapshot_data = snapshot.model_dump(mode="json")

        async with self.locks.acquire(workflow_id, lock_type=HEAD_LOCK):
            for attempt in range(1, settings.COMMIT_MAX_RETRIES + 1):
                head = await self.db.get_head(workflow_id)
                expected_head_id = head["head_version_id"] if head else None
                version_data = {
                    "id": version_id or str(uuid4()),
                    "workflow_id": workflow_id,
                    "sequence": (head["head_sequence"] + 1) if head else 1,
                    "number": number or next_commit_number(head["head_number"] if head else None),
                    "snapshot": snapshot_data,
                    "author": author,
                    "commit_message": message or "",
                    "parent_version_id": parent_version_id or expected_head_id,
                    "origin": origin.value,
                    "created_at": utcnow(),
                }
                if await self.db.append_version(
                    version_data,
                    expected_head_id,
                    deployment_data=deployment_data,
                    promotion_data=promotion_data,
                ):
                    return _to_version(version_data)
                logger.info(f"Retrying commit for workflow {workflow_id} on new head (attempt {attempt})")

        raise ConcurrentModificationError(
            f"Workflow {workflow_id} head changed {settings.COMMIT_MAX_RETRIES} times during commit"
        )


version_store = VersionStore()
