from fastapi import APIRouter, HTTPException, Query, Depends, status
from typing import Optional
import logging

from flowops.api.deps import get_pubsub, get_version_store
from flowops.core.errors import FlowOpsError
from flowops.schemas.workflow import Version, VersionCommitRequest, VersionPage, VersionRestoreRequest
from flowops.services.diff_service import compare_versions
from flowops.services.sse_pubsub_service import SSEEvent

logger = logging.getLogger(__name__)

router = APIRouter()


async def _emit_version_created(pubsub, version: Version) -> None:
    try:
        await pubsub.publish(SSEEvent(
            type="version.created",
            payload=version.model_dump(mode="json"),
            workflow_id=version.workflow_id,
        ))
    except Exception as sse_error:
        logger.error(f"Failed to emit version.created for {version.id}: {str(sse_error)}")


@router.post("/workflows/{workflow_id}/versions", response_model=Version, status_code=status.HTTP_201_CREATED)
async def commit_version(
    workflow_id: str,
    request: VersionCommitRequest,
    store=Depends(get_version_store),
    pubsub=Depends(get_pubsub)
):
    """Commit a snapshot as the workflow's new head version."""
    try:
        version = await store.commit(workflow_id, request.snapshot, request.author, request.message)
        await _emit_version_created(pubsub, version)
        return version
    except HTTPException:
        raise
    except FlowOpsError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to commit version for workflow {workflow_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to commit version: {str(e)}"
        )


@router.get("/workflows/{workflow_id}/versions", response_model=VersionPage)
async def get_version_history(
    workflow_id: str,
    limit: Optional[int] = Query(None, ge=1),
    cursor: Optional[str] = Query(None),
    store=Depends(get_version_store)
):
    """Version history, newest first. Pass `next_cursor` back as `cursor` for the next page."""
    try:
        return await store.history(workflow_id, limit=limit, cursor=cursor)
    except HTTPException:
        raise
    except FlowOpsError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch version history: {str(e)}"
        )


# Must be declared before /versions/{version_id}
@router.get("/versions/diff")
async def diff_versions(
    from_version: str = Query(..., alias="from"),
    to_version: str = Query(..., alias="to"),
    store=Depends(get_version_store)
):
    """Structural change set between two versions of the same workflow."""
    try:
        version_a = await store.get(from_version)
        version_b = await store.get(to_version)
        return compare_versions(version_a, version_b).to_dict()
    except HTTPException:
        raise
    except FlowOpsError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to compare versions: {str(e)}"
        )


@router.get("/versions/{version_id}", response_model=Version)
async def get_version(version_id: str, store=Depends(get_version_store)):
    try:
        return await store.get(version_id)
    except HTTPException:
        raise
    except FlowOpsError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch version: {str(e)}"
        )


@router.post("/versions/{version_id}/restore", response_model=Version, status_code=status.HTTP_201_CREATED)
async def restore_version(
    version_id: str,
    request: Optional[VersionRestoreRequest] = None,
    store=Depends(get_version_store),
    pubsub=Depends(get_pubsub)
):
    """
    Restore an earlier version. History is append-only: the restored snapshot
    becomes a new head version and nothing is rewritten.
    """
    try:
        target = await store.get(version_id)
        author = request.author if request else None
        version = await store.restore(target.workflow_id, version_id, author=author)
        await _emit_version_created(pubsub, version)
        return version
    except HTTPException:
        raise
    except FlowOpsError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to restore version {version_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to restore version: {str(e)}"
        )
