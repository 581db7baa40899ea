from fastapi import APIRouter, HTTPException, Depends, status
import logging

from flowops.api.deps import get_promotion_service
from flowops.core.errors import FlowOpsError
from flowops.schemas.promotion import PromotionListResponse, PromotionRequest, PromotionResult

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/workflows/{workflow_id}/promote",
    response_model=PromotionResult,
    status_code=status.HTTP_202_ACCEPTED
)
async def promote_workflow(
    workflow_id: str,
    request: PromotionRequest,
    service=Depends(get_promotion_service)
):
    """
    Promote the version live in `from_environment` to the next environment.

    Returns as soon as the deployment has started; poll the returned
    deployment or subscribe to its SSE stream for progress.
    """
    try:
        return await service.promote(
            workflow_id,
            request.from_environment,
            notes=request.notes,
            author=request.author,
        )
    except HTTPException:
        raise
    except FlowOpsError as e:
        logger.info(f"Promotion rejected for workflow {workflow_id}: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to promote workflow {workflow_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to promote workflow: {str(e)}"
        )


@router.get("/workflows/{workflow_id}/promotions", response_model=PromotionListResponse)
async def get_promotions(workflow_id: str, service=Depends(get_promotion_service)):
    try:
        records = await service.list_promotions(workflow_id)
        return PromotionListResponse(data=records, total=len(records))
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch promotions: {str(e)}"
        )
