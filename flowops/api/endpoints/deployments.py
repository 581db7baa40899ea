from fastapi import APIRouter, HTTPException, Query, Depends, status
from typing import List, Optional
import logging

from flowops.api.deps import get_deployment_coordinator
from flowops.core.environments import Environment
from flowops.core.errors import FlowOpsError
from flowops.schemas.deployment import (
    Deployment,
    DeploymentCreateRequest,
    DeploymentListResponse,
    DeploymentStatus,
    EnvironmentState,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/deployments", response_model=Deployment, status_code=status.HTTP_202_ACCEPTED)
async def create_deployment(
    request: DeploymentCreateRequest,
    coordinator=Depends(get_deployment_coordinator)
):
    """Deploy a version into an environment. Runs in the background."""
    try:
        return await coordinator.deploy(request.environment, request.version_id)
    except HTTPException:
        raise
    except FlowOpsError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to start deployment of {request.version_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to start deployment: {str(e)}"
        )


@router.get("/deployments", response_model=DeploymentListResponse)
async def get_deployments(
    workflow_id: Optional[str] = Query(None),
    environment: Optional[Environment] = Query(None),
    status_filter: Optional[DeploymentStatus] = Query(None, alias="status"),
    coordinator=Depends(get_deployment_coordinator)
):
    try:
        deployments = await coordinator.list_deployments(
            workflow_id=workflow_id,
            environment=environment,
            status=status_filter,
        )
        return DeploymentListResponse(deployments=deployments, total=len(deployments))
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch deployments: {str(e)}"
        )


@router.get("/deployments/{deployment_id}", response_model=Deployment)
async def get_deployment(deployment_id: str, coordinator=Depends(get_deployment_coordinator)):
    try:
        return await coordinator.get(deployment_id)
    except HTTPException:
        raise
    except FlowOpsError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch deployment: {str(e)}"
        )


@router.post("/deployments/{deployment_id}/cancel", response_model=Deployment)
async def cancel_deployment(deployment_id: str, coordinator=Depends(get_deployment_coordinator)):
    """
    Request cancellation. The deployment stops at its next stage boundary;
    already-terminal deployments are returned unchanged.
    """
    try:
        return await coordinator.cancel(deployment_id)
    except HTTPException:
        raise
    except FlowOpsError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to cancel deployment {deployment_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to cancel deployment: {str(e)}"
        )


@router.get("/workflows/{workflow_id}/environments", response_model=List[EnvironmentState])
async def get_environment_states(workflow_id: str, coordinator=Depends(get_deployment_coordinator)):
    """Live version and in-flight deployment per environment, in pipeline order."""
    try:
        return await coordinator.environment_states(workflow_id)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch environment states: {str(e)}"
        )
