from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime
from enum import Enum

from flowops.core.environments import Environment


class DeploymentStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


NON_TERMINAL_STATUSES = (DeploymentStatus.PENDING, DeploymentStatus.RUNNING)
TERMINAL_STATUSES = (DeploymentStatus.SUCCEEDED, DeploymentStatus.FAILED)


class DeploymentStage(str, Enum):
    VALIDATING = "validating"
    PACKAGING = "packaging"
    DEPLOYING = "deploying"
    TESTING = "testing"
    FINALIZING = "finalizing"


class Deployment(BaseModel):
    id: str
    workflow_id: str
    environment: Environment
    version_id: str
    version_number: str
    status: DeploymentStatus = DeploymentStatus.PENDING
    stage: Optional[DeploymentStage] = None
    progress_percent: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_detail: Optional[str] = None
    artifact_checksum: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class DeploymentCreateRequest(BaseModel):
    environment: Environment
    version_id: str


class DeploymentListResponse(BaseModel):
    deployments: List[Deployment]
    total: int


class EnvironmentState(BaseModel):
    """Where a workflow currently stands in one environment."""
    workflow_id: str
    environment: Environment
    label: str
    short_label: str
    active_version_id: Optional[str] = None
    active_version_number: Optional[str] = None
    active_deployment_id: Optional[str] = None
    last_deployed_at: Optional[datetime] = None
    in_progress_deployment_id: Optional[str] = None
