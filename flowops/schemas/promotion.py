from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime

from flowops.core.environments import Environment
from flowops.schemas.deployment import Deployment
from flowops.schemas.workflow import Version


class PromotionRequest(BaseModel):
    from_environment: Environment
    notes: Optional[str] = None
    author: Optional[str] = None


class PromotionRecord(BaseModel):
    id: str
    workflow_id: str
    from_environment: Environment
    to_environment: Environment
    source_version_id: str
    new_version_id: str
    deployment_id: str
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PromotionResult(BaseModel):
    promotion_id: str
    new_version: Version
    deployment: Deployment


class PromotionListResponse(BaseModel):
    data: List[PromotionRecord]
    total: int
