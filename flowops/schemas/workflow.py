from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from datetime import datetime
from enum import Enum


class Position(BaseModel):
    x: float = 0
    y: float = 0


class Node(BaseModel):
    id: str
    type: str
    position: Position = Field(default_factory=Position)
    config: Dict[str, Any] = Field(default_factory=dict)
    name: Optional[str] = None


class Edge(BaseModel):
    id: str
    source: str
    target: str
    type: str = "default"
    config: Dict[str, Any] = Field(default_factory=dict)


class WorkflowDefinition(BaseModel):
    """A complete, self-contained workflow snapshot."""
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    config: Dict[str, Any] = Field(default_factory=dict)


class VersionOrigin(str, Enum):
    COMMIT = "commit"
    RESTORE = "restore"
    PROMOTION = "promotion"


class Version(BaseModel):
    id: str
    workflow_id: str
    number: str
    sequence: int
    snapshot: WorkflowDefinition
    author: str
    created_at: datetime
    parent_version_id: Optional[str] = None
    commit_message: str = ""
    origin: VersionOrigin = VersionOrigin.COMMIT

    class Config:
        from_attributes = True
        frozen = True


class VersionCommitRequest(BaseModel):
    snapshot: WorkflowDefinition
    author: str = Field(..., min_length=1)
    message: str = ""


class VersionRestoreRequest(BaseModel):
    author: Optional[str] = None


class VersionPage(BaseModel):
    data: List[Version]
    next_cursor: Optional[str] = None
