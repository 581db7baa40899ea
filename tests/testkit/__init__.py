"""
Testkit package for Flow Ops tests.

Provides snapshot factories and HTTP-boundary mocks for deployment targets.
"""
from .factories.workflow_factory import WorkflowFactory
from .http_mocks.target_mock import DeploymentTargetHttpMock

__all__ = [
    "WorkflowFactory",
    "DeploymentTargetHttpMock",
]
