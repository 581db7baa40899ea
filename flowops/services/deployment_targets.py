"""
Deployment targets - where packaged workflow versions are shipped to.

Each environment resolves to a target through TargetRegistry: an HTTP
endpoint when one is configured in DEPLOY_TARGET_URLS, otherwise an
in-process target that keeps the packages it receives.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from flowops.core.config import settings
from flowops.core.environments import Environment

logger = logging.getLogger(__name__)


@dataclass
class DeploymentPackage:
    """A version packaged for shipping"""
    deployment_id: str
    workflow_id: str
    version_id: str
    version_number: str
    checksum: str
    payload: str  # canonical JSON of the snapshot

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "workflow_id": self.workflow_id,
            "version_id": self.version_id,
            "version_number": self.version_number,
            "checksum": self.checksum,
            "snapshot": json.loads(self.payload),
        }


class DeploymentTarget:
    """Base interface for deployment targets"""

    async def deploy(self, environment: Environment, package: DeploymentPackage) -> None:
        raise NotImplementedError

    async def verify(self, environment: Environment, package: DeploymentPackage) -> bool:
        raise NotImplementedError


class InMemoryDeploymentTarget(DeploymentTarget):
    """Keeps the latest package per (environment, workflow)"""

    def __init__(self):
        self.packages: Dict[str, DeploymentPackage] = {}

    def _key(self, environment: Environment, workflow_id: str) -> str:
        return f"{Environment(environment).value}:{workflow_id}"

    async def deploy(self, environment: Environment, package: DeploymentPackage) -> None:
        self.packages[self._key(environment, package.workflow_id)] = package
        logger.info(
            f"Deployed workflow {package.workflow_id} version {package.version_number} "
            f"to {Environment(environment).value} (in-memory target)"
        )

    async def verify(self, environment: Environment, package: DeploymentPackage) -> bool:
        deployed = self.packages.get(self._key(environment, package.workflow_id))
        return deployed is not None and deployed.checksum == package.checksum

    def deployed_package(self, environment: Environment, workflow_id: str) -> Optional[DeploymentPackage]:
        return self.packages.get(self._key(environment, workflow_id))


class HttpDeploymentTarget(DeploymentTarget):
    """Ships packages to a remote runtime over HTTP"""

    def __init__(self, base_url: str, timeout: Optional[float] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or settings.DEPLOY_TARGET_TIMEOUT_SECONDS
        self.headers = {"Content-Type": "application/json"}

    async def deploy(self, environment: Environment, package: DeploymentPackage) -> None:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{self.base_url}/workflows/{package.workflow_id}/deployments",
                headers=self.headers,
                json={"environment": Environment(environment).value, **package.to_dict()},
                timeout=self.timeout
            )
            response.raise_for_status()

    async def verify(self, environment: Environment, package: DeploymentPackage) -> bool:
        async with httpx.AsyncClient() as client:
            response = await client.get(
                f"{self.base_url}/workflows/{package.workflow_id}/deployments/current",
                headers=self.headers,
                timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
            return data.get("checksum") == package.checksum


class TargetRegistry:
    """Resolves the deployment target for an environment"""

    def __init__(self, target_urls: Optional[Dict[str, str]] = None, fallback: Optional[DeploymentTarget] = None):
        self.target_urls = target_urls if target_urls is not None else dict(settings.DEPLOY_TARGET_URLS)
        self.fallback = fallback or InMemoryDeploymentTarget()
        self._targets: Dict[str, DeploymentTarget] = {}

    def register(self, environment: Environment, target: DeploymentTarget) -> None:
        self._targets[Environment(environment).value] = target

    def get_target(self, environment: Environment) -> DeploymentTarget:
        key = Environment(environment).value
        if key in self._targets:
            return self._targets[key]
        url = self.target_urls.get(key)
        if url:
            target = self._targets[key] = HttpDeploymentTarget(url)
            return target
        return self.fallback


target_registry = TargetRegistry()
