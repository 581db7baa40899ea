"""
Service providers for endpoint dependencies.

Endpoints receive services through these so tests can swap in isolated
instances with `app.dependency_overrides`.
"""
from flowops.services.database import db_service
from flowops.services.deployment_coordinator import deployment_coordinator
from flowops.services.promotion_service import promotion_service
from flowops.services.sse_pubsub_service import sse_pubsub
from flowops.services.version_store import version_store


def get_db_service():
    return db_service


def get_version_store():
    return version_store


def get_deployment_coordinator():
    return deployment_coordinator


def get_promotion_service():
    return promotion_service


def get_pubsub():
    return sse_pubsub
