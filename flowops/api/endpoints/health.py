"""
Health check endpoint for service status monitoring.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from datetime import datetime, timezone
from typing import Dict, Any
import logging

from flowops.api.deps import get_db_service, get_pubsub

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def health_check(db=Depends(get_db_service), pubsub=Depends(get_pubsub)) -> JSONResponse:
    """
    Health check endpoint.

    Returns:
        - status: "healthy" or "unhealthy"
        - timestamp: Current UTC timestamp
        - services: Status of each service

    Status codes:
        - 200: Database reachable
        - 503: Database unreachable
    """
    checks: Dict[str, Any] = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {}
    }

    try:
        await db.ping()
        checks["services"]["database"] = {"status": "healthy"}
    except Exception as e:
        error_msg = str(e)
        logger.error(f"Database health check failed: {error_msg}")
        checks["services"]["database"] = {
            "status": "unhealthy",
            "error": error_msg
        }
        checks["status"] = "unhealthy"

    checks["services"]["sse"] = {
        "status": "healthy",
        "subscriptions": pubsub.get_subscription_count()
    }

    status_code = 503 if checks["status"] == "unhealthy" else 200
    return JSONResponse(content=checks, status_code=status_code)
