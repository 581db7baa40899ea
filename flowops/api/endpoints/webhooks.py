"""
Inbound webhook and manual trigger endpoints.

Both only acknowledge the request; running workflows is outside this
service. Bodies must be JSON; anything else is rejected with 422.
Each acknowledgement carries a correlation id that is also logged.
"""
from fastapi import APIRouter, HTTPException, Request, status
from datetime import datetime, timezone
from typing import Any, Dict
from uuid import uuid4
import json
import logging

from flowops.core.errors import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter()


async def _read_payload(request: Request) -> Any:
    body = await request.body()
    try:
        return json.loads(body)
    except ValueError:
        error = ValidationError("Request body must be valid JSON")
        raise HTTPException(status_code=error.status_code, detail=error.to_detail())


@router.post("/webhooks/{webhook_id}", status_code=status.HTTP_202_ACCEPTED)
async def receive_webhook(webhook_id: str, request: Request) -> Dict[str, Any]:
    payload = await _read_payload(request)
    correlation_id = str(uuid4())
    logger.info(
        f"Webhook {webhook_id} received (correlation_id={correlation_id}, "
        f"payload_type={type(payload).__name__})"
    )
    return {
        "success": True,
        "message": "Webhook received and processing started",
        "webhook_id": webhook_id,
        "correlation_id": correlation_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/workflows/{workflow_id}/trigger", status_code=status.HTTP_202_ACCEPTED)
async def trigger_workflow(workflow_id: str, request: Request) -> Dict[str, Any]:
    payload = await _read_payload(request)
    correlation_id = str(uuid4())
    execution_id = f"exec_{uuid4().hex[:12]}"
    logger.info(
        f"Trigger accepted for workflow {workflow_id}: execution {execution_id} "
        f"(correlation_id={correlation_id}, payload_type={type(payload).__name__})"
    )
    return {
        "success": True,
        "workflow_id": workflow_id,
        "execution_id": execution_id,
        "correlation_id": correlation_id,
        "status": "accepted",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
