"""
Server-Sent Events endpoints for real-time deployment updates.
"""
import asyncio
import json
import logging

from fastapi import APIRouter, HTTPException, Request, Depends
from fastapi.responses import StreamingResponse

from flowops.api.deps import get_deployment_coordinator, get_pubsub
from flowops.core.errors import FlowOpsError
from flowops.schemas.deployment import TERMINAL_STATUSES
from flowops.services.sse_pubsub_service import SSEEvent

logger = logging.getLogger(__name__)

router = APIRouter()

KEEPALIVE_INTERVAL = 15  # seconds

_TERMINAL_VALUES = {s.value for s in TERMINAL_STATUSES}


def _format_sse_message(event_type: str, data: dict, event_id: str) -> str:
    """Format a message for SSE protocol."""
    lines = []
    lines.append(f"event: {event_type}")
    lines.append(f"id: {event_id}")
    lines.append(f"data: {json.dumps(data)}")
    lines.append("")
    lines.append("")
    return "\n".join(lines)


def _format_keepalive() -> str:
    return ": keepalive\n\n"


@router.get("/deployments/{deployment_id}")
async def sse_deployment_stream(
    deployment_id: str,
    request: Request,
    coordinator=Depends(get_deployment_coordinator),
    pubsub=Depends(get_pubsub)
):
    """
    SSE stream for one deployment.

    On connect: sends a snapshot of the deployment.
    After: streams deployment.progress / deployment.upsert events and closes
    once the deployment reaches a terminal status.
    """
    try:
        await coordinator.get(deployment_id)
    except FlowOpsError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())

    async def event_generator():
        subscription_id = None
        try:
            # Subscribe before the snapshot so no transition falls between them
            subscription_id = await pubsub.subscribe(f"deployment:{deployment_id}")
            logger.info(f"SSE client connected for deployment {deployment_id}: {subscription_id}")

            current = await coordinator.get(deployment_id)
            snapshot = current.model_dump(mode="json")
            snapshot_event = SSEEvent(type="snapshot", payload=snapshot, deployment_id=deployment_id)
            yield _format_sse_message("snapshot", snapshot, snapshot_event.event_id)
            if current.is_terminal:
                return

            while True:
                if await request.is_disconnected():
                    logger.info(f"SSE client disconnected: {subscription_id}")
                    break

                event = await pubsub.next_event(subscription_id, timeout=KEEPALIVE_INTERVAL)
                if event is None:
                    yield _format_keepalive()
                    continue

                yield _format_sse_message(event.type, event.payload, event.event_id)
                if event.payload.get("status") in _TERMINAL_VALUES:
                    break

        except asyncio.CancelledError:
            logger.info(f"SSE stream cancelled: {subscription_id}")
        except Exception as e:
            logger.error(f"SSE stream error: {e}")
        finally:
            if subscription_id:
                await pubsub.unsubscribe(subscription_id)
                logger.info(f"SSE subscription cleaned up: {subscription_id}")

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        }
    )
