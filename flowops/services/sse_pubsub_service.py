"""
SSE Pub/Sub Service for real-time deployment updates.

Provides an in-memory asyncio-based pub/sub mechanism for SSE event streaming.
Supports scope-based filtering:
- "deployments": every deployment event
- "deployment:{deployment_id}": events for one deployment
- "workflow:{workflow_id}": deployment and version events for one workflow
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, AsyncGenerator
from uuid import uuid4
import logging

logger = logging.getLogger(__name__)

SCOPE_ALL_DEPLOYMENTS = "deployments"


@dataclass
class SSEEvent:
    """SSE event envelope with routing metadata."""
    type: str  # Event type: snapshot, deployment.upsert, deployment.progress, version.created
    payload: dict
    event_id: str = field(default_factory=lambda: str(uuid4()))
    ts: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    workflow_id: Optional[str] = None
    deployment_id: Optional[str] = None


@dataclass
class Subscription:
    """A client subscription to SSE events."""
    id: str
    scope: str
    queue: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=100))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def _scope_value(self, prefix: str) -> Optional[str]:
        if self.scope.startswith(prefix):
            return self.scope.split(":", 1)[1]
        return None

    @property
    def deployment_id(self) -> Optional[str]:
        return self._scope_value("deployment:")

    @property
    def workflow_id(self) -> Optional[str]:
        return self._scope_value("workflow:")

    def matches(self, event: SSEEvent) -> bool:
        if self.scope == SCOPE_ALL_DEPLOYMENTS:
            return event.type.startswith("deployment.")
        if self.deployment_id is not None:
            return event.deployment_id == self.deployment_id
        if self.workflow_id is not None:
            return event.workflow_id == self.workflow_id
        return False


class SSEPubSubService:
    """
    In-memory pub/sub service for SSE event distribution.

    Backpressure: when a subscriber's queue is full the oldest event is dropped.
    """

    def __init__(self):
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = asyncio.Lock()

    async def subscribe(self, scope: str) -> str:
        subscription_id = str(uuid4())
        subscription = Subscription(id=subscription_id, scope=scope)

        async with self._lock:
            self._subscriptions[subscription_id] = subscription

        logger.info(f"SSE subscription created: {subscription_id} (scope={scope})")
        return subscription_id

    async def unsubscribe(self, subscription_id: str) -> None:
        """Remove a subscription."""
        async with self._lock:
            if subscription_id in self._subscriptions:
                del self._subscriptions[subscription_id]
                logger.info(f"SSE subscription removed: {subscription_id}")

    async def publish(self, event: SSEEvent) -> None:
        """Publish an event to all matching subscriptions."""
        async with self._lock:
            subscriptions = list(self._subscriptions.values())

        for sub in subscriptions:
            if not sub.matches(event):
                continue

            if sub.queue.full():
                try:
                    sub.queue.get_nowait()
                    logger.warning(f"SSE queue full for {sub.id}, dropped oldest event")
                except asyncio.QueueEmpty:
                    pass
            sub.queue.put_nowait(event)

    async def next_event(self, subscription_id: str, timeout: float = 5.0) -> Optional[SSEEvent]:
        """
        Wait up to `timeout` seconds for the next event.

        Returns None on timeout (callers use this to send keepalives) or if the
        subscription does not exist.
        """
        subscription = self._subscriptions.get(subscription_id)
        if not subscription:
            return None
        try:
            return await asyncio.wait_for(subscription.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def get_events(self, subscription_id: str) -> AsyncGenerator[SSEEvent, None]:
        """Async generator that yields events for a subscription until it is removed."""
        while subscription_id in self._subscriptions:
            event = await self.next_event(subscription_id)
            if event is not None:
                yield event

    def get_subscription_count(self) -> int:
        """Get number of active subscriptions."""
        return len(self._subscriptions)


# Singleton instance
sse_pubsub = SSEPubSubService()
