"""Subscription registry and event fan-out.

A subscription is open from :meth:`SubscriptionManager.subscribe` until it is
closed by an explicit unsubscribe, a failed write, or its sink ending. There
are no other states. Publishing is fire-and-forget: a broken sink is dropped
and the broadcast carries on.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from lavs.errors import LAVSError, LAVSErrorCode
from lavs.subscriptions.sinks import SubscriptionSink, encode_comment, encode_event

logger = logging.getLogger(__name__)


class SubscriptionEvent(BaseModel):
    """Event pushed to subscribers."""

    type: str = Field(..., description="Event type, sent as the SSE event name")
    data: Any = Field(None, description="Event payload")
    timestamp: str | None = Field(None, description="ISO-8601 time, filled in on publish")


@dataclass
class Subscription:
    """An open push channel for one agent endpoint."""

    id: str
    agent_id: str
    endpoint_id: str
    sink: SubscriptionSink
    created_at: int  # epoch milliseconds

    def summary(self) -> dict[str, Any]:
        return {"id": self.id, "endpointId": self.endpoint_id, "createdAt": self.created_at}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SubscriptionManager:
    """Holds open subscriptions and fans events out to them.

    A heartbeat task writes an SSE comment to every sink each
    ``heartbeat_interval`` seconds; it is the only way half-closed
    connections are noticed. The task starts with :meth:`start`, or on the
    first subscribe made from inside a running event loop.

    Args:
        max_subscriptions: Cap on concurrently open subscriptions
        heartbeat_interval: Seconds between heartbeats
    """

    def __init__(self, max_subscriptions: int = 100, heartbeat_interval: float = 30.0) -> None:
        self.max_subscriptions = max_subscriptions
        self.heartbeat_interval = heartbeat_interval
        self._subscriptions: dict[str, Subscription] = {}
        self._heartbeat_task: asyncio.Task[None] | None = None

    @property
    def active_count(self) -> int:
        """Number of open subscriptions."""
        return len(self._subscriptions)

    @property
    def heartbeat_running(self) -> bool:
        return self._heartbeat_task is not None and not self._heartbeat_task.done()

    def start(self) -> None:
        """Start the heartbeat task on the running event loop."""
        if self.heartbeat_running:
            return
        loop = asyncio.get_running_loop()
        self._heartbeat_task = loop.create_task(self._run_heartbeat())

    async def _run_heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            self.send_heartbeats()

    def send_heartbeats(self) -> int:
        """Probe every sink, removing ended or failing ones.

        Returns:
            Number of subscriptions removed
        """
        removed = 0
        frame = encode_comment("heartbeat")
        for sub_id, sub in list(self._subscriptions.items()):
            if sub.sink.ended:
                self._drop(sub_id, "sink_ended")
                removed += 1
                continue
            try:
                sub.sink.write(frame)
            except Exception as e:
                logger.debug("Heartbeat failed for subscription %s: %s", sub_id, e)
                self._drop(sub_id, "heartbeat_failed")
                removed += 1
        return removed

    def subscribe(self, agent_id: str, endpoint_id: str, sink: SubscriptionSink) -> str:
        """Open a subscription and send the ``connected`` frame.

        Returns:
            Subscription id

        Raises:
            LAVSError: CapacityExceeded when the subscription cap is reached,
                InvalidRequest when the sink is closed or its first write fails
        """
        if len(self._subscriptions) >= self.max_subscriptions:
            raise LAVSError(
                LAVSErrorCode.CAPACITY_EXCEEDED,
                f"Maximum subscriptions limit reached ({self.max_subscriptions}). "
                "Close existing subscriptions before opening new ones.",
                {"maxSubscriptions": self.max_subscriptions},
            )
        if sink.ended:
            raise LAVSError(LAVSErrorCode.INVALID_REQUEST, "Subscription sink is already closed")

        subscription_id = str(uuid.uuid4())
        try:
            sink.write(
                encode_event(
                    {
                        "subscriptionId": subscription_id,
                        "agentId": agent_id,
                        "endpointId": endpoint_id,
                        "message": "Subscription active",
                        "timestamp": _now_iso(),
                    },
                    event="connected",
                )
            )
        except Exception as e:
            logger.debug("Connected frame failed for %s/%s: %s", agent_id, endpoint_id, e)
            sink.end()
            raise LAVSError(
                LAVSErrorCode.INVALID_REQUEST,
                "Subscription sink is closed",
                {"reason": str(e)},
            ) from e

        self._subscriptions[subscription_id] = Subscription(
            id=subscription_id,
            agent_id=agent_id,
            endpoint_id=endpoint_id,
            sink=sink,
            created_at=int(time.time() * 1000),
        )
        sink.on_close(lambda: self._drop(subscription_id, "client_closed"))

        with contextlib.suppress(RuntimeError):
            self.start()

        logger.info(
            "Subscription %s created for %s/%s (%d active)",
            subscription_id,
            agent_id,
            endpoint_id,
            len(self._subscriptions),
        )
        return subscription_id

    def unsubscribe(self, subscription_id: str, reason: str = "unsubscribed") -> bool:
        """Close a subscription, sending ``disconnected`` first.

        Returns:
            True if the subscription existed
        """
        sub = self._subscriptions.get(subscription_id)
        if sub is None:
            return False

        if not sub.sink.ended:
            try:
                sub.sink.write(encode_event({"reason": reason, "timestamp": _now_iso()}, "disconnected"))
            except Exception as e:
                logger.debug("Could not send disconnect to %s: %s", subscription_id, e)
        self._drop(subscription_id, reason)
        return True

    def _drop(self, subscription_id: str, reason: str) -> None:
        sub = self._subscriptions.pop(subscription_id, None)
        if sub is None:
            return
        try:
            sub.sink.end()
        except Exception as e:
            logger.debug("Error ending sink for %s: %s", subscription_id, e)
        logger.info(
            "Subscription %s removed for %s/%s (%s, %d active)",
            subscription_id,
            sub.agent_id,
            sub.endpoint_id,
            reason,
            len(self._subscriptions),
        )

    def publish(
        self,
        agent_id: str,
        endpoint_id: str,
        event: SubscriptionEvent | dict[str, Any],
    ) -> int:
        """Push an event to every subscriber of one agent endpoint.

        Returns:
            Number of subscribers notified
        """
        return self._broadcast(
            event,
            lambda sub: sub.agent_id == agent_id and sub.endpoint_id == endpoint_id,
        )

    def publish_to_agent(self, agent_id: str, event: SubscriptionEvent | dict[str, Any]) -> int:
        """Push an event to every subscriber of an agent, whatever the endpoint.

        Returns:
            Number of subscribers notified
        """
        return self._broadcast(event, lambda sub: sub.agent_id == agent_id)

    def _broadcast(self, event: SubscriptionEvent | dict[str, Any], matches: Any) -> int:
        if not isinstance(event, SubscriptionEvent):
            try:
                event = SubscriptionEvent.model_validate(event)
            except ValidationError as e:
                raise LAVSError(
                    LAVSErrorCode.INVALID_PARAMS,
                    "Subscription event must be an object with a 'type' field",
                ) from e

        payload = event.model_dump()
        payload["timestamp"] = event.timestamp or _now_iso()

        count = 0
        for sub_id, sub in list(self._subscriptions.items()):
            if not matches(sub):
                continue
            if sub.sink.ended:
                self._drop(sub_id, "sink_ended")
                continue
            try:
                sub.sink.write(encode_event(payload, event=event.type, event_id=sub_id))
            except Exception as e:
                logger.debug("Dropping subscription %s after failed write: %s", sub_id, e)
                self._drop(sub_id, "write_failed")
                continue
            count += 1
        return count

    def get_subscriptions_for_agent(self, agent_id: str) -> list[dict[str, Any]]:
        """List open subscriptions of an agent."""
        return [sub.summary() for sub in self._subscriptions.values() if sub.agent_id == agent_id]

    def get(self, subscription_id: str) -> Subscription | None:
        return self._subscriptions.get(subscription_id)

    def destroy(self) -> None:
        """Stop heartbeats and close every subscription (process shutdown)."""
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        for subscription_id in list(self._subscriptions):
            self.unsubscribe(subscription_id, reason="server_shutdown")

    async def aclose(self) -> None:
        """Like :meth:`destroy`, also waiting for the heartbeat task to finish."""
        task = self._heartbeat_task
        self.destroy()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
