"""
NATS JetStream Client for the Billing Engine

Provides event-driven communication between the billing and payment services
and the rest of the platform, on top of nats-py JetStream.
"""

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import nats
from nats.aio.client import Client as NATS
from nats.js import JetStreamContext

from core.config import InfraConfig


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that keeps Decimal money exact by emitting strings"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


logger = logging.getLogger(__name__)


class EventType(Enum):
    """Billing event types"""

    # Invoice Events
    INVOICE_CREATED = "billing.invoice.created"
    INVOICE_PAID = "billing.invoice.paid"
    INVOICE_VOIDED = "billing.invoice.voided"
    INVOICE_OVERDUE = "billing.invoice.overdue"

    # Credit Events
    CREDIT_APPLIED = "billing.credit.applied"

    # Payment Events
    PAYMENT_SUCCEEDED = "billing.payment.succeeded"
    PAYMENT_FAILED = "billing.payment.failed"
    PAYMENT_REFUNDED = "billing.payment.refunded"


class ServiceSource(Enum):
    """Service sources"""

    BILLING_SERVICE = "billing_service"
    PAYMENT_SERVICE = "payment_service"


class Event:
    """Event model"""

    def __init__(
        self,
        event_type: EventType,
        source: ServiceSource,
        data: Dict[str, Any],
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        self.id = str(uuid.uuid4())
        self.type = event_type.value
        self.source = source.value
        self.data = data
        self.subject = subject
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.metadata = metadata or {}
        self.version = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "subject": self.subject,
            "timestamp": self.timestamp,
            "data": self.data,
            "metadata": self.metadata,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        event = cls.__new__(cls)
        event.id = data.get("id")
        event.type = data.get("type")
        event.source = data.get("source")
        event.subject = data.get("subject")
        event.timestamp = data.get("timestamp")
        event.data = data.get("data", {})
        event.metadata = data.get("metadata", {})
        event.version = data.get("version", "1.0.0")
        return event


EventHandler = Callable[[Event], Awaitable[None]]


class NATSEventBus:
    """
    NATS JetStream event bus.

    Events are published to JetStream with the event type as subject, so
    delivery to subscribers is at-least-once and handlers must be idempotent.
    """

    def __init__(
        self,
        service_name: str,
        config: Optional[InfraConfig] = None,
    ):
        """
        Initialize NATS Event Bus.

        Args:
            service_name: Name of the service (used for connection and durable names)
            config: Optional infrastructure config (loaded from env if not provided)
        """
        self.service_name = service_name
        self.config = config or InfraConfig.from_env()
        self.url = self.config.resolved_nats_url

        self._nc: Optional[NATS] = None
        self._js: Optional[JetStreamContext] = None
        self._subscriptions: Dict[str, Any] = {}
        self._known_streams: set = set()
        self._is_connected = False

        logger.info(f"NATS EventBus initialized: {self.url}")

    async def connect(self):
        """Connect to NATS and open a JetStream context"""
        try:
            self._nc = await nats.connect(self.url, name=self.service_name)
            self._js = self._nc.jetstream()
            self._is_connected = True
            logger.info(f"Connected to NATS as {self.service_name}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    async def publish_event(self, event: Event) -> bool:
        """
        Publish an event to NATS JetStream.

        The stream is derived from the first segment of the event type
        (billing.* -> billing-stream).
        """
        if not self._is_connected or not self._js:
            logger.error("Not connected to NATS")
            return False

        try:
            subject = event.type
            data = json.dumps(event.to_dict(), cls=DecimalEncoder).encode()

            stream_name = self._get_stream_name_for_event(event.type)
            await self._ensure_stream(stream_name, event.type.split(".")[0])

            ack = await self._js.publish(subject, data, stream=stream_name)
            logger.info(f"Published event {event.type} [{event.id}] to stream {stream_name}, seq={ack.seq}")
            return True

        except Exception as e:
            logger.error(f"Error publishing event {event.id}: {e}")
            return False

    def _get_stream_name_for_event(self, event_type: str) -> str:
        """billing.invoice.created -> billing-stream"""
        prefix = event_type.split(".")[0]
        return f"{prefix}-stream"

    async def _ensure_stream(self, stream_name: str, subject_prefix: str):
        if stream_name in self._known_streams:
            return
        try:
            await self._js.add_stream(name=stream_name, subjects=[f"{subject_prefix}.>"])
        except Exception as e:
            # Stream already exists with a compatible config
            logger.debug(f"Stream creation note: {e}")
        self._known_streams.add(stream_name)

    async def subscribe_to_events(
        self, pattern: str, handler: EventHandler, durable: Optional[str] = None
    ) -> Optional[str]:
        """
        Subscribe to events with a pattern using a durable JetStream consumer.

        Args:
            pattern: Subject pattern (e.g., "billing.invoice.created")
            handler: Async callback receiving an Event
            durable: Optional durable consumer name
        """
        if not self._is_connected or not self._js:
            logger.error("Not connected to NATS")
            return None

        prefix = pattern.split(".")[0]
        stream_name = self._get_stream_name_for_event(prefix)
        consumer_name = durable or f"{self.service_name}-{pattern.replace('.', '-').replace('*', 'all').replace('>', 'all')}"

        async def _on_message(msg):
            try:
                event = Event.from_dict(json.loads(msg.data.decode()))
                await handler(event)
            except Exception as e:
                logger.error(f"Error processing message on {msg.subject}: {e}")
            finally:
                await msg.ack()

        try:
            await self._ensure_stream(stream_name, prefix)
            sub = await self._js.subscribe(
                pattern,
                durable=consumer_name,
                cb=_on_message,
                manual_ack=True,
            )
            self._subscriptions[pattern] = sub
            logger.info(f"Subscribed to {pattern} (JetStream consumer {consumer_name})")
            return consumer_name

        except Exception as e:
            logger.error(f"Error subscribing to events: {e}")
            return None

    async def unsubscribe(self, pattern: str) -> bool:
        sub = self._subscriptions.pop(pattern, None)
        if sub is None:
            return False
        await sub.unsubscribe()
        logger.info(f"Unsubscribed from {pattern}")
        return True

    async def close(self):
        """Drain subscriptions and close the connection"""
        for pattern in list(self._subscriptions.keys()):
            await self.unsubscribe(pattern)

        if self._nc:
            await self._nc.drain()
            self._nc = None
            self._js = None

        self._is_connected = False
        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._is_connected


# Singleton instances per service
_event_buses: Dict[str, NATSEventBus] = {}
_lock = asyncio.Lock()


async def get_event_bus(
    service_name: str,
    config: Optional[InfraConfig] = None,
) -> NATSEventBus:
    """
    Get or create event bus instance.

    Args:
        service_name: Name of the service using the event bus
        config: Optional infrastructure config

    Returns:
        Connected NATSEventBus instance
    """
    async with _lock:
        if service_name not in _event_buses:
            event_bus = NATSEventBus(service_name=service_name, config=config)
            await event_bus.connect()
            _event_buses[service_name] = event_bus

    return _event_buses[service_name]


__all__ = [
    "DecimalEncoder",
    "Event",
    "EventHandler",
    "EventType",
    "NATSEventBus",
    "ServiceSource",
    "get_event_bus",
]
