"""
Azure Service Bus event publishing for invoice lifecycle events.

Enables downstream systems to react to status changes:
- Accounting systems can pick up invoices once they are completed
- Audit systems can mirror the status history
- Notification systems can alert the next approver
"""

import json
from datetime import datetime, UTC
from typing import Optional
from dataclasses import dataclass, asdict

from loguru import logger

from ...core.config import settings


@dataclass
class InvoiceStatusChangedEvent:
    """
    Event published after an invoice status change is committed.

    Amounts are carried as strings so no precision is lost in JSON.
    """

    invoice_id: int
    invoice_number: str
    vendor: str
    invoice_value: str
    from_status: Optional[int]
    to_status: int
    changed_by: str
    reason: Optional[str] = None
    automated: bool = False
    event_type: str = "InvoiceStatusChanged"
    timestamp: Optional[str] = None

    def __post_init__(self):
        """Set timestamp if not provided"""
        if self.timestamp is None:
            self.timestamp = datetime.now(UTC).isoformat()

    def to_dict(self) -> dict:
        """
        Convert event to dictionary for JSON serialization.

        Returns:
            Dictionary representation suitable for Service Bus message body
        """
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


class EventPublisher:
    """
    Publishes events to Azure Service Bus (Queue or Topic).

    Usage:
        from azure.servicebus import ServiceBusClient
        client = ServiceBusClient.from_connection_string(conn_str)
        sender = client.get_queue_sender(queue_name="invoice-events")
        publisher = EventPublisher(service_bus_sender=sender)

        # Disabled mode (no Service Bus configured)
        publisher = EventPublisher(service_bus_sender=None)
    """

    def __init__(
        self,
        service_bus_sender: Optional[object] = None,
        entity_name: str = "invoice-events"
    ):
        """
        Initialize event publisher.

        Args:
            service_bus_sender: Azure Service Bus sender (ServiceBusSender) or None to disable
            entity_name: Service Bus queue or topic name (default: invoice-events)
        """
        self.service_bus_sender = service_bus_sender
        self.entity_name = entity_name

    @property
    def enabled(self) -> bool:
        return self.service_bus_sender is not None

    def publish_status_changed(self, event: InvoiceStatusChangedEvent) -> None:
        """
        Publish an invoice status change to Service Bus.

        Note:
            If service_bus_sender is None, this is a no-op (disabled mode).
        """
        if self.service_bus_sender is None:
            return

        from azure.servicebus import ServiceBusMessage

        message = ServiceBusMessage(
            event.to_json(),
            content_type="application/json",
            subject=event.event_type,
            application_properties={"to_status": event.to_status},
        )
        self.service_bus_sender.send_messages(message)
        logger.debug(
            "Published status change event",
            entity=self.entity_name,
            invoice_id=event.invoice_id,
            to_status=event.to_status,
        )


def create_event_publisher() -> EventPublisher:
    """
    Build a publisher from settings.

    Returns a disabled publisher when SERVICE_BUS_CONNECTION_STRING is not set.
    """
    if not settings.service_bus_connection_string:
        return EventPublisher(service_bus_sender=None, entity_name=settings.service_bus_entity)

    from azure.servicebus import ServiceBusClient

    client = ServiceBusClient.from_connection_string(settings.service_bus_connection_string)
    sender = client.get_queue_sender(queue_name=settings.service_bus_entity)
    logger.info("Service Bus event publishing enabled", entity=settings.service_bus_entity)
    return EventPublisher(service_bus_sender=sender, entity_name=settings.service_bus_entity)


_default_publisher: Optional[EventPublisher] = None


def get_event_publisher() -> EventPublisher:
    """
    Get the default event publisher instance.

    Returns:
        EventPublisher instance (disabled if Service Bus not configured)
    """
    global _default_publisher
    if _default_publisher is None:
        _default_publisher = create_event_publisher()
    return _default_publisher
