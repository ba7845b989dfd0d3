"""
Azure Service Bus event publishing for invoice processing events.

Enables downstream systems to react to processed invoices:
- Submission workers can pick up compliant invoices for delivery
- Audit systems can track every processing outcome
- Notification systems can alert on failed documents
"""

import json
from datetime import datetime, UTC
from typing import Optional
from dataclasses import dataclass, asdict
from loguru import logger
from ...core.config import settings


@dataclass
class InvoiceProcessedEvent:
    """
    Event published when an invoice processing job finishes (successfully or not).
    """

    invoice_id: str
    file_name: str
    status: str
    success: bool
    invoice_number: Optional[str] = None
    vendor_uen: Optional[str] = None
    total_amount: Optional[float] = None
    compliance_score: Optional[int] = None
    confidence: Optional[float] = None
    provider: Optional[str] = None
    error: Optional[str] = None
    event_type: str = "InvoiceProcessed"
    timestamp: Optional[str] = None

    def __post_init__(self):
        """Set timestamp if not provided"""
        if self.timestamp is None:
            self.timestamp = datetime.now(UTC).isoformat()

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


class EventPublisher:
    """
    Publishes events to an Azure Service Bus queue.

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
        self.service_bus_sender = service_bus_sender
        self.entity_name = entity_name

    @property
    def enabled(self) -> bool:
        return self.service_bus_sender is not None

    def publish_invoice_processed(self, event: InvoiceProcessedEvent) -> None:
        """
        Publish an invoice processed event to Service Bus.

        Note:
            If service_bus_sender is None, this is a no-op (disabled mode).
        """
        if self.service_bus_sender is None:
            return

        from azure.servicebus import ServiceBusMessage

        message = ServiceBusMessage(event.to_json(), content_type="application/json")
        self.service_bus_sender.send_messages(message)
        logger.info(
            "Published invoice event",
            event_type=event.event_type,
            invoice_id=event.invoice_id,
            queue=self.entity_name,
        )


_default_publisher: Optional[EventPublisher] = None


def get_event_publisher() -> EventPublisher:
    """
    Get the default event publisher instance.

    Returns:
        EventPublisher instance (disabled if SERVICE_BUS_CONNECTION_STRING is not set)
    """
    global _default_publisher
    if _default_publisher is None:
        if settings.service_bus_connection_string:
            from azure.servicebus import ServiceBusClient

            client = ServiceBusClient.from_connection_string(settings.service_bus_connection_string)
            sender = client.get_queue_sender(queue_name=settings.service_bus_queue)
            _default_publisher = EventPublisher(service_bus_sender=sender, entity_name=settings.service_bus_queue)
            logger.info("Service Bus event publishing enabled", queue=settings.service_bus_queue)
        else:
            _default_publisher = EventPublisher(service_bus_sender=None)
            logger.info("Service Bus not configured - event publishing disabled")
    return _default_publisher
