"""
Tests for Service Bus event publishing.

Verifies that invoice processing outcomes are published to Azure Service Bus
for downstream submission workers and audit trails.
"""

import json
import pytest
from unittest.mock import Mock, patch
from src.core.config import settings
from src.services.events import event_publisher as event_module
from src.services.events.event_publisher import EventPublisher, InvoiceProcessedEvent, get_event_publisher


@pytest.fixture
def mock_service_bus_sender():
    """Create a mock Service Bus sender matching Azure SDK interface"""
    return Mock()


@pytest.fixture
def publisher(mock_service_bus_sender):
    return EventPublisher(service_bus_sender=mock_service_bus_sender)


def test_event_defaults():
    event = InvoiceProcessedEvent(invoice_id="inv-1", file_name="a.pdf", status="submitted", success=True)

    assert event.event_type == "InvoiceProcessed"
    assert event.timestamp is not None
    assert event.error is None


def test_event_serialises_to_json():
    event = InvoiceProcessedEvent(
        invoice_id="inv-1",
        file_name="a.pdf",
        status="failed",
        success=False,
        compliance_score=62,
        error="Compliance validation failed: TOTAL_MISMATCH",
    )

    payload = json.loads(event.to_json())

    assert payload["invoice_id"] == "inv-1"
    assert payload["compliance_score"] == 62
    assert payload["error"].endswith("TOTAL_MISMATCH")


def test_publish_sends_json_message(publisher, mock_service_bus_sender):
    event = InvoiceProcessedEvent(
        invoice_id="test-456",
        file_name="scan.pdf",
        status="submitted",
        success=True,
        invoice_number="INV-10023",
        vendor_uen="199912345K",
    )

    publisher.publish_invoice_processed(event)

    assert mock_service_bus_sender.send_messages.call_count == 1
    message = mock_service_bus_sender.send_messages.call_args[0][0]
    assert "test-456" in str(message)
    assert "INV-10023" in str(message)
    assert "InvoiceProcessed" in str(message)
    assert message.content_type == "application/json"


def test_disabled_publisher_is_a_no_op():
    publisher = EventPublisher(service_bus_sender=None)

    publisher.publish_invoice_processed(
        InvoiceProcessedEvent(invoice_id="x", file_name="a.pdf", status="failed", success=False)
    )

    assert publisher.enabled is False


def test_sender_errors_propagate(publisher, mock_service_bus_sender):
    mock_service_bus_sender.send_messages.side_effect = RuntimeError("Service Bus unavailable")

    with pytest.raises(RuntimeError):
        publisher.publish_invoice_processed(
            InvoiceProcessedEvent(invoice_id="x", file_name="a.pdf", status="submitted", success=True)
        )


def test_default_publisher_is_disabled_without_connection_string():
    with patch.object(event_module, "_default_publisher", None), \
            patch.object(settings, "service_bus_connection_string", None):
        publisher = get_event_publisher()

        assert publisher.enabled is False
        assert get_event_publisher() is publisher
