"""
Tests for the invoice processing job (OCR -> validation -> persistence -> event).
"""

import asyncio
import json
from unittest.mock import Mock
import pytest
from src.services.events.event_publisher import EventPublisher
from src.services.form_recognizer import BlockBuilder, MockRecognitionEngine, RecognitionEngine, RecognitionError
from src.services.invoice_processor import InvoiceProcessor, ProcessingOptions
from src.services.ocr.blocks import RecognitionOutput
from src.services.ocr.orchestrator import OcrPipeline
from src.services.storage.invoices import InMemoryInvoiceStore


class FailingEngine(RecognitionEngine):
    name = "failing"

    async def analyze(self, file_bytes, file_name):
        raise RecognitionError("Document recognition failed: service unreachable")


class UnwritableStore(InMemoryInvoiceStore):
    def update_invoice(self, invoice_id, invoice_data):
        raise RuntimeError("database is locked")


class TotalOnlyEngine(RecognitionEngine):
    name = "partial"

    async def analyze(self, file_bytes, file_name):
        builder = BlockBuilder()
        builder.add_key_value("Total", "S$ 50.00")
        return RecognitionOutput(provider=self.name, blocks=builder.blocks)


@pytest.fixture
def sender():
    return Mock()


def _processor(engine, validator, store, sender):
    return InvoiceProcessor(
        pipeline=OcrPipeline(engine=engine),
        validator=validator,
        store=store,
        publisher=EventPublisher(service_bus_sender=sender),
    )


def _published(sender) -> dict:
    return json.loads(str(sender.send_messages.call_args[0][0]))


def test_compliant_document_is_submitted(validator, store, sender):
    processor = _processor(MockRecognitionEngine(), validator, store, sender)

    result = asyncio.run(processor.process_document(b"%PDF-1.4 invoice", "invoice.pdf"))

    assert result["success"] is True
    assert result["status"] == "submitted"
    assert result["provider"] == "mock"
    assert result["validation"]["is_valid"] is True

    record = store.get_invoice(result["invoice_id"])
    assert record["status"] == "submitted"
    assert record["invoice_data"]["invoice_number"] == "INV-10023"
    assert record["invoice_data"]["currency"] == "SGD"

    event = _published(sender)
    assert event["status"] == "submitted"
    assert event["invoice_number"] == "INV-10023"
    assert event["compliance_score"] == 100


def test_auto_fix_applies_suggestions(validator, store, sender):
    processor = _processor(MockRecognitionEngine(), validator, store, sender)

    result = asyncio.run(processor.process_document(
        b"%PDF-1.4 invoice", "invoice.pdf", options=ProcessingOptions(auto_fix=True)
    ))

    invoice = result["invoice"]
    assert invoice["payment_terms"] == "Net 30"
    assert all(item["tax_category"] == "S" for item in invoice["items"])
    assert result["validation"]["suggestions"] == []


def test_recognition_failure_marks_invoice_failed(validator, store, sender):
    processor = _processor(FailingEngine(), validator, store, sender)

    result = asyncio.run(processor.process_document(b"data", "broken.pdf"))

    assert result["success"] is False
    assert result["status"] == "failed"
    assert "service unreachable" in result["error"]
    assert store.get_invoice(result["invoice_id"])["status"] == "failed"
    assert _published(sender)["success"] is False


def test_non_compliant_document_fails_with_codes(validator, store, sender):
    processor = _processor(TotalOnlyEngine(), validator, store, sender)

    result = asyncio.run(processor.process_document(b"data", "partial.pdf", options=ProcessingOptions(
        enable_template_matching=False,
    )))

    assert result["success"] is False
    assert result["status"] == "failed"
    assert result["error"].startswith("Compliance validation failed: ")
    assert "MISSING_INVOICE_NUMBER" in result["error"]
    assert store.get_invoice(result["invoice_id"])["invoice_data"]["total_amount"] == 50.0


def test_skip_validation_submits_as_extracted(validator, store, sender):
    processor = _processor(TotalOnlyEngine(), validator, store, sender)

    result = asyncio.run(processor.process_document(
        b"data", "partial.pdf", options=ProcessingOptions(enable_template_matching=False, skip_validation=True)
    ))

    assert result["status"] == "submitted"
    assert result["validation"] is None


def test_existing_failed_invoice_can_be_reprocessed(validator, store, sender):
    invoice_id = store.create_invoice("invoice.pdf")
    store.set_status(invoice_id, "processing")
    store.set_status(invoice_id, "failed", error="timeout")
    processor = _processor(MockRecognitionEngine(), validator, store, sender)

    result = asyncio.run(processor.process_document(b"%PDF", "invoice.pdf", invoice_id=invoice_id))

    assert result["invoice_id"] == invoice_id
    assert store.get_invoice(invoice_id)["status"] == "submitted"


def test_missing_inputs_are_reported(validator, store, sender):
    processor = _processor(MockRecognitionEngine(), validator, store, sender)

    no_name = asyncio.run(processor.process_document(b"%PDF", ""))
    unknown = asyncio.run(processor.process_document(b"%PDF", "a.pdf", invoice_id="missing"))

    assert no_name == {"success": False, "error": "file_name is required"}
    assert unknown["success"] is False
    assert sender.send_messages.call_count == 0


def test_publishing_outage_does_not_change_outcome(validator, store, sender):
    sender.send_messages.side_effect = RuntimeError("Service Bus unavailable")
    processor = _processor(MockRecognitionEngine(), validator, store, sender)

    result = asyncio.run(processor.process_document(b"%PDF", "invoice.pdf"))

    assert result["status"] == "submitted"


def test_reprocessing_submitted_invoice_is_reported_not_raised(validator, store, sender):
    processor = _processor(MockRecognitionEngine(), validator, store, sender)
    first = asyncio.run(processor.process_document(b"%PDF", "invoice.pdf"))

    again = asyncio.run(processor.process_document(b"%PDF", "invoice.pdf", invoice_id=first["invoice_id"]))

    assert again["success"] is False
    assert again["invoice_id"] == first["invoice_id"]
    assert again["status"] == "submitted"
    assert "cannot move from 'submitted' to 'processing'" in again["error"]
    assert store.get_invoice(first["invoice_id"])["status"] == "submitted"
    assert sender.send_messages.call_count == 1


def test_store_failure_marks_invoice_failed(validator, sender):
    store = UnwritableStore()
    processor = _processor(MockRecognitionEngine(), validator, store, sender)

    result = asyncio.run(processor.process_document(b"%PDF", "invoice.pdf"))

    assert result["success"] is False
    assert result["status"] == "failed"
    assert "database is locked" in result["error"]
    assert store.get_invoice(result["invoice_id"])["status"] == "failed"
