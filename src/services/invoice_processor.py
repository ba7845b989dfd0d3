"""
Queue-facing invoice processing job.

One job takes an uploaded document through the whole intake path:
mark processing -> OCR pipeline -> compliance validation -> optional auto-fix
-> persist fields -> submitted/failed -> publish event. The job never raises;
it reports `{"success": bool, ...}` and leaves retry policy to the queue.
"""

from pydantic import BaseModel
from loguru import logger
from ..core.config import settings
from .events.event_publisher import EventPublisher, InvoiceProcessedEvent, get_event_publisher
from .form_recognizer import RecognitionError
from .invoice_types import Invoice, OcrResult
from .ocr.orchestrator import OcrPipeline
from .storage.invoice_store_base import InvalidStatusTransition, InvoiceStoreBase
from .validation.gst_validator import ComplianceValidator, ValidationResult, auto_fix_invoice


class ProcessingOptions(BaseModel):
    enable_template_matching: bool | None = None
    min_confidence: float | None = None
    auto_fix: bool = False
    skip_validation: bool = False


class InvoiceProcessor:
    def __init__(
        self,
        pipeline: OcrPipeline,
        validator: ComplianceValidator,
        store: InvoiceStoreBase,
        publisher: EventPublisher | None = None,
    ):
        self.pipeline = pipeline
        self.validator = validator
        self.store = store
        self.publisher = publisher or get_event_publisher()

    async def process_document(
        self,
        file_bytes: bytes,
        file_name: str,
        invoice_id: str | None = None,
        options: ProcessingOptions | None = None,
    ) -> dict:
        options = options or ProcessingOptions()

        if not file_name:
            return {"success": False, "error": "file_name is required"}
        try:
            if invoice_id is None:
                invoice_id = self.store.create_invoice(file_name)
            elif self.store.get_invoice(invoice_id) is None:
                return {"success": False, "invoice_id": invoice_id, "error": f"Invoice {invoice_id} not found"}
            self.store.set_status(invoice_id, "processing")
        except InvalidStatusTransition as e:
            logger.warning("Invoice cannot be processed", invoice_id=invoice_id, status=e.current)
            return {"success": False, "invoice_id": invoice_id, "status": e.current, "error": str(e)}
        except Exception as e:
            logger.exception("Invoice store unavailable", invoice_id=invoice_id)
            return {"success": False, "invoice_id": invoice_id, "error": f"Invoice store error: {str(e)}"}
        logger.info("Processing invoice document", invoice_id=invoice_id, file_name=file_name)

        try:
            ocr = await self.pipeline.process(
                file_bytes,
                file_name,
                enable_template_matching=options.enable_template_matching,
                min_confidence=options.min_confidence,
            )
            invoice = Invoice.from_extracted(ocr.extracted_invoice, currency=settings.default_currency)

            validation = None
            if not options.skip_validation:
                validation = await self.validator.validate(invoice)
                if options.auto_fix and any(s.auto_fix_available for s in validation.suggestions):
                    invoice = auto_fix_invoice(invoice, validation)
                    validation = await self.validator.validate(invoice)

            self.store.update_invoice(invoice_id, invoice.model_dump())
            return self._complete(invoice_id, file_name, invoice, ocr, validation)
        except RecognitionError as e:
            logger.error("Document recognition failed", invoice_id=invoice_id, error=str(e))
            return self._fail(invoice_id, file_name, str(e))
        except Exception as e:
            logger.exception("Invoice processing error", invoice_id=invoice_id)
            return self._fail(invoice_id, file_name, f"Processing error: {str(e)}")

    def _complete(
        self,
        invoice_id: str,
        file_name: str,
        invoice: Invoice,
        ocr: OcrResult,
        validation: ValidationResult | None,
    ) -> dict:
        passed = validation is None or validation.is_valid
        status = "submitted" if passed else "failed"
        error = None
        if not passed:
            error = "Compliance validation failed: " + ", ".join(e.code for e in validation.errors)

        self.store.set_status(invoice_id, status, error=error)
        self._publish(InvoiceProcessedEvent(
            invoice_id=invoice_id,
            file_name=file_name,
            status=status,
            success=passed,
            invoice_number=invoice.invoice_number,
            vendor_uen=invoice.vendor_uen,
            total_amount=invoice.total_amount,
            compliance_score=validation.score if validation else None,
            confidence=ocr.confidence,
            provider=ocr.provider,
            error=error,
        ))

        logger.info(
            "Invoice processing complete",
            invoice_id=invoice_id,
            status=status,
            confidence=ocr.confidence,
            score=validation.score if validation else None,
        )

        result = {
            "success": passed,
            "invoice_id": invoice_id,
            "status": status,
            "provider": ocr.provider,
            "confidence": ocr.confidence,
            "warnings": ocr.warnings,
            "invoice": invoice.model_dump(),
            "validation": validation.model_dump() if validation else None,
        }
        if error:
            result["error"] = error
        return result

    def _fail(self, invoice_id: str, file_name: str, error: str) -> dict:
        try:
            self.store.set_status(invoice_id, "failed", error=error)
        except Exception:
            logger.exception("Failed to record invoice failure", invoice_id=invoice_id)
        self._publish(InvoiceProcessedEvent(
            invoice_id=invoice_id,
            file_name=file_name,
            status="failed",
            success=False,
            error=error,
        ))
        return {"success": False, "invoice_id": invoice_id, "status": "failed", "error": error}

    def _publish(self, event: InvoiceProcessedEvent):
        try:
            self.publisher.publish_invoice_processed(event)
        except Exception:
            # A publishing outage must not change the job outcome
            logger.exception("Failed to publish invoice event", invoice_id=event.invoice_id)
