"""
OCR pipeline: recognition -> analysis -> field recovery -> optional template fallback.

Only RecognitionError escapes `OcrPipeline.process`; missing fields are
reported as warnings and reflected in the confidence score.
"""

import time
from loguru import logger
from ...core.config import settings
from ..form_recognizer import RecognitionEngine, get_recognition_engine
from ..invoice_types import ExtractedInvoice, OcrResult
from .analyzer import analyze_blocks
from .field_recovery import recover_invoice
from .template_matching import TemplateMatcher, merge_missing_fields

ENGINE_CONFIDENCE_SHARE = 0.3
ARITHMETIC_TOLERANCE = 0.01

FIELD_LABELS = {
    "invoice_number": "invoice number",
    "invoice_date": "invoice date",
    "due_date": "due date",
    "customer_name": "customer name",
    "customer_uen": "customer UEN",
    "vendor_name": "vendor name",
    "vendor_uen": "vendor UEN",
    "vendor_gst_number": "vendor GST registration number",
    "subtotal": "subtotal",
    "gst_amount": "GST amount",
    "total_amount": "total amount",
}


def _present(value) -> bool:
    return value is not None and value != ""


def _arithmetic_consistent(invoice: ExtractedInvoice) -> bool:
    if invoice.subtotal is None or invoice.gst_amount is None or invoice.total_amount is None:
        return False
    return abs(invoice.subtotal + invoice.gst_amount - invoice.total_amount) <= ARITHMETIC_TOLERANCE


def field_confidence(invoice: ExtractedInvoice) -> float:
    """Weighted share of expected invoice structure that was recovered (0-1)."""
    checks = [
        (2.0, _present(invoice.invoice_number)),
        (2.0, _present(invoice.invoice_date)),
        (2.0, _present(invoice.customer_name)),
        (2.0, _present(invoice.total_amount)),
        (1.0, _present(invoice.vendor_name)),
        (1.0, _present(invoice.vendor_gst_number)),
        (1.0, _present(invoice.subtotal)),
        (1.0, _present(invoice.gst_amount)),
        (2.0, bool(invoice.items)),
        (2.0, _arithmetic_consistent(invoice)),
        (1.0, _present(invoice.vendor_uen) or _present(invoice.customer_uen)),
    ]
    total = sum(weight for weight, _ in checks)
    earned = sum(weight for weight, ok in checks if ok)
    return earned / total


def blend_confidence(fields_score: float, engine_confidence: float | None) -> float:
    if engine_confidence is None:
        return round(fields_score, 4)
    engine_confidence = max(0.0, min(1.0, engine_confidence))
    blended = (1 - ENGINE_CONFIDENCE_SHARE) * fields_score + ENGINE_CONFIDENCE_SHARE * engine_confidence
    return round(blended, 4)


def missing_field_warnings(invoice: ExtractedInvoice) -> list[str]:
    warnings = [
        f"Could not extract {label}"
        for name, label in FIELD_LABELS.items()
        if not _present(getattr(invoice, name))
    ]
    if not invoice.items:
        warnings.append("No line items found")
    return warnings


class OcrPipeline:
    def __init__(self, engine: RecognitionEngine | None = None, template_matcher: TemplateMatcher | None = None):
        self.engine = engine or get_recognition_engine()
        self.template_matcher = template_matcher or TemplateMatcher()

    async def process(
        self,
        file_bytes: bytes,
        file_name: str,
        enable_template_matching: bool | None = None,
        min_confidence: float | None = None,
    ) -> OcrResult:
        if enable_template_matching is None:
            enable_template_matching = settings.ocr_enable_template_matching
        if min_confidence is None:
            min_confidence = settings.ocr_min_confidence

        started = time.perf_counter()
        logger.info("Starting OCR pipeline", file_name=file_name, provider=self.engine.name)

        # RecognitionError propagates to the caller
        output = await self.engine.analyze(file_bytes, file_name)

        document = analyze_blocks(output.blocks)
        extracted = recover_invoice(document)
        engine_confidence = output.confidence if output.confidence is not None else document.confidence
        confidence = blend_confidence(field_confidence(extracted), engine_confidence)
        provider = output.provider

        if enable_template_matching and confidence < min_confidence:
            logger.info("Low confidence, trying template matching", confidence=confidence, threshold=min_confidence)
            match = self.template_matcher.match(document.lines)
            if match is not None:
                filled = merge_missing_fields(extracted, match.extracted)
                if filled:
                    provider = f"{output.provider}+template"
                    confidence = blend_confidence(field_confidence(extracted), engine_confidence)
                    logger.info("Template filled missing fields", template=match.template.id, fields=filled)

        warnings = missing_field_warnings(extracted)
        if confidence < min_confidence:
            warnings.append(f"Low extraction confidence ({confidence:.2f})")

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "OCR pipeline complete",
            file_name=file_name,
            provider=provider,
            confidence=confidence,
            processing_time_ms=elapsed_ms,
            warnings=len(warnings),
        )

        return OcrResult(
            provider=provider,
            confidence=confidence,
            processing_time_ms=elapsed_ms,
            warnings=warnings,
            extracted_invoice=extracted,
        )
