from fastapi import APIRouter, UploadFile, File, HTTPException, Request, Depends, Query
from loguru import logger
from ..deps import get_pipeline, get_processor, get_store, get_validator
from ...models.invoice import AutoFixRequest, AutoFixResponse, ValidateResponse
from ...services.form_recognizer import RecognitionError
from ...services.invoice_processor import InvoiceProcessor, ProcessingOptions
from ...services.invoice_types import Invoice, OcrResult
from ...services.ocr.orchestrator import OcrPipeline
from ...services.storage.invoice_store_base import InvoiceStoreBase
from ...services.validation.gst_validator import (
    ComplianceValidator,
    auto_fix_invoice,
    generate_validation_report,
)

router = APIRouter(prefix="/invoices", tags=["invoices"])


async def _read_document(request: Request, file: UploadFile | None) -> tuple[bytes, str]:
    """
    Accepts either:
    - multipart/form-data (file upload via form)
    - application/pdf or application/octet-stream (raw binary body)
    """
    if file:
        content = await file.read()
        file_name = file.filename or "upload"
    else:
        content = await request.body()
        file_name = request.headers.get("x-file-name", "upload")

    if not content:
        raise HTTPException(status_code=422, detail="No file provided (either multipart or raw body)")
    return content, file_name


@router.post("/process", response_model=OcrResult)
async def process_document(
    request: Request,
    file: UploadFile = File(None),
    enable_template_matching: bool | None = Query(default=None),
    min_confidence: float | None = Query(default=None, ge=0.0, le=1.0),
    pipeline: OcrPipeline = Depends(get_pipeline),
):
    """
    Run OCR extraction on an uploaded invoice and return the result envelope:
    provider, confidence, processing time, warnings and the extracted invoice.
    """
    content, file_name = await _read_document(request, file)

    try:
        return await pipeline.process(
            content,
            file_name,
            enable_template_matching=enable_template_matching,
            min_confidence=min_confidence,
        )
    except RecognitionError as e:
        logger.error(f"Recognition failed: {str(e)}", file_name=file_name)
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/jobs")
async def run_processing_job(
    request: Request,
    file: UploadFile = File(None),
    auto_fix: bool = Query(default=False),
    skip_validation: bool = Query(default=False),
    processor: InvoiceProcessor = Depends(get_processor),
):
    """Run the full intake job (OCR, validation, persistence, event) for one document."""
    content, file_name = await _read_document(request, file)
    options = ProcessingOptions(auto_fix=auto_fix, skip_validation=skip_validation)
    return await processor.process_document(content, file_name, options=options)


@router.get("/{invoice_id}")
async def get_invoice(invoice_id: str, store: InvoiceStoreBase = Depends(get_store)):
    record = store.get_invoice(invoice_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return record


@router.post("/validate", response_model=ValidateResponse)
async def validate_invoice(
    invoice: Invoice,
    include_report: bool = Query(default=False),
    validator: ComplianceValidator = Depends(get_validator),
):
    """
    Check an invoice against Singapore GST tax-invoice rules.

    Example request:
    {
        "invoice_number": "INV-001",
        "invoice_date": "2024-03-01",
        "customer_name": "ABC TRADING PTE. LTD.",
        "vendor_gst_number": "GST12345678",
        "subtotal": 100.0, "gst_amount": 9.0, "total_amount": 109.0,
        "items": [{"description": "Widget", "quantity": 1, "unit_price": 100.0, "amount": 100.0}]
    }
    """
    logger.info(
        "Validation request received",
        invoice_number=invoice.invoice_number,
        items=len(invoice.items),
        total=invoice.total_amount,
    )
    result = await validator.validate(invoice)
    return ValidateResponse(
        validation=result,
        report=generate_validation_report(result) if include_report else None,
    )


@router.post("/autofix", response_model=AutoFixResponse)
async def autofix_invoice(req: AutoFixRequest, validator: ComplianceValidator = Depends(get_validator)):
    """Apply every auto-fixable suggestion and re-validate the corrected invoice."""
    validation = req.validation or await validator.validate(req.invoice)
    fixed = auto_fix_invoice(req.invoice, validation)
    applied = [s.code for s in validation.suggestions if s.auto_fix_available and s.auto_fix_value is not None]

    return AutoFixResponse(
        invoice=fixed,
        applied=applied,
        validation=await validator.validate(fixed),
    )
