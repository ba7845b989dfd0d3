"""
Service providers for the API routers.

Each provider builds its service once per process. Tests swap them out with
`app.dependency_overrides`.
"""

from functools import lru_cache
from ..core.config import settings
from ..services.invoice_processor import InvoiceProcessor
from ..services.ocr.orchestrator import OcrPipeline
from ..services.registry.uen_verifier import EntityVerifier
from ..services.storage.invoice_store_base import InvoiceStoreBase
from ..services.storage.invoices import create_invoice_store
from ..services.validation.gst_validator import ComplianceValidator


@lru_cache
def get_store() -> InvoiceStoreBase:
    return create_invoice_store(settings.invoice_db_path)


@lru_cache
def get_verifier() -> EntityVerifier:
    return EntityVerifier(store=get_store())


@lru_cache
def get_validator() -> ComplianceValidator:
    return ComplianceValidator(verifier=get_verifier())


@lru_cache
def get_pipeline() -> OcrPipeline:
    return OcrPipeline()


@lru_cache
def get_processor() -> InvoiceProcessor:
    return InvoiceProcessor(
        pipeline=get_pipeline(),
        validator=get_validator(),
        store=get_store(),
    )
