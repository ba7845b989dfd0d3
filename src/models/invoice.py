from pydantic import BaseModel, Field
from ..services.invoice_types import Invoice
from ..services.registry.entity import EntityVerificationResult
from ..services.validation.gst_validator import ValidationResult


class ValidateResponse(BaseModel):
    validation: ValidationResult
    report: str | None = None  # plain-text report when requested


class AutoFixRequest(BaseModel):
    invoice: Invoice
    validation: ValidationResult | None = Field(default=None)  # validated first when omitted


class AutoFixResponse(BaseModel):
    invoice: Invoice
    applied: list[str] = Field(default_factory=list)
    validation: ValidationResult


class VerifyBatchRequest(BaseModel):
    uens: list[str] = Field(min_length=1, max_length=100)


class VerifyBatchResponse(BaseModel):
    results: dict[str, EntityVerificationResult]
