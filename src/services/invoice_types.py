from typing import Literal
from pydantic import BaseModel, Field

TaxCategory = Literal["S", "Z", "E"]  # Standard, Zero-rated, Exempt

InvoiceStatus = Literal["draft", "processing", "submitted", "failed", "delivered"]


class LineItem(BaseModel):
    description: str
    quantity: float = 1.0
    unit_price: float = 0.0
    amount: float = 0.0


class ExtractedInvoice(BaseModel):
    """Best-effort invoice recovered from OCR output. Every field may be absent."""
    invoice_number: str | None = None
    invoice_date: str | None = None
    due_date: str | None = None
    customer_name: str | None = None
    customer_uen: str | None = None
    vendor_name: str | None = None
    vendor_uen: str | None = None
    vendor_gst_number: str | None = None
    currency: str | None = None
    subtotal: float | None = None
    gst_amount: float | None = None
    total_amount: float | None = None
    items: list[LineItem] = Field(default_factory=list)


class InvoiceItem(LineItem):
    tax_category: TaxCategory | None = None
    gst_rate: float | None = None  # percent, e.g. 9.0


class Invoice(BaseModel):
    """Structured invoice as checked by the compliance validator (extracted or manually entered)."""
    invoice_number: str | None = None
    invoice_date: str | None = None
    due_date: str | None = None
    customer_name: str | None = None
    customer_uen: str | None = None
    vendor_name: str | None = None
    vendor_uen: str | None = None
    vendor_gst_number: str | None = None
    vendor_address: str | None = None
    payment_terms: str | None = None
    currency: str = "SGD"
    subtotal: float | None = None
    gst_amount: float | None = None
    total_amount: float | None = None
    items: list[InvoiceItem] = Field(default_factory=list)

    @classmethod
    def from_extracted(cls, extracted: ExtractedInvoice, currency: str = "SGD") -> "Invoice":
        data = extracted.model_dump(exclude={"items", "currency"})
        items = [InvoiceItem(**item.model_dump()) for item in extracted.items]
        return cls(**data, currency=extracted.currency or currency, items=items)


class OcrResult(BaseModel):
    """Result envelope returned by the OCR pipeline for one document."""
    provider: str
    confidence: float = 0.0
    processing_time_ms: int = 0
    warnings: list[str] = Field(default_factory=list)
    extracted_invoice: ExtractedInvoice = Field(default_factory=ExtractedInvoice)
