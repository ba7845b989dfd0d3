import re
from dataclasses import dataclass, field
from typing import Callable
from loguru import logger
from ..invoice_types import ExtractedInvoice
from .field_recovery import parse_amount, parse_date

MATCH_THRESHOLD = 0.7
STRUCTURAL_WEIGHT = 0.3
STRUCTURAL_KEYWORDS = ("invoice", "date", "customer", "total", "gst", "amount")
FIELD_WEIGHTS = {
    "invoice_number": 2.0,
    "invoice_date": 2.0,
    "customer_name": 1.5,
    "total_amount": 1.5,
    "vendor_name": 1.0,
}
DEFAULT_GST_RATE = 0.09


@dataclass
class FieldMapping:
    pattern: re.Pattern
    transform: Callable[[str], object] | None = None


@dataclass
class InvoiceTemplate:
    id: str
    name: str
    patterns: dict[str, re.Pattern]
    field_mappings: dict[str, FieldMapping]
    customer_uen: str | None = None


@dataclass
class TemplateMatch:
    template: InvoiceTemplate
    score: float
    extracted: ExtractedInvoice = field(default_factory=ExtractedInvoice)


def default_templates() -> list[InvoiceTemplate]:
    """Common Singapore invoice layouts."""
    invoice_number = re.compile(r"Invoice\s*(?:No|Number)[:.\s]*([A-Z0-9\-/]+)", re.IGNORECASE)
    invoice_date = re.compile(r"Invoice\s*Date[:\s]*(\d{1,2}[/\-]\d{1,2}[/\-]\d{4})", re.IGNORECASE)
    total = re.compile(r"(?<![A-Za-z])(?<!Sub-)(?<!Sub )Total\s*(?:Amount)?[:\s]*S?\$?\s*([\d,]+\.?\d*)", re.IGNORECASE)
    subtotal = re.compile(r"Sub\s*-?\s*total[:\s]*S?\$?\s*([\d,]+\.?\d*)", re.IGNORECASE)
    tax_invoice_number = re.compile(r"Tax\s*Invoice\s*(?:No)?[:.\s]*([A-Z0-9\-/]+)", re.IGNORECASE)
    long_date = re.compile(r"Date[:\s]*(\d{1,2}\s+\w+\s+\d{4})", re.IGNORECASE)

    return [
        InvoiceTemplate(
            id="singapore-standard-1",
            name="Singapore Standard Invoice",
            patterns={
                "invoice_number": invoice_number,
                "invoice_date": invoice_date,
                "total_amount": total,
            },
            field_mappings={
                "invoice_number": FieldMapping(invoice_number),
                "invoice_date": FieldMapping(invoice_date, parse_date),
                "customer_name": FieldMapping(re.compile(r"Bill\s*To[:\s]*\n([^\n]+)", re.IGNORECASE)),
                "subtotal": FieldMapping(subtotal, parse_amount),
                "total_amount": FieldMapping(total, parse_amount),
            },
        ),
        InvoiceTemplate(
            id="singapore-service-1",
            name="Singapore Service Invoice",
            patterns={
                "invoice_number": tax_invoice_number,
                "invoice_date": long_date,
            },
            field_mappings={
                "invoice_number": FieldMapping(tax_invoice_number),
                "invoice_date": FieldMapping(long_date, parse_date),
                "customer_uen": FieldMapping(re.compile(r"UEN[:\s]*([0-9]{8,9}[A-Z])", re.IGNORECASE)),
                "gst_amount": FieldMapping(
                    re.compile(r"GST\s*@?\s*9%[:\s]*S?\$?\s*([\d,]+\.?\d*)", re.IGNORECASE),
                    parse_amount,
                ),
            },
        ),
    ]


class TemplateMatcher:
    """Regex-template fallback for documents the key/value heuristics handle poorly."""

    def __init__(self, templates: list[InvoiceTemplate] | None = None, threshold: float = MATCH_THRESHOLD):
        self.templates = templates if templates is not None else default_templates()
        self.threshold = threshold

    def score(self, text: str, template: InvoiceTemplate) -> float:
        total_score = 0.0
        total_weight = 0.0

        for name, pattern in template.patterns.items():
            weight = FIELD_WEIGHTS.get(name, 1.0)
            total_weight += weight
            if pattern.search(text):
                total_score += weight

        if template.customer_uen:
            total_weight += 2.0
            if template.customer_uen in text:
                total_score += 2.0

        lowered = text.lower()
        found = sum(1 for keyword in STRUCTURAL_KEYWORDS if keyword in lowered)
        total_score += (found / len(STRUCTURAL_KEYWORDS)) * STRUCTURAL_WEIGHT
        total_weight += STRUCTURAL_WEIGHT

        return total_score / total_weight if total_weight else 0.0

    def extract(self, text: str, template: InvoiceTemplate) -> ExtractedInvoice:
        values: dict[str, object] = {}
        for name, mapping in template.field_mappings.items():
            match = mapping.pattern.search(text)
            if not match:
                continue
            raw = (match.group(1) if match.groups() else match.group(0)).strip()
            value = mapping.transform(raw) if mapping.transform else raw
            if value is not None and value != "":
                values[name] = value

        extracted = ExtractedInvoice(**values)

        # Singapore standard rate when only the net amount is printed
        if extracted.subtotal and extracted.gst_amount is None:
            extracted.gst_amount = round(extracted.subtotal * DEFAULT_GST_RATE, 2)
        if extracted.subtotal and extracted.gst_amount is not None and extracted.total_amount is None:
            extracted.total_amount = round(extracted.subtotal + extracted.gst_amount, 2)

        return extracted

    def match(self, lines: list[str]) -> TemplateMatch | None:
        text = "\n".join(lines)
        if not text.strip():
            return None

        best: TemplateMatch | None = None
        for template in self.templates:
            score = self.score(text, template)
            if score >= self.threshold and (best is None or score > best.score):
                best = TemplateMatch(template=template, score=score)

        if best is None:
            logger.debug("No invoice template matched", templates=len(self.templates))
            return None

        best.extracted = self.extract(text, best.template)

        logger.info("Template match found", template=best.template.name, score=round(best.score, 2))
        return best


def merge_missing_fields(base: ExtractedInvoice, fallback: ExtractedInvoice) -> list[str]:
    """Copy fields that are empty on base from fallback. Returns the names that were filled."""
    filled = []
    for name in ExtractedInvoice.model_fields:
        if name == "items":
            if not base.items and fallback.items:
                base.items = list(fallback.items)
                filled.append(name)
            continue
        if getattr(base, name) in (None, "") and getattr(fallback, name) not in (None, ""):
            setattr(base, name, getattr(fallback, name))
            filled.append(name)
    return filled
