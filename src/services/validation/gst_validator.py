"""
Singapore GST tax-invoice compliance rules.

Runs structural, arithmetic and regulatory checks over a structured invoice
(extracted by OCR or entered by hand) and produces field-addressable errors,
warnings and suggestions, plus a 0-100 compliance score.

Scoring: every evaluated check carries a weight (blocking checks 2, advisory
checks 1); the score is the passed share of the total weight. Checks whose
input is absent (e.g. no customer UEN) are not evaluated and do not count.
"""

import asyncio
import re
from datetime import date
from typing import Any, Callable, Literal
from loguru import logger
from pydantic import BaseModel, Field
from ...core.config import settings
from ..invoice_types import Invoice, InvoiceItem
from ..registry.entity import EntityVerificationResult
from ..registry.formats import is_valid_format, normalize_uen
from ..registry.uen_verifier import EntityVerifier

# (effective from, rate in percent), oldest first
GST_RATE_HISTORY: list[tuple[date, float]] = [
    (date(2007, 7, 1), 7.0),
    (date(2023, 1, 1), 8.0),
    (date(2024, 1, 1), 9.0),
]

INVOICE_NUMBER_PATTERN = re.compile(r"^[A-Z0-9\-/]+$", re.IGNORECASE)
GST_NUMBER_PATTERN = re.compile(r"^GST\d{8}$")
GST_M_NUMBER_PATTERN = re.compile(r"^M\d-\d{7}-\d$")
ZERO_RATING_HINTS = ("export", "overseas")

HIGH_AMOUNT_THRESHOLD = 10_000_000
LOW_AMOUNT_THRESHOLD = 1
RETENTION_YEARS = 5
MAX_PAYMENT_TERM_DAYS = 120

BLOCKING_WEIGHT = 2
ADVISORY_WEIGHT = 1


class ValidationIssue(BaseModel):
    field: str
    code: str
    message: str
    severity: Literal["error", "warning"] = "error"
    details: dict[str, Any] | None = None


class ValidationSuggestion(BaseModel):
    field: str
    code: str
    suggestion: str
    auto_fix_available: bool = False
    auto_fix_value: Any = None
    confidence: float = 0.0


class ComplianceCheck(BaseModel):
    name: str
    passed: bool
    message: str | None = None


class ValidationMetadata(BaseModel):
    gst_rate: float
    effective_date: str
    checks_run: int = 0
    checks_failed: int = 0
    compliance_checks: list[ComplianceCheck] = Field(default_factory=list)


class ValidationResult(BaseModel):
    is_valid: bool
    score: int
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    suggestions: list[ValidationSuggestion] = Field(default_factory=list)
    metadata: ValidationMetadata


def gst_rate_for(invoice_date: date | None) -> float:
    """Standard GST rate (percent) in force on the given date; current rate when unknown."""
    if invoice_date is None:
        return GST_RATE_HISTORY[-1][1]
    for effective_from, rate in reversed(GST_RATE_HISTORY):
        if invoice_date >= effective_from:
            return rate
    return GST_RATE_HISTORY[0][1]


def parse_iso_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def validate_gst_number(gst_number: str) -> str | None:
    """Returns an error message, or None when the registration number is well formed."""
    if GST_NUMBER_PATTERN.match(gst_number):
        return None
    if GST_M_NUMBER_PATTERN.match(gst_number):
        _, body, check_digit = gst_number.split("-")
        if int(body) % 10 != int(check_digit):
            return "Invalid GST number checksum"
        return None
    return "Invalid GST number format. Expected: GSTNNNNNNNN or MN-NNNNNNN-N"


def standard_payment_terms(days: int) -> str:
    return "Immediate" if days == 0 else f"Net {days}"


def _money(value: float) -> str:
    return f"${value:,.2f}"


class _Findings:
    """Accumulates check outcomes for one validation run."""

    def __init__(self):
        self.errors: list[ValidationIssue] = []
        self.warnings: list[ValidationIssue] = []
        self.suggestions: list[ValidationSuggestion] = []
        self.checks: list[ComplianceCheck] = []
        self.passed_weight = 0
        self.total_weight = 0

    def check(self, passed: bool, field: str, code: str, message: str, blocking: bool = True, details=None) -> bool:
        weight = BLOCKING_WEIGHT if blocking else ADVISORY_WEIGHT
        self.total_weight += weight
        if passed:
            self.passed_weight += weight
        else:
            issue = ValidationIssue(
                field=field,
                code=code,
                message=message,
                severity="error" if blocking else "warning",
                details=details,
            )
            (self.errors if blocking else self.warnings).append(issue)
        self.checks.append(ComplianceCheck(name=code, passed=passed, message=None if passed else message))
        return passed

    def suggest(self, field: str, code: str, suggestion: str, value=None, confidence: float = 0.9):
        self.suggestions.append(ValidationSuggestion(
            field=field,
            code=code,
            suggestion=suggestion,
            auto_fix_available=value is not None,
            auto_fix_value=value,
            confidence=confidence,
        ))

    @property
    def score(self) -> int:
        if not self.total_weight:
            return 100
        return round(100 * self.passed_weight / self.total_weight)


class ComplianceValidator:
    def __init__(
        self,
        verifier: EntityVerifier | None = None,
        tolerance: float | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.verifier = verifier or EntityVerifier()
        self.tolerance = settings.gst_amount_tolerance if tolerance is None else tolerance
        self.today = today

    async def validate(self, invoice: Invoice) -> ValidationResult:
        findings = _Findings()
        invoice_date = parse_iso_date(invoice.invoice_date)
        rate = gst_rate_for(invoice_date)

        self._check_structure(invoice, invoice_date, findings)
        self._check_items(invoice, rate, findings)
        self._check_amounts(invoice, rate, findings)
        self._check_due_date(invoice, invoice_date, findings)
        self._check_gst_registration(invoice, findings)
        await self._check_entities(invoice, findings)

        if invoice.currency and invoice.currency.upper() != "SGD":
            findings.check(
                False, "currency", "NON_SGD_CURRENCY",
                "Non-SGD currency detected. Exchange rate information may be required.",
                blocking=False,
            )

        failed = sum(1 for c in findings.checks if not c.passed)
        result = ValidationResult(
            is_valid=not findings.errors,
            score=findings.score,
            errors=findings.errors,
            warnings=findings.warnings,
            suggestions=findings.suggestions,
            metadata=ValidationMetadata(
                gst_rate=rate,
                effective_date=(invoice_date or self.today()).isoformat(),
                checks_run=len(findings.checks),
                checks_failed=failed,
                compliance_checks=findings.checks,
            ),
        )

        logger.info(
            "Invoice compliance validation",
            invoice_number=invoice.invoice_number,
            is_valid=result.is_valid,
            score=result.score,
            errors=len(result.errors),
            warnings=len(result.warnings),
        )
        return result

    def _check_structure(self, invoice: Invoice, invoice_date: date | None, f: _Findings):
        if f.check(bool(invoice.invoice_number), "invoice_number", "MISSING_INVOICE_NUMBER",
                   "Invoice number is required"):
            f.check(
                bool(INVOICE_NUMBER_PATTERN.match(invoice.invoice_number)),
                "invoice_number", "INVALID_INVOICE_NUMBER_FORMAT",
                "Invoice number should only contain letters, numbers, hyphens, and slashes",
                blocking=False,
            )

        if f.check(bool(invoice.invoice_date), "invoice_date", "MISSING_INVOICE_DATE", "Invoice date is required"):
            if f.check(invoice_date is not None, "invoice_date", "INVALID_INVOICE_DATE",
                       f"Invoice date '{invoice.invoice_date}' is not a valid YYYY-MM-DD date"):
                today = self.today()
                f.check(
                    invoice_date <= today, "invoice_date", "FUTURE_INVOICE_DATE",
                    "Invoice date is in the future. Please verify this is correct.",
                    blocking=False,
                )
                retention_start = date(today.year - RETENTION_YEARS, today.month, min(today.day, 28))
                f.check(
                    invoice_date >= retention_start, "invoice_date", "OLD_INVOICE_DATE",
                    "Invoice is more than 5 years old. GST records retention period may have expired.",
                    blocking=False,
                )

        if f.check(bool(invoice.customer_name), "customer_name", "MISSING_CUSTOMER_NAME", "Customer name is required"):
            f.check(len(invoice.customer_name.strip()) >= 2, "customer_name", "INVALID_CUSTOMER_NAME",
                    "Customer name is too short")

        f.check(bool(invoice.vendor_name), "vendor_name", "MISSING_VENDOR_NAME",
                "Vendor name is recommended for proper documentation", blocking=False)

        f.check(bool(invoice.items), "items", "NO_LINE_ITEMS", "Invoice must have at least one line item")

    def _line_tolerance(self, item: InvoiceItem) -> float:
        # unit prices are rounded to cents, so the product drifts with quantity
        return self.tolerance * max(1.0, abs(item.quantity))

    def _expected_line_amount(self, item: InvoiceItem) -> float:
        computed = round(item.quantity * item.unit_price, 2)
        if abs(item.amount - computed) <= self._line_tolerance(item):
            return item.amount
        return computed

    def _check_items(self, invoice: Invoice, rate: float, f: _Findings):
        for index, item in enumerate(invoice.items):
            prefix = f"items[{index}]"
            line = index + 1

            f.check(bool(item.description and item.description.strip()), f"{prefix}.description",
                    "MISSING_ITEM_DESCRIPTION", f"Line item {line} is missing description")
            f.check(item.quantity > 0, f"{prefix}.quantity", "INVALID_QUANTITY",
                    f"Line item {line} has invalid quantity ({item.quantity})")
            f.check(item.unit_price >= 0, f"{prefix}.unit_price", "NEGATIVE_UNIT_PRICE",
                    f"Line item {line} has negative unit price")

            expected = self._expected_line_amount(item)
            if not f.check(
                expected == item.amount, f"{prefix}.amount", "LINE_AMOUNT_MISMATCH",
                f"Line item {line} amount {_money(item.amount)} does not equal quantity x unit price "
                f"({_money(expected)})",
            ):
                f.suggest(f"{prefix}.amount", "FIX_LINE_AMOUNT", f"Update line item {line} amount to {_money(expected)}",
                          value=expected, confidence=0.95)

            if item.tax_category is None:
                f.suggest(f"{prefix}.tax_category", "SET_TAX_CATEGORY",
                          f"Line item {line} has no tax category; mark it standard-rated (S)",
                          value="S", confidence=0.8)
            elif item.tax_category == "S" and item.gst_rate is not None:
                if not f.check(
                    abs(item.gst_rate - rate) < 1e-9, f"{prefix}.gst_rate", "INCORRECT_GST_RATE",
                    f"Line item {line} has incorrect GST rate. Expected {rate:g}% for standard rated items",
                ):
                    f.suggest(f"{prefix}.gst_rate", "FIX_GST_RATE", f"Set line item {line} GST rate to {rate:g}%",
                              value=rate, confidence=0.95)
            elif item.tax_category == "Z" and item.gst_rate is not None:
                if not f.check(
                    item.gst_rate == 0, f"{prefix}.gst_rate", "ZERO_RATED_WITH_GST",
                    f"Line item {line} is zero-rated but has GST rate of {item.gst_rate:g}%",
                ):
                    f.suggest(f"{prefix}.gst_rate", "FIX_GST_RATE", f"Set line item {line} GST rate to 0%",
                              value=0.0, confidence=0.95)

            description = (item.description or "").lower()
            if item.tax_category != "Z" and any(hint in description for hint in ZERO_RATING_HINTS):
                f.suggest(f"{prefix}.tax_category", "SUGGEST_ZERO_RATING",
                          f"Line item {line} appears to be an export. Consider zero-rating (GST 0%)",
                          confidence=0.7)

    def _check_amounts(self, invoice: Invoice, rate: float, f: _Findings):
        tol = self.tolerance
        final_subtotal = invoice.subtotal
        final_gst = invoice.gst_amount

        if invoice.items:
            line_amounts = [(item, self._expected_line_amount(item)) for item in invoice.items]
            expected_subtotal = round(sum(amount for _, amount in line_amounts), 2)
            expected_gst = round(sum(
                amount * rate / 100 for item, amount in line_amounts if item.tax_category in (None, "S")
            ), 2)
            # Unstated figures are reconciled against the line items
            if final_subtotal is None:
                final_subtotal = expected_subtotal
            if final_gst is None:
                final_gst = expected_gst

            if invoice.subtotal is not None and not f.check(
                abs(invoice.subtotal - expected_subtotal) <= tol, "subtotal", "SUBTOTAL_MISMATCH",
                f"Subtotal mismatch. Expected: {_money(expected_subtotal)}, Got: {_money(invoice.subtotal)}",
            ):
                f.suggest("subtotal", "FIX_SUBTOTAL", f"Update subtotal to {_money(expected_subtotal)}",
                          value=expected_subtotal, confidence=0.95)
                final_subtotal = expected_subtotal

            if invoice.gst_amount is not None and not f.check(
                abs(invoice.gst_amount - expected_gst) <= tol, "gst_amount", "INCORRECT_GST_AMOUNT",
                f"GST amount mismatch. Expected: {_money(expected_gst)}, Got: {_money(invoice.gst_amount)}",
                details={"gst_rate": rate},
            ):
                f.suggest("gst_amount", "FIX_GST_AMOUNT", f"Update GST amount to {_money(expected_gst)}",
                          value=expected_gst, confidence=0.95)
                final_gst = expected_gst

        if final_subtotal is not None and final_gst is not None and invoice.total_amount is not None:
            expected_total = round(final_subtotal + final_gst, 2)
            if not f.check(
                abs(invoice.total_amount - expected_total) <= tol, "total_amount", "TOTAL_MISMATCH",
                f"Total amount mismatch. Expected: {_money(expected_total)}, Got: {_money(invoice.total_amount)}",
            ):
                f.suggest("total_amount", "FIX_TOTAL", f"Update total to {_money(expected_total)}",
                          value=expected_total, confidence=0.95)

        if invoice.total_amount is not None:
            if f.check(invoice.total_amount > 0, "total_amount", "INVALID_TOTAL_AMOUNT",
                       "Total amount must be greater than zero"):
                f.check(invoice.total_amount <= HIGH_AMOUNT_THRESHOLD, "total_amount", "UNUSUALLY_HIGH_AMOUNT",
                        "Total amount exceeds $10,000,000. Please verify this is correct.", blocking=False)
                f.check(invoice.total_amount >= LOW_AMOUNT_THRESHOLD, "total_amount", "UNUSUALLY_LOW_AMOUNT",
                        "Total amount is less than $1. Please verify this is correct.", blocking=False)

        if invoice.gst_amount == 0 and invoice.subtotal and invoice.subtotal > 0:
            f.check(
                any(item.tax_category == "Z" for item in invoice.items), "gst_amount", "ZERO_GST_WITHOUT_CATEGORY",
                "Invoice has zero GST but no items marked as zero-rated. "
                "Please verify if this is an export or international service.",
                blocking=False,
            )

    def _check_due_date(self, invoice: Invoice, invoice_date: date | None, f: _Findings):
        due_date = parse_iso_date(invoice.due_date)
        if invoice_date is None or due_date is None:
            return

        days = (due_date - invoice_date).days
        if not f.check(days >= 0, "due_date", "DUE_DATE_BEFORE_INVOICE", "Due date cannot be before invoice date"):
            return
        f.check(days != 0, "due_date", "SAME_DAY_PAYMENT",
                "Due date is same as invoice date (immediate payment terms)", blocking=False)
        f.check(days <= MAX_PAYMENT_TERM_DAYS, "due_date", "EXCESSIVE_PAYMENT_TERMS",
                f"Payment terms of {days} days exceed typical business practice", blocking=False)

        if not invoice.payment_terms:
            terms = standard_payment_terms(days)
            f.suggest("payment_terms", "SUGGEST_PAYMENT_TERMS", f"Add payment terms: {terms}",
                      value=terms, confidence=0.8)

    def _check_gst_registration(self, invoice: Invoice, f: _Findings):
        if f.check(bool(invoice.vendor_gst_number), "vendor_gst_number", "MISSING_GST_NUMBER",
                   "GST registration number is required for tax invoices"):
            error = validate_gst_number(invoice.vendor_gst_number.strip().upper())
            f.check(error is None, "vendor_gst_number", "INVALID_GST_NUMBER", error or "")

    async def _check_entities(self, invoice: Invoice, f: _Findings):
        vendor_uen = normalize_uen(invoice.vendor_uen) if invoice.vendor_uen else None
        customer_uen = normalize_uen(invoice.customer_uen) if invoice.customer_uen else None

        async def lookup(uen: str | None) -> EntityVerificationResult | None:
            if not uen or not is_valid_format(uen):
                return None
            return await self.verifier.verify(uen)

        vendor, customer = await asyncio.gather(lookup(vendor_uen), lookup(customer_uen))

        if vendor_uen:
            self._check_entity("vendor", vendor_uen, vendor, f)
            if vendor is not None and vendor.exists and vendor.gst_registered is False:
                f.check(
                    not invoice.vendor_gst_number and not invoice.gst_amount,
                    "vendor_uen", "VENDOR_NOT_GST_REGISTERED",
                    "Vendor is not GST registered in registry records but the invoice charges GST",
                    blocking=False,
                )

        if customer_uen:
            if self._check_entity("customer", customer_uen, customer, f):
                if customer.entity_name and customer.entity_name != invoice.customer_name:
                    f.suggest("customer_name", "SUGGEST_CUSTOMER_NAME",
                              f"Update customer name to: {customer.entity_name}",
                              value=customer.entity_name, confidence=0.9)

    def _check_entity(self, role: str, uen: str, result: EntityVerificationResult | None, f: _Findings) -> bool:
        field = f"{role}_uen"
        upper = role.upper()
        if not f.check(
            result is not None, field, f"INVALID_{upper}_UEN",
            "Invalid UEN format. Expected: NNNNNNNNX (8-9 digits + letter) or special entity format",
        ):
            return False
        if not f.check(result.exists, field, f"{upper}_UEN_NOT_FOUND",
                       result.error or "UEN not found in ACRA records", details={"uen": uen}):
            return False
        return f.check(result.is_active, field, f"INACTIVE_{upper}",
                       f"Entity status is {result.entity_status}", details={"uen": uen})


_FIELD_PATH = re.compile(r"^(\w+)\[(\d+)\]\.(\w+)$")


def _apply_fix(invoice: Invoice, path: str, value) -> bool:
    match = _FIELD_PATH.match(path)
    if match:
        collection, index, attribute = match.group(1), int(match.group(2)), match.group(3)
        items = getattr(invoice, collection, None)
        if items is None or index >= len(items) or not hasattr(items[index], attribute):
            return False
        setattr(items[index], attribute, value)
        return True
    if path in Invoice.model_fields:
        setattr(invoice, path, value)
        return True
    return False


def auto_fix_invoice(invoice: Invoice, result: ValidationResult) -> Invoice:
    """Apply every auto-fixable suggestion to a copy of the invoice."""
    fixed = invoice.model_copy(deep=True)
    applied = []
    for suggestion in result.suggestions:
        if not suggestion.auto_fix_available or suggestion.auto_fix_value is None:
            continue
        if _apply_fix(fixed, suggestion.field, suggestion.auto_fix_value):
            applied.append(suggestion.code)
        else:
            logger.warning("Could not apply auto-fix", field=suggestion.field, code=suggestion.code)

    logger.info("Applied invoice auto-fixes", invoice_number=fixed.invoice_number, fixes=applied)
    return fixed


def generate_validation_report(result: ValidationResult) -> str:
    report = [
        "=== GST INVOICE VALIDATION REPORT ===",
        f"Validation Score: {result.score}/100",
        f"Status: {'VALID' if result.is_valid else 'INVALID'}",
        "",
        "=== COMPLIANCE INFO ===",
        f"Effective GST Rate: {result.metadata.gst_rate:g}%",
        f"Invoice Date: {result.metadata.effective_date}",
        f"Checks: {result.metadata.checks_run} run, {result.metadata.checks_failed} failed",
        "",
    ]

    if result.errors:
        report.append("=== ERRORS ===")
        report.extend(f"[{e.code}] {e.field}: {e.message}" for e in result.errors)
        report.append("")

    if result.warnings:
        report.append("=== WARNINGS ===")
        report.extend(f"[{w.code}] {w.field}: {w.message}" for w in result.warnings)
        report.append("")

    if result.suggestions:
        report.append("=== SUGGESTIONS ===")
        for s in result.suggestions:
            report.append(f"{s.field}: {s.suggestion}")
            if s.auto_fix_available:
                report.append(f"  -> Auto-fix available (confidence: {s.confidence})")
        report.append("")

    return "\n".join(report).rstrip() + "\n"
