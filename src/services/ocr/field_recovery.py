"""
Field recovery: heuristics that turn analyzed OCR output into an ExtractedInvoice.

Label matching is driven by FIELD_ALIASES, a declarative table of
field -> ordered aliases. A lookup first tries every alias as an exact
(lower-case) label, then falls back to substring containment. Every
recovery step is optional: a field that cannot be recovered stays None.
"""

import re
from dataclasses import dataclass
from datetime import date
from typing import Callable, TypeVar
from loguru import logger
from ..invoice_types import ExtractedInvoice, LineItem
from .analyzer import AnalyzedDocument

T = TypeVar("T")


@dataclass(frozen=True)
class FieldAliases:
    aliases: tuple[str, ...]
    exclude: tuple[str, ...] = ()  # substring matches whose label contains any of these are ignored


FIELD_ALIASES: dict[str, FieldAliases] = {
    "invoice_number": FieldAliases(
        ("invoice number", "invoice no", "inv no", "invoice #", "tax invoice no", "tax invoice"),
        exclude=("date",),
    ),
    "invoice_date": FieldAliases(
        ("invoice date", "date", "bill date", "billing date", "issue date"),
        exclude=("due",),
    ),
    "due_date": FieldAliases(("due date", "payment due", "due by")),
    "customer_name": FieldAliases(
        ("bill to", "customer", "client", "sold to", "billed to", "invoice to"),
        exclude=("uen", "reg no", "registration"),
    ),
    "customer_uen": FieldAliases(("customer uen", "bill to uen", "client uen")),
    "vendor_name": FieldAliases(
        ("from", "vendor", "supplier", "seller", "company name"),
        exclude=("uen", "gst", "reg"),
    ),
    "vendor_uen": FieldAliases(
        ("company uen", "vendor uen", "supplier uen", "our uen", "uen", "co. reg no", "reg no", "registration no"),
        exclude=("customer", "client", "bill to", "gst"),
    ),
    "vendor_gst_number": FieldAliases(
        ("gst reg no", "gst registration no", "gst registration number", "gst no", "gst reg"),
    ),
    "subtotal": FieldAliases(("subtotal", "sub total", "sub-total", "net amount", "net total")),
    "gst_amount": FieldAliases(
        ("gst", "gst amount", "tax", "tax amount", "gst 9%", "gst @ 9%"),
        exclude=("reg", " no", "no.", "number", "total", "incl"),
    ),
    "total_amount": FieldAliases(
        ("total", "grand total", "total amount", "amount due", "total due", "total payable"),
        exclude=("sub",),
    ),
}

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}
MONTH_NAMES = {
    "january", "february", "march", "april", "may", "june", "july",
    "august", "september", "sept", "october", "november", "december",
} | set(MONTHS)

DMY_PATTERN = re.compile(r"(\d{1,2})[/\-](\d{1,2})[/\-](\d{4})")
YMD_PATTERN = re.compile(r"(\d{4})[/\-](\d{1,2})[/\-](\d{1,2})")
D_MONTH_Y_PATTERN = re.compile(r"(\d{1,2})\s+([A-Za-z]{3,9})\.?,?\s+(\d{4})")

UEN_PATTERNS = (
    re.compile(r"(?<![0-9A-Za-z])(\d{8,9}[A-Z])(?![0-9A-Za-z])"),
    re.compile(r"(?<![0-9A-Za-z])([TRS]\d{2}[A-Z]{2}\d{4}[A-Z])(?![0-9A-Za-z])"),
)
GST_NUMBER_PATTERNS = (
    re.compile(r"\b(M\d-\d{7}-\d)\b", re.IGNORECASE),
    re.compile(r"\b(GST\d{8})\b", re.IGNORECASE),
    re.compile(r"GST\s*(?:Reg(?:istration)?\.?\s*)?(?:No\.?|Number)?[:\s]*(\d{8})\b", re.IGNORECASE),
    re.compile(r"^\s*(\d{8})\s*$"),
)
VENDOR_NAME_PATTERN = re.compile(r"^(.+?(?:PTE\.?\s*LTD\.?|PRIVATE LIMITED|LIMITED|LTD\.?|LLP))", re.IGNORECASE)
SUMMARY_ROW_PATTERN = re.compile(
    r"^(sub[\s\-]*total|total|grand\s*total|amount\s*due|balance(\s*due)?|gst|tax)"
    r"\s*(\(.*\)|@?\s*\d+(\.\d+)?\s*%)?\s*:?\s*$",
    re.IGNORECASE,
)

CURRENCY_MARKERS = {
    "US$": "USD", "USD": "USD", "S$": "SGD", "SGD": "SGD", "AUD": "AUD", "EUR": "EUR", "€": "EUR",
    "GBP": "GBP", "£": "GBP", "MYR": "MYR", "CAD": "CAD", "JPY": "JPY", "CNY": "CNY",
}

DESCRIPTION_HEADERS = ("description", "item", "product", "service", "particulars")
QUANTITY_HEADERS = ("qty", "quantity", "units")
UNIT_PRICE_HEADERS = ("unit price", "price", "rate", "unit cost", "unit")
AMOUNT_HEADERS = ("amount", "line total", "total", "value")
AMOUNT_LIKE_HEADERS = ("amount", "total", "price")

HEADER_LINE_COUNT = 10


# ---------------------------------------------------------------------------
# Scalar lookups
# ---------------------------------------------------------------------------

def find_value(key_values: dict[str, str], field: str | FieldAliases) -> str | None:
    """Look up a field by alias: exact label match first, then substring containment."""
    entry = FIELD_ALIASES[field] if isinstance(field, str) else field

    for alias in entry.aliases:
        value = key_values.get(alias)
        if value:
            return value

    for alias in entry.aliases:
        for label, value in key_values.items():
            if alias in label and not any(word in label for word in entry.exclude) and value:
                return value
    return None


def parse_date(text: str) -> str:
    """Normalise a date to ISO format; unparseable text is returned unchanged."""
    raw = text.strip()

    match = DMY_PATTERN.search(raw)
    if match:
        day, month, year = (int(g) for g in match.groups())
        iso = _iso_date(year, month, day)
        if iso:
            return iso

    match = YMD_PATTERN.search(raw)
    if match:
        year, month, day = (int(g) for g in match.groups())
        iso = _iso_date(year, month, day)
        if iso:
            return iso

    match = D_MONTH_Y_PATTERN.search(raw)
    if match:
        day, month_name, year = match.groups()
        month_name = month_name.lower()
        if month_name in MONTH_NAMES:
            iso = _iso_date(int(year), MONTHS[month_name[:3]], int(day))
            if iso:
                return iso

    return raw


def _iso_date(year: int, month: int, day: int) -> str | None:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def parse_amount(text: str | None) -> float | None:
    """Parse a currency string; None (not 0) when nothing numeric remains."""
    if not text:
        return None
    cleaned = re.sub(r"[^0-9.\-]", "", text)
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def extract_uen(text: str) -> str | None:
    for pattern in UEN_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def extract_gst_number(text: str) -> str | None:
    for pattern in GST_NUMBER_PATTERNS:
        match = pattern.search(text)
        if match:
            return normalize_gst_number(match.group(1))
    return None


def normalize_uen(uen: str) -> str:
    return re.sub(r"[^0-9A-Z]", "", uen.upper())


def normalize_gst_number(gst_number: str) -> str:
    normalized = re.sub(r"[^0-9A-Z\-]", "", gst_number.upper())
    if re.fullmatch(r"\d{8}", normalized):
        normalized = "GST" + normalized
    return normalized


def detect_currency(*texts: str | None) -> str | None:
    for text in texts:
        if not text:
            continue
        upper = text.upper()
        for marker, code in CURRENCY_MARKERS.items():
            if marker in upper:
                return code
    return None


def find_date(key_values: dict[str, str], field: str) -> str | None:
    value = find_value(key_values, field)
    return parse_date(value) if value else None


def find_amount(key_values: dict[str, str], field: str) -> float | None:
    return parse_amount(find_value(key_values, field))


def find_uen(key_values: dict[str, str], field: str) -> str | None:
    value = find_value(key_values, field)
    if not value:
        return None
    return extract_uen(value) or value.strip()


def find_gst_number(key_values: dict[str, str], field: str = "vendor_gst_number") -> str | None:
    value = find_value(key_values, field)
    if not value:
        return None
    return extract_gst_number(value) or value.strip()


# ---------------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------------

def _find_column(headers: list[str], keywords: tuple[str, ...], taken: set[int], reverse: bool = False) -> int | None:
    indexes = range(len(headers) - 1, -1, -1) if reverse else range(len(headers))
    for keyword in keywords:
        for index in indexes:
            if index not in taken and keyword in headers[index]:
                return index
    return None


def identify_item_columns(header_row: list[str]) -> dict[str, int | None]:
    """Map description/quantity/unit_price/amount to column indexes, with positional defaults."""
    headers = [h.lower().strip() for h in header_row]
    taken: set[int] = set()
    columns: dict[str, int | None] = {}

    for name, keywords, reverse in (
        ("description", DESCRIPTION_HEADERS, False),
        ("quantity", QUANTITY_HEADERS, False),
        ("unit_price", UNIT_PRICE_HEADERS, False),
        ("amount", AMOUNT_HEADERS, True),
    ):
        index = _find_column(headers, keywords, taken, reverse=reverse)
        columns[name] = index
        if index is not None:
            taken.add(index)

    last = len(headers) - 1
    for name, default in (("description", 0), ("amount", last), ("quantity", 1), ("unit_price", 2)):
        if columns[name] is None and 0 <= default < len(headers) and default not in taken:
            columns[name] = default
            taken.add(default)
    return columns


def _cell(row: list[str], index: int | None) -> str:
    if index is None or index >= len(row):
        return ""
    return row[index] or ""


def _is_line_item_table(header_row: list[str]) -> bool:
    headers = [h.lower() for h in header_row]
    has_description = any(k in h for h in headers for k in DESCRIPTION_HEADERS)
    has_amount = any(k in h for h in headers for k in AMOUNT_LIKE_HEADERS)
    return has_description or has_amount


def extract_line_items(tables: list[list[list[str]]]) -> list[LineItem]:
    """Recover line items from the first table that looks like an item table."""
    for table in tables:
        if len(table) < 2 or not _is_line_item_table(table[0]):
            continue

        columns = identify_item_columns(table[0])
        items: list[LineItem] = []
        for row in table[1:]:
            description = _cell(row, columns["description"]).strip()
            if not description or SUMMARY_ROW_PATTERN.match(description):
                continue

            amount = parse_amount(_cell(row, columns["amount"]))
            if amount is None or amount <= 0:
                continue

            quantity = parse_amount(_cell(row, columns["quantity"]))
            if quantity is None or quantity <= 0:
                quantity = 1.0
            unit_price = parse_amount(_cell(row, columns["unit_price"]))
            if unit_price is None:
                unit_price = round(amount / quantity, 2)

            items.append(LineItem(description=description, quantity=quantity, unit_price=unit_price, amount=amount))

        # Only the first matching table is used
        return items
    return []


# ---------------------------------------------------------------------------
# Line-text fallbacks
# ---------------------------------------------------------------------------

def extract_customer_from_lines(lines: list[str]) -> str | None:
    """Take the line right after a 'bill to' / 'customer' marker line."""
    found_marker = False
    for line in lines:
        lower = line.lower()
        is_marker = "bill to" in lower or "customer" in lower
        if found_marker and not is_marker and line.strip():
            return line.strip()
        if is_marker:
            found_marker = True
    return None


def extract_vendor_name_from_lines(lines: list[str]) -> str | None:
    for line in lines[:HEADER_LINE_COUNT]:
        match = VENDOR_NAME_PATTERN.match(line.strip())
        if match:
            return match.group(1).strip()
    return None


def _attempt(label: str, step: Callable[[], T]) -> T | None:
    try:
        return step()
    except Exception:
        logger.exception("Field recovery step failed", field=label)
        return None


def recover_invoice(document: AnalyzedDocument) -> ExtractedInvoice:
    kv = document.key_values
    lines = document.lines

    extracted = ExtractedInvoice(
        invoice_number=_attempt("invoice_number", lambda: find_value(kv, "invoice_number")),
        invoice_date=_attempt("invoice_date", lambda: find_date(kv, "invoice_date")),
        due_date=_attempt("due_date", lambda: find_date(kv, "due_date")),
        customer_name=_attempt("customer_name", lambda: find_value(kv, "customer_name")),
        customer_uen=_attempt("customer_uen", lambda: find_uen(kv, "customer_uen")),
        vendor_name=_attempt("vendor_name", lambda: find_value(kv, "vendor_name")),
        vendor_uen=_attempt("vendor_uen", lambda: find_uen(kv, "vendor_uen")),
        vendor_gst_number=_attempt("vendor_gst_number", lambda: find_gst_number(kv)),
        subtotal=_attempt("subtotal", lambda: find_amount(kv, "subtotal")),
        gst_amount=_attempt("gst_amount", lambda: find_amount(kv, "gst_amount")),
        total_amount=_attempt("total_amount", lambda: find_amount(kv, "total_amount")),
        items=_attempt("items", lambda: extract_line_items(document.tables)) or [],
    )

    if not extracted.customer_name:
        extracted.customer_name = _attempt("customer_name", lambda: extract_customer_from_lines(lines))

    header_text = "\n".join(lines[:HEADER_LINE_COUNT])
    if not extracted.vendor_name:
        extracted.vendor_name = _attempt("vendor_name", lambda: extract_vendor_name_from_lines(lines))
    if not extracted.vendor_gst_number:
        extracted.vendor_gst_number = _attempt("vendor_gst_number", lambda: extract_gst_number(header_text))

    if not extracted.vendor_uen or not extracted.customer_uen:
        for index, line in enumerate(lines):
            uen = extract_uen(line)
            if not uen or uen in (extracted.vendor_uen, extracted.customer_uen):
                continue
            if index < HEADER_LINE_COUNT and not extracted.vendor_uen:
                extracted.vendor_uen = uen
            elif index >= HEADER_LINE_COUNT and not extracted.customer_uen:
                extracted.customer_uen = uen

    if extracted.vendor_uen:
        extracted.vendor_uen = normalize_uen(extracted.vendor_uen)
    if extracted.customer_uen:
        extracted.customer_uen = normalize_uen(extracted.customer_uen)

    extracted.currency = detect_currency(find_value(kv, "total_amount"), find_value(kv, "subtotal"))

    logger.debug(
        "Recovered invoice fields",
        invoice_number=extracted.invoice_number,
        items=len(extracted.items),
        total=extracted.total_amount,
    )
    return extracted
