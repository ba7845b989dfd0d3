"""
Tests for Singapore GST tax-invoice compliance validation, auto-fix and reporting.
"""

import asyncio
from datetime import date
import pytest
from src.services.invoice_types import Invoice
from src.services.validation.gst_validator import (
    auto_fix_invoice,
    generate_validation_report,
    gst_rate_for,
    standard_payment_terms,
    validate_gst_number,
)


def valid_invoice(**overrides) -> Invoice:
    data = {
        "invoice_number": "INV-001",
        "invoice_date": "2024-03-01",
        "due_date": "2024-03-31",
        "payment_terms": "Net 30",
        "customer_name": "ABC TRADING PTE. LTD.",
        "customer_uen": "201234567A",
        "vendor_name": "XYZ SERVICES PTE. LTD.",
        "vendor_uen": "199912345K",
        "vendor_gst_number": "GST12345678",
        "subtotal": 100.0,
        "gst_amount": 9.0,
        "total_amount": 109.0,
        "items": [{"description": "Widget", "quantity": 1, "unit_price": 100.0, "amount": 100.0,
                   "tax_category": "S", "gst_rate": 9.0}],
    }
    data.update(overrides)
    return Invoice(**data)


def _codes(issues):
    return [issue.code for issue in issues]


def _suggestion(result, code):
    return next(s for s in result.suggestions if s.code == code)


@pytest.mark.parametrize(
    "invoice_date,rate",
    [
        (date(2006, 1, 1), 7.0),
        (date(2010, 5, 1), 7.0),
        (date(2022, 12, 31), 7.0),
        (date(2023, 1, 1), 8.0),
        (date(2023, 12, 31), 8.0),
        (date(2024, 1, 1), 9.0),
        (None, 9.0),
    ],
)
def test_gst_rate_history(invoice_date, rate):
    assert gst_rate_for(invoice_date) == rate


def test_gst_number_formats():
    assert validate_gst_number("GST12345678") is None
    assert validate_gst_number("M2-1234567-7") is None
    assert validate_gst_number("M2-1234567-8") == "Invalid GST number checksum"
    assert "Invalid GST number format" in validate_gst_number("12-34")


def test_standard_payment_terms():
    assert standard_payment_terms(0) == "Immediate"
    assert standard_payment_terms(30) == "Net 30"


def test_compliant_invoice_passes(validator):
    result = asyncio.run(validator.validate(valid_invoice()))

    assert result.is_valid
    assert result.score == 100
    assert result.errors == []
    assert result.warnings == []
    assert result.suggestions == []
    assert result.metadata.gst_rate == 9.0
    assert result.metadata.effective_date == "2024-03-01"
    assert result.metadata.checks_failed == 0


def test_total_mismatch_is_reported_on_total_amount(validator):
    result = asyncio.run(validator.validate(valid_invoice(total_amount=108.0)))

    assert not result.is_valid
    assert _codes(result.errors) == ["TOTAL_MISMATCH"]
    assert result.errors[0].field == "total_amount"
    assert _suggestion(result, "FIX_TOTAL").auto_fix_value == 109.0
    assert 0 < result.score < 100


def test_total_is_checked_against_items_when_subtotal_and_gst_are_absent(validator):
    invoice = valid_invoice(subtotal=None, gst_amount=None, total_amount=5000.0)

    result = asyncio.run(validator.validate(invoice))

    assert not result.is_valid
    assert _codes(result.errors) == ["TOTAL_MISMATCH"]
    assert _suggestion(result, "FIX_TOTAL").auto_fix_value == 109.0

    fixed = asyncio.run(validator.validate(auto_fix_invoice(invoice, result)))
    assert fixed.is_valid


def test_empty_invoice_fails_every_required_check(validator):
    result = asyncio.run(validator.validate(Invoice()))

    assert not result.is_valid
    assert result.score == 0
    assert set(_codes(result.errors)) == {
        "MISSING_INVOICE_NUMBER",
        "MISSING_INVOICE_DATE",
        "MISSING_CUSTOMER_NAME",
        "NO_LINE_ITEMS",
        "MISSING_GST_NUMBER",
    }
    assert _codes(result.warnings) == ["MISSING_VENDOR_NAME"]


def test_rate_follows_invoice_date(validator):
    invoice = valid_invoice(
        invoice_date="2023-06-01",
        due_date="2023-07-01",
        gst_amount=8.0,
        total_amount=108.0,
        items=[{"description": "Widget", "quantity": 1, "unit_price": 100.0, "amount": 100.0,
                "tax_category": "S", "gst_rate": 8.0}],
    )

    result = asyncio.run(validator.validate(invoice))

    assert result.is_valid
    assert result.metadata.gst_rate == 8.0


def test_wrong_line_rate_is_flagged_with_fix(validator):
    invoice = valid_invoice(items=[{"description": "Widget", "quantity": 1, "unit_price": 100.0,
                                    "amount": 100.0, "tax_category": "S", "gst_rate": 8.0}])

    result = asyncio.run(validator.validate(invoice))

    assert "INCORRECT_GST_RATE" in _codes(result.errors)
    assert result.errors[0].field == "items[0].gst_rate"
    assert _suggestion(result, "FIX_GST_RATE").auto_fix_value == 9.0


def test_arithmetic_errors_cascade_and_auto_fix_resolves_them(validator):
    invoice = valid_invoice(
        items=[{"description": "Widget", "quantity": 2, "unit_price": 10.0, "amount": 25.0,
                "tax_category": "S", "gst_rate": 9.0}],
        subtotal=25.0,
        gst_amount=2.25,
        total_amount=27.25,
    )

    result = asyncio.run(validator.validate(invoice))

    assert _codes(result.errors) == [
        "LINE_AMOUNT_MISMATCH",
        "SUBTOTAL_MISMATCH",
        "INCORRECT_GST_AMOUNT",
        "TOTAL_MISMATCH",
    ]
    assert _suggestion(result, "FIX_LINE_AMOUNT").auto_fix_value == 20.0
    assert _suggestion(result, "FIX_SUBTOTAL").auto_fix_value == 20.0
    assert _suggestion(result, "FIX_GST_AMOUNT").auto_fix_value == 1.8
    assert _suggestion(result, "FIX_TOTAL").auto_fix_value == 21.8

    fixed = auto_fix_invoice(invoice, result)

    assert fixed.items[0].amount == 20.0
    assert fixed.total_amount == 21.8
    assert invoice.items[0].amount == 25.0
    assert invoice.total_amount == 27.25
    assert asyncio.run(validator.validate(fixed)).is_valid


def test_line_amount_tolerance_scales_with_quantity(validator):
    invoice = valid_invoice(
        items=[{"description": "Bolts", "quantity": 3, "unit_price": 33.33, "amount": 100.0,
                "tax_category": "S", "gst_rate": 9.0}],
    )

    result = asyncio.run(validator.validate(invoice))

    assert "LINE_AMOUNT_MISMATCH" not in _codes(result.errors)


def test_missing_tax_category_is_suggested_and_fixable(validator):
    invoice = valid_invoice(items=[{"description": "Widget", "quantity": 1, "unit_price": 100.0,
                                    "amount": 100.0}])

    result = asyncio.run(validator.validate(invoice))
    fixed = auto_fix_invoice(invoice, result)

    assert result.is_valid
    assert _suggestion(result, "SET_TAX_CATEGORY").auto_fix_value == "S"
    assert fixed.items[0].tax_category == "S"
    assert invoice.items[0].tax_category is None


def test_zero_rated_item_with_gst_rate(validator):
    invoice = valid_invoice(
        items=[{"description": "Export freight", "quantity": 1, "unit_price": 100.0, "amount": 100.0,
                "tax_category": "Z", "gst_rate": 9.0}],
        gst_amount=0.0,
        total_amount=100.0,
    )

    result = asyncio.run(validator.validate(invoice))

    assert _codes(result.errors) == ["ZERO_RATED_WITH_GST"]
    assert _suggestion(result, "FIX_GST_RATE").auto_fix_value == 0.0
    assert "ZERO_GST_WITHOUT_CATEGORY" not in _codes(result.warnings)


def test_export_description_suggests_zero_rating(validator):
    invoice = valid_invoice(items=[{"description": "Overseas consulting", "quantity": 1, "unit_price": 100.0,
                                    "amount": 100.0, "tax_category": "S", "gst_rate": 9.0}])

    result = asyncio.run(validator.validate(invoice))

    suggestion = _suggestion(result, "SUGGEST_ZERO_RATING")
    assert suggestion.auto_fix_available is False
    assert result.is_valid


def test_zero_gst_without_zero_rated_items_warns(validator):
    invoice = valid_invoice(
        items=[{"description": "Widget", "quantity": 1, "unit_price": 100.0, "amount": 100.0, "tax_category": "E"}],
        gst_amount=0.0,
        total_amount=100.0,
    )

    result = asyncio.run(validator.validate(invoice))

    assert result.is_valid
    assert "ZERO_GST_WITHOUT_CATEGORY" in _codes(result.warnings)


def test_date_checks(validator):
    future = asyncio.run(validator.validate(valid_invoice(invoice_date="2024-04-01", due_date="2024-05-01")))
    old = asyncio.run(validator.validate(valid_invoice(
        invoice_date="2018-01-10",
        due_date="2018-02-09",
        gst_amount=7.0,
        total_amount=107.0,
        items=[{"description": "Widget", "quantity": 1, "unit_price": 100.0, "amount": 100.0,
                "tax_category": "S", "gst_rate": 7.0}],
    )))
    garbled = asyncio.run(validator.validate(valid_invoice(invoice_date="01/03/2024")))

    assert future.is_valid
    assert "FUTURE_INVOICE_DATE" in _codes(future.warnings)
    assert "OLD_INVOICE_DATE" in _codes(old.warnings)
    assert "INVALID_INVOICE_DATE" in _codes(garbled.errors)


def test_due_date_checks(validator):
    before = asyncio.run(validator.validate(valid_invoice(due_date="2024-02-01")))
    same_day = asyncio.run(validator.validate(valid_invoice(due_date="2024-03-01", payment_terms=None)))
    long_terms = asyncio.run(validator.validate(valid_invoice(due_date="2024-12-31")))

    assert "DUE_DATE_BEFORE_INVOICE" in _codes(before.errors)
    assert "SAME_DAY_PAYMENT" in _codes(same_day.warnings)
    assert _suggestion(same_day, "SUGGEST_PAYMENT_TERMS").auto_fix_value == "Immediate"
    assert "EXCESSIVE_PAYMENT_TERMS" in _codes(long_terms.warnings)


def test_amount_range_checks(validator):
    zero = asyncio.run(validator.validate(valid_invoice(subtotal=None, gst_amount=None, total_amount=0.0)))
    huge = asyncio.run(validator.validate(valid_invoice(subtotal=None, gst_amount=None, total_amount=20_000_000.0)))

    assert "INVALID_TOTAL_AMOUNT" in _codes(zero.errors)
    assert "UNUSUALLY_HIGH_AMOUNT" in _codes(huge.warnings)


def test_invalid_gst_number(validator):
    result = asyncio.run(validator.validate(valid_invoice(vendor_gst_number="M2-1234567-8")))

    assert _codes(result.errors) == ["INVALID_GST_NUMBER"]


def test_struck_off_vendor_not_registered_for_gst(validator):
    result = asyncio.run(validator.validate(valid_invoice(vendor_uen="198801234W")))

    assert "INACTIVE_VENDOR" in _codes(result.errors)
    assert "VENDOR_NOT_GST_REGISTERED" in _codes(result.warnings)


def test_invalid_and_unknown_customer_uen(validator):
    invalid = asyncio.run(validator.validate(valid_invoice(customer_uen="12AB")))
    unknown = asyncio.run(validator.validate(valid_invoice(customer_uen="T20LL9999A")))

    assert "INVALID_CUSTOMER_UEN" in _codes(invalid.errors)
    assert "CUSTOMER_UEN_NOT_FOUND" in _codes(unknown.errors)


def test_registry_name_is_suggested_for_customer(validator):
    result = asyncio.run(validator.validate(valid_invoice(customer_name="ABC Trading")))

    assert result.is_valid
    assert _suggestion(result, "SUGGEST_CUSTOMER_NAME").auto_fix_value == "ABC TRADING PTE. LTD."


def test_foreign_currency_warns(validator):
    result = asyncio.run(validator.validate(valid_invoice(currency="USD")))

    assert result.is_valid
    assert _codes(result.warnings) == ["NON_SGD_CURRENCY"]


def test_validation_report_sections(validator):
    result = asyncio.run(validator.validate(valid_invoice(total_amount=108.0, currency="USD")))

    report = generate_validation_report(result)

    assert report.startswith("=== GST INVOICE VALIDATION REPORT ===")
    assert "Status: INVALID" in report
    assert "Effective GST Rate: 9%" in report
    assert "=== ERRORS ===" in report
    assert "[TOTAL_MISMATCH] total_amount" in report
    assert "=== WARNINGS ===" in report
    assert "=== SUGGESTIONS ===" in report
    assert "Auto-fix available" in report
