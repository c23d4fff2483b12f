"""
Tests for heuristic line item extraction from raw OCR text.
"""

from decimal import Decimal

import pytest

from invoice_engine.services.line_items import (
    COMMA,
    DOT,
    ITEM,
    OTHER,
    SUMMARY,
    classify_line,
    detect_decimal_locale,
    extract_line_items,
    parse_amount,
    parse_item_line,
    tokenize,
)


SIMPLE_INVOICE = "Widget A  2  10.00  20.00\nSubtotal 20.00\nVAT 2.00\nTotal 22.00"


def test_simple_invoice_yields_exactly_one_item():
    result = extract_line_items(SIMPLE_INVOICE)

    assert len(result.line_items) == 1
    item = result.line_items[0]
    assert item.description == "Widget A"
    assert item.quantity == Decimal("2")
    assert item.unit_price == Decimal("10.00")
    assert item.amount == Decimal("20.00")
    assert item.confidence_score == 1.0


def test_simple_invoice_summary_fields_are_not_line_items():
    result = extract_line_items(SIMPLE_INVOICE)

    assert result.summary.subtotal == Decimal("20.00")
    assert result.summary.tax == Decimal("2.00")
    assert result.summary.total == Decimal("22.00")
    assert result.decimal_locale == DOT
    assert result.low_confidence is False
    assert result.document_confidence == 1.0


def test_extraction_is_deterministic():
    text = SIMPLE_INVOICE + "\nShipping 5.00\nCable 3 x 4.00 12.00"
    assert extract_line_items(text) == extract_line_items(text)


@pytest.mark.parametrize("garbage", ["", None, "%%%\n@@@ ###", "\n\n   \n", "Page 1 of 2"])
def test_garbage_input_returns_empty_low_confidence(garbage):
    result = extract_line_items(garbage)

    assert result.line_items == []
    assert result.low_confidence is True
    assert result.document_confidence == 0.0


def test_amount_only_line_has_reduced_confidence():
    item = parse_item_line("Shipping 15.00")

    assert item.description == "Shipping"
    assert item.quantity is None
    assert item.unit_price is None
    assert item.amount == Decimal("15.00")
    assert item.confidence_score == pytest.approx(0.4)


def test_quantity_times_price_pattern():
    item = parse_item_line("Cable 3 x 4.00 12.00")

    assert item.description == "Cable"
    assert item.quantity == Decimal("3")
    assert item.unit_price == Decimal("4.00")
    assert item.amount == Decimal("12.00")
    assert item.confidence_score == 1.0


def test_arithmetic_mismatch_lowers_confidence():
    item = parse_item_line("Widget B  2  10.00  25.00")

    assert item.quantity == Decimal("2")
    assert item.unit_price == Decimal("10.00")
    assert item.confidence_score == pytest.approx(0.7)


def test_quantity_only_derives_unit_price():
    item = parse_item_line("Licence seats  4  100.00")

    assert item.quantity == Decimal("4")
    assert item.unit_price == Decimal("25.00")
    assert item.confidence_score == pytest.approx(0.7)


def test_oversize_amount_keeps_row_without_unit_price():
    line = "Widget 3 99999999999999999999999999999999.00"

    item = parse_item_line(line)

    assert item.quantity == Decimal("3")
    assert item.unit_price is None
    assert item.amount == Decimal("99999999999999999999999999999999.00")

    result = extract_line_items(line)
    assert len(result.line_items) == 1
    assert result.line_items[0].unit_price is None


def test_currency_symbols_are_accepted():
    item = parse_item_line("Hosting  1  $50.00  $50.00")

    assert item.description == "Hosting"
    assert item.unit_price == Decimal("50.00")
    assert item.amount == Decimal("50.00")


def test_trailing_currency_code_is_ignored():
    item = parse_item_line("Hosting  1  50.00  50.00 USD")

    assert item.amount == Decimal("50.00")
    assert item.confidence_score == 1.0


def test_comma_decimal_document():
    text = "Bolts  100  0,25  25,00\nConsulting  1  1.200,00  1.200,00\nSubtotal 1.225,00"

    result = extract_line_items(text)

    assert result.decimal_locale == COMMA
    assert [i.amount for i in result.line_items] == [Decimal("25.00"), Decimal("1200.00")]
    assert result.line_items[0].unit_price == Decimal("0.25")
    assert result.summary.subtotal == Decimal("1225.00")
    assert result.low_confidence is False


def test_locale_hint_overrides_detection():
    lines = ["Total 1,50", "Tax 0,30"]

    assert detect_decimal_locale(lines) == COMMA
    assert detect_decimal_locale(lines, locale_hint="dot") == DOT


def test_locale_tie_resolves_to_dot():
    assert detect_decimal_locale(["a 1,50", "b 2.50"]) == DOT


def test_unknown_locale_hint_falls_back_to_detection():
    assert detect_decimal_locale(["Total 1,50"], locale_hint="klingon") == COMMA


def test_subtotal_wins_over_total():
    classification = classify_line("Sub-total: 20.00")

    assert classification.kind == SUMMARY
    assert classification.summary_field == "subtotal"


def test_total_including_tax_is_total():
    classification = classify_line("Total incl. VAT 22.00")

    assert classification.kind == SUMMARY
    assert classification.summary_field == "total"


def test_negative_discount_line():
    classification = classify_line("Discount -5.00")

    assert classification.kind == SUMMARY
    assert classification.summary_field == "discount"
    assert classification.amount == Decimal("-5.00")


def test_keyword_in_item_description_with_columns_is_an_item():
    classification = classify_line("Tax advisory  1  100.00  100.00")

    assert classification.kind == ITEM
    assert classification.description == "Tax advisory"


@pytest.mark.parametrize("line", [
    "Description  Qty  Unit Price  Amount",
    "Invoice Date: 2025-09-30",
    "20.00",
    "Invoice No: 12345",
])
def test_non_item_lines(line):
    assert classify_line(line).kind == OTHER
    assert parse_item_line(line) is None


def test_items_disagreeing_with_subtotal_flag_low_confidence():
    result = extract_line_items("Widget A  2  10.00  20.00\nSubtotal 50.00")

    assert len(result.line_items) == 1
    assert result.low_confidence is True


def test_low_mean_confidence_flags_document():
    result = extract_line_items("Shipping 5.00\nHandling 2.00")

    assert result.document_confidence == pytest.approx(0.4)
    assert result.low_confidence is True


@pytest.mark.parametrize("token,locale,expected", [
    ("1,234.56", DOT, Decimal("1234.56")),
    ("1.234,56", COMMA, Decimal("1234.56")),
    ("(5.00)", DOT, Decimal("-5.00")),
    ("€12,50", COMMA, Decimal("12.50")),
    ("1,5", DOT, Decimal("1.5")),
    ("2", DOT, Decimal("2")),
])
def test_parse_amount(token, locale, expected):
    assert parse_amount(token, locale) == expected


@pytest.mark.parametrize("token", ["abc", "NaN", "1e5", "", "15.01.2024", "10%"])
def test_parse_amount_rejects_non_numbers(token):
    assert parse_amount(token) is None


def test_tokenize_drops_blank_lines():
    assert tokenize("  first \n\n\t\n second  ") == ["first", "second"]
