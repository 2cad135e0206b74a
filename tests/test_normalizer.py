"""
Unit tests for the LabelNormalizer and amount helpers.
"""

from __future__ import annotations

import math

import pytest

from statement_mapper.normalizer import LabelNormalizer, looks_like_amount


@pytest.fixture
def normalizer() -> LabelNormalizer:
    return LabelNormalizer()


# ======================================================================
# Label normalisation
# ======================================================================

class TestNormalizeLabel:
    def test_lowercase_and_strip(self, normalizer: LabelNormalizer) -> None:
        assert normalizer.normalize_label("  Sundry Creditors  ") == "sundry creditors"

    def test_punctuation_removal(self, normalizer: LabelNormalizer) -> None:
        result = normalizer.normalize_label("Current Liabilities & Provisions (Total)")
        assert "&" in result
        assert "(" not in result
        assert ")" not in result

    def test_apostrophe_dropped(self, normalizer: LabelNormalizer) -> None:
        assert normalizer.normalize_label("Proprietor's Capital") == "proprietors capital"

    def test_unicode_dash_normalised(self, normalizer: LabelNormalizer) -> None:
        assert normalizer.normalize_label("Short–term Liabilities") == "short-term liabilities"

    def test_whitespace_collapse(self, normalizer: LabelNormalizer) -> None:
        assert normalizer.normalize_label("Net   Sales") == "net sales"

    def test_empty_string(self, normalizer: LabelNormalizer) -> None:
        assert normalizer.normalize_label("") == ""


class TestNormalizeMemoryLabel:
    def test_keeps_punctuation(self, normalizer: LabelNormalizer) -> None:
        assert (
            normalizer.normalize_memory_label("  Current Assets -  Closing Balance ")
            == "current assets - closing balance"
        )


# ======================================================================
# Amounts
# ======================================================================

class TestNormalizeValue:
    def test_plain_int(self, normalizer: LabelNormalizer) -> None:
        val, warns = normalizer.normalize_value(50000)
        assert val == 50000.0
        assert warns == []

    def test_indian_grouping(self, normalizer: LabelNormalizer) -> None:
        val, _ = normalizer.normalize_value("1,23,456.00")
        assert val == 123456.0

    def test_western_grouping(self, normalizer: LabelNormalizer) -> None:
        val, _ = normalizer.normalize_value("1,234,567")
        assert val == 1234567.0

    def test_currency_symbol(self, normalizer: LabelNormalizer) -> None:
        val, _ = normalizer.normalize_value("₹ 12,000")
        assert val == 12000.0

    def test_parenthetical_negative(self, normalizer: LabelNormalizer) -> None:
        val, _ = normalizer.normalize_value("(5,000)")
        assert val == -5000.0

    def test_percent_warns(self, normalizer: LabelNormalizer) -> None:
        val, warns = normalizer.normalize_value("12.5%")
        assert val == 12.5
        assert any("Percent" in w for w in warns)

    def test_none_value(self, normalizer: LabelNormalizer) -> None:
        val, warns = normalizer.normalize_value(None)
        assert val is None
        assert warns

    def test_bool_rejected(self, normalizer: LabelNormalizer) -> None:
        val, _ = normalizer.normalize_value(True)
        assert val is None

    def test_non_finite_rejected(self, normalizer: LabelNormalizer) -> None:
        assert normalizer.normalize_value(math.inf)[0] is None
        assert normalizer.normalize_value("nan")[0] is None

    def test_garbage(self, normalizer: LabelNormalizer) -> None:
        val, warns = normalizer.normalize_value("not a number")
        assert val is None
        assert any("Cannot parse" in w for w in warns)


class TestLooksLikeAmount:
    @pytest.mark.parametrize(
        "value",
        ["12,345.67", "₹1,23,456", "(5,000)", "-250", "12.5%", "$ 1,000"],
    )
    def test_amount_shapes(self, value: str) -> None:
        assert looks_like_amount(value)

    @pytest.mark.parametrize("value", ["abc", "2023-24", "12a", ""])
    def test_non_amounts(self, value: str) -> None:
        assert not looks_like_amount(value)


class TestFindAmount:
    def test_after_colon(self, normalizer: LabelNormalizer) -> None:
        assert normalizer.find_amount("Sundry Creditors: 1,23,456.00") == 123456.0

    def test_negative_in_brackets(self, normalizer: LabelNormalizer) -> None:
        assert normalizer.find_amount("Interest (12,000)") == -12000.0

    def test_first_amount_wins(self, normalizer: LabelNormalizer) -> None:
        assert normalizer.find_amount("Purchases 72,00,000 65,00,000") == 7200000.0

    def test_digits_glued_to_letters_ignored(self, normalizer: LabelNormalizer) -> None:
        assert normalizer.find_amount("Schedule 3A of FY2023") is None

    def test_no_amount(self, normalizer: LabelNormalizer) -> None:
        assert normalizer.find_amount("Balance Sheet") is None
