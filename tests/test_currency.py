"""
Tests for currency normalization.
"""

import pytest

from appstore_connect_mcp.currency import (
    UNKNOWN_CURRENCY,
    CurrencyNormalizer,
    CurrencyPolicy,
    parse_amount,
    policy_for,
)
from appstore_connect_mcp.exceptions import ValidationError
from appstore_connect_mcp.models import ParsedReport


class TestParseAmount:
    """Test numeric field parsing."""

    @pytest.mark.parametrize(
        "value,expected",
        [("12.50", 12.5), ("1,234.56", 1234.56), ("", 0.0), (None, 0.0), ("n/a", 0.0), ("nan", 0.0)],
    )
    def test_parse_amount(self, value, expected):
        """Test parsing of amount strings."""
        assert parse_amount(value) == expected


class TestPolicies:
    """Test per-report-type policy selection."""

    def test_policies(self):
        """Test the policy for each report type."""
        assert policy_for("SALES") is CurrencyPolicy.ALREADY_USD
        assert policy_for("SUBSCRIPTION") is CurrencyPolicy.ALREADY_USD
        assert policy_for("FINANCIAL") is CurrencyPolicy.CONVERT_WITH_SIGN

    def test_unknown_report_type(self):
        """Test an unknown report type is rejected."""
        with pytest.raises(ValidationError):
            policy_for("PODCAST")


class TestAlreadyUsd:
    """Test sales family rows, whose proceeds are already USD."""

    @pytest.mark.parametrize("currency", ["USD", "IDR", "VND", "EUR", "XYZ"])
    def test_proceeds_unchanged_for_every_currency(self, currency):
        """Test sales proceeds are never converted."""
        normalizer = CurrencyNormalizer("SALES")
        row = normalizer.normalize(
            {"Developer Proceeds": "3.62", "Customer Currency": currency, "Customer Price": "59000"}
        )
        assert row["proceeds_usd"] == 3.62
        assert row["proceeds_currency"] == "USD"
        assert row["customer_currency"] == currency
        assert row["currency_flag"] is None

    def test_idr_sale_is_not_converted_again(self):
        """An IDR customer purchase keeps its USD developer proceeds."""
        normalizer = CurrencyNormalizer("SALES")
        row = normalizer.normalize(
            {"Developer Proceeds": "3.62", "Customer Currency": "IDR", "Customer Price": "79000"}
        )
        assert row["proceeds_usd"] == 3.62
        assert row["proceeds_raw"] == "3.62"

    def test_falls_back_to_proceeds_column(self):
        """Test the fallback proceeds column."""
        row = CurrencyNormalizer("SUBSCRIPTION").normalize({"Proceeds": "7.00"})
        assert row["proceeds_usd"] == 7.0

    def test_original_row_untouched(self):
        """Test normalization does not modify the input row."""
        original = {"Developer Proceeds": "1.00"}
        CurrencyNormalizer("SALES").normalize(original)
        assert original == {"Developer Proceeds": "1.00"}


class TestConvertWithSign:
    """Test financial rows, converted by rate and signed by flag."""

    def test_sales_and_returns_net_out(self):
        """Test a sale and a return net out."""
        normalizer = CurrencyNormalizer("FINANCIAL")
        report = ParsedReport(
            "FINANCIAL",
            ["Extended Partner Share", "Partner Share Currency", "Sales or Return"],
            [
                {"Extended Partner Share": "100", "Partner Share Currency": "USD", "Sales or Return": "S"},
                {"Extended Partner Share": "20", "Partner Share Currency": "USD", "Sales or Return": "R"},
            ],
        )
        rows = normalizer.normalize_report(report).rows
        assert [row["proceeds_usd"] for row in rows] == [100.0, -20.0]
        assert sum(row["proceeds_usd"] for row in rows) == 80.0

    def test_return_sign_ignores_raw_sign(self):
        """Test the return sign comes from the flag alone."""
        row = CurrencyNormalizer("FINANCIAL").normalize(
            {"Extended Partner Share": "-20", "Partner Share Currency": "USD", "Sales or Return": "R"}
        )
        assert row["proceeds_usd"] == -20.0

    def test_rate_applied(self):
        """Test the rate table is applied."""
        row = CurrencyNormalizer("FINANCIAL").normalize(
            {"Extended Partner Share": "1000000", "Partner Share Currency": "VND", "Sales or Return": "S"}
        )
        assert row["proceeds_usd"] == pytest.approx(40.6)
        assert row["proceeds_currency"] == "VND"

    def test_custom_rates(self):
        """Test a custom rate table."""
        normalizer = CurrencyNormalizer("FINANCIAL", rates={"EUR": 1.1})
        row = normalizer.normalize(
            {"Partner Share": "10", "Partner Share Currency": "eur", "Sales or Return": "S"}
        )
        assert row["proceeds_usd"] == pytest.approx(11.0)

    def test_unknown_currency_flagged_one_to_one(self):
        """Test unknown currencies convert 1:1 and are flagged."""
        normalizer = CurrencyNormalizer("FINANCIAL")
        row = normalizer.normalize(
            {"Extended Partner Share": "50", "Partner Share Currency": "XYZ", "Sales or Return": "S"}
        )
        assert row["proceeds_usd"] == 50.0
        assert row["currency_flag"] == UNKNOWN_CURRENCY
        assert normalizer.unknown_currencies == {"XYZ"}

    def test_footer_lines_contribute_nothing(self):
        """Test footer lines contribute nothing."""
        row = CurrencyNormalizer("FINANCIAL").normalize(
            {"Extended Partner Share": "12345.67", "Partner Share Currency": "", "Sales or Return": ""}
        )
        assert row["proceeds_usd"] == 0.0
        assert row["currency_flag"] is None

    def test_missing_flag_column_means_sale(self):
        """Test rows without a flag column count as sales."""
        row = CurrencyNormalizer("FINANCIAL").normalize(
            {"Partner Share": "5", "Partner Share Currency": "USD"}
        )
        assert row["proceeds_usd"] == 5.0

    def test_idempotent(self):
        """Normalizing the same rows twice gives identical results."""
        normalizer = CurrencyNormalizer("FINANCIAL")
        row = {"Extended Partner Share": "9.99", "Partner Share Currency": "CLP", "Sales or Return": "S"}
        assert normalizer.normalize(row) == normalizer.normalize(row)
