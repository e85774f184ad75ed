"""
Tests for the report processor fan-outs.
"""

import pytest
from datetime import date

from appstore_connect_mcp.exceptions import (
    AuthenticationError,
    ConfigurationError,
    PermissionError,
    ServerError,
    ValidationError,
)
from appstore_connect_mcp.reports import ReportProcessor

from conftest import financial_row, sales_row


def _serve_month(mock_api, payload, year, month, days, skip=()):
    for day in range(1, days + 1):
        if day not in skip:
            mock_api.payloads[("SALES", f"{year}-{month:02d}-{day:02d}", None)] = payload


class TestSalesReport:
    """Test single sales report retrieval."""

    def test_get_sales_report(self, processor, mock_api, make_sales_payload):
        """Test fetching one sales report."""
        mock_api.payloads[("SALES", "2025-07-01", None)] = make_sales_payload(
            [sales_row(proceeds="3.62", currency="IDR", country="ID"), sales_row(sku="app.annual", proceeds="29.99")]
        )

        result = processor.get_sales_report("2025-07-01")

        assert result["available"] is True
        assert result["row_count"] == 2
        assert result["rows"][0]["proceeds_usd"] == 3.62
        assert result["summary"]["total_revenue"] == pytest.approx(33.61)
        assert result["version"] == "1_1"

        report_request = mock_api.get_report.call_args.args[0]
        assert report_request.vendor_number == "85012345"
        assert report_request.frequency == "DAILY"

    def test_get_sales_report_not_available(self, processor):
        """Test a missing report is not an error."""
        result = processor.get_sales_report("2025-07-01")
        assert result["available"] is False
        assert "2025-07-01" in result["message"]

    def test_get_sales_report_malformed(self, processor, mock_api):
        """Test a non-TSV body comes back as flagged zero-data."""
        mock_api.payloads[("SALES", "2025-07-04", None)] = b"<html>maintenance</html>"

        result = processor.get_sales_report("2025-07-04")

        assert result["available"] is False
        assert result["malformed"] is True
        assert "<html>maintenance</html>" in result["message"]

    def test_financial_type_rejected(self, processor):
        """Test financial report types are rejected."""
        with pytest.raises(ValidationError):
            processor.get_sales_report("2025-07-01", report_type="FINANCIAL")

    def test_subscription_version(self, processor, mock_api, make_sales_payload):
        """Test the subscription report version."""
        mock_api.payloads[("SUBSCRIPTION", "2025-07-01", None)] = make_sales_payload([sales_row()])
        processor.get_sales_report("2025-07-01", report_type="SUBSCRIPTION")
        assert mock_api.get_report.call_args.args[0].version == "1_4"

    def test_requires_vendor_number(self, processor, mock_api):
        """Test a vendor number is required."""
        mock_api.vendor_number = None
        with pytest.raises(ConfigurationError):
            processor.get_sales_report("2025-07-01")


class TestMonthlyRevenue:
    """Test the daily fan-out over a calendar month."""

    def test_missing_days_count_as_zero(self, processor, mock_api, make_sales_payload):
        """Test missing days count as zero."""
        payload = make_sales_payload([sales_row(proceeds="100.00")])
        _serve_month(mock_api, payload, 2025, 7, 31, skip=(5, 17))

        result = processor.get_monthly_revenue(2025, 7, today=date(2025, 9, 1))

        assert result["total_revenue"] == 2900.0
        assert result["total_revenue_formatted"] == "$2,900.00"
        assert result["days_in_month"] == 31
        assert result["days_with_data"] == 29
        assert result["missing_days"] == ["2025-07-05", "2025-07-17"]
        assert result["failed_days"] == []
        assert result["daily_stats"]["median"] == 100.0
        assert mock_api.get_report.call_count == 31

    def test_no_data_is_not_an_error(self, processor):
        """Test a month without data."""
        result = processor.get_monthly_revenue(2025, 2, today=date(2025, 9, 1))
        assert result["available"] is False
        assert result["total_revenue"] == 0.0
        assert len(result["missing_days"]) == 28

    def test_failed_and_malformed_days_skipped(self, processor, mock_api, make_sales_payload):
        """Test failed and malformed days are skipped and listed."""
        _serve_month(mock_api, make_sales_payload([sales_row(proceeds="10")]), 2025, 6, 30)
        mock_api.errors[("SALES", "2025-06-02", None)] = ServerError("API Error 503")
        mock_api.payloads[("SALES", "2025-06-03", None)] = b"<html>maintenance</html>"

        result = processor.get_monthly_revenue(2025, 6, today=date(2025, 9, 1))

        assert result["days_with_data"] == 28
        assert result["failed_days"] == ["2025-06-02"]
        assert result["malformed_days"] == ["2025-06-03"]
        assert result["total_revenue"] == 280.0

    @pytest.mark.parametrize("error", [AuthenticationError("bad token"), PermissionError("no access")])
    def test_auth_errors_abort(self, processor, mock_api, make_sales_payload, error):
        """Test auth and permission errors abort the month."""
        _serve_month(mock_api, make_sales_payload([sales_row()]), 2025, 6, 30)
        mock_api.errors[("SALES", "2025-06-10", None)] = error

        with pytest.raises(type(error)):
            processor.get_monthly_revenue(2025, 6, today=date(2025, 9, 1))

    def test_unpublished_days_not_requested(self, processor, mock_api, make_sales_payload):
        """Test unpublished days are not requested."""
        _serve_month(mock_api, make_sales_payload([sales_row(proceeds="1")]), 2025, 7, 31)

        result = processor.get_monthly_revenue(2025, 7, today=date(2025, 7, 10))

        assert result["days_with_data"] == 9
        assert len(result["unpublished_days"]) == 22
        assert mock_api.get_report.call_count == 9

    def test_high_revenue_days(self, processor, mock_api, make_sales_payload):
        """Test high-revenue days are reported."""
        mock_api.payloads[("SALES", "2025-07-04", None)] = make_sales_payload(
            [sales_row(sku="app.lifetime", proceeds="12000.00")]
        )
        mock_api.payloads[("SALES", "2025-07-05", None)] = make_sales_payload([sales_row(proceeds="50")])

        result = processor.get_monthly_revenue(2025, 7, today=date(2025, 9, 1))

        assert result["high_revenue_days"] == [{"date": "2025-07-04", "revenue": 12000.0}]
        assert result["by_product"][0]["sku"] == "app.lifetime"

    def test_ceiling_row_flagged_in_month(self, processor, mock_api, make_sales_payload):
        """Test a row over the ceiling is flagged with its day."""
        mock_api.payloads[("SALES", "2025-07-04", None)] = make_sales_payload(
            [sales_row(proceeds="50000000"), sales_row(proceeds="5")]
        )

        result = processor.get_monthly_revenue(2025, 7, today=date(2025, 9, 1))

        assert result["total_revenue"] == 5.0
        assert result["flagged_rows"][0]["slice"] == "2025-07-04"

    def test_invalid_month(self, processor):
        """Test an invalid month."""
        with pytest.raises(ValidationError):
            processor.get_monthly_revenue(2025, 13)


class TestFinancialSummary:
    """Test the region fan-out over one fiscal period."""

    def test_regions_and_signs(self, processor, mock_api, make_financial_payload):
        """Test the region fan-out with signed proceeds."""
        # July 2025 is fiscal period 2025-10
        mock_api.payloads[("FINANCIAL", "2025-10", "US")] = make_financial_payload(
            [financial_row(share="100.00", flag="S"), financial_row(share="20.00", flag="R")]
        )
        mock_api.payloads[("FINANCIAL", "2025-10", "EU")] = make_financial_payload(
            [financial_row(share="10.00", currency="XYZ", country="DE")]
        )

        result = processor.get_financial_summary(2025, 7)

        assert result["total_revenue"] == 90.0
        assert result["sales_vs_returns"] == {"sales": 110.0, "returns": 20.0}
        assert result["regions_with_data"] == ["US", "EU"]
        assert result["missing_regions"] == ["CA", "JP", "AU", "WW"]
        assert result["by_region"][0] == {"region": "United States", "code": "US", "revenue": 80.0}
        assert result["unknown_currencies"] == ["XYZ"]
        assert result["metadata"]["fiscal_period"] == "2025-10"
        assert result["metadata"]["month"] == "2025-07"
        assert result["metadata"]["is_latest_available"] is True

        regions = {call.args[0].region_code for call in mock_api.get_report.call_args_list}
        assert regions == {"US", "CA", "EU", "JP", "AU", "WW"}

    def test_not_latest_when_next_period_exists(self, processor, mock_api, make_financial_payload):
        """Test is_latest_available when the next period exists."""
        payload = make_financial_payload([financial_row()])
        mock_api.payloads[("FINANCIAL", "2025-10", "US")] = payload
        mock_api.payloads[("FINANCIAL", "2025-11", "US")] = payload

        result = processor.get_financial_summary(2025, 7)
        assert result["metadata"]["is_latest_available"] is False

    def test_year_and_month_together(self, processor):
        """Test year without month is rejected."""
        with pytest.raises(ValidationError):
            processor.get_financial_summary(year=2025)

    def test_latest_resolution(self, processor, mock_api, make_financial_payload):
        """Test resolving the latest published month."""
        # August 2025 is fiscal period 2025-11; September (2025-12) not out yet
        mock_api.payloads[("FINANCIAL", "2025-11", "US")] = make_financial_payload(
            [financial_row(share="42.00")]
        )

        result = processor.get_financial_summary(today=date(2025, 9, 15))

        assert result["available"] is True
        assert result["total_revenue"] == 42.0
        assert result["metadata"]["month"] == "2025-08"
        assert result["metadata"]["probed_periods"] == ["2025-12", "2025-11"]
        assert result["metadata"]["is_latest_available"] is True

    def test_latest_resolution_fetches_first_region_once(self, processor, mock_api, make_financial_payload):
        """Test the first region is fetched once while resolving the latest month."""
        mock_api.payloads[("FINANCIAL", "2025-11", "US")] = make_financial_payload([financial_row()])

        processor.get_financial_summary(today=date(2025, 9, 15))

        requested = [
            (call.args[0].report_date, call.args[0].region_code)
            for call in mock_api.get_report.call_args_list
        ]
        assert requested.count(("2025-11", "US")) == 1
        assert requested.count(("2025-11", "JP")) == 1

    def test_latest_resolution_gives_up(self, processor):
        """Test giving up after the lookback window."""
        result = processor.get_financial_summary(today=date(2025, 9, 15))
        assert result["available"] is False
        assert result["metadata"]["probed_periods"] == ["2025-12", "2025-11", "2025-10"]

    def test_custom_regions(self, mock_api, make_financial_payload):
        """Test a custom region list."""
        processor = ReportProcessor(mock_api, region_codes=("US", "JP"))
        mock_api.payloads[("FINANCIAL", "2025-10", "JP")] = make_financial_payload([financial_row()])

        result = processor.get_financial_summary(2025, 7)

        assert result["regions_with_data"] == ["JP"]
        assert result["missing_regions"] == ["US"]


class TestRevenueMetrics:
    """Test MRR/ARR resolution."""

    def test_from_financial(self, processor, mock_api, make_financial_payload):
        """Test MRR and ARR from financial reports."""
        mock_api.payloads[("FINANCIAL", "2025-11", "US")] = make_financial_payload(
            [financial_row(share="1000.00")]
        )

        result = processor.get_revenue_metrics(today=date(2025, 9, 15))

        assert result["source"] == "FINANCIAL"
        assert result["mrr"] == 1000.0
        assert result["arr"] == 12000.0
        assert result["last_updated"] == "2025-08"

    def test_falls_back_to_sales(self, processor, mock_api, make_sales_payload):
        """Test the fallback to sales reports."""
        _serve_month(mock_api, make_sales_payload([sales_row(proceeds="10")]), 2025, 8, 31)

        result = processor.get_revenue_metrics(today=date(2025, 9, 15))

        assert result["source"] == "SALES"
        assert result["mrr"] == 310.0
        assert result["arr"] == 3720.0
        assert result["last_updated"] == "2025-08"

    def test_app_id_filter(self, processor, mock_api, make_financial_payload):
        """Test filtering by app ID."""
        mock_api.payloads[("FINANCIAL", "2025-11", "US")] = make_financial_payload(
            [
                financial_row(share="100.00", apple_id="1111111111"),
                financial_row(share="7.00", apple_id="2222222222"),
            ]
        )

        result = processor.get_revenue_metrics(app_id="2222222222", today=date(2025, 9, 15))

        assert result["mrr"] == 7.0
        assert processor._app_ids == []

    def test_configured_app_ids(self, mock_api, make_sales_payload):
        """Test app IDs configured on the client."""
        mock_api.app_ids = ["1111111111"]
        processor = ReportProcessor(mock_api)
        mock_api.payloads[("SALES", "2025-07-01", None)] = make_sales_payload(
            [sales_row(proceeds="1", apple_id="1111111111"), sales_row(proceeds="2", apple_id="3333333333")]
        )

        result = processor.get_sales_report("2025-07-01")
        assert result["row_count"] == 1
