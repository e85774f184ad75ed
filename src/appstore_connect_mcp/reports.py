"""
Report processing and revenue analysis for appstore-connect-mcp.

Apple serves one (date, region) slice per request, so every figure here
is built by enumerating slices, running each through
decode -> parse -> normalize -> aggregate, and merging the partial
results. A slice Apple has no report for counts as zero, never as a
failure of the whole operation.
"""

import logging
from contextlib import contextmanager
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .aggregation import (
    DEFAULT_REVENUE_CEILING,
    RevenueAccumulator,
    aggregate_rows,
    daily_statistics,
)
from .client import AppStoreConnectAPI
from .config import (
    DEFAULT_HIGH_REVENUE_THRESHOLD,
    DEFAULT_LATEST_LOOKBACK_MONTHS,
    DEFAULT_MAX_REPORT_ROWS,
    DEFAULT_REGION_CODES,
    REGION_NAMES,
)
from .currency import DEFAULT_USD_RATES, CurrencyNormalizer
from .exceptions import (
    AppStoreConnectError,
    AuthenticationError,
    ConfigurationError,
    MalformedReportError,
    NotFoundError,
    PermissionError,
    ValidationError,
)
from .models import REPORT_VERSIONS, ParsedReport, ReportRequest
from .parsing import decode_payload, parse_report
from .utils import (
    default_report_date,
    fiscal_period,
    format_currency,
    month_dates,
    next_fiscal_period,
    normalize_date,
    previous_month,
    validate_app_id,
    validate_report_frequency,
    validate_report_subtype,
    validate_report_type,
    validate_year_month,
)

# Slice outcomes
SLICE_OK = "ok"
SLICE_MISSING = "missing"
SLICE_MALFORMED = "malformed"
SLICE_FAILED = "failed"

# Errors that make every remaining slice pointless
FATAL_ERRORS = (AuthenticationError, PermissionError, ConfigurationError)


class ReportProcessor:
    """
    High-level report processor for App Store Connect data.

    Args:
        api: API client used to fetch report slices
        currency_rates: Currency code to USD rate table for financial reports
        report_versions: Report type to version table
        revenue_ceiling: Largest plausible single-row contribution in USD
        high_revenue_threshold: Daily revenue above which a day is flagged
        region_codes: Financial report regions to enumerate
        latest_lookback_months: How far back to probe for the latest financial month
        max_report_rows: Row cap for single-report responses
        logger: Optional logger
    """

    def __init__(
        self,
        api: AppStoreConnectAPI,
        currency_rates: Optional[Mapping[str, float]] = None,
        report_versions: Optional[Mapping[str, Optional[str]]] = None,
        revenue_ceiling: float = DEFAULT_REVENUE_CEILING,
        high_revenue_threshold: float = DEFAULT_HIGH_REVENUE_THRESHOLD,
        region_codes: Sequence[str] = DEFAULT_REGION_CODES,
        latest_lookback_months: int = DEFAULT_LATEST_LOOKBACK_MONTHS,
        max_report_rows: int = DEFAULT_MAX_REPORT_ROWS,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize with an API client."""
        self.api = api
        self.currency_rates = dict(currency_rates if currency_rates is not None else DEFAULT_USD_RATES)
        self.report_versions = dict(report_versions if report_versions is not None else REPORT_VERSIONS)
        self.revenue_ceiling = revenue_ceiling
        self.high_revenue_threshold = high_revenue_threshold
        self.region_codes = tuple(region_codes)
        self.latest_lookback_months = latest_lookback_months
        self.max_report_rows = max_report_rows
        self.logger = logger or logging.getLogger(__name__)
        self._app_ids: List[str] = [str(app_id) for app_id in (getattr(api, "app_ids", None) or [])]

    @classmethod
    def from_settings(cls, api: AppStoreConnectAPI, settings) -> "ReportProcessor":
        return cls(
            api,
            currency_rates=settings.currency_rates,
            report_versions=settings.report_versions,
            revenue_ceiling=settings.revenue_ceiling,
            high_revenue_threshold=settings.high_revenue_threshold,
            region_codes=settings.region_codes,
            latest_lookback_months=settings.latest_lookback_months,
            max_report_rows=settings.max_report_rows,
        )

    @contextmanager
    def app_filter(self, app_ids: Optional[Sequence[str]]):
        """
        Restrict rows to the given app IDs for the duration of the block.

        Usage:
            with processor.app_filter(["123456789"]):
                processor.get_financial_summary(2025, 7)
        """
        previous = self._app_ids
        if app_ids:
            self._app_ids = [str(app_id) for app_id in app_ids]
        try:
            yield
        finally:
            self._app_ids = previous

    def require_vendor_number(self) -> str:
        vendor_number = getattr(self.api, "vendor_number", None)
        if not vendor_number:
            raise ConfigurationError(
                "Vendor number required for sales and financial reports. Set APP_STORE_VENDOR_NUMBER"
            )
        return vendor_number

    # ===== SINGLE SLICE PIPELINE =====

    def _filter_app_ids(self, report: ParsedReport) -> ParsedReport:
        if not self._app_ids or report.is_empty:
            return report

        for column in ("Apple Identifier", "App Apple ID"):
            if column in report.headers:
                rows = [row for row in report.rows if str(row.get(column, "")) in self._app_ids]
                return ParsedReport(report.report_type, list(report.headers), rows)
        return report

    def fetch_report(self, report_request: ReportRequest) -> ParsedReport:
        """
        Fetch, decode, parse and normalize one slice.

        Raises:
            NotFoundError: If Apple has no report for the slice
            MalformedReportError: If the body is not a tab-separated report
            AppStoreConnectError: For any other failed request
        """
        payload = self.api.get_report(report_request)
        report = parse_report(decode_payload(payload), report_request.report_type)
        report = self._filter_app_ids(report)
        normalizer = CurrencyNormalizer(
            report_request.report_type, self.currency_rates, logger=self.logger
        )
        return normalizer.normalize_report(report)

    def fetch_slice(self, report_request: ReportRequest) -> Tuple[str, Optional[ParsedReport]]:
        """
        Fetch one slice of a fan-out, absorbing everything but fatal errors.

        Returns:
            (outcome, report) where report is None unless outcome is SLICE_OK
        """
        try:
            return SLICE_OK, self.fetch_report(report_request)
        except NotFoundError:
            self.logger.info(f"No report for {report_request.describe()}")
            return SLICE_MISSING, None
        except MalformedReportError as e:
            self.logger.warning(f"Malformed report for {report_request.describe()}: {e}")
            return SLICE_MALFORMED, None
        except FATAL_ERRORS:
            raise
        except AppStoreConnectError as e:
            self.logger.warning(f"Error fetching {report_request.describe()}: {e}")
            return SLICE_FAILED, None

    # ===== SALES REPORTS =====

    def get_sales_report(
        self,
        report_date: Optional[Any] = None,
        report_type: str = "SALES",
        report_subtype: str = "SUMMARY",
        frequency: str = "DAILY",
    ) -> Dict[str, Any]:
        """
        Fetch one Sales and Trends report with per-row USD proceeds.

        Args:
            report_date: Date for the report (defaults to the latest published day)
            report_type: SALES, SUBSCRIPTION, SUBSCRIPTION_EVENT, or SUBSCRIBER
            report_subtype: SUMMARY, DETAILED or SUMMARY_BY_SKU
            frequency: DAILY, WEEKLY, MONTHLY, or YEARLY

        Returns:
            Dictionary with headers, rows (capped), row count and a summary
        """
        vendor_number = self.require_vendor_number()
        report_type = validate_report_type(report_type)
        if report_type in ("FINANCIAL", "FINANCE_DETAIL"):
            raise ValidationError("Financial reports are served by get_financial_summary")
        report_subtype = validate_report_subtype(report_subtype)
        frequency = validate_report_frequency(frequency)
        day = normalize_date(report_date) if report_date else default_report_date()

        report_request = ReportRequest.sales(
            vendor_number,
            day,
            report_type=report_type,
            report_subtype=report_subtype,
            frequency=frequency,
            versions=self.report_versions,
        )

        try:
            report = self.fetch_report(report_request)
        except NotFoundError:
            return {
                "available": False,
                "report_type": report_type,
                "date": report_request.report_date,
                "message": f"No {report_type} report available for {report_request.report_date} yet",
            }
        except MalformedReportError as e:
            self.logger.warning(f"get_sales_report: {e}")
            return {
                "available": False,
                "malformed": True,
                "report_type": report_type,
                "date": report_request.report_date,
                "message": str(e),
            }

        accumulator = RevenueAccumulator()
        partial = aggregate_rows(report.rows, self.revenue_ceiling, self.logger)
        accumulator.add(report_request.report_date, partial)
        summary = accumulator.finalize()
        summary.pop("sales_vs_returns")

        result = report.to_dict(self.max_report_rows)
        result.update(
            {
                "available": True,
                "date": report_request.report_date,
                "frequency": frequency,
                "version": report_request.version,
                "summary": summary,
            }
        )
        return result

    def get_monthly_revenue(
        self, year: int, month: int, today: Optional[date] = None
    ) -> Dict[str, Any]:
        """
        Sum every daily SALES report of a calendar month.

        Days Apple has no report for count as zero and are listed in
        `missing_days`; days not yet published are not requested.

        Args:
            year: Calendar year
            month: Calendar month (1-12)
            today: Reference date for "not yet published" (defaults to now)

        Returns:
            Dictionary with totals, coverage counts, daily statistics and breakdowns
        """
        vendor_number = self.require_vendor_number()
        year, month = validate_year_month(year, month)
        last_published = today - timedelta(days=1) if today else default_report_date()

        accumulator = RevenueAccumulator()
        coverage: Dict[str, List[str]] = {
            SLICE_MISSING: [],
            SLICE_MALFORMED: [],
            SLICE_FAILED: [],
            "unpublished": [],
        }
        daily: List[Dict[str, Any]] = []
        days = month_dates(year, month)

        for day in days:
            day_str = day.isoformat()
            if day > last_published:
                coverage["unpublished"].append(day_str)
                continue

            report_request = ReportRequest.sales(
                vendor_number, day, versions=self.report_versions
            )
            outcome, report = self.fetch_slice(report_request)
            if report is None:
                coverage[outcome].append(day_str)
                continue

            partial = aggregate_rows(report.rows, self.revenue_ceiling, self.logger)
            accumulator.add(day_str, partial)
            daily.append(
                {
                    "date": day_str,
                    "revenue": partial["total_revenue"],
                    "units": partial["total_units"],
                    "transactions": partial["row_count"],
                }
            )

        revenues = [entry["revenue"] for entry in daily]
        high_days = [
            {"date": entry["date"], "revenue": round(entry["revenue"], 2)}
            for entry in daily
            if entry["revenue"] > self.high_revenue_threshold
        ]

        totals = accumulator.finalize()
        totals.pop("sales_vs_returns")

        self.logger.info(
            f"get_monthly_revenue: {year}-{month:02d} total={accumulator.total_revenue:.2f} "
            f"days_with_data={len(daily)}/{len(days)}"
        )

        return {
            "period": f"{year}-{month:02d}",
            "year": year,
            "month": month,
            "source": "SALES",
            "available": bool(daily),
            **totals,
            "total_revenue_formatted": format_currency(accumulator.total_revenue),
            "days_in_month": len(days),
            "days_with_data": len(daily),
            "missing_days": coverage[SLICE_MISSING],
            "failed_days": coverage[SLICE_FAILED],
            "malformed_days": coverage[SLICE_MALFORMED],
            "unpublished_days": coverage["unpublished"],
            "daily_revenue": [
                dict(entry, revenue=round(entry["revenue"], 2)) for entry in daily
            ],
            "daily_stats": daily_statistics(revenues),
            "high_revenue_threshold": self.high_revenue_threshold,
            "high_revenue_days": high_days,
            "notes": "From daily SALES reports (new purchases; renewals appear in FINANCIAL reports)",
        }

    # ===== FINANCIAL REPORTS =====

    def _probe_period(self, period: str) -> Tuple[str, Optional[ParsedReport]]:
        """Fetch the first configured region's slice for a fiscal period."""
        vendor_number = self.require_vendor_number()
        report_request = ReportRequest.financial(
            vendor_number, period, self.region_codes[0], versions=self.report_versions
        )
        return self.fetch_slice(report_request)

    def _period_exists(self, period: str) -> bool:
        """True only when the probed region has a non-empty report."""
        outcome, report = self._probe_period(period)
        return outcome == SLICE_OK and report is not None and not report.is_empty

    def _financial_month_summary(
        self,
        year: int,
        month: int,
        probed: Optional[Tuple[str, Optional[ParsedReport]]] = None,
    ) -> Dict[str, Any]:
        """
        Sum every region of one fiscal period.

        `probed` is an already fetched (outcome, report) for the first
        region, which is then not requested again.
        """
        vendor_number = self.require_vendor_number()
        period = fiscal_period(year, month)

        accumulator = RevenueAccumulator()
        coverage: Dict[str, List[str]] = {
            SLICE_OK: [],
            SLICE_MISSING: [],
            SLICE_MALFORMED: [],
            SLICE_FAILED: [],
        }

        for code in self.region_codes:
            if probed is not None and code == self.region_codes[0]:
                outcome, report = probed
            else:
                report_request = ReportRequest.financial(
                    vendor_number, period, code, versions=self.report_versions
                )
                outcome, report = self.fetch_slice(report_request)
            coverage[outcome].append(code)
            if report is None:
                continue

            partial = aggregate_rows(report.rows, self.revenue_ceiling, self.logger)
            accumulator.add(f"{period}/{code}", partial, region=code)

        by_region = sorted(accumulator.regions.items(), key=lambda x: x[1], reverse=True)

        self.logger.info(
            f"_financial_month_summary: {year}-{month:02d} (fiscal {period}) "
            f"total={accumulator.total_revenue:.2f} regions={len(coverage[SLICE_OK])}"
        )

        return {
            "source": "FINANCIAL",
            "available": bool(coverage[SLICE_OK]),
            **accumulator.finalize(),
            "total_revenue_formatted": format_currency(accumulator.total_revenue),
            "by_region": [
                {"region": REGION_NAMES.get(code, code), "code": code, "revenue": round(revenue, 2)}
                for code, revenue in by_region
            ],
            "regions_with_data": coverage[SLICE_OK],
            "missing_regions": coverage[SLICE_MISSING],
            "failed_regions": coverage[SLICE_FAILED],
            "malformed_regions": coverage[SLICE_MALFORMED],
            "metadata": {
                "fiscal_period": period,
                "month": f"{year}-{month:02d}",
                "year": year,
            },
            "notes": "Complete revenue from FINANCIAL reports (includes all renewals). "
            "Reports are published about one month late.",
        }

    def get_financial_summary(
        self,
        year: Optional[int] = None,
        month: Optional[int] = None,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Sum FINANCIAL reports across all regions for one calendar month.

        With no year and month, the latest month Apple has published is
        used instead.

        Args:
            year: Calendar year
            month: Calendar month (1-12)
            today: Reference date for latest-month resolution

        Returns:
            Dictionary with totals, region/product breakdowns and metadata
        """
        if year is None and month is None:
            return self.get_latest_financial_summary(today)
        if year is None or month is None:
            raise ValidationError("Year and month must be given together")

        year, month = validate_year_month(year, month)
        summary = self._financial_month_summary(year, month)
        summary["metadata"]["is_latest_available"] = not self._period_exists(
            next_fiscal_period(summary["metadata"]["fiscal_period"])
        )
        return summary

    def get_latest_financial_summary(self, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Find the most recent month with a published FINANCIAL report.

        Probes backward from the current month, then probes the following
        fiscal period to tell whether the month found is the latest one.
        """
        self.require_vendor_number()
        today = today or date.today()
        year, month = today.year, today.month
        probed: List[str] = []

        for _ in range(self.latest_lookback_months):
            period = fiscal_period(year, month)
            probed.append(period)
            outcome, report = self._probe_period(period)
            if outcome == SLICE_OK and report is not None and not report.is_empty:
                summary = self._financial_month_summary(year, month, probed=(outcome, report))
                summary["metadata"]["is_latest_available"] = not self._period_exists(
                    next_fiscal_period(period)
                )
                summary["metadata"]["probed_periods"] = probed
                return summary
            year, month = previous_month(year, month)

        return {
            "source": "FINANCIAL",
            "available": False,
            "message": f"No financial reports available in the last "
            f"{self.latest_lookback_months} months",
            "metadata": {"probed_periods": probed},
        }

    def get_revenue_metrics(
        self, app_id: Optional[str] = None, today: Optional[date] = None
    ) -> Dict[str, Any]:
        """
        MRR and ARR from the latest FINANCIAL month.

        Falls back to the previous calendar month of SALES reports when no
        financial month is available.

        Args:
            app_id: Optional app ID to restrict the figures to
            today: Reference date

        Returns:
            Dictionary with MRR, ARR and breakdowns
        """
        app_ids = [validate_app_id(app_id)] if app_id else None
        today = today or date.today()

        with self.app_filter(app_ids):
            latest = self.get_latest_financial_summary(today)
            if latest.get("available"):
                mrr = latest["total_revenue"]
                return {
                    "mrr": mrr,
                    "arr": round(mrr * 12, 2),
                    "currency": "USD",
                    "app_id": app_id,
                    "last_updated": latest["metadata"]["month"],
                    "is_latest_available": latest["metadata"]["is_latest_available"],
                    "by_product": latest["by_product"],
                    "by_country": latest["by_country"],
                    "by_region": latest["by_region"],
                    "unknown_currencies": latest["unknown_currencies"],
                    "source": "FINANCIAL",
                    "notes": "Complete revenue from FINANCIAL reports (includes all renewals). "
                    "Reports delayed ~1 month.",
                }

            year, month = previous_month(today.year, today.month)
            monthly = self.get_monthly_revenue(year, month, today=today)
            mrr = monthly["total_revenue"]
            return {
                "mrr": mrr,
                "arr": round(mrr * 12, 2),
                "currency": "USD",
                "app_id": app_id,
                "last_updated": monthly["period"],
                "by_product": monthly["by_product"],
                "by_country": monthly["by_country"],
                "days_with_data": monthly["days_with_data"],
                "source": "SALES",
                "notes": "FINANCIAL reports unavailable; from SALES reports "
                "(new purchases only, excludes renewals)",
            }


def create_report_processor(
    key_id: str,
    issuer_id: str,
    private_key_path: str,
    vendor_number: str,
    app_ids: Optional[List[str]] = None,
) -> ReportProcessor:
    """
    Convenience function to create a ReportProcessor with API client.

    Args:
        key_id: App Store Connect API key ID
        issuer_id: App Store Connect API issuer ID
        private_key_path: Path to private key file
        vendor_number: Vendor number
        app_ids: Optional list of app IDs to filter

    Returns:
        Configured ReportProcessor instance
    """
    api = AppStoreConnectAPI(
        key_id=key_id,
        issuer_id=issuer_id,
        private_key_path=private_key_path,
        vendor_number=vendor_number,
        app_ids=app_ids,
    )
    return ReportProcessor(api)
