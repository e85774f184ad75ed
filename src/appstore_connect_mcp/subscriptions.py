"""
Subscription metrics and renewal tracking.
"""

import calendar
import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import pandas as pd

from .aggregation import (
    COUNTRY_COLUMNS,
    DEFAULT_REVENUE_CEILING,
    TITLE_COLUMNS,
    UNITS_COLUMNS,
    aggregate_rows,
    apply_revenue_ceiling,
    first_column,
    key_column,
    numeric_column,
    top_n,
)
from .exceptions import MalformedReportError, NotFoundError
from .models import ParsedReport, ReportRequest
from .reports import SLICE_OK, ReportProcessor
from .utils import default_report_date, month_dates, normalize_date, validate_year_month

# Apple product type identifiers for subscriptions
SUBSCRIPTION_PRODUCT_TYPES = ("IAY", "IA9", "IAC")
SUBSCRIPTION_TITLE_KEYWORDS = ("subscription", "monthly", "yearly", "annual")
# Without a subscription report, assume new subscriptions are ~10% of the active base
ESTIMATED_ACTIVE_BASE_MULTIPLIER = 10


def _is_subscription(product_type: str, title: str, subscription: str) -> bool:
    if subscription in ("New", "Renewal"):
        return True
    if product_type in SUBSCRIPTION_PRODUCT_TYPES:
        return True
    if "Auto-Renewable" in product_type or "Subscription" in product_type:
        return True
    title = title.lower()
    return any(keyword in title for keyword in SUBSCRIPTION_TITLE_KEYWORDS)


def extract_sales_subscriptions(
    report: ParsedReport,
    revenue_ceiling: float = DEFAULT_REVENUE_CEILING,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, Any]:
    """
    Split a SALES report into subscription and one-time purchases.

    New and renewal counts come from the `Subscription` column when Apple
    fills it in; otherwise every subscription unit counts as new. Rows over
    the revenue ceiling are left out of every figure and listed in
    `flagged_rows`.
    """
    extracted: Dict[str, Any] = {
        "subscription_revenue": 0.0,
        "one_time_revenue": 0.0,
        "new_subscriptions": 0,
        "renewals": 0,
        "subscription_types": {},
        "countries": {},
        "products": [],
        "flagged_rows": [],
    }

    df = pd.DataFrame(report.rows)
    if df.empty or "proceeds_usd" not in df.columns:
        return extracted

    df, extracted["flagged_rows"] = apply_revenue_ceiling(df, revenue_ceiling, logger)
    revenue = df["proceeds_usd"]
    units = numeric_column(df, first_column(df, UNITS_COLUMNS))
    product_types = df.get("Product Type Identifier", pd.Series("", index=df.index)).fillna("").astype(str)
    titles = key_column(df, first_column(df, TITLE_COLUMNS))
    countries = key_column(df, first_column(df, COUNTRY_COLUMNS))
    subscription_flags = df.get("Subscription", pd.Series("", index=df.index)).fillna("").astype(str).str.strip()

    is_subscription = pd.Series(
        [
            _is_subscription(product_type.strip(), title, flag)
            for product_type, title, flag in zip(product_types, titles, subscription_flags)
        ],
        index=df.index,
        dtype=bool,
    )

    extracted["subscription_revenue"] = float(revenue[is_subscription].sum())
    extracted["one_time_revenue"] = float(revenue[~is_subscription].sum())

    if (subscription_flags != "").any():
        extracted["new_subscriptions"] = int(units[subscription_flags == "New"].sum())
        extracted["renewals"] = int(units[subscription_flags == "Renewal"].sum())
    else:
        extracted["new_subscriptions"] = int(units[is_subscription].sum())

    type_units = units[is_subscription].groupby(product_types[is_subscription]).sum()
    extracted["subscription_types"] = {
        str(product_type) or "Unknown": int(count) for product_type, count in type_units.items()
    }
    extracted["countries"] = {
        str(country): float(amount) for country, amount in revenue.groupby(countries).sum().items()
    }

    skus = df.get("SKU", pd.Series("", index=df.index)).fillna("").astype(str)
    for idx in df.index[is_subscription & (units > 0)]:
        extracted["products"].append(
            {
                "sku": skus[idx],
                "title": titles[idx],
                "units": int(units[idx]),
                "revenue": round(float(revenue[idx]), 2),
                "average_price": round(float(revenue[idx] / units[idx]), 2),
            }
        )
    extracted["products"].sort(key=lambda x: x["revenue"], reverse=True)

    return extracted


def estimate_mrr(
    renewal_data: Optional[Dict[str, Any]], sales_data: Optional[Dict[str, Any]]
) -> float:
    """
    Best available MRR estimate for one day.

    Uses the subscription report's MRR when it has active subscribers,
    otherwise extrapolates an active base from the day's new subscriptions.
    """
    if renewal_data and renewal_data.get("active_count", 0) > 0:
        return renewal_data["mrr"]

    if sales_data and sales_data["new_subscriptions"] > 0:
        estimated_active_base = sales_data["new_subscriptions"] * ESTIMATED_ACTIVE_BASE_MULTIPLIER
        average_price = sales_data["subscription_revenue"] / sales_data["new_subscriptions"]
        return estimated_active_base * average_price

    return 0.0


class SubscriptionAnalyzer:
    """
    Subscription analytics built on a ReportProcessor.

    Args:
        processor: Processor used to fetch and normalize report slices
        logger: Optional logger
    """

    def __init__(self, processor: ReportProcessor, logger: Optional[logging.Logger] = None):
        self.processor = processor
        self.logger = logger or logging.getLogger(__name__)

    def _request(self, report_type: str, report_date: date) -> ReportRequest:
        return ReportRequest.sales(
            self.processor.require_vendor_number(),
            report_date,
            report_type=report_type,
            versions=self.processor.report_versions,
        )

    def get_subscription_metrics(self, report_date: Optional[Any] = None) -> Dict[str, Any]:
        """
        Active, new and cancelled subscriptions with MRR and ARR for one day.

        Args:
            report_date: Report date (defaults to the latest published day)
        """
        day = normalize_date(report_date) if report_date else default_report_date()
        report_request = self._request("SUBSCRIPTION", day)

        try:
            report = self.processor.fetch_report(report_request)
        except NotFoundError:
            return {
                "available": False,
                "date": report_request.report_date,
                "message": f"No SUBSCRIPTION report available for {report_request.report_date} yet",
            }
        except MalformedReportError as e:
            self.logger.warning(f"get_subscription_metrics: {e}")
            return {
                "available": False,
                "malformed": True,
                "date": report_request.report_date,
                "message": str(e),
            }

        partial = aggregate_rows(report.rows, self.processor.revenue_ceiling, self.logger)
        stats = partial["subscription_stats"] or {
            "active_count": 0,
            "new_count": 0,
            "cancelled_count": 0,
            "free_trial_count": 0,
            "mrr": 0.0,
            "arr": 0.0,
        }

        return {
            "available": True,
            "date": report_request.report_date,
            "active_subscriptions": stats["active_count"],
            "new_subscriptions": stats["new_count"],
            "cancelled_subscriptions": stats["cancelled_count"],
            "free_trials": stats["free_trial_count"],
            "mrr": round(stats["mrr"], 2),
            "arr": round(stats["arr"], 2),
            "currency": "USD",
            "total_proceeds": round(partial["total_revenue"], 2),
            "row_count": report.row_count,
            "flagged_rows": partial["flagged_rows"],
        }

    def get_subscription_renewals(self, report_date: Optional[Any] = None) -> Dict[str, Any]:
        """
        Renewal and new-subscription counts for one day.

        Combines the SUBSCRIPTION report (active base, MRR) with the SALES
        report (new/renewal transactions). `data_source` names the report
        the MRR estimate came from: SUBSCRIPTION, SALES_INFERRED or none.
        """
        day = normalize_date(report_date) if report_date else default_report_date()

        outcome, subscription_report = self.processor.fetch_slice(self._request("SUBSCRIPTION", day))
        renewal_data = None
        if outcome == SLICE_OK and not subscription_report.is_empty:
            partial = aggregate_rows(
                subscription_report.rows, self.processor.revenue_ceiling, self.logger
            )
            renewal_data = partial["subscription_stats"]

        outcome, sales_report = self.processor.fetch_slice(self._request("SALES", day))
        sales_data = None
        if outcome == SLICE_OK and not sales_report.is_empty:
            sales_data = extract_sales_subscriptions(
                sales_report, self.processor.revenue_ceiling, self.logger
            )

        if renewal_data:
            data_source = "SUBSCRIPTION"
        elif sales_data:
            data_source = "SALES_INFERRED"
        else:
            data_source = "none"

        return {
            "date": day.isoformat(),
            "data_source": data_source,
            "total_renewals": sales_data["renewals"] if sales_data else 0,
            "total_new_subscriptions": sales_data["new_subscriptions"] if sales_data else 0,
            "renewal_data": renewal_data,
            "sales_data": sales_data,
            "estimated_mrr": round(estimate_mrr(renewal_data, sales_data), 2),
        }

    def get_monthly_subscription_analytics(
        self, year: int, month: int, today: Optional[date] = None
    ) -> Dict[str, Any]:
        """
        Sum a month of daily SALES reports into subscription analytics.

        Args:
            year: Calendar year
            month: Calendar month (1-12)
            today: Reference date for "not yet published" (defaults to now)
        """
        year, month = validate_year_month(year, month)
        last_published = today - timedelta(days=1) if today else default_report_date()

        new_subscriptions = 0
        renewals = 0
        subscription_revenue = 0.0
        one_time_revenue = 0.0
        subscription_types: Dict[str, int] = {}
        countries: Dict[str, float] = {}
        daily_metrics: List[Dict[str, Any]] = []
        flagged_rows: List[Dict[str, Any]] = []
        coverage: Dict[str, List[str]] = {"missing": [], "malformed": [], "failed": [], "unpublished": []}

        for day in month_dates(year, month):
            if day > last_published:
                coverage["unpublished"].append(day.isoformat())
                continue

            outcome, report = self.processor.fetch_slice(self._request("SALES", day))
            if report is None:
                coverage[outcome].append(day.isoformat())
                continue

            sales_data = extract_sales_subscriptions(report, self.processor.revenue_ceiling, self.logger)
            for flagged in sales_data["flagged_rows"]:
                flagged_rows.append(dict(flagged, slice=day.isoformat()))
            new_subscriptions += sales_data["new_subscriptions"]
            renewals += sales_data["renewals"]
            subscription_revenue += sales_data["subscription_revenue"]
            one_time_revenue += sales_data["one_time_revenue"]
            for product_type, count in sales_data["subscription_types"].items():
                subscription_types[product_type] = subscription_types.get(product_type, 0) + count
            for country, amount in sales_data["countries"].items():
                countries[country] = countries.get(country, 0.0) + amount

            daily_metrics.append(
                {
                    "date": day.isoformat(),
                    "new_subscriptions": sales_data["new_subscriptions"],
                    "renewals": sales_data["renewals"],
                    "subscription_revenue": round(sales_data["subscription_revenue"], 2),
                    "estimated_mrr": round(estimate_mrr(None, sales_data), 2),
                }
            )

        total_revenue = subscription_revenue + one_time_revenue
        average_value = subscription_revenue / new_subscriptions if new_subscriptions else 0.0

        self.logger.info(
            f"get_monthly_subscription_analytics: {year}-{month:02d} new={new_subscriptions} "
            f"renewals={renewals} days_with_data={len(daily_metrics)}"
        )

        return {
            "year": year,
            "month": month,
            "month_name": calendar.month_name[month],
            "available": bool(daily_metrics),
            "total_new_subscriptions": new_subscriptions,
            "total_renewals": renewals,
            "subscription_revenue": round(subscription_revenue, 2),
            "one_time_revenue": round(one_time_revenue, 2),
            "subscription_types": [
                {"type": product_type, "count": count}
                for product_type, count in sorted(
                    subscription_types.items(), key=lambda x: x[1], reverse=True
                )
            ],
            "top_countries": [
                {"country": entry["key"], "revenue": entry["revenue"], "percentage": entry.get("percentage", 0.0)}
                for entry in top_n(countries, 10, total_revenue)
            ],
            "days_with_data": len(daily_metrics),
            "missing_days": coverage["missing"],
            "failed_days": coverage["failed"],
            "malformed_days": coverage["malformed"],
            "unpublished_days": coverage["unpublished"],
            "daily_metrics": daily_metrics,
            "flagged_rows": flagged_rows,
            "summary": {
                "total_revenue": round(total_revenue, 2),
                "subscription_percentage": round(subscription_revenue / total_revenue * 100, 1)
                if total_revenue
                else 0.0,
                "estimated_active_subscribers": new_subscriptions + renewals,
                "average_subscription_value": round(average_value, 2),
            },
        }
