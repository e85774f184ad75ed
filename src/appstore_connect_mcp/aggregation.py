"""
Aggregation of normalized report rows.

Rows reaching this module have been through CurrencyNormalizer, so
`proceeds_usd` is the only field summed as money. Per-report partial
summaries are merged across slices by RevenueAccumulator.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

DEFAULT_REVENUE_CEILING = 1_000_000.0
DEFAULT_TOP_N = 10

PRODUCT_COLUMNS = ("SKU", "Vendor Identifier", "Subscription Apple ID", "Title")
TITLE_COLUMNS = ("Title", "Subscription Name", "App Name")
COUNTRY_COLUMNS = ("Country Code", "Country Of Sale", "Country")
CURRENCY_COLUMNS = ("Partner Share Currency", "Customer Currency", "Proceeds Currency")
UNITS_COLUMNS = ("Units", "Quantity")

ACTIVE_SUBSCRIPTION_COLUMN = "Active Standard Price Subscriptions"
SUBSCRIPTION_COLUMNS = (
    ACTIVE_SUBSCRIPTION_COLUMN,
    "New Standard Price Subscriptions",
    "Canceled Subscriptions",
    "Active Free Trial Introductory Offer Subscriptions",
)

# Months covered by one billing period, keyed by "Standard Subscription Duration"
SUBSCRIPTION_DURATION_MONTHS = {
    "7 Days": 12 / 52,
    "1 Week": 12 / 52,
    "1 Month": 1.0,
    "2 Months": 2.0,
    "3 Months": 3.0,
    "6 Months": 6.0,
    "1 Year": 12.0,
}


def first_column(df: pd.DataFrame, candidates: Sequence[str]) -> Optional[str]:
    for column in candidates:
        if column in df.columns:
            return column
    return None


def numeric_column(df: pd.DataFrame, column: Optional[str]) -> pd.Series:
    if column is None or column not in df.columns:
        return pd.Series(0.0, index=df.index)
    cleaned = df[column].astype(str).str.replace(",", "", regex=False).str.strip()
    return pd.to_numeric(cleaned, errors="coerce").fillna(0.0)


def key_column(df: pd.DataFrame, column: Optional[str]) -> pd.Series:
    if column is None:
        return pd.Series("Unknown", index=df.index)
    keys = df[column].fillna("").astype(str).str.strip()
    return keys.where(keys != "", "Unknown")


def empty_summary() -> Dict[str, Any]:
    return {
        "total_revenue": 0.0,
        "total_units": 0.0,
        "row_count": 0,
        "by_product": {},
        "by_country": {},
        "by_currency": {},
        "sales": 0.0,
        "returns": 0.0,
        "flagged_rows": [],
        "unknown_currencies": [],
        "subscription_stats": None,
    }


def apply_revenue_ceiling(
    df: pd.DataFrame,
    revenue_ceiling: float = DEFAULT_REVENUE_CEILING,
    logger: Optional[logging.Logger] = None,
) -> Tuple[pd.DataFrame, List[Dict[str, Any]]]:
    """
    Drop rows whose absolute `proceeds_usd` exceeds the ceiling.

    Returns:
        (kept rows with numeric `proceeds_usd`, flagged descriptions of the dropped rows)
    """
    logger = logger or logging.getLogger(__name__)
    df = df.assign(proceeds_usd=pd.to_numeric(df["proceeds_usd"], errors="coerce").fillna(0.0))

    over_ceiling = df["proceeds_usd"].abs() > revenue_ceiling
    if not over_ceiling.any():
        return df, []

    rejected = df[over_ceiling]
    products = key_column(rejected, first_column(rejected, PRODUCT_COLUMNS))
    countries = key_column(rejected, first_column(rejected, COUNTRY_COLUMNS))
    currencies = key_column(rejected, first_column(rejected, CURRENCY_COLUMNS))

    flagged_rows = []
    for idx in rejected.index:
        flagged = {
            "reason": "exceeds_revenue_ceiling",
            "product": products.loc[idx],
            "country": countries.loc[idx],
            "currency": currencies.loc[idx],
            "proceeds_raw": str(rejected.at[idx, "proceeds_raw"])
            if "proceeds_raw" in rejected.columns
            else "",
            "proceeds_usd": float(rejected.at[idx, "proceeds_usd"]),
        }
        logger.warning(
            f"apply_revenue_ceiling: rejecting row for {flagged['product']} "
            f"({flagged['country']}): ${flagged['proceeds_usd']:,.2f} exceeds "
            f"ceiling ${revenue_ceiling:,.2f}"
        )
        flagged_rows.append(flagged)
    return df[~over_ceiling], flagged_rows


def aggregate_rows(
    rows: Iterable[Mapping[str, Any]],
    revenue_ceiling: float = DEFAULT_REVENUE_CEILING,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, Any]:
    """
    Aggregate normalized rows into a partial summary.

    Args:
        rows: Rows carrying `proceeds_usd`
        revenue_ceiling: A single row contributing more than this (in
            absolute USD) is excluded from every total and flagged
        logger: Optional logger

    Returns:
        Dictionary with totals and per-product/country/currency sums
    """
    logger = logger or logging.getLogger(__name__)
    df = pd.DataFrame(list(rows))

    summary = empty_summary()
    if df.empty or "proceeds_usd" not in df.columns:
        return summary

    df, summary["flagged_rows"] = apply_revenue_ceiling(df, revenue_ceiling, logger)

    product_col = first_column(df, PRODUCT_COLUMNS)
    title_col = first_column(df, TITLE_COLUMNS)
    country_col = first_column(df, COUNTRY_COLUMNS)
    currency_col = first_column(df, CURRENCY_COLUMNS)
    units_col = first_column(df, UNITS_COLUMNS)

    summary["row_count"] = int(len(df))
    if df.empty:
        return summary

    df = df.assign(
        _product=key_column(df, product_col),
        _title=key_column(df, title_col),
        _country=key_column(df, country_col),
        _currency=key_column(df, currency_col),
        _units=numeric_column(df, units_col),
    )

    summary["total_revenue"] = float(df["proceeds_usd"].sum())
    summary["total_units"] = float(df["_units"].sum())

    by_product = df.groupby("_product").agg(
        revenue=("proceeds_usd", "sum"),
        units=("_units", "sum"),
        title=("_title", "first"),
    )
    summary["by_product"] = {
        str(product): {
            "title": str(group["title"]),
            "revenue": float(group["revenue"]),
            "units": float(group["units"]),
        }
        for product, group in by_product.iterrows()
    }

    summary["by_country"] = {
        str(country): float(revenue)
        for country, revenue in df.groupby("_country")["proceeds_usd"].sum().items()
    }
    summary["by_currency"] = {
        str(currency): float(revenue)
        for currency, revenue in df.groupby("_currency")["proceeds_usd"].sum().items()
    }

    if "sales_or_return" in df.columns:
        flags = df["sales_or_return"].fillna("")
        summary["sales"] = float(df.loc[flags == "S", "proceeds_usd"].sum())
        summary["returns"] = float(df.loc[flags == "R", "proceeds_usd"].abs().sum())

    if "currency_flag" in df.columns:
        unknown = df.loc[df["currency_flag"].fillna("") != "", "_currency"]
        summary["unknown_currencies"] = sorted(set(unknown))

    summary["subscription_stats"] = subscription_stats(df)
    return summary


def subscription_stats(df: pd.DataFrame) -> Optional[Dict[str, Any]]:
    """
    Derive subscription counts, MRR and ARR.

    Only computed when subscription-shaped columns are present. MRR is
    the proceeds of active standard-price subscriptions spread over their
    billing period; ARR is MRR x 12.
    """
    if not any(column in df.columns for column in SUBSCRIPTION_COLUMNS):
        return None

    active = numeric_column(df, ACTIVE_SUBSCRIPTION_COLUMN)
    proceeds = pd.to_numeric(df["proceeds_usd"], errors="coerce").fillna(0.0)

    if "Standard Subscription Duration" in df.columns:
        months = (
            df["Standard Subscription Duration"]
            .map(SUBSCRIPTION_DURATION_MONTHS)
            .fillna(1.0)
            .astype(float)
        )
    else:
        months = pd.Series(1.0, index=df.index)

    mrr = float((proceeds * active / months).sum())

    return {
        "active_count": int(active.sum()),
        "new_count": int(numeric_column(df, "New Standard Price Subscriptions").sum()),
        "cancelled_count": int(numeric_column(df, "Canceled Subscriptions").sum()),
        "free_trial_count": int(
            numeric_column(df, "Active Free Trial Introductory Offer Subscriptions").sum()
        ),
        "mrr": mrr,
        "arr": mrr * 12,
    }


def top_n(
    values: Mapping[str, float], n: int = DEFAULT_TOP_N, total: Optional[float] = None
) -> List[Dict[str, Any]]:
    """Sort a key-to-amount mapping descending and keep the first n entries."""
    ranked = sorted(values.items(), key=lambda x: x[1], reverse=True)[:n]
    results = []
    for key, amount in ranked:
        entry: Dict[str, Any] = {"key": key, "revenue": round(amount, 2)}
        if total:
            entry["percentage"] = round(amount / total * 100, 1)
        results.append(entry)
    return results


def daily_statistics(values: Sequence[float]) -> Dict[str, float]:
    """Min, median, max and mean of per-day totals."""
    if not values:
        return {"min": 0.0, "median": 0.0, "max": 0.0, "mean": 0.0}
    series = pd.Series(list(values), dtype=float)
    return {
        "min": round(float(series.min()), 2),
        "median": round(float(series.median()), 2),
        "max": round(float(series.max()), 2),
        "mean": round(float(series.mean()), 2),
    }


class RevenueAccumulator:
    """
    Running totals for one multi-slice operation.

    Totals only grow from the `proceeds_usd`-derived partial summaries
    passed to add().
    """

    def __init__(self):
        self.total_revenue = 0.0
        self.total_units = 0.0
        self.sales = 0.0
        self.returns = 0.0
        self.products: Dict[str, Dict[str, Any]] = {}
        self.countries: Dict[str, float] = {}
        self.currencies: Dict[str, float] = {}
        self.regions: Dict[str, float] = {}
        self.flagged_rows: List[Dict[str, Any]] = []
        self.unknown_currencies: set = set()
        self.slices: List[Dict[str, Any]] = []

    def add(self, label: str, partial: Mapping[str, Any], region: Optional[str] = None) -> None:
        """Merge one slice's partial summary."""
        revenue = partial.get("total_revenue", 0.0)
        self.total_revenue += revenue
        self.total_units += partial.get("total_units", 0.0)
        self.sales += partial.get("sales", 0.0)
        self.returns += partial.get("returns", 0.0)

        for product, data in partial.get("by_product", {}).items():
            entry = self.products.setdefault(
                product, {"title": data.get("title", product), "revenue": 0.0, "units": 0.0}
            )
            entry["revenue"] += data.get("revenue", 0.0)
            entry["units"] += data.get("units", 0.0)

        for country, amount in partial.get("by_country", {}).items():
            self.countries[country] = self.countries.get(country, 0.0) + amount

        for currency, amount in partial.get("by_currency", {}).items():
            self.currencies[currency] = self.currencies.get(currency, 0.0) + amount

        if region is not None:
            self.regions[region] = self.regions.get(region, 0.0) + revenue

        for flagged in partial.get("flagged_rows", []):
            self.flagged_rows.append(dict(flagged, slice=label))

        self.unknown_currencies.update(partial.get("unknown_currencies", []))

        self.slices.append(
            {
                "slice": label,
                "revenue": revenue,
                "units": partial.get("total_units", 0.0),
                "rows": partial.get("row_count", 0),
            }
        )

    def top_products(self, n: int = DEFAULT_TOP_N) -> List[Dict[str, Any]]:
        ranked = sorted(self.products.items(), key=lambda x: x[1]["revenue"], reverse=True)[:n]
        return [
            {
                "sku": product,
                "title": data["title"],
                "revenue": round(data["revenue"], 2),
                "units": round(data["units"], 2),
                "percentage": round(data["revenue"] / self.total_revenue * 100, 1)
                if self.total_revenue
                else 0.0,
            }
            for product, data in ranked
        ]

    def finalize(self, top: int = DEFAULT_TOP_N) -> Dict[str, Any]:
        """Rounded, JSON-ready view of the totals."""
        return {
            "total_revenue": round(self.total_revenue, 2),
            "total_units": round(self.total_units, 2),
            "by_product": self.top_products(top),
            "by_country": [
                {"country": entry["key"], "revenue": entry["revenue"], "percentage": entry.get("percentage", 0.0)}
                for entry in top_n(self.countries, top, self.total_revenue)
            ],
            "by_currency": [
                {"currency": entry["key"], "revenue": entry["revenue"]}
                for entry in top_n(self.currencies, len(self.currencies))
            ],
            "sales_vs_returns": {
                "sales": round(self.sales, 2),
                "returns": round(self.returns, 2),
            },
            "flagged_rows": self.flagged_rows,
            "unknown_currencies": sorted(self.unknown_currencies),
        }
