"""
Value types shared by the report pipeline.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from .utils import format_report_date

# Report version required by each report type. Financial reports are served
# without a version filter.
REPORT_VERSIONS: Dict[str, Optional[str]] = {
    "SALES": "1_1",
    "SUBSCRIPTION": "1_4",
    "SUBSCRIPTION_EVENT": "1_4",
    "SUBSCRIBER": "1_4",
    "FINANCIAL": None,
    "FINANCE_DETAIL": None,
}

FINANCE_REPORT_TYPES = ("FINANCIAL", "FINANCE_DETAIL")


@dataclass(frozen=True)
class ReportRequest:
    """
    One upstream report slice.

    Fully determines a single fetch: report type, sub-type, frequency, date
    (or fiscal period), version and region.
    """

    report_type: str
    report_date: str
    vendor_number: str
    frequency: Optional[str] = None
    report_subtype: Optional[str] = None
    version: Optional[str] = None
    region_code: Optional[str] = None

    @property
    def is_finance_report(self) -> bool:
        return self.report_type in FINANCE_REPORT_TYPES

    def to_params(self) -> Dict[str, str]:
        """Serialize as the `filter[...]` query parameters Apple expects."""
        params = {
            "filter[frequency]": self.frequency,
            "filter[regionCode]": self.region_code,
            "filter[reportDate]": self.report_date,
            "filter[reportSubType]": self.report_subtype,
            "filter[reportType]": self.report_type,
            "filter[vendorNumber]": self.vendor_number,
            "filter[version]": self.version,
        }
        return {key: value for key, value in params.items() if value}

    def describe(self) -> str:
        region = f"/{self.region_code}" if self.region_code else ""
        return f"{self.report_type} {self.report_date}{region}"

    @classmethod
    def sales(
        cls,
        vendor_number: str,
        report_date: Union[date, datetime],
        report_type: str = "SALES",
        report_subtype: str = "SUMMARY",
        frequency: str = "DAILY",
        versions: Optional[Dict[str, Optional[str]]] = None,
    ) -> "ReportRequest":
        """Build a Sales and Trends report request."""
        versions = versions if versions is not None else REPORT_VERSIONS
        return cls(
            report_type=report_type,
            report_date=format_report_date(report_date, frequency),
            vendor_number=vendor_number,
            frequency=frequency,
            report_subtype=report_subtype,
            version=versions.get(report_type, "1_1"),
        )

    @classmethod
    def financial(
        cls,
        vendor_number: str,
        fiscal_period: str,
        region_code: str,
        report_type: str = "FINANCIAL",
        versions: Optional[Dict[str, Optional[str]]] = None,
    ) -> "ReportRequest":
        """Build a financial report request for one fiscal period and region."""
        versions = versions if versions is not None else REPORT_VERSIONS
        return cls(
            report_type=report_type,
            report_date=fiscal_period,
            vendor_number=vendor_number,
            region_code=region_code,
            version=versions.get(report_type),
        )


@dataclass
class ParsedReport:
    """Header names and row mappings for one fetched report."""

    report_type: str
    headers: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def is_empty(self) -> bool:
        return not self.rows

    def to_dict(self, max_rows: Optional[int] = None) -> Dict[str, Any]:
        rows = self.rows if max_rows is None else self.rows[:max_rows]
        return {
            "report_type": self.report_type,
            "headers": list(self.headers),
            "rows": [dict(row) for row in rows],
            "row_count": self.row_count,
            "truncated": len(rows) < self.row_count,
        }
