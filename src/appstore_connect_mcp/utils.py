"""
Utility functions for appstore-connect-mcp.

This module provides helper functions for common operations like
date handling, Apple fiscal calendar translation and input validation.
"""

import calendar
from datetime import datetime, date, timedelta, timezone
from typing import List, Optional, Tuple, Union

from .exceptions import ValidationError

# Apple's fiscal year starts in October: October is fiscal month 1 of the
# following fiscal year, September is fiscal month 12.
FISCAL_YEAR_START_MONTH = 10


def validate_app_id(app_id: str) -> str:
    """
    Validate an App Store app ID.

    Args:
        app_id: The app ID to validate

    Returns:
        The validated app ID as a string

    Raises:
        ValidationError: If the app ID is invalid
    """
    if not app_id:
        raise ValidationError("App ID cannot be empty")

    app_id_str = str(app_id).strip()

    # App IDs should be numeric and typically 9-10 digits
    if not app_id_str.isdigit():
        raise ValidationError(f"App ID must be numeric, got: {app_id_str}")

    if len(app_id_str) < 9 or len(app_id_str) > 10:
        raise ValidationError(
            f"App ID should be 9-10 digits, got {len(app_id_str)} digits: {app_id_str}"
        )

    return app_id_str


def validate_vendor_number(vendor_number: str) -> str:
    """
    Validate a vendor number.

    Args:
        vendor_number: The vendor number to validate

    Returns:
        The validated vendor number as a string

    Raises:
        ValidationError: If the vendor number is invalid
    """
    if not vendor_number:
        raise ValidationError("Vendor number cannot be empty")

    vendor_str = str(vendor_number).strip()

    # Vendor numbers are typically 8-9 digits
    if not vendor_str.isdigit():
        raise ValidationError(f"Vendor number must be numeric, got: {vendor_str}")

    if len(vendor_str) < 8 or len(vendor_str) > 9:
        raise ValidationError(
            f"Vendor number should be 8-9 digits, got {len(vendor_str)} digits: {vendor_str}"
        )

    return vendor_str


def normalize_date(date_input: Union[str, date, datetime]) -> date:
    """
    Normalize various date inputs to a date object.

    Args:
        date_input: Date as string, date, or datetime object

    Returns:
        Normalized date object

    Raises:
        ValidationError: If the date cannot be parsed
    """
    if isinstance(date_input, datetime):
        return date_input.date()
    elif isinstance(date_input, date):
        return date_input
    elif isinstance(date_input, str):
        try:
            # Try parsing ISO format: YYYY-MM-DD
            return datetime.strptime(date_input.strip(), "%Y-%m-%d").date()
        except ValueError:
            try:
                # Try parsing with slashes: MM/DD/YYYY
                return datetime.strptime(date_input.strip(), "%m/%d/%Y").date()
            except ValueError:
                raise ValidationError(
                    f"Invalid date format. Expected 'YYYY-MM-DD' or 'MM/DD/YYYY', got: {date_input}"
                )
    else:
        raise ValidationError(
            f"Invalid date type. Expected str, date, or datetime, got: {type(date_input)}"
        )


def default_report_date(now: Optional[datetime] = None) -> date:
    """
    Most recent date with a published daily report.

    Apple reports are available the next day at 5 AM Pacific Time, so this
    is "yesterday" on the Pacific calendar.
    """
    utc_now = now or datetime.now(timezone.utc)
    pacific_now = utc_now - timedelta(hours=8)
    return pacific_now.date() - timedelta(days=1)


def format_report_date(report_date: Union[datetime, date], frequency: str) -> str:
    """
    Format a date the way the reports endpoints expect for a frequency.

    Note:
        Apple expects dates in YYYY-MM-DD format in UTC.
        Reports are generated based on Pacific Time but accessed via UTC dates.
    """
    if isinstance(report_date, datetime):
        report_date = report_date.date()

    if frequency == "WEEKLY":
        # For weekly reports, Apple expects the date of the Sunday that starts the week
        days_since_sunday = (
            report_date.weekday() + 1 if report_date.weekday() != 6 else 0
        )
        sunday = report_date - timedelta(days=days_since_sunday)
        return sunday.strftime("%Y-%m-%d")
    elif frequency == "MONTHLY":
        return report_date.strftime("%Y-%m")
    elif frequency == "YEARLY":
        return report_date.strftime("%Y")
    return report_date.strftime("%Y-%m-%d")


def validate_year_month(year: int, month: int) -> Tuple[int, int]:
    """
    Validate a calendar year/month pair.

    Raises:
        ValidationError: If either value is out of range
    """
    try:
        year = int(year)
        month = int(month)
    except (TypeError, ValueError):
        raise ValidationError(f"Year and month must be integers, got: {year!r}, {month!r}")

    if month < 1 or month > 12:
        raise ValidationError(f"Month must be between 1 and 12, got: {month}")
    if year < 2000 or year > 9998:
        raise ValidationError(f"Year out of range, got: {year}")

    return year, month


def days_in_month(year: int, month: int) -> int:
    """Number of calendar days in a month."""
    return calendar.monthrange(year, month)[1]


def month_dates(year: int, month: int) -> List[date]:
    """Every calendar day of a month, in order."""
    return [date(year, month, day) for day in range(1, days_in_month(year, month) + 1)]


def previous_month(year: int, month: int) -> Tuple[int, int]:
    """Calendar month immediately before (year, month)."""
    if month == 1:
        return year - 1, 12
    return year, month - 1


def fiscal_period(year: int, month: int) -> str:
    """
    Convert a calendar month to Apple's fiscal period label.

    Oct=1, Nov=2, Dec=3, Jan=4, ... Sep=12. October through December
    belong to the next fiscal year.

    Returns:
        Fiscal period as 'YYYY-MM', e.g. '2025-10' for July 2025
    """
    year, month = validate_year_month(year, month)
    fiscal_month = (month - FISCAL_YEAR_START_MONTH) % 12 + 1
    fiscal_year = year + 1 if month >= FISCAL_YEAR_START_MONTH else year
    return f"{fiscal_year}-{fiscal_month:02d}"


def parse_fiscal_period(period: str) -> Tuple[int, int]:
    """Split a 'YYYY-MM' fiscal period label into (fiscal_year, fiscal_month)."""
    try:
        fiscal_year, fiscal_month = (int(part) for part in period.split("-"))
    except (AttributeError, ValueError):
        raise ValidationError(f"Invalid fiscal period. Expected 'YYYY-MM', got: {period}")

    if fiscal_month < 1 or fiscal_month > 12:
        raise ValidationError(f"Fiscal month must be between 1 and 12, got: {fiscal_month}")

    return fiscal_year, fiscal_month


def calendar_month_for_fiscal_period(period: str) -> Tuple[int, int]:
    """Inverse of fiscal_period: map a fiscal label back to (year, month)."""
    fiscal_year, fiscal_month = parse_fiscal_period(period)
    month = (fiscal_month + FISCAL_YEAR_START_MONTH - 2) % 12 + 1
    year = fiscal_year - 1 if month >= FISCAL_YEAR_START_MONTH else fiscal_year
    return year, month


def next_fiscal_period(period: str) -> str:
    """Fiscal period immediately after the given one."""
    fiscal_year, fiscal_month = parse_fiscal_period(period)
    if fiscal_month == 12:
        return f"{fiscal_year + 1}-01"
    return f"{fiscal_year}-{fiscal_month + 1:02d}"


def validate_report_frequency(frequency: str) -> str:
    """
    Validate a report frequency.

    Args:
        frequency: The frequency to validate

    Returns:
        The validated frequency string

    Raises:
        ValidationError: If the frequency is invalid
    """
    valid_frequencies = ["DAILY", "WEEKLY", "MONTHLY", "YEARLY"]

    if not frequency:
        raise ValidationError("Frequency cannot be empty")

    frequency = frequency.upper().strip()

    if frequency not in valid_frequencies:
        raise ValidationError(
            f"Invalid frequency. Must be one of: {valid_frequencies}, got: {frequency}"
        )

    return frequency


def validate_report_type(report_type: str) -> str:
    """
    Validate a report type.

    Args:
        report_type: The report type to validate

    Returns:
        The validated report type string

    Raises:
        ValidationError: If the report type is invalid
    """
    valid_types = [
        "SALES",
        "SUBSCRIPTION",
        "SUBSCRIPTION_EVENT",
        "SUBSCRIBER",
        "FINANCIAL",
        "FINANCE_DETAIL",
    ]

    if not report_type:
        raise ValidationError("Report type cannot be empty")

    report_type = report_type.upper().strip()

    if report_type not in valid_types:
        raise ValidationError(
            f"Invalid report type. Must be one of: {valid_types}, got: {report_type}"
        )

    return report_type


def validate_report_subtype(report_subtype: str) -> str:
    """
    Validate a report subtype.

    Args:
        report_subtype: The report subtype to validate

    Returns:
        The validated report subtype string

    Raises:
        ValidationError: If the report subtype is invalid
    """
    valid_subtypes = ["SUMMARY", "DETAILED", "SUMMARY_BY_SKU"]

    if not report_subtype:
        raise ValidationError("Report subtype cannot be empty")

    report_subtype = report_subtype.upper().strip()

    if report_subtype not in valid_subtypes:
        raise ValidationError(
            f"Invalid report subtype. Must be one of: {valid_subtypes}, got: {report_subtype}"
        )

    return report_subtype


def format_currency(amount: float, currency: str = "USD") -> str:
    """
    Format a currency amount for display.

    Args:
        amount: The amount to format
        currency: The currency code

    Returns:
        Formatted currency string
    """
    if currency.upper() == "USD":
        return f"${amount:,.2f}"
    else:
        return f"{amount:,.2f} {currency}"
