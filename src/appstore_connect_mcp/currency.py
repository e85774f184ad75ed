"""
Currency normalization for parsed report rows.

The two report families disagree about what their proceeds column means:

* Sales and Trends reports (SALES, SUBSCRIPTION, ...) carry
  "Developer Proceeds" already in USD. "Customer Currency" and
  "Customer Price" describe what the customer paid, not the proceeds.
  Multiplying the proceeds by a rate for the customer currency converts
  them twice.
* Financial reports carry "Extended Partner Share" / "Partner Share" in
  the partner share currency, which needs a rate, and a "Sales or Return"
  flag that sets the sign.

The policy is chosen once per report type and never inferred from the
size of a value.
"""

import logging
import math
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Set

from .exceptions import ValidationError
from .models import ParsedReport


class CurrencyPolicy(str, Enum):
    ALREADY_USD = "already-usd"
    CONVERT_WITH_SIGN = "needs-conversion-with-sign"


REPORT_CURRENCY_POLICIES: Dict[str, CurrencyPolicy] = {
    "SALES": CurrencyPolicy.ALREADY_USD,
    "SUBSCRIPTION": CurrencyPolicy.ALREADY_USD,
    "SUBSCRIPTION_EVENT": CurrencyPolicy.ALREADY_USD,
    "SUBSCRIBER": CurrencyPolicy.ALREADY_USD,
    "FINANCIAL": CurrencyPolicy.CONVERT_WITH_SIGN,
    "FINANCE_DETAIL": CurrencyPolicy.CONVERT_WITH_SIGN,
}

# USD value of one unit of each currency. Deliberately partial: anything
# missing is converted 1:1 and flagged on the row.
DEFAULT_USD_RATES: Dict[str, float] = {
    "USD": 1.0,
    "VND": 0.0000406,
    "IDR": 0.000065,
    "TZS": 0.00039,
    "CLP": 0.0011,
}

UNKNOWN_CURRENCY = "unknown_currency"


def parse_amount(value: Any) -> float:
    """
    Parse a numeric report field.

    Empty, missing and unparseable values are 0.0.
    """
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(",", "")
        if not text:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return 0.0
    return number if math.isfinite(number) else 0.0


def policy_for(report_type: str) -> CurrencyPolicy:
    """Look up the currency policy for a report type."""
    try:
        return REPORT_CURRENCY_POLICIES[report_type]
    except KeyError:
        raise ValidationError(f"No currency policy for report type: {report_type}")


class CurrencyNormalizer:
    """
    Adds USD proceeds to rows of one report family.

    Args:
        report_type: Report type whose policy applies to every row
        rates: Currency code to USD rate table (defaults to DEFAULT_USD_RATES)
        logger: Optional logger
    """

    def __init__(
        self,
        report_type: str,
        rates: Optional[Mapping[str, float]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.report_type = report_type
        self.policy = policy_for(report_type)
        source = DEFAULT_USD_RATES if rates is None else rates
        self.rates = {code.upper(): float(rate) for code, rate in source.items()}
        self.logger = logger or logging.getLogger(__name__)
        self.unknown_currencies: Set[str] = set()

    def normalize(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        """Return a new row with customer_currency, customer_price_raw, proceeds_raw and proceeds_usd."""
        if self.policy is CurrencyPolicy.ALREADY_USD:
            return self._normalize_already_usd(row)
        return self._normalize_with_sign(row)

    def normalize_report(self, report: ParsedReport) -> ParsedReport:
        return ParsedReport(
            report_type=report.report_type,
            headers=list(report.headers),
            rows=[self.normalize(row) for row in report.rows],
        )

    def _normalize_already_usd(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        if "Developer Proceeds" in row:
            proceeds_raw = row.get("Developer Proceeds", "")
        else:
            proceeds_raw = row.get("Proceeds", "")

        enriched = dict(row)
        enriched.update(
            {
                "customer_currency": row.get("Customer Currency", ""),
                "customer_price_raw": row.get("Customer Price", ""),
                "proceeds_raw": proceeds_raw,
                "proceeds_currency": "USD",
                "proceeds_usd": parse_amount(proceeds_raw),
                "sales_or_return": None,
                "currency_flag": None,
            }
        )
        return enriched

    def _normalize_with_sign(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        if "Extended Partner Share" in row:
            proceeds_raw = row.get("Extended Partner Share", "")
        else:
            proceeds_raw = row.get("Partner Share", "")

        currency = str(row.get("Partner Share Currency", "")).strip().upper()
        # Reports without the column only list sales
        flag = str(row.get("Sales or Return", "S")).strip().upper()

        if flag == "S":
            sign = 1.0
        elif flag == "R":
            sign = -1.0
        else:
            # Totals and footer lines carry no transaction flag
            sign = 0.0

        currency_flag = None
        rate = self.rates.get(currency)
        if rate is None:
            rate = 1.0
            currency_flag = UNKNOWN_CURRENCY
            if sign and currency not in self.unknown_currencies:
                self.unknown_currencies.add(currency)
                self.logger.warning(
                    f"No USD rate for currency '{currency}' in {self.report_type} report; "
                    "converting 1:1"
                )

        magnitude = abs(parse_amount(proceeds_raw))

        enriched = dict(row)
        enriched.update(
            {
                "customer_currency": row.get("Customer Currency", ""),
                "customer_price_raw": row.get("Customer Price", ""),
                "proceeds_raw": proceeds_raw,
                "proceeds_currency": currency,
                "proceeds_usd": sign * magnitude * rate,
                "sales_or_return": flag if sign else None,
                "currency_flag": currency_flag if sign else None,
            }
        )
        return enriched
