"""
Environment-driven configuration for appstore-connect-mcp.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv

from .aggregation import DEFAULT_REVENUE_CEILING
from .currency import DEFAULT_USD_RATES
from .exceptions import ConfigurationError, ValidationError
from .models import REPORT_VERSIONS
from .utils import validate_vendor_number

DEFAULT_HIGH_REVENUE_THRESHOLD = 10_000.0
# "ZZ"/"Z1" (all regions) do not work for FINANCIAL reports; WW is the
# catch-all for regions without their own code.
DEFAULT_REGION_CODES = ("US", "CA", "EU", "JP", "AU", "WW")
REGION_NAMES = {
    "US": "United States",
    "CA": "Canada",
    "EU": "Europe",
    "JP": "Japan",
    "AU": "Australia",
    "WW": "Rest of World",
}
DEFAULT_LATEST_LOOKBACK_MONTHS = 3
DEFAULT_MAX_REPORT_ROWS = 200


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the API client and the report pipeline."""

    key_id: str
    issuer_id: str
    private_key_path: str
    vendor_number: Optional[str] = None
    app_ids: Tuple[str, ...] = ()
    debug: bool = False
    currency_rates: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_USD_RATES))
    report_versions: Mapping[str, Optional[str]] = field(
        default_factory=lambda: dict(REPORT_VERSIONS)
    )
    revenue_ceiling: float = DEFAULT_REVENUE_CEILING
    high_revenue_threshold: float = DEFAULT_HIGH_REVENUE_THRESHOLD
    region_codes: Tuple[str, ...] = DEFAULT_REGION_CODES
    latest_lookback_months: int = DEFAULT_LATEST_LOOKBACK_MONTHS
    max_report_rows: int = DEFAULT_MAX_REPORT_ROWS


def _get_bool_env(name: str, default: bool) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_number_env(name: str, default: float) -> float:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return float(raw_value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got: {raw_value}")


def _get_list_env(name: str, default: Tuple[str, ...] = ()) -> Tuple[str, ...]:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    return tuple(item.strip() for item in raw_value.split(",") if item.strip())


def load_currency_rates(path: str) -> Dict[str, float]:
    """
    Load a currency rate table from a JSON file.

    The file maps currency codes to the USD value of one unit,
    e.g. {"USD": 1.0, "EUR": 1.08}.
    """
    try:
        with open(Path(path), "r") as f:
            data = json.load(f)
    except (IOError, ValueError) as e:
        raise ConfigurationError(f"Failed to load currency rates from {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"Currency rates in {path} must be a JSON object")

    try:
        return {str(code).upper(): float(rate) for code, rate in data.items()}
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid currency rate in {path}: {e}")


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Read settings from the environment (and a .env file, if present).

    Raises:
        ConfigurationError: If credentials are missing or a value is invalid
    """
    load_dotenv(env_file)

    key_id = os.getenv("APP_STORE_KEY_ID", "").strip()
    issuer_id = os.getenv("APP_STORE_ISSUER_ID", "").strip()
    private_key_path = os.getenv("APP_STORE_P8_PATH", "").strip()

    missing = [
        name
        for name, value in (
            ("APP_STORE_KEY_ID", key_id),
            ("APP_STORE_ISSUER_ID", issuer_id),
            ("APP_STORE_P8_PATH", private_key_path),
        )
        if not value
    ]
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    vendor_number = os.getenv("APP_STORE_VENDOR_NUMBER", "").strip() or None
    if vendor_number:
        try:
            vendor_number = validate_vendor_number(vendor_number)
        except ValidationError as e:
            raise ConfigurationError(str(e))

    rates_path = os.getenv("APP_STORE_CURRENCY_RATES", "").strip()
    currency_rates = load_currency_rates(rates_path) if rates_path else dict(DEFAULT_USD_RATES)

    lookback = int(_get_number_env("APP_STORE_LATEST_LOOKBACK_MONTHS", DEFAULT_LATEST_LOOKBACK_MONTHS))
    if lookback < 1:
        raise ConfigurationError("APP_STORE_LATEST_LOOKBACK_MONTHS must be at least 1")

    revenue_ceiling = _get_number_env("APP_STORE_REVENUE_CEILING", DEFAULT_REVENUE_CEILING)
    if revenue_ceiling <= 0:
        raise ConfigurationError("APP_STORE_REVENUE_CEILING must be greater than 0")

    return Settings(
        key_id=key_id,
        issuer_id=issuer_id,
        private_key_path=private_key_path,
        vendor_number=vendor_number,
        app_ids=_get_list_env("APP_STORE_APP_IDS"),
        debug=_get_bool_env("DEBUG", False),
        currency_rates=currency_rates,
        revenue_ceiling=revenue_ceiling,
        high_revenue_threshold=_get_number_env(
            "APP_STORE_HIGH_REVENUE_THRESHOLD", DEFAULT_HIGH_REVENUE_THRESHOLD
        ),
        region_codes=tuple(
            code.upper() for code in _get_list_env("APP_STORE_FINANCE_REGIONS", DEFAULT_REGION_CODES)
        ),
        latest_lookback_months=lookback,
        max_report_rows=int(_get_number_env("APP_STORE_MAX_REPORT_ROWS", DEFAULT_MAX_REPORT_ROWS)),
    )
