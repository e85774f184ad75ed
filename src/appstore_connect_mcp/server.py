"""
FastMCP tool server exposing App Store Connect finance reports.

Stdout carries the JSON-RPC transport, so logging goes to stderr.
"""

import logging
import sys
from typing import Any, Callable, Dict, Optional

from fastmcp import FastMCP

from .client import AppStoreConnectAPI
from .config import Settings, load_settings
from .exceptions import (
    AppStoreConnectError,
    AuthenticationError,
    ConfigurationError,
    PermissionError,
    ValidationError,
)
from .reports import ReportProcessor
from .subscriptions import SubscriptionAnalyzer

SERVER_NAME = "appstore-connect-mcp"

# Errors the caller can fix by changing input or credentials
ACTIONABLE_ERRORS = (AuthenticationError, PermissionError, ConfigurationError, ValidationError)

logger = logging.getLogger(__name__)


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )


def tool_error(operation: str, error: AppStoreConnectError) -> Dict[str, Any]:
    """Structured error object returned in place of a tool result."""
    return {
        "error": {
            "operation": operation,
            "type": type(error).__name__,
            "message": str(error),
            "actionable": isinstance(error, ACTIONABLE_ERRORS),
        }
    }


class AppStoreTools:
    """
    Tool implementations, independent of the transport.

    Args:
        api: API client
        processor: Report processor built on the client
        analyzer: Subscription analyzer built on the processor
    """

    def __init__(
        self,
        api: AppStoreConnectAPI,
        processor: ReportProcessor,
        analyzer: SubscriptionAnalyzer,
    ):
        self.api = api
        self.processor = processor
        self.analyzer = analyzer

    @classmethod
    def from_settings(cls, settings: Settings) -> "AppStoreTools":
        api = AppStoreConnectAPI.from_settings(settings)
        processor = ReportProcessor.from_settings(api, settings)
        return cls(api, processor, SubscriptionAnalyzer(processor))

    def call(self, operation: str, func: Callable[..., Dict[str, Any]], **params) -> Dict[str, Any]:
        """Run one tool, turning library errors into a structured error."""
        logger.info(f"{operation} called with: {params}")
        try:
            result = func(**params)
        except AppStoreConnectError as e:
            logger.error(f"{operation} failed: {type(e).__name__}: {e}")
            return tool_error(operation, e)
        logger.debug(f"{operation} returned keys: {sorted(result)}")
        return result

    def get_sales_report(self, date: Optional[str] = None, report_type: str = "SALES") -> Dict[str, Any]:
        return self.call(
            "get_sales_report",
            self.processor.get_sales_report,
            report_date=date,
            report_type=report_type,
        )

    def get_revenue_metrics(self, app_id: Optional[str] = None) -> Dict[str, Any]:
        return self.call("get_revenue_metrics", self.processor.get_revenue_metrics, app_id=app_id)

    def get_monthly_revenue(self, year: int, month: int) -> Dict[str, Any]:
        return self.call(
            "get_monthly_revenue", self.processor.get_monthly_revenue, year=year, month=month
        )

    def get_financial_summary(
        self, year: Optional[int] = None, month: Optional[int] = None
    ) -> Dict[str, Any]:
        return self.call(
            "get_financial_summary", self.processor.get_financial_summary, year=year, month=month
        )

    def get_subscription_metrics(self) -> Dict[str, Any]:
        return self.call("get_subscription_metrics", self.analyzer.get_subscription_metrics)

    def get_subscription_renewals(self, date: Optional[str] = None) -> Dict[str, Any]:
        return self.call(
            "get_subscription_renewals", self.analyzer.get_subscription_renewals, report_date=date
        )

    def get_monthly_subscription_analytics(self, year: int, month: int) -> Dict[str, Any]:
        return self.call(
            "get_monthly_subscription_analytics",
            self.analyzer.get_monthly_subscription_analytics,
            year=year,
            month=month,
        )

    def test_connection(self) -> Dict[str, Any]:
        connected = self.api.test_connection()
        return {
            "connected": connected,
            "message": "Successfully connected to App Store Connect API"
            if connected
            else "Failed to connect to App Store Connect API",
        }

    def get_api_stats(self) -> Dict[str, Any]:
        return self.api.get_stats()


def create_server(settings: Optional[Settings] = None, tools: Optional[AppStoreTools] = None) -> FastMCP:
    """
    Build the FastMCP server.

    Args:
        settings: Settings to build the API client from (loaded from the
            environment when omitted)
        tools: Prebuilt tool implementations, used instead of settings
    """
    if tools is None:
        tools = AppStoreTools.from_settings(settings or load_settings())

    mcp = FastMCP(SERVER_NAME)

    @mcp.tool()
    def get_sales_report(date: Optional[str] = None, report_type: str = "SALES") -> dict:
        """Get one daily Sales and Trends report with USD proceeds per row.

        Args:
            date: Report date as YYYY-MM-DD (defaults to yesterday)
            report_type: SALES, SUBSCRIPTION, SUBSCRIPTION_EVENT or SUBSCRIBER
        """
        return tools.get_sales_report(date=date, report_type=report_type)

    @mcp.tool()
    def get_revenue_metrics(app_id: Optional[str] = None) -> dict:
        """Get MRR and ARR from the latest complete financial month.

        Falls back to last month's daily sales reports when no financial
        report is available yet; `source` says which was used.

        Args:
            app_id: Optional app ID to restrict the figures to
        """
        return tools.get_revenue_metrics(app_id=app_id)

    @mcp.tool()
    def get_monthly_revenue(year: int, month: int) -> dict:
        """Sum every daily sales report of a calendar month.

        Includes days with data, daily min/median/max, high revenue days and
        top products and countries. Excludes subscription renewals.
        """
        return tools.get_monthly_revenue(year=year, month=month)

    @mcp.tool()
    def get_financial_summary(year: Optional[int] = None, month: Optional[int] = None) -> dict:
        """Get complete revenue (including renewals) across all regions for a month.

        Financial reports are published about a month late. With no year and
        month the latest available month is used.
        """
        return tools.get_financial_summary(year=year, month=month)

    @mcp.tool()
    def get_subscription_metrics() -> dict:
        """Get yesterday's active, new and cancelled subscriptions with MRR and ARR."""
        return tools.get_subscription_metrics()

    @mcp.tool()
    def get_subscription_renewals(date: Optional[str] = None) -> dict:
        """Get renewal and new subscription counts for one day.

        Args:
            date: Report date as YYYY-MM-DD (defaults to yesterday)
        """
        return tools.get_subscription_renewals(date=date)

    @mcp.tool()
    def get_monthly_subscription_analytics(year: int, month: int) -> dict:
        """Get a month of subscription analytics: new subscriptions, renewals,
        subscription vs one-time revenue and top countries."""
        return tools.get_monthly_subscription_analytics(year=year, month=month)

    @mcp.tool()
    def test_connection() -> dict:
        """Check credentials and connectivity to the App Store Connect API."""
        return tools.test_connection()

    @mcp.tool()
    def get_api_stats() -> dict:
        """Get request counts for the current hourly rate limit window."""
        return tools.get_api_stats()

    return mcp


def main() -> None:
    """Run the server over stdio."""
    try:
        settings = load_settings()
    except ConfigurationError as e:
        configure_logging()
        logger.error(f"Invalid configuration: {e}")
        raise SystemExit(1)

    configure_logging(settings.debug)
    logger.info(f"Starting {SERVER_NAME}")
    create_server(settings).run()


if __name__ == "__main__":
    main()
