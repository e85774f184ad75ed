"""
appstore-connect-mcp

App Store Connect finance and sales report ingestion, exposed as MCP tools:
fetch per-day and per-region report slices, normalize proceeds to USD and
aggregate them into revenue, MRR and subscription metrics.
"""

from .client import AppStoreConnectAPI
from .config import Settings, load_settings
from .reports import ReportProcessor, create_report_processor
from .subscriptions import SubscriptionAnalyzer
from .exceptions import (
    AppStoreConnectError,
    AuthenticationError,
    RateLimitError,
    ValidationError,
    NotFoundError,
    PermissionError,
    ServerError,
    MalformedReportError,
    ConfigurationError,
)
from . import utils

__version__ = "0.1.0"

__all__ = [
    "AppStoreConnectAPI",
    "ReportProcessor",
    "SubscriptionAnalyzer",
    "Settings",
    "load_settings",
    "create_report_processor",
    "AppStoreConnectError",
    "AuthenticationError",
    "RateLimitError",
    "ValidationError",
    "NotFoundError",
    "PermissionError",
    "ServerError",
    "MalformedReportError",
    "ConfigurationError",
    "utils",
]
