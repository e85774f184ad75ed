"""
Shared fixtures for report payloads and mocked API clients.
"""

import gzip

import pytest
from unittest.mock import Mock, patch

from appstore_connect_mcp.client import AppStoreConnectAPI
from appstore_connect_mcp.exceptions import NotFoundError
from appstore_connect_mcp.reports import ReportProcessor

VENDOR_NUMBER = "85012345"

SALES_HEADERS = [
    "Provider",
    "SKU",
    "Title",
    "Product Type Identifier",
    "Units",
    "Developer Proceeds",
    "Customer Currency",
    "Country Code",
    "Apple Identifier",
    "Customer Price",
    "Subscription",
]

FINANCIAL_HEADERS = [
    "Start Date",
    "End Date",
    "Vendor Identifier",
    "Quantity",
    "Partner Share",
    "Extended Partner Share",
    "Partner Share Currency",
    "Sales or Return",
    "Apple Identifier",
    "Title",
    "Country Of Sale",
    "Customer Price",
    "Customer Currency",
]


def build_tsv(headers, rows):
    lines = ["\t".join(headers)]
    lines.extend("\t".join(str(value) for value in row) for row in rows)
    return "\n".join(lines) + "\n"


def gzip_tsv(headers, rows):
    return gzip.compress(build_tsv(headers, rows).encode("utf-8"))


def sales_row(sku="app.monthly", title="Pro Monthly", units=1, proceeds="9.99",
              currency="USD", country="US", apple_id="1234567890",
              product_type="IAY", subscription=""):
    return ["APPLE", sku, title, product_type, units, proceeds, currency,
            country, apple_id, proceeds, subscription]


def financial_row(sku="app.annual", quantity=1, share="70.00", currency="USD",
                  flag="S", country="US", apple_id="1234567890", title="Pro Annual"):
    return ["07/01/2025", "07/31/2025", sku, quantity, share, share, currency,
            flag, apple_id, title, country, share, currency]


@pytest.fixture
def make_sales_payload():
    """Build a gzipped SALES report from row lists."""
    return lambda rows: gzip_tsv(SALES_HEADERS, rows)


@pytest.fixture
def make_financial_payload():
    """Build a gzipped FINANCIAL report from row lists."""
    return lambda rows: gzip_tsv(FINANCIAL_HEADERS, rows)


@pytest.fixture
def api_client():
    """Create a test API client instance."""
    with patch("pathlib.Path.exists", return_value=True):
        return AppStoreConnectAPI(
            key_id="test_key",
            issuer_id="test_issuer",
            private_key_path="/tmp/test_key.p8",
            vendor_number=VENDOR_NUMBER,
        )


@pytest.fixture
def mock_api():
    """API stand-in whose get_report serves payloads from a dict."""
    api = Mock()
    api.vendor_number = VENDOR_NUMBER
    api.app_ids = []
    api.payloads = {}
    api.errors = {}

    def get_report(report_request):
        key = (report_request.report_type, report_request.report_date, report_request.region_code)
        if key in api.errors:
            raise api.errors[key]
        if key not in api.payloads:
            raise NotFoundError(f"No report for {report_request.describe()}")
        return api.payloads[key]

    api.get_report.side_effect = get_report
    return api


@pytest.fixture
def processor(mock_api):
    """Report processor over the mocked API."""
    return ReportProcessor(mock_api)
