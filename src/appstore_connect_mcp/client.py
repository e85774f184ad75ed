"""
Apple App Store Connect API client.

This module provides the authenticated, rate-limited HTTP layer used by
the report pipeline: status-code mapping, pagination, request statistics
and the single-slice report fetch.
"""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

import requests
from ratelimit import limits, sleep_and_retry

from .auth import TokenProvider
from .exceptions import (
    AppStoreConnectError,
    AuthenticationError,
    RateLimitError,
    ValidationError,
    NotFoundError,
    PermissionError,
    ServerError,
)
from .models import ReportRequest

REQUEST_LIMIT = 3600
# Leave a buffer below Apple's hourly limit
THROTTLE_LIMIT = 3500
RATE_PERIOD = 3600


class AppStoreConnectAPI:
    """
    Apple App Store Connect API client.

    Args:
        key_id: Your App Store Connect API key ID
        issuer_id: Your App Store Connect API issuer ID
        private_key_path: Path to your .p8 private key file
        vendor_number: Your vendor number for sales and finance reports
        app_ids: Optional list of app IDs to filter reports
        logger: Optional logger
    """

    BASE_URL = "https://api.appstoreconnect.apple.com/v1"
    SALES_REPORT_ENDPOINT = "/salesReports"
    FINANCE_REPORT_ENDPOINT = "/financeReports"
    TIMEOUT = 30

    def __init__(
        self,
        key_id: str,
        issuer_id: str,
        private_key_path: Union[str, Path],
        vendor_number: Optional[str] = None,
        app_ids: Optional[List[str]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize the App Store Connect API client."""
        self.key_id = key_id
        self.issuer_id = issuer_id
        self.vendor_number = vendor_number
        self.app_ids = app_ids or []
        self.logger = logger or logging.getLogger(__name__)
        self.auth = TokenProvider(key_id, issuer_id, private_key_path)

        self._request_count = 0
        self._window_reset = datetime.now(timezone.utc) + timedelta(seconds=RATE_PERIOD)

    @classmethod
    def from_settings(cls, settings) -> "AppStoreConnectAPI":
        """Build a client from a config.Settings instance."""
        return cls(
            key_id=settings.key_id,
            issuer_id=settings.issuer_id,
            private_key_path=settings.private_key_path,
            vendor_number=settings.vendor_number,
            app_ids=list(settings.app_ids),
        )

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for API requests."""
        token = self.auth.get_token()
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def _track_request(self) -> None:
        now = datetime.now(timezone.utc)
        if now > self._window_reset:
            self._request_count = 0
            self._window_reset = now + timedelta(seconds=RATE_PERIOD)
        self._request_count += 1

    @staticmethod
    def _error_detail(response: requests.Response) -> str:
        try:
            error_data = response.json()
            first_error = error_data.get("errors", [{}])[0]
            return first_error.get("detail") or first_error.get("title") or response.text
        except Exception:
            return response.text

    def _make_request_raw(
        self,
        url: Optional[str] = None,
        endpoint: Optional[str] = None,
        params: Optional[Dict] = None,
    ) -> requests.Response:
        """Make an authenticated GET request to the API."""
        if url is None and endpoint is not None:
            url = f"{self.BASE_URL}{endpoint}"
        elif url is None:
            raise ValidationError("Either url or endpoint must be provided")

        headers = self._get_headers()

        self.logger.info(f"_make_request: GET {url}")
        if params:
            self.logger.debug(f"_make_request: params={params}")

        try:
            self._track_request()
            response = requests.get(
                url,
                headers=headers,
                params=params,
                timeout=self.TIMEOUT,
            )
            self.logger.info(
                f"_make_request: Response received - status={response.status_code}"
            )
        except requests.exceptions.Timeout as e:
            self.logger.error(f"_make_request: Request timed out after {self.TIMEOUT}s: {e}")
            raise AppStoreConnectError(f"Request failed: {e}")
        except requests.exceptions.RequestException as e:
            self.logger.error(f"_make_request: Request failed: {e}")
            raise AppStoreConnectError(f"Request failed: {e}")

        # Handle different HTTP status codes
        status = response.status_code
        if status < 400:
            return response

        detail = self._error_detail(response)
        if status == 401:
            raise AuthenticationError(f"Authentication failed - check credentials: {detail}")
        elif status == 403:
            raise PermissionError(f"Insufficient permissions for this operation: {detail}")
        elif status == 404:
            raise NotFoundError(f"Requested resource not found: {detail}")
        elif status == 429:
            raise RateLimitError(f"Rate limit exceeded: {detail}")
        elif status >= 500:
            self.logger.error(f"Server Error {status}: {detail}")
            raise ServerError(f"API Error {status}: {detail}")

        self.logger.error(f"API Error {status}: {detail}")
        raise AppStoreConnectError(f"API Error {status}: {detail}")

    @sleep_and_retry
    @limits(calls=THROTTLE_LIMIT, period=RATE_PERIOD)  # Apple's rate limit
    def _make_request(self, *args, **kwargs) -> requests.Response:
        """Rate-limited wrapper for _make_request_raw."""
        return self._make_request_raw(*args, **kwargs)

    def request(self, endpoint: str, params: Optional[Dict] = None) -> Dict[str, Any]:
        """GET a JSON endpoint and return the decoded body."""
        response = self._make_request(endpoint=endpoint, params=params)
        return response.json()

    def paginate(self, endpoint: str, params: Optional[Dict] = None) -> Iterator[Dict[str, Any]]:
        """Yield every item of a paged JSON endpoint, following `links.next`."""
        url: Optional[str] = f"{self.BASE_URL}{endpoint}"
        current_params = params

        while url:
            page = self._make_request(url=url, params=current_params).json()
            for item in page.get("data", []):
                yield item

            url = (page.get("links") or {}).get("next")
            # The next link already carries the query string
            current_params = None

    def get_all(self, endpoint: str, params: Optional[Dict] = None) -> List[Dict[str, Any]]:
        """Collect all items from a paged endpoint (use with caution for large datasets)."""
        return list(self.paginate(endpoint, params))

    # ===== REPORT FETCHING =====

    def get_report(self, report_request: ReportRequest) -> bytes:
        """
        Fetch the raw body of one report slice.

        Args:
            report_request: The slice to fetch

        Returns:
            Response body bytes (usually gzipped TSV)

        Raises:
            NotFoundError: If Apple has no report for this slice
            AppStoreConnectError: For any other failed request
        """
        endpoint = (
            self.FINANCE_REPORT_ENDPOINT
            if report_request.is_finance_report
            else self.SALES_REPORT_ENDPOINT
        )
        self.logger.info(f"get_report: {report_request.describe()}")
        response = self._make_request(endpoint=endpoint, params=report_request.to_params())
        return response.content

    # ===== UTILITIES =====

    def test_connection(self) -> bool:
        """Try the simplest endpoint to check credentials and connectivity."""
        try:
            self._make_request(endpoint="/apps", params={"limit": 1})
        except AppStoreConnectError as e:
            self.logger.warning(f"test_connection: failed: {e}")
            return False
        return True

    def get_stats(self) -> Dict[str, Any]:
        """Request statistics for the current hourly window."""
        now = datetime.now(timezone.utc)
        if now > self._window_reset:
            self._request_count = 0
            self._window_reset = now + timedelta(seconds=RATE_PERIOD)
        reset_in = max(0.0, (self._window_reset - now).total_seconds())
        return {
            "request_count": self._request_count,
            "request_limit": REQUEST_LIMIT,
            "throttle_limit": THROTTLE_LIMIT,
            "reset_in_seconds": int(reset_in) + (1 if reset_in % 1 else 0),
            "reset_at": self._window_reset.isoformat(),
        }
