"""
HTTP client for the JobFeeds API.
"""
import logging
import os
from typing import Any, Dict, List, Optional

import requests

from client.errors import JobFeedsError, NotFoundError, TransientNetworkError, ValidationError

logger = logging.getLogger("client.api")


class ApiClient:
    """Thin wrapper over the REST endpoints; unwraps the ``data`` envelope."""

    def __init__(self, base_url: str = None, timeout: float = 10.0, session: requests.Session = None):
        self.base_url = (base_url or os.getenv("APP_BASE_URL", "http://localhost:8000")).rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()
        self.http.headers.setdefault("Content-Type", "application/json")

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.warning(f"API request failed [{method} {url}]: {e}")
            raise TransientNetworkError(f"Could not reach {url}: {e}") from e

        if response.status_code == 204:
            return None
        if response.ok:
            try:
                body = response.json()
            except ValueError as e:
                logger.warning(f"API returned a non-JSON body [{method} {url}]: {response.text[:100]!r}")
                raise TransientNetworkError(f"Unreadable response from {url}") from e
            if not isinstance(body, dict):
                raise TransientNetworkError(f"Unexpected response body from {url}: {body!r}"[:200])
            return body.get("data")

        detail = self._error_detail(response)
        if response.status_code == 404:
            raise NotFoundError(detail)
        if response.status_code in (400, 422):
            raise ValidationError(detail)
        if response.status_code >= 500:
            raise TransientNetworkError(f"HTTP {response.status_code}: {detail}")
        raise JobFeedsError(f"HTTP {response.status_code}: {detail}")

    @staticmethod
    def _error_detail(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.reason or f"HTTP {response.status_code}"
        if not isinstance(body, dict):
            return response.reason or f"HTTP {response.status_code}"
        return str(body.get("detail") or body.get("message") or response.reason)

    # Feeds

    def get_feeds(self, search: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"search": search} if search else None
        data = self._request("GET", "/api/feeds", params=params)
        if not isinstance(data, list):
            logger.warning(f"API returned non-list data for feeds: {data!r}")
            return []
        return data

    def create_feed(self, feed: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/api/feeds", json=feed)

    def update_feed(self, feed_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PATCH", f"/api/feeds/{feed_id}", json=updates)

    def delete_feed(self, feed_id: str) -> None:
        self._request("DELETE", f"/api/feeds/{feed_id}")

    # Import sessions

    def start_import(self, feed_id: str) -> Dict[str, Any]:
        return self._request("POST", "/api/import/start", params={"feedId": feed_id})

    def get_import_status(self, session_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/import/status/{session_id}")

    def get_import_logs(
        self, search: str = None, date: str = None, page: int = None, limit: int = None
    ) -> Dict[str, Any]:
        params = {k: v for k, v in {"search": search, "date": date, "page": page, "limit": limit}.items() if v}
        data = self._request("GET", "/api/import-logs", params=params or None)
        if not data or not isinstance(data.get("data"), list):
            return {"data": [], "total": 0, "page": 1, "totalPages": 1}
        return data

    def get_import_log_details(self, session_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/import-logs/{session_id}")

    def get_jobs(self) -> List[Dict[str, Any]]:
        data = self._request("GET", "/api/jobs")
        return data if isinstance(data, list) else []
