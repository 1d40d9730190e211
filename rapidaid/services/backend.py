import logging
from typing import Any, Dict, List, Optional

import httpx

from ..core.errors import FetchError

logger = logging.getLogger(__name__)

REQUEST_HEADERS = {
    "Content-Type": "application/json",
}


class AlertBackend:
    """
    Thin client for the RapidAid backend alert endpoints.

    All failures (network errors, non-2xx responses, undecodable bodies and
    `success: false` envelopes) surface as FetchError so callers only have one
    transient error to handle.
    """

    def __init__(self, client: httpx.AsyncClient, station_id: Optional[str], alert_kind: str = "fire"):
        self.client = client
        self.station_id = station_id
        self.alert_kind = alert_kind

    async def get_station_alerts(self) -> List[Dict[str, Any]]:
        """Fetches the alerts assigned to this station for the configured alert kind."""
        if not self.station_id:
            raise FetchError("Station data not found. Please log in again.")
        data = await self._request(
            "GET", f"/alerts/station/{self.station_id}", params={"type": self.alert_kind}
        )
        if data is None:
            return []
        if not isinstance(data, list):
            raise FetchError(f"Expected a list of alerts, got {type(data).__name__}")
        return data

    async def get_alert(self, alert_id: str) -> Dict[str, Any]:
        data = await self._request("GET", f"/alerts/{alert_id}")
        if not isinstance(data, dict):
            raise FetchError(f"Alert {alert_id} not returned by backend")
        return data

    async def update_alert_status(self, alert_id: str, status: str) -> Dict[str, Any]:
        """
        Updates an alert's status on the backend.

        The local store is not touched; the caller decides what to do with a
        successful acknowledge.
        """
        data = await self._request("PATCH", f"/alerts/{alert_id}/status", json={"status": status})
        return data if isinstance(data, dict) else {}

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self.client.request(method, path, headers=REQUEST_HEADERS, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            message = _error_message(e.response) or f"HTTP {status_code} from backend"
            if status_code == 401:
                logger.warning(f"Backend rejected credentials for {method} {path}")
            raise FetchError(message, status_code=status_code) from e
        except httpx.RequestError as e:
            raise FetchError(f"Network error while requesting {path}: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise FetchError(f"Failed to decode JSON from {path}") from e

        if not isinstance(body, dict) or not body.get("success"):
            message = body.get("message") if isinstance(body, dict) else None
            raise FetchError(message or f"Unsuccessful response from {path}", status_code=response.status_code)
        return body.get("data")


def _error_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("message")
    return None


def create_http_client(base_url: str, auth_token: Optional[str], timeout: float) -> httpx.AsyncClient:
    """Creates the shared AsyncClient used for all backend calls."""
    headers = {}
    if auth_token:
        headers["Authorization"] = f"Bearer {auth_token}"
    return httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)
