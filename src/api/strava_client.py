"""
Strava API Client
Builds Strava request specs and sends them over HTTP for the request queue
"""

import logging
import time
from typing import Dict, Optional

import requests

from src.config import STRAVA_BASE_URL, REQUEST_TIMEOUT, SYNC_DEFAULT_LIMIT
from src.models.models import DispatchOutcome, RequestSpec

logger = logging.getLogger(__name__)


class StravaClient:
    """Outbound transport for Strava API calls"""

    def __init__(self, base_url: str = STRAVA_BASE_URL, timeout: float = REQUEST_TIMEOUT,
                 session: Optional[requests.Session] = None):
        """
        Initialize the Strava client

        Args:
            base_url: Strava API root
            timeout: Seconds before a request is abandoned
            session: Existing requests session (a new one is created otherwise)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": "strava-governor/1.0"
        })

    @staticmethod
    def auth_headers(access_token: str) -> Dict[str, str]:
        """Bearer authorization header for a user's access token"""
        return {"Authorization": f"Bearer {access_token}"}

    def activities_request(self, access_token: str, limit: int = SYNC_DEFAULT_LIMIT,
                           page: int = 1) -> RequestSpec:
        """
        Request for the authenticated athlete's recent activities

        Args:
            access_token: User's Strava access token
            limit: Activities per page
            page: Page number (1-indexed, as Strava counts)
        """
        return RequestSpec(
            url=f"{self.base_url}/athlete/activities",
            method="GET",
            headers=self.auth_headers(access_token),
            params={"per_page": limit, "page": page}
        )

    def activity_request(self, access_token: str, activity_id) -> RequestSpec:
        """Request for the detail of one activity"""
        return RequestSpec(
            url=f"{self.base_url}/activities/{activity_id}",
            method="GET",
            headers=self.auth_headers(access_token)
        )

    def send(self, spec: RequestSpec) -> DispatchOutcome:
        """
        Send a request and report what happened

        HTTP failures and network errors are reported in the outcome instead of
        being raised, so the caller can classify them.

        Args:
            spec: Request to send

        Returns:
            DispatchOutcome with status code, decoded payload and headers
        """
        start = time.perf_counter()
        try:
            response = self.session.request(
                spec.method,
                spec.url,
                headers=spec.headers,
                params=spec.params or None,
                json=spec.json_body,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            elapsed = (time.perf_counter() - start) * 1000
            logger.warning("Strava request %s %s failed without response: %s",
                           spec.method, spec.endpoint, type(e).__name__)
            return DispatchOutcome(status_code=None, error=str(e), elapsed_ms=elapsed)

        elapsed = (time.perf_counter() - start) * 1000
        payload = self._decode(response)
        error = None
        if not response.ok:
            error = self._error_message(response, payload)

        return DispatchOutcome(
            status_code=response.status_code,
            payload=payload,
            headers=dict(response.headers),
            error=error,
            elapsed_ms=elapsed
        )

    @staticmethod
    def _decode(response: requests.Response):
        try:
            return response.json()
        except ValueError:
            return response.text

    @staticmethod
    def _error_message(response: requests.Response, payload) -> str:
        """Short description of a failed response"""
        message = ""
        if isinstance(payload, dict):
            message = payload.get("message", "")
        reason = response.reason or ""
        return f"HTTP {response.status_code} {reason}".strip() + (f": {message}" if message else "")
