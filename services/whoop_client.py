"""
Whoop API client.

Used after a Whoop webhook to fetch the resource that changed. Calls are
sequential and bounded by PROVIDER_API_TIMEOUT_S; any timeout, transport
error or non-2xx response is logged and yields None so the webhook can
still be acknowledged.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import logging

import requests

from core.config import settings
from core.exceptions import ProviderAPIError

logger = logging.getLogger(__name__)


class WhoopClient:
    """Thin authenticated wrapper around the Whoop developer API."""

    def __init__(
        self,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.access_token = access_token
        self.base_url = (base_url or settings.WHOOP_API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.PROVIDER_API_TIMEOUT_S
        self.session = session or requests.Session()

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.access_token:
            raise ProviderAPIError("WHOOP", "no access token")

        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {self.access_token}"},
                timeout=self.timeout,
            )
        except requests.Timeout:
            raise ProviderAPIError("WHOOP", f"timeout after {self.timeout}s fetching {path}")
        except requests.RequestException as e:
            raise ProviderAPIError("WHOOP", f"request failed for {path}: {e}")

        if response.status_code >= 400:
            raise ProviderAPIError("WHOOP", f"HTTP {response.status_code} fetching {path}", response.status_code)

        try:
            return response.json()
        except ValueError:
            raise ProviderAPIError("WHOOP", f"invalid JSON from {path}", response.status_code)

    def fetch(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """GET a resource; failures are logged and swallowed."""
        try:
            return self._get(path, params)
        except ProviderAPIError as e:
            logger.warning(
                f"Whoop fetch failed: {e}",
                extra={"extra_fields": {"path": path, "status_code": e.status_code}},
            )
            return None

    def get_sleep(self, sleep_id: Any) -> Optional[Dict[str, Any]]:
        return self.fetch(f"activity/sleep/{sleep_id}")

    def get_workout(self, workout_id: Any) -> Optional[Dict[str, Any]]:
        return self.fetch(f"activity/workout/{workout_id}")

    def get_cycle(self, cycle_id: Any) -> Optional[Dict[str, Any]]:
        return self.fetch(f"cycle/{cycle_id}")

    def get_recovery(self, sleep_id: Any, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """
        Recovery tied to a sleep.

        Recovery webhooks carry the sleep id, so the last day of recoveries is
        listed and matched on sleep_id, falling back to the most recent one.
        """
        now = now or datetime.now(timezone.utc)
        start = (now - timedelta(days=1)).date().isoformat()
        end = (now + timedelta(days=1)).date().isoformat()
        collection = self.fetch("recovery", params={"start": start, "end": end})
        if not collection:
            return None

        records = collection.get("records") if isinstance(collection, dict) else None
        if not isinstance(records, list) or not records:
            return None

        for record in records:
            if isinstance(record, dict) and str(record.get("sleep_id")) == str(sleep_id):
                return record
        return records[0] if isinstance(records[0], dict) else None

    def get_resource(self, resource_type: str, resource_id: Any) -> Optional[Dict[str, Any]]:
        fetchers = {
            "recovery": self.get_recovery,
            "sleep": self.get_sleep,
            "workout": self.get_workout,
            "cycle": self.get_cycle,
        }
        fetcher = fetchers.get(resource_type)
        if fetcher is None:
            return None
        return fetcher(resource_id)

    def refresh_access_token(self, refresh_token: str) -> Optional[Dict[str, Any]]:
        """
        Exchange a refresh token for new tokens.

        Returns:
            Token response (access_token, refresh_token, expires_in) or None
        """
        if not settings.WHOOP_CLIENT_ID or not settings.WHOOP_CLIENT_SECRET:
            logger.warning("Whoop client credentials not configured, cannot refresh token")
            return None

        try:
            response = self.session.post(
                settings.WHOOP_TOKEN_URL,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": settings.WHOOP_CLIENT_ID,
                    "client_secret": settings.WHOOP_CLIENT_SECRET,
                    "scope": "offline",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"Whoop token refresh request failed: {e}")
            return None

        if response.status_code >= 400:
            logger.warning(f"Whoop token refresh rejected: HTTP {response.status_code}")
            return None

        try:
            return response.json()
        except ValueError:
            logger.warning("Whoop token refresh returned invalid JSON")
            return None
