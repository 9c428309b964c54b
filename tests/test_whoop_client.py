"""Tests for WhoopClient against a fake requests session."""
from datetime import datetime, timezone

import pytest
import requests

from core.config import settings
from core.exceptions import ProviderAPIError
from services.whoop_client import WhoopClient


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        if self.error:
            raise self.error
        return self.response

    def post(self, url, data=None, timeout=None):
        self.calls.append({"url": url, "data": data, "timeout": timeout})
        if self.error:
            raise self.error
        return self.response


def _client(session):
    return WhoopClient(access_token="tok", base_url="https://whoop.test/v1", timeout=5, session=session)


class TestFetch:

    def test_get_sleep_sends_bearer_token(self):
        session = FakeSession(FakeResponse(200, {"id": 1}))

        assert _client(session).get_sleep(1) == {"id": 1}
        call = session.calls[0]
        assert call["url"] == "https://whoop.test/v1/activity/sleep/1"
        assert call["headers"] == {"Authorization": "Bearer tok"}
        assert call["timeout"] == 5

    def test_http_error_returns_none(self):
        assert _client(FakeSession(FakeResponse(404, {}))).get_workout(1) is None

    def test_timeout_returns_none(self):
        assert _client(FakeSession(error=requests.Timeout())).get_cycle(1) is None

    def test_invalid_json_returns_none(self):
        assert _client(FakeSession(FakeResponse(200, None))).get_cycle(1) is None

    def test_raw_get_raises_provider_error(self):
        with pytest.raises(ProviderAPIError) as exc_info:
            _client(FakeSession(FakeResponse(503, {})))._get("cycle/1")
        assert exc_info.value.status_code == 503

    def test_no_token_raises(self):
        client = WhoopClient(session=FakeSession(FakeResponse(200, {})))
        with pytest.raises(ProviderAPIError):
            client._get("cycle/1")


class TestRecovery:

    def test_matches_sleep_id(self):
        records = [{"sleep_id": 1, "score": {}}, {"sleep_id": 2, "score": {}}]
        session = FakeSession(FakeResponse(200, {"records": records}))

        recovery = _client(session).get_recovery(2, now=datetime(2026, 10, 17, tzinfo=timezone.utc))

        assert recovery["sleep_id"] == 2
        assert session.calls[0]["params"] == {"start": "2026-10-16", "end": "2026-10-18"}

    def test_falls_back_to_latest(self):
        session = FakeSession(FakeResponse(200, {"records": [{"sleep_id": 7}]}))
        assert _client(session).get_resource("recovery", 99)["sleep_id"] == 7

    def test_unknown_resource_type(self):
        assert _client(FakeSession()).get_resource("body_measurement", 1) is None


class TestRefresh:

    def test_refresh_posts_credentials(self, monkeypatch):
        monkeypatch.setattr(settings, "WHOOP_CLIENT_ID", "client-id")
        monkeypatch.setattr(settings, "WHOOP_CLIENT_SECRET", "client-secret")
        session = FakeSession(FakeResponse(200, {"access_token": "new", "expires_in": 3600}))

        tokens = _client(session).refresh_access_token("refresh")

        assert tokens["access_token"] == "new"
        assert session.calls[0]["data"]["grant_type"] == "refresh_token"
        assert session.calls[0]["data"]["refresh_token"] == "refresh"

    def test_refresh_without_credentials(self, monkeypatch):
        monkeypatch.setattr(settings, "WHOOP_CLIENT_ID", None)
        assert _client(FakeSession()).refresh_access_token("refresh") is None
