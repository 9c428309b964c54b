"""
Integration tests for POST /v1/webhooks/whoop

The Whoop client is replaced with a fake so no network calls are made; the
timeout case drives the real client with a session that always times out.
"""
import pytest
import requests

import services.webhook_processing as processing
from core.config import settings
from models import UnifiedMetric, WebhookEvent, Workout
from services.whoop_client import WhoopClient
from fixtures.webhook_payloads import (
    to_body,
    whoop_event,
    whoop_recovery,
    whoop_signature_headers,
    whoop_sleep,
    whoop_workout,
)

URL = "/v1/webhooks/whoop"


class FakeWhoopClient:
    """Stands in for WhoopClient; returns canned resources."""

    resources = {}
    requested = []

    def __init__(self, access_token=None):
        self.access_token = access_token

    def get_resource(self, resource_type, resource_id):
        FakeWhoopClient.requested.append((resource_type, resource_id, self.access_token))
        return self.resources.get(resource_type)

    def refresh_access_token(self, refresh_token):
        return None


@pytest.fixture
def fake_whoop(monkeypatch):
    FakeWhoopClient.resources = {
        "sleep": whoop_sleep(),
        "recovery": whoop_recovery(),
        "workout": whoop_workout(sport_id=0),
    }
    FakeWhoopClient.requested = []
    monkeypatch.setattr(processing, "WhoopClient", FakeWhoopClient)
    return FakeWhoopClient


def _post(client, payload, headers=None):
    return client.post(URL, content=to_body(payload), headers=headers or {})


class TestWhoopIngest:

    def test_sleep_update_fetches_and_ingests(self, client, db_session, whoop_connection, fake_whoop):
        response = _post(client, whoop_event("sleep.updated"))

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["status"] == "processed"
        assert data["metrics_written"] == 9
        assert fake_whoop.requested == [("sleep", 93845, "whoop-access-token")]

        deep = db_session.query(UnifiedMetric).filter(UnifiedMetric.metric_name == "Deep Sleep Duration").one()
        assert deep.value == 1.5
        assert deep.source == "WHOOP"
        assert deep.priority == 5
        assert deep.confidence_score == 70

        db_session.refresh(whoop_connection)
        assert whoop_connection.last_sync_date is not None

    def test_recovery_update(self, client, db_session, whoop_connection, fake_whoop):
        response = _post(client, whoop_event("recovery.updated", resource_id=10235))

        assert response.json()["metrics_written"] == 5
        score = db_session.query(UnifiedMetric).filter(UnifiedMetric.metric_name == "Recovery Score").one()
        assert score.value == 44

    def test_workout_update_writes_workout(self, client, db_session, whoop_connection, fake_whoop):
        response = _post(client, whoop_event("workout.updated", resource_id=1043))

        assert response.json()["workouts_written"] == 1
        assert db_session.query(Workout).one().workout_type == "Running"

    def test_redelivery_is_idempotent(self, client, db_session, whoop_connection, fake_whoop):
        _post(client, whoop_event("sleep.updated"))
        _post(client, whoop_event("sleep.updated"))

        assert db_session.query(UnifiedMetric).count() == 9

    def test_unknown_user_acknowledged(self, client, db_session, whoop_connection, fake_whoop):
        response = _post(client, whoop_event("sleep.updated", user_id=555))

        assert response.status_code == 200
        assert response.json()["status"] == "user_not_found"
        assert fake_whoop.requested == []
        assert db_session.query(UnifiedMetric).count() == 0

    def test_deleted_event_ignored(self, client, db_session, whoop_connection, fake_whoop):
        response = _post(client, whoop_event("workout.deleted", resource_id=1043))

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
        assert fake_whoop.requested == []

    def test_unavailable_resource_yields_no_records(self, client, db_session, whoop_connection, fake_whoop):
        fake_whoop.resources = {}

        response = _post(client, whoop_event("cycle.updated"))

        assert response.status_code == 200
        assert response.json()["message"] == "resource unavailable"
        assert db_session.query(UnifiedMetric).count() == 0


class TimeoutSession:
    def get(self, *args, **kwargs):
        raise requests.Timeout("read timed out")


class TestWhoopFetchFailures:

    def test_fetch_timeout_acknowledged_without_records(self, client, db_session, whoop_connection, monkeypatch):
        monkeypatch.setattr(processing, "WhoopClient", lambda: WhoopClient(session=TimeoutSession()))

        response = _post(client, whoop_event("sleep.updated"))

        assert response.status_code == 200
        assert response.json()["ok"] is True
        assert db_session.query(UnifiedMetric).count() == 0

    def test_unexpected_error_returns_500(self, client, db_session, whoop_connection, monkeypatch):
        import routers.whoop_webhook as whoop_router

        def boom(db, event):
            raise RuntimeError("unexpected")

        monkeypatch.setattr(whoop_router, "process_whoop_event", boom)

        response = _post(client, whoop_event("sleep.updated"))

        assert response.status_code == 500
        assert response.json()["ok"] is False
        assert db_session.query(WebhookEvent).one().status == "failed"


class TestWhoopSignature:

    def test_unsigned_accepted_when_secret_not_configured(self, client, db_session, whoop_connection, fake_whoop):
        response = _post(client, whoop_event("sleep.updated"))
        assert response.status_code == 200

    def test_missing_signature_rejected_when_configured(self, client, db_session, whoop_connection, fake_whoop, monkeypatch):
        monkeypatch.setattr(settings, "WHOOP_CLIENT_SECRET", "whoop-secret")

        response = _post(client, whoop_event("sleep.updated"))

        assert response.status_code == 401
        assert response.json()["error_code"] == "WEBHOOK_UNAUTHORIZED"
        assert db_session.query(WebhookEvent).count() == 0
        assert fake_whoop.requested == []

    def test_valid_signature_accepted_when_configured(self, client, db_session, whoop_connection, fake_whoop, monkeypatch):
        monkeypatch.setattr(settings, "WHOOP_CLIENT_SECRET", "whoop-secret")
        body = to_body(whoop_event("sleep.updated"))

        response = client.post(URL, content=body, headers=whoop_signature_headers(body, "whoop-secret"))

        assert response.status_code == 200
        assert response.json()["status"] == "processed"


class TestWhoopVerificationChallenge:

    def test_challenge_echoed(self, client):
        response = client.get(URL, params={"challenge": "abc123"})
        assert response.json() == {"challenge": "abc123"}

    def test_status_endpoint(self, client):
        assert client.get(URL).json()["ok"] is True
