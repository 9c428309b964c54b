"""
Integration tests for POST /v1/webhooks/terra

Covers the response contract (400 on bad signature, 500 on unexpected
errors, 200 otherwise) and what each outcome leaves in the database.
"""
from models import ProviderConnection, UnifiedMetric, WebhookEvent, Workout
from fixtures.webhook_payloads import (
    terra_activity_item,
    terra_auth_event,
    terra_body_item,
    terra_envelope,
    terra_signature_header,
    to_body,
)

URL = "/v1/webhooks/terra"


def _post(client, payload, header=None):
    body = to_body(payload)
    headers = {"Content-Type": "application/json"}
    signature = terra_signature_header(body) if header is None else header
    if signature:
        headers["terra-signature"] = signature
    return client.post(URL, content=body, headers=headers)


class TestTerraSignatureRejection:

    def test_missing_signature(self, client, db_session, terra_connection):
        response = _post(client, terra_envelope("body", [terra_body_item()]), header="")

        assert response.status_code == 400
        assert response.json()["error_code"] == "WEBHOOK_SIGNATURE_MISSING_HEADER"
        assert db_session.query(WebhookEvent).count() == 0
        assert db_session.query(UnifiedMetric).count() == 0

    def test_malformed_signature(self, client, db_session, terra_connection):
        response = _post(client, terra_envelope("body", [terra_body_item()]), header="not-a-signature")

        assert response.status_code == 400
        assert response.json()["error_code"] == "WEBHOOK_SIGNATURE_MALFORMED_HEADER"

    def test_tampered_body_rejected_before_any_write(self, client, db_session, terra_connection, monkeypatch):
        """A valid header over a different body never reaches the store"""
        import services.metric_ingest as ingest
        writes = []
        monkeypatch.setattr(ingest, "build_metric_upsert", lambda *args: writes.append(args))

        original = to_body(terra_envelope("body", [terra_body_item(weight_kg=80.0)]))
        tampered = to_body(terra_envelope("body", [terra_body_item(weight_kg=60.0)]))
        response = client.post(
            URL,
            content=tampered,
            headers={"terra-signature": terra_signature_header(original)},
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "WEBHOOK_SIGNATURE_MISMATCH"
        assert writes == []
        assert db_session.query(WebhookEvent).count() == 0
        assert db_session.query(UnifiedMetric).count() == 0

    def test_non_utf8_body_with_bad_signature_is_400(self, client, db_session):
        response = client.post(URL, content=b"\xff\xfe garbage", headers={"terra-signature": "t=1,v1=deadbeef"})

        assert response.status_code == 400
        assert response.json()["error_code"] == "WEBHOOK_SIGNATURE_MISMATCH"
        assert db_session.query(WebhookEvent).count() == 0

    def test_signed_non_utf8_body_is_acknowledged(self, client, db_session):
        body = b"\xff\xfe garbage"
        response = client.post(URL, content=body, headers={"terra-signature": terra_signature_header(body)})

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"

    def test_unconfigured_secret_rejects(self, client, db_session, monkeypatch):
        from core.config import settings
        monkeypatch.setattr(settings, "TERRA_SIGNING_SECRET", None)

        response = _post(client, terra_envelope("body", [terra_body_item()]))

        assert response.status_code == 400
        assert response.json()["error_code"] == "WEBHOOK_SIGNATURE_NOT_CONFIGURED"


class TestTerraDataIngest:

    def test_body_payload_ingested(self, client, db_session, terra_connection):
        response = _post(client, terra_envelope("body", [terra_body_item()]))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "processed"
        assert data["metrics_written"] == 4

        rows = db_session.query(UnifiedMetric).all()
        assert {r.source for r in rows} == {"WITHINGS"}
        assert {r.priority for r in rows} == {2}

        db_session.refresh(terra_connection)
        assert terra_connection.last_sync_date is not None

    def test_identical_redelivery_is_idempotent(self, client, db_session, terra_connection):
        payload = terra_envelope("body", [terra_body_item()])

        assert _post(client, payload).status_code == 200
        assert _post(client, payload).status_code == 200

        assert db_session.query(UnifiedMetric).count() == 4
        weight = db_session.query(UnifiedMetric).filter(UnifiedMetric.metric_name == "Weight").one()
        assert weight.value == 80.2

    def test_corrected_redelivery_overwrites(self, client, db_session, terra_connection):
        _post(client, terra_envelope("body", [terra_body_item(weight_kg=80.2)]))
        _post(client, terra_envelope("body", [terra_body_item(weight_kg=79.8)]))

        weight = (
            db_session.query(UnifiedMetric)
            .filter(UnifiedMetric.metric_name == "Weight")
            .populate_existing()
            .one()
        )
        assert weight.value == 79.8

    def test_source_falls_back_to_connection_device(self, client, db_session, terra_connection):
        _post(client, terra_envelope("body", [terra_body_item()], provider=None))

        assert {r.source for r in db_session.query(UnifiedMetric).all()} == {"WITHINGS"}

    def test_activity_payload_writes_workout(self, client, db_session, terra_connection):
        response = _post(client, terra_envelope("activity", [terra_activity_item()], provider="GARMIN"))

        assert response.json()["workouts_written"] == 1
        workout = db_session.query(Workout).one()
        assert workout.source == "GARMIN"
        assert workout.workout_type == "Running"

    def test_unknown_user_is_acknowledged_without_writes(self, client, db_session, terra_connection):
        response = _post(client, terra_envelope("body", [terra_body_item()], user_id="someone-else"))

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["status"] == "user_not_found"
        assert db_session.query(UnifiedMetric).count() == 0
        assert db_session.query(WebhookEvent).one().status == "user_not_found"

    def test_invalid_json_acknowledged(self, client, db_session):
        body = b"{not json"
        response = client.post(URL, content=body, headers={"terra-signature": terra_signature_header(body)})

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"

    def test_payload_is_journaled(self, client, db_session, terra_connection):
        _post(client, terra_envelope("body", [terra_body_item()]))

        event = db_session.query(WebhookEvent).one()
        assert event.provider == "TERRA"
        assert event.event_type == "body"
        assert event.status == "processed"
        assert event.processed_count == 4
        assert len(event.delivery_id) == 64


class TestTerraConnectionEvents:

    def test_auth_creates_connection(self, client, db_session, test_user):
        response = _post(client, terra_auth_event(str(test_user.id), terra_user_id="terra-new"))

        assert response.status_code == 200
        assert response.json()["status"] == "processed"
        connection = db_session.query(ProviderConnection).one()
        assert connection.user_id == test_user.id
        assert connection.provider == "TERRA"
        assert connection.external_user_id == "terra-new"
        assert connection.device_provider == "GARMIN"
        assert connection.is_active is True

    def test_auth_for_unknown_reference_is_ignored(self, client, db_session):
        response = _post(client, terra_auth_event("00000000-0000-0000-0000-000000000000"))

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
        assert db_session.query(ProviderConnection).count() == 0

    def test_deauth_deactivates_connection(self, client, db_session, terra_connection):
        response = _post(client, {"type": "deauth", "user": {"user_id": "terra-user-1"}})

        assert response.status_code == 200
        db_session.refresh(terra_connection)
        assert terra_connection.is_active is False

        # Data for a deauthorized user is no longer attributed
        response = _post(client, terra_envelope("body", [terra_body_item()]))
        assert response.json()["status"] == "user_not_found"

    def test_second_wearable_keeps_first_ingesting(self, client, db_session, test_user):
        _post(client, terra_auth_event(str(test_user.id), terra_user_id="terra-garmin", provider="GARMIN"))
        _post(client, terra_auth_event(str(test_user.id), terra_user_id="terra-withings", provider="WITHINGS"))

        connections = db_session.query(ProviderConnection).filter(ProviderConnection.is_active.is_(True)).all()
        assert {(c.device_provider, c.external_user_id) for c in connections} == {
            ("GARMIN", "terra-garmin"),
            ("WITHINGS", "terra-withings"),
        }

        response = _post(client, terra_envelope("body", [terra_body_item()], user_id="terra-garmin", provider="GARMIN"))
        assert response.json()["status"] == "processed"
        assert response.json()["metrics_written"] == 4

        response = _post(client, terra_envelope("body", [terra_body_item()], user_id="terra-withings", provider="WITHINGS"))
        assert response.json()["status"] == "processed"

        rows = db_session.query(UnifiedMetric).all()
        assert {r.source for r in rows} == {"GARMIN", "WITHINGS"}
        assert {r.user_id for r in rows} == {test_user.id}

    def test_deauth_one_device_other_keeps_ingesting(self, client, db_session, test_user):
        _post(client, terra_auth_event(str(test_user.id), terra_user_id="terra-garmin", provider="GARMIN"))
        _post(client, terra_auth_event(str(test_user.id), terra_user_id="terra-withings", provider="WITHINGS"))

        response = _post(client, {"type": "deauth", "user": {"user_id": "terra-garmin", "provider": "GARMIN"}})
        assert response.json()["status"] == "processed"

        garmin = _post(client, terra_envelope("body", [terra_body_item()], user_id="terra-garmin", provider="GARMIN"))
        assert garmin.json()["status"] == "user_not_found"

        withings = _post(client, terra_envelope("body", [terra_body_item()], user_id="terra-withings", provider="WITHINGS"))
        assert withings.json()["status"] == "processed"
        assert {r.source for r in db_session.query(UnifiedMetric).all()} == {"WITHINGS"}

    def test_non_string_provider_falls_back_to_connection_device(self, client, db_session, terra_connection):
        response = _post(client, terra_envelope("body", [terra_body_item()], provider=7))

        assert response.status_code == 200
        assert response.json()["status"] == "processed"
        assert {r.source for r in db_session.query(UnifiedMetric).all()} == {"WITHINGS"}

    def test_healthcheck_acknowledged(self, client, db_session):
        response = _post(client, {"type": "healthcheck"})

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"


class TestTerraFailures:

    def test_unexpected_error_returns_500_and_is_journaled(self, client, db_session, terra_connection, monkeypatch):
        import routers.terra_webhook as terra_router

        def boom(db, payload):
            raise RuntimeError("database went away")

        monkeypatch.setattr(terra_router, "process_terra_payload", boom)

        response = _post(client, terra_envelope("body", [terra_body_item()]))

        assert response.status_code == 500
        assert response.json()["success"] is False
        event = db_session.query(WebhookEvent).one()
        assert event.status == "failed"
        assert event.attempts == 1
        assert "database went away" in event.last_error
        assert event.next_retry_at is not None

    def test_handled_delivery_is_replayed(self, client, db_session, terra_connection, monkeypatch):
        import routers.terra_webhook as terra_router
        stored = {"success": True, "status": "processed", "metrics_written": 4}
        monkeypatch.setattr(terra_router, "get_handled_delivery", lambda provider, delivery_id: stored)

        response = _post(client, terra_envelope("body", [terra_body_item()]))

        assert response.status_code == 200
        assert response.json() == stored
        assert db_session.query(WebhookEvent).count() == 0

    def test_status_endpoint(self, client):
        response = client.get(URL)
        assert response.status_code == 200
        assert response.json()["success"] is True
