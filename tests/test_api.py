"""
Tests for API endpoints
"""
import base64
from datetime import timedelta
import pytest
from fastapi.testclient import TestClient

import sys
sys.path.insert(0, '.')

from conftest import BASTOS, RecordingNotifier, RecordingSink
from roadwatch.ai.rule_based import RuleBasedParser
from roadwatch.api.main import create_app
from roadwatch.core.config import Settings
from roadwatch.database.connection import DatabaseConnection


def build_app(sink=None, notifier=None, **overrides):
    values = dict(
        ai_backend="rule_based",
        digest_enabled=False,
        geocoder_enabled=False,
        telegram_bot_token=None,
        telegram_channel_id=None,
    )
    values.update(overrides)
    settings = Settings(_env_file=None, **values)
    return create_app(
        settings=settings,
        db=DatabaseConnection(database_url="sqlite://"),
        parser=RuleBasedParser(),
        sink=sink or RecordingSink(),
        notifier=notifier or RecordingNotifier(),
        start_scheduler=False,
    )


@pytest.fixture
def client():
    app = build_app()
    with TestClient(app) as client:
        yield client
    app.state.db.close()


def report(client, reporter_id, incident_type="accident", latitude=BASTOS[0], longitude=BASTOS[1]):
    client.post(f"/api/v1/reporters/{reporter_id}/report-type", json={"type": incident_type})
    client.post("/api/v1/fragments", json={
        "reporter_id": reporter_id, "kind": "text", "text": "Deux taxis au carrefour",
    })
    response = client.post("/api/v1/fragments", json={
        "reporter_id": reporter_id, "kind": "location",
        "latitude": latitude, "longitude": longitude,
    })
    return response.json()


class TestSystemEndpoints:
    """Test suite for health and maintenance endpoints."""

    def test_health(self, client):
        """Test health reports database and engine state."""
        response = client.get("/health")
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "healthy"
        assert data["database"] is True
        assert data["ai_backend"] == "rule_based"
        assert data["pending_reports"] == 0
        assert data["scheduler_running"] is False

    def test_manual_expiry(self, client):
        response = client.post("/api/v1/admin/expire")

        assert response.status_code == 200
        assert response.json() == {"expired": 0}

    def test_store_outage_is_503(self, client):
        """Test persistence failures map to 503."""
        client.app.state.db.drop_tables()

        response = client.get("/api/v1/incidents/active")

        assert response.status_code == 503


class TestIntakeEndpoints:
    """Test suite for report intake endpoints."""

    def test_report_flow(self, client):
        """Test type selection, description and location through the API."""
        selected = client.post("/api/v1/reporters/r1/report-type", json={"type": "flooding"})
        assert selected.json()["outcome"] == "type_selected"
        assert selected.json()["pending"]["step"] == "awaiting_description"

        described = client.post("/api/v1/fragments", json={
            "reporter_id": "r1", "kind": "text", "text": "Eau jusqu'aux genoux",
        })
        assert described.json()["outcome"] == "description_captured"

        located = client.post("/api/v1/fragments", json={
            "reporter_id": "r1", "kind": "location",
            "latitude": BASTOS[0], "longitude": BASTOS[1],
        })
        data = located.json()

        assert data["outcome"] == "persisted"
        assert data["incident"]["type"] == "flooding"
        assert data["incident"]["status"] == "pending"
        assert data["incident"]["confirmations"] == 1

    def test_broadcast_delivered_by_shutdown(self):
        """Test the new incident is broadcast once the app drains on shutdown."""
        sink = RecordingSink()
        app = build_app(sink)

        with TestClient(app) as client:
            report(client, "r1", "sos")

        assert len(sink.messages) == 1
        assert sink.messages[0][1] is True
        app.state.db.close()

    def test_flow_in_progress(self, client):
        client.post("/api/v1/reporters/r1/report-type", json={"type": "accident"})
        response = client.post("/api/v1/reporters/r1/report-type", json={"type": "hazard"})

        assert response.json()["outcome"] == "flow_in_progress"

    def test_reset(self, client):
        client.post("/api/v1/reporters/r1/report-type", json={"type": "accident"})
        response = client.post("/api/v1/reporters/r1/reset")

        assert response.json()["outcome"] == "reset"
        assert client.get("/health").json()["pending_reports"] == 0

    def test_pending_ttl_from_settings(self):
        """Test the pending report TTL follows the app settings."""
        app = build_app(pending_ttl_minutes=5)

        assert app.state.intake.registry.ttl == timedelta(minutes=5)
        app.state.db.close()

    def test_panic(self):
        """Test the panic button alerts contacts and asks for a location."""
        notifier = RecordingNotifier()
        app = build_app(notifier=notifier)

        with TestClient(app) as client:
            client.patch("/api/v1/reporters/r1/preferences", json={"emergency_contacts": ["1001"]})
            response = client.post("/api/v1/reporters/r1/panic", json={"username": "amina"})
            data = response.json()

            located = client.post("/api/v1/fragments", json={
                "reporter_id": "r1", "kind": "location",
                "latitude": BASTOS[0], "longitude": BASTOS[1],
            }).json()

        assert response.status_code == 200
        assert data["outcome"] == "panic_started"
        assert data["notified_contacts"] == 1
        assert data["pending"]["step"] == "awaiting_location"
        assert data["pending"]["severity"] == 5
        assert notifier.alerts[0][0] == "1001"
        assert located["outcome"] == "persisted"
        assert located["incident"]["type"] == "sos"
        app.state.db.close()

    def test_panic_without_body(self, client):
        response = client.post("/api/v1/reporters/r1/panic")

        assert response.status_code == 200
        assert response.json()["outcome"] == "panic_started"
        assert response.json()["notified_contacts"] == 0

    def test_invalid_location(self, client):
        """Test bad coordinates are an intake outcome, not an HTTP error."""
        response = client.post("/api/v1/fragments", json={
            "reporter_id": "r1", "kind": "location", "latitude": 123.0, "longitude": 11.5,
        })

        assert response.status_code == 200
        assert response.json()["outcome"] == "invalid_location"

    def test_voice_without_backend(self, client):
        """Test media cannot be understood by the keyword parser."""
        response = client.post("/api/v1/fragments", json={
            "reporter_id": "r1",
            "kind": "voice",
            "payload_base64": base64.b64encode(b"OggS\x00\x02").decode("ascii"),
            "mime_type": "audio/ogg",
        })

        assert response.json()["outcome"] == "not_understood"

    def test_bad_base64(self, client):
        response = client.post("/api/v1/fragments", json={
            "reporter_id": "r1", "kind": "photo", "payload_base64": "not base64!",
        })
        assert response.status_code == 422

    def test_unknown_kind(self, client):
        response = client.post("/api/v1/fragments", json={"reporter_id": "r1", "kind": "sticker"})
        assert response.status_code == 422


class TestIncidentEndpoints:
    """Test suite for incident queries and votes."""

    def test_active_and_nearby(self, client):
        """Test a persisted incident appears in active and nearby lookups."""
        created = report(client, "r1")

        active = client.get("/api/v1/incidents/active").json()
        nearby = client.get("/api/v1/incidents/nearby", params={
            "latitude": 3.8500, "longitude": 11.5021, "radius_km": 1,
        }).json()

        assert active["count"] == 1
        assert active["incidents"][0]["id"] == created["incident"]["id"]
        assert nearby["count"] == 1
        assert nearby["incidents"][0]["distance"] == "222m"

    def test_get_incident(self, client):
        created = report(client, "r1")
        incident_id = created["incident"]["id"]

        response = client.get(f"/api/v1/incidents/{incident_id}")

        assert response.status_code == 200
        assert response.json()["id"] == incident_id

    def test_unknown_incident(self, client):
        assert client.get("/api/v1/incidents/missing").status_code == 404
        response = client.post("/api/v1/incidents/missing/votes", json={
            "reporter_id": "r2", "vote": "confirm",
        })
        assert response.status_code == 404

    def test_votes(self, client):
        """Test a confirmation verifies and a repeat vote is rejected."""
        incident_id = report(client, "r1")["incident"]["id"]
        url = f"/api/v1/incidents/{incident_id}/votes"

        first = client.post(url, json={"reporter_id": "r2", "vote": "confirm"}).json()
        again = client.post(url, json={"reporter_id": "r2", "vote": "deny"}).json()

        assert first["accepted"] is True
        assert first["became_verified"] is True
        assert first["incident"]["status"] == "verified"
        assert again["accepted"] is False
        assert again["reason"] == "already_voted"


class TestReporterEndpoints:
    """Test suite for reporter profile endpoints."""

    def test_profile_after_report(self, client):
        report(client, "r1")

        profile = client.get("/api/v1/reporters/r1").json()

        assert profile["trust_score"] == 53
        assert profile["reports_count"] == 1
        assert profile["badge"] == "🆕 New"

    def test_unknown_reporter(self, client):
        assert client.get("/api/v1/reporters/ghost").status_code == 404
        assert client.post("/api/v1/reporters/ghost/anonymize").status_code == 404

    def test_preferences(self, client):
        response = client.patch("/api/v1/reporters/r1/preferences", json={
            "language": "en", "subscribed_alerts": True,
        })

        assert response.status_code == 200
        assert response.json()["language"] == "en"
        assert response.json()["subscribed_alerts"] is True

    def test_invalid_preferences(self, client):
        response = client.patch("/api/v1/reporters/r1/preferences", json={"language": "xx"})
        assert response.status_code == 422

    def test_leaderboard(self, client):
        report(client, "r1")
        report(client, "r2", "hazard", latitude=3.9)

        data = client.get("/api/v1/leaderboard", params={"limit": 5}).json()

        assert data["count"] == 2
        assert data["entries"][0]["rank"] == 1
        assert {e["reporter_id"] for e in data["entries"]} == {"r1", "r2"}
