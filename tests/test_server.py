"""Tests for the HTTP routes."""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from yoto_f1.api import auth
from yoto_f1.errors import UpstreamDataError
from yoto_f1.models.user import TokenData
from yoto_f1.pipeline import UploadRenderer
from yoto_f1.refresh import RefreshService
from yoto_f1.server import create_app

from conftest import FakeSynth, StaticProvider, make_client, make_identity, make_settings, make_snapshot


class FailingProvider:
    async def fetch_snapshot(self):
        raise UpstreamDataError("worker down")


@pytest.fixture
def build(fake_yoto, clock, monkeypatch):
    monkeypatch.delenv("WEBHOOK_SECRET", raising=False)

    def _build(identity=None, provider=None, **settings_values):
        identity = identity or make_identity()
        client = make_client(fake_yoto, identity)
        settings = make_settings(**settings_values)
        service = RefreshService(
            client,
            identity,
            provider or StaticProvider(make_snapshot()),
            UploadRenderer(client, FakeSynth(), sleep=clock.sleep, clock=clock),
            settings=settings,
            now=lambda: datetime(2025, 3, 10, tzinfo=timezone.utc),
        )
        return TestClient(create_app(settings, service)), service

    return _build


class TestAuthRoutes:
    def test_status(self, build):
        client, _ = build()
        assert client.get("/api/auth/status").json() == {
            "authenticated": True,
            "cardId": None,
            "playlistTitle": None,
        }

    def test_login_redirects_with_state(self, build):
        client, _ = build()
        resp = client.get("/api/auth/login", follow_redirects=False)
        assert resp.status_code == 302
        assert resp.headers["location"].startswith(auth.AUTHORIZE_URL)
        assert "state=" in resp.headers["location"]

    def test_callback_stores_tokens(self, build):
        client, service = build(identity=make_identity(tokens=False))
        client.get("/api/auth/login", follow_redirects=False)
        state = client.app.state.oauth_state
        tokens = TokenData(access_token="new", refresh_token="r")
        with patch("yoto_f1.server.auth.exchange_code", new=AsyncMock(return_value=tokens)):
            resp = client.get("/api/auth/callback", params={"code": "abc", "state": state})
        assert resp.status_code == 200
        assert resp.json()["authenticated"] is True
        assert service.identity.load_tokens().access_token == "new"

    def test_callback_state_mismatch(self, build):
        client, _ = build()
        client.get("/api/auth/login", follow_redirects=False)
        resp = client.get("/api/auth/callback", params={"code": "abc", "state": "forged"})
        assert resp.status_code == 400

    def test_callback_without_code(self, build):
        client, _ = build()
        resp = client.get("/api/auth/callback", params={"error": "access_denied"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "access_denied"

    def test_logout(self, build):
        client, service = build()
        assert client.post("/api/auth/logout").json() == {"success": True}
        assert service.identity.load_tokens() is None


class TestRefreshRoutes:
    def test_refresh(self, build, fake_yoto):
        client, _ = build()
        resp = client.post("/api/refresh-myo-playlist")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["cardId"] == "card-1"
        assert body["deployment"]["succeeded"] == 1

    def test_refresh_needs_auth(self, build):
        client, _ = build(identity=make_identity(tokens=False))
        resp = client.post("/api/refresh-myo-playlist")
        assert resp.status_code == 401
        assert resp.json()["needsAuth"] is True

    def test_upstream_failure_is_bad_gateway(self, build):
        client, _ = build(provider=FailingProvider())
        resp = client.post("/api/refresh-myo-playlist")
        assert resp.status_code == 502
        assert resp.json()["errorKind"] == "UpstreamDataError"

    def test_missing_synthesizer_is_bad_request(self, build, fake_yoto):
        client, service = build()
        service.renderer.synthesizer = None
        resp = client.post("/api/refresh-myo-playlist")
        assert resp.status_code == 400
        assert resp.json()["errorKind"] == "ConfigurationError"
        assert fake_yoto.requests == []

    def test_webhook_not_configured(self, build):
        client, _ = build()
        resp = client.post("/api/webhook/refresh-playlist", headers={"X-Webhook-Secret": "x"})
        assert resp.status_code == 500

    def test_webhook_wrong_secret(self, build, fake_yoto):
        client, _ = build(webhook_secret="s3cret")
        resp = client.post("/api/webhook/refresh-playlist", headers={"X-Webhook-Secret": "nope"})
        assert resp.status_code == 401
        assert fake_yoto.requests == []

    def test_webhook_refresh(self, build):
        client, _ = build(webhook_secret="s3cret")
        resp = client.post("/api/webhook/refresh-playlist", headers={"X-Webhook-Secret": "s3cret"})
        assert resp.status_code == 200
        assert resp.json()["trigger"] == "webhook"

    def test_webhook_status(self, build):
        client, _ = build(webhook_secret="s3cret")
        resp = client.get("/api/webhook/refresh-playlist", headers={"X-Webhook-Secret": "s3cret"})
        body = resp.json()
        assert body["status"] == "active"
        assert body["configured"]["authentication"] is True


class TestPublishingRoutes:
    def test_send_to_yoto(self, build, fake_yoto):
        client, service = build()
        body = {
            "title": "F1: Custom",
            "chapters": [{"title": "News", "tracks": [{"title": "Hi", "text": "Hello fans"}]}],
        }
        resp = client.post("/api/send-to-yoto", json=body)
        assert resp.status_code == 200
        assert resp.json()["cardId"] == "card-1"
        assert service.identity.playlist_title == "F1: Custom"

    def test_send_to_yoto_without_tracks(self, build):
        client, _ = build()
        resp = client.post("/api/send-to-yoto", json={"title": "x", "chapters": []})
        assert resp.status_code == 400

    def test_send_to_yoto_needs_auth(self, build):
        client, _ = build(identity=make_identity(tokens=False))
        resp = client.post("/api/send-to-yoto", json={"chapters": []})
        assert resp.status_code == 401

    def test_upload_to_myo(self, build, fake_yoto):
        client, service = build()
        resp = client.post(
            "/api/upload-to-myo",
            files={"audio": ("update.mp3", b"ID3-audio", "audio/mpeg")},
            data={"title": "F1 Update"},
        )
        assert resp.status_code == 200
        assert service.identity.myo_card_id == resp.json()["cardId"]
        assert fake_yoto.deployed == []

    def test_job_status_requires_id(self, build):
        client, _ = build()
        assert client.get("/api/job-status").status_code == 400
