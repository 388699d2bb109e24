"""Tests for the viewer dependency and settings."""

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from helpdesk_core.auth import RequestContext, get_request_context, get_viewer
from helpdesk_core.config import HelpdeskSettings, get_settings, reset_settings
from helpdesk_core.models import Viewer


@pytest.fixture
def client():
    app = FastAPI()

    @app.get("/viewer")
    async def viewer(viewer: Viewer = Depends(get_viewer)):
        return {"user_id": viewer.user_id, "role": viewer.role.value, "privileged": viewer.is_privileged}

    @app.get("/context")
    async def context(ctx: RequestContext = Depends(get_request_context)):
        return {"correlation_id": ctx.correlation_id}

    return TestClient(app)


class TestViewerDependency:
    """Tests for get_viewer / get_request_context."""

    def test_consultant(self, client):
        response = client.get("/viewer", headers={"X-User-ID": "k1", "X-User-Role": "Consultant"})

        assert response.status_code == 200
        assert response.json() == {"user_id": "k1", "role": "consultant", "privileged": True}

    def test_role_defaults_to_user(self, client):
        response = client.get("/viewer", headers={"X-User-ID": "u1"})

        assert response.json()["role"] == "user"
        assert response.json()["privileged"] is False

    def test_missing_user_id(self, client):
        assert client.get("/viewer").status_code == 401

    def test_unknown_role(self, client):
        """Test that an unrecognized role is rejected rather than downgraded."""
        response = client.get("/viewer", headers={"X-User-ID": "u1", "X-User-Role": "admin"})

        assert response.status_code == 403

    def test_correlation_id(self, client):
        response = client.get("/context", headers={"X-User-ID": "u1", "X-Correlation-ID": "abc"})

        assert response.json() == {"correlation_id": "abc"}


class TestSettings:
    """Tests for HelpdeskSettings."""

    def test_urls(self):
        settings = HelpdeskSettings(backend_url="https://proj.example.co/", app_url="https://app.example.com")

        assert settings.rest_url == "https://proj.example.co/rest/v1"
        assert settings.storage_url == "https://proj.example.co/storage/v1"
        assert settings.auth_url == "https://proj.example.co/auth/v1"
        assert settings.functions_url == "https://proj.example.co/functions/v1"
        assert settings.case_link("c1") == "https://app.example.com/cases/c1"

    def test_from_env(self, monkeypatch):
        """Test parsing of HELPDESK_* variables, bad values falling back to defaults."""
        monkeypatch.setenv("HELPDESK_BACKEND_URL", "https://env.example.co")
        monkeypatch.setenv("HELPDESK_RETRY_MAX_ATTEMPTS", "4")
        monkeypatch.setenv("HELPDESK_CACHE_TTL_SECONDS", "not-a-number")
        monkeypatch.setenv("HELPDESK_ALLOWED_CONTENT_TYPES", "image/png, text/plain")

        settings = HelpdeskSettings.from_env(anon_key="override")

        assert settings.backend_url == "https://env.example.co"
        assert settings.retry_max_attempts == 4
        assert settings.cache_ttl_seconds == 300.0
        assert settings.allowed_content_types == ["image/png", "text/plain"]
        assert settings.anon_key == "override"

    def test_get_settings_is_cached(self, monkeypatch):
        reset_settings()
        monkeypatch.setenv("HELPDESK_ANON_KEY", "first")
        first = get_settings()
        monkeypatch.setenv("HELPDESK_ANON_KEY", "second")

        assert get_settings() is first

        reset_settings()
        assert get_settings().anon_key == "second"
        reset_settings()
