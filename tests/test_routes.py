"""Tests for API routes."""

import base64
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from smarthome.auth import google_login
from smarthome.auth.authority import Authority
from smarthome.core.config import AuthConfig, settings
from smarthome.core.dependencies import get_authority, get_dispatcher, get_reporter
from smarthome.intents.dispatcher import EXECUTE, QUERY, SYNC
from smarthome.main import app
from smarthome.routes import local

CLIENT_ID = "client-123"
CLIENT_SECRET = "secret-456"


def _link_account(client: TestClient, redirect_uri: str) -> str:
    """Sign in on the login page and return the authorization code."""
    response = client.post(
        "/oauth",
        data={
            "client_id": CLIENT_ID,
            "redirect_uri": redirect_uri,
            "state": "xyz",
            "username": "admin",
            "password": "hunter2",
        },
        follow_redirects=False,
    )
    assert response.status_code == 303
    return parse_qs(urlparse(response.headers["location"]).query)["code"][0]


def _exchange(client: TestClient, code: str, redirect_uri: str):
    return client.post(
        "/token",
        data={
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": CLIENT_ID,
            "client_secret": CLIENT_SECRET,
        },
    )


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_check(self, client: TestClient):
        """Test the health endpoint returns OK."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestCheckEndpoint:
    """Tests for the reachability check."""

    def test_check(self, client: TestClient):
        response = client.get("/check")
        assert response.status_code == 200
        assert response.text == "SUCCESS"

    def test_check_debug_page(self, client: TestClient, monkeypatch):
        """Test that debug mode renders the account linking diagnostics."""
        monkeypatch.setattr(settings, "debug", True)
        response = client.get("/check")

        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
        assert "client_id=client-123" in response.text


class TestAuthorizationEndpoint:
    """Tests for the login page and code issuance."""

    def test_login_page(self, client: TestClient, redirect_uri: str):
        response = client.get(
            "/oauth",
            params={"client_id": CLIENT_ID, "redirect_uri": redirect_uri, "state": "xyz", "response_type": "code"},
        )

        assert response.status_code == 200
        assert 'name="password"' in response.text
        assert 'value="xyz"' in response.text

    def test_login_page_unknown_client(self, client: TestClient, redirect_uri: str):
        response = client.get("/oauth", params={"client_id": "other", "redirect_uri": redirect_uri})

        assert response.status_code == 401
        assert response.json() == {"error": "invalid_client"}

    def test_login_page_bad_redirect(self, client: TestClient):
        response = client.get(
            "/oauth", params={"client_id": CLIENT_ID, "redirect_uri": "https://evil.example.com/cb"}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "invalid_grant"}

    def test_login_page_unsupported_response_type(self, client: TestClient, redirect_uri: str):
        response = client.get(
            "/oauth",
            params={"client_id": CLIENT_ID, "redirect_uri": redirect_uri, "response_type": "token"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "unsupported_response_type"}

    def test_login_redirects_with_code(self, client: TestClient, redirect_uri: str, authority: Authority):
        response = client.post(
            "/oauth",
            data={
                "client_id": CLIENT_ID,
                "redirect_uri": redirect_uri,
                "state": "xyz",
                "username": "admin",
                "password": "hunter2",
            },
            follow_redirects=False,
        )

        assert response.status_code == 303
        location = urlparse(response.headers["location"])
        assert f"{location.scheme}://{location.netloc}{location.path}" == redirect_uri
        query = parse_qs(location.query)
        assert query["state"] == ["xyz"]
        assert query["code"][0] in authority.store.auth_codes

    def test_wrong_password(self, client: TestClient, redirect_uri: str, authority: Authority):
        response = client.post(
            "/oauth",
            data={"client_id": CLIENT_ID, "redirect_uri": redirect_uri, "username": "admin", "password": "nope"},
            follow_redirects=False,
        )

        assert response.status_code == 401
        assert "Invalid credentials" in response.text
        assert authority.store.auth_codes == {}

    def test_own_origin_redirect(self, client: TestClient):
        """Test that the bridge's own check page is an accepted callback."""
        code = _link_account(client, "http://testserver/check")
        assert code


class TestGoogleLogin:
    """Tests for Google sign-in mode."""

    @pytest.fixture(name="google_client")
    def google_client_fixture(self, clock, dispatcher, reporter):
        config = AuthConfig(
            client_id=CLIENT_ID,
            client_secret=CLIENT_SECRET,
            use_google_login=True,
            google_client_id="google-client",
            allowed_emails=("owner@example.com",),
            project_id="proj123",
        )
        authority = Authority(config, clock=clock)
        app.dependency_overrides[get_authority] = lambda: authority
        app.dependency_overrides[get_dispatcher] = lambda: dispatcher
        app.dependency_overrides[get_reporter] = lambda: reporter
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_login_page_uses_google_sign_in(self, google_client: TestClient, redirect_uri: str):
        response = google_client.get("/oauth", params={"client_id": CLIENT_ID, "redirect_uri": redirect_uri})

        assert response.status_code == 200
        assert "accounts.google.com/gsi/client" in response.text
        assert 'name="password"' not in response.text

    def test_allowed_account(self, google_client: TestClient, redirect_uri: str, monkeypatch):
        monkeypatch.setattr(google_login, "verify_google_login", lambda token, cid: "owner@example.com")
        response = google_client.post(
            "/oauth",
            data={"client_id": CLIENT_ID, "redirect_uri": redirect_uri, "id_token": "jwt"},
            follow_redirects=False,
        )

        assert response.status_code == 303

    def test_account_not_allowed(self, google_client: TestClient, redirect_uri: str, monkeypatch):
        monkeypatch.setattr(google_login, "verify_google_login", lambda token, cid: "stranger@example.com")
        response = google_client.post(
            "/oauth",
            data={"client_id": CLIENT_ID, "redirect_uri": redirect_uri, "id_token": "jwt"},
            follow_redirects=False,
        )

        assert response.status_code == 401

    def test_invalid_id_token(self, google_client: TestClient, redirect_uri: str, monkeypatch):
        monkeypatch.setattr(google_login, "verify_google_login", lambda token, cid: None)
        response = google_client.post(
            "/oauth",
            data={"client_id": CLIENT_ID, "redirect_uri": redirect_uri, "id_token": "forged"},
            follow_redirects=False,
        )

        assert response.status_code == 401


class TestTokenEndpoint:
    """Tests for the token endpoint."""

    def test_code_exchange_and_refresh(self, client: TestClient, redirect_uri: str):
        code = _link_account(client, redirect_uri)

        response = _exchange(client, code, redirect_uri)
        assert response.status_code == 200
        assert response.headers["cache-control"] == "no-store"
        tokens = response.json()
        assert tokens["token_type"] == "bearer"
        assert tokens["expires_in"] == 3600

        response = client.post(
            "/token",
            data={
                "grant_type": "refresh_token",
                "refresh_token": tokens["refresh_token"],
                "client_id": CLIENT_ID,
                "client_secret": CLIENT_SECRET,
            },
        )
        assert response.status_code == 200
        assert response.json()["access_token"] != tokens["access_token"]

    def test_code_reuse(self, client: TestClient, redirect_uri: str):
        code = _link_account(client, redirect_uri)
        assert _exchange(client, code, redirect_uri).status_code == 200

        response = _exchange(client, code, redirect_uri)
        assert response.status_code == 400
        assert response.json() == {"error": "invalid_grant"}

    def test_unknown_refresh_token(self, client: TestClient):
        response = client.post(
            "/token",
            data={
                "grant_type": "refresh_token",
                "refresh_token": "nope",
                "client_id": CLIENT_ID,
                "client_secret": CLIENT_SECRET,
            },
        )

        assert response.status_code == 400
        assert response.json() == {"error": "invalid_grant"}

    def test_wrong_client_secret(self, client: TestClient, redirect_uri: str):
        code = _link_account(client, redirect_uri)
        response = client.post(
            "/token",
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": CLIENT_ID,
                "client_secret": "wrong",
            },
        )

        assert response.status_code == 401
        assert response.json() == {"error": "invalid_client"}

    def test_unsupported_grant_type(self, client: TestClient):
        response = client.post(
            "/token",
            data={"grant_type": "password", "client_id": CLIENT_ID, "client_secret": CLIENT_SECRET},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "unsupported_grant_type"}

    def test_client_credentials_in_basic_header(self, client: TestClient, redirect_uri: str):
        tokens = _exchange(client, _link_account(client, redirect_uri), redirect_uri).json()
        credentials = base64.b64encode(f"{CLIENT_ID}:{CLIENT_SECRET}".encode()).decode()

        response = client.post(
            "/token",
            data={"grant_type": "refresh_token", "refresh_token": tokens["refresh_token"]},
            headers={"Authorization": f"Basic {credentials}"},
        )

        assert response.status_code == 200
        assert response.json()["access_token"]

    def test_wrong_secret_in_basic_header(self, client: TestClient, redirect_uri: str):
        code = _link_account(client, redirect_uri)
        credentials = base64.b64encode(f"{CLIENT_ID}:wrong".encode()).decode()

        response = client.post(
            "/token",
            data={"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri},
            headers={"Authorization": f"Basic {credentials}"},
        )

        assert response.status_code == 401
        assert response.json() == {"error": "invalid_client"}

    def test_client_id_without_secret(self, client: TestClient, redirect_uri: str):
        """Test that omitting the secret checks the client id only."""
        code = _link_account(client, redirect_uri)
        response = client.post(
            "/token",
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": CLIENT_ID,
            },
        )

        assert response.status_code == 200
        assert response.json()["refresh_token"]

    def test_missing_client(self, client: TestClient):
        response = client.post("/token", data={"grant_type": "refresh_token", "refresh_token": "r"})

        assert response.status_code == 401
        assert response.json() == {"error": "invalid_client"}


class TestSmartHomeEndpoint:
    """Tests for the fulfillment endpoint."""

    def test_preflight(self, client: TestClient):
        response = client.options("/smarthome")

        assert response.status_code == 200
        assert response.text == "null"
        assert response.headers["access-control-allow-headers"] == "Content-Type, Authorization"

    def test_requires_bearer(self, client: TestClient):
        response = client.post("/smarthome", json={"inputs": [{"intent": SYNC}]})

        assert response.status_code == 401
        assert response.json() == {"error": "missing inputs"}

    def test_non_json_body(self, client: TestClient, tokens: dict):
        response = client.post(
            "/smarthome",
            content=b"not json",
            headers={"Authorization": f"Bearer {tokens['access_token']}"},
        )

        assert response.status_code == 400

    def test_sync(self, client: TestClient, tokens: dict):
        response = client.post(
            "/smarthome",
            json={"requestId": "r-1", "inputs": [{"intent": SYNC}]},
            headers={"Authorization": f"Bearer {tokens['access_token']}"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["requestId"] == "r-1"
        assert len(body["payload"]["devices"]) == 3

    @pytest.mark.parametrize("inputs", [
        [{"intent": QUERY, "payload": ["x"]}],
        [{
            "intent": EXECUTE,
            "payload": {"commands": [{
                "devices": ["hood-1"],
                "execution": [{"command": "action.devices.commands.OnOff", "params": {"on": True}}],
            }]},
        }],
    ])
    def test_malformed_entries_answered_with_json(self, client: TestClient, tokens: dict, inputs):
        response = client.post(
            "/smarthome",
            json={"requestId": "r-4", "inputs": inputs},
            headers={"Authorization": f"Bearer {tokens['access_token']}"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        assert response.json()["requestId"] == "r-4"

    def test_execute_reports_state(self, client: TestClient, tokens: dict, reporter: MagicMock):
        """Test that executed devices are reported after the response."""
        response = client.post(
            "/smarthome",
            json={
                "requestId": "r-2",
                "inputs": [{
                    "intent": EXECUTE,
                    "payload": {"commands": [{
                        "devices": [{"id": "hood-1"}],
                        "execution": [{"command": "action.devices.commands.OnOff", "params": {"on": True}}],
                    }]},
                }],
            },
            headers={"Authorization": f"Bearer {tokens['access_token']}"},
        )

        assert response.status_code == 200
        assert response.json()["payload"]["commands"][0]["status"] == "SUCCESS"
        reporter.report_device_state.assert_called_once_with("hood-1")


class TestLocalEndpoint:
    """Tests for the local network fulfillment endpoint."""

    def test_ignored_from_non_local_client(self, client: TestClient, authority: Authority):
        response = client.post(
            "/local/smarthome",
            json={"inputs": [{"intent": SYNC}]},
            headers={"Authorization": f"Bearer {authority.store.local_auth_code}"},
        )

        assert response.status_code == 200
        assert response.json() == {}

    def test_served_from_lan_client(self, client: TestClient, authority: Authority, monkeypatch):
        monkeypatch.setattr(local, "client_host", lambda request: "192.168.1.20")
        response = client.post(
            "/local/smarthome",
            json={"requestId": "r-3", "inputs": [{"intent": "action.devices.IDENTIFY"}]},
            headers={"Authorization": f"Bearer {authority.store.local_auth_code}"},
        )

        assert response.status_code == 200
        assert response.json()["payload"]["device"]["id"] == "test-node"

    def test_local_preflight(self, client: TestClient):
        response = client.options("/local/smarthome")
        assert response.text == "null"
