"""
tests/test_api_routes.py -- Integration tests for the auth and account routes.

These tests exercise the full stack: FastAPI routing -> auth gate dependency
-> AuthService -> UserStore/SessionRegistry -> response model serialization.
Unit tests of the pieces live in test_auth_service.py and friends; this
module makes sure the wiring, status codes and JSON shapes hold together.

Coverage:
  - Register: 201, 409 duplicate, 400 bad input (incl. >72-byte password), no password in the body
  - Login: HTTP Basic, 200 with tokens, uniform 401 for bad or undecodable credentials
  - Gate: missing/malformed header, refresh token on access route
  - Logout revocation, refresh rotation and replay
  - Account setup: 200 once, 403 after
  - Cache outage on login or refresh -> 502 without tokens

Fixtures used (from conftest.py):
  - api_client: TestClient over the real app, fresh stores per test
  - alice: registers alice@example.com / secret123
"""

from __future__ import annotations

from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from cache.store import CacheError, MemorySessionCache
from conftest import ALICE_EMAIL, ALICE_PASSWORD, bearer, login
from core.config import get_settings


def _assert_no_password(payload) -> None:
    text = str(payload).lower()
    assert "password" not in text
    assert "$2b$" not in text


class TestRegister:
    def test_register_created(self, api_client: TestClient) -> None:
        resp = api_client.post(
            "/register",
            json={"email": "bob@example.com", "name": "Bob", "password": "hunter22"},
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["id"] == "bob@example.com"
        assert data["email"] == "bob@example.com"
        assert data["accountSetupComplete"] is False
        assert data["bankInstitutionEntities"] == []
        _assert_no_password(data)

    def test_client_created_timestamp_ignored(self, api_client: TestClient) -> None:
        resp = api_client.post(
            "/register",
            json={"email": "bob@example.com", "name": "Bob", "password": "pw", "created": "1999-01-01"},
        )
        assert resp.status_code == 201
        assert not resp.json()["created"].startswith("1999")

    def test_duplicate_is_conflict(self, api_client: TestClient, alice: dict) -> None:
        resp = api_client.post(
            "/register",
            json={"email": ALICE_EMAIL, "name": "Alice 2", "password": "other"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_email_with_colon_rejected(self, api_client: TestClient) -> None:
        resp = api_client.post(
            "/register",
            json={"email": "a:b@example.com", "name": "AB", "password": "pw"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_input"

    def test_missing_fields(self, api_client: TestClient) -> None:
        resp = api_client.post("/register", json={"email": "bob@example.com"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"]["code"] == "invalid_input"
        assert "Traceback" not in str(body)

    def test_password_over_72_bytes_rejected(self, api_client: TestClient) -> None:
        resp = api_client.post(
            "/register",
            json={"email": "bob@example.com", "name": "Bob", "password": "\u00e9" * 40},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_input"


class TestLogin:
    def test_login_returns_user_and_tokens(self, api_client: TestClient, alice: dict) -> None:
        resp = login(api_client)
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()
        assert data["tokens"]["accessToken"]
        assert data["tokens"]["refreshToken"]
        assert data["user"]["email"] == ALICE_EMAIL
        _assert_no_password(data["user"])

    def test_wrong_password_matches_unknown_user(self, api_client: TestClient, alice: dict) -> None:
        wrong = login(api_client, password=ALICE_PASSWORD + "!")
        unknown = login(api_client, email="nobody@example.com")
        assert wrong.status_code == 401
        assert unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "bad_credentials"

    def test_missing_basic_header(self, api_client: TestClient, alice: dict) -> None:
        resp = api_client.post("/login")
        assert resp.status_code == 401

    def test_body_credentials_are_not_accepted(self, api_client: TestClient, alice: dict) -> None:
        resp = api_client.post("/login", json={"email": ALICE_EMAIL, "password": ALICE_PASSWORD})
        assert resp.status_code == 401

    def test_undecodable_basic_header_is_bad_credentials(self, api_client: TestClient, alice: dict) -> None:
        garbled = api_client.post("/login", headers={"Authorization": "Basic abc"})
        wrong = login(api_client, password=ALICE_PASSWORD + "!")
        assert garbled.status_code == 401
        assert garbled.json() == wrong.json()


class TestAuthGate:
    def test_account_without_token(self, api_client: TestClient) -> None:
        resp = api_client.get("/account")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_malformed_header(self, api_client: TestClient) -> None:
        for header in ("Bearer", "Token abc", "Bearer a b", "abc"):
            resp = api_client.get("/account", headers={"Authorization": header})
            assert resp.status_code == 401, header

    def test_garbage_token(self, api_client: TestClient) -> None:
        resp = api_client.get("/account", headers=bearer("not.a.jwt"))
        assert resp.status_code == 401

    def test_refresh_token_cannot_access_account(self, api_client: TestClient, alice: dict) -> None:
        tokens = login(api_client).json()["tokens"]
        resp = api_client.get("/account", headers=bearer(tokens["refreshToken"]))
        assert resp.status_code == 401

    def test_failures_share_one_body(self, api_client: TestClient, alice: dict) -> None:
        tokens = login(api_client).json()["tokens"]
        a = api_client.get("/account", headers=bearer("not.a.jwt")).json()
        b = api_client.get("/account", headers=bearer(tokens["refreshToken"])).json()
        assert a == b


class TestSessionLifecycle:
    def test_register_login_account_logout_scenario(self, api_client: TestClient) -> None:
        resp = api_client.post(
            "/register",
            json={"email": ALICE_EMAIL, "name": "Alice", "password": ALICE_PASSWORD},
        )
        assert resp.status_code == 201

        resp = login(api_client)
        assert resp.status_code == 200
        access = resp.json()["tokens"]["accessToken"]

        resp = api_client.get("/account", headers=bearer(access))
        assert resp.status_code == 200
        assert resp.json()["email"] == ALICE_EMAIL
        _assert_no_password(resp.json())

        resp = api_client.post("/logout", headers=bearer(access))
        assert resp.status_code == 200

        resp = api_client.get("/account", headers=bearer(access))
        assert resp.status_code == 401

    def test_logout_requires_token(self, api_client: TestClient) -> None:
        assert api_client.post("/logout").status_code == 401

    def test_lenient_gate_accepts_revoked_token(self, api_client: TestClient, alice: dict, monkeypatch) -> None:
        monkeypatch.setattr(get_settings(), "auth_gate_checks_session", False)
        access = login(api_client).json()["tokens"]["accessToken"]
        api_client.post("/logout", headers=bearer(access))
        assert api_client.get("/account", headers=bearer(access)).status_code == 200

    def test_refresh_rotates_and_burns_old_token(self, api_client: TestClient, alice: dict) -> None:
        tokens = login(api_client).json()["tokens"]

        resp = api_client.post("/auth/refresh", headers=bearer(tokens["refreshToken"]))
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        new_tokens = resp.json()
        assert new_tokens["refreshToken"] != tokens["refreshToken"]
        assert api_client.get("/account", headers=bearer(new_tokens["accessToken"])).status_code == 200

        replay = api_client.post("/auth/refresh", headers=bearer(tokens["refreshToken"]))
        assert replay.status_code == 401

    def test_access_token_cannot_refresh(self, api_client: TestClient, alice: dict) -> None:
        tokens = login(api_client).json()["tokens"]
        resp = api_client.post("/auth/refresh", headers=bearer(tokens["accessToken"]))
        assert resp.status_code == 401

    def test_login_with_cache_down_returns_no_tokens(
        self,
        api_client: TestClient,
        alice: dict,
        session_cache: MemorySessionCache,
        monkeypatch,
    ) -> None:
        monkeypatch.setattr(session_cache, "set", MagicMock(side_effect=CacheError("connection refused")))
        resp = login(api_client)
        assert resp.status_code == 502
        body = resp.json()
        assert body["error"]["code"] == "dependency_unavailable"
        assert "tokens" not in body
        assert "connection refused" not in str(body)

    def test_refresh_with_cache_down_returns_no_tokens(
        self,
        api_client: TestClient,
        alice: dict,
        session_cache: MemorySessionCache,
        monkeypatch,
    ) -> None:
        tokens = login(api_client).json()["tokens"]
        monkeypatch.setattr(session_cache, "set", MagicMock(side_effect=CacheError("connection refused")))
        resp = api_client.post("/auth/refresh", headers=bearer(tokens["refreshToken"]))
        assert resp.status_code == 502
        body = resp.json()
        assert body["error"]["code"] == "dependency_unavailable"
        assert "accessToken" not in body
        assert "refreshToken" not in body


class TestAccountSetup:
    _BODY = {
        "name": "Alice A.",
        "bankInstitutionEntities": [
            {"institutionName": "First Bank", "institutionType": "checking", "initialAmount": 1200.5},
            {"id": "cu-1", "institutionName": "Credit Union", "institutionType": "savings"},
        ],
    }

    def test_setup_then_forbidden(self, api_client: TestClient, alice: dict) -> None:
        access = login(api_client).json()["tokens"]["accessToken"]

        resp = api_client.post("/api/setup", json=self._BODY, headers=bearer(access))
        assert resp.status_code == 200
        data = resp.json()
        assert data["accountSetupComplete"] is True
        assert data["name"] == "Alice A."
        banks = data["bankInstitutionEntities"]
        assert [b["id"] for b in banks] == ["1", "cu-1"]
        assert banks[0]["initialAmount"] == 1200.5
        assert banks[1]["initialAmount"] == 0.0

        again = api_client.post("/api/setup", json=self._BODY, headers=bearer(access))
        assert again.status_code == 403

        account = api_client.get("/account", headers=bearer(access)).json()
        assert account["accountSetupComplete"] is True
        assert len(account["bankInstitutionEntities"]) == 2

    def test_setup_requires_auth(self, api_client: TestClient) -> None:
        assert api_client.post("/api/setup", json=self._BODY).status_code == 401

    def test_setup_requires_banks(self, api_client: TestClient, alice: dict) -> None:
        access = login(api_client).json()["tokens"]["accessToken"]
        resp = api_client.post("/api/setup", json={"bankInstitutionEntities": []}, headers=bearer(access))
        assert resp.status_code == 400
