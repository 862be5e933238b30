"""
tests/test_auth_routes.py -- Integration tests for /api/v1/auth/* against the real app.

These exercise the full stack: routing -> request validation -> engine
services on app.state -> AuthError handler -> response envelope.

Covers:
  - login: success envelope, generic 401, 423 with Retry-After after lockout, 422 on bad input
  - register: 201 with the default role, duplicate email as a field error
  - refresh: rotation, reuse rejected, no-store caching header
  - logout: own token revoked, foreign token 404, unauthenticated 401
  - me: live profile and grants
  - change-password: wrong current secret is a 422 field error, success revokes refresh tokens
  - passwords with surrounding spaces are stored and checked exactly as typed
  - setup: first superadmin 201, then 409
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from auth.audit import AuthEventKind
from auth.catalog import ROLE_CUSTOMER, ROLE_SELLER, ROLE_SUPERADMIN
from core.config import get_settings

PASSWORD = "correct-horse-42"


def _h(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _register_body(email: str = "new@techgadgets.test", **overrides) -> dict:
    body = {
        "email": email,
        "password": "brand-new-secret",
        "confirm_password": "brand-new-secret",
        "first_name": "Nina",
        "last_name": "Novak",
    }
    body.update(overrides)
    return body


class TestLogin:
    def test_login_returns_pair_and_profile(self, app_client: TestClient, make_user) -> None:
        uid = make_user("seller@techgadgets.test", roles=(ROLE_SELLER,), first_name="Sam", last_name="Seller")
        resp = app_client.post("/api/v1/auth/login", json={"email": "Seller@TechGadgets.test", "password": PASSWORD})
        assert resp.status_code == 200, resp.text
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()
        assert data["success"] is True
        assert data["token_type"] == "bearer"
        assert data["access_token"] and data["refresh_token"]
        assert data["expires_in"] > 0
        assert data["user"]["id"] == uid
        assert data["user"]["display_name"] == "Sam Seller"
        assert data["user"]["roles"] == [ROLE_SELLER]
        assert "products.edit" in data["user"]["permissions"]

    def test_wrong_password_and_unknown_email_look_the_same(self, app_client: TestClient, make_user) -> None:
        make_user("seller@techgadgets.test")
        wrong = app_client.post("/api/v1/auth/login", json={"email": "seller@techgadgets.test", "password": "nope"})
        unknown = app_client.post("/api/v1/auth/login", json={"email": "ghost@techgadgets.test", "password": "nope"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "invalid_credentials"

    def test_lockout_returns_423_with_retry_after(self, app_client: TestClient, make_user, audit_sink) -> None:
        make_user("target@techgadgets.test")
        threshold = get_settings().lockout_threshold
        for _ in range(threshold):
            resp = app_client.post("/api/v1/auth/login", json={"email": "target@techgadgets.test", "password": "bad"})
            assert resp.status_code == 401

        resp = app_client.post("/api/v1/auth/login", json={"email": "target@techgadgets.test", "password": PASSWORD})
        assert resp.status_code == 423
        body = resp.json()["error"]
        assert body["code"] == "account_locked"
        assert int(resp.headers["retry-after"]) == body["detail"]["retry_after"] > 0
        assert AuthEventKind.ACCOUNT_LOCKED in audit_sink.kinds()

    def test_malformed_body_is_422_without_echoing_password(self, app_client: TestClient) -> None:
        resp = app_client.post("/api/v1/auth/login", json={"email": "not-an-email", "password": "hunter2-secret"})
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert "email" in error["detail"]["fields"]
        assert "hunter2-secret" not in resp.text


class TestRegister:
    def test_register_issues_tokens_with_default_role(self, app_client: TestClient, store) -> None:
        resp = app_client.post("/api/v1/auth/register", json=_register_body())
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["user"]["roles"] == [ROLE_CUSTOMER]
        assert set(data["user"]["permissions"]) == {"orders.create", "orders.view"}
        user = store.get_by_email("new@techgadgets.test")
        assert user.is_active and not user.email_verified

    def test_duplicate_email_is_field_error(self, app_client: TestClient, make_user) -> None:
        make_user("taken@techgadgets.test")
        resp = app_client.post("/api/v1/auth/register", json=_register_body("TAKEN@techgadgets.test"))
        assert resp.status_code == 422
        assert "email" in resp.json()["error"]["detail"]["fields"]

    def test_password_confirmation_must_match(self, app_client: TestClient) -> None:
        resp = app_client.post("/api/v1/auth/register", json=_register_body(confirm_password="different-secret"))
        assert resp.status_code == 422


class TestRefresh:
    def test_refresh_rotates_and_rejects_reuse(self, app_client: TestClient, make_user, login) -> None:
        make_user("buyer@techgadgets.test", roles=(ROLE_CUSTOMER,))
        first = login("buyer@techgadgets.test")

        resp = app_client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert resp.status_code == 200, resp.text
        assert resp.headers["cache-control"] == "no-store"
        second = resp.json()
        assert second["refresh_token"] != first["refresh_token"]

        reuse = app_client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert reuse.status_code == 401
        assert reuse.json()["error"]["code"] == "refresh_invalid"

    def test_unknown_refresh_token(self, app_client: TestClient) -> None:
        resp = app_client.post("/api/v1/auth/refresh", json={"refresh_token": "garbage"})
        assert resp.status_code == 401


class TestLogoutAndMe:
    def test_logout_revokes_own_token(self, app_client: TestClient, make_user, login, store) -> None:
        make_user("buyer@techgadgets.test")
        pair = login("buyer@techgadgets.test")
        resp = app_client.post(
            "/api/v1/auth/logout", json={"refresh_token": pair["refresh_token"]}, headers=_h(pair["access_token"])
        )
        assert resp.status_code == 200
        assert store.get_refresh_token(pair["refresh_token"]).revoked is True
        again = app_client.post(
            "/api/v1/auth/logout", json={"refresh_token": pair["refresh_token"]}, headers=_h(pair["access_token"])
        )
        assert again.status_code == 404

    def test_logout_cannot_revoke_someone_elses_token(self, app_client: TestClient, make_user, login, store) -> None:
        make_user("alice@techgadgets.test")
        make_user("mallory@techgadgets.test")
        alice = login("alice@techgadgets.test")
        mallory = login("mallory@techgadgets.test")
        resp = app_client.post(
            "/api/v1/auth/logout", json={"refresh_token": alice["refresh_token"]}, headers=_h(mallory["access_token"])
        )
        assert resp.status_code == 404
        assert store.get_refresh_token(alice["refresh_token"]).revoked is False

    def test_logout_requires_authentication(self, app_client: TestClient) -> None:
        resp = app_client.post("/api/v1/auth/logout", json={"refresh_token": "x"})
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_me_reflects_live_grants(self, app_client: TestClient, make_user, login, store) -> None:
        uid = make_user("seller@techgadgets.test", roles=(ROLE_SELLER,))
        token = login("seller@techgadgets.test")["access_token"]
        store.update_role(store.get_role_by_name(ROLE_SELLER).id, is_active=False)
        resp = app_client.get("/api/v1/auth/me", headers=_h(token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == uid
        assert data["roles"] == []
        assert data["permissions"] == []


class TestChangePassword:
    def test_wrong_current_password(self, app_client: TestClient, make_user, login) -> None:
        make_user("buyer@techgadgets.test")
        token = login("buyer@techgadgets.test")["access_token"]
        resp = app_client.post(
            "/api/v1/auth/change-password",
            json={"current_password": "wrong", "new_password": "another-secret", "confirm_password": "another-secret"},
            headers=_h(token),
        )
        assert resp.status_code == 422
        assert "current_password" in resp.json()["error"]["detail"]["fields"]

    def test_change_password_revokes_sessions(self, app_client: TestClient, make_user, login) -> None:
        make_user("buyer@techgadgets.test")
        pair = login("buyer@techgadgets.test")
        resp = app_client.post(
            "/api/v1/auth/change-password",
            json={"current_password": PASSWORD, "new_password": "another-secret", "confirm_password": "another-secret"},
            headers=_h(pair["access_token"]),
        )
        assert resp.status_code == 200, resp.text
        refresh = app_client.post("/api/v1/auth/refresh", json={"refresh_token": pair["refresh_token"]})
        assert refresh.status_code == 401
        assert login("buyer@techgadgets.test", "another-secret")["access_token"]


class TestPasswordWhitespace:
    def test_changed_password_with_trailing_space_logs_in_as_typed(
        self, app_client: TestClient, make_user, login
    ) -> None:
        make_user("buyer@techgadgets.test")
        token = login("buyer@techgadgets.test")["access_token"]
        resp = app_client.post(
            "/api/v1/auth/change-password",
            json={"current_password": PASSWORD, "new_password": "another-secret ", "confirm_password": "another-secret "},
            headers=_h(token),
        )
        assert resp.status_code == 200, resp.text

        assert login("buyer@techgadgets.test", "another-secret ")["access_token"]
        trimmed = app_client.post(
            "/api/v1/auth/login", json={"email": "buyer@techgadgets.test", "password": "another-secret"}
        )
        assert trimmed.status_code == 401

    def test_registered_password_keeps_surrounding_spaces(self, app_client: TestClient, login) -> None:
        secret = "  padded secret  "
        resp = app_client.post(
            "/api/v1/auth/register",
            json=_register_body(password=secret, confirm_password=secret, first_name="  Nina  "),
        )
        assert resp.status_code == 201, resp.text
        assert resp.json()["user"]["display_name"] == "Nina Novak"

        assert login("new@techgadgets.test", secret)["access_token"]
        trimmed = app_client.post("/api/v1/auth/login", json={"email": "new@techgadgets.test", "password": secret.strip()})
        assert trimmed.status_code == 401

    def test_login_existing_password_with_padded_email(self, app_client: TestClient, make_user) -> None:
        make_user("seller@techgadgets.test")
        resp = app_client.post("/api/v1/auth/login", json={"email": "  seller@techgadgets.test ", "password": PASSWORD})
        assert resp.status_code == 200


class TestSetup:
    def test_setup_creates_superadmin_once(self, app_client: TestClient, store) -> None:
        resp = app_client.post("/api/v1/auth/setup", json=_register_body("owner@techgadgets.test"))
        assert resp.status_code == 201, resp.text
        assert resp.json()["user"]["roles"] == [ROLE_SUPERADMIN]
        assert store.get_by_email("owner@techgadgets.test").email_verified is True

        again = app_client.post("/api/v1/auth/setup", json=_register_body("second@techgadgets.test"))
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "conflict"
