"""
tests/test_api_routes.py -- Integration tests for the /auth routes.

These tests exercise the full stack: FastAPI routing -> rate-limit dependency
-> bearer dependency -> AuthService -> IdentityStore -> response model
serialization and the error handlers. Unit testing route functions alone
would miss the exception mapping and request validation, which are most of
what the transport layer does.

Coverage:
  - SSO: 201 on first sign-in, 200 afterwards, 422 on a non-https photo
  - Registration: pending account + hashes, 409 naming the field, 422 on bad input
  - OTP check: "OK" and activation, 401 on a wrong code
  - Bearer routes: 401 without/with a bad token, fresh hashes, self-lookup, profile update
  - Rate limiting: 429 with Retry-After once a client's bucket is empty

Fixtures used (from conftest.py):
  - api_client: (client, notifier) -- one shared-memory DB per test module,
    so every test uses its own ids and emails.
"""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient

from api.limiter import TokenBucketLimiter


def _register(client: TestClient, **overrides) -> tuple[str, dict]:
    user_id = str(uuid.uuid4())
    body = {
        "id": user_id,
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": f"{user_id[:8]}@example.com",
        "phone": f"+1555{user_id[:8]}",
        "password": "correct horse battery",
    }
    body.update(overrides)
    resp = client.post("/auth/register", json=body)
    assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
    return body["id"], resp.json()


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestSso:
    def test_first_sign_in_is_201_then_200(self, api_client) -> None:
        client, _ = api_client
        body = {"id": "g-sso-1", "email": "sso1@example.com", "sso_provider": "google", "first_name": "Ada"}

        first = client.post("/auth/sso", json=body)
        assert first.status_code == 201, first.text
        data = first.json()
        assert data["data"]["is_active"] is True
        assert data["data"]["sso_provider"] == "google"
        assert data["token"]
        assert "hashed_password" not in data["data"]
        assert first.headers["Cache-Control"] == "no-store"

        second = client.post("/auth/sso", json=body)
        assert second.status_code == 200
        assert second.json()["data"]["id"] == data["data"]["id"]

    def test_http_photo_is_422(self, api_client) -> None:
        client, _ = api_client
        body = {
            "id": "g-sso-2",
            "email": "sso2@example.com",
            "sso_provider": "google",
            "photo": "http://img.example/a.png",
        }
        resp = client.post("/auth/sso", json=body)
        assert resp.status_code == 422
        assert resp.json() == {"message": "Profile URL must start with 'https://'"}

    def test_missing_provider_is_422(self, api_client) -> None:
        client, _ = api_client
        resp = client.post("/auth/sso", json={"id": "g-sso-3", "email": "sso3@example.com"})
        assert resp.status_code == 422
        assert "sso_provider" in resp.json()["message"]


class TestRegister:
    def test_register_returns_pending_identity_and_hashes(self, api_client) -> None:
        client, notifier = api_client
        user_id, data = _register(client)
        assert data["data"]["id"] == user_id
        assert data["data"]["is_active"] is False
        assert len(data["sms_hash"]) == 64
        assert len(data["email_hash"]) == 64
        assert "password" not in data["data"]
        # codes are delivered out of band, never in the response
        assert set(data) == {"data", "token", "sms_hash", "email_hash"}
        assert notifier.last_code(user_id, "sms")

    def test_email_is_normalized(self, api_client) -> None:
        client, _ = api_client
        _, data = _register(client, email="Mixed.Case@Example.COM")
        assert data["data"]["email"] == "mixed.case@example.com"

    def test_duplicate_email_is_409(self, api_client) -> None:
        client, _ = api_client
        _, first = _register(client)
        second_id = str(uuid.uuid4())
        resp = client.post(
            "/auth/register",
            json={"id": second_id, "email": first["data"]["email"], "password": "another password"},
        )
        assert resp.status_code == 409
        assert resp.json() == {"message": "Email already exists"}

    def test_duplicate_phone_is_409(self, api_client) -> None:
        client, _ = api_client
        _, first = _register(client)
        resp = client.post(
            "/auth/register",
            json={"id": str(uuid.uuid4()), "email": "phone-dupe@example.com", "phone": first["data"]["phone"]},
        )
        assert resp.status_code == 409
        assert resp.json() == {"message": "Phone already exists"}

    def test_short_password_is_422(self, api_client) -> None:
        client, _ = api_client
        resp = client.post(
            "/auth/register", json={"id": str(uuid.uuid4()), "email": "short@example.com", "password": "abc"}
        )
        assert resp.status_code == 422
        assert resp.json()["message"].startswith("password")

    def test_bad_email_is_422(self, api_client) -> None:
        client, _ = api_client
        resp = client.post("/auth/register", json={"id": str(uuid.uuid4()), "email": "not-an-email"})
        assert resp.status_code == 422

    def test_non_uuid_id_is_422(self, api_client) -> None:
        client, _ = api_client
        resp = client.post("/auth/register", json={"id": "42", "email": "uuid@example.com"})
        assert resp.status_code == 422


class TestCheckOtp:
    def test_valid_code_activates(self, api_client) -> None:
        client, notifier = api_client
        user_id, data = _register(client)
        resp = client.post(
            "/auth/check/otp",
            json={"otp": notifier.last_code(user_id, "sms"), "user_id": user_id, "hash_code": data["sms_hash"]},
        )
        assert resp.status_code == 200
        assert resp.json() == "OK"

        detail = client.get("/auth/user/detail", headers=_bearer(data["token"]))
        assert detail.json()["data"]["is_active"] is True

    def test_wrong_code_is_401(self, api_client) -> None:
        client, notifier = api_client
        user_id, data = _register(client)
        wrong = "000000" if notifier.last_code(user_id, "email") != "000000" else "111111"
        resp = client.post(
            "/auth/check/otp", json={"otp": wrong, "user_id": user_id, "hash_code": data["email_hash"]}
        )
        assert resp.status_code == 401
        assert resp.json() == {"message": "Invalid OTP Code"}

    def test_hash_for_other_user_is_401(self, api_client) -> None:
        client, notifier = api_client
        user_id, data = _register(client)
        other_id, _ = _register(client)
        resp = client.post(
            "/auth/check/otp",
            json={"otp": notifier.last_code(user_id, "sms"), "user_id": other_id, "hash_code": data["sms_hash"]},
        )
        assert resp.status_code == 401


class TestRegisterComplete:
    def test_complete_activates(self, api_client) -> None:
        client, _ = api_client
        user_id, data = _register(client)
        resp = client.get(f"/auth/register/complete/{user_id}")
        assert resp.status_code == 200
        assert resp.json() == {"message": ""}
        detail = client.get("/auth/user/detail", headers=_bearer(data["token"]))
        assert detail.json()["data"]["is_active"] is True

    def test_unknown_id_still_200(self, api_client) -> None:
        client, _ = api_client
        assert client.get(f"/auth/register/complete/{uuid.uuid4()}").status_code == 200

    def test_malformed_id_is_422(self, api_client) -> None:
        client, _ = api_client
        assert client.get("/auth/register/complete/not-a-uuid").status_code == 422


class TestBearerRoutes:
    def test_missing_header_is_401(self, api_client) -> None:
        client, _ = api_client
        for path in ("/auth/user/detail", "/auth/send/sms", "/auth/send/email"):
            resp = client.get(path)
            assert resp.status_code == 401, path
            assert resp.json() == {"message": "Missing authorization header"}

    def test_wrong_scheme_is_401(self, api_client) -> None:
        client, _ = api_client
        resp = client.get("/auth/user/detail", headers={"Authorization": "Basic dXNlcjpwYXNz"})
        assert resp.status_code == 401
        assert resp.json() == {"message": "Invalid authorization scheme"}

    def test_scheme_is_case_insensitive(self, api_client) -> None:
        client, _ = api_client
        user_id, data = _register(client)
        resp = client.get("/auth/user/detail", headers={"Authorization": f"bearer {data['token']}"})
        assert resp.status_code == 200
        assert resp.json()["data"]["id"] == user_id

    def test_garbage_token_is_401(self, api_client) -> None:
        client, _ = api_client
        resp = client.get("/auth/user/detail", headers=_bearer("not.a.token"))
        assert resp.status_code == 401
        assert resp.json() == {"message": "Invalid token"}

    def test_self_lookup_echoes_token(self, api_client) -> None:
        client, _ = api_client
        user_id, data = _register(client)
        resp = client.get("/auth/user/detail", headers=_bearer(data["token"]))
        assert resp.status_code == 200
        body = resp.json()
        assert body["data"]["id"] == user_id
        assert body["token"] == data["token"]
        assert resp.headers["Cache-Control"] == "no-store"

    def test_send_sms_then_confirm(self, api_client) -> None:
        client, notifier = api_client
        user_id, data = _register(client)
        resp = client.get("/auth/send/sms", headers=_bearer(data["token"]))
        assert resp.status_code == 200
        sms_hash = resp.json()["sms_hash"]

        confirm = client.post(
            "/auth/check/otp",
            json={"otp": notifier.last_code(user_id, "sms"), "user_id": user_id, "hash_code": sms_hash},
        )
        assert confirm.status_code == 200

    def test_send_email(self, api_client) -> None:
        client, _ = api_client
        _, data = _register(client)
        resp = client.get("/auth/send/email", headers=_bearer(data["token"]))
        assert resp.status_code == 200
        assert len(resp.json()["email_hash"]) == 64

    def test_update_profile(self, api_client) -> None:
        client, _ = api_client
        user_id, data = _register(client)
        new_email = f"new-{user_id[:8]}@example.com"
        resp = client.put(
            "/auth/user/detail",
            json={"email": new_email, "first_name": "Augusta", "phone": data["data"]["phone"]},
            headers=_bearer(data["token"]),
        )
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["data"]["email"] == new_email
        assert body["data"]["first_name"] == "Augusta"
        assert body["token"] != data["token"]

    def test_update_profile_to_taken_email_is_409(self, api_client) -> None:
        client, _ = api_client
        _, first = _register(client)
        _, second = _register(client)
        resp = client.put(
            "/auth/user/detail",
            json={"email": first["data"]["email"]},
            headers=_bearer(second["token"]),
        )
        assert resp.status_code == 409
        assert resp.json() == {"message": "Email already exists"}


class TestRateLimit:
    def test_empty_bucket_is_429(self, api_client) -> None:
        client, _ = api_client
        original = client.app.state.limiter
        client.app.state.limiter = TokenBucketLimiter(rate=2.0, burst=5, clock=lambda: 0.0)
        try:
            statuses = [client.get("/auth/user/detail").status_code for _ in range(6)]
            assert statuses[:5] == [401] * 5
            assert statuses[5] == 429

            resp = client.get("/auth/send/sms")
            assert resp.status_code == 429
            assert resp.headers["Retry-After"] == "1"
            assert resp.json() == {"message": "Too many requests."}

            # health probes are never throttled
            assert client.get("/health").status_code == 200
        finally:
            client.app.state.limiter = original


def test_unknown_route_is_404(api_client) -> None:
    client, _ = api_client
    resp = client.get("/auth/nope")
    assert resp.status_code == 404
    assert resp.json() == {"message": "Not Found"}
