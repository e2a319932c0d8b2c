"""Integration tests for login, verification and session endpoints."""

from unittest.mock import patch

from fastapi.testclient import TestClient

from src.core.rate_limiter import RateLimiter


def request_code(client: TestClient, identifier: str, path: str = "/api/v1/auth/otp/request") -> dict:
    response = client.post(path, json={"identifier": identifier})
    assert response.status_code == 200, response.text
    return response.json()


class TestOtpLogin:
    """Tests for /api/v1/auth/otp/*."""

    def test_request_returns_dev_code(self, client: TestClient) -> None:
        data = request_code(client, "ada@example.com")

        assert data["sent"] is True
        assert data["channel"] == "email"
        assert data["expires_in"] == 600
        assert len(data["dev_code"]) == 6

    def test_invalid_identifier(self, client: TestClient) -> None:
        response = client.post("/api/v1/auth/otp/request", json={"identifier": "nonsense"})

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_second_request_too_soon(self, client: TestClient) -> None:
        request_code(client, "ada@example.com")

        response = client.post("/api/v1/auth/otp/request", json={"identifier": "ada@example.com"})

        assert response.status_code == 429
        assert response.json()["error"] == "too_soon"
        assert int(response.headers["Retry-After"]) > 0

    def test_login_flow(self, client: TestClient, fake_db) -> None:
        fake_db.insert_row("users", {"email": "ada@example.com", "role": "user"})
        code = request_code(client, "ada@example.com")["dev_code"]

        response = client.post("/api/v1/auth/otp/verify", json={"identifier": "ada@example.com", "code": code})

        assert response.status_code == 200
        data = response.json()
        assert data["verified"] is True
        assert data["user"]["email"] == "ada@example.com"
        assert response.cookies.get("session") == data["token"]

        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {data['token']}"})
        assert me.status_code == 200
        assert me.json()["email"] == "ada@example.com"

    def test_login_without_account(self, client: TestClient) -> None:
        code = request_code(client, "ghost@example.com")["dev_code"]

        response = client.post("/api/v1/auth/otp/verify", json={"identifier": "ghost@example.com", "code": code})

        assert response.status_code == 404

    def test_wrong_code_reports_remaining_attempts(self, client: TestClient) -> None:
        code = request_code(client, "ada@example.com")["dev_code"]
        wrong = "000000" if code != "000000" else "111111"

        response = client.post("/api/v1/auth/otp/verify", json={"identifier": "ada@example.com", "code": wrong})

        assert response.status_code == 401
        data = response.json()
        assert data["error"] == "invalid_code"
        assert data["details"][0]["msg"] == "4"

    def test_unknown_code(self, client: TestClient) -> None:
        response = client.post("/api/v1/auth/otp/verify", json={"identifier": "ada@example.com", "code": "123456"})
        assert response.status_code == 404


class TestRegister:
    """Tests for POST /api/v1/auth/register."""

    def test_register_then_log_in(self, client: TestClient, fake_db) -> None:
        response = client.post(
            "/api/v1/auth/register",
            json={"first_name": "Ada", "last_name": "Lovelace", "email": "Ada@Example.com", "phone": "+14155550100"},
        )

        assert response.status_code == 201
        assert response.json()["user"]["email"] == "ada@example.com"
        assert fake_db.rows("users")[0]["email_verified"] is False

        code = request_code(client, "+14155550100")["dev_code"]
        login = client.post("/api/v1/auth/otp/verify", json={"identifier": "+14155550100", "code": code})
        assert login.status_code == 200

    def test_duplicate_email(self, client: TestClient, fake_db) -> None:
        fake_db.insert_row("users", {"email": "ada@example.com", "role": "user"})

        response = client.post(
            "/api/v1/auth/register",
            json={"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com"},
        )

        assert response.status_code == 409
        assert response.json()["error"] == "conflict"
        assert len(fake_db.rows("users")) == 1

    def test_names_required(self, client: TestClient) -> None:
        response = client.post("/api/v1/auth/register", json={"email": "ada@example.com"})
        assert response.status_code == 422


class TestSessionRoutes:
    def test_me_requires_session(self, client: TestClient) -> None:
        response = client.get("/api/v1/auth/me")
        assert response.status_code == 401

    def test_logout_deletes_session(self, client: TestClient, user_token: str) -> None:
        headers = {"Authorization": f"Bearer {user_token}"}

        response = client.post("/api/v1/auth/logout", headers=headers)

        assert response.status_code == 200
        assert client.get("/api/v1/auth/me", headers=headers).status_code == 401

    def test_logout_without_session(self, client: TestClient) -> None:
        assert client.post("/api/v1/auth/logout").status_code == 200

    def test_admin_login(self, client: TestClient) -> None:
        response = client.post("/api/v1/auth/admin-login", json={"pin": "4321"})

        assert response.status_code == 200
        assert response.json()["user"]["role"] == "admin"

    def test_admin_login_wrong_pin(self, client: TestClient) -> None:
        response = client.post("/api/v1/auth/admin-login", json={"pin": "0000"})
        assert response.status_code == 401


class TestVerificationRoutes:
    """Tests for /api/v1/verify/* (no session is created)."""

    def test_verify_phone(self, client: TestClient) -> None:
        code = request_code(client, "+14155550100", path="/api/v1/verify/code/request")["dev_code"]

        response = client.post("/api/v1/verify/code/confirm", json={"identifier": "+14155550100", "code": code})

        assert response.status_code == 200
        assert response.json()["message"] == "Phone number verified successfully"
        assert "session" not in response.cookies

    def test_verify_marks_logged_in_user(self, client: TestClient, fake_db, user_token: str) -> None:
        code = request_code(client, "+14155550199", path="/api/v1/verify/code/request")["dev_code"]

        response = client.post(
            "/api/v1/verify/code/confirm",
            json={"identifier": "+14155550199", "code": code},
            headers={"Authorization": f"Bearer {user_token}"},
        )

        assert response.status_code == 200
        user = fake_db.rows("users")[0]
        assert user["mobile_verified"] is True
        assert user["phone_number"] == "+14155550199"

    def test_code_used_twice(self, client: TestClient) -> None:
        code = request_code(client, "ada@example.com", path="/api/v1/verify/code/request")["dev_code"]
        payload = {"identifier": "ada@example.com", "code": code}

        assert client.post("/api/v1/verify/code/confirm", json=payload).status_code == 200
        assert client.post("/api/v1/verify/code/confirm", json=payload).status_code == 404

    def test_expired_code(self, client: TestClient, clock) -> None:
        code = request_code(client, "ada@example.com", path="/api/v1/verify/code/request")["dev_code"]
        clock.advance(601)

        response = client.post("/api/v1/verify/code/confirm", json={"identifier": "ada@example.com", "code": code})

        assert response.status_code == 410


def test_code_requests_are_rate_limited(client: TestClient) -> None:
    from src.api import deps
    from src.main import app

    limiter = RateLimiter(max_requests=10, window_seconds=60)
    del app.dependency_overrides[deps.check_code_rate_limit]

    with patch("src.api.deps.get_rate_limiter", return_value=limiter):
        statuses = [
            client.post("/api/v1/verify/code/request", json={"identifier": f"user{i}@example.com"}).status_code
            for i in range(11)
        ]

    assert statuses[:10] == [200] * 10
    assert statuses[10] == 429


def test_forwarded_header_does_not_reset_the_limit(client: TestClient) -> None:
    from src.api import deps
    from src.main import app

    limiter = RateLimiter(max_requests=10, window_seconds=60)
    del app.dependency_overrides[deps.check_code_rate_limit]

    with patch("src.api.deps.get_rate_limiter", return_value=limiter):
        statuses = [
            client.post(
                "/api/v1/verify/code/request",
                json={"identifier": f"user{i}@example.com"},
                headers={"X-Forwarded-For": f"198.51.100.{i}"},
            ).status_code
            for i in range(11)
        ]

    assert statuses[10] == 429
