import pytest

import config
import main
from conftest import auth_headers, make_user


class TestRegisterLogin:
    """Account creation and credential checks."""

    def test_register_returns_token_and_referral_code(self, client, db):
        res = client.post("/api/auth/register", json={
            "name": "Meera", "phone": "9123456780", "email": "Meera@Example.com", "password": "secret123",
        })
        assert res.status_code == 201
        body = res.json()
        assert body["success"] is True
        assert body["data"]["token"]
        user = body["data"]["user"]
        assert user["email"] == "meera@example.com"
        assert user["referral_code"] == "REF" + user["id"][-8:].upper()
        assert "password_hash" not in user
        stored = db["user"].find_one({"email": "meera@example.com"})
        assert stored["password_hash"] != "secret123"

    def test_register_duplicate_email(self, client, user):
        res = client.post("/api/auth/register", json={
            "name": "Again", "phone": "1", "email": user["email"], "password": "secret123",
        })
        assert res.status_code == 400
        assert res.json() == {"success": False, "message": "User already exists", "data": None}

    def test_register_missing_fields_is_400(self, client):
        res = client.post("/api/auth/register", json={"email": "x@example.com"})
        assert res.status_code == 400
        assert res.json()["success"] is False

    def test_login(self, client, user):
        res = client.post("/api/auth/login", json={"email": user["email"], "password": "secret123"})
        assert res.status_code == 200
        data = res.json()["data"]
        assert data["user"] == {"id": str(user["_id"]), "name": user["name"], "email": user["email"], "role": "user"}
        assert "token" in res.cookies

    def test_login_unknown_user(self, client):
        res = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": "secret123"})
        assert res.status_code == 404

    def test_login_wrong_password(self, client, user):
        res = client.post("/api/auth/login", json={"email": user["email"], "password": "wrong-pass"})
        assert res.status_code == 401
        assert res.json()["message"] == "Wrong password"

    def test_blocked_user_cannot_login(self, client, db):
        make_user(db, email="blocked@example.com", is_blocked=True)
        res = client.post("/api/auth/login", json={"email": "blocked@example.com", "password": "secret123"})
        assert res.status_code == 403


class TestCurrentUser:
    def test_me_with_bearer(self, client, user, user_headers):
        res = client.get("/api/auth/me", headers=user_headers)
        assert res.status_code == 200
        assert res.json()["data"]["id"] == str(user["_id"])

    def test_me_with_cookie(self, client, user):
        client.post("/api/auth/login", json={"email": user["email"], "password": "secret123"})
        res = client.get("/api/auth/me")
        assert res.status_code == 200
        assert res.json()["data"]["email"] == user["email"]

    def test_me_without_token(self, client):
        res = client.get("/api/auth/me")
        assert res.status_code == 401
        assert res.json()["success"] is False

    def test_invalid_token(self, client):
        res = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401
        assert res.json()["message"] == "Invalid token"

    def test_blocked_user_token_rejected(self, client, db):
        blocked = make_user(db, email="b2@example.com", is_blocked=True)
        res = client.get("/api/auth/me", headers=auth_headers(blocked))
        assert res.status_code == 403


class TestApiKey:
    """The mobile X-API-Key gate only applies when a key is configured."""

    def test_missing_key_rejected(self, client, monkeypatch):
        monkeypatch.setattr(config, "MOBILE_API_KEY", "mobile-key")
        res = client.get("/api/products")
        assert res.status_code == 401
        assert res.json()["message"] == "Invalid or missing API key"

    def test_correct_key_accepted(self, client, monkeypatch):
        monkeypatch.setattr(config, "MOBILE_API_KEY", "mobile-key")
        res = client.get("/api/products", headers={"X-API-Key": "mobile-key"})
        assert res.status_code == 200

    def test_admin_routes_skip_key(self, client, monkeypatch, admin_headers):
        monkeypatch.setattr(config, "MOBILE_API_KEY", "mobile-key")
        res = client.get("/api/admin/orders/stats", headers=admin_headers)
        assert res.status_code == 200


@pytest.fixture
def rate_limited_client(client, monkeypatch):
    monkeypatch.setattr(main.limiter, "enabled", True)
    main.limiter.reset()
    yield client
    main.limiter.reset()


class TestRateLimit:
    def test_api_budget_per_client(self, rate_limited_client):
        for _ in range(100):
            assert rate_limited_client.get("/api/categories").status_code == 200
        res = rate_limited_client.get("/api/products")
        assert res.status_code == 429
        assert res.json() == {"success": False, "message": "Too many requests, please try again later.", "data": None}

    def test_health_routes_exempt(self, rate_limited_client):
        for _ in range(101):
            assert rate_limited_client.get("/").status_code == 200
        assert rate_limited_client.get("/api/categories").status_code == 200


class TestEnvelope:
    def test_unknown_route(self, client):
        res = client.get("/api/nothing-here")
        assert res.status_code == 404
        assert res.json() == {"success": False, "message": "Route not found", "data": None}

    def test_security_headers(self, client):
        res = client.get("/")
        assert res.headers["X-Content-Type-Options"] == "nosniff"
        assert res.headers["X-Frame-Options"] == "DENY"

    def test_bad_object_id(self, client):
        res = client.get("/api/products/not-an-id")
        assert res.status_code == 400
        assert res.json()["message"] == "Invalid product id"
