"""Tests for wallet session handling."""

from datetime import timedelta

from api_data import ADMIN, BUYER
from app.auth import AUTH_COOKIE_NAME, create_access_token, decode_token, is_wallet_address
from app.config import get_settings
from jose import jwt


class TestWalletShape:
    def test_base58_wallet(self):
        assert is_wallet_address(BUYER)

    def test_rejects_short_or_non_base58(self):
        assert not is_wallet_address("abc")
        assert not is_wallet_address("0" * 40)  # zero is not base58


class TestTokens:
    def test_round_trip_claims(self):
        settings = get_settings()
        payload = decode_token(create_access_token(BUYER, settings), settings)

        assert payload["sub"] == BUYER
        assert payload["type"] == "access"

    def test_missing_token(self, client):
        response = client.get("/api/v1/auth/me")

        assert response.status_code == 401
        assert "Not authenticated" in response.json()["detail"]

    def test_expired_token(self, client):
        token = create_access_token(BUYER, get_settings(), expires_delta=timedelta(minutes=-5))

        response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_wrong_secret(self, client):
        token = jwt.encode({"sub": BUYER, "type": "access"}, "not-the-secret", algorithm="HS256")

        response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_subject_must_be_a_wallet(self, client):
        settings = get_settings()
        token = jwt.encode(
            {"sub": "user@example.com", "type": "access"},
            settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
        )

        response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid token payload"


class TestSessionRoutes:
    def test_me(self, client, headers_for):
        response = client.get("/api/v1/auth/me", headers=headers_for(BUYER))

        assert response.status_code == 200
        assert response.json() == {"wallet": BUYER, "is_escrow_admin": False}

    def test_me_for_admin(self, client, headers_for):
        response = client.get("/api/v1/auth/me", headers=headers_for(ADMIN))

        assert response.json()["is_escrow_admin"] is True

    def test_cookie_session(self, client):
        client.cookies.set(AUTH_COOKIE_NAME, create_access_token(BUYER, get_settings()))

        response = client.get("/api/v1/auth/me")

        assert response.status_code == 200
        assert response.json()["wallet"] == BUYER

    def test_refresh_sets_cookie(self, client, headers_for):
        settings = get_settings()

        response = client.post("/api/v1/auth/refresh", headers=headers_for(BUYER))

        assert response.status_code == 200
        data = response.json()
        assert decode_token(data["access_token"], settings)["sub"] == BUYER
        assert data["expires_in"] == settings.jwt_expire_minutes * 60
        cookie = response.headers["set-cookie"]
        assert cookie.startswith(f"{AUTH_COOKIE_NAME}=")
        assert "HttpOnly" in cookie

    def test_logout_clears_cookie(self, client):
        response = client.post("/api/v1/auth/logout")

        assert response.status_code == 200
        assert response.json() == {"status": "logged_out"}
        cookie = response.headers["set-cookie"]
        assert cookie.startswith(f"{AUTH_COOKIE_NAME}=")
        assert "max-age=0" in cookie.lower()
