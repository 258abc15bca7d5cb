import pytest

from storefront.config import Config
from storefront.models import UserRole
from storefront.security import decode_token


def _register(client, **overrides):
    payload = {"username": "alice", "email": "alice@example.com", "password": "secret123"}
    payload.update(overrides)
    return client.post("/api/users/register", json=payload)


def test_register_returns_user_and_token(client):
    response = _register(client)
    assert response.status_code == 201
    body = response.get_json()
    assert body["success"] is True
    assert body["data"]["user"]["email"] == "alice@example.com"
    assert body["data"]["user"]["role"] == "customer"
    assert "password" not in body["data"]["user"]
    claims = decode_token(body["data"]["token"])
    assert claims["sub"] == str(body["data"]["user"]["id"])
    assert claims["role"] == "customer"


def test_register_missing_fields_reports_each_field(client):
    response = client.post("/api/users/register", json={"username": "bob"})
    assert response.status_code == 400
    body = response.get_json()
    assert body["message"] == "Validation failed"
    assert set(body["errors"]) == {"email", "password"}


def test_register_rejects_duplicate_email(client):
    assert _register(client).status_code == 201
    response = _register(client, username="alice2")
    assert response.status_code == 400
    assert "email" in response.get_json()["errors"]


def test_register_rejects_short_password(client):
    response = _register(client, password="123")
    assert response.status_code == 400
    assert "password" in response.get_json()["errors"]


def test_login_with_valid_credentials(client, customer):
    response = client.post("/api/users/login", json={"email": "customer@example.com", "password": "password123"})
    assert response.status_code == 200
    assert response.get_json()["data"]["user"]["username"] == "customer"


@pytest.mark.parametrize(
    "email,password",
    [("customer@example.com", "wrong-password"), ("nobody@example.com", "password123")],
)
def test_login_rejects_bad_credentials(client, customer, email, password):
    response = client.post("/api/users/login", json={"email": email, "password": password})
    assert response.status_code == 401
    assert response.get_json()["message"] == "Invalid email or password"


def test_login_rejects_inactive_account(client, make_user):
    make_user(email="sleepy@example.com", is_active=False)
    response = client.post("/api/users/login", json={"email": "sleepy@example.com", "password": "password123"})
    assert response.status_code == 401


def test_me_requires_token(client):
    response = client.get("/api/users/me")
    assert response.status_code == 401
    assert response.get_json()["success"] is False


def test_me_rejects_garbage_token(client):
    response = client.get("/api/users/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_me_returns_current_user(client, customer, customer_headers):
    response = client.get("/api/users/me", headers=customer_headers)
    assert response.status_code == 200
    assert response.get_json()["data"]["email"] == customer.email


def test_deactivated_user_is_forbidden(client, make_user, auth_headers):
    user = make_user(is_active=False)
    response = client.get("/api/users/me", headers=auth_headers(user))
    assert response.status_code == 403


def test_update_profile_and_username_collision(client, customer, customer_headers, make_user):
    make_user(username="taken")
    response = client.put("/api/users/profile", json={"username": "taken"}, headers=customer_headers)
    assert response.status_code == 400
    assert "username" in response.get_json()["errors"]

    response = client.put(
        "/api/users/profile",
        json={"username": "renamed", "phone": "+44 20 7946 0958", "address": "<b>10 Downing St</b>"},
        headers=customer_headers,
    )
    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["username"] == "renamed"
    assert data["address"] == "10 Downing St"


def test_change_password_checks_current_password(client, customer, customer_headers):
    response = client.put(
        "/api/users/password",
        json={"current_password": "nope", "new_password": "another123"},
        headers=customer_headers,
    )
    assert response.status_code == 400
    assert "current_password" in response.get_json()["errors"]

    response = client.put(
        "/api/users/password",
        json={"current_password": "password123", "new_password": "another123"},
        headers=customer_headers,
    )
    assert response.status_code == 200
    login = client.post("/api/users/login", json={"email": customer.email, "password": "another123"})
    assert login.status_code == 200


def test_logout_revokes_token(client, customer_headers):
    assert client.post("/api/users/logout", headers=customer_headers).status_code == 200
    response = client.get("/api/users/me", headers=customer_headers)
    assert response.status_code == 401


def test_refresh_issues_new_token_and_revokes_old(client, customer_headers):
    response = client.post("/api/users/refresh", headers=customer_headers)
    assert response.status_code == 200
    new_token = response.get_json()["data"]["token"]

    assert client.get("/api/users/me", headers=customer_headers).status_code == 401
    assert client.get("/api/users/me", headers={"Authorization": f"Bearer {new_token}"}).status_code == 200


def test_admin_route_forbidden_for_customer(client, customer_headers):
    response = client.get("/api/admin/metrics", headers=customer_headers)
    assert response.status_code == 403


def test_admin_route_allows_admin(client, admin, admin_headers):
    assert admin.role == UserRole.ADMIN
    response = client.get("/api/admin/metrics", headers=admin_headers)
    assert response.status_code == 200
    assert "orders_by_status" in response.get_json()["data"]


def test_token_expiry_defaults_to_seven_days():
    assert Config.JWT_EXPIRES_SECONDS == 7 * 86400


@pytest.mark.parametrize("payload", [{"email": 5, "password": "x"}, {"email": "a@example.com", "password": ["x"]}])
def test_login_rejects_non_string_credentials(client, payload):
    response = client.post("/api/users/login", json=payload)
    assert response.status_code == 400
    assert response.get_json()["success"] is False


def test_register_rejects_non_string_password(client):
    response = _register(client, password=12345678)
    assert response.status_code == 400
    assert "password" in response.get_json()["errors"]


def test_change_password_rejects_non_string_values(client, customer_headers):
    response = client.put(
        "/api/users/password",
        json={"current_password": "password123", "new_password": 12345678},
        headers=customer_headers,
    )
    assert response.status_code == 400
