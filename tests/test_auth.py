"""Tests for the auth endpoints and service."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from supabase_auth import AsyncGoTrueClient
from supabase_auth.errors import AuthApiError, AuthRetryableError
from supabase_auth.types import AuthResponse

from bff.app import create_app
from bff.auth.models import CONFIRMATION_MESSAGE
from bff.auth.service import auth_failure, to_login_response
from bff.datastore.clients import ClientSelector, RequestUser
from bff.metrics.service import PrometheusMetrics
from fakes import (
    FakeAuthClient,
    FakeIdentityProvider,
    FakeSupabaseClient,
    make_auth_user,
    make_session,
)

AUTH = {"Authorization": "Bearer good-token"}

CREATOR_SIGNUP = {
    "email": "kai@example.com",
    "password": "long-enough",
    "display_name": "Kai",
    "legal_name": "Kai Example",
    "country_code": "us",
    "phone": "+14155550100",
    "date_of_birth": "1990-05-01",
    "largest_following_platform": "tiktok",
    "social_handle": "@kai",
    "follower_count": 12000,
}


@pytest.fixture
def auth_client() -> FakeAuthClient:
    return FakeAuthClient()


@pytest.fixture
def metrics() -> PrometheusMetrics:
    return PrometheusMetrics(process_metrics=False)


@pytest.fixture
def client(settings, memory_cache, auth_client, metrics):
    async def user_client_factory(jwt: str) -> FakeSupabaseClient:
        return FakeSupabaseClient("user")

    app = create_app(
        settings,
        cache=memory_cache,
        selector=ClientSelector(
            FakeSupabaseClient("anon"), FakeSupabaseClient("admin"), user_client_factory
        ),
        identity=FakeIdentityProvider(
            users={"good-token": RequestUser(id="u1", role="authenticated", jwt="good-token")}
        ),
        auth_client=auth_client,
        metrics=metrics,
    )
    with TestClient(app) as test_client:
        yield test_client


def test_register_without_session_asks_for_confirmation(client, auth_client) -> None:
    response = client.post(
        "/v1/auth/register", json={"email": "jo@example.com", "password": "secret1"}
    )

    assert response.status_code == 200
    assert response.json() == {"message": CONFIRMATION_MESSAGE}
    assert auth_client.calls == [
        ("sign_up", {"email": "jo@example.com", "password": "secret1"})
    ]


def test_register_with_auto_confirm_returns_session(client, auth_client) -> None:
    user = make_auth_user(user_metadata={"roles": ["moderator"]})
    auth_client.respond(AuthResponse(user=user, session=make_session(user)))

    response = client.post(
        "/v1/auth/register", json={"email": "jo@example.com", "password": "secret1"}
    )

    assert response.status_code == 200
    assert response.json() == {
        "user_id": "u1",
        "email": "jo@example.com",
        "role": "moderator",
        "user_type": "fan",
        "access_token": "access-1",
        "refresh_token": "refresh-1",
        "expires_in": 3600,
    }


def test_register_rejects_short_password(client, auth_client) -> None:
    response = client.post(
        "/v1/auth/register", json={"email": "jo@example.com", "password": "abc"}
    )

    assert response.status_code == 422
    assert auth_client.calls == []


def test_register_creator_sends_profile_metadata(client, auth_client, metrics) -> None:
    """The creator profile travels as user metadata and is counted."""
    response = client.post("/v1/auth/register/creator", json=CREATOR_SIGNUP)

    assert response.status_code == 200
    assert response.json() == {"message": CONFIRMATION_MESSAGE}
    name, credentials = auth_client.calls[0]
    assert name == "sign_up"
    assert credentials["email"] == "kai@example.com"
    metadata = credentials["options"]["data"]
    assert metadata["user_type"] == "creator"
    assert metadata["country_code"] == "US"
    assert metadata["date_of_birth"] == "1990-05-01"
    assert metadata["follower_count"] == 12000
    assert metrics.registry.get_sample_value("creator_registrations_total") == 1.0


def test_register_creator_validates_phone(client, auth_client) -> None:
    response = client.post(
        "/v1/auth/register/creator", json={**CREATOR_SIGNUP, "phone": "555-0100"}
    )

    assert response.status_code == 422
    assert auth_client.calls == []


def test_login_returns_session_with_app_role(client, auth_client) -> None:
    user = make_auth_user(
        app_metadata={"role": "admin"}, user_metadata={"user_type": "creator"}
    )
    auth_client.respond(AuthResponse(user=user, session=make_session(user)))

    response = client.post(
        "/v1/auth/login", json={"email": "jo@example.com", "password": "secret1"}
    )

    assert response.status_code == 200
    assert response.json()["role"] == "admin"
    assert response.json()["user_type"] == "creator"
    assert auth_client.calls[0][0] == "sign_in_with_password"


def test_login_with_bad_credentials_is_unauthorized(client, auth_client) -> None:
    auth_client.fail(
        AuthApiError("Invalid login credentials", 400, "invalid_credentials")
    )

    response = client.post(
        "/v1/auth/login", json={"email": "jo@example.com", "password": "wrong"}
    )

    assert response.status_code == 401
    body = response.json()
    assert body["error"] == "invalid_credentials"
    assert body["message"] == "Invalid login credentials"
    assert body["path"] == "/v1/auth/login"


def test_refresh_passes_refresh_token(client, auth_client) -> None:
    user = make_auth_user()
    auth_client.respond(
        AuthResponse(user=user, session=make_session(user, access_token="access-2"))
    )

    response = client.post("/v1/auth/refresh", json={"refresh_token": "refresh-1"})

    assert response.status_code == 200
    assert response.json()["access_token"] == "access-2"
    assert auth_client.calls == [("refresh_session", "refresh-1")]


def test_logout_requires_authentication(client, auth_client) -> None:
    response = client.post("/v1/auth/logout")

    assert response.status_code == 401
    assert auth_client.admin.signed_out == []


def test_logout_revokes_caller_session(client, auth_client) -> None:
    response = client.post("/v1/auth/logout", headers=AUTH)

    assert response.status_code == 204
    assert response.content == b""
    assert auth_client.admin.signed_out == ["good-token"]


def test_signup_is_not_retried_when_auth_is_unavailable(client, auth_client) -> None:
    auth_client.fail(AuthRetryableError("Service Unavailable", 503))

    response = client.post(
        "/v1/auth/register", json={"email": "jo@example.com", "password": "secret1"}
    )

    assert response.status_code == 503
    assert response.json()["details"] == {"operation": "auth.signUp", "attempts": 1}
    assert len(auth_client.calls) == 1


def test_injected_auth_client_is_not_closed(settings, memory_cache, auth_client) -> None:
    async def user_client_factory(jwt: str) -> FakeSupabaseClient:
        return FakeSupabaseClient("user")

    selector = ClientSelector(
        FakeSupabaseClient("anon"), FakeSupabaseClient("admin"), user_client_factory
    )
    app = create_app(
        settings, cache=memory_cache, selector=selector, auth_client=auth_client
    )

    with TestClient(app) as client:
        client.get("/healthz")

    assert auth_client.closed == 0


def test_owned_auth_client_is_closed_on_shutdown(settings, memory_cache) -> None:
    """The lifespan builds a dedicated auth client and closes its HTTP session."""

    async def user_client_factory(jwt: str) -> FakeSupabaseClient:
        return FakeSupabaseClient("user")

    selector = ClientSelector(
        FakeSupabaseClient("anon"), FakeSupabaseClient("admin"), user_client_factory
    )
    app = create_app(settings, cache=memory_cache, selector=selector)

    with TestClient(app):
        auth_client = app.state.auth_client
        assert isinstance(auth_client, AsyncGoTrueClient)
        assert auth_client._url == "http://supabase.test/auth/v1"
        assert not auth_client._http_client.is_closed

    assert auth_client._http_client.is_closed


def test_auth_routes_need_configured_supabase(unconfigured_settings, memory_cache) -> None:
    app = create_app(unconfigured_settings, cache=memory_cache)

    with TestClient(app) as client:
        response = client.post(
            "/v1/auth/login", json={"email": "jo@example.com", "password": "secret1"}
        )

    assert response.status_code == 503


@pytest.mark.parametrize(
    ("error", "status"),
    [
        (AuthApiError("Invalid Refresh Token", 400, "refresh_token_not_found"), 401),
        (AuthApiError("User already registered", 422, "user_already_exists"), 422),
        (AuthApiError("boom", 500, "unexpected_failure"), 503),
        (AuthRetryableError("connection refused", 0), 503),
    ],
)
def test_auth_failure_status(error, status) -> None:
    assert auth_failure(error).status == status


def test_login_response_defaults_role_and_user_type() -> None:
    user = make_auth_user()

    response = to_login_response(make_session(user))

    assert response.role == "user"
    assert response.user_type == "fan"
