from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi import status
from sqlalchemy import delete, select

from auth_provider.features.auth.models.user import User, UserProfile
from auth_provider.features.oauth.models.oauth import OAuthAccessToken, OAuthAuthorizationCode
from auth_provider.features.oauth.services.oauth import OAuthService, pkce_challenge
from auth_provider.platform.db.base import utcnow
from tests.conftest import bearer, run_db

AUTHORIZE_URL = "/api/oauth/authorize"
TOKEN_URL = "/api/oauth/token"
USERINFO_URL = "/api/oauth/userinfo"

REDIRECT_URI = "http://localhost:3001/callback"
ORIGIN = "http://localhost:3001"
VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"


def seed_client(settings, is_active=True, scopes=None):
    async def seed(session):
        oauth_client, secret = await OAuthService(session, settings).register_client(
            "F3 Map", [REDIRECT_URI], ORIGIN, scopes=scopes
        )
        if not is_active:
            oauth_client.is_active = False
            await session.commit()
        return {"id": oauth_client.id, "secret": secret}

    return run_db(settings.DATABASE_URL, seed)


def seed_user(settings, onboarded=True, email="testuser@example.com"):
    async def seed(session):
        user = User(
            email=email,
            f3_name="TestUser",
            email_verified=utcnow(),
            avatar_url="https://example.com/avatar.jpg",
        )
        session.add(user)
        await session.flush()
        session.add(
            UserProfile(
                user_id=user.id,
                hospital_name="Test Hospital" if onboarded else None,
                onboarding_completed=onboarded,
            )
        )
        await session.commit()
        return user.id

    return run_db(settings.DATABASE_URL, seed)


@pytest.fixture
def oauth_client(client, settings):
    """A registered client. Depends on `client` so the tables exist."""
    return seed_client(settings)


@pytest.fixture
def user_id(client, settings):
    return seed_user(settings)


@pytest.fixture
def session_headers(settings, user_id):
    return bearer(settings, user_id=user_id, email="testuser@example.com")


def authorize(client, params, headers=None):
    return client.get(AUTHORIZE_URL, params=params, headers=headers or {}, follow_redirects=False)


def authorize_params(oauth_client, **overrides):
    params = {
        "response_type": "code",
        "client_id": oauth_client["id"],
        "redirect_uri": REDIRECT_URI,
        "scope": "openid profile email",
    }
    params.update(overrides)
    return {k: v for k, v in params.items() if v is not None}


def location_query(response) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(response.headers["location"]).query).items()}


def get_code(client, oauth_client, headers, **overrides) -> str:
    response = authorize(client, authorize_params(oauth_client, **overrides), headers)
    assert response.status_code == status.HTTP_307_TEMPORARY_REDIRECT
    return location_query(response)["code"]


def exchange(client, oauth_client, code, /, **overrides):
    data = {
        "grant_type": "authorization_code",
        "client_id": oauth_client["id"],
        "client_secret": oauth_client["secret"],
        "code": code,
        "redirect_uri": REDIRECT_URI,
    }
    data.update(overrides)
    return client.post(TOKEN_URL, data={k: v for k, v in data.items() if v is not None})


def issue_tokens(client, oauth_client, headers, scope="openid profile email") -> dict:
    code = get_code(client, oauth_client, headers, scope=scope)
    response = exchange(client, oauth_client, code)
    assert response.status_code == status.HTTP_200_OK
    return response.json()


def stored_authorization_codes(settings):
    async def query(session):
        return list((await session.execute(select(OAuthAuthorizationCode))).scalars().all())

    return run_db(settings.DATABASE_URL, query)


# --- Authorize ---


@pytest.mark.parametrize("missing", ["response_type", "client_id", "redirect_uri"])
def test_authorize_missing_parameter_400(client, oauth_client, missing):
    response = authorize(client, authorize_params(oauth_client, **{missing: None}))

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {
        "error": "invalid_request",
        "error_description": "Missing required parameters",
    }


def test_authorize_unsupported_response_type_400(client, oauth_client):
    response = authorize(client, authorize_params(oauth_client, response_type="token"))

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {
        "error": "unsupported_response_type",
        "error_description": "Only authorization code flow is supported",
    }


def test_authorize_unknown_client_400(client, oauth_client):
    response = authorize(client, authorize_params(oauth_client, client_id="nope"))

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {"error": "invalid_client", "error_description": "Invalid client_id"}


def test_authorize_inactive_client_400(client, settings):
    inactive = seed_client(settings, is_active=False)

    response = authorize(client, authorize_params(inactive))

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"] == "invalid_client"


def test_authorize_unregistered_redirect_uri_400(client, oauth_client):
    response = authorize(client, authorize_params(oauth_client, redirect_uri="http://evil.example/cb"))

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {"error": "invalid_request", "error_description": "Invalid redirect_uri"}


def test_authorize_without_session_redirects_to_login(client, oauth_client):
    """
    Goal: An anonymous user is sent to login and brought back to the same
    authorize URL, state included.
    """
    response = authorize(client, authorize_params(oauth_client, state="test-state-123"))

    assert response.status_code == status.HTTP_307_TEMPORARY_REDIRECT
    location = urlparse(response.headers["location"])
    assert f"{location.scheme}://{location.netloc}{location.path}" == "https://auth.example.com/login"

    callback = urlparse(location_query(response)["callbackUrl"])
    assert callback.path == AUTHORIZE_URL
    assert parse_qs(callback.query)["state"] == ["test-state-123"]


def test_authorize_before_onboarding_redirects_to_onboarding(client, settings, oauth_client):
    user_id = seed_user(settings, onboarded=False)

    response = authorize(client, authorize_params(oauth_client), bearer(settings, user_id=user_id))

    assert response.status_code == status.HTTP_307_TEMPORARY_REDIRECT
    assert urlparse(response.headers["location"]).path == "/onboarding"
    assert "callbackUrl" in location_query(response)
    assert stored_authorization_codes(settings) == []


def test_authorize_redirects_with_code_and_state(client, settings, oauth_client, user_id, session_headers):
    response = authorize(client, authorize_params(oauth_client, state="abc 123"), session_headers)

    assert response.status_code == status.HTTP_307_TEMPORARY_REDIRECT
    assert response.headers["location"].startswith(f"{REDIRECT_URI}?")
    query = location_query(response)
    assert query["state"] == "abc 123"

    [stored] = stored_authorization_codes(settings)
    assert stored.code == query["code"]
    assert stored.user_id == user_id
    assert stored.redirect_uri == REDIRECT_URI
    assert stored.scopes == "openid profile email"


def test_authorize_stores_pkce_challenge(client, settings, oauth_client, session_headers):
    get_code(
        client,
        oauth_client,
        session_headers,
        code_challenge="test-challenge",
        code_challenge_method="S256",
    )

    [stored] = stored_authorization_codes(settings)
    assert stored.code_challenge == "test-challenge"
    assert stored.code_challenge_method == "S256"


def test_authorize_unknown_pkce_method_400(client, oauth_client, session_headers):
    params = authorize_params(oauth_client, code_challenge="x", code_challenge_method="S512")

    response = authorize(client, params, session_headers)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"] == "invalid_request"


def test_authorize_disallowed_scope_redirects_with_error(client, settings, oauth_client, session_headers):
    response = authorize(
        client, authorize_params(oauth_client, scope="openid admin", state="s1"), session_headers
    )

    assert response.status_code == status.HTTP_307_TEMPORARY_REDIRECT
    assert response.headers["location"].startswith(REDIRECT_URI)
    query = location_query(response)
    assert query["error"] == "invalid_scope"
    assert query["state"] == "s1"
    assert "code" not in query
    assert stored_authorization_codes(settings) == []


def test_authorize_defaults_scope(client, settings, oauth_client, session_headers):
    get_code(client, oauth_client, session_headers, scope=None)

    [stored] = stored_authorization_codes(settings)
    assert stored.scopes == "openid profile email"


# --- Token ---


@pytest.mark.parametrize(
    "data",
    [
        {"client_id": "x"},
        {"grant_type": "authorization_code"},
        {},
    ],
)
def test_token_missing_parameters_400(client, data):
    response = client.post(TOKEN_URL, data=data)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {
        "error": "invalid_request",
        "error_description": "Missing required parameters",
    }


def test_token_unsupported_grant_400(client, oauth_client):
    response = client.post(
        TOKEN_URL, data={"grant_type": "password", "client_id": oauth_client["id"]}
    )

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"] == "unsupported_grant_type"


def test_token_unknown_client_401(client, oauth_client):
    response = exchange(client, {"id": "nope", "secret": "x"}, "some-code")

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["error"] == "invalid_client"


def test_token_wrong_secret_401(client, oauth_client):
    response = exchange(client, dict(oauth_client, secret="wrong"), "some-code")

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["error"] == "invalid_client"


@pytest.mark.parametrize("missing", ["code", "redirect_uri"])
def test_token_missing_code_or_redirect_400(client, oauth_client, missing):
    response = exchange(client, oauth_client, "some-code", **{missing: None})

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {
        "error": "invalid_request",
        "error_description": "Missing code or redirect_uri",
    }


def test_token_unknown_code_400(client, oauth_client):
    response = exchange(client, oauth_client, "not-a-code")

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"] == "invalid_grant"


def test_token_exchanges_code(client, oauth_client, session_headers):
    code = get_code(client, oauth_client, session_headers)

    response = exchange(client, oauth_client, code)

    assert response.status_code == status.HTTP_200_OK
    assert response.headers["cache-control"] == "no-store"
    body = response.json()
    assert body["token_type"] == "Bearer"
    assert body["expires_in"] == 3600
    assert body["scope"] == "openid profile email"
    assert body["access_token"] and body["refresh_token"]
    assert body["access_token"] != body["refresh_token"]


def test_token_code_is_single_use(client, oauth_client, session_headers):
    code = get_code(client, oauth_client, session_headers)

    first = exchange(client, oauth_client, code)
    second = exchange(client, oauth_client, code)

    assert first.status_code == status.HTTP_200_OK
    assert second.status_code == status.HTTP_400_BAD_REQUEST
    assert second.json()["error"] == "invalid_grant"


def test_token_redirect_uri_must_match(client, oauth_client, session_headers):
    code = get_code(client, oauth_client, session_headers)

    response = exchange(client, oauth_client, code, redirect_uri="http://localhost:3001/other")

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"] == "invalid_grant"


def test_token_public_client_can_omit_secret(client, oauth_client, session_headers):
    code = get_code(
        client,
        oauth_client,
        session_headers,
        code_challenge=pkce_challenge(VERIFIER, "S256"),
        code_challenge_method="S256",
    )

    response = exchange(client, oauth_client, code, client_secret=None, code_verifier=VERIFIER)

    assert response.status_code == status.HTTP_200_OK


@pytest.mark.parametrize("verifier", [None, "wrong-verifier"])
def test_token_pkce_verifier_must_match_400(client, oauth_client, session_headers, verifier):
    code = get_code(
        client,
        oauth_client,
        session_headers,
        code_challenge=pkce_challenge(VERIFIER, "S256"),
        code_challenge_method="S256",
    )

    response = exchange(client, oauth_client, code, code_verifier=verifier)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"] == "invalid_grant"


def test_token_refresh_missing_token_400(client, oauth_client):
    response = client.post(
        TOKEN_URL,
        data={"grant_type": "refresh_token", "client_id": oauth_client["id"], "client_secret": oauth_client["secret"]},
    )

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {"error": "invalid_request", "error_description": "Missing refresh_token"}


def test_token_refresh_rotates_tokens(client, oauth_client, session_headers):
    """
    Goal: A refresh token buys one new pair. The old access token and the old
    refresh token both stop working.
    """
    initial = issue_tokens(client, oauth_client, session_headers)
    refresh_data = {
        "grant_type": "refresh_token",
        "client_id": oauth_client["id"],
        "client_secret": oauth_client["secret"],
        "refresh_token": initial["refresh_token"],
    }

    refreshed = client.post(TOKEN_URL, data=refresh_data)
    assert refreshed.status_code == status.HTTP_200_OK
    body = refreshed.json()
    assert body["access_token"] != initial["access_token"]
    assert body["refresh_token"] != initial["refresh_token"]
    assert body["scope"] == initial["scope"]

    reused = client.post(TOKEN_URL, data=refresh_data)
    assert reused.status_code == status.HTTP_400_BAD_REQUEST
    assert reused.json()["error"] == "invalid_grant"

    old = client.get(USERINFO_URL, headers={"Authorization": f"Bearer {initial['access_token']}"})
    assert old.status_code == status.HTTP_401_UNAUTHORIZED
    new = client.get(USERINFO_URL, headers={"Authorization": f"Bearer {body['access_token']}"})
    assert new.status_code == status.HTTP_200_OK


def test_token_refresh_bound_to_client(client, settings, oauth_client, session_headers):
    tokens = issue_tokens(client, oauth_client, session_headers)
    other = seed_client(settings)

    response = client.post(
        TOKEN_URL,
        data={
            "grant_type": "refresh_token",
            "client_id": other["id"],
            "client_secret": other["secret"],
            "refresh_token": tokens["refresh_token"],
        },
    )

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"] == "invalid_grant"


# --- Userinfo ---


@pytest.mark.parametrize("headers", [{}, {"Authorization": "Basic dXNlcjpwYXNz"}, {"Authorization": "Bearer "}])
def test_userinfo_requires_bearer_401(client, headers):
    response = client.get(USERINFO_URL, headers=headers)

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json() == {
        "error": "invalid_request",
        "error_description": "Missing or invalid Authorization header",
    }


def test_userinfo_unknown_token_401(client):
    response = client.get(USERINFO_URL, headers={"Authorization": "Bearer not-a-token"})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json() == {
        "error": "invalid_token",
        "error_description": "Invalid or expired access token",
    }


def test_userinfo_expired_token_401(client, settings, oauth_client, user_id):
    async def seed(session):
        session.add(
            OAuthAccessToken(
                token="expired-token",
                client_id=oauth_client["id"],
                user_id=user_id,
                scopes="openid profile email",
                expires=utcnow() - timedelta(seconds=1),
            )
        )
        await session.commit()

    run_db(settings.DATABASE_URL, seed)

    response = client.get(USERINFO_URL, headers={"Authorization": "Bearer expired-token"})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["error"] == "invalid_token"


@pytest.mark.parametrize(
    "scope, expected",
    [
        (
            "openid profile email",
            {
                "name": "TestUser",
                "picture": "https://example.com/avatar.jpg",
                "email": "testuser@example.com",
                "email_verified": True,
            },
        ),
        ("openid", {}),
        ("openid profile", {"name": "TestUser", "picture": "https://example.com/avatar.jpg"}),
        ("openid email", {"email": "testuser@example.com", "email_verified": True}),
    ],
)
def test_userinfo_claims_follow_scopes(client, oauth_client, user_id, session_headers, scope, expected):
    tokens = issue_tokens(client, oauth_client, session_headers, scope=scope)

    response = client.get(USERINFO_URL, headers={"Authorization": f"Bearer {tokens['access_token']}"})

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == dict(expected, sub=str(user_id))


def test_userinfo_post_matches_get(client, oauth_client, session_headers):
    tokens = issue_tokens(client, oauth_client, session_headers)
    headers = {"Authorization": f"Bearer {tokens['access_token']}"}

    assert client.post(USERINFO_URL, headers=headers).json() == client.get(USERINFO_URL, headers=headers).json()


def test_userinfo_after_user_deleted_401(client, settings, oauth_client, user_id, session_headers):
    tokens = issue_tokens(client, oauth_client, session_headers)

    async def remove_user(session):
        await session.execute(delete(UserProfile).where(UserProfile.user_id == user_id))
        await session.execute(delete(User).where(User.id == user_id))
        await session.commit()

    run_db(settings.DATABASE_URL, remove_user)

    response = client.get(USERINFO_URL, headers={"Authorization": f"Bearer {tokens['access_token']}"})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["error"] == "invalid_token"


def test_userinfo_allows_cross_origin_callers(client, oauth_client, session_headers):
    tokens = issue_tokens(client, oauth_client, session_headers)

    response = client.get(
        USERINFO_URL,
        headers={"Authorization": f"Bearer {tokens['access_token']}", "Origin": "http://any-origin.com"},
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.headers["access-control-allow-origin"] in ("*", "http://any-origin.com")


# --- Sign-in to authorization, end to end ---


def test_verified_email_session_completes_authorization(client, settings, oauth_client, mocker, mock_sendgrid):
    """
    Goal: The session cookie set by /api/verify-email carries the browser
    through onboarding and authorize to a working access token.
    """
    mocker.patch(
        "auth_provider.features.mfa.services.verification.generate_code", return_value="123456"
    )
    client.post("/api/send-verification", json={"email": "new@example.com"})
    verified = client.post("/api/verify-email", json={"email": "new@example.com", "code": "123456"})
    assert verified.status_code == status.HTTP_200_OK
    assert settings.SESSION_COOKIE_NAME in client.cookies

    params = authorize_params(oauth_client)
    assert urlparse(authorize(client, params).headers["location"]).path == "/onboarding"

    onboarded = client.post("/api/onboarding", json={"f3Name": "Cheddar", "hospitalName": "John Smith"})
    assert onboarded.status_code == status.HTTP_200_OK

    code = location_query(authorize(client, params))["code"]
    tokens = exchange(client, oauth_client, code).json()

    info = client.get(USERINFO_URL, headers={"Authorization": f"Bearer {tokens['access_token']}"})
    assert info.json()["name"] == "Cheddar"
    assert info.json()["email"] == "new@example.com"
    assert info.json()["email_verified"] is True
