from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest

import auth
import storage

DISCOVERY = {
    "authorization_endpoint": "https://id.example.com/authorize",
    "token_endpoint": "https://id.example.com/token",
    "userinfo_endpoint": "https://id.example.com/userinfo",
}


@pytest.fixture
def oidc(monkeypatch):
    monkeypatch.setattr(auth, "CLIENT_ID", "store-client")
    monkeypatch.setattr(auth, "CLIENT_SECRET", "s3cret")
    monkeypatch.setattr(auth, "discover", lambda issuer: DISCOVERY)
    monkeypatch.setattr(auth, "exchange_code", lambda code, redirect_uri: {"access_token": f"token-for-{code}"})
    monkeypatch.setattr(auth, "fetch_userinfo", lambda token: {
        "sub": "oidc-42", "email": "Parent@Example.com", "given_name": "Pat", "family_name": "Parent",
        "picture": "https://img.example.com/pat.png",
    })


def test_dev_login_creates_admin_session(client):
    response = client.get("/api/login", follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == "/"
    me = client.get("/api/auth/user").json()
    assert me["email"] == auth.DEV_USER_EMAIL
    assert me["is_admin"] is True


def test_auth_user_requires_session(client):
    response = client.get("/api/auth/user")
    assert response.status_code == 401
    assert response.json() == {"message": "Not authenticated"}


def test_logout_destroys_session(client, db):
    client.get("/api/login", follow_redirects=False)
    assert db["session"].count_documents({}) == 1
    response = client.get("/api/logout", follow_redirects=False)
    assert response.status_code == 302
    assert db["session"].count_documents({}) == 0
    assert client.get("/api/auth/user").status_code == 401


def test_tampered_cookie_is_anonymous(client, make_user):
    signed = auth.create_session(make_user()["id"])
    client.cookies.set(auth.SESSION_COOKIE, signed[:-2] + "xx")
    assert client.get("/api/auth/user").status_code == 401


def test_expired_session_is_anonymous(client, db, make_user):
    signed = auth.create_session(make_user()["id"])
    token = auth.unsign(signed)
    db["session"].update_one({"_id": token}, {"$set": {"expires_at": datetime.now(timezone.utc) - timedelta(minutes=1)}})
    client.cookies.set(auth.SESSION_COOKIE, signed)
    assert client.get("/api/auth/user").status_code == 401
    assert db["session"].count_documents({"_id": token}) == 0


def test_sign_roundtrip_rejects_foreign_signature():
    assert auth.unsign(auth.sign("abc")) == "abc"
    assert auth.unsign("abc.def") is None
    assert auth.unsign(None) is None


def test_oidc_login_redirects_to_provider(client, oidc):
    response = client.get("/api/login", follow_redirects=False)
    assert response.status_code == 302
    location = urlparse(response.headers["location"])
    assert location.netloc == "id.example.com"
    query = parse_qs(location.query)
    assert query["client_id"] == ["store-client"]
    assert query["scope"] == ["openid profile email"]
    assert query["redirect_uri"][0].endswith("/api/auth/callback")
    assert auth.unsign(client.cookies.get(auth.STATE_COOKIE)) == query["state"][0]


def test_oidc_callback_signs_user_in(client, oidc):
    login = client.get("/api/login", follow_redirects=False)
    state = parse_qs(urlparse(login.headers["location"]).query)["state"][0]

    response = client.get("/api/auth/callback", params={"code": "abc", "state": state}, follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == "/"
    me = client.get("/api/auth/user").json()
    assert me["email"] == "parent@example.com"
    assert me["name"] == "Pat Parent"
    assert me["sub"] == "oidc-42"
    assert me["is_admin"] is False


def test_oidc_callback_keeps_admin_flag(client, oidc, make_user):
    make_user(email="parent@example.com", is_admin=True)
    login = client.get("/api/login", follow_redirects=False)
    state = parse_qs(urlparse(login.headers["location"]).query)["state"][0]
    client.get("/api/auth/callback", params={"code": "abc", "state": state}, follow_redirects=False)
    assert client.get("/api/auth/user").json()["is_admin"] is True
    assert storage.get_user_by_email("parent@example.com")["avatar_url"] == "https://img.example.com/pat.png"


def test_oidc_callback_state_mismatch(client, oidc):
    client.get("/api/login", follow_redirects=False)
    response = client.get("/api/auth/callback", params={"code": "abc", "state": "forged"}, follow_redirects=False)
    assert response.headers["location"] == "/?error=auth_failed"
    assert client.get("/api/auth/user").status_code == 401


def test_oidc_callback_without_email_fails(client, oidc, monkeypatch):
    monkeypatch.setattr(auth, "fetch_userinfo", lambda token: {"sub": "no-email"})
    login = client.get("/api/login", follow_redirects=False)
    state = parse_qs(urlparse(login.headers["location"]).query)["state"][0]
    response = client.get("/api/auth/callback", params={"code": "abc", "state": state}, follow_redirects=False)
    assert response.headers["location"] == "/?error=auth_failed"


def test_callback_without_config_is_500(client):
    response = client.get("/api/auth/callback", params={"code": "abc", "state": "x"})
    assert response.status_code == 500
    assert response.json() == {"message": "Auth not configured"}


def test_health_endpoints(client):
    assert client.get("/").status_code == 200
    body = client.get("/test").json()
    assert body["backend"] == "✅ Running"
    assert body["auth"] == "development"
