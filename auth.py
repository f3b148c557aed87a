import os
import hmac
import base64
import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from fastapi import Depends, HTTPException, Request, status
from dotenv import load_dotenv

import storage
from database import collection

load_dotenv()

logger = logging.getLogger(__name__)

SESSION_SECRET = os.getenv("SESSION_SECRET", "ingaa-baby-store-secret-key")
SESSION_COOKIE = "sid"
STATE_COOKIE = "oidc_state"
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE_DAYS", "30")) * 24 * 60 * 60
STATE_MAX_AGE = 10 * 60
SECURE_COOKIES = os.getenv("ENV", "development") == "production"

ISSUER_URL = os.getenv("ISSUER_URL", "https://replit.com/oidc")
CLIENT_ID = os.getenv("CLIENT_ID")
CLIENT_SECRET = os.getenv("CLIENT_SECRET")
OIDC_REDIRECT_URI = os.getenv("OIDC_REDIRECT_URI")

DEV_USER_EMAIL = "test@ingaa.com"


class AuthError(Exception):
    pass


def auth_configured() -> bool:
    return bool(CLIENT_ID and CLIENT_SECRET)


# Cookie signing

def _b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode()


def _signature(value: str) -> str:
    return _b64url_encode(hmac.new(SESSION_SECRET.encode(), value.encode(), hashlib.sha256).digest())


def sign(value: str) -> str:
    return f"{value}.{_signature(value)}"


def unsign(signed: Optional[str]) -> Optional[str]:
    if not signed or "." not in signed:
        return None
    value, sig = signed.rsplit(".", 1)
    if not hmac.compare_digest(_signature(value), sig):
        return None
    return value


# Sessions

def create_session(user_id: str) -> str:
    """Persist a new session and return the signed cookie value."""
    token = secrets.token_urlsafe(32)
    now = datetime.now(timezone.utc)
    collection("session").insert_one({
        "_id": token,
        "user_id": user_id,
        "created_at": now,
        "expires_at": now + timedelta(seconds=SESSION_MAX_AGE),
    })
    return sign(token)


def destroy_session(cookie_value: Optional[str]) -> None:
    token = unsign(cookie_value)
    if token:
        collection("session").delete_one({"_id": token})


def resolve_session(cookie_value: Optional[str]) -> Optional[Dict[str, Any]]:
    token = unsign(cookie_value)
    if not token:
        return None
    sess = collection("session").find_one({"_id": token})
    if not sess:
        return None
    expires = sess["expires_at"]
    if expires.tzinfo is None:
        expires = expires.replace(tzinfo=timezone.utc)
    if expires <= datetime.now(timezone.utc):
        collection("session").delete_one({"_id": token})
        return None
    return storage.get_user(sess["user_id"])


def set_session_cookie(response, cookie_value: str) -> None:
    response.set_cookie(
        SESSION_COOKIE, cookie_value, max_age=SESSION_MAX_AGE, httponly=True, samesite="lax", secure=SECURE_COOKIES
    )


# Dependencies

def get_current_user(request: Request) -> Optional[Dict[str, Any]]:
    return resolve_session(request.cookies.get(SESSION_COOKIE))


def require_user(user: Optional[Dict[str, Any]] = Depends(get_current_user)) -> Dict[str, Any]:
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user


def require_admin(user: Optional[Dict[str, Any]] = Depends(get_current_user)) -> Dict[str, Any]:
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    if not user.get("is_admin"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden - Admin access required")
    return user


# OIDC

@lru_cache(maxsize=4)
def discover(issuer: str) -> Dict[str, Any]:
    resp = httpx.get(f"{issuer.rstrip('/')}/.well-known/openid-configuration", timeout=10)
    resp.raise_for_status()
    return resp.json()


def redirect_uri_for(request: Request) -> str:
    return OIDC_REDIRECT_URI or str(request.url_for("auth_callback"))


def authorization_url(redirect_uri: str, state: str) -> str:
    meta = discover(ISSUER_URL)
    params = {
        "client_id": CLIENT_ID,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": "openid profile email",
        "state": state,
    }
    return f"{meta['authorization_endpoint']}?{urlencode(params)}"


def exchange_code(code: str, redirect_uri: str) -> Dict[str, Any]:
    meta = discover(ISSUER_URL)
    resp = httpx.post(
        meta["token_endpoint"],
        data={
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": CLIENT_ID,
            "client_secret": CLIENT_SECRET,
        },
        headers={"Accept": "application/json"},
        timeout=10,
    )
    resp.raise_for_status()
    tokens = resp.json()
    if "access_token" not in tokens:
        raise AuthError("Token response has no access_token")
    return tokens


def fetch_userinfo(access_token: str) -> Dict[str, Any]:
    meta = discover(ISSUER_URL)
    resp = httpx.get(meta["userinfo_endpoint"], headers={"Authorization": f"Bearer {access_token}"}, timeout=10)
    resp.raise_for_status()
    return resp.json()


def user_from_userinfo(info: Dict[str, Any]) -> Dict[str, Any]:
    email = info.get("email")
    if not email:
        raise AuthError("Identity provider returned no email")
    name = info.get("name") or " ".join(p for p in (info.get("given_name"), info.get("family_name")) if p) or None
    return storage.upsert_user(email=email, name=name, avatar_url=info.get("picture"), sub=info.get("sub"))


def dev_login() -> Dict[str, Any]:
    return storage.upsert_user(email=DEV_USER_EMAIL, name="Test User", sub="dev-user-123", is_admin=True)
