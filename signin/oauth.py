"""
OAuth sign-in through Google and GitHub.

The redirect handshake is thin glue around the providers' authorize, token and
profile endpoints. Identities obtained here are put in the session only; they
are never written to the credentials account store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import urlencode

import httpx
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from signin.config import Settings
from signin.models import PublicIdentity

logger = logging.getLogger(__name__)

STATE_SALT = "signin-oauth-state"


class OAuthError(Exception):
    """The provider handshake could not be completed."""


def _google_identity(profile: dict[str, Any]) -> PublicIdentity:
    email = (profile.get("email") or "").lower()
    return PublicIdentity(
        id=f"google:{profile['sub']}",
        name=profile.get("name") or email.split("@", 1)[0],
        email=email,
    )


def _github_identity(profile: dict[str, Any]) -> PublicIdentity:
    email = (profile.get("email") or "").lower()
    return PublicIdentity(
        id=f"github:{profile['id']}",
        name=profile.get("name") or profile.get("login") or email.split("@", 1)[0],
        email=email,
    )


@dataclass(frozen=True)
class OAuthProvider:
    """Endpoints and credentials for one identity provider."""

    name: str
    label: str
    client_id: str
    client_secret: str
    authorize_url: str
    token_url: str
    userinfo_url: str
    scopes: list[str] = field(default_factory=list)
    to_identity: Callable[[dict[str, Any]], PublicIdentity] = _google_identity
    emails_url: str | None = None

    def authorization_url(self, redirect_uri: str, state: str) -> str:
        query = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        return f"{self.authorize_url}?{urlencode(query)}"


def build_providers(settings: Settings) -> dict[str, OAuthProvider]:
    """Providers that have a client id configured, keyed by name."""
    providers: dict[str, OAuthProvider] = {}

    if settings.google_client_id:
        providers["google"] = OAuthProvider(
            name="google",
            label="Google",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
            token_url="https://oauth2.googleapis.com/token",
            userinfo_url="https://openidconnect.googleapis.com/v1/userinfo",
            scopes=["openid", "email", "profile"],
            to_identity=_google_identity,
        )

    if settings.github_client_id:
        providers["github"] = OAuthProvider(
            name="github",
            label="GitHub",
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            authorize_url="https://github.com/login/oauth/authorize",
            token_url="https://github.com/login/oauth/access_token",
            userinfo_url="https://api.github.com/user",
            scopes=["read:user", "user:email"],
            to_identity=_github_identity,
            emails_url="https://api.github.com/user/emails",
        )

    return providers


def callback_url(settings: Settings, provider: OAuthProvider) -> str:
    return f"{settings.public_base_url.rstrip('/')}/api/auth/callback/{provider.name}"


def _state_serializer(settings: Settings) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.secret_key, salt=STATE_SALT)


def create_state(settings: Settings, provider: OAuthProvider) -> str:
    """Signed state binding the redirect to the provider it was issued for."""
    return _state_serializer(settings).dumps({"provider": provider.name})


def verify_state(settings: Settings, provider: OAuthProvider, state: str) -> None:
    """Raise OAuthError unless *state* was issued here for *provider* and is fresh."""
    try:
        data = _state_serializer(settings).loads(state, max_age=settings.oauth_state_max_age)
    except SignatureExpired as exc:
        raise OAuthError("Sign-in request expired") from exc
    except BadSignature as exc:
        raise OAuthError("Invalid sign-in state") from exc

    if not isinstance(data, dict) or data.get("provider") != provider.name:
        raise OAuthError("Invalid sign-in state")


def _json_object(provider: OAuthProvider, response: httpx.Response) -> dict[str, Any]:
    """Decode a provider response that must be a JSON object."""
    payload = response.json()
    if not isinstance(payload, dict):
        raise OAuthError(f"Unexpected response from {provider.label}")
    return payload


async def _primary_email(provider: OAuthProvider, client: httpx.AsyncClient, token: str) -> str:
    """GitHub hides private emails from the profile; ask the emails endpoint."""
    if provider.emails_url is None:
        return ""
    response = await client.get(
        provider.emails_url,
        headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
    )
    response.raise_for_status()
    entries = response.json()
    if not isinstance(entries, list):
        raise OAuthError(f"Unexpected response from {provider.label}")
    for entry in entries:
        if isinstance(entry, dict) and entry.get("primary") and entry.get("verified"):
            return entry.get("email") or ""
    return ""


async def fetch_identity(
    provider: OAuthProvider,
    code: str,
    redirect_uri: str,
    client: httpx.AsyncClient,
) -> PublicIdentity:
    """Exchange an authorization code and turn the provider profile into an identity."""
    try:
        token_response = await client.post(
            provider.token_url,
            data={
                "client_id": provider.client_id,
                "client_secret": provider.client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
            headers={"Accept": "application/json"},
        )
        token_response.raise_for_status()
        access_token = _json_object(provider, token_response).get("access_token")
        if not access_token:
            raise OAuthError(f"{provider.label} did not return an access token")

        profile_response = await client.get(
            provider.userinfo_url,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        )
        profile_response.raise_for_status()
        profile = _json_object(provider, profile_response)

        if not profile.get("email"):
            profile["email"] = await _primary_email(provider, client, access_token)
    except (httpx.HTTPError, ValueError) as exc:
        # ValueError covers bodies that are not JSON at all.
        logger.warning("OAuth exchange with %s failed: %s", provider.name, exc)
        raise OAuthError(f"Could not sign in with {provider.label}") from exc

    try:
        return provider.to_identity(profile)
    except (KeyError, ValueError) as exc:
        raise OAuthError(f"Unexpected profile from {provider.label}") from exc


async def get_oauth_client():
    """FastAPI dependency: HTTP client for provider calls."""
    async with httpx.AsyncClient(timeout=10.0) as client:
        yield client
