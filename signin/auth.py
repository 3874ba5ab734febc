"""
Session module: signed session cookies carrying the public identity.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request, status
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from signin.authenticator import CredentialAuthenticator
from signin.config import get_settings
from signin.models import PublicIdentity

logger = logging.getLogger(__name__)

SESSION_SALT = "signin-session"


def _get_serializer() -> URLSafeTimedSerializer:
    """Get the session cookie serializer."""
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt=SESSION_SALT)


def create_session_token(user: PublicIdentity) -> str:
    """Create a signed session token containing the public identity."""
    serializer = _get_serializer()
    return serializer.dumps({
        "id": user.id,
        "name": user.name,
        "email": user.email,
    })


def decode_session_token(token: str) -> PublicIdentity | None:
    """Decode and verify a session token. Returns None if invalid/expired."""
    settings = get_settings()
    serializer = _get_serializer()
    try:
        data: dict[str, Any] = serializer.loads(
            token,
            max_age=settings.session_max_age,
        )
        return PublicIdentity(
            id=data["id"],
            name=data["name"],
            email=data["email"],
        )
    except SignatureExpired:
        logger.info("Session token expired")
        return None
    except BadSignature:
        logger.warning("Invalid session token signature")
        return None
    except (KeyError, TypeError) as exc:
        logger.warning("Malformed session token: %s", exc)
        return None


def get_current_user_from_cookie(request: Request) -> PublicIdentity | None:
    """Extract and validate user from session cookie. Returns None if not authenticated."""
    settings = get_settings()
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        return None
    return decode_session_token(token)


async def require_auth(request: Request) -> PublicIdentity:
    """FastAPI dependency: require authenticated user or raise 401."""
    user = get_current_user_from_cookie(request)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return user


def get_authenticator(request: Request) -> CredentialAuthenticator:
    """FastAPI dependency: the authenticator built when the app was created."""
    return request.app.state.authenticator
