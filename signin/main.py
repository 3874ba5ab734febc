"""
FastAPI application: credentials and OAuth sign-in, sessions, security headers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from urllib.parse import urlencode

import httpx
from fastapi import Depends, FastAPI, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from signin.auth import (
    create_session_token,
    get_authenticator,
    get_current_user_from_cookie,
    require_auth,
)
from signin.authenticator import CredentialAuthenticator
from signin.config import Settings, get_settings
from signin.db import Database, PostgresAccountStore, PostgresAttemptStore
from signin.errors import AuthRejected, StorageUnavailable, TemporarilyLocked
from signin.models import (
    CredentialsRequest,
    PublicIdentity,
    RejectionResponse,
    parse_is_register,
)
from signin.oauth import (
    OAuthError,
    OAuthProvider,
    build_providers,
    callback_url,
    create_state,
    fetch_identity,
    get_oauth_client,
    verify_state,
)
from signin.passwords import PasswordHasher
from signin.store import InMemoryAccountStore, InMemoryAttemptStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DASHBOARD_URL = "/dashboard"
SIGN_IN_URL = "/signIn"


# ---------- Security headers middleware ----------


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
        return response


# ---------- Helpers ----------


def build_authenticator(settings: Settings, db: Database | None = None) -> CredentialAuthenticator:
    """Construct the authenticator and its stores for the configured backend."""
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    if db is not None:
        return CredentialAuthenticator(
            accounts=PostgresAccountStore(db),
            attempts=PostgresAttemptStore(db),
            hasher=hasher,
        )
    return CredentialAuthenticator(
        accounts=InMemoryAccountStore(),
        attempts=InMemoryAttemptStore(),
        hasher=hasher,
    )


def _is_api_request(request: Request) -> bool:
    """Check if request expects JSON (API) or HTML (browser)."""
    accept = request.headers.get("accept", "")
    return "application/json" in accept or request.url.path.startswith("/api/")


def _rejection_headers(exc: AuthRejected) -> dict[str, str] | None:
    if isinstance(exc, TemporarilyLocked) and exc.retry_after:
        return {"Retry-After": str(exc.retry_after)}
    return None


def _set_session_cookie(response: Response, user: PublicIdentity, settings: Settings) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=create_session_token(user),
        max_age=settings.session_max_age,
        httponly=True,
        samesite="lax",
    )


# ---------- App setup ----------


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    db = Database(settings.db_url) if settings.storage_backend == "postgres" else None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        logger.info("Starting sign-in service (storage=%s)", settings.storage_backend)
        if db is not None:
            try:
                db.create_schema()
                logger.info("Database schema ready")
            except StorageUnavailable:
                logger.warning("Database unavailable - credentials sign-in will fail")

        logger.info("OAuth providers enabled: %s", ", ".join(providers) or "none")

        yield

        if db is not None:
            db.close()
        logger.info("Sign-in service stopped")

    app = FastAPI(
        title="Sign-in",
        description="Credentials and OAuth sign-in with login throttling",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )

    app.add_middleware(SecurityHeadersMiddleware)

    providers = build_providers(settings)
    app.state.settings = settings
    app.state.db = db
    app.state.authenticator = build_authenticator(settings, db)
    app.state.oauth_providers = providers

    templates = Jinja2Templates(directory=str(settings.templates_dir))

    def render_sign_in(
        request: Request,
        error: str | None = None,
        is_register: bool = False,
        email: str = "",
        status_code: int = 200,
        headers: dict[str, str] | None = None,
    ):
        return templates.TemplateResponse(
            request,
            "signin.html",
            {
                "error": error,
                "is_register": is_register,
                "email": email,
                "providers": list(providers.values()),
            },
            status_code=status_code,
            headers=headers,
        )

    def get_provider(name: str) -> OAuthProvider:
        provider = providers.get(name)
        if provider is None:
            raise HTTPException(status_code=404, detail="Unknown sign-in provider")
        return provider

    # ---------- Sign-in page ----------

    @app.get(SIGN_IN_URL, response_class=HTMLResponse)
    async def sign_in_page(request: Request, mode: str = "login", error: str | None = None):
        """Serve the sign-in form. Redirect to the dashboard if already authenticated."""
        user = get_current_user_from_cookie(request)
        if user is not None:
            return RedirectResponse(url=DASHBOARD_URL, status_code=302)
        return render_sign_in(request, error=error, is_register=mode == "register")

    @app.post(SIGN_IN_URL)
    async def sign_in(
        request: Request,
        email: str = Form(""),
        password: str = Form(""),
        isRegister: str = Form("false"),
        authenticator: CredentialAuthenticator = Depends(get_authenticator),
    ):
        """Register or sign in from the HTML form and set the session cookie."""
        is_register = parse_is_register(isRegister)
        try:
            user = await run_in_threadpool(authenticator.authenticate, email, password, is_register)
        except AuthRejected as exc:
            return render_sign_in(
                request,
                error=exc.message,
                is_register=is_register,
                email=email,
                status_code=exc.status_code,
                headers=_rejection_headers(exc),
            )

        response = RedirectResponse(url=DASHBOARD_URL, status_code=302)
        _set_session_cookie(response, user, settings)
        return response

    # ---------- Credentials API ----------

    @app.post("/api/auth/callback/credentials", response_model=PublicIdentity)
    async def credentials(
        body: CredentialsRequest,
        authenticator: CredentialAuthenticator = Depends(get_authenticator),
    ):
        """Register or sign in with a JSON body; rejections are rendered by the handler below."""
        user = await run_in_threadpool(
            authenticator.authenticate, body.email, body.password, body.is_register
        )
        response = JSONResponse(content=user.model_dump())
        _set_session_cookie(response, user, settings)
        return response

    @app.get("/api/auth/session", response_model=PublicIdentity)
    async def session(user: PublicIdentity = Depends(require_auth)):
        """Return the identity in the current session."""
        return user

    # ---------- OAuth ----------

    @app.get("/api/auth/signin/{provider_name}")
    async def oauth_sign_in(provider_name: str):
        """Redirect to the provider's consent page."""
        provider = get_provider(provider_name)
        url = provider.authorization_url(
            redirect_uri=callback_url(settings, provider),
            state=create_state(settings, provider),
        )
        return RedirectResponse(url=url, status_code=302)

    @app.get("/api/auth/callback/{provider_name}")
    async def oauth_callback(
        provider_name: str,
        code: str = "",
        state: str = "",
        error: str | None = None,
        client: httpx.AsyncClient = Depends(get_oauth_client),
    ):
        """Finish the provider handshake and start a session."""
        provider = get_provider(provider_name)
        try:
            if error:
                raise OAuthError(f"{provider.label} sign-in was cancelled")
            verify_state(settings, provider, state)
            if not code:
                raise OAuthError("Missing authorization code")
            user = await fetch_identity(provider, code, callback_url(settings, provider), client)
        except OAuthError as exc:
            logger.warning("OAuth sign-in via %s failed: %s", provider.name, exc)
            return RedirectResponse(
                url=f"{SIGN_IN_URL}?{urlencode({'error': str(exc)})}",
                status_code=302,
            )

        logger.info("Successful OAuth sign-in via %s: %s", provider.name, user.id)
        response = RedirectResponse(url=DASHBOARD_URL, status_code=302)
        _set_session_cookie(response, user, settings)
        return response

    # ---------- Session routes ----------

    @app.post("/signOut")
    async def sign_out():
        """Clear session cookie and redirect to the sign-in page."""
        response = RedirectResponse(url=SIGN_IN_URL, status_code=302)
        response.delete_cookie(key=settings.session_cookie_name)
        return response

    @app.get(DASHBOARD_URL, response_class=HTMLResponse)
    async def dashboard(request: Request, user: PublicIdentity = Depends(require_auth)):
        """Serve the landing page for authenticated users."""
        return templates.TemplateResponse(request, "dashboard.html", {"user": user})

    @app.get("/api/health")
    async def health():
        """Health check endpoint (no auth required)."""
        if db is None:
            return {"status": "healthy", "storage": "memory"}
        db_ok = db.test_connection()
        return {
            "status": "healthy" if db_ok else "degraded",
            "storage": "postgres",
            "database": "connected" if db_ok else "disconnected",
        }

    # ---------- Exception handlers ----------

    @app.exception_handler(AuthRejected)
    async def auth_rejected_handler(request: Request, exc: AuthRejected):
        """Render a rejection as a stable (kind, message) pair."""
        return JSONResponse(
            status_code=exc.status_code,
            content=RejectionResponse(error=exc.kind.value, message=exc.message).model_dump(),
            headers=_rejection_headers(exc),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions with appropriate response format."""
        if exc.status_code == 401:
            if _is_api_request(request):
                return JSONResponse(
                    status_code=401,
                    content={"detail": "Not authenticated"},
                )
            return RedirectResponse(url=SIGN_IN_URL, status_code=302)

        if exc.status_code >= 500:
            return JSONResponse(
                status_code=exc.status_code,
                content={"detail": "Internal server error"},
            )

        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
