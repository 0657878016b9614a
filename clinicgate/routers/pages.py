# clinicgate/routers/pages.py
# Minimal server-rendered pages that the authorization gate sends people to.
import html
from urllib.parse import urlsplit, urlunsplit

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

router = APIRouter(tags=["Pages"], include_in_schema=False)

DEFAULT_CALLBACK = "/dashboard"

ERROR_MESSAGES = {
    "invalid-token": "The verification link is missing its token.",
    "invalid-or-expired-token": "The verification link is invalid or has expired.",
    "verification-failed": "We could not verify your email address.",
}


def _page(title: str, body: str) -> HTMLResponse:
    return HTMLResponse(
        f"<!doctype html><html><head><title>{html.escape(title)}</title></head>"
        f"<body><h1>{html.escape(title)}</h1>{body}</body></html>"
    )


def _current_user_name(request: Request) -> str:
    user = getattr(request.state, "user", None)
    if user is None:
        return "guest"
    return user.name or user.email


@router.get("/")
def home(request: Request):
    return _page("Practice", f"<p>Welcome, {html.escape(_current_user_name(request))}.</p>")


def _same_origin_path(url: str, request: Request, default: str = DEFAULT_CALLBACK) -> str:
    """Path and query of ``url`` when it points at this site, else ``default``."""
    parts = urlsplit(url)
    if parts.scheme or parts.netloc:
        if parts.scheme not in ("http", "https") or parts.netloc != request.url.netloc:
            return default
    elif not parts.path.startswith("/") or url.startswith("//") or "\\" in url:
        return default
    return urlunsplit(("", "", parts.path or "/", parts.query, ""))


@router.get("/auth/signin")
def signin(request: Request, callbackUrl: str = DEFAULT_CALLBACK, verified: bool = False):
    callbackUrl = _same_origin_path(callbackUrl, request)
    notice = "<p>Your email is verified. Please sign in.</p>" if verified else ""
    return _page(
        "Sign in",
        f"{notice}<p>Sign in via <code>POST /api/auth/token</code>, then continue to "
        f"<a href=\"{html.escape(callbackUrl)}\">{html.escape(callbackUrl)}</a>.</p>",
    )


@router.get("/auth/verification-notice")
def verification_notice(email: str = ""):
    return _page(
        "Verify your email",
        f"<p>We sent a verification link to <strong>{html.escape(email)}</strong>. "
        "Follow it to activate your account.</p>",
    )


@router.get("/auth/error")
def auth_error(error: str = ""):
    return _page("Authentication error", f"<p>{html.escape(ERROR_MESSAGES.get(error, 'Something went wrong.'))}</p>")


@router.get("/unauthorized")
def unauthorized():
    return _page("Unauthorized", "<p>You do not have permission to view this page.</p>")


@router.get("/dashboard")
def dashboard(request: Request):
    return _page("Dashboard", f"<p>Signed in as {html.escape(_current_user_name(request))}.</p>")


@router.get("/admin")
def admin(request: Request):
    return _page("Administration", f"<p>Administrator: {html.escape(_current_user_name(request))}.</p>")
