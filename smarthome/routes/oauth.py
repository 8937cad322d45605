"""OAuth2 authorization and token endpoints used for account linking."""
import base64
import binascii
import logging
from urllib.parse import unquote, urlencode

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from smarthome.auth import google_login
from smarthome.auth.authority import Authority
from smarthome.core.dependencies import get_authority
from smarthome.core.errors import InvalidClient, InvalidRedirect, MalformedRequest
from smarthome.routes.smarthome import templates

logger = logging.getLogger(__name__)

router = APIRouter(tags=["oauth"])


def own_uri(request: Request) -> str:
    """Origin this bridge is reached at, used for the redirect escape hatch."""
    return str(request.base_url).rstrip("/")


def basic_credentials(request: Request) -> tuple[str, str | None]:
    """Client id and secret from an ``Authorization: Basic`` header, if any."""
    scheme, _, encoded = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return "", None
    try:
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        logger.warning("Malformed Basic authorization header")
        return "", None
    client_id, sep, client_secret = decoded.partition(":")
    return unquote(client_id), unquote(client_secret) if sep else None


def _login_page(request: Request, authority: Authority, client_id: str, redirect_uri: str,
                state: str, error: str | None = None, status_code: int = 200) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "state": state,
            "use_google_login": authority.config.use_google_login,
            "google_client_id": authority.config.google_client_id,
            "error": error,
        },
        status_code=status_code,
    )


@router.get("/oauth", response_class=HTMLResponse)
async def authorize(
    request: Request,
    client_id: str = "",
    redirect_uri: str = "",
    state: str = "",
    response_type: str = "code",
    authority: Authority = Depends(get_authority),
):
    """
    Authorization endpoint.

    Shows the login page for the account linking flow. The client id and
    redirect URI are checked before anything is rendered.
    """
    if response_type != "code":
        raise MalformedRequest(f"Unsupported response_type {response_type}", error="unsupported_response_type")
    if not authority.is_client_valid(client_id):
        raise InvalidClient(f"Unknown client {client_id}")
    if not authority.is_valid_redirect_uri(redirect_uri, own_uri(request)):
        raise InvalidRedirect(f"Redirect URI {redirect_uri} is not allowed")

    return _login_page(request, authority, client_id, redirect_uri, state)


@router.post("/oauth")
async def login(
    request: Request,
    client_id: str = Form(...),
    redirect_uri: str = Form(...),
    state: str = Form(""),
    username: str = Form(""),
    password: str = Form(""),
    id_token: str = Form(""),
    authority: Authority = Depends(get_authority),
):
    """
    Authenticate the user and redirect back with an authorization code.

    In Google login mode the form carries a Google ID token whose email
    must be on the allow-list; otherwise username and password are checked.
    """
    if not authority.is_client_valid(client_id):
        raise InvalidClient(f"Unknown client {client_id}")
    if not authority.is_valid_redirect_uri(redirect_uri, own_uri(request)):
        raise InvalidRedirect(f"Redirect URI {redirect_uri} is not allowed")

    if authority.config.use_google_login:
        email = google_login.verify_google_login(id_token, authority.config.google_client_id)
        user = email if email and authority.is_google_email_valid(email) else None
    else:
        user = username if authority.is_authenticated(username, password) else None

    if user is None:
        logger.warning("Login failed")
        return _login_page(
            request, authority, client_id, redirect_uri, state,
            error="Invalid credentials", status_code=401,
        )

    code = authority.issue_auth_code(user)
    logger.info(f"User {user} signed in, redirecting with authorization code")

    separator = "&" if "?" in redirect_uri else "?"
    query = urlencode({"code": code, "state": state})
    return RedirectResponse(f"{redirect_uri}{separator}{query}", status_code=303)


@router.post("/token")
async def token(
    request: Request,
    grant_type: str = Form(""),
    code: str = Form(""),
    redirect_uri: str = Form(""),
    refresh_token: str = Form(""),
    client_id: str = Form(""),
    client_secret: str | None = Form(None),
    authority: Authority = Depends(get_authority),
):
    """
    Token endpoint.

    Exchanges an authorization code or a refresh token for tokens.
    Client credentials are read from the form, or from an HTTP Basic
    Authorization header when the form carries no client_id. A missing
    secret means only the client id is checked.
    Returns 401 for unknown clients and 400 {"error": "invalid_grant"} for
    unknown, expired or mismatched grants.
    """
    if not client_id:
        client_id, client_secret = basic_credentials(request)
    if not authority.is_client_valid(client_id, client_secret):
        raise InvalidClient(f"Unknown client {client_id}")

    if grant_type == "authorization_code":
        result = authority.exchange_code(code, redirect_uri, own_uri(request))
    elif grant_type == "refresh_token":
        result = authority.refresh(refresh_token)
    else:
        raise MalformedRequest(f"Unsupported grant_type {grant_type}", error="unsupported_grant_type")

    return JSONResponse(result, headers={"Cache-Control": "no-store", "Pragma": "no-cache"})
