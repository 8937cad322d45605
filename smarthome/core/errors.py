"""
Error taxonomy for the bridge.

Error Hierarchy:
- BridgeError: base class; carries the HTTP status and the short error
  string rendered as {"error": ...} to the caller.
- InvalidGrant and its subclasses: unknown, expired or mismatched
  credentials. Never escalated past the dispatcher or token endpoint.
- RegistryFailure / TokenGenerationError: internal (5xx) failures.
- ReportingFailure: upstream state reporting; logged, never surfaced.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

DEVICE_OFFLINE = "deviceOffline"
PROTOCOL_ERROR = "protocolError"
FUNCTION_NOT_SUPPORTED = "functionNotSupported"

CORS_HEADERS = {"Access-Control-Allow-Headers": "Content-Type, Authorization"}


class BridgeError(Exception):
    """Base class for errors that map to an HTTP response."""
    status_code = 500
    error = "failed"

    def __init__(self, message: str = "", error: str | None = None):
        super().__init__(message or self.error)
        if error is not None:
            self.error = error


class Unauthenticated(BridgeError):
    """Missing or malformed bearer credentials (401)."""
    status_code = 401
    error = "missing inputs"


class InvalidGrant(BridgeError):
    """Unknown or unusable code, access token or refresh token (400)."""
    status_code = 400
    error = "invalid_grant"


class ExpiredGrant(InvalidGrant):
    """Authorization code past its expiry."""


class InvalidRedirect(InvalidGrant):
    """Redirect URI outside the allow-list."""


class InvalidClient(BridgeError):
    """OAuth client id or secret mismatch (401)."""
    status_code = 401
    error = "invalid_client"


class MalformedRequest(BridgeError):
    """Required request fields are missing (400)."""
    status_code = 400
    error = "missing inputs"


class RegistryFailure(BridgeError):
    """The device registry could not produce devices or states (500)."""
    status_code = 500
    error = "failed"


class TokenGenerationError(BridgeError):
    """Could not mint a unique token within the retry budget (500)."""
    status_code = 500
    error = "failed"


class ReportingFailure(Exception):
    """Upstream state report or sync request failed."""


async def bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
    """Render a BridgeError as a JSON error body."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(
        {"error": exc.error}, status_code=exc.status_code, headers=CORS_HEADERS
    )
