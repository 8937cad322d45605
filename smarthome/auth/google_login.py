"""Verify Google Sign-In ID tokens posted by the login page."""
import logging

from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

logger = logging.getLogger(__name__)


def verify_google_login(token: str, google_client_id: str) -> str | None:
    """
    Verify a Google ID token and return the signed-in email address.

    Returns None if the token is invalid, issued for another client, or
    the email address is not verified.
    """
    if not token or not google_client_id:
        return None
    try:
        info = id_token.verify_oauth2_token(token, google_requests.Request(), google_client_id)
    except ValueError as e:
        logger.warning(f"Google ID token rejected: {e}")
        return None

    if not info.get("email_verified"):
        logger.warning(f"Google account {info.get('email')} has no verified email")
        return None
    return info.get("email")
