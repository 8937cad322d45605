"""HomeGraph API client using service account credentials."""
import logging

from google.oauth2 import service_account
from googleapiclient.discovery import build

from smarthome.core.config import settings

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/homegraph"]

# Cached credentials and service
_credentials: service_account.Credentials | None = None
_credentials_file: str | None = None
_service = None


def get_credentials(service_account_file: str | None = None) -> service_account.Credentials | None:
    """Load service account credentials from the configured key file."""
    global _credentials, _credentials_file, _service

    key_file = service_account_file or settings.service_account_file
    if not key_file:
        logger.warning("No SERVICE_ACCOUNT_FILE configured")
        return None

    if _credentials and _credentials_file == key_file:
        return _credentials

    try:
        _credentials = service_account.Credentials.from_service_account_file(
            key_file, scopes=SCOPES
        )
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load service account credentials: {e}")
        _credentials = None
        return None

    _credentials_file = key_file
    _service = None
    return _credentials


def get_homegraph_service(service_account_file: str | None = None):
    """Build authenticated HomeGraph API service."""
    global _service

    creds = get_credentials(service_account_file)
    if not creds:
        raise ValueError(
            "No valid service account. Set SERVICE_ACCOUNT_FILE to the JSON key of the Actions project."
        )

    if _service is not None:
        return _service

    _service = build("homegraph", "v1", credentials=creds, cache_discovery=False)
    return _service


def has_service_account(service_account_file: str | None = None) -> bool:
    """Check if a service account key is configured."""
    return bool(service_account_file or settings.service_account_file)
