"""Application configuration via environment variables."""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Settings loaded from environment variables or .env file."""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Application
    app_name: str = "Smart Home Bridge"
    debug: bool = False
    node_id: str = "smarthome-bridge"  # One token blob per node id

    # Server
    host: str = "0.0.0.0"
    port: int = 3001
    allowed_origins: str = "*"  # Comma-separated origins, or "*" for all
    http_path_prefix: str = ""
    local_path_prefix: str = "/local"
    local_execution: bool = True

    # Database
    database_url: str = "sqlite:///./smarthome_bridge.db"
    auth_file: str = ""  # Keep the token blob in this JSON file instead of the database

    # OAuth client registered in the Actions console
    client_id: str = ""
    client_secret: str = ""
    access_token_duration: int = 60  # minutes

    # Account login, either username/password or Google sign-in
    username: str = ""
    password: str = ""
    use_google_login: bool = False
    google_client_id: str = ""
    allowed_emails: str = ""  # Separated by ";" or ","

    # HomeGraph
    service_account_file: str = ""
    project_id: str = ""  # Read from the service account file when empty

    # Devices
    devices_file: str = ""

    # Housekeeping
    token_cleanup_interval_minutes: int = 30


settings = Settings()


def split_emails(emails: str | list[str] | tuple[str, ...] | None) -> tuple[str, ...]:
    """Normalize an allow-list given as a delimited string or a sequence."""
    if not emails:
        return ()
    if isinstance(emails, str):
        emails = re.split(r"[;,]", emails)
    return tuple(e.strip() for e in emails if e and e.strip())


def load_project_id(service_account_file: str) -> str:
    """Read the Google Cloud project id from a service account key file."""
    if not service_account_file:
        return ""
    try:
        data = json.loads(Path(service_account_file).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.error(f"Failed to read service account file {service_account_file}: {e}")
        return ""
    return data.get("project_id", "")


@dataclass(frozen=True)
class AuthConfig:
    """Structured, immutable view of the auth-related settings.

    Attributes:
        client_id: OAuth client id expected from the cloud service.
        client_secret: OAuth client secret expected from the cloud service.
        use_google_login: If True, users sign in with a Google account that
            must appear in allowed_emails instead of username/password.
        username: Local account name (password mode).
        password: Local account password (password mode).
        google_client_id: Client id that Google ID tokens must be issued for.
        allowed_emails: Google accounts allowed to link.
        access_token_duration: Access token lifetime in minutes.
        project_id: Actions project id used in the redirect URI allow-list.
    """
    client_id: str = ""
    client_secret: str = ""
    use_google_login: bool = False
    username: str = ""
    password: str = ""
    google_client_id: str = ""
    allowed_emails: tuple[str, ...] = ()
    access_token_duration: int = 60
    project_id: str = ""

    @classmethod
    def from_settings(cls, s: Settings) -> "AuthConfig":
        return cls(
            client_id=s.client_id,
            client_secret=s.client_secret,
            use_google_login=s.use_google_login,
            username=s.username,
            password=s.password,
            google_client_id=s.google_client_id,
            allowed_emails=split_emails(s.allowed_emails),
            access_token_duration=s.access_token_duration,
            project_id=s.project_id or load_project_id(s.service_account_file),
        )
