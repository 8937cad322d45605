"""OAuth2 authorization-code / refresh-token authority.

The Authority issues, validates and revokes every credential the bridge
accepts. It owns a TokenStore, serializes all access to it with a lock
and writes the persisted tables through to a blob store after every
mutation.

Grant flow:
    1. The user signs in on the authorization page; issue_auth_code()
       returns a code valid for ten minutes.
    2. The cloud service calls the token endpoint; exchange_code() consumes
       the code, revokes the user's previous session and returns a fresh
       access/refresh token pair.
    3. refresh() mints new access tokens from the refresh token.

Local execution uses a separate token pair that never expires by clock.
Presenting the ``next`` token promotes it to ``current`` and mints a new
``next``.
"""

import hmac
import logging
import secrets
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from urllib.parse import urlsplit

from smarthome.auth.store import TokenStore
from smarthome.core.config import AuthConfig
from smarthome.core.errors import (
    ExpiredGrant,
    InvalidGrant,
    InvalidRedirect,
    TokenGenerationError,
)
from smarthome.core.persistence import BlobStore
from smarthome.models import AccessToken, AuthorizationCode

logger = logging.getLogger(__name__)

LOCAL_EXECUTION_USER = "local execution"
AUTH_CODE_LIFETIME = timedelta(minutes=10)
TOKEN_BYTES = 32  # 256 bits
MAX_TOKEN_ATTEMPTS = 16

REDIRECT_URI_TEMPLATES = (
    "https://oauth-redirect.googleusercontent.com/r/{project_id}",
    "https://oauth-redirect-sandbox.googleusercontent.com/r/{project_id}",
)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _same_origin_ignoring_port(redirect_uri: str, own_uri: str) -> bool:
    """Whether ``redirect_uri`` has our scheme and host and lies under our path."""
    try:
        redirect = urlsplit(redirect_uri)
        own = urlsplit(own_uri)
    except ValueError:
        return False
    if not own.hostname or redirect.scheme != own.scheme or redirect.hostname != own.hostname:
        return False
    base_path = own.path.rstrip("/")
    return not base_path or redirect.path == base_path or redirect.path.startswith(base_path + "/")


class Authority:
    """Token authority for one bridge instance."""

    def __init__(
        self,
        config: AuthConfig,
        persistence: BlobStore | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.config = config
        self.persistence = persistence
        self.clock = clock
        self.store = TokenStore()
        self._lock = threading.RLock()
        self._ensure_local_tokens()

    # Persistence

    def load(self) -> None:
        """Load the token tables, resetting them if the blob is unusable."""
        with self._lock:
            blob = None
            if self.persistence is not None:
                try:
                    blob = self.persistence.load()
                except Exception as e:
                    logger.error(f"Failed to load auth storage: {e}")

            if blob is None:
                logger.info("No persisted auth data, starting with empty token tables")
                self.store = TokenStore()
            else:
                try:
                    self.store = TokenStore.from_blob(blob)
                except ValueError as e:
                    logger.error(f"Discarding invalid auth storage: {e}")
                    self.store = TokenStore()

            self._ensure_local_tokens()
            self._persist()

    def _persist(self) -> None:
        if self.persistence is None:
            return
        try:
            self.persistence.save(self.store.to_blob())
        except Exception as e:
            logger.error(f"Failed to write auth storage: {e}")

    # Token generation

    def _new_token(self) -> str:
        for _ in range(MAX_TOKEN_ATTEMPTS):
            token = secrets.token_urlsafe(TOKEN_BYTES)
            if not self.store.is_in_use(token):
                return token
        raise TokenGenerationError(
            f"No unique token after {MAX_TOKEN_ATTEMPTS} attempts"
        )

    def _ensure_local_tokens(self) -> None:
        if not self.store.local_auth_code:
            self.store.local_auth_code = self._new_token()
        if not self.store.next_local_auth_code:
            self.store.next_local_auth_code = self._new_token()

    def _mint_access_token(self, user: str) -> str:
        token = self._new_token()
        expires_at = self.clock() + timedelta(minutes=self.config.access_token_duration)
        self.store.access_tokens[token] = AccessToken(token, user, expires_at)
        return token

    def _mint_refresh_token(self, user: str) -> str:
        token = self._new_token()
        self.store.refresh_tokens[token] = user
        return token

    @property
    def expires_in(self) -> int:
        """Access token lifetime in seconds."""
        return 60 * self.config.access_token_duration

    # Authorization code grant

    def issue_auth_code(self, user: str) -> str:
        """Issue a single-use authorization code for ``user``."""
        with self._lock:
            now = self.clock()
            self.store.purge_expired_codes(now)
            code = self._new_token()
            self.store.auth_codes[code] = AuthorizationCode(
                code=code, user=user, expires_at=now + AUTH_CODE_LIFETIME
            )
            logger.debug(f"Issued authorization code for user {user}")
            return code

    def exchange_code(self, code: str, redirect_uri: str, own_uri: str | None = None) -> dict:
        """Exchange an authorization code for an access/refresh token pair.

        Any tokens previously issued to the code's user are revoked.

        Raises:
            InvalidGrant: the code is unknown.
            ExpiredGrant: the code has expired.
            InvalidRedirect: redirect_uri is not an accepted callback.
        """
        with self._lock:
            info = self.store.auth_codes.get(code)
            if info is None:
                raise InvalidGrant("Unknown authorization code")

            if info.is_expired(self.clock()):
                raise ExpiredGrant(
                    f"Authorization code for user {info.user} expired at {info.expires_at.isoformat()}"
                )

            if not self.is_valid_redirect_uri(redirect_uri, own_uri):
                raise InvalidRedirect(f"Redirect URI {redirect_uri} is not allowed")

            del self.store.auth_codes[code]
            self.store.remove_tokens_for_user(info.user, self.clock())
            refresh_token = self._mint_refresh_token(info.user)
            access_token = self._mint_access_token(info.user)
            self._persist()

            logger.info(f"Exchanged authorization code for user {info.user}")
            return {
                "token_type": "bearer",
                "access_token": access_token,
                "refresh_token": refresh_token,
                "expires_in": self.expires_in,
            }

    def refresh(self, refresh_token: str) -> dict:
        """Mint a new access token, invalidating the user's older ones.

        Raises:
            InvalidGrant: the refresh token is unknown. Nothing is changed.
        """
        with self._lock:
            user = self.store.refresh_tokens.get(refresh_token)
            if user is None:
                raise InvalidGrant("Unknown refresh token")

            self.store.prune_access_tokens(user, self.clock())
            access_token = self._mint_access_token(user)
            self._persist()

            logger.debug(f"Refreshed access token for user {user}")
            return {
                "token_type": "bearer",
                "access_token": access_token,
                "expires_in": self.expires_in,
            }

    # Validation

    def validate_access_token(self, token: str) -> str | None:
        """Return the user owning ``token``, or None if it is not valid."""
        with self._lock:
            if self.store.is_local_token(token):
                return LOCAL_EXECUTION_USER

            info = self.store.access_tokens.get(token)
            if info is None:
                logger.debug("Access token not found")
                return None
            if info.is_expired(self.clock()):
                logger.debug(f"Access token of user {info.user} expired at {info.expires_at.isoformat()}")
                return None
            return info.user

    def validate_local_access_token(self, token: str) -> bool:
        """Check a local execution token, rotating the pair on first use of ``next``."""
        with self._lock:
            if not token:
                return False
            if token == self.store.next_local_auth_code:
                self.store.local_auth_code = token
                self.store.next_local_auth_code = self._new_token()
                self._persist()
                logger.info("Local execution token rotated")
                return True
            return token == self.store.local_auth_code

    def authenticate(self, token: str) -> tuple[str | None, bool]:
        """Resolve a bearer token to ``(user, is_local_execution)``.

        The local-token check (and its rotation) and the user lookup run
        under one lock hold, so a concurrent rotation cannot fall between them.
        """
        with self._lock:
            is_local = self.validate_local_access_token(token)
            return self.validate_access_token(token), is_local

    @property
    def local_auth_code(self) -> str:
        """Token handed to the local execution app; promoted on first use."""
        with self._lock:
            return self.store.next_local_auth_code

    def is_user_logged_in(self) -> bool:
        """Whether an account is currently linked (a refresh token is live)."""
        with self._lock:
            return self.store.has_refresh_tokens()

    # Revocation and housekeeping

    def revoke_all_for_user(self, user: str) -> None:
        with self._lock:
            self.store.remove_tokens_for_user(user, self.clock())
            self._persist()
            logger.info(f"Revoked all tokens for user {user}")

    def purge_expired(self) -> dict:
        """Drop expired authorization codes and access tokens."""
        with self._lock:
            now = self.clock()
            stats = {
                "codes": self.store.purge_expired_codes(now),
                "access_tokens": self.store.purge_expired_access_tokens(now),
            }
            if stats["access_tokens"]:
                self._persist()
            return stats

    # Clients, redirects and users

    def is_client_valid(self, client_id: str, client_secret: str | None = None) -> bool:
        if client_id != self.config.client_id:
            logger.error(f"Client id does not match (got {client_id!r})")
            return False
        if client_secret is not None and client_secret != self.config.client_secret:
            logger.error("Client secret does not match")
            return False
        return True

    def is_valid_redirect_uri(self, redirect_uri: str, own_uri: str | None = None) -> bool:
        """Accept the Google callbacks for our project, or our own origin.

        The own-origin comparison ignores the port so that the check page
        works behind port forwarding or a proxy.
        """
        if not redirect_uri:
            return False
        if own_uri and _same_origin_ignoring_port(redirect_uri, own_uri):
            return True

        project_id = self.config.project_id
        if project_id and redirect_uri in (
            t.format(project_id=project_id) for t in REDIRECT_URI_TEMPLATES
        ):
            return True

        logger.error(f"Invalid redirect uri {redirect_uri}")
        return False

    def is_authenticated(self, username: str, password: str) -> bool:
        """Check local account credentials. Always False in Google login mode."""
        if self.config.use_google_login or not self.config.username:
            return False
        username_ok = hmac.compare_digest(username.encode(), self.config.username.encode())
        password_ok = hmac.compare_digest(password.encode(), self.config.password.encode())
        if not (username_ok and password_ok):
            logger.debug("Username or password does not match")
        return username_ok and password_ok

    def is_google_email_valid(self, email: str) -> bool:
        if not self.config.use_google_login:
            return False
        return email in self.config.allowed_emails
