"""In-memory token tables and their serialized form.

The TokenStore holds every credential the bridge has issued:

    auth_codes            code -> AuthorizationCode (memory only)
    access_tokens         token -> AccessToken
    refresh_tokens        token -> user
    local_auth_code       current local execution token
    next_local_auth_code  next local execution token

It enforces the table-level invariants (uniqueness checks, expiry purges,
per-user revocation) but performs no I/O and no locking; both belong to
the Authority, the only component allowed to mutate a store.
"""

from datetime import datetime

from smarthome.models import AccessToken, AuthorizationCode


class TokenStore:
    """Token tables of one bridge instance."""

    def __init__(self):
        self.auth_codes: dict[str, AuthorizationCode] = {}
        self.clear()

    def clear(self) -> None:
        """Drop all persisted tables. Authorization codes are kept."""
        self.access_tokens: dict[str, AccessToken] = {}
        self.refresh_tokens: dict[str, str] = {}
        self.local_auth_code = ""
        self.next_local_auth_code = ""

    # Serialization

    def to_blob(self) -> dict:
        return {
            "accessTokens": {t: a.to_blob() for t, a in self.access_tokens.items()},
            "refreshTokens": dict(self.refresh_tokens),
            "localAuthCode": self.local_auth_code,
            "nextLocalAuthCode": self.next_local_auth_code,
        }

    @classmethod
    def from_blob(cls, blob) -> "TokenStore":
        """Build a store from a persisted blob.

        Raises:
            ValueError: if the blob is not an object or a table is malformed.
        """
        if not isinstance(blob, dict):
            raise ValueError(f"auth blob must be an object, got {type(blob).__name__}")

        access = blob.get("accessTokens", {})
        refresh = blob.get("refreshTokens", {})
        if not isinstance(access, dict) or not isinstance(refresh, dict):
            raise ValueError("accessTokens and refreshTokens must be objects")

        store = cls()
        try:
            store.access_tokens = {
                token: AccessToken.from_blob(token, data) for token, data in access.items()
            }
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            raise ValueError(f"malformed access token entry: {e}") from e
        store.refresh_tokens = {str(t): str(u) for t, u in refresh.items()}
        store.local_auth_code = blob.get("localAuthCode") or ""
        store.next_local_auth_code = blob.get("nextLocalAuthCode") or ""
        return store

    # Lookups

    def is_in_use(self, token: str) -> bool:
        """Whether the string is already a live credential of any kind."""
        return (
            token in self.auth_codes
            or token in self.access_tokens
            or token in self.refresh_tokens
            or token == self.local_auth_code
            or token == self.next_local_auth_code
        )

    def is_local_token(self, token: str) -> bool:
        return bool(token) and token in (self.local_auth_code, self.next_local_auth_code)

    def has_refresh_tokens(self) -> bool:
        return bool(self.refresh_tokens)

    # Mutations

    def purge_expired_codes(self, now: datetime) -> int:
        expired = [c for c, info in self.auth_codes.items() if info.is_expired(now)]
        for code in expired:
            del self.auth_codes[code]
        return len(expired)

    def purge_expired_access_tokens(self, now: datetime) -> int:
        expired = [t for t, info in self.access_tokens.items() if info.is_expired(now)]
        for token in expired:
            del self.access_tokens[token]
        return len(expired)

    def prune_access_tokens(self, user: str, now: datetime) -> None:
        """Drop every access token of ``user`` and every expired token."""
        doomed = [
            t for t, info in self.access_tokens.items()
            if info.user == user or info.is_expired(now)
        ]
        for token in doomed:
            del self.access_tokens[token]

    def remove_tokens_for_user(self, user: str, now: datetime) -> None:
        self.prune_access_tokens(user, now)
        for token in [t for t, u in self.refresh_tokens.items() if u == user]:
            del self.refresh_tokens[token]
