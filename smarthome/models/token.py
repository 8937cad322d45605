"""Token records held by the token store.

Authorization codes live only in memory. Access tokens are persisted in
the auth blob with their expiry as epoch milliseconds, the same unit the
blob has always used.
"""

from dataclasses import dataclass
from datetime import UTC, datetime


def to_epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def from_epoch_ms(value: int | float) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


@dataclass
class AuthorizationCode:
    """A single-use code proving that a user approved account linking.

    Attributes:
        code: The opaque code string handed to the cloud service.
        user: The user who signed in on the authorization page.
        expires_at: After this instant the code can no longer be exchanged.
    """
    code: str
    user: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass
class AccessToken:
    """A bearer credential for the smarthome endpoints.

    Attributes:
        token: The opaque bearer string.
        user: Owner of the token.
        expires_at: Instant after which validation fails.
    """
    token: str
    user: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_blob(self) -> dict:
        return {"user": self.user, "expiresAt": to_epoch_ms(self.expires_at)}

    @classmethod
    def from_blob(cls, token: str, data: dict) -> "AccessToken":
        return cls(
            token=token,
            user=data["user"],
            expires_at=from_epoch_ms(data["expiresAt"]),
        )
