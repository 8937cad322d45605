"""Persisted auth blob for one bridge instance.

This module defines the AuthState model which stores the complete token
state of a bridge (access tokens, refresh tokens and the local execution
token pair) as a single JSON document. The row is overwritten wholesale
on every mutation.
"""

from datetime import UTC, datetime

from sqlmodel import Field, SQLModel


class AuthState(SQLModel, table=True):
    """Serialized token tables of one bridge node.

    Attributes:
        node_id: Identifier of the bridge instance owning the blob.
        data: JSON document with accessTokens, refreshTokens,
            localAuthCode and nextLocalAuthCode.
        updated_at: When the blob was last written.
    """
    node_id: str = Field(primary_key=True)
    data: str = Field(default="")
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
