"""Durable storage for the auth blob.

Two interchangeable stores are provided. Both expose the same two calls:

    load() -> dict | None   the last saved blob, None when nothing is stored
    save(blob)              overwrite the stored blob

``load`` raises ``ValueError`` when the stored document is not valid JSON;
the Authority treats that the same as a missing blob. Write errors are
raised to the caller, which decides whether they are fatal.
"""

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from sqlalchemy.engine import Engine
from sqlmodel import Session

from smarthome.core import database
from smarthome.models import AuthState

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    def load(self) -> dict | None: ...

    def save(self, blob: dict) -> None: ...


class SqlBlobStore:
    """Store the blob in the auth_state table, one row per node."""

    def __init__(self, engine: Engine, node_id: str):
        self.engine = engine
        self.node_id = node_id

    def load(self) -> dict | None:
        with Session(self.engine) as session:
            row = session.get(AuthState, self.node_id)
            if row is None or not row.data:
                return None
            return json.loads(row.data)

    def save(self, blob: dict) -> None:
        with Session(self.engine) as session:
            row = session.get(AuthState, self.node_id)
            if row is None:
                row = AuthState(node_id=self.node_id)
            row.data = json.dumps(blob)
            row.updated_at = datetime.now(UTC)
            session.add(row)
            session.commit()


class JsonFileBlobStore:
    """Store the blob as a JSON file, e.g. ~/.smarthome/auth-<node>.json."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> dict | None:
        if not self.path.exists():
            return None
        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return None
        return json.loads(text)

    def save(self, blob: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(blob), encoding="utf-8")
        tmp.replace(self.path)
        logger.debug(f"Auth blob written to {self.path}")


def open_blob_store(node_id: str, auth_file: str = "") -> BlobStore:
    """Blob store for ``node_id``: the JSON file when given, else the database."""
    if auth_file:
        return JsonFileBlobStore(Path(auth_file).expanduser())

    return SqlBlobStore(database.engine, node_id)
