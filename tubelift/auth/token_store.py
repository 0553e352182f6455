from __future__ import annotations
"""
Token Store - durable credential persistence keyed by identity.

Two backends:
  FileTokenStore      one JSON file per identity under a store directory
  DatabaseTokenStore  the oauth_tokens table via the psycopg2 pool
"""

import json
import os
import re
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Optional

from tubelift.auth.token_model import OAuthToken
from tubelift.db_persistence import DatabasePersistence, init_db_pool
from tubelift.errors import StorageError
from tubelift.utils.log import log_event

_SAFE_IDENTITY = re.compile(r"[^A-Za-z0-9._-]")


class TokenStore(ABC):
    """Storage boundary used by the Authorizer"""

    @abstractmethod
    def load(self, identity: str) -> Optional[OAuthToken]:
        ...

    @abstractmethod
    def save(self, identity: str, token: OAuthToken) -> None:
        ...

    @abstractmethod
    def delete(self, identity: str) -> None:
        ...


class FileTokenStore(TokenStore):
    """Stores each identity's credential as <directory>/<identity>.json (mode 0600)"""

    def __init__(self, directory: str):
        self.directory = os.path.expanduser(directory)

    def _path(self, identity: str) -> str:
        if not identity:
            raise ValueError("identity must be a non-empty string")
        return os.path.join(self.directory, _SAFE_IDENTITY.sub("_", identity) + ".json")

    def load(self, identity: str) -> Optional[OAuthToken]:
        path = self._path(identity)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return OAuthToken.from_dict(json.load(f))
        except (OSError, ValueError, KeyError) as e:
            log_event("TOKEN-STORE", f"Failed to read credential for {identity}: {e}", "ERROR")
            raise StorageError(f"Cannot read credential for {identity}: {e}") from e

    def save(self, identity: str, token: OAuthToken) -> None:
        if not token.access_token:
            raise StorageError(f"Refusing to persist empty access_token for {identity}")
        path = self._path(identity)
        try:
            os.makedirs(self.directory, mode=0o700, exist_ok=True)
            # Write-then-rename so a crash never leaves a truncated file
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(token.to_dict(), f)
                os.chmod(tmp_path, 0o600)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            log_event("TOKEN-STORE", f"Failed to write credential for {identity}: {e}", "ERROR")
            raise StorageError(f"Cannot write credential for {identity}: {e}") from e
        log_event("TOKEN-STORE", f"Credential saved for {identity} (expiry: {token.expiry})")

    def delete(self, identity: str) -> None:
        path = self._path(identity)
        try:
            if os.path.exists(path):
                os.unlink(path)
                log_event("TOKEN-STORE", f"Credential deleted for {identity}")
        except OSError as e:
            raise StorageError(f"Cannot delete credential for {identity}: {e}") from e


class DatabaseTokenStore(TokenStore):
    """Postgres-backed store; each call borrows a pooled connection and returns it"""

    def __init__(self, persistence_factory=DatabasePersistence):
        self.persistence_factory = persistence_factory

    @contextmanager
    def _db_scope(self):
        db = self.persistence_factory()
        db.connect()
        try:
            yield db
        finally:
            db.disconnect()

    def load(self, identity: str) -> Optional[OAuthToken]:
        with self._db_scope() as db:
            return db.fetch_oauth_token(identity)

    def save(self, identity: str, token: OAuthToken) -> None:
        with self._db_scope() as db:
            db.upsert_oauth_token(identity, token)

    def delete(self, identity: str) -> None:
        with self._db_scope() as db:
            db.delete_oauth_token(identity)


def build_token_store(settings) -> TokenStore:
    """Postgres when DATABASE_URL is configured, files otherwise"""
    if settings.DATABASE_URL:
        init_db_pool(settings.DATABASE_URL)
        return DatabaseTokenStore()
    return FileTokenStore(settings.token_store_path)
