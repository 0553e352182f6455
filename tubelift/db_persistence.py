"""
Database Persistence Layer
Stores OAuth credentials in Postgres, one row per identity.

Expected schema:

    CREATE TABLE oauth_tokens (
        identity      TEXT PRIMARY KEY,
        access_token  TEXT NOT NULL,
        refresh_token TEXT,
        token_uri     TEXT NOT NULL,
        client_id     TEXT NOT NULL,
        client_secret TEXT,
        scopes        TEXT[] NOT NULL,
        expiry        TIMESTAMP,
        updated_at    TIMESTAMP NOT NULL DEFAULT NOW()
    );
"""

from typing import Optional

import psycopg2
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from tubelift.auth.token_model import OAuthToken
from tubelift.errors import StorageError
from tubelift.utils.log import log_event

_pool: Optional[ThreadedConnectionPool] = None


def init_db_pool(database_url: str, minconn: int = 1, maxconn: int = 5) -> None:
    """Create the process-wide connection pool (idempotent)"""
    global _pool
    if _pool is not None:
        return
    try:
        _pool = ThreadedConnectionPool(minconn, maxconn, database_url)
        log_event("DB", f"Connection pool ready (max {maxconn})", "SUCCESS")
    except psycopg2.Error as e:
        log_event("DB", f"Pool creation failed: {e}", "ERROR")
        raise StorageError(f"Database connection failed: {e}") from e


def close_db_pool() -> None:
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None
        log_event("DB", "Connection pool closed")


class DatabasePersistence:
    """Handles token rows for the Postgres token store"""

    def __init__(self, pool: Optional[ThreadedConnectionPool] = None):
        self.pool = pool
        self.connection = None
        self.cursor = None

    def connect(self) -> None:
        """
        Borrow a connection from the pool.
        Raises explicit error if no pool is available.
        """
        pool = self.pool or _pool
        if pool is None:
            raise StorageError("Database pool not initialized; call init_db_pool() first")
        try:
            self.connection = pool.getconn()
            self.cursor = self.connection.cursor(cursor_factory=RealDictCursor)
        except psycopg2.Error as e:
            log_event("DB", f"Connection failed: {e}", "ERROR")
            raise StorageError(f"Database connection failed: {e}") from e

    def disconnect(self) -> None:
        """Return the connection to the pool"""
        if self.cursor:
            self.cursor.close()
            self.cursor = None
        if self.connection:
            (self.pool or _pool).putconn(self.connection)
            self.connection = None

    def _require_connection(self) -> None:
        if not self.connection or not self.cursor:
            raise StorageError("Database connection not established")

    def upsert_oauth_token(self, identity: str, token: OAuthToken) -> None:
        """
        Store or update the credential for an identity.

        Args:
            identity: application/user key
            token: OAuthToken instance
        """
        if not token.access_token:
            log_event("DB", f"Refusing to persist empty access_token for {identity}", "ERROR")
            raise StorageError(f"Refusing to persist empty access_token for {identity}")

        self._require_connection()

        try:
            self.cursor.execute("""
                INSERT INTO oauth_tokens (
                    identity, access_token, refresh_token, token_uri,
                    client_id, client_secret, scopes, expiry, updated_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, NOW())
                ON CONFLICT (identity) DO UPDATE SET
                    access_token = EXCLUDED.access_token,
                    refresh_token = EXCLUDED.refresh_token,
                    token_uri = EXCLUDED.token_uri,
                    client_id = EXCLUDED.client_id,
                    client_secret = EXCLUDED.client_secret,
                    scopes = EXCLUDED.scopes,
                    expiry = EXCLUDED.expiry,
                    updated_at = NOW()
            """, (
                identity,
                token.access_token,
                token.refresh_token,
                token.token_uri,
                token.client_id,
                token.client_secret,
                token.scopes,
                token.expiry
            ))
            self.connection.commit()
            log_event("DB", f"Token updated for identity: {identity}")
        except psycopg2.Error as e:
            self.connection.rollback()
            log_event("DB", f"Failed to update token for {identity}: {e}", "ERROR")
            raise StorageError(f"Database error updating token: {e}") from e

    def fetch_oauth_token(self, identity: str) -> Optional[OAuthToken]:
        """
        Fetch the credential for an identity.

        Returns:
            OAuthToken instance, or None if not found
        """
        self._require_connection()

        try:
            self.cursor.execute("""
                SELECT
                    access_token, refresh_token, token_uri,
                    client_id, client_secret, scopes, expiry
                FROM oauth_tokens
                WHERE identity = %s
            """, (identity,))

            row = self.cursor.fetchone()
            if not row:
                return None

            return OAuthToken(
                access_token=row['access_token'],
                refresh_token=row['refresh_token'],
                token_uri=row['token_uri'],
                client_id=row['client_id'],
                client_secret=row['client_secret'] or '',
                scopes=row['scopes'],
                expiry=row['expiry']
            )
        except psycopg2.Error as e:
            log_event("DB", f"Failed to fetch token for {identity}: {e}", "ERROR")
            raise StorageError(f"Database error fetching token: {e}") from e

    def delete_oauth_token(self, identity: str) -> None:
        self._require_connection()

        try:
            self.cursor.execute("DELETE FROM oauth_tokens WHERE identity = %s", (identity,))
            self.connection.commit()
            log_event("DB", f"Token deleted for identity: {identity}")
        except psycopg2.Error as e:
            self.connection.rollback()
            log_event("DB", f"Failed to delete token for {identity}: {e}", "ERROR")
            raise StorageError(f"Database error deleting token: {e}") from e
