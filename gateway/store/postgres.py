"""
Postgres identity store.

All writes are single-statement upserts (INSERT ... ON CONFLICT); `reconcile` runs the
user upsert and the identity upsert inside one transaction so a failure between them
cannot leave a user row without its identity.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import psycopg
from psycopg import errors as pg_errors
from psycopg_pool import ConnectionPool

from gateway.auth.errors import DuplicateEmailError, ProfileIncompleteError, ReconciliationError
from gateway.auth.models import CanonicalProfile, LocalUser, OAuthTokens, ProviderIdentity
from gateway.store.config import StoreConfig

logger = logging.getLogger(__name__)

_USER_COLUMNS = "id, name, email, avatar_url, created_at, updated_at"

UPSERT_USER_SQL = """
    INSERT INTO users (name, email, avatar_url)
    VALUES (%s, %s, %s)
    ON CONFLICT (email) DO UPDATE
    SET name = COALESCE(NULLIF(EXCLUDED.name, ''), users.name),
        avatar_url = COALESCE(NULLIF(EXCLUDED.avatar_url, ''), users.avatar_url),
        updated_at = now()
    RETURNING id
"""

UPSERT_IDENTITY_SQL = """
    INSERT INTO user_oauth (user_id, provider, provider_id, access_token, refresh_token, token_expiry)
    VALUES (%s, %s, %s, %s, %s, %s)
    ON CONFLICT (provider, provider_id) DO UPDATE
    SET user_id = EXCLUDED.user_id,
        access_token = EXCLUDED.access_token,
        refresh_token = COALESCE(NULLIF(EXCLUDED.refresh_token, ''), user_oauth.refresh_token),
        token_expiry = EXCLUDED.token_expiry,
        updated_at = now()
"""

# Serializes first logins of the same email-less identity (transaction-scoped).
IDENTITY_LOCK_SQL = "SELECT pg_advisory_xact_lock(hashtext(%s))"


def _row_to_user(row: Any) -> LocalUser:
    user_id, name, email, avatar_url, created_at, updated_at = row
    return LocalUser(
        id=int(user_id),
        name=name or "",
        email=email,
        avatar_url=avatar_url or "",
        created_at=created_at,
        updated_at=updated_at,
    )


def upsert_user(conn: psycopg.Connection, profile: CanonicalProfile) -> int:
    if not profile.email:
        raise ProfileIncompleteError("Cannot upsert a user without email")
    row = conn.execute(UPSERT_USER_SQL, (profile.display_name, profile.email, profile.avatar_url)).fetchone()
    if not row:
        raise ReconciliationError("User upsert returned no id")
    return int(row[0])


def upsert_provider_identity(
    conn: psycopg.Connection, user_id: int, provider: str, provider_id: str, tokens: OAuthTokens
) -> None:
    conn.execute(
        UPSERT_IDENTITY_SQL,
        (user_id, provider, provider_id, tokens.access_token, tokens.refresh_token, tokens.expiry),
    )


def find_user_by_identity(conn: psycopg.Connection, provider: str, provider_id: str) -> Optional[int]:
    row = conn.execute(
        "SELECT user_id FROM user_oauth WHERE provider = %s AND provider_id = %s",
        (provider, provider_id),
    ).fetchone()
    return int(row[0]) if row else None


def _upsert_user_by_identity(conn: psycopg.Connection, provider: str, profile: CanonicalProfile) -> int:
    conn.execute(IDENTITY_LOCK_SQL, (f"{provider}:{profile.external_id}",))
    linked = find_user_by_identity(conn, provider, profile.external_id)
    if linked is not None:
        row = conn.execute(
            """
            UPDATE users
            SET name = COALESCE(NULLIF(%s, ''), name),
                avatar_url = COALESCE(NULLIF(%s, ''), avatar_url),
                updated_at = now()
            WHERE id = %s
            RETURNING id
            """,
            (profile.display_name, profile.avatar_url, linked),
        ).fetchone()
        if row:
            return int(row[0])
    row = conn.execute(
        "INSERT INTO users (name, email, avatar_url) VALUES (%s, NULL, %s) RETURNING id",
        (profile.display_name, profile.avatar_url),
    ).fetchone()
    if not row:
        raise ReconciliationError("User insert returned no id")
    return int(row[0])


class PostgresIdentityStore:
    """IdentityStore backed by a bounded, process-wide psycopg connection pool."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    @classmethod
    def from_dsn(cls, dsn: str, cfg: StoreConfig) -> "PostgresIdentityStore":
        pool = ConnectionPool(
            conninfo=dsn,
            min_size=cfg.pool_min_size,
            max_size=cfg.pool_max_size,
            open=True,
            timeout=10.0,
        )
        return cls(pool)

    def upsert_user(self, profile: CanonicalProfile) -> int:
        with self._pool.connection() as conn:
            return upsert_user(conn, profile)

    def upsert_provider_identity(self, user_id: int, provider: str, provider_id: str, tokens: OAuthTokens) -> None:
        with self._pool.connection() as conn:
            upsert_provider_identity(conn, user_id, provider, provider_id, tokens)

    def find_user_by_identity(self, provider: str, provider_id: str) -> Optional[int]:
        with self._pool.connection() as conn:
            return find_user_by_identity(conn, provider, provider_id)

    def reconcile(self, provider: str, profile: CanonicalProfile, tokens: OAuthTokens) -> int:
        try:
            with self._pool.connection() as conn:
                with conn.transaction():
                    if profile.email:
                        user_id = upsert_user(conn, profile)
                    else:
                        user_id = _upsert_user_by_identity(conn, provider, profile)
                    upsert_provider_identity(conn, user_id, provider, profile.external_id, tokens)
                    return user_id
        except psycopg.Error as e:
            raise ReconciliationError(f"Identity store failure ({type(e).__name__})") from e

    def list_identities(self, user_id: int) -> List[ProviderIdentity]:
        with self._pool.connection() as conn:
            rows = conn.execute(
                """
                SELECT user_id, provider, provider_id, access_token, refresh_token, token_expiry
                FROM user_oauth
                WHERE user_id = %s
                ORDER BY provider
                """,
                (user_id,),
            ).fetchall()
        return [
            ProviderIdentity(
                user_id=int(r[0]),
                provider=r[1],
                provider_id=r[2],
                access_token=r[3] or "",
                refresh_token=r[4] or "",
                token_expiry=r[5],
            )
            for r in rows
        ]

    def list_users(self) -> List[LocalUser]:
        with self._pool.connection() as conn:
            rows = conn.execute(f"SELECT {_USER_COLUMNS} FROM users ORDER BY id").fetchall()
        return [_row_to_user(r) for r in rows]

    def get_user(self, user_id: int) -> Optional[LocalUser]:
        with self._pool.connection() as conn:
            row = conn.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s", (user_id,)).fetchone()
        return _row_to_user(row) if row else None

    def create_user(self, *, name: str, email: Optional[str], avatar_url: str = "") -> LocalUser:
        try:
            with self._pool.connection() as conn:
                row = conn.execute(
                    f"INSERT INTO users (name, email, avatar_url) VALUES (%s, %s, %s) RETURNING {_USER_COLUMNS}",
                    (name, email or None, avatar_url),
                ).fetchone()
        except pg_errors.UniqueViolation as e:
            raise DuplicateEmailError("Email already registered") from e
        if not row:
            raise ValueError("Failed to create user")
        return _row_to_user(row)

    def update_user(
        self,
        user_id: int,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> Optional[LocalUser]:
        sets: List[str] = []
        params: List[Any] = []
        if name is not None:
            sets.append("name = %s")
            params.append(name)
        if email is not None:
            sets.append("email = %s")
            params.append(email or None)
        if avatar_url is not None:
            sets.append("avatar_url = %s")
            params.append(avatar_url)
        sets.append("updated_at = now()")
        params.append(user_id)
        try:
            with self._pool.connection() as conn:
                row = conn.execute(
                    f"UPDATE users SET {', '.join(sets)} WHERE id = %s RETURNING {_USER_COLUMNS}",
                    tuple(params),
                ).fetchone()
        except pg_errors.UniqueViolation as e:
            raise DuplicateEmailError("Email already registered") from e
        return _row_to_user(row) if row else None

    def delete_user(self, user_id: int) -> bool:
        # user_oauth rows go with the user (ON DELETE CASCADE).
        with self._pool.connection() as conn:
            cur = conn.execute("DELETE FROM users WHERE id = %s", (user_id,))
            return (cur.rowcount or 0) > 0

    def close(self) -> None:
        self._pool.close()
