"""
Schema migrations for the identity store.

Files live in `migrations/` as `NNNN_name.up.sql` with an optional `NNNN_name.down.sql`.
Applied versions are recorded in `schema_migrations` with the checksum of the up file;
an edited migration that was already applied is refused. Every run holds a Postgres
advisory lock so concurrent starters (several replicas with DB_AUTO_MIGRATE=1) serialize.
"""

from __future__ import annotations

import hashlib
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from gateway.store.config import StoreConfig, build_postgres_dsn, load_store_config

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

# Advisory lock key shared by every migration run (bigint).
MIGRATION_LOCK_KEY = 604211337

_UP_SUFFIX = ".up.sql"


@dataclass(frozen=True)
class Migration:
    version: str
    name: str
    checksum: str
    up_sql: str
    down_sql: Optional[str]


def load_migrations(directory: Path = MIGRATIONS_DIR) -> List[Migration]:
    """Read every up file in `directory` (and its down pair), ordered by version."""
    if not directory.exists():
        return []
    out: List[Migration] = []
    for up in sorted(directory.glob(f"*{_UP_SUFFIX}")):
        name = up.name[: -len(_UP_SUFFIX)]
        raw = up.read_bytes()
        down = up.with_name(f"{name}.down.sql")
        out.append(
            Migration(
                version=name.split("_", 1)[0],
                name=name,
                checksum=hashlib.sha256(raw).hexdigest(),
                up_sql=raw.decode("utf-8"),
                down_sql=down.read_text(encoding="utf-8") if down.exists() else None,
            )
        )
    return out


def _connect(dsn: str):
    import psycopg

    return psycopg.connect(dsn)


@contextmanager
def _migration_session(dsn: str) -> Iterator[Tuple[object, Dict[str, str]]]:
    """
    Open a connection, take the migration lock and make sure the bookkeeping table exists.

    Yields (conn, {version: checksum}) for what is already applied. The lock is released
    on every exit path.
    """
    with _connect(dsn) as conn:
        conn.execute("SELECT pg_advisory_lock(%s);", (MIGRATION_LOCK_KEY,))
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_migrations (
                  version text PRIMARY KEY,
                  checksum text NOT NULL,
                  applied_at timestamptz NOT NULL DEFAULT now()
                );
                """)
            rows = conn.execute("SELECT version, checksum FROM schema_migrations;").fetchall()
            yield conn, {str(v): str(c) for v, c in rows}
        finally:
            conn.execute("SELECT pg_advisory_unlock(%s);", (MIGRATION_LOCK_KEY,))


def _pending(migs: Iterable[Migration], applied: Dict[str, str]) -> List[Migration]:
    pending: List[Migration] = []
    for m in migs:
        recorded = applied.get(m.version)
        if recorded is None:
            pending.append(m)
        elif recorded != m.checksum:
            raise RuntimeError(
                f"Migration checksum mismatch for {m.version}: db={recorded[:12]} file={m.checksum[:12]}"
            )
    return pending


def apply_migrations(*, dsn: str, migrations: Optional[Iterable[Migration]] = None) -> Tuple[int, List[str]]:
    """
    Apply pending migrations, one transaction each.

    Returns: (applied_count, applied_versions)
    """
    migs = list(migrations) if migrations is not None else load_migrations()
    done: List[str] = []
    with _migration_session(dsn) as (conn, applied):
        for m in _pending(migs, applied):
            with conn.transaction():
                conn.execute(m.up_sql)
                conn.execute(
                    "INSERT INTO schema_migrations(version, checksum) VALUES (%s, %s);",
                    (m.version, m.checksum),
                )
            logger.info("Applied migration %s", m.name)
            done.append(m.version)
    return len(done), done


def rollback_latest(*, dsn: str, migrations: Optional[Iterable[Migration]] = None) -> Optional[str]:
    """Undo the highest applied version. Returns it, or None when nothing is applied."""
    known = {m.version: m for m in (list(migrations) if migrations is not None else load_migrations())}
    with _migration_session(dsn) as (conn, applied):
        if not applied:
            return None
        version = max(applied)
        m = known.get(version)
        if m is None or not m.down_sql:
            raise RuntimeError(f"No down migration for {version}")
        with conn.transaction():
            conn.execute(m.down_sql)
            conn.execute("DELETE FROM schema_migrations WHERE version = %s;", (version,))
        logger.info("Rolled back migration %s", m.name)
        return version


def maybe_auto_migrate(cfg: Optional[StoreConfig] = None) -> Tuple[bool, str]:
    """
    Startup hook: migrate when DB_AUTO_MIGRATE=1 and Postgres is configured.

    Never raises; the outcome comes back as (did_attempt, message) for the caller to log.
    """
    cfg = cfg or load_store_config()
    if not cfg.db_auto_migrate:
        return False, "DB_AUTO_MIGRATE is disabled"
    dsn = build_postgres_dsn(cfg)
    if not dsn:
        return False, "Postgres DSN not configured"
    try:
        n, versions = apply_migrations(dsn=dsn)
    except Exception as e:
        return True, f"Migration failed: {e}"
    return True, f"Applied {n} migration(s): {', '.join(versions)}" if n else "No pending migrations"


def run_cli(direction: str) -> int:
    """`--migrate up|down`. Returns a process exit code."""
    if direction not in ("up", "down"):
        print("Invalid direction. Use 'up' or 'down'.")
        return 2
    dsn = build_postgres_dsn(load_store_config())
    if not dsn:
        print("Postgres not configured (set POSTGRES_DSN or POSTGRES_* env vars).")
        return 2

    if direction == "up":
        n, versions = apply_migrations(dsn=dsn)
        print(f"Applied {n} migration(s): {', '.join(versions)}" if n else "No pending migrations.")
    else:
        version = rollback_latest(dsn=dsn)
        print(f"Rolled back migration {version}." if version else "No applied migrations.")
    return 0
