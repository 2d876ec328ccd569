from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class StoreConfig:
    db_auto_migrate: bool

    # Postgres connection (either dsn or parts)
    postgres_dsn: Optional[str]
    postgres_host: Optional[str]
    postgres_port: int
    postgres_db: Optional[str]
    postgres_user: Optional[str]
    postgres_password: Optional[str]

    # Process-wide connection pool bounds
    pool_min_size: int
    pool_max_size: int


def load_store_config() -> StoreConfig:
    min_size = max(0, _env_int("POSTGRES_POOL_MIN_SIZE", 1))
    max_size = max(1, _env_int("POSTGRES_POOL_MAX_SIZE", 10))
    if max_size < min_size:
        max_size = min_size

    return StoreConfig(
        db_auto_migrate=_env_bool("DB_AUTO_MIGRATE", False),
        postgres_dsn=(os.getenv("POSTGRES_DSN") or "").strip() or None,
        postgres_host=(os.getenv("POSTGRES_HOST") or "").strip() or None,
        postgres_port=_env_int("POSTGRES_PORT", 5432),
        postgres_db=(os.getenv("POSTGRES_DB") or "").strip() or None,
        postgres_user=(os.getenv("POSTGRES_USER") or "").strip() or None,
        postgres_password=(os.getenv("POSTGRES_PASSWORD") or "").strip() or None,
        pool_min_size=min_size,
        pool_max_size=max_size,
    )


def build_postgres_dsn(cfg: StoreConfig) -> Optional[str]:
    if cfg.postgres_dsn:
        return cfg.postgres_dsn
    if not (cfg.postgres_host and cfg.postgres_db and cfg.postgres_user and cfg.postgres_password):
        return None
    # psycopg's conninfo builder quotes/escapes special characters in passwords and other fields.
    from psycopg.conninfo import make_conninfo

    return make_conninfo(
        host=cfg.postgres_host,
        port=cfg.postgres_port,
        dbname=cfg.postgres_db,
        user=cfg.postgres_user,
        password=cfg.postgres_password,
    )
