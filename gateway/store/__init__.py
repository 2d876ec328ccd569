"""
Identity store: LocalUser rows and their provider identity links.

Postgres (psycopg) when configured; otherwise an in-process store for local development.
The Postgres driver is imported lazily so the gateway can start without it.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from gateway.store.base import IdentityStore
from gateway.store.config import build_postgres_dsn, load_store_config
from gateway.store.memory import InMemoryIdentityStore

logger = logging.getLogger(__name__)

_identity_store: Optional[IdentityStore] = None
_store_lock = threading.Lock()


def _build_store() -> IdentityStore:
    cfg = load_store_config()
    dsn = build_postgres_dsn(cfg)
    if not dsn:
        logger.warning("Postgres not configured (POSTGRES_DSN / POSTGRES_*); using in-memory identity store")
        return InMemoryIdentityStore()

    from gateway.store.postgres import PostgresIdentityStore

    logger.info(
        "Identity store: postgres host=%s db=%s pool=%d..%d",
        cfg.postgres_host or "(dsn)",
        cfg.postgres_db or "(dsn)",
        cfg.pool_min_size,
        cfg.pool_max_size,
    )
    return PostgresIdentityStore.from_dsn(dsn, cfg)


def get_identity_store() -> IdentityStore:
    """Get the process-wide identity store (singleton)."""
    global _identity_store
    if _identity_store is not None:
        return _identity_store
    with _store_lock:
        if _identity_store is None:
            _identity_store = _build_store()
        return _identity_store


def set_identity_store(store: Optional[IdentityStore]) -> None:
    """Set (or reset with None) the identity store instance (for testing)."""
    global _identity_store
    with _store_lock:
        _identity_store = store


def close_identity_store() -> None:
    """Close the store if one was built (releases the Postgres pool)."""
    global _identity_store
    with _store_lock:
        store, _identity_store = _identity_store, None
    if store is not None:
        store.close()


__all__ = [
    "IdentityStore",
    "InMemoryIdentityStore",
    "close_identity_store",
    "get_identity_store",
    "set_identity_store",
]
