from __future__ import annotations

import base64
import hashlib
import os


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def random_token(nbytes: int = 32) -> str:
    return b64url(os.urandom(nbytes))


def token_digest(token: str) -> str:
    """Short, non-reversible fingerprint of a token (safe to embed in a signed cookie)."""
    return b64url(hashlib.sha256((token or "").encode("utf-8")).digest())[:22]
