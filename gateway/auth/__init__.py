"""
Authentication helpers for the login gateway.

Design goals:
- Provider registry (GitHub, Facebook, Google, Instagram) behind one profile shape.
- Identity derives only from the request's cookies and the store (no shared session state).
- Cookie-based session (HttpOnly access token + signed user id).
"""
