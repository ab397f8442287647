"""Token helpers for session ids and anonymous identities."""

from __future__ import annotations

import secrets


TOKEN_BYTES = 24


def generate_token() -> str:
    """Generate a URL-safe token used as a session id."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def generate_identity() -> str:
    """Generate an anonymous participant identity."""
    return f"anon-{secrets.token_urlsafe(TOKEN_BYTES // 2)}"
