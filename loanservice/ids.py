"""Random public identifiers."""

import secrets

__all__ = ["new_id32"]


def new_id32() -> str:
    """Return exactly 32 lowercase hex characters (16 random bytes)."""
    return secrets.token_hex(16)