"""HTTP service for proposing and approving loans, with Redis-backed idempotent requests."""

__version__ = "0.1.0"