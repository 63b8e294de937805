from __future__ import annotations


class AuthenticationError(Exception):
    """Raised when a request has no authenticated principal to scope records to."""
