"""
auth/errors.py -- Exceptions raised by the auth stores.

Token and credential failures are never raised: they collapse to a None
identity. Only storage failures travel up to the caller.
"""


class StoreError(Exception):
    """A user-store operation failed and any open transaction was rolled back."""


class RecordNotFound(StoreError):
    """update_or_fail matched no row."""
