"""Exceptions raised by the knowledge core.

An empty search result is not an error: retrieval returns an empty or fallback
grouping instead of raising.
"""


class ValidationError(ValueError):
    """Raised when a request is rejected before storage is touched (e.g., missing client_id)."""
    pass


class StorageUnavailable(RuntimeError):
    """Raised when the knowledge store cannot be reached or a read/write fails."""
    pass
