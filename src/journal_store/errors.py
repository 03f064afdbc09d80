"""Domain errors raised by the persistence layer.

Transient failures (psycopg.OperationalError, psycopg_pool.PoolTimeout,
httpx.TransportError) are not wrapped; they reach the caller unchanged.
"""


class StoreError(Exception):
    """Base class for every error this package raises on purpose."""


class ValidationError(StoreError, ValueError):
    """Input rejected before any write happened."""


class NotFoundError(StoreError, LookupError):
    """A referenced row (assessment definition, medication, user) is missing."""


class ConflictError(StoreError):
    """Unique constraint hit; the row already exists."""


class ConfigurationError(StoreError, RuntimeError):
    """No backend resolves, or a mode-specific method was called in the wrong mode."""


class RemoteStoreError(StoreError):
    """The remote document API answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str, *, table: str = "") -> None:
        self.status_code = status_code
        self.table = table
        super().__init__(f"Remote store error ({status_code}) on {table or '?'}: {message}")
