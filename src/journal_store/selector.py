"""Backend selection and store lifecycle.

The backend is chosen once from configuration: relational if a database
URL is set, otherwise the local file database if enabled, otherwise the
remote document API if credentials are present. Anything else is a
startup error.
"""

from __future__ import annotations

import logging
from enum import Enum

from psycopg_pool import AsyncConnectionPool

from .adapters import AirtableAdapter, PostgresAdapter, SQLiteAdapter, StoreAdapter
from .compat import CompatibilityService
from .config import Config
from .errors import ConfigurationError
from .event_store import EventStore
from .migrations import apply_relational_migrations

logger = logging.getLogger(__name__)


class Backend(str, Enum):
    RELATIONAL = "postgres"
    EMBEDDED = "sqlite"
    REMOTE = "airtable"


def select_backend(config: Config) -> Backend:
    if config.database_url:
        return Backend.RELATIONAL
    if config.use_local_database:
        return Backend.EMBEDDED
    if config.airtable_api_key and config.remote_base_url:
        return Backend.REMOTE
    raise ConfigurationError(
        "No storage backend configured: set DATABASE_URL, USE_LOCAL_DATABASE=true, "
        "or AIRTABLE_API_KEY with AIRTABLE_BASE_ID"
    )


async def _open_relational(config: Config) -> PostgresAdapter:
    pool = AsyncConnectionPool(
        config.database_url,
        min_size=config.pool_min_size,
        max_size=config.pool_max_size,
        timeout=config.pool_timeout_seconds,
        kwargs={"autocommit": True},
        open=False,
    )
    try:
        # Raises PoolTimeout here when the database is unreachable.
        await pool.open(wait=True, timeout=config.pool_timeout_seconds)
        if config.auto_migrate:
            async with pool.connection() as conn:
                await apply_relational_migrations(conn)
    except BaseException:
        await pool.close()
        raise

    event_store = EventStore(pool) if config.use_schema_v2 else None
    compat = CompatibilityService(pool, config.use_schema_v2, event_store)
    return PostgresAdapter(pool, compat)


async def open_store(config: Config) -> StoreAdapter:
    """Build the adapter for the configured backend, failing fast."""
    backend = select_backend(config)
    logger.info(
        "Opening %s store (schema mode %s)", backend.value, config.schema_mode.value,
        extra={"journal_backend": backend.value},
    )
    if backend is Backend.RELATIONAL:
        return await _open_relational(config)
    if backend is Backend.EMBEDDED:
        if config.use_schema_v2:
            logger.warning("USE_SCHEMA_V2 ignored: the local database only has the flat schema")
        return await SQLiteAdapter.open(config.local_db_path)
    if config.use_schema_v2:
        logger.warning("USE_SCHEMA_V2 ignored: the remote store only has the flat schema")
    return AirtableAdapter(config.airtable_api_key or "", config.remote_base_url or "")


class StoreHolder:
    """Owns the one store instance of a process.

    Application bootstrap calls ``start()`` once and ``close()`` on shutdown;
    tests call ``reset()`` between cases.
    """

    def __init__(self, config: Config | None = None) -> None:
        self._config = config
        self._store: StoreAdapter | None = None

    @property
    def config(self) -> Config:
        if self._config is None:
            self._config = Config.from_env()
        return self._config

    @property
    def started(self) -> bool:
        return self._store is not None

    @property
    def store(self) -> StoreAdapter:
        if self._store is None:
            raise ConfigurationError("Store not started; call start() first")
        return self._store

    async def start(self) -> StoreAdapter:
        if self._store is None:
            self._store = await open_store(self.config)
        return self._store

    async def close(self) -> None:
        store, self._store = self._store, None
        if store is not None:
            await store.close()

    async def reset(self, config: Config | None = None) -> None:
        await self.close()
        if config is not None:
            self._config = config
