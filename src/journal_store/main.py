"""Journal store: open the configured backend, migrate it, report its state."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import sys
from typing import Any

import click

from .adapters import PostgresAdapter, SQLiteAdapter, StoreAdapter
from .config import Config, SchemaMode
from .errors import StoreError
from .logging import setup_logging
from .registry import get_side_effects, registered_event_types
from .scoring import registered_assessments
from .selector import StoreHolder

logger = logging.getLogger(__name__)

_RELATIONAL_COUNTS = """
    SELECT
        (SELECT COUNT(*) FROM users) AS users,
        (SELECT COUNT(*) FROM daily_checkins) AS checkins,
        (SELECT COUNT(*) FROM health_events) AS health_events,
        (SELECT COUNT(*) FROM insights) AS insights
"""


async def collect_status(store: StoreAdapter) -> dict[str, Any]:
    status: dict[str, Any] = {"backend": store.backend, "schema_mode": SchemaMode.V1_ONLY.value}
    if isinstance(store, PostgresAdapter):
        status["schema_mode"] = store.schema_mode.value
        rows = await store.query(_RELATIONAL_COUNTS)
        status["counts"] = rows[0] if rows else {}
    elif isinstance(store, SQLiteAdapter):
        status["counts"] = await store.get_stats()
        status["added_columns"] = list(store.added_columns)
    return status


async def _run(config: Config) -> dict[str, Any]:
    holder = StoreHolder(config)
    try:
        store = await holder.start()
        return await collect_status(store)
    finally:
        await holder.close()


@click.command()
@click.option("--log-format", type=click.Choice(["json", "text"]), help="Override JOURNAL_LOG_FORMAT.")
@click.option("--skip-migrations", is_flag=True, help="Open the store without migrating it.")
def main(log_format: str | None, skip_migrations: bool) -> None:
    """Open the configured store, apply migrations and print its status."""
    config = Config.from_env()
    if skip_migrations:
        config = dataclasses.replace(config, auto_migrate=False)
    setup_logging(log_format or config.log_format)

    handler_counts = {et: len(get_side_effects(et)) for et in registered_event_types()}
    logger.info("Journal store starting")
    logger.info("Schema mode: %s", config.schema_mode.value)
    logger.info("Registered side effects (%d event types): %s", len(handler_counts), handler_counts)
    logger.info("Registered assessments: %s", registered_assessments())

    try:
        status = asyncio.run(_run(config))
    except StoreError as exc:
        logger.error("Store startup failed: %s", exc)
        sys.exit(1)

    logger.info("Store status: %s", status, extra={"journal_backend": status["backend"]})
    click.echo(json.dumps(status, default=str))


if __name__ == "__main__":
    main()
