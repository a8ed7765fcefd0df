"""Utility helpers for administrative tasks."""
from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from .backend import RowStore
from .catalog import ProductCatalog
from .config import Settings, get_settings
from .database import create_engine, create_session_factory, create_tables
from .local_store import LocalStore

logger = logging.getLogger(__name__)


async def init_database(
    db_engine: AsyncEngine | None = None, settings: Settings | None = None
) -> int:
    """Create the tables and seed the default catalog when it is empty.

    Returns the number of products in the catalog afterwards.
    """

    settings = settings or get_settings()
    engine_to_use = db_engine or create_engine(settings)
    try:
        await create_tables(engine_to_use)
        catalog = ProductCatalog(
            RowStore(create_session_factory(engine_to_use)),
            LocalStore(settings.local_store_path),
            placeholder_image_url=settings.placeholder_image_url,
            offline_fallback=False,
        )
        products = await catalog.load(seed=True)
    finally:
        if db_engine is None:
            await engine_to_use.dispose()
    logger.info("Database ready with %d products", len(products))
    return len(products)


def cli_init_database() -> None:
    """CLI wrapper executed from :mod:`python -m`."""

    logging.basicConfig(level=logging.INFO)
    asyncio.run(init_database())


if __name__ == "__main__":
    cli_init_database()
