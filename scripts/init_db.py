"""Database initialization helper.

Creates the configured database if it is missing and then every mapped table.
It validates the target database name before using it in SQL, because CREATE DATABASE
cannot be parameterized in PostgreSQL.
"""

import asyncio
import logging
import os
import re
import sys

from sqlalchemy import text
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import create_async_engine

# Add the project root to the path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

logger = logging.getLogger("scripts.init_db")

_DB_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")


def _validate_database_name(db_name: str) -> str:
  """Validate a PostgreSQL database name used as an identifier."""
  if not db_name:
    raise ValueError("Target database name is empty.")

  # Only allow strict identifier characters so the value is safe in identifier context.
  if not _DB_NAME_PATTERN.fullmatch(db_name):
    raise ValueError("Target database name contains invalid characters (allowed: A-Z, a-z, 0-9, _).")

  return db_name


async def create_database_if_not_exists(dsn: str) -> None:
  url = make_url(dsn)
  target_db = _validate_database_name(url.database or "")

  # Connect to the default 'postgres' database to check/create the target DB
  postgres_url = url.set(database="postgres")
  if postgres_url.drivername.startswith("postgresql") and "+asyncpg" not in postgres_url.drivername:
    postgres_url = postgres_url.set(drivername="postgresql+asyncpg")

  # CREATE DATABASE cannot run inside a transaction block.
  engine = create_async_engine(postgres_url, isolation_level="AUTOCOMMIT")
  try:
    async with engine.connect() as conn:
      result = await conn.execute(text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": target_db})
      if result.scalar() == 1:
        logger.info("Database '%s' already exists.", target_db)
      else:
        logger.info("Database '%s' does not exist. Creating...", target_db)
        await conn.execute(text(f'CREATE DATABASE "{target_db}"'))
  finally:
    await engine.dispose()


async def init_db() -> None:
  # Import after path setup so the script works when run directly.
  from coding_service.config import get_settings
  from coding_service.core.database import create_all_tables, get_db_engine
  from coding_service.core.logging import initialize_logging

  settings = get_settings()
  initialize_logging(settings)
  if not settings.pg_dsn:
    logger.error("CODING_PG_DSN is not set.")
    sys.exit(1)

  try:
    await create_database_if_not_exists(settings.pg_dsn)
    engine = get_db_engine()
    await create_all_tables(engine)
    await engine.dispose()
  except Exception:  # noqa: BLE001
    logger.error("Error initializing database", exc_info=True)
    sys.exit(1)
  logger.info("Database schema is up to date.")


if __name__ == "__main__":
  if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
  asyncio.run(init_db())
