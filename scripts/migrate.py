"""
Apply the raw SQL schema migrations for the negotiation service.

Every ``migrations/NNN_*.sql`` file is applied once, in filename order. The
names of applied files are kept in ``_migrations_applied`` so the script can
be rerun safely on every deploy.

Usage::

    python -m scripts.migrate
    python -m scripts.migrate --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from src.core.config import settings  # noqa: E402

logger = logging.getLogger("scripts.migrate")

MIGRATIONS_DIR = Path(_project_root) / "migrations"

_CREATE_TRACKING_TABLE = """
CREATE TABLE IF NOT EXISTS _migrations_applied (
    filename   TEXT PRIMARY KEY,
    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

_SELECT_APPLIED = "SELECT filename FROM _migrations_applied;"

_RECORD_APPLIED = "INSERT INTO _migrations_applied (filename) VALUES (:filename);"


def discover_migrations(directory: Path = MIGRATIONS_DIR) -> list[Path]:
    """Return the ``.sql`` files in *directory*, oldest first."""
    return sorted(p for p in directory.glob("*.sql") if p.is_file())


def pending_migrations(files: list[Path], applied: set[str]) -> list[Path]:
    return [f for f in files if f.name not in applied]


async def run_migrations(dry_run: bool = False) -> int:
    """Apply pending migrations. Returns how many were (or would be) applied."""
    files = discover_migrations()
    if not files:
        logger.warning("No SQL files found in %s", MIGRATIONS_DIR)
        return 0

    engine = create_async_engine(settings.database_url)
    try:
        async with engine.begin() as conn:
            await conn.execute(text(_CREATE_TRACKING_TABLE))
            result = await conn.execute(text(_SELECT_APPLIED))
            applied = {row[0] for row in result}

            todo = pending_migrations(files, applied)
            for sql_file in files:
                if sql_file not in todo:
                    logger.info("SKIP  %s (already applied)", sql_file.name)

            for sql_file in todo:
                if dry_run:
                    logger.info("WOULD APPLY %s", sql_file.name)
                    continue
                logger.info("APPLY %s", sql_file.name)
                # Multi-statement files need asyncpg's simple query protocol,
                # which text() does not use.
                raw_conn = await conn.get_raw_connection()
                await raw_conn.driver_connection.execute(sql_file.read_text())
                await conn.execute(text(_RECORD_APPLIED), {"filename": sql_file.name})
    finally:
        await engine.dispose()

    logger.info(
        "Migrations done: %d pending, %d already applied, %d total",
        len(todo), len(files) - len(todo), len(files),
    )
    return len(todo)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--dry-run", action="store_true", help="list pending files only")
    args = parser.parse_args(argv)

    logging.basicConfig(level=settings.log_level, format="%(levelname)s %(message)s")
    asyncio.run(run_migrations(dry_run=args.dry_run))


if __name__ == "__main__":
    main()
