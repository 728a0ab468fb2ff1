"""psycopg pool shared by the Postgres repositories and job queue, plus the SQL migration runner."""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import structlog
from psycopg import Connection
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from site_spine.config import get_settings

logger = structlog.get_logger()

# Serializes migration runs from an API process and workers starting together
MIGRATION_LOCK_ID = 0x5173_5E1E

_pool: ConnectionPool | None = None


def get_pool() -> ConnectionPool:
    """
    Get or create the process-wide pool.

    Every worker slot can hold a connection while the poll loop claims
    with another, so the pool grows with ``worker_max_concurrent``.
    """
    global _pool
    if _pool is None:
        settings = get_settings()
        max_size = max(10, settings.worker_max_concurrent + 2)
        _pool = ConnectionPool(
            settings.database_url,
            min_size=1,
            max_size=max_size,
            kwargs={"row_factory": dict_row},
            open=True,
        )
        logger.info("db_pool_opened", max_size=max_size)
    return _pool


def close_pool() -> None:
    global _pool
    if _pool is not None:
        _pool.close()
        _pool = None


@contextmanager
def get_connection() -> Iterator[Connection]:
    with get_pool().connection() as conn:
        yield conn


# =============================================================================
# Migrations
# =============================================================================


def find_migrations_dir() -> Path:
    """The repository's ``migrations/`` directory, or one under the working directory."""
    candidates = [Path(__file__).parents[2] / "migrations", Path.cwd() / "migrations"]
    for path in candidates:
        if path.is_dir():
            return path
    raise FileNotFoundError(f"Migrations directory not found. Tried: {[str(p) for p in candidates]}")


def _ensure_ledger(conn: Connection) -> None:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS _migrations (
            id SERIAL PRIMARY KEY,
            filename TEXT NOT NULL UNIQUE,
            applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)


def pending_migrations(conn: Connection, migrations_dir: Path) -> list[Path]:
    """SQL files in ``migrations_dir`` not yet recorded in ``_migrations``, in name order."""
    _ensure_ledger(conn)
    applied = {row["filename"] for row in conn.execute("SELECT filename FROM _migrations")}
    return [path for path in sorted(migrations_dir.glob("*.sql")) if path.name not in applied]


def init_db(migrations_dir: Path | None = None) -> list[str]:
    """
    Apply pending migrations and return their filenames.

    Each file runs in its own transaction together with its ledger row, so
    a failing migration leaves neither partial schema nor a record behind
    while the files before it stay applied.
    """
    migrations_dir = migrations_dir or find_migrations_dir()
    applied_now: list[str] = []

    with get_connection() as conn:
        conn.autocommit = True
        conn.execute("SELECT pg_advisory_lock(%s)", (MIGRATION_LOCK_ID,))
        try:
            pending = pending_migrations(conn, migrations_dir)
            logger.info("migrations_pending", migrations_dir=str(migrations_dir), count=len(pending))

            for path in pending:
                with conn.transaction():
                    conn.execute(path.read_text(encoding="utf-8"))
                    conn.execute("INSERT INTO _migrations (filename) VALUES (%s)", (path.name,))
                applied_now.append(path.name)
                logger.info("migration_applied", filename=path.name)
        finally:
            conn.execute("SELECT pg_advisory_unlock(%s)", (MIGRATION_LOCK_ID,))
            conn.autocommit = False

    return applied_now
