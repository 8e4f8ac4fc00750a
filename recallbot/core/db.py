"""psycopg connection helpers and schema bootstrap."""

from __future__ import annotations

import logging
import time
from pathlib import Path

import psycopg

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parents[1] / "schema.sql"


def connect(database_url: str) -> psycopg.Connection:
    """Open an autocommit connection.

    Each statement commits on its own so the unique index on
    ``interactions.provider_message_id`` arbitrates concurrent inserts.
    """

    return psycopg.connect(database_url, autocommit=True)


def ensure_schema(conn: psycopg.Connection, schema_sql_path: Path = SCHEMA_PATH) -> None:
    """Create the intake tables if they do not exist.

    The schema only uses ``IF NOT EXISTS`` clauses, so calling this on every
    start-up is safe.
    """

    with conn.cursor() as cur:
        cur.execute(schema_sql_path.read_text(encoding="utf-8"))
    if not conn.autocommit:
        conn.commit()


def _safe_url(url: str) -> str:
    if "@" not in url:
        return url
    scheme, _, rest = url.partition("://")
    return f"{scheme}://***@{rest.split('@', 1)[1]}"


def wait_for_database(
    database_url: str, max_attempts: int = 10, delay: float = 3.0
) -> None:
    """Attempt to establish a database connection, retrying if necessary."""

    safe_url = _safe_url(database_url)
    for attempt in range(1, max_attempts + 1):
        try:
            with psycopg.connect(database_url, connect_timeout=5) as connection:
                with connection.cursor() as cursor:
                    cursor.execute("SELECT 1")
        except Exception as exc:  # pragma: no cover - depends on external DB
            logger.info(
                "Database not ready (attempt %d/%d): %s; retrying in %.1fs",
                attempt,
                max_attempts,
                exc,
                delay,
            )
            if attempt >= max_attempts:
                raise RuntimeError("Database did not become ready in time") from exc
            time.sleep(delay)
            continue

        logger.info("Database connection established after %d attempt(s): %s", attempt, safe_url)
        return
