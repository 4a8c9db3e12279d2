"""PostgreSQL connections and schema bootstrap.

Every connection uses RealDictCursor; FunnelStore reads columns by name.
"""

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import psycopg2
from psycopg2.extras import RealDictCursor

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"


def get_connection_string() -> str:
    return os.getenv("DATABASE_URL", "postgresql://localhost:5432/funnelforge")


def connect():
    """Open a new connection with dict rows. The caller closes it."""
    return psycopg2.connect(get_connection_string(), cursor_factory=RealDictCursor)


@contextmanager
def get_connection() -> Generator:
    """Connection scoped to a block: commit on success, rollback on error."""
    conn = connect()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db() -> None:
    """Apply schema.sql. Statements are idempotent (IF NOT EXISTS)."""
    schema_sql = SCHEMA_PATH.read_text(encoding="utf-8")
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(schema_sql)
    logger.info(f"Applied schema from {SCHEMA_PATH.name}")
