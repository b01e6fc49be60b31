from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator, Optional

import psycopg
from psycopg.types.json import Json

STATE_SCHEMA_LOCK_ID = 8141202


def _dsn() -> Optional[str]:
    return os.getenv("POSTGRES_DSN") or os.getenv("DATABASE_URL")


def has_dsn() -> bool:
    return bool(_dsn())


@contextmanager
def db_conn() -> Iterator[psycopg.Connection]:
    dsn = _dsn()
    if not dsn:
        raise RuntimeError("POSTGRES_DSN/DATABASE_URL not configured.")
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        yield conn
    finally:
        conn.close()


def ensure_state_schema() -> None:
    """Create ``planning_state`` once; concurrent workers queue on an advisory lock."""
    if not has_dsn():
        return
    with db_conn() as conn:
        conn.execute("SELECT pg_advisory_lock(%s)", (STATE_SCHEMA_LOCK_ID,))
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS planning_state (
                    key TEXT PRIMARY KEY,
                    payload JSONB NOT NULL,
                    saved_at TIMESTAMPTZ DEFAULT NOW()
                )
                """
            )
        finally:
            conn.execute("SELECT pg_advisory_unlock(%s)", (STATE_SCHEMA_LOCK_ID,))


def upsert_state_doc(key: str, doc: dict) -> None:
    ensure_state_schema()
    with db_conn() as conn:
        conn.execute(
            """
            INSERT INTO planning_state (key, payload, saved_at)
            VALUES (%s, %s, NOW())
            ON CONFLICT (key) DO UPDATE SET payload = EXCLUDED.payload, saved_at = NOW()
            """,
            (key, Json(doc)),
        )


def fetch_state_doc(key: str) -> Optional[dict]:
    ensure_state_schema()
    with db_conn() as conn:
        row = conn.execute("SELECT payload FROM planning_state WHERE key = %s", (key,)).fetchone()
    if not row or not isinstance(row[0], dict):
        return None
    return row[0]


def delete_state_doc(key: str) -> None:
    ensure_state_schema()
    with db_conn() as conn:
        conn.execute("DELETE FROM planning_state WHERE key = %s", (key,))
