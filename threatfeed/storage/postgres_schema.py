"""Postgres schema management for threat-feed ingestion.

Schema creation is idempotent (CREATE ... IF NOT EXISTS); there is no migration layer.
"""

from __future__ import annotations

from typing import Iterable, Optional


PROCESSING_JOBS_DDL = """
CREATE TABLE IF NOT EXISTS processing_jobs (
  id SERIAL PRIMARY KEY,
  file_name VARCHAR(255) NOT NULL,
  status VARCHAR(50) NOT NULL,
  progress INTEGER DEFAULT 0,
  processed INTEGER DEFAULT 0,
  skipped INTEGER DEFAULT 0,
  failed INTEGER DEFAULT 0,
  created_at TIMESTAMPTZ DEFAULT now(),
  updated_at TIMESTAMPTZ DEFAULT now()
);
"""


SCHEMA_STATEMENTS: list[str] = [
    "CREATE EXTENSION IF NOT EXISTS pg_trgm;",
    # Canonical mentions (one row per feed message uuid)
    """
    CREATE TABLE IF NOT EXISTS darkweb_mentions (
      id BIGSERIAL PRIMARY KEY,
      uuid TEXT NOT NULL UNIQUE,
      message TEXT NOT NULL DEFAULT '',
      category TEXT NOT NULL DEFAULT 'unknown',
      network TEXT NOT NULL DEFAULT 'unknown',
      timestamp TIMESTAMPTZ NOT NULL,
      metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_darkweb_mentions_timestamp ON darkweb_mentions (timestamp DESC);",
    "CREATE INDEX IF NOT EXISTS idx_darkweb_mentions_category ON darkweb_mentions (category);",
    "CREATE INDEX IF NOT EXISTS idx_darkweb_mentions_network ON darkweb_mentions (network);",
    "CREATE INDEX IF NOT EXISTS idx_darkweb_mentions_created_at ON darkweb_mentions (created_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_darkweb_mentions_message_trgm ON darkweb_mentions USING GIN (message gin_trgm_ops);",
    # Ingestion job tracking
    PROCESSING_JOBS_DDL,
    "CREATE INDEX IF NOT EXISTS idx_processing_jobs_created_at ON processing_jobs (created_at DESC);",
]


def ensure_postgres_schema(store, *, statements: Optional[Iterable[str]] = None) -> None:
    """Ensure Postgres schema exists."""
    stmts = list(statements) if statements is not None else SCHEMA_STATEMENTS
    with store.connection() as conn:
        with conn.cursor() as cur:
            for s in stmts:
                cur.execute(s)
