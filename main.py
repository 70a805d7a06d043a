#!/usr/bin/env python3
"""Threat-feed file ingestion entrypoints.

- `process_uploaded_file(event, context)`: storage-trigger handler (one call per
  uploaded feed file).
- CLI:
    python main.py BUCKET NAME      ingest one stored file
    python main.py --job ID         show a processing job
    python main.py --init-schema    create tables and indexes
"""

from __future__ import annotations

import argparse
import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from threatfeed.contracts.upload_event import parse_upload_event
from threatfeed.ingestion.blob_fetch import BlobLocation, make_blob_fetcher
from threatfeed.ingestion.pipeline import IngestionPipeline
from threatfeed.storage.postgres_jobs import PostgresJobTracker
from threatfeed.storage.postgres_mentions import DEFAULT_CHUNK_SIZE, MentionBatchCommitter
from threatfeed.storage.postgres_schema import ensure_postgres_schema
from threatfeed.storage.postgres_store import DEFAULT_PG_DSN, PostgresStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    pg_dsn: str = DEFAULT_PG_DSN
    pool_max: int = 5
    pool_timeout: float = 30.0
    chunk_size: int = DEFAULT_CHUNK_SIZE
    blob_backend: str = "gcs"
    blob_local_root: Optional[str] = None
    blob_http_base: Optional[str] = None
    log_level: str = "INFO"


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"Invalid {name}. It must be an integer.")
    if value <= 0:
        raise ValueError(f"Invalid {name}. It must be > 0.")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env
    timeout_raw = (env.get("PG_POOL_TIMEOUT") or "").strip()
    try:
        pool_timeout = float(timeout_raw) if timeout_raw else 30.0
    except ValueError:
        raise ValueError("Invalid PG_POOL_TIMEOUT. It must be a number.")
    return Settings(
        pg_dsn=env.get("PG_DSN") or DEFAULT_PG_DSN,
        pool_max=_env_int(env, "PG_POOL_MAX", 5),
        pool_timeout=pool_timeout,
        chunk_size=_env_int(env, "INGEST_CHUNK_SIZE", DEFAULT_CHUNK_SIZE),
        blob_backend=(env.get("BLOB_BACKEND") or "gcs").strip().lower(),
        blob_local_root=env.get("BLOB_LOCAL_ROOT") or None,
        blob_http_base=env.get("BLOB_HTTP_BASE") or None,
        log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
    )


def build_pipeline(store: PostgresStore, settings: Settings) -> IngestionPipeline:
    fetcher = make_blob_fetcher(
        settings.blob_backend,
        local_root=settings.blob_local_root,
        http_base=settings.blob_http_base,
    )
    return IngestionPipeline(
        PostgresJobTracker(store),
        MentionBatchCommitter(store),
        fetcher=fetcher,
        chunk_size=settings.chunk_size,
    )


def make_store(settings: Settings) -> PostgresStore:
    return PostgresStore(settings.pg_dsn, max_size=settings.pool_max, timeout=settings.pool_timeout)


@lru_cache(maxsize=1)
def _handler_pipeline() -> IngestionPipeline:
    # One pool per warm instance, reused across invocations.
    load_dotenv()
    settings = load_settings()
    logging.basicConfig(level=settings.log_level)
    store = make_store(settings).open()
    ensure_postgres_schema(store)
    return build_pipeline(store, settings)


def process_uploaded_file(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """Storage-trigger entrypoint: ingest the uploaded feed file described by `event`."""
    location = parse_upload_event(event)
    logger.info(f"Upload event for {location}")
    summary = _handler_pipeline().process_file(location)
    return summary.as_dict()


def main(argv: Optional[list] = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Ingest threat-feed XML files into Postgres")
    parser.add_argument("bucket", nargs="?", help="Bucket (or directory under BLOB_LOCAL_ROOT) holding the file")
    parser.add_argument("name", nargs="?", help="Object name of the feed file")
    parser.add_argument("--job", type=int, default=None, help="Print the processing job with this id and exit")
    parser.add_argument("--init-schema", action="store_true", help="Create tables and indexes, then exit")
    args = parser.parse_args(argv)

    settings = load_settings()
    logging.basicConfig(level=settings.log_level)

    with make_store(settings) as store:
        if args.init_schema:
            ensure_postgres_schema(store)
            print("[ingest] schema ready")
            return 0
        if args.job is not None:
            job = PostgresJobTracker(store).get_job(args.job)
            if job is None:
                print(f"[ingest] job {args.job} not found")
                return 1
            print(
                f"[ingest] job={job.id} file={job.file_name} status={job.status.value} progress={job.progress}% "
                f"processed={job.processed} skipped={job.skipped} failed={job.failed}"
            )
            return 0
        if not args.bucket or not args.name:
            parser.error("BUCKET and NAME are required unless --job or --init-schema is given")

        ensure_postgres_schema(store)
        pipeline = build_pipeline(store, settings)
        summary = pipeline.process_file(BlobLocation(bucket=args.bucket, name=args.name))

    print(
        f"[ingest] job={summary.job_id} processed={summary.processed} "
        f"skipped={summary.skipped} failed={summary.failed}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
