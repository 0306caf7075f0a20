#!/usr/bin/env python3
"""
Ingestion Runner
================

CLI script to run the ingester over every table of a job configuration.

Usage:
    lake-ingester full --config job.json --location s3://lake/raw
    lake-ingester daily --config job.json --location /data/lake --format avro
    lake-ingester incrementally --config job.json --location /data/lake --table ACCOUNTS
"""

import argparse
import json
import logging
import os
import sys
from typing import Dict, List, Optional

from ingester.config import JobConfig, find_option, load_credentials, load_job_config
from ingester.connectors import open_store
from ingester.engine import TabularEngine
from ingester.errors import IngestionError
from ingester.processing import process_table

logger = logging.getLogger("ingester")

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(log_settings: Optional[Dict] = None):
    """Setup logging configuration; calling it again applies a new level."""
    log_settings = log_settings or {}
    log_level = getattr(logging, str(log_settings.get("level", "INFO")).upper(), logging.INFO)

    logging.basicConfig(level=log_level, format=LOG_FORMAT)
    logging.getLogger().setLevel(log_level)

    if log_settings.get("log_to_file"):
        log_path = log_settings.get("log_path", "logs/ingestion.log")
        os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(file_handler)


def _sink_option(job: JobConfig, sink_name: Optional[str], name: str) -> Optional[str]:
    option = find_option(name, job.get_sink(sink_name).options)
    return option.value if option else None


def run_job(
    job: JobConfig,
    mode: str,
    location: Optional[str] = None,
    fmt: Optional[str] = None,
    schemas_location: Optional[str] = None,
    credentials: Optional[Dict[str, str]] = None,
    tables: Optional[List[str]] = None,
) -> List[Dict]:
    """
    Ingest every configured table, stopping at the first failure.

    Command-line values win over the sink's 'location', 'format' and
    'schemasLocation' options.

    Returns:
        List of per-table result dictionaries
    """
    entries = job.tables
    if tables:
        entries = [entry for entry in entries if entry.table_name in tables]
        unknown = set(tables) - {entry.table_name for entry in entries}
        if unknown:
            raise ValueError(f"Tables not found in job configuration: {', '.join(sorted(unknown))}")

    logger.info("=" * 60)
    logger.info(f"STARTING {mode.upper()} INGESTION")
    logger.info(f"Tables to ingest: {len(entries)}")
    logger.info("=" * 60)

    results = []
    for entry in entries:
        source = job.get_source(entry.source)
        sink = job.get_sink(entry.sink)

        table_location = location or _sink_option(job, entry.sink, "location")
        if not table_location:
            raise IngestionError(f"No output location: pass --location or set 'location' on sink '{sink.name}'")
        table_format = fmt or _sink_option(job, entry.sink, "format") or "parquet"
        table_schemas = schemas_location or _sink_option(job, entry.sink, "schemasLocation")

        engine = TabularEngine(open_store(table_location, job.storage))
        schema_store = open_store(table_schemas, job.storage) if table_schemas else None

        results.append(process_table(
            engine,
            mode,
            table_format,
            table_location,
            table_schemas,
            source,
            sink,
            credentials,
            entry.options,
            blob_store=schema_store,
        ))

    total_rows = sum(r["rows_written"] for r in results)
    logger.info("=" * 60)
    logger.info(f"{mode.upper()} INGESTION COMPLETE")
    logger.info(f"  Tables: {len(results)}")
    logger.info(f"  Total rows: {total_rows}")
    logger.info("=" * 60)
    return results


def save_results(results: List[Dict], mode: str, results_dir: str = "logs") -> str:
    """Save results to a JSON file."""
    os.makedirs(results_dir, exist_ok=True)
    results_path = os.path.join(results_dir, f"{mode}_results.json")
    with open(results_path, "w") as f:
        json.dump(results, f, indent=2, default=str)
    return results_path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ingest relational tables into a columnar data lake")
    parser.add_argument(
        "mode",
        help="Ingestion mode: full, daily or incrementally (anything else behaves as full)"
    )
    parser.add_argument(
        "--config",
        required=True,
        help="Path to the JSON job configuration"
    )
    parser.add_argument(
        "--location",
        help="Output root (local path or s3://bucket/prefix)"
    )
    parser.add_argument(
        "--format",
        dest="fmt",
        help="Output format (parquet, avro, orc, csv, json)"
    )
    parser.add_argument(
        "--schemas-location",
        help="Root of the registered Avro schemas"
    )
    parser.add_argument(
        "--credentials",
        help="JSON file with source credentials (defaults to INGESTER_DB_USER/INGESTER_DB_PASSWORD)"
    )
    parser.add_argument(
        "--table",
        action="append",
        dest="tables",
        help="Only ingest this table (repeatable)"
    )
    parser.add_argument(
        "--results-dir",
        default="logs",
        help="Directory for the JSON results file"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    try:
        job = load_job_config(args.config)
    except (OSError, ValueError) as e:
        logger.error(f"✗ Could not load job configuration {args.config}: {e}")
        return 1

    setup_logging(job.logging)

    try:
        credentials = load_credentials(args.credentials)
        results = run_job(
            job,
            args.mode,
            location=args.location,
            fmt=args.fmt,
            schemas_location=args.schemas_location,
            credentials=credentials,
            tables=args.tables,
        )
    except IngestionError as e:
        logger.error(f"✗ Error: {e}")
        return 1
    except Exception as e:
        logger.exception(f"✗ Ingestion failed: {e}")
        return 1

    results_path = save_results(results, args.mode, args.results_dir)
    logger.info(f"✓ Results saved to: {results_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
