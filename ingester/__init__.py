"""
Lake Ingester
=============

Moves relational tables into a columnar data lake.

Supports three ingestion modes:
- full: Extract the entire table and overwrite the destination
- daily: Extract yesterday's rows (UTC) and append them
- incrementally: Extract rows at or after a configured last value

Rows are written exactly as extracted, optionally cast and reordered
against a registered Avro schema and partitioned by a single key.
"""

__version__ = "1.0.0"
