"""
Extraction Query Builder
========================

Builds the query (or bare table reference) submitted to the source for
each ingestion mode:

- full: the table name, read as a whole
- daily: rows whose check field equals yesterday's date (UTC)
- incrementally: rows whose check field is at or after the configured last value

Inputs are trusted configuration values; nothing is escaped or quoted
beyond the dialect's date literal.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, Optional, Union

from .config import ConfigOption, value_of
from .dialects import DatabaseFamily, date_literal


class IngestionMode(Enum):
    """How a table is extracted and written."""
    FULL = "full"
    DAILY = "daily"
    INCREMENTALLY = "incrementally"

    @classmethod
    def parse(cls, mode: str) -> "IngestionMode":
        """Map a mode string to a mode; unrecognized values fall back to FULL."""
        for member in cls:
            if member.value == mode:
                return member
        return cls.FULL


def previous_utc_day(now: Optional[datetime] = None) -> str:
    """
    Return the UTC calendar day before `now` as 'YYYY-MM-DD'.

    Naive datetimes are taken as UTC.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    else:
        now = now.astimezone(timezone.utc)
    return (now - timedelta(days=1)).strftime("%Y-%m-%d")


def daily_query(
    table_name: str,
    check_field: str,
    db_family: DatabaseFamily = DatabaseFamily.UNKNOWN,
    now: Optional[datetime] = None,
) -> str:
    """Query for the rows of yesterday's (UTC) snapshot."""
    literal = date_literal(db_family, previous_utc_day(now))
    return f"(SELECT * FROM {table_name} WHERE {check_field} = {literal})"


def incremental_query(table_name: str, check_field: str, last_value: str) -> str:
    """Query for the rows at or after `last_value`, used verbatim."""
    return f"(SELECT * FROM {table_name} WHERE {check_field} >= {last_value})"


def build_query(
    table_name: str,
    mode: Union[str, IngestionMode],
    options: Optional[Iterable[ConfigOption]],
    db_family: Union[str, DatabaseFamily] = DatabaseFamily.UNKNOWN,
    now: Optional[datetime] = None,
    section: Optional[str] = None,
) -> str:
    """
    Build the extraction query for a table.

    Args:
        table_name: Source table
        mode: Ingestion mode (unrecognized strings behave as 'full')
        options: Table options holding 'checkField' / 'lastValue'
        db_family: Source database family (or its dbType string)
        now: Run instant for the daily mode (defaults to the current UTC time)
        section: Section name used in missing-option diagnostics

    Returns:
        The bare table name for full loads, otherwise a parenthesized SELECT

    Raises:
        MissingMandatoryOption: If the mode needs an option that is absent
    """
    if not isinstance(mode, IngestionMode):
        mode = IngestionMode.parse(mode)
    if not isinstance(db_family, DatabaseFamily):
        db_family = DatabaseFamily.parse(db_family)
    options = tuple(options or ())
    section = section or table_name

    if mode is IngestionMode.INCREMENTALLY:
        return incremental_query(
            table_name,
            value_of("checkField", options, section),
            value_of("lastValue", options, section),
        )
    if mode is IngestionMode.DAILY:
        return daily_query(table_name, value_of("checkField", options, section), db_family, now)
    return table_name
