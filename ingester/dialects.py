"""
Database Dialects
=================

Closed set of source database families and the per-family templates used
to build connection strings and date literals.

Adding a dialect means adding an enum member and one entry per table.
"""

from enum import Enum
from typing import Dict

DEFAULT_DATE_FORMAT = "yyyy-MM-dd"


class DatabaseFamily(Enum):
    """Source database families known to the ingester."""
    ORACLE = "oracle"
    POSTGRES = "postgres"
    MYSQL = "mysql"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, db_type: str) -> "DatabaseFamily":
        """Map a `dbType` option value to a family; unrecognized values map to UNKNOWN."""
        value = (db_type or "").strip().lower()
        for family in cls:
            if family.value == value and family is not cls.UNKNOWN:
                return family
        return cls.UNKNOWN


# Connection string synthesized from host/port/dbName.
# An empty template means the family cannot be reached without an explicit url.
CONNECTION_TEMPLATES: Dict[DatabaseFamily, str] = {
    DatabaseFamily.ORACLE: "jdbc:oracle:thin:/@{host}:{port}/{db_name}",
    DatabaseFamily.POSTGRES: "",
    DatabaseFamily.MYSQL: "",
    DatabaseFamily.UNKNOWN: "",
}

# Date literal for a 'yyyy-MM-dd' formatted date.
DATE_LITERAL_TEMPLATES: Dict[DatabaseFamily, str] = {
    DatabaseFamily.ORACLE: "TO_DATE('{date}','{date_format}')",
    DatabaseFamily.POSTGRES: "'{date}'",
    DatabaseFamily.MYSQL: "'{date}'",
    DatabaseFamily.UNKNOWN: "'{date}'",
}


def connection_string(family: DatabaseFamily, host: str, port: str, db_name: str) -> str:
    """
    Build the connection target for a family.

    Returns:
        The connection string, or an empty string for families without a template
    """
    return CONNECTION_TEMPLATES[family].format(host=host, port=port, db_name=db_name)


def date_literal(family: DatabaseFamily, date_string: str) -> str:
    """Encode a 'yyyy-MM-dd' date string as a SQL literal for the family."""
    return DATE_LITERAL_TEMPLATES[family].format(date=date_string, date_format=DEFAULT_DATE_FORMAT)
