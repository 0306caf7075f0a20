"""
Tabular Engine
==============

Moves rows between the relational source and the data lake.

- read: runs an extraction query through SQLAlchemy and returns a pandas DataFrame
- write: serializes a DataFrame/pyarrow Table into part files under a destination,
  honouring overwrite/append semantics and Hive-style partitioning
"""

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import oracledb
import pandas as pd
import pyarrow as pa
import pyarrow.compute as pc
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import URL, make_url

from .connectors import BlobStore
from .formats import get_writer

logger = logging.getLogger(__name__)

SUBQUERY_ALIAS = "ingest_subq"
DEFAULT_PARTITION_VALUE = "__HIVE_DEFAULT_PARTITION__"
SUCCESS_MARKER = "_SUCCESS"

WRITE_MODES = ("overwrite", "append")


@dataclass(frozen=True)
class ReadOptions:
    """
    Session-level options applied to every extraction read.

    Attributes:
        session_init_statements: Statements run on each new Oracle session
        map_date_to_timestamp: When False, Oracle DATE columns are fetched as
            dates instead of timestamps
        driver: DBAPI driver used for Oracle connections
        isolation_level: Transaction isolation level for the read
    """
    session_init_statements: Tuple[str, ...] = ()
    map_date_to_timestamp: bool = True
    driver: str = "oracledb"
    isolation_level: str = "READ_COMMITTED"


# jdbc prefix -> (SQLAlchemy drivername, pattern for host/port/database)
JDBC_URL_PATTERNS = {
    "jdbc:oracle:thin:": (
        "oracle+{driver}",
        re.compile(r"^jdbc:oracle:thin:(?:[^@]*)@(?://)?(?P<host>[^:/]+):(?P<port>\d+)[:/](?P<database>.+)$"),
    ),
    "jdbc:postgresql:": (
        "postgresql+psycopg2",
        re.compile(r"^jdbc:postgresql://(?P<host>[^:/]+)(?::(?P<port>\d+))?/(?P<database>[^?]+)"),
    ),
    "jdbc:mysql:": (
        "mysql+pymysql",
        re.compile(r"^jdbc:mysql://(?P<host>[^:/]+)(?::(?P<port>\d+))?/(?P<database>[^?]+)"),
    ),
}

CREDENTIAL_USER_KEYS = ("user", "username")


def to_sqlalchemy_url(
    connection_target: str,
    credentials: Optional[Mapping[str, str]] = None,
    driver: str = "oracledb",
) -> Tuple[URL, Dict[str, str]]:
    """
    Translate a connection target into a SQLAlchemy URL.

    JDBC targets for Oracle, PostgreSQL and MySQL are rewritten; anything
    else is parsed as a SQLAlchemy URL. User and password from the
    credentials are set on the URL when it carries none.

    Args:
        connection_target: JDBC or SQLAlchemy URL
        credentials: Source credentials
        driver: DBAPI driver for Oracle targets

    Returns:
        (url, connect_args) where connect_args holds the remaining credentials

    Raises:
        ValueError: If the target is empty or an unsupported JDBC URL
    """
    if not connection_target:
        raise ValueError("No connection target: set the 'url' option or a dbType with a connection template")

    credentials = dict(credentials or {})
    user = None
    for key in CREDENTIAL_USER_KEYS:
        if key in credentials:
            user = credentials.pop(key)
    password = credentials.pop("password", None)

    if connection_target.startswith("jdbc:"):
        url = None
        for prefix, (drivername, pattern) in JDBC_URL_PATTERNS.items():
            if connection_target.startswith(prefix):
                match = pattern.match(connection_target)
                if not match:
                    break
                port = match.group("port")
                query = {}
                database = match.group("database")
                if prefix == "jdbc:oracle:thin:":
                    # host:port/service or host:port:SID
                    is_sid = connection_target[match.start("database") - 1] == ":"
                    query = {"sid" if is_sid else "service_name": database}
                    database = None
                url = URL.create(
                    drivername.format(driver=driver),
                    host=match.group("host"),
                    port=int(port) if port else None,
                    database=database,
                    query=query,
                )
                break
        if url is None:
            raise ValueError(f"Unsupported JDBC connection target: {connection_target}")
    else:
        url = make_url(connection_target)

    if user is not None and not url.username:
        url = url.set(username=user)
    if password is not None and not url.password:
        url = url.set(password=password)
    return url, credentials


def wrap_query(query: str) -> str:
    """Turn a table name or parenthesized query into a runnable SELECT."""
    return f"SELECT * FROM {query} {SUBQUERY_ALIAS}"


def _oracle_date_as_date(cursor, metadata):
    """oracledb output type handler: fetch DATE columns as datetime.date."""
    if metadata.type_code is oracledb.DB_TYPE_DATE:
        return cursor.var(
            oracledb.DB_TYPE_DATE,
            arraysize=cursor.arraysize,
            outconverter=_to_date,
        )
    return None


def _to_date(value):
    return value.date()


class TabularEngine:
    """
    Reads query results from relational sources and writes them to the data lake.
    """

    def __init__(self, store: BlobStore):
        """
        Initialize the engine.

        Args:
            store: Blob store that receives the written files
        """
        self.store = store

    # =========================================
    # READ
    # =========================================

    def _create_engine(self, url: URL, connect_args: Dict[str, str], options: ReadOptions):
        engine = create_engine(
            url,
            connect_args=connect_args,
            isolation_level=options.isolation_level.replace("_", " "),
        )
        if engine.dialect.name == "oracle":
            @event.listens_for(engine, "connect")
            def _init_session(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                try:
                    for statement in options.session_init_statements:
                        cursor.execute(statement)
                finally:
                    cursor.close()
                if not options.map_date_to_timestamp:
                    dbapi_connection.outputtypehandler = _oracle_date_as_date
        return engine

    def read(
        self,
        connection_target: str,
        query: str,
        credentials: Optional[Mapping[str, str]],
        options: ReadOptions,
    ) -> pd.DataFrame:
        """
        Run an extraction query.

        Args:
            connection_target: JDBC or SQLAlchemy URL
            query: Table name or parenthesized SELECT
            credentials: Source credentials
            options: Session-level read options

        Returns:
            DataFrame with the extracted rows
        """
        url, connect_args = to_sqlalchemy_url(connection_target, credentials, options.driver)
        engine = self._create_engine(url, connect_args, options)
        logger.info(f"Reading from {url.render_as_string(hide_password=True)}: {query}")
        try:
            with engine.connect() as conn:
                df = pd.read_sql(text(wrap_query(query)), conn)
        finally:
            engine.dispose()
        logger.info(f"  Extracted {len(df)} rows")
        return df

    # =========================================
    # WRITE
    # =========================================

    def write(
        self,
        handle: Union[pd.DataFrame, pa.Table],
        fmt: str,
        mode: str,
        partition_key: Optional[str],
        path: str,
    ) -> Dict[str, Any]:
        """
        Write rows under a destination path.

        Args:
            handle: Rows to write
            fmt: Writer identifier (parquet, orc, csv, json, fastavro)
            mode: 'overwrite' replaces everything under path, 'append' adds files
            partition_key: Optional column to partition by (Hive style)
            path: Destination directory

        Returns:
            Dict with rows_written and the list of files written
        """
        if mode not in WRITE_MODES:
            raise ValueError(f"Unsupported write mode: {mode}")
        serialize, extension, content_type = get_writer(fmt)

        table = handle if isinstance(handle, pa.Table) else pa.Table.from_pandas(handle, preserve_index=False)
        path = path.rstrip("/")

        if partition_key and partition_key not in table.column_names:
            raise ValueError(f"Partition column '{partition_key}' not found in {table.column_names}")

        # serialize everything before touching the destination
        job_id = uuid.uuid4().hex
        payloads = [
            (f"{directory}/part-{index:05d}-{job_id}.{extension}", serialize(part))
            for index, (directory, part) in enumerate(self._partitions(table, partition_key, path))
        ]

        if mode == "overwrite":
            self.store.delete_prefix(path)

        files = []
        for file_path, data in payloads:
            self.store.put(file_path, data, content_type=content_type)
            files.append(file_path)

        self.store.put(f"{path}/{SUCCESS_MARKER}", b"")
        logger.info(f"Written {table.num_rows} rows to {path} ({fmt}, {mode}, {len(files)} file(s))")
        return {"rows_written": table.num_rows, "files": files}

    def _partitions(self, table: pa.Table, partition_key: Optional[str], path: str) -> List[Tuple[str, pa.Table]]:
        if not partition_key:
            return [(path, table)]

        data = table.drop_columns([partition_key])
        column = table.column(partition_key)
        # NaN keys land in the default partition together with nulls
        null_mask = pc.is_null(column, nan_is_null=True)
        parts = []
        for value in pc.unique(column.filter(pc.invert(null_mask))).to_pylist():
            mask = pc.equal(column, pa.scalar(value, type=column.type))
            parts.append((f"{path}/{partition_key}={value}", data.filter(mask)))
        if pc.any(null_mask).as_py():
            parts.append((f"{path}/{partition_key}={DEFAULT_PARTITION_VALUE}", data.filter(null_mask)))
        return parts
