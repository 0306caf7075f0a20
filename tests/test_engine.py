"""
Unit tests for the tabular engine: source URLs, reads and data lake writes.
"""

import os
from datetime import date, datetime
from unittest.mock import MagicMock, patch

import fastavro
import oracledb
import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq
import pytest
from sqlalchemy import create_engine, text

from ingester.connectors import LocalConnector
from ingester.engine import (
    DEFAULT_PARTITION_VALUE,
    ReadOptions,
    TabularEngine,
    _oracle_date_as_date,
    to_sqlalchemy_url,
    wrap_query,
)
from ingester.processing import DEFAULT_READ_OPTIONS


class TestConnectionUrls:

    def test_oracle_service_name(self):
        url, connect_args = to_sqlalchemy_url(
            "jdbc:oracle:thin:/@db1:1521/ORCL",
            {"user": "scott", "password": "tiger", "config_dir": "/opt/tns"},
        )

        assert url.drivername == "oracle+oracledb"
        assert url.host == "db1"
        assert url.port == 1521
        assert url.database is None
        assert dict(url.query) == {"service_name": "ORCL"}
        assert url.username == "scott"
        assert url.password == "tiger"
        assert connect_args == {"config_dir": "/opt/tns"}

    def test_oracle_sid(self):
        url, _ = to_sqlalchemy_url("jdbc:oracle:thin:@db1:1521:ORCL")
        assert dict(url.query) == {"sid": "ORCL"}

    def test_oracle_easy_connect(self):
        url, _ = to_sqlalchemy_url("jdbc:oracle:thin:@//db1.example.com:1522/sales.example.com", driver="cx_oracle")
        assert url.drivername == "oracle+cx_oracle"
        assert url.host == "db1.example.com"
        assert dict(url.query) == {"service_name": "sales.example.com"}

    def test_postgres(self):
        url, _ = to_sqlalchemy_url("jdbc:postgresql://pg:5432/crm", {"username": "etl"})
        assert url.drivername == "postgresql+psycopg2"
        assert (url.host, url.port, url.database, url.username) == ("pg", 5432, "crm", "etl")

    def test_mysql_without_port(self):
        url, _ = to_sqlalchemy_url("jdbc:mysql://mysql/shop?useSSL=false")
        assert url.drivername == "mysql+pymysql"
        assert (url.host, url.port, url.database) == ("mysql", None, "shop")

    def test_sqlalchemy_url_passthrough(self):
        url, _ = to_sqlalchemy_url("postgresql+psycopg2://owner:secret@pg/crm", {"user": "etl", "password": "x"})
        assert url.username == "owner"
        assert url.password == "secret"

    def test_credentials_not_mutated(self):
        credentials = {"user": "scott", "password": "tiger"}
        to_sqlalchemy_url("jdbc:oracle:thin:/@db1:1521/ORCL", credentials)
        assert credentials == {"user": "scott", "password": "tiger"}

    def test_empty_target(self):
        with pytest.raises(ValueError):
            to_sqlalchemy_url("", {"user": "scott"})

    def test_unsupported_jdbc(self):
        with pytest.raises(ValueError):
            to_sqlalchemy_url("jdbc:db2://host:50000/sample")

    def test_wrap_query(self):
        assert wrap_query("ACCOUNTS") == "SELECT * FROM ACCOUNTS ingest_subq"
        assert wrap_query("(SELECT * FROM T WHERE C >= 1)") == "SELECT * FROM (SELECT * FROM T WHERE C >= 1) ingest_subq"


class TestRead:

    def _mock_engine(self, dialect_name):
        sa_engine = MagicMock()
        sa_engine.dialect.name = dialect_name
        return sa_engine

    def test_read_postgres(self):
        sa_engine = self._mock_engine("postgresql")
        frame = pd.DataFrame({"id": [1]})

        with patch("ingester.engine.create_engine", return_value=sa_engine) as create, \
                patch("ingester.engine.event") as event, \
                patch("ingester.engine.pd.read_sql", return_value=frame) as read_sql:
            df = TabularEngine(LocalConnector()).read(
                "jdbc:postgresql://pg:5432/crm", "accounts", {"user": "etl"}, DEFAULT_READ_OPTIONS
            )

        assert df is frame
        assert create.call_args.kwargs["isolation_level"] == "READ COMMITTED"
        assert str(read_sql.call_args.args[0]) == "SELECT * FROM accounts ingest_subq"
        event.listens_for.assert_not_called()
        sa_engine.dispose.assert_called_once()

    def test_oracle_session_setup(self):
        sa_engine = self._mock_engine("oracle")
        listeners = {}

        def listens_for(target, name):
            def register(fn):
                listeners[name] = fn
                return fn
            return register

        with patch("ingester.engine.create_engine", return_value=sa_engine), \
                patch("ingester.engine.event.listens_for", side_effect=listens_for), \
                patch("ingester.engine.pd.read_sql", return_value=pd.DataFrame()):
            TabularEngine(LocalConnector()).read(
                "jdbc:oracle:thin:/@db1:1521/ORCL", "ACCOUNTS", {}, DEFAULT_READ_OPTIONS
            )

        dbapi_connection = MagicMock()
        listeners["connect"](dbapi_connection, None)

        cursor = dbapi_connection.cursor.return_value
        executed = [c.args[0] for c in cursor.execute.call_args_list]
        assert executed == list(DEFAULT_READ_OPTIONS.session_init_statements)
        cursor.close.assert_called_once()
        assert dbapi_connection.outputtypehandler is _oracle_date_as_date

    def test_dispose_on_failure(self):
        sa_engine = self._mock_engine("postgresql")

        with patch("ingester.engine.create_engine", return_value=sa_engine), \
                patch("ingester.engine.pd.read_sql", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                TabularEngine(LocalConnector()).read("postgresql://pg/crm", "t", None, ReadOptions())

        sa_engine.dispose.assert_called_once()

    def test_read_through_sqlalchemy_connection(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'erp.db'}"
        setup = create_engine(url)
        with setup.begin() as conn:
            conn.execute(text("CREATE TABLE accounts (id INTEGER, name TEXT)"))
            conn.execute(text("INSERT INTO accounts VALUES (1, 'a'), (2, 'b')"))
        setup.dispose()

        # SQLite has no READ COMMITTED level
        df = TabularEngine(LocalConnector()).read(url, "accounts", None, ReadOptions(isolation_level="SERIALIZABLE"))

        assert df.to_dict("records") == [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}]

    def test_date_output_handler(self):
        cursor = MagicMock()
        date_metadata = MagicMock(type_code=oracledb.DB_TYPE_DATE)
        timestamp_metadata = MagicMock(type_code=oracledb.DB_TYPE_TIMESTAMP)

        assert _oracle_date_as_date(cursor, date_metadata) is cursor.var.return_value
        args, kwargs = cursor.var.call_args
        assert args == (oracledb.DB_TYPE_DATE,)
        assert kwargs["arraysize"] == cursor.arraysize
        assert kwargs["outconverter"](datetime(2024, 2, 29, 0, 0)) == date(2024, 2, 29)
        assert _oracle_date_as_date(cursor, timestamp_metadata) is None


class TestWrite:

    FRAME = pd.DataFrame({
        "id": [1, 2, 3],
        "region": ["EU", "US", None],
        "amount": [1.5, 2.5, 3.5],
    })

    @pytest.fixture
    def engine(self):
        return TabularEngine(LocalConnector())

    def _data_files(self, root, extension):
        return sorted(
            os.path.join(dirpath, name)
            for dirpath, _, names in os.walk(root)
            for name in names
            if name.endswith(f".{extension}")
        )

    def test_parquet_overwrite(self, engine, tmp_path):
        target = str(tmp_path / "ACCOUNTS")

        engine.write(self.FRAME, "parquet", "overwrite", None, target)
        result = engine.write(self.FRAME.head(1), "parquet", "overwrite", None, target)

        files = self._data_files(target, "parquet")
        assert files == result["files"]
        assert len(files) == 1
        assert pq.read_table(files[0]).num_rows == 1
        assert os.path.exists(os.path.join(target, "_SUCCESS"))

    def test_append_keeps_previous_files(self, engine, tmp_path):
        target = str(tmp_path / "ACCOUNTS")

        engine.write(self.FRAME, "parquet", "append", None, target)
        engine.write(self.FRAME, "parquet", "append", None, target)

        files = self._data_files(target, "parquet")
        assert len(files) == 2
        assert sum(pq.read_table(f).num_rows for f in files) == 6

    def test_partitioned(self, engine, tmp_path):
        target = str(tmp_path / "ACCOUNTS")

        result = engine.write(self.FRAME, "parquet", "overwrite", "region", target)

        assert result["rows_written"] == 3
        assert sorted(os.listdir(target)) == sorted([
            "_SUCCESS", "region=EU", "region=US", f"region={DEFAULT_PARTITION_VALUE}",
        ])
        eu = pq.read_table(self._data_files(os.path.join(target, "region=EU"), "parquet")[0])
        assert eu.column_names == ["id", "amount"]
        assert eu.column("id").to_pylist() == [1]

    def test_nan_partition_key(self, engine, tmp_path):
        target = str(tmp_path / "ACCOUNTS")
        table = pa.table({
            "id": [1, 2, 3],
            "score": pa.array([1.0, float("nan"), None], pa.float64()),
        })

        result = engine.write(table, "parquet", "overwrite", "score", target)

        assert sorted(os.listdir(target)) == sorted(["_SUCCESS", "score=1.0", f"score={DEFAULT_PARTITION_VALUE}"])
        assert sum(pq.read_table(f).num_rows for f in result["files"]) == 3
        default = self._data_files(os.path.join(target, f"score={DEFAULT_PARTITION_VALUE}"), "parquet")
        assert sorted(pq.read_table(default[0]).column("id").to_pylist()) == [2, 3]

    def test_failed_overwrite_keeps_previous_output(self, engine, tmp_path):
        target = str(tmp_path / "ACCOUNTS")
        engine.write(pa.table({"id": pa.array([1], pa.int64())}), "fastavro", "overwrite", None, target)

        with pytest.raises(ValueError):
            engine.write(pa.table({"id": pa.array([1], pa.uint64())}), "fastavro", "overwrite", None, target)

        assert len(self._data_files(target, "avro")) == 1

    def test_missing_partition_column(self, engine, tmp_path):
        with pytest.raises(ValueError):
            engine.write(self.FRAME, "parquet", "overwrite", "country", str(tmp_path / "T"))

    def test_avro(self, engine, tmp_path):
        table = pa.table({
            "id": pa.array([1, 2], pa.int64()),
            "name": pa.array(["a", None], pa.string()),
        })

        result = engine.write(table, "fastavro", "overwrite", None, str(tmp_path / "T"))

        assert result["files"][0].endswith(".avro")
        with open(result["files"][0], "rb") as f:
            records = list(fastavro.reader(f))
        assert records == [{"id": 1, "name": "a"}, {"id": 2, "name": None}]

    def test_csv(self, engine, tmp_path):
        result = engine.write(self.FRAME, "csv", "overwrite", None, str(tmp_path / "T"))

        df = pd.read_csv(result["files"][0])
        assert list(df.columns) == ["id", "region", "amount"]
        assert len(df) == 3

    def test_json_lines(self, engine, tmp_path):
        result = engine.write(self.FRAME, "json", "overwrite", None, str(tmp_path / "T"))

        df = pd.read_json(result["files"][0], lines=True)
        assert df["id"].tolist() == [1, 2, 3]

    def test_unsupported_format(self, engine, tmp_path):
        with pytest.raises(ValueError, match="Unsupported file format: xml"):
            engine.write(self.FRAME, "xml", "overwrite", None, str(tmp_path / "T"))

    def test_unsupported_mode(self, engine, tmp_path):
        with pytest.raises(ValueError):
            engine.write(self.FRAME, "parquet", "upsert", None, str(tmp_path / "T"))
