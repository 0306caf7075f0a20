"""
Shared fixtures for the ingester test suite.
"""

import json

import pandas as pd
import pytest

from ingester.config import ConfigItem, ConfigOption
from ingester.connectors import LocalConnector
from ingester.engine import TabularEngine


def make_options(**values):
    """Build an ordered option tuple from keyword arguments."""
    return tuple(ConfigOption(name, str(value)) for name, value in values.items())


class FakeEngine:
    """
    Tabular engine double: records reads and returns a fixed DataFrame,
    writes through the real writers into a local store.
    """

    def __init__(self, store=None, frame=None):
        self.store = store or LocalConnector()
        self.frame = frame if frame is not None else pd.DataFrame({"id": [1, 2], "name": ["a", "b"]})
        self.reads = []
        self.writes = []
        self._writer = TabularEngine(self.store)

    def read(self, connection_target, query, credentials, options):
        self.reads.append({
            "target": connection_target,
            "query": query,
            "credentials": credentials,
            "options": options,
        })
        return self.frame

    def write(self, handle, fmt, mode, partition_key, path):
        self.writes.append({
            "handle": handle,
            "format": fmt,
            "mode": mode,
            "partition_key": partition_key,
            "path": path,
        })
        return self._writer.write(handle, fmt, mode, partition_key, path)


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def oracle_source():
    return ConfigItem("erp", make_options(dbType="oracle", host="db1", port="1521", dbName="ORCL"))


@pytest.fixture
def lake_sink():
    return ConfigItem("lake", make_options(format="parquet"))


@pytest.fixture
def schemas_dir(tmp_path):
    """Schema registry root holding accounts.avsc."""
    root = tmp_path / "schemas"
    root.mkdir()
    (root / "accounts.avsc").write_text(json.dumps({
        "type": "record",
        "name": "Account",
        "namespace": "com.example.erp",
        "fields": [
            {"name": "id", "type": "long"},
            {"name": "name", "type": "string"},
        ],
    }))
    return root
