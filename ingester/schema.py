"""
Registered Schema Reconciliation
================================

Loads Avro schema documents from the schema registry root, translates
them into pyarrow fields and projects extracted rows onto them.

Every translated field is nullable. The projection selects the schema's
fields in schema order and casts each column to its registered type:
extra columns are dropped, missing columns raise ProjectionMismatch.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Union

import pandas as pd
import pyarrow as pa
import pyarrow.compute as pc

from .errors import ProjectionMismatch, UnmappedSchemaType

logger = logging.getLogger(__name__)


# =========================================
# DATA TYPES MAPPING
# =========================================

# Avro primitive type to pyarrow type
AVRO_PRIMITIVE_TYPE_MAP = {
    "null": pa.null(),
    "boolean": pa.bool_(),
    "int": pa.int32(),
    "long": pa.int64(),
    "float": pa.float32(),
    "double": pa.float64(),
    "bytes": pa.binary(),
    "string": pa.string(),
}

# Avro logical type to pyarrow type (decimal is parameterized, see below)
AVRO_LOGICAL_TYPE_MAP = {
    "date": pa.date32(),
    "time-millis": pa.time32("ms"),
    "time-micros": pa.time64("us"),
    "timestamp-millis": pa.timestamp("ms", tz="UTC"),
    "timestamp-micros": pa.timestamp("us", tz="UTC"),
    "local-timestamp-millis": pa.timestamp("ms"),
    "local-timestamp-micros": pa.timestamp("us"),
    "uuid": pa.string(),
}


class _Translator:
    """Translates one schema document; remembers named types for references."""

    def __init__(self):
        self.named_types: Dict[str, pa.DataType] = {}

    def to_arrow(self, avro_type: Any, field_name: Optional[str] = None) -> pa.DataType:
        if isinstance(avro_type, str):
            if avro_type in AVRO_PRIMITIVE_TYPE_MAP:
                return AVRO_PRIMITIVE_TYPE_MAP[avro_type]
            if avro_type in self.named_types:
                return self.named_types[avro_type]
            raise UnmappedSchemaType(avro_type, field_name)

        if isinstance(avro_type, list):
            return self._union(avro_type, field_name)

        if not isinstance(avro_type, dict) or "type" not in avro_type:
            raise UnmappedSchemaType(avro_type, field_name)

        logical_type = avro_type.get("logicalType")
        if logical_type == "decimal":
            arrow_type = self._decimal(avro_type, field_name)
            self._register(avro_type, arrow_type)
            return arrow_type
        if logical_type in AVRO_LOGICAL_TYPE_MAP:
            return AVRO_LOGICAL_TYPE_MAP[logical_type]

        kind = avro_type["type"]
        if kind == "record":
            arrow_type = pa.struct(self.fields(avro_type))
        elif kind == "enum":
            arrow_type = pa.string()
        elif kind == "fixed":
            arrow_type = pa.binary(int(avro_type["size"]))
        elif kind == "array":
            return pa.list_(self.to_arrow(avro_type["items"], field_name))
        elif kind == "map":
            return pa.map_(pa.string(), self.to_arrow(avro_type["values"], field_name))
        else:
            # {"type": "long"} and other wrapped primitives; unknown logical types fall back to the base type
            return self.to_arrow(kind, field_name)

        self._register(avro_type, arrow_type)
        return arrow_type

    def _decimal(self, avro_type: Dict[str, Any], field_name: Optional[str]) -> pa.DataType:
        precision = int(avro_type["precision"])
        scale = int(avro_type.get("scale", 0))
        factory = pa.decimal128 if precision <= 38 else pa.decimal256
        try:
            return factory(precision, scale)
        except ValueError:
            raise UnmappedSchemaType(avro_type, field_name) from None

    def _register(self, avro_type: Dict[str, Any], arrow_type: pa.DataType):
        name = avro_type.get("name")
        if not name:
            return
        self.named_types[name] = arrow_type
        namespace = avro_type.get("namespace")
        if namespace and "." not in name:
            self.named_types[f"{namespace}.{name}"] = arrow_type

    def _union(self, branches: List[Any], field_name: Optional[str]) -> pa.DataType:
        non_null = [b for b in branches if b != "null"]
        if not non_null:
            return pa.null()
        if len(non_null) == 1:
            return self.to_arrow(non_null[0], field_name)

        arrow_types = [self.to_arrow(b, field_name) for b in non_null]
        if set(arrow_types) == {pa.int32(), pa.int64()}:
            return pa.int64()
        if set(arrow_types) == {pa.float32(), pa.float64()}:
            return pa.float64()
        return pa.struct([
            pa.field(f"member{i}", arrow_type, nullable=True)
            for i, arrow_type in enumerate(arrow_types)
        ])

    def fields(self, record: Dict[str, Any], nullable: bool = True) -> List[pa.Field]:
        if "fields" not in record:
            raise UnmappedSchemaType(record.get("type"), record.get("name"))
        return [
            pa.field(f["name"], self.to_arrow(f["type"], f["name"]), nullable=nullable)
            for f in record["fields"]
        ]


def avro_to_arrow_schema(avro_schema: Union[Dict[str, Any], str], nullable: bool = True) -> pa.Schema:
    """
    Translate an Avro record schema into a pyarrow schema.

    Args:
        avro_schema: Decoded Avro schema (or its JSON text)
        nullable: Nullability applied to every top-level field

    Returns:
        pyarrow schema with one field per Avro field, in declaration order

    Raises:
        UnmappedSchemaType: If a field type has no mapping
    """
    if isinstance(avro_schema, str):
        avro_schema = json.loads(avro_schema)
    if not isinstance(avro_schema, dict) or avro_schema.get("type") != "record":
        raise UnmappedSchemaType(
            avro_schema.get("type") if isinstance(avro_schema, dict) else avro_schema
        )
    return pa.schema(_Translator().fields(avro_schema, nullable=nullable))


def _cast(column: pa.ChunkedArray, arrow_type: pa.DataType) -> pa.ChunkedArray:
    # sub-unit precision is truncated, e.g. microsecond timestamps into timestamp-millis
    return pc.cast(column, options=pc.CastOptions(arrow_type, allow_time_truncate=True))


def load_schema(store, schemas_location: str, relative_path: str) -> pa.Schema:
    """
    Fetch and translate a registered schema.

    Args:
        store: Blob store holding the schema documents
        schemas_location: Schema registry root
        relative_path: Schema path below the root (e.g. 'accounts.avsc')

    Returns:
        pyarrow schema
    """
    path = f"{schemas_location.rstrip('/')}/{relative_path}"
    logger.info(f"Loading registered schema: {path}")
    document = json.load(store.open(path))
    schema = avro_to_arrow_schema(document)
    logger.info(f"  Schema fields: {', '.join(schema.names)}")
    return schema


def project(df: Union[pd.DataFrame, pa.Table], schema: pa.Schema) -> pa.Table:
    """
    Select and cast extracted rows to a registered schema.

    Args:
        df: Extracted rows
        schema: Registered schema

    Returns:
        pyarrow Table with exactly the schema's columns, in schema order

    Raises:
        ProjectionMismatch: If a schema field is not among the extracted columns
    """
    columns = list(df.columns) if isinstance(df, pd.DataFrame) else df.column_names
    missing = [name for name in schema.names if name not in columns]
    if missing:
        raise ProjectionMismatch(missing, columns)

    if isinstance(df, pd.DataFrame):
        table = pa.Table.from_pandas(df[schema.names], preserve_index=False)
    else:
        table = df.select(schema.names)

    dropped = [name for name in columns if name not in schema.names]
    if dropped:
        logger.info(f"  Dropping columns not in schema: {', '.join(dropped)}")

    return pa.Table.from_arrays(
        [_cast(table.column(f.name), f.type) for f in schema],
        schema=schema,
    )
