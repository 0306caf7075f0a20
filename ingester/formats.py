"""
Output Formats
==============

Serializers for the data lake writers. Each writer turns a pyarrow Table
into the bytes of one part file.

Writer identifiers:
- parquet: Parquet (snappy), via pyarrow
- orc: ORC, via pyarrow
- csv: CSV with header, via pandas
- json: JSON lines, via pandas
- fastavro: Avro object container file, via fastavro
"""

import io
from typing import Any, Callable, Dict, Tuple

import fastavro
import pyarrow as pa
import pyarrow.orc as orc
import pyarrow.parquet as pq

# pyarrow type id to Avro type
ARROW_TO_AVRO_TYPE_MAP = {
    pa.types.is_boolean: "boolean",
    pa.types.is_int8: "int",
    pa.types.is_int16: "int",
    pa.types.is_int32: "int",
    pa.types.is_uint8: "int",
    pa.types.is_uint16: "int",
    pa.types.is_int64: "long",
    pa.types.is_uint32: "long",
    pa.types.is_float32: "float",
    pa.types.is_float64: "double",
    pa.types.is_string: "string",
    pa.types.is_large_string: "string",
    pa.types.is_binary: "bytes",
    pa.types.is_large_binary: "bytes",
    pa.types.is_date: {"type": "int", "logicalType": "date"},
    pa.types.is_time32: {"type": "int", "logicalType": "time-millis"},
    pa.types.is_time64: {"type": "long", "logicalType": "time-micros"},
}


def arrow_to_avro_type(arrow_type: pa.DataType, name: str) -> Any:
    """Map a pyarrow type to an Avro type (without the null branch)."""
    for predicate, avro_type in ARROW_TO_AVRO_TYPE_MAP.items():
        if predicate(arrow_type):
            return avro_type

    if pa.types.is_timestamp(arrow_type):
        if arrow_type.unit in ("s", "ms"):
            logical = "timestamp-millis" if arrow_type.tz else "local-timestamp-millis"
        else:
            logical = "timestamp-micros" if arrow_type.tz else "local-timestamp-micros"
        return {"type": "long", "logicalType": logical}
    if pa.types.is_decimal(arrow_type):
        return {
            "type": "bytes",
            "logicalType": "decimal",
            "precision": arrow_type.precision,
            "scale": arrow_type.scale,
        }
    if pa.types.is_fixed_size_binary(arrow_type):
        return {"type": "fixed", "name": f"{name}_fixed", "size": arrow_type.byte_width}
    if pa.types.is_list(arrow_type) or pa.types.is_large_list(arrow_type):
        return {"type": "array", "items": _nullable(arrow_to_avro_type(arrow_type.value_type, name))}
    if pa.types.is_map(arrow_type):
        return {"type": "map", "values": _nullable(arrow_to_avro_type(arrow_type.item_type, name))}
    if pa.types.is_struct(arrow_type):
        return {
            "type": "record",
            "name": f"{name}_record",
            "fields": [
                {"name": f.name, "type": _nullable(arrow_to_avro_type(f.type, f"{name}_{f.name}"))}
                for f in arrow_type
            ],
        }
    if pa.types.is_null(arrow_type):
        return "null"
    raise ValueError(f"Cannot write column '{name}' of type {arrow_type} as Avro")


def _nullable(avro_type: Any) -> Any:
    return avro_type if avro_type == "null" else ["null", avro_type]


def arrow_to_avro_schema(schema: pa.Schema, name: str = "topLevelRecord") -> Dict[str, Any]:
    """Build an Avro record schema with nullable fields from a pyarrow schema."""
    return {
        "type": "record",
        "name": name,
        "fields": [
            {"name": f.name, "type": _nullable(arrow_to_avro_type(f.type, f.name)), "default": None}
            for f in schema
        ],
    }


def write_parquet(table: pa.Table) -> bytes:
    buffer = io.BytesIO()
    pq.write_table(table, buffer, compression="snappy")
    return buffer.getvalue()


def write_orc(table: pa.Table) -> bytes:
    buffer = io.BytesIO()
    orc.write_table(table, buffer)
    return buffer.getvalue()


def write_csv(table: pa.Table) -> bytes:
    # Write CSV with UTF-8 encoding
    return table.to_pandas().to_csv(index=False).encode('utf-8')


def write_json(table: pa.Table) -> bytes:
    return table.to_pandas().to_json(orient="records", lines=True, date_format="iso").encode('utf-8')


def write_avro(table: pa.Table) -> bytes:
    buffer = io.BytesIO()
    schema = fastavro.parse_schema(arrow_to_avro_schema(table.schema))
    fastavro.writer(buffer, schema, table.to_pylist(), codec="deflate")
    return buffer.getvalue()


# writer identifier -> (serializer, file extension, content type)
WRITERS: Dict[str, Tuple[Callable[[pa.Table], bytes], str, str]] = {
    "parquet": (write_parquet, "parquet", "application/octet-stream"),
    "orc": (write_orc, "orc", "application/octet-stream"),
    "csv": (write_csv, "csv", "text/csv"),
    "json": (write_json, "json", "application/json"),
    "fastavro": (write_avro, "avro", "application/avro"),
}


def get_writer(writer_id: str) -> Tuple[Callable[[pa.Table], bytes], str, str]:
    """
    Look up a writer by identifier.

    Raises:
        ValueError: If the identifier is not supported
    """
    if writer_id not in WRITERS:
        raise ValueError(f"Unsupported file format: {writer_id}")
    return WRITERS[writer_id]
