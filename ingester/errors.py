"""
Ingestion Errors
================

Typed failures raised by the ingestion core.

Hierarchy:
    IngestionError (base)
    ├── MissingMandatoryOption
    ├── UnmappedSchemaType
    └── ProjectionMismatch

Failures raised by the database driver, the tabular writers or the blob
stores are not wrapped; they reach the caller unchanged.
"""

from typing import Any, Dict, List, Optional


class IngestionError(Exception):
    """
    Base exception for all ingestion errors.

    Attributes:
        message: Human-readable error message
        context: Additional context (section, option, field, ...)
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/results."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
        }


class MissingMandatoryOption(IngestionError):
    """
    A required configuration option is absent.

    Context:
        - option: Name(s) of the missing option
        - section: Configuration section that should carry it
    """

    def __init__(self, option: str, section: Optional[str] = None, message: Optional[str] = None):
        self.option = option
        self.section = section
        if message is None:
            where = f" for '{section}'" if section else ""
            message = f"Please specify option '{option}'{where}"
        super().__init__(message, {"option": option, "section": section})


class UnmappedSchemaType(IngestionError):
    """
    A schema field uses a type with no entry in the type mapping table.

    Context:
        - type_name: The unmapped schema type
        - field: Field that declared it (if known)
    """

    def __init__(self, type_name: Any, field: Optional[str] = None):
        self.type_name = type_name
        self.field = field
        where = f" (field '{field}')" if field else ""
        super().__init__(
            f"No type mapping for schema type {type_name!r}{where}",
            {"type_name": str(type_name), "field": field},
        )


class ProjectionMismatch(IngestionError):
    """
    Extracted columns do not cover every field of the registered schema.

    Context:
        - missing: Schema fields absent from the extracted rows
        - available: Columns that were extracted
    """

    def __init__(self, missing: List[str], available: List[str]):
        self.missing = list(missing)
        self.available = list(available)
        super().__init__(
            f"Extracted rows are missing schema fields: {', '.join(self.missing)}",
            {"missing": self.missing, "available": self.available},
        )
