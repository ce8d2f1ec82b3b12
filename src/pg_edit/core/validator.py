"""Schema-aware validation of pending changes.

Every value an insert or update writes is checked against the declared type
of its column before anything is executed. Validation never stops at the
first problem: the caller gets the complete list of violations for the
whole batch, or an empty list.
"""

from __future__ import annotations

import re
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pg_edit.core.logging import get_logger
from pg_edit.core.models import (
    DeleteChange,
    ValidationError,
    ValidationKind,
)
from pg_edit.core.pgarray import element_type, parse_array_literal

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pg_edit.core.client import PgClient
    from pg_edit.core.metadata import SchemaMetadataCache
    from pg_edit.core.models import ChangeDescriptor, ColumnDescriptor, TableMetadata


class TypeCategory(StrEnum):
    INTEGER = "integer"
    NUMERIC = "numeric"
    BOOLEAN = "boolean"
    ENUM = "enum"
    DATETIME = "datetime"
    UUID = "uuid"
    JSON = "json"
    TEXT = "text"


_INTEGER_TYPES = ("smallint", "integer", "bigint", "int", "int2", "int4", "int8")
_SERIAL_TYPES = ("smallserial", "serial", "bigserial", "serial2", "serial4", "serial8")
_NUMERIC_TYPES = ("numeric", "decimal", "real", "double precision", "float4", "float8")
_BOOLEAN_LITERALS = frozenset({"true", "false", "t", "f", "1", "0", "yes", "no"})

_INTEGER_TEXT = re.compile(r"^[+-]?\d+$")
_NUMERIC_TEXT = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)$")
_ZONE = r"(Z|[+-]\d{2}(:?\d{2})?)?"
_DATE_TEXT = re.compile(
    r"^\d{4}-\d{2}-\d{2}([T ]\d{2}:\d{2}(:\d{2}(\.\d+)?)?" + _ZONE + r")?$"
)
_TIME_TEXT = re.compile(r"^\d{2}:\d{2}(:\d{2}(\.\d+)?)?" + _ZONE + r"$")
_UUID_TEXT = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


def _base_type(declared_type: str) -> str:
    """Lower-cased type name without array suffix or modifiers.

    ``numeric(10,2)`` becomes ``numeric``; ``character varying(20)[]``
    becomes ``character varying``.
    """
    return re.sub(r"\(.*\)", "", element_type(declared_type)).strip()


def classify_type(column: ColumnDescriptor) -> TypeCategory:
    """Rule category for a column (for arrays, of its elements)."""
    if column.enum_labels is not None:
        return TypeCategory.ENUM
    base = _base_type(column.declared_type)
    if base in _INTEGER_TYPES or base in _SERIAL_TYPES:
        return TypeCategory.INTEGER
    if base in _NUMERIC_TYPES or base.startswith("float"):
        return TypeCategory.NUMERIC
    if base in ("boolean", "bool"):
        return TypeCategory.BOOLEAN
    if base == "date" or base.startswith(("timestamp", "time")):
        return TypeCategory.DATETIME
    if base == "uuid":
        return TypeCategory.UUID
    if base in ("json", "jsonb"):
        return TypeCategory.JSON
    return TypeCategory.TEXT


# ---------------------------------------------------------------------------
# Per-category value checks
# ---------------------------------------------------------------------------


def is_integer_value(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return value.is_integer()
    if isinstance(value, Decimal):
        return value.is_finite() and value == value.to_integral_value()
    if isinstance(value, str):
        return bool(_INTEGER_TEXT.match(value.strip()))
    return False


def is_numeric_value(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return value == value
    if isinstance(value, Decimal):
        return not value.is_nan()
    if isinstance(value, str):
        return bool(_NUMERIC_TEXT.match(value.strip()))
    return False


def is_boolean_value(value: Any) -> bool:
    if isinstance(value, bool):
        return True
    if isinstance(value, (int, str)):
        return str(value).strip().lower() in _BOOLEAN_LITERALS
    return False


def is_datetime_value(value: Any, declared_type: str) -> bool:
    if isinstance(value, (datetime, date, time)):
        return True
    if not isinstance(value, str):
        return False
    text = value.strip()
    base = _base_type(declared_type)
    if base.startswith("time") and not base.startswith("timestamp"):
        return bool(_TIME_TEXT.match(text) or _DATE_TEXT.match(text))
    return bool(_DATE_TEXT.match(text))


def is_uuid_value(value: Any) -> bool:
    if isinstance(value, uuid.UUID):
        return True
    return isinstance(value, str) and bool(_UUID_TEXT.match(value.strip()))


def _describe(value: Any) -> str:
    return repr(value) if isinstance(value, str) else str(value)


def check_scalar(column: ColumnDescriptor, value: Any) -> tuple[ValidationKind, str] | None:
    """Check a non-null value against the column's category.

    Returns (kind, message) for a violation, None when the value fits.
    """
    category = classify_type(column)
    name = column.name
    shown = _describe(value)

    if category is TypeCategory.INTEGER and not is_integer_value(value):
        return ValidationKind.TYPE_MISMATCH, f'Column "{name}" expected integer but got: {shown}'
    if category is TypeCategory.NUMERIC and not is_numeric_value(value):
        return (
            ValidationKind.TYPE_MISMATCH,
            f'Column "{name}" expected numeric value but got: {shown}',
        )
    if category is TypeCategory.BOOLEAN and not is_boolean_value(value):
        return ValidationKind.TYPE_MISMATCH, f'Column "{name}" expected boolean but got: {shown}'
    if category is TypeCategory.ENUM:
        labels = column.enum_labels or ()
        if not isinstance(value, str) or value not in labels:
            return (
                ValidationKind.ENUM_INVALID,
                f'Column "{name}" has invalid enum value: {shown} '
                f"(expected one of: {', '.join(labels)})",
            )
    if category is TypeCategory.DATETIME and not is_datetime_value(value, column.declared_type):
        return (
            ValidationKind.FORMAT_INVALID,
            f'Column "{name}" expected date/time in ISO format but got: {shown}',
        )
    if category is TypeCategory.UUID and not is_uuid_value(value):
        return ValidationKind.FORMAT_INVALID, f'Column "{name}" expected UUID but got: {shown}'
    return None


def check_value(
    row_index: int, column: ColumnDescriptor, value: Any
) -> ValidationError | None:
    """Apply the column's rule to one written value."""
    if value is None:
        if column.nullable:
            return None
        return ValidationError(
            row_index=row_index,
            column_name=column.name,
            kind=ValidationKind.NULL_VIOLATION,
            message=f'Column "{column.name}" does not allow NULL',
        )

    if classify_type(column) is TypeCategory.JSON and not column.is_array:
        return None

    if column.is_array:
        return _check_array(row_index, column, value)

    problem = check_scalar(column, value)
    if problem is None:
        return None
    kind, message = problem
    return ValidationError(
        row_index=row_index, column_name=column.name, kind=kind, message=message
    )


def _check_array(
    row_index: int, column: ColumnDescriptor, value: Any
) -> ValidationError | None:
    if isinstance(value, str) and value.strip().startswith("{"):
        value = parse_array_literal(value)
    if not isinstance(value, (list, tuple)):
        return ValidationError(
            row_index=row_index,
            column_name=column.name,
            kind=ValidationKind.TYPE_MISMATCH,
            message=f'Column "{column.name}" expects an array but got: {_describe(value)}',
        )
    if classify_type(column) in (TypeCategory.TEXT, TypeCategory.JSON):
        return None

    for position, element in enumerate(value):
        if element is None:
            continue
        problem = check_scalar(column, element)
        if problem is None:
            continue
        kind, message = problem
        return ValidationError(
            row_index=row_index,
            column_name=column.name,
            kind=kind,
            message=f"{message} (array element {position})",
            element_index=position,
        )
    return None


def validate_changes(
    metadata: TableMetadata, changes: Sequence[ChangeDescriptor]
) -> list[ValidationError]:
    """Every violation across every change, in batch order.

    Deletes write nothing and are not checked. Columns unknown to the
    metadata are left for the database to reject.
    """
    errors: list[ValidationError] = []
    for index, change in enumerate(changes):
        if isinstance(change, DeleteChange):
            continue
        for name, value in change.data.items():
            column = metadata.column(name)
            if column is None:
                continue
            error = check_value(index, column, value)
            if error is not None:
                errors.append(error)
    return errors


class SchemaValidator:
    """Validates change batches against live, cached table metadata."""

    def __init__(
        self,
        client: PgClient,
        cache: SchemaMetadataCache,
        connection_id: str,
    ) -> None:
        self.client = client
        self.cache = cache
        self.connection_id = connection_id

    def validate(
        self, schema: str, table: str, changes: Sequence[ChangeDescriptor]
    ) -> list[ValidationError]:
        log = get_logger("validator")
        metadata = self.cache.get_or_fetch(self.client, self.connection_id, schema, table)
        errors = validate_changes(metadata, changes)
        if errors:
            log.info(
                "validation failed",
                table=f"{schema}.{table}",
                changes=len(changes),
                violations=len(errors),
            )
        else:
            log.debug("validation passed", table=f"{schema}.{table}", changes=len(changes))
        return errors
