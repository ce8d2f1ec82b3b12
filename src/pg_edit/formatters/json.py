"""JSON formatter: one object per row, structured values kept as-is."""

from __future__ import annotations

import json
from datetime import date, datetime, time
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from pg_edit.formatters.base import registry

if TYPE_CHECKING:
    from collections.abc import Iterator

    from pg_edit.core.models import QueryResult


def _default(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, tuple):
        return list(value)
    return str(value)


class JSONFormatter:
    def __init__(self, compact: bool = False) -> None:
        self.compact = compact

    def format(self, result: QueryResult) -> Iterator[str]:
        names = [col.name for col in result.columns]
        records = [dict(zip(names, row, strict=True)) for row in result.rows]
        indent = None if self.compact else 2
        yield json.dumps(records, indent=indent, default=_default)


registry.register("json", JSONFormatter)
