"""CSV formatter (RFC 4180)."""

from __future__ import annotations

import csv
from io import StringIO
from typing import TYPE_CHECKING

from pg_edit.formatters.base import cell_text, registry

if TYPE_CHECKING:
    from collections.abc import Iterator

    from pg_edit.core.models import QueryResult


class CSVFormatter:
    def __init__(self, no_header: bool = False) -> None:
        self.no_header = no_header

    def format(self, result: QueryResult) -> Iterator[str]:
        buf = StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        if not self.no_header:
            writer.writerow([col.name for col in result.columns])
        for row in result.rows:
            writer.writerow([cell_text(v) for v in row])
        for line in buf.getvalue().splitlines():
            yield line


registry.register("csv", CSVFormatter)
