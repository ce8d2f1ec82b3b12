"""Rich table formatter."""

from __future__ import annotations

import shutil
from io import StringIO
from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table
from rich.text import Text

from pg_edit.formatters.base import cell_text, registry

if TYPE_CHECKING:
    from collections.abc import Iterator

    from pg_edit.core.models import QueryResult

_NO_RESULTS = "No results"
_NULL = "NULL"


def _truncate(value: str, width: int) -> str:
    if len(value) <= width:
        return value
    return value[: width - 1] + "…"


class TableFormatter:
    def __init__(self, width: int = 40, title: str | None = None) -> None:
        self.width = width
        self.title = title

    def _cell(self, value: object) -> Text:
        if value is None:
            return Text(_NULL, style="dim")
        return Text(_truncate(cell_text(value), self.width))

    def format(self, result: QueryResult) -> Iterator[str]:
        if not result.rows:
            yield _NO_RESULTS
            return

        table = Table(title=self.title, show_edge=True, pad_edge=True)
        for col in result.columns:
            table.add_column(col.name, no_wrap=True)
        for row in result.rows:
            table.add_row(*(self._cell(v) for v in row))

        buf = StringIO()
        term_width = shutil.get_terminal_size((120, 24)).columns
        console = Console(file=buf, force_terminal=True, width=term_width)
        console.print(table)
        yield buf.getvalue().rstrip("\n")


registry.register("table", TableFormatter)
