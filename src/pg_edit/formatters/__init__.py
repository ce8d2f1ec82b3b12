"""Output formatters for pg-edit."""

from pg_edit.formatters.base import Formatter, FormatterRegistry, cell_text, registry
from pg_edit.formatters.csv import CSVFormatter
from pg_edit.formatters.json import JSONFormatter
from pg_edit.formatters.table import TableFormatter
