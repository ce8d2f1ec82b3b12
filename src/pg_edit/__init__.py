"""pg-edit: safe, validated row editing for PostgreSQL tables."""

from pg_edit.__about__ import __version__

__all__ = ["__version__"]
