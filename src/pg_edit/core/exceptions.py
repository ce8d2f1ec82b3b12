"""Exception hierarchy for pg-edit.

All exceptions carry an exit_code for CLI return value mapping.
Per-value validation problems are not exceptions: the validator returns
them as ValidationError records and ValidationFailed only wraps that list
when a caller needs to abort.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pg_edit.core.exit_codes import ExitCode

if TYPE_CHECKING:
    from pg_edit.core.models import ValidationError


class PgEditError(Exception):
    """Base exception for all pg-edit errors."""

    exit_code: int = ExitCode.GENERAL_ERROR

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NetworkError(PgEditError):
    """Connection failures, unreachable host."""

    exit_code: int = ExitCode.NETWORK_ERROR


class TimeoutError(NetworkError):
    """Query timeout, connection timeout."""

    exit_code: int = ExitCode.TIMEOUT


class InputError(PgEditError):
    """File not found, malformed edits, invalid parameters."""

    exit_code: int = ExitCode.INPUT_ERROR


class ConfigError(PgEditError):
    """Malformed config, missing profile."""

    exit_code: int = ExitCode.CONFIG_ERROR


class SynthesisError(PgEditError):
    """A change descriptor cannot be turned into a statement."""

    exit_code: int = ExitCode.INPUT_ERROR


class ExecutionError(PgEditError):
    """The database rejected a statement.

    ``message`` is the driver's native error text, never rewritten.
    """

    exit_code: int = ExitCode.EXECUTION_ERROR

    def __init__(self, message: str, change_index: int | None = None) -> None:
        super().__init__(message)
        self.change_index = change_index


class ValidationFailed(PgEditError):
    """Raised by callers that treat a non-empty violation list as fatal."""

    exit_code: int = ExitCode.VALIDATION_ERROR

    def __init__(self, errors: list[ValidationError]) -> None:
        lines = [f"  change {e.row_index}: {e.message}" for e in errors]
        super().__init__("Validation failed:\n" + "\n".join(lines))
        self.errors = errors
