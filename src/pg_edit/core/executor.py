"""Batch execution of synthesized statements.

Transactional mode runs the whole batch in one transaction and rolls all of
it back on the first failure. Immediate mode commits statement by statement
and stops at the first failure, leaving earlier statements applied.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Protocol

import sentry_sdk

from pg_edit.core.exceptions import PgEditError
from pg_edit.core.logging import get_logger
from pg_edit.core.models import ExecutionResult

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from contextlib import AbstractContextManager

    from pg_edit.core.models import SynthesizedStatement


class StatementRunner(Protocol):
    """Anything that can run one ``$n``-parameterized statement."""

    def execute_statement(self, statement: str, values: Sequence[Any]) -> int: ...


class StatementTarget(StatementRunner, Protocol):
    """A database that can also open a transaction.

    Leaving the ``transaction()`` context normally commits; leaving it with
    an exception rolls back and re-raises.
    """

    def transaction(self) -> AbstractContextManager[StatementRunner]: ...


class BatchExecutor:
    """Runs statement batches against a StatementTarget (normally PgClient)."""

    def __init__(
        self,
        target: StatementTarget,
        on_success: Callable[[], None] | None = None,
    ) -> None:
        self.target = target
        self.on_success = on_success

    def execute(
        self,
        statements: Sequence[SynthesizedStatement],
        *,
        transactional: bool = True,
    ) -> ExecutionResult:
        """Run the batch; never raises for database failures.

        A failure is reported with the index of the change whose statement
        failed and the database's own error message.
        """
        log = get_logger("executor")
        mode = "transactional" if transactional else "immediate"
        start_time = time.monotonic()

        with sentry_sdk.start_span(op="db.batch", description=f"{mode} batch") as span:
            span.set_data("statements", len(statements))
            if transactional:
                result = self._execute_transactional(statements)
            else:
                result = self._execute_immediate(statements)
            span.set_status("ok" if result.success else "internal_error")

        duration_ms = (time.monotonic() - start_time) * 1000
        if result.success:
            log.info(
                "batch executed",
                mode=mode,
                statements=result.executed,
                duration_ms=f"{duration_ms:.1f}",
            )
            if self.on_success is not None:
                self.on_success()
        else:
            log.error(
                "batch failed",
                mode=mode,
                failed_index=result.failed_index,
                committed=result.committed,
                error=result.error,
            )
        return result

    def _execute_transactional(
        self, statements: Sequence[SynthesizedStatement]
    ) -> ExecutionResult:
        executed = 0
        current: SynthesizedStatement | None = None
        try:
            with self.target.transaction() as tx:
                for stmt in statements:
                    current = stmt
                    tx.execute_statement(stmt.statement, stmt.values)
                    executed += 1
                current = None
        except PgEditError as e:
            return ExecutionResult(
                success=False,
                atomic=True,
                executed=executed,
                committed=0,
                failed_index=current.change_index if current is not None else None,
                error=e.message,
            )
        return ExecutionResult(
            success=True, atomic=True, executed=executed, committed=executed
        )

    def _execute_immediate(
        self, statements: Sequence[SynthesizedStatement]
    ) -> ExecutionResult:
        committed = 0
        for stmt in statements:
            try:
                self.target.execute_statement(stmt.statement, stmt.values)
            except PgEditError as e:
                return ExecutionResult(
                    success=False,
                    atomic=False,
                    executed=committed,
                    committed=committed,
                    failed_index=stmt.change_index,
                    error=e.message,
                )
            committed += 1
        return ExecutionResult(
            success=True, atomic=False, executed=committed, committed=committed
        )
