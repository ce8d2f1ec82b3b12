"""Editing session for one table.

Wires the pipeline together: the tracker produces changes, the synthesizer
renders them, the validator checks them unless bypassed, the executor runs
them, and a successful run discards the drafts and reloads the page. Front
ends drive a session through typed commands and ``dispatch``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pg_edit.core.commands import (
    AddRowCommand,
    ApplyFiltersCommand,
    ApplySortCommand,
    DeleteRowsCommand,
    DiscardChangesCommand,
    EditCellCommand,
    ExecuteChangesCommand,
    ExecutionCompleteResponse,
    LoadPageCommand,
    PreviewChangesCommand,
    RefreshCommand,
    RefreshSchemaCommand,
    RestoreRowCommand,
    SearchCommand,
    SqlPreviewResponse,
    TableStateResponse,
    ValidationFailedResponse,
)
from pg_edit.core.config import EditorSettings
from pg_edit.core.exceptions import PgEditError
from pg_edit.core.executor import BatchExecutor
from pg_edit.core.logging import get_logger
from pg_edit.core.metadata import SchemaMetadataCache
from pg_edit.core.models import ExecutionResult, ViewState
from pg_edit.core.postgres import fetch_page
from pg_edit.core.sqlgen import render_preview, synthesize_batch
from pg_edit.core.tracker import RowEditTracker
from pg_edit.core.validator import SchemaValidator

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from pg_edit.core.client import PgClient
    from pg_edit.core.commands import Command, Response
    from pg_edit.core.models import DraftSnapshot, RowEdit, TableMetadata, ValidationError

_HANDLERS: dict[str, Callable[[EditSession, Any], Response]] = {}


def _handles(name: str) -> Callable[[Callable[..., Response]], Callable[..., Response]]:
    def register(handler: Callable[..., Response]) -> Callable[..., Response]:
        _HANDLERS[name] = handler
        return handler

    return register


class EditSession:
    """Pending edits, schema metadata and view state of one open table."""

    def __init__(
        self,
        client: PgClient,
        schema: str,
        table: str,
        *,
        settings: EditorSettings | None = None,
        cache: SchemaMetadataCache | None = None,
    ) -> None:
        self.client = client
        self.schema = schema
        self.table = table
        self.settings = settings or EditorSettings()
        self.cache = cache if cache is not None else SchemaMetadataCache()
        self.connection_id = client.connection_id
        self.view = ViewState()
        self.total_rows = 0
        self._tracker: RowEditTracker | None = None
        self._reload_pending = False
        self._page_loaded = False
        self.validator = SchemaValidator(client, self.cache, self.connection_id)
        self.executor = BatchExecutor(client, on_success=self._after_commit)

    # -- lifecycle --

    @property
    def metadata(self) -> TableMetadata:
        return self.cache.get_or_fetch(self.client, self.connection_id, self.schema, self.table)

    @property
    def tracker(self) -> RowEditTracker:
        if self._tracker is None:
            metadata = self.metadata
            self._tracker = RowEditTracker(
                metadata.column_names,
                metadata.primary_key,
                allow_primary_key_edits=self.settings.allow_primary_key_edits,
            )
        return self._tracker

    def open(self) -> TableStateResponse:
        return self.reload(keep_drafts=False)

    def close(self) -> None:
        """End the session and drop its cached schema metadata."""
        self.cache.invalidate(self.connection_id, self.schema, self.table)
        self._tracker = None

    def reload(self, *, keep_drafts: bool = True) -> TableStateResponse:
        """Fetch the view's page; pending edits survive unless told otherwise."""
        draft = self.tracker.snapshot_draft() if keep_drafts else None
        return self._load(draft)

    def load_edits(self, edits: Iterable[RowEdit]) -> TableStateResponse:
        """Take rows edited elsewhere instead of a fetched page.

        Nothing is re-fetched after execution until the next reload.
        """
        self.tracker.load_edits(edits)
        self.total_rows = len(self.tracker)
        self._page_loaded = False
        return self.state()

    def _refreshed_state(self, *, keep_drafts: bool) -> TableStateResponse:
        if self._page_loaded:
            return self.reload(keep_drafts=keep_drafts)
        return self.state()

    def _load(self, draft: DraftSnapshot | None) -> TableStateResponse:
        log = get_logger("session")
        tracker = self.tracker
        page = fetch_page(
            self.client,
            self.schema,
            self.table,
            self.metadata.columns,
            self.view,
            self.settings.page_size,
        )
        tracker.load_page(page.rows, self.metadata.primary_key, draft)
        self.total_rows = page.total_rows
        self._page_loaded = True

        if draft is not None:
            dropped = len(draft.updates) - tracker.draft_matches
            if dropped > 0:
                log.warning(
                    "pending edits for rows outside the loaded page were dropped",
                    dropped=dropped,
                    page=self.view.page,
                )
        return self.state()

    def state(self) -> TableStateResponse:
        tracker = self.tracker
        metadata = self.metadata
        return TableStateResponse(
            schema_name=self.schema,
            table_name=self.table,
            columns=list(metadata.columns),
            primary_key=list(metadata.primary_key),
            rows=tracker.rows,
            view=self.view.model_copy(),
            total_rows=self.total_rows,
            page_size=self.settings.page_size,
            has_pending_changes=tracker.has_pending_changes,
        )

    # -- pipeline --

    def validate(self) -> list[ValidationError]:
        """Check every pending change against the live schema."""
        return self.validator.validate(self.schema, self.table, self.tracker.compute_changes())

    def preview(self) -> SqlPreviewResponse:
        changes = self.tracker.compute_changes()
        statements = synthesize_batch(self.schema, self.table, changes)
        return SqlPreviewResponse(payload=render_preview(statements))

    def execute(
        self,
        *,
        bypass_validation: bool | None = None,
        transactional: bool | None = None,
    ) -> ExecutionCompleteResponse | ValidationFailedResponse:
        """Validate (unless bypassed) and run every pending change."""
        log = get_logger("session")
        if bypass_validation is None:
            bypass_validation = self.settings.bypass_validation
        if transactional is None:
            transactional = self.settings.transactional

        changes = self.tracker.compute_changes()
        if not changes:
            return ExecutionCompleteResponse(
                result=ExecutionResult(success=True, atomic=transactional),
                message="No pending changes to execute.",
            )

        if bypass_validation:
            log.info("validation bypassed", changes=len(changes))
        else:
            try:
                errors = self.validator.validate(self.schema, self.table, changes)
            except PgEditError as e:
                return ExecutionCompleteResponse(
                    result=ExecutionResult(
                        success=False,
                        atomic=transactional,
                        error=f"Validation step failed: {e.message}",
                    ),
                )
            if errors:
                return ValidationFailedResponse(errors=errors)

        statements = synthesize_batch(self.schema, self.table, changes)
        result = self.executor.execute(statements, transactional=transactional)

        state = None
        if self._reload_pending:
            self._reload_pending = False
            state = self._refreshed_state(keep_drafts=False)
        elif not result.atomic and result.committed:
            committed = [s.change_index for s in statements[: result.committed]]
            self.tracker.settle_changes(committed)
            log.warning(
                "batch stopped after partial commit",
                committed=result.committed,
                failed_index=result.failed_index,
            )
            state = self._refreshed_state(keep_drafts=True)
        return ExecutionCompleteResponse(result=result, state=state)

    def _after_commit(self) -> None:
        self.tracker.discard_drafts()
        self._reload_pending = True

    # -- commands --

    def dispatch(self, command: Command) -> Response:
        """Run one command and return its response."""
        handler = _HANDLERS.get(command.command)
        if handler is None:
            raise PgEditError(f"No handler for command: {command.command}")
        return handler(self, command)

    @_handles("load_page")
    def _on_load_page(self, command: LoadPageCommand) -> Response:
        self.view.page = command.page
        return self.reload()

    @_handles("refresh")
    def _on_refresh(self, command: RefreshCommand) -> Response:
        return self.reload()

    @_handles("refresh_schema")
    def _on_refresh_schema(self, command: RefreshSchemaCommand) -> Response:
        draft = self.tracker.snapshot_draft()
        self.cache.invalidate(self.connection_id, self.schema, self.table)
        self._tracker = None
        return self._load(draft)

    @_handles("apply_sort")
    def _on_apply_sort(self, command: ApplySortCommand) -> Response:
        self.view.sort = command.sort
        self.view.page = 0
        return self.reload()

    @_handles("apply_filters")
    def _on_apply_filters(self, command: ApplyFiltersCommand) -> Response:
        self.view.filters = dict(command.filters)
        self.view.page = 0
        return self.reload()

    @_handles("search")
    def _on_search(self, command: SearchCommand) -> Response:
        self.view.search_term = command.term
        self.view.page = 0
        return self.reload()

    @_handles("add_row")
    def _on_add_row(self, command: AddRowCommand) -> Response:
        self.tracker.add_blank_row()
        return self.state()

    @_handles("edit_cell")
    def _on_edit_cell(self, command: EditCellCommand) -> Response:
        self.tracker.set_cell(command.row_id, command.column, command.value)
        return self.state()

    @_handles("delete_rows")
    def _on_delete_rows(self, command: DeleteRowsCommand) -> Response:
        self.tracker.delete_rows(command.row_ids)
        return self.state()

    @_handles("restore_row")
    def _on_restore_row(self, command: RestoreRowCommand) -> Response:
        self.tracker.restore_row(command.row_id)
        return self.state()

    @_handles("discard_changes")
    def _on_discard_changes(self, command: DiscardChangesCommand) -> Response:
        self.tracker.discard_drafts()
        return self.reload(keep_drafts=False)

    @_handles("preview_changes")
    def _on_preview_changes(self, command: PreviewChangesCommand) -> Response:
        return self.preview()

    @_handles("execute_changes")
    def _on_execute_changes(self, command: ExecuteChangesCommand) -> Response:
        return self.execute(
            bypass_validation=command.bypass_validation,
            transactional=command.transactional,
        )
