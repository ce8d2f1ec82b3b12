"""Row edit tracking for one editing session.

The tracker owns the rows of the currently loaded page, the edits made to
them, and the blank rows added by the user. Rows live in an id-indexed arena
(an insertion-ordered dict keyed by a synthetic id); anything that refers to
a row, such as the cell open in a structured-value editor, holds the id so
that a reload replacing every row cannot leave a dangling reference.
"""

from __future__ import annotations

import copy
import json
from itertools import count
from typing import TYPE_CHECKING, Any

from pg_edit.core.exceptions import InputError
from pg_edit.core.logging import get_logger
from pg_edit.core.models import (
    DeleteChange,
    DraftSnapshot,
    DraftUpdate,
    InsertChange,
    RowState,
    UpdateChange,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from pg_edit.core.models import ChangeDescriptor, RowEdit, RowRecord


def canonical(value: Any) -> str:
    """Serialize a value so that equal structures compare equal.

    Object keys are sorted, so ``{"a": 1, "b": 2}`` and ``{"b": 2, "a": 1}``
    share one form.
    """
    return json.dumps(value, sort_keys=True, default=str, separators=(",", ":"))


def values_equal(a: Any, b: Any) -> bool:
    if isinstance(a, (dict, list)) or isinstance(b, (dict, list)):
        return canonical(a) == canonical(b)
    if a is None or b is None:
        return a is b
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    try:
        return bool(a == b)
    except TypeError:
        return canonical(a) == canonical(b)


def identity_key(
    row: Mapping[str, Any], primary_key: Sequence[str], columns: Sequence[str]
) -> str:
    """Key matching a working row to its re-fetched server row.

    Ordered primary-key values; without a primary key the whole row in
    column order, which cannot tell duplicate rows apart.
    """
    key_columns = primary_key if primary_key else columns
    return canonical([row.get(col) for col in key_columns])


class RowEditTracker:
    """In-memory row collection and change computation for one table."""

    def __init__(
        self,
        columns: Sequence[str],
        primary_key: Sequence[str] = (),
        *,
        allow_primary_key_edits: bool = True,
    ) -> None:
        self.columns: list[str] = list(columns)
        self.primary_key: list[str] = list(primary_key)
        self.allow_primary_key_edits = allow_primary_key_edits
        self._rows: dict[int, RowState] = {}
        self._ids = count(1)
        self.editor_cell: tuple[int, str] | None = None
        self.draft_matches = 0

    # -- collection access --

    @property
    def rows(self) -> list[RowState]:
        return list(self._rows.values())

    def __len__(self) -> int:
        return len(self._rows)

    def get(self, row_id: int) -> RowState:
        try:
            return self._rows[row_id]
        except KeyError:
            raise InputError(f"Unknown row id: {row_id}") from None

    def _complete(self, record: Mapping[str, Any] | None) -> RowRecord:
        record = record or {}
        return {col: copy.deepcopy(record.get(col)) for col in self.columns}

    def _new_row(self, original: RowRecord, current: RowRecord, **flags: bool) -> RowState:
        row = RowState(id=next(self._ids), original=original, current=current, **flags)
        self._rows[row.id] = row
        return row

    def _key(self, record: Mapping[str, Any]) -> str:
        return identity_key(record, self.primary_key, self.columns)

    # -- loading --

    def load_page(
        self,
        server_rows: Iterable[Mapping[str, Any]],
        primary_key: Sequence[str] | None = None,
        prior_draft: DraftSnapshot | None = None,
    ) -> list[RowState]:
        """Replace the collection with freshly fetched rows.

        Edits in ``prior_draft`` are re-applied to the server rows they
        belong to; ``original`` always holds the fetched value. Draft inserts
        follow the server rows.
        """
        log = get_logger("tracker")
        if primary_key is not None:
            self.primary_key = list(primary_key)

        self._rows = {}
        matched = 0
        for server_row in server_rows:
            original = self._complete(server_row)
            draft = prior_draft.updates.get(self._key(original)) if prior_draft else None
            if draft is not None:
                matched += 1
                self._new_row(original, self._complete(draft.current), deleted=draft.deleted)
            else:
                self._new_row(original, self._complete(original))

        if prior_draft is not None:
            for pending in prior_draft.inserts:
                self._new_row(
                    self._complete(pending.original),
                    self._complete(pending.current),
                    is_new=True,
                )

        self.draft_matches = matched
        if self.editor_cell is not None and self.editor_cell[0] not in self._rows:
            self.editor_cell = None

        log.debug(
            "page loaded",
            rows=len(self._rows),
            draft_updates_applied=matched,
            draft_inserts=len(prior_draft.inserts) if prior_draft else 0,
        )
        return self.rows

    def load_edits(self, edits: Iterable[RowEdit]) -> list[RowState]:
        """Build the collection from rows edited elsewhere.

        Columns missing from ``current`` keep their original value. Primary-key
        changes on persisted rows raise InputError when they are not allowed.
        """
        self._rows = {}
        self.editor_cell = None
        for edit in edits:
            if edit.is_new:
                original = self._complete(None)
                current = self._complete(edit.current or edit.original)
            else:
                original = self._complete(edit.original)
                current = self._complete({**edit.original, **edit.current})
            row = self._new_row(original, current, is_new=edit.is_new, deleted=edit.deleted)
            if not row.is_new and not self.allow_primary_key_edits:
                changed = [c for c in self.primary_key if c in self.modified_columns(row)]
                if changed:
                    raise InputError(
                        f"Primary key column(s) cannot be edited: {', '.join(changed)}"
                    )
        return self.rows

    # -- modification state --

    def modified_columns(self, row: RowState) -> list[str]:
        return [
            col
            for col in self.columns
            if not values_equal(row.current.get(col), row.original.get(col))
        ]

    def is_row_modified(self, row: RowState) -> bool:
        if row.is_new or row.deleted:
            return True
        return bool(self.modified_columns(row))

    @property
    def has_pending_changes(self) -> bool:
        return any(self.is_row_modified(row) for row in self._rows.values())

    # -- edits --

    def set_cell(self, row_id: int, column: str, value: Any) -> RowState:
        row = self.get(row_id)
        if column not in self.columns:
            raise InputError(f"Unknown column: {column!r}")
        if (
            column in self.primary_key
            and not row.is_new
            and not self.allow_primary_key_edits
        ):
            raise InputError(
                f"Column {column!r} is part of the primary key and cannot be edited"
            )
        row.current[column] = value
        return row

    def add_blank_row(self) -> RowState:
        blank = self._complete(None)
        return self._new_row(blank, dict(blank), is_new=True)

    def delete_rows(self, ids: Iterable[int]) -> None:
        """Remove new rows outright; soft-delete persisted ones."""
        for row_id in ids:
            row = self.get(row_id)
            if row.is_new:
                del self._rows[row_id]
                if self.editor_cell is not None and self.editor_cell[0] == row_id:
                    self.editor_cell = None
            else:
                row.deleted = True

    def restore_row(self, row_id: int) -> RowState:
        row = self.get(row_id)
        row.deleted = False
        return row

    def revert_row(self, row_id: int) -> RowState:
        row = self.get(row_id)
        row.current = copy.deepcopy(row.original)
        row.deleted = False
        return row

    def open_editor(self, row_id: int, column: str) -> None:
        self.get(row_id)
        if column not in self.columns:
            raise InputError(f"Unknown column: {column!r}")
        self.editor_cell = (row_id, column)

    def close_editor(self) -> None:
        self.editor_cell = None

    # -- diffing --

    def _where(self, row: RowState) -> RowRecord:
        key_columns = self.primary_key if self.primary_key else self.columns
        return {col: row.original.get(col) for col in key_columns}

    def _row_changes(self) -> list[tuple[RowState, ChangeDescriptor]]:
        pairs: list[tuple[RowState, ChangeDescriptor]] = []
        for row in self._rows.values():
            if row.is_new:
                if row.deleted:
                    continue
                data = {col: row.current[col] for col in self.modified_columns(row)}
                pairs.append((row, InsertChange(data=data)))
            elif row.deleted:
                pairs.append((row, DeleteChange(where=self._where(row))))
            else:
                modified = self.modified_columns(row)
                if not modified:
                    continue
                data = {col: row.current[col] for col in modified}
                pairs.append((row, UpdateChange(data=data, where=self._where(row))))
        return pairs

    def compute_changes(self) -> list[ChangeDescriptor]:
        """One change per row with a net effect, in collection order."""
        return [change for _, change in self._row_changes()]

    def settle_changes(self, indices: Iterable[int]) -> None:
        """Mark the changes at ``indices`` as written to the database.

        Indices refer to positions in ``compute_changes()``. Inserted and
        deleted rows leave the collection; updated rows take their current
        values as the new original. Other changes stay pending.
        """
        pairs = self._row_changes()
        for index in sorted(set(indices)):
            row, change = pairs[index]
            if isinstance(change, UpdateChange):
                row.original = copy.deepcopy(row.current)
                continue
            del self._rows[row.id]
            if self.editor_cell is not None and self.editor_cell[0] == row.id:
                self.editor_cell = None

    # -- drafts --

    def snapshot_draft(self) -> DraftSnapshot:
        """Capture edits that must survive a reload."""
        updates: dict[str, DraftUpdate] = {}
        inserts: list[RowState] = []
        for row in self._rows.values():
            if row.is_new:
                if not row.deleted:
                    inserts.append(row.model_copy(deep=True))
            elif self.is_row_modified(row):
                updates[self._key(row.original)] = DraftUpdate(
                    current=copy.deepcopy(row.current), deleted=row.deleted
                )
        return DraftSnapshot(updates=updates, inserts=inserts)

    def discard_drafts(self) -> None:
        """Drop every pending edit and added row."""
        for row_id in [r.id for r in self._rows.values() if r.is_new]:
            del self._rows[row_id]
        for row in self._rows.values():
            row.current = copy.deepcopy(row.original)
            row.deleted = False
        self.editor_cell = None
