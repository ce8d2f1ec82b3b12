"""Tests for the row edit tracker."""

import pytest

from pg_edit.core.exceptions import InputError
from pg_edit.core.models import DeleteChange, InsertChange, RowEdit, UpdateChange
from pg_edit.core.tracker import RowEditTracker, canonical, identity_key, values_equal

COLUMNS = ["id", "name", "meta"]


def _server_rows():
    return [
        {"id": 1, "name": "alice", "meta": {"a": 1, "b": 2}},
        {"id": 2, "name": "bob", "meta": None},
        {"id": 3, "name": "carol", "meta": [1, 2]},
    ]


@pytest.fixture
def tracker():
    t = RowEditTracker(COLUMNS, ["id"])
    t.load_page(_server_rows())
    return t


def _row_by_pk(tracker, pk):
    return next(r for r in tracker.rows if r.original["id"] == pk)


@pytest.mark.unit
class TestHelpers:
    def test_canonical_sorts_keys(self):
        assert canonical({"b": 2, "a": 1}) == canonical({"a": 1, "b": 2})

    def test_values_equal_structures(self):
        assert values_equal({"x": [1, {"y": 2, "z": 3}]}, {"x": [1, {"z": 3, "y": 2}]})
        assert not values_equal([1, 2], [2, 1])

    def test_values_equal_none(self):
        assert values_equal(None, None)
        assert not values_equal(None, "")
        assert not values_equal(0, None)

    def test_values_equal_bool_is_not_int(self):
        assert not values_equal(True, 1)
        assert values_equal(1, 1.0)

    def test_identity_key_uses_pk(self):
        row = {"id": 7, "name": "x"}
        assert identity_key(row, ["id"], ["id", "name"]) == canonical([7])

    def test_identity_key_without_pk_uses_whole_row(self):
        row = {"id": 7, "name": "x"}
        assert identity_key(row, [], ["id", "name"]) == canonical([7, "x"])


@pytest.mark.unit
class TestLoadPage:
    def test_fresh_load_has_no_changes(self, tracker):
        assert len(tracker) == 3
        assert not any(tracker.is_row_modified(r) for r in tracker.rows)
        assert tracker.compute_changes() == []
        assert not tracker.has_pending_changes

    def test_missing_columns_become_none(self):
        t = RowEditTracker(COLUMNS, ["id"])
        rows = t.load_page([{"id": 1}])
        assert rows[0].current == {"id": 1, "name": None, "meta": None}
        assert rows[0].original == rows[0].current

    def test_current_is_independent_of_original(self, tracker):
        row = _row_by_pk(tracker, 1)
        row.current["meta"]["a"] = 99
        assert row.original["meta"]["a"] == 1

    def test_primary_key_can_be_replaced(self):
        t = RowEditTracker(COLUMNS)
        t.load_page(_server_rows(), primary_key=["id"])
        assert t.primary_key == ["id"]


@pytest.mark.unit
class TestEdits:
    def test_set_cell_marks_modified(self, tracker):
        row = _row_by_pk(tracker, 2)
        tracker.set_cell(row.id, "name", "robert")
        assert tracker.is_row_modified(row)
        assert tracker.modified_columns(row) == ["name"]

    def test_reordered_keys_are_not_a_change(self, tracker):
        row = _row_by_pk(tracker, 1)
        tracker.set_cell(row.id, "meta", {"b": 2, "a": 1})
        assert not tracker.is_row_modified(row)

    def test_set_back_to_original_is_not_a_change(self, tracker):
        row = _row_by_pk(tracker, 2)
        tracker.set_cell(row.id, "name", "robert")
        tracker.set_cell(row.id, "name", "bob")
        assert tracker.compute_changes() == []

    def test_unknown_column(self, tracker):
        row = _row_by_pk(tracker, 1)
        with pytest.raises(InputError, match="Unknown column"):
            tracker.set_cell(row.id, "nope", 1)

    def test_unknown_row(self, tracker):
        with pytest.raises(InputError, match="Unknown row id"):
            tracker.set_cell(999, "name", "x")

    def test_primary_key_edit_refused_when_disabled(self):
        t = RowEditTracker(COLUMNS, ["id"], allow_primary_key_edits=False)
        t.load_page(_server_rows())
        with pytest.raises(InputError, match="primary key"):
            t.set_cell(t.rows[0].id, "id", 100)

    def test_primary_key_edit_on_new_row_allowed_when_disabled(self):
        t = RowEditTracker(COLUMNS, ["id"], allow_primary_key_edits=False)
        row = t.add_blank_row()
        t.set_cell(row.id, "id", 100)
        assert row.current["id"] == 100

    def test_revert_row(self, tracker):
        row = _row_by_pk(tracker, 1)
        tracker.set_cell(row.id, "name", "alicia")
        tracker.delete_rows([row.id])
        tracker.revert_row(row.id)
        assert not tracker.is_row_modified(row)

    def test_restore_row(self, tracker):
        row = _row_by_pk(tracker, 3)
        tracker.delete_rows([row.id])
        assert row.deleted
        tracker.restore_row(row.id)
        assert not row.deleted
        assert tracker.compute_changes() == []


@pytest.mark.unit
class TestDelete:
    def test_persisted_row_is_soft_deleted(self, tracker):
        row = _row_by_pk(tracker, 2)
        tracker.delete_rows([row.id])
        assert len(tracker) == 3
        assert tracker.compute_changes() == [DeleteChange(where={"id": 2})]

    def test_new_row_is_removed(self, tracker):
        row = tracker.add_blank_row()
        tracker.delete_rows([row.id])
        assert len(tracker) == 3
        assert tracker.compute_changes() == []

    def test_new_and_deleted_from_edits_is_discarded(self):
        t = RowEditTracker(COLUMNS, ["id"])
        t.load_edits([RowEdit(current={"name": "ghost"}, is_new=True, deleted=True)])
        assert t.compute_changes() == []


@pytest.mark.unit
class TestComputeChanges:
    def test_one_of_each_in_collection_order(self, tracker):
        tracker.set_cell(_row_by_pk(tracker, 1).id, "name", "alicia")
        tracker.delete_rows([_row_by_pk(tracker, 2).id])
        new = tracker.add_blank_row()
        tracker.set_cell(new.id, "name", "dave")

        changes = tracker.compute_changes()
        assert changes == [
            UpdateChange(data={"name": "alicia"}, where={"id": 1}),
            DeleteChange(where={"id": 2}),
            InsertChange(data={"name": "dave"}),
        ]

    def test_update_only_carries_modified_columns(self, tracker):
        row = _row_by_pk(tracker, 3)
        tracker.set_cell(row.id, "meta", [1, 2, 3])
        (change,) = tracker.compute_changes()
        assert change.data == {"meta": [1, 2, 3]}

    def test_untouched_new_row_inserts_defaults(self, tracker):
        tracker.add_blank_row()
        assert tracker.compute_changes() == [InsertChange(data={})]

    def test_primary_key_change_keeps_old_key_in_where(self, tracker):
        row = _row_by_pk(tracker, 3)
        tracker.set_cell(row.id, "id", 30)
        assert tracker.compute_changes() == [UpdateChange(data={"id": 30}, where={"id": 3})]

    def test_no_primary_key_uses_whole_row(self):
        t = RowEditTracker(["a", "b"])
        t.load_page([{"a": 1, "b": "x"}])
        t.set_cell(t.rows[0].id, "b", "y")
        assert t.compute_changes() == [
            UpdateChange(data={"b": "y"}, where={"a": 1, "b": "x"})
        ]

    def test_composite_key_in_order(self):
        t = RowEditTracker(["k1", "k2", "v"], ["k2", "k1"])
        t.load_page([{"k1": 1, "k2": 2, "v": "x"}])
        t.delete_rows([t.rows[0].id])
        (change,) = t.compute_changes()
        assert list(change.where) == ["k2", "k1"]


@pytest.mark.unit
class TestSettleChanges:
    def test_settled_changes_leave_pending_set(self, tracker):
        tracker.set_cell(_row_by_pk(tracker, 1).id, "name", "alicia")
        added = tracker.add_blank_row()
        tracker.set_cell(added.id, "name", "dave")
        tracker.delete_rows([_row_by_pk(tracker, 2).id])
        assert [type(c) for c in tracker.compute_changes()] == [
            UpdateChange,
            DeleteChange,
            InsertChange,
        ]

        tracker.settle_changes([0, 2])

        assert tracker.compute_changes() == [DeleteChange(where={"id": 2})]
        assert _row_by_pk(tracker, 1).original["name"] == "alicia"
        assert not any(r.is_new for r in tracker.rows)

    def test_settled_delete_removes_row(self, tracker):
        tracker.delete_rows([_row_by_pk(tracker, 3).id])
        tracker.settle_changes([0])
        assert [r.original["id"] for r in tracker.rows] == [1, 2]
        assert not tracker.has_pending_changes


@pytest.mark.unit
class TestDrafts:
    def test_reload_reapplies_edits_to_fresh_rows(self, tracker):
        row = _row_by_pk(tracker, 2)
        tracker.set_cell(row.id, "name", "robert")
        new = tracker.add_blank_row()
        tracker.set_cell(new.id, "name", "dave")
        draft = tracker.snapshot_draft()

        server = _server_rows()
        server[1]["meta"] = {"changed": "elsewhere"}
        tracker.load_page(server, prior_draft=draft)

        reloaded = _row_by_pk(tracker, 2)
        assert reloaded.original["meta"] == {"changed": "elsewhere"}
        assert reloaded.current["name"] == "robert"
        assert tracker.draft_matches == 1

        assert len(tracker) == 4
        assert tracker.rows[-1].is_new
        assert tracker.rows[-1].current["name"] == "dave"

    def test_deleted_flag_survives_reload(self, tracker):
        tracker.delete_rows([_row_by_pk(tracker, 1).id])
        draft = tracker.snapshot_draft()
        tracker.load_page(_server_rows(), prior_draft=draft)
        assert _row_by_pk(tracker, 1).deleted

    def test_draft_for_row_off_page_is_not_applied(self, tracker):
        tracker.set_cell(_row_by_pk(tracker, 3).id, "name", "caroline")
        draft = tracker.snapshot_draft()
        tracker.load_page(_server_rows()[:2], prior_draft=draft)
        assert tracker.draft_matches == 0
        assert tracker.compute_changes() == []

    def test_snapshot_only_holds_modified_rows(self, tracker):
        tracker.set_cell(_row_by_pk(tracker, 1).id, "name", "alicia")
        draft = tracker.snapshot_draft()
        assert list(draft.updates) == [canonical([1])]
        assert draft.inserts == []

    def test_discard_drafts(self, tracker):
        tracker.set_cell(_row_by_pk(tracker, 1).id, "name", "alicia")
        tracker.delete_rows([_row_by_pk(tracker, 2).id])
        tracker.add_blank_row()
        tracker.discard_drafts()
        assert len(tracker) == 3
        assert tracker.compute_changes() == []


@pytest.mark.unit
class TestEditorCell:
    def test_open_and_close(self, tracker):
        row = _row_by_pk(tracker, 1)
        tracker.open_editor(row.id, "meta")
        assert tracker.editor_cell == (row.id, "meta")
        tracker.close_editor()
        assert tracker.editor_cell is None

    def test_cleared_when_row_disappears_on_reload(self, tracker):
        tracker.open_editor(_row_by_pk(tracker, 1).id, "meta")
        tracker.load_page(_server_rows())
        assert tracker.editor_cell is None

    def test_cleared_when_new_row_deleted(self, tracker):
        row = tracker.add_blank_row()
        tracker.open_editor(row.id, "meta")
        tracker.delete_rows([row.id])
        assert tracker.editor_cell is None

    def test_unknown_column(self, tracker):
        with pytest.raises(InputError):
            tracker.open_editor(_row_by_pk(tracker, 1).id, "nope")


@pytest.mark.unit
class TestLoadEdits:
    def test_partial_current_keeps_other_columns(self):
        t = RowEditTracker(COLUMNS, ["id"])
        t.load_edits([RowEdit(original={"id": 1, "name": "a"}, current={"name": "b"})])
        assert t.compute_changes() == [UpdateChange(data={"name": "b"}, where={"id": 1})]

    def test_new_row_from_current(self):
        t = RowEditTracker(COLUMNS, ["id"])
        t.load_edits([RowEdit(current={"name": "new"}, is_new=True)])
        assert t.compute_changes() == [InsertChange(data={"name": "new"})]

    def test_primary_key_edit_refused_when_disabled(self):
        t = RowEditTracker(COLUMNS, ["id"], allow_primary_key_edits=False)
        with pytest.raises(InputError, match="Primary key"):
            t.load_edits([RowEdit(original={"id": 1}, current={"id": 2})])
