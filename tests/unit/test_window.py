"""Tests for the windowed row engine."""

import pytest

from ted.core.update_queue import UpdateQueue
from ted.core.window import RowWindow, diff_rows
from ted.managers.schema import NoKeyError
from ted.models.relation import SortColumn
from ted.models.row import RowState
from ted.utils.type_utils import EMPTY_CELL

TEN_USERS = """
    CREATE TABLE users (
        id INTEGER PRIMARY KEY,
        name TEXT
    );
    INSERT INTO users (id, name) VALUES
        (1, 'a'), (2, 'b'), (3, 'c'), (4, 'd'), (5, 'e'),
        (6, 'f'), (7, 'g'), (8, 'h'), (9, 'i'), (10, 'j');
"""


def ids(window):
    return [row.data[0] for row in window.visible_rows()]


@pytest.fixture
def context(make_context):
    return make_context(TEN_USERS)


@pytest.fixture
def make_window(context):
    """Factory for windows over one relation; windows are closed after the test."""
    windows = []

    def factory(size=4, table="users", sort=None, **kwargs):
        relation = context.schema.load(table)
        window = RowWindow(context, relation, size, sort=sort, **kwargs)
        windows.append(window)
        return window

    yield factory
    for window in windows:
        window.close()


class TestLoading:
    """Test filling the window."""

    def test_load_from_top(self, make_window):
        window = make_window()

        window.load_from()

        assert ids(window) == [1, 2, 3, 4]
        assert not window.is_at_bottom()
        assert window.previous_rows == [[1, "a"], [2, "b"], [3, "c"], [4, "d"]]

    def test_short_relation_gets_border(self, users_db):
        relation = users_db.open_relation("users")
        window = users_db.window(relation, size=5)

        window.load_from()

        assert ids(window) == [1, 2, 3]
        assert window.row(3).is_border
        assert window.row(4) is None
        assert window.is_at_bottom()
        window.close()

    def test_empty_relation(self, make_context):
        context = make_context("CREATE TABLE empty (id INTEGER PRIMARY KEY);")
        window = RowWindow(context, context.schema.load("empty"), 3)

        window.load_from()

        assert window.visible_rows() == []
        assert window.row(0).is_border
        assert window.is_at_bottom()
        assert window.next_rows(1)
        assert window.prev_rows(1)
        window.close()

    def test_load_from_bottom(self, make_window):
        window = make_window()

        window.load_from(from_top=False)

        assert ids(window) == [8, 9, 10]
        assert window.row(3).is_border

    def test_load_from_key(self, make_window):
        window = make_window()

        window.load_from([5])

        assert ids(window) == [5, 6, 7, 8]

    def test_load_from_key_at_bottom(self, make_window):
        window = make_window()

        window.load_from([6], from_top=False)

        assert ids(window) == [3, 4, 5, 6]

    def test_bottom_load_near_start_shows_top(self, make_window):
        window = make_window()

        window.load_from([2], from_top=False)

        assert ids(window) == [1, 2, 3, 4]

    def test_size_must_leave_room_for_border(self, context):
        with pytest.raises(ValueError, match="at least 2"):
            RowWindow(context, context.schema.load("users"), 1)

    def test_relation_without_key(self, make_context):
        context = make_context("CREATE TABLE loose (name TEXT);")

        with pytest.raises(NoKeyError):
            RowWindow(context, context.schema.load("loose"), 3)


class TestScrolling:
    """Test moving through the relation."""

    def test_next_rows_until_end(self, make_window):
        window = make_window()
        window.load_from()

        assert not window.next_rows(1)
        assert ids(window) == [2, 3, 4, 5]
        assert not window.next_rows(3)
        assert ids(window) == [5, 6, 7, 8]
        assert window.next_rows(5)
        assert ids(window) == [8, 9, 10]
        assert window.is_at_bottom()
        assert window.next_rows(1)
        assert ids(window) == [8, 9, 10]

    def test_prev_rows_until_start(self, make_window):
        window = make_window()
        window.load_from(from_top=False)

        assert not window.prev_rows(2)
        assert ids(window) == [6, 7, 8, 9]
        assert window.prev_rows(10)
        assert ids(window) == [1, 2, 3, 4]

    def test_prev_then_next_restores(self, make_window):
        window = make_window()
        window.load_from([5])
        before = ids(window)

        window.prev_rows(2)
        window.next_rows(2)

        assert ids(window) == before

    def test_scrolling_matches_direct_load(self, make_window):
        scrolled = make_window()
        scrolled.load_from()
        scrolled.next_rows(3)
        scrolled.next_rows(3)

        direct = make_window()
        direct.load_from([7])

        assert ids(scrolled) == ids(direct) == [7, 8, 9, 10]

    def test_composite_key(self, make_context):
        context = make_context(
            """
            CREATE TABLE pairs (a INTEGER NOT NULL, b INTEGER NOT NULL, PRIMARY KEY (a, b));
            INSERT INTO pairs VALUES (1, 2), (1, 3), (2, 1);
            """
        )
        window = RowWindow(context, context.schema.load("pairs"), 2)

        window.load_from()
        assert [row.data for row in window.visible_rows()] == [[1, 2], [1, 3]]
        window.next_rows(1)
        assert [row.data for row in window.visible_rows()] == [[1, 3], [2, 1]]
        assert window.next_rows(1)
        assert [row.data for row in window.visible_rows()] == [[2, 1]]
        window.close()

    def test_sorted_scrolling(self, make_context):
        context = make_context(
            """
            CREATE TABLE people (id INTEGER PRIMARY KEY, age INTEGER);
            INSERT INTO people VALUES (1, 20), (2, 25), (3, 30), (4, 25), (5, 40), (6, 50);
            """
        )
        window = RowWindow(context, context.schema.load("people"), 3, sort=SortColumn(name="age"))

        window.load_from()
        assert ids(window) == [1, 2, 4]
        window.next_rows(1)
        assert ids(window) == [2, 4, 3]
        window.prev_rows(1)
        assert ids(window) == [1, 2, 4]
        window.load_from([4])
        assert ids(window) == [4, 3, 5]
        window.close()


class TestRefresh:
    """Test re-reading the window and marking changes."""

    def test_refresh_marks_changes(self, make_window, context):
        window = make_window()
        window.load_from()
        window.close_cursor()

        context.connection.execute_update("UPDATE users SET name = 'B' WHERE id = 2")
        context.connection.execute_update("DELETE FROM users WHERE id = 3")

        assert window.refresh()
        rows = window.visible_rows()
        assert [row.data[0] for row in rows] == [1, 2, 3, 4]
        assert [row.state for row in rows] == [
            RowState.NORMAL,
            RowState.MODIFIED,
            RowState.DELETED,
            RowState.NORMAL,
        ]
        assert rows[1].modified == [1]
        assert window.previous_rows == [[1, "a"], [2, "B"], [4, "d"], [5, "e"]]

        window.refresh()
        assert ids(window) == [1, 2, 4, 5]
        assert all(row.state == RowState.NORMAL for row in window.visible_rows())

    def test_refresh_shows_new_rows(self, make_window, context):
        window = make_window()
        window.load_from(from_top=False)
        window.close_cursor()

        context.connection.execute_update("INSERT INTO users (id, name) VALUES (11, 'k')")
        window.refresh()

        assert ids(window) == [8, 9, 10, 11]
        assert window.row(3).state == RowState.NEW

    def test_refresh_skipped_while_cursor_open(self, make_window):
        window = make_window()
        window.load_from()

        assert not window.refresh()


class TestDiffRows:
    """Test merging two snapshots of a window."""

    @staticmethod
    def key_of(data):
        return [data[0]]

    def test_marks_rows(self):
        previous = [[1, "a"], [2, "b"], [3, "c"]]
        current = [[1, "a"], [3, "C"], [4, "d"]]

        rows = diff_rows(previous, current, self.key_of, lambda keys: set(), 10)

        assert [(row.data[0], row.state) for row in rows] == [
            (1, RowState.NORMAL),
            (2, RowState.DELETED),
            (3, RowState.MODIFIED),
            (4, RowState.NEW),
        ]

    def test_trailing_rows_shown_only_if_they_exist(self):
        previous = [[1], [2], [3]]
        current = [[1]]

        rows = diff_rows(previous, current, self.key_of, lambda keys: {(3,)}, 10)

        assert [(row.data[0], row.state) for row in rows] == [(1, RowState.NORMAL), (3, RowState.DELETED)]

    def test_moved_row_is_deleted_and_new(self):
        rows = diff_rows([[1], [2]], [[2], [1]], self.key_of, lambda keys: {(2,)}, 10)

        assert [(row.data[0], row.state) for row in rows] == [
            (2, RowState.NEW),
            (1, RowState.NORMAL),
            (2, RowState.DELETED),
        ]

    def test_limit(self):
        rows = diff_rows([], [[1], [2], [3]], self.key_of, lambda keys: set(), 2)

        assert len(rows) == 2


class TestEdits:
    """Test edits made through the window."""

    def test_update_keeps_position(self, make_window):
        window = make_window()
        window.load_from()

        index = window.update_cell(1, "name", "z")

        assert index == 1
        assert window.row(1).data == [2, "z"]
        assert window.row(1).modified == [1]
        assert window.previous_rows[1] == [2, "z"]

    def test_update_key_moves_row_below(self, make_window):
        window = make_window()
        window.load_from()

        index = window.update_cell(0, "id", "20")

        assert ids(window) == [8, 9, 10, 20]
        assert index == 3

    def test_update_key_moves_row_above(self, make_window):
        window = make_window()
        window.load_from([5])

        index = window.update_cell(2, "id", "0")

        assert index == 0
        assert ids(window)[0] == 0

    def test_update_key_within_window(self, make_window, context):
        context.connection.execute_update("DELETE FROM users WHERE id = 3")
        window = make_window()
        window.load_from()

        index = window.update_cell(3, "id", "3")

        assert ids(window) == [1, 2, 3, 4]
        assert index == 2

    def test_insert_row(self, make_window):
        window = make_window()
        window.load_from()

        index = window.insert_row([EMPTY_CELL, "k"])

        assert ids(window) == [8, 9, 10, 11]
        assert index == 3

    def test_delete_row(self, make_window):
        window = make_window()
        window.load_from()

        window.delete_row(0)

        assert ids(window) == [2, 3, 4, 5]

    def test_delete_last_visible_rows(self, make_window):
        window = make_window()
        window.load_from(from_top=False)

        window.delete_row(2)

        assert ids(window) == [8, 9]

    def test_delete_only_row(self, make_context):
        context = make_context(
            "CREATE TABLE one (id INTEGER PRIMARY KEY); INSERT INTO one VALUES (1);"
        )
        window = RowWindow(context, context.schema.load("one"), 3)
        window.load_from()

        window.delete_row(0)

        assert window.visible_rows() == []
        assert window.is_at_bottom()
        window.close()

    def test_edit_outside_rows(self, make_window):
        window = make_window(size=5, table="users")
        window.load_from(from_top=False)

        with pytest.raises(ValueError, match="No row"):
            window.update_cell(4, "name", "x")
        with pytest.raises(ValueError, match="outside the window"):
            window.delete_row(7)

    def test_pending_insert_row(self, make_window):
        row = make_window().pending_insert_row()

        assert row.state == RowState.INSERT
        assert row.data == [EMPTY_CELL, EMPTY_CELL]


class TestFindNext:
    """Test find-next through the window."""

    @pytest.fixture
    def window(self, make_context):
        context = make_context(
            """
            CREATE TABLE people (id INTEGER PRIMARY KEY, age INTEGER);
            INSERT INTO people VALUES (1, 20), (2, 25), (3, 30), (4, 25), (5, 40), (6, 50);
            """
        )
        window = RowWindow(context, context.schema.load("people"), 3)
        window.load_from()
        yield window
        window.close()

    def test_match_in_view(self, window):
        assert window.find_next(1, 25, 0) == (1, False)

    def test_match_outside_view_reloads(self, window):
        assert window.find_next(1, 25, 1) == (0, False)
        assert ids(window) == [4, 5, 6]
        assert window.focus_column == 1

    def test_wrap(self, window):
        window.load_from([4])

        assert window.find_next(1, 25, 2) == (0, True)

    def test_no_match(self, window):
        assert window.find_next(1, 99, 0) is None


class TestTimers:
    """Test cursor expiry and periodic refresh through the update queue."""

    def test_idle_cursor_closes_and_refresh_starts(self, make_window, context):
        queue = UpdateQueue()
        window = make_window(queue=queue, cursor_timeout=0.05, refresh_interval=0.05)
        window.load_from()
        assert window._cursor_active()

        assert queue.run_next(timeout=5)
        assert not window._cursor_active()

        context.connection.execute_update("UPDATE users SET name = 'A' WHERE id = 1")
        assert queue.run_next(timeout=5)
        assert window.row(0).state == RowState.MODIFIED

    def test_stale_refresh_task_is_ignored(self, make_window):
        queue = UpdateQueue()
        window = make_window(queue=queue, cursor_timeout=0.05, refresh_interval=0.05)
        window.load_from()
        window.close()

        window.load_from()
        generation = window.generation
        window._on_refresh(generation - 1)

        assert window._cursor_active()

    def test_refresh_task_from_before_reload_is_ignored(self, make_window, context):
        window = make_window()
        window.load_from()
        window.close_cursor(restart_refresh=False)
        stale = window.generation

        window.load_from()
        window.close_cursor(restart_refresh=False)
        assert window.generation > stale

        context.connection.execute_update("UPDATE users SET name = 'A' WHERE id = 1")
        window._on_refresh(stale)
        assert window.row(0).state == RowState.NORMAL

        window._on_refresh(window.generation)
        assert window.row(0).state == RowState.MODIFIED


class TestThreeUsers:
    """Walk-throughs on a three-row table with a two-row window."""

    @pytest.fixture
    def window(self, users_db):
        window = users_db.window(users_db.open_relation("users"), size=2)
        window.load_from()
        yield window
        window.close()

    def test_scroll_to_end(self, window):
        assert [row.data for row in window.visible_rows()] == [[1, "a"], [2, "b"]]
        assert not window.next_rows(1)
        assert [row.data for row in window.visible_rows()] == [[2, "b"], [3, "c"]]
        assert window.next_rows(1)
        assert [row.data for row in window.visible_rows()] == [[3, "c"]]
        assert window.row(1).is_border

    def test_edit_in_place(self, window):
        assert window.update_cell(1, "name", "B") == 1
        assert [row.data for row in window.visible_rows()] == [[1, "a"], [2, "B"]]

    def test_edit_key_moves_below(self, window):
        assert window.update_cell(0, "id", "4") == 1
        assert [row.data for row in window.visible_rows()] == [[3, "c"], [4, "a"]]

    def test_single_row_does_not_move(self, make_context):
        context = make_context("CREATE TABLE one (id INTEGER PRIMARY KEY); INSERT INTO one VALUES (1);")
        window = RowWindow(context, context.schema.load("one"), 3)
        window.load_from()

        assert window.next_rows(1)
        assert window.prev_rows(1)
        assert ids(window) == [1]
        window.close()
