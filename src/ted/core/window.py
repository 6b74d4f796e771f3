"""Windowed row engine.

A RowWindow keeps a fixed-size circular buffer of rows for one relation and
streams rows into it as the caller scrolls. Logical row ``i`` lives at
``buffer[(pointer + i) % size]``. A bottom border row marks the end of the
relation; nothing after it is valid.

All state is owned by the thread that calls the public methods. The cursor
inactivity timer and the refresh timer never touch state directly: they post
tasks to an UpdateQueue, which the owner drains.
"""

import logging
import threading
from functools import partial
from typing import Any, Callable, List, Optional, Sequence, Set, Tuple

from ted.core.connection import RowCursor
from ted.core.update_queue import UpdateQueue
from ted.managers.base import ConnectionContext
from ted.managers.schema import require_key
from ted.models.relation import Relation, SortColumn
from ted.models.row import Row, RowState
from ted.utils.type_utils import EMPTY_CELL

logger = logging.getLogger(__name__)


def hashable(value: Any) -> Any:
    """Convert a cell value or key into something usable as a dict key."""
    if isinstance(value, (list, tuple)):
        return tuple(hashable(item) for item in value)
    if isinstance(value, (memoryview, bytearray)):
        return bytes(value)
    return value


def changed_columns(old: Sequence[Any], new: Sequence[Any]) -> List[int]:
    """Indices of cells that differ between two versions of a row."""
    if len(old) != len(new):
        return []
    return [i for i, (a, b) in enumerate(zip(old, new)) if hashable(a) != hashable(b)]


def diff_rows(
    previous: List[List[Any]],
    current: List[List[Any]],
    key_of: Callable[[Sequence[Any]], List[Any]],
    existing: Callable[[List[List[Any]]], Set[Any]],
    limit: int,
) -> List[Row]:
    """Merge two snapshots of the same window into marked rows.

    Rows are matched by key. Matched rows become MODIFIED when a cell
    differs (NORMAL otherwise), rows only in ``current`` become NEW and rows
    only in ``previous`` become DELETED. Previous rows that fall between two
    matches are always shown as deleted; previous rows after the last match
    (or all of them when nothing matches) are shown only if ``existing``
    reports that they are still in the backend.

    Args:
        previous: Row data from the last load or refresh
        current: Row data just read, in display order
        key_of: Extracts the key values from row data
        existing: Given keys, returns the hashable keys that still exist
        limit: Maximum number of rows returned

    Returns:
        At most ``limit`` rows in display order
    """
    result: List[Row] = []

    def add(row: Row) -> bool:
        if len(result) >= limit:
            return False
        result.append(row)
        return True

    def deleted(data: List[Any]) -> Row:
        return Row(data=list(data), state=RowState.DELETED)

    def still_there(rows: List[List[Any]]) -> List[List[Any]]:
        if not rows:
            return []
        keys = existing([key_of(data) for data in rows])
        return [data for data in rows if hashable(key_of(data)) in keys]

    current_index = {hashable(key_of(data)): i for i, data in enumerate(current)}
    matches: List[Tuple[int, int]] = []
    last_current = -1
    for prev_idx, data in enumerate(previous):
        curr_idx = current_index.get(hashable(key_of(data)))
        # A row that moved backwards is reported as deleted here and new there
        if curr_idx is not None and curr_idx > last_current:
            matches.append((prev_idx, curr_idx))
            last_current = curr_idx

    prev_pos = 0
    curr_pos = 0
    for prev_idx, curr_idx in matches:
        for data in previous[prev_pos:prev_idx]:
            if not add(deleted(data)):
                return result
        for data in current[curr_pos:curr_idx]:
            if not add(Row(data=list(data), state=RowState.NEW)):
                return result
        modified = changed_columns(previous[prev_idx], current[curr_idx])
        state = RowState.MODIFIED if modified else RowState.NORMAL
        if not add(Row(data=list(current[curr_idx]), state=state, modified=modified)):
            return result
        prev_pos = prev_idx + 1
        curr_pos = curr_idx + 1

    for data in still_there(previous[prev_pos:]):
        if not add(deleted(data)):
            return result
    for data in current[curr_pos:]:
        if not add(Row(data=list(data), state=RowState.NEW)):
            return result
    return result


class RowWindow:
    """Circular buffer of rows over one relation.

    Args:
        context: Connection context providing managers
        relation: Relation to browse; must have a key
        size: Number of buffer slots, normally the visible height
        sort: Optional column ordered ahead of the key
        queue: Update queue for timer tasks; without one timers are off
        cursor_timeout: Seconds of inactivity before the cursor is closed
        refresh_interval: Seconds between refreshes while no cursor is open
    """

    def __init__(
        self,
        context: ConnectionContext,
        relation: Relation,
        size: int,
        sort: Optional[SortColumn] = None,
        queue: Optional[UpdateQueue] = None,
        cursor_timeout: Optional[float] = None,
        refresh_interval: Optional[float] = None,
    ):
        if size < 2:
            raise ValueError("Window size must be at least 2 (one row and the bottom border)")
        self.context = context
        self.relation = require_key(relation)
        self.size = size
        self.sort = sort
        self.queue = queue
        self.cursor_timeout = cursor_timeout if cursor_timeout is not None else context.config.cursor_timeout
        self.refresh_interval = (
            refresh_interval if refresh_interval is not None else context.config.refresh_interval
        )

        self.buffer: List[Optional[Row]] = [None] * size
        self.pointer = 0
        self.previous_rows: List[List[Any]] = []
        self.focus_column = 0
        self.generation = 0

        self._cursor: Optional[RowCursor] = None
        self._scroll_down = True
        self._cursor_lock = threading.Lock()
        self._inactivity_timer: Optional[threading.Timer] = None
        self._refresh_timer: Optional[threading.Timer] = None

        self._builder = context.builder
        self._connection = context.connection

    # Buffer access

    def row(self, i: int) -> Optional[Row]:
        """Logical row ``i`` of the window."""
        return self.buffer[(self.pointer + i) % self.size]

    def _set(self, i: int, row: Row) -> None:
        self.buffer[(self.pointer + i) % self.size] = row

    def visible_rows(self) -> List[Row]:
        """Rows from the top of the window up to the bottom border."""
        rows = []
        for i in range(self.size):
            row = self.row(i)
            if row is None or row.is_border:
                break
            rows.append(row)
        return rows

    def is_at_bottom(self) -> bool:
        """True when the last slot holds no data, i.e. the end of the relation is shown."""
        last = self.row(self.size - 1)
        return last is None or last.is_border

    def index_of_key(self, key: Sequence[Any]) -> Optional[int]:
        """Window position of the row with the given key, if visible."""
        wanted = hashable(list(key))
        for i, row in enumerate(self.visible_rows()):
            if hashable(self.relation.key_values(row.data)) == wanted:
                return i
        return None

    def _ordering(self, data: Sequence[Any]) -> List[Any]:
        return self._builder.ordering_values(self.relation, data, self.sort)

    def _snapshot(self) -> None:
        self.previous_rows = [list(row.data) for row in self.visible_rows()]

    def _fill(self, rows: List[List[Any]]) -> None:
        """Write rows from slot 0 and mark the end when they do not fill the buffer."""
        self.buffer = [None] * self.size
        self.pointer = 0
        for i, data in enumerate(rows[: self.size]):
            self.buffer[i] = data if isinstance(data, Row) else Row(data=list(data))
        if len(rows) < self.size:
            self.buffer[len(rows)] = Row.bottom_border()

    # Cursor handling

    def _cursor_active(self) -> bool:
        with self._cursor_lock:
            return self._cursor is not None and not self._cursor.closed

    def _open_cursor(self, anchor: Optional[Sequence[Any]], scroll_down: bool, inclusive: bool) -> RowCursor:
        self.close_cursor(restart_refresh=False)
        sql, params = self._builder.select_rows(
            self.relation,
            sort=self.sort,
            anchor=anchor,
            scroll_down=scroll_down,
            inclusive=inclusive,
        )
        with self._connection.operation(f"read {self.relation.name}"):
            cursor = self._connection.stream(sql, params)
        with self._cursor_lock:
            self._cursor = cursor
            self._scroll_down = scroll_down
        self._stop_refresh()
        self._arm_inactivity()
        logger.debug(f"Opened {'down' if scroll_down else 'up'} cursor on {self.relation.name}")
        return cursor

    def _reusable_cursor(self, scroll_down: bool) -> Optional[RowCursor]:
        with self._cursor_lock:
            cursor = self._cursor
            if cursor is None or cursor.closed or self._scroll_down != scroll_down:
                return None
            return cursor

    def _fetch(self, cursor: RowCursor, count: int) -> List[List[Any]]:
        with self._connection.operation(f"read {self.relation.name}"):
            rows = [list(row) for row in cursor.fetch(count)]
        if cursor.exhausted:
            self.close_cursor()
        else:
            self._arm_inactivity()
        return rows

    def close_cursor(self, restart_refresh: bool = True) -> None:
        """Close the streaming cursor, if any, and resume periodic refresh."""
        with self._cursor_lock:
            cursor, self._cursor = self._cursor, None
        if cursor is not None:
            cursor.close()
        self._cancel(self._inactivity_timer)
        self._inactivity_timer = None
        if restart_refresh:
            self._start_refresh()

    # Timers post generation-guarded tasks; they never run engine code themselves

    @staticmethod
    def _cancel(timer: Optional[threading.Timer]) -> None:
        if timer is not None:
            timer.cancel()

    def _schedule(self, delay: float, task: Callable[[], None]) -> Optional[threading.Timer]:
        if self.queue is None or delay <= 0:
            return None
        timer = threading.Timer(delay, self.queue.post, args=(task,))
        timer.daemon = True
        timer.start()
        return timer

    def _arm_inactivity(self) -> None:
        self._cancel(self._inactivity_timer)
        with self._cursor_lock:
            cursor = self._cursor
        if cursor is None:
            self._inactivity_timer = None
            return
        self._inactivity_timer = self._schedule(
            self.cursor_timeout, partial(self._on_inactive, self.generation, cursor)
        )

    def _on_inactive(self, generation: int, cursor: RowCursor) -> None:
        if generation != self.generation or self._cursor is not cursor:
            return
        logger.debug(f"Closing idle cursor on {self.relation.name}")
        self.close_cursor()

    def _start_refresh(self) -> None:
        self._cancel(self._refresh_timer)
        self._refresh_timer = self._schedule(self.refresh_interval, partial(self._on_refresh, self.generation))

    def _stop_refresh(self) -> None:
        self._cancel(self._refresh_timer)
        self._refresh_timer = None

    def _on_refresh(self, generation: int) -> None:
        if generation != self.generation:
            return
        self.refresh()
        if not self._cursor_active():
            self._start_refresh()

    # Loading and scrolling

    def load_from(self, key: Optional[Sequence[Any]] = None, from_top: bool = True, focus_col: int = 0) -> None:
        """Start a fresh stream, replacing the whole buffer.

        Args:
            key: Key of the row to anchor on; None loads the first or last rows
            from_top: Anchor row becomes the first visible row when True, the last otherwise
            focus_col: Column the caller keeps focused after the load
        """
        anchor = None
        if key is not None:
            anchor = self._anchor_for_key(key)
        self.focus_column = focus_col
        self._load(anchor, from_top)

    def _anchor_for_key(self, key: Sequence[Any]) -> List[Any]:
        key = list(key)
        if len(key) != len(self.relation.key):
            raise ValueError(f"Expected {len(self.relation.key)} key values, got {len(key)}")
        if self.sort is None:
            return key
        sql, params = self._builder.select_by_key(self.relation, key, [self.sort.name])
        with self._connection.operation(f"read {self.relation.name}"):
            row = self._connection.query_one(sql, params)
        if row is None:
            raise ValueError(f"No row in '{self.relation.name}' has key {key}")
        return [row[0]] + key

    def _load(self, anchor: Optional[List[Any]], from_top: bool) -> None:
        # Tasks posted for the previous contents become no-ops
        self.generation += 1
        if from_top:
            cursor = self._open_cursor(anchor, scroll_down=True, inclusive=True)
            rows = self._fetch(cursor, self.size)
            self._fill(rows)
        elif anchor is None:
            cursor = self._open_cursor(None, scroll_down=False, inclusive=True)
            rows = self._fetch(cursor, self.size - 1)
            rows.reverse()
            self._fill(rows)
        else:
            cursor = self._open_cursor(anchor, scroll_down=False, inclusive=True)
            rows = self._fetch(cursor, self.size)
            if len(rows) < self.size:
                # Everything up to the anchor fits, so show the relation from its start
                self._load(None, True)
                return
            rows.reverse()
            self._fill(rows)
        self._snapshot()
        logger.info(
            f"Loaded {len(self.previous_rows)} rows of {self.relation.name} "
            f"({'top' if from_top else 'bottom'}, anchor={anchor})"
        )

    def next_rows(self, count: int) -> bool:
        """Scroll forward by up to ``count`` rows.

        Returns:
            True when the end of the relation was reached
        """
        if self.is_at_bottom():
            return True

        cursor = self._reusable_cursor(scroll_down=True)
        if cursor is None:
            last = self.row(self.size - 1)
            cursor = self._open_cursor(self._ordering(last.data), scroll_down=True, inclusive=False)

        rows = self._fetch(cursor, count)
        for data in rows:
            self.buffer[self.pointer] = Row(data=data)
            self.pointer = (self.pointer + 1) % self.size

        reached_edge = len(rows) < count
        if reached_edge:
            self.buffer[self.pointer] = Row.bottom_border()
            self.pointer = (self.pointer + 1) % self.size
            self.close_cursor()

        self._snapshot()
        return reached_edge

    def prev_rows(self, count: int) -> bool:
        """Scroll backward by up to ``count`` rows.

        Returns:
            True when the start of the relation was reached
        """
        first = self.row(0)
        if first is None or first.is_border:
            return True

        cursor = self._reusable_cursor(scroll_down=False)
        if cursor is None:
            cursor = self._open_cursor(self._ordering(first.data), scroll_down=False, inclusive=False)

        rows = self._fetch(cursor, count)
        for data in rows:
            self.pointer = (self.pointer - 1) % self.size
            self.buffer[self.pointer] = Row(data=data)

        self._snapshot()
        return len(rows) < count

    def refresh(self) -> bool:
        """Re-read the window from its top row and mark what changed.

        Skipped while a cursor is open.

        Returns:
            True if the window was refreshed
        """
        if self._cursor_active():
            return False

        top = self.row(0)
        anchor = None if top is None or top.is_border else self._ordering(top.data)
        sql, params = self._builder.select_rows(
            self.relation, sort=self.sort, anchor=anchor, inclusive=True, limit=self.size
        )
        with self._connection.operation(f"refresh {self.relation.name}"):
            current = [list(row) for row in self._connection.query(sql, params)]

        merged = diff_rows(self.previous_rows, current, self.relation.key_values, self._existing_keys, self.size)
        self._fill(merged)
        self.previous_rows = current
        logger.debug(f"Refreshed {self.relation.name}: {len(current)} rows")
        return True

    def _existing_keys(self, keys: List[List[Any]]) -> Set[Any]:
        found: Set[Any] = set()
        for start in range(0, len(keys), 100):
            sql, params = self._builder.rows_exist(self.relation, keys[start : start + 100])
            with self._connection.operation(f"check rows of {self.relation.name}"):
                found.update(hashable(list(row)) for row in self._connection.query(sql, params))
        return found

    # Edits

    def _data_row(self, row_index: int) -> Row:
        if row_index < 0 or row_index >= self.size:
            raise ValueError(f"Row index {row_index} is outside the window")
        row = self.row(row_index)
        if row is None or row.is_border:
            raise ValueError(f"No row at window position {row_index}")
        return row

    def update_cell(self, row_index: int, column: str, raw: str) -> int:
        """Edit one cell and keep the edited row in view.

        Args:
            row_index: Window position of the row
            column: Column name
            raw: Text typed by the user

        Returns:
            Window position of the edited row afterwards
        """
        row = self._data_row(row_index)
        self.close_cursor()
        old_ordering = self._ordering(row.data)
        stored = self.context.mutations.update_cell(self.relation, row.data, column, raw)
        new_ordering = self._ordering(stored)

        if hashable(old_ordering) == hashable(new_ordering):
            modified = changed_columns(row.data, stored)
            self._set(row_index, Row(data=stored, state=row.state, modified=row.modified or modified))
            old_key = hashable(self.relation.key_values(row.data))
            for i, data in enumerate(self.previous_rows):
                if hashable(self.relation.key_values(data)) == old_key:
                    self.previous_rows[i] = list(stored)
            return row_index

        return self._reposition(stored, new_ordering)

    def _reposition(self, stored: List[Any], ordering: List[Any]) -> int:
        """Reload so that a row whose ordering values changed is visible."""
        new_key = self.relation.key_values(stored)
        visible = self.visible_rows()
        if not visible:
            self._load(ordering, True)
            return 0

        first = self._ordering(visible[0].data)
        last = self._ordering(visible[-1].data)
        above, below = self.context.lookup.compare_position(self.relation, ordering, first, last, self.sort)
        if above:
            self._load(ordering, True)
            return 0
        if below:
            self._load(ordering, False)
        else:
            self._load(first, True)
        index = self.index_of_key(new_key)
        return index if index is not None else 0

    def insert_row(self, values: Sequence[Any]) -> int:
        """Insert a row and show it as the last visible row.

        Returns:
            Window position of the new row
        """
        self.close_cursor()
        stored = self.context.mutations.insert_row(self.relation, values)
        self._load(self._ordering(stored), from_top=False)
        index = self.index_of_key(self.relation.key_values(stored))
        return index if index is not None else 0

    def delete_row(self, row_index: int) -> None:
        """Delete a row and reload the window at its current position."""
        row = self._data_row(row_index)
        top = self.row(0)
        anchor = self._ordering(top.data)
        self.close_cursor()
        self.context.mutations.delete_row(self.relation, row.data)
        self._load(anchor, True)
        if not self.visible_rows():
            self._load(None, False)

    def find_next(self, column: int, needle: Any, row_index: int) -> Optional[Tuple[int, bool]]:
        """Move to the next row whose ``column`` equals ``needle``.

        Returns:
            Tuple of (window position, wrapped) or None when nothing matches
        """
        row = self._data_row(row_index)
        self.close_cursor()
        found = self.context.lookup.find_next(
            self.relation, column, needle, self._ordering(row.data), self.sort
        )
        if found is None:
            return None
        key, wrapped = found
        index = self.index_of_key(key)
        if index is None:
            self.load_from(key, True, column)
            index = 0
        return index, wrapped

    def pending_insert_row(self) -> Row:
        """Row edited in insert mode; every cell starts out empty."""
        return Row(data=[EMPTY_CELL] * len(self.relation.columns), state=RowState.INSERT)

    def close(self) -> None:
        """Stop timers and close the cursor. Queued tasks become no-ops."""
        self.generation += 1
        self._stop_refresh()
        self.close_cursor(restart_refresh=False)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _ = (exc_type, exc_val, exc_tb)  # Unused but required by protocol
        self.close()
        return False

