"""
Append-row resolution.

The tab is edited by people and other tools, so the next free row is
recomputed from the live sheet on every append: the watch window (the columns
a new record writes into) is read and the row after the last occupied one is
the target. This does not stop two appenders racing for the same row;
is_row_free supports a re-check immediately before commit.
"""

from typing import List, Sequence

from .columns import a1_columns, a1_row_window
from ..util.logging import logger


def _watch_bounds(watch_columns: Sequence[int]):
    if not watch_columns:
        raise ValueError("Watch window needs at least one column")
    if any(c < 0 for c in watch_columns):
        raise ValueError(f"Watch columns must be >= 0: {list(watch_columns)}")
    first = min(watch_columns)
    return first, max(watch_columns), sorted({c - first for c in watch_columns})


def _occupied(row: Sequence[str], offsets: Sequence[int]) -> bool:
    for offset in offsets:
        if offset < len(row) and row[offset] is not None and row[offset] != "":
            return True
    return False


def last_occupied_row(rows: Sequence[Sequence[str]], watch_offsets: Sequence[int]) -> int:
    """1-based row of the last row with data in a watched cell, 0 if none."""
    last = 0
    for index, row in enumerate(rows):
        if row and _occupied(row, watch_offsets):
            last = index + 1
    return last


def find_append_row(rows: Sequence[Sequence[str]], watch_offsets: Sequence[int], first_data_row: int = 1) -> int:
    """
    Target row for a new record.

    ``rows`` is the watch window read from row 1 down; ``watch_offsets`` are
    positions within each row. Never returns a row above ``first_data_row``.
    """
    if first_data_row < 1:
        raise ValueError(f"first_data_row must be >= 1: {first_data_row}")
    return max(last_occupied_row(rows, watch_offsets) + 1, first_data_row)


def resolve_append_row(client, spreadsheet_id: str, tab_name: str, watch_columns: Sequence[int],
                       first_data_row: int = 1) -> int:
    """Read the live watch window and return the next safe row. Read errors propagate."""
    first, last, offsets = _watch_bounds(watch_columns)
    window = a1_columns(tab_name, first, last)

    rows = client.get_values(spreadsheet_id, window)
    target = find_append_row(rows, offsets, first_data_row)
    last_row = last_occupied_row(rows, offsets)

    logger.log_append_resolution(tab_name, window, last_row, target)
    return target


def is_row_free(client, spreadsheet_id: str, tab_name: str, watch_columns: Sequence[int], row: int) -> bool:
    """Re-read one row of the watch window; True when every watched cell is empty."""
    first, last, offsets = _watch_bounds(watch_columns)
    rows: List[List[str]] = client.get_values(spreadsheet_id, a1_row_window(tab_name, first, last, row))
    return not any(_occupied(r, offsets) for r in rows)
