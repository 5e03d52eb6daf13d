"""
Column letters and A1 range strings.

Letters are bijective base-26 (no zero digit): 0 -> A, 25 -> Z, 26 -> AA,
701 -> ZZ, 702 -> AAA.
"""

import re

_PLAIN_TAB = re.compile(r"^[A-Za-z0-9_]+$")
_LETTERS = re.compile(r"^[A-Za-z]+$")


def column_letter(index: int) -> str:
    """Zero-based column index to its A1 letters."""
    if isinstance(index, bool) or not isinstance(index, int):
        raise TypeError(f"Column index must be an int: {index!r}")
    if index < 0:
        raise ValueError(f"Column index must be >= 0: {index}")

    index += 1
    label = ""
    while index:
        index, remainder = divmod(index - 1, 26)
        label = chr(65 + remainder) + label
    return label


def column_index(letters: str) -> int:
    """A1 column letters back to a zero-based index."""
    if not letters or not _LETTERS.match(letters):
        raise ValueError(f"Invalid column letters: {letters!r}")

    value = 0
    for char in letters.upper():
        value = value * 26 + (ord(char) - 64)
    return value - 1


def quote_tab(tab_name: str) -> str:
    """Tab name as it must appear in front of the ``!`` of a range."""
    if _PLAIN_TAB.match(tab_name):
        return tab_name
    return "'" + tab_name.replace("'", "''") + "'"


def a1_cell(tab_name: str, column: int, row: int) -> str:
    """``Tab!C5`` for a zero-based column and 1-based row."""
    if row < 1:
        raise ValueError(f"Row number must be >= 1: {row}")
    return f"{quote_tab(tab_name)}!{column_letter(column)}{row}"


def a1_columns(tab_name: str, first: int, last: int) -> str:
    """Whole-column window ``Tab!F:H``."""
    if last < first:
        first, last = last, first
    return f"{quote_tab(tab_name)}!{column_letter(first)}:{column_letter(last)}"


def a1_row_window(tab_name: str, first: int, last: int, row: int) -> str:
    """Single-row window ``Tab!F7:H7``."""
    if last < first:
        first, last = last, first
    return f"{quote_tab(tab_name)}!{column_letter(first)}{row}:{column_letter(last)}{row}"
