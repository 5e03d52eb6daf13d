"""
Batch update compiler: (record, column, value) edits -> one values:batchUpdate
request. Submission is a single call and the result is all-or-nothing from
the caller's point of view; nothing local is updated.
"""

from typing import Dict, Iterable, List, Mapping, Sequence, Union

from . import config
from .columns import a1_cell
from .errors import AuthFailed, BatchWriteFailed, SheetsError
from .schema import PendingEdit, Record, TabSchema, WriteRange, WriteRequest
from ..util.logging import logger


def _column_for(schema: TabSchema, column: Union[str, int]) -> int:
    if isinstance(column, bool):
        raise TypeError("Column must be a header name or index")
    if isinstance(column, int):
        if column < 0:
            raise ValueError(f"Column index must be >= 0: {column}")
        return column
    try:
        return schema.index_of(column)
    except KeyError:
        raise ValueError(f"Unknown header '{column}' in tab '{schema.tab_name}'") from None


def compile_batch(schema: TabSchema, edits: Iterable[PendingEdit]) -> WriteRequest:
    """
    One range per (record, column). A later edit to the same cell replaces
    the earlier one, keeping the first position.
    """
    cells: Dict[str, WriteRange] = {}
    for edit in edits:
        column = _column_for(schema, edit.column)
        cell = a1_cell(schema.tab_name, column, edit.record.row_number)
        cells[cell] = WriteRange(range=cell, values=[["" if edit.value is None else str(edit.value)]])

    if not cells:
        raise ValueError("No edits to compile")

    return WriteRequest(
        tab_name=schema.tab_name,
        ranges=list(cells.values()),
        value_input_option=config.VALUE_INPUT_OPTION,
    )


def compile_field_edits(schema: TabSchema, records: Sequence[Record], values: Mapping[Union[str, int], str]) -> List[PendingEdit]:
    """
    Set the same field values on every selected record; empty values are
    skipped. Unknown headers are rejected before any edit is built.
    """
    for column in values:
        _column_for(schema, column)

    edits = []
    for record in records:
        for column, value in values.items():
            if value is None or value == "":
                continue
            edits.append(PendingEdit(record=record, column=column, value=value))
    return edits


def compile_row_write(schema: TabSchema, row_number: int, values: Mapping[Union[str, int], str]) -> WriteRequest:
    """Cell assignments for a new record at ``row_number`` (blank values included)."""
    placeholder = Record(row_number=row_number, fields={})
    edits = [PendingEdit(record=placeholder, column=c, value=v) for c, v in values.items()]
    return compile_batch(schema, edits)


def submit(client, spreadsheet_id: str, request: WriteRequest, token: str) -> Dict:
    """
    Send ``request`` as one call. Any failure other than a rejected credential
    becomes BatchWriteFailed: the caller cannot tell whether some ranges
    landed, so it must reload and re-verify.
    """
    try:
        result = client.batch_update(spreadsheet_id, request.to_payload(), token)
    except AuthFailed:
        logger.log_batch_write(spreadsheet_id, request.tab_name, len(request), status="failed",
                               details={"reason": "credential rejected"})
        raise
    except SheetsError as exc:
        logger.log_batch_write(spreadsheet_id, request.tab_name, len(request), status="failed",
                               details={"reason": exc.message})
        raise BatchWriteFailed(
            f"Update of {len(request)} range(s) in '{request.tab_name}' failed; reload the tab and "
            f"verify which values were applied. Cause: {exc.message}",
            exc.status_code,
        ) from exc

    logger.log_batch_write(spreadsheet_id, request.tab_name, len(request),
                           details={"updated_cells": result.get("totalUpdatedCells")})
    return result
