"""
Tabular record adapter: raw cell grid -> header-keyed records with live row
numbers. Pure apart from the single read in fetch_records.
"""

from typing import List, Sequence, Tuple

from .columns import column_letter, quote_tab
from .errors import Malformed
from .schema import Record, TabSchema
from ..util.logging import logger


def _header_names(raw: Sequence[str]) -> Tuple[str, ...]:
    names = []
    for index, cell in enumerate(raw):
        name = str(cell).strip()
        names.append(name if name else f"COLUMN_{column_letter(index)}")
    return tuple(names)


def parse_grid(tab_name: str, rows: Sequence[Sequence[str]], header_row_index: int = 0) -> Tuple[TabSchema, List[Record]]:
    """
    Decode ``rows`` using the row at ``header_row_index`` as headers.

    Record ``offset`` (0-based, after the header) gets
    ``row_number = header_row_index + 2 + offset``. Missing trailing cells
    become "". A duplicated header keeps the value of its last column.
    """
    if header_row_index < 0:
        raise ValueError(f"header_row_index must be >= 0: {header_row_index}")

    if len(rows) < header_row_index + 1:
        raise Malformed(
            f"Tab '{tab_name}' has {len(rows)} row(s); expected a header in row {header_row_index + 1}"
        )

    raw_headers = rows[header_row_index] or []
    if not any(str(cell).strip() for cell in raw_headers):
        raise Malformed(f"No headers found in row {header_row_index + 1} of tab '{tab_name}'")

    schema = TabSchema(tab_name=tab_name, header_row_index=header_row_index, headers=_header_names(raw_headers))

    duplicates = schema.duplicate_headers()
    if duplicates:
        logger.warning(f"Tab '{tab_name}' repeats header(s) {duplicates}; the last column of each is used")

    records = []
    for offset, row in enumerate(rows[header_row_index + 1:]):
        fields = {}
        for column, header in enumerate(schema.headers):
            cell = row[column] if column < len(row) else ""
            fields[header] = "" if cell is None else str(cell)
        records.append(Record(row_number=header_row_index + 2 + offset, fields=fields))

    return schema, records


def fetch_records(client, spreadsheet_id: str, tab_name: str, header_row_index: int = 0) -> Tuple[TabSchema, List[Record]]:
    """Read ``tab_name`` through the API-key path and decode it."""
    if not spreadsheet_id or not tab_name:
        raise ValueError("Invalid spreadsheet ID or sheet name")

    rows = client.get_values(spreadsheet_id, quote_tab(tab_name))
    schema, records = parse_grid(tab_name, rows, header_row_index)

    logger.log_operation("adapter.parse", "success", {
        "tab": tab_name,
        "columns": len(schema.headers),
        "records": len(records)
    })
    return schema, records


def list_tabs(client, spreadsheet_id: str) -> List[str]:
    """Tab titles for a spreadsheet."""
    return client.get_tab_titles(spreadsheet_id)
