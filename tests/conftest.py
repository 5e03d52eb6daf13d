"""
Shared fixtures: an in-memory stand-in for the Sheets API that keeps one grid
per tab and applies batch updates to it.
"""

import re

import pytest

from sheetops.core.auth import CredentialProvider, TokenManager
from sheetops.core.bindings import clear_binding_cache
from sheetops.core.columns import column_index
from sheetops.core.errors import NotFound
from sheetops.core.orchestrator import DowntimeOrchestrator
from sheetops.core.registry import PhaseRegistry

_A1 = re.compile(r"^([A-Z]+)(\d*)(?::([A-Z]+)(\d*))?$")

NOW_MS = 1_700_000_000_000


def _split_range(range_spec):
    if "!" in range_spec:
        tab, a1 = range_spec.rsplit("!", 1)
    else:
        tab, a1 = range_spec, None
    if tab.startswith("'") and tab.endswith("'"):
        tab = tab[1:-1].replace("''", "'")
    return tab, a1


def _trim(row):
    row = list(row)
    while row and row[-1] == "":
        row.pop()
    return row


class FakeSheetsClient:
    """Behaves like SheetsClient over a dict of tab name -> grid."""

    def __init__(self, tabs=None):
        self.tabs = {name: [list(r) for r in rows] for name, rows in (tabs or {}).items()}
        self.reads = []
        self.writes = []
        self.fail_write = None
        self.on_read = None

    def get_tab_titles(self, spreadsheet_id):
        return list(self.tabs)

    def get_values(self, spreadsheet_id, range_spec):
        self.reads.append(range_spec)
        if self.on_read:
            self.on_read(range_spec)

        tab, a1 = _split_range(range_spec)
        if tab not in self.tabs:
            raise NotFound(f"Sheet not found: {tab}", 404)
        grid = self.tabs[tab]

        if a1 is None:
            rows = [_trim(r) for r in grid]
        else:
            first_col, first_row, last_col, last_row = _A1.match(a1).groups()
            c1 = column_index(first_col)
            c2 = column_index(last_col or first_col)
            r1 = int(first_row) if first_row else 1
            r2 = int(last_row) if last_row else len(grid)
            rows = [_trim(grid[r - 1][c1:c2 + 1]) if r - 1 < len(grid) else [] for r in range(r1, r2 + 1)]

        while rows and not rows[-1]:
            rows.pop()
        return rows

    def set_cell(self, tab, row, column, value):
        grid = self.tabs[tab]
        while len(grid) < row:
            grid.append([])
        line = grid[row - 1]
        while len(line) <= column:
            line.append("")
        line[column] = value

    def batch_update(self, spreadsheet_id, payload, token):
        if self.fail_write is not None:
            raise self.fail_write
        self.writes.append({"spreadsheet_id": spreadsheet_id, "payload": payload, "token": token})

        for entry in payload["data"]:
            tab, a1 = _split_range(entry["range"])
            col, row, _, _ = _A1.match(a1).groups()
            self.set_cell(tab, int(row), column_index(col), entry["values"][0][0])
        return {"totalUpdatedCells": len(payload["data"])}


class Clock:
    """Settable epoch-ms clock."""

    def __init__(self, now_ms=NOW_MS):
        self.now_ms = now_ms

    def __call__(self):
        return self.now_ms

    def advance(self, ms):
        self.now_ms += ms


@pytest.fixture(autouse=True)
def fresh_binding_cache():
    clear_binding_cache()
    yield
    clear_binding_cache()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def registry(tmp_path):
    return PhaseRegistry(str(tmp_path / "phases.db"))


@pytest.fixture
def flow_calls():
    return []


@pytest.fixture
def token_manager(clock, flow_calls):
    async def flow():
        flow_calls.append(clock())
        return f"token-{len(flow_calls)}", None

    return TokenManager(CredentialProvider(clock), flow, clock=clock)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_orchestrator(registry, token_manager, sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    def _make(client):
        return DowntimeOrchestrator(registry, client, token_manager, sleep=fake_sleep)

    return _make


@pytest.fixture
def sheets():
    """Factory for FakeSheetsClient instances."""
    return FakeSheetsClient
