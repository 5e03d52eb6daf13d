"""
Orchestrator: ties registry, adapter, classifiers, token manager, resolver and
compiler together per user action.

Reads:  phase -> tab snapshot (cached) -> bindings -> classifiers -> caller.
Writes: token -> re-validate rows -> compile -> one batchUpdate -> invalidate
        -> refetch, returning the fresh records to the caller.

Everything runs on one event loop. Blocking HTTP calls are pushed to a worker
thread and awaited in sequence; a CancellationToken is checked at every await
boundary.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from . import config
from .adapter import fetch_records, list_tabs
from .auth import TokenManager
from .bindings import (
    DOWNTIME_BINDINGS,
    ESCALATION_BINDINGS,
    NO_UPTIME_BINDINGS,
    PROJECT,
    ResolvedBindings,
    resolve_bindings,
)
from .classify import (
    DOWNTIME,
    ESCALATION,
    NO_UPTIME,
    classify_records,
    filter_by_field,
    search_records,
    select,
)
from .compiler import compile_batch, compile_field_edits, compile_row_write, submit
from .dates import format_sheet_datetime, parse_sheet_datetime
from .errors import AppendConflict, AuthFailed, NotFound, OperationCancelled, SheetsError, StaleRecord
from .registry import PhaseRegistry
from .resolver import is_row_free, resolve_append_row
from .schema import AppendResult, PendingEdit, Phase, Record, TabSchema, TabSnapshot, WriteOutcome, WriteRequest
from ..util.logging import logger

VIEW_BINDINGS = {
    NO_UPTIME: NO_UPTIME_BINDINGS,
    ESCALATION: ESCALATION_BINDINGS + (PROJECT,),
    DOWNTIME: NO_UPTIME_BINDINGS,
}


class CancellationToken:
    """Best-effort cancellation signal checked between awaits."""

    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self, stage: str = ""):
        if self._cancelled:
            raise OperationCancelled(f"Operation cancelled{' before ' + stage if stage else ''}")


@dataclass
class ViewResult:
    view: str
    tab_name: str
    snapshot: TabSnapshot
    bindings: ResolvedBindings
    records: List[Record]
    total: int = 0


def _check(cancel: Optional[CancellationToken], stage: str):
    if cancel is not None:
        cancel.raise_if_cancelled(stage)


class DowntimeOrchestrator:
    """Per-action coordinator. Owns the cached tab snapshots."""

    def __init__(self, registry: PhaseRegistry, client, token_manager: TokenManager,
                 clock: Callable[[], datetime] = datetime.now,
                 sleep: Callable[[float], "asyncio.Future"] = asyncio.sleep):
        self.registry = registry
        self.client = client
        self.token_manager = token_manager
        self._clock = clock
        self._sleep = sleep
        self._cache: Dict[Tuple[str, str, int], TabSnapshot] = {}

    async def _call(self, cancel: Optional[CancellationToken], stage: str, func, *args):
        _check(cancel, stage)
        result = await asyncio.to_thread(func, *args)
        _check(cancel, f"continuing after {stage}")
        return result

    # ------------------------------------------------------------------
    # Phases and tabs
    # ------------------------------------------------------------------
    def list_phases(self) -> List[Phase]:
        return self.registry.list_phases()

    def resolve_phase(self, phase_name: str) -> Phase:
        return self.registry.require_phase(phase_name)

    async def list_tabs(self, phase_name: str, cancel: Optional[CancellationToken] = None) -> List[str]:
        phase = self.resolve_phase(phase_name)
        return await self._call(cancel, "listing tabs", list_tabs, self.client, phase.spreadsheet_id)

    async def _tab_name(self, phase: Phase, tab_name: Optional[str], cancel) -> str:
        if tab_name:
            return tab_name
        if phase.default_tab_name:
            return phase.default_tab_name
        tabs = await self._call(cancel, "listing tabs", list_tabs, self.client, phase.spreadsheet_id)
        if not tabs:
            raise NotFound(f"Spreadsheet for phase '{phase.name}' has no tabs")
        return tabs[0]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def load_tab(self, phase_name: str, tab_name: Optional[str] = None, header_row_index: int = 0,
                       refresh: bool = False, cancel: Optional[CancellationToken] = None) -> TabSnapshot:
        phase = self.resolve_phase(phase_name)
        tab_name = await self._tab_name(phase, tab_name, cancel)
        key = (phase.spreadsheet_id, tab_name, header_row_index)

        if not refresh and key in self._cache:
            return self._cache[key]

        schema, records = await self._call(
            cancel, "reading tab", fetch_records, self.client, phase.spreadsheet_id, tab_name, header_row_index
        )
        snapshot = TabSnapshot(
            spreadsheet_id=phase.spreadsheet_id, schema=schema, records=records, fetched_at=self._clock()
        )
        self._cache[key] = snapshot
        return snapshot

    async def load_view(self, phase_name: str, tab_name: Optional[str], view: str,
                        header_row_index: Optional[int] = None, search: str = "", project: str = "",
                        refresh: bool = False, cancel: Optional[CancellationToken] = None) -> ViewResult:
        """Records of one tab reconciled into a view (no-uptime, escalation, downtime)."""
        if view not in VIEW_BINDINGS:
            raise ValueError(f"Unknown view '{view}'; expected one of {sorted(VIEW_BINDINGS)}")
        if header_row_index is None:
            header_row_index = config.view_header_rows()[view]

        snapshot = await self.load_tab(phase_name, tab_name, header_row_index, refresh=refresh, cancel=cancel)
        bindings = resolve_bindings(snapshot.schema, VIEW_BINDINGS[view])

        tagged = classify_records(snapshot.records, bindings)
        matched = select(tagged, view)
        logger.log_classification(view, snapshot.schema.tab_name, len(tagged), len(matched))

        records = search_records(matched, search)
        if project and bindings.has("project"):
            records = filter_by_field(records, [bindings.header("project")], project)

        return ViewResult(
            view=view,
            tab_name=snapshot.schema.tab_name,
            snapshot=snapshot,
            bindings=bindings,
            records=records,
            total=len(matched),
        )

    def invalidate(self, phase_name: str, tab_name: str) -> int:
        """Drop every cached snapshot of ``tab_name``; returns how many were dropped."""
        phase = self.resolve_phase(phase_name)
        stale = [k for k in self._cache if k[0] == phase.spreadsheet_id and k[1] == tab_name]
        for key in stale:
            del self._cache[key]
        return len(stale)

    async def refetch(self, phase_name: str, tab_name: str, header_row_index: int = 0,
                      cancel: Optional[CancellationToken] = None) -> List[Record]:
        """Invalidate and re-read a tab, returning the fresh records."""
        self.invalidate(phase_name, tab_name)
        snapshot = await self.load_tab(phase_name, tab_name, header_row_index, refresh=True, cancel=cancel)
        return snapshot.records

    # ------------------------------------------------------------------
    # Write helpers
    # ------------------------------------------------------------------
    async def _token(self, cancel: Optional[CancellationToken]) -> str:
        _check(cancel, "authenticating")
        token = await self.token_manager.ensure_valid()
        _check(cancel, "writing")
        return token

    async def _revalidate(self, phase: Phase, expected: TabSchema, header_row_index: int,
                          records: Sequence[Record], cancel: Optional[CancellationToken]):
        """
        Rows must still hold what the caller saw, under the same header layout
        the write will be compiled against; the sheet may have shifted since.
        """
        tab_name = expected.tab_name
        if not config.REVALIDATE_BEFORE_WRITE:
            return
        schema, fresh = await self._call(
            cancel, "re-validating rows", fetch_records, self.client, phase.spreadsheet_id, tab_name, header_row_index
        )
        if schema.headers != expected.headers:
            self.invalidate(phase.name, tab_name)
            raise StaleRecord(f"Columns of '{tab_name}' changed since it was loaded; reload and try again")
        by_row = {r.row_number: r for r in fresh}
        for record in records:
            current = by_row.get(record.row_number)
            if current is None or current.fields != record.fields:
                raise StaleRecord(
                    f"Row {record.row_number} of '{tab_name}' changed since it was loaded; reload and try again"
                )

    async def _submit(self, phase: Phase, request: WriteRequest, token: str,
                      cancel: Optional[CancellationToken]):
        try:
            return await self._call(cancel, "submitting batch", submit, self.client, phase.spreadsheet_id, request, token)
        except AuthFailed:
            self.token_manager.invalidate()
            raise

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def update_end_time(self, phase_name: str, tab_name: str, record: Record, end_time,
                              header_row_index: Optional[int] = None,
                              cancel: Optional[CancellationToken] = None) -> WriteOutcome:
        """Record the end of a downtime on an open (no-uptime) row."""
        if header_row_index is None:
            header_row_index = config.NO_UPTIME_HEADER_ROW

        end_dt = parse_sheet_datetime(end_time)
        if end_dt is None:
            raise ValueError("End of downtime is required")

        phase = self.resolve_phase(phase_name)
        token = await self._token(cancel)

        snapshot = await self.load_tab(phase_name, tab_name, header_row_index, cancel=cancel)
        bindings = resolve_bindings(snapshot.schema, NO_UPTIME_BINDINGS)

        start_dt = parse_sheet_datetime(bindings.value(record, "start"))
        if start_dt is not None and end_dt <= start_dt:
            raise ValueError("End of downtime must be after start of downtime")

        await self._revalidate(phase, snapshot.schema, header_row_index, [record], cancel)

        request = compile_batch(snapshot.schema, [
            PendingEdit(record=record, column=bindings.header("end"), value=format_sheet_datetime(end_dt))
        ])
        await self._submit(phase, request, token, cancel)

        records = await self.refetch(phase_name, tab_name, header_row_index, cancel=cancel)
        return WriteOutcome(tab_name=tab_name, ranges_written=len(request), records=records,
                            target_rows=[record.row_number])

    async def update_escalation(self, phase_name: str, tab_name: str, records: Sequence[Record],
                                cause: str = "", action_plan: str = "",
                                header_row_index: Optional[int] = None,
                                cancel: Optional[CancellationToken] = None) -> WriteOutcome:
        """Fill cause and/or action plan on every selected record in one batch."""
        if header_row_index is None:
            header_row_index = config.ESCALATION_HEADER_ROW
        if not records:
            raise ValueError("Select at least one record")
        if not cause and not action_plan:
            raise ValueError("Select at least a cause of downtime or an action plan")

        phase = self.resolve_phase(phase_name)
        token = await self._token(cancel)

        snapshot = await self.load_tab(phase_name, tab_name, header_row_index, cancel=cancel)
        bindings = resolve_bindings(snapshot.schema, ESCALATION_BINDINGS)

        await self._revalidate(phase, snapshot.schema, header_row_index, records, cancel)

        edits = compile_field_edits(snapshot.schema, records, {
            bindings.header("cause"): cause,
            bindings.header("action_plan"): action_plan,
        })
        request = compile_batch(snapshot.schema, edits)
        await self._submit(phase, request, token, cancel)

        fresh = await self.refetch(phase_name, tab_name, header_row_index, cancel=cancel)
        return WriteOutcome(tab_name=tab_name, ranges_written=len(request), records=fresh,
                            target_rows=sorted({r.row_number for r in records}))

    async def _reserve_row(self, phase: Phase, tab_name: str, watch: List[int], first_data_row: int,
                           cancel: Optional[CancellationToken]) -> int:
        """Resolve the append row, then re-check it right before commit."""
        attempts = config.APPEND_CONFLICT_RETRIES + 1
        for _ in range(attempts):
            row = await self._call(cancel, "resolving append row", resolve_append_row,
                                   self.client, phase.spreadsheet_id, tab_name, watch, first_data_row)
            free = await self._call(cancel, "checking append row", is_row_free,
                                    self.client, phase.spreadsheet_id, tab_name, watch, row)
            if free:
                return row
            logger.warning(f"Append row {row} of '{tab_name}' was taken concurrently; resolving again")
        raise AppendConflict(f"Could not reserve an append row in '{tab_name}' after {attempts} attempts")

    async def add_downtime(self, phase_name: str, tab_name: str, site_codes: Sequence[str], start,
                           end=None, cause: str = "", header_row_index: Optional[int] = None,
                           cancel: Optional[CancellationToken] = None) -> WriteOutcome:
        """
        Append one downtime row per site, sequentially. A failure for one site
        is recorded in the results and the remaining sites are still written.
        """
        if header_row_index is None:
            header_row_index = config.DOWNTIME_HEADER_ROW

        start_dt = parse_sheet_datetime(start)
        if start_dt is None:
            raise ValueError("Start time is required")
        if not cause:
            raise ValueError("Cause of downtime is required")
        end_dt = parse_sheet_datetime(end) if end else None
        if end and end_dt is None:
            raise ValueError(f"Unrecognised end time: {end!r}")
        if end_dt is not None and end_dt <= start_dt:
            raise ValueError("End time must be after start time")
        if not tab_name:
            raise ValueError("Target sheet is required")
        if not site_codes:
            raise ValueError("At least one site is required")

        phase = self.resolve_phase(phase_name)
        await self._token(cancel)

        tabs = await self._call(cancel, "listing tabs", list_tabs, self.client, phase.spreadsheet_id)
        if tab_name not in tabs:
            raise NotFound(f"Tab '{tab_name}' does not exist in phase '{phase_name}'")

        snapshot = await self.load_tab(phase_name, tab_name, header_row_index, refresh=True, cancel=cancel)
        schema = snapshot.schema
        bindings = resolve_bindings(schema, DOWNTIME_BINDINGS)
        watch = [bindings.index("start"), bindings.index("end"), bindings.index("cause")]

        values_common = {
            bindings.header("start"): format_sheet_datetime(start_dt),
            bindings.header("end"): format_sheet_datetime(end_dt) if end_dt else "",
            bindings.header("cause"): cause,
        }

        results: List[AppendResult] = []
        ranges_written = 0
        for position, site_code in enumerate(site_codes):
            try:
                token = await self._token(cancel)
                row = await self._reserve_row(phase, tab_name, watch, schema.first_data_row, cancel)
                request = compile_row_write(schema, row, {bindings.header("site"): site_code, **values_common})
                await self._submit(phase, request, token, cancel)
            except OperationCancelled:
                raise
            except AuthFailed as exc:
                # no credential, nothing further can be written
                for remaining in site_codes[position:]:
                    results.append(AppendResult(site_code=remaining, status="error", message=exc.message))
                break
            except SheetsError as exc:
                logger.error(f"Downtime append failed for site {site_code}: {exc.message}")
                results.append(AppendResult(site_code=site_code, status="error", message=exc.message))
            else:
                ranges_written += len(request)
                results.append(AppendResult(site_code=site_code, status="success", row=row,
                                            message=f"Saved to row {row}"))

            if position < len(site_codes) - 1 and config.APPEND_PACING_SEC > 0:
                await self._sleep(config.APPEND_PACING_SEC)

        succeeded = [r for r in results if r.status == "success"]
        logger.log_operation("downtime.append", "success" if len(succeeded) == len(results) else "partial", {
            "tab": tab_name,
            "success": len(succeeded),
            "failed": len(results) - len(succeeded)
        })

        if succeeded:
            records = await self.refetch(phase_name, tab_name, header_row_index, cancel=cancel)
        else:
            records = snapshot.records

        return WriteOutcome(tab_name=tab_name, ranges_written=ranges_written, records=records,
                            target_rows=[r.row for r in succeeded], results=results)
