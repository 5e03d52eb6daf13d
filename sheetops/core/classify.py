"""
Categorization / reconciliation engine.

Independent pure classifiers over records (downtime views) and billing
providers (due status). Nothing here mutates its input or keeps state
between records.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from .bindings import ResolvedBindings
from .dates import downtime_duration, parse_month
from .schema import BillingProvider, Record

PAID = "paid"
OVERDUE = "overdue"
DUE_SOON = "due-soon"
UPCOMING = "upcoming"

DUE_SOON_DAYS = 7
MS_PER_DAY = 86_400_000

NO_UPTIME = "no-uptime"
ESCALATION = "escalation"
DOWNTIME = "downtime"


# ---------------------------------------------------------------------------
# Billing due status
# ---------------------------------------------------------------------------
def _month_day(year: int, month: int, day: int) -> datetime:
    """Midnight of ``day`` in the month; overflow rolls into the next month."""
    while month > 12:
        month -= 12
        year += 1
    return datetime(year, month, 1) + timedelta(days=day - 1)


def due_date(due_day: int, last_paid_month: Union[date, datetime, str, None], now: datetime) -> datetime:
    """Due date in the current month, or next month when already paid this month."""
    due_day = int(due_day)
    if not 1 <= due_day <= 31:
        raise ValueError(f"due_day must be between 1 and 31: {due_day}")

    result = _month_day(now.year, now.month, due_day)

    last_paid = parse_month(last_paid_month)
    if last_paid and last_paid.year == now.year and last_paid.month == now.month:
        result = _month_day(now.year, now.month + 1, due_day)

    return result


def due_status(due_day: int, last_paid_month, remarks: str, now: Optional[datetime] = None) -> str:
    """paid | overdue | due-soon | upcoming."""
    if remarks == "Paid":
        return PAID

    now = now or datetime.now()
    delta_ms = (due_date(due_day, last_paid_month, now) - now).total_seconds() * 1000
    days_until_due = math.ceil(delta_ms / MS_PER_DAY)

    if days_until_due < 0:
        return OVERDUE
    if days_until_due <= DUE_SOON_DAYS:
        return DUE_SOON
    return UPCOMING


@dataclass
class BillingSummary:
    total_revenue: float
    pending_payments: float
    active_providers: int
    overdue_count: int
    paid_this_month: int


def provider_status(provider: BillingProvider, now: Optional[datetime] = None) -> str:
    return due_status(provider.due_day, provider.last_paid_month, provider.remarks, now)


def summarize_billing(providers: Sequence[BillingProvider], now: Optional[datetime] = None) -> BillingSummary:
    now = now or datetime.now()
    statuses = [provider_status(p, now) for p in providers]
    return BillingSummary(
        total_revenue=sum(p.monthly_payment or 0 for p in providers),
        pending_payments=sum(p.monthly_payment or 0 for p, s in zip(providers, statuses) if s != PAID),
        active_providers=len(providers),
        overdue_count=sum(1 for s in statuses if s == OVERDUE),
        paid_this_month=sum(1 for p in providers if p.remarks == "Paid"),
    )


def upcoming_due(providers: Sequence[BillingProvider], now: Optional[datetime] = None, limit: int = 5) -> List[BillingProvider]:
    """Providers needing attention (due soon or overdue), first ``limit``."""
    now = now or datetime.now()
    flagged = [p for p in providers if provider_status(p, now) in (DUE_SOON, OVERDUE)]
    return flagged[:limit]


# ---------------------------------------------------------------------------
# Downtime views
# ---------------------------------------------------------------------------
def _blank(value: Optional[str]) -> bool:
    return value is None or value.strip() == ""


def is_no_uptime(record: Record, bindings: ResolvedBindings) -> bool:
    """Downtime started but no end recorded."""
    start = bindings.value(record, "start")
    end = bindings.value(record, "end")
    return bool(start) and not end


def needs_escalation(record: Record, bindings: ResolvedBindings) -> bool:
    """Cause or action plan missing (empty or whitespace-only)."""
    return _blank(bindings.value(record, "cause")) or _blank(bindings.value(record, "action_plan"))


def has_downtime(record: Record, bindings: ResolvedBindings) -> bool:
    return bool(bindings.value(record, "start") or bindings.value(record, "end"))


def record_duration(record: Record, bindings: ResolvedBindings) -> str:
    return downtime_duration(bindings.value(record, "start"), bindings.value(record, "end"))


CLASSIFIERS = {
    NO_UPTIME: (is_no_uptime, ("start", "end")),
    ESCALATION: (needs_escalation, ("cause", "action_plan")),
    DOWNTIME: (has_downtime, ("start", "end")),
}


def classify_record(record: Record, bindings: ResolvedBindings) -> frozenset:
    """Tags for every classifier whose columns are bound on this tab."""
    tags = set()
    for tag, (predicate, needed) in CLASSIFIERS.items():
        if all(bindings.has(name) for name in needed) and predicate(record, bindings):
            tags.add(tag)
    return frozenset(tags)


def classify_records(records: Iterable[Record], bindings: ResolvedBindings) -> List[Record]:
    """Copies of ``records`` carrying their classification tags."""
    return [r.with_tags(classify_record(r, bindings)) for r in records]


def select(records: Iterable[Record], tag: str) -> List[Record]:
    return [r for r in records if tag in r.tags]


# ---------------------------------------------------------------------------
# List helpers used by the views
# ---------------------------------------------------------------------------
def search_records(records: Iterable[Record], term: str) -> List[Record]:
    """Case-insensitive substring match against any field value."""
    if not term:
        return list(records)
    needle = term.lower()
    return [r for r in records if any(needle in str(v).lower() for v in r.fields.values())]


def filter_by_field(records: Iterable[Record], headers: Sequence[str], value: str) -> List[Record]:
    """Keep records whose first present header among ``headers`` equals ``value``."""
    if not value:
        return list(records)
    kept = []
    for record in records:
        field_value = next((record.fields[h] for h in headers if record.fields.get(h)), "")
        if field_value == value:
            kept.append(record)
    return kept


def paginate(records: Sequence[Record], page: int = 1, per_page: int = 10) -> Tuple[List[Record], int]:
    """One page of records plus the total page count."""
    if per_page < 1:
        raise ValueError("per_page must be >= 1")
    total_pages = math.ceil(len(records) / per_page)
    page = max(page, 1)
    start = (page - 1) * per_page
    return list(records[start:start + per_page]), total_pages
