"""
Data model for phases, tab schemas, records and write requests.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Dict, FrozenSet, List, Optional, Tuple, Union


@dataclass(frozen=True)
class Phase:
    id: int
    name: str
    spreadsheet_id: str
    default_tab_name: str
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class TabSchema:
    tab_name: str
    header_row_index: int
    headers: Tuple[str, ...]

    @property
    def signature(self) -> Tuple[str, ...]:
        """Header list used as the key for cached column bindings."""
        return self.headers

    def index_of(self, header: str) -> int:
        """Column index backing ``header`` (last occurrence wins)."""
        for index in range(len(self.headers) - 1, -1, -1):
            if self.headers[index] == header:
                return index
        raise KeyError(header)

    def duplicate_headers(self) -> List[str]:
        seen = set()
        duplicates = []
        for header in self.headers:
            if header in seen and header not in duplicates:
                duplicates.append(header)
            seen.add(header)
        return duplicates

    @property
    def first_data_row(self) -> int:
        """1-based sheet row of the first record under the header."""
        return self.header_row_index + 2


@dataclass(frozen=True)
class Record:
    row_number: int
    fields: Dict[str, str]
    tags: FrozenSet[str] = frozenset()

    def get(self, header: str) -> str:
        return self.fields.get(header, "")

    def with_tags(self, tags) -> "Record":
        return replace(self, tags=frozenset(tags))


@dataclass(frozen=True)
class PendingEdit:
    record: Record
    column: Union[str, int]  # header name or 0-based column index
    value: str


@dataclass(frozen=True)
class WriteRange:
    range: str
    values: List[List[str]]

    def to_dict(self) -> Dict:
        return {"range": self.range, "values": self.values}


@dataclass
class WriteRequest:
    tab_name: str
    ranges: List[WriteRange] = field(default_factory=list)
    value_input_option: str = "USER_ENTERED"

    def to_payload(self) -> Dict:
        """Body for values:batchUpdate."""
        return {
            "valueInputOption": self.value_input_option,
            "data": [r.to_dict() for r in self.ranges],
        }

    def __len__(self):
        return len(self.ranges)


@dataclass(frozen=True)
class AuthToken:
    value: str
    expiry_epoch_ms: int

    def is_expired(self, now_ms: int) -> bool:
        return now_ms > self.expiry_epoch_ms


@dataclass
class TabSnapshot:
    spreadsheet_id: str
    schema: TabSchema
    records: List[Record]
    fetched_at: datetime

    def record_at(self, row_number: int) -> Optional[Record]:
        for record in self.records:
            if record.row_number == row_number:
                return record
        return None


@dataclass
class WriteOutcome:
    """Result of a write: what was sent plus the refetched tab."""
    tab_name: str
    ranges_written: int
    records: List[Record]
    target_rows: List[int] = field(default_factory=list)
    results: List["AppendResult"] = field(default_factory=list)


@dataclass
class AppendResult:
    site_code: str
    status: str  # success | error
    row: Optional[int] = None
    message: str = ""


@dataclass
class BillingProvider:
    name: str
    due_day: int
    last_paid_month: Optional[date] = None
    remarks: str = "Unpaid"
    monthly_payment: float = 0.0
