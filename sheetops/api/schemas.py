"""
Request and response models for the HTTP surface.
"""

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.dates import parse_month


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    phase_count: int
    config_issues: List[str] = []


class PhaseCreateRequest(BaseModel):
    name: str
    sheets_link: str
    sheet_name: str = ""

    @field_validator('name')
    @classmethod
    def name_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('name cannot be empty')
        return v.strip()

    @field_validator('sheets_link')
    @classmethod
    def link_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('sheets_link cannot be empty')
        return v.strip()


class PhaseResponse(BaseModel):
    id: int
    name: str
    spreadsheet_id: str
    default_tab_name: str
    created_at: Optional[datetime] = None


class PhaseListResponse(BaseModel):
    phases: List[PhaseResponse]


class TabListResponse(BaseModel):
    phase: str
    tabs: List[str]


class RecordModel(BaseModel):
    row_number: int
    fields: Dict[str, str]
    tags: List[str] = []
    duration: Optional[str] = None


class ViewResponse(BaseModel):
    view: str
    tab_name: str
    headers: List[str]
    columns: Dict[str, str]
    total: int
    matched: int
    page: int
    total_pages: int
    records: List[RecordModel]


class EndTimeRequest(BaseModel):
    row_number: int
    end_time: str
    fields: Dict[str, str] = {}

    @field_validator('end_time')
    @classmethod
    def end_time_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('End of downtime is required')
        return v

    @field_validator('row_number')
    @classmethod
    def row_must_be_positive(cls, v):
        if v < 1:
            raise ValueError('row_number must be >= 1')
        return v


class SelectedRecord(BaseModel):
    row_number: int
    fields: Dict[str, str] = {}


class EscalationRequest(BaseModel):
    records: List[SelectedRecord]
    cause: str = ""
    action_plan: str = ""

    @field_validator('records')
    @classmethod
    def records_must_not_be_empty(cls, v):
        if not v:
            raise ValueError('Select at least one record')
        return v


class DowntimeRequest(BaseModel):
    site_codes: List[str]
    start: str
    end: Optional[str] = None
    cause: str

    @field_validator('site_codes')
    @classmethod
    def sites_must_not_be_empty(cls, v):
        codes = [c.strip() for c in v if c and c.strip()]
        if not codes:
            raise ValueError('At least one site is required')
        return codes


class AppendResultModel(BaseModel):
    site_code: str
    status: str
    row: Optional[int] = None
    message: str = ""


class WriteResponse(BaseModel):
    tab_name: str
    ranges_written: int
    target_rows: List[int]
    record_count: int
    results: List[AppendResultModel] = []


class AuthStatusResponse(BaseModel):
    state: str
    expires_at_ms: Optional[int] = None
    pending: bool = False
    client_id: str = ""
    scope: str = ""


class AuthCallbackRequest(BaseModel):
    # field names follow what the consent UI posts
    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(alias="accessToken")
    expires_in_ms: Optional[int] = Field(default=None, alias="expiresInMs")

    @field_validator('access_token')
    @classmethod
    def token_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('accessToken cannot be empty')
        return v


class AuthErrorRequest(BaseModel):
    error: str = "Google authentication failed"


class AuthCallbackResponse(BaseModel):
    accepted: bool
    delivered_to_pending_write: bool
    state: str


class BillingProviderModel(BaseModel):
    name: str
    due_day: int
    last_paid_month: Optional[date] = None
    remarks: str = "Unpaid"
    monthly_payment: float = 0.0

    @field_validator('due_day')
    @classmethod
    def due_day_in_month(cls, v):
        if not 1 <= v <= 31:
            raise ValueError('due_day must be between 1 and 31')
        return v

    @field_validator('last_paid_month', mode='before')
    @classmethod
    def last_paid_as_month(cls, v):
        # stored as a full ISO timestamp by the providers screen
        if v is None or v == '':
            return None
        month = parse_month(v)
        if month is None:
            raise ValueError(f'Unrecognised last_paid_month: {v!r}')
        return month


class BillingStatusRequest(BaseModel):
    providers: List[BillingProviderModel]
    now: Optional[datetime] = None


class ProviderStatusModel(BaseModel):
    name: str
    status: str
    due_date: date
    monthly_payment: float


class BillingStatusResponse(BaseModel):
    total_revenue: float
    pending_payments: float
    active_providers: int
    overdue_count: int
    paid_this_month: int
    providers: List[ProviderStatusModel]
    upcoming_due: List[str]
