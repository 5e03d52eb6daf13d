"""
HTTP surface: phases, views, writes, the auth callback and error mapping.
"""

import asyncio

import httpx
import pytest
from unittest.mock import patch
from fastapi.testclient import TestClient

from sheetops.api.main import app, get_authenticator, get_orchestrator, status_for
from sheetops.core.auth import CallbackAuthenticator, CredentialProvider, TokenManager
from sheetops.core.errors import (
    AccessDenied,
    AppendConflict,
    BatchWriteFailed,
    Malformed,
    NotFound,
    SheetsError,
    StaleRecord,
)
from sheetops.core.orchestrator import DowntimeOrchestrator

LOG = [
    ["SITE", "PROJECT", "START", "END", "CAUSE"],
    ["S1", "North", "01/01/2025 10:00:00", "", "Power"],
    ["S2", "South", "01/02/2025 09:00:00", "01/02/2025 10:00:00", "Fiber"],
    ["S3", "North", "01/03/2025 08:00:00", "", ""],
]

ESCALATION_TAB = [
    ["Weekly escalation"],
    [],
    [],
    ["SITE", "PROJECT", "CAUSE", "ACTION PLAN"],
    ["S1", "North", "Power", ""],
    ["S2", "South", "Fiber", "Splice"],
    ["S3", "North", "", ""],
]

PHASE = "/phases/Phase%201"


@pytest.fixture
def sheet(sheets):
    return sheets({"Log": LOG, "Escalation": ESCALATION_TAB, "Bare": [["NOTE"], ["x"]]})


@pytest.fixture
def services(registry, sheet, clock):
    async def no_pause(seconds):
        return None

    registry.add_phase("Phase 1", "sheet-1", "Log")
    authenticator = CallbackAuthenticator(timeout=1)
    token_manager = TokenManager(CredentialProvider(clock), authenticator, clock=clock)
    orchestrator = DowntimeOrchestrator(registry, sheet, token_manager, sleep=no_pause)

    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_authenticator] = lambda: authenticator
    yield orchestrator
    app.dependency_overrides.clear()


@pytest.fixture
def client(services):
    with patch.dict("os.environ", {"GOOGLE_CLIENT_ID": "client-123", "GOOGLE_API_KEY": "read-key"}):
        with TestClient(app) as test_client:
            yield test_client


@pytest.fixture
def authorised(client):
    response = client.post("/auth/callback", json={"accessToken": "tok", "expiresInMs": 3_600_000})
    assert response.status_code == 200
    return client


class TestHealthAndPhases:
    """Phase registry endpoints."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["db_health"] is True
        assert data["phase_count"] == 1
        assert data["config_issues"] == []

    def test_list_phases(self, client):
        data = client.get("/phases").json()
        assert [p["name"] for p in data["phases"]] == ["Phase 1"]
        assert data["phases"][0]["spreadsheet_id"] == "sheet-1"

    def test_create_phase(self, client):
        response = client.post("/phases", json={
            "name": "Phase 2",
            "sheets_link": "https://docs.google.com/spreadsheets/d/abc-123/edit",
            "sheet_name": "Downtime"
        })

        assert response.status_code == 201
        assert response.json()["spreadsheet_id"] == "abc-123"
        assert [p["name"] for p in client.get("/phases").json()["phases"]] == ["Phase 1", "Phase 2"]

    def test_duplicate_phase(self, client):
        response = client.post("/phases", json={"name": "Phase 1", "sheets_link": "other-id"})
        assert response.status_code == 400

    def test_invalid_link(self, client):
        response = client.post("/phases", json={"name": "Phase 3", "sheets_link": "https://example.com/x"})
        assert response.status_code == 400

    def test_empty_name(self, client):
        response = client.post("/phases", json={"name": " ", "sheets_link": "abc"})
        assert response.status_code == 422

    def test_delete_phase(self, client):
        assert client.delete(PHASE).status_code == 200
        assert client.delete(PHASE).status_code == 404

    def test_list_tabs(self, client):
        data = client.get(f"{PHASE}/tabs").json()
        assert data["tabs"] == ["Log", "Escalation", "Bare"]


class TestViews:
    """Classified, searched and paginated records."""

    def test_no_uptime(self, client):
        response = client.get(f"{PHASE}/tabs/Log/views/no-uptime")

        assert response.status_code == 200
        data = response.json()
        assert [r["fields"]["SITE"] for r in data["records"]] == ["S1", "S3"]
        assert data["columns"] == {"start": "START", "end": "END"}
        assert data["records"][0]["duration"] == "N/A"
        assert "no-uptime" in data["records"][0]["tags"]

    def test_downtime_duration(self, client):
        data = client.get(f"{PHASE}/tabs/Log/views/downtime").json()
        assert data["records"][1]["duration"] == "1h 0m"

    def test_escalation(self, client):
        data = client.get(f"{PHASE}/tabs/Escalation/views/escalation", params={"project": "North"}).json()

        assert [r["row_number"] for r in data["records"]] == [5, 7]
        assert data["records"][0]["duration"] is None

    def test_pagination(self, client):
        data = client.get(f"{PHASE}/tabs/Log/views/downtime", params={"page": 2, "per_page": 2}).json()

        assert [r["row_number"] for r in data["records"]] == [4]
        assert data["total_pages"] == 2
        assert data["matched"] == 3

    def test_unknown_view(self, client):
        assert client.get(f"{PHASE}/tabs/Log/views/everything").status_code == 404

    def test_unknown_phase(self, client):
        response = client.get("/phases/Nope/tabs/Log/views/no-uptime")
        assert response.status_code == 404

    def test_missing_tab(self, client):
        response = client.get(f"{PHASE}/tabs/Gone/views/no-uptime")

        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    def test_malformed_tab(self, client):
        response = client.get(f"{PHASE}/tabs/Bare/views/no-uptime")
        assert response.status_code == 422


class TestWrites:
    """Write endpoints with a token delivered through the callback."""

    def test_end_time(self, authorised, sheet):
        response = authorised.post(f"{PHASE}/tabs/Log/end-time", json={
            "row_number": 2,
            "end_time": "01/01/2025 12:00:00"
        })

        assert response.status_code == 200
        assert response.json()["target_rows"] == [2]
        assert sheet.writes[0]["token"] == "tok"
        assert sheet.tabs["Log"][1][3] == "01/01/2025 12:00:00"

    def test_end_time_for_unknown_row(self, authorised):
        response = authorised.post(f"{PHASE}/tabs/Log/end-time", json={"row_number": 40, "end_time": "01/01/2025 12:00:00"})
        assert response.status_code == 404

    def test_stale_selection(self, authorised, sheet):
        response = authorised.post(f"{PHASE}/tabs/Log/end-time", json={
            "row_number": 2,
            "end_time": "01/01/2025 12:00:00",
            "fields": {"SITE": "S1"}
        })

        assert response.status_code == 409
        assert sheet.writes == []

    def test_end_before_start(self, authorised):
        response = authorised.post(f"{PHASE}/tabs/Log/end-time", json={"row_number": 2, "end_time": "01/01/2025 09:00:00"})
        assert response.status_code == 400

    def test_escalation(self, authorised, sheet):
        response = authorised.post(f"{PHASE}/tabs/Escalation/escalation", json={
            "records": [{"row_number": 5}, {"row_number": 7}],
            "cause": "Power",
            "action_plan": "Generator"
        })

        assert response.status_code == 200
        assert response.json()["ranges_written"] == 4
        assert len(sheet.writes) == 1

    def test_escalation_needs_records(self, authorised):
        response = authorised.post(f"{PHASE}/tabs/Escalation/escalation", json={"records": [], "cause": "Power"})
        assert response.status_code == 422

    def test_add_downtime(self, authorised, sheet):
        response = authorised.post(f"{PHASE}/tabs/Log/downtime", json={
            "site_codes": ["S4", " ", "S5"],
            "start": "01/05/2025 10:00:00",
            "cause": "Power"
        })

        assert response.status_code == 200
        data = response.json()
        assert [(r["site_code"], r["row"]) for r in data["results"]] == [("S4", 5), ("S5", 6)]
        assert data["record_count"] == 5

    def test_write_without_credential(self, client, sheet):
        with patch.dict("os.environ", {"GOOGLE_CLIENT_ID": ""}):
            response = client.post(f"{PHASE}/tabs/Log/end-time", json={"row_number": 2, "end_time": "01/01/2025 12:00:00"})

        assert response.status_code == 401
        assert sheet.writes == []


class TestAuthEndpoints:

    def test_status_absent(self, client):
        data = client.get("/auth/status").json()

        assert data["state"] == "absent"
        assert data["pending"] is False
        assert data["client_id"] == "client-123"

    def test_callback_without_pending_flow_stores_token(self, client, services):
        response = client.post("/auth/callback", json={"accessToken": "tok", "expiresInMs": 60_000})

        assert response.json() == {"accepted": True, "delivered_to_pending_write": False, "state": "valid"}
        assert services.token_manager.status()["state"] == "valid"

    def test_callback_requires_token(self, client):
        assert client.post("/auth/callback", json={"accessToken": ""}).status_code == 422

    def test_error_without_pending_flow(self, client):
        assert client.post("/auth/error", json={"error": "access_denied"}).status_code == 409


class TestConsentFlow:
    """A write waiting for consent is resumed or failed by the consent UI."""

    async def _write_while_consenting(self, outcome_path, outcome_body):
        authenticator = app.dependency_overrides[get_authenticator]()
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            write = asyncio.ensure_future(http.post(f"{PHASE}/tabs/Log/end-time", json={
                "row_number": 2,
                "end_time": "01/01/2025 12:00:00"
            }))
            while not authenticator.pending and not write.done():
                await asyncio.sleep(0.01)

            consent = await http.post(outcome_path, json=outcome_body)
            return await write, consent

    def test_callback_resumes_waiting_write(self, services, sheet):
        with patch.dict("os.environ", {"GOOGLE_CLIENT_ID": "client-123"}):
            write, consent = asyncio.run(
                self._write_while_consenting("/auth/callback", {"accessToken": "fresh", "expiresInMs": 3_600_000}),
                debug=True
            )

        assert consent.status_code == 200
        assert consent.json()["delivered_to_pending_write"] is True
        assert write.status_code == 200
        assert sheet.writes[0]["token"] == "fresh"
        assert services.token_manager.state() == "valid"

    def test_refused_consent_fails_waiting_write(self, services, sheet):
        with patch.dict("os.environ", {"GOOGLE_CLIENT_ID": "client-123"}):
            write, consent = asyncio.run(
                self._write_while_consenting("/auth/error", {"error": "access_denied"}),
                debug=True
            )

        assert consent.status_code == 200
        assert write.status_code == 401
        assert sheet.writes == []


class TestBilling:

    def test_status(self, client):
        response = client.post("/billing/status", json={
            "now": "2025-03-20T09:00:00",
            "providers": [
                {"name": "Fiber A", "due_day": 15, "monthly_payment": 1000},
                {"name": "Radio B", "due_day": 25, "monthly_payment": 500},
                {"name": "Sat C", "due_day": 5, "remarks": "Paid", "monthly_payment": 250},
                {"name": "Fiber D", "due_day": 15, "last_paid_month": "2025-03-01", "monthly_payment": 100},
            ]
        })

        assert response.status_code == 200
        data = response.json()
        assert [p["status"] for p in data["providers"]] == ["overdue", "due-soon", "paid", "upcoming"]
        assert data["providers"][3]["due_date"] == "2025-04-15"
        assert data["overdue_count"] == 1
        assert data["pending_payments"] == 1600
        assert data["upcoming_due"] == ["Fiber A", "Radio B"]

    def test_last_paid_as_iso_timestamp(self, client):
        response = client.post("/billing/status", json={
            "now": "2025-03-20T09:00:00",
            "providers": [
                {"name": "Fiber D", "due_day": 15, "last_paid_month": "2025-03-12T08:30:15.123Z"},
                {"name": "Fiber E", "due_day": 15, "last_paid_month": "2025-02-10"},
            ]
        })

        assert response.status_code == 200
        assert [p["status"] for p in response.json()["providers"]] == ["upcoming", "overdue"]

    def test_unreadable_last_paid(self, client):
        response = client.post("/billing/status", json={
            "providers": [{"name": "X", "due_day": 5, "last_paid_month": "last spring"}]
        })
        assert response.status_code == 422

    def test_due_day_validated(self, client):
        response = client.post("/billing/status", json={"providers": [{"name": "X", "due_day": 40}]})
        assert response.status_code == 422


class TestErrorMapping:

    @pytest.mark.parametrize("error,status", [
        (NotFound("x"), 404),
        (AccessDenied("x"), 403),
        (Malformed("x"), 422),
        (BatchWriteFailed("x"), 502),
        (AppendConflict("x"), 409),
        (StaleRecord("x"), 409),
        (SheetsError("x"), 502),
    ])
    def test_status_for(self, error, status):
        assert status_for(error) == status
