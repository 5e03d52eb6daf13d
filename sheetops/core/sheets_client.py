"""
Google Sheets v4 transport.

Reads go through the API key (public sheets), writes through a bearer token
obtained by the token manager. 429 / 5xx / network failures are retried with
bounded exponential backoff; every other non-2xx status maps straight to a
typed error.
"""

import time
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

import requests

from . import config
from .errors import (
    AccessDenied,
    AuthFailed,
    BadRequest,
    ConfigurationError,
    NotFound,
    SheetsError,
    TransientError,
)
from ..util.logging import logger

RETRIABLE_STATUSES = {429, 500, 502, 503, 504}


def _error_text(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return (response.text or "").strip()[:300]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return str(body)[:300]


def raise_for_status(response: requests.Response, spreadsheet_id: str, description: str) -> None:
    """Translate an HTTP status into the error taxonomy."""
    status = response.status_code
    if 200 <= status < 300:
        return

    detail = _error_text(response)
    if status == 404:
        raise NotFound(
            f"Sheet not found. Check the spreadsheet ID '{spreadsheet_id}' and tab name ({description}).",
            status,
        )
    if status == 403:
        raise AccessDenied(
            "Access denied. Make sure the sheet is shared (anyone with the link can view) "
            f"and the Sheets API is enabled for this key. {detail}".strip(),
            status,
        )
    if status == 401:
        raise AuthFailed(f"Credential rejected by Sheets API: {detail}", status)
    if status == 400:
        raise BadRequest(f"Bad request: {detail}", status)
    if status in RETRIABLE_STATUSES:
        raise TransientError(f"Sheets API {description} failed ({status}): {detail}", status)
    raise SheetsError(f"Sheets API error ({status}): {detail}", status)


class SheetsClient:
    """Thin blocking client over the Sheets values endpoints."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None,
                 session: Optional[requests.Session] = None, timeout: Optional[float] = None,
                 max_retries: Optional[int] = None, backoff_base: Optional[float] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self._api_key = api_key
        self.base_url = (base_url or config.SHEETS_API_BASE).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = config.SHEETS_TIMEOUT_SEC if timeout is None else timeout
        self.max_retries = config.SHEETS_MAX_RETRIES if max_retries is None else max_retries
        self.backoff_base = config.SHEETS_BACKOFF_BASE_SEC if backoff_base is None else backoff_base
        self._sleep = sleep

    @property
    def api_key(self) -> str:
        key = self._api_key if self._api_key is not None else config.get_google_api_key()
        if not key:
            raise ConfigurationError("Missing GOOGLE_API_KEY; cannot read spreadsheets")
        return key

    def _spreadsheet_url(self, spreadsheet_id: str) -> str:
        return f"{self.base_url}/v4/spreadsheets/{quote(spreadsheet_id, safe='')}"

    def _backoff_delay(self, attempt: int, response: Optional[requests.Response]) -> float:
        if response is not None:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                try:
                    return max(0.0, float(retry_after))
                except ValueError:
                    pass
        return self.backoff_base * (2 ** attempt)

    def _call_with_retry(self, func: Callable[[], requests.Response], spreadsheet_id: str,
                         description: str) -> requests.Response:
        """Execute ``func`` applying exponential backoff for retriable errors."""
        attempt = 0
        while True:
            response = None
            try:
                response = func()
                raise_for_status(response, spreadsheet_id, description)
                return response
            except TransientError as exc:
                status = exc.status_code
                error = exc
            except (requests.ConnectionError, requests.Timeout) as exc:
                status = type(exc).__name__
                error = TransientError(f"Sheets API {description} network failure: {exc}")

            if attempt >= self.max_retries:
                raise error

            delay = self._backoff_delay(attempt, response)
            attempt += 1
            logger.log_retry(description, status, delay, attempt, self.max_retries)
            self._sleep(delay)

    def get_values(self, spreadsheet_id: str, range_spec: str) -> List[List[str]]:
        """Raw cell grid for ``range_spec`` (a tab name or A1 range)."""
        url = f"{self._spreadsheet_url(spreadsheet_id)}/values/{quote(range_spec, safe='')}"
        params = {"key": self.api_key}

        response = self._call_with_retry(
            lambda: self.session.get(url, params=params, timeout=self.timeout),
            spreadsheet_id,
            f"values.get {range_spec}",
        )
        rows = response.json().get("values") or []
        grid = [["" if cell is None else str(cell) for cell in row] for row in rows]

        logger.log_sheet_read(spreadsheet_id, range_spec, len(grid))
        return grid

    def get_tab_titles(self, spreadsheet_id: str) -> List[str]:
        """Titles of every tab in the spreadsheet, in sheet order."""
        url = self._spreadsheet_url(spreadsheet_id)
        params = {"key": self.api_key, "fields": "sheets.properties.title"}

        response = self._call_with_retry(
            lambda: self.session.get(url, params=params, timeout=self.timeout),
            spreadsheet_id,
            "spreadsheets.get",
        )
        sheets = response.json().get("sheets") or []
        titles = [s.get("properties", {}).get("title", "") for s in sheets]

        logger.log_sheet_read(spreadsheet_id, "<metadata>", len(titles))
        return [t for t in titles if t]

    def batch_update(self, spreadsheet_id: str, payload: Dict[str, Any], token: str) -> Dict[str, Any]:
        """POST values:batchUpdate. Cell assignments are idempotent, so retries are safe."""
        if not token:
            raise AuthFailed("No OAuth token available for write")

        url = f"{self._spreadsheet_url(spreadsheet_id)}/values:batchUpdate"
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

        response = self._call_with_retry(
            lambda: self.session.post(url, json=payload, headers=headers, timeout=self.timeout),
            spreadsheet_id,
            "values.batchUpdate",
        )
        try:
            return response.json()
        except ValueError:
            return {}
