"""
Phase registry: named bindings from a phase to a spreadsheet and tab.

Deleting a phase only removes the binding; the spreadsheet is untouched.
"""

import re
import sqlite3
from datetime import datetime
from typing import List, Optional

from .db import get_db, init_db
from .errors import NotFound
from .schema import Phase
from ..util.logging import logger

_SHEET_URL_ID = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")
_BARE_ID = re.compile(r"^[a-zA-Z0-9-_]+$")


def extract_spreadsheet_id(link: Optional[str]) -> Optional[str]:
    """Canonical spreadsheet id from a raw id or a sharing URL."""
    if not link:
        return None
    link = link.strip()
    if "/" not in link:
        return link
    match = _SHEET_URL_ID.search(link)
    return match.group(1) if match else None


def is_valid_sheets_link(link: Optional[str]) -> bool:
    if not link:
        return False
    return "docs.google.com/spreadsheets/d/" in link or bool(_BARE_ID.match(link.strip()))


def _parse_timestamp(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def _row_to_phase(row) -> Phase:
    phase_id, name, sheets_link, sheet_name, created_at = row
    return Phase(
        id=phase_id,
        name=name,
        spreadsheet_id=extract_spreadsheet_id(sheets_link) or sheets_link,
        default_tab_name=sheet_name or "",
        created_at=_parse_timestamp(created_at),
    )


class PhaseRegistry:
    """Ordered select / insert / delete over the phases table."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path
        init_db(db_path)

    def list_phases(self) -> List[Phase]:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, name, sheets_link, sheet_name, created_at FROM phases ORDER BY created_at ASC, id ASC"
            )
            return [_row_to_phase(row) for row in cursor.fetchall()]

    def get_phase(self, name: str) -> Optional[Phase]:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, name, sheets_link, sheet_name, created_at FROM phases WHERE name = ?",
                (name,)
            )
            row = cursor.fetchone()
            return _row_to_phase(row) if row else None

    def require_phase(self, name: str) -> Phase:
        phase = self.get_phase(name)
        if phase is None:
            raise NotFound(f"Phase not found: {name}")
        return phase

    def add_phase(self, name: str, sheets_link: str, sheet_name: str = "") -> Phase:
        """Insert a phase; raises ValueError on invalid input or duplicate name."""
        if not name or not name.strip():
            raise ValueError("Phase name cannot be empty")
        if not is_valid_sheets_link(sheets_link):
            raise ValueError("Invalid Google Sheets URL or spreadsheet ID")

        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "INSERT INTO phases (name, sheets_link, sheet_name) VALUES (?, ?, ?)",
                    (name.strip(), sheets_link.strip(), (sheet_name or "").strip())
                )
                conn.commit()
        except sqlite3.IntegrityError:
            raise ValueError(f"Phase already exists: {name}") from None

        logger.log_operation("registry.add_phase", "success", {"name": name.strip()})
        return self.require_phase(name.strip())

    def delete_phase(self, name: str) -> bool:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM phases WHERE name = ?", (name,))
            conn.commit()
            deleted = cursor.rowcount > 0

        logger.log_operation("registry.delete_phase", "success" if deleted else "not_found", {"name": name})
        return deleted
