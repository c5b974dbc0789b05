"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the document store because:
1. Group treasurers can view pending requests directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

Each action is one row: a handful of indexed columns for people reading
the sheet, the version token, and the whole record as a JSON document.

TRADEOFFS:
- Not suitable for high-volume data (a savings group is small)
- No transactions. save_action() re-reads the version cell immediately
  before writing the row, which narrows but cannot close the race window
  between two writers in different processes. Deployments that need a
  strict guarantee should run a single writer process or move to a store
  with conditional updates.
- Limited query capabilities (we filter in Python)
"""

import json
from datetime import datetime
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from proxy_workflow.config import get_settings
from proxy_workflow.models.action import ActionRecord
from proxy_workflow.models.audit import AuditEvent, AuditEventType, AuditSeverity
from proxy_workflow.services.storage.interface import (
    ActionPredicate,
    ActionRepositoryInterface,
    AuditStorageInterface,
    ConcurrentModificationError,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    StorageError,
)


logger = structlog.get_logger(__name__)


# Column mappings for ProxyActions sheet
ACTION_COLUMNS = [
    "id",
    "version",
    "action_type",
    "status",
    "priority",
    "requested_by",
    "target_user",
    "is_template",
    "expires_at",
    "created_at",
    "updated_at",
    "record_json",
]

VERSION_COLUMN = ACTION_COLUMNS.index("version")
RECORD_COLUMN = ACTION_COLUMNS.index("record_json")

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "actor",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]

# Outcomes that a retry cannot change
_PERMANENT_ERRORS = (ConcurrentModificationError, NotFoundError, DuplicateError)


def _column_letter(index: int) -> str:
    """1-based column index to A1 letters."""
    letters = ""
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int,
    ) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_actions_sheet(self) -> gspread.Worksheet:
        """Get or create the ProxyActions worksheet."""
        return self._get_or_create_sheet(
            self._settings.actions_sheet_name, ACTION_COLUMNS, rows=1000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


class GoogleSheetsActionRepository(ActionRepositoryInterface):
    """
    Google Sheets implementation of action storage.

    Actions are stored as rows in a worksheet with one action per row.
    The full record lives in the record_json column.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _action_to_row(self, action: ActionRecord, version: int) -> list:
        """Convert an ActionRecord to a spreadsheet row."""
        return [
            str(action.id),
            str(version),
            action.action_type.value,
            action.status.value,
            action.priority.value,
            action.requested_by,
            action.target_user or "",
            str(action.is_template),
            action.expires_at.isoformat() if action.expires_at else "",
            action.created_at.isoformat(),
            action.updated_at.isoformat(),
            action.model_dump_json(),
        ]

    def _row_to_action(self, row: list) -> ActionRecord:
        """Convert a spreadsheet row to an ActionRecord."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        action = ActionRecord.model_validate_json(safe_get(RECORD_COLUMN, "{}"))
        action.version = int(safe_get(VERSION_COLUMN, "0"))
        return action

    def _find_row(self, rows: list[list], action_id: UUID) -> Optional[int]:
        """1-based sheet row number of an action, or None."""
        for idx, row in enumerate(rows[1:], start=2):  # Row 1 is header
            if row and row[0] == str(action_id):
                return idx
        return None

    async def get_action(self, action_id: UUID) -> Optional[ActionRecord]:
        """Retrieve an action by its ID."""
        try:
            sheet = self._client.get_actions_sheet()
            all_rows = sheet.get_all_values()
            idx = self._find_row(all_rows, action_id)
            if idx is None:
                return None
            return self._row_to_action(all_rows[idx - 1])
        except Exception as e:
            raise StorageError(f"Failed to get action: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(_PERMANENT_ERRORS),
        reraise=True,
    )
    async def insert_action(self, action: ActionRecord) -> ActionRecord:
        """Append a new action row at version 1."""
        try:
            sheet = self._client.get_actions_sheet()
            if self._find_row(sheet.get_all_values(), action.id) is not None:
                raise DuplicateError(f"Action already exists: {action.id}")
            sheet.append_row(self._action_to_row(action, 1), value_input_option="RAW")
        except DuplicateError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save action: {e}")

        stored = action.model_copy(deep=True)
        stored.version = 1
        return stored

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(_PERMANENT_ERRORS),
        reraise=True,
    )
    async def save_action(
        self,
        action: ActionRecord,
        expected_version: int,
    ) -> ActionRecord:
        """Overwrite an action row if its version cell is unchanged."""
        try:
            sheet = self._client.get_actions_sheet()
            all_rows = sheet.get_all_values()
            idx = self._find_row(all_rows, action.id)
            if idx is None:
                raise NotFoundError(f"Action not found: {action.id}")

            row = all_rows[idx - 1]
            current_version = int(row[VERSION_COLUMN] or 0)
            if current_version != expected_version:
                raise ConcurrentModificationError(
                    action.id, expected_version, current_version
                )

            new_version = current_version + 1
            last_column = _column_letter(len(ACTION_COLUMNS))
            sheet.update(
                range_name=f"A{idx}:{last_column}{idx}",
                values=[self._action_to_row(action, new_version)],
                value_input_option="RAW",
            )
        except (NotFoundError, ConcurrentModificationError):
            raise
        except Exception as e:
            raise StorageError(f"Failed to update action: {e}")

        stored = action.model_copy(deep=True)
        stored.version = new_version
        return stored

    async def find_actions(
        self,
        predicate: Optional[ActionPredicate] = None,
        limit: Optional[int] = None,
    ) -> list[ActionRecord]:
        """Scan the sheet and filter in Python."""
        try:
            sheet = self._client.get_actions_sheet()
            all_rows = sheet.get_all_values()[1:]  # Skip header
        except Exception as e:
            raise StorageError(f"Failed to list actions: {e}")

        actions = []
        for row in all_rows:
            if not row or not row[0]:  # Skip empty rows
                continue

            try:
                action = self._row_to_action(row)
            except (ValueError, json.JSONDecodeError) as e:
                logger.error("unreadable_action_row", action_id=row[0], error=str(e))
                continue

            if predicate is not None and not predicate(action):
                continue
            actions.append(action)
            if limit is not None and len(actions) >= limit:
                break

        return actions


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            actor=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Audit persistence must not break the main flow
            logger.warning(
                "audit_event_write_failed",
                event_id=str(event.event_id),
                error=str(e),
            )
            return False

    def _load_events(self) -> list[AuditEvent]:
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError as e:
                logger.warning("malformed_audit_row", event_id=row[0], error=str(e))
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        events = [
            event for event in self._load_events()
            if event.entity_type == entity_type and event.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        events = self._load_events()
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
