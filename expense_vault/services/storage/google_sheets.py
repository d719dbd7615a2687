"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the first persistent backend because:
1. Finance staff can inspect expenses and the audit stream directly
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data
- No transactions (batch updates are checked up front, then written in order)
- Limited query capabilities (we filter in Python)

Line items and the embedded audit log are JSON-serialized into one cell each.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional
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

from expense_vault.config import get_settings
from expense_vault.models.audit import AuditEvent, AuditEventType, AuditSeverity
from expense_vault.models.expense import (
    AuditEntry,
    Expense,
    ExpenseState,
    LineItem,
)
from expense_vault.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    ExpenseStorageInterface,
    NotFoundError,
    StorageError,
    ensure_audit_log_extends,
    matches_filters,
)


logger = structlog.get_logger(__name__)


# Column mappings for Expenses sheet
EXPENSE_COLUMNS = [
    "id",
    "user_id",
    "organization_id",
    "manager_ids_json",
    "total_amount",
    "state",
    "created_at",
    "updated_at",
    "deleted_at",
    "line_items_json",
    "audit_log_json",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "actor_id",
    "correlation_id",
    "description",
    "details_json",
    "error_code",
    "error_message",
    "is_user_action",
]


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
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_expenses_sheet(self) -> gspread.Worksheet:
        """Get or create the Expenses worksheet."""
        return self._get_or_create_sheet(
            self._settings.expenses_sheet_name, EXPENSE_COLUMNS, rows=1000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


def _safe_getter(row: list):
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


class GoogleSheetsExpenseStorage(ExpenseStorageInterface):
    """
    Google Sheets implementation of expense storage.

    One expense per row.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @staticmethod
    def expense_to_row(expense: Expense) -> list:
        """Convert an Expense to a spreadsheet row."""
        data = expense.model_dump(mode="json")
        return [
            str(expense.id),
            expense.user_id,
            expense.organization_id or "",
            json.dumps(expense.manager_ids),
            str(expense.total_amount),
            expense.state.value,
            expense.created_at.isoformat(),
            expense.updated_at.isoformat(),
            expense.deleted_at.isoformat() if expense.deleted_at else "",
            json.dumps(data["line_items"]),
            json.dumps(data["audit_log"]),
        ]

    @staticmethod
    def row_to_expense(row: list) -> Expense:
        """Convert a spreadsheet row to an Expense."""
        safe_get = _safe_getter(row)

        line_items = [
            LineItem(**item) for item in json.loads(safe_get(9) or "[]")
        ]
        audit_log = [
            AuditEntry(**entry) for entry in json.loads(safe_get(10) or "[]")
        ]

        return Expense(
            id=UUID(safe_get(0)),
            user_id=safe_get(1),
            organization_id=safe_get(2) or None,
            manager_ids=json.loads(safe_get(3) or "[]"),
            total_amount=Decimal(safe_get(4, "0.00")),
            state=ExpenseState(safe_get(5)),
            created_at=datetime.fromisoformat(safe_get(6)),
            updated_at=datetime.fromisoformat(safe_get(7)),
            deleted_at=datetime.fromisoformat(safe_get(8)) if safe_get(8) else None,
            line_items=line_items,
            audit_log=audit_log,
        )

    def _find_row(self, all_rows: list[list], expense_id: UUID) -> Optional[int]:
        """1-based sheet row index of an expense, header excluded."""
        for idx, row in enumerate(all_rows[1:], start=2):
            if row and row[0] == str(expense_id):
                return idx
        return None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(DuplicateError),
        reraise=True,
    )
    async def save_expense(self, expense: Expense) -> bool:
        """Append a new expense row."""
        try:
            sheet = self._client.get_expenses_sheet()
            if self._find_row(sheet.get_all_values(), expense.id) is not None:
                raise DuplicateError(f"Expense already exists: {expense.id}")
            sheet.append_row(self.expense_to_row(expense), value_input_option="RAW")
            return True
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save expense: {e}")

    async def get_expense_by_id(self, expense_id: UUID) -> Optional[Expense]:
        """Retrieve an expense by its ID."""
        try:
            sheet = self._client.get_expenses_sheet()
            for row in sheet.get_all_values()[1:]:
                if row and row[0] == str(expense_id):
                    return self.row_to_expense(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get expense: {e}")

    def _checked_row_index(self, all_rows: list[list], expense: Expense) -> int:
        idx = self._find_row(all_rows, expense.id)
        if idx is None:
            raise NotFoundError(f"Expense not found: {expense.id}")
        stored = self.row_to_expense(all_rows[idx - 1])
        ensure_audit_log_extends(stored.audit_log, expense.audit_log, expense.id)
        return idx

    async def update_expense(self, expense: Expense) -> bool:
        """Rewrite an existing expense row."""
        try:
            sheet = self._client.get_expenses_sheet()
            idx = self._checked_row_index(sheet.get_all_values(), expense)
            sheet.update(range_name=f"A{idx}", values=[self.expense_to_row(expense)])
            return True
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update expense: {e}")

    async def update_expenses(self, expenses: list[Expense]) -> int:
        """Check every row first, then rewrite them in order."""
        try:
            sheet = self._client.get_expenses_sheet()
            all_rows = sheet.get_all_values()
            indexes = [self._checked_row_index(all_rows, e) for e in expenses]
            for idx, expense in zip(indexes, expenses):
                sheet.update(range_name=f"A{idx}", values=[self.expense_to_row(expense)])
            return len(expenses)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update expenses: {e}")

    async def list_expenses(
        self,
        user_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        private_only: bool = False,
        manager_id: Optional[str] = None,
        states: Optional[Iterable[ExpenseState]] = None,
        include_deleted: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Expense]:
        """List expenses with optional filters."""
        states = list(states) if states is not None else None
        try:
            sheet = self._client.get_expenses_sheet()
            all_rows = sheet.get_all_values()[1:]  # Skip header
        except Exception as e:
            raise StorageError(f"Failed to list expenses: {e}")

        expenses = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                expense = self.row_to_expense(row)
            except (ValueError, KeyError) as e:
                logger.warning("malformed_expense_row", expense_id=row[0], error=str(e))
                continue

            if matches_filters(
                expense,
                user_id=user_id,
                organization_id=organization_id,
                private_only=private_only,
                manager_id=manager_id,
                states=states,
                include_deleted=include_deleted,
            ):
                expenses.append(expense)

        expenses.sort(key=lambda e: e.created_at, reverse=True)
        if limit is None:
            return expenses[offset:]
        return expenses[offset:offset + limit]


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit event storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @staticmethod
    def row_to_event(row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        safe_get = _safe_getter(row)

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            actor_id=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_code=safe_get(10) or None,
            error_message=safe_get(11) or None,
            is_user_action=safe_get(12).lower() == "true",
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
            raise StorageError(f"Failed to write audit event: {e}")

    def _load_events(self, predicate) -> list[AuditEvent]:
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in all_rows:
            if not row or not row[0] or not predicate(row):
                continue
            try:
                events.append(self.row_to_event(row))
            except (ValueError, KeyError) as e:
                logger.warning("malformed_audit_row", event_id=row[0], error=str(e))
        return events

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        events = self._load_events(
            lambda row: len(row) > 7 and row[7] == str(correlation_id)
        )
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        events = self._load_events(
            lambda row: len(row) > 5 and row[4] == entity_type and row[5] == entity_id
        )
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        events = self._load_events(lambda row: True)
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
