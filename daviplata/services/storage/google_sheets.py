"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the storage backend because:
1. The organization can view the ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (a single organization's ledger is fine)
- No transactions: concurrent edits are last-write-wins
- No row-level security: ownership and role checks happen in daviplata.ledger
- Limited query capabilities (we filter in Python)

The implementation follows the abstract interface, so we can swap
to PostgreSQL/SQLite later without changing ledger logic.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from daviplata.config import get_settings
from daviplata.ledger.editability import sort_newest_first
from daviplata.models.audit import AuditEvent, AuditEventType, AuditSeverity
from daviplata.models.movement import (
    Movement,
    MovementKind,
    UserProfile,
    UserRole,
    VerificationState,
)
from daviplata.services.storage.interface import (
    AuditStorageInterface,
    BackendConnectionError,
    MovementStorageInterface,
    RowNotFoundError,
    StorageError,
    UserStorageInterface,
    apply_update,
)

logger = structlog.get_logger(__name__)

MOVEMENT_COLUMNS = [
    "id",
    "sequence",
    "owner_id",
    "owner_name",
    "owner_email",
    "kind",
    "amount",
    "reason",
    "receipt_url",
    "occurred_at",
    "created_at",
    "updated_at",
    "verification_state",
    "external_message_ref",
    "external_thread_ref",
]

USER_COLUMNS = [
    "id",
    "email",
    "name",
    "role",
]

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
    "error_message",
    "is_user_action",
]


def _safe_getter(row: list):
    """Cell accessor that tolerates short rows and blank cells."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


def _parse_rows(rows: list, parse, sheet: str, keep=None) -> list:
    """
    Parse the data rows of a hand-editable sheet.

    Blank rows, and rows `keep` rejects, are ignored. Rows that don't
    parse are skipped with a warning; row numbers count the header as 1.
    """
    parsed = []
    for number, row in enumerate(rows, start=2):
        if not row or not row[0] or (keep and not keep(row)):
            continue
        try:
            parsed.append(parse(row))
        except (ValueError, TypeError) as e:
            logger.warning("malformed_row_skipped", sheet=sheet, row=number, error=str(e))
    return parsed


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
            except FileNotFoundError as e:
                raise BackendConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                ) from e
            except Exception as e:
                raise BackendConnectionError(f"Failed to connect to Google Sheets: {e}") from e

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound as e:
                raise BackendConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                ) from e
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

    def get_movements_sheet(self) -> gspread.Worksheet:
        """Get or create the Movements worksheet."""
        return self._get_or_create_sheet(
            self._settings.movements_sheet_name, MOVEMENT_COLUMNS, rows=1000,
        )

    def get_users_sheet(self) -> gspread.Worksheet:
        """Get or create the Users worksheet."""
        return self._get_or_create_sheet(
            self._settings.users_sheet_name, USER_COLUMNS, rows=100,
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000,
        )


class GoogleSheetsMovementStorage(MovementStorageInterface):
    """
    Google Sheets implementation of movement storage.

    One movement per row. The sequence column holds the insertion order,
    which the edit window uses to break created_at ties.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _movement_to_row(self, movement: Movement) -> list:
        """Convert a Movement to a spreadsheet row."""
        return [
            str(movement.id),
            str(movement.sequence),
            str(movement.owner_id),
            movement.owner_name or "",
            movement.owner_email or "",
            movement.kind.value,
            str(movement.amount),
            movement.reason,
            movement.receipt_url or "",
            movement.occurred_at.isoformat(),
            movement.created_at.isoformat(),
            movement.updated_at.isoformat(),
            movement.verification_state.value,
            movement.external_message_ref or "",
            movement.external_thread_ref or "",
        ]

    def _row_to_movement(self, row: list) -> Movement:
        """Convert a spreadsheet row to a Movement."""
        safe_get = _safe_getter(row)

        return Movement(
            id=UUID(safe_get(0)),
            sequence=int(safe_get(1, "0")),
            owner_id=UUID(safe_get(2)),
            owner_name=safe_get(3) or None,
            owner_email=safe_get(4) or None,
            kind=MovementKind(safe_get(5)),
            amount=Decimal(safe_get(6)),
            reason=safe_get(7),
            receipt_url=safe_get(8) or None,
            occurred_at=datetime.fromisoformat(safe_get(9)),
            created_at=datetime.fromisoformat(safe_get(10)),
            updated_at=datetime.fromisoformat(safe_get(11)),
            verification_state=VerificationState(
                safe_get(12, VerificationState.PENDING.value)
            ),
            external_message_ref=safe_get(13) or None,
            external_thread_ref=safe_get(14) or None,
        )

    def _read_movements(self) -> list[Movement]:
        sheet = self._client.get_movements_sheet()
        all_rows = sheet.get_all_values()[1:]  # Skip header

        movements = []
        for row in all_rows:
            if not row or not row[0]:  # Skip empty rows
                continue
            movements.append(self._row_to_movement(row))
        return movements

    async def insert_movement(self, movement: Movement) -> Movement:
        """Append a movement, assigning the next sequence number."""
        try:
            sheet = self._client.get_movements_sheet()
            sequences = [
                int(value) for value in sheet.col_values(2)[1:] if value.isdigit()
            ]
            stored = movement.model_copy(
                update={"sequence": max(sequences, default=0) + 1}
            )
            sheet.append_row(self._movement_to_row(stored), value_input_option="RAW")
            return stored
        except Exception as e:
            raise StorageError(f"Failed to save movement: {e}") from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def get_movement_by_id(self, movement_id: UUID) -> Optional[Movement]:
        """Retrieve a movement by its ID."""
        try:
            sheet = self._client.get_movements_sheet()
            for row in sheet.get_all_values()[1:]:
                if row and row[0] == str(movement_id):
                    return self._row_to_movement(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get movement: {e}") from e

    async def update_movement(
        self,
        movement_id: UUID,
        fields: dict[str, Any],
    ) -> Movement:
        """Rewrite the row of an existing movement."""
        try:
            sheet = self._client.get_movements_sheet()
            all_rows = sheet.get_all_values()

            # Row 1 is the header
            for idx, row in enumerate(all_rows[1:], start=2):
                if row and row[0] == str(movement_id):
                    updated = apply_update(self._row_to_movement(row), fields)
                    sheet.update(
                        range_name=f"A{idx}",
                        values=[self._movement_to_row(updated)],
                        value_input_option="RAW",
                    )
                    return updated

            raise RowNotFoundError(f"Movement not found: {movement_id}")
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update movement: {e}") from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def list_movements(
        self,
        kind: Optional[MovementKind] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Movement]:
        """List movements newest first, with an optional kind filter."""
        try:
            movements = self._read_movements()
        except Exception as e:
            raise StorageError(f"Failed to list movements: {e}") from e

        if kind:
            movements = [m for m in movements if m.kind == kind]

        movements = sort_newest_first(movements)
        end = None if limit is None else offset + limit
        return movements[offset:end]


class GoogleSheetsUserStorage(UserStorageInterface):
    """
    User profiles kept in their own worksheet.

    Rows are maintained by hand by an administrator; the application
    only reads them.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_user(self, row: list) -> UserProfile:
        safe_get = _safe_getter(row)
        return UserProfile(
            id=UUID(safe_get(0)),
            email=safe_get(1),
            name=safe_get(2) or None,
            role=UserRole(safe_get(3, UserRole.USER.value).lower()),
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _read_users(self) -> list[UserProfile]:
        try:
            sheet = self._client.get_users_sheet()
            rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to read users: {e}") from e
        return _parse_rows(rows, self._row_to_user, sheet="users")

    async def get_user_by_id(self, user_id: UUID) -> Optional[UserProfile]:
        for user in self._read_users():
            if user.id == user_id:
                return user
        return None

    async def get_user_by_email(self, email: str) -> Optional[UserProfile]:
        wanted = email.strip().lower()
        for user in self._read_users():
            if user.email.lower() == wanted:
                return user
        return None


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        safe_get = _safe_getter(row)

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            actor_id=UUID(safe_get(6)) if safe_get(6) else None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
            is_user_action=safe_get(11).lower() == "true",
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
            raise StorageError(f"Failed to write audit event: {e}") from e

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}") from e

        events = _parse_rows(
            all_rows,
            self._row_to_event,
            sheet="audit",
            keep=lambda row: (
                len(row) > 5 and row[4] == entity_type and row[5] == str(entity_id)
            ),
        )
        events.sort(key=lambda e: e.timestamp)
        return events
